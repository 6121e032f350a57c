import os
from functools import lru_cache
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: Optional[str],
        timezone: str,
        demo_username: str,
        demo_password: str,
        max_statement_bytes: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.demo_username = demo_username
        self.demo_password = demo_password
        self.max_statement_bytes = max_statement_bytes
        self.log_level = log_level

    @property
    def durable(self) -> bool:
        return bool(self.database_url)


def _database_url() -> Optional[str]:
    url = os.getenv("LEDGER_DATABASE_URL") or os.getenv("DATABASE_URL")
    if url is None or not url.strip():
        return None
    return url.strip()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    timezone = os.getenv("LEDGER_TIMEZONE", "UTC")
    demo_username = os.getenv("LEDGER_DEMO_USERNAME", "demo")
    demo_password = os.getenv("LEDGER_DEMO_PASSWORD", "password")
    max_statement_bytes = int(
        os.getenv("LEDGER_MAX_STATEMENT_BYTES", str(10 * 1024 * 1024))
    )
    log_level = os.getenv("LEDGER_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=_database_url(),
        timezone=timezone,
        demo_username=demo_username,
        demo_password=demo_password,
        max_statement_bytes=max_statement_bytes,
        log_level=log_level,
    )
