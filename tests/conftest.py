import pytest
from fastapi.testclient import TestClient

from config import Settings
from db_storage import SQLStorage
from main import create_app
from storage import MemoryStorage, ensure_user


def make_settings(**overrides) -> Settings:
    values = dict(
        database_url=None,
        timezone="UTC",
        demo_username="demo",
        demo_password="password",
        max_statement_bytes=1024 * 1024,
        log_level="INFO",
    )
    values.update(overrides)
    return Settings(**values)


def make_sql_storage() -> SQLStorage:
    return SQLStorage.from_url("sqlite:///:memory:")


@pytest.fixture(params=["memory", "sql"])
def storage(request):
    if request.param == "memory":
        return MemoryStorage()
    return make_sql_storage()


@pytest.fixture
def user_id(storage) -> int:
    return ensure_user(storage, "demo", "password").id


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def client(settings):
    app = create_app(MemoryStorage(), settings)
    with TestClient(app) as test_client:
        yield test_client
