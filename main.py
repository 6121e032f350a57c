import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from aggregation import rebuild_summaries, recompute_month, recompute_months
from config import Settings, get_settings
from csv_utils import export_filename, export_transactions
from importer import StatementImporter, StatementImportError, StatementTooLarge
from models import CATEGORIES
from periods import parse_year_month
from schemas import (
    MonthDetailOut,
    MonthlySummaryOut,
    RebuildOut,
    StatementImportOut,
    StatementUploadIn,
    TransactionIn,
    TransactionOut,
    TransactionPatch,
)
from storage import Storage, build_storage, ensure_user

logger = logging.getLogger(__name__)

router = APIRouter()


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_user_id(request: Request) -> int:
    return request.app.state.user_id


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def month_from_path(year: str, month: str) -> tuple[int, int]:
    try:
        return parse_year_month(year, month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/transactions", response_model=list[TransactionOut])
def list_transactions(
    storage: Storage = Depends(get_storage), user_id: int = Depends(get_user_id)
):
    return storage.list_transactions(user_id)


@router.get("/transactions/month/{year}/{month}", response_model=list[TransactionOut])
def list_month_transactions(
    year: str,
    month: str,
    storage: Storage = Depends(get_storage),
    user_id: int = Depends(get_user_id),
):
    y, m = month_from_path(year, month)
    return storage.list_transactions_for_month(user_id, y, m)


@router.post("/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    data: TransactionIn,
    storage: Storage = Depends(get_storage),
    user_id: int = Depends(get_user_id),
):
    txn = storage.create_transaction(user_id, data)
    recompute_month(storage, user_id, txn.date.year, txn.date.month)
    return txn


@router.put("/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int,
    data: TransactionPatch,
    storage: Storage = Depends(get_storage),
):
    existing = storage.get_transaction(transaction_id)
    if existing is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    updated = storage.update_transaction(transaction_id, data)
    if updated is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    recompute_months(
        storage,
        existing.user_id,
        {
            (existing.date.year, existing.date.month),
            (updated.date.year, updated.date.month),
        },
    )
    return updated


@router.delete("/transactions/{transaction_id}", status_code=204)
def delete_transaction(transaction_id: int, storage: Storage = Depends(get_storage)):
    existing = storage.get_transaction(transaction_id)
    if existing is None or not storage.delete_transaction(transaction_id):
        raise HTTPException(status_code=404, detail="Transaction not found")
    recompute_month(storage, existing.user_id, existing.date.year, existing.date.month)
    return Response(status_code=204)


@router.get("/summaries", response_model=list[MonthlySummaryOut])
def list_summaries(
    storage: Storage = Depends(get_storage), user_id: int = Depends(get_user_id)
):
    return storage.list_summaries(user_id)


@router.post("/summaries/rebuild", response_model=RebuildOut)
def rebuild_all_summaries(
    storage: Storage = Depends(get_storage), user_id: int = Depends(get_user_id)
):
    return RebuildOut(rebuilt=rebuild_summaries(storage, user_id))


@router.get("/summaries/{year}/{month}", response_model=MonthDetailOut)
def month_summary(
    year: str,
    month: str,
    storage: Storage = Depends(get_storage),
    user_id: int = Depends(get_user_id),
):
    y, m = month_from_path(year, month)
    summary = storage.get_summary(user_id, y, m)
    if summary is None:
        raise HTTPException(status_code=404, detail="Summary not found for this month")
    return MonthDetailOut(summary=summary, breakdowns=storage.list_breakdowns(summary.id))


@router.post("/upload-statement", response_model=StatementImportOut, status_code=201)
def upload_statement(
    data: StatementUploadIn,
    storage: Storage = Depends(get_storage),
    user_id: int = Depends(get_user_id),
    settings: Settings = Depends(get_app_settings),
):
    importer = StatementImporter(storage, user_id, settings)
    try:
        result = importer.import_base64(data.pdf_content)
    except StatementTooLarge as exc:
        raise HTTPException(status_code=413, detail=str(exc)) from exc
    except StatementImportError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return StatementImportOut(
        message=result.message,
        transactions=result.transactions,
        summary=result.summary,
    )


@router.get("/categories", response_model=list[str])
def list_categories():
    return CATEGORIES


@router.get("/export/{year}/{month}")
def export_month(
    year: str,
    month: str,
    storage: Storage = Depends(get_storage),
    user_id: int = Depends(get_user_id),
):
    y, m = month_from_path(year, month)
    transactions = storage.list_transactions_for_month(user_id, y, m)
    if not transactions:
        raise HTTPException(status_code=404, detail="No transactions found for this month")
    return Response(
        content=export_transactions(transactions),
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="{export_filename(y, m)}"'
        },
    )


async def http_error_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder(
            {"message": "Invalid request data", "errors": exc.errors()}
        ),
    )


async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(
        f"storage_error: method={request.method} path={request.url.path}",
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content={"message": "Internal storage error"})


def create_app(
    storage: Optional[Storage] = None, settings: Optional[Settings] = None
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)
    storage = storage if storage is not None else build_storage(settings)
    user = ensure_user(storage, settings.demo_username, settings.demo_password)

    app = FastAPI(title="Monthly Ledger")
    app.state.settings = settings
    app.state.storage = storage
    app.state.user_id = user.id
    app.include_router(router)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(SQLAlchemyError, storage_error_handler)
    return app


def main():
    import uvicorn

    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
