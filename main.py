import logging
import time
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any, Iterator, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, get_settings
from database import Database
from errors import ApiError, InternalError, ValidationError
from models import (
    Transaction,
    TransactionCategory,
    TransactionStatus,
    TransactionType,
    User,
    UserRole,
)
from queries import PageRequest, SortSpec, TransactionFilters
from schemas import (
    ExportIn,
    LoginIn,
    ProfileUpdateIn,
    RegisterIn,
    TransactionIn,
    TransactionUpdateIn,
    coerce_date,
    validate,
)
from security import authenticate, authorize, issue_token
from services import CSVService, StatsService, TransactionService, UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.store.session()
    try:
        yield db
    finally:
        db.close()


def current_user(request: Request, db: Session = Depends(get_db)) -> User:
    return authenticate(
        db, request.app.state.settings, request.headers.get("Authorization")
    )


def require_roles(*roles: UserRole):
    def check_roles(user: User = Depends(current_user)) -> User:
        return authorize(user, roles)

    return check_roles


def parse_payload(model, payload: Any):
    result = validate(model, payload)
    if not result.ok:
        details = [error.to_dict() for error in result.errors]
        message = "; ".join(f"{d['field']}: {d['message']}" for d in details)
        raise ValidationError(message, details=details)
    return result.value


def _enum_param(enum_cls, value: Optional[str], name: str):
    if not value:
        return None
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(
            f"Invalid {name} '{value}'",
            details=[{"field": name, "message": f"Must be one of: {allowed}"}],
        ) from exc


def _date_param(value: Optional[str], name: str) -> Optional[date]:
    if not value:
        return None
    parsed = coerce_date(value)
    if isinstance(parsed, date):
        return parsed
    try:
        return date.fromisoformat(parsed)
    except ValueError as exc:
        raise ValidationError(
            f"Invalid {name} '{value}'",
            details=[{"field": name, "message": "Expected an ISO date (YYYY-MM-DD)"}],
        ) from exc


def _int_param(value: Optional[str], name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ValidationError(
            f"Invalid {name} '{value}'",
            details=[{"field": name, "message": "Expected an integer"}],
        ) from exc


def filters_from_request(request: Request) -> TransactionFilters:
    params = request.query_params
    return TransactionFilters(
        search=params.get("search") or None,
        type=_enum_param(TransactionType, params.get("type"), "type"),
        category=_enum_param(TransactionCategory, params.get("category"), "category"),
        status=_enum_param(TransactionStatus, params.get("status"), "status"),
        start_date=_date_param(params.get("startDate"), "startDate"),
        end_date=_date_param(params.get("endDate"), "endDate"),
    )


def user_payload(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role.value,
        "avatar": user.avatar,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }


def transaction_payload(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "user": {
            "id": txn.user.id,
            "name": txn.user.name,
            "email": txn.user.email,
            "avatar": txn.user.avatar,
        },
        "name": txn.name,
        "email": txn.email,
        "avatar": txn.avatar,
        "date": txn.date.isoformat(),
        "amount": txn.amount,
        "type": txn.type.value,
        "category": txn.category.value,
        "status": txn.status.value,
        "description": txn.description,
        "reference": txn.reference,
        "createdAt": txn.created_at.isoformat() if txn.created_at else None,
        "updatedAt": txn.updated_at.isoformat() if txn.updated_at else None,
    }


@router.get("/health")
def health():
    return {
        "status": "OK",
        "message": "Financial Dashboard API is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/auth/register", status_code=201)
def register(
    request: Request,
    payload: Optional[dict[str, Any]] = Body(default=None),
    db: Session = Depends(get_db),
):
    data = parse_payload(RegisterIn, payload)
    user = UserService(db).register(data)
    logger.info(f"user_registered: user_id={user.id} role={user.role.value}")
    return {
        "message": "User registered successfully",
        "token": issue_token(request.app.state.settings, user.id),
        "user": user_payload(user),
    }


@router.post("/auth/login")
def login(
    request: Request,
    payload: Optional[dict[str, Any]] = Body(default=None),
    db: Session = Depends(get_db),
):
    data = parse_payload(LoginIn, payload)
    user = UserService(db).login(data.email, data.password)
    logger.info(f"user_login: user_id={user.id}")
    return {
        "message": "Login successful",
        "token": issue_token(request.app.state.settings, user.id),
        "user": user_payload(user),
    }


@router.get("/auth/profile")
@router.get("/users/profile")
def get_profile(user: User = Depends(current_user)):
    return {"user": user_payload(user)}


@router.put("/auth/profile")
@router.put("/users/profile")
def update_profile(
    payload: Optional[dict[str, Any]] = Body(default=None),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    data = parse_payload(ProfileUpdateIn, payload)
    updated = UserService(db).update_profile(user.id, data)
    return {"message": "Profile updated successfully", "user": user_payload(updated)}


@router.get("/users")
def list_users(
    _admin: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
):
    return {"users": [user_payload(u) for u in UserService(db).list_all()]}


@router.get("/transactions/stats")
def transaction_stats(
    user: User = Depends(current_user), db: Session = Depends(get_db)
):
    stats = StatsService(db, user.id).dashboard()
    stats["recentTransactions"] = [
        transaction_payload(txn) for txn in stats["recentTransactions"]
    ]
    return {"stats": stats}


@router.post("/transactions/export")
def export_transactions_endpoint(
    payload: Optional[dict[str, Any]] = Body(default=None),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    data = parse_payload(ExportIn, payload)
    filters = TransactionFilters(
        type=data.type,
        category=data.category,
        status=data.status,
        start_date=data.start_date,
        end_date=data.end_date,
    )
    csv_text = CSVService(db, user.id).export(filters, data.export_columns)
    filename = f"transactions_{date.today().isoformat()}.csv"
    logger.info(f"transactions_export: user_id={user.id} columns={len(data.export_columns)}")
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/transactions")
def list_transactions(
    request: Request,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    params = request.query_params
    filters = filters_from_request(request)
    sort = SortSpec.parse(params.get("sortBy"), params.get("sortOrder"))
    page = PageRequest.clamp(
        _int_param(params.get("page"), "page"),
        _int_param(params.get("limit"), "limit"),
    )
    result = TransactionService(db, user.id).list(filters, sort, page)
    return {
        "transactions": [transaction_payload(txn) for txn in result.items],
        "pagination": {
            "currentPage": result.page,
            "totalPages": result.total_pages,
            "totalCount": result.total_count,
            "hasNextPage": result.has_next_page,
            "hasPrevPage": result.has_prev_page,
        },
    }


@router.get("/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    txn = TransactionService(db, user.id).get(transaction_id)
    return {"transaction": transaction_payload(txn)}


@router.post("/transactions", status_code=201)
def create_transaction(
    payload: Optional[dict[str, Any]] = Body(default=None),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    data = parse_payload(TransactionIn, payload)
    txn = TransactionService(db, user.id).create(data)
    return {
        "message": "Transaction created successfully",
        "transaction": transaction_payload(txn),
    }


@router.put("/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    payload: Optional[dict[str, Any]] = Body(default=None),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    data = parse_payload(TransactionUpdateIn, payload)
    txn = TransactionService(db, user.id).update(transaction_id, data)
    return {
        "message": "Transaction updated successfully",
        "transaction": transaction_payload(txn),
    }


@router.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    TransactionService(db, user.id).delete(transaction_id)
    return {"message": "Transaction deleted successfully"}


def _error_response(exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code == 401:
        logger.info(f"auth_failed: path={request.url.path} reason={exc.error}")
    return _error_response(exc)


def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = []
    for item in exc.errors():
        loc = [str(part) for part in item.get("loc", ()) if part not in ("body", "query", "path")]
        details.append(
            {"field": ".".join(loc) or "body", "message": str(item.get("msg", "Invalid value"))}
        )
    message = "; ".join(f"{d['field']}: {d['message']}" for d in details)
    return _error_response(ValidationError(message or None, details=details))


def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        return JSONResponse(
            status_code=404,
            content={
                "error": "not_found",
                "message": f"The route {request.url.path} does not exist",
            },
        )
    if exc.status_code == 405:
        return JSONResponse(
            status_code=405,
            content={
                "error": "method_not_allowed",
                "message": f"{request.method} is not allowed on {request.url.path}",
            },
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": "http_error", "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = Database(settings.database_url).open()
        if settings.auto_create_schema:
            store.create_schema()
        app.state.store = store
        logger.info(f"startup: environment={settings.environment}")
        yield
        store.close()
        logger.info("shutdown: store closed")

    app = FastAPI(title="Financial Dashboard API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.exception(
                f"unhandled_error: method={request.method} path={request.url.path}"
            )
            message = str(exc) if settings.is_development else None
            response = _error_response(InternalError(message or "Internal server error"))
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"request: method={request.method} path={request.url.path} "
            f"status={response.status_code} duration_ms={elapsed_ms:.1f}"
        )
        return response

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.include_router(router)
    return app


app = create_app()


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=5000, reload=False)


if __name__ == "__main__":
    main()
