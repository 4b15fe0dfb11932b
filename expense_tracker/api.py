"""
HTTP API for Expense Tracker

A thin FastAPI adapter over the orchestrator and the expense writer.
Request bodies are validated and normalized by the models in
expense_tracker.models.requests; every business rule lives in the core.

Errors always leave as:

    {"error": {"message": str, "details": object | null}}

DomainError kinds map to their status codes, validation failures to 400,
anything unexpected to 500.

Run with:
    uvicorn expense_tracker.api:create_app --factory
"""

from contextlib import asynccontextmanager
from typing import Any, Optional
from uuid import UUID

import structlog
import uvicorn
from fastapi import Depends, FastAPI, Header, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from expense_tracker import __version__
from expense_tracker.audit import configure_logging, create_correlation_id
from expense_tracker.config import get_settings
from expense_tracker.errors import ConfigurationError, DomainError
from expense_tracker.ledger import IdempotentExpenseWriter
from expense_tracker.models.account import Account
from expense_tracker.models.expense import ExpenseListQuery
from expense_tracker.models.requests import (
    CreateExpenseBody,
    GoogleLoginBody,
    PasswordLoginBody,
    RequestPasscodeBody,
    VerifyPasscodeBody,
)
from expense_tracker.orchestrator import AuthenticationFlow, create_app_components


logger = structlog.get_logger(__name__)

MAX_IDEMPOTENCY_KEY_LENGTH = 255

bearer_scheme = HTTPBearer(auto_error=False)


# =============================================================================
# ERROR BODIES
# =============================================================================

def error_body(message: str, details: Optional[Any] = None) -> dict:
    return {"error": {"message": message, "details": details}}


def _describe_errors(errors: list[dict]) -> tuple[str, list[dict]]:
    """First error as the headline, all of them as details."""
    described = []
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path", "header")]
        field = ".".join(loc) or None
        if error.get("type") == "missing" and field:
            message = f"{field} is required"
        else:
            message = str(error.get("msg", "Invalid request"))
            if message.startswith("Value error, "):
                message = message[len("Value error, "):]
        described.append({"field": field, "message": message})
    headline = described[0]["message"] if described else "Invalid request"
    return headline, described


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_auth_flow(request: Request) -> AuthenticationFlow:
    return request.app.state.auth_flow


def get_expense_writer(request: Request) -> IdempotentExpenseWriter:
    return request.app.state.expense_writer


async def get_current_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    auth_flow: AuthenticationFlow = Depends(get_auth_flow),
) -> Account:
    if credentials is None or not credentials.credentials:
        raise DomainError.unauthorized("Missing bearer token")
    return await auth_flow.authenticate(credentials.credentials)


def get_idempotency_key(
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
) -> str:
    key = (idempotency_key or "").strip()
    if not key:
        raise DomainError.bad_request("Idempotency-Key header is required")
    if len(key) > MAX_IDEMPOTENCY_KEY_LENGTH:
        raise DomainError.bad_request(
            f"Idempotency-Key must be at most {MAX_IDEMPOTENCY_KEY_LENGTH} characters"
        )
    return key


def get_list_query(
    category: Optional[str] = None,
    sort: Optional[str] = None,
    date: Optional[str] = None,
    month: Optional[str] = None,
    year: Optional[str] = None,
    page: Optional[str] = None,
    page_size: Optional[str] = None,
) -> ExpenseListQuery:
    raw = {
        "category": category,
        "sort": sort,
        "expense_date": date,
        "month": month,
        "year": year,
        "page": page,
        "page_size": page_size,
    }
    try:
        return ExpenseListQuery(**{k: v for k, v in raw.items() if v not in (None, "")})
    except ValidationError as e:
        message, details = _describe_errors(e.errors())
        raise DomainError.bad_request(message, errors=details)


# =============================================================================
# APPLICATION
# =============================================================================

def create_app(components: Optional[tuple] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        components: (auth_flow, expense_writer, database) as returned by
                    create_app_components(). Built from settings if None.
    """
    settings = get_settings()
    configure_logging(settings.app.debug_mode)

    auth_flow, expense_writer, database = components or create_app_components()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if database is not None:
            await database.create_schema()
        logger.info("api_started", environment=settings.app.app_environment)
        yield
        if database is not None:
            await database.dispose()

    app = FastAPI(title="Expense Tracker API", version=__version__, lifespan=lifespan)
    app.state.auth_flow = auth_flow
    app.state.expense_writer = expense_writer

    _register_error_handlers(app)
    _register_routes(app)
    return app


def _register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(DomainError)
    async def handle_domain_error(request: Request, exc: DomainError):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.message, exc.details),
        )

    @app.exception_handler(ConfigurationError)
    async def handle_configuration_error(request: Request, exc: ConfigurationError):
        logger.error("configuration_error", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body(str(exc)),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        message, details = _describe_errors(exc.errors())
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body(message, {"errors": details}),
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        correlation_id = create_correlation_id()
        logger.exception(
            "unhandled_error",
            path=request.url.path,
            correlation_id=str(correlation_id),
        )
        audit_logger = request.app.state.auth_flow.audit_logger
        if audit_logger:
            await audit_logger.log_error(
                error_type=type(exc).__name__,
                error_message=str(exc),
                details={"path": request.url.path, "method": request.method},
                correlation_id=correlation_id,
            )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body("Internal server error", {"correlation_id": str(correlation_id)}),
        )


def _register_routes(app: FastAPI) -> None:

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    # =========================================================================
    # AUTH
    # =========================================================================

    @app.post("/auth/request-otp")
    async def request_otp(
        body: RequestPasscodeBody,
        auth_flow: AuthenticationFlow = Depends(get_auth_flow),
    ):
        result = await auth_flow.request_passcode(body.email, body.intent)
        return result.model_dump()

    @app.post("/auth/verify-otp")
    async def verify_otp(
        body: VerifyPasscodeBody,
        auth_flow: AuthenticationFlow = Depends(get_auth_flow),
    ):
        session = await auth_flow.verify_passcode_and_set_password(
            email=body.email,
            intent=body.intent,
            code=body.otp,
            new_password=body.password,
        )
        return session.to_response()

    @app.post("/auth/login")
    async def login(
        body: PasswordLoginBody,
        auth_flow: AuthenticationFlow = Depends(get_auth_flow),
    ):
        session = await auth_flow.login(body.email, body.password)
        return session.to_response()

    @app.post("/auth/google")
    async def login_google(
        body: GoogleLoginBody,
        auth_flow: AuthenticationFlow = Depends(get_auth_flow),
    ):
        session = await auth_flow.login_federated(body.id_token)
        return session.to_response()

    # =========================================================================
    # EXPENSES
    # =========================================================================

    @app.post("/expenses")
    async def create_expense(
        body: CreateExpenseBody,
        account: Account = Depends(get_current_account),
        idempotency_key: str = Depends(get_idempotency_key),
        writer: IdempotentExpenseWriter = Depends(get_expense_writer),
    ):
        result = await writer.create(account.id, body.to_input(), idempotency_key)
        return JSONResponse(
            status_code=status.HTTP_200_OK if result.replayed else status.HTTP_201_CREATED,
            content={"data": result.expense.to_response(), "replayed": result.replayed},
        )

    @app.get("/expenses")
    async def list_expenses(
        account: Account = Depends(get_current_account),
        query: ExpenseListQuery = Depends(get_list_query),
        writer: IdempotentExpenseWriter = Depends(get_expense_writer),
    ):
        page = await writer.list(account.id, query)
        return page.to_response()

    @app.delete("/expenses/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_expense(
        expense_id: UUID,
        account: Account = Depends(get_current_account),
        writer: IdempotentExpenseWriter = Depends(get_expense_writer),
    ):
        if not await writer.delete(account.id, expense_id):
            raise DomainError.not_found("Expense not found")
        return Response(status_code=status.HTTP_204_NO_CONTENT)


def main() -> None:
    """Console entry point: serve the API with uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "expense_tracker.api:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=settings.app.debug_mode,
    )


if __name__ == "__main__":
    main()
