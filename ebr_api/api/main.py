from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from fastapi import APIRouter, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ebr_api.core.errors import EBRError
from ebr_api.core.logging import configure_logging, correlation_id_var, tenant_id_var, user_id_var
from ebr_api.core.settings import get_app_settings
from ebr_api.db.run_migrations import main as run_alembic
from ebr_api.db.seed import seed_all
from ebr_api.schemas.common import ErrorResponse, MessageResponse
from ebr_api.services.equipment import SimulatorState

from ebr_api.api.routes.audit import router as audit_router
from ebr_api.api.routes.auth import router as auth_router
from ebr_api.api.routes.batches import router as batches_router
from ebr_api.api.routes.integrations import router as integrations_router
from ebr_api.api.routes.recipes import router as recipes_router
from ebr_api.api.routes.tenant import router as tenant_router
from ebr_api.api.routes.users import router as users_router

settings = get_app_settings()

# Configure structured logging once at import
configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "Health", "description": "Liveness probe."},
    {"name": "Auth", "description": "Login, logout and current session."},
    {"name": "Users", "description": "User administration (admin only)."},
    {"name": "Recipes", "description": "Recipe templates, JSON and BatchML interchange."},
    {"name": "Batches", "description": "Batch lifecycle, step execution, e-signatures and batch records."},
    {"name": "Audit", "description": "Tenant audit trail and exports (CSV/Excel)."},
    {"name": "Integrations", "description": "Simulated OPC-UA equipment feed."},
    {"name": "Tenant", "description": "Tenant branding and compliance settings."},
]

app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    openapi_tags=openapi_tags,
)
app.state.simulator = SimulatorState()

# CORS - avoid wildcard with credentials
cors_allow_credentials = settings.CORS_ALLOW_CREDENTIALS
if settings.CORS_ORIGINS == ["*"] and cors_allow_credentials:
    logger.warning("CORS_ALLOW_CREDENTIALS=True with '*' origins is not permitted; disabling credentials.")
    cors_allow_credentials = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=cors_allow_credentials,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """
    Assign a correlation id to the request for logging and error responses.
    Adds 'X-Correlation-ID' to every response. Tenant and user ids are set later, once
    the session token has been verified.
    """
    corr = request.headers.get("X-Correlation-ID") or request.headers.get("X-Request-ID") or str(uuid4())
    token_corr = correlation_id_var.set(corr)
    token_tenant = tenant_id_var.set(None)
    token_user = user_id_var.set(None)
    request.state.correlation_id = corr

    logger.info("Incoming request %s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
    finally:
        correlation_id_var.reset(token_corr)
        tenant_id_var.reset(token_tenant)
        user_id_var.reset(token_user)

    response.headers["X-Correlation-ID"] = corr
    return response


_HTTP_CODES = {
    400: "VALIDATION_ERROR",
    401: "AUTH_REQUIRED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
}


def _build_error_response(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: Any | None = None,
) -> JSONResponse:
    """Build a standardized ErrorResponse JSONResponse."""
    err = ErrorResponse(
        error=message,
        code=code,
        details=details,
        correlation_id=getattr(request.state, "correlation_id", None),
    )
    return JSONResponse(status_code=status_code, content=jsonable_encoder(err, exclude_none=True))


@app.exception_handler(EBRError)
async def domain_exception_handler(request: Request, exc: EBRError):
    """Render domain errors with their own status and code."""
    if exc.status_code >= 500:
        logger.error("Domain error %s: %s", exc.code, exc.message)
    return _build_error_response(request, exc.status_code, exc.code, exc.message, exc.details)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """
    Global handler for HTTP errors raised by the framework (unknown routes, wrong methods).
    """
    detail = exc.detail if isinstance(exc.detail, str) else "HTTP Error"
    if exc.status_code == 404 and detail == "Not Found":
        detail = "Route not found"
    return _build_error_response(
        request=request,
        status_code=exc.status_code,
        code=_HTTP_CODES.get(exc.status_code, "HTTP_ERROR"),
        message=str(detail),
        details=None if isinstance(exc.detail, str) else exc.detail,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Request bodies and parameters that fail schema validation are client errors (400).
    """
    errors = [{k: v for k, v in e.items() if k not in ("ctx", "url")} for e in exc.errors()]
    return _build_error_response(
        request=request,
        status_code=400,
        code="VALIDATION_ERROR",
        message="Request validation failed",
        details=errors,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """
    Catch-all handler to avoid leaking stack traces and to return a structured error.
    """
    logger.exception("Unhandled error processing request")
    return _build_error_response(
        request=request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )


@app.on_event("startup")
async def on_startup() -> None:
    """
    Run migrations and optional seeding on service startup.

    This ensures the database schema is up to date. Seeding is opt-in via settings.
    """
    if settings.RUN_MIGRATIONS_ON_STARTUP:
        try:
            logger.info("Running Alembic migrations: upgrade head")
            # env.py drives its own event loop
            await run_in_threadpool(run_alembic, ["upgrade", "head"])
            logger.info("Migrations completed.")
        except Exception as exc:
            logger.exception("Migration step failed: %s", exc)

    if settings.AUTO_SEED:
        try:
            logger.info("Running database seeding...")
            await seed_all()
            logger.info("Seeding completed.")
        except Exception as exc:
            logger.exception("Seeding step failed: %s", exc)


# Build API v1 router and include sub-routers
api_v1 = APIRouter(prefix="/api/v1")


# PUBLIC_INTERFACE
@api_v1.get(
    "/health",
    response_model=MessageResponse,
    summary="Health Check",
    tags=["Health"],
)
def health_check() -> MessageResponse:
    """
    Basic liveness health check endpoint.

    Returns:
        MessageResponse: Simple confirmation that the service is running.
    """
    return MessageResponse(message="Healthy")


api_v1.include_router(auth_router)
api_v1.include_router(users_router)
api_v1.include_router(recipes_router)
api_v1.include_router(batches_router)
api_v1.include_router(audit_router)
api_v1.include_router(integrations_router)
api_v1.include_router(tenant_router)

app.include_router(api_v1)
