import logging
import os

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from billsync.api.v1.provider_accounts import router as provider_accounts_router
from billsync.api.v1.sync import router as sync_router
from billsync.core.config import get_settings
from billsync.schemas.billing import ErrorCode
from billsync.services.recurring_jobs import start_daily_sync_worker

settings = get_settings()
_daily_sync_task = None

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Bill Sync API",
    version="1.0.0",
    docs_url="/docs" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.openapi_enabled else None,
)


def _is_production_environment() -> bool:
    env = os.getenv("ENVIRONMENT") or os.getenv("ENV") or settings.environment
    return env.strip().lower() in {"production", "prod"}


@app.on_event("startup")
async def _startup_jobs():
    global _daily_sync_task
    errors = settings.validate_required_config()
    if errors:
        if _is_production_environment():
            raise RuntimeError(
                "Configuration validation failed in production environment: " + "; ".join(errors)
            )
        for error in errors:
            logger.warning("Configuration problem: %s", error)

    if _daily_sync_task is None and settings.enable_recurring_jobs:
        _daily_sync_task = start_daily_sync_worker()


@app.on_event("shutdown")
async def _shutdown_jobs():
    global _daily_sync_task
    if _daily_sync_task is not None:
        _daily_sync_task.cancel()
        _daily_sync_task = None


if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

app.include_router(sync_router, prefix="/api/v1", tags=["sync"])
app.include_router(provider_accounts_router, prefix="/api/v1", tags=["provider-accounts"])


@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Hide internal details for 5xx unless explicitly enabled.
    if exc.status_code >= 500 and not settings.expose_error_details:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": "Internal error", "error_code": ErrorCode.INTERNAL_ERROR.value},
        )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(RequestValidationError)
async def _validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors()), "error_code": ErrorCode.BAD_REQUEST.value},
    )


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception")
    detail = str(exc) if settings.expose_error_details else "Internal error"
    return JSONResponse(status_code=500, content={"detail": detail, "error_code": ErrorCode.INTERNAL_ERROR.value})


@app.get("/health")
async def health_check():
    return {"status": "ok"}
