from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from splitpay import db
from splitpay.config import AppInfo, DirectPixConfig, MarketplaceConfig, Settings, get_settings
from splitpay.core.logging import get_logger, setup_logging
import splitpay.models  # registers the tables
from splitpay.routers import get_api_router
from splitpay.utils.errors import ConfigurationError, SplitPayError, error_response

logger = get_logger(__name__)
ALLOWED_CREATE_ENV = {"dev", "local", "test"}


def _configure_middlewares(fastapi_app: FastAPI) -> None:
    runtime_settings = get_settings()
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=runtime_settings.CORS_ALLOW_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if runtime_settings.PROMETHEUS_ENABLED:
        from starlette_exporter import PrometheusMiddleware, handle_metrics

        fastapi_app.add_middleware(PrometheusMiddleware)
        fastapi_app.add_route("/metrics", handle_metrics)

    if runtime_settings.SENTRY_DSN:
        import sentry_sdk

        sentry_sdk.init(dsn=runtime_settings.SENTRY_DSN, traces_sample_rate=0.2)


def _report_gateway_configuration(settings: Settings) -> None:
    """Log which gateways can run; a gateway missing secrets stays disabled."""

    try:
        MarketplaceConfig.from_settings(settings).require_oauth_client()
        logger.info("Marketplace gateway configured", extra={"api_url": settings.MP_API_URL})
    except ConfigurationError as exc:
        logger.warning("Marketplace gateway disabled", extra={"reason": exc.message})
    if not settings.MP_ACCESS_TOKEN:
        logger.warning("MP_ACCESS_TOKEN unset; marketplace webhooks cannot re-fetch payments")

    try:
        pix = DirectPixConfig.from_settings(settings)
        logger.info("Direct PIX gateway configured", extra={"api_url": pix.api_url, "sandbox": pix.sandbox})
    except ConfigurationError as exc:
        logger.warning("Direct PIX gateway disabled", extra={"reason": exc.message})

    env_lower = settings.app_env.lower()
    if env_lower != "dev" and settings.SECRET_KEY == "change-me":
        logger.error("SECRET_KEY is the default value; stored gateway tokens are not protected")
    webhook_secrets = {
        "MP_WEBHOOK_SECRET": settings.MP_WEBHOOK_SECRET,
        "EFI_WEBHOOK_SECRET": settings.EFI_WEBHOOK_SECRET,
    }
    for name, secret in webhook_secrets.items():
        if not secret:
            logger.warning(
                "%s unset; webhook deliveries will not be authenticated", name, extra={"env": settings.app_env}
            )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    logger.info("Application startup", extra={"env": settings.app_env})
    _report_gateway_configuration(settings)

    db.init_engine()
    env_lower = settings.app_env.lower()
    if settings.ALLOW_DB_CREATE_ALL and env_lower in ALLOWED_CREATE_ENV:
        logger.warning(
            "Running Base.metadata.create_all() because APP_ENV=%s and ALLOW_DB_CREATE_ALL=True",
            settings.app_env,
        )
        db.create_all()
    else:
        logger.info(
            "Skipping create_all(); use Alembic migrations. APP_ENV=%s, ALLOW_DB_CREATE_ALL=%s",
            settings.app_env,
            settings.ALLOW_DB_CREATE_ALL,
        )
    try:
        yield
    finally:
        db.close_engine()
        logger.info("Application shutdown", extra={"env": settings.app_env})


app_info = AppInfo()

app = FastAPI(title=app_info.name, version=app_info.version, lifespan=lifespan)

_configure_middlewares(app)
app.include_router(get_api_router())


@app.exception_handler(SplitPayError)
async def splitpay_exception_handler(request: Request, exc: SplitPayError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "Request failed",
        extra={"path": request.url.path, "code": exc.code, "error": exc.message},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    payload = error_response(
        "VALIDATION_ERROR",
        "Request payload is invalid.",
        {"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(status_code=422, content=payload)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", exc_info=exc)
    payload = error_response("INTERNAL_SERVER_ERROR", "An unexpected error occurred.")
    return JSONResponse(status_code=500, content=payload)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        content: dict[str, Any] = detail
    else:
        content = error_response("HTTP_ERROR", str(detail))
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


__all__ = ["app"]
