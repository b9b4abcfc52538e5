"""Health check endpoint."""
from __future__ import annotations

import logging
from pathlib import Path

from alembic.config import Config
from alembic.script import ScriptDirectory
from fastapi import APIRouter
from sqlalchemy import text

from splitpay.config import Settings, get_settings
from splitpay.db import get_engine

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def _db_status() -> str:
    """Return 'ok' if the DB is reachable, 'error' otherwise."""

    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok"
    except Exception:  # noqa: BLE001
        logger.exception("DB health check failed")
        return "error"


def _expected_migration_head() -> str | None:
    try:
        script = ScriptDirectory.from_config(Config(str(ALEMBIC_INI)))
        return script.get_current_head()
    except Exception:  # noqa: BLE001
        logger.exception("Failed to load Alembic head revision")
        return None


def _migrations_status() -> str:
    expected_head = _expected_migration_head()
    try:
        with get_engine().connect() as conn:
            current = conn.execute(text("SELECT version_num FROM alembic_version")).scalar()
    except Exception:  # noqa: BLE001
        logger.exception("Migration check failed")
        return "unknown"
    if expected_head is None:
        return "unknown"
    return "up_to_date" if current == expected_head else "out_of_date"


def _gateway_status(settings: Settings) -> dict[str, dict[str, bool]]:
    return {
        "mercadopago": {
            "oauth_configured": bool(settings.MP_APP_ID and settings.MP_CLIENT_SECRET),
            "platform_token_configured": bool(settings.MP_ACCESS_TOKEN),
            "webhook_secret_configured": bool(settings.MP_WEBHOOK_SECRET),
        },
        "efi": {
            "credentials_configured": bool(settings.EFI_CLIENT_ID and settings.EFI_CLIENT_SECRET),
            "certificate_configured": bool(settings.EFI_CERTIFICATE_BASE64),
            "pix_key_configured": bool(settings.EFI_PIX_KEY),
            "webhook_secret_configured": bool(settings.EFI_WEBHOOK_SECRET),
            "sandbox": bool(settings.EFI_SANDBOX),
        },
    }


@router.get("", summary="Health check")
def healthcheck() -> dict[str, object]:
    settings = get_settings()
    db_status = _db_status()
    migrations_status = _migrations_status() if db_status == "ok" else "unknown"
    degraded = db_status != "ok" or migrations_status != "up_to_date"
    return {
        "status": "degraded" if degraded else "ok",
        "env": settings.app_env,
        "db_status": db_status,
        "migrations_status": migrations_status,
        "gateways": _gateway_status(settings),
    }
