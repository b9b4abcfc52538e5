"""Application configuration settings."""
from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from splitpay.utils.errors import ConfigurationError

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "staging" | "prod"
ENV = os.getenv("SPLITPAY_ENV", "dev").lower()

MP_DEFAULT_API_URL = "https://api.mercadopago.com"
EFI_PRODUCTION_URL = "https://pix.api.efipay.com.br"
EFI_SANDBOX_URL = "https://pix-h.api.efipay.com.br"

_SECRET_FIELDS = (
    "MP_APP_ID",
    "MP_CLIENT_SECRET",
    "MP_ACCESS_TOKEN",
    "MP_WEBHOOK_SECRET",
    "EFI_CLIENT_ID",
    "EFI_CLIENT_SECRET",
    "EFI_CERTIFICATE_BASE64",
    "EFI_PIX_KEY",
    "EFI_ACCOUNT_ID",
    "EFI_WEBHOOK_SECRET",
    "SENTRY_DSN",
)


class Settings(BaseSettings):
    """Environment configuration for the splitpay backend."""

    app_env: str = ENV
    database_url: str = "sqlite:///splitpay.db"
    SECRET_KEY: str = "change-me"
    LOG_LEVEL: str = "INFO"
    CORS_ALLOW_ORIGINS: list[str] = ["*"]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = False
    ALLOW_DB_CREATE_ALL: bool = False
    HTTP_TIMEOUT_SECONDS: float = 30.0
    DEFAULT_FEE_PERCENTAGE: Decimal = Decimal("10")

    # --- Marketplace gateway (Mercado Pago) ------------------------------
    MP_APP_ID: str | None = None
    MP_CLIENT_SECRET: str | None = None
    MP_ACCESS_TOKEN: str | None = None
    MP_WEBHOOK_SECRET: str | None = None
    MP_API_URL: str = MP_DEFAULT_API_URL
    PUBLIC_API_URL: str = "http://localhost:8000"
    CHECKOUT_SUCCESS_URL: str = "http://localhost:3000/success"
    CHECKOUT_FAILURE_URL: str = "http://localhost:3000/failure"
    CHECKOUT_PENDING_URL: str = "http://localhost:3000/pending"

    # --- Direct PIX gateway (Efí) ----------------------------------------
    EFI_CLIENT_ID: str | None = None
    EFI_CLIENT_SECRET: str | None = None
    EFI_CERTIFICATE_BASE64: str | None = None
    EFI_CERTIFICATE_PASSWORD: str = ""
    EFI_PIX_KEY: str | None = None
    EFI_ACCOUNT_ID: str | None = None
    EFI_SANDBOX: bool = False
    EFI_WEBHOOK_SECRET: str | None = None
    EFI_CHARGE_EXPIRATION_SECONDS: int = 3600

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator(*_SECRET_FIELDS)
    @classmethod
    def _strip_empty_secret(cls, value: str | None) -> str | None:
        """Normalise empty secrets to ``None`` for easier validation."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @property
    def efi_api_url(self) -> str:
        return EFI_SANDBOX_URL if self.EFI_SANDBOX else EFI_PRODUCTION_URL

    @property
    def notification_url(self) -> str:
        return f"{self.PUBLIC_API_URL.rstrip('/')}/mp-webhook"


class AppInfo(BaseModel):
    name: str = "splitpay-backend"
    version: str = "0.1.0"


@dataclass(frozen=True)
class MarketplaceConfig:
    """Immutable configuration handed to the marketplace gateway adapter."""

    api_url: str
    client_id: str | None
    client_secret: str | None
    platform_access_token: str | None
    notification_url: str
    success_url: str
    failure_url: str
    pending_url: str
    timeout: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "MarketplaceConfig":
        return cls(
            api_url=settings.MP_API_URL.rstrip("/"),
            client_id=settings.MP_APP_ID,
            client_secret=settings.MP_CLIENT_SECRET,
            platform_access_token=settings.MP_ACCESS_TOKEN,
            notification_url=settings.notification_url,
            success_url=settings.CHECKOUT_SUCCESS_URL,
            failure_url=settings.CHECKOUT_FAILURE_URL,
            pending_url=settings.CHECKOUT_PENDING_URL,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )

    def require_oauth_client(self) -> tuple[str, str]:
        if not self.client_id or not self.client_secret:
            raise ConfigurationError("Marketplace OAuth is not configured; set MP_APP_ID and MP_CLIENT_SECRET.")
        return self.client_id, self.client_secret

    def require_platform_token(self) -> str:
        if not self.platform_access_token:
            raise ConfigurationError("Marketplace platform token is missing; set MP_ACCESS_TOKEN.")
        return self.platform_access_token


@dataclass(frozen=True)
class DirectPixConfig:
    """Immutable configuration handed to the direct PIX gateway adapter."""

    api_url: str
    client_id: str
    client_secret: str
    certificate_base64: str
    certificate_password: str
    pix_key: str
    account_id: str | None
    sandbox: bool
    charge_expiration_seconds: int = 3600
    timeout: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "DirectPixConfig":
        missing = [
            name
            for name in ("EFI_CLIENT_ID", "EFI_CLIENT_SECRET", "EFI_CERTIFICATE_BASE64", "EFI_PIX_KEY")
            if not getattr(settings, name)
        ]
        if missing:
            raise ConfigurationError(f"Direct PIX gateway is not configured; missing {', '.join(missing)}.")
        return cls(
            api_url=settings.efi_api_url,
            client_id=settings.EFI_CLIENT_ID,
            client_secret=settings.EFI_CLIENT_SECRET,
            certificate_base64=settings.EFI_CERTIFICATE_BASE64,
            certificate_password=settings.EFI_CERTIFICATE_PASSWORD or "",
            pix_key=settings.EFI_PIX_KEY,
            account_id=settings.EFI_ACCOUNT_ID,
            sandbox=settings.EFI_SANDBOX,
            charge_expiration_seconds=settings.EFI_CHARGE_EXPIRATION_SECONDS,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return settings


__all__ = [
    "ENV",
    "Settings",
    "AppInfo",
    "MarketplaceConfig",
    "DirectPixConfig",
    "settings",
    "get_settings",
]
