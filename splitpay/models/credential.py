"""Gateway credential models, one row per producer per gateway."""
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from splitpay.utils.time import as_utc, utcnow

from .base import Base


class OAuthToken(Base):
    """Delegated marketplace token obtained through the OAuth code exchange.

    Token columns hold Fernet ciphertext, see ``splitpay.utils.crypto``.
    """

    __tablename__ = "oauth_tokens"

    producer_id: Mapped[int] = mapped_column(ForeignKey("producers.id"), nullable=False, unique=True)
    access_token_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    scope: Mapped[str | None] = mapped_column(String(255), nullable=True)
    mp_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_valid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    producer = relationship("Producer", back_populates="oauth_token")

    def is_expired(self, now: datetime | None = None) -> bool:
        expires_at = as_utc(self.expires_at)
        if expires_at is None:
            return False
        return expires_at <= (now or utcnow())


class EfiAccountConfig(Base):
    """Producer's receiving account at the direct PIX gateway."""

    __tablename__ = "efi_configs"

    producer_id: Mapped[int] = mapped_column(ForeignKey("producers.id"), nullable=False, unique=True)
    account_identifier: Mapped[str] = mapped_column(String(64), nullable=False)
    pix_key: Mapped[str | None] = mapped_column(String(140), nullable=True)
    pix_key_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    is_valid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    producer = relationship("Producer", back_populates="efi_config")
