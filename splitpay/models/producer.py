"""Producer (seller) model."""
import enum
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Enum as SqlEnum, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class ProducerStatus(str, enum.Enum):
    """Lifecycle of a seller account; producers are never hard-deleted."""

    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    INACTIVE = "inactive"


class DocumentType(str, enum.Enum):
    CPF = "CPF"
    CNPJ = "CNPJ"


class Producer(Base):
    """A seller account that receives the net share of each payment."""

    __tablename__ = "producers"
    __table_args__ = (
        CheckConstraint(
            "platform_fee_percentage >= 0 AND platform_fee_percentage <= 100",
            name="ck_producers_fee_percentage_range",
        ),
        Index("ix_producers_status", "status"),
    )

    business_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    document_type: Mapped[DocumentType | None] = mapped_column(SqlEnum(DocumentType), nullable=True)
    document_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    platform_fee_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("10"))
    status: Mapped[ProducerStatus] = mapped_column(
        SqlEnum(ProducerStatus), nullable=False, default=ProducerStatus.PENDING
    )

    mp_connected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    mp_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    efi_connected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    efi_account_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    efi_pix_key: Mapped[str | None] = mapped_column(String(140), nullable=True)

    oauth_token = relationship("OAuthToken", back_populates="producer", uselist=False)
    efi_config = relationship("EfiAccountConfig", back_populates="producer", uselist=False)
    products = relationship("Product", back_populates="producer")

    @property
    def document_digits(self) -> str | None:
        if not self.document_number:
            return None
        return "".join(ch for ch in self.document_number if ch.isdigit()) or None
