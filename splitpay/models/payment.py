"""Payment and split-leg model definitions."""
import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class PaymentGateway(str, enum.Enum):
    """Gateways a payment can be processed through."""

    MERCADOPAGO = "mercadopago"
    EFI = "efi"


class PaymentStatus(str, enum.Enum):
    """Payment statuses, named after the marketplace gateway's vocabulary."""

    PENDING = "pending"
    AUTHORIZED = "authorized"
    IN_PROCESS = "in_process"
    IN_MEDIATION = "in_mediation"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    CHARGED_BACK = "charged_back"

    @classmethod
    def parse(cls, value: str | None) -> "PaymentStatus | None":
        if not value:
            return None
        try:
            return cls(value.lower())
        except ValueError:
            return None


# Statuses after which no success/failure notification may move the payment.
SETTLED_STATUSES = frozenset({PaymentStatus.APPROVED, PaymentStatus.REFUNDED, PaymentStatus.CHARGED_BACK})
FAILED_STATUSES = frozenset({PaymentStatus.REJECTED, PaymentStatus.CANCELLED})
TERMINAL_STATUSES = SETTLED_STATUSES | FAILED_STATUSES
REVERSAL_STATUSES = frozenset({PaymentStatus.REFUNDED, PaymentStatus.CHARGED_BACK})


class RecipientType(str, enum.Enum):
    PLATFORM = "platform"
    PRODUCER = "producer"


class SplitStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Payment(Base):
    """A buyer payment and the fee split computed for it."""

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("total_amount > 0", name="ck_payments_positive_total"),
        CheckConstraint("platform_fee >= 0", name="ck_payments_non_negative_fee"),
        UniqueConstraint("external_reference", name="uq_payments_external_reference"),
        Index("ix_payments_status", "status"),
        Index("ix_payments_producer_status", "producer_id", "status"),
        Index("ix_payments_efi_txid", "efi_txid"),
        Index("ix_payments_mp_payment_id", "mp_payment_id"),
    )

    external_reference: Mapped[str] = mapped_column(String(128), nullable=False)
    producer_id: Mapped[int] = mapped_column(ForeignKey("producers.id"), nullable=False, index=True)
    product_id: Mapped[int | None] = mapped_column(ForeignKey("products.id"), nullable=True)
    gateway: Mapped[PaymentGateway] = mapped_column(SqlEnum(PaymentGateway), nullable=False)
    payment_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="BRL")

    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    producer_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    fee_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    status: Mapped[PaymentStatus] = mapped_column(
        SqlEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING
    )
    status_detail: Mapped[str | None] = mapped_column(String(255), nullable=True)

    mp_preference_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    mp_payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    efi_txid: Mapped[str | None] = mapped_column(String(35), nullable=True, unique=True)
    efi_e2eid: Mapped[str | None] = mapped_column(String(64), nullable=True)

    payer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payer_document: Mapped[str | None] = mapped_column(String(32), nullable=True)
    installments: Mapped[int | None] = mapped_column(Integer, nullable=True)

    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    splits = relationship(
        "PaymentSplit",
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="PaymentSplit.id",
    )
    producer = relationship("Producer")

    def split_for(self, recipient_type: RecipientType) -> "PaymentSplit | None":
        for split in self.splits:
            if split.recipient_type == recipient_type:
                return split
        return None


class PaymentSplit(Base):
    """One leg of a payment's split: exactly one platform and one producer leg."""

    __tablename__ = "payment_splits"
    __table_args__ = (
        UniqueConstraint("payment_id", "recipient_type", name="uq_payment_splits_payment_recipient"),
        CheckConstraint("amount >= 0", name="ck_payment_splits_non_negative_amount"),
    )

    payment_id: Mapped[int] = mapped_column(ForeignKey("payments.id"), nullable=False, index=True)
    recipient_type: Mapped[RecipientType] = mapped_column(SqlEnum(RecipientType), nullable=False)
    recipient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    status: Mapped[SplitStatus] = mapped_column(SqlEnum(SplitStatus), nullable=False, default=SplitStatus.PENDING)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    payment = relationship("Payment", back_populates="splits")
