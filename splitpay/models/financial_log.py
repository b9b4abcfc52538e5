"""Append-only financial audit trail."""
from decimal import Decimal

from sqlalchemy import ForeignKey, JSON, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class FinancialLog(Base):
    """Records every money-relevant status transition of a payment."""

    __tablename__ = "financial_logs"
    __table_args__ = (UniqueConstraint("payment_id", "action", name="uq_financial_logs_payment_action"),)

    payment_id: Mapped[int] = mapped_column(ForeignKey("payments.id"), nullable=False, index=True)
    producer_id: Mapped[int | None] = mapped_column(ForeignKey("producers.id"), nullable=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    previous_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    new_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
