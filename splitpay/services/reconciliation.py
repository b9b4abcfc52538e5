"""Idempotent application of gateway status updates onto payments."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from splitpay.models import (
    FAILED_STATUSES,
    REVERSAL_STATUSES,
    TERMINAL_STATUSES,
    FinancialLog,
    Payment,
    PaymentStatus,
    SplitStatus,
)
from splitpay.utils.audit import json_safe, sanitize_payload_for_audit
from splitpay.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusUpdate:
    """A gateway's view of one payment, normalised across gateways."""

    status: PaymentStatus | None
    status_detail: str | None = None
    raw_status: str | None = None
    external_reference: str | None = None
    efi_txid: str | None = None
    efi_e2eid: str | None = None
    mp_payment_id: str | None = None
    amount: Decimal | None = None
    approved_at: datetime | None = None
    payment_method: str | None = None
    payment_type: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


class ReconcileOutcome(str, enum.Enum):
    APPLIED = "applied"
    NOOP = "noop"
    UNKNOWN_STATUS = "unknown_status"
    AMOUNT_MISMATCH = "amount_mismatch"


def _financial_action(status: PaymentStatus) -> str:
    if status == PaymentStatus.APPROVED:
        return "payment_received"
    return f"payment_{status.value}"


def _copy_gateway_identifiers(payment: Payment, update: StatusUpdate) -> None:
    if update.mp_payment_id and not payment.mp_payment_id:
        payment.mp_payment_id = update.mp_payment_id
    if update.efi_e2eid:
        payment.efi_e2eid = update.efi_e2eid
    if update.payment_method:
        payment.payment_method = update.payment_method
    if update.payment_type and not payment.payment_type:
        payment.payment_type = update.payment_type


def _mark_splits(payment: Payment, status: SplitStatus, at: datetime) -> None:
    for split in payment.splits:
        split.status = status
        split.processed_at = at


def _is_noop(current: PaymentStatus, new: PaymentStatus) -> bool:
    if new in REVERSAL_STATUSES:
        return current in REVERSAL_STATUSES
    if current in TERMINAL_STATUSES:
        return True
    return current == new


def apply_status_update(
    db: Session,
    payment: Payment,
    update: StatusUpdate,
    *,
    source: str,
) -> ReconcileOutcome:
    """Move ``payment`` to the status reported by its gateway.

    The payment's current status guards every transition: a payment that is
    already approved, failed or reversed is left untouched by a replay, so each
    financial action is logged at most once. Reversals (refund, chargeback) are
    accepted from any non-reversed status.
    """

    new_status = update.status
    if new_status is None:
        logger.warning(
            "Gateway reported an unknown payment status",
            extra={
                "payment_id": payment.id,
                "raw_status": update.raw_status,
                "source": source,
            },
        )
        return ReconcileOutcome.UNKNOWN_STATUS

    previous = payment.status
    if _is_noop(previous, new_status):
        logger.info(
            "Payment status unchanged",
            extra={
                "payment_id": payment.id,
                "status": previous.value,
                "reported_status": new_status.value,
                "source": source,
            },
        )
        return ReconcileOutcome.NOOP

    if (
        new_status == PaymentStatus.APPROVED
        and update.amount is not None
        and update.amount < payment.total_amount
    ):
        logger.error(
            "Settled amount lower than payment total; not approving",
            extra={
                "payment_id": payment.id,
                "external_reference": payment.external_reference,
                "settled_amount": str(update.amount),
                "total_amount": str(payment.total_amount),
                "source": source,
            },
        )
        return ReconcileOutcome.AMOUNT_MISMATCH

    now = utcnow()
    payment.status = new_status
    payment.status_detail = update.status_detail or payment.status_detail
    _copy_gateway_identifiers(payment, update)

    if new_status == PaymentStatus.APPROVED:
        payment.approved_at = update.approved_at or now
        _mark_splits(payment, SplitStatus.COMPLETED, now)
    elif new_status in FAILED_STATUSES:
        _mark_splits(payment, SplitStatus.FAILED, now)

    if new_status in TERMINAL_STATUSES:
        details = {
            "gateway": payment.gateway.value,
            "source": source,
            "external_reference": payment.external_reference,
            "status_detail": payment.status_detail,
            "platform_fee": payment.platform_fee,
            "producer_amount": payment.producer_amount,
            "txid": payment.efi_txid,
            "e2eid": payment.efi_e2eid,
            "mp_payment_id": payment.mp_payment_id,
            **update.extra,
        }
        db.add(
            FinancialLog(
                payment_id=payment.id,
                producer_id=payment.producer_id,
                action=_financial_action(new_status),
                amount=update.amount if update.amount is not None else payment.total_amount,
                previous_status=previous.value,
                new_status=new_status.value,
                details=sanitize_payload_for_audit(json_safe(details)),
            )
        )

    db.add(payment)
    try:
        db.commit()
    except IntegrityError:
        # A concurrent delivery of the same notification already logged this action.
        db.rollback()
        logger.warning(
            "Concurrent reconciliation detected; keeping first transition",
            extra={"payment_id": payment.id, "status": new_status.value, "source": source},
        )
        db.refresh(payment)
        return ReconcileOutcome.NOOP

    db.refresh(payment)
    logger.info(
        "Payment status updated",
        extra={
            "payment_id": payment.id,
            "external_reference": payment.external_reference,
            "previous_status": previous.value,
            "status": new_status.value,
            "source": source,
        },
    )
    return ReconcileOutcome.APPLIED


__all__ = ["StatusUpdate", "ReconcileOutcome", "apply_status_update"]
