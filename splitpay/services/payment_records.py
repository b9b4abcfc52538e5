"""Persistence of payments together with their two split legs."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from splitpay.models import (
    Payment,
    PaymentGateway,
    PaymentSplit,
    PaymentStatus,
    Producer,
    Product,
    RecipientType,
    SplitStatus,
)
from splitpay.services.fees import FeeSplit
from splitpay.utils.errors import PersistenceError
from splitpay.utils.time import epoch_millis

logger = logging.getLogger(__name__)

PLATFORM_RECIPIENT_ID = "platform"


def build_external_reference(gateway: PaymentGateway, producer_id: int, *, millis: int | None = None) -> str:
    """Return ``{gateway}_{producer_id}_{epoch_millis}``; a new value per attempt."""

    return f"{gateway.value}_{producer_id}_{millis if millis is not None else epoch_millis()}"


def parse_external_reference(reference: str | None) -> tuple[PaymentGateway, int] | None:
    """Recover the gateway and producer id from a server-generated reference."""

    if not reference:
        return None
    parts = reference.split("_")
    if len(parts) != 3:
        return None
    gateway_raw, producer_raw, millis = parts
    try:
        gateway = PaymentGateway(gateway_raw)
        producer_id = int(producer_raw)
    except ValueError:
        return None
    if not millis.isdigit():
        return None
    return gateway, producer_id


@dataclass(frozen=True)
class PaymentRecord:
    """Gateway-side facts known when a payment row is first written."""

    gateway: PaymentGateway
    payment_type: str | None = None
    payment_method: str | None = None
    status: PaymentStatus = PaymentStatus.PENDING
    status_detail: str | None = None
    mp_preference_id: str | None = None
    mp_payment_id: str | None = None
    efi_txid: str | None = None
    payer_email: str | None = None
    payer_name: str | None = None
    payer_document: str | None = None
    installments: int | None = None


def persist_payment(
    db: Session,
    *,
    producer: Producer,
    fee_split: FeeSplit,
    external_reference: str,
    record: PaymentRecord,
    product: Product | None = None,
) -> Payment:
    """Insert a payment and its platform/producer legs in one transaction.

    The legs carry exactly ``platform_fee`` and ``producer_amount`` so they sum
    to ``total_amount``. Raises :class:`PersistenceError` when the write fails;
    nothing is left half-written.
    """

    payment = Payment(
        external_reference=external_reference,
        producer_id=producer.id,
        product_id=product.id if product is not None else None,
        gateway=record.gateway,
        payment_type=record.payment_type,
        payment_method=record.payment_method,
        currency="BRL",
        total_amount=fee_split.amount,
        platform_fee=fee_split.platform_fee,
        producer_amount=fee_split.producer_amount,
        fee_percentage=fee_split.fee_percentage,
        status=record.status,
        status_detail=record.status_detail,
        mp_preference_id=record.mp_preference_id,
        mp_payment_id=record.mp_payment_id,
        efi_txid=record.efi_txid,
        payer_email=record.payer_email,
        payer_name=record.payer_name,
        payer_document=record.payer_document,
        installments=record.installments,
    )
    payment.splits = [
        PaymentSplit(
            recipient_type=RecipientType.PLATFORM,
            recipient_id=PLATFORM_RECIPIENT_ID,
            amount=fee_split.platform_fee,
            percentage=fee_split.fee_percentage,
            status=SplitStatus.PENDING,
        ),
        PaymentSplit(
            recipient_type=RecipientType.PRODUCER,
            recipient_id=str(producer.id),
            amount=fee_split.producer_amount,
            percentage=fee_split.producer_percentage,
            status=SplitStatus.PENDING,
        ),
    ]

    try:
        db.add(payment)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.critical(
            "Failed to persist payment after gateway accepted the charge",
            extra={
                "external_reference": external_reference,
                "txid": record.efi_txid,
                "mp_payment_id": record.mp_payment_id,
                "producer_id": producer.id,
                "total_amount": str(fee_split.amount),
            },
            exc_info=True,
        )
        raise PersistenceError(f"Could not record payment {external_reference}.") from exc

    db.refresh(payment)
    logger.info(
        "Payment recorded",
        extra={
            "payment_id": payment.id,
            "external_reference": external_reference,
            "gateway": record.gateway.value,
            "total_amount": str(fee_split.amount),
            "platform_fee": str(fee_split.platform_fee),
            "producer_amount": str(fee_split.producer_amount),
        },
    )
    return payment


def find_by_external_reference(db: Session, external_reference: str) -> Payment | None:
    stmt = select(Payment).where(Payment.external_reference == external_reference)
    return db.execute(stmt).scalar_one_or_none()


def find_by_txid(db: Session, txid: str) -> Payment | None:
    stmt = select(Payment).where(Payment.efi_txid == txid)
    return db.execute(stmt).scalar_one_or_none()


def find_by_mp_payment_id(db: Session, mp_payment_id: str) -> Payment | None:
    stmt = select(Payment).where(Payment.mp_payment_id == mp_payment_id)
    return db.execute(stmt).scalars().first()


__all__ = [
    "PLATFORM_RECIPIENT_ID",
    "PaymentRecord",
    "build_external_reference",
    "parse_external_reference",
    "persist_payment",
    "find_by_external_reference",
    "find_by_txid",
    "find_by_mp_payment_id",
]
