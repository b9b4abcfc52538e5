"""Gateway webhook listeners and the shared reconciliation loop."""
from __future__ import annotations

import hashlib
import hmac
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from splitpay.config import MarketplaceConfig, Settings, get_settings
from splitpay.models import Payment, PaymentGateway, Producer, Product, WebhookEvent
from splitpay.services.fees import compute_split
from splitpay.services.gateways.efi import pix_notification_updates
from splitpay.services.gateways.mercadopago import MercadoPagoGateway, payer_fields, payment_status_update
from splitpay.services.payment_records import (
    PaymentRecord,
    find_by_external_reference,
    find_by_mp_payment_id,
    find_by_txid,
    parse_external_reference,
    persist_payment,
)
from splitpay.services.reconciliation import ReconcileOutcome, StatusUpdate, apply_status_update
from splitpay.utils.audit import sanitize_payload_for_audit
from splitpay.utils.errors import PersistenceError, WebhookEventNotFound, WebhookSignatureInvalid
from splitpay.utils.time import utcnow

logger = logging.getLogger(__name__)

MARKETPLACE_SOURCE = "mercadopago"
DIRECT_PIX_SOURCE = "efi"


@dataclass(frozen=True)
class ReconciliationPolicy:
    """How far a gateway's notification body can be trusted.

    The marketplace body only names a resource, so its status is re-fetched
    from the API. The direct PIX body carries the settled amount and
    end-to-end id and is itself authoritative once matched by txid.
    """

    source: str
    trust_payload: bool
    late_persistence: bool


MARKETPLACE_POLICY = ReconciliationPolicy(source=MARKETPLACE_SOURCE, trust_payload=False, late_persistence=True)
DIRECT_PIX_POLICY = ReconciliationPolicy(source=DIRECT_PIX_SOURCE, trust_payload=True, late_persistence=False)
POLICIES = {policy.source: policy for policy in (MARKETPLACE_POLICY, DIRECT_PIX_POLICY)}


def _masked_secret(secret: str | None) -> str | None:
    if not secret:
        return None
    return f"sha256:{hashlib.sha256(secret.encode()).hexdigest()[:8]}"


def _parse_signature_header(value: str) -> dict[str, str]:
    parts: dict[str, str] = {}
    for chunk in value.split(","):
        key, sep, val = chunk.partition("=")
        if sep:
            parts[key.strip()] = val.strip()
    return parts


def verify_marketplace_signature(
    secret: str,
    signature_header: str | None,
    request_id: str | None,
    data_id: str | None,
) -> bool:
    """Check ``x-signature`` (``ts=...,v1=...``) against the request manifest."""

    if not signature_header:
        return False
    parts = _parse_signature_header(signature_header)
    ts, provided = parts.get("ts"), parts.get("v1")
    if not ts or not provided:
        return False

    manifest = ""
    if data_id:
        manifest += f"id:{data_id.lower()};"
    if request_id:
        manifest += f"request-id:{request_id};"
    manifest += f"ts:{ts};"
    expected = hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, provided)


def verify_pix_hmac(secret: str, provided: str | None) -> bool:
    return hmac.compare_digest(secret.encode("utf-8"), (provided or "").encode("utf-8"))


def _signature_not_checked(source: str, settings: Settings) -> None:
    log = logger.warning if settings.app_env.lower() != "dev" else logger.info
    log("Webhook signature not validated; no secret configured", extra={"source": source, "env": settings.app_env})


def record_event(
    db: Session,
    *,
    source: str,
    event_id: str,
    event_type: str,
    action: str,
    data_id: str | None,
    payload: Mapping[str, Any],
    signature_valid: bool | None,
) -> WebhookEvent:
    """Append the delivery to the event log before anything else happens."""

    try:
        previous = db.execute(
            select(func.count(WebhookEvent.id)).where(
                WebhookEvent.source == source,
                WebhookEvent.event_id == event_id,
            )
        ).scalar_one()
        event = WebhookEvent(
            source=source,
            event_id=event_id,
            event_type=event_type,
            action=action,
            data_id=data_id,
            raw_payload=sanitize_payload_for_audit(dict(payload)),
            signature_valid=signature_valid,
            processed=False,
            retry_count=previous,
            received_at=utcnow(),
        )
        db.add(event)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(
            "Failed to log webhook delivery",
            extra={"source": source, "event_id": event_id},
            exc_info=True,
        )
        raise PersistenceError("Webhook delivery could not be logged.") from exc

    db.refresh(event)
    logger.info(
        "Webhook received",
        extra={
            "source": source,
            "event_id": event_id,
            "event_type": event_type,
            "action": action,
            "data_id": data_id,
            "retry_count": previous,
            "signature_valid": signature_valid,
        },
    )
    return event


def mark_event(db: Session, event: WebhookEvent, *, error: str | None = None) -> WebhookEvent:
    event.processed = error is None
    event.processed_at = utcnow()
    event.error_message = error
    db.add(event)
    db.commit()
    db.refresh(event)
    return event


def _match_payment(db: Session, update: StatusUpdate) -> Payment | None:
    if update.efi_txid:
        return find_by_txid(db, update.efi_txid)
    if update.external_reference:
        payment = find_by_external_reference(db, update.external_reference)
        if payment is not None:
            return payment
    if update.mp_payment_id:
        return find_by_mp_payment_id(db, update.mp_payment_id)
    return None


def _product_from_items(db: Session, producer: Producer, gateway_payment: Mapping[str, Any]) -> Product | None:
    items = (gateway_payment.get("additional_info") or {}).get("items") or []
    for item in items:
        item_id = str(item.get("id") or "")
        if not item_id.isdigit():
            continue
        product = db.get(Product, int(item_id))
        if product is not None and product.producer_id == producer.id:
            return product
    return None


def _late_persist(
    db: Session,
    gateway_payment: Mapping[str, Any],
    update: StatusUpdate,
    settings: Settings,
) -> Payment | None:
    """Record a hosted-checkout payment first seen through its notification."""

    parsed = parse_external_reference(update.external_reference)
    if parsed is None or parsed[0] != PaymentGateway.MERCADOPAGO or update.amount is None:
        return None
    producer = db.get(Producer, parsed[1])
    if producer is None:
        logger.warning(
            "Notification names an unknown producer",
            extra={"external_reference": update.external_reference, "producer_id": parsed[1]},
        )
        return None

    fee_split = compute_split(
        update.amount,
        producer.platform_fee_percentage,
        default_percentage=settings.DEFAULT_FEE_PERCENTAGE,
    )
    record = PaymentRecord(
        gateway=PaymentGateway.MERCADOPAGO,
        payment_type=update.payment_type,
        payment_method=update.payment_method,
        mp_payment_id=update.mp_payment_id,
        installments=gateway_payment.get("installments"),
        **payer_fields(gateway_payment),
    )
    return persist_payment(
        db,
        producer=producer,
        product=_product_from_items(db, producer, gateway_payment),
        fee_split=fee_split,
        external_reference=update.external_reference,
        record=record,
    )


def _fetch_marketplace_payment(data_id: str, settings: Settings) -> dict[str, Any]:
    config = MarketplaceConfig.from_settings(settings)
    with MercadoPagoGateway(config, config.require_platform_token()) as gateway:
        return gateway.get_payment(data_id)


def process_event(
    db: Session,
    event: WebhookEvent,
    *,
    settings: Settings | None = None,
) -> list[str]:
    """Apply the status changes a logged delivery carries; return error notes."""

    settings = settings or get_settings()
    policy = POLICIES[event.source]
    gateway_payment: dict[str, Any] = {}

    if policy.trust_payload:
        updates = pix_notification_updates(event.raw_payload)
    else:
        if event.event_type != "payment" or not event.data_id:
            logger.info(
                "Ignoring non-payment notification",
                extra={"event_id": event.event_id, "event_type": event.event_type},
            )
            return []
        gateway_payment = _fetch_marketplace_payment(event.data_id, settings)
        updates = [payment_status_update(gateway_payment)]

    errors: list[str] = []
    for update in updates:
        payment = _match_payment(db, update)
        if payment is None and policy.late_persistence:
            payment = _late_persist(db, gateway_payment, update, settings)
        if payment is None:
            logger.warning(
                "Notification for unknown payment; skipping",
                extra={
                    "source": policy.source,
                    "event_id": event.event_id,
                    "txid": update.efi_txid,
                    "external_reference": update.external_reference,
                    "mp_payment_id": update.mp_payment_id,
                },
            )
            continue

        outcome = apply_status_update(
            db,
            payment,
            update,
            source=f"{policy.source}_webhook",
        )
        if outcome == ReconcileOutcome.AMOUNT_MISMATCH:
            errors.append(
                f"amount {update.amount} lower than total {payment.total_amount} for {payment.external_reference}"
            )
        elif outcome == ReconcileOutcome.UNKNOWN_STATUS:
            errors.append(f"unknown status {update.raw_status!r} for {payment.external_reference}")
    return errors


def _process_and_mark(db: Session, event: WebhookEvent, settings: Settings) -> WebhookEvent:
    try:
        errors = process_event(db, event, settings=settings)
    except Exception as exc:  # noqa: BLE001
        db.rollback()
        logger.exception(
            "Webhook processing failed",
            extra={"source": event.source, "event_id": event.event_id},
        )
        return mark_event(db, event, error=f"{type(exc).__name__}: {exc}")
    return mark_event(db, event, error="; ".join(errors) or None)


def handle_marketplace_webhook(
    db: Session,
    payload: Mapping[str, Any],
    *,
    headers: Mapping[str, str],
    query_params: Mapping[str, str] | None = None,
    settings: Settings | None = None,
) -> WebhookEvent:
    """Log a marketplace notification, verify it, then reconcile by re-fetch."""

    settings = settings or get_settings()
    query_params = query_params or {}
    data = payload.get("data") if isinstance(payload.get("data"), Mapping) else {}
    data_id = data.get("id") or query_params.get("data.id") or query_params.get("id")
    data_id = str(data_id) if data_id is not None else None
    request_id = headers.get("x-request-id")
    event_type = payload.get("type") or payload.get("topic") or query_params.get("type") or query_params.get("topic")

    signature_valid: bool | None = None
    if settings.MP_WEBHOOK_SECRET:
        signature_valid = verify_marketplace_signature(
            settings.MP_WEBHOOK_SECRET, headers.get("x-signature"), request_id, data_id
        )
    else:
        _signature_not_checked(MARKETPLACE_SOURCE, settings)

    event = record_event(
        db,
        source=MARKETPLACE_SOURCE,
        event_id=str(payload.get("id") or request_id or uuid.uuid4()),
        event_type=event_type or "unknown",
        action=payload.get("action") or "unknown",
        data_id=data_id,
        payload=payload,
        signature_valid=signature_valid,
    )
    if signature_valid is False:
        logger.warning(
            "Marketplace webhook signature mismatch",
            extra={"event_id": event.event_id, "secret": _masked_secret(settings.MP_WEBHOOK_SECRET)},
        )
        mark_event(db, event, error="invalid signature")
        raise WebhookSignatureInvalid("Invalid webhook signature.")

    return _process_and_mark(db, event, settings)


def _pix_identity(payload: Mapping[str, Any]) -> tuple[str | None, str | None, str]:
    """Return (event id, referenced txid, action) for a PIX notification."""

    pix_items = [p for p in payload.get("pix") or [] if isinstance(p, Mapping)]
    if pix_items:
        first = pix_items[0]
        return first.get("endToEndId") or first.get("txid"), first.get("txid"), "pix_received"
    devolucao = payload.get("devolucao")
    if isinstance(devolucao, Mapping):
        return devolucao.get("id") or devolucao.get("txid"), devolucao.get("txid"), "devolucao"
    return payload.get("txid"), payload.get("txid"), "unknown"


def handle_pix_webhook(
    db: Session,
    payload: Mapping[str, Any],
    *,
    hmac_param: str | None = None,
    settings: Settings | None = None,
) -> WebhookEvent:
    """Log a PIX notification, verify it, then reconcile from the body itself."""

    settings = settings or get_settings()
    signature_valid: bool | None = None
    if settings.EFI_WEBHOOK_SECRET:
        signature_valid = verify_pix_hmac(settings.EFI_WEBHOOK_SECRET, hmac_param)
    else:
        _signature_not_checked(DIRECT_PIX_SOURCE, settings)

    event_id, txid, action = _pix_identity(payload)
    event = record_event(
        db,
        source=DIRECT_PIX_SOURCE,
        event_id=str(event_id or uuid.uuid4()),
        event_type="efi_pix",
        action=action,
        data_id=txid,
        payload=payload,
        signature_valid=signature_valid,
    )
    if signature_valid is False:
        logger.warning(
            "PIX webhook hmac mismatch",
            extra={"event_id": event.event_id, "secret": _masked_secret(settings.EFI_WEBHOOK_SECRET)},
        )
        mark_event(db, event, error="invalid signature")
        raise WebhookSignatureInvalid("Invalid webhook signature.")

    return _process_and_mark(db, event, settings)


def replay_event(db: Session, event_id: int, *, settings: Settings | None = None) -> WebhookEvent:
    """Re-run processing for a logged delivery."""

    settings = settings or get_settings()
    event = db.get(WebhookEvent, event_id)
    if event is None:
        raise WebhookEventNotFound(f"Webhook event {event_id} not found.")
    if event.signature_valid is False:
        logger.warning(
            "Refusing to replay webhook with a failed signature",
            extra={"id": event.id, "source": event.source, "event_id": event.event_id},
        )
        raise WebhookSignatureInvalid(f"Webhook event {event_id} failed signature verification and cannot be replayed.")
    event.retry_count += 1
    db.add(event)
    db.commit()
    logger.info(
        "Replaying webhook event",
        extra={"id": event.id, "source": event.source, "event_id": event.event_id, "retry_count": event.retry_count},
    )
    return _process_and_mark(db, event, settings)


def list_events(
    db: Session,
    *,
    source: str | None = None,
    processed: bool | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[WebhookEvent]:
    stmt = select(WebhookEvent).order_by(WebhookEvent.id.desc())
    if source:
        stmt = stmt.where(WebhookEvent.source == source)
    if processed is not None:
        stmt = stmt.where(WebhookEvent.processed == processed)
    return list(db.execute(stmt.offset(offset).limit(limit)).scalars())


__all__ = [
    "ReconciliationPolicy",
    "MARKETPLACE_POLICY",
    "DIRECT_PIX_POLICY",
    "verify_marketplace_signature",
    "verify_pix_hmac",
    "record_event",
    "mark_event",
    "process_event",
    "handle_marketplace_webhook",
    "handle_pix_webhook",
    "replay_event",
    "list_events",
]
