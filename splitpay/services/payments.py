"""Checkout orchestration: producer, credentials, split, gateway, record."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from splitpay.config import DirectPixConfig, MarketplaceConfig, Settings, get_settings
from splitpay.models import Payment, PaymentGateway, Producer, ProducerStatus, Product
from splitpay.services.fees import FeeSplit, compute_split
from splitpay.services.gateways.base import ChargeHandle, PaymentHandle, PixQrHandle, RedirectHandle
from splitpay.services.gateways.efi import (
    EfiPixGateway,
    build_charge_payload,
    charge_expires_at,
    charge_status_updates,
    generate_txid,
)
from splitpay.services.gateways.mercadopago import (
    MercadoPagoGateway,
    build_payment_payload,
    build_preference_payload,
    payment_status_update,
)
from splitpay.services.payment_records import (
    PaymentRecord,
    build_external_reference,
    find_by_external_reference,
    find_by_txid,
    persist_payment,
)
from splitpay.services.reconciliation import StatusUpdate, apply_status_update
from splitpay.utils.crypto import decrypt_token
from splitpay.utils.errors import (
    CredentialInvalid,
    GatewayNotConnected,
    PaymentNotFound,
    PersistenceError,
    ProducerInactive,
    ProducerNotFound,
    ProductNotFound,
)

logger = logging.getLogger(__name__)

BLOCKED_PRODUCER_STATUSES = {ProducerStatus.SUSPENDED, ProducerStatus.INACTIVE}


class CheckoutMode(str, enum.Enum):
    REDIRECT = "redirect"
    TRANSPARENT = "transparent"
    PIX = "pix"


@dataclass(frozen=True)
class PaymentIntent:
    """What the buyer asked for, already validated at the API edge."""

    gateway: PaymentGateway
    mode: CheckoutMode
    price: Any = None
    title: str | None = None
    product_id: int | None = None
    form_data: dict[str, Any] | None = None
    success_url: str | None = None
    failure_url: str | None = None
    pending_url: str | None = None
    payer_email: str | None = None
    payer_name: str | None = None
    payer_document: str | None = None


@dataclass(frozen=True)
class CheckoutResult:
    handle: PaymentHandle
    record: PaymentRecord | None = None
    immediate_updates: list[StatusUpdate] = field(default_factory=list)


class CheckoutStrategy(Protocol):
    gateway: PaymentGateway

    def resolve_credentials(self, db: Session, producer: Producer) -> str:
        ...

    def submit(
        self,
        *,
        producer: Producer,
        intent: PaymentIntent,
        title: str,
        fee_split: FeeSplit,
        external_reference: str,
        credentials: str,
    ) -> CheckoutResult:
        ...


class MarketplaceCheckout:
    """Mercado Pago, charged with the producer's delegated OAuth token."""

    gateway = PaymentGateway.MERCADOPAGO

    def __init__(
        self,
        config: MarketplaceConfig,
        secret_key: str,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self._secret_key = secret_key
        self._transport = transport

    def resolve_credentials(self, db: Session, producer: Producer) -> str:
        token = producer.oauth_token
        if not producer.mp_connected or token is None:
            raise GatewayNotConnected("Producer is not connected to Mercado Pago.")
        if not token.is_valid:
            raise CredentialInvalid("Mercado Pago authorization was revoked; the producer must reconnect.")
        if token.is_expired():
            logger.warning(
                "Marketplace token expired",
                extra={"producer_id": producer.id, "expires_at": token.expires_at.isoformat()},
            )
            raise CredentialInvalid("Mercado Pago authorization expired; the producer must reconnect.")
        try:
            return decrypt_token(token.access_token_encrypted, self._secret_key)
        except CredentialInvalid:
            invalidate_marketplace_token(db, producer)
            raise

    def submit(
        self,
        *,
        producer: Producer,
        intent: PaymentIntent,
        title: str,
        fee_split: FeeSplit,
        external_reference: str,
        credentials: str,
    ) -> CheckoutResult:
        with MercadoPagoGateway(self.config, credentials, transport=self._transport) as gateway:
            if intent.mode == CheckoutMode.TRANSPARENT:
                return self._charge(gateway, intent, title, fee_split, external_reference)
            preference = gateway.create_preference(
                build_preference_payload(
                    config=self.config,
                    title=title,
                    fee_split=fee_split,
                    external_reference=external_reference,
                    item_id=str(intent.product_id) if intent.product_id else None,
                    success_url=intent.success_url,
                    failure_url=intent.failure_url,
                    pending_url=intent.pending_url,
                    payer_email=intent.payer_email,
                )
            )
        handle = RedirectHandle(
            preference_id=preference.get("id"),
            init_point=preference.get("init_point"),
            sandbox_init_point=preference.get("sandbox_init_point"),
            external_reference=external_reference,
        )
        return CheckoutResult(handle=handle)

    def _charge(
        self,
        gateway: MercadoPagoGateway,
        intent: PaymentIntent,
        title: str,
        fee_split: FeeSplit,
        external_reference: str,
    ) -> CheckoutResult:
        form_data = intent.form_data or {}
        payment = gateway.create_payment(
            build_payment_payload(
                form_data,
                config=self.config,
                fee_split=fee_split,
                external_reference=external_reference,
                description=title,
            ),
            idempotency_key=external_reference,
        )
        payer = form_data.get("payer") or {}
        identification = payer.get("identification") or {}
        record = PaymentRecord(
            gateway=self.gateway,
            payment_type=payment.get("payment_type_id"),
            payment_method=payment.get("payment_method_id") or form_data.get("payment_method_id"),
            mp_payment_id=str(payment["id"]) if payment.get("id") is not None else None,
            payer_email=payer.get("email") or intent.payer_email,
            payer_name=intent.payer_name,
            payer_document=identification.get("number") or intent.payer_document,
            installments=form_data.get("installments"),
        )
        handle = ChargeHandle(
            external_reference=external_reference,
            status=payment.get("status"),
            status_detail=payment.get("status_detail"),
            gateway_payment=payment,
        )
        return CheckoutResult(handle=handle, record=record, immediate_updates=[payment_status_update(payment)])


class DirectPixCheckout:
    """Efí immediate PIX charge; the producer's share settles through the split."""

    gateway = PaymentGateway.EFI

    def __init__(
        self,
        config: DirectPixConfig,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport

    def resolve_credentials(self, db: Session, producer: Producer) -> str:
        account = producer.efi_config
        if not producer.efi_connected or account is None:
            raise GatewayNotConnected("Producer is not connected to Efí.")
        if not account.is_valid:
            raise CredentialInvalid("Efí account configuration is invalid; the producer must reconnect.")
        return account.account_identifier

    def submit(
        self,
        *,
        producer: Producer,
        intent: PaymentIntent,
        title: str,
        fee_split: FeeSplit,
        external_reference: str,
        credentials: str,
    ) -> CheckoutResult:
        payload = build_charge_payload(
            config=self.config,
            producer=producer,
            producer_account=credentials,
            title=title,
            fee_split=fee_split,
            external_reference=external_reference,
            payer_document=intent.payer_document,
            payer_name=intent.payer_name,
        )
        txid = generate_txid()
        with EfiPixGateway(self.config, transport=self._transport) as gateway:
            gateway.authenticate()
            charge = gateway.create_charge(txid, payload)
            location = charge.get("loc") or {}
            qrcode = gateway.get_qrcode(location.get("id")) or {}

        txid = charge.get("txid") or txid
        handle = PixQrHandle(
            txid=txid,
            external_reference=external_reference,
            split=fee_split,
            pix_copia_e_cola=qrcode.get("qrcode") or charge.get("pixCopiaECola"),
            qr_code_base64=qrcode.get("imagemQrcode"),
            location=charge.get("location") or location.get("location"),
            expires_at=charge_expires_at(charge),
        )
        record = PaymentRecord(
            gateway=self.gateway,
            payment_type="pix",
            payment_method="pix",
            efi_txid=txid,
            payer_email=intent.payer_email,
            payer_name=intent.payer_name,
            payer_document=intent.payer_document,
        )
        return CheckoutResult(handle=handle, record=record)


def checkout_strategy_for(intent: PaymentIntent, settings: Settings) -> CheckoutStrategy:
    if intent.gateway == PaymentGateway.EFI:
        return DirectPixCheckout(DirectPixConfig.from_settings(settings))
    return MarketplaceCheckout(MarketplaceConfig.from_settings(settings), settings.SECRET_KEY)


def invalidate_marketplace_token(db: Session, producer: Producer) -> None:
    token = producer.oauth_token
    if token is None or not token.is_valid:
        return
    token.is_valid = False
    db.add(token)
    db.commit()
    logger.warning("Marketplace credential flagged invalid", extra={"producer_id": producer.id})


def _load_producer(db: Session, producer_id: int) -> Producer:
    producer = db.get(Producer, producer_id)
    if producer is None:
        raise ProducerNotFound(f"Producer {producer_id} not found.")
    if producer.status in BLOCKED_PRODUCER_STATUSES:
        raise ProducerInactive(f"Producer {producer_id} is {producer.status.value} and cannot receive payments.")
    return producer


def _resolve_product(db: Session, producer: Producer, product_id: int | None) -> Product | None:
    if product_id is None:
        return None
    product = db.get(Product, product_id)
    if product is None or product.producer_id != producer.id or not product.is_active:
        raise ProductNotFound(f"Product {product_id} not found for producer {producer.id}.")
    return product


def create_payment(
    db: Session,
    producer_id: int,
    intent: PaymentIntent,
    *,
    settings: Settings | None = None,
    strategy: CheckoutStrategy | None = None,
) -> PaymentHandle:
    """Charge a buyer on behalf of ``producer_id`` and record the split.

    Credentials are resolved before any outbound call. Gateway errors propagate
    unchanged. Once a charge is live at the gateway, a failure to record it
    locally is logged and swallowed so the buyer still receives the handle.
    """

    settings = settings or get_settings()
    producer = _load_producer(db, producer_id)
    strategy = strategy or checkout_strategy_for(intent, settings)
    credentials = strategy.resolve_credentials(db, producer)

    product = _resolve_product(db, producer, intent.product_id)
    title = product.name if product is not None else intent.title
    price = product.price if product is not None else intent.price
    fee_split = compute_split(
        price,
        producer.platform_fee_percentage,
        default_percentage=settings.DEFAULT_FEE_PERCENTAGE,
    )
    external_reference = build_external_reference(strategy.gateway, producer.id)
    logger.info(
        "Creating payment",
        extra={
            "producer_id": producer.id,
            "gateway": strategy.gateway.value,
            "mode": intent.mode.value,
            "external_reference": external_reference,
            "amount": str(fee_split.amount),
            "platform_fee": str(fee_split.platform_fee),
            "fee_percentage": str(fee_split.fee_percentage),
        },
    )

    try:
        result = strategy.submit(
            producer=producer,
            intent=intent,
            title=title or "Pagamento",
            fee_split=fee_split,
            external_reference=external_reference,
            credentials=credentials,
        )
    except CredentialInvalid:
        if strategy.gateway == PaymentGateway.MERCADOPAGO:
            invalidate_marketplace_token(db, producer)
        raise

    if result.record is None:
        return result.handle

    try:
        payment = persist_payment(
            db,
            producer=producer,
            product=product,
            fee_split=fee_split,
            external_reference=external_reference,
            record=result.record,
        )
    except PersistenceError:
        # Charge is live at the gateway; the webhook or a sync can still match it later.
        return result.handle

    for update in result.immediate_updates:
        try:
            apply_status_update(db, payment, update, source="checkout")
        except SQLAlchemyError:
            db.rollback()
            logger.critical(
                "Failed to apply immediate gateway status",
                extra={"external_reference": external_reference, "status": update.raw_status},
                exc_info=True,
            )
    return result.handle


def get_payment(db: Session, external_reference: str) -> Payment:
    payment = find_by_external_reference(db, external_reference)
    if payment is None:
        raise PaymentNotFound(f"Payment {external_reference} not found.")
    return payment


def get_pix_status(db: Session, txid: str) -> Payment:
    """Local status of a PIX charge, polled by the checkout page."""

    payment = find_by_txid(db, txid)
    if payment is None:
        raise PaymentNotFound(f"No payment for txid {txid}.")
    return payment


def sync_payment(
    db: Session,
    external_reference: str,
    *,
    settings: Settings | None = None,
) -> Payment:
    """Re-query the gateway for a payment and reconcile its status."""

    settings = settings or get_settings()
    payment = get_payment(db, external_reference)

    if payment.gateway == PaymentGateway.EFI:
        if not payment.efi_txid:
            raise PaymentNotFound(f"Payment {external_reference} has no PIX txid.")
        with EfiPixGateway(DirectPixConfig.from_settings(settings)) as gateway:
            updates = charge_status_updates(gateway.get_charge(payment.efi_txid))
    else:
        if not payment.mp_payment_id:
            raise PaymentNotFound(f"Payment {external_reference} has no Mercado Pago payment id yet.")
        config = MarketplaceConfig.from_settings(settings)
        with MercadoPagoGateway(config, config.require_platform_token()) as gateway:
            updates = [payment_status_update(gateway.get_payment(payment.mp_payment_id))]

    for update in updates:
        outcome = apply_status_update(db, payment, update, source="sync")
        logger.info(
            "Payment sync applied",
            extra={"external_reference": external_reference, "outcome": outcome.value},
        )
    return payment


__all__ = [
    "CheckoutMode",
    "PaymentIntent",
    "CheckoutResult",
    "CheckoutStrategy",
    "MarketplaceCheckout",
    "DirectPixCheckout",
    "checkout_strategy_for",
    "create_payment",
    "get_payment",
    "get_pix_status",
    "sync_payment",
    "invalidate_marketplace_token",
]
