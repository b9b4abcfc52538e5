"""Checkout endpoints."""
from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from splitpay.db import get_db
from splitpay.models import PaymentGateway
from splitpay.schemas.payment import CheckoutPaymentData, CheckoutRequest
from splitpay.services import payments as payments_service
from splitpay.services.payments import CheckoutMode, PaymentIntent

router = APIRouter(tags=["checkout"])


def _to_intent(data: CheckoutPaymentData, *, gateway: PaymentGateway | None = None) -> PaymentIntent:
    gateway = gateway or data.gateway
    mode = CheckoutMode.PIX if gateway == PaymentGateway.EFI else CheckoutMode(data.mode)
    payer = data.payer
    return PaymentIntent(
        gateway=gateway,
        mode=mode,
        price=data.price,
        title=data.title,
        product_id=data.product_id,
        form_data=data.form_data,
        success_url=data.success_url,
        failure_url=data.failure_url,
        pending_url=data.pending_url,
        payer_email=payer.email if payer else None,
        payer_name=payer.name if payer else None,
        payer_document=payer.document if payer else None,
    )


@router.post("/create-payment")
def create_payment(payload: CheckoutRequest, db: Session = Depends(get_db)) -> dict[str, Any]:
    """Start a checkout; the answer depends on gateway and mode."""

    handle = payments_service.create_payment(db, payload.producer_id, _to_intent(payload.payment_data))
    return handle.to_response()


@router.post("/efi-create-payment")
def create_pix_payment(payload: CheckoutRequest, db: Session = Depends(get_db)) -> dict[str, Any]:
    """Create a PIX charge through the direct PIX gateway."""

    intent = _to_intent(payload.payment_data, gateway=PaymentGateway.EFI)
    handle = payments_service.create_payment(db, payload.producer_id, intent)
    return handle.to_response()


__all__ = ["router"]
