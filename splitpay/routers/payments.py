"""Payment read and sync endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from splitpay.db import get_db
from splitpay.schemas.payment import PaymentRead, PixStatusRead
from splitpay.services import payments as payments_service

router = APIRouter(prefix="/payments", tags=["payments"])


@router.get("/pix/{txid}/status", response_model=PixStatusRead)
def pix_status(txid: str, db: Session = Depends(get_db)):
    """Polled by the checkout page until the charge is approved."""

    return payments_service.get_pix_status(db, txid)


@router.get("/{external_reference}", response_model=PaymentRead)
def read_payment(external_reference: str, db: Session = Depends(get_db)):
    return payments_service.get_payment(db, external_reference)


@router.post("/{external_reference}/sync", response_model=PaymentRead)
def sync_payment(external_reference: str, db: Session = Depends(get_db)):
    """Re-query the gateway and reconcile the payment."""

    return payments_service.sync_payment(db, external_reference)


__all__ = ["router"]
