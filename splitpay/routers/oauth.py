"""Gateway account connection endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from splitpay.db import get_db
from splitpay.schemas.oauth import ConnectAccountRequest, ConnectResponse, EfiConnectRequest
from splitpay.services import oauth as oauth_service

router = APIRouter(tags=["oauth"])


@router.post("/connect-account", response_model=ConnectResponse)
def connect_account(payload: ConnectAccountRequest, db: Session = Depends(get_db)) -> ConnectResponse:
    oauth_service.exchange_authorization_code(
        db,
        producer_id=payload.producer_id,
        code=payload.code,
        redirect_uri=payload.redirect_uri,
    )
    return ConnectResponse(success=True, message="Mercado Pago account connected.")


@router.post("/efi-connect-account", response_model=ConnectResponse)
def connect_efi_account(payload: EfiConnectRequest, db: Session = Depends(get_db)) -> ConnectResponse:
    oauth_service.connect_direct_account(
        db,
        producer_id=payload.producer_id,
        account_identifier=payload.efi_account_id,
        pix_key=payload.pix_key,
        pix_key_type=payload.pix_key_type,
    )
    return ConnectResponse(success=True, message="Efí account connected.")


__all__ = ["router"]
