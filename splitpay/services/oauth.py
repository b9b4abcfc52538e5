"""Gateway account connection for producers."""
from __future__ import annotations

import logging
from datetime import timedelta

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from splitpay.config import MarketplaceConfig, Settings, get_settings
from splitpay.models import EfiAccountConfig, OAuthToken, Producer, ProducerStatus
from splitpay.services.gateways.mercadopago import MercadoPagoGateway
from splitpay.utils.crypto import encrypt_token, token_hint
from splitpay.utils.errors import PersistenceError, ProducerNotFound
from splitpay.utils.time import utcnow

logger = logging.getLogger(__name__)


def _get_producer(db: Session, producer_id: int) -> Producer:
    producer = db.get(Producer, producer_id)
    if producer is None:
        raise ProducerNotFound(f"Producer {producer_id} not found.")
    return producer


def _activate(producer: Producer) -> None:
    if producer.status == ProducerStatus.PENDING:
        producer.status = ProducerStatus.ACTIVE


def exchange_authorization_code(
    db: Session,
    *,
    producer_id: int,
    code: str,
    redirect_uri: str,
    settings: Settings | None = None,
    transport: httpx.BaseTransport | None = None,
) -> OAuthToken:
    """Trade a marketplace authorization code for tokens stored on the producer.

    The code is single-use: a failed exchange is not retried and the producer
    has to restart the authorization in the browser.
    """

    settings = settings or get_settings()
    producer = _get_producer(db, producer_id)
    config = MarketplaceConfig.from_settings(settings)
    config.require_oauth_client()

    with MercadoPagoGateway(config, transport=transport) as gateway:
        data = gateway.exchange_authorization_code(code, redirect_uri)

    access_token = data["access_token"]
    refresh_token = data.get("refresh_token")
    expires_in = data.get("expires_in")
    mp_user_id = str(data["user_id"]) if data.get("user_id") is not None else None

    try:
        token = producer.oauth_token or OAuthToken(producer_id=producer.id)
        token.access_token_encrypted = encrypt_token(access_token, settings.SECRET_KEY)
        token.refresh_token_encrypted = encrypt_token(refresh_token, settings.SECRET_KEY) if refresh_token else None
        token.token_type = data.get("token_type")
        token.scope = data.get("scope")
        token.expires_at = utcnow() + timedelta(seconds=int(expires_in)) if expires_in else None
        token.mp_user_id = mp_user_id
        token.is_valid = True
        db.add(token)

        producer.mp_connected = True
        producer.mp_user_id = mp_user_id
        _activate(producer)
        db.add(producer)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(
            "Failed to store marketplace credentials",
            extra={"producer_id": producer_id, "mp_user_id": mp_user_id},
            exc_info=True,
        )
        raise PersistenceError("Marketplace credentials could not be saved.") from exc

    db.refresh(token)
    logger.info(
        "Marketplace account connected",
        extra={
            "producer_id": producer_id,
            "mp_user_id": mp_user_id,
            "token": token_hint(access_token),
            "expires_at": token.expires_at.isoformat() if token.expires_at else None,
        },
    )
    return token


def connect_direct_account(
    db: Session,
    *,
    producer_id: int,
    account_identifier: str,
    pix_key: str | None = None,
    pix_key_type: str | None = None,
) -> EfiAccountConfig:
    """Link the producer's Efí receiving account used as split recipient."""

    producer = _get_producer(db, producer_id)
    try:
        config = producer.efi_config or EfiAccountConfig(producer_id=producer.id)
        config.account_identifier = account_identifier
        config.pix_key = pix_key or None
        config.pix_key_type = pix_key_type or None
        config.is_valid = True
        db.add(config)

        producer.efi_connected = True
        producer.efi_account_id = account_identifier
        producer.efi_pix_key = pix_key or None
        _activate(producer)
        db.add(producer)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(
            "Failed to store direct PIX account",
            extra={"producer_id": producer_id},
            exc_info=True,
        )
        raise PersistenceError("Efí account configuration could not be saved.") from exc

    db.refresh(config)
    logger.info(
        "Direct PIX account connected",
        extra={"producer_id": producer_id, "account_identifier": account_identifier},
    )
    return config


__all__ = ["exchange_authorization_code", "connect_direct_account"]
