"""Gateway webhook listeners and the notification audit log."""
from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from splitpay.db import get_db
from splitpay.schemas.webhook import WebhookAck, WebhookEventRead
from splitpay.services import webhooks as webhooks_service
from splitpay.utils.errors import PersistenceError, error_response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


async def _json_body(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except ValueError:
        logger.warning("Webhook body is not JSON", extra={"path": request.url.path, "size": len(raw)})
        return {"raw_body": raw.decode("utf-8", errors="replace")}
    return payload if isinstance(payload, dict) else {"body": payload}


def _unavailable(exc: PersistenceError) -> HTTPException:
    # Nothing was logged; a non-2xx answer makes the gateway deliver again.
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=error_response(exc.code, exc.message),
    )


@router.post("/mp-webhook", response_model=WebhookAck)
async def mercadopago_webhook(request: Request, db: Session = Depends(get_db)) -> WebhookAck:
    payload = await _json_body(request)
    try:
        event = webhooks_service.handle_marketplace_webhook(
            db,
            payload,
            headers=request.headers,
            query_params=request.query_params,
        )
    except PersistenceError as exc:
        raise _unavailable(exc) from exc
    return WebhookAck(event_id=event.event_id, processed=event.processed)


@router.post("/efi-webhook", response_model=WebhookAck)
@router.post("/efi-webhook/pix", response_model=WebhookAck)
async def efi_webhook(request: Request, db: Session = Depends(get_db)) -> WebhookAck:
    payload = await _json_body(request)
    try:
        event = webhooks_service.handle_pix_webhook(
            db,
            payload,
            hmac_param=request.query_params.get("hmac"),
        )
    except PersistenceError as exc:
        raise _unavailable(exc) from exc
    return WebhookAck(event_id=event.event_id, processed=event.processed)


@router.get("/webhook-events", response_model=list[WebhookEventRead])
def list_webhook_events(
    source: str | None = None,
    processed: bool | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return webhooks_service.list_events(db, source=source, processed=processed, limit=limit, offset=offset)


@router.post("/webhook-events/{event_id}/replay", response_model=WebhookEventRead)
def replay_webhook_event(event_id: int, db: Session = Depends(get_db)):
    """Run processing again for a stored delivery."""

    return webhooks_service.replay_event(db, event_id)


__all__ = ["router"]
