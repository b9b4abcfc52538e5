"""Schemas for the webhook audit log."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class WebhookAck(BaseModel):
    success: bool = True
    event_id: str
    processed: bool


class WebhookEventRead(BaseModel):
    id: int
    source: str
    event_id: str
    event_type: str
    action: str
    data_id: str | None
    raw_payload: dict
    signature_valid: bool | None
    processed: bool
    processed_at: datetime | None
    error_message: str | None
    retry_count: int
    received_at: datetime

    model_config = ConfigDict(from_attributes=True)
