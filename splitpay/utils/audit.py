"""Masking helpers for payloads persisted in audit and webhook logs."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping


SENSITIVE_KEYS = {
    "cpf",
    "cnpj",
    "number",
    "payer_document",
    "document_number",
    "email",
    "payer_email",
    "token",
    "access_token",
    "refresh_token",
    "card_number",
    "security_code",
}


def _mask_value(key: str, value: Any) -> Any:
    if value is None:
        return None

    if key in {"token", "access_token", "refresh_token", "security_code"}:
        return "***"

    if key in {"email", "payer_email"}:
        text = str(value)
        if "@" in text:
            _, domain = text.split("@", 1)
            return f"***@{domain}"
        return "***"

    text = "".join(ch for ch in str(value) if ch.isalnum())
    if len(text) <= 4:
        return "***"
    return f"***{text[-4:]}"


def sanitize_payload_for_audit(data: Any) -> Any:
    """Return a copy of ``data`` with payer documents, e-mails and tokens masked."""

    if isinstance(data, Mapping):
        sanitized: dict[str, Any] = {}
        for key, value in data.items():
            if key in SENSITIVE_KEYS and not isinstance(value, (Mapping, list)):
                sanitized[key] = _mask_value(key, value)
            else:
                sanitized[key] = sanitize_payload_for_audit(value)
        return sanitized

    if isinstance(data, list):
        return [sanitize_payload_for_audit(item) for item in data]

    return data


def json_safe(data: Any) -> Any:
    """Convert Decimals and datetimes so the value fits a JSON column."""

    if isinstance(data, Mapping):
        return {key: json_safe(value) for key, value in data.items()}
    if isinstance(data, (list, tuple)):
        return [json_safe(item) for item in data]
    if isinstance(data, Decimal):
        return str(data)
    if isinstance(data, datetime):
        return data.isoformat()
    return data


__all__ = ["sanitize_payload_for_audit", "json_safe"]
