"""Results shared by the gateway adapters."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Union

from splitpay.services.fees import FeeSplit


@dataclass(frozen=True)
class RedirectHandle:
    """Hosted checkout: the buyer is sent to ``init_point``."""

    preference_id: str | None
    init_point: str
    external_reference: str
    sandbox_init_point: str | None = None

    def to_response(self) -> dict[str, Any]:
        return {
            "id": self.preference_id,
            "init_point": self.init_point,
            "sandbox_init_point": self.sandbox_init_point,
            "external_reference": self.external_reference,
        }


@dataclass(frozen=True)
class ChargeHandle:
    """Direct charge: the gateway's immediate payment object."""

    external_reference: str
    status: str | None
    status_detail: str | None
    gateway_payment: dict[str, Any] = field(default_factory=dict)

    def to_response(self) -> dict[str, Any]:
        payload = dict(self.gateway_payment)
        payload["status"] = self.status
        payload["status_detail"] = self.status_detail
        payload["external_reference"] = self.external_reference
        return payload


@dataclass(frozen=True)
class PixQrHandle:
    """PIX charge with its copy-paste code and QR image."""

    txid: str
    external_reference: str
    split: FeeSplit
    pix_copia_e_cola: str | None
    qr_code_base64: str | None
    location: str | None
    expires_at: datetime | None
    status: str = "pending"

    def to_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "txid": self.txid,
            "status": self.status,
            "pixCopiaECola": self.pix_copia_e_cola,
            "qrCodeBase64": self.qr_code_base64,
            "location": self.location,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "amount": _money(self.split.amount),
            "platformFee": _money(self.split.platform_fee),
            "producerAmount": _money(self.split.producer_amount),
            "external_reference": self.external_reference,
        }


PaymentHandle = Union[RedirectHandle, ChargeHandle, PixQrHandle]


def _money(value: Decimal) -> str:
    return f"{value:.2f}"


__all__ = ["RedirectHandle", "ChargeHandle", "PixQrHandle", "PaymentHandle"]
