"""HTTP client for the Mercado Pago marketplace API."""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

import httpx

from splitpay.config import MarketplaceConfig
from splitpay.models import PaymentStatus
from splitpay.services.fees import FeeSplit
from splitpay.services.reconciliation import StatusUpdate
from splitpay.utils.crypto import token_hint
from splitpay.utils.errors import AuthError, ConfigurationError, CredentialInvalid, GatewayError
from splitpay.utils.time import parse_gateway_datetime

logger = logging.getLogger(__name__)

PREFERENCES_PATH = "/checkout/preferences"
PAYMENTS_PATH = "/v1/payments"
OAUTH_TOKEN_PATH = "/oauth/token"


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, Mapping):
        for key in ("message", "error_description", "error"):
            if body.get(key):
                return str(body[key])
    return str(body)


def _json_object(response: httpx.Response, error_cls: type[GatewayError] | type[AuthError]) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError as exc:
        raise error_cls(f"Marketplace answered {response.status_code} with a non-JSON body.") from exc
    if not isinstance(body, dict):
        raise error_cls(f"Marketplace answered {response.status_code} with an unexpected body.")
    return body


class MercadoPagoGateway:
    """Wrapper around the marketplace REST API.

    ``access_token`` is the producer's delegated token for charge calls, or the
    platform token for payment look-ups. OAuth code exchange uses the
    platform's client credentials from ``config`` and needs no token.
    """

    def __init__(
        self,
        config: MarketplaceConfig,
        access_token: str | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self._access_token = access_token
        self._client = httpx.Client(
            base_url=config.api_url,
            timeout=config.timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    def __enter__(self) -> "MercadoPagoGateway":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _bearer_headers(self) -> dict[str, str]:
        if not self._access_token:
            raise ConfigurationError("Marketplace access token is required for this call.")
        return {"Authorization": f"Bearer {self._access_token}"}

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.error(
                "Marketplace gateway unreachable",
                extra={"method": method, "path": path, "error": str(exc)},
            )
            raise GatewayError(f"Marketplace gateway unreachable: {exc}") from exc

        if response.status_code in (401, 403):
            logger.warning(
                "Marketplace gateway rejected access token",
                extra={
                    "path": path,
                    "status_code": response.status_code,
                    "token": token_hint(self._access_token),
                },
            )
            raise CredentialInvalid(
                f"Marketplace rejected the access token: {_error_message(response)}",
                details={"gateway_status": response.status_code},
            )
        if response.is_error:
            message = _error_message(response)
            logger.error(
                "Marketplace gateway error",
                extra={"path": path, "status_code": response.status_code, "gateway_message": message},
            )
            raise GatewayError(f"Marketplace error: {message}", gateway_status=response.status_code)
        return _json_object(response, GatewayError)

    def create_preference(self, payload: dict[str, Any]) -> dict[str, Any]:
        logger.info(
            "Creating checkout preference",
            extra={
                "external_reference": payload.get("external_reference"),
                "application_fee": payload.get("application_fee"),
                "token": token_hint(self._access_token),
            },
        )
        return self._request("POST", PREFERENCES_PATH, json=payload, headers=self._bearer_headers())

    def create_payment(self, payload: dict[str, Any], *, idempotency_key: str) -> dict[str, Any]:
        logger.info(
            "Submitting direct charge",
            extra={
                "external_reference": payload.get("external_reference"),
                "payment_method_id": payload.get("payment_method_id"),
                "application_fee": payload.get("application_fee"),
            },
        )
        headers = {**self._bearer_headers(), "X-Idempotency-Key": idempotency_key}
        return self._request("POST", PAYMENTS_PATH, json=payload, headers=headers)

    def get_payment(self, payment_id: str | int) -> dict[str, Any]:
        return self._request("GET", f"{PAYMENTS_PATH}/{payment_id}", headers=self._bearer_headers())

    def exchange_authorization_code(self, code: str, redirect_uri: str) -> dict[str, Any]:
        """Trade a single-use authorization code for the producer's tokens."""

        client_id, client_secret = self.config.require_oauth_client()
        form = {
            "client_id": client_id,
            "client_secret": client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        }
        try:
            response = self._client.post(OAUTH_TOKEN_PATH, data=form)
        except httpx.HTTPError as exc:
            raise GatewayError(f"Marketplace OAuth endpoint unreachable: {exc}") from exc

        if response.is_error:
            message = _error_message(response)
            logger.warning(
                "Authorization code exchange rejected",
                extra={"status_code": response.status_code, "gateway_message": message},
            )
            raise AuthError(f"Marketplace rejected the authorization code: {message}")
        data = _json_object(response, AuthError)
        if not data.get("access_token"):
            raise AuthError("Marketplace token response carried no access_token.")
        return data


def build_preference_payload(
    *,
    config: MarketplaceConfig,
    title: str,
    fee_split: FeeSplit,
    external_reference: str,
    item_id: str | None = None,
    success_url: str | None = None,
    failure_url: str | None = None,
    pending_url: str | None = None,
    payer_email: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "items": [
            {
                "id": item_id or external_reference,
                "title": title,
                "quantity": 1,
                "currency_id": "BRL",
                "unit_price": float(fee_split.amount),
            }
        ],
        "application_fee": float(fee_split.platform_fee),
        "notification_url": config.notification_url,
        "external_reference": external_reference,
        "back_urls": {
            "success": success_url or config.success_url,
            "failure": failure_url or config.failure_url,
            "pending": pending_url or config.pending_url,
        },
        "auto_return": "approved",
    }
    if payer_email:
        payload["payer"] = {"email": payer_email}
    return payload


def build_payment_payload(
    form_data: Mapping[str, Any],
    *,
    config: MarketplaceConfig,
    fee_split: FeeSplit,
    external_reference: str,
    description: str | None = None,
) -> dict[str, Any]:
    """Merge the platform's fields into the payment widget's form data.

    The amount always comes from the fee split, never from the widget.
    """

    payload = dict(form_data)
    payload["transaction_amount"] = float(fee_split.amount)
    payload["application_fee"] = float(fee_split.platform_fee)
    payload["external_reference"] = external_reference
    payload["notification_url"] = config.notification_url
    if description and not payload.get("description"):
        payload["description"] = description
    return payload


def _decimal_or_none(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def payment_status_update(payment: Mapping[str, Any]) -> StatusUpdate:
    """Normalise a marketplace payment object."""

    raw_status = payment.get("status")
    return StatusUpdate(
        status=PaymentStatus.parse(raw_status),
        raw_status=raw_status,
        status_detail=payment.get("status_detail"),
        external_reference=payment.get("external_reference"),
        mp_payment_id=str(payment["id"]) if payment.get("id") is not None else None,
        amount=_decimal_or_none(payment.get("transaction_amount")),
        approved_at=parse_gateway_datetime(payment.get("date_approved")),
        payment_method=payment.get("payment_method_id"),
        payment_type=payment.get("payment_type_id"),
    )


def payer_fields(payment: Mapping[str, Any]) -> dict[str, str | None]:
    payer = payment.get("payer") or {}
    identification = payer.get("identification") or {}
    names = [payer.get("first_name"), payer.get("last_name")]
    name = " ".join(part for part in names if part) or None
    return {
        "payer_email": payer.get("email"),
        "payer_name": name,
        "payer_document": identification.get("number"),
    }


__all__ = [
    "MercadoPagoGateway",
    "build_preference_payload",
    "build_payment_payload",
    "payment_status_update",
    "payer_fields",
]
