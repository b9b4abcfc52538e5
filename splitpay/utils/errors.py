"""Domain errors and helpers for standardized error responses."""
from typing import Any


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"success": False, "error": message, "code": code}
    if details:
        payload["details"] = details
    return payload


class SplitPayError(Exception):
    """Base class for every error surfaced by the payment core."""

    code = "SPLITPAY_ERROR"
    status_code = 400

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_response(self) -> dict[str, Any]:
        return error_response(self.code, self.message, self.details)


class ConfigurationError(SplitPayError):
    """Missing secrets or settings; fatal for the affected adapter."""

    code = "CONFIGURATION_ERROR"
    status_code = 503


class CertificateError(ConfigurationError):
    """The PKCS#12 bundle could not be decoded into a certificate and key."""

    code = "CERTIFICATE_ERROR"


class InvalidAmount(SplitPayError):
    code = "INVALID_AMOUNT"
    status_code = 422


class InvalidFeePercentage(SplitPayError):
    code = "INVALID_FEE_PERCENTAGE"
    status_code = 422


class ProducerNotFound(SplitPayError):
    code = "PRODUCER_NOT_FOUND"
    status_code = 404


class ProductNotFound(SplitPayError):
    code = "PRODUCT_NOT_FOUND"
    status_code = 404


class PaymentNotFound(SplitPayError):
    code = "PAYMENT_NOT_FOUND"
    status_code = 404


class WebhookEventNotFound(SplitPayError):
    code = "WEBHOOK_EVENT_NOT_FOUND"
    status_code = 404


class ProducerInactive(SplitPayError):
    code = "PRODUCER_INACTIVE"
    status_code = 409


class GatewayNotConnected(SplitPayError):
    """The producer never connected the requested gateway."""

    code = "GATEWAY_NOT_CONNECTED"
    status_code = 409


class CredentialInvalid(SplitPayError):
    """The stored credential is expired or was rejected; re-authorization is required."""

    code = "CREDENTIAL_INVALID"
    status_code = 409


class AuthError(SplitPayError):
    """The gateway rejected client credentials or an authorization code."""

    code = "AUTH_ERROR"
    status_code = 502


class GatewayError(SplitPayError):
    """A charge or preference call returned a non-2xx answer."""

    code = "GATEWAY_ERROR"
    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        gateway_status: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.gateway_status = gateway_status


class PersistenceError(SplitPayError):
    code = "PERSISTENCE_ERROR"
    status_code = 500


class WebhookSignatureInvalid(SplitPayError):
    code = "WEBHOOK_SIGNATURE_INVALID"
    status_code = 401


__all__ = [
    "error_response",
    "SplitPayError",
    "ConfigurationError",
    "CertificateError",
    "InvalidAmount",
    "InvalidFeePercentage",
    "ProducerNotFound",
    "ProductNotFound",
    "PaymentNotFound",
    "WebhookEventNotFound",
    "ProducerInactive",
    "GatewayNotConnected",
    "CredentialInvalid",
    "AuthError",
    "GatewayError",
    "PersistenceError",
    "WebhookSignatureInvalid",
]
