"""Schema package exports."""
from .oauth import ConnectAccountRequest, ConnectResponse, EfiConnectRequest
from .payment import (
    CheckoutPaymentData,
    CheckoutRequest,
    PayerData,
    PaymentRead,
    PaymentSplitRead,
    PixStatusRead,
)
from .producer import ProducerCreate, ProducerRead, ProductCreate, ProductRead
from .webhook import WebhookAck, WebhookEventRead

__all__ = [
    "CheckoutPaymentData",
    "CheckoutRequest",
    "ConnectAccountRequest",
    "ConnectResponse",
    "EfiConnectRequest",
    "PayerData",
    "PaymentRead",
    "PaymentSplitRead",
    "PixStatusRead",
    "ProducerCreate",
    "ProducerRead",
    "ProductCreate",
    "ProductRead",
    "WebhookAck",
    "WebhookEventRead",
]
