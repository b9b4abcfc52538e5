"""ORM models package."""
from .base import Base
from .credential import EfiAccountConfig, OAuthToken
from .financial_log import FinancialLog
from .payment import (
    FAILED_STATUSES,
    REVERSAL_STATUSES,
    SETTLED_STATUSES,
    TERMINAL_STATUSES,
    Payment,
    PaymentGateway,
    PaymentSplit,
    PaymentStatus,
    RecipientType,
    SplitStatus,
)
from .producer import DocumentType, Producer, ProducerStatus
from .product import Product
from .webhook_event import WebhookEvent

__all__ = [
    "Base",
    "DocumentType",
    "EfiAccountConfig",
    "FAILED_STATUSES",
    "FinancialLog",
    "OAuthToken",
    "Payment",
    "PaymentGateway",
    "PaymentSplit",
    "PaymentStatus",
    "Producer",
    "ProducerStatus",
    "Product",
    "RecipientType",
    "REVERSAL_STATUSES",
    "SETTLED_STATUSES",
    "SplitStatus",
    "TERMINAL_STATUSES",
    "WebhookEvent",
]
