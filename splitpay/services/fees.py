"""Platform fee calculation."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from splitpay.utils.errors import InvalidAmount, InvalidFeePercentage

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
DEFAULT_FEE_PERCENTAGE = Decimal("10")


@dataclass(frozen=True)
class FeeSplit:
    """Result of splitting a payment between platform and producer."""

    amount: Decimal
    fee_percentage: Decimal
    platform_fee: Decimal
    producer_amount: Decimal

    @property
    def producer_percentage(self) -> Decimal:
        return HUNDRED - self.fee_percentage


def _to_decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None


def _resolve_fee_percentage(fee_percentage: Any, default: Decimal) -> Decimal:
    pct = _to_decimal(fee_percentage)
    if pct is None or pct.is_nan() or pct == 0:
        logger.info(
            "Fee percentage not set; using default",
            extra={"fee_percentage": None if pct is None else str(pct), "default": str(default)},
        )
        return default
    if pct.is_infinite() or pct < 0 or pct > HUNDRED:
        raise InvalidFeePercentage(f"Fee percentage must be between 0 and 100, got {pct}.")
    return pct


def compute_split(
    amount: Any,
    fee_percentage: Any = None,
    *,
    default_percentage: Decimal = DEFAULT_FEE_PERCENTAGE,
) -> FeeSplit:
    """Split ``amount`` into the platform fee and the producer's net share.

    The fee is rounded half-up to cents and the producer amount is the exact
    remainder, so ``platform_fee + producer_amount == amount`` always holds.
    """

    value = _to_decimal(amount)
    if value is None or not value.is_finite():
        raise InvalidAmount(f"Amount must be a positive number, got {amount!r}.")
    try:
        cents = value.quantize(CENT)
    except InvalidOperation as exc:
        raise InvalidAmount(f"Amount is out of range, got {amount!r}.") from exc
    if value != cents:
        raise InvalidAmount(f"Amount must have at most two decimal places, got {amount!r}.")
    value = cents
    if value <= 0:
        raise InvalidAmount(f"Amount must be a positive number, got {amount!r}.")

    pct = _resolve_fee_percentage(fee_percentage, default_percentage)
    platform_fee = (value * pct / HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)
    producer_amount = value - platform_fee
    return FeeSplit(
        amount=value,
        fee_percentage=pct,
        platform_fee=platform_fee,
        producer_amount=producer_amount,
    )


__all__ = ["FeeSplit", "compute_split", "DEFAULT_FEE_PERCENTAGE"]
