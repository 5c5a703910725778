"""Discount calculation and checkout discount validation.

Two kinds of discount exist:
- payment-method discounts, configured per item and applied automatically
  when the customer pays with one of the listed methods (apply_discount)
- payment-time discounts, typed in by staff at checkout and bounded by the
  deployment's discount limit (validate_discount)

Limits and discounts may be in different units. All comparisons happen in
currency, using the order subtotal to convert percentages.
"""

import logging
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

from services.discounts.schema import DiscountValidation

logger = logging.getLogger(__name__)

Number = Decimal | int | float | str

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENTS = Decimal("0.01")


def _to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_currency(percent: Number, base: Number) -> Decimal:
    """Currency amount that `percent` percent of `base` represents."""
    return _to_decimal(base) * _to_decimal(percent) / HUNDRED


def to_percent(amount: Number, base: Number) -> Decimal:
    """Percentage of `base` that `amount` represents (0 for a non-positive base)."""
    base = _to_decimal(base)
    if base <= 0:
        return ZERO
    return _to_decimal(amount) / base * HUNDRED


def format_currency(value: Number) -> str:
    """Format a value as Brazilian reais, e.g. R$ 1.234,56."""
    amount = _to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)
    sign = "-" if amount < 0 else ""
    text = f"{abs(amount):,.2f}"
    text = text.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{sign}R$ {text}"


def format_percent(value: Number) -> str:
    """Format percentage points with up to two decimals, e.g. 12,5%."""
    text = f"{_to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP):f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return f"{text.replace('.', ',')}%"


def _is_active(discount_type: str | None, discount_value: Number | None) -> bool:
    if not discount_type or discount_type == "none" or discount_value is None:
        return False
    return _to_decimal(discount_value) > 0


def _discounted(base: Decimal, discount_type: str, value: Decimal) -> Decimal:
    if discount_type == "fixed":
        return max(ZERO, base - value)
    if discount_type == "percentage":
        return max(ZERO, base - base * value / HUNDRED)
    return base


def apply_discount(
    base_price: Number,
    discount_type: str | None,
    discount_value: Number | None,
    applies_to: Iterable[str] | None,
    payment_method: str,
) -> Decimal:
    """Price after a payment-method discount.

    Args:
        base_price: Item price before discount
        discount_type: 'fixed', 'percentage', 'none' or None
        discount_value: Amount in reais (fixed) or percentage points
        applies_to: Payment methods the discount is offered for
        payment_method: Method the customer is paying with

    Returns:
        Discounted price, never negative; the base price when the discount
        does not apply
    """
    base = _to_decimal(base_price)

    if not _is_active(discount_type, discount_value):
        return base

    if not applies_to or payment_method not in set(applies_to):
        return base

    return _discounted(base, discount_type, _to_decimal(discount_value))  # type: ignore[arg-type]


def apply_order_discount(
    subtotal: Number,
    discount_type: str | None,
    discount_value: Number | None,
) -> Decimal:
    """Order total after an order-level discount, never negative."""
    base = _to_decimal(subtotal)
    if not _is_active(discount_type, discount_value):
        return base
    return _discounted(base, discount_type, _to_decimal(discount_value))  # type: ignore[arg-type]


def validate_discount(
    discount_type: str | None,
    discount_value: Number | None,
    limit_type: str | None,
    limit_value: Number | None,
    subtotal: Number,
) -> DiscountValidation:
    """Check a checkout discount against the configured limit.

    A percentage limit is turned into a currency ceiling with the subtotal,
    and a percentage discount into the currency amount it removes. The
    reason names the maximum in the discount's own unit, plus the limit's
    unit when they differ.

    Returns:
        DiscountValidation, valid when no discount or no limit is set
    """
    if not _is_active(discount_type, discount_value):
        return DiscountValidation(valid=True)

    if not limit_type or limit_type == "none" or limit_value is None:
        return DiscountValidation(valid=True)

    value = _to_decimal(discount_value)  # type: ignore[arg-type]
    limit = _to_decimal(limit_value)
    base = _to_decimal(subtotal)
    reason: str | None = None

    if discount_type == "fixed":
        if limit_type == "fixed":
            if value > limit:
                reason = (
                    f"Discount of {format_currency(value)} exceeds the maximum allowed "
                    f"of {format_currency(limit)}."
                )
        else:
            max_amount = to_currency(limit, base)
            if value > max_amount:
                reason = (
                    f"Discount of {format_currency(value)} exceeds the maximum allowed "
                    f"of {format_currency(max_amount)} ({format_percent(limit)} of the subtotal)."
                )
    elif discount_type == "percentage":
        if limit_type == "fixed":
            if to_currency(value, base) > limit:
                max_percent = to_percent(limit, base)
                reason = (
                    f"Discount of {format_percent(value)} exceeds the maximum allowed "
                    f"of {format_percent(max_percent)} ({format_currency(limit)})."
                )
        else:
            if value > limit:
                reason = (
                    f"Discount of {format_percent(value)} exceeds the maximum allowed "
                    f"of {format_percent(limit)}."
                )

    if reason:
        logger.info(f"Checkout discount rejected: {reason}")
        return DiscountValidation(valid=False, reason=reason)

    return DiscountValidation(valid=True)
