"""Discount rule, limit and validation models."""

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

DiscountType = Literal["fixed", "percentage", "none"]
PaymentMethod = Literal["Cash", "Card", "Voucher", "PIX"]


class DiscountRule(BaseModel):
    """Automatic discount attached to a sellable item or an order.

    Inert when `discount_type` is none, the value is missing or not
    positive, or the chosen payment method is not in `applies_to`.
    """

    discount_type: DiscountType | None = Field(None, description="fixed (R$) or percentage")
    discount_value: Decimal | None = Field(
        None, description="Currency amount or percentage points"
    )
    applies_to: list[PaymentMethod] = Field(
        default_factory=list, description="Payment methods that activate the discount"
    )


class DiscountLimit(BaseModel):
    """Ceiling for discretionary discounts entered at checkout."""

    limit_type: DiscountType | None = Field(None, description="fixed (R$) or percentage")
    limit_value: Decimal | None = Field(None, description="Currency amount or percentage points")


class DiscountValidation(BaseModel):
    """Outcome of checking a checkout discount against the configured limit."""

    valid: bool
    reason: str | None = None
