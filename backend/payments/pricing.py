# payments/pricing.py
# ============================================================================
# HANDMADE STORE BACKEND — CHECKOUT PRICING
# ============================================================================
# Totals are computed from authoritative per-unit prices only. No rounding is
# applied here; conversion to minor units happens at the processor boundary.
# ============================================================================

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, NamedTuple, Tuple

from config import DEFAULT_PRICING, PricingPolicy


class PriceBreakdown(NamedTuple):
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal


def calculate_totals(
    lines: Iterable[Tuple[Decimal, int]],
    policy: PricingPolicy = DEFAULT_PRICING,
) -> PriceBreakdown:
    """
    Price a cart from (unit_price, quantity) pairs.

    Shipping is free once the subtotal reaches the threshold (inclusive),
    otherwise the flat fee. Tax is a fixed share of the subtotal.
    """
    subtotal = sum((Decimal(price) * qty for price, qty in lines), Decimal("0"))
    shipping = (
        Decimal("0") if subtotal >= policy.free_shipping_threshold else policy.flat_shipping
    )
    tax = subtotal * policy.tax_rate
    return PriceBreakdown(
        subtotal=subtotal,
        shipping=shipping,
        tax=tax,
        total=subtotal + shipping + tax,
    )


def to_minor_units(amount: Decimal) -> int:
    """Decimal currency amount -> integer cents, half-up."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
