"""Tests for checkout pricing policy."""

from decimal import Decimal

from config import PricingPolicy
from payments.pricing import calculate_totals, to_minor_units


def test_single_item_below_threshold():
    """45.99 pays flat shipping and 10% tax: 45.99 + 10 + 4.599 = 60.589."""
    totals = calculate_totals([(Decimal("45.99"), 1)])

    assert totals.subtotal == Decimal("45.99")
    assert totals.shipping == Decimal("10")
    assert totals.tax == Decimal("4.599")
    assert totals.total == Decimal("60.589")


def test_subtotal_exactly_at_threshold_ships_free():
    """The free-shipping boundary is inclusive."""
    totals = calculate_totals([(Decimal("25.00"), 2)])

    assert totals.subtotal == Decimal("50")
    assert totals.shipping == Decimal("0")
    assert totals.total == Decimal("55")


def test_subtotal_just_below_threshold_pays_shipping():
    totals = calculate_totals([(Decimal("49.99"), 1)])
    assert totals.shipping == Decimal("10")


def test_multiple_lines_are_summed():
    totals = calculate_totals([(Decimal("12.50"), 3), (Decimal("8.25"), 2)])

    assert totals.subtotal == Decimal("54.00")
    assert totals.shipping == Decimal("0")
    assert totals.tax == Decimal("5.4")
    assert totals.total == Decimal("59.4")


def test_custom_policy():
    policy = PricingPolicy(
        free_shipping_threshold=Decimal("100"), flat_shipping=Decimal("7.5"), tax_rate=Decimal("0")
    )
    totals = calculate_totals([(Decimal("60"), 1)], policy)

    assert totals.shipping == Decimal("7.5")
    assert totals.tax == Decimal("0")
    assert totals.total == Decimal("67.5")


def test_empty_cart_totals_are_zero_plus_shipping():
    totals = calculate_totals([])
    assert totals.subtotal == Decimal("0")
    assert totals.shipping == Decimal("10")


def test_to_minor_units_rounds_half_up():
    assert to_minor_units(Decimal("45.99")) == 4599
    assert to_minor_units(Decimal("4.599")) == 460
    assert to_minor_units(Decimal("0.005")) == 1
    assert to_minor_units(Decimal("10")) == 1000
