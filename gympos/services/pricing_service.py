"""
Pricing model for carts and recorded sales.

Pure functions: no database, no Flask context. The cart preview and the
checkout authority both call compute_totals, so a client and the server
always agree when given the same lines.

RULES:
- Giveaway lines never contribute to any amount.
- Subtotal covers every paid line; the cart-wide discount applies to it.
- Tax applies to inventory lines only (custom items included), after the
  same discount. Membership lines are never taxed.

ROUNDING:
- All amounts are integer cents.
- Total is computed exactly and rounded ONCE, half-up, to the cent.
- Discount, taxable base and tax are each rounded half-up for display, so
  on rare carts their sum can differ from Total by one cent. Total wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ..constants import KIND_INVENTORY

PERCENT = 100
BPS = 10_000


@dataclass(frozen=True)
class Totals:
    subtotal_cents: int
    discount_cents: int
    taxable_base_cents: int
    tax_cents: int
    total_cents: int
    discount_percent: int
    tax_rate_bps: int

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "taxable_base_cents": self.taxable_base_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "discount_percent": self.discount_percent,
            "tax_rate_bps": self.tax_rate_bps,
        }


def round_half_up(numerator: int, denominator: int) -> int:
    """Integer division rounded to nearest, ties away from zero."""
    if denominator <= 0:
        raise ValueError("denominator must be positive")
    if numerator < 0:
        return -round_half_up(-numerator, denominator)
    return (numerator + denominator // 2) // denominator


def line_total_cents(line) -> int:
    """Charged amount for one line; giveaways are always 0."""
    if line.is_giveaway:
        return 0
    return line.unit_price_paid_cents * line.quantity


def _payable(lines: Iterable) -> list:
    return [line for line in lines if not line.is_giveaway]


def compute_totals(lines: Iterable, discount_percent: int = 0, tax_rate_bps: int = 800) -> Totals:
    """
    Price a set of lines.

    `lines` may be cart LineItems or persisted TransactionLines; only
    kind, is_giveaway, quantity and unit_price_paid_cents are read.
    """
    if not isinstance(discount_percent, int) or isinstance(discount_percent, bool):
        raise ValueError("discount_percent must be an integer")
    if discount_percent < 0 or discount_percent > PERCENT:
        raise ValueError("discount_percent must be between 0 and 100")
    if tax_rate_bps < 0:
        raise ValueError("tax_rate_bps must be non-negative")

    payable = _payable(lines)
    subtotal = sum(line_total_cents(line) for line in payable)
    taxable_raw = sum(line_total_cents(line) for line in payable if line.kind == KIND_INVENTORY)

    keep = PERCENT - discount_percent

    discount = round_half_up(subtotal * discount_percent, PERCENT)
    taxable_base = round_half_up(taxable_raw * keep, PERCENT)
    tax = round_half_up(taxable_raw * keep * tax_rate_bps, PERCENT * BPS)

    # (subtotal - discount) + tax, kept exact until the final rounding
    total = round_half_up(
        subtotal * keep * BPS + taxable_raw * keep * tax_rate_bps,
        PERCENT * BPS,
    )

    return Totals(
        subtotal_cents=subtotal,
        discount_cents=discount,
        taxable_base_cents=taxable_base,
        tax_cents=tax,
        total_cents=total,
        discount_percent=discount_percent,
        tax_rate_bps=tax_rate_bps,
    )
