# emr_core/billing/reconciliation.py
"""
Pure money arithmetic for billings. No database access.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from emr_core.billing.models import BillingStatus
from emr_core.common.api.exceptions import InvalidAmount

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
TOLERANCE = Decimal("0.01")


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT)


def line_total(unit_price, quantity) -> Decimal:
    return money(Decimal(str(unit_price)) * int(quantity))


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal


def compute_totals(line_totals: Iterable[Decimal], *, discount=ZERO, tax=ZERO) -> Totals:
    discount = money(discount)
    tax = money(tax)

    if discount < ZERO:
        raise InvalidAmount({"discount": "Discount must be >= 0."})
    if tax < ZERO:
        raise InvalidAmount({"tax": "Tax must be >= 0."})

    subtotal = money(sum(line_totals, ZERO))
    if discount > subtotal:
        raise InvalidAmount({"discount": "Discount cannot exceed subtotal."})

    return Totals(subtotal=subtotal, discount=discount, tax=tax, total=money(subtotal - discount + tax))


def matches(claimed, expected: Decimal) -> bool:
    return abs(money(claimed) - expected) <= TOLERANCE


def reconcile_status(total: Decimal, completed_amounts: Iterable[Decimal], *, cancelled: bool = False) -> str:
    """
    Billing status as a pure function of its completed payments.

    cancelled suppresses recomputation; otherwise
      sum >= total     -> paid
      0 < sum < total  -> partially-paid
      else             -> pending
    """
    if cancelled:
        return BillingStatus.CANCELLED

    paid = money(sum(completed_amounts, ZERO))
    if paid >= money(total):
        return BillingStatus.PAID
    if paid > ZERO:
        return BillingStatus.PARTIALLY_PAID
    return BillingStatus.PENDING


def balance_due(total: Decimal, paid: Decimal) -> Decimal:
    return max(money(total) - money(paid), ZERO)
