"""Document totals and payment settlement arithmetic.

Amounts are carried as unrounded ``Decimal`` values through the calculation and
only quantized to cents by :func:`compute_totals` on the way out.
"""

from dataclasses import dataclass, field
from decimal import Decimal

from rest_framework.exceptions import NotFound

from common.utils import ZERO, to_decimal, to_money
from core.models import Tax

HUNDRED = Decimal("100")
SETTLEMENT_TOLERANCE = Decimal("0.01")


@dataclass
class LineTotal:
    quantity: Decimal
    unit_price: Decimal
    discount: Decimal
    gross: Decimal
    discount_amount: Decimal
    total: Decimal


@dataclass
class DocumentTotals:
    subtotal: Decimal = ZERO
    discount_amount: Decimal = ZERO
    tax_amount: Decimal = ZERO
    total: Decimal = ZERO
    lines: list = field(default_factory=list)


def line_total(quantity, unit_price, discount=0):
    quantity = to_decimal(quantity)
    unit_price = to_decimal(unit_price)
    discount = to_decimal(discount)
    gross = quantity * unit_price
    discount_amount = gross * (discount / HUNDRED)
    return LineTotal(
        quantity=quantity,
        unit_price=unit_price,
        discount=discount,
        gross=gross,
        discount_amount=discount_amount,
        total=gross - discount_amount,
    )


def compute_totals(items, discount_percent=0, tax_rates=()):
    """Compute subtotal, document discount, taxes and grand total.

    ``items`` are mappings with ``quantity``, ``unit_price`` and an optional
    per-line ``discount`` percentage. ``tax_rates`` are percentages; every tax
    applies to the discounted subtotal independently, they never compound.
    """
    lines = [line_total(item.get("quantity"), item.get("unit_price"), item.get("discount")) for item in items]
    subtotal = sum((line.total for line in lines), ZERO)
    discount_amount = subtotal * (to_decimal(discount_percent) / HUNDRED)
    taxable = subtotal - discount_amount
    tax_amount = sum((taxable * (to_decimal(rate) / HUNDRED) for rate in tax_rates), ZERO)

    return DocumentTotals(
        subtotal=to_money(subtotal),
        discount_amount=to_money(discount_amount),
        tax_amount=to_money(tax_amount),
        total=to_money(taxable + tax_amount),
        lines=[to_money(line.total) for line in lines],
    )


def resolve_taxes(tax_ids):
    """Load Tax rows for the given ids, preserving order and failing on unknown ids."""
    tax_ids = [str(tax_id) for tax_id in tax_ids or []]
    if not tax_ids:
        return []
    found = {str(tax.id): tax for tax in Tax.objects.filter(id__in=tax_ids)}
    missing = [tax_id for tax_id in tax_ids if tax_id not in found]
    if missing:
        raise NotFound(f"Tax not found: {', '.join(missing)}.")
    return [found[tax_id] for tax_id in tax_ids]


def compute_document_totals(items, discount_percent, taxes):
    return compute_totals(items, discount_percent, [tax.value for tax in taxes])


@dataclass(frozen=True)
class Settlement:
    paid: Decimal
    balance: Decimal
    state: str

    PAID = "paid"
    PARTIAL = "partial"
    UNPAID = "unpaid"


def settle(total, paid):
    """Derive balance and payment state from a document total and the sum of counted payments."""
    total = to_money(total)
    paid = to_money(paid)
    balance = total - paid
    if paid > ZERO and balance <= SETTLEMENT_TOLERANCE:
        state = Settlement.PAID
    elif paid > ZERO:
        state = Settlement.PARTIAL
    else:
        state = Settlement.UNPAID
    return Settlement(paid=paid, balance=max(balance, ZERO), state=state)


def exceeds_balance(amount, available):
    return to_money(amount) > to_money(available) + SETTLEMENT_TOLERANCE
