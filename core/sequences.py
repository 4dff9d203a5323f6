"""Document number allocation.

Every document type owns one ``Sequence`` row. Issuing a number is a single
``UPDATE ... SET current = current + 1`` followed by a read inside the same
transaction, so the row lock taken by the update serialises concurrent callers
and no two callers can observe the same counter value.
"""

import logging
from dataclasses import dataclass

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from core.models import CompanySettings, Sequence

logger = logging.getLogger("erp.sequence")


@dataclass(frozen=True)
class NumberFormat:
    sequence_type: str
    prefix_field: str
    width: int


NUMBER_FORMATS = {
    "quotation": NumberFormat("quotation", "quotation_prefix", 5),
    "invoice": NumberFormat("invoice", "invoice_prefix", 5),
    "payment": NumberFormat("payment", "payment_prefix", 5),
    "supplier_payment": NumberFormat("supplier_payment", "supplier_payment_prefix", 5),
    "purchase_order": NumberFormat("purchase_order", "purchase_order_prefix", 4),
    "customer": NumberFormat("customer", "customer_prefix", 4),
    "supplier": NumberFormat("supplier", "supplier_prefix", 4),
    "grn": NumberFormat("grn", "grn_prefix", 4),
}


def format_number(prefix, counter, width):
    return f"{prefix}{counter:0{width}d}"


def _increment(sequence_type):
    updated = Sequence.objects.filter(type=sequence_type).update(current=F("current") + 1)
    if not updated:
        return None
    return Sequence.objects.values_list("current", flat=True).get(type=sequence_type)


def next_value(sequence_type, prefix=""):
    """Atomically bump the counter for ``sequence_type`` and return the new value."""
    with transaction.atomic():
        counter = _increment(sequence_type)
        if counter is not None:
            return counter

        try:
            with transaction.atomic():
                Sequence.objects.create(type=sequence_type, current=1, prefix=prefix)
            return 1
        except IntegrityError:
            # Another caller created the row first.
            counter = _increment(sequence_type)
            if counter is None:
                raise
            return counter


def allocate(sequence_type, prefix="", width=4):
    counter = next_value(sequence_type, prefix)
    number = format_number(prefix, counter, width)
    logger.debug("sequence_allocated type=%s number=%s", sequence_type, number, extra={"document_number": number})
    return number


def next_document_number(kind, company=None, on_date=None):
    """Issue the next number for a document kind using the company's configured prefix.

    GRNs restart per calendar year and embed it: ``GRN-2024-0001``.
    """
    number_format = NUMBER_FORMATS[kind]
    company = company or CompanySettings.load()
    prefix = getattr(company, number_format.prefix_field)
    sequence_type = number_format.sequence_type

    if kind == "grn":
        year = (on_date or timezone.localdate()).year
        sequence_type = f"{sequence_type}-{year}"
        prefix = f"{prefix}{year}-"

    return allocate(sequence_type, prefix=prefix, width=number_format.width)
