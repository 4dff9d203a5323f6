import logging
from datetime import timedelta

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from common.exceptions import DomainValidationError, InvalidTransition, Overpayment
from common.utils import ZERO, to_decimal, to_money
from core.models import CompanySettings
from core.sequences import next_document_number
from core.totals import exceeds_balance, settle
from core.workflow import change_status, log_transition, transition
from inventory.models import Location, StockTransaction
from inventory.services import StockLine, StockReference, deduct_stock, price_items, restore_stock, write_priced_lines
from sales.models import Invoice, InvoiceLine, Payment, Quotation, QuotationLine

reconciliation_logger = logging.getLogger("erp.reconciliation")

INVOICE_DUE_DAYS = 30
INVOICE_STATUS_CHANGES = {status: Invoice.MANUAL_STATUSES - {status} for status in Invoice.MANUAL_STATUSES}


def _apply_company_defaults(fields, company):
    if not fields.get("terms"):
        fields["terms"] = company.default_terms
    if not fields.get("notes"):
        fields["notes"] = company.default_notes


def _line_payloads(document):
    return [
        {
            "product": line.product,
            "description": line.description,
            "quantity": line.quantity,
            "unit_price": line.unit_price,
            "discount": line.discount,
            "location": getattr(line, "location", None),
        }
        for line in document.items.select_related("product")
    ]


def _reprice(document, items, discount_percent, taxes):
    """Recompute and store totals; ``None`` arguments fall back to what the document already has."""
    if discount_percent is not None:
        document.discount_percent = to_decimal(discount_percent)
    tax_ids = taxes if taxes is not None else list(document.taxes.values_list("id", flat=True))
    totals, tax_rows = price_items(items, document.discount_percent, tax_ids)
    document.apply_totals(totals)
    return tax_rows


# Quotations


@transaction.atomic
def create_quotation(*, items, taxes=(), discount_percent=0, created_by=None, company=None, **fields):
    company = company or CompanySettings.load()
    _apply_company_defaults(fields, company)
    totals, tax_rows = price_items(items, discount_percent, taxes)
    quotation = Quotation(
        quotation_number=next_document_number("quotation", company),
        discount_percent=to_decimal(discount_percent),
        created_by=created_by,
        **fields,
    )
    quotation.apply_totals(totals)
    quotation.save()
    quotation.taxes.set(tax_rows)
    write_priced_lines(QuotationLine, "quotation", quotation, items)
    return quotation


@transaction.atomic
def update_quotation(quotation, *, items=None, taxes=None, discount_percent=None, **fields):
    quotation = Quotation.objects.select_for_update().get(pk=quotation.pk)
    if quotation.converted_to_invoice:
        raise InvalidTransition(f"Quotation {quotation.quotation_number} was converted to an invoice and cannot be edited.")

    for name, value in fields.items():
        setattr(quotation, name, value)
    rewrite_lines = items is not None
    if items is None:
        items = _line_payloads(quotation)

    tax_rows = _reprice(quotation, items, discount_percent, taxes)
    quotation.save()
    quotation.taxes.set(tax_rows)
    if rewrite_lines:
        quotation.items.all().delete()
        write_priced_lines(QuotationLine, "quotation", quotation, items)
    return quotation


@transaction.atomic
def set_quotation_status(quotation, new_status):
    quotation = Quotation.objects.select_for_update().get(pk=quotation.pk)
    if quotation.converted_to_invoice:
        raise InvalidTransition(f"Quotation {quotation.quotation_number} was converted to an invoice; its status is final.")
    return change_status(quotation, new_status, Quotation.STATUS_CHANGES)


@transaction.atomic
def convert_quotation(quotation, *, performed_by=None, company=None):
    """Create an invoice from a quotation through the regular invoice path, stock deduction included."""
    quotation = Quotation.objects.select_for_update().get(pk=quotation.pk)
    if quotation.converted_to_invoice:
        raise InvalidTransition(f"Quotation {quotation.quotation_number} has already been converted to an invoice.")
    if quotation.status not in Quotation.CONVERTIBLE_STATUSES:
        raise InvalidTransition(
            f"Cannot convert quotation in status '{quotation.status}'. Allowed from: approved, sent."
        )

    invoice = create_invoice(
        items=_line_payloads(quotation),
        taxes=list(quotation.taxes.values_list("id", flat=True)),
        discount_percent=quotation.discount_percent,
        created_by=performed_by,
        company=company,
        customer=quotation.customer,
        due_date=timezone.localdate() + timedelta(days=INVOICE_DUE_DAYS),
        notes=quotation.notes,
        terms=quotation.terms,
        quotation=quotation,
    )

    quotation.converted_to_invoice = True
    quotation.invoice = invoice
    quotation.save(update_fields=["converted_to_invoice", "invoice", "updated_at"])
    log_transition(quotation, "convert", quotation.status, quotation.status)
    return invoice


# Invoices


def _stock_lines(invoice, default_location=None):
    lines = []
    for line in invoice.items.select_related("product", "location"):
        location = line.location or invoice.location
        if location is None:
            default_location = default_location or Location.get_default()
            location = default_location
        lines.append(StockLine(product=line.product, location=location, quantity=line.quantity))
    return lines


def _invoice_reference(invoice):
    return StockReference.for_document(StockTransaction.ReferenceType.INVOICE, invoice)


def _counted_payments(invoice, exclude=None):
    payments = invoice.payments.filter(status__in=Payment.COUNTED_STATUSES)
    if exclude is not None:
        payments = payments.exclude(pk=exclude.pk)
    return payments.aggregate(total=Sum("amount"))["total"] or ZERO


@transaction.atomic
def create_invoice(*, items, taxes=(), discount_percent=0, created_by=None, company=None, **fields):
    """Issue an invoice and deduct its stock; a shortage on any line leaves nothing behind."""
    company = company or CompanySettings.load()
    _apply_company_defaults(fields, company)
    totals, tax_rows = price_items(items, discount_percent, taxes)
    invoice = Invoice(
        invoice_number=next_document_number("invoice", company),
        discount_percent=to_decimal(discount_percent),
        created_by=created_by,
        **fields,
    )
    invoice.apply_totals(totals)
    invoice.paid_amount = ZERO
    invoice.balance_amount = invoice.total
    invoice.save()
    invoice.taxes.set(tax_rows)
    write_priced_lines(InvoiceLine, "invoice", invoice, items, extra_fields=("location",))

    deduct_stock(_stock_lines(invoice), reference=_invoice_reference(invoice), performed_by=created_by)
    return invoice


@transaction.atomic
def update_invoice(invoice, *, items=None, taxes=None, discount_percent=None, performed_by=None, **fields):
    invoice = Invoice.objects.select_for_update().get(pk=invoice.pk)
    if _counted_payments(invoice) > ZERO:
        raise InvalidTransition(f"Invoice {invoice.invoice_number} has recorded payments and cannot be edited.")

    previous_lines = _stock_lines(invoice)
    location_changed = "location" in fields and fields["location"] != invoice.location
    for name, value in fields.items():
        setattr(invoice, name, value)

    rewrite_lines = items is not None
    if items is None:
        items = _line_payloads(invoice)

    tax_rows = _reprice(invoice, items, discount_percent, taxes)
    invoice.save()
    invoice.taxes.set(tax_rows)

    if rewrite_lines or location_changed:
        reference = _invoice_reference(invoice)
        restore_stock(
            previous_lines,
            reference=reference,
            performed_by=performed_by,
            notes=f"Reversed for update of {invoice.invoice_number}",
        )
        if rewrite_lines:
            invoice.items.all().delete()
            write_priced_lines(InvoiceLine, "invoice", invoice, items, extra_fields=("location",))
        deduct_stock(_stock_lines(invoice), reference=reference, performed_by=performed_by)

    return reconcile_invoice(invoice)


@transaction.atomic
def delete_invoice(invoice, *, performed_by=None):
    invoice = Invoice.objects.select_for_update().get(pk=invoice.pk)
    if _counted_payments(invoice) > ZERO:
        raise InvalidTransition(f"Invoice {invoice.invoice_number} has recorded payments and cannot be deleted.")

    restore_stock(
        _stock_lines(invoice),
        reference=_invoice_reference(invoice),
        performed_by=performed_by,
        notes=f"Restored on deletion of {invoice.invoice_number}",
    )
    invoice.payments.all().delete()
    invoice.delete()


@transaction.atomic
def set_invoice_status(invoice, new_status):
    invoice = Invoice.objects.select_for_update().get(pk=invoice.pk)
    if invoice.status in Invoice.SETTLED_STATUSES:
        raise InvalidTransition(
            f"Invoice {invoice.invoice_number} is '{invoice.status}'; its status follows its payments."
        )
    if new_status in Invoice.SETTLED_STATUSES:
        raise InvalidTransition("Paid and partial statuses are set by recording payments.")
    return change_status(invoice, new_status, INVOICE_STATUS_CHANGES)


@transaction.atomic
def decide_invoice_approval(invoice, *, approve, performed_by=None):
    invoice = Invoice.objects.select_for_update().get(pk=invoice.pk)
    return transition(
        invoice,
        "approve" if approve else "reject",
        actor=performed_by,
        stamps=[("approved_by", "approved_at")],
        field="approval_status",
        transitions=Invoice.APPROVAL_TRANSITIONS,
    )


@transaction.atomic
def reconcile_invoice(invoice):
    """Recompute paid/balance from completed payments and derive the settled status."""
    invoice = Invoice.objects.select_for_update().get(pk=invoice.pk)
    settlement = settle(invoice.total, _counted_payments(invoice))
    invoice.paid_amount = settlement.paid
    invoice.balance_amount = settlement.balance
    if settlement.state == settlement.PAID:
        invoice.status = Invoice.Status.PAID
    elif settlement.state == settlement.PARTIAL:
        invoice.status = Invoice.Status.PARTIAL
    elif invoice.status in Invoice.SETTLED_STATUSES:
        invoice.status = Invoice.Status.SENT
    invoice.save(update_fields=["paid_amount", "balance_amount", "status", "updated_at"])
    reconciliation_logger.info(
        "invoice_reconciled paid=%s balance=%s status=%s",
        invoice.paid_amount,
        invoice.balance_amount,
        invoice.status,
        extra={"document": "invoice", "document_id": str(invoice.pk), "document_number": invoice.invoice_number},
    )
    return invoice


# Payments


def _ensure_within_invoice_balance(invoice, amount, exclude=None):
    available = max(to_money(invoice.total) - to_money(_counted_payments(invoice, exclude)), ZERO)
    if exceeds_balance(amount, available):
        raise Overpayment(
            {"amount": f"Payment amount exceeds balance: requested {to_money(amount)}, available {to_money(available)}."}
        )


@transaction.atomic
def record_payment(*, invoice, amount, created_by=None, company=None, **fields):
    invoice = Invoice.objects.select_for_update().get(pk=invoice.pk)
    if invoice.status == Invoice.Status.CANCELLED:
        raise DomainValidationError({"invoice": "Payments cannot be recorded against a cancelled invoice."})
    if fields.get("status", Payment.Status.COMPLETED) in Payment.COUNTED_STATUSES:
        _ensure_within_invoice_balance(invoice, amount)

    payment = Payment.objects.create(
        payment_number=next_document_number("payment", company),
        invoice=invoice,
        customer_id=invoice.customer_id,
        amount=to_money(amount),
        created_by=created_by,
        **fields,
    )
    reconcile_invoice(invoice)
    return payment


@transaction.atomic
def update_payment(payment, **fields):
    invoice = Invoice.objects.select_for_update().get(pk=payment.invoice_id)
    for name, value in fields.items():
        setattr(payment, name, value)
    payment.amount = to_money(payment.amount)
    if payment.status in Payment.COUNTED_STATUSES:
        if invoice.status == Invoice.Status.CANCELLED:
            raise DomainValidationError({"invoice": "Payments cannot be completed against a cancelled invoice."})
        _ensure_within_invoice_balance(invoice, payment.amount, exclude=payment)
    payment.save()
    reconcile_invoice(invoice)
    return payment


@transaction.atomic
def delete_payment(payment):
    invoice = payment.invoice
    payment.delete()
    return reconcile_invoice(invoice)
