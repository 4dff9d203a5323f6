import logging
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal

from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import Count, F, Q, Sum
from django.utils import timezone

from common.exceptions import Conflict, DomainValidationError, InsufficientStock, InvalidTransition, Overpayment
from common.utils import ZERO, timestamp_reference, to_decimal, to_money, to_quantity
from core.sequences import next_document_number
from core.totals import compute_document_totals, exceeds_balance, resolve_taxes, settle
from core.workflow import ensure_transition, transition
from inventory.models import (
    GRN,
    GRNLine,
    Location,
    Product,
    PurchaseOrder,
    PurchaseOrderLine,
    Stock,
    StockBatch,
    StockSerial,
    StockTransaction,
    SupplierPayment,
)

logger = logging.getLogger("erp.stock")
reconciliation_logger = logging.getLogger("erp.reconciliation")

INITIAL_STOCK_REFERENCE = "INITIAL_STOCK"


@dataclass(frozen=True)
class StockReference:
    """Tagged link from a ledger row to whatever caused it."""

    type: str
    id: object = None
    number: str = ""

    @classmethod
    def for_document(cls, reference_type, document):
        return cls(type=reference_type, id=document.pk, number=document.number)


@dataclass(frozen=True)
class StockLine:
    product: Product
    location: Location
    quantity: Decimal


def _create_stock_row(product, location, **defaults):
    return Stock.objects.create(product=product, location=location, **defaults)


def lock_stock(product, location, *, create=False, defaults=None):
    """Return the row-locked stock row for (product, location), creating it when asked."""
    queryset = Stock.objects.select_for_update()
    try:
        return queryset.get(product=product, location=location)
    except Stock.DoesNotExist:
        if not create:
            return None

    try:
        with transaction.atomic():
            return _create_stock_row(product, location, **(defaults or {}))
    except IntegrityError:
        return queryset.get(product=product, location=location)


def _apply_movement(
    stock,
    delta,
    *,
    transaction_type,
    reference,
    performed_by=None,
    from_location=None,
    to_location=None,
    unit_price=None,
    batch_number="",
    notes="",
):
    delta = to_quantity(delta)
    balance_before = stock.quantity
    balance_after = balance_before + delta
    if balance_after < ZERO:
        raise InsufficientStock(
            {
                "stock": (
                    f"Insufficient stock for {stock.product.name} at {stock.location.name}: "
                    f"requested {abs(delta)}, available {balance_before}."
                ),
                "shortages": [_shortage(stock.product, stock.location, balance_before, abs(delta))],
            }
        )

    stock.quantity = balance_after
    update_fields = ["quantity", "updated_at"]
    if delta > ZERO:
        stock.last_restock_date = timezone.now()
        update_fields.append("last_restock_date")
    stock.save(update_fields=update_fields)

    magnitude = abs(delta)
    movement = StockTransaction.objects.create(
        transaction_type=transaction_type,
        stock=stock,
        product_id=stock.product_id,
        location_id=stock.location_id,
        from_location=from_location,
        to_location=to_location,
        quantity=magnitude,
        balance_before=balance_before,
        balance_after=balance_after,
        unit_price=unit_price,
        total_value=to_money(magnitude * unit_price) if unit_price is not None else None,
        reference_type=reference.type,
        reference_id=reference.id,
        reference_number=reference.number,
        batch_number=batch_number,
        notes=notes,
        performed_by=performed_by,
    )
    logger.info(
        "stock_movement type=%s product=%s location=%s delta=%s balance=%s->%s",
        transaction_type,
        stock.product_id,
        stock.location_id,
        delta,
        balance_before,
        balance_after,
        extra={"document_number": reference.number or None},
    )
    return movement


def _shortage(product, location, available, required):
    return {
        "product_id": str(product.pk),
        "product_name": product.name,
        "location_id": str(location.pk),
        "location_name": location.name,
        "available": str(available),
        "required": str(required),
    }


@transaction.atomic
def open_stock(product, location, quantity=0, *, performed_by=None, **settings):
    """Create the stock row for (product, location) with an opening balance."""
    quantity = to_quantity(quantity)
    if quantity < ZERO:
        raise DomainValidationError({"quantity": "Opening quantity cannot be negative."})
    if Stock.objects.filter(product=product, location=location).exists():
        raise Conflict(f"Stock for {product.name} already exists at {location.name}.")

    stock = _create_stock_row(product, location, **settings)
    if quantity > ZERO:
        _apply_movement(
            stock,
            quantity,
            transaction_type=StockTransaction.Type.STOCK_IN,
            reference=StockReference(type=StockTransaction.ReferenceType.MANUAL, number=INITIAL_STOCK_REFERENCE),
            performed_by=performed_by,
            to_location=location,
            unit_price=product.unit_cost,
            notes="Initial stock",
        )
    return stock


@transaction.atomic
def receive_stock(
    product,
    location,
    quantity,
    *,
    reference,
    performed_by=None,
    transaction_type=StockTransaction.Type.STOCK_IN,
    unit_price=None,
    batch=None,
    serial_numbers=(),
    notes="",
):
    quantity = to_quantity(quantity)
    if quantity <= ZERO:
        raise DomainValidationError({"quantity": "Received quantity must be greater than zero."})

    stock = lock_stock(
        product,
        location,
        create=True,
        defaults={"batch_tracking": bool(batch), "serial_tracking": bool(serial_numbers)},
    )
    movement = _apply_movement(
        stock,
        quantity,
        transaction_type=transaction_type,
        reference=reference,
        performed_by=performed_by,
        to_location=location,
        unit_price=unit_price,
        batch_number=(batch or {}).get("batch_number", ""),
        notes=notes,
    )

    if batch:
        StockBatch.objects.create(stock=stock, quantity=quantity, **batch)
    for serial_number in serial_numbers or ():
        StockSerial.objects.create(stock=stock, serial_number=serial_number, grn_number=(batch or {}).get("grn_number", ""))
    return movement


def _aggregate(lines):
    required = OrderedDict()
    for line in lines:
        key = (line.product.pk, line.location.pk)
        if key in required:
            product, location, quantity = required[key]
            required[key] = (product, location, quantity + to_quantity(line.quantity))
        else:
            required[key] = (line.product, line.location, to_quantity(line.quantity))
    return required


@transaction.atomic
def deduct_stock(lines, *, reference, performed_by=None, transaction_type=StockTransaction.Type.SALE):
    """Deduct every line or none of them.

    Quantities are summed per (product, location) before checking, so two lines
    drawing on the same row are validated against the combined demand.
    """
    lines = [line for line in lines if to_quantity(line.quantity) > ZERO]
    required = _aggregate(lines)

    locked = {}
    shortages = []
    for key in sorted(required, key=lambda pair: (str(pair[0]), str(pair[1]))):
        product, location, quantity = required[key]
        stock = lock_stock(product, location)
        available = stock.quantity if stock is not None else ZERO
        if available < quantity:
            shortages.append(_shortage(product, location, available, quantity))
        locked[key] = stock

    if shortages:
        logger.warning("stock_deduction_rejected shortages=%s", len(shortages), extra={"document_number": reference.number or None})
        raise InsufficientStock(
            {
                "stock": f"Insufficient stock for {len(shortages)} line(s).",
                "shortages": shortages,
            }
        )

    movements = []
    for line in lines:
        stock = locked[(line.product.pk, line.location.pk)]
        movements.append(
            _apply_movement(
                stock,
                -to_quantity(line.quantity),
                transaction_type=transaction_type,
                reference=reference,
                performed_by=performed_by,
                from_location=line.location,
            )
        )
    return movements


@transaction.atomic
def restore_stock(lines, *, reference, performed_by=None, notes=""):
    return [
        receive_stock(
            line.product,
            line.location,
            line.quantity,
            reference=reference,
            performed_by=performed_by,
            transaction_type=StockTransaction.Type.STOCK_IN,
            notes=notes,
        )
        for line in lines
        if to_quantity(line.quantity) > ZERO
    ]


ADJUSTMENT_TYPES = {
    StockTransaction.Type.ADJUSTMENT,
    StockTransaction.Type.DAMAGE,
    StockTransaction.Type.LOSS,
    StockTransaction.Type.EXPIRY,
}


@transaction.atomic
def adjust_stock(stock, delta, *, performed_by=None, transaction_type=StockTransaction.Type.ADJUSTMENT, notes=""):
    delta = to_quantity(delta)
    if delta == ZERO:
        raise DomainValidationError({"quantity": "Adjustment quantity cannot be zero."})
    if transaction_type not in ADJUSTMENT_TYPES:
        raise DomainValidationError({"transaction_type": f"'{transaction_type}' is not an adjustment type."})

    stock = Stock.objects.select_for_update().select_related("product", "location").get(pk=stock.pk)
    if stock.quantity + delta < ZERO:
        raise InsufficientStock(
            {
                "quantity": (
                    f"Adjustment would make stock negative: current {stock.quantity}, change {delta}."
                ),
                "shortages": [_shortage(stock.product, stock.location, stock.quantity, abs(delta))],
            }
        )
    return _apply_movement(
        stock,
        delta,
        transaction_type=transaction_type,
        reference=StockReference(type=StockTransaction.ReferenceType.ADJUSTMENT, number=timestamp_reference("ADJ")),
        performed_by=performed_by,
        from_location=stock.location if delta < ZERO else None,
        to_location=stock.location if delta > ZERO else None,
        notes=notes,
    )


def transfer_stock(product, from_location, to_location, quantity, *, performed_by=None, notes=""):
    """Move stock between locations as one unit.

    A failure on the destination side rolls the source decrement back before
    the error reaches the caller.
    """
    quantity = to_quantity(quantity)
    if quantity <= ZERO:
        raise DomainValidationError({"quantity": "Transfer quantity must be greater than zero."})
    if from_location.pk == to_location.pk:
        raise DomainValidationError({"to_location": "Destination must differ from source location."})

    reference = StockReference(type=StockTransaction.ReferenceType.TRANSFER, number=timestamp_reference("TRF"))
    try:
        with transaction.atomic():
            source = lock_stock(product, from_location)
            if source is None:
                raise InsufficientStock(
                    {
                        "stock": f"No stock for {product.name} at {from_location.name}.",
                        "shortages": [_shortage(product, from_location, ZERO, quantity)],
                    }
                )
            outgoing = _apply_movement(
                source,
                -quantity,
                transaction_type=StockTransaction.Type.TRANSFER,
                reference=reference,
                performed_by=performed_by,
                from_location=from_location,
                to_location=to_location,
                notes=notes,
            )
            destination = lock_stock(product, to_location, create=True)
            incoming = _apply_movement(
                destination,
                quantity,
                transaction_type=StockTransaction.Type.TRANSFER,
                reference=reference,
                performed_by=performed_by,
                from_location=from_location,
                to_location=to_location,
                notes=notes,
            )
    except DatabaseError as exc:
        logger.warning(
            "stock_transfer_rolled_back product=%s from=%s to=%s quantity=%s error=%s",
            product.pk,
            from_location.pk,
            to_location.pk,
            quantity,
            exc,
            extra={"document_number": reference.number},
        )
        raise Conflict(
            f"Transfer to {to_location.name} failed; {quantity} of {product.name} was restored at {from_location.name}."
        ) from exc

    return outgoing, incoming


def stock_alerts(queryset=None):
    queryset = queryset if queryset is not None else Stock.objects.filter(is_active=True)
    queryset = queryset.select_related("product", "location")
    low_stock = list(queryset.filter(quantity__lte=F("min_level")))
    reorder_needed = list(queryset.filter(quantity__gt=F("min_level"), quantity__lte=F("reorder_level")))
    return {
        "low_stock": low_stock,
        "reorder_needed": reorder_needed,
        "summary": {"low_stock_count": len(low_stock), "reorder_count": len(reorder_needed)},
    }


def stock_balance(product):
    rows = Stock.objects.filter(product=product).select_related("location").order_by("location__name")
    return {
        "product_id": str(product.pk),
        "product_name": product.name,
        "total_quantity": rows.aggregate(total=Sum("quantity"))["total"] or ZERO,
        "locations": [
            {
                "stock_id": str(row.pk),
                "location_id": str(row.location_id),
                "location_name": row.location.name,
                "quantity": row.quantity,
                "min_level": row.min_level,
                "reorder_level": row.reorder_level,
            }
            for row in rows
        ],
    }


# Purchasing


def write_priced_lines(model, parent_field, parent, items, extra_fields=()):
    for position, item in enumerate(items):
        extra = {name: item[name] for name in extra_fields if item.get(name) is not None}
        model.objects.create(
            **{parent_field: parent},
            **extra,
            product=item["product"],
            description=item.get("description") or item["product"].name,
            quantity=item["quantity"],
            unit_price=item["unit_price"],
            discount=item.get("discount") or 0,
            total=item["total"],
            position=position,
        )


def price_items(items, discount_percent, tax_ids):
    """Compute totals for incoming line payloads and stamp each line with its total."""
    taxes = resolve_taxes(tax_ids)
    totals = compute_document_totals(items, discount_percent, taxes)
    for item, total in zip(items, totals.lines):
        item["total"] = total
    return totals, taxes


@transaction.atomic
def create_purchase_order(*, items, taxes=(), discount_percent=0, created_by=None, company=None, **fields):
    totals, tax_rows = price_items(items, discount_percent, taxes)
    po = PurchaseOrder(
        po_number=next_document_number("purchase_order", company),
        discount_percent=to_decimal(discount_percent),
        created_by=created_by,
        **fields,
    )
    po.apply_totals(totals)
    po.save()
    po.taxes.set(tax_rows)
    write_priced_lines(PurchaseOrderLine, "purchase_order", po, items)
    Product.objects.filter(pk__in=[item["product"].pk for item in items]).update(
        last_po_number=po.po_number,
        last_po_date=po.po_date,
    )
    return po


@transaction.atomic
def update_purchase_order(po, *, items=None, taxes=None, discount_percent=None, **fields):
    if po.status != PurchaseOrder.Status.DRAFT or po.converted_to_grn:
        raise InvalidTransition("Only draft purchase orders that were not converted can be updated.")

    for name, value in fields.items():
        setattr(po, name, value)
    if discount_percent is not None:
        po.discount_percent = to_decimal(discount_percent)

    if items is None:
        items = [
            {"product": line.product, "description": line.description, "quantity": line.quantity, "unit_price": line.unit_price, "discount": line.discount}
            for line in po.items.select_related("product")
        ]
        rewrite_lines = False
    else:
        rewrite_lines = True
    tax_ids = taxes if taxes is not None else list(po.taxes.values_list("id", flat=True))

    totals, tax_rows = price_items(items, po.discount_percent, tax_ids)
    po.apply_totals(totals)
    po.save()
    po.taxes.set(tax_rows)
    if rewrite_lines:
        po.items.all().delete()
        write_priced_lines(PurchaseOrderLine, "purchase_order", po, items)
    return po


@transaction.atomic
def convert_purchase_order_to_grn(po, *, performed_by=None, company=None, location=None):
    po = PurchaseOrder.objects.select_for_update().get(pk=po.pk)
    if po.converted_to_grn:
        raise InvalidTransition(f"Purchase order {po.po_number} has already been converted to a GRN.")
    ensure_transition(po, "convert")

    grn = GRN.objects.create(
        grn_number=next_document_number("grn", company),
        purchase_order=po,
        supplier=po.supplier,
        location=location or Location.get_default(),
        notes=f"Created from PO: {po.po_number}",
        created_by=performed_by,
    )
    for position, line in enumerate(po.items.select_related("product")):
        GRNLine.objects.create(
            grn=grn,
            product=line.product,
            ordered_quantity=line.quantity,
            received_quantity=0,
            accepted_quantity=0,
            unit_price=line.unit_price,
            position=position,
        )
    grn.recalculate_value()
    grn.save(update_fields=["total_value", "balance_amount", "updated_at"])

    po.converted_to_grn = True
    po.grn = grn
    transition(po, "convert", actor=performed_by, extra_fields=["converted_to_grn", "grn"])
    return grn


def _write_grn_lines(grn, items):
    for position, item in enumerate(items):
        received = to_quantity(item.get("received_quantity") or 0)
        accepted = item.get("accepted_quantity")
        GRNLine.objects.create(
            grn=grn,
            product=item["product"],
            ordered_quantity=to_quantity(item.get("ordered_quantity") or 0),
            received_quantity=received,
            accepted_quantity=received if accepted is None else to_quantity(accepted),
            batch_number=item.get("batch_number", ""),
            serial_numbers=item.get("serial_numbers") or [],
            expiry_date=item.get("expiry_date"),
            manufacture_date=item.get("manufacture_date"),
            rejection_reason=item.get("rejection_reason", ""),
            inspection_notes=item.get("inspection_notes", ""),
            unit_price=to_money(item.get("unit_price") or 0),
            position=position,
        )


@transaction.atomic
def create_grn(*, items, created_by=None, company=None, **fields):
    fields.setdefault("location", Location.get_default())
    grn = GRN.objects.create(
        grn_number=next_document_number("grn", company, on_date=fields.get("grn_date")),
        created_by=created_by,
        **fields,
    )
    _write_grn_lines(grn, items)
    grn.recalculate_value()
    grn.save(update_fields=["total_value", "balance_amount", "updated_at"])
    return grn


@transaction.atomic
def update_grn(grn, *, items=None, **fields):
    if grn.status != GRN.Status.DRAFT:
        raise InvalidTransition("Only draft GRNs can be updated.")
    for name, value in fields.items():
        setattr(grn, name, value)
    if items is not None:
        grn.items.all().delete()
        _write_grn_lines(grn, items)
    grn.recalculate_value()
    grn.save()
    return grn


@transaction.atomic
def inspect_grn(grn, *, performed_by=None, items=(), quality_status=None, inspection_notes=""):
    grn = GRN.objects.select_for_update().get(pk=grn.pk)
    ensure_transition(grn, "inspect")

    lines = {str(line.pk): line for line in grn.items.all()}
    for update in items:
        line = lines.get(str(update["id"]))
        if line is None:
            raise DomainValidationError({"items": f"Line {update['id']} is not part of GRN {grn.grn_number}."})
        for field_name in ("received_quantity", "accepted_quantity", "rejection_reason", "inspection_notes", "batch_number", "serial_numbers", "expiry_date", "manufacture_date"):
            if field_name in update:
                setattr(line, field_name, update[field_name])
        if line.accepted_quantity > line.received_quantity:
            raise DomainValidationError({"items": f"Accepted quantity cannot exceed received quantity for line {line.pk}."})
        line.save()

    grn.quality_status = quality_status or GRN.QualityStatus.PASSED
    if inspection_notes:
        grn.notes = f"{grn.notes}\nInspection: {inspection_notes}".strip()
    grn.recalculate_value()
    return transition(
        grn,
        "inspect",
        actor=performed_by,
        stamps=[("inspected_by", "inspected_at")],
        extra_fields=["quality_status", "notes", "total_value", "balance_amount"],
    )


@transaction.atomic
def complete_grn(grn, *, performed_by=None):
    """Post accepted quantities into stock. Runs at most once per GRN."""
    grn = GRN.objects.select_for_update().select_related("location", "purchase_order").get(pk=grn.pk)
    if grn.stock_updated:
        raise InvalidTransition(f"Stock has already been updated for GRN {grn.grn_number}.")
    ensure_transition(grn, "complete")

    reference = StockReference.for_document(StockTransaction.ReferenceType.GRN, grn)
    po_number = grn.purchase_order.po_number if grn.purchase_order_id else ""
    for line in grn.items.select_related("product"):
        if line.accepted_quantity <= ZERO:
            continue
        batch = None
        if line.batch_number:
            batch = {
                "batch_number": line.batch_number,
                "expiry_date": line.expiry_date,
                "manufacture_date": line.manufacture_date,
                "po_number": po_number,
                "grn_number": grn.grn_number,
            }
        receive_stock(
            line.product,
            grn.location,
            line.accepted_quantity,
            reference=reference,
            performed_by=performed_by,
            transaction_type=StockTransaction.Type.GRN,
            unit_price=line.unit_price,
            batch=batch,
            serial_numbers=line.serial_numbers,
            notes=f"Received via {grn.grn_number}",
        )

    grn.stock_updated = True
    grn.stock_updated_at = timezone.now()
    return transition(grn, "complete", actor=performed_by, extra_fields=["stock_updated", "stock_updated_at"])


@transaction.atomic
def match_grn_invoice(grn, *, invoice_number, invoice_date=None, invoice_amount=None):
    grn.invoice_number = invoice_number
    grn.invoice_date = invoice_date
    grn.invoice_amount = invoice_amount
    grn.invoice_matched = True
    grn.save(update_fields=["invoice_number", "invoice_date", "invoice_amount", "invoice_matched", "updated_at"])
    return grn


# Supplier payments


def _counted_supplier_payments(grn, exclude=None):
    payments = grn.supplier_payments.filter(status__in=SupplierPayment.COUNTED_STATUSES)
    if exclude is not None:
        payments = payments.exclude(pk=exclude.pk)
    return payments.aggregate(total=Sum("amount"))["total"] or ZERO


def _ensure_within_grn_balance(grn, amount, exclude=None):
    available = max(to_money(grn.total_value) - to_money(_counted_supplier_payments(grn, exclude)), ZERO)
    if exceeds_balance(amount, available):
        raise Overpayment(
            {"amount": f"Payment amount exceeds balance: requested {to_money(amount)}, available {to_money(available)}."}
        )


@transaction.atomic
def reconcile_grn(grn):
    """Recompute paid/balance/payment status of a GRN from its counted supplier payments."""
    grn = GRN.objects.select_for_update().get(pk=grn.pk)
    settlement = settle(grn.total_value, _counted_supplier_payments(grn))
    grn.paid_amount = settlement.paid
    grn.balance_amount = settlement.balance
    grn.payment_status = settlement.state
    grn.save(update_fields=["paid_amount", "balance_amount", "payment_status", "updated_at"])
    reconciliation_logger.info(
        "grn_reconciled paid=%s balance=%s status=%s",
        grn.paid_amount,
        grn.balance_amount,
        grn.payment_status,
        extra={"document": "grn", "document_id": str(grn.pk), "document_number": grn.grn_number},
    )
    return grn


@transaction.atomic
def record_supplier_payment(*, grn, amount, created_by=None, company=None, **fields):
    grn = GRN.objects.select_for_update().get(pk=grn.pk)
    if grn.status not in GRN.PAYABLE_STATUSES:
        raise DomainValidationError({"grn": "Payments can only be recorded against approved or completed GRNs."})
    _ensure_within_grn_balance(grn, amount)

    payment = SupplierPayment.objects.create(
        payment_number=next_document_number("supplier_payment", company),
        grn=grn,
        supplier_id=grn.supplier_id,
        amount=to_money(amount),
        created_by=created_by,
        **fields,
    )
    reconcile_grn(grn)
    return payment


def _ensure_draft(payment, verb):
    if payment.status != SupplierPayment.Status.DRAFT:
        raise InvalidTransition(f"Only draft supplier payments can be {verb}.")


@transaction.atomic
def update_supplier_payment(payment, **fields):
    _ensure_draft(payment, "edited")
    grn = GRN.objects.select_for_update().get(pk=payment.grn_id)
    if "amount" in fields:
        _ensure_within_grn_balance(grn, fields["amount"], exclude=payment)
        fields["amount"] = to_money(fields["amount"])
    for name, value in fields.items():
        setattr(payment, name, value)
    payment.save()
    reconcile_grn(grn)
    return payment


@transaction.atomic
def delete_supplier_payment(payment):
    _ensure_draft(payment, "deleted")
    grn = payment.grn
    payment.delete()
    return reconcile_grn(grn)


@transaction.atomic
def approve_supplier_payment(payment, *, performed_by=None):
    grn = GRN.objects.select_for_update().get(pk=payment.grn_id)
    ensure_transition(payment, "approve")
    _ensure_within_grn_balance(grn, payment.amount, exclude=payment)
    transition(payment, "approve", actor=performed_by, stamps=[("approved_by", "approved_at")])
    reconcile_grn(grn)
    return payment


@transaction.atomic
def mark_supplier_payment_paid(payment, *, performed_by=None):
    transition(payment, "mark_paid", actor=performed_by, stamps=[("paid_by", "paid_at")])
    reconcile_grn(payment.grn)
    return payment


def purchase_order_report(queryset):
    rows = {
        row["status"]: {"count": row["count"], "total": row["total"] or ZERO}
        for row in queryset.values("status").annotate(count=Count("id"), total=Sum("total"))
    }
    return {
        "by_status": {status: rows.get(status, {"count": 0, "total": ZERO}) for status in PurchaseOrder.Status.values},
        "total_count": sum(row["count"] for row in rows.values()),
        "total_value": sum((row["total"] for row in rows.values()), ZERO),
    }


def grn_report(queryset):
    totals = queryset.aggregate(total_value=Sum("total_value"), paid=Sum("paid_amount"), balance=Sum("balance_amount"))
    by_status = {row["status"]: row["count"] for row in queryset.values("status").annotate(count=Count("id"))}
    return {
        "by_status": {status: by_status.get(status, 0) for status in GRN.Status.values},
        "pending_stock_update": queryset.filter(status=GRN.Status.APPROVED, stock_updated=False).count(),
        "unpaid": queryset.filter(~Q(payment_status=GRN.PaymentStatus.PAID), status__in=GRN.PAYABLE_STATUSES).count(),
        "total_value": totals["total_value"] or ZERO,
        "paid_amount": totals["paid"] or ZERO,
        "balance_amount": totals["balance"] or ZERO,
    }
