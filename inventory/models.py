import uuid

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone

from common.utils import ZERO, to_money
from core.models import Tax, User

DEFAULT_LOCATION_NAME = "Main Warehouse"
DEFAULT_LOCATION_CODE = "MAIN"


class Product(models.Model):
    class Unit(models.TextChoices):
        NUMBER = "No", "No"
        KILOGRAM = "Kg", "Kg"
        GRAM = "g", "g"
        LITRE = "Litre", "Litre"
        MILLILITRE = "ml", "ml"
        PACK = "Pack", "Pack"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    category = models.CharField(max_length=128, blank=True, default="")
    description = models.TextField(blank=True, default="")
    base_unit = models.CharField(max_length=16, choices=Unit.choices, default=Unit.NUMBER)
    pack_size = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    unit_cost = models.DecimalField(max_digits=12, decimal_places=2, default=0, validators=[MinValueValidator(0)])
    price = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    tax_rate = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=0,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )
    last_po_number = models.CharField(max_length=64, blank=True, default="")
    last_po_date = models.DateField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["name"], name="product_name_idx"),
            models.Index(fields=["category", "is_active"], name="product_category_active_idx"),
        ]

    def __str__(self):
        return self.name


class Location(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255, unique=True)
    code = models.CharField(max_length=32, unique=True)
    address = models.TextField(blank=True, default="")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name

    @classmethod
    def get_default(cls):
        location, _ = cls.objects.get_or_create(
            name=DEFAULT_LOCATION_NAME,
            defaults={"code": DEFAULT_LOCATION_CODE},
        )
        return location


class Stock(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="stock_rows")
    location = models.ForeignKey(Location, on_delete=models.PROTECT, related_name="stock_rows")
    quantity = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    min_level = models.DecimalField(max_digits=12, decimal_places=2, default=10)
    reorder_level = models.DecimalField(max_digits=12, decimal_places=2, default=20)
    batch_tracking = models.BooleanField(default=False)
    serial_tracking = models.BooleanField(default=False)
    last_restock_date = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["product", "location"], name="inventory_stock_product_location_unique"),
            models.CheckConstraint(condition=models.Q(quantity__gte=0), name="inventory_stock_quantity_non_negative"),
        ]
        indexes = [
            models.Index(fields=["location", "is_active"], name="stock_location_active_idx"),
        ]

    def __str__(self):
        return f"{self.product} @ {self.location}: {self.quantity}"


class StockBatch(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    stock = models.ForeignKey(Stock, on_delete=models.CASCADE, related_name="batches")
    batch_number = models.CharField(max_length=128)
    quantity = models.DecimalField(max_digits=12, decimal_places=2)
    expiry_date = models.DateField(null=True, blank=True)
    manufacture_date = models.DateField(null=True, blank=True)
    po_number = models.CharField(max_length=64, blank=True, default="")
    grn_number = models.CharField(max_length=64, blank=True, default="")
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [models.Index(fields=["stock", "batch_number"], name="stockbatch_stock_number_idx")]


class StockSerial(models.Model):
    class Status(models.TextChoices):
        AVAILABLE = "available", "Available"
        SOLD = "sold", "Sold"
        DAMAGED = "damaged", "Damaged"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    stock = models.ForeignKey(Stock, on_delete=models.CASCADE, related_name="serials")
    serial_number = models.CharField(max_length=128)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.AVAILABLE)
    grn_number = models.CharField(max_length=64, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["stock", "serial_number"], name="inventory_stockserial_unique"),
        ]


class StockTransaction(models.Model):
    """Append-only ledger row; ``balance_after = balance_before +/- quantity`` for ``stock``."""

    class Type(models.TextChoices):
        STOCK_IN = "stock_in", "Stock In"
        STOCK_OUT = "stock_out", "Stock Out"
        TRANSFER = "transfer", "Transfer"
        ADJUSTMENT = "adjustment", "Adjustment"
        GRN = "grn", "GRN"
        SALE = "sale", "Sale"
        DAMAGE = "damage", "Damage"
        LOSS = "loss", "Loss"
        EXPIRY = "expiry", "Expiry"

    class ReferenceType(models.TextChoices):
        GRN = "GRN", "GRN"
        INVOICE = "Invoice", "Invoice"
        ORDER = "Order", "Order"
        ADJUSTMENT = "Adjustment", "Adjustment"
        TRANSFER = "Transfer", "Transfer"
        MANUAL = "Manual", "Manual"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    transaction_type = models.CharField(max_length=16, choices=Type.choices)
    stock = models.ForeignKey(Stock, on_delete=models.PROTECT, related_name="transactions")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="stock_transactions")
    location = models.ForeignKey(Location, on_delete=models.PROTECT, related_name="stock_transactions")
    from_location = models.ForeignKey(
        Location, on_delete=models.PROTECT, related_name="outgoing_stock_transactions", null=True, blank=True
    )
    to_location = models.ForeignKey(
        Location, on_delete=models.PROTECT, related_name="incoming_stock_transactions", null=True, blank=True
    )
    quantity = models.DecimalField(max_digits=12, decimal_places=2)
    balance_before = models.DecimalField(max_digits=12, decimal_places=2)
    balance_after = models.DecimalField(max_digits=12, decimal_places=2)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    total_value = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)
    reference_type = models.CharField(max_length=16, choices=ReferenceType.choices, default=ReferenceType.MANUAL)
    reference_id = models.UUIDField(null=True, blank=True)
    reference_number = models.CharField(max_length=64, blank=True, default="")
    batch_number = models.CharField(max_length=128, blank=True, default="")
    notes = models.TextField(blank=True, default="")
    performed_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    transaction_date = models.DateTimeField(default=timezone.now)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-transaction_date", "-created_at"]
        constraints = [
            models.CheckConstraint(condition=models.Q(quantity__gte=0), name="inventory_stocktxn_quantity_magnitude"),
        ]
        indexes = [
            models.Index(fields=["stock", "transaction_date"], name="stocktxn_stock_date_idx"),
            models.Index(fields=["product", "transaction_date"], name="stocktxn_product_date_idx"),
            models.Index(fields=["reference_type", "reference_id"], name="stocktxn_reference_idx"),
            models.Index(fields=["transaction_type", "transaction_date"], name="stocktxn_type_date_idx"),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Stock transactions are immutable.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Stock transactions are immutable.")


class Supplier(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    supplier_number = models.CharField(max_length=32, unique=True, editable=False)
    name = models.CharField(max_length=255)
    email = models.EmailField()
    phone = models.CharField(max_length=64, blank=True, default="")
    address = models.TextField(blank=True, default="")
    tax_number = models.CharField(max_length=64, blank=True, default="")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [models.Index(fields=["name", "is_active"], name="supplier_name_active_idx")]

    def __str__(self):
        return f"{self.supplier_number} {self.name}"


class PricedDocument(models.Model):
    """Money fields shared by quotations, invoices and purchase orders."""

    subtotal = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    discount_percent = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=0,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )
    discount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    tax_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    notes = models.TextField(blank=True, default="")
    terms = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True

    def apply_totals(self, totals):
        self.subtotal = totals.subtotal
        self.discount = totals.discount_amount
        self.tax_amount = totals.tax_amount
        self.total = totals.total


class PricedLine(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="+")
    description = models.CharField(max_length=255, blank=True, default="")
    quantity = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    discount = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=0,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )
    total = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    position = models.PositiveIntegerField(default=0)

    class Meta:
        abstract = True
        ordering = ["position"]


class PurchaseOrder(PricedDocument):
    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        APPROVED = "approved", "Approved"
        SENT = "sent", "Sent"
        COMPLETED = "completed", "Completed"
        CANCELLED = "cancelled", "Cancelled"
        CONVERTED = "converted", "Converted"

    TRANSITIONS = {
        "approve": ({Status.DRAFT}, Status.APPROVED),
        "send": ({Status.APPROVED}, Status.SENT),
        "complete": ({Status.SENT, Status.APPROVED}, Status.COMPLETED),
        "cancel": ({Status.DRAFT, Status.APPROVED, Status.SENT}, Status.CANCELLED),
        "convert": ({Status.SENT, Status.APPROVED}, Status.CONVERTED),
    }

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    po_number = models.CharField(max_length=32, unique=True, editable=False)
    supplier = models.ForeignKey(Supplier, on_delete=models.PROTECT, related_name="purchase_orders")
    po_date = models.DateField(default=timezone.localdate)
    expected_delivery_date = models.DateField()
    taxes = models.ManyToManyField(Tax, blank=True, related_name="purchase_orders")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.DRAFT)
    converted_to_grn = models.BooleanField(default=False)
    grn = models.ForeignKey("GRN", on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    delivery_address = models.TextField(blank=True, default="")
    payment_terms = models.CharField(max_length=255, blank=True, default="")
    approved_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    approved_at = models.DateTimeField(null=True, blank=True)
    sent_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    sent_at = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="purchase_orders")

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="po_status_created_idx"),
            models.Index(fields=["supplier", "status"], name="po_supplier_status_idx"),
        ]

    @property
    def number(self):
        return self.po_number


class PurchaseOrderLine(PricedLine):
    purchase_order = models.ForeignKey(PurchaseOrder, on_delete=models.CASCADE, related_name="items")


class GRN(models.Model):
    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        INSPECTED = "inspected", "Inspected"
        APPROVED = "approved", "Approved"
        COMPLETED = "completed", "Completed"
        REJECTED = "rejected", "Rejected"

    class QualityStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        PASSED = "passed", "Passed"
        FAILED = "failed", "Failed"
        PARTIAL = "partial", "Partial"

    class PaymentStatus(models.TextChoices):
        UNPAID = "unpaid", "Unpaid"
        PARTIAL = "partial", "Partial"
        PAID = "paid", "Paid"

    TRANSITIONS = {
        "inspect": ({Status.DRAFT}, Status.INSPECTED),
        "approve": ({Status.INSPECTED}, Status.APPROVED),
        "complete": ({Status.APPROVED}, Status.COMPLETED),
        "reject": ({Status.DRAFT, Status.INSPECTED}, Status.REJECTED),
    }
    PAYABLE_STATUSES = {Status.APPROVED, Status.COMPLETED}

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    grn_number = models.CharField(max_length=32, unique=True, editable=False)
    purchase_order = models.ForeignKey(PurchaseOrder, on_delete=models.SET_NULL, null=True, blank=True, related_name="grns")
    supplier = models.ForeignKey(Supplier, on_delete=models.PROTECT, related_name="grns")
    grn_date = models.DateField(default=timezone.localdate)
    delivery_note = models.CharField(max_length=128, blank=True, default="")
    location = models.ForeignKey(Location, on_delete=models.PROTECT, related_name="grns")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.DRAFT)
    quality_status = models.CharField(max_length=16, choices=QualityStatus.choices, default=QualityStatus.PENDING)
    inspected_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    inspected_at = models.DateTimeField(null=True, blank=True)
    approved_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    approved_at = models.DateTimeField(null=True, blank=True)
    stock_updated = models.BooleanField(default=False)
    stock_updated_at = models.DateTimeField(null=True, blank=True)
    total_value = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    paid_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    balance_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    payment_status = models.CharField(max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.UNPAID)
    invoice_number = models.CharField(max_length=64, blank=True, default="")
    invoice_date = models.DateField(null=True, blank=True)
    invoice_amount = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)
    invoice_matched = models.BooleanField(default=False)
    notes = models.TextField(blank=True, default="")
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="grns")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "GRN"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="grn_status_created_idx"),
            models.Index(fields=["supplier", "payment_status"], name="grn_supplier_payment_idx"),
        ]

    @property
    def number(self):
        return self.grn_number

    def recalculate_value(self):
        total = sum((line.accepted_quantity * line.unit_price for line in self.items.all()), ZERO)
        self.total_value = to_money(total)
        self.balance_amount = max(to_money(self.total_value - self.paid_amount), ZERO)


class GRNLine(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    grn = models.ForeignKey(GRN, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="+")
    ordered_quantity = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    received_quantity = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    accepted_quantity = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    rejected_quantity = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    short_quantity = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    batch_number = models.CharField(max_length=128, blank=True, default="")
    serial_numbers = models.JSONField(default=list, blank=True)
    expiry_date = models.DateField(null=True, blank=True)
    manufacture_date = models.DateField(null=True, blank=True)
    rejection_reason = models.CharField(max_length=255, blank=True, default="")
    inspection_notes = models.TextField(blank=True, default="")
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    position = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["position"]

    def save(self, *args, **kwargs):
        self.short_quantity = max(self.ordered_quantity - self.received_quantity, ZERO)
        self.rejected_quantity = max(self.received_quantity - self.accepted_quantity, ZERO)
        super().save(*args, **kwargs)


class SupplierPayment(models.Model):
    class Method(models.TextChoices):
        CASH = "cash", "Cash"
        BANK_TRANSFER = "bank_transfer", "Bank Transfer"
        CHEQUE = "cheque", "Cheque"
        CARD = "card", "Card"
        ONLINE = "online", "Online"

    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        APPROVED = "approved", "Approved"
        PAID = "paid", "Paid"

    TRANSITIONS = {
        "approve": ({Status.DRAFT}, Status.APPROVED),
        "mark_paid": ({Status.APPROVED}, Status.PAID),
    }
    COUNTED_STATUSES = {Status.APPROVED, Status.PAID}

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    payment_number = models.CharField(max_length=32, unique=True, editable=False)
    grn = models.ForeignKey(GRN, on_delete=models.PROTECT, related_name="supplier_payments")
    supplier = models.ForeignKey(Supplier, on_delete=models.PROTECT, related_name="payments")
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    payment_date = models.DateField(default=timezone.localdate)
    method = models.CharField(max_length=16, choices=Method.choices)
    reference = models.CharField(max_length=128, blank=True, default="")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.DRAFT)
    approved_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    approved_at = models.DateTimeField(null=True, blank=True)
    paid_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    paid_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="supplier_payments")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-payment_date", "-created_at"]
        indexes = [
            models.Index(fields=["grn", "status"], name="supplierpay_grn_status_idx"),
            models.Index(fields=["supplier", "payment_date"], name="supplierpay_supplier_date_idx"),
        ]

    @property
    def number(self):
        return self.payment_number
