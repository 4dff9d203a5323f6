import uuid

from django.db import models
from django.utils import timezone

from core.models import Tax, User
from inventory.models import Location, PricedDocument, PricedLine


class Customer(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    customer_number = models.CharField(max_length=32, unique=True, editable=False)
    name = models.CharField(max_length=255)
    email = models.EmailField(blank=True, default="")
    phone = models.CharField(max_length=64, blank=True, default="")
    address = models.TextField(blank=True, default="")
    tax_number = models.CharField(max_length=64, blank=True, default="")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["name", "is_active"], name="customer_name_active_idx"),
            models.Index(fields=["phone"], name="customer_phone_idx"),
        ]

    def __str__(self):
        return f"{self.customer_number} {self.name}"


class Quotation(PricedDocument):
    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        SENT = "sent", "Sent"
        APPROVED = "approved", "Approved"
        REJECTED = "rejected", "Rejected"
        EXPIRED = "expired", "Expired"

    STATUS_CHANGES = {
        Status.DRAFT: {Status.SENT, Status.APPROVED, Status.REJECTED},
        Status.SENT: {Status.APPROVED, Status.REJECTED, Status.EXPIRED},
        Status.APPROVED: {Status.SENT, Status.EXPIRED},
        Status.REJECTED: {Status.DRAFT},
        Status.EXPIRED: {Status.DRAFT},
    }
    CONVERTIBLE_STATUSES = {Status.APPROVED, Status.SENT}

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    quotation_number = models.CharField(max_length=32, unique=True, editable=False)
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name="quotations")
    date = models.DateField(default=timezone.localdate)
    valid_until = models.DateField()
    taxes = models.ManyToManyField(Tax, blank=True, related_name="quotations")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.DRAFT)
    converted_to_invoice = models.BooleanField(default=False)
    invoice = models.ForeignKey("Invoice", on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="quotations")

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="quotation_status_created_idx"),
            models.Index(fields=["customer", "date"], name="quotation_customer_date_idx"),
            models.Index(fields=["created_by", "created_at"], name="quotation_owner_created_idx"),
        ]

    @property
    def number(self):
        return self.quotation_number


class QuotationLine(PricedLine):
    quotation = models.ForeignKey(Quotation, on_delete=models.CASCADE, related_name="items")


class Invoice(PricedDocument):
    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        SENT = "sent", "Sent"
        PAID = "paid", "Paid"
        PARTIAL = "partial", "Partial"
        OVERDUE = "overdue", "Overdue"
        CANCELLED = "cancelled", "Cancelled"

    class ApprovalStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        APPROVED = "approved", "Approved"
        REJECTED = "rejected", "Rejected"

    APPROVAL_TRANSITIONS = {
        "approve": ({ApprovalStatus.PENDING}, ApprovalStatus.APPROVED),
        "reject": ({ApprovalStatus.PENDING}, ApprovalStatus.REJECTED),
    }
    SETTLED_STATUSES = {Status.PAID, Status.PARTIAL}
    MANUAL_STATUSES = {Status.DRAFT, Status.SENT, Status.OVERDUE, Status.CANCELLED}

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    invoice_number = models.CharField(max_length=32, unique=True, editable=False)
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name="invoices")
    date = models.DateField(default=timezone.localdate)
    due_date = models.DateField()
    location = models.ForeignKey(Location, on_delete=models.PROTECT, null=True, blank=True, related_name="invoices")
    taxes = models.ManyToManyField(Tax, blank=True, related_name="invoices")
    paid_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    balance_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.DRAFT)
    approval_status = models.CharField(max_length=16, choices=ApprovalStatus.choices, default=ApprovalStatus.PENDING)
    approved_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    approved_at = models.DateTimeField(null=True, blank=True)
    quotation = models.ForeignKey(Quotation, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="invoices")

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="invoice_status_created_idx"),
            models.Index(fields=["customer", "date"], name="invoice_customer_date_idx"),
            models.Index(fields=["approval_status"], name="invoice_approval_idx"),
            models.Index(fields=["created_by", "created_at"], name="invoice_owner_created_idx"),
        ]

    @property
    def number(self):
        return self.invoice_number


class InvoiceLine(PricedLine):
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name="items")
    location = models.ForeignKey(Location, on_delete=models.PROTECT, null=True, blank=True, related_name="+")


class Payment(models.Model):
    class Method(models.TextChoices):
        CASH = "cash", "Cash"
        BANK = "bank", "Bank"
        CHEQUE = "cheque", "Cheque"
        CARD = "card", "Card"
        ONLINE = "online", "Online"

    class Status(models.TextChoices):
        COMPLETED = "completed", "Completed"
        PENDING = "pending", "Pending"
        CANCELLED = "cancelled", "Cancelled"

    COUNTED_STATUSES = {Status.COMPLETED}

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    payment_number = models.CharField(max_length=32, unique=True, editable=False)
    invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, related_name="payments")
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name="payments")
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    method = models.CharField(max_length=16, choices=Method.choices)
    reference = models.CharField(max_length=128, blank=True, default="")
    date = models.DateField(default=timezone.localdate)
    notes = models.TextField(blank=True, default="")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.COMPLETED)
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="payments")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-date", "-created_at"]
        indexes = [
            models.Index(fields=["invoice", "status"], name="payment_invoice_status_idx"),
            models.Index(fields=["customer", "date"], name="payment_customer_date_idx"),
        ]

    @property
    def number(self):
        return self.payment_number
