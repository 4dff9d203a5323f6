import uuid

from django.contrib.auth.models import AbstractUser
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models, transaction
from django.db.models import Q
from django.db.models.functions import Lower


class User(AbstractUser):
    class Role(models.TextChoices):
        ADMIN = "admin", "Admin"
        MANAGER = "manager", "Manager"
        USER = "user", "User"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(blank=True)
    role = models.CharField(max_length=32, choices=Role.choices, default=Role.USER)

    class Meta(AbstractUser.Meta):
        constraints = [
            models.UniqueConstraint(
                Lower("email"),
                condition=~Q(email=""),
                name="core_user_email_ci_unique",
            )
        ]

    def save(self, *args, **kwargs):
        if self.email:
            self.email = self.email.strip().lower()
        super().save(*args, **kwargs)


class AuditLog(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    actor = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    entity = models.CharField(max_length=64)
    entity_id = models.UUIDField(null=True, blank=True)
    before_snapshot = models.JSONField(null=True, blank=True)
    after_snapshot = models.JSONField(null=True, blank=True)
    request_id = models.CharField(max_length=255, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["created_at"], name="auditlog_created_idx"),
            models.Index(fields=["action", "created_at"], name="auditlog_action_created_idx"),
            models.Index(fields=["entity", "created_at"], name="auditlog_entity_created_idx"),
            models.Index(fields=["actor", "created_at"], name="auditlog_actor_created_idx"),
        ]


class CompanySettings(models.Model):
    """Single-row company profile, document prefixes and default texts."""

    SINGLETON_ID = 1

    id = models.PositiveSmallIntegerField(primary_key=True, default=SINGLETON_ID, editable=False)
    name = models.CharField(max_length=255, default="My Company")
    address = models.TextField(blank=True, default="")
    phone = models.CharField(max_length=64, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    tax_number = models.CharField(max_length=64, blank=True, default="")
    currency_code = models.CharField(max_length=8, default="LKR")
    currency_symbol = models.CharField(max_length=8, default="Rs.")
    default_terms = models.TextField(blank=True, default="")
    default_notes = models.TextField(blank=True, default="")
    quotation_prefix = models.CharField(max_length=16, default="SQ-")
    invoice_prefix = models.CharField(max_length=16, default="SI-")
    payment_prefix = models.CharField(max_length=16, default="PAY-")
    supplier_payment_prefix = models.CharField(max_length=16, default="SUPPAY-")
    purchase_order_prefix = models.CharField(max_length=16, default="PO-")
    customer_prefix = models.CharField(max_length=16, default="CUST-")
    supplier_prefix = models.CharField(max_length=16, default="SUP-")
    grn_prefix = models.CharField(max_length=16, default="GRN-")
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = "company settings"

    @classmethod
    def load(cls):
        settings_row, _ = cls.objects.get_or_create(id=cls.SINGLETON_ID)
        return settings_row

    def save(self, *args, **kwargs):
        self.id = self.SINGLETON_ID
        super().save(*args, **kwargs)


class Sequence(models.Model):
    type = models.CharField(max_length=64, unique=True)
    current = models.PositiveIntegerField(default=0)
    prefix = models.CharField(max_length=32, blank=True, default="")
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.type}={self.current}"


class Tax(models.Model):
    class Type(models.TextChoices):
        VAT = "VAT", "VAT"
        SERVICE_TAX = "Service Tax", "Service Tax"
        LOCAL_TAX = "Local Tax", "Local Tax"
        OTHER = "Other", "Other"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=128)
    type = models.CharField(max_length=32, choices=Type.choices, default=Type.VAT)
    value = models.DecimalField(
        max_digits=6,
        decimal_places=2,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )
    description = models.TextField(blank=True, default="")
    enabled = models.BooleanField(default=True)
    is_default = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        constraints = [
            models.UniqueConstraint(
                fields=["is_default"],
                condition=Q(is_default=True),
                name="core_tax_single_default",
            ),
            models.CheckConstraint(
                condition=Q(value__gte=0) & Q(value__lte=100),
                name="core_tax_value_percentage",
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.value}%)"

    def save(self, *args, **kwargs):
        with transaction.atomic():
            if self.is_default:
                Tax.objects.filter(is_default=True).exclude(pk=self.pk).update(is_default=False)
            super().save(*args, **kwargs)
