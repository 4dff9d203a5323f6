import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import migrations, models


def priced_document_fields():
    return [
        ("subtotal", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
        (
            "discount_percent",
            models.DecimalField(
                decimal_places=2,
                default=0,
                max_digits=5,
                validators=[MinValueValidator(0), MaxValueValidator(100)],
            ),
        ),
        ("discount", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
        ("tax_amount", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
        ("total", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
        ("notes", models.TextField(blank=True, default="")),
        ("terms", models.TextField(blank=True, default="")),
        ("created_at", models.DateTimeField(auto_now_add=True)),
        ("updated_at", models.DateTimeField(auto_now=True)),
    ]


def priced_line_fields():
    return [
        ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
        ("description", models.CharField(blank=True, default="", max_length=255)),
        ("quantity", models.DecimalField(decimal_places=2, max_digits=12, validators=[MinValueValidator(0)])),
        ("unit_price", models.DecimalField(decimal_places=2, max_digits=12, validators=[MinValueValidator(0)])),
        (
            "discount",
            models.DecimalField(
                decimal_places=2,
                default=0,
                max_digits=5,
                validators=[MinValueValidator(0), MaxValueValidator(100)],
            ),
        ),
        ("total", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
        ("position", models.PositiveIntegerField(default=0)),
        (
            "product",
            models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="+", to="inventory.product"),
        ),
    ]


def user_reference(related_name="+"):
    return models.ForeignKey(
        blank=True,
        null=True,
        on_delete=django.db.models.deletion.SET_NULL,
        related_name=related_name,
        to=settings.AUTH_USER_MODEL,
    )


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("core", "0001_initial"),
        ("inventory", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Customer",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("customer_number", models.CharField(editable=False, max_length=32, unique=True)),
                ("name", models.CharField(max_length=255)),
                ("email", models.EmailField(blank=True, default="", max_length=254)),
                ("phone", models.CharField(blank=True, default="", max_length=64)),
                ("address", models.TextField(blank=True, default="")),
                ("tax_number", models.CharField(blank=True, default="", max_length=64)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["name"],
                "indexes": [
                    models.Index(fields=["name", "is_active"], name="customer_name_active_idx"),
                    models.Index(fields=["phone"], name="customer_phone_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Quotation",
            fields=priced_document_fields()
            + [
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("quotation_number", models.CharField(editable=False, max_length=32, unique=True)),
                ("date", models.DateField(default=django.utils.timezone.localdate)),
                ("valid_until", models.DateField()),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("draft", "Draft"),
                            ("sent", "Sent"),
                            ("approved", "Approved"),
                            ("rejected", "Rejected"),
                            ("expired", "Expired"),
                        ],
                        default="draft",
                        max_length=16,
                    ),
                ),
                ("converted_to_invoice", models.BooleanField(default=False)),
                ("created_by", user_reference("quotations")),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="quotations", to="sales.customer"
                    ),
                ),
                ("taxes", models.ManyToManyField(blank=True, related_name="quotations", to="core.tax")),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="quotation_status_created_idx"),
                    models.Index(fields=["customer", "date"], name="quotation_customer_date_idx"),
                    models.Index(fields=["created_by", "created_at"], name="quotation_owner_created_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="QuotationLine",
            fields=priced_line_fields()
            + [
                (
                    "quotation",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="items", to="sales.quotation"
                    ),
                ),
            ],
            options={"ordering": ["position"], "abstract": False},
        ),
        migrations.CreateModel(
            name="Invoice",
            fields=priced_document_fields()
            + [
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("invoice_number", models.CharField(editable=False, max_length=32, unique=True)),
                ("date", models.DateField(default=django.utils.timezone.localdate)),
                ("due_date", models.DateField()),
                ("paid_amount", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("balance_amount", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("draft", "Draft"),
                            ("sent", "Sent"),
                            ("paid", "Paid"),
                            ("partial", "Partial"),
                            ("overdue", "Overdue"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="draft",
                        max_length=16,
                    ),
                ),
                (
                    "approval_status",
                    models.CharField(
                        choices=[("pending", "Pending"), ("approved", "Approved"), ("rejected", "Rejected")],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("approved_by", user_reference()),
                ("created_by", user_reference("invoices")),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="invoices", to="sales.customer"
                    ),
                ),
                (
                    "location",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoices",
                        to="inventory.location",
                    ),
                ),
                (
                    "quotation",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="sales.quotation",
                    ),
                ),
                ("taxes", models.ManyToManyField(blank=True, related_name="invoices", to="core.tax")),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="invoice_status_created_idx"),
                    models.Index(fields=["customer", "date"], name="invoice_customer_date_idx"),
                    models.Index(fields=["approval_status"], name="invoice_approval_idx"),
                    models.Index(fields=["created_by", "created_at"], name="invoice_owner_created_idx"),
                ],
            },
        ),
        migrations.AddField(
            model_name="quotation",
            name="invoice",
            field=models.ForeignKey(
                blank=True,
                null=True,
                on_delete=django.db.models.deletion.SET_NULL,
                related_name="+",
                to="sales.invoice",
            ),
        ),
        migrations.CreateModel(
            name="InvoiceLine",
            fields=priced_line_fields()
            + [
                (
                    "invoice",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="items", to="sales.invoice"
                    ),
                ),
                (
                    "location",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to="inventory.location",
                    ),
                ),
            ],
            options={"ordering": ["position"], "abstract": False},
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("payment_number", models.CharField(editable=False, max_length=32, unique=True)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=14)),
                (
                    "method",
                    models.CharField(
                        choices=[
                            ("cash", "Cash"),
                            ("bank", "Bank"),
                            ("cheque", "Cheque"),
                            ("card", "Card"),
                            ("online", "Online"),
                        ],
                        max_length=16,
                    ),
                ),
                ("reference", models.CharField(blank=True, default="", max_length=128)),
                ("date", models.DateField(default=django.utils.timezone.localdate)),
                ("notes", models.TextField(blank=True, default="")),
                (
                    "status",
                    models.CharField(
                        choices=[("completed", "Completed"), ("pending", "Pending"), ("cancelled", "Cancelled")],
                        default="completed",
                        max_length=16,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("created_by", user_reference("payments")),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="payments", to="sales.customer"
                    ),
                ),
                (
                    "invoice",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="payments", to="sales.invoice"
                    ),
                ),
            ],
            options={
                "ordering": ["-date", "-created_at"],
                "indexes": [
                    models.Index(fields=["invoice", "status"], name="payment_invoice_status_idx"),
                    models.Index(fields=["customer", "date"], name="payment_customer_date_idx"),
                ],
            },
        ),
    ]
