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
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Product",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255)),
                ("category", models.CharField(blank=True, default="", max_length=128)),
                ("description", models.TextField(blank=True, default="")),
                (
                    "base_unit",
                    models.CharField(
                        choices=[
                            ("No", "No"),
                            ("Kg", "Kg"),
                            ("g", "g"),
                            ("Litre", "Litre"),
                            ("ml", "ml"),
                            ("Pack", "Pack"),
                        ],
                        default="No",
                        max_length=16,
                    ),
                ),
                ("pack_size", models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])),
                (
                    "unit_cost",
                    models.DecimalField(decimal_places=2, default=0, max_digits=12, validators=[MinValueValidator(0)]),
                ),
                ("price", models.DecimalField(decimal_places=2, max_digits=12, validators=[MinValueValidator(0)])),
                (
                    "tax_rate",
                    models.DecimalField(
                        decimal_places=2,
                        default=0,
                        max_digits=5,
                        validators=[MinValueValidator(0), MaxValueValidator(100)],
                    ),
                ),
                ("last_po_number", models.CharField(blank=True, default="", max_length=64)),
                ("last_po_date", models.DateField(blank=True, null=True)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["name"],
                "indexes": [
                    models.Index(fields=["name"], name="product_name_idx"),
                    models.Index(fields=["category", "is_active"], name="product_category_active_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Location",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255, unique=True)),
                ("code", models.CharField(max_length=32, unique=True)),
                ("address", models.TextField(blank=True, default="")),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={"ordering": ["name"]},
        ),
        migrations.CreateModel(
            name="Stock",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("quantity", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("min_level", models.DecimalField(decimal_places=2, default=10, max_digits=12)),
                ("reorder_level", models.DecimalField(decimal_places=2, default=20, max_digits=12)),
                ("batch_tracking", models.BooleanField(default=False)),
                ("serial_tracking", models.BooleanField(default=False)),
                ("last_restock_date", models.DateTimeField(blank=True, null=True)),
                ("notes", models.TextField(blank=True, default="")),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "location",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="stock_rows", to="inventory.location"
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="stock_rows", to="inventory.product"
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        fields=("product", "location"), name="inventory_stock_product_location_unique"
                    ),
                    models.CheckConstraint(
                        condition=models.Q(quantity__gte=0), name="inventory_stock_quantity_non_negative"
                    ),
                ],
                "indexes": [
                    models.Index(fields=["location", "is_active"], name="stock_location_active_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="StockBatch",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("batch_number", models.CharField(max_length=128)),
                ("quantity", models.DecimalField(decimal_places=2, max_digits=12)),
                ("expiry_date", models.DateField(blank=True, null=True)),
                ("manufacture_date", models.DateField(blank=True, null=True)),
                ("po_number", models.CharField(blank=True, default="", max_length=64)),
                ("grn_number", models.CharField(blank=True, default="", max_length=64)),
                ("notes", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "stock",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="batches", to="inventory.stock"
                    ),
                ),
            ],
            options={
                "indexes": [models.Index(fields=["stock", "batch_number"], name="stockbatch_stock_number_idx")],
            },
        ),
        migrations.CreateModel(
            name="StockSerial",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("serial_number", models.CharField(max_length=128)),
                (
                    "status",
                    models.CharField(
                        choices=[("available", "Available"), ("sold", "Sold"), ("damaged", "Damaged")],
                        default="available",
                        max_length=16,
                    ),
                ),
                ("grn_number", models.CharField(blank=True, default="", max_length=64)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "stock",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="serials", to="inventory.stock"
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("stock", "serial_number"), name="inventory_stockserial_unique"),
                ],
            },
        ),
        migrations.CreateModel(
            name="StockTransaction",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "transaction_type",
                    models.CharField(
                        choices=[
                            ("stock_in", "Stock In"),
                            ("stock_out", "Stock Out"),
                            ("transfer", "Transfer"),
                            ("adjustment", "Adjustment"),
                            ("grn", "GRN"),
                            ("sale", "Sale"),
                            ("damage", "Damage"),
                            ("loss", "Loss"),
                            ("expiry", "Expiry"),
                        ],
                        max_length=16,
                    ),
                ),
                ("quantity", models.DecimalField(decimal_places=2, max_digits=12)),
                ("balance_before", models.DecimalField(decimal_places=2, max_digits=12)),
                ("balance_after", models.DecimalField(decimal_places=2, max_digits=12)),
                ("unit_price", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("total_value", models.DecimalField(blank=True, decimal_places=2, max_digits=14, null=True)),
                (
                    "reference_type",
                    models.CharField(
                        choices=[
                            ("GRN", "GRN"),
                            ("Invoice", "Invoice"),
                            ("Order", "Order"),
                            ("Adjustment", "Adjustment"),
                            ("Transfer", "Transfer"),
                            ("Manual", "Manual"),
                        ],
                        default="Manual",
                        max_length=16,
                    ),
                ),
                ("reference_id", models.UUIDField(blank=True, null=True)),
                ("reference_number", models.CharField(blank=True, default="", max_length=64)),
                ("batch_number", models.CharField(blank=True, default="", max_length=128)),
                ("notes", models.TextField(blank=True, default="")),
                ("transaction_date", models.DateTimeField(default=django.utils.timezone.now)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "from_location",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="outgoing_stock_transactions",
                        to="inventory.location",
                    ),
                ),
                (
                    "location",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="stock_transactions",
                        to="inventory.location",
                    ),
                ),
                (
                    "performed_by",
                    models.ForeignKey(
                        blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, to=settings.AUTH_USER_MODEL
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="stock_transactions",
                        to="inventory.product",
                    ),
                ),
                (
                    "stock",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="transactions", to="inventory.stock"
                    ),
                ),
                (
                    "to_location",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="incoming_stock_transactions",
                        to="inventory.location",
                    ),
                ),
            ],
            options={
                "ordering": ["-transaction_date", "-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(quantity__gte=0), name="inventory_stocktxn_quantity_magnitude"
                    ),
                ],
                "indexes": [
                    models.Index(fields=["stock", "transaction_date"], name="stocktxn_stock_date_idx"),
                    models.Index(fields=["product", "transaction_date"], name="stocktxn_product_date_idx"),
                    models.Index(fields=["reference_type", "reference_id"], name="stocktxn_reference_idx"),
                    models.Index(fields=["transaction_type", "transaction_date"], name="stocktxn_type_date_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Supplier",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("supplier_number", models.CharField(editable=False, max_length=32, unique=True)),
                ("name", models.CharField(max_length=255)),
                ("email", models.EmailField(max_length=254)),
                ("phone", models.CharField(blank=True, default="", max_length=64)),
                ("address", models.TextField(blank=True, default="")),
                ("tax_number", models.CharField(blank=True, default="", max_length=64)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["name"],
                "indexes": [models.Index(fields=["name", "is_active"], name="supplier_name_active_idx")],
            },
        ),
        migrations.CreateModel(
            name="PurchaseOrder",
            fields=priced_document_fields()
            + [
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("po_number", models.CharField(editable=False, max_length=32, unique=True)),
                ("po_date", models.DateField(default=django.utils.timezone.localdate)),
                ("expected_delivery_date", models.DateField()),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("draft", "Draft"),
                            ("approved", "Approved"),
                            ("sent", "Sent"),
                            ("completed", "Completed"),
                            ("cancelled", "Cancelled"),
                            ("converted", "Converted"),
                        ],
                        default="draft",
                        max_length=16,
                    ),
                ),
                ("converted_to_grn", models.BooleanField(default=False)),
                ("delivery_address", models.TextField(blank=True, default="")),
                ("payment_terms", models.CharField(blank=True, default="", max_length=255)),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("sent_at", models.DateTimeField(blank=True, null=True)),
                ("approved_by", user_reference()),
                ("sent_by", user_reference()),
                ("created_by", user_reference("purchase_orders")),
                (
                    "supplier",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="purchase_orders",
                        to="inventory.supplier",
                    ),
                ),
                ("taxes", models.ManyToManyField(blank=True, related_name="purchase_orders", to="core.tax")),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="po_status_created_idx"),
                    models.Index(fields=["supplier", "status"], name="po_supplier_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="PurchaseOrderLine",
            fields=priced_line_fields()
            + [
                (
                    "purchase_order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="items", to="inventory.purchaseorder"
                    ),
                ),
            ],
            options={"ordering": ["position"], "abstract": False},
        ),
        migrations.CreateModel(
            name="GRN",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("grn_number", models.CharField(editable=False, max_length=32, unique=True)),
                ("grn_date", models.DateField(default=django.utils.timezone.localdate)),
                ("delivery_note", models.CharField(blank=True, default="", max_length=128)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("draft", "Draft"),
                            ("inspected", "Inspected"),
                            ("approved", "Approved"),
                            ("completed", "Completed"),
                            ("rejected", "Rejected"),
                        ],
                        default="draft",
                        max_length=16,
                    ),
                ),
                (
                    "quality_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("passed", "Passed"),
                            ("failed", "Failed"),
                            ("partial", "Partial"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("inspected_at", models.DateTimeField(blank=True, null=True)),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("stock_updated", models.BooleanField(default=False)),
                ("stock_updated_at", models.DateTimeField(blank=True, null=True)),
                ("total_value", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("paid_amount", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("balance_amount", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                (
                    "payment_status",
                    models.CharField(
                        choices=[("unpaid", "Unpaid"), ("partial", "Partial"), ("paid", "Paid")],
                        default="unpaid",
                        max_length=16,
                    ),
                ),
                ("invoice_number", models.CharField(blank=True, default="", max_length=64)),
                ("invoice_date", models.DateField(blank=True, null=True)),
                ("invoice_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=14, null=True)),
                ("invoice_matched", models.BooleanField(default=False)),
                ("notes", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("approved_by", user_reference()),
                ("created_by", user_reference("grns")),
                ("inspected_by", user_reference()),
                (
                    "location",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="grns", to="inventory.location"
                    ),
                ),
                (
                    "purchase_order",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="grns",
                        to="inventory.purchaseorder",
                    ),
                ),
                (
                    "supplier",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="grns", to="inventory.supplier"
                    ),
                ),
            ],
            options={
                "verbose_name": "GRN",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="grn_status_created_idx"),
                    models.Index(fields=["supplier", "payment_status"], name="grn_supplier_payment_idx"),
                ],
            },
        ),
        migrations.AddField(
            model_name="purchaseorder",
            name="grn",
            field=models.ForeignKey(
                blank=True,
                null=True,
                on_delete=django.db.models.deletion.SET_NULL,
                related_name="+",
                to="inventory.grn",
            ),
        ),
        migrations.CreateModel(
            name="GRNLine",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("ordered_quantity", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("received_quantity", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("accepted_quantity", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("rejected_quantity", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("short_quantity", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("batch_number", models.CharField(blank=True, default="", max_length=128)),
                ("serial_numbers", models.JSONField(blank=True, default=list)),
                ("expiry_date", models.DateField(blank=True, null=True)),
                ("manufacture_date", models.DateField(blank=True, null=True)),
                ("rejection_reason", models.CharField(blank=True, default="", max_length=255)),
                ("inspection_notes", models.TextField(blank=True, default="")),
                ("unit_price", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("position", models.PositiveIntegerField(default=0)),
                (
                    "grn",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="items", to="inventory.grn"
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="+", to="inventory.product"
                    ),
                ),
            ],
            options={"ordering": ["position"]},
        ),
        migrations.CreateModel(
            name="SupplierPayment",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("payment_number", models.CharField(editable=False, max_length=32, unique=True)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=14)),
                ("payment_date", models.DateField(default=django.utils.timezone.localdate)),
                (
                    "method",
                    models.CharField(
                        choices=[
                            ("cash", "Cash"),
                            ("bank_transfer", "Bank Transfer"),
                            ("cheque", "Cheque"),
                            ("card", "Card"),
                            ("online", "Online"),
                        ],
                        max_length=16,
                    ),
                ),
                ("reference", models.CharField(blank=True, default="", max_length=128)),
                (
                    "status",
                    models.CharField(
                        choices=[("draft", "Draft"), ("approved", "Approved"), ("paid", "Paid")],
                        default="draft",
                        max_length=16,
                    ),
                ),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("notes", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("approved_by", user_reference()),
                ("created_by", user_reference("supplier_payments")),
                ("paid_by", user_reference()),
                (
                    "grn",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="supplier_payments",
                        to="inventory.grn",
                    ),
                ),
                (
                    "supplier",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="payments", to="inventory.supplier"
                    ),
                ),
            ],
            options={
                "ordering": ["-payment_date", "-created_at"],
                "indexes": [
                    models.Index(fields=["grn", "status"], name="supplierpay_grn_status_idx"),
                    models.Index(fields=["supplier", "payment_date"], name="supplierpay_supplier_date_idx"),
                ],
            },
        ),
    ]
