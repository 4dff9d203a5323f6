from decimal import Decimal

from rest_framework import serializers

from core.models import Tax
from core.sequences import next_document_number
from inventory import services
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
    Supplier,
    SupplierPayment,
)

MIN_AMOUNT = Decimal("0.01")


class ProductSerializer(serializers.ModelSerializer):
    class Meta:
        model = Product
        fields = [
            "id",
            "name",
            "category",
            "description",
            "base_unit",
            "pack_size",
            "unit_cost",
            "price",
            "tax_rate",
            "last_po_number",
            "last_po_date",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "last_po_number", "last_po_date", "created_at", "updated_at"]


class LocationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Location
        fields = ["id", "name", "code", "address", "is_active", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]


class SupplierSerializer(serializers.ModelSerializer):
    class Meta:
        model = Supplier
        fields = ["id", "supplier_number", "name", "email", "phone", "address", "tax_number", "is_active", "created_at", "updated_at"]
        read_only_fields = ["id", "supplier_number", "created_at", "updated_at"]

    def create(self, validated_data):
        validated_data["supplier_number"] = next_document_number("supplier", self.context.get("company"))
        return super().create(validated_data)


class StockBatchSerializer(serializers.ModelSerializer):
    class Meta:
        model = StockBatch
        fields = ["id", "batch_number", "quantity", "expiry_date", "manufacture_date", "po_number", "grn_number", "notes", "created_at"]
        read_only_fields = fields


class StockSerialSerializer(serializers.ModelSerializer):
    class Meta:
        model = StockSerial
        fields = ["id", "serial_number", "status", "grn_number", "created_at"]
        read_only_fields = fields


class StockSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)
    location_name = serializers.CharField(source="location.name", read_only=True)
    opening_quantity = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0"), write_only=True, required=False)
    batches = StockBatchSerializer(many=True, read_only=True)
    serials = StockSerialSerializer(many=True, read_only=True)

    class Meta:
        model = Stock
        fields = [
            "id",
            "product",
            "product_name",
            "location",
            "location_name",
            "quantity",
            "opening_quantity",
            "min_level",
            "reorder_level",
            "batch_tracking",
            "serial_tracking",
            "last_restock_date",
            "notes",
            "is_active",
            "batches",
            "serials",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "quantity", "last_restock_date", "created_at", "updated_at"]
        validators = []

    def validate(self, attrs):
        if self.instance is not None:
            # Product and location identify the row; quantity only moves through the ledger.
            attrs.pop("product", None)
            attrs.pop("location", None)
            attrs.pop("opening_quantity", None)
        return attrs

    def create(self, validated_data):
        product = validated_data.pop("product")
        location = validated_data.pop("location")
        quantity = validated_data.pop("opening_quantity", 0)
        performed_by = validated_data.pop("performed_by", None)
        return services.open_stock(product, location, quantity, performed_by=performed_by, **validated_data)


class StockTransactionSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)
    location_name = serializers.CharField(source="location.name", read_only=True)
    performed_by_username = serializers.CharField(source="performed_by.username", read_only=True, default=None)

    class Meta:
        model = StockTransaction
        fields = [
            "id",
            "transaction_type",
            "stock",
            "product",
            "product_name",
            "location",
            "location_name",
            "from_location",
            "to_location",
            "quantity",
            "balance_before",
            "balance_after",
            "unit_price",
            "total_value",
            "reference_type",
            "reference_id",
            "reference_number",
            "batch_number",
            "notes",
            "performed_by",
            "performed_by_username",
            "transaction_date",
            "created_at",
        ]
        read_only_fields = fields


class StockAdjustmentSerializer(serializers.Serializer):
    quantity = serializers.DecimalField(max_digits=12, decimal_places=2)
    transaction_type = serializers.ChoiceField(
        choices=sorted(services.ADJUSTMENT_TYPES),
        default=StockTransaction.Type.ADJUSTMENT,
    )
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def validate_quantity(self, value):
        if value == 0:
            raise serializers.ValidationError("Adjustment quantity cannot be zero.")
        return value


class StockTransferRequestSerializer(serializers.Serializer):
    product = serializers.PrimaryKeyRelatedField(queryset=Product.objects.all())
    from_location = serializers.PrimaryKeyRelatedField(queryset=Location.objects.all())
    to_location = serializers.PrimaryKeyRelatedField(queryset=Location.objects.all())
    quantity = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=MIN_AMOUNT)
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def validate(self, attrs):
        if attrs["from_location"].pk == attrs["to_location"].pk:
            raise serializers.ValidationError({"to_location": "Destination must differ from source location."})
        return attrs


class AppliedTaxSerializer(serializers.ModelSerializer):
    class Meta:
        model = Tax
        fields = ["id", "name", "type", "value"]
        read_only_fields = fields


class PricedLineSerializer(serializers.ModelSerializer):
    """Line payloads for priced documents; ``total`` is always computed server side."""

    product_name = serializers.CharField(source="product.name", read_only=True)

    class Meta:
        fields = ["id", "product", "product_name", "description", "quantity", "unit_price", "discount", "total"]
        read_only_fields = ["id", "total"]


class PricedDocumentSerializer(serializers.ModelSerializer):
    """Shared shape for documents whose totals come from line items and taxes."""

    taxes = serializers.ListField(child=serializers.UUIDField(), required=False, write_only=True)
    applied_taxes = AppliedTaxSerializer(source="taxes", many=True, read_only=True)

    def validate_items(self, value):
        if not value:
            raise serializers.ValidationError("At least one item is required.")
        return value


class PurchaseOrderLineSerializer(PricedLineSerializer):
    class Meta(PricedLineSerializer.Meta):
        model = PurchaseOrderLine


class PurchaseOrderSerializer(PricedDocumentSerializer):
    items = PurchaseOrderLineSerializer(many=True)
    supplier_name = serializers.CharField(source="supplier.name", read_only=True)

    class Meta:
        model = PurchaseOrder
        fields = [
            "id",
            "po_number",
            "supplier",
            "supplier_name",
            "po_date",
            "expected_delivery_date",
            "status",
            "items",
            "taxes",
            "applied_taxes",
            "discount_percent",
            "subtotal",
            "discount",
            "tax_amount",
            "total",
            "delivery_address",
            "payment_terms",
            "notes",
            "terms",
            "converted_to_grn",
            "grn",
            "approved_by",
            "approved_at",
            "sent_by",
            "sent_at",
            "created_by",
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "id",
            "po_number",
            "status",
            "subtotal",
            "discount",
            "tax_amount",
            "total",
            "converted_to_grn",
            "grn",
            "approved_by",
            "approved_at",
            "sent_by",
            "sent_at",
            "created_by",
            "created_at",
            "updated_at",
        ]

    def validate(self, attrs):
        po_date = attrs.get("po_date") or getattr(self.instance, "po_date", None)
        expected = attrs.get("expected_delivery_date") or getattr(self.instance, "expected_delivery_date", None)
        if po_date and expected and expected < po_date:
            raise serializers.ValidationError(
                {"expected_delivery_date": "Expected delivery date cannot be earlier than PO date."}
            )
        return attrs

    def create(self, validated_data):
        return services.create_purchase_order(
            items=validated_data.pop("items"),
            taxes=validated_data.pop("taxes", []),
            discount_percent=validated_data.pop("discount_percent", 0),
            company=self.context.get("company"),
            **validated_data,
        )

    def update(self, instance, validated_data):
        return services.update_purchase_order(
            instance,
            items=validated_data.pop("items", None),
            taxes=validated_data.pop("taxes", None),
            discount_percent=validated_data.pop("discount_percent", None),
            **validated_data,
        )


class GRNLineSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)
    accepted_quantity = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0"), required=False, allow_null=True)

    class Meta:
        model = GRNLine
        fields = [
            "id",
            "product",
            "product_name",
            "ordered_quantity",
            "received_quantity",
            "accepted_quantity",
            "rejected_quantity",
            "short_quantity",
            "batch_number",
            "serial_numbers",
            "expiry_date",
            "manufacture_date",
            "rejection_reason",
            "inspection_notes",
            "unit_price",
        ]
        read_only_fields = ["id", "rejected_quantity", "short_quantity"]

    def validate(self, attrs):
        received = attrs.get("received_quantity") or Decimal("0")
        accepted = attrs.get("accepted_quantity")
        if accepted is not None and accepted > received:
            raise serializers.ValidationError({"accepted_quantity": "Accepted quantity cannot exceed received quantity."})
        return attrs


class GRNSerializer(serializers.ModelSerializer):
    items = GRNLineSerializer(many=True)
    supplier_name = serializers.CharField(source="supplier.name", read_only=True)
    location = serializers.PrimaryKeyRelatedField(queryset=Location.objects.all(), required=False)
    po_number = serializers.CharField(source="purchase_order.po_number", read_only=True, default=None)

    class Meta:
        model = GRN
        fields = [
            "id",
            "grn_number",
            "purchase_order",
            "po_number",
            "supplier",
            "supplier_name",
            "grn_date",
            "delivery_note",
            "location",
            "status",
            "quality_status",
            "items",
            "inspected_by",
            "inspected_at",
            "approved_by",
            "approved_at",
            "stock_updated",
            "stock_updated_at",
            "total_value",
            "paid_amount",
            "balance_amount",
            "payment_status",
            "invoice_number",
            "invoice_date",
            "invoice_amount",
            "invoice_matched",
            "notes",
            "created_by",
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "id",
            "grn_number",
            "status",
            "quality_status",
            "inspected_by",
            "inspected_at",
            "approved_by",
            "approved_at",
            "stock_updated",
            "stock_updated_at",
            "total_value",
            "paid_amount",
            "balance_amount",
            "payment_status",
            "invoice_number",
            "invoice_date",
            "invoice_amount",
            "invoice_matched",
            "created_by",
            "created_at",
            "updated_at",
        ]

    def validate_items(self, value):
        if not value:
            raise serializers.ValidationError("At least one item is required.")
        return value

    def validate(self, attrs):
        purchase_order = attrs.get("purchase_order")
        supplier = attrs.get("supplier") or getattr(self.instance, "supplier", None)
        if purchase_order and supplier and purchase_order.supplier_id != supplier.pk:
            raise serializers.ValidationError({"supplier": "Supplier must match the purchase order supplier."})
        return attrs

    def create(self, validated_data):
        return services.create_grn(
            items=validated_data.pop("items"),
            company=self.context.get("company"),
            **validated_data,
        )

    def update(self, instance, validated_data):
        return services.update_grn(instance, items=validated_data.pop("items", None), **validated_data)


class GRNInspectionLineSerializer(serializers.Serializer):
    id = serializers.UUIDField()
    received_quantity = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0"), required=False)
    accepted_quantity = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0"), required=False)
    rejection_reason = serializers.CharField(required=False, allow_blank=True)
    inspection_notes = serializers.CharField(required=False, allow_blank=True)
    batch_number = serializers.CharField(required=False, allow_blank=True)
    serial_numbers = serializers.ListField(child=serializers.CharField(), required=False)
    expiry_date = serializers.DateField(required=False, allow_null=True)
    manufacture_date = serializers.DateField(required=False, allow_null=True)


class GRNInspectionSerializer(serializers.Serializer):
    items = GRNInspectionLineSerializer(many=True, required=False, default=list)
    quality_status = serializers.ChoiceField(choices=GRN.QualityStatus.choices, required=False)
    inspection_notes = serializers.CharField(required=False, allow_blank=True, default="")


class GRNInvoiceMatchSerializer(serializers.Serializer):
    invoice_number = serializers.CharField(max_length=64)
    invoice_date = serializers.DateField(required=False, allow_null=True)
    invoice_amount = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, allow_null=True)


class SupplierPaymentSerializer(serializers.ModelSerializer):
    amount = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=MIN_AMOUNT)
    grn_number = serializers.CharField(source="grn.grn_number", read_only=True)
    supplier_name = serializers.CharField(source="supplier.name", read_only=True)

    class Meta:
        model = SupplierPayment
        fields = [
            "id",
            "payment_number",
            "grn",
            "grn_number",
            "supplier",
            "supplier_name",
            "amount",
            "payment_date",
            "method",
            "reference",
            "status",
            "approved_by",
            "approved_at",
            "paid_by",
            "paid_at",
            "notes",
            "created_by",
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "id",
            "payment_number",
            "supplier",
            "status",
            "approved_by",
            "approved_at",
            "paid_by",
            "paid_at",
            "created_by",
            "created_at",
            "updated_at",
        ]

    def validate_grn(self, value):
        if self.instance is not None and value.pk != self.instance.grn_id:
            raise serializers.ValidationError("The GRN of a supplier payment cannot be changed.")
        return value

    def create(self, validated_data):
        return services.record_supplier_payment(company=self.context.get("company"), **validated_data)

    def update(self, instance, validated_data):
        validated_data.pop("grn", None)
        return services.update_supplier_payment(instance, **validated_data)
