from rest_framework import serializers

from core.sequences import next_document_number
from inventory.models import Location
from inventory.serializers import MIN_AMOUNT, PricedDocumentSerializer, PricedLineSerializer
from sales import services
from sales.models import Customer, Invoice, InvoiceLine, Payment, Quotation, QuotationLine


class CustomerSerializer(serializers.ModelSerializer):
    class Meta:
        model = Customer
        fields = ["id", "customer_number", "name", "email", "phone", "address", "tax_number", "is_active", "created_at", "updated_at"]
        read_only_fields = ["id", "customer_number", "created_at", "updated_at"]

    def create(self, validated_data):
        validated_data["customer_number"] = next_document_number("customer", self.context.get("company"))
        return super().create(validated_data)


class QuotationLineSerializer(PricedLineSerializer):
    class Meta(PricedLineSerializer.Meta):
        model = QuotationLine


class QuotationSerializer(PricedDocumentSerializer):
    items = QuotationLineSerializer(many=True)
    customer_name = serializers.CharField(source="customer.name", read_only=True)

    class Meta:
        model = Quotation
        fields = [
            "id",
            "quotation_number",
            "customer",
            "customer_name",
            "date",
            "valid_until",
            "status",
            "items",
            "taxes",
            "applied_taxes",
            "discount_percent",
            "subtotal",
            "discount",
            "tax_amount",
            "total",
            "notes",
            "terms",
            "converted_to_invoice",
            "invoice",
            "created_by",
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "id",
            "quotation_number",
            "status",
            "subtotal",
            "discount",
            "tax_amount",
            "total",
            "converted_to_invoice",
            "invoice",
            "created_by",
            "created_at",
            "updated_at",
        ]

    def validate(self, attrs):
        date = attrs.get("date") or getattr(self.instance, "date", None)
        valid_until = attrs.get("valid_until") or getattr(self.instance, "valid_until", None)
        if date and valid_until and valid_until < date:
            raise serializers.ValidationError({"valid_until": "Valid until date cannot be earlier than the quotation date."})
        return attrs

    def create(self, validated_data):
        return services.create_quotation(
            items=validated_data.pop("items"),
            taxes=validated_data.pop("taxes", []),
            discount_percent=validated_data.pop("discount_percent", 0),
            company=self.context.get("company"),
            **validated_data,
        )

    def update(self, instance, validated_data):
        return services.update_quotation(
            instance,
            items=validated_data.pop("items", None),
            taxes=validated_data.pop("taxes", None),
            discount_percent=validated_data.pop("discount_percent", None),
            **validated_data,
        )


class QuotationStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Quotation.Status.choices)


class InvoiceLineSerializer(PricedLineSerializer):
    location = serializers.PrimaryKeyRelatedField(queryset=Location.objects.all(), required=False, allow_null=True)

    class Meta(PricedLineSerializer.Meta):
        model = InvoiceLine
        fields = PricedLineSerializer.Meta.fields + ["location"]


class InvoiceSerializer(PricedDocumentSerializer):
    items = InvoiceLineSerializer(many=True)
    customer_name = serializers.CharField(source="customer.name", read_only=True)
    quotation_number = serializers.CharField(source="quotation.quotation_number", read_only=True, default=None)

    class Meta:
        model = Invoice
        fields = [
            "id",
            "invoice_number",
            "customer",
            "customer_name",
            "date",
            "due_date",
            "location",
            "status",
            "approval_status",
            "items",
            "taxes",
            "applied_taxes",
            "discount_percent",
            "subtotal",
            "discount",
            "tax_amount",
            "total",
            "paid_amount",
            "balance_amount",
            "notes",
            "terms",
            "quotation",
            "quotation_number",
            "approved_by",
            "approved_at",
            "created_by",
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "id",
            "invoice_number",
            "status",
            "approval_status",
            "subtotal",
            "discount",
            "tax_amount",
            "total",
            "paid_amount",
            "balance_amount",
            "quotation",
            "approved_by",
            "approved_at",
            "created_by",
            "created_at",
            "updated_at",
        ]

    def validate(self, attrs):
        date = attrs.get("date") or getattr(self.instance, "date", None)
        due_date = attrs.get("due_date") or getattr(self.instance, "due_date", None)
        if date and due_date and due_date < date:
            raise serializers.ValidationError({"due_date": "Due date cannot be earlier than the invoice date."})
        return attrs

    def create(self, validated_data):
        return services.create_invoice(
            items=validated_data.pop("items"),
            taxes=validated_data.pop("taxes", []),
            discount_percent=validated_data.pop("discount_percent", 0),
            company=self.context.get("company"),
            **validated_data,
        )

    def update(self, instance, validated_data):
        request = self.context.get("request")
        return services.update_invoice(
            instance,
            items=validated_data.pop("items", None),
            taxes=validated_data.pop("taxes", None),
            discount_percent=validated_data.pop("discount_percent", None),
            performed_by=getattr(request, "user", None),
            **validated_data,
        )


class InvoiceStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=sorted(Invoice.MANUAL_STATUSES))


class InvoiceApprovalSerializer(serializers.Serializer):
    approval_status = serializers.ChoiceField(
        choices=[Invoice.ApprovalStatus.APPROVED, Invoice.ApprovalStatus.REJECTED]
    )


class PaymentSerializer(serializers.ModelSerializer):
    amount = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=MIN_AMOUNT)
    invoice_number = serializers.CharField(source="invoice.invoice_number", read_only=True)
    customer_name = serializers.CharField(source="customer.name", read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "payment_number",
            "invoice",
            "invoice_number",
            "customer",
            "customer_name",
            "amount",
            "method",
            "reference",
            "date",
            "notes",
            "status",
            "created_by",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "payment_number", "customer", "created_by", "created_at", "updated_at"]

    def validate_invoice(self, value):
        if self.instance is not None and value.pk != self.instance.invoice_id:
            raise serializers.ValidationError("The invoice of a payment cannot be changed.")
        return value

    def create(self, validated_data):
        return services.record_payment(company=self.context.get("company"), **validated_data)

    def update(self, instance, validated_data):
        validated_data.pop("invoice", None)
        return services.update_payment(instance, **validated_data)
