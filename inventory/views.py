from django.db import transaction
from django.db.models import Q
from django.utils.dateparse import parse_date, parse_datetime
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.generics import get_object_or_404
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.exceptions import Conflict, InvalidTransition
from common.permissions import RoleCapabilityPermission
from core.views import AuditedMutationMixin, CompanyContextMixin
from core.workflow import transition
from inventory import services
from inventory.models import GRN, Location, Product, PurchaseOrder, Stock, StockTransaction, Supplier, SupplierPayment
from inventory.serializers import (
    GRNInspectionSerializer,
    GRNInvoiceMatchSerializer,
    GRNSerializer,
    LocationSerializer,
    ProductSerializer,
    PurchaseOrderSerializer,
    StockAdjustmentSerializer,
    StockSerializer,
    StockTransactionSerializer,
    StockTransferRequestSerializer,
    SupplierPaymentSerializer,
    SupplierSerializer,
)

CATALOG_PERMISSIONS = {
    "list": "catalog.view",
    "retrieve": "catalog.view",
    "create": "catalog.manage",
    "update": "catalog.manage",
    "partial_update": "catalog.manage",
    "destroy": "catalog.manage",
}


def _truthy(value):
    return value.strip().lower() in {"1", "true", "yes"}


def _date_range(qs, params, field_name):
    start_date = parse_date(params.get("start_date") or "")
    end_date = parse_date(params.get("end_date") or "")
    if start_date:
        qs = qs.filter(**{f"{field_name}__gte": start_date})
    if end_date:
        qs = qs.filter(**{f"{field_name}__lte": end_date})
    return qs


class ProductViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Product.objects.all()
    serializer_class = ProductSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {**CATALOG_PERMISSIONS, "balance": "stock.view"}
    audit_entity = "product"

    def get_queryset(self):
        qs = super().get_queryset()
        search = self.request.query_params.get("search")
        category = self.request.query_params.get("category")
        is_active = self.request.query_params.get("is_active")
        if search:
            qs = qs.filter(Q(name__icontains=search) | Q(category__icontains=search))
        if category:
            qs = qs.filter(category=category)
        if is_active is not None:
            qs = qs.filter(is_active=_truthy(is_active))
        return qs

    def perform_destroy(self, instance):
        if instance.stock_transactions.exists():
            raise Conflict(f"Product '{instance.name}' has stock history and cannot be deleted.")
        super().perform_destroy(instance)

    @action(detail=True, methods=["get"], url_path="balance")
    def balance(self, request, pk=None):
        return Response(services.stock_balance(self.get_object()))


class LocationViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Location.objects.all()
    serializer_class = LocationSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = CATALOG_PERMISSIONS
    audit_entity = "location"

    def perform_destroy(self, instance):
        if instance.stock_rows.exists():
            raise Conflict(f"Location '{instance.name}' holds stock and cannot be deleted.")
        super().perform_destroy(instance)


class SupplierViewSet(CompanyContextMixin, AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Supplier.objects.all()
    serializer_class = SupplierSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "parties.view",
        "retrieve": "parties.view",
        "create": "parties.manage",
        "update": "parties.manage",
        "partial_update": "parties.manage",
        "destroy": "admin.records.manage",
    }
    audit_entity = "supplier"

    def get_queryset(self):
        qs = super().get_queryset()
        search = self.request.query_params.get("search")
        is_active = self.request.query_params.get("is_active")
        if search:
            qs = qs.filter(
                Q(name__icontains=search)
                | Q(supplier_number__icontains=search)
                | Q(email__icontains=search)
                | Q(phone__icontains=search)
            )
        if is_active is not None:
            qs = qs.filter(is_active=_truthy(is_active))
        return qs

    def perform_destroy(self, instance):
        if instance.purchase_orders.exists() or instance.grns.exists():
            raise Conflict(f"Supplier {instance.supplier_number} has purchase documents and cannot be deleted.")
        super().perform_destroy(instance)


class StockViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Stock.objects.select_related("product", "location").prefetch_related("batches", "serials")
    serializer_class = StockSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "stock.view",
        "retrieve": "stock.view",
        "create": "stock.adjust",
        "update": "stock.adjust",
        "partial_update": "stock.adjust",
        "adjust": "stock.adjust",
        "transfer": "stock.transfer",
        "alerts": "stock.view",
    }
    http_method_names = ["get", "post", "put", "patch", "head", "options"]
    audit_entity = "stock"
    owner_field = "performed_by"

    def get_queryset(self):
        qs = super().get_queryset()
        product_id = self.request.query_params.get("product")
        location_id = self.request.query_params.get("location")
        is_active = self.request.query_params.get("is_active")
        if product_id:
            qs = qs.filter(product_id=product_id)
        if location_id:
            qs = qs.filter(location_id=location_id)
        if is_active is not None:
            qs = qs.filter(is_active=_truthy(is_active))
        return qs.order_by("product__name", "location__name")

    @action(detail=True, methods=["post"], url_path="adjust")
    def adjust(self, request, pk=None):
        stock = self.get_object()
        serializer = StockAdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        before_snapshot = self._snapshot(stock)
        movement = services.adjust_stock(
            stock,
            serializer.validated_data["quantity"],
            performed_by=request.user,
            transaction_type=serializer.validated_data["transaction_type"],
            notes=serializer.validated_data["notes"],
        )
        stock.refresh_from_db()
        self._audit(action="stock.adjust", instance=stock, before_snapshot=before_snapshot, after_snapshot=self._snapshot(stock))
        return Response(StockTransactionSerializer(movement).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["post"], url_path="transfer")
    def transfer(self, request):
        serializer = StockTransferRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        outgoing, incoming = services.transfer_stock(
            data["product"],
            data["from_location"],
            data["to_location"],
            data["quantity"],
            performed_by=request.user,
            notes=data["notes"],
        )
        self._audit(
            action="stock.transfer",
            instance=outgoing.stock,
            after_snapshot={"reference_number": outgoing.reference_number, "quantity": str(outgoing.quantity)},
        )
        return Response(
            {
                "reference_number": outgoing.reference_number,
                "transactions": StockTransactionSerializer([outgoing, incoming], many=True).data,
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=False, methods=["get"], url_path="alerts")
    def alerts(self, request):
        result = services.stock_alerts(self.get_queryset().filter(is_active=True))
        return Response(
            {
                "low_stock": StockSerializer(result["low_stock"], many=True).data,
                "reorder_needed": StockSerializer(result["reorder_needed"], many=True).data,
                "summary": result["summary"],
            }
        )


class StockTransactionViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = StockTransaction.objects.select_related("product", "location", "performed_by")
    serializer_class = StockTransactionSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "stock.view", "retrieve": "stock.view"}

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        for param, field_name in (
            ("product", "product_id"),
            ("location", "location_id"),
            ("stock", "stock_id"),
            ("transaction_type", "transaction_type"),
            ("reference_type", "reference_type"),
            ("reference_id", "reference_id"),
        ):
            value = params.get(param)
            if value:
                qs = qs.filter(**{field_name: value})

        start = params.get("start_date")
        end = params.get("end_date")
        if start:
            start_dt = parse_datetime(start)
            start_date = parse_date(start)
            if start_dt:
                qs = qs.filter(transaction_date__gte=start_dt)
            elif start_date:
                qs = qs.filter(transaction_date__date__gte=start_date)
        if end:
            end_dt = parse_datetime(end)
            end_date = parse_date(end)
            if end_dt:
                qs = qs.filter(transaction_date__lte=end_dt)
            elif end_date:
                qs = qs.filter(transaction_date__date__lte=end_date)
        return qs.order_by("-transaction_date", "-created_at")


class PurchaseOrderViewSet(CompanyContextMixin, AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = PurchaseOrder.objects.select_related("supplier").prefetch_related("items__product", "taxes")
    serializer_class = PurchaseOrderSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "purchasing.manage",
        "retrieve": "purchasing.manage",
        "create": "purchasing.manage",
        "update": "purchasing.manage",
        "partial_update": "purchasing.manage",
        "destroy": "admin.records.manage",
        "approve": "purchasing.manage",
        "send": "purchasing.manage",
        "complete": "purchasing.manage",
        "cancel": "purchasing.manage",
        "convert_to_grn": "purchasing.manage",
        "reports": "purchasing.manage",
    }
    audit_entity = "purchase_order"
    owner_field = "created_by"

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        if params.get("status"):
            qs = qs.filter(status=params["status"])
        if params.get("supplier"):
            qs = qs.filter(supplier_id=params["supplier"])
        if params.get("search"):
            qs = qs.filter(Q(po_number__icontains=params["search"]) | Q(supplier__name__icontains=params["search"]))
        return _date_range(qs, params, "po_date")

    def perform_destroy(self, instance):
        if instance.status != PurchaseOrder.Status.DRAFT or instance.converted_to_grn:
            raise InvalidTransition("Only draft purchase orders that were not converted can be deleted.")
        super().perform_destroy(instance)

    @action(detail=True, methods=["post"], url_path="approve")
    def approve(self, request, pk=None):
        return self.perform_transition(
            "approve",
            transition,
            action="approve",
            actor=request.user,
            stamps=[("approved_by", "approved_at")],
        )

    @action(detail=True, methods=["post"], url_path="send")
    def send(self, request, pk=None):
        return self.perform_transition(
            "send",
            transition,
            action="send",
            actor=request.user,
            stamps=[("sent_by", "sent_at")],
        )

    @action(detail=True, methods=["post"], url_path="complete")
    def complete(self, request, pk=None):
        return self.perform_transition("complete", transition, action="complete", actor=request.user)

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        po = self.get_object()
        if po.converted_to_grn:
            raise InvalidTransition(f"Purchase order {po.po_number} was converted to a GRN and cannot be cancelled.")
        return self.perform_transition("cancel", transition, action="cancel", actor=request.user)

    @action(detail=True, methods=["post"], url_path="convert-to-grn")
    def convert_to_grn(self, request, pk=None):
        po = self.get_object()
        before_snapshot = self._snapshot(po)
        location = None
        if request.data.get("location"):
            location = Location.objects.filter(pk=request.data["location"]).first()
        grn = services.convert_purchase_order_to_grn(
            po,
            performed_by=request.user,
            company=self.get_company(),
            location=location,
        )
        po.refresh_from_db()
        self._audit(action="purchase_order.convert", instance=po, before_snapshot=before_snapshot, after_snapshot=self._snapshot(po))
        return Response(GRNSerializer(grn).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"], url_path="reports")
    def reports(self, request):
        return Response(services.purchase_order_report(self.get_queryset()))


class GRNViewSet(CompanyContextMixin, AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = GRN.objects.select_related("supplier", "location", "purchase_order").prefetch_related("items__product")
    serializer_class = GRNSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "purchasing.manage",
        "retrieve": "purchasing.manage",
        "create": "purchasing.manage",
        "update": "purchasing.manage",
        "partial_update": "purchasing.manage",
        "destroy": "admin.records.manage",
        "inspect": "purchasing.manage",
        "approve": "purchasing.manage",
        "reject": "purchasing.manage",
        "update_stock": "purchasing.manage",
        "match_invoice": "purchasing.manage",
        "reports": "purchasing.manage",
    }
    audit_entity = "grn"
    owner_field = "created_by"

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        for param, field_name in (
            ("status", "status"),
            ("supplier", "supplier_id"),
            ("purchase_order", "purchase_order_id"),
            ("payment_status", "payment_status"),
            ("quality_status", "quality_status"),
        ):
            if params.get(param):
                qs = qs.filter(**{field_name: params[param]})
        return _date_range(qs, params, "grn_date")

    def perform_destroy(self, instance):
        if instance.status != GRN.Status.DRAFT:
            raise InvalidTransition("Only draft GRNs can be deleted.")
        super().perform_destroy(instance)

    @action(detail=True, methods=["post"], url_path="inspect")
    def inspect(self, request, pk=None):
        serializer = GRNInspectionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self.perform_transition(
            "inspect",
            services.inspect_grn,
            performed_by=request.user,
            items=serializer.validated_data["items"],
            quality_status=serializer.validated_data.get("quality_status"),
            inspection_notes=serializer.validated_data["inspection_notes"],
        )

    @action(detail=True, methods=["post"], url_path="approve")
    def approve(self, request, pk=None):
        return self.perform_transition(
            "approve",
            transition,
            action="approve",
            actor=request.user,
            stamps=[("approved_by", "approved_at")],
        )

    @action(detail=True, methods=["post"], url_path="reject")
    def reject(self, request, pk=None):
        return self.perform_transition("reject", transition, action="reject", actor=request.user)

    @action(detail=True, methods=["post"], url_path="update-stock")
    def update_stock(self, request, pk=None):
        return self.perform_transition("complete", services.complete_grn, performed_by=request.user)

    @action(detail=True, methods=["post"], url_path="match-invoice")
    def match_invoice(self, request, pk=None):
        serializer = GRNInvoiceMatchSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self.perform_transition("match_invoice", services.match_grn_invoice, **serializer.validated_data)

    @action(detail=False, methods=["get"], url_path="reports")
    def reports(self, request):
        return Response(services.grn_report(self.get_queryset()))


class SupplierPaymentViewSet(CompanyContextMixin, AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = SupplierPayment.objects.select_related("grn", "supplier")
    serializer_class = SupplierPaymentSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "supplier_payment.view",
        "retrieve": "supplier_payment.view",
        "by_grn": "supplier_payment.view",
        "create": "supplier_payment.manage",
        "update": "supplier_payment.manage",
        "partial_update": "supplier_payment.manage",
        "destroy": "supplier_payment.manage",
        "approve": "supplier_payment.manage",
        "mark_paid": "supplier_payment.manage",
    }
    audit_entity = "supplier_payment"
    owner_field = "created_by"

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        for param, field_name in (
            ("grn", "grn_id"),
            ("supplier", "supplier_id"),
            ("status", "status"),
            ("method", "method"),
        ):
            if params.get(param):
                qs = qs.filter(**{field_name: params[param]})
        return _date_range(qs, params, "payment_date")

    @transaction.atomic
    def perform_destroy(self, instance):
        self._audit(action="supplier_payment.delete", instance=instance, before_snapshot=self._snapshot(instance))
        services.delete_supplier_payment(instance)

    @action(detail=True, methods=["post"], url_path="approve")
    def approve(self, request, pk=None):
        return self.perform_transition("approve", services.approve_supplier_payment, performed_by=request.user)

    @action(detail=True, methods=["post"], url_path="mark-paid")
    def mark_paid(self, request, pk=None):
        return self.perform_transition("mark_paid", services.mark_supplier_payment_paid, performed_by=request.user)

    @action(detail=False, methods=["get"], url_path=r"by-grn/(?P<grn_id>[^/.]+)")
    def by_grn(self, request, grn_id=None):
        grn = get_object_or_404(GRN, pk=grn_id)
        payments = self.get_queryset().filter(grn=grn)
        return Response(
            {
                "grn": str(grn.pk),
                "grn_number": grn.grn_number,
                "total_value": grn.total_value,
                "paid_amount": grn.paid_amount,
                "balance_amount": grn.balance_amount,
                "payment_status": grn.payment_status,
                "payments": self.get_serializer(payments, many=True).data,
            }
        )
