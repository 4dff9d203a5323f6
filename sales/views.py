from django.db import transaction
from django.db.models import Q
from django.utils.dateparse import parse_date
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.exceptions import Conflict, InvalidTransition
from common.permissions import RoleCapabilityPermission, is_admin
from core.views import AuditedMutationMixin, CompanyContextMixin, scoped_queryset_for_user
from sales import services
from sales.models import Customer, Invoice, Payment, Quotation
from sales.serializers import (
    CustomerSerializer,
    InvoiceApprovalSerializer,
    InvoiceSerializer,
    InvoiceStatusSerializer,
    PaymentSerializer,
    QuotationSerializer,
    QuotationStatusSerializer,
)

DOCUMENT_PERMISSIONS = {
    "list": "sales.documents.manage",
    "retrieve": "sales.documents.manage",
    "create": "sales.documents.manage",
    "update": "sales.documents.manage",
    "partial_update": "sales.documents.manage",
    "destroy": "admin.records.manage",
}


def _date_range(qs, params, field_name):
    start_date = parse_date(params.get("start_date") or "")
    end_date = parse_date(params.get("end_date") or "")
    if start_date:
        qs = qs.filter(**{f"{field_name}__gte": start_date})
    if end_date:
        qs = qs.filter(**{f"{field_name}__lte": end_date})
    return qs


class CustomerViewSet(CompanyContextMixin, AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Customer.objects.all()
    serializer_class = CustomerSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "parties.view",
        "retrieve": "parties.view",
        "create": "parties.manage",
        "update": "parties.manage",
        "partial_update": "parties.manage",
        "destroy": "admin.records.manage",
    }
    audit_entity = "customer"

    def get_queryset(self):
        qs = super().get_queryset()
        search = self.request.query_params.get("search")
        is_active = self.request.query_params.get("is_active")
        if search:
            qs = qs.filter(
                Q(name__icontains=search)
                | Q(customer_number__icontains=search)
                | Q(email__icontains=search)
                | Q(phone__icontains=search)
            )
        if is_active is not None:
            qs = qs.filter(is_active=is_active.strip().lower() in {"1", "true", "yes"})
        return qs

    def perform_destroy(self, instance):
        if instance.invoices.exists() or instance.quotations.exists():
            raise Conflict(f"Customer {instance.customer_number} has sales documents and cannot be deleted.")
        super().perform_destroy(instance)


class QuotationViewSet(CompanyContextMixin, AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Quotation.objects.select_related("customer").prefetch_related("items__product", "taxes")
    serializer_class = QuotationSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        **DOCUMENT_PERMISSIONS,
        "update_status": "quotation.status",
        "convert_to_invoice": "quotation.convert",
    }
    audit_entity = "quotation"
    owner_field = "created_by"

    def get_queryset(self):
        qs = scoped_queryset_for_user(super().get_queryset(), self.request.user)
        params = self.request.query_params
        if params.get("status"):
            qs = qs.filter(status=params["status"])
        if params.get("customer"):
            qs = qs.filter(customer_id=params["customer"])
        if params.get("search"):
            qs = qs.filter(Q(quotation_number__icontains=params["search"]) | Q(customer__name__icontains=params["search"]))
        return _date_range(qs, params, "date")

    def perform_destroy(self, instance):
        if instance.converted_to_invoice:
            raise InvalidTransition(f"Quotation {instance.quotation_number} was converted to an invoice and cannot be deleted.")
        super().perform_destroy(instance)

    @action(detail=True, methods=["post"], url_path="update-status")
    def update_status(self, request, pk=None):
        serializer = QuotationStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self.perform_transition("update_status", services.set_quotation_status, new_status=serializer.validated_data["status"])

    @action(detail=True, methods=["post"], url_path="convert-to-invoice")
    def convert_to_invoice(self, request, pk=None):
        quotation = self.get_object()
        with transaction.atomic():
            before_snapshot = self._snapshot(quotation)
            invoice = services.convert_quotation(quotation, performed_by=request.user, company=self.get_company())
            quotation.refresh_from_db()
            self._audit(
                action="quotation.convert",
                instance=quotation,
                before_snapshot=before_snapshot,
                after_snapshot=self._snapshot(quotation),
            )
        return Response(InvoiceSerializer(invoice).data, status=status.HTTP_201_CREATED)


class InvoiceViewSet(CompanyContextMixin, AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Invoice.objects.select_related("customer", "location", "quotation").prefetch_related("items__product", "taxes")
    serializer_class = InvoiceSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        **DOCUMENT_PERMISSIONS,
        "update_status": "invoice.status",
        "approval": "invoice.approve",
    }
    audit_entity = "invoice"
    owner_field = "created_by"

    def get_queryset(self):
        qs = scoped_queryset_for_user(super().get_queryset(), self.request.user)
        params = self.request.query_params
        for param, field_name in (
            ("status", "status"),
            ("approval_status", "approval_status"),
            ("customer", "customer_id"),
        ):
            if params.get(param):
                qs = qs.filter(**{field_name: params[param]})
        if params.get("search"):
            qs = qs.filter(Q(invoice_number__icontains=params["search"]) | Q(customer__name__icontains=params["search"]))
        return _date_range(qs, params, "date")

    def perform_update(self, serializer):
        invoice = serializer.instance
        if invoice.approval_status == Invoice.ApprovalStatus.APPROVED and not is_admin(self.request.user):
            raise PermissionDenied("Only admins can modify an approved invoice.")
        super().perform_update(serializer)

    @transaction.atomic
    def perform_destroy(self, instance):
        self._audit(action="invoice.delete", instance=instance, before_snapshot=self._snapshot(instance))
        services.delete_invoice(instance, performed_by=self.request.user)

    @action(detail=True, methods=["post"], url_path="update-status")
    def update_status(self, request, pk=None):
        serializer = InvoiceStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self.perform_transition("update_status", services.set_invoice_status, new_status=serializer.validated_data["status"])

    @action(detail=True, methods=["post"], url_path="approval")
    def approval(self, request, pk=None):
        serializer = InvoiceApprovalSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        approve = serializer.validated_data["approval_status"] == Invoice.ApprovalStatus.APPROVED
        return self.perform_transition(
            "approve" if approve else "reject",
            services.decide_invoice_approval,
            approve=approve,
            performed_by=request.user,
        )


class PaymentViewSet(CompanyContextMixin, AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Payment.objects.select_related("invoice", "customer")
    serializer_class = PaymentSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        action: "payment.manage" for action in ["list", "retrieve", "create", "update", "partial_update", "destroy"]
    }
    audit_entity = "payment"
    owner_field = "created_by"

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        for param, field_name in (
            ("invoice", "invoice_id"),
            ("customer", "customer_id"),
            ("method", "method"),
            ("status", "status"),
        ):
            if params.get(param):
                qs = qs.filter(**{field_name: params[param]})
        return _date_range(qs, params, "date")

    @transaction.atomic
    def perform_destroy(self, instance):
        self._audit(action="payment.delete", instance=instance, before_snapshot=self._snapshot(instance))
        services.delete_payment(instance)
