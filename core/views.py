import csv
import logging

from django.db import connections, transaction
from django.http import HttpResponse
from django.utils.dateparse import parse_datetime
from django.contrib.auth import get_user_model
from rest_framework import generics, status, viewsets
from rest_framework.decorators import api_view, permission_classes
from rest_framework.decorators import action
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.response import Response
from rest_framework.views import APIView

from common.audit import create_audit_log_from_request
from common.exceptions import Conflict
from common.permissions import RoleCapabilityPermission, is_admin
from rest_framework_simplejwt.views import TokenObtainPairView

from core.models import AuditLog, CompanySettings, Tax
from core.serializers import (
    AuditLogSerializer,
    CompanySettingsSerializer,
    EmailOrUsernameTokenObtainPairSerializer,
    TaxSerializer,
    UserRegistrationSerializer,
    UserSerializer,
)

User = get_user_model()
logger = logging.getLogger(__name__)


def scoped_queryset_for_user(queryset, user, owner_field="created_by"):
    """Admins see every row; everyone else only the rows they created."""
    if not user.is_authenticated:
        return queryset.none()

    if is_admin(user):
        return queryset

    return queryset.filter(**{owner_field: user})


class AuditedMutationMixin:
    audit_entity = None
    owner_field = None

    def _snapshot(self, instance):
        return self.get_serializer(instance).data

    def _audit(self, *, action, instance, before_snapshot=None, after_snapshot=None):
        create_audit_log_from_request(
            self.request,
            action=action,
            entity=self.audit_entity,
            entity_id=instance.pk,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
        )

    @transaction.atomic
    def perform_create(self, serializer):
        extra = {self.owner_field: self.request.user} if self.owner_field else {}
        instance = serializer.save(**extra)
        self._audit(action=f"{self.audit_entity}.create", instance=instance, after_snapshot=self._snapshot(instance))

    @transaction.atomic
    def perform_update(self, serializer):
        before_snapshot = self._snapshot(serializer.instance)
        instance = serializer.save()
        self._audit(action=f"{self.audit_entity}.update", instance=instance, before_snapshot=before_snapshot, after_snapshot=self._snapshot(instance))

    @transaction.atomic
    def perform_destroy(self, instance):
        before_snapshot = self._snapshot(instance)
        self._audit(action=f"{self.audit_entity}.delete", instance=instance, before_snapshot=before_snapshot)
        instance.delete()

    @transaction.atomic
    def perform_transition(self, audit_action, operation, **kwargs):
        """Run a workflow ``operation`` on the current object and audit the before/after state."""
        instance = self.get_object()
        before_snapshot = self._snapshot(instance)
        instance = operation(instance, **kwargs)
        after_snapshot = self._snapshot(instance)
        self._audit(
            action=f"{self.audit_entity}.{audit_action}",
            instance=instance,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
        )
        return Response(after_snapshot)


class CompanyContextMixin:
    """Load company settings once per request and hand them to serializers."""

    def get_company(self):
        if not hasattr(self, "_company"):
            self._company = CompanySettings.load()
        return self._company

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context["company"] = self.get_company()
        return context


class RegisterView(generics.CreateAPIView):
    serializer_class = UserRegistrationSerializer
    permission_classes = [AllowAny]

    def perform_create(self, serializer):
        user = serializer.save()
        create_audit_log_from_request(
            self.request,
            action="user.create",
            entity="user",
            entity_id=user.id,
            after_snapshot={
                "id": str(user.id),
                "username": user.username,
                "email": user.email,
                "role": user.role,
            },
        )


class EmailOrUsernameTokenObtainPairView(TokenObtainPairView):
    serializer_class = EmailOrUsernameTokenObtainPairSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"


class UserViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = User.objects.order_by("username")
    serializer_class = UserSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {action: "admin.records.manage" for action in ["list", "retrieve", "create", "update", "partial_update", "destroy"]}
    audit_entity = "user"

    def perform_update(self, serializer):
        if serializer.instance.pk == self.request.user.pk and serializer.validated_data.get("is_active") is False:
            raise Conflict("You cannot deactivate your own account.")
        super().perform_update(serializer)

    def perform_destroy(self, instance):
        if instance.pk == self.request.user.pk:
            raise Conflict("You cannot delete your own account.")
        super().perform_destroy(instance)


class TaxViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Tax.objects.all()
    serializer_class = TaxSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "catalog.view",
        "retrieve": "catalog.view",
        "create": "catalog.manage",
        "update": "catalog.manage",
        "partial_update": "catalog.manage",
        "destroy": "catalog.manage",
    }
    audit_entity = "tax"

    def get_queryset(self):
        qs = super().get_queryset()
        enabled = self.request.query_params.get("enabled")
        if enabled is not None:
            qs = qs.filter(enabled=enabled.strip().lower() in {"1", "true", "yes"})
        return qs

    def perform_destroy(self, instance):
        in_use = [
            name
            for name, relation in (
                ("quotations", "quotations"),
                ("invoices", "invoices"),
                ("purchase orders", "purchase_orders"),
            )
            if getattr(instance, relation).exists()
        ]
        if in_use:
            raise Conflict(f"Tax '{instance.name}' is used by {', '.join(in_use)} and cannot be deleted.")
        super().perform_destroy(instance)


class CompanySettingsView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "settings.manage", "put": "settings.manage", "patch": "settings.manage"}

    def get(self, request):
        return Response(CompanySettingsSerializer(CompanySettings.load()).data)

    def put(self, request):
        return self._update(request, partial=False)

    def patch(self, request):
        return self._update(request, partial=True)

    def _update(self, request, partial):
        company = CompanySettings.load()
        before_snapshot = CompanySettingsSerializer(company).data
        serializer = CompanySettingsSerializer(company, data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        company = serializer.save()
        create_audit_log_from_request(
            request,
            action="settings.update",
            entity="company_settings",
            before_snapshot=before_snapshot,
            after_snapshot=serializer.data,
        )
        return Response(serializer.data)


class AuditLogViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = AuditLog.objects.select_related("actor")
    serializer_class = AuditLogSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "audit.view", "retrieve": "audit.view", "export": "audit.view"}

    def get_queryset(self):
        qs = self.queryset.order_by("-created_at")

        start_date = self.request.query_params.get("start_date")
        end_date = self.request.query_params.get("end_date")
        actor_id = self.request.query_params.get("actor_id")
        action = self.request.query_params.get("action")
        entity = self.request.query_params.get("entity")
        entity_id = self.request.query_params.get("entity_id")

        if start_date:
            dt = parse_datetime(start_date)
            if dt:
                qs = qs.filter(created_at__gte=dt)
        if end_date:
            dt = parse_datetime(end_date)
            if dt:
                qs = qs.filter(created_at__lte=dt)
        if actor_id:
            qs = qs.filter(actor_id=actor_id)
        if action:
            qs = qs.filter(action=action)
        if entity:
            qs = qs.filter(entity=entity)
        if entity_id:
            qs = qs.filter(entity_id=entity_id)

        return qs

    @action(detail=False, methods=["get"], url_path="export")
    def export(self, request):
        logs = self.get_queryset()
        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = 'attachment; filename="audit-logs.csv"'

        writer = csv.writer(response)
        writer.writerow(["id", "created_at", "actor", "action", "entity", "entity_id", "request_id"])
        for log in logs:
            writer.writerow(
                [
                    log.id,
                    log.created_at.isoformat(),
                    getattr(log.actor, "username", ""),
                    log.action,
                    log.entity,
                    log.entity_id,
                    log.request_id,
                ]
            )
        return response


@api_view(["GET"])
@permission_classes([AllowAny])
def healthz(request):
    return Response({"status": "ok", "request_id": getattr(request, "request_id", None)})


@api_view(["GET"])
@permission_classes([AllowAny])
def readyz(request):
    try:
        with connections["default"].cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except Exception as exc:
        logger.exception("readiness_check_failed")
        return Response(
            {"status": "error", "request_id": getattr(request, "request_id", None), "detail": str(exc)},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return Response({"status": "ready", "request_id": getattr(request, "request_id", None)})
