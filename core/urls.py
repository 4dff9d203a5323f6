from django.urls import path
from rest_framework.routers import DefaultRouter

from core.views import (
    AuditLogViewSet,
    CompanySettingsView,
    RegisterView,
    TaxViewSet,
    UserViewSet,
    healthz,
    readyz,
)

router = DefaultRouter()
router.register(r"users", UserViewSet, basename="user")
router.register(r"taxes", TaxViewSet, basename="tax")
router.register(r"admin/audit-logs", AuditLogViewSet, basename="audit-log")

urlpatterns = router.urls + [
    path("register/", RegisterView.as_view(), name="register"),
    path("settings/", CompanySettingsView.as_view(), name="company-settings"),
    path("healthz/", healthz, name="healthz"),
    path("readyz/", readyz, name="readyz"),
]
