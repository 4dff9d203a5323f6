import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal
from unittest import skipUnless

from django.contrib.auth import get_user_model
from django.db import IntegrityError, connection
from django.test import TestCase, TransactionTestCase
from rest_framework.test import APIClient

from common.exceptions import DomainValidationError, custom_exception_handler
from core.models import AuditLog, CompanySettings, Sequence, Tax
from core.sequences import next_document_number, next_value
from core.serializers import EmailOrUsernameTokenObtainPairSerializer, UserRegistrationSerializer
from core.totals import compute_totals, exceeds_balance, settle


class SequenceAllocatorTests(TestCase):
    def test_numbers_use_company_prefix_and_width(self):
        self.assertEqual(next_document_number("invoice"), "SI-00001")
        self.assertEqual(next_document_number("invoice"), "SI-00002")
        self.assertEqual(next_document_number("purchase_order"), "PO-0001")
        self.assertEqual(Sequence.objects.get(type="invoice").current, 2)

    def test_prefix_comes_from_company_settings(self):
        company = CompanySettings.load()
        company.quotation_prefix = "QT/"
        company.save()

        self.assertEqual(next_document_number("quotation", company), "QT/00001")

    def test_grn_numbers_restart_per_year(self):
        self.assertEqual(next_document_number("grn", on_date=date(2024, 3, 1)), "GRN-2024-0001")
        self.assertEqual(next_document_number("grn", on_date=date(2024, 9, 1)), "GRN-2024-0002")
        self.assertEqual(next_document_number("grn", on_date=date(2025, 1, 2)), "GRN-2025-0001")

    def test_issued_numbers_are_unique(self):
        numbers = [next_document_number("payment") for _ in range(25)]

        self.assertEqual(len(set(numbers)), 25)
        self.assertEqual(numbers[-1], "PAY-00025")


@skipUnless(connection.vendor == "postgresql", "row locking needs a real database server")
class ConcurrentSequenceTests(TransactionTestCase):
    def test_parallel_allocation_never_repeats_a_value(self):
        next_value("concurrent")
        barrier = threading.Barrier(8)

        def allocate(_):
            try:
                barrier.wait()
                return [next_value("concurrent") for _ in range(10)]
            finally:
                connection.close()

        with ThreadPoolExecutor(max_workers=8) as pool:
            values = [value for batch in pool.map(allocate, range(8)) for value in batch]

        self.assertEqual(len(values), 80)
        self.assertEqual(len(set(values)), 80)
        self.assertEqual(Sequence.objects.get(type="concurrent").current, 81)


class TotalsTests(TestCase):
    def test_discount_then_tax_on_discounted_subtotal(self):
        totals = compute_totals(
            [{"quantity": 2, "unit_price": "100.00", "discount": 10}],
            discount_percent=0,
            tax_rates=[Decimal("15")],
        )

        self.assertEqual(totals.subtotal, Decimal("180.00"))
        self.assertEqual(totals.discount_amount, Decimal("0.00"))
        self.assertEqual(totals.tax_amount, Decimal("27.00"))
        self.assertEqual(totals.total, Decimal("207.00"))
        self.assertEqual(totals.lines, [Decimal("180.00")])

    def test_taxes_do_not_compound(self):
        totals = compute_totals(
            [{"quantity": 1, "unit_price": "200.00"}],
            discount_percent=10,
            tax_rates=[Decimal("10"), Decimal("5")],
        )

        self.assertEqual(totals.discount_amount, Decimal("20.00"))
        self.assertEqual(totals.tax_amount, Decimal("27.00"))
        self.assertEqual(totals.total, Decimal("207.00"))

    def test_empty_items_give_zero_totals(self):
        totals = compute_totals([], discount_percent=25, tax_rates=[Decimal("15")])

        self.assertEqual(
            (totals.subtotal, totals.discount_amount, totals.tax_amount, totals.total),
            (Decimal("0.00"), Decimal("0.00"), Decimal("0.00"), Decimal("0.00")),
        )

    def test_unparseable_numbers_are_rejected(self):
        with self.assertRaises(DomainValidationError):
            compute_totals([{"quantity": "abc", "unit_price": "100"}])
        with self.assertRaises(DomainValidationError):
            compute_totals([{"quantity": 1, "unit_price": "100"}], discount_percent="ten")

    def test_settlement_states_and_tolerance(self):
        self.assertEqual(settle("100.00", "0").state, "unpaid")
        self.assertEqual(settle("100.00", "40.00").state, "partial")
        self.assertEqual(settle("100.00", "40.00").balance, Decimal("60.00"))
        self.assertEqual(settle("100.00", "99.99").state, "paid")
        self.assertTrue(exceeds_balance("100.02", "100.00"))
        self.assertFalse(exceeds_balance("100.01", "100.00"))


class TaxTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.admin = self.user_model.objects.create_user(username="tax-admin", password="pass1234", role="admin")
        self.clerk = self.user_model.objects.create_user(username="tax-clerk", password="pass1234", role="user")

    def test_saving_a_default_tax_clears_the_previous_default(self):
        vat = Tax.objects.create(name="VAT", value=Decimal("15"), is_default=True)
        nbt = Tax.objects.create(name="NBT", value=Decimal("2"), is_default=True)

        vat.refresh_from_db()
        self.assertFalse(vat.is_default)
        self.assertTrue(nbt.is_default)
        self.assertEqual(Tax.objects.filter(is_default=True).count(), 1)

    def test_only_admin_can_create_taxes_and_creation_is_audited(self):
        self.client.force_authenticate(user=self.clerk)
        denied = self.client.post("/api/v1/taxes/", {"name": "VAT", "value": "15.00"}, format="json")
        self.assertEqual(denied.status_code, 403)
        self.assertEqual(denied.json()["code"], "permission_denied")

        self.client.force_authenticate(user=self.admin)
        created = self.client.post("/api/v1/taxes/", {"name": "VAT", "value": "15.00"}, format="json")
        self.assertEqual(created.status_code, 201)
        self.assertTrue(
            AuditLog.objects.filter(action="tax.create", entity="tax", entity_id=created.json()["id"], actor=self.admin).exists()
        )

    def test_tax_value_out_of_range_is_rejected(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post("/api/v1/taxes/", {"name": "Bogus", "value": "140.00"}, format="json")

        self.assertEqual(response.status_code, 400)
        payload = response.json()
        self.assertEqual(payload["code"], "validation_error")
        self.assertIn("value", payload["errors"])

    def test_everyone_can_list_enabled_taxes(self):
        Tax.objects.create(name="VAT", value=Decimal("15"))
        Tax.objects.create(name="Old levy", value=Decimal("1"), enabled=False)
        self.client.force_authenticate(user=self.clerk)

        response = self.client.get("/api/v1/taxes/?enabled=true")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["name"] for row in response.json()["results"]], ["VAT"])


class CompanySettingsTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.admin = user_model.objects.create_user(username="settings-admin", password="pass1234", role="admin")
        self.manager = user_model.objects.create_user(username="settings-manager", password="pass1234", role="manager")

    def test_admin_updates_prefixes_used_by_numbering(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.patch("/api/v1/settings/", {"invoice_prefix": "INV-"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(next_document_number("invoice"), "INV-00001")
        self.assertTrue(AuditLog.objects.filter(action="settings.update").exists())

    def test_manager_cannot_edit_settings(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.patch("/api/v1/settings/", {"name": "Other"}, format="json")

        self.assertEqual(response.status_code, 403)


class AuditLogTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.admin = user_model.objects.create_user(username="audit-admin", password="pass1234", role="admin")
        self.clerk = user_model.objects.create_user(username="audit-clerk", password="pass1234", role="user")

    def test_audit_logs_are_admin_only_and_read_only(self):
        self.client.force_authenticate(user=self.clerk)
        self.assertEqual(self.client.get("/api/v1/admin/audit-logs/").status_code, 403)

        self.client.force_authenticate(user=self.admin)
        self.assertEqual(self.client.get("/api/v1/admin/audit-logs/").status_code, 200)
        self.assertEqual(self.client.post("/api/v1/admin/audit-logs/", {}, format="json").status_code, 405)

    def test_request_id_is_recorded(self):
        self.client.force_authenticate(user=self.admin)

        self.client.post(
            "/api/v1/taxes/",
            {"name": "VAT", "value": "15.00"},
            format="json",
            HTTP_X_REQUEST_ID="req-tax-1",
        )

        self.assertEqual(AuditLog.objects.get(action="tax.create").request_id, "req-tax-1")


class UserTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.admin = self.user_model.objects.create_user(username="users-admin", password="pass1234", role="admin")

    def test_registration_rejects_case_insensitive_duplicate_email(self):
        self.user_model.objects.create_user(username="existing", email="Owner@Example.com", password="pass1234")

        serializer = UserRegistrationSerializer(
            data={"username": "another", "email": "owner@example.COM", "password": "pass1234"}
        )

        self.assertFalse(serializer.is_valid())
        self.assertIn("email", serializer.errors)

    def test_registered_users_get_the_user_role(self):
        response = self.client.post(
            "/api/v1/register/",
            {"username": "new-clerk", "email": "clerk@example.com", "password": "pass1234"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(self.user_model.objects.get(username="new-clerk").role, "user")

    def test_token_carries_role_claim(self):
        token = EmailOrUsernameTokenObtainPairSerializer.get_token(self.admin)

        self.assertEqual(token["role"], "admin")

    def test_admin_cannot_delete_own_account(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.delete(f"/api/v1/users/{self.admin.id}/")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "conflict")

    def test_admin_cannot_deactivate_own_account(self):
        other = self.user_model.objects.create_user(username="users-other", password="pass1234")
        self.client.force_authenticate(user=self.admin)

        own = self.client.patch(f"/api/v1/users/{self.admin.id}/", {"is_active": False}, format="json")
        someone_else = self.client.patch(f"/api/v1/users/{other.id}/", {"is_active": False}, format="json")

        self.assertEqual(own.status_code, 409)
        self.assertEqual(own.json()["message"], "You cannot deactivate your own account.")
        self.admin.refresh_from_db()
        self.assertTrue(self.admin.is_active)
        self.assertEqual(someone_else.status_code, 200)


class ErrorEnvelopeTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.admin = get_user_model().objects.create_user(username="envelope-admin", password="pass1234", role="admin")

    def test_not_found_uses_envelope(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/v1/taxes/00000000-0000-0000-0000-000000000000/")

        self.assertEqual(response.status_code, 404)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["code", "errors", "message", "status"])
        self.assertEqual(payload["code"], "not_found")
        self.assertEqual(payload["status"], 404)

    def test_unauthenticated_requests_are_rejected(self):
        response = self.client.get("/api/v1/taxes/")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "not_authenticated")

    def test_integrity_error_maps_to_conflict(self):
        response = custom_exception_handler(IntegrityError("duplicate key"), {"view": None})

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["code"], "conflict")

    def test_unexpected_errors_hide_details(self):
        with self.assertLogs("common.exceptions", level="ERROR"):
            response = custom_exception_handler(RuntimeError("secret detail"), {"view": None})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data["code"], "internal_server_error")
        self.assertNotIn("secret", response.data["message"])


class HealthTests(TestCase):
    def test_liveness_and_readiness(self):
        client = APIClient()

        self.assertEqual(client.get("/api/v1/healthz/").json()["status"], "ok")
        self.assertEqual(client.get("/api/v1/readyz/").json()["status"], "ready")
