from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from core.models import AuditLog, Tax
from inventory.models import DEFAULT_LOCATION_CODE, DEFAULT_LOCATION_NAME, Location, Product, Stock, StockTransaction
from inventory.services import open_stock
from sales.models import Customer, Invoice, Payment, Quotation


class SalesTestMixin:
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.admin = user_model.objects.create_user(username="sales-admin", password="pass1234", role="admin")
        self.clerk = user_model.objects.create_user(username="sales-clerk", password="pass1234", role="user")
        self.other_clerk = user_model.objects.create_user(username="sales-clerk-2", password="pass1234", role="user")

        self.location = Location.objects.create(name=DEFAULT_LOCATION_NAME, code=DEFAULT_LOCATION_CODE)
        self.product = Product.objects.create(name="Office Chair", price=Decimal("100.00"), unit_cost=Decimal("70.00"))
        self.stock = open_stock(self.product, self.location, Decimal("10"))
        self.customer = Customer.objects.create(customer_number="CUST-9001", name="Northwind", email="buyer@northwind.test")
        self.vat = Tax.objects.create(name="VAT", value=Decimal("15"))

    def create_invoice(self, user=None, quantity="1", unit_price="100.00", **extra):
        self.client.force_authenticate(user=user or self.clerk)
        payload = {
            "customer": str(self.customer.id),
            "due_date": (timezone.localdate() + timedelta(days=14)).isoformat(),
            "location": str(self.location.id),
            "items": [{"product": str(self.product.id), "quantity": quantity, "unit_price": unit_price}],
            **extra,
        }
        return self.client.post("/api/v1/invoices/", payload, format="json")

    def create_quotation(self, user=None, quantity="2", discount="10"):
        self.client.force_authenticate(user=user or self.clerk)
        response = self.client.post(
            "/api/v1/quotations/",
            {
                "customer": str(self.customer.id),
                "valid_until": (timezone.localdate() + timedelta(days=30)).isoformat(),
                "items": [
                    {"product": str(self.product.id), "quantity": quantity, "unit_price": "100.00", "discount": discount}
                ],
                "taxes": [str(self.vat.id)],
            },
            format="json",
        )
        self.assertEqual(response.status_code, 201, response.content)
        return response.json()

    def pay(self, invoice_id, amount, **extra):
        self.client.force_authenticate(user=self.clerk)
        return self.client.post(
            "/api/v1/payments/",
            {"invoice": invoice_id, "amount": amount, "method": "cash", **extra},
            format="json",
        )


class CustomerTests(SalesTestMixin, TestCase):
    def test_customer_numbers_are_sequential(self):
        self.client.force_authenticate(user=self.clerk)

        first = self.client.post("/api/v1/customers/", {"name": "Contoso"}, format="json")
        second = self.client.post("/api/v1/customers/", {"name": "Fabrikam"}, format="json")

        self.assertEqual(first.json()["customer_number"], "CUST-0001")
        self.assertEqual(second.json()["customer_number"], "CUST-0002")

    def test_customer_with_invoices_cannot_be_deleted(self):
        self.create_invoice()
        self.client.force_authenticate(user=self.admin)

        response = self.client.delete(f"/api/v1/customers/{self.customer.id}/")

        self.assertEqual(response.status_code, 409)
        self.assertTrue(Customer.objects.filter(pk=self.customer.pk).exists())


class QuotationTests(SalesTestMixin, TestCase):
    def test_create_computes_totals_and_number(self):
        quotation = self.create_quotation()

        self.assertEqual(quotation["quotation_number"], "SQ-00001")
        self.assertEqual(quotation["status"], "draft")
        self.assertEqual(quotation["subtotal"], "180.00")
        self.assertEqual(quotation["tax_amount"], "27.00")
        self.assertEqual(quotation["total"], "207.00")
        self.assertEqual(quotation["items"][0]["total"], "180.00")
        self.assertEqual(quotation["created_by"], str(self.clerk.id))

    def test_valid_until_before_date_is_rejected(self):
        self.client.force_authenticate(user=self.clerk)

        response = self.client.post(
            "/api/v1/quotations/",
            {
                "customer": str(self.customer.id),
                "date": "2026-03-10",
                "valid_until": "2026-03-01",
                "items": [{"product": str(self.product.id), "quantity": "1", "unit_price": "10.00"}],
            },
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("valid_until", response.json()["errors"])

    def test_quotation_needs_items(self):
        self.client.force_authenticate(user=self.clerk)

        response = self.client.post(
            "/api/v1/quotations/",
            {"customer": str(self.customer.id), "valid_until": "2099-01-01", "items": []},
            format="json",
        )

        self.assertEqual(response.status_code, 400)

    def test_status_changes_follow_the_table(self):
        quotation = self.create_quotation()
        url = f"/api/v1/quotations/{quotation['id']}/update-status/"
        self.client.force_authenticate(user=self.admin)

        self.assertEqual(self.client.post(url, {"status": "sent"}, format="json").json()["status"], "sent")
        back_to_draft = self.client.post(url, {"status": "draft"}, format="json")
        self.assertEqual(back_to_draft.status_code, 400)
        self.assertEqual(back_to_draft.json()["code"], "invalid_transition")
        self.assertEqual(self.client.post(url, {"status": "rejected"}, format="json").json()["status"], "rejected")
        self.assertEqual(self.client.post(url, {"status": "draft"}, format="json").json()["status"], "draft")
        self.assertTrue(AuditLog.objects.filter(action="quotation.update_status", entity_id=quotation["id"]).exists())

    def test_only_admin_changes_quotation_status(self):
        quotation = self.create_quotation()

        response = self.client.post(f"/api/v1/quotations/{quotation['id']}/update-status/", {"status": "sent"}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(Quotation.objects.get(pk=quotation["id"]).status, Quotation.Status.DRAFT)

    def test_convert_creates_invoice_once_and_deducts_stock(self):
        quotation = self.create_quotation(quantity="2")
        self.client.force_authenticate(user=self.admin)
        self.client.post(f"/api/v1/quotations/{quotation['id']}/update-status/", {"status": "approved"}, format="json")

        converted = self.client.post(f"/api/v1/quotations/{quotation['id']}/convert-to-invoice/")
        again = self.client.post(f"/api/v1/quotations/{quotation['id']}/convert-to-invoice/")

        self.assertEqual(converted.status_code, 201, converted.content)
        invoice = converted.json()
        self.assertEqual(invoice["invoice_number"], "SI-00001")
        self.assertEqual(invoice["total"], "207.00")
        self.assertEqual(invoice["balance_amount"], "207.00")
        self.assertEqual(invoice["quotation"], quotation["id"])
        self.assertEqual(invoice["due_date"], (timezone.localdate() + timedelta(days=30)).isoformat())
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.json()["code"], "invalid_transition")
        self.assertEqual(Invoice.objects.count(), 1)
        self.stock.refresh_from_db()
        self.assertEqual(self.stock.quantity, Decimal("8.00"))
        stored = Quotation.objects.get(pk=quotation["id"])
        self.assertTrue(stored.converted_to_invoice)
        self.assertEqual(str(stored.invoice_id), invoice["id"])

    def test_draft_quotation_cannot_be_converted(self):
        quotation = self.create_quotation()
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(f"/api/v1/quotations/{quotation['id']}/convert-to-invoice/")

        self.assertEqual(response.status_code, 400)
        self.assertFalse(Invoice.objects.exists())

    def test_converted_quotation_is_frozen(self):
        quotation = self.create_quotation(quantity="1")
        self.client.force_authenticate(user=self.admin)
        self.client.post(f"/api/v1/quotations/{quotation['id']}/update-status/", {"status": "sent"}, format="json")
        self.client.post(f"/api/v1/quotations/{quotation['id']}/convert-to-invoice/")

        edit = self.client.patch(f"/api/v1/quotations/{quotation['id']}/", {"notes": "late change"}, format="json")
        status_change = self.client.post(
            f"/api/v1/quotations/{quotation['id']}/update-status/", {"status": "expired"}, format="json"
        )
        delete = self.client.delete(f"/api/v1/quotations/{quotation['id']}/")

        self.assertEqual(edit.status_code, 400)
        self.assertEqual(status_change.status_code, 400)
        self.assertEqual(delete.status_code, 400)

    def test_clerks_only_see_their_own_quotations(self):
        own = self.create_quotation(user=self.clerk)
        self.create_quotation(user=self.other_clerk)

        self.client.force_authenticate(user=self.clerk)
        listed = self.client.get("/api/v1/quotations/").json()["results"]
        self.client.force_authenticate(user=self.admin)
        everything = self.client.get("/api/v1/quotations/").json()["results"]

        self.assertEqual([row["id"] for row in listed], [own["id"]])
        self.assertEqual(len(everything), 2)


class InvoiceTests(SalesTestMixin, TestCase):
    def test_create_deducts_stock_with_invoice_reference(self):
        response = self.create_invoice(quantity="3")

        self.assertEqual(response.status_code, 201, response.content)
        invoice = response.json()
        self.assertEqual(invoice["total"], "300.00")
        self.assertEqual(invoice["paid_amount"], "0.00")
        self.assertEqual(invoice["balance_amount"], "300.00")
        self.stock.refresh_from_db()
        self.assertEqual(self.stock.quantity, Decimal("7.00"))
        movement = StockTransaction.objects.get(transaction_type=StockTransaction.Type.SALE)
        self.assertEqual(movement.reference_type, StockTransaction.ReferenceType.INVOICE)
        self.assertEqual(movement.reference_number, invoice["invoice_number"])

    def test_insufficient_stock_leaves_nothing_behind(self):
        response = self.create_invoice(quantity="11")

        self.assertEqual(response.status_code, 400)
        payload = response.json()
        self.assertEqual(payload["code"], "insufficient_stock")
        self.assertEqual(payload["errors"]["shortages"][0]["available"], "10.00")
        self.assertFalse(Invoice.objects.exists())
        self.stock.refresh_from_db()
        self.assertEqual(self.stock.quantity, Decimal("10.00"))
        self.assertFalse(StockTransaction.objects.filter(transaction_type=StockTransaction.Type.SALE).exists())

    def test_line_location_overrides_invoice_location(self):
        store = Location.objects.create(name="Store Front", code="STORE")
        store_stock = open_stock(self.product, store, Decimal("4"))
        self.client.force_authenticate(user=self.clerk)

        response = self.client.post(
            "/api/v1/invoices/",
            {
                "customer": str(self.customer.id),
                "due_date": "2099-01-01",
                "location": str(self.location.id),
                "items": [
                    {"product": str(self.product.id), "quantity": "2", "unit_price": "100.00", "location": str(store.id)}
                ],
            },
            format="json",
        )

        self.assertEqual(response.status_code, 201, response.content)
        store_stock.refresh_from_db()
        self.stock.refresh_from_db()
        self.assertEqual(store_stock.quantity, Decimal("2.00"))
        self.assertEqual(self.stock.quantity, Decimal("10.00"))

    def test_changing_items_restores_then_deducts(self):
        invoice = self.create_invoice(quantity="3").json()

        response = self.client.patch(
            f"/api/v1/invoices/{invoice['id']}/",
            {"items": [{"product": str(self.product.id), "quantity": "5", "unit_price": "100.00"}]},
            format="json",
        )

        self.assertEqual(response.status_code, 200, response.content)
        self.assertEqual(response.json()["total"], "500.00")
        self.stock.refresh_from_db()
        self.assertEqual(self.stock.quantity, Decimal("5.00"))

    def test_delete_restores_stock(self):
        invoice = self.create_invoice(quantity="3").json()
        self.client.force_authenticate(user=self.admin)

        response = self.client.delete(f"/api/v1/invoices/{invoice['id']}/")

        self.assertEqual(response.status_code, 204)
        self.stock.refresh_from_db()
        self.assertEqual(self.stock.quantity, Decimal("10.00"))
        self.assertFalse(Invoice.objects.exists())
        self.assertTrue(AuditLog.objects.filter(action="invoice.delete", entity_id=invoice["id"]).exists())

    def test_invoice_with_payments_cannot_be_deleted_or_edited(self):
        invoice = self.create_invoice(quantity="3").json()
        self.pay(invoice["id"], "50.00")

        edit = self.client.patch(f"/api/v1/invoices/{invoice['id']}/", {"notes": "changed"}, format="json")
        self.client.force_authenticate(user=self.admin)
        delete = self.client.delete(f"/api/v1/invoices/{invoice['id']}/")

        self.assertEqual(edit.status_code, 400)
        self.assertEqual(delete.status_code, 400)
        self.stock.refresh_from_db()
        self.assertEqual(self.stock.quantity, Decimal("7.00"))

    def test_manual_status_changes(self):
        invoice = self.create_invoice().json()
        url = f"/api/v1/invoices/{invoice['id']}/update-status/"

        self.assertEqual(self.client.post(url, {"status": "sent"}, format="json").json()["status"], "sent")
        self.assertEqual(self.client.post(url, {"status": "paid"}, format="json").status_code, 400)
        self.assertEqual(self.client.post(url, {"status": "overdue"}, format="json").json()["status"], "overdue")

    def test_paid_invoice_status_follows_payments(self):
        invoice = self.create_invoice().json()
        self.pay(invoice["id"], "100.00")

        response = self.client.post(f"/api/v1/invoices/{invoice['id']}/update-status/", {"status": "cancelled"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(Invoice.objects.get(pk=invoice["id"]).status, Invoice.Status.PAID)

    def test_approval_is_admin_only_and_stamped(self):
        invoice = self.create_invoice().json()
        url = f"/api/v1/invoices/{invoice['id']}/approval/"

        denied = self.client.post(url, {"approval_status": "approved"}, format="json")
        self.client.force_authenticate(user=self.admin)
        approved = self.client.post(url, {"approval_status": "approved"}, format="json")
        again = self.client.post(url, {"approval_status": "rejected"}, format="json")

        self.assertEqual(denied.status_code, 403)
        self.assertEqual(approved.status_code, 200)
        self.assertEqual(approved.json()["approval_status"], "approved")
        self.assertEqual(approved.json()["approved_by"], str(self.admin.id))
        self.assertEqual(again.status_code, 400)

    def test_non_admin_cannot_edit_approved_invoice(self):
        invoice = self.create_invoice().json()
        self.client.force_authenticate(user=self.admin)
        self.client.post(f"/api/v1/invoices/{invoice['id']}/approval/", {"approval_status": "approved"}, format="json")

        self.client.force_authenticate(user=self.clerk)
        denied = self.client.patch(f"/api/v1/invoices/{invoice['id']}/", {"notes": "changed"}, format="json")
        self.client.force_authenticate(user=self.admin)
        allowed = self.client.patch(f"/api/v1/invoices/{invoice['id']}/", {"notes": "changed"}, format="json")

        self.assertEqual(denied.status_code, 403)
        self.assertEqual(allowed.status_code, 200)

    def test_clerks_only_see_their_own_invoices(self):
        own = self.create_invoice(user=self.clerk).json()
        self.create_invoice(user=self.other_clerk)

        self.client.force_authenticate(user=self.clerk)
        listed = self.client.get("/api/v1/invoices/").json()["results"]
        other = self.client.get(f"/api/v1/invoices/{own['id']}/")
        self.client.force_authenticate(user=self.other_clerk)
        hidden = self.client.get(f"/api/v1/invoices/{own['id']}/")

        self.assertEqual([row["id"] for row in listed], [own["id"]])
        self.assertEqual(other.status_code, 200)
        self.assertEqual(hidden.status_code, 404)


class PaymentTests(SalesTestMixin, TestCase):
    def test_overpayment_is_rejected_within_tolerance(self):
        invoice = self.create_invoice().json()

        over = self.pay(invoice["id"], "100.02")
        exact = self.pay(invoice["id"], "100.00")

        self.assertEqual(over.status_code, 400)
        self.assertEqual(over.json()["code"], "overpayment")
        self.assertEqual(exact.status_code, 201, exact.content)
        self.assertEqual(exact.json()["payment_number"], "PAY-00001")
        stored = Invoice.objects.get(pk=invoice["id"])
        self.assertEqual(stored.status, Invoice.Status.PAID)
        self.assertEqual(stored.paid_amount, Decimal("100.00"))
        self.assertEqual(stored.balance_amount, Decimal("0.00"))

    def test_pending_payments_are_not_counted(self):
        invoice = self.create_invoice().json()

        response = self.pay(invoice["id"], "500.00", status="pending")

        self.assertEqual(response.status_code, 201)
        stored = Invoice.objects.get(pk=invoice["id"])
        self.assertEqual(stored.paid_amount, Decimal("0.00"))
        self.assertEqual(stored.status, Invoice.Status.DRAFT)

    def test_deleting_a_payment_recomputes_the_invoice(self):
        invoice = self.create_invoice(quantity="3").json()
        payments = [self.pay(invoice["id"], "100.00").json() for _ in range(3)]
        self.assertEqual(Invoice.objects.get(pk=invoice["id"]).status, Invoice.Status.PAID)

        response = self.client.delete(f"/api/v1/payments/{payments[1]['id']}/")

        self.assertEqual(response.status_code, 204)
        stored = Invoice.objects.get(pk=invoice["id"])
        self.assertEqual(stored.paid_amount, Decimal("200.00"))
        self.assertEqual(stored.balance_amount, Decimal("100.00"))
        self.assertEqual(stored.status, Invoice.Status.PARTIAL)
        self.assertEqual(Payment.objects.count(), 2)

    def test_removing_all_payments_returns_invoice_to_sent(self):
        invoice = self.create_invoice().json()
        payment = self.pay(invoice["id"], "40.00").json()
        self.assertEqual(Invoice.objects.get(pk=invoice["id"]).status, Invoice.Status.PARTIAL)

        self.client.delete(f"/api/v1/payments/{payment['id']}/")

        stored = Invoice.objects.get(pk=invoice["id"])
        self.assertEqual(stored.status, Invoice.Status.SENT)
        self.assertEqual(stored.balance_amount, Decimal("100.00"))

    def test_editing_payment_rechecks_balance(self):
        invoice = self.create_invoice().json()
        first = self.pay(invoice["id"], "60.00").json()
        self.pay(invoice["id"], "40.00")

        response = self.client.patch(f"/api/v1/payments/{first['id']}/", {"amount": "61.00"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "overpayment")
        self.assertEqual(Payment.objects.get(pk=first["id"]).amount, Decimal("60.00"))

    def test_cancelled_invoice_rejects_payments(self):
        invoice = self.create_invoice().json()
        self.client.post(f"/api/v1/invoices/{invoice['id']}/update-status/", {"status": "cancelled"}, format="json")

        response = self.pay(invoice["id"], "10.00")

        self.assertEqual(response.status_code, 400)
        self.assertFalse(Payment.objects.exists())

    def test_pending_payment_cannot_be_completed_on_cancelled_invoice(self):
        invoice = self.create_invoice().json()
        payment = self.pay(invoice["id"], "50.00", status="pending").json()
        self.client.post(f"/api/v1/invoices/{invoice['id']}/update-status/", {"status": "cancelled"}, format="json")

        response = self.client.patch(f"/api/v1/payments/{payment['id']}/", {"status": "completed"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("invoice", response.json()["errors"])
        stored = Invoice.objects.get(pk=invoice["id"])
        self.assertEqual(stored.status, Invoice.Status.CANCELLED)
        self.assertEqual(stored.paid_amount, Decimal("0.00"))
        self.assertEqual(Payment.objects.get(pk=payment["id"]).status, Payment.Status.PENDING)

    def test_stock_is_untouched_by_payments(self):
        invoice = self.create_invoice(quantity="2").json()
        self.pay(invoice["id"], "200.00")

        self.assertEqual(Stock.objects.get(pk=self.stock.pk).quantity, Decimal("8.00"))
