from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import TestCase
from rest_framework.test import APIClient

from common.exceptions import InsufficientStock
from core.models import AuditLog, Tax
from inventory.models import GRN, Location, Product, PurchaseOrder, Stock, StockTransaction, Supplier, SupplierPayment
from inventory.services import (
    INITIAL_STOCK_REFERENCE,
    StockLine,
    StockReference,
    adjust_stock,
    deduct_stock,
    open_stock,
    receive_stock,
)


class InventoryTestMixin:
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.admin = user_model.objects.create_user(username="inv-admin", password="pass1234", role="admin")
        self.manager = user_model.objects.create_user(username="inv-manager", password="pass1234", role="manager")
        self.clerk = user_model.objects.create_user(username="inv-clerk", password="pass1234", role="user")

        self.main = Location.objects.create(name="Main Warehouse", code="MAIN")
        self.store = Location.objects.create(name="Store Front", code="STORE")
        self.product = Product.objects.create(name="Office Chair", category="Furniture", price=Decimal("120.00"), unit_cost=Decimal("85.00"))


class StockLedgerTests(InventoryTestMixin, TestCase):
    def test_opening_stock_writes_initial_transaction(self):
        stock = open_stock(self.product, self.main, Decimal("20"), performed_by=self.manager)

        movement = StockTransaction.objects.get(stock=stock)
        self.assertEqual(stock.quantity, Decimal("20.00"))
        self.assertEqual(movement.transaction_type, StockTransaction.Type.STOCK_IN)
        self.assertEqual(movement.reference_type, StockTransaction.ReferenceType.MANUAL)
        self.assertEqual(movement.reference_number, INITIAL_STOCK_REFERENCE)
        self.assertEqual((movement.balance_before, movement.balance_after), (Decimal("0.00"), Decimal("20.00")))

    def test_manager_opens_stock_and_duplicate_is_conflict(self):
        self.client.force_authenticate(user=self.manager)
        payload = {"product": str(self.product.id), "location": str(self.main.id), "opening_quantity": "20"}

        created = self.client.post("/api/v1/stock/", payload, format="json")
        duplicate = self.client.post("/api/v1/stock/", payload, format="json")

        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["quantity"], "20.00")
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.json()["code"], "conflict")
        self.assertEqual(Stock.objects.filter(product=self.product, location=self.main).count(), 1)

    def test_stock_endpoints_require_manager_or_admin(self):
        self.client.force_authenticate(user=self.clerk)

        self.assertEqual(self.client.get("/api/v1/stock/").status_code, 403)
        self.assertEqual(self.client.get("/api/v1/stock-transactions/").status_code, 403)
        self.assertEqual(self.client.get("/api/v1/stock/alerts/").status_code, 403)

    def test_deduction_is_all_or_nothing_across_lines(self):
        stock = open_stock(self.product, self.main, Decimal("5"))
        lines = [
            StockLine(product=self.product, location=self.main, quantity=Decimal("3")),
            StockLine(product=self.product, location=self.main, quantity=Decimal("3")),
        ]

        with self.assertRaises(InsufficientStock) as raised:
            deduct_stock(lines, reference=StockReference(type=StockTransaction.ReferenceType.INVOICE, number="SI-TEST"))

        stock.refresh_from_db()
        self.assertEqual(stock.quantity, Decimal("5.00"))
        self.assertFalse(StockTransaction.objects.filter(transaction_type=StockTransaction.Type.SALE).exists())
        shortage = raised.exception.detail["shortages"][0]
        self.assertEqual(shortage["available"], "5.00")
        self.assertEqual(shortage["required"], "6.00")

    def test_deduction_from_missing_row_reports_zero_available(self):
        lines = [StockLine(product=self.product, location=self.store, quantity=Decimal("1"))]

        with self.assertRaises(InsufficientStock):
            deduct_stock(lines, reference=StockReference(type=StockTransaction.ReferenceType.INVOICE))

        self.assertFalse(Stock.objects.filter(location=self.store).exists())

    def test_ledger_balances_replay_to_current_quantity(self):
        stock = open_stock(self.product, self.main, Decimal("20"))
        adjust_stock(stock, Decimal("-5"), transaction_type=StockTransaction.Type.DAMAGE, notes="Broken")
        receive_stock(
            self.product,
            self.main,
            Decimal("10"),
            reference=StockReference(type=StockTransaction.ReferenceType.MANUAL, number="RCV-1"),
        )

        balance = Decimal("0")
        for movement in StockTransaction.objects.filter(stock=stock).order_by("transaction_date", "created_at"):
            self.assertEqual(movement.balance_before, balance)
            self.assertGreaterEqual(movement.quantity, 0)
            balance = movement.balance_after
        stock.refresh_from_db()
        self.assertEqual(balance, stock.quantity)
        self.assertEqual(stock.quantity, Decimal("25.00"))

    def test_adjustment_cannot_make_stock_negative(self):
        stock = open_stock(self.product, self.main, Decimal("20"))
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(f"/api/v1/stock/{stock.id}/adjust/", {"quantity": "-25"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "insufficient_stock")
        stock.refresh_from_db()
        self.assertEqual(stock.quantity, Decimal("20.00"))

    def test_adjustment_records_reference_and_audit(self):
        stock = open_stock(self.product, self.main, Decimal("20"))
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(
            f"/api/v1/stock/{stock.id}/adjust/",
            {"quantity": "-2", "transaction_type": "loss", "notes": "Stocktake"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["transaction_type"], "loss")
        self.assertEqual(payload["reference_type"], "Adjustment")
        self.assertTrue(payload["reference_number"].startswith("ADJ-"))
        self.assertEqual(payload["balance_after"], "18.00")
        self.assertTrue(AuditLog.objects.filter(action="stock.adjust", entity_id=stock.id).exists())

    def test_transfer_moves_stock_and_creates_destination_row(self):
        open_stock(self.product, self.main, Decimal("20"))
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(
            "/api/v1/stock/transfer/",
            {
                "product": str(self.product.id),
                "from_location": str(self.main.id),
                "to_location": str(self.store.id),
                "quantity": "7",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertTrue(response.json()["reference_number"].startswith("TRF-"))
        self.assertEqual(Stock.objects.get(product=self.product, location=self.main).quantity, Decimal("13.00"))
        self.assertEqual(Stock.objects.get(product=self.product, location=self.store).quantity, Decimal("7.00"))
        self.assertEqual(StockTransaction.objects.filter(transaction_type=StockTransaction.Type.TRANSFER).count(), 2)

    def test_failed_transfer_destination_restores_source(self):
        source = open_stock(self.product, self.main, Decimal("20"))
        self.client.force_authenticate(user=self.manager)

        with patch("inventory.services._create_stock_row", side_effect=DatabaseError("destination write failed")):
            response = self.client.post(
                "/api/v1/stock/transfer/",
                {
                    "product": str(self.product.id),
                    "from_location": str(self.main.id),
                    "to_location": str(self.store.id),
                    "quantity": "7",
                },
                format="json",
            )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "conflict")
        source.refresh_from_db()
        self.assertEqual(source.quantity, Decimal("20.00"))
        self.assertFalse(StockTransaction.objects.filter(transaction_type=StockTransaction.Type.TRANSFER).exists())
        self.assertFalse(Stock.objects.filter(location=self.store).exists())

    def test_transfer_to_same_location_is_rejected(self):
        open_stock(self.product, self.main, Decimal("20"))
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(
            "/api/v1/stock/transfer/",
            {
                "product": str(self.product.id),
                "from_location": str(self.main.id),
                "to_location": str(self.main.id),
                "quantity": "1",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 400)

    def test_alerts_split_low_and_reorder(self):
        open_stock(self.product, self.main, Decimal("5"))
        desk = Product.objects.create(name="Desk", price=Decimal("300.00"))
        open_stock(desk, self.main, Decimal("15"))
        lamp = Product.objects.create(name="Lamp", price=Decimal("20.00"))
        open_stock(lamp, self.main, Decimal("50"))
        self.client.force_authenticate(user=self.admin)

        payload = self.client.get("/api/v1/stock/alerts/").json()

        self.assertEqual([row["product_name"] for row in payload["low_stock"]], ["Office Chair"])
        self.assertEqual([row["product_name"] for row in payload["reorder_needed"]], ["Desk"])
        self.assertEqual(payload["summary"], {"low_stock_count": 1, "reorder_count": 1})

    def test_balance_sums_across_locations(self):
        open_stock(self.product, self.main, Decimal("5"))
        open_stock(self.product, self.store, Decimal("3"))
        self.client.force_authenticate(user=self.manager)

        payload = self.client.get(f"/api/v1/products/{self.product.id}/balance/").json()

        self.assertEqual(Decimal(str(payload["total_quantity"])), Decimal("8"))
        self.assertEqual(len(payload["locations"]), 2)

    def test_stock_transactions_are_immutable(self):
        stock = open_stock(self.product, self.main, Decimal("5"))
        movement = StockTransaction.objects.get(stock=stock)

        movement.notes = "edited"
        with self.assertRaises(ValueError):
            movement.save()
        with self.assertRaises(ValueError):
            movement.delete()


class CatalogTests(InventoryTestMixin, TestCase):
    def test_only_admin_manages_products(self):
        payload = {"name": "Desk", "price": "300.00", "base_unit": "No"}

        self.client.force_authenticate(user=self.clerk)
        self.assertEqual(self.client.post("/api/v1/products/", payload, format="json").status_code, 403)
        self.assertEqual(self.client.get("/api/v1/products/").status_code, 200)

        self.client.force_authenticate(user=self.admin)
        self.assertEqual(self.client.post("/api/v1/products/", payload, format="json").status_code, 201)

    def test_supplier_numbers_are_issued_on_create(self):
        self.client.force_authenticate(user=self.clerk)

        first = self.client.post("/api/v1/suppliers/", {"name": "Acme", "email": "acme@example.com"}, format="json")
        second = self.client.post("/api/v1/suppliers/", {"name": "Globex", "email": "globex@example.com"}, format="json")

        self.assertEqual(first.json()["supplier_number"], "SUP-0001")
        self.assertEqual(second.json()["supplier_number"], "SUP-0002")

    def test_location_with_stock_cannot_be_deleted(self):
        open_stock(self.product, self.main, Decimal("1"))
        self.client.force_authenticate(user=self.admin)

        response = self.client.delete(f"/api/v1/locations/{self.main.id}/")

        self.assertEqual(response.status_code, 409)


class PurchasingTestMixin(InventoryTestMixin):
    def setUp(self):
        super().setUp()
        self.supplier = Supplier.objects.create(supplier_number="SUP-9001", name="Acme", email="acme@example.com")
        self.vat = Tax.objects.create(name="VAT", value=Decimal("10"))

    def create_purchase_order(self, quantity="10", unit_price="50.00"):
        self.client.force_authenticate(user=self.clerk)
        response = self.client.post(
            "/api/v1/purchase-orders/",
            {
                "supplier": str(self.supplier.id),
                "expected_delivery_date": "2099-12-31",
                "items": [{"product": str(self.product.id), "quantity": quantity, "unit_price": unit_price}],
                "taxes": [str(self.vat.id)],
            },
            format="json",
        )
        self.assertEqual(response.status_code, 201, response.content)
        return response.json()

    def create_received_grn(self, received="10", accepted="8"):
        po = self.create_purchase_order()
        self.client.post(f"/api/v1/purchase-orders/{po['id']}/approve/")
        self.client.post(f"/api/v1/purchase-orders/{po['id']}/send/")
        grn = self.client.post(
            f"/api/v1/purchase-orders/{po['id']}/convert-to-grn/",
            {"location": str(self.main.id)},
            format="json",
        ).json()
        line_id = grn["items"][0]["id"]
        inspected = self.client.post(
            f"/api/v1/grns/{grn['id']}/inspect/",
            {"items": [{"id": line_id, "received_quantity": received, "accepted_quantity": accepted, "batch_number": "B-1"}]},
            format="json",
        )
        self.assertEqual(inspected.status_code, 200, inspected.content)
        approved = self.client.post(f"/api/v1/grns/{grn['id']}/approve/")
        self.assertEqual(approved.status_code, 200, approved.content)
        return GRN.objects.get(pk=grn["id"])


class PurchaseOrderTests(PurchasingTestMixin, TestCase):
    def test_create_computes_totals_and_tracks_last_po(self):
        po = self.create_purchase_order()

        self.assertEqual(po["po_number"], "PO-0001")
        self.assertEqual(po["status"], "draft")
        self.assertEqual(po["subtotal"], "500.00")
        self.assertEqual(po["tax_amount"], "50.00")
        self.assertEqual(po["total"], "550.00")
        self.product.refresh_from_db()
        self.assertEqual(self.product.last_po_number, "PO-0001")

    def test_expected_delivery_before_po_date_is_rejected(self):
        self.client.force_authenticate(user=self.clerk)

        response = self.client.post(
            "/api/v1/purchase-orders/",
            {
                "supplier": str(self.supplier.id),
                "po_date": "2026-05-10",
                "expected_delivery_date": "2026-05-01",
                "items": [{"product": str(self.product.id), "quantity": "1", "unit_price": "5.00"}],
            },
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("expected_delivery_date", response.json()["errors"])

    def test_unknown_tax_is_not_found(self):
        self.client.force_authenticate(user=self.clerk)

        response = self.client.post(
            "/api/v1/purchase-orders/",
            {
                "supplier": str(self.supplier.id),
                "expected_delivery_date": "2099-12-31",
                "items": [{"product": str(self.product.id), "quantity": "1", "unit_price": "5.00"}],
                "taxes": ["00000000-0000-0000-0000-000000000000"],
            },
            format="json",
        )

        self.assertEqual(response.status_code, 404)
        self.assertFalse(PurchaseOrder.objects.exists())

    def test_lifecycle_and_invalid_transition(self):
        po = self.create_purchase_order()

        early_send = self.client.post(f"/api/v1/purchase-orders/{po['id']}/send/")
        self.assertEqual(early_send.status_code, 400)
        self.assertEqual(early_send.json()["code"], "invalid_transition")

        approved = self.client.post(f"/api/v1/purchase-orders/{po['id']}/approve/")
        self.assertEqual(approved.json()["status"], "approved")
        self.assertEqual(approved.json()["approved_by"], str(self.clerk.id))

        blocked_edit = self.client.patch(f"/api/v1/purchase-orders/{po['id']}/", {"notes": "late"}, format="json")
        self.assertEqual(blocked_edit.status_code, 400)

        self.assertEqual(self.client.post(f"/api/v1/purchase-orders/{po['id']}/send/").json()["status"], "sent")
        self.assertEqual(self.client.post(f"/api/v1/purchase-orders/{po['id']}/complete/").json()["status"], "completed")
        self.assertTrue(AuditLog.objects.filter(action="purchase_order.complete", entity_id=po["id"]).exists())

    def test_convert_to_grn_happens_once(self):
        po = self.create_purchase_order()
        self.client.post(f"/api/v1/purchase-orders/{po['id']}/approve/")

        converted = self.client.post(f"/api/v1/purchase-orders/{po['id']}/convert-to-grn/", {}, format="json")
        again = self.client.post(f"/api/v1/purchase-orders/{po['id']}/convert-to-grn/", {}, format="json")
        cancel = self.client.post(f"/api/v1/purchase-orders/{po['id']}/cancel/")

        self.assertEqual(converted.status_code, 201)
        grn = converted.json()
        self.assertTrue(grn["grn_number"].startswith("GRN-"))
        self.assertEqual(grn["items"][0]["ordered_quantity"], "10.00")
        self.assertEqual(again.status_code, 400)
        self.assertEqual(cancel.status_code, 400)
        purchase_order = PurchaseOrder.objects.get(pk=po["id"])
        self.assertTrue(purchase_order.converted_to_grn)
        self.assertEqual(str(purchase_order.grn_id), grn["id"])
        self.assertEqual(purchase_order.status, PurchaseOrder.Status.CONVERTED)


class GRNTests(PurchasingTestMixin, TestCase):
    def test_inspection_derives_rejected_and_value(self):
        grn = self.create_received_grn(received="10", accepted="8")

        line = grn.items.get()
        self.assertEqual(line.rejected_quantity, Decimal("2.00"))
        self.assertEqual(line.short_quantity, Decimal("0.00"))
        self.assertEqual(grn.total_value, Decimal("400.00"))
        self.assertEqual(grn.balance_amount, Decimal("400.00"))
        self.assertEqual(grn.status, GRN.Status.APPROVED)

    def test_update_stock_posts_accepted_quantity_once(self):
        grn = self.create_received_grn(received="10", accepted="8")

        first = self.client.post(f"/api/v1/grns/{grn.id}/update-stock/")
        second = self.client.post(f"/api/v1/grns/{grn.id}/update-stock/")

        self.assertEqual(first.status_code, 200, first.content)
        self.assertTrue(first.json()["stock_updated"])
        self.assertEqual(second.status_code, 400)
        self.assertEqual(second.json()["code"], "invalid_transition")
        stock = Stock.objects.get(product=self.product, location=self.main)
        self.assertEqual(stock.quantity, Decimal("8.00"))
        movement = StockTransaction.objects.get(stock=stock)
        self.assertEqual(movement.transaction_type, StockTransaction.Type.GRN)
        self.assertEqual(movement.reference_number, grn.grn_number)
        self.assertEqual(stock.batches.get().batch_number, "B-1")

    def test_update_stock_requires_approval(self):
        self.client.force_authenticate(user=self.clerk)
        created = self.client.post(
            "/api/v1/grns/",
            {
                "supplier": str(self.supplier.id),
                "location": str(self.main.id),
                "items": [{"product": str(self.product.id), "received_quantity": "4", "unit_price": "10.00"}],
            },
            format="json",
        )
        self.assertEqual(created.status_code, 201, created.content)

        response = self.client.post(f"/api/v1/grns/{created.json()['id']}/update-stock/")

        self.assertEqual(response.status_code, 400)
        self.assertFalse(Stock.objects.filter(product=self.product).exists())

    def test_match_invoice(self):
        grn = self.create_received_grn()

        response = self.client.post(
            f"/api/v1/grns/{grn.id}/match-invoice/",
            {"invoice_number": "ACME-77", "invoice_amount": "400.00"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["invoice_matched"])


class SupplierPaymentTests(PurchasingTestMixin, TestCase):
    def test_only_admin_records_supplier_payments(self):
        grn = self.create_received_grn()

        self.client.force_authenticate(user=self.clerk)
        denied = self.client.post("/api/v1/supplier-payments/", {"grn": str(grn.id), "amount": "10.00", "method": "cash"}, format="json")
        listed = self.client.get("/api/v1/supplier-payments/")

        self.assertEqual(denied.status_code, 403)
        self.assertEqual(listed.status_code, 200)

    def test_overpayment_is_rejected(self):
        grn = self.create_received_grn()
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            "/api/v1/supplier-payments/",
            {"grn": str(grn.id), "amount": "400.02", "method": "cash"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        payload = response.json()
        self.assertEqual(payload["code"], "overpayment")
        self.assertEqual(payload["message"], "Payment amount exceeds balance: requested 400.02, available 400.00.")

    def test_approval_counts_payment_towards_grn_balance(self):
        grn = self.create_received_grn()
        self.client.force_authenticate(user=self.admin)

        created = self.client.post(
            "/api/v1/supplier-payments/",
            {"grn": str(grn.id), "amount": "150.00", "method": "bank_transfer"},
            format="json",
        )
        self.assertEqual(created.status_code, 201, created.content)
        payment_id = created.json()["id"]
        self.assertEqual(created.json()["payment_number"], "SUPPAY-00001")
        grn.refresh_from_db()
        self.assertEqual(grn.payment_status, GRN.PaymentStatus.UNPAID)

        self.client.post(f"/api/v1/supplier-payments/{payment_id}/approve/")
        grn.refresh_from_db()
        self.assertEqual(grn.payment_status, GRN.PaymentStatus.PARTIAL)
        self.assertEqual(grn.balance_amount, Decimal("250.00"))

        paid = self.client.post(f"/api/v1/supplier-payments/{payment_id}/mark-paid/")
        self.assertEqual(paid.json()["status"], "paid")

        rest = self.client.post(
            "/api/v1/supplier-payments/",
            {"grn": str(grn.id), "amount": "250.00", "method": "cash"},
            format="json",
        )
        self.client.post(f"/api/v1/supplier-payments/{rest.json()['id']}/approve/")
        summary = self.client.get(f"/api/v1/supplier-payments/by-grn/{grn.id}/").json()
        self.assertEqual(summary["payment_status"], "paid")
        self.assertEqual(Decimal(str(summary["balance_amount"])), Decimal("0"))
        self.assertEqual(len(summary["payments"]), 2)

    def test_only_draft_payments_can_be_deleted(self):
        grn = self.create_received_grn()
        self.client.force_authenticate(user=self.admin)
        draft = self.client.post("/api/v1/supplier-payments/", {"grn": str(grn.id), "amount": "50.00", "method": "cash"}, format="json").json()
        approved = self.client.post("/api/v1/supplier-payments/", {"grn": str(grn.id), "amount": "50.00", "method": "cash"}, format="json").json()
        self.client.post(f"/api/v1/supplier-payments/{approved['id']}/approve/")

        self.assertEqual(self.client.delete(f"/api/v1/supplier-payments/{draft['id']}/").status_code, 204)
        self.assertEqual(self.client.delete(f"/api/v1/supplier-payments/{approved['id']}/").status_code, 400)
        self.assertEqual(SupplierPayment.objects.count(), 1)
        grn.refresh_from_db()
        self.assertEqual(grn.paid_amount, Decimal("50.00"))

    def test_payments_require_payable_grn(self):
        self.client.force_authenticate(user=self.clerk)
        draft_grn = self.client.post(
            "/api/v1/grns/",
            {
                "supplier": str(self.supplier.id),
                "items": [{"product": str(self.product.id), "received_quantity": "4", "unit_price": "10.00"}],
            },
            format="json",
        ).json()
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            "/api/v1/supplier-payments/",
            {"grn": draft_grn["id"], "amount": "10.00", "method": "cash"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
