from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction

from core.models import CompanySettings, Tax
from core.sequences import next_document_number
from inventory.models import Location, Product, Stock, Supplier
from inventory.services import open_stock
from sales.models import Customer


class Command(BaseCommand):
    help = "Seed demo ERP data (users, location, taxes, products with opening stock, parties) for local development."

    @transaction.atomic
    def handle(self, *args, **options):
        User = get_user_model()
        company = CompanySettings.load()

        users = {}
        for username, role in (
            ("admin", User.Role.ADMIN),
            ("manager", User.Role.MANAGER),
            ("clerk", User.Role.USER),
        ):
            user, created = User.objects.get_or_create(
                username=username,
                defaults={
                    "email": f"{username}@example.com",
                    "role": role,
                    "is_staff": role == User.Role.ADMIN,
                    "is_superuser": role == User.Role.ADMIN,
                    "is_active": True,
                },
            )
            if created:
                user.set_password(f"{username}1234")
                user.save(update_fields=["password"])
            users[role] = user

        location = Location.get_default()

        Tax.objects.get_or_create(
            name="VAT",
            defaults={"type": Tax.Type.VAT, "value": Decimal("15.00"), "is_default": True},
        )
        Tax.objects.get_or_create(
            name="Service Tax",
            defaults={"type": Tax.Type.SERVICE_TAX, "value": Decimal("2.50")},
        )

        catalog = [
            ("Office Chair", "Furniture", Product.Unit.NUMBER, Decimal("85.00"), Decimal("120.00"), Decimal("40")),
            ("A4 Paper Ream", "Stationery", Product.Unit.PACK, Decimal("3.20"), Decimal("4.50"), Decimal("250")),
            ("Printer Toner", "Consumables", Product.Unit.NUMBER, Decimal("38.00"), Decimal("55.00"), Decimal("18")),
        ]
        for name, category, unit, cost, price, opening in catalog:
            product, _ = Product.objects.get_or_create(
                name=name,
                defaults={"category": category, "base_unit": unit, "unit_cost": cost, "price": price},
            )
            if not Stock.objects.filter(product=product, location=location).exists():
                open_stock(product, location, opening, performed_by=users[User.Role.ADMIN])

        if not Customer.objects.filter(email="customer@example.com").exists():
            Customer.objects.create(
                customer_number=next_document_number("customer", company),
                name="Demo Customer",
                email="customer@example.com",
                phone="+94110000001",
            )
        if not Supplier.objects.filter(email="supplier@example.com").exists():
            Supplier.objects.create(
                supplier_number=next_document_number("supplier", company),
                name="Demo Supplier",
                email="supplier@example.com",
                phone="+94110000002",
            )

        self.stdout.write(self.style.SUCCESS("Demo data seeded."))
