from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction

from trading.models import (
    PERMISSION_SECTIONS, Account, Customer, Product, ProductCategory, Role, Supplier, empty_permissions,
)

User = get_user_model()


def _role_permissions(grants):
    perms = empty_permissions()
    for section, actions in grants.items():
        for action in actions:
            perms[section][action] = True
    return perms


ROLES = {
    "Administrator": {section: actions for section, actions in PERMISSION_SECTIONS.items()},
    "Cashier": {
        "products": ("view",),
        "customers": ("view", "create", "update"),
        "sales": ("view", "create"),
        "inventory": ("view",),
    },
    "Storekeeper": {
        "categories": ("view", "create", "update"),
        "products": ("view", "create", "update"),
        "suppliers": ("view", "create", "update"),
        "purchases": ("view", "create", "delete"),
        "inventory": ("view", "update"),
        "prices": ("view", "update"),
    },
}

CATEGORIES = [
    ("DM01", "Beverages"),
    ("DM02", "Dry goods"),
    ("DM03", "Household"),
]

# code, name, category code, unit, purchase price, selling price
PRODUCTS = [
    ("SP001", "Mineral water 500ml", "DM01", "bottle", "4000", "5000"),
    ("SP002", "Green tea 1L", "DM01", "bottle", "9000", "12000"),
    ("SP003", "Rice 5kg", "DM02", "bag", "95000", "110000"),
    ("SP004", "Sugar 1kg", "DM02", "bag", "18000", "22000"),
    ("SP005", "Dish soap 750ml", "DM03", "bottle", "21000", "27000"),
]

SUPPLIERS = [
    ("NCC01", "Northern Beverage Co.", "0241000001", "Le Minh"),
    ("NCC02", "Harvest Grain Trading", "0241000002", "Tran Thu"),
]

CUSTOMERS = [
    ("KH01", "Corner Grocery", "0901000001"),
    ("KH02", "Riverside Cafe", "0901000002"),
]


class Command(BaseCommand):
    help = "Creates default roles, an admin login and a small demo catalog. Safe to run more than once."

    def add_arguments(self, parser):
        parser.add_argument("--admin-password", default="admin123",
                            help="Password for the 'admin' user when it is created.")

    @transaction.atomic
    def handle(self, *args, **options):
        self.stdout.write("Seeding roles...")
        roles = {}
        for name, grants in ROLES.items():
            role, _ = Role.objects.get_or_create(name=name, defaults={"permissions": _role_permissions(grants)})
            roles[name] = role

        admin, created = User.objects.get_or_create(username="admin", defaults={"is_staff": True, "is_superuser": True})
        if created:
            admin.set_password(options["admin_password"])
            admin.save()
        Account.objects.get_or_create(user=admin, defaults={"full_name": "Administrator", "role": roles["Administrator"]})

        self.stdout.write("Seeding catalog...")
        categories = {}
        for code, name in CATEGORIES:
            categories[code], _ = ProductCategory.objects.get_or_create(code=code, defaults={"name": name})

        for code, name, cat_code, unit, cost, price in PRODUCTS:
            Product.objects.get_or_create(
                code=code,
                defaults={
                    "name": name,
                    "category": categories[cat_code],
                    "unit": unit,
                    "purchase_price": Decimal(cost),
                    "selling_price": Decimal(price),
                },
            )

        for code, name, phone, contact in SUPPLIERS:
            Supplier.objects.get_or_create(code=code, defaults={"name": name, "phone": phone, "contact_person": contact})

        for code, name, phone in CUSTOMERS:
            Customer.objects.get_or_create(code=code, defaults={"name": name, "phone": phone})

        self.stdout.write(self.style.SUCCESS(
            f"Demo data ready: {len(ROLES)} roles, {len(PRODUCTS)} products, "
            f"{len(SUPPLIERS)} suppliers, {len(CUSTOMERS)} customers."
        ))
