# trading/models.py
import re
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

# --------------------------------
# Common field presets
# --------------------------------
DECIMAL_12_2 = {"max_digits": 12, "decimal_places": 2}

ZERO = Decimal("0.00")


def _money_q(v: Decimal) -> Decimal:
    return (v or ZERO).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


# --------------------------------
# Core mixins
# --------------------------------
class TimeStamped(models.Model):
    created_at = models.DateTimeField(default=timezone.now, db_index=True, editable=False)
    updated_at = models.DateTimeField(auto_now=True, db_index=True)

    class Meta:
        abstract = True


# --------------------------------
# Roles & accounts
# --------------------------------
PERMISSION_SECTIONS = {
    "categories": ("view", "create", "update", "delete"),
    "products":   ("view", "create", "update", "delete"),
    "suppliers":  ("view", "create", "update", "delete"),
    "customers":  ("view", "create", "update", "delete"),
    "purchases":  ("view", "create", "update", "delete"),
    "sales":      ("view", "create", "update", "delete"),
    "inventory":  ("view", "update"),
    "prices":     ("view", "update"),
    "reports":    ("view",),
    "settings":   ("view", "create", "update", "delete"),
}


def empty_permissions():
    return {section: {action: False for action in actions} for section, actions in PERMISSION_SECTIONS.items()}


class Role(models.Model):
    """
    Named bundle of section/action flags, e.g. {"sales": {"view": true, "create": true}}.
    """
    name = models.CharField(max_length=100, unique=True)
    permissions = models.JSONField(default=empty_permissions)

    class Meta:
        ordering = ["name", "id"]

    def __str__(self):
        return self.name

    def allows(self, section: str, action: str) -> bool:
        return bool((self.permissions or {}).get(section, {}).get(action, False))


class Account(models.Model):
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="account",
    )
    full_name = models.CharField(max_length=150)
    role = models.ForeignKey(Role, null=True, blank=True, on_delete=models.SET_NULL, related_name="accounts")

    def __str__(self):
        return self.full_name or self.user.get_username()


# --------------------------------
# Catalog
# --------------------------------
class ProductCategory(models.Model):
    code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=255, db_index=True)
    notes = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["code", "id"]
        verbose_name_plural = "Product categories"

    def __str__(self):
        return f"{self.code} — {self.name}"


class Product(TimeStamped):
    code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=255, db_index=True)
    category = models.ForeignKey(
        ProductCategory, null=True, blank=True,
        on_delete=models.SET_NULL, related_name="products",
    )
    unit = models.CharField(max_length=30)
    purchase_price = models.DecimalField(**DECIMAL_12_2, validators=[MinValueValidator(0)])
    selling_price = models.DecimalField(**DECIMAL_12_2, validators=[MinValueValidator(0)])
    # Not clamped at zero: sales may push stock negative.
    stock = models.IntegerField(default=0)
    notes = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["name", "id"]

    def __str__(self):
        return f"{self.code} — {self.name}"


# --------------------------------
# Counterparties
# --------------------------------
class Supplier(models.Model):
    code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=255, db_index=True)
    phone = models.CharField(max_length=50, blank=True, default="")
    address = models.TextField(blank=True, default="")
    contact_person = models.CharField(max_length=255, blank=True, default="")
    notes = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["name", "id"]

    def __str__(self):
        return self.name


class Customer(models.Model):
    REGULAR = "regular"

    code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=255, db_index=True)
    phone = models.CharField(max_length=50, db_index=True)
    address = models.TextField(blank=True, default="")
    email = models.EmailField(blank=True, default="")
    customer_type = models.CharField(max_length=20, default=REGULAR)

    # Written by the customer ledger only, through F() expressions.
    debt = models.DecimalField(**DECIMAL_12_2, default=ZERO)
    total_purchase = models.DecimalField(**DECIMAL_12_2, default=ZERO)

    notes = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["name", "id"]

    def __str__(self):
        return self.name


# --------------------------------
# Purchase Orders
# --------------------------------
class PurchaseOrder(TimeStamped):
    CODE_PREFIX = "PN"

    code = models.CharField(max_length=50, unique=True)
    date = models.DateTimeField(default=timezone.now, db_index=True)
    supplier = models.ForeignKey(
        Supplier, null=True, blank=True,
        on_delete=models.PROTECT, related_name="purchase_orders",
    )
    documents = models.TextField(blank=True, default="")

    # money (caller computed, re-verified by the order coordinator)
    total_amount = models.DecimalField(**DECIMAL_12_2)
    paid_amount = models.DecimalField(**DECIMAL_12_2, default=ZERO)
    debt = models.DecimalField(**DECIMAL_12_2, default=ZERO)

    notes = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["-date", "-id"]

    def __str__(self):
        return f"PO {self.code}"


class PurchaseOrderItem(models.Model):
    purchase_order = models.ForeignKey(PurchaseOrder, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="purchase_items")
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    purchase_price = models.DecimalField(**DECIMAL_12_2)
    selling_price = models.DecimalField(**DECIMAL_12_2)
    amount = models.DecimalField(**DECIMAL_12_2)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"{self.quantity or 0} x {getattr(self.product, 'name', '—')}"


# --------------------------------
# Sales Orders
# --------------------------------
class SalesOrder(TimeStamped):
    CODE_PREFIX = "PX"

    class CustomerType(models.TextChoices):
        ANONYMOUS = "anonymous", "Anonymous"
        REGULAR   = "regular",   "Regular"

    class PaymentMethod(models.TextChoices):
        CASH     = "cash",     "Cash"
        TRANSFER = "transfer", "Bank transfer"
        CARD     = "card",     "Card"

    class Status(models.TextChoices):
        COMPLETED = "completed", "Completed"
        PENDING   = "pending",   "Pending"

    code = models.CharField(max_length=50, unique=True)
    date = models.DateTimeField(default=timezone.now, db_index=True)
    customer_type = models.CharField(max_length=20, choices=CustomerType.choices, default=CustomerType.ANONYMOUS)
    customer = models.ForeignKey(
        Customer, null=True, blank=True,
        on_delete=models.PROTECT, related_name="sales_orders",
    )

    total_amount = models.DecimalField(**DECIMAL_12_2)
    customer_payment = models.DecimalField(**DECIMAL_12_2, default=ZERO)
    payment_method = models.CharField(max_length=20, choices=PaymentMethod.choices, default=PaymentMethod.CASH)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.COMPLETED, db_index=True)

    class Meta:
        ordering = ["-date", "-id"]

    def __str__(self):
        return f"SO {self.code}"


class SalesOrderItem(models.Model):
    sales_order = models.ForeignKey(SalesOrder, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="sales_items")
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    price = models.DecimalField(**DECIMAL_12_2)
    amount = models.DecimalField(**DECIMAL_12_2)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"{self.quantity or 0} x {getattr(self.product, 'name', '—')}"


# --------------------------------
# Price adjustments & session log
# --------------------------------
class PriceAdjustment(models.Model):
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="price_adjustments")
    old_price = models.DecimalField(**DECIMAL_12_2)
    new_price = models.DecimalField(**DECIMAL_12_2, validators=[MinValueValidator(0)])
    date = models.DateTimeField(default=timezone.now, db_index=True)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="price_adjustments",
    )

    class Meta:
        ordering = ["-date", "-id"]

    def __str__(self):
        return f"{getattr(self.product, 'code', '—')}: {self.old_price} -> {self.new_price}"


class SessionLog(models.Model):
    LOGIN = "login"
    LOGOUT = "logout"
    LOGIN_FAILED = "login_failed"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True,
        on_delete=models.SET_NULL, related_name="session_logs",
    )
    action = models.CharField(max_length=50)
    details = models.TextField(blank=True, default="")
    timestamp = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ["-timestamp", "-id"]

    def __str__(self):
        return f"{self.action} @ {self.timestamp:%Y-%m-%d %H:%M}"


# --------------------------------
# Utilities
# --------------------------------
def next_order_code(model) -> str:
    """
    Next human-readable code for an order model: PN0001, PN0002, ... for
    purchases and PX0001, ... for sales. Codes not following the pattern are ignored.
    """
    prefix = model.CODE_PREFIX
    pattern = re.compile(rf"^{prefix}(\d+)$")
    highest = 0
    for code in model.objects.filter(code__startswith=prefix).values_list("code", flat=True):
        m = pattern.match(code)
        if m:
            highest = max(highest, int(m.group(1)))
    return f"{prefix}{highest + 1:04d}"
