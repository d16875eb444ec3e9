from decimal import Decimal

from django import forms
from django.contrib.auth import get_user_model

from .models import (
    PERMISSION_SECTIONS,
    Customer,
    Product,
    ProductCategory,
    PurchaseOrder,
    Role,
    SalesOrder,
    Supplier,
    _money_q,
)


class MoneyField(forms.DecimalField):
    """
    Decimal(12,2) input. Values are rounded to cents before validation so
    float noise from JSON clients (0.30000000000000004) is accepted.
    """

    def __init__(self, **kwargs):
        kwargs.setdefault("max_digits", 12)
        kwargs.setdefault("decimal_places", 2)
        kwargs.setdefault("min_value", Decimal("0.00"))
        super().__init__(**kwargs)

    def to_python(self, value):
        value = super().to_python(value)
        return None if value is None else _money_q(value)


# ===============================
# Catalog / counterparties
# ===============================
class ProductCategoryForm(forms.ModelForm):
    class Meta:
        model = ProductCategory
        fields = ["code", "name", "notes"]


class ProductForm(forms.ModelForm):
    purchase_price = MoneyField()
    selling_price = MoneyField()

    class Meta:
        model = Product
        fields = ["code", "name", "category", "unit", "purchase_price", "selling_price", "stock", "notes"]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields["stock"].required = False

    def clean_stock(self):
        return self.cleaned_data.get("stock") or 0


class SupplierForm(forms.ModelForm):
    class Meta:
        model = Supplier
        fields = ["code", "name", "phone", "address", "contact_person", "notes"]


class CustomerForm(forms.ModelForm):
    # debt / total_purchase are owned by the customer ledger and not editable here.
    class Meta:
        model = Customer
        fields = ["code", "name", "phone", "address", "email", "customer_type", "notes"]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields["customer_type"].required = False

    def clean_customer_type(self):
        return self.cleaned_data.get("customer_type") or Customer.REGULAR


# ===============================
# Roles & users
# ===============================
class RoleForm(forms.ModelForm):
    class Meta:
        model = Role
        fields = ["name", "permissions"]

    def clean_permissions(self):
        perms = self.cleaned_data.get("permissions")
        if not isinstance(perms, dict):
            raise forms.ValidationError("Permissions must be an object keyed by section.")
        for section, actions in perms.items():
            if section not in PERMISSION_SECTIONS:
                raise forms.ValidationError(f"Unknown section: {section}")
            if not isinstance(actions, dict):
                raise forms.ValidationError(f"Permissions for {section} must be an object.")
            for action, allowed in actions.items():
                if action not in PERMISSION_SECTIONS[section] or not isinstance(allowed, bool):
                    raise forms.ValidationError(f"Invalid permission {section}.{action}")
        return perms


class UserAccountForm(forms.Form):
    username = forms.CharField(max_length=150)
    password = forms.CharField(required=False, strip=False)
    full_name = forms.CharField(max_length=150)
    role_id = forms.IntegerField(required=False, min_value=1)
    is_active = forms.BooleanField(required=False)

    def __init__(self, *args, **kwargs):
        self.instance = kwargs.pop("instance", None)
        super().__init__(*args, **kwargs)
        if self.instance is None:
            self.fields["password"].required = True

    def clean_username(self):
        username = self.cleaned_data["username"].strip()
        qs = get_user_model().objects.filter(username=username)
        if self.instance is not None:
            qs = qs.exclude(pk=self.instance.pk)
        if qs.exists():
            raise forms.ValidationError("Username already taken.")
        return username

    def clean_role_id(self):
        role_id = self.cleaned_data.get("role_id")
        if role_id and not Role.objects.filter(pk=role_id).exists():
            raise forms.ValidationError("Role does not exist.")
        return role_id


# ===============================
# Orders
# ===============================
class PurchaseOrderForm(forms.ModelForm):
    # Resolved inside the order transaction, so an unknown id is not a form error.
    supplier_id = forms.IntegerField(required=False, min_value=1)

    total_amount = MoneyField()
    paid_amount = MoneyField(required=False)
    # may be negative when the supplier was overpaid
    debt = MoneyField(required=False, min_value=None)

    class Meta:
        model = PurchaseOrder
        fields = ["code", "date", "documents", "total_amount", "paid_amount", "debt", "notes"]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # blank code -> next PN#### is generated, blank date -> now
        for name in ("code", "date"):
            self.fields[name].required = False


class PurchaseOrderItemForm(forms.Form):
    product_id = forms.IntegerField(min_value=1)
    quantity = forms.IntegerField(min_value=1)
    purchase_price = MoneyField()
    selling_price = MoneyField()
    amount = MoneyField()


class SalesOrderForm(forms.ModelForm):
    customer_id = forms.IntegerField(required=False, min_value=1)

    total_amount = MoneyField()
    customer_payment = MoneyField(required=False)

    class Meta:
        model = SalesOrder
        fields = ["code", "date", "customer_type", "total_amount", "customer_payment", "payment_method", "status"]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        for name in ("code", "date", "customer_type", "payment_method", "status"):
            self.fields[name].required = False

    def clean(self):
        cleaned = super().clean()
        if cleaned.get("customer_type") == SalesOrder.CustomerType.REGULAR and not cleaned.get("customer_id"):
            self.add_error("customer_id", "Select a customer for a regular customer order.")
        return cleaned


class SalesOrderItemForm(forms.Form):
    product_id = forms.IntegerField(min_value=1)
    quantity = forms.IntegerField(min_value=1)
    price = MoneyField()
    amount = MoneyField()


class PriceAdjustmentForm(forms.Form):
    product_id = forms.IntegerField(min_value=1)
    new_price = MoneyField()
