# trading/views.py
# JSON CRUD for the catalog, counterparties, roles and users, plus inventory
# and price adjustments. Order endpoints live in order_views.py.
import logging

from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import ProtectedError, Q
from django.forms.models import model_to_dict
from django.http import HttpResponse, JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_http_methods
from django.views.defaults import page_not_found

from .forms import (
    CustomerForm,
    PriceAdjustmentForm,
    ProductCategoryForm,
    ProductForm,
    RoleForm,
    SupplierForm,
    UserAccountForm,
)
from .models import (
    Account,
    Customer,
    PriceAdjustment,
    Product,
    ProductCategory,
    Role,
    Supplier,
    empty_permissions,
)
from .serializers import (
    category_data,
    customer_data,
    price_adjustment_data,
    product_data,
    role_data,
    supplier_data,
    user_data,
)
from .services import pricing
from .utils.auth_helpers import api_permission_required
from .utils.payloads import PayloadError, read_json
from .utils.responses import error, errors, form_messages

logger = logging.getLogger(__name__)

User = get_user_model()


# ----------------------------
# Shared CRUD plumbing
# ----------------------------
def _search(qs, request, *fields):
    term = (request.GET.get("search") or "").strip()
    if not term:
        return qs
    cond = Q()
    for f in fields:
        cond |= Q(**{f"{f}__icontains": term})
    return qs.filter(cond)


def _create(request, form_class, serialize, prepare=None):
    try:
        payload = read_json(request)
    except PayloadError as exc:
        return error(str(exc))
    if prepare:
        prepare(payload)
    form = form_class(data=payload)
    if not form.is_valid():
        return errors(form_messages(form))
    obj = form.save()
    logger.info("Created %s #%s", obj._meta.model_name, obj.pk)
    return JsonResponse(serialize(obj), status=201)


def _update(request, instance, form_class, serialize, prepare=None):
    """
    Partial update. The row is re-read under a lock and only the fields the
    body names are written, so ledger columns (stock, debt, total_purchase)
    moved by orders in the meantime are never overwritten.
    """
    try:
        payload = read_json(request)
    except PayloadError as exc:
        return error(str(exc))
    if prepare:
        prepare(payload)
    sent = [f for f in form_class._meta.fields if f in payload]

    with transaction.atomic():
        instance = type(instance).objects.select_for_update().get(pk=instance.pk)
        data = model_to_dict(instance, fields=form_class._meta.fields)
        data.update(payload)
        form = form_class(data=data, instance=instance)
        if not form.is_valid():
            return errors(form_messages(form))
        obj = form.save(commit=False)
        if sent:
            if any(f.name == "updated_at" for f in obj._meta.fields):
                sent.append("updated_at")
            obj.save(update_fields=sent)
    if "stock" in sent:
        logger.warning("Stock of %s set to %s by %s", obj, obj.stock, request.user)
    logger.info("Updated %s #%s (%s)", obj._meta.model_name, obj.pk, ", ".join(sent) or "no changes")
    return JsonResponse(serialize(obj))


def _delete(instance):
    label = f"{instance._meta.verbose_name} {instance}"
    try:
        instance.delete()
    except ProtectedError:
        logger.warning("Refused to delete %s: still referenced", label)
        return error(f"{label} is still referenced by other records and cannot be deleted.", status=409)
    logger.info("Deleted %s", label)
    return HttpResponse(status=204)


def _detail(request, instance, form_class, serialize, prepare=None):
    if request.method == "GET":
        return JsonResponse(serialize(instance))
    if request.method == "PUT":
        return _update(request, instance, form_class, serialize, prepare)
    return _delete(instance)


# ===============================
# Roles
# ===============================
def _prepare_role(payload):
    if "permissions" in payload and payload["permissions"] is None:
        payload["permissions"] = empty_permissions()


@require_http_methods(["GET", "POST"])
@api_permission_required("settings")
def roles_api(request):
    if request.method == "GET":
        roles = Role.objects.order_by("name")
        return JsonResponse({"results": [role_data(r) for r in roles]})

    def prepare(payload):
        payload.setdefault("permissions", empty_permissions())
        _prepare_role(payload)

    return _create(request, RoleForm, role_data, prepare)


@require_http_methods(["GET", "PUT", "DELETE"])
@api_permission_required("settings")
def role_detail_api(request, pk):
    role = get_object_or_404(Role, pk=pk)
    return _detail(request, role, RoleForm, role_data, _prepare_role)


# ===============================
# Users
# ===============================
def _save_account(user, cd):
    account, _ = Account.objects.get_or_create(user=user)
    account.full_name = cd["full_name"]
    account.role_id = cd.get("role_id")
    account.save()
    return account


@require_http_methods(["GET", "POST"])
@api_permission_required("settings")
def users_api(request):
    if request.method == "GET":
        users = _search(User.objects.select_related("account").order_by("username"),
                        request, "username", "account__full_name")
        return JsonResponse({"results": [user_data(u) for u in users]})

    try:
        payload = read_json(request)
    except PayloadError as exc:
        return error(str(exc))
    payload.setdefault("is_active", True)
    form = UserAccountForm(data=payload)
    if not form.is_valid():
        return errors(form_messages(form))

    cd = form.cleaned_data
    with transaction.atomic():
        user = User.objects.create_user(
            username=cd["username"], password=cd["password"], is_active=cd["is_active"],
        )
        _save_account(user, cd)
    logger.info("User %s created by %s", user.username, request.user)
    return JsonResponse(user_data(user), status=201)


@require_http_methods(["GET", "PUT", "DELETE"])
@api_permission_required("settings")
def user_detail_api(request, pk):
    user = get_object_or_404(User.objects.select_related("account"), pk=pk)

    if request.method == "GET":
        return JsonResponse(user_data(user))

    if request.method == "DELETE":
        if user.pk == request.user.pk:
            return error("You cannot delete your own account.")
        return _delete(user)

    try:
        payload = read_json(request)
    except PayloadError as exc:
        return error(str(exc))
    account = getattr(user, "account", None)
    data = {
        "username": user.username,
        "full_name": account.full_name if account else user.get_full_name(),
        "role_id": account.role_id if account else None,
        "is_active": user.is_active,
    }
    data.update(payload)
    form = UserAccountForm(data=data, instance=user)
    if not form.is_valid():
        return errors(form_messages(form))

    cd = form.cleaned_data
    with transaction.atomic():
        user.username = cd["username"]
        user.is_active = cd["is_active"]
        if cd.get("password"):
            user.set_password(cd["password"])
        user.save()
        _save_account(user, cd)
    logger.info("User %s updated by %s", user.username, request.user)
    return JsonResponse(user_data(user))


# ===============================
# Categories
# ===============================
@require_http_methods(["GET", "POST"])
@api_permission_required("categories")
def categories_api(request):
    if request.method == "GET":
        qs = _search(ProductCategory.objects.order_by("name"), request, "name", "code")
        return JsonResponse({"results": [category_data(c) for c in qs]})
    return _create(request, ProductCategoryForm, category_data)


@require_http_methods(["GET", "PUT", "DELETE"])
@api_permission_required("categories")
def category_detail_api(request, pk):
    category = get_object_or_404(ProductCategory, pk=pk)
    return _detail(request, category, ProductCategoryForm, category_data)


# ===============================
# Products
# ===============================
def _prepare_product(payload):
    # clients send categoryId; the form field is the FK itself
    if "category_id" in payload:
        payload["category"] = payload.pop("category_id")


@require_http_methods(["GET", "POST"])
@api_permission_required("products")
def products_api(request):
    if request.method == "GET":
        qs = Product.objects.order_by("code")
        category_id = request.GET.get("categoryId") or request.GET.get("category_id")
        if category_id:
            qs = qs.filter(category_id=category_id)
        qs = _search(qs, request, "name", "code")
        return JsonResponse({"results": [product_data(p) for p in qs]})
    return _create(request, ProductForm, product_data, _prepare_product)


@require_http_methods(["GET", "PUT", "DELETE"])
@api_permission_required("products")
def product_detail_api(request, pk):
    product = get_object_or_404(Product, pk=pk)
    return _detail(request, product, ProductForm, product_data, _prepare_product)


# ===============================
# Suppliers
# ===============================
@require_http_methods(["GET", "POST"])
@api_permission_required("suppliers")
def suppliers_api(request):
    if request.method == "GET":
        qs = _search(Supplier.objects.order_by("name"), request, "name", "code")
        return JsonResponse({"results": [supplier_data(s) for s in qs]})
    return _create(request, SupplierForm, supplier_data)


@require_http_methods(["GET", "PUT", "DELETE"])
@api_permission_required("suppliers")
def supplier_detail_api(request, pk):
    supplier = get_object_or_404(Supplier, pk=pk)
    return _detail(request, supplier, SupplierForm, supplier_data)


# ===============================
# Customers
# ===============================
@require_http_methods(["GET", "POST"])
@api_permission_required("customers")
def customers_api(request):
    if request.method == "GET":
        qs = _search(Customer.objects.order_by("name"), request, "name", "code", "phone")
        return JsonResponse({"results": [customer_data(c) for c in qs]})
    return _create(request, CustomerForm, customer_data)


@require_http_methods(["GET", "PUT", "DELETE"])
@api_permission_required("customers")
def customer_detail_api(request, pk):
    customer = get_object_or_404(Customer, pk=pk)
    return _detail(request, customer, CustomerForm, customer_data)


# ===============================
# Inventory & prices
# ===============================
@require_http_methods(["GET"])
@api_permission_required("inventory", "view")
def inventory_api(request):
    qs = _search(Product.objects.select_related("category").order_by("name"), request, "name", "code")
    return JsonResponse({"results": [product_data(p) for p in qs]})


@require_http_methods(["GET", "POST"])
@api_permission_required("prices", "view")
def price_adjustments_api(request):
    if request.method == "GET":
        qs = PriceAdjustment.objects.order_by("-date", "-id")
        product_id = request.GET.get("productId") or request.GET.get("product_id")
        if product_id:
            qs = qs.filter(product_id=product_id)
        return JsonResponse({"results": [price_adjustment_data(a) for a in qs]})

    return _apply_price_adjustment(request)


@api_permission_required("prices", "update")
def _apply_price_adjustment(request):
    try:
        payload = read_json(request)
    except PayloadError as exc:
        return error(str(exc))
    form = PriceAdjustmentForm(data=payload)
    if not form.is_valid():
        return errors(form_messages(form))

    try:
        product, adjustment = pricing.adjust_selling_price(
            form.cleaned_data["product_id"], form.cleaned_data["new_price"], request.user,
        )
    except Product.DoesNotExist:
        return error("Product not found.", status=404)
    return JsonResponse({**product_data(product), "adjustment": price_adjustment_data(adjustment)}, status=201)


def not_found(request, exception=None):
    """handler404: JSON under /api/, Django's page elsewhere."""
    if request.path.startswith("/api/"):
        return error("Not found.", status=404)
    return page_not_found(request, exception)
