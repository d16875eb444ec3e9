# trading/order_views.py
# Purchase and sales order endpoints. All stock and customer ledger work
# happens in services.orders; these views only validate and map errors.
import logging

from django.core.exceptions import ValidationError
from django.db import DatabaseError
from django.http import HttpResponse, JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_http_methods

from .exceptions import DanglingReferenceError
from .forms import PurchaseOrderForm, PurchaseOrderItemForm, SalesOrderForm, SalesOrderItemForm
from .models import PurchaseOrder, SalesOrder
from .serializers import purchase_item_data, purchase_order_data, sales_item_data, sales_order_data
from .services import orders
from .utils.auth_helpers import api_permission_required
from .utils.payloads import PayloadError, read_order_payload
from .utils.responses import error, errors, form_messages, validation_messages

logger = logging.getLogger(__name__)


def _bind_order(request, header_form_class, item_form_class):
    """
    Returns ``(header_form, item_forms, None)`` when everything is valid,
    otherwise ``(None, None, error_response)``.
    """
    try:
        header, raw_items = read_order_payload(request)
    except PayloadError as exc:
        return None, None, error(str(exc))

    form = header_form_class(data=header)
    item_forms = [item_form_class(data=raw) for raw in raw_items]

    problems = {}
    if not form.is_valid():
        problems.update(form_messages(form))
    if not raw_items:
        problems["items"] = ["An order needs at least one item."]
    else:
        item_problems = {
            str(idx): form_messages(f) for idx, f in enumerate(item_forms) if not f.is_valid()
        }
        if item_problems:
            problems["items"] = item_problems
    if problems:
        return None, None, errors(problems)
    return form, item_forms, None


def _save_order(save, header_form, item_forms, order_data, item_data):
    try:
        order, items = save(header_form.cleaned_data, [f.cleaned_data for f in item_forms])
    except ValidationError as exc:
        return errors(validation_messages(exc))
    except DanglingReferenceError as exc:
        return error(str(exc), status=422)
    except DatabaseError:
        logger.exception("Saving order failed")
        return error("The order could not be saved. Please try again.", status=500)
    return JsonResponse(
        {"order": order_data(order), "items": [item_data(i) for i in items]},
        status=201,
    )


# ===============================
# Purchase orders
# ===============================
@require_http_methods(["GET", "POST"])
@api_permission_required("purchases")
def purchase_orders_api(request):
    if request.method == "GET":
        qs = PurchaseOrder.objects.order_by("-date", "-id")
        supplier_id = request.GET.get("supplierId") or request.GET.get("supplier_id")
        if supplier_id:
            qs = qs.filter(supplier_id=supplier_id)
        return JsonResponse({"results": [purchase_order_data(o) for o in qs]})

    form, item_forms, failure = _bind_order(request, PurchaseOrderForm, PurchaseOrderItemForm)
    if failure:
        return failure
    return _save_order(orders.create_purchase_order, form, item_forms,
                       purchase_order_data, purchase_item_data)


@require_http_methods(["GET", "DELETE"])
@api_permission_required("purchases")
def purchase_order_detail_api(request, pk):
    if request.method == "GET":
        order = get_object_or_404(PurchaseOrder, pk=pk)
        return JsonResponse({
            "order": purchase_order_data(order),
            "items": [purchase_item_data(i) for i in order.items.order_by("id")],
        })

    try:
        orders.delete_purchase_order(pk)
    except PurchaseOrder.DoesNotExist:
        return error("Purchase order not found.", status=404)
    except DanglingReferenceError as exc:
        return error(str(exc), status=422)
    except DatabaseError:
        logger.exception("Deleting purchase order #%s failed", pk)
        return error("The order could not be deleted. Please try again.", status=500)
    return HttpResponse(status=204)


# ===============================
# Sales orders
# ===============================
@require_http_methods(["GET", "POST"])
@api_permission_required("sales")
def sales_orders_api(request):
    if request.method == "GET":
        qs = SalesOrder.objects.order_by("-date", "-id")
        customer_id = request.GET.get("customerId") or request.GET.get("customer_id")
        if customer_id:
            qs = qs.filter(customer_id=customer_id)
        status = request.GET.get("status")
        if status:
            qs = qs.filter(status=status)
        return JsonResponse({"results": [sales_order_data(o) for o in qs]})

    form, item_forms, failure = _bind_order(request, SalesOrderForm, SalesOrderItemForm)
    if failure:
        return failure
    return _save_order(orders.create_sales_order, form, item_forms,
                       sales_order_data, sales_item_data)


@require_http_methods(["GET"])
@api_permission_required("sales")
def sales_order_detail_api(request, pk):
    order = get_object_or_404(SalesOrder, pk=pk)
    return JsonResponse({
        "order": sales_order_data(order),
        "items": [sales_item_data(i) for i in order.items.order_by("id")],
    })
