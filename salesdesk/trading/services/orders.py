"""
Order transaction coordinator.

Every public function here runs as one unit: order header, order lines and
the stock/customer ledger effects either all commit or all roll back.

    Received -> Validated -> HeaderPersisted -> ItemsPersisted -> LedgerApplied -> Committed
                   \\______________________ any failure ____________________/-> Aborted

Headers and lines arrive as cleaned form data (dicts with snake_case keys).
Caller-computed money fields are re-verified here before any write.
"""
import logging
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import OperationalError, connection, transaction
from django.utils import timezone

from trading.exceptions import DanglingReferenceError
from trading.models import (
    PurchaseOrder, PurchaseOrderItem,
    SalesOrder, SalesOrderItem,
    Supplier,
    _money_q, next_order_code,
)
from trading.services import customer_ledger, stock_ledger

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


# ----------------------------
# Validation
# ----------------------------
def _tolerance() -> Decimal:
    return Decimal(str(getattr(settings, "TRADING_AMOUNT_TOLERANCE", "0.01")))


def _check_lines(lines, price_field: str, extra_price_fields=()):
    if not lines:
        raise ValidationError({"items": ["An order needs at least one item."]})

    tol = _tolerance()
    errors = []
    for idx, line in enumerate(lines, start=1):
        qty = line.get("quantity")
        price = line.get(price_field)
        amount = line.get("amount")

        if qty is None or qty <= 0:
            errors.append(f"Line {idx}: quantity must be greater than zero.")
            continue
        for field in (price_field, *extra_price_fields):
            if line.get(field) is None or line[field] < 0:
                errors.append(f"Line {idx}: {field} must be zero or more.")
        if amount is None:
            errors.append(f"Line {idx}: amount is required.")
            continue
        if price is None or price < 0:
            continue

        expected = _money_q(Decimal(qty) * price)
        if abs(expected - amount) > tol:
            errors.append(f"Line {idx}: amount {amount} does not match quantity x price = {expected}.")

    if errors:
        raise ValidationError({"items": errors})


def _check_total(header, lines):
    expected = _money_q(sum((line["amount"] for line in lines), ZERO))
    total = header.get("total_amount")
    if total is None or abs(expected - total) > _tolerance():
        raise ValidationError({"total_amount": [f"Total {total} does not match the sum of item amounts = {expected}."]})


def validate_purchase_order(header, lines):
    _check_lines(lines, "purchase_price", extra_price_fields=("selling_price",))
    _check_total(header, lines)

    paid = header.get("paid_amount") or ZERO
    expected_debt = _money_q(header["total_amount"] - paid)
    debt = header.get("debt")
    if debt is not None and abs(expected_debt - debt) > _tolerance():
        raise ValidationError({"debt": [f"Debt {debt} does not match total - paid = {expected_debt}."]})


def validate_sales_order(header, lines):
    _check_lines(lines, "price")
    _check_total(header, lines)

    if header.get("customer_type") == SalesOrder.CustomerType.REGULAR and not header.get("customer_id"):
        raise ValidationError({"customer_id": ["A regular customer order needs a customer."]})


# ----------------------------
# Transaction scope
# ----------------------------
def _run_atomic(work, label: str):
    """
    Run ``work`` in a transaction. Outside any enclosing transaction, a
    transient OperationalError (deadlock, serialization failure) re-runs the
    whole unit from scratch, so nothing from the failed attempt survives.
    Inside an enclosing transaction the caller owns the retry decision.
    """
    retries = 0 if connection.in_atomic_block else int(getattr(settings, "TRADING_ORDER_RETRIES", 2))
    attempt = 0
    while True:
        try:
            with transaction.atomic():
                return work()
        except OperationalError:
            if attempt >= retries:
                raise
            attempt += 1
            logger.warning("%s: transient database error, retry %s/%s", label, attempt, retries, exc_info=True)


# ----------------------------
# Purchase orders
# ----------------------------
def create_purchase_order(header: dict, lines: list):
    """
    Persist a purchase order and its lines, then for each line add the
    quantity to stock and overwrite the product's purchase/selling price.

    Returns ``(order, items)``.
    """
    validate_purchase_order(header, lines)

    def work():
        supplier_id = header.get("supplier_id")
        if supplier_id is not None and not Supplier.objects.filter(pk=supplier_id).exists():
            raise DanglingReferenceError("Supplier", supplier_id)

        order = PurchaseOrder.objects.create(
            code=header.get("code") or next_order_code(PurchaseOrder),
            date=header.get("date") or timezone.now(),
            supplier_id=supplier_id,
            documents=header.get("documents") or "",
            total_amount=header["total_amount"],
            paid_amount=header.get("paid_amount") or ZERO,
            debt=header.get("debt") if header.get("debt") is not None
            else _money_q(header["total_amount"] - (header.get("paid_amount") or ZERO)),
            notes=header.get("notes") or "",
        )

        items = []
        for line in lines:
            item = PurchaseOrderItem.objects.create(
                purchase_order=order,
                product_id=line["product_id"],
                quantity=line["quantity"],
                purchase_price=line["purchase_price"],
                selling_price=line["selling_price"],
                amount=line["amount"],
            )
            stock_ledger.apply_purchase_line(item)
            items.append(item)
        return order, items

    order, items = _run_atomic(work, "create_purchase_order")
    logger.info("Purchase order %s saved (#%s, %d lines)", order.code, order.pk, len(items))
    return order, items


def delete_purchase_order(order_id):
    """
    Take back the stock each line added, then delete lines and header.
    Raises ``PurchaseOrder.DoesNotExist`` when there is no such order.
    """
    def work():
        order = PurchaseOrder.objects.select_for_update().get(pk=order_id)
        items = list(order.items.order_by("id"))
        for item in items:
            stock_ledger.reverse_purchase_line(item)
        order.items.all().delete()
        order.delete()
        return order.code, len(items)

    code, count = _run_atomic(work, "delete_purchase_order")
    logger.info("Purchase order %s deleted, stock reversed for %d lines", code, count)


# ----------------------------
# Sales orders
# ----------------------------
def create_sales_order(header: dict, lines: list):
    """
    Persist a sales order and its lines, take each line's quantity out of
    stock, and for a regular customer book the order onto the customer's
    debt and lifetime purchases exactly once.

    Returns ``(order, items)``.
    """
    validate_sales_order(header, lines)

    is_regular = header.get("customer_type") == SalesOrder.CustomerType.REGULAR
    customer_id = header.get("customer_id") if is_regular else None

    def work():
        order = SalesOrder.objects.create(
            code=header.get("code") or next_order_code(SalesOrder),
            date=header.get("date") or timezone.now(),
            customer_type=header.get("customer_type") or SalesOrder.CustomerType.ANONYMOUS,
            customer_id=customer_id,
            total_amount=header["total_amount"],
            customer_payment=header.get("customer_payment") or ZERO,
            payment_method=header.get("payment_method") or SalesOrder.PaymentMethod.CASH,
            status=header.get("status") or SalesOrder.Status.COMPLETED,
        )

        items = []
        for line in lines:
            item = SalesOrderItem.objects.create(
                sales_order=order,
                product_id=line["product_id"],
                quantity=line["quantity"],
                price=line["price"],
                amount=line["amount"],
            )
            stock_ledger.apply_sale_line(item)
            items.append(item)

        if customer_id:
            customer_ledger.apply_sale_to_customer(customer_id, order.total_amount, order.customer_payment)
        return order, items

    order, items = _run_atomic(work, "create_sales_order")
    logger.info("Sales order %s saved (#%s, %d lines)", order.code, order.pk, len(items))
    return order, items
