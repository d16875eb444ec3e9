"""
Stock side effects of purchase and sales lines.

Each function issues one UPDATE with an F() expression so concurrent orders
touching the same product serialize on the database row lock instead of
losing updates. They must run inside the caller's transaction.
"""
import logging

from django.db.models import F

from trading.exceptions import DanglingReferenceError
from trading.models import Product

logger = logging.getLogger(__name__)


def _update_product(product_id, **changes):
    updated = Product.objects.filter(pk=product_id).update(**changes)
    if not updated:
        logger.warning("Stock ledger: product #%s not found", product_id)
        raise DanglingReferenceError("Product", product_id)


def apply_purchase_line(item):
    """
    stock += quantity; purchase/selling prices are overwritten with the line's values.
    """
    _update_product(
        item.product_id,
        stock=F("stock") + item.quantity,
        purchase_price=item.purchase_price,
        selling_price=item.selling_price,
    )


def apply_sale_line(item):
    # Can go negative.
    _update_product(item.product_id, stock=F("stock") - item.quantity)


def reverse_purchase_line(item):
    # Prices set by the purchase are not restored.
    _update_product(item.product_id, stock=F("stock") - item.quantity)
