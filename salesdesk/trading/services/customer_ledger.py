import logging
from decimal import Decimal

from django.db.models import F

from trading.exceptions import DanglingReferenceError
from trading.models import Customer, _money_q

logger = logging.getLogger(__name__)


def apply_sale_to_customer(customer_id, total_amount: Decimal, customer_payment: Decimal):
    """
    Book one sales order onto a registered customer:
      debt           += max(0, total_amount - customer_payment)
      total_purchase += total_amount

    Not idempotent. The order coordinator calls it once per order, inside the
    order's transaction.
    """
    shortfall = max(Decimal("0.00"), _money_q(total_amount - customer_payment))
    updated = Customer.objects.filter(pk=customer_id).update(
        debt=F("debt") + shortfall,
        total_purchase=F("total_purchase") + total_amount,
    )
    if not updated:
        logger.warning("Customer ledger: customer #%s not found", customer_id)
        raise DanglingReferenceError("Customer", customer_id)
