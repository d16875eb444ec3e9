import threading
from decimal import Decimal
from unittest import mock

from django.db import OperationalError, connection
from django.test import TransactionTestCase, override_settings, skipUnlessDBFeature

from .models import Customer, Product, SalesOrder
from .services import customer_ledger, orders


class OrderRetryTest(TransactionTestCase):
    """Runs outside a test transaction so the order owns its own retry loop."""

    def setUp(self):
        self.product = Product.objects.create(
            code="P1", name="Water", unit="bottle",
            purchase_price=Decimal("4.00"), selling_price=Decimal("5.00"), stock=50,
        )
        self.customer = Customer.objects.create(code="K1", name="Corner Shop", phone="0901")

    def _order(self):
        return orders.create_sales_order(
            {
                "customer_type": SalesOrder.CustomerType.REGULAR,
                "customer_id": self.customer.pk,
                "total_amount": Decimal("50.00"),
                "customer_payment": Decimal("20.00"),
            },
            [{"product_id": self.product.pk, "quantity": 10, "price": Decimal("5.00"), "amount": Decimal("50.00")}],
        )

    def test_transient_failure_is_retried_and_applied_once(self):
        real_apply = customer_ledger.apply_sale_to_customer
        attempts = []

        def deadlock_first_time(*args):
            attempts.append(args)
            real_apply(*args)
            if len(attempts) == 1:
                raise OperationalError("deadlock detected")

        with mock.patch("trading.services.customer_ledger.apply_sale_to_customer", side_effect=deadlock_first_time):
            order, _ = self._order()

        self.assertEqual(len(attempts), 2)
        self.assertEqual(SalesOrder.objects.count(), 1)
        self.assertEqual(order.code, "PX0001")

        self.customer.refresh_from_db()
        self.product.refresh_from_db()
        self.assertEqual(self.customer.debt, Decimal("30.00"))
        self.assertEqual(self.customer.total_purchase, Decimal("50.00"))
        self.assertEqual(self.product.stock, 40)

    @override_settings(TRADING_ORDER_RETRIES=0)
    def test_failure_is_raised_when_retries_run_out(self):
        with mock.patch(
            "trading.services.customer_ledger.apply_sale_to_customer",
            side_effect=OperationalError("deadlock detected"),
        ):
            with self.assertRaises(OperationalError):
                self._order()

        self.assertFalse(SalesOrder.objects.exists())
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 50)


@skipUnlessDBFeature("has_select_for_update")
class ConcurrentSalesTest(TransactionTestCase):
    """Needs a backend with row locking (PostgreSQL); SQLite serializes the whole file."""

    THREADS = 8

    def setUp(self):
        self.product = Product.objects.create(
            code="P1", name="Water", unit="bottle",
            purchase_price=Decimal("4.00"), selling_price=Decimal("5.00"), stock=100,
        )
        self.customer = Customer.objects.create(code="K1", name="Corner Shop", phone="0901")

    def test_parallel_sales_do_not_lose_updates(self):
        barrier = threading.Barrier(self.THREADS)
        failures = []

        def sell(n):
            try:
                barrier.wait()
                orders.create_sales_order(
                    {
                        "code": f"T{n:03d}",
                        "customer_type": SalesOrder.CustomerType.REGULAR,
                        "customer_id": self.customer.pk,
                        "total_amount": Decimal("15.00"),
                        "customer_payment": Decimal("5.00"),
                    },
                    [{"product_id": self.product.pk, "quantity": 3, "price": Decimal("5.00"), "amount": Decimal("15.00")}],
                )
            except Exception as exc:  # collected and asserted on below
                failures.append(exc)
            finally:
                connection.close()

        threads = [threading.Thread(target=sell, args=(n,)) for n in range(self.THREADS)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(failures, [])
        self.product.refresh_from_db()
        self.customer.refresh_from_db()
        self.assertEqual(self.product.stock, 100 - 3 * self.THREADS)
        self.assertEqual(self.customer.debt, Decimal("10.00") * self.THREADS)
        self.assertEqual(self.customer.total_purchase, Decimal("15.00") * self.THREADS)
        self.assertEqual(SalesOrder.objects.count(), self.THREADS)
