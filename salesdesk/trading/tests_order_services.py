from decimal import Decimal
from unittest import mock

from django.core.exceptions import ValidationError
from django.db import connection
from django.test import TestCase
from django.test.utils import CaptureQueriesContext

from .exceptions import DanglingReferenceError
from .models import (
    Customer, Product, ProductCategory, PurchaseOrder, PurchaseOrderItem,
    SalesOrder, SalesOrderItem, Supplier,
)
from .services import orders, stock_ledger


def D(v):
    return Decimal(v)


class OrderServiceTestBase(TestCase):
    def setUp(self):
        self.cat = ProductCategory.objects.create(code="C1", name="General")
        self.water = Product.objects.create(
            code="P1", name="Water", category=self.cat, unit="bottle",
            purchase_price=D("4.00"), selling_price=D("5.00"), stock=100,
        )
        self.rice = Product.objects.create(
            code="P2", name="Rice", category=self.cat, unit="bag",
            purchase_price=D("90.00"), selling_price=D("110.00"), stock=10,
        )
        self.supplier = Supplier.objects.create(code="S1", name="Grain Co")
        self.customer = Customer.objects.create(code="K1", name="Corner Shop", phone="0901")

    def sale_header(self, total, payment="0.00", **extra):
        header = {
            "customer_type": SalesOrder.CustomerType.ANONYMOUS,
            "total_amount": D(total),
            "customer_payment": D(payment),
        }
        header.update(extra)
        return header

    def sale_line(self, product, qty, price):
        return {"product_id": product.pk, "quantity": qty, "price": D(price), "amount": D(price) * qty}

    def purchase_line(self, product, qty, cost, price):
        return {
            "product_id": product.pk, "quantity": qty,
            "purchase_price": D(cost), "selling_price": D(price), "amount": D(cost) * qty,
        }


class SalesOrderServiceTest(OrderServiceTestBase):
    def test_sale_subtracts_each_line_from_stock(self):
        orders.create_sales_order(
            self.sale_header("130.00"),
            [self.sale_line(self.water, 4, "5.00"), self.sale_line(self.rice, 1, "110.00")],
        )
        self.water.refresh_from_db()
        self.rice.refresh_from_db()
        self.assertEqual(self.water.stock, 96)
        self.assertEqual(self.rice.stock, 9)

    def test_same_product_on_two_lines_is_subtracted_twice(self):
        orders.create_sales_order(
            self.sale_header("25.00"),
            [self.sale_line(self.water, 2, "5.00"), self.sale_line(self.water, 3, "5.00")],
        )
        self.water.refresh_from_db()
        self.assertEqual(self.water.stock, 95)

    def test_stock_may_go_negative(self):
        orders.create_sales_order(self.sale_header("550.00"), [self.sale_line(self.rice, 5, "110.00")])
        orders.create_sales_order(self.sale_header("880.00"), [self.sale_line(self.rice, 8, "110.00")])
        self.rice.refresh_from_db()
        self.assertEqual(self.rice.stock, -3)

    def test_regular_order_books_shortfall_and_total_once(self):
        order, items = orders.create_sales_order(
            self.sale_header(
                "1000.00", "400.00",
                customer_type=SalesOrder.CustomerType.REGULAR, customer_id=self.customer.pk,
            ),
            [self.sale_line(self.rice, 5, "110.00"), self.sale_line(self.water, 90, "5.00")],
        )
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.debt, D("600.00"))
        self.assertEqual(self.customer.total_purchase, D("1000.00"))
        self.assertEqual(order.customer_id, self.customer.pk)
        self.assertEqual(len(items), 2)

    def test_overpayment_adds_no_debt(self):
        orders.create_sales_order(
            self.sale_header(
                "100.00", "150.00",
                customer_type=SalesOrder.CustomerType.REGULAR, customer_id=self.customer.pk,
            ),
            [self.sale_line(self.water, 20, "5.00")],
        )
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.debt, D("0.00"))
        self.assertEqual(self.customer.total_purchase, D("100.00"))

    def test_pending_regular_order_still_books_customer(self):
        orders.create_sales_order(
            self.sale_header(
                "50.00", "0.00",
                customer_type=SalesOrder.CustomerType.REGULAR, customer_id=self.customer.pk,
                status=SalesOrder.Status.PENDING,
            ),
            [self.sale_line(self.water, 10, "5.00")],
        )
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.debt, D("50.00"))

    def test_anonymous_order_leaves_customers_untouched(self):
        order, _ = orders.create_sales_order(
            # a stray customer id on an anonymous order is dropped
            self.sale_header("50.00", "0.00", customer_id=self.customer.pk),
            [self.sale_line(self.water, 10, "5.00")],
        )
        self.customer.refresh_from_db()
        self.assertIsNone(order.customer_id)
        self.assertEqual(self.customer.debt, D("0.00"))
        self.assertEqual(self.customer.total_purchase, D("0.00"))

    def test_regular_order_without_customer_is_rejected(self):
        with self.assertRaises(ValidationError):
            orders.create_sales_order(
                self.sale_header("5.00", customer_type=SalesOrder.CustomerType.REGULAR),
                [self.sale_line(self.water, 1, "5.00")],
            )
        self.assertFalse(SalesOrder.objects.exists())

    def test_failure_on_second_line_rolls_back_everything(self):
        real_apply = stock_ledger.apply_sale_line
        seen = []

        def fail_on_second(item):
            seen.append(item.pk)
            if len(seen) == 2:
                raise RuntimeError("disk on fire")
            real_apply(item)

        with mock.patch("trading.services.stock_ledger.apply_sale_line", side_effect=fail_on_second):
            with self.assertRaises(RuntimeError):
                orders.create_sales_order(
                    self.sale_header(
                        "130.00", "0.00",
                        customer_type=SalesOrder.CustomerType.REGULAR, customer_id=self.customer.pk,
                    ),
                    [self.sale_line(self.water, 4, "5.00"), self.sale_line(self.rice, 1, "110.00")],
                )

        self.assertFalse(SalesOrder.objects.exists())
        self.assertFalse(SalesOrderItem.objects.exists())
        self.water.refresh_from_db()
        self.rice.refresh_from_db()
        self.customer.refresh_from_db()
        self.assertEqual(self.water.stock, 100)
        self.assertEqual(self.rice.stock, 10)
        self.assertEqual(self.customer.debt, D("0.00"))
        self.assertEqual(self.customer.total_purchase, D("0.00"))

    def test_unknown_product_aborts_order(self):
        line = self.sale_line(self.water, 1, "5.00")
        line["product_id"] = 987654
        with self.assertRaises(DanglingReferenceError) as ctx:
            orders.create_sales_order(
                self.sale_header("10.00"),
                [self.sale_line(self.water, 1, "5.00"), line],
            )
        self.assertEqual(ctx.exception.model_name, "Product")
        self.assertFalse(SalesOrder.objects.exists())
        self.water.refresh_from_db()
        self.assertEqual(self.water.stock, 100)

    def test_unknown_customer_aborts_order(self):
        with self.assertRaises(DanglingReferenceError):
            orders.create_sales_order(
                self.sale_header(
                    "5.00", customer_type=SalesOrder.CustomerType.REGULAR, customer_id=987654,
                ),
                [self.sale_line(self.water, 1, "5.00")],
            )
        self.assertFalse(SalesOrder.objects.exists())
        self.water.refresh_from_db()
        self.assertEqual(self.water.stock, 100)

    def test_line_amount_must_match_quantity_times_price(self):
        line = self.sale_line(self.water, 3, "5.00")
        line["amount"] = D("16.00")
        with self.assertRaises(ValidationError) as ctx:
            orders.create_sales_order(self.sale_header("16.00"), [line])
        self.assertIn("items", ctx.exception.message_dict)

    def test_total_must_match_sum_of_lines(self):
        with self.assertRaises(ValidationError) as ctx:
            orders.create_sales_order(self.sale_header("99.00"), [self.sale_line(self.water, 3, "5.00")])
        self.assertIn("total_amount", ctx.exception.message_dict)

    def test_rounding_within_tolerance_is_accepted(self):
        line = {"product_id": self.water.pk, "quantity": 3, "price": D("0.33"), "amount": D("1.00")}
        order, _ = orders.create_sales_order(self.sale_header("1.00"), [line])
        self.assertEqual(order.total_amount, D("1.00"))

    def test_empty_order_is_rejected(self):
        with self.assertRaises(ValidationError):
            orders.create_sales_order(self.sale_header("0.00"), [])

    def test_codes_are_generated_in_sequence(self):
        first, _ = orders.create_sales_order(self.sale_header("5.00"), [self.sale_line(self.water, 1, "5.00")])
        second, _ = orders.create_sales_order(self.sale_header("5.00"), [self.sale_line(self.water, 1, "5.00")])
        self.assertEqual(first.code, "PX0001")
        self.assertEqual(second.code, "PX0002")

        orders.create_sales_order(
            self.sale_header("5.00", code="PX0041"), [self.sale_line(self.water, 1, "5.00")],
        )
        nxt, _ = orders.create_sales_order(self.sale_header("5.00"), [self.sale_line(self.water, 1, "5.00")])
        self.assertEqual(nxt.code, "PX0042")

    def test_stock_update_is_a_single_relative_update(self):
        with CaptureQueriesContext(connection) as ctx:
            orders.create_sales_order(self.sale_header("10.00"), [self.sale_line(self.water, 2, "5.00")])

        product_updates = [q["sql"] for q in ctx.captured_queries
                           if q["sql"].startswith('UPDATE "trading_product"')]
        self.assertEqual(len(product_updates), 1)
        self.assertIn('"trading_product"."stock" -', product_updates[0])


class PurchaseOrderServiceTest(OrderServiceTestBase):
    def test_purchase_adds_stock_and_overwrites_prices(self):
        order, items = orders.create_purchase_order(
            {"supplier_id": self.supplier.pk, "total_amount": D("50.00"), "paid_amount": D("20.00")},
            [self.purchase_line(self.water, 10, "5.00", "6.50")],
        )
        self.water.refresh_from_db()
        self.assertEqual(self.water.stock, 110)
        self.assertEqual(self.water.purchase_price, D("5.00"))
        self.assertEqual(self.water.selling_price, D("6.50"))
        self.assertEqual(order.debt, D("30.00"))
        self.assertEqual(order.code, "PN0001")
        self.assertEqual(len(items), 1)

    def test_purchase_accepts_matching_debt(self):
        order, _ = orders.create_purchase_order(
            {"total_amount": D("50.00"), "paid_amount": D("60.00"), "debt": D("-10.00")},
            [self.purchase_line(self.water, 10, "5.00", "6.00")],
        )
        self.assertEqual(order.debt, D("-10.00"))
        self.assertIsNone(order.supplier_id)

    def test_debt_must_match_total_minus_paid(self):
        with self.assertRaises(ValidationError) as ctx:
            orders.create_purchase_order(
                {"total_amount": D("50.00"), "paid_amount": D("20.00"), "debt": D("10.00")},
                [self.purchase_line(self.water, 10, "5.00", "6.00")],
            )
        self.assertIn("debt", ctx.exception.message_dict)
        self.assertFalse(PurchaseOrder.objects.exists())

    def test_failure_on_second_line_rolls_back_purchase(self):
        real_apply = stock_ledger.apply_purchase_line
        seen = []

        def fail_on_second(item):
            seen.append(item.pk)
            if len(seen) == 2:
                raise RuntimeError("disk on fire")
            real_apply(item)

        with mock.patch("trading.services.stock_ledger.apply_purchase_line", side_effect=fail_on_second):
            with self.assertRaises(RuntimeError):
                orders.create_purchase_order(
                    {"supplier_id": self.supplier.pk, "total_amount": D("600.00"), "paid_amount": D("0.00")},
                    [self.purchase_line(self.water, 30, "5.00", "7.00"), self.purchase_line(self.rice, 5, "90.00", "120.00")],
                )

        self.assertEqual(len(seen), 2)
        self.assertFalse(PurchaseOrder.objects.exists())
        self.assertFalse(PurchaseOrderItem.objects.exists())
        self.water.refresh_from_db()
        self.rice.refresh_from_db()
        self.assertEqual(self.water.stock, 100)
        self.assertEqual(self.water.purchase_price, D("4.00"))
        self.assertEqual(self.water.selling_price, D("5.00"))
        self.assertEqual(self.rice.stock, 10)

    def test_unknown_product_aborts_purchase(self):
        line = self.purchase_line(self.rice, 1, "90.00", "110.00")
        line["product_id"] = 987654
        with self.assertRaises(DanglingReferenceError) as ctx:
            orders.create_purchase_order(
                {"total_amount": D("140.00"), "paid_amount": D("140.00")},
                [self.purchase_line(self.water, 10, "5.00", "6.00"), line],
            )
        self.assertEqual(ctx.exception.model_name, "Product")
        self.assertFalse(PurchaseOrder.objects.exists())
        self.water.refresh_from_db()
        self.assertEqual(self.water.stock, 100)
        self.assertEqual(self.water.purchase_price, D("4.00"))

    def test_line_without_amount_is_a_validation_error(self):
        line = self.purchase_line(self.water, 10, "5.00", "6.00")
        del line["amount"]
        with self.assertRaises(ValidationError) as ctx:
            orders.create_purchase_order({"total_amount": D("50.00"), "paid_amount": D("50.00")}, [line])
        self.assertIn("items", ctx.exception.message_dict)

    def test_unknown_supplier_aborts_order(self):
        with self.assertRaises(DanglingReferenceError) as ctx:
            orders.create_purchase_order(
                {"supplier_id": 987654, "total_amount": D("50.00"), "paid_amount": D("50.00")},
                [self.purchase_line(self.water, 10, "5.00", "6.00")],
            )
        self.assertEqual(ctx.exception.model_name, "Supplier")
        self.water.refresh_from_db()
        self.assertEqual(self.water.stock, 100)

    def test_delete_reverses_stock(self):
        self.rice.stock = 20
        self.rice.save()
        order, _ = orders.create_purchase_order(
            {"supplier_id": self.supplier.pk, "total_amount": D("450.00"), "paid_amount": D("450.00")},
            [self.purchase_line(self.rice, 5, "90.00", "110.00")],
        )
        self.rice.refresh_from_db()
        self.assertEqual(self.rice.stock, 25)

        orders.delete_purchase_order(order.pk)

        self.rice.refresh_from_db()
        self.assertEqual(self.rice.stock, 20)
        self.assertFalse(PurchaseOrder.objects.filter(pk=order.pk).exists())
        self.assertFalse(PurchaseOrderItem.objects.filter(purchase_order_id=order.pk).exists())

    def test_delete_can_push_stock_negative(self):
        order, _ = orders.create_purchase_order(
            {"total_amount": D("450.00"), "paid_amount": D("0.00")},
            [self.purchase_line(self.rice, 5, "90.00", "110.00")],
        )
        orders.create_sales_order(self.sale_header("1650.00"), [self.sale_line(self.rice, 15, "110.00")])
        orders.delete_purchase_order(order.pk)
        self.rice.refresh_from_db()
        self.assertEqual(self.rice.stock, -5)

    def test_delete_unknown_order_raises(self):
        with self.assertRaises(PurchaseOrder.DoesNotExist):
            orders.delete_purchase_order(987654)
