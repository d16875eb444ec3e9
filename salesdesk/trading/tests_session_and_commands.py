from decimal import Decimal
from io import StringIO

from django.contrib.auth.models import User
from django.core.management import call_command
from django.test import Client, TestCase

from .models import Customer, Product, Role, SalesOrder, SessionLog


class SessionLogTest(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="linh", password="password")

    def test_login_and_logout_are_recorded(self):
        client = Client()
        self.assertTrue(client.login(username="linh", password="password"))
        client.logout()

        actions = list(SessionLog.objects.filter(user=self.user).order_by("id").values_list("action", flat=True))
        self.assertEqual(actions, [SessionLog.LOGIN, SessionLog.LOGOUT])

    def test_failed_login_is_recorded_without_user(self):
        self.assertFalse(Client().login(username="linh", password="wrong"))
        log = SessionLog.objects.get(action=SessionLog.LOGIN_FAILED)
        self.assertIsNone(log.user)
        self.assertIn("linh", log.details)


class SeedDemoDataTest(TestCase):
    def test_seed_is_idempotent(self):
        call_command("seed_demo_data", stdout=StringIO())
        call_command("seed_demo_data", stdout=StringIO())

        self.assertEqual(Role.objects.count(), 3)
        self.assertTrue(Role.objects.get(name="Administrator").allows("settings", "delete"))
        self.assertFalse(Role.objects.get(name="Cashier").allows("purchases", "create"))
        self.assertEqual(Product.objects.count(), 5)
        self.assertTrue(User.objects.get(username="admin").check_password("admin123"))


class RecalculateCustomerTotalsTest(TestCase):
    def setUp(self):
        self.customer = Customer.objects.create(
            code="K1", name="Corner Shop", phone="0901", total_purchase=Decimal("70.00"),
        )
        for code, total in (("PX0001", "40.00"), ("PX0002", "20.00")):
            SalesOrder.objects.create(
                code=code, customer_type=SalesOrder.CustomerType.REGULAR,
                customer=self.customer, total_amount=Decimal(total),
            )

    def test_report_only_by_default(self):
        out = StringIO()
        call_command("recalculate_customer_totals", stdout=out)
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.total_purchase, Decimal("70.00"))
        self.assertIn("K1", out.getvalue())

    def test_fix_overwrites_drifted_totals(self):
        call_command("recalculate_customer_totals", "--fix", stdout=StringIO())
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.total_purchase, Decimal("60.00"))

    def test_fix_counts_a_sale_committed_after_the_report(self):
        customer = self.customer

        class SellWhileReporting(StringIO):
            def write(self, s):
                if "recorded" in s and not SalesOrder.objects.filter(code="PX0003").exists():
                    SalesOrder.objects.create(
                        code="PX0003", customer_type=SalesOrder.CustomerType.REGULAR,
                        customer=customer, total_amount=Decimal("5.00"),
                    )
                return super().write(s)

        call_command("recalculate_customer_totals", "--fix", stdout=SellWhileReporting())
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.total_purchase, Decimal("65.00"))
