import json
from decimal import Decimal
from unittest import mock

from django.contrib.auth.models import User
from django.test import Client, TestCase
from django.urls import reverse

from .models import (
    Account, Customer, PriceAdjustment, Product, ProductCategory, Role, SalesOrder, SalesOrderItem, Supplier,
    empty_permissions,
)
from .services import orders
from .utils import payloads


class ApiTestBase(TestCase):
    def setUp(self):
        self.user = User.objects.create_superuser(username="admin", password="password", email="admin@example.com")
        self.client = Client()
        self.client.login(username="admin", password="password")

    def send(self, method, url, payload=None, client=None):
        client = client or self.client
        return getattr(client, method)(url, data=json.dumps(payload or {}), content_type="application/json")


class ProductApiTest(ApiTestBase):
    def setUp(self):
        super().setUp()
        self.drinks = ProductCategory.objects.create(code="C1", name="Drinks")
        self.food = ProductCategory.objects.create(code="C2", name="Food")
        self.water = Product.objects.create(
            code="P1", name="Mineral Water", category=self.drinks, unit="bottle",
            purchase_price=Decimal("4.00"), selling_price=Decimal("5.00"), stock=12,
        )
        self.rice = Product.objects.create(
            code="P2", name="Rice", category=self.food, unit="bag",
            purchase_price=Decimal("90.00"), selling_price=Decimal("110.00"),
        )

    def test_create_product(self):
        res = self.send("post", reverse("products_api"), {
            "code": "P3", "name": "Green Tea", "categoryId": self.drinks.pk, "unit": "bottle",
            "purchasePrice": "9.00", "sellingPrice": "12.50",
        })
        self.assertEqual(res.status_code, 201, res.content)
        body = res.json()
        self.assertEqual(body["category_id"], self.drinks.pk)
        self.assertEqual(body["selling_price"], "12.50")
        self.assertEqual(body["stock"], 0)

    def test_duplicate_code_is_400(self):
        res = self.send("post", reverse("products_api"), {
            "code": "P1", "name": "Copy", "unit": "bottle", "purchasePrice": "1.00", "sellingPrice": "2.00",
        })
        self.assertEqual(res.status_code, 400)
        self.assertIn("code", res.json()["errors"])

    def test_negative_price_is_400(self):
        res = self.send("post", reverse("products_api"), {
            "code": "P9", "name": "Bad", "unit": "bottle", "purchasePrice": "-1.00", "sellingPrice": "2.00",
        })
        self.assertEqual(res.status_code, 400)
        self.assertIn("purchase_price", res.json()["errors"])

    def test_search_and_category_filter(self):
        res = self.client.get(reverse("products_api"), {"search": "water"})
        self.assertEqual([p["code"] for p in res.json()["results"]], ["P1"])

        res = self.client.get(reverse("products_api"), {"search": "p2"})
        self.assertEqual([p["code"] for p in res.json()["results"]], ["P2"])

        res = self.client.get(reverse("products_api"), {"categoryId": self.food.pk})
        self.assertEqual([p["code"] for p in res.json()["results"]], ["P2"])

    def test_partial_update_keeps_other_fields(self):
        res = self.send("put", reverse("product_detail_api", args=[self.water.pk]), {"name": "Spring Water"})
        self.assertEqual(res.status_code, 200, res.content)
        self.water.refresh_from_db()
        self.assertEqual(self.water.name, "Spring Water")
        self.assertEqual(self.water.selling_price, Decimal("5.00"))
        self.assertEqual(self.water.category_id, self.drinks.pk)
        self.assertEqual(self.water.stock, 12)

    def test_rename_keeps_stock_moved_by_a_concurrent_sale(self):
        def read_then_sell(request):
            payload = payloads.read_json(request)
            orders.create_sales_order(
                {"customer_type": SalesOrder.CustomerType.ANONYMOUS, "total_amount": Decimal("50.00")},
                [{"product_id": self.water.pk, "quantity": 10, "price": Decimal("5.00"), "amount": Decimal("50.00")}],
            )
            return payload

        url = reverse("product_detail_api", args=[self.water.pk])
        with mock.patch("trading.views.read_json", side_effect=read_then_sell):
            res = self.send("put", url, {"name": "Still Water"})

        self.assertEqual(res.status_code, 200, res.content)
        self.assertEqual(res.json()["stock"], 2)
        self.water.refresh_from_db()
        self.assertEqual(self.water.name, "Still Water")
        self.assertEqual(self.water.stock, 2)

    def test_stock_correction_is_written_when_sent(self):
        res = self.send("put", reverse("product_detail_api", args=[self.water.pk]), {"stock": 40})
        self.assertEqual(res.status_code, 200, res.content)
        self.water.refresh_from_db()
        self.assertEqual(self.water.stock, 40)
        self.assertEqual(self.water.name, "Mineral Water")

    def test_delete_unreferenced_product(self):
        res = self.client.delete(reverse("product_detail_api", args=[self.rice.pk]))
        self.assertEqual(res.status_code, 204)
        self.assertFalse(Product.objects.filter(pk=self.rice.pk).exists())

    def test_delete_product_on_an_order_is_409(self):
        order = SalesOrder.objects.create(code="PX0001", total_amount=Decimal("5.00"))
        SalesOrderItem.objects.create(
            sales_order=order, product=self.water, quantity=1, price=Decimal("5.00"), amount=Decimal("5.00"),
        )
        res = self.client.delete(reverse("product_detail_api", args=[self.water.pk]))
        self.assertEqual(res.status_code, 409)
        self.assertTrue(Product.objects.filter(pk=self.water.pk).exists())

    def test_deleting_category_detaches_products(self):
        res = self.client.delete(reverse("category_detail_api", args=[self.food.pk]))
        self.assertEqual(res.status_code, 204)
        self.rice.refresh_from_db()
        self.assertIsNone(self.rice.category_id)

    def test_inventory_is_ordered_by_name(self):
        res = self.client.get(reverse("inventory_api"))
        self.assertEqual(res.status_code, 200)
        self.assertEqual([p["name"] for p in res.json()["results"]], ["Mineral Water", "Rice"])

    def test_missing_product_is_404(self):
        res = self.client.get(reverse("product_detail_api", args=[987654]))
        self.assertEqual(res.status_code, 404)


class CounterpartyApiTest(ApiTestBase):
    def test_customer_crud(self):
        res = self.send("post", reverse("customers_api"), {
            "code": "K1", "name": "Corner Shop", "phone": "0901 222 333", "email": "shop@example.com",
        })
        self.assertEqual(res.status_code, 201, res.content)
        body = res.json()
        self.assertEqual(body["customer_type"], "regular")
        self.assertEqual(body["debt"], "0.00")
        pk = body["id"]

        res = self.client.get(reverse("customers_api"), {"search": "222"})
        self.assertEqual([c["id"] for c in res.json()["results"]], [pk])

        res = self.send("put", reverse("customer_detail_api", args=[pk]), {"address": "1 Main St", "debt": "999"})
        self.assertEqual(res.status_code, 200)
        customer = Customer.objects.get(pk=pk)
        self.assertEqual(customer.address, "1 Main St")
        # ledger totals are not editable through the API
        self.assertEqual(customer.debt, Decimal("0.00"))

        self.assertEqual(self.client.delete(reverse("customer_detail_api", args=[pk])).status_code, 204)

    def test_customer_edit_keeps_ledger_moved_by_a_concurrent_sale(self):
        customer = Customer.objects.create(code="K2", name="Riverside Cafe", phone="0902")
        product = Product.objects.create(
            code="P1", name="Water", unit="bottle",
            purchase_price=Decimal("4.00"), selling_price=Decimal("5.00"), stock=100,
        )

        def read_then_sell(request):
            payload = payloads.read_json(request)
            orders.create_sales_order(
                {
                    "customer_type": SalesOrder.CustomerType.REGULAR, "customer_id": customer.pk,
                    "total_amount": Decimal("50.00"), "customer_payment": Decimal("0.00"),
                },
                [{"product_id": product.pk, "quantity": 10, "price": Decimal("5.00"), "amount": Decimal("50.00")}],
            )
            return payload

        with mock.patch("trading.views.read_json", side_effect=read_then_sell):
            res = self.send("put", reverse("customer_detail_api", args=[customer.pk]), {"phone": "999"})

        self.assertEqual(res.status_code, 200, res.content)
        customer.refresh_from_db()
        self.assertEqual(customer.phone, "999")
        self.assertEqual(customer.debt, Decimal("50.00"))
        self.assertEqual(customer.total_purchase, Decimal("50.00"))

    def test_supplier_crud(self):
        res = self.send("post", reverse("suppliers_api"), {
            "code": "S1", "name": "Grain Co", "contactPerson": "Tran Thu",
        })
        self.assertEqual(res.status_code, 201, res.content)
        pk = res.json()["id"]
        self.assertEqual(Supplier.objects.get(pk=pk).contact_person, "Tran Thu")

        res = self.client.get(reverse("suppliers_api"), {"search": "grain"})
        self.assertEqual(len(res.json()["results"]), 1)

        res = self.send("put", reverse("supplier_detail_api", args=[pk]), {"phone": "0241"})
        self.assertEqual(res.json()["phone"], "0241")

    def test_category_crud(self):
        res = self.send("post", reverse("categories_api"), {"code": "C9", "name": "Snacks"})
        self.assertEqual(res.status_code, 201)
        pk = res.json()["id"]
        self.assertEqual(self.client.get(reverse("category_detail_api", args=[pk])).json()["name"], "Snacks")
        self.assertEqual(self.send("put", reverse("category_detail_api", args=[pk]), {"name": "Chips"}).status_code, 200)
        self.assertEqual(ProductCategory.objects.get(pk=pk).name, "Chips")


class RoleAndUserApiTest(ApiTestBase):
    def test_role_crud(self):
        perms = empty_permissions()
        perms["sales"]["view"] = True
        res = self.send("post", reverse("roles_api"), {"name": "Cashier", "permissions": perms})
        self.assertEqual(res.status_code, 201, res.content)
        pk = res.json()["id"]
        self.assertTrue(Role.objects.get(pk=pk).allows("sales", "view"))

        res = self.send("put", reverse("role_detail_api", args=[pk]), {"name": "Senior Cashier"})
        self.assertEqual(res.status_code, 200, res.content)
        role = Role.objects.get(pk=pk)
        self.assertEqual(role.name, "Senior Cashier")
        self.assertTrue(role.allows("sales", "view"))

    def test_role_without_permissions_defaults_to_nothing(self):
        res = self.send("post", reverse("roles_api"), {"name": "Guest"})
        self.assertEqual(res.status_code, 201, res.content)
        self.assertFalse(Role.objects.get(name="Guest").allows("sales", "view"))

    def test_unknown_permission_is_400(self):
        res = self.send("post", reverse("roles_api"), {"name": "Odd", "permissions": {"rockets": {"launch": True}}})
        self.assertEqual(res.status_code, 400)
        self.assertIn("permissions", res.json()["errors"])

    def test_user_crud(self):
        role = Role.objects.create(name="Cashier")
        res = self.send("post", reverse("users_api"), {
            "username": "linh", "password": "s3cret-pass", "fullName": "Linh Pham", "roleId": role.pk,
        })
        self.assertEqual(res.status_code, 201, res.content)
        body = res.json()
        self.assertEqual(body["role_id"], role.pk)
        self.assertTrue(body["is_active"])
        user = User.objects.get(username="linh")
        self.assertTrue(user.check_password("s3cret-pass"))

        res = self.send("put", reverse("user_detail_api", args=[user.pk]), {"isActive": False, "password": "n3w-pass"})
        self.assertEqual(res.status_code, 200, res.content)
        user.refresh_from_db()
        self.assertFalse(user.is_active)
        self.assertTrue(user.check_password("n3w-pass"))
        self.assertEqual(user.account.full_name, "Linh Pham")

        self.assertEqual(self.client.delete(reverse("user_detail_api", args=[user.pk])).status_code, 204)
        self.assertFalse(Account.objects.filter(user_id=user.pk).exists())

    def test_user_needs_password_on_create(self):
        res = self.send("post", reverse("users_api"), {"username": "nopass", "fullName": "No Pass"})
        self.assertEqual(res.status_code, 400)
        self.assertIn("password", res.json()["errors"])

    def test_cannot_delete_self(self):
        res = self.client.delete(reverse("user_detail_api", args=[self.user.pk]))
        self.assertEqual(res.status_code, 400)

    def test_settings_need_permission(self):
        clerk = User.objects.create_user(username="clerk", password="password")
        Account.objects.create(user=clerk, full_name="Clerk", role=Role.objects.create(name="Clerk"))
        client = Client()
        client.login(username="clerk", password="password")
        self.assertEqual(client.get(reverse("roles_api")).status_code, 403)
        self.assertEqual(client.get(reverse("users_api")).status_code, 403)
        self.assertEqual(Client().get(reverse("roles_api")).status_code, 401)


class PriceAdjustmentApiTest(ApiTestBase):
    def setUp(self):
        super().setUp()
        self.product = Product.objects.create(
            code="P1", name="Water", unit="bottle",
            purchase_price=Decimal("4.00"), selling_price=Decimal("5.00"),
        )

    def test_adjustment_updates_price_and_is_logged(self):
        res = self.send("post", reverse("price_adjustments_api"), {"productId": self.product.pk, "newPrice": "6.25"})
        self.assertEqual(res.status_code, 201, res.content)
        self.assertEqual(res.json()["selling_price"], "6.25")

        self.product.refresh_from_db()
        self.assertEqual(self.product.selling_price, Decimal("6.25"))
        adj = PriceAdjustment.objects.get()
        self.assertEqual(adj.old_price, Decimal("5.00"))
        self.assertEqual(adj.new_price, Decimal("6.25"))
        self.assertEqual(adj.user, self.user)

        res = self.client.get(reverse("price_adjustments_api"), {"productId": self.product.pk})
        self.assertEqual(len(res.json()["results"]), 1)

    def test_unknown_product_is_404(self):
        res = self.send("post", reverse("price_adjustments_api"), {"productId": 987654, "newPrice": "6.25"})
        self.assertEqual(res.status_code, 404)

    def test_view_only_role_cannot_adjust(self):
        perms = empty_permissions()
        perms["prices"]["view"] = True
        viewer = User.objects.create_user(username="viewer", password="password")
        Account.objects.create(user=viewer, full_name="Viewer", role=Role.objects.create(name="V", permissions=perms))
        client = Client()
        client.login(username="viewer", password="password")

        self.assertEqual(client.get(reverse("price_adjustments_api")).status_code, 200)
        res = self.send("post", reverse("price_adjustments_api"),
                        {"productId": self.product.pk, "newPrice": "9.00"}, client=client)
        self.assertEqual(res.status_code, 403)
        self.assertFalse(PriceAdjustment.objects.exists())
