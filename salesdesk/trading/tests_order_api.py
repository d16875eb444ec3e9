import json
from decimal import Decimal

from django.contrib.auth.models import User
from django.test import Client, TestCase
from django.urls import reverse

from .models import Account, Customer, Product, PurchaseOrder, Role, SalesOrder, Supplier, empty_permissions


class OrderApiTest(TestCase):
    def setUp(self):
        self.user = User.objects.create_superuser(username="admin", password="password", email="admin@example.com")
        self.client = Client()
        self.client.login(username="admin", password="password")

        self.product = Product.objects.create(
            code="P1", name="Water", unit="bottle",
            purchase_price=Decimal("4.00"), selling_price=Decimal("5.00"), stock=20,
        )
        self.supplier = Supplier.objects.create(code="S1", name="Grain Co")
        self.customer = Customer.objects.create(code="K1", name="Corner Shop", phone="0901")

    def post_json(self, url, payload, client=None):
        return (client or self.client).post(url, data=json.dumps(payload), content_type="application/json")

    def sales_payload(self, **order):
        body = {
            "order": {"customerType": "anonymous", "totalAmount": "10.00", "customerPayment": "10.00"},
            "items": [{"productId": self.product.pk, "quantity": 2, "price": "5.00", "amount": "10.00"}],
        }
        body["order"].update(order)
        return body

    # ---- sales ----
    def test_create_sales_order_returns_order_and_items(self):
        payload = self.sales_payload(
            customerType="regular", customerId=self.customer.pk, customerPayment="4.00", paymentMethod="transfer",
        )
        res = self.post_json(reverse("sales_orders_api"), payload)

        self.assertEqual(res.status_code, 201, res.content)
        body = res.json()
        self.assertEqual(body["order"]["code"], "PX0001")
        self.assertEqual(body["order"]["customer_id"], self.customer.pk)
        self.assertEqual(body["order"]["payment_method"], "transfer")
        self.assertEqual(body["order"]["total_amount"], "10.00")
        self.assertEqual(len(body["items"]), 1)
        self.assertEqual(body["items"][0]["amount"], "10.00")

        self.product.refresh_from_db()
        self.customer.refresh_from_db()
        self.assertEqual(self.product.stock, 18)
        self.assertEqual(self.customer.debt, Decimal("6.00"))
        self.assertEqual(self.customer.total_purchase, Decimal("10.00"))

    def test_snake_case_body_is_accepted(self):
        payload = {
            "order": {"customer_type": "anonymous", "total_amount": "5.00"},
            "items": [{"product_id": self.product.pk, "quantity": 1, "price": "5.00", "amount": "5.00"}],
        }
        res = self.post_json(reverse("sales_orders_api"), payload)
        self.assertEqual(res.status_code, 201, res.content)

    def test_float_noise_in_amounts_is_rounded(self):
        self.product.selling_price = Decimal("0.10")
        self.product.save()
        payload = {
            "order": {"customerType": "anonymous", "totalAmount": 0.30000000000000004},
            "items": [{"productId": self.product.pk, "quantity": 3, "price": 0.1, "amount": 0.30000000000000004}],
        }
        res = self.post_json(reverse("sales_orders_api"), payload)
        self.assertEqual(res.status_code, 201, res.content)
        self.assertEqual(res.json()["order"]["total_amount"], "0.30")

    def test_amount_mismatch_is_400_and_nothing_changes(self):
        payload = self.sales_payload(totalAmount="12.00")
        payload["items"][0]["amount"] = "12.00"
        res = self.post_json(reverse("sales_orders_api"), payload)

        self.assertEqual(res.status_code, 400)
        self.assertIn("items", res.json()["errors"])
        self.assertFalse(SalesOrder.objects.exists())
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 20)

    def test_invalid_item_reports_its_index(self):
        payload = self.sales_payload()
        payload["items"].append({"productId": self.product.pk, "quantity": 0, "price": "5.00", "amount": "0.00"})
        res = self.post_json(reverse("sales_orders_api"), payload)
        self.assertEqual(res.status_code, 400)
        self.assertIn("1", res.json()["errors"]["items"])

    def test_regular_order_needs_customer(self):
        res = self.post_json(reverse("sales_orders_api"), self.sales_payload(customerType="regular"))
        self.assertEqual(res.status_code, 400)
        self.assertIn("customer_id", res.json()["errors"])

    def test_empty_items_is_400(self):
        payload = self.sales_payload()
        payload["items"] = []
        res = self.post_json(reverse("sales_orders_api"), payload)
        self.assertEqual(res.status_code, 400)

    def test_malformed_json_is_400(self):
        res = self.client.post(reverse("sales_orders_api"), data="{not json", content_type="application/json")
        self.assertEqual(res.status_code, 400)
        self.assertFalse(res.json()["ok"])

    def test_unknown_product_is_422(self):
        payload = self.sales_payload()
        payload["items"][0]["productId"] = 987654
        res = self.post_json(reverse("sales_orders_api"), payload)
        self.assertEqual(res.status_code, 422)
        self.assertFalse(SalesOrder.objects.exists())

    def test_duplicate_code_is_400(self):
        self.assertEqual(self.post_json(reverse("sales_orders_api"), self.sales_payload(code="X1")).status_code, 201)
        res = self.post_json(reverse("sales_orders_api"), self.sales_payload(code="X1"))
        self.assertEqual(res.status_code, 400)
        self.assertIn("code", res.json()["errors"])

    def test_sales_order_list_and_detail(self):
        created = self.post_json(reverse("sales_orders_api"), self.sales_payload()).json()
        order_id = created["order"]["id"]

        listing = self.client.get(reverse("sales_orders_api"))
        self.assertEqual(listing.status_code, 200)
        self.assertEqual([o["id"] for o in listing.json()["results"]], [order_id])

        detail = self.client.get(reverse("sales_order_detail_api", args=[order_id]))
        self.assertEqual(detail.status_code, 200)
        self.assertEqual(detail.json()["items"][0]["product_id"], self.product.pk)

    def test_missing_order_is_404(self):
        res = self.client.get(reverse("sales_order_detail_api", args=[987654]))
        self.assertEqual(res.status_code, 404)

    # ---- purchases ----
    def purchase_payload(self, **order):
        body = {
            "order": {"supplierId": self.supplier.pk, "totalAmount": "50.00", "paidAmount": "20.00", "debt": "30.00"},
            "items": [{
                "productId": self.product.pk, "quantity": 10,
                "purchasePrice": "5.00", "sellingPrice": "7.00", "amount": "50.00",
            }],
        }
        body["order"].update(order)
        return body

    def test_create_and_delete_purchase_order(self):
        res = self.post_json(reverse("purchase_orders_api"), self.purchase_payload())
        self.assertEqual(res.status_code, 201, res.content)
        order = res.json()["order"]
        self.assertEqual(order["code"], "PN0001")
        self.assertEqual(order["debt"], "30.00")

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 30)
        self.assertEqual(self.product.selling_price, Decimal("7.00"))

        res = self.client.delete(reverse("purchase_order_detail_api", args=[order["id"]]))
        self.assertEqual(res.status_code, 204)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 20)

        res = self.client.get(reverse("purchase_order_detail_api", args=[order["id"]]))
        self.assertEqual(res.status_code, 404)

    def test_delete_missing_purchase_order_is_404(self):
        res = self.client.delete(reverse("purchase_order_detail_api", args=[987654]))
        self.assertEqual(res.status_code, 404)

    def test_debt_mismatch_is_400(self):
        res = self.post_json(reverse("purchase_orders_api"), self.purchase_payload(debt="10.00"))
        self.assertEqual(res.status_code, 400)
        self.assertIn("debt", res.json()["errors"])
        self.assertFalse(PurchaseOrder.objects.exists())

    def test_unknown_supplier_is_422(self):
        res = self.post_json(reverse("purchase_orders_api"), self.purchase_payload(supplierId=987654))
        self.assertEqual(res.status_code, 422)

    # ---- auth ----
    def test_anonymous_caller_is_401(self):
        res = self.post_json(reverse("sales_orders_api"), self.sales_payload(), client=Client())
        self.assertEqual(res.status_code, 401)
        self.assertFalse(SalesOrder.objects.exists())

    def test_role_without_create_is_403(self):
        perms = empty_permissions()
        perms["sales"]["view"] = True
        role = Role.objects.create(name="Viewer", permissions=perms)
        viewer = User.objects.create_user(username="viewer", password="password")
        Account.objects.create(user=viewer, full_name="View Only", role=role)

        client = Client()
        client.login(username="viewer", password="password")
        self.assertEqual(client.get(reverse("sales_orders_api")).status_code, 200)
        res = self.post_json(reverse("sales_orders_api"), self.sales_payload(), client=client)
        self.assertEqual(res.status_code, 403)
        self.assertEqual(client.get(reverse("purchase_orders_api")).status_code, 403)
