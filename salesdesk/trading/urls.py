# trading/urls.py
from django.urls import path

from . import order_views, views

urlpatterns = [
    # Roles & users
    path("roles", views.roles_api, name="roles_api"),
    path("roles/<int:pk>", views.role_detail_api, name="role_detail_api"),
    path("users", views.users_api, name="users_api"),
    path("users/<int:pk>", views.user_detail_api, name="user_detail_api"),

    # Catalog
    path("categories", views.categories_api, name="categories_api"),
    path("categories/<int:pk>", views.category_detail_api, name="category_detail_api"),
    path("products", views.products_api, name="products_api"),
    path("products/<int:pk>", views.product_detail_api, name="product_detail_api"),

    # Parties
    path("suppliers", views.suppliers_api, name="suppliers_api"),
    path("suppliers/<int:pk>", views.supplier_detail_api, name="supplier_detail_api"),
    path("customers", views.customers_api, name="customers_api"),
    path("customers/<int:pk>", views.customer_detail_api, name="customer_detail_api"),

    # Orders
    path("purchase-orders", order_views.purchase_orders_api, name="purchase_orders_api"),
    path("purchase-orders/<int:pk>", order_views.purchase_order_detail_api, name="purchase_order_detail_api"),
    path("sales-orders", order_views.sales_orders_api, name="sales_orders_api"),
    path("sales-orders/<int:pk>", order_views.sales_order_detail_api, name="sales_order_detail_api"),

    # Inventory & prices
    path("inventory", views.inventory_api, name="inventory_api"),
    path("price-adjustments", views.price_adjustments_api, name="price_adjustments_api"),
]
