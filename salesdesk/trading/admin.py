# trading/admin.py
from django.contrib import admin

from .models import (
    Account,
    Customer,
    PriceAdjustment,
    Product,
    ProductCategory,
    PurchaseOrder,
    PurchaseOrderItem,
    Role,
    SalesOrder,
    SalesOrderItem,
    SessionLog,
    Supplier,
)


@admin.register(Role)
class RoleAdmin(admin.ModelAdmin):
    list_display = ("name",)
    search_fields = ("name",)


@admin.register(Account)
class AccountAdmin(admin.ModelAdmin):
    list_display = ("full_name", "user", "role")
    list_select_related = ("user", "role")
    list_filter = ("role",)
    search_fields = ("full_name", "user__username")
    autocomplete_fields = ("user", "role")


@admin.register(ProductCategory)
class ProductCategoryAdmin(admin.ModelAdmin):
    list_display = ("code", "name")
    search_fields = ("code", "name")
    ordering = ("code",)


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "category", "unit", "purchase_price", "selling_price", "stock")
    list_select_related = ("category",)
    list_filter = ("category",)
    search_fields = ("code", "name")
    # stock moves only through orders
    readonly_fields = ("stock", "created_at", "updated_at")


@admin.register(Supplier)
class SupplierAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "phone", "contact_person")
    search_fields = ("code", "name", "phone", "contact_person")


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "phone", "customer_type", "debt", "total_purchase")
    list_filter = ("customer_type",)
    search_fields = ("code", "name", "phone", "email")
    readonly_fields = ("debt", "total_purchase")


class PurchaseOrderItemInline(admin.TabularInline):
    model = PurchaseOrderItem
    extra = 0
    can_delete = False
    readonly_fields = ("product", "quantity", "purchase_price", "selling_price", "amount")

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(PurchaseOrder)
class PurchaseOrderAdmin(admin.ModelAdmin):
    list_display = ("code", "date", "supplier", "total_amount", "paid_amount", "debt")
    list_select_related = ("supplier",)
    list_filter = (("date", admin.DateFieldListFilter),)
    search_fields = ("code", "supplier__name")
    date_hierarchy = "date"
    inlines = [PurchaseOrderItemInline]
    readonly_fields = ("total_amount", "paid_amount", "debt", "created_at", "updated_at")

    # creation/deletion must go through the order services so stock stays in step
    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class SalesOrderItemInline(admin.TabularInline):
    model = SalesOrderItem
    extra = 0
    can_delete = False
    readonly_fields = ("product", "quantity", "price", "amount")

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(SalesOrder)
class SalesOrderAdmin(admin.ModelAdmin):
    list_display = ("code", "date", "customer_type", "customer", "total_amount", "customer_payment", "status")
    list_select_related = ("customer",)
    list_filter = ("status", "customer_type", "payment_method")
    search_fields = ("code", "customer__name")
    date_hierarchy = "date"
    inlines = [SalesOrderItemInline]
    readonly_fields = ("customer_type", "customer", "total_amount", "customer_payment", "created_at", "updated_at")

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(PriceAdjustment)
class PriceAdjustmentAdmin(admin.ModelAdmin):
    list_display = ("product", "old_price", "new_price", "date", "user")
    list_select_related = ("product", "user")
    search_fields = ("product__code", "product__name")


@admin.register(SessionLog)
class SessionLogAdmin(admin.ModelAdmin):
    list_display = ("timestamp", "user", "action", "details")
    list_filter = ("action",)
    search_fields = ("user__username", "details")
