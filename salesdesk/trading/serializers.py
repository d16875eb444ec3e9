# trading/serializers.py
# Plain dicts for JsonResponse. Money goes out as strings to keep cents exact.


def _money(v):
    return str(v) if v is not None else None


def _dt(v):
    return v.isoformat() if v else None


def category_data(c):
    return {"id": c.id, "code": c.code, "name": c.name, "notes": c.notes}


def product_data(p):
    return {
        "id": p.id,
        "code": p.code,
        "name": p.name,
        "category_id": p.category_id,
        "unit": p.unit,
        "purchase_price": _money(p.purchase_price),
        "selling_price": _money(p.selling_price),
        "stock": p.stock,
        "notes": p.notes,
    }


def supplier_data(s):
    return {
        "id": s.id,
        "code": s.code,
        "name": s.name,
        "phone": s.phone,
        "address": s.address,
        "contact_person": s.contact_person,
        "notes": s.notes,
    }


def customer_data(c):
    return {
        "id": c.id,
        "code": c.code,
        "name": c.name,
        "phone": c.phone,
        "address": c.address,
        "email": c.email,
        "customer_type": c.customer_type,
        "debt": _money(c.debt),
        "total_purchase": _money(c.total_purchase),
        "notes": c.notes,
    }


def role_data(r):
    return {"id": r.id, "name": r.name, "permissions": r.permissions}


def user_data(u):
    account = getattr(u, "account", None)
    return {
        "id": u.id,
        "username": u.get_username(),
        "full_name": account.full_name if account else u.get_full_name(),
        "role_id": account.role_id if account else None,
        "is_active": u.is_active,
    }


def purchase_order_data(o):
    return {
        "id": o.id,
        "code": o.code,
        "date": _dt(o.date),
        "supplier_id": o.supplier_id,
        "documents": o.documents,
        "total_amount": _money(o.total_amount),
        "paid_amount": _money(o.paid_amount),
        "debt": _money(o.debt),
        "notes": o.notes,
        "created_at": _dt(o.created_at),
        "updated_at": _dt(o.updated_at),
    }


def purchase_item_data(i):
    return {
        "id": i.id,
        "purchase_order_id": i.purchase_order_id,
        "product_id": i.product_id,
        "quantity": i.quantity,
        "purchase_price": _money(i.purchase_price),
        "selling_price": _money(i.selling_price),
        "amount": _money(i.amount),
    }


def sales_order_data(o):
    return {
        "id": o.id,
        "code": o.code,
        "date": _dt(o.date),
        "customer_type": o.customer_type,
        "customer_id": o.customer_id,
        "total_amount": _money(o.total_amount),
        "customer_payment": _money(o.customer_payment),
        "payment_method": o.payment_method,
        "status": o.status,
        "created_at": _dt(o.created_at),
        "updated_at": _dt(o.updated_at),
    }


def sales_item_data(i):
    return {
        "id": i.id,
        "sales_order_id": i.sales_order_id,
        "product_id": i.product_id,
        "quantity": i.quantity,
        "price": _money(i.price),
        "amount": _money(i.amount),
    }


def price_adjustment_data(a):
    return {
        "id": a.id,
        "product_id": a.product_id,
        "old_price": _money(a.old_price),
        "new_price": _money(a.new_price),
        "date": _dt(a.date),
        "user_id": a.user_id,
    }
