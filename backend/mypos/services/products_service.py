# backend/mypos/services/products_service.py
"""
Products Service

STORE-SCOPED: every query filters by store_id; a product id from another store
behaves exactly like a missing one.

STOCK: the `stock` column is never patched here. Opening stock on create is an
`in` movement through the stock ledger, in the same unit of work as the insert.
"""
from __future__ import annotations

import math

from flask import current_app
from sqlalchemy import or_

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Product
from ..models.inventory import MOVEMENT_IN
from .concurrency import run_atomic
from .inventory_service import apply_movement

PRODUCT_MUTABLE_FIELDS = {
    "code", "name", "category", "unit", "purchase_price", "sale_price", "min_stock", "is_active",
}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _ensure_code_free(store_id: int, code: str | None, exclude_id: int | None = None) -> None:
    if not code:
        return
    q = db.session.query(Product.id).filter(Product.store_id == store_id, Product.code == code)
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    if q.first() is not None:
        raise ValidationError(f"Product code already exists: {code}", details={"code": code})


def get_product(store_id: int, product_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id, store_id=store_id).first()
    if product is None:
        raise NotFoundError("Product", product_id)
    return product


def list_products(
    store_id: int,
    *,
    search: str | None = None,
    category: str | None = None,
    active: bool | None = True,
    low_stock: bool = False,
    page: int = 1,
    limit: int = 50,
) -> dict:
    """
    Store-scoped product listing.

    - search matches name or code (case-insensitive substring)
    - active=None lists active and inactive products
    - low_stock keeps products with stock <= min_stock
    """
    page = max(page, 1)
    limit = min(max(limit, 1), 100)

    q = db.session.query(Product).filter(Product.store_id == store_id)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(or_(Product.name.ilike(pattern), Product.code.ilike(pattern)))
    if category:
        q = q.filter(Product.category == category)
    if active is not None:
        q = q.filter(Product.is_active.is_(active))
    if low_stock:
        q = q.filter(Product.stock <= Product.min_stock)

    total = q.count()
    products = (
        q.order_by(Product.name.asc(), Product.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "items": [p.to_dict() for p in products],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit) if total else 0,
    }


def create_product(store_id: int, *, patch: dict, opening_stock: int = 0, user_ref: str | None = None) -> Product:
    """
    Create a product from a validated patch dict.

    Raises ValidationError if the code is already used in this store.
    """
    def _op() -> int:
        _ensure_code_free(store_id, patch.get("code"))

        product = Product(store_id=store_id, stock=0)
        apply_product_patch(product, patch)
        db.session.add(product)
        db.session.flush()

        if opening_stock > 0:
            apply_movement(
                store_id=store_id,
                product_id=product.id,
                kind=MOVEMENT_IN,
                quantity=opening_stock,
                note="Opening stock",
                reference_type="initial",
                user_ref=user_ref,
            )
        return product.id

    product_id = run_atomic(_op)
    current_app.logger.info("Product %s created in store %s", product_id, store_id)
    return get_product(store_id, product_id)


def update_product(store_id: int, product_id: int, *, patch: dict) -> tuple[Product, dict]:
    """
    Patch non-stock fields. Returns (product, old_values) for auditing.
    """
    def _op() -> dict:
        product = get_product(store_id, product_id)
        if "code" in patch:
            _ensure_code_free(store_id, patch["code"], exclude_id=product_id)
        old_values = {k: getattr(product, k) for k in patch if k in PRODUCT_MUTABLE_FIELDS}
        apply_product_patch(product, patch)
        db.session.flush()
        return old_values

    old_values = run_atomic(_op)
    return get_product(store_id, product_id), old_values


def deactivate_product(store_id: int, product_id: int) -> tuple[Product, bool]:
    """
    Soft delete; past transaction lines keep pointing at the row.

    Returns (product, was_active) so callers can audit the real prior state.
    """
    def _op() -> bool:
        product = get_product(store_id, product_id)
        was_active = bool(product.is_active)
        product.is_active = False
        db.session.flush()
        return was_active

    was_active = run_atomic(_op)
    return get_product(store_id, product_id), was_active
