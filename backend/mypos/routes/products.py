# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/mypos/routes/products.py
"""
Product management routes.

STORE-SCOPED: All product operations are scoped to the caller's store
(g.store_id, set by @require_auth).

STOCK: `stock` is accepted on create only, as opening stock recorded through
the stock ledger. Updates go through /api/stock/adjustments.
"""
from flask import Blueprint, current_app, request, g

from ..decorators import rate_limit, require_auth
from ..errors import MyPosError, ValidationError, error_response
from ..extensions import cache
from ..models import Product
from ..services import audit_service, products_service
from ..services.cache_service import PRODUCTS, cache_key
from ..validation import (
    ModelValidationPolicy,
    enforce_rules_product,
    parse_opening_stock,
    parse_pagination,
    validate_payload,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "code", "name", "category", "unit", "purchase_price", "sale_price", "min_stock", "is_active",
    },
    required_on_create={"name", "sale_price"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _parse_bool(raw, name: str):
    if raw is None or raw == "":
        return None
    value = raw.strip().lower()
    if value in ("1", "true", "yes"):
        return True
    if value in ("0", "false", "no"):
        return False
    if value == "all":
        return None
    raise ValidationError(f"{name} must be true, false or all")


@products_bp.get("")
@require_auth
@rate_limit("read")
def list_products():
    """
    Query params:
    - search: name/code substring
    - category: exact category
    - active: true (default) | false | all
    - low_stock: true to keep products with stock <= min_stock
    - page (default 1), limit (default 50, max 100)
    """
    try:
        page, limit = parse_pagination(request.args)
        search = (request.args.get("search") or "").strip() or None
        category = (request.args.get("category") or "").strip() or None
        active_raw = request.args.get("active")
        active = True if active_raw is None else _parse_bool(active_raw, "active")
        low_stock = bool(_parse_bool(request.args.get("low_stock"), "low_stock"))

        cacheable = search is None and category is None and active is True and not low_stock
        key = cache_key(PRODUCTS, g.store_id, page, limit)
        if cacheable:
            cached = cache.get(key)
            if cached is not None:
                return cached

        result = products_service.list_products(
            g.store_id,
            search=search,
            category=category,
            active=active,
            low_stock=low_stock,
            page=page,
            limit=limit,
        )
        if cacheable:
            cache.set(key, result)
        return result
    except MyPosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list products")
        return {"error": "Internal server error"}, 500


@products_bp.post("")
@require_auth
@rate_limit("write")
def create_product_route():
    """Create a product; optional `stock` is its opening stock."""
    payload = request.get_json(silent=True) or {}

    try:
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")
        fields = {k: v for k, v in payload.items() if k != "stock"}
        patch = validate_payload(model=Product, payload=fields, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        opening_stock = parse_opening_stock(payload)
        product = products_service.create_product(
            g.store_id,
            patch=patch,
            opening_stock=opening_stock,
            user_ref=g.user_ref,
        )
    except MyPosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return {"error": "Internal server error"}, 500

    created = product.to_dict()
    cache.invalidate_store(g.store_id)
    audit_service.log_action(
        store_id=g.store_id,
        user_ref=g.user_ref,
        action=audit_service.ACTION_CREATE,
        table_name="products",
        record_id=product.id,
        new_values=created,
    )
    return created, 201


@products_bp.get("/<int:product_id>")
@require_auth
@rate_limit("read")
def get_product_route(product_id: int):
    try:
        return products_service.get_product(g.store_id, product_id).to_dict()
    except MyPosError as e:
        return error_response(e)


@products_bp.put("/<int:product_id>")
@require_auth
@rate_limit("write")
def update_product_route(product_id: int):
    """Partial update of non-stock fields."""
    payload = request.get_json(silent=True) or {}

    try:
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")
        if "stock" in payload:
            raise ValidationError("stock cannot be updated here; use /api/stock/adjustments")
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        product, old_values = products_service.update_product(g.store_id, product_id, patch=patch)
    except MyPosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return {"error": "Internal server error"}, 500

    cache.invalidate_store(g.store_id)
    audit_service.log_action(
        store_id=g.store_id,
        user_ref=g.user_ref,
        action=audit_service.ACTION_UPDATE,
        table_name="products",
        record_id=product_id,
        old_values=old_values,
        new_values=patch,
    )
    return product.to_dict()


@products_bp.delete("/<int:product_id>")
@require_auth
@rate_limit("write")
def delete_product_route(product_id: int):
    """Soft delete (is_active=false); sales history keeps its references."""
    try:
        product, was_active = products_service.deactivate_product(g.store_id, product_id)
    except MyPosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return {"error": "Internal server error"}, 500

    cache.invalidate_store(g.store_id)
    audit_service.log_action(
        store_id=g.store_id,
        user_ref=g.user_ref,
        action=audit_service.ACTION_DELETE,
        table_name="products",
        record_id=product_id,
        old_values={"is_active": was_active},
        new_values={"is_active": False},
    )
    return {"id": product.id, "is_active": product.is_active}
