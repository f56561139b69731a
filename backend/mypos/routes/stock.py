# Overview: Flask API routes for manual stock adjustments and movement history.

from flask import Blueprint, current_app, g, request

from ..decorators import rate_limit, require_auth
from ..errors import MyPosError, ValidationError, error_response
from ..extensions import cache
from ..services import audit_service, inventory_service
from ..validation import parse_stock_adjustment


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.post("/adjustments")
@require_auth
@rate_limit("write")
def create_adjustment_route():
    """
    Manual stock movement.

    Body: {product_id, kind: in|out|correction, quantity, note?}
    - in/out: quantity is the delta (> 0)
    - correction: quantity is the counted stock (>= 0)
    """
    payload = request.get_json(silent=True) or {}

    try:
        data = parse_stock_adjustment(payload)
        result = inventory_service.adjust_stock(
            store_id=g.store_id,
            product_id=data["product_id"],
            kind=data["kind"],
            quantity=data["quantity"],
            note=data["note"],
            user_ref=g.user_ref,
        )
        movement = inventory_service.get_movement(g.store_id, result.movement_id)
        product = inventory_service.get_product(g.store_id, result.product_id)
    except MyPosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return {"error": "Internal server error"}, 500

    cache.invalidate_store(g.store_id)
    audit_service.log_action(
        store_id=g.store_id,
        user_ref=g.user_ref,
        action=audit_service.ACTION_ADJUST,
        table_name="products",
        record_id=result.product_id,
        old_values={"stock": result.previous_stock},
        new_values={"stock": result.new_stock, "kind": data["kind"], "quantity": data["quantity"]},
    )
    return {"adjustment": movement.to_dict(), "product": product.to_dict()}, 201


@stock_bp.get("/adjustments")
@require_auth
@rate_limit("read")
def list_adjustments_route():
    """
    Query params:
    - product_id: int (optional)
    - limit: int (default 100, max 500)
    """
    try:
        product_id = request.args.get("product_id", type=int)
        limit = request.args.get("limit", default=100, type=int)
        if limit is None or limit < 1:
            raise ValidationError("limit must be >= 1")
        movements = inventory_service.list_movements(
            store_id=g.store_id,
            product_id=product_id,
            limit=limit,
        )
        return {"items": [m.to_dict() for m in movements], "count": len(movements)}
    except MyPosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return {"error": "Internal server error"}, 500
