# Overview: Flask API routes for purchase orders and goods receipt.

from flask import Blueprint, current_app, g, request

from ..decorators import rate_limit, require_auth
from ..errors import MyPosError, ValidationError, error_response
from ..extensions import cache
from ..services import audit_service, purchase_service
from ..time_utils import parse_iso_datetime
from ..validation import parse_pagination, parse_purchase_request


purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")


@purchases_bp.get("")
@require_auth
@rate_limit("read")
def list_purchases_route():
    try:
        page, limit = parse_pagination(request.args)
        try:
            date_from = parse_iso_datetime(request.args.get("from"))
            date_to = parse_iso_datetime(request.args.get("to"))
        except ValueError:
            raise ValidationError("from/to must be ISO-8601 dates")
        supplier_id = request.args.get("supplier_id")
        if supplier_id is not None:
            try:
                supplier_id = int(supplier_id)
            except ValueError:
                raise ValidationError("supplier_id must be an integer")

        # Filtered by order date, so only the day part counts
        return purchase_service.list_purchases(
            g.store_id,
            status=request.args.get("status") or None,
            supplier_id=supplier_id,
            date_from=date_from.date() if date_from else None,
            date_to=date_to.date() if date_to else None,
            page=page,
            limit=limit,
        )
    except MyPosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list purchases")
        return {"error": "Internal server error"}, 500


@purchases_bp.post("")
@require_auth
@rate_limit("write")
def create_purchase_route():
    """
    Body: {supplier_id?, supplier_name?, status?: draft|ordered, ordered_on?, note?,
           items: [{product_id?, name?, unit_price, quantity}]}
    """
    payload = request.get_json(silent=True) or {}

    try:
        data = parse_purchase_request(payload, max_items=current_app.config.get("SALE_MAX_ITEMS", 100))
        purchase = purchase_service.create_purchase(g.store_id, data, user_ref=g.user_ref)
    except MyPosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create purchase")
        return {"error": "Internal server error"}, 500

    audit_service.log_action(
        store_id=g.store_id,
        user_ref=g.user_ref,
        action=audit_service.ACTION_CREATE,
        table_name="purchases",
        record_id=purchase.id,
        new_values={"purchase_number": purchase.purchase_number, "total": purchase.total},
    )
    return purchase.to_dict(include_items=True), 201


@purchases_bp.get("/<int:purchase_id>")
@require_auth
@rate_limit("read")
def get_purchase_route(purchase_id: int):
    try:
        return purchase_service.get_purchase(g.store_id, purchase_id).to_dict(include_items=True)
    except MyPosError as e:
        return error_response(e)


@purchases_bp.post("/<int:purchase_id>/receive")
@require_auth
@rate_limit("write")
def receive_purchase_route(purchase_id: int):
    try:
        purchase = purchase_service.receive_purchase(g.store_id, purchase_id, user_ref=g.user_ref)
    except MyPosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to receive purchase")
        return {"error": "Internal server error"}, 500

    cache.invalidate_store(g.store_id)
    audit_service.log_action(
        store_id=g.store_id,
        user_ref=g.user_ref,
        action=audit_service.ACTION_RECEIVE,
        table_name="purchases",
        record_id=purchase.id,
        new_values={"status": purchase.status},
    )
    return purchase.to_dict(include_items=True)


@purchases_bp.post("/<int:purchase_id>/cancel")
@require_auth
@rate_limit("write")
def cancel_purchase_route(purchase_id: int):
    try:
        purchase = purchase_service.cancel_purchase(g.store_id, purchase_id)
    except MyPosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel purchase")
        return {"error": "Internal server error"}, 500

    audit_service.log_action(
        store_id=g.store_id,
        user_ref=g.user_ref,
        action=audit_service.ACTION_CANCEL,
        table_name="purchases",
        record_id=purchase.id,
        new_values={"status": purchase.status},
    )
    return purchase.to_dict()
