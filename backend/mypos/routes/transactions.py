# Overview: Flask API routes for sale transactions (checkout, history, void).

# backend/mypos/routes/transactions.py
"""
Transaction API routes.

STORE-SCOPED: the store comes from the access token (g.store_id); ids from
other stores answer 404.
"""

from flask import Blueprint, current_app, g, request

from ..decorators import rate_limit, require_auth
from ..errors import MyPosError, ValidationError, error_response
from ..extensions import cache
from ..models.sales import STATUS_VOIDED
from ..services import audit_service, sales_service
from ..services.cache_service import TRANSACTIONS, cache_key
from ..time_utils import end_of_day, is_date_only, parse_iso_datetime
from ..validation import parse_idempotency_key, parse_pagination, parse_sale_request


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


def _parse_range(args):
    raw_from = args.get("from")
    raw_to = args.get("to")
    try:
        date_from = parse_iso_datetime(raw_from)
        date_to = parse_iso_datetime(raw_to)
    except ValueError:
        raise ValidationError("from/to must be ISO-8601 dates")
    if date_to is not None and is_date_only(raw_to):
        date_to = end_of_day(date_to)
    return date_from, date_to


@transactions_bp.post("")
@require_auth
@rate_limit("write")
def create_transaction_route():
    """
    Checkout: record a completed sale and decrement stock, atomically.

    Optional header Idempotency-Key makes retries safe: a repeated key with the
    same body returns the original result (201, Idempotent-Replay: true).
    """
    payload = request.get_json(silent=True) or {}

    try:
        sale = parse_sale_request(payload, max_items=current_app.config.get("SALE_MAX_ITEMS", 100))
        key = parse_idempotency_key(request.headers.get("Idempotency-Key"))
        result = sales_service.process_sale(
            g.store_id,
            sale,
            user_ref=g.user_ref,
            idempotency_key=key,
        )
    except MyPosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process sale")
        return {"error": "Internal server error"}, 500

    if result.replayed:
        return result.to_dict(), 201, {"Idempotent-Replay": "true"}

    cache.invalidate_store(g.store_id)
    audit_service.log_action(
        store_id=g.store_id,
        user_ref=g.user_ref,
        action=audit_service.ACTION_CREATE,
        table_name="transactions",
        record_id=result.transaction_id,
        new_values={
            "invoice_number": result.invoice_number,
            "grand_total": sale.grand_total,
            "payment_method": sale.payment_method,
            "item_count": result.item_count,
        },
    )
    return result.to_dict(), 201


@transactions_bp.get("")
@require_auth
@rate_limit("read")
def list_transactions_route():
    """
    Query params:
    - from, to: ISO-8601 date or datetime; a date-only `to` covers the whole day
    - status: completed | pending | voided
    - page (default 1), limit (default 50, max 100)
    """
    try:
        page, limit = parse_pagination(request.args)
        date_from, date_to = _parse_range(request.args)
        status = request.args.get("status") or None

        cacheable = date_from is None and date_to is None and status is None
        key = cache_key(TRANSACTIONS, g.store_id, page, limit)
        if cacheable:
            cached = cache.get(key)
            if cached is not None:
                return cached

        result = sales_service.list_transactions(
            g.store_id,
            date_from=date_from,
            date_to=date_to,
            status=status,
            page=page,
            limit=limit,
        )
        if cacheable:
            cache.set(key, result)
        return result
    except MyPosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list transactions")
        return {"error": "Internal server error"}, 500


@transactions_bp.get("/<int:transaction_id>")
@require_auth
@rate_limit("read")
def get_transaction_route(transaction_id: int):
    try:
        txn = sales_service.get_transaction(g.store_id, transaction_id)
        return txn.to_dict(include_items=True)
    except MyPosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load transaction")
        return {"error": "Internal server error"}, 500


def _void(transaction_id: int, reason):
    if reason is not None and not isinstance(reason, str):
        raise ValidationError("reason must be a string")
    reason = (reason or "").strip()[:255] or None

    before = sales_service.get_transaction(g.store_id, transaction_id)
    old_values = {"status": before.status}

    result = sales_service.void_transaction(
        g.store_id,
        transaction_id,
        reason=reason,
        user_ref=g.user_ref,
    )

    cache.invalidate_store(g.store_id)
    audit_service.log_action(
        store_id=g.store_id,
        user_ref=g.user_ref,
        action=audit_service.ACTION_VOID,
        table_name="transactions",
        record_id=result.transaction_id,
        old_values=old_values,
        new_values={
            "status": STATUS_VOIDED,
            "void_reason": reason,
            "restored_items": result.restored_items,
            "skipped_items": result.skipped_items,
        },
    )
    return result.to_dict()


@transactions_bp.patch("/<int:transaction_id>")
@require_auth
@rate_limit("write")
def update_transaction_route(transaction_id: int):
    """
    Status change. The only accepted transition is completed -> voided:
    body {"status": "voided", "reason": "..."}
    """
    payload = request.get_json(silent=True) or {}

    try:
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")
        if payload.get("status") != STATUS_VOIDED:
            raise ValidationError("Only status 'voided' can be set on a transaction")
        return _void(transaction_id, payload.get("reason"))
    except MyPosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to void transaction")
        return {"error": "Internal server error"}, 500


@transactions_bp.delete("/<int:transaction_id>")
@require_auth
@rate_limit("write")
def delete_transaction_route(transaction_id: int):
    """Transactions are never deleted; DELETE voids them."""
    payload = request.get_json(silent=True) or {}

    try:
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")
        return _void(transaction_id, payload.get("reason"))
    except MyPosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to void transaction")
        return {"error": "Internal server error"}, 500
