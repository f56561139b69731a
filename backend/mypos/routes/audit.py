# Overview: Read-only audit log listing for the caller's store.

from flask import Blueprint, current_app, g, request

from ..decorators import rate_limit, require_auth
from ..errors import MyPosError, error_response
from ..services import audit_service
from ..validation import parse_pagination


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit-logs")


@audit_bp.get("")
@require_auth
@rate_limit("read")
def list_audit_logs_route():
    """
    Query params: table, record_id, action, page, limit. Newest first.
    """
    try:
        page, limit = parse_pagination(request.args)
        return audit_service.list_audit_logs(
            g.store_id,
            table_name=request.args.get("table") or None,
            record_id=request.args.get("record_id") or None,
            action=request.args.get("action") or None,
            page=page,
            limit=limit,
        )
    except MyPosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list audit logs")
        return {"error": "Internal server error"}, 500
