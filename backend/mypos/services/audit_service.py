# Overview: Append-only audit trail; written after the audited operation committed.

from __future__ import annotations

import math
from datetime import date, datetime

from flask import current_app, has_request_context, request

from ..errors import ValidationError
from ..extensions import db
from ..models import AuditLog


ACTION_CREATE = "CREATE"
ACTION_UPDATE = "UPDATE"
ACTION_DELETE = "DELETE"
ACTION_VOID = "VOID"
ACTION_RECEIVE = "RECEIVE"
ACTION_ADJUST = "ADJUST"
ACTION_CANCEL = "CANCEL"
AUDIT_ACTIONS = (
    ACTION_CREATE, ACTION_UPDATE, ACTION_DELETE, ACTION_VOID, ACTION_RECEIVE, ACTION_ADJUST, ACTION_CANCEL,
)


def _jsonable(values: dict | None) -> dict | None:
    if values is None:
        return None
    out = {}
    for k, v in values.items():
        if isinstance(v, (datetime, date)):
            v = v.isoformat()
        out[k] = v
    return out


def log_action(
    *,
    store_id: int,
    action: str,
    table_name: str,
    record_id,
    user_ref: str | None = None,
    old_values: dict | None = None,
    new_values: dict | None = None,
) -> AuditLog | None:
    """
    Write one audit entry in its own commit.

    Never raises: a failed write is logged and rolled back, and the caller's
    already-committed operation stands. Returns None in that case.
    """
    ip_address = None
    user_agent = None
    if has_request_context():
        ip_address = request.remote_addr
        user_agent = (request.headers.get("User-Agent") or "")[:255] or None

    try:
        entry = AuditLog(
            store_id=store_id,
            user_ref=user_ref,
            action=action,
            table_name=table_name,
            record_id=str(record_id),
            old_values=_jsonable(old_values),
            new_values=_jsonable(new_values),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.session.add(entry)
        db.session.commit()
        return entry
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "Failed to write audit log (%s %s %s)", action, table_name, record_id
        )
        return None


def list_audit_logs(
    store_id: int,
    *,
    table_name: str | None = None,
    record_id: str | None = None,
    action: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> dict:
    page = max(page, 1)
    limit = min(max(limit, 1), 100)

    q = db.session.query(AuditLog).filter(AuditLog.store_id == store_id)
    if table_name:
        q = q.filter(AuditLog.table_name == table_name)
    if record_id:
        q = q.filter(AuditLog.record_id == str(record_id))
    if action:
        action = action.upper()
        if action not in AUDIT_ACTIONS:
            raise ValidationError(f"action must be one of: {', '.join(AUDIT_ACTIONS)}")
        q = q.filter(AuditLog.action == action)

    total = q.count()
    entries = (
        q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "items": [e.to_dict() for e in entries],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit) if total else 0,
    }
