# Overview: Store access tokens; issue, validate and revoke.

"""
Store Access Token Service

WHY: Every request must be tied to exactly one store, and that store must come
from something the client cannot forge in a request body. The identity
provider in front of MyPOS hands out opaque bearer tokens; this service maps a
token to (store_id, user_ref).

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Absolute timeout (SESSION_TTL_HOURS)
- Revocable per store
- Tenant context (store_id) is immutable for the token lifetime
"""

import secrets
import hashlib
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import SessionToken, Store
from mypos.time_utils import utcnow


@dataclass
class SessionContext:
    """Tenant context resolved from a valid token."""
    session: SessionToken
    store_id: int
    user_ref: str | None


def generate_token() -> str:
    """
    Generate cryptographically secure random token.

    Returns 64-character hex string (32 bytes of entropy).
    This is the plaintext token sent to client (never stored).
    """
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    Tokens are already high-entropy (unlike passwords), so a fast hash is enough.
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(
    store_id: int,
    user_ref: str | None = None,
    ttl_hours: int | None = None,
) -> tuple[SessionToken, str]:
    """
    Issue a new access token for a store.

    Returns (session_record, plaintext_token).
    Client receives plaintext_token, database stores only the hash.
    """
    store = db.session.query(Store).filter_by(id=store_id).first()
    if store is None:
        raise NotFoundError("Store", store_id)
    if not store.is_active:
        raise ValidationError("Store is not active")

    if ttl_hours is None:
        ttl_hours = current_app.config.get("SESSION_TTL_HOURS", 24)
    if ttl_hours <= 0:
        raise ValidationError("ttl_hours must be > 0")

    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        store_id=store_id,
        user_ref=user_ref,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + timedelta(hours=ttl_hours),
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def validate_session(token: str) -> SessionContext | None:
    """
    Validate a token and return its SessionContext.

    Returns None if the token is unknown, expired or revoked, or if its store
    has been deactivated. Updates last_used_at on success.
    """
    if not token:
        return None

    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if session is None or session.is_revoked:
        return None

    now = utcnow()
    if now >= session.expires_at:
        return None

    store = db.session.get(Store, session.store_id)
    if store is None or not store.is_active:
        return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(session=session, store_id=session.store_id, user_ref=session.user_ref)


def revoke_store_sessions(store_id: int) -> int:
    """Revoke every active token of a store. Returns the number revoked."""
    now = utcnow()
    count = (
        db.session.query(SessionToken)
        .filter_by(store_id=store_id, is_revoked=False)
        .update({"is_revoked": True, "revoked_at": now}, synchronize_session=False)
    )
    db.session.commit()
    return count
