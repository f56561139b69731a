# Overview: Request decorators for API routes (authentication, rate limiting).

from functools import wraps
from flask import request, g

from .errors import AuthenticationError, RateLimitedError, error_response
from .extensions import rate_limiter
from .services import session_service


def require_auth(f):
    """
    Require a valid store access token and establish tenant context.

    Sets the following Flask g attributes:
    - g.store_id: The caller's store (tenant context) - every query filters by it
    - g.user_ref: Opaque user id from the identity provider (may be None)
    - g.session_context: The full SessionContext object

    Returns 401 if the Authorization header is missing, or the token is
    invalid, expired or revoked, or its store is deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        # Extract token from Authorization header
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return error_response(AuthenticationError("Authentication required"))

        token = auth_header.split(" ", 1)[1].strip()

        context = session_service.validate_session(token)

        if not context:
            return error_response(AuthenticationError("Invalid or expired token"))

        g.store_id = context.store_id
        g.user_ref = context.user_ref
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def rate_limit(bucket: str):
    """
    Per-store request budget. Must be applied below @require_auth.

    bucket: "read" or "write" (limits from RATE_LIMIT_READ / RATE_LIMIT_WRITE)
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            identity = getattr(g, "store_id", None) or request.remote_addr
            try:
                rate_limiter.hit(bucket, identity)
            except RateLimitedError as e:
                return error_response(e)
            return f(*args, **kwargs)

        return decorated_function

    return decorator
