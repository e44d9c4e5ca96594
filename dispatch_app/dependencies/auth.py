"""
Session guard for dashboard routes.
The login flow lives outside this service; it only has to place ``user_id`` in the signed session cookie.
"""
from __future__ import annotations

from fastapi import Request

from dispatch_app.core.errors import AuthError


def require_session_user(request: Request) -> int:
    """Return the session's user id or raise 401."""
    user_id = request.session.get("user_id")
    if not user_id:
        raise AuthError("Unauthorized")
    try:
        return int(user_id)
    except (TypeError, ValueError) as exc:
        raise AuthError("Unauthorized") from exc
