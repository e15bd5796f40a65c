"""
Task Tracking Engine
Authorization boundary.

Provides:
    - current_actor():  the (user_id, role) of the acting user
    - require_role():   minimum-role decorator for blueprint routes
    - init_auth():      before_request guard for /api/v1/* (actor required,
                        JSON Content-Type on state-changing requests)

Identity itself is external (see ``taskhub.middleware.jwt_auth``). Failures
raise ``AuthorizationError`` so the shared blueprint handlers render them
as 401 / 403.

Role hierarchy: admin > manager > member > viewer
    - any role may read
    - member and above may mutate
    - only admin may read another user's stats or delete others' comments
"""

import functools
import logging

from flask import g, request

from taskhub.core.exceptions import AuthorizationError
from taskhub.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# ── Roles ────────────────────────────────────────────────────────────────────

ROLES = {"admin", "manager", "member", "viewer"}

ROLE_HIERARCHY = {
    "admin": {"admin", "manager", "member", "viewer"},
    "manager": {"manager", "member", "viewer"},
    "member": {"member", "viewer"},
    "viewer": {"viewer"},
}


def current_actor() -> tuple[int, str]:
    """Return (user_id, role) of the authenticated caller.

    Raises:
        AuthorizationError: (unauthenticated) when no valid token was presented.
    """
    user_id = getattr(g, "current_user_id", None)
    if user_id is None:
        raise AuthorizationError("Authentication required", authenticated=False)
    return user_id, getattr(g, "current_user_role", None) or "viewer"


def has_role(role: str, minimum_role: str) -> bool:
    return minimum_role in ROLE_HIERARCHY.get(role, set())


def require_role(minimum_role: str):
    """
    Decorator: require a minimum role level.

    Usage:
        @bp.route("/tasks", methods=["POST"])
        @require_role("member")
        def create_task(): ...
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            _, role = current_actor()
            if not has_role(role, minimum_role):
                logger.warning(
                    "Access denied: role '%s' tried to access '%s'-level endpoint %s",
                    role, minimum_role, request.path,
                )
                raise AuthorizationError("Insufficient permissions")
            return f(*args, **kwargs)
        return decorated
    return decorator


# ── CSRF protection for API ──────────────────────────────────────────────────

def _check_content_type():
    """
    For state-changing requests (POST/PUT/PATCH/DELETE) with a body, require
    Content-Type: application/json. HTML forms cannot send that content type.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return api_error(
                E.UNSUPPORTED_MEDIA_TYPE,
                "Content-Type must be application/json for state-changing requests",
            )
    return None


def init_auth(app):
    """
    Install the authorization guard on the Flask app.

    Runs after the JWT middleware; skips health checks and CORS pre-flight.
    """
    @app.before_request
    def _before_request_auth():
        if not request.path.startswith("/api/v1/"):
            return None
        if request.path.startswith("/api/v1/health"):
            return None
        if request.method == "OPTIONS":
            return None

        csrf_error = _check_content_type()
        if csrf_error:
            return csrf_error

        if getattr(g, "current_user_id", None) is None:
            return api_error(E.UNAUTHENTICATED, "Authentication required")
        return None

    logger.info("Auth guard installed")
