"""Standardised API error responses.

Usage
-----
    from taskhub.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Task not found")
    return api_error(E.VALIDATION_INVALID, "Invalid payload", details={"title": "required"})
"""

from __future__ import annotations

from flask import g, jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Malformed request – HTTP 400
    BAD_REQUEST = "ERR_BAD_REQUEST"
    UNSUPPORTED_MEDIA_TYPE = "ERR_UNSUPPORTED_MEDIA_TYPE"
    BODY_TOO_LARGE = "ERR_BODY_TOO_LARGE"

    # Business validation – HTTP 422
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Auth – HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"

    # Throttling – HTTP 429
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.BAD_REQUEST: 400,
    E.UNSUPPORTED_MEDIA_TYPE: 415,
    E.BODY_TOO_LARGE: 413,
    E.VALIDATION_INVALID: 422,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.RATE_LIMITED: 429,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Build ``(jsonify(body), status)`` for an error code.

    ``status`` overrides the code's default HTTP status. Server errors carry
    the request's correlation id so a caller can quote it in a report.
    """
    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    if http_status >= 500:
        body["request_id"] = getattr(g, "request_id", None)
    return jsonify(body), http_status
