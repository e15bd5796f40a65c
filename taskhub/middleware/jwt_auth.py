"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.current_user_*.

The identity layer is external: it issues HS256 access tokens carrying the
user id (``sub``) and a role. This hook only verifies them and exposes
the acting user to services:

  Authorization: Bearer <token>  →  g.current_user_id, g.current_user_role

A missing, expired or invalid token leaves both unset; ``taskhub.auth``
decides whether the route needs an actor.
"""

import logging

import jwt as pyjwt
from flask import g, request

from taskhub.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.current_user_id = None
        g.current_user_role = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token on %s", path)
            return
        except pyjwt.InvalidTokenError as exc:
            logger.warning("Invalid access token on %s: %s", path, exc)
            return

        g.current_user_id = payload["sub"]
        g.current_user_role = payload.get("role") or "viewer"
