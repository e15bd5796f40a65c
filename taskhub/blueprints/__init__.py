"""
Task Tracking Engine
Blueprint registry and shared request helpers.

Every API blueprint calls ``register_error_handlers(bp)`` once so the
engine's exception hierarchy maps to the same HTTP responses everywhere:

    ValidationError     → 422 (with details)
    malformed body      → 400
    NotFoundError       → 404
    ConflictError       → 409
    AuthorizationError  → 403 (401 when no actor)
    InternalError / SQLAlchemyError → 500 (generic message + request_id)
"""

import logging

from flask import request
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import BadRequest

from taskhub.core.exceptions import (
    AuthorizationError,
    ConflictError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from taskhub.models import db
from taskhub.utils.errors import E, api_error

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}


def json_body():
    """Parsed JSON request body; empty body → {}. Malformed JSON → 400."""
    if not request.get_data(cache=True):
        return {}
    data = request.get_json(silent=True)
    if data is None:
        raise BadRequest("Malformed JSON body")
    return data


def bool_arg(name, default=False):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in _TRUE_VALUES


def register_error_handlers(bp):
    """Attach the shared exception → HTTP mapping to ``bp``."""

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(BadRequest)
    def _handle_bad_request(error: BadRequest):
        return api_error(E.BAD_REQUEST, error.description or "Bad request")

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        logger.info("Not found: %s", error)
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error))

    @bp.errorhandler(AuthorizationError)
    def _handle_authorization(error: AuthorizationError):
        if not error.authenticated:
            return api_error(E.UNAUTHENTICATED, str(error))
        return api_error(E.FORBIDDEN, str(error))

    @bp.errorhandler(InternalError)
    def _handle_internal(error: InternalError):
        logger.error("Internal error endpoint=%s: %s (cause=%r)", request.endpoint, error, error.cause)
        return api_error(E.INTERNAL, "Internal server error")

    @bp.errorhandler(SQLAlchemyError)
    def _handle_db(error: SQLAlchemyError):
        db.session.rollback()
        logger.exception("Database error endpoint=%s", request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")

    return bp
