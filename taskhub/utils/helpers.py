"""Shared utility functions used by services and blueprints.

parse_date:        ISO / DD.MM.YYYY string → date (raises ValueError on bad input)
utcnow:            timezone-aware "now" used for every stored timestamp
today:             the calendar date urgency is computed against
commit_or_raise:   commit the session, translating store failures into
                   ConflictError / InternalError (flush_or_raise: same, for flush)
"""
import logging
from contextlib import contextmanager
from datetime import date, datetime, timezone

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from taskhub.core.exceptions import ConflictError, InternalError
from taskhub.models import db

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def today() -> date:
    """Calendar date in UTC; the reference point for urgency and weekly stats."""
    return utcnow().date()


def parse_date(value):
    """Parse a date string, raising ValueError on bad input.

    Supports: YYYY-MM-DD, YYYY-MM-DDTHH:MM:SS (time part dropped),
    DD.MM.YYYY, date/datetime objects. Empty input returns None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError("Invalid date format. Use YYYY-MM-DD.")
    value = value.strip()
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return datetime.strptime(value, "%d.%m.%Y").date()
    except ValueError as exc:
        raise ValueError("Invalid date format. Use YYYY-MM-DD.") from exc


# ── Database commit helper ───────────────────────────────────────────────────

@contextmanager
def _store_errors(resource: str, action: str):
    try:
        yield
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on %s resource=%s: %s", action, resource, exc.orig)
        raise ConflictError(resource, "unique key", str(exc.orig)[:200]) from exc
    except OperationalError as exc:
        db.session.rollback()
        logger.exception("Database operational error on %s resource=%s", action, resource)
        raise InternalError("Database unavailable or lock timeout", cause=exc) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Unexpected database error on %s resource=%s", action, resource)
        raise InternalError("Database error", cause=exc) from exc


def commit_or_raise(resource: str = "Record"):
    """Commit the current SQLAlchemy session or roll back and raise.

    IntegrityError   → ConflictError (duplicate / constraint violation)
    OperationalError → InternalError (connection lost, lock or statement timeout)
    Other SQLAlchemyError → InternalError

    Nothing is left half-written: every failure path rolls the session back
    before raising.
    """
    with _store_errors(resource, "commit"):
        db.session.commit()


def flush_or_raise(resource: str = "Record"):
    """Flush pending rows (to obtain ids) with the same error mapping as commit."""
    with _store_errors(resource, "flush"):
        db.session.flush()
