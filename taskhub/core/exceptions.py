"""
Engine-wide exception hierarchy.

Services raise these types and nothing else for expected failures.
Blueprints register handlers against them once (see
``taskhub.blueprints.register_error_handlers``) and get consistent HTTP
status codes everywhere.

Usage:
    from taskhub.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Task", resource_id=42)
    raise ValidationError("title is required", details={"title": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist for the caller.

    Used for BOTH genuinely missing records AND records owned by another
    user (e.g. someone else's notification). A 403 would confirm the
    resource exists; a 404 does not.

    Args:
        resource: Human-readable entity name (e.g. "Task", "Notification").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails validation or a business rule.

    Covers missing/malformed/out-of-range fields, unknown enum values,
    cycle-forming dependencies and out-of-range workflow steps.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names;
                 values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would violate a unique constraint.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field (or field tuple) that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class AuthorizationError(Exception):
    """Raised when the acting user lacks the role required for an operation.

    Maps to HTTP 403, or 401 when ``authenticated`` is False (no actor at all).
    The message never names the protected resource.
    """

    def __init__(self, message: str = "Not allowed", *, authenticated: bool = True) -> None:
        self.authenticated = authenticated
        super().__init__(message)


class InternalError(Exception):
    """Raised when the store is unavailable or a lock/statement times out.

    Maps to HTTP 500 with a generic message. Safe to retry for idempotent
    operations (updates keyed by id), not for ``create``.
    """

    def __init__(self, message: str = "Internal error", *, cause: Exception | None = None) -> None:
        self.cause = cause
        super().__init__(message)
