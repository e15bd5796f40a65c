"""
Assignment Manager — Service Layer.

One TaskAssignment row per (task_id, user_id, role). Re-assigning the same
tuple overwrites the existing row; it never inserts a duplicate, even when
two requests race (savepoint insert, fall back to update on the unique
violation).
"""

import logging

from sqlalchemy.exc import IntegrityError

from taskhub.core.exceptions import NotFoundError, ValidationError
from taskhub.models import db
from taskhub.models.task import ASSIGNMENT_ROLES, Task, TaskAssignment
from taskhub.services.notification import NotificationService
from taskhub.utils.helpers import commit_or_raise, utcnow

logger = logging.getLogger(__name__)


def validate_assignment_input(user_id, role, workload_percentage) -> None:
    errors = {}
    if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id <= 0:
        errors["user_id"] = "positive integer required"
    if not isinstance(role, str) or role not in ASSIGNMENT_ROLES:
        errors["role"] = f"must be one of {sorted(ASSIGNMENT_ROLES)}"
    if (
        isinstance(workload_percentage, bool)
        or not isinstance(workload_percentage, int)
        or not 1 <= workload_percentage <= 100
    ):
        errors["workload_percentage"] = "integer between 1 and 100"
    if errors:
        raise ValidationError("Invalid assignment", details=errors)


def _overwrite(assignment, status, workload_percentage, actor_id):
    assignment.status = status
    assignment.workload_percentage = workload_percentage
    assignment.assigned_by = actor_id
    assignment.assigned_at = utcnow()
    assignment.responded_at = utcnow() if status == "accepted" else None


def upsert_assignment(task_id, user_id, role, workload_percentage, status, actor_id):
    """Insert-or-update keyed by (task_id, user_id, role). Does not commit."""
    key = {"task_id": task_id, "user_id": user_id, "role": role}
    existing = TaskAssignment.query.filter_by(**key).first()
    if existing is not None:
        _overwrite(existing, status, workload_percentage, actor_id)
        db.session.flush()
        return existing

    assignment = TaskAssignment(**key)
    _overwrite(assignment, status, workload_percentage, actor_id)
    try:
        with db.session.begin_nested():
            db.session.add(assignment)
    except IntegrityError:
        # A concurrent request inserted the same tuple first.
        logger.info("Assignment insert raced task_id=%s user_id=%s role=%s; updating", task_id, user_id, role)
        existing = TaskAssignment.query.filter_by(**key).one()
        _overwrite(existing, status, workload_percentage, actor_id)
        db.session.flush()
        return existing
    return assignment


def notify_assigned(task, user_id, role, actor_id):
    """Post-commit, best-effort notification of a new or refreshed assignment."""
    if user_id == actor_id:
        return None
    return NotificationService.notify_safely(
        user_id,
        task.id,
        "assigned",
        f"Assigned: {task.title}",
        f"You were assigned to task \"{task.title}\" as {role}.",
    )


def assign(task_id, user_id, role="assignee", workload_percentage=100, *, actor_id):
    """Create or refresh an assignment. Status is always reset to pending."""
    validate_assignment_input(user_id, role, workload_percentage)
    task = db.session.get(Task, task_id)
    if task is None:
        raise NotFoundError("Task", task_id)

    assignment = upsert_assignment(task_id, user_id, role, workload_percentage, "pending", actor_id)
    commit_or_raise("TaskAssignment")
    logger.info(
        "Assignment upserted id=%s user_id=%s role=%s workload=%s",
        assignment.id, user_id, role, workload_percentage,
        extra={"task_id": task_id, "user_id": actor_id},
    )
    notify_assigned(task, user_id, role, actor_id)
    return assignment


def list_assignments(task_id):
    if db.session.get(Task, task_id) is None:
        raise NotFoundError("Task", task_id)
    return (
        TaskAssignment.query
        .filter_by(task_id=task_id)
        .order_by(TaskAssignment.assigned_at, TaskAssignment.id)
        .all()
    )


def respond(task_id, role, accept, *, actor_id):
    """The assigned user accepts or declines their own pending assignment."""
    if not isinstance(role, str) or role not in ASSIGNMENT_ROLES:
        raise ValidationError("Invalid role", details={"role": f"must be one of {sorted(ASSIGNMENT_ROLES)}"})
    if not isinstance(accept, bool):
        raise ValidationError("accept must be a boolean", details={"accept": "boolean required"})
    assignment = TaskAssignment.query.filter_by(task_id=task_id, user_id=actor_id, role=role).first()
    if assignment is None:
        raise NotFoundError("TaskAssignment")
    if assignment.status != "pending":
        raise ValidationError(
            "Assignment already answered", details={"status": assignment.status},
        )
    assignment.status = "accepted" if accept else "declined"
    assignment.responded_at = utcnow()
    commit_or_raise("TaskAssignment")
    logger.info(
        "Assignment %s id=%s role=%s", assignment.status, assignment.id, role,
        extra={"task_id": task_id, "user_id": actor_id},
    )
    return assignment
