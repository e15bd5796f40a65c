"""
Audit / Comment Log — Service Layer.

Append-only log attached to a task. User comments are retracted by soft
delete only; system entries (status changes, attachments) are written by
the engine inside the caller's transaction and are immutable.
"""

import logging

from sqlalchemy import func

from taskhub.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from taskhub.models import db
from taskhub.models.task import COMMENT_TYPES, Task, TaskComment
from taskhub.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

# Written only by the engine.
SYSTEM_COMMENT_TYPES = {"status_change"}

MAX_CONTENT_LENGTH = 10000
MAX_TIME_SPENT_MINUTES = 7 * 24 * 60


def _get_task(task_id: int) -> Task:
    task = db.session.get(Task, task_id)
    if task is None:
        raise NotFoundError("Task", task_id)
    return task


def add_comment(task_id: int, data: dict, actor_id: int) -> TaskComment:
    """Append a user comment.

    Raises:
        NotFoundError: unknown task.
        ValidationError: empty content, reserved type, bad parent or minutes.
    """
    _get_task(task_id)

    errors = {}
    content = data.get("content")
    if not isinstance(content, str) or not content.strip():
        errors["content"] = "required"
    elif len(content) > MAX_CONTENT_LENGTH:
        errors["content"] = f"max {MAX_CONTENT_LENGTH} chars"

    if data.get("is_system"):
        errors["is_system"] = "system comments cannot be created by clients"

    is_internal = data.get("is_internal")
    if is_internal is None:
        is_internal = False
    if not isinstance(is_internal, bool):
        errors["is_internal"] = "boolean required"

    comment_type = data.get("comment_type") or "comment"
    if not isinstance(comment_type, str) or comment_type not in COMMENT_TYPES:
        errors["comment_type"] = f"must be one of {sorted(COMMENT_TYPES)}"
    elif comment_type in SYSTEM_COMMENT_TYPES:
        errors["comment_type"] = f"'{comment_type}' is reserved for system entries"

    minutes = data.get("time_spent_minutes")
    if minutes is not None:
        if isinstance(minutes, bool) or not isinstance(minutes, int) or not 0 <= minutes <= MAX_TIME_SPENT_MINUTES:
            errors["time_spent_minutes"] = f"integer between 0 and {MAX_TIME_SPENT_MINUTES}"
    elif comment_type == "time_log":
        errors["time_spent_minutes"] = "required for time_log comments"

    parent_id = data.get("parent_comment_id")
    if parent_id is not None and (isinstance(parent_id, bool) or not isinstance(parent_id, int)):
        errors["parent_comment_id"] = "integer required"
    elif parent_id is not None:
        parent = TaskComment.query_active().filter_by(id=parent_id, task_id=task_id).first()
        if parent is None:
            errors["parent_comment_id"] = f"no comment {parent_id} on this task"

    if errors:
        raise ValidationError("Invalid comment", details=errors)

    comment = TaskComment(
        task_id=task_id,
        content=content.strip(),
        comment_type=comment_type,
        is_internal=is_internal,
        time_spent_minutes=minutes,
        parent_comment_id=parent_id,
        created_by=actor_id,
    )
    db.session.add(comment)
    commit_or_raise("TaskComment")
    logger.info(
        "Comment added id=%s type=%s", comment.id, comment_type,
        extra={"task_id": task_id, "user_id": actor_id},
    )
    return comment


def add_system_comment(task, content, system_data, actor_id, comment_type="status_change"):
    """Stage an immutable engine-written entry; the caller commits."""
    comment = TaskComment(
        task_id=task.id,
        content=content,
        comment_type=comment_type,
        is_system=True,
        system_data=system_data,
        created_by=actor_id,
    )
    db.session.add(comment)
    return comment


def list_comments(task_id: int) -> list[TaskComment]:
    """Non-deleted comments, oldest first."""
    _get_task(task_id)
    return (
        TaskComment.query_active()
        .filter_by(task_id=task_id)
        .order_by(TaskComment.created_at.asc(), TaskComment.id.asc())
        .all()
    )


def soft_delete_comment(task_id: int, comment_id: int, actor_id: int, actor_role: str | None = None) -> None:
    """Retract a comment. Only its author or an admin may do so."""
    comment = TaskComment.query_active().filter_by(id=comment_id, task_id=task_id).first()
    if comment is None:
        raise NotFoundError("TaskComment", comment_id)
    if comment.is_system:
        raise ValidationError(
            "System comments cannot be deleted", details={"comment_id": "system entry"},
        )
    if comment.created_by != actor_id and actor_role != "admin":
        raise AuthorizationError("Only the author or an admin can delete this comment")

    comment.soft_delete(actor_id)
    commit_or_raise("TaskComment")
    logger.info(
        "Comment soft-deleted id=%s", comment_id,
        extra={"task_id": task_id, "user_id": actor_id},
    )


def time_logged_minutes(task_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(TaskComment.time_spent_minutes), 0))
        .filter(TaskComment.task_id == task_id, TaskComment.is_deleted.is_(False))
        .scalar()
    )
    return int(total or 0)
