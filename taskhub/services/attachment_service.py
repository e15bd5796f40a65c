"""Attachment metadata for tasks. File bytes live in the external blob store."""

import logging

from taskhub.core.exceptions import NotFoundError, ValidationError
from taskhub.models import db
from taskhub.models.task import Task, TaskAttachment
from taskhub.services.comment_service import add_system_comment
from taskhub.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = {
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/zip",
    "image/jpeg",
    "image/png",
    "image/gif",
    "text/plain",
}

MAX_FILE_SIZE = 100 * 1024 * 1024  # 100 MB


def add_attachment(task_id: int, data: dict, actor_id: int) -> TaskAttachment:
    task = db.session.get(Task, task_id)
    if task is None:
        raise NotFoundError("Task", task_id)

    errors = {}
    file_name = data.get("file_name")
    if not isinstance(file_name, str) or not file_name.strip():
        errors["file_name"] = "required"
    elif len(file_name) > 255:
        errors["file_name"] = "max 255 chars"
    file_size = data.get("file_size", 0)
    if isinstance(file_size, bool) or not isinstance(file_size, int) or not 0 <= file_size <= MAX_FILE_SIZE:
        errors["file_size"] = f"integer between 0 and {MAX_FILE_SIZE}"
    mime_type = data.get("mime_type")
    if not isinstance(mime_type, str) or mime_type not in ALLOWED_MIME_TYPES:
        errors["mime_type"] = "file type not allowed"
    storage_key = data.get("storage_key")
    if storage_key is not None and (not isinstance(storage_key, str) or len(storage_key) > 500):
        errors["storage_key"] = "string, max 500 chars"
    description = data.get("description")
    if description is not None and not isinstance(description, str):
        errors["description"] = "must be a string"
    if errors:
        raise ValidationError("Invalid attachment", details=errors)

    attachment = TaskAttachment(
        task_id=task_id,
        file_name=file_name.strip(),
        file_size=file_size,
        mime_type=mime_type,
        storage_key=storage_key,
        description=description,
        uploaded_by=actor_id,
    )
    db.session.add(attachment)
    add_system_comment(
        task,
        f"Attached {attachment.file_name}",
        {"file_name": attachment.file_name, "mime_type": mime_type, "file_size": file_size},
        actor_id,
        comment_type="attachment",
    )
    commit_or_raise("TaskAttachment")
    logger.info(
        "Attachment recorded id=%s name=%s", attachment.id, attachment.file_name,
        extra={"task_id": task_id, "user_id": actor_id},
    )
    return attachment


def list_attachments(task_id: int) -> list[TaskAttachment]:
    if db.session.get(Task, task_id) is None:
        raise NotFoundError("Task", task_id)
    return (
        TaskAttachment.query
        .filter_by(task_id=task_id)
        .order_by(TaskAttachment.uploaded_at, TaskAttachment.id)
        .all()
    )
