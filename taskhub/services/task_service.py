"""
Task Lifecycle & Query — Service Layer.

Business logic for:
    - Create / update / archive / restore with full payload validation
    - Status change audit: a system comment committed with the status write
    - completed_at stamping (first entry into ``done``)
    - Primary-assignee bookkeeping (accepted assignee assignment)
    - List with filters, stable pagination and derived urgency
    - Free-text search and aggregate statistics

Side effects: notifications are sent AFTER the primary commit as best-effort
writes; a failed notification never fails the task mutation.
"""

import logging
import math
from datetime import datetime, time, timedelta, timezone

from sqlalchemy import and_, case, exists, func, or_, select, true

from taskhub.core.exceptions import NotFoundError, ValidationError
from taskhub.integrations.directory_gateway import DIRECTORY_KINDS, directory_gateway
from taskhub.models import db
from taskhub.models.open_values import normalize_open_map, normalize_tags
from taskhub.models.task import (
    CATEGORY_MAX_LENGTH,
    CLOSED_STATUSES,
    COMPLEXITIES,
    RISK_LEVELS,
    TASK_PRIORITIES,
    TASK_STATUSES,
    TASK_TYPES,
    TITLE_MAX_LENGTH,
    Task,
    TaskAssignment,
    TaskAttachment,
    TaskComment,
)
from taskhub.models.workflow import TaskTemplate
from taskhub.services import workflow_service
from taskhub.services.assignment_service import notify_assigned, upsert_assignment
from taskhub.services.comment_service import add_system_comment, time_logged_minutes
from taskhub.services.dependency_service import list_dependencies, validate_parent
from taskhub.services.notification import NotificationService
from taskhub.utils.helpers import commit_or_raise, flush_or_raise, parse_date, today, utcnow

logger = logging.getLogger(__name__)

ENUM_FIELDS = {
    "type": TASK_TYPES,
    "priority": TASK_PRIORITIES,
    "status": TASK_STATUSES,
    "risk_level": RISK_LEVELS,
    "complexity": COMPLEXITIES,
}

ID_FIELDS = (
    "parent_task_id", "epic_id", "project_id", "company_id",
    "etablissement_id", "assigned_to", "workflow_id",
)

PRIORITY_RANK = {"low": 1, "medium": 2, "high": 3, "urgent": 4, "critical": 5}

SORT_FIELDS = {
    "created_at", "updated_at", "due_date", "priority",
    "status", "title", "completion_percentage",
}

DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 100

SEARCH_MIN_LENGTH = 2
SEARCH_DEFAULT_LIMIT = 10
SEARCH_MAX_LIMIT = 50

DUE_SOON_DAYS = 3


def _is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def clamp_percentage(value):
    """Round to an integer and clamp into 0..100."""
    return max(0, min(100, int(round(value))))


# ═════════════════════════════════════════════════════════════════════════════
# Validation
# ═════════════════════════════════════════════════════════════════════════════


def _clean_payload(data, *, creating):
    """Validate ``data`` and return only the recognised, normalized fields."""
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", details={"body": "object required"})

    errors = {}
    out = {}

    if creating or "title" in data:
        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            errors["title"] = "required"
        elif len(title.strip()) > TITLE_MAX_LENGTH:
            errors["title"] = f"max {TITLE_MAX_LENGTH} chars"
        else:
            out["title"] = title.strip()

    if "description" in data:
        desc = data["description"]
        if desc is not None and not isinstance(desc, str):
            errors["description"] = "must be a string"
        else:
            out["description"] = desc or ""

    if "category" in data:
        category = data["category"]
        if category is not None and (not isinstance(category, str) or len(category) > CATEGORY_MAX_LENGTH):
            errors["category"] = f"string, max {CATEGORY_MAX_LENGTH} chars"
        else:
            out["category"] = category or None

    for field, allowed in ENUM_FIELDS.items():
        if field not in data:
            continue
        value = data[field]
        if not isinstance(value, str) or value not in allowed:
            errors[field] = f"must be one of {sorted(allowed)}"
        else:
            out[field] = value

    for field in ("start_date", "due_date"):
        if field in data:
            try:
                out[field] = parse_date(data[field])
            except ValueError:
                errors[field] = "invalid date, use YYYY-MM-DD"

    if "estimated_hours" in data:
        hours = data["estimated_hours"]
        if hours is not None and (not _is_number(hours) or hours < 0):
            errors["estimated_hours"] = "non-negative number"
        else:
            out["estimated_hours"] = hours

    if "completion_percentage" in data:
        pct = data["completion_percentage"]
        if pct is None:
            out["completion_percentage"] = 0
        elif not _is_number(pct):
            errors["completion_percentage"] = "number"
        else:
            out["completion_percentage"] = clamp_percentage(pct)

    for field in ID_FIELDS + ("current_workflow_step",):
        if field not in data:
            continue
        value = data[field]
        if value is not None and (not _is_int(value) or value <= 0):
            errors[field] = "positive integer"
        else:
            out[field] = value

    if "story_points" in data:
        points = data["story_points"]
        if points is not None and (not _is_int(points) or points < 0):
            errors["story_points"] = "non-negative integer"
        else:
            out["story_points"] = points

    if "business_value" in data:
        value = data["business_value"]
        if value is not None and (not _is_int(value) or not 1 <= value <= 100):
            errors["business_value"] = "integer between 1 and 100"
        else:
            out["business_value"] = value

    try:
        if "tags" in data:
            out["tags"] = normalize_tags(data["tags"])
        for field in ("labels", "custom_fields"):
            if field in data:
                out[field] = normalize_open_map(data[field], field)
    except ValidationError as exc:
        errors.update(exc.details)

    if errors:
        raise ValidationError("Invalid task payload", details=errors)
    return out


def _check_dates(start_date, due_date):
    if start_date and due_date and due_date < start_date:
        raise ValidationError(
            "due_date must not be before start_date",
            details={"due_date": "before start_date"},
        )


def _check_relations(fields, task_id=None):
    if "parent_task_id" in fields:
        validate_parent(task_id, fields["parent_task_id"])

    epic_id = fields.get("epic_id")
    if epic_id is not None:
        if epic_id == task_id:
            raise ValidationError("A task cannot be its own epic", details={"epic_id": "self reference"})
        epic = db.session.get(Task, epic_id)
        if epic is None or epic.type != "epic":
            raise ValidationError("epic_id must reference an epic", details={"epic_id": f"no epic with id {epic_id}"})

    refs = {k: fields[k] for k in DIRECTORY_KINDS if fields.get(k) is not None}
    if refs:
        directory_gateway.ensure_references(refs)


def _resolve_workflow(fields, task=None):
    """Validate workflow_id / current_workflow_step; pin new workflows to step one."""
    if "workflow_id" not in fields and "current_workflow_step" not in fields:
        return
    current_wf = task.workflow_id if task is not None else None
    wf_id = fields.get("workflow_id", current_wf)

    if "workflow_id" in fields and wf_id is not None and wf_id != current_wf:
        if "current_workflow_step" not in fields:
            fields["current_workflow_step"] = workflow_service.first_step_number(wf_id)
    elif "workflow_id" in fields and wf_id is None and "current_workflow_step" not in fields:
        fields["current_workflow_step"] = None

    step = fields.get("current_workflow_step", task.current_workflow_step if task is not None else None)
    if wf_id is not None and step is None:
        workflow_service.first_step_number(wf_id)  # existence check
    workflow_service.validate_step(wf_id, step)


def _apply_template(data):
    template_id = data.pop("template_id", None)
    if template_id is None:
        return data
    tpl = db.session.get(TaskTemplate, template_id) if _is_int(template_id) else None
    if tpl is None or not tpl.is_active:
        raise ValidationError("Unknown task template", details={"template_id": f"no active template {template_id}"})
    defaults = {
        "type": tpl.default_type,
        "priority": tpl.default_priority,
        "estimated_hours": tpl.default_estimated_hours,
        "workflow_id": tpl.default_workflow_id,
    }
    for key, value in defaults.items():
        if key not in data and value is not None:
            data[key] = value
    return data


# ═════════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════════════


def create_task(data, actor_id):
    """Validate and persist a new task.

    When ``assigned_to`` is set, an accepted assignee assignment is written
    in the same transaction and the assignee is notified after commit.
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", details={"body": "object required"})
    data = _apply_template(dict(data))
    fields = _clean_payload(data, creating=True)
    _check_dates(fields.get("start_date"), fields.get("due_date"))
    _check_relations(fields)
    _resolve_workflow(fields)

    task = Task(created_by=actor_id, **fields)
    task.completion_percentage = fields.get("completion_percentage", 0)
    if task.status == "done":
        task.completed_at = utcnow()
    db.session.add(task)
    flush_or_raise("Task")

    if task.assigned_to is not None:
        db.session.add(TaskAssignment(
            task_id=task.id,
            user_id=task.assigned_to,
            role="assignee",
            status="accepted",
            workload_percentage=100,
            assigned_by=actor_id,
            responded_at=utcnow(),
        ))
    commit_or_raise("Task")
    logger.info(
        "Task created id=%s status=%s priority=%s", task.id, task.status, task.priority,
        extra={"task_id": task.id, "user_id": actor_id},
    )

    if task.assigned_to is not None:
        notify_assigned(task, task.assigned_to, "assignee", actor_id)
    return task


def get_task(task_id):
    task = db.session.get(Task, task_id)
    if task is None:
        raise NotFoundError("Task", task_id)
    return task


def get_task_detail(task_id):
    """Task with nested assignments, comments, attachments, subtasks, dependencies."""
    task = get_task(task_id)
    result = task.to_dict()
    result["urgency_status"] = compute_urgency(task.due_date, task.status)
    result.update(workflow_service.describe_step(task.workflow_id, task.current_workflow_step))
    result["assignments"] = [a.to_dict() for a in task.assignments.order_by(TaskAssignment.id)]
    comments = (
        task.comments
        .filter(TaskComment.is_deleted.is_(False))
        .order_by(None)
        .order_by(TaskComment.created_at.desc(), TaskComment.id.desc())
    )
    result["comments"] = [c.to_dict() for c in comments]
    result["attachments"] = [a.to_dict() for a in task.attachments]
    result["subtasks"] = [s.summary_dict() for s in task.subtasks]
    result["dependencies"] = list_dependencies(task.id)
    result["time_logged_minutes"] = time_logged_minutes(task.id)
    return result


def _status_recipients(task):
    accepted = (
        db.session.query(TaskAssignment.user_id)
        .filter_by(task_id=task.id, status="accepted")
        .all()
    )
    return [task.assigned_to] + [uid for (uid,) in accepted] + [task.created_by]


def update_task(task_id, data, actor_id):
    """Apply a partial update.

    A status change stages a system comment in the same transaction;
    entering ``done`` stamps completed_at once.
    """
    task = get_task(task_id)
    fields = _clean_payload(data, creating=False)
    _check_dates(
        fields.get("start_date", task.start_date),
        fields.get("due_date", task.due_date),
    )
    _check_relations(fields, task_id=task.id)
    _resolve_workflow(fields, task)

    old_status = task.status
    old_assignee = task.assigned_to
    for key, value in fields.items():
        setattr(task, key, value)

    status_changed = task.status != old_status
    if status_changed:
        add_system_comment(
            task,
            f"Status changed from {old_status} to {task.status}",
            {"old_status": old_status, "new_status": task.status},
            actor_id,
        )
        if task.status == "done":
            task.completed_at = utcnow()

    assignee_changed = task.assigned_to is not None and task.assigned_to != old_assignee
    if assignee_changed:
        upsert_assignment(task.id, task.assigned_to, "assignee", 100, "accepted", actor_id)

    commit_or_raise("Task")
    logger.info(
        "Task updated id=%s fields=%s", task.id, sorted(fields),
        extra={"task_id": task.id, "user_id": actor_id},
    )
    if status_changed:
        logger.info(
            "Task status %s -> %s id=%s", old_status, task.status, task.id,
            extra={"task_id": task.id, "user_id": actor_id},
        )
        NotificationService.broadcast_safely(
            _status_recipients(task),
            task.id,
            "status_changed",
            f"Status changed: {task.title}",
            f"Task \"{task.title}\" moved from {old_status} to {task.status}.",
            exclude=actor_id,
        )
    if assignee_changed:
        notify_assigned(task, task.assigned_to, "assignee", actor_id)
    return task


def archive_task(task_id, actor_id):
    """Archive (the only delete path). Re-archiving keeps the first stamp."""
    task = get_task(task_id)
    if task.is_archived:
        return task
    task.is_archived = True
    task.archived_at = utcnow()
    task.archived_by = actor_id
    commit_or_raise("Task")
    logger.info("Task archived id=%s", task.id, extra={"task_id": task.id, "user_id": actor_id})
    return task


def restore_task(task_id, actor_id):
    task = get_task(task_id)
    if not task.is_archived:
        return task
    task.is_archived = False
    task.archived_at = None
    task.archived_by = None
    commit_or_raise("Task")
    logger.info("Task restored id=%s", task.id, extra={"task_id": task.id, "user_id": actor_id})
    return task


# ═════════════════════════════════════════════════════════════════════════════
# Query & aggregation
# ═════════════════════════════════════════════════════════════════════════════


def compute_urgency(due_date, status, on=None):
    """Derived due-date risk: overdue | due_today | due_soon | normal."""
    if due_date is None or status in CLOSED_STATUSES:
        return "normal"
    on = on or today()
    delta = (due_date - on).days
    if delta < 0:
        return "overdue"
    if delta == 0:
        return "due_today"
    if delta <= DUE_SOON_DAYS:
        return "due_soon"
    return "normal"


def _like(term):
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _text_match(term):
    pattern = _like(term)
    return or_(
        Task.title.ilike(pattern, escape="\\"),
        Task.description.ilike(pattern, escape="\\"),
    )


def _assigned_to_clause(user_id):
    accepted = exists(
        select(TaskAssignment.id).where(
            TaskAssignment.task_id == Task.id,
            TaskAssignment.user_id == user_id,
            TaskAssignment.status == "accepted",
        )
    )
    return or_(Task.assigned_to == user_id, accepted)


def _int_arg(value, name, minimum, maximum=None, default=None):
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer", details={name: "integer"}) from None
    if number < minimum or (maximum is not None and number > maximum):
        bound = f"between {minimum} and {maximum}" if maximum is not None else f">= {minimum}"
        raise ValidationError(f"{name} out of range", details={name: bound})
    return number


def _filter_query(filters):
    q = Task.query
    if not filters.get("include_archived"):
        q = q.filter(Task.is_archived.is_(False))
    for field, allowed in (("status", TASK_STATUSES), ("priority", TASK_PRIORITIES)):
        value = filters.get(field)
        if value:
            if value not in allowed:
                raise ValidationError(f"Invalid {field} filter", details={field: f"must be one of {sorted(allowed)}"})
            q = q.filter(getattr(Task, field) == value)
    assigned_to = _int_arg(filters.get("assigned_to"), "assigned_to", 1)
    if assigned_to is not None:
        q = q.filter(_assigned_to_clause(assigned_to))
    for field in ("project_id", "company_id"):
        value = _int_arg(filters.get(field), field, 1)
        if value is not None:
            q = q.filter(getattr(Task, field) == value)
    search = (filters.get("search") or "").strip()
    for term in search.split():
        q = q.filter(_text_match(term))
    return q


def _order_clause(sort_by, sort_order):
    if sort_by not in SORT_FIELDS:
        raise ValidationError("Invalid sort field", details={"sort_by": f"must be one of {sorted(SORT_FIELDS)}"})
    if sort_order not in ("asc", "desc"):
        raise ValidationError("Invalid sort order", details={"sort_order": "asc or desc"})
    if sort_by == "priority":
        column = case(PRIORITY_RANK, value=Task.priority, else_=0)
    else:
        column = getattr(Task, sort_by)
    if sort_order == "desc":
        return [column.desc(), Task.id.desc()]
    return [column.asc(), Task.id.asc()]


def _counts_by_task(model, task_ids, *extra):
    rows = (
        db.session.query(model.task_id, func.count(model.id))
        .filter(model.task_id.in_(task_ids), *extra)
        .group_by(model.task_id)
        .all()
    )
    return dict(rows)


def list_tasks(filters=None, sort_by="created_at", sort_order="desc", page=1, limit=DEFAULT_PAGE_LIMIT):
    """Filtered, sorted page of tasks plus ``{page, limit, total, pages}``.

    ``total`` is counted over the same predicate as the page; ``id`` breaks
    sort ties so consecutive pages never overlap.
    """
    filters = filters or {}
    page = _int_arg(page, "page", 1, default=1)
    limit = _int_arg(limit, "limit", 1, MAX_PAGE_LIMIT, default=DEFAULT_PAGE_LIMIT)
    order = _order_clause(sort_by or "created_at", (sort_order or "desc").lower())

    q = _filter_query(filters)
    total = q.order_by(None).count()
    tasks = q.order_by(*order).limit(limit).offset((page - 1) * limit).all()

    ids = [t.id for t in tasks]
    comment_counts = _counts_by_task(TaskComment, ids, TaskComment.is_deleted.is_(False)) if ids else {}
    attachment_counts = _counts_by_task(TaskAttachment, ids) if ids else {}
    subtask_counts = {}
    if ids:
        subtask_counts = dict(
            db.session.query(Task.parent_task_id, func.count(Task.id))
            .filter(Task.parent_task_id.in_(ids))
            .group_by(Task.parent_task_id)
            .all()
        )

    on = today()
    items = []
    for t in tasks:
        d = t.to_dict()
        d["urgency_status"] = compute_urgency(t.due_date, t.status, on)
        d["comments_count"] = comment_counts.get(t.id, 0)
        d["attachments_count"] = attachment_counts.get(t.id, 0)
        d["subtasks_count"] = subtask_counts.get(t.id, 0)
        items.append(d)

    return {
        "tasks": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }


def search_tasks(query, limit=SEARCH_DEFAULT_LIMIT):
    """Quick search over non-archived titles and descriptions."""
    text = (query or "").strip()
    if len(text) < SEARCH_MIN_LENGTH:
        return []
    limit = _int_arg(limit, "limit", 1, SEARCH_MAX_LIMIT, default=SEARCH_DEFAULT_LIMIT)
    pattern = _like(text)
    title_hit = Task.title.ilike(pattern, escape="\\")
    rows = (
        Task.query
        .filter(Task.is_archived.is_(False), _text_match(text))
        .order_by(case((title_hit, 0), else_=1), Task.updated_at.desc(), Task.id.desc())
        .limit(limit)
        .all()
    )
    on = today()
    return [
        {
            "id": t.id,
            "title": t.title,
            "status": t.status,
            "priority": t.priority,
            "due_date": t.due_date.isoformat() if t.due_date else None,
            "urgency_status": compute_urgency(t.due_date, t.status, on),
        }
        for t in rows
    ]


def _user_scope(user_id):
    any_assignment = exists(
        select(TaskAssignment.id).where(
            TaskAssignment.task_id == Task.id,
            TaskAssignment.user_id == user_id,
        )
    )
    return or_(Task.created_by == user_id, Task.assigned_to == user_id, any_assignment)


def get_stats(user_id=None):
    """Aggregate counts, optionally scoped to one user's tasks/assignments."""
    scope = _user_scope(user_id) if user_id is not None else true()
    live = and_(scope, Task.is_archived.is_(False))
    week_start = datetime.combine(today() - timedelta(days=7), time.min, tzinfo=timezone.utc)

    by_status = {s: 0 for s in sorted(TASK_STATUSES)}
    by_status.update(dict(
        db.session.query(Task.status, func.count(Task.id)).filter(live).group_by(Task.status).all()
    ))
    by_priority = {p: 0 for p in sorted(TASK_PRIORITIES, key=PRIORITY_RANK.get)}
    by_priority.update(dict(
        db.session.query(Task.priority, func.count(Task.id)).filter(live).group_by(Task.priority).all()
    ))

    def count(*criteria):
        return db.session.query(func.count(Task.id)).filter(*criteria).scalar() or 0

    scoped_task_ids = select(Task.id).where(scope)
    comments_this_week = (
        db.session.query(func.count(TaskComment.id))
        .filter(
            TaskComment.created_at >= week_start,
            TaskComment.is_deleted.is_(False),
            TaskComment.task_id.in_(scoped_task_ids),
        )
        .scalar()
    ) or 0
    active_users = (
        db.session.query(func.count(func.distinct(TaskAssignment.user_id)))
        .filter(
            TaskAssignment.assigned_at >= week_start,
            TaskAssignment.task_id.in_(scoped_task_ids),
        )
        .scalar()
    ) or 0

    return {
        "user_id": user_id,
        "total": count(live),
        "by_status": by_status,
        "by_priority": by_priority,
        "overdue": count(live, Task.due_date < today(), Task.status.notin_(CLOSED_STATUSES)),
        "archived": count(scope, Task.is_archived.is_(True)),
        "tasks_created_this_week": count(live, Task.created_at >= week_start),
        "tasks_completed_this_week": count(scope, Task.completed_at >= week_start),
        "comments_this_week": comments_this_week,
        "active_users_this_week": active_users,
    }
