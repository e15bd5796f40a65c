"""
Task Tracking Engine
Task domain models.

Models:
    - Task:            unit of work with lifecycle, hierarchy and open-schema fields
    - TaskAssignment:  (task, user, role) binding with acceptance status
    - TaskComment:     append-only audit / discussion log entry (soft-deletable)
    - TaskDependency:  predecessor → successor edge between tasks
    - TaskAttachment:  metadata of a file whose bytes live in the external blob store

Architecture:
    Task ──1:N──▶ Task            (via parent_task_id, acyclic)
    Task ──N:M──▶ Task            (via TaskDependency, acyclic)
    Task ──1:N──▶ TaskAssignment  (unique per user + role)
    Task ──1:N──▶ TaskComment     (threaded via parent_comment_id)
    Task ──1:N──▶ TaskAttachment
    Task ──N:1──▶ Workflow        (current_workflow_step = WorkflowStep.step_number)

Lifecycle:
    Task: todo | in_progress | review | testing | done | cancelled | blocked
          (permissive: any status may follow any other)
          never hard-deleted — archived / restored via is_archived
"""

from datetime import datetime, timezone

from taskhub.models import db
from taskhub.models.soft_delete import SoftDeleteMixin


# ── Constants ────────────────────────────────────────────────────────────────

TASK_TYPES = {"task", "milestone", "epic", "story"}

TASK_PRIORITIES = {"low", "medium", "high", "urgent", "critical"}

TASK_STATUSES = {
    "todo", "in_progress", "review", "testing",
    "done", "cancelled", "blocked",
}

# Statuses for which a past due date is no longer a concern.
CLOSED_STATUSES = {"done", "cancelled"}

RISK_LEVELS = {"low", "medium", "high"}

COMPLEXITIES = {"simple", "medium", "complex"}

ASSIGNMENT_ROLES = {"assignee", "reviewer", "observer", "approver"}

ASSIGNMENT_STATUSES = {"pending", "accepted", "declined"}

COMMENT_TYPES = {"comment", "status_change", "assignment", "time_log", "attachment"}

DEPENDENCY_TYPES = {
    "finish_to_start", "start_to_start",
    "finish_to_finish", "start_to_finish",
}

URGENCY_STATUSES = ("overdue", "due_today", "due_soon", "normal")

TITLE_MAX_LENGTH = 255
CATEGORY_MAX_LENGTH = 100


def _now():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Graph walkers ────────────────────────────────────────────────────────────


def validate_no_cycle(session, successor_id, new_predecessor_id):
    """
    Check that adding new_predecessor_id → successor_id does not create a cycle.

    Uses iterative DFS from new_predecessor_id, walking backwards through
    existing predecessor chains.  Returns True if safe, False if the walk
    reaches successor_id (or the edge is a self-loop).
    """
    if successor_id == new_predecessor_id:
        return False

    visited = set()
    stack = [new_predecessor_id]

    while stack:
        current = stack.pop()
        if current == successor_id:
            return False
        if current in visited:
            continue
        visited.add(current)

        rows = (
            session.query(TaskDependency.predecessor_task_id)
            .filter(TaskDependency.successor_task_id == current)
            .all()
        )
        for (pred_id,) in rows:
            stack.append(pred_id)

    return True


def validate_no_parent_cycle(session, task_id, new_parent_id):
    """
    Check that setting task_id.parent_task_id = new_parent_id keeps the
    hierarchy a forest.

    Walks the ancestry of new_parent_id upwards; returns False if task_id
    appears in it (or the task would be its own parent).
    """
    if task_id is None or new_parent_id is None:
        return True
    if task_id == new_parent_id:
        return False

    visited = set()
    current = new_parent_id
    while current is not None:
        if current == task_id:
            return False
        if current in visited:
            # Pre-existing loop not involving task_id; stop walking.
            return True
        visited.add(current)
        current = session.query(Task.parent_task_id).filter(Task.id == current).scalar()
    return True


# ═════════════════════════════════════════════════════════════════════════════
# 1. Task
# ═════════════════════════════════════════════════════════════════════════════


class Task(db.Model):
    """
    Canonical task record.

    ``labels`` / ``custom_fields`` hold normalized open values (see
    ``taskhub.models.open_values``); ``tags`` is a de-duplicated list of strings.
    """

    __tablename__ = "tasks"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(TITLE_MAX_LENGTH), nullable=False)
    description = db.Column(db.Text, default="")
    category = db.Column(db.String(CATEGORY_MAX_LENGTH), nullable=True)
    type = db.Column(db.String(20), nullable=False, default="task")
    priority = db.Column(db.String(20), nullable=False, default="medium", index=True)
    status = db.Column(db.String(20), nullable=False, default="todo", index=True)

    # Schedule
    start_date = db.Column(db.Date, nullable=True)
    due_date = db.Column(db.Date, nullable=True, index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    estimated_hours = db.Column(db.Float, nullable=True)
    completion_percentage = db.Column(db.Integer, nullable=False, default=0)

    # Hierarchy
    parent_task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    epic_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )

    # External directory references (not owned here)
    project_id = db.Column(db.Integer, nullable=True, index=True)
    company_id = db.Column(db.Integer, nullable=True, index=True)
    etablissement_id = db.Column(db.Integer, nullable=True)

    # Ownership
    assigned_to = db.Column(db.Integer, nullable=True, index=True, comment="Primary assignee user id")
    created_by = db.Column(db.Integer, nullable=False)

    # Workflow
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("workflows.id", ondelete="SET NULL"), nullable=True,
    )
    current_workflow_step = db.Column(
        db.Integer, nullable=True, comment="WorkflowStep.step_number within workflow_id",
    )

    # Open-schema fields
    tags = db.Column(db.JSON, default=list)
    labels = db.Column(db.JSON, default=dict)
    custom_fields = db.Column(db.JSON, default=dict)

    # Agile / risk
    story_points = db.Column(db.Integer, nullable=True)
    business_value = db.Column(db.Integer, nullable=True)
    risk_level = db.Column(db.String(10), nullable=False, default="low")
    complexity = db.Column(db.String(10), nullable=False, default="simple")

    # Archive (the only delete path)
    is_archived = db.Column(db.Boolean, nullable=False, default=False, index=True)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)
    archived_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_now, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=_now, onupdate=_now)

    __table_args__ = (
        db.CheckConstraint(
            "completion_percentage >= 0 AND completion_percentage <= 100",
            name="ck_task_completion_range",
        ),
        db.CheckConstraint(
            "start_date IS NULL OR due_date IS NULL OR due_date >= start_date",
            name="ck_task_dates_ordered",
        ),
    )

    # ── Relationships ────────────────────────────────────────────────────
    assignments = db.relationship(
        "TaskAssignment", backref="task", lazy="dynamic",
        order_by="TaskAssignment.assigned_at",
    )
    comments = db.relationship(
        "TaskComment", backref="task", lazy="dynamic",
        order_by="TaskComment.created_at",
    )
    attachments = db.relationship(
        "TaskAttachment", backref="task", lazy="dynamic",
        order_by="TaskAttachment.uploaded_at",
    )
    subtasks = db.relationship(
        "Task", lazy="dynamic",
        foreign_keys=[parent_task_id],
        order_by="Task.id",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "type": self.type,
            "priority": self.priority,
            "status": self.status,
            "start_date": _iso(self.start_date),
            "due_date": _iso(self.due_date),
            "completed_at": _iso(self.completed_at),
            "estimated_hours": self.estimated_hours,
            "completion_percentage": self.completion_percentage,
            "parent_task_id": self.parent_task_id,
            "epic_id": self.epic_id,
            "project_id": self.project_id,
            "company_id": self.company_id,
            "etablissement_id": self.etablissement_id,
            "assigned_to": self.assigned_to,
            "workflow_id": self.workflow_id,
            "current_workflow_step": self.current_workflow_step,
            "tags": list(self.tags or []),
            "labels": dict(self.labels or {}),
            "custom_fields": dict(self.custom_fields or {}),
            "story_points": self.story_points,
            "business_value": self.business_value,
            "risk_level": self.risk_level,
            "complexity": self.complexity,
            "is_archived": self.is_archived,
            "archived_at": _iso(self.archived_at),
            "archived_by": self.archived_by,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def summary_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "completion_percentage": self.completion_percentage,
        }

    def __repr__(self):
        return f"<Task {self.id}: {self.title[:40]}>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. TaskAssignment
# ═════════════════════════════════════════════════════════════════════════════


class TaskAssignment(db.Model):
    """One user bound to one task in one role. Re-assigning updates in place."""

    __tablename__ = "task_assignments"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    user_id = db.Column(db.Integer, nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False, default="assignee")
    status = db.Column(db.String(20), nullable=False, default="pending")
    workload_percentage = db.Column(db.Integer, nullable=False, default=100)
    assigned_by = db.Column(db.Integer, nullable=False)
    assigned_at = db.Column(db.DateTime(timezone=True), default=_now, index=True)
    responded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        db.UniqueConstraint("task_id", "user_id", "role", name="uq_assignment_task_user_role"),
        db.CheckConstraint(
            "workload_percentage >= 1 AND workload_percentage <= 100",
            name="ck_assignment_workload_range",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "user_id": self.user_id,
            "role": self.role,
            "status": self.status,
            "workload_percentage": self.workload_percentage,
            "assigned_by": self.assigned_by,
            "assigned_at": _iso(self.assigned_at),
            "responded_at": _iso(self.responded_at),
        }


# ═════════════════════════════════════════════════════════════════════════════
# 3. TaskComment
# ═════════════════════════════════════════════════════════════════════════════


class TaskComment(SoftDeleteMixin, db.Model):
    """
    Audit / discussion entry on a task.

    System entries (``is_system``) are written by the engine itself, e.g. on
    status change, and carry structured ``system_data``. They are immutable.
    """

    __tablename__ = "task_comments"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    content = db.Column(db.Text, nullable=False)
    comment_type = db.Column(db.String(20), nullable=False, default="comment")
    is_internal = db.Column(db.Boolean, nullable=False, default=False)
    time_spent_minutes = db.Column(db.Integer, nullable=True)
    parent_comment_id = db.Column(
        db.Integer, db.ForeignKey("task_comments.id", ondelete="SET NULL"), nullable=True,
    )
    is_system = db.Column(db.Boolean, nullable=False, default=False)
    system_data = db.Column(db.JSON, nullable=True)
    created_by = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_now, index=True)

    parent_comment = db.relationship("TaskComment", remote_side=[id])

    def to_dict(self, include_parent=False):
        result = {
            "id": self.id,
            "task_id": self.task_id,
            "content": self.content,
            "comment_type": self.comment_type,
            "is_internal": self.is_internal,
            "time_spent_minutes": self.time_spent_minutes,
            "parent_comment_id": self.parent_comment_id,
            "is_system": self.is_system,
            "system_data": self.system_data,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
        }
        if include_parent:
            parent = self.parent_comment
            result["parent_comment"] = (
                {"id": parent.id, "content": parent.content, "created_by": parent.created_by}
                if parent is not None else None
            )
        return result


# ═════════════════════════════════════════════════════════════════════════════
# 4. TaskDependency
# ═════════════════════════════════════════════════════════════════════════════


class TaskDependency(db.Model):
    """Directed edge predecessor → successor. The edge set is kept acyclic."""

    __tablename__ = "task_dependencies"

    id = db.Column(db.Integer, primary_key=True)
    predecessor_task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    successor_task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    dependency_type = db.Column(db.String(30), nullable=False, default="finish_to_start")
    lag_days = db.Column(db.Integer, nullable=False, default=0)
    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_now)

    __table_args__ = (
        db.UniqueConstraint(
            "predecessor_task_id", "successor_task_id", name="uq_dependency_pair",
        ),
        db.CheckConstraint(
            "predecessor_task_id <> successor_task_id", name="ck_dependency_no_self_loop",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "predecessor_id": self.predecessor_task_id,
            "successor_id": self.successor_task_id,
            "dependency_type": self.dependency_type,
            "lag_days": self.lag_days,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
        }


# ═════════════════════════════════════════════════════════════════════════════
# 5. TaskAttachment
# ═════════════════════════════════════════════════════════════════════════════


class TaskAttachment(db.Model):
    """File metadata only; ``storage_key`` points into the external blob store."""

    __tablename__ = "task_attachments"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    file_name = db.Column(db.String(255), nullable=False)
    file_size = db.Column(db.Integer, nullable=False, default=0)
    mime_type = db.Column(db.String(100), nullable=False)
    storage_key = db.Column(db.String(500), nullable=True)
    description = db.Column(db.Text, nullable=True)
    uploaded_by = db.Column(db.Integer, nullable=False)
    uploaded_at = db.Column(db.DateTime(timezone=True), default=_now)

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "storage_key": self.storage_key,
            "description": self.description,
            "uploaded_by": self.uploaded_by,
            "uploaded_at": _iso(self.uploaded_at),
        }
