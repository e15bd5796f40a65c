"""
Workflow Catalog — Service Layer.

Business logic for:
    - Process-wide workflow snapshot: loaded once, shared by all requests
    - Step validation:   current_workflow_step must be a step of the workflow
    - Apply workflow:    pin a task to a workflow's first step
    - Task templates:    read-only defaults for new tasks

Task operations only READ the catalog. Changing workflows is an
administrative path (seed / migration) that must call
``WorkflowCatalog.invalidate()`` afterwards.
"""

import logging
import threading
from dataclasses import dataclass

from taskhub.core.exceptions import NotFoundError, ValidationError
from taskhub.models import db
from taskhub.models.task import Task
from taskhub.models.workflow import TaskTemplate, Workflow, seed_default_workflows
from taskhub.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepSnapshot:
    step_number: int
    step_name: str
    step_type: str
    sla_hours: int | None

    def to_dict(self) -> dict:
        return {
            "step_number": self.step_number,
            "step_name": self.step_name,
            "step_type": self.step_type,
            "sla_hours": self.sla_hours,
        }


@dataclass(frozen=True)
class WorkflowSnapshot:
    id: int
    name: str
    description: str
    steps: tuple[StepSnapshot, ...]

    @property
    def first_step(self) -> StepSnapshot | None:
        return self.steps[0] if self.steps else None

    def step(self, step_number: int) -> StepSnapshot | None:
        for s in self.steps:
            if s.step_number == step_number:
                return s
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "steps": [s.to_dict() for s in self.steps],
        }


class WorkflowCatalog:
    """Immutable, process-wide snapshot of the active workflows.

    Lazily loaded on first use under a lock; readers never see a partially
    built catalog because the dict is swapped in whole.
    """

    _lock = threading.Lock()
    _workflows: dict[int, WorkflowSnapshot] | None = None

    @classmethod
    def _load(cls) -> dict[int, WorkflowSnapshot]:
        rows = (
            Workflow.query
            .filter_by(is_active=True)
            .order_by(Workflow.name)
            .all()
        )
        snapshot = {}
        for wf in rows:
            steps = tuple(
                StepSnapshot(s.step_number, s.step_name, s.step_type, s.sla_hours)
                for s in sorted(wf.steps, key=lambda s: s.step_number)
            )
            snapshot[wf.id] = WorkflowSnapshot(wf.id, wf.name, wf.description or "", steps)
        logger.info("Workflow catalog loaded: %d active workflows", len(snapshot))
        return snapshot

    @classmethod
    def all(cls) -> dict[int, WorkflowSnapshot]:
        workflows = cls._workflows
        if workflows is None:
            with cls._lock:
                if cls._workflows is None:
                    cls._workflows = cls._load()
                workflows = cls._workflows
        return workflows

    @classmethod
    def get(cls, workflow_id: int) -> WorkflowSnapshot | None:
        return cls.all().get(workflow_id)

    @classmethod
    def invalidate(cls) -> None:
        """Drop the snapshot; the next read reloads from the store."""
        with cls._lock:
            cls._workflows = None


# ── Catalog reads ────────────────────────────────────────────────────────────


def list_workflows() -> list[dict]:
    """Active workflows ordered by name, each with its ordered steps."""
    return [
        wf.to_dict()
        for wf in sorted(WorkflowCatalog.all().values(), key=lambda w: w.name)
    ]


def get_workflow(workflow_id: int) -> WorkflowSnapshot:
    wf = WorkflowCatalog.get(workflow_id)
    if wf is None:
        raise NotFoundError("Workflow", workflow_id)
    return wf


def validate_step(workflow_id: int | None, step_number) -> None:
    """Raise ValidationError unless ``step_number`` is a step of the workflow."""
    if step_number is None:
        return
    if workflow_id is None:
        raise ValidationError(
            "current_workflow_step requires a workflow",
            details={"current_workflow_step": "task has no workflow"},
        )
    wf = WorkflowCatalog.get(workflow_id)
    if wf is None:
        raise ValidationError(
            "Unknown workflow", details={"workflow_id": f"no active workflow {workflow_id}"},
        )
    if isinstance(step_number, bool) or not isinstance(step_number, int) or wf.step(step_number) is None:
        raise ValidationError(
            "Workflow step out of range",
            details={
                "current_workflow_step": (
                    f"must be one of {[s.step_number for s in wf.steps]} for workflow '{wf.name}'"
                ),
            },
        )


def first_step_number(workflow_id: int) -> int | None:
    wf = WorkflowCatalog.get(workflow_id)
    if wf is None:
        raise ValidationError(
            "Unknown workflow", details={"workflow_id": f"no active workflow {workflow_id}"},
        )
    step = wf.first_step
    return step.step_number if step else None


def describe_step(workflow_id: int | None, step_number: int | None) -> dict:
    """Workflow name and current step name/type for task detail views."""
    wf = WorkflowCatalog.get(workflow_id) if workflow_id is not None else None
    step = wf.step(step_number) if wf is not None and step_number is not None else None
    return {
        "workflow_name": wf.name if wf else None,
        "current_step_name": step.step_name if step else None,
        "current_step_type": step.step_type if step else None,
    }


# ── Apply ────────────────────────────────────────────────────────────────────


def apply_workflow(task_id: int, workflow_id: int, actor_id: int) -> Task:
    """Pin a task to ``workflow_id`` and reset it to the first step.

    Raises:
        NotFoundError: unknown task or workflow.
    """
    task = db.session.get(Task, task_id)
    if task is None:
        raise NotFoundError("Task", task_id)
    wf = get_workflow(workflow_id)
    first = wf.first_step
    task.workflow_id = wf.id
    task.current_workflow_step = first.step_number if first else None
    commit_or_raise("Task")
    logger.info(
        "Workflow applied task_id=%s workflow_id=%s step=%s by=%s",
        task.id, wf.id, task.current_workflow_step, actor_id,
        extra={"task_id": task.id, "user_id": actor_id},
    )
    return task


# ── Templates ────────────────────────────────────────────────────────────────


def list_templates() -> list[dict]:
    rows = (
        TaskTemplate.query
        .filter_by(is_active=True)
        .order_by(TaskTemplate.name)
        .all()
    )
    return [t.to_dict() for t in rows]


def get_template(template_id: int) -> TaskTemplate:
    tpl = db.session.get(TaskTemplate, template_id)
    if tpl is None or not tpl.is_active:
        raise NotFoundError("TaskTemplate", template_id)
    return tpl


# ── Administration ───────────────────────────────────────────────────────────


def seed_catalog() -> int:
    """Install the default workflows/templates and refresh the snapshot."""
    created = seed_default_workflows()
    commit_or_raise("Workflow")
    WorkflowCatalog.invalidate()
    logger.info("Seeded %s workflows", created)
    return created
