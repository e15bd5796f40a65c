"""
Dependency Graph — Service Layer.

Edges predecessor → successor between tasks. The edge set is kept acyclic:
every insert walks the existing predecessor chain before accepting the edge.

Concurrency: both endpoint rows are locked (``SELECT … FOR UPDATE``, id
order) before the cycle walk, so two requests racing to add 1→2 and 2→1
serialize and the second one sees the first edge. The unique pair
constraint catches duplicate inserts the lock did not order.
"""

import logging

from sqlalchemy import or_, select

from taskhub.core.exceptions import ConflictError, NotFoundError, ValidationError
from taskhub.models import db
from taskhub.models.task import (
    DEPENDENCY_TYPES,
    Task,
    TaskDependency,
    validate_no_cycle,
    validate_no_parent_cycle,
)
from taskhub.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

MAX_LAG_DAYS = 3650


def _lock_tasks(*task_ids: int) -> dict[int, Task]:
    stmt = (
        select(Task)
        .where(Task.id.in_(task_ids))
        .order_by(Task.id)
        .with_for_update()
    )
    return {t.id: t for t in db.session.execute(stmt).scalars()}


def add_dependency(
    predecessor_id: int,
    successor_id: int,
    dependency_type: str = "finish_to_start",
    lag_days: int = 0,
    *,
    actor_id: int | None = None,
) -> TaskDependency:
    """
    Add a predecessor → successor edge with cycle detection.

    Raises:
        ValidationError: self-loop, cycle-forming edge, bad type or lag.
        NotFoundError: either task does not exist.
        ConflictError: the pair is already linked.
    """
    if not isinstance(dependency_type, str) or dependency_type not in DEPENDENCY_TYPES:
        raise ValidationError(
            f"Invalid dependency_type. Must be one of: {sorted(DEPENDENCY_TYPES)}",
            details={"dependency_type": f"must be one of {sorted(DEPENDENCY_TYPES)}"},
        )
    if isinstance(lag_days, bool) or not isinstance(lag_days, int) or abs(lag_days) > MAX_LAG_DAYS:
        raise ValidationError(
            "lag_days must be an integer",
            details={"lag_days": f"integer between -{MAX_LAG_DAYS} and {MAX_LAG_DAYS}"},
        )
    if predecessor_id == successor_id:
        raise ValidationError(
            "A task cannot depend on itself",
            details={"predecessor_id": "must differ from successor_id"},
        )

    tasks = _lock_tasks(predecessor_id, successor_id)
    if predecessor_id not in tasks:
        db.session.rollback()
        raise NotFoundError("Task", predecessor_id)
    if successor_id not in tasks:
        db.session.rollback()
        raise NotFoundError("Task", successor_id)

    existing = TaskDependency.query.filter_by(
        predecessor_task_id=predecessor_id, successor_task_id=successor_id,
    ).first()
    if existing:
        db.session.rollback()
        raise ConflictError("TaskDependency", "predecessor_id,successor_id", f"{predecessor_id}->{successor_id}")

    if not validate_no_cycle(db.session, successor_id, predecessor_id):
        db.session.rollback()
        raise ValidationError(
            "Adding this dependency would create a cycle",
            details={"predecessor_id": f"task {successor_id} already precedes task {predecessor_id}"},
        )

    dep = TaskDependency(
        predecessor_task_id=predecessor_id,
        successor_task_id=successor_id,
        dependency_type=dependency_type,
        lag_days=lag_days,
        created_by=actor_id,
    )
    db.session.add(dep)
    commit_or_raise("TaskDependency")
    logger.info(
        "Dependency added id=%s %s->%s type=%s",
        dep.id, predecessor_id, successor_id, dependency_type,
        extra={"task_id": successor_id, "user_id": actor_id},
    )
    return dep


def list_dependencies(task_id: int) -> dict:
    """Edges touching ``task_id``, split by direction."""
    if db.session.get(Task, task_id) is None:
        raise NotFoundError("Task", task_id)
    edges = (
        TaskDependency.query
        .filter(or_(
            TaskDependency.predecessor_task_id == task_id,
            TaskDependency.successor_task_id == task_id,
        ))
        .order_by(TaskDependency.id)
        .all()
    )
    return {
        "predecessors": [e.to_dict() for e in edges if e.successor_task_id == task_id],
        "successors": [e.to_dict() for e in edges if e.predecessor_task_id == task_id],
    }


def remove_dependency(dependency_id: int, *, actor_id: int | None = None) -> None:
    dep = db.session.get(TaskDependency, dependency_id)
    if dep is None:
        raise NotFoundError("TaskDependency", dependency_id)
    db.session.delete(dep)
    commit_or_raise("TaskDependency")
    logger.info(
        "Dependency removed id=%s", dependency_id,
        extra={"task_id": dep.successor_task_id, "user_id": actor_id},
    )


def validate_parent(task_id: int | None, parent_id: int | None) -> None:
    """Raise unless ``parent_id`` exists and keeps the hierarchy acyclic."""
    if parent_id is None:
        return
    if db.session.get(Task, parent_id) is None:
        raise ValidationError(
            "Parent task not found", details={"parent_task_id": f"no task with id {parent_id}"},
        )
    if not validate_no_parent_cycle(db.session, task_id, parent_id):
        raise ValidationError(
            "parent_task_id would create a cycle in the task hierarchy",
            details={"parent_task_id": "cycle"},
        )
