"""
Tests: Dependency graph and task hierarchy.

Covers:
    - validate_no_cycle / validate_no_parent_cycle graph walkers
    - add_dependency: self-loop, direct & transitive cycles, duplicates,
      unknown endpoints, type / lag validation
    - list_dependencies direction split, remove_dependency
"""

import pytest

from taskhub.core.exceptions import ConflictError, NotFoundError, ValidationError
from taskhub.models import db as _db
from taskhub.models.task import Task, TaskDependency, validate_no_cycle, validate_no_parent_cycle
from taskhub.services import dependency_service as deps


def _tasks(n):
    rows = [Task(title=f"T{i}", created_by=1) for i in range(1, n + 1)]
    _db.session.add_all(rows)
    _db.session.commit()
    return [t.id for t in rows]


# ═════════════════════════════════════════════════════════════════════════════
# Graph walkers
# ═════════════════════════════════════════════════════════════════════════════


class TestGraphWalkers:
    def test_self_edge_is_a_cycle(self):
        (a,) = _tasks(1)
        assert validate_no_cycle(_db.session, a, a) is False

    def test_chain_detected(self):
        a, b, c = _tasks(3)
        deps.add_dependency(a, b)
        deps.add_dependency(b, c)
        # c → a would close a → b → c → a
        assert validate_no_cycle(_db.session, a, c) is False
        assert validate_no_cycle(_db.session, c, a) is True

    def test_parent_walk(self):
        a, b, c = _tasks(3)
        _db.session.get(Task, b).parent_task_id = a
        _db.session.get(Task, c).parent_task_id = b
        _db.session.commit()
        assert validate_no_parent_cycle(_db.session, a, c) is False
        assert validate_no_parent_cycle(_db.session, c, a) is True
        assert validate_no_parent_cycle(_db.session, a, a) is False
        assert validate_no_parent_cycle(_db.session, None, a) is True


# ═════════════════════════════════════════════════════════════════════════════
# add_dependency
# ═════════════════════════════════════════════════════════════════════════════


class TestAddDependency:
    def test_creates_edge_with_defaults(self):
        a, b = _tasks(2)
        dep = deps.add_dependency(a, b, actor_id=9)
        assert dep.predecessor_task_id == a
        assert dep.successor_task_id == b
        assert dep.dependency_type == "finish_to_start"
        assert dep.lag_days == 0
        assert dep.created_by == 9

    def test_self_loop_rejected(self):
        (a,) = _tasks(1)
        with pytest.raises(ValidationError):
            deps.add_dependency(a, a)
        assert TaskDependency.query.count() == 0

    def test_reverse_edge_rejected(self):
        a, b = _tasks(2)
        deps.add_dependency(a, b)
        with pytest.raises(ValidationError) as exc:
            deps.add_dependency(b, a)
        assert "predecessor_id" in exc.value.details
        assert TaskDependency.query.count() == 1

    def test_transitive_cycle_rejected(self):
        a, b, c = _tasks(3)
        deps.add_dependency(a, b)
        deps.add_dependency(b, c)
        with pytest.raises(ValidationError):
            deps.add_dependency(c, a)

    def test_diamond_is_not_a_cycle(self):
        a, b, c, d = _tasks(4)
        deps.add_dependency(a, b)
        deps.add_dependency(a, c)
        deps.add_dependency(b, d)
        deps.add_dependency(c, d)
        assert TaskDependency.query.count() == 4

    def test_duplicate_pair_conflicts(self):
        a, b = _tasks(2)
        deps.add_dependency(a, b)
        with pytest.raises(ConflictError):
            deps.add_dependency(a, b, "start_to_start")

    def test_unknown_task(self):
        (a,) = _tasks(1)
        with pytest.raises(NotFoundError):
            deps.add_dependency(a, 999)
        with pytest.raises(NotFoundError):
            deps.add_dependency(999, a)

    @pytest.mark.parametrize("dep_type,lag", [
        ("blocks", 0),
        (["finish_to_start"], 0),
        ({"a": 1}, 0),
        ("finish_to_start", 1.5),
        ("finish_to_start", True),
        ("finish_to_start", 4000),
    ])
    def test_invalid_type_or_lag(self, dep_type, lag):
        a, b = _tasks(2)
        with pytest.raises(ValidationError):
            deps.add_dependency(a, b, dep_type, lag)

    def test_negative_lag_allowed(self):
        a, b = _tasks(2)
        assert deps.add_dependency(a, b, "start_to_start", -2).lag_days == -2


# ═════════════════════════════════════════════════════════════════════════════
# list / remove
# ═════════════════════════════════════════════════════════════════════════════


class TestListAndRemove:
    def test_split_by_direction(self):
        a, b, c = _tasks(3)
        deps.add_dependency(a, b)
        deps.add_dependency(b, c)
        listing = deps.list_dependencies(b)
        assert [d["predecessor_id"] for d in listing["predecessors"]] == [a]
        assert [d["successor_id"] for d in listing["successors"]] == [c]

    def test_list_unknown_task(self):
        with pytest.raises(NotFoundError):
            deps.list_dependencies(404)

    def test_remove_then_reverse_allowed(self):
        a, b = _tasks(2)
        dep = deps.add_dependency(a, b)
        deps.remove_dependency(dep.id, actor_id=1)
        assert TaskDependency.query.count() == 0
        deps.add_dependency(b, a)

    def test_remove_unknown(self):
        with pytest.raises(NotFoundError):
            deps.remove_dependency(12345)
