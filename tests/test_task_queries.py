"""
Tests: Task listing, search, urgency and statistics.

Covers:
    - list_tasks: archived exclusion, filters, sort validation, priority rank
      ordering, stable non-overlapping pagination, per-task counters
    - compute_urgency boundaries, urgency on list rows
    - search_tasks: minimum length, title-first ordering, archived exclusion
    - get_stats: shape, global vs per-user scope, weekly activity counters
"""

from datetime import timedelta

import pytest

import taskhub.services.task_service as svc
from taskhub.core.exceptions import ValidationError
from taskhub.models import db as _db
from taskhub.models.task import Task
from taskhub.services import assignment_service, attachment_service, comment_service
from taskhub.utils.helpers import today


def _create(actor_id=1, **fields):
    payload = {"title": "Task"}
    payload.update(fields)
    return svc.create_task(payload, actor_id)


def _bulk(n, **columns):
    rows = [Task(title=f"Bulk {i:02d}", created_by=1, **columns) for i in range(n)]
    _db.session.add_all(rows)
    _db.session.commit()
    return rows


def _ids(result):
    return [t["id"] for t in result["tasks"]]


# ═════════════════════════════════════════════════════════════════════════════
# list_tasks
# ═════════════════════════════════════════════════════════════════════════════


class TestListTasks:
    def test_empty_store(self):
        result = svc.list_tasks()
        assert result["tasks"] == []
        assert result["pagination"] == {"page": 1, "limit": 20, "total": 0, "pages": 0}

    def test_archived_hidden_unless_requested(self):
        live = _create(title="Live")
        gone = _create(title="Gone")
        svc.archive_task(gone.id, actor_id=1)

        assert _ids(svc.list_tasks()) == [live.id]
        assert sorted(_ids(svc.list_tasks({"include_archived": True}))) == sorted([live.id, gone.id])

    def test_pagination_is_stable_and_complete(self):
        rows = _bulk(45)
        seen = []
        for page in (1, 2, 3):
            result = svc.list_tasks(page=page, limit=20)
            assert result["pagination"]["total"] == 45
            assert result["pagination"]["pages"] == 3
            seen.extend(_ids(result))
        assert len(seen) == 45
        assert set(seen) == {t.id for t in rows}

    def test_page_past_the_end_is_empty(self):
        _bulk(3)
        result = svc.list_tasks(page=5, limit=2)
        assert result["tasks"] == []
        assert result["pagination"]["total"] == 3
        assert result["pagination"]["pages"] == 2

    def test_total_respects_filters(self):
        _bulk(4, status="done")
        _bulk(6, status="todo")
        result = svc.list_tasks({"status": "done"}, limit=2)
        assert result["pagination"]["total"] == 4
        assert all(t["status"] == "done" for t in result["tasks"])

    @pytest.mark.parametrize("kwargs,field", [
        ({"limit": 0}, "limit"),
        ({"limit": 101}, "limit"),
        ({"page": 0}, "page"),
        ({"page": "abc"}, "page"),
        ({"sort_by": "secret"}, "sort_by"),
        ({"sort_order": "sideways"}, "sort_order"),
        ({"filters": {"status": "finished"}}, "status"),
        ({"filters": {"assigned_to": "me"}}, "assigned_to"),
    ])
    def test_invalid_query_parameters(self, kwargs, field):
        with pytest.raises(ValidationError) as exc:
            svc.list_tasks(**kwargs)
        assert field in exc.value.details

    def test_priority_sort_uses_rank_not_alphabet(self):
        for priority in ("medium", "critical", "low", "urgent", "high"):
            _create(title=priority, priority=priority)
        result = svc.list_tasks(sort_by="priority", sort_order="desc")
        assert [t["priority"] for t in result["tasks"]] == ["critical", "urgent", "high", "medium", "low"]

    def test_title_sort_ascending(self):
        for title in ("Charlie", "alpha", "Bravo"):
            _create(title=title)
        result = svc.list_tasks(sort_by="title", sort_order="asc")
        assert [t["title"] for t in result["tasks"]] == ["Bravo", "Charlie", "alpha"]

    def test_filter_by_project_and_priority(self):
        hit = _create(project_id=3, priority="high")
        _create(project_id=3, priority="low")
        _create(project_id=4, priority="high")
        result = svc.list_tasks({"project_id": "3", "priority": "high"})
        assert _ids(result) == [hit.id]

    def test_search_filter_requires_every_term(self):
        hit = _create(title="Fix login page", description="users cannot sign in")
        _create(title="Fix logout")
        assert _ids(svc.list_tasks({"search": "fix sign"})) == [hit.id]

    def test_search_filter_escapes_wildcards(self):
        hit = _create(title="Reach 100% coverage")
        _create(title="Reach 100 users")
        assert _ids(svc.list_tasks({"search": "100%"})) == [hit.id]

    def test_assigned_to_matches_direct_and_accepted_assignments(self):
        direct = _create(title="Direct", assigned_to=5)
        via_assignment = _create(title="Via assignment")
        pending_only = _create(title="Pending only")

        assignment_service.assign(via_assignment.id, 5, actor_id=1)
        assignment_service.respond(via_assignment.id, "assignee", True, actor_id=5)
        assignment_service.assign(pending_only.id, 5, actor_id=1)

        result = svc.list_tasks({"assigned_to": 5})
        assert sorted(_ids(result)) == sorted([direct.id, via_assignment.id])

    def test_declined_assignment_does_not_match(self):
        task = _create()
        assignment_service.assign(task.id, 6, actor_id=1)
        assignment_service.respond(task.id, "assignee", False, actor_id=6)
        assert svc.list_tasks({"assigned_to": 6})["tasks"] == []

    def test_rows_carry_counters(self):
        parent = _create(title="Parent")
        _create(title="Child", parent_task_id=parent.id)
        comment_service.add_comment(parent.id, {"content": "keep"}, actor_id=1)
        dropped = comment_service.add_comment(parent.id, {"content": "drop"}, actor_id=1)
        comment_service.soft_delete_comment(parent.id, dropped.id, actor_id=1)
        attachment_service.add_attachment(
            parent.id, {"file_name": "a.pdf", "file_size": 10, "mime_type": "application/pdf"}, actor_id=1,
        )

        row = next(t for t in svc.list_tasks()["tasks"] if t["id"] == parent.id)
        assert row["subtasks_count"] == 1
        assert row["attachments_count"] == 1
        # "keep" plus the attachment's system entry
        assert row["comments_count"] == 2


# ═════════════════════════════════════════════════════════════════════════════
# Urgency
# ═════════════════════════════════════════════════════════════════════════════


class TestUrgency:
    @pytest.mark.parametrize("offset,status,expected", [
        (0, "todo", "due_today"),
        (-1, "in_progress", "overdue"),
        (-1, "done", "normal"),
        (-10, "cancelled", "normal"),
        (1, "todo", "due_soon"),
        (3, "review", "due_soon"),
        (4, "todo", "normal"),
    ])
    def test_compute_urgency(self, offset, status, expected):
        on = today()
        assert svc.compute_urgency(on + timedelta(days=offset), status, on) == expected

    def test_no_due_date_is_normal(self):
        assert svc.compute_urgency(None, "todo") == "normal"

    def test_list_rows_and_detail_carry_urgency(self):
        on = today()
        overdue = _create(title="Late", status="in_progress", due_date=(on - timedelta(days=1)).isoformat())
        soon = _create(title="Soon", due_date=(on + timedelta(days=2)).isoformat())
        closed = _create(title="Closed", status="done", due_date=(on - timedelta(days=1)).isoformat())

        by_id = {t["id"]: t["urgency_status"] for t in svc.list_tasks()["tasks"]}
        assert by_id[overdue.id] == "overdue"
        assert by_id[soon.id] == "due_soon"
        assert by_id[closed.id] == "normal"
        assert svc.get_task_detail(overdue.id)["urgency_status"] == "overdue"


# ═════════════════════════════════════════════════════════════════════════════
# search_tasks
# ═════════════════════════════════════════════════════════════════════════════


class TestSearch:
    def test_short_query_returns_nothing(self):
        _create(title="B plan")
        assert svc.search_tasks("b") == []
        assert svc.search_tasks("  ") == []

    def test_title_matches_rank_before_description_matches(self):
        in_desc = _create(title="Quarterly numbers", description="budget draft")
        in_title = _create(title="Budget review")
        results = svc.search_tasks("budget")
        assert [r["id"] for r in results] == [in_title.id, in_desc.id]
        assert set(results[0]) == {"id", "title", "status", "priority", "due_date", "urgency_status"}

    def test_archived_tasks_excluded(self):
        task = _create(title="Budget archive")
        svc.archive_task(task.id, actor_id=1)
        assert svc.search_tasks("budget") == []

    def test_limit_bounds(self):
        _bulk(5)
        assert len(svc.search_tasks("bulk", limit=2)) == 2
        with pytest.raises(ValidationError):
            svc.search_tasks("bulk", limit=51)


# ═════════════════════════════════════════════════════════════════════════════
# get_stats
# ═════════════════════════════════════════════════════════════════════════════


class TestStats:
    def test_shape_on_empty_store(self):
        stats = svc.get_stats()
        assert stats["user_id"] is None
        assert stats["total"] == 0
        assert set(stats["by_status"]) == {
            "todo", "in_progress", "review", "testing", "done", "cancelled", "blocked",
        }
        assert all(v == 0 for v in stats["by_status"].values())
        assert list(stats["by_priority"]) == ["low", "medium", "high", "urgent", "critical"]
        for key in (
            "overdue", "archived", "tasks_created_this_week", "tasks_completed_this_week",
            "comments_this_week", "active_users_this_week",
        ):
            assert stats[key] == 0

    def test_global_counts(self):
        yesterday = (today() - timedelta(days=1)).isoformat()
        _create(status="in_progress", due_date=yesterday, priority="high")
        _create(status="done", due_date=yesterday)
        archived = _create()
        svc.archive_task(archived.id, actor_id=1)

        stats = svc.get_stats()
        assert stats["total"] == 2
        assert stats["by_status"]["in_progress"] == 1
        assert stats["by_status"]["done"] == 1
        assert stats["by_priority"]["high"] == 1
        assert stats["overdue"] == 1
        assert stats["archived"] == 1
        assert stats["tasks_created_this_week"] == 2
        assert stats["tasks_completed_this_week"] == 1

    def test_scoped_to_user(self):
        _create(actor_id=2, title="Mine")
        _create(actor_id=1, title="Assigned to me", assigned_to=2)
        other = _create(actor_id=1, title="Reviewed by me")
        assignment_service.assign(other.id, 2, role="reviewer", actor_id=1)
        _create(actor_id=3, title="Not mine")

        assert svc.get_stats(2)["total"] == 3
        assert svc.get_stats(2)["user_id"] == 2
        assert svc.get_stats()["total"] == 4

    def test_weekly_activity(self):
        task = _create(actor_id=1, assigned_to=2)
        assignment_service.assign(task.id, 3, role="reviewer", actor_id=1)
        comment_service.add_comment(task.id, {"content": "hello"}, actor_id=1)
        svc.update_task(task.id, {"status": "review"}, actor_id=1)

        stats = svc.get_stats()
        assert stats["comments_this_week"] == 2
        assert stats["active_users_this_week"] == 2
