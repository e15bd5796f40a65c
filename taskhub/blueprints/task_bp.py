"""
Task Tracking Engine
Task Blueprint.

Endpoint groups:
  Tasks          GET/POST            /api/v1/tasks
                 GET                 /api/v1/tasks/search
                 GET                 /api/v1/tasks/stats
                 GET/PUT/PATCH/DELETE /api/v1/tasks/<id>
                 POST                /api/v1/tasks/<id>/restore
  Comments       GET/POST            /api/v1/tasks/<id>/comments
                 DELETE              /api/v1/tasks/<id>/comments/<cid>
  Assignments    GET/POST            /api/v1/tasks/<id>/assignments
                 POST                /api/v1/tasks/<id>/assignments/respond
  Dependencies   GET/POST            /api/v1/tasks/<id>/dependencies
                 DELETE              /api/v1/dependencies/<dep_id>
  Workflow       POST                /api/v1/tasks/<id>/workflow
  Attachments    GET/POST            /api/v1/tasks/<id>/attachments

Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from taskhub.auth import current_actor, has_role, require_role
from taskhub.blueprints import bool_arg, json_body, register_error_handlers
from taskhub.core.exceptions import AuthorizationError, ValidationError
from taskhub.services import (
    assignment_service,
    attachment_service,
    comment_service,
    dependency_service,
    task_service,
    workflow_service,
)

logger = logging.getLogger(__name__)

task_bp = Blueprint("tasks", __name__, url_prefix="/api/v1")
register_error_handlers(task_bp)


# ═════════════════════════════════════════════════════════════════════════
# Tasks
# ═════════════════════════════════════════════════════════════════════════


@task_bp.route("/tasks", methods=["GET"])
def list_tasks():
    args = request.args
    filters = {
        "status": args.get("status"),
        "priority": args.get("priority"),
        "assigned_to": args.get("assigned_to"),
        "project_id": args.get("project_id"),
        "company_id": args.get("company_id"),
        "search": args.get("search"),
        "include_archived": bool_arg("include_archived"),
    }
    result = task_service.list_tasks(
        filters,
        sort_by=args.get("sort_by", "created_at"),
        sort_order=args.get("sort_order", "desc"),
        page=args.get("page", 1),
        limit=args.get("limit", task_service.DEFAULT_PAGE_LIMIT),
    )
    return jsonify(result), 200


@task_bp.route("/tasks", methods=["POST"])
@require_role("member")
def create_task():
    actor_id, _ = current_actor()
    task = task_service.create_task(json_body(), actor_id)
    return jsonify(task_service.get_task_detail(task.id)), 201


@task_bp.route("/tasks/search", methods=["GET"])
def search_tasks():
    results = task_service.search_tasks(
        request.args.get("q", ""),
        request.args.get("limit", task_service.SEARCH_DEFAULT_LIMIT),
    )
    return jsonify(results), 200


@task_bp.route("/tasks/stats", methods=["GET"])
def task_stats():
    actor_id, role = current_actor()
    user_id = request.args.get("user_id", type=int)
    if user_id is not None and user_id != actor_id and not has_role(role, "admin"):
        raise AuthorizationError("Only admins can view another user's statistics")
    return jsonify(task_service.get_stats(user_id)), 200


@task_bp.route("/tasks/<int:task_id>", methods=["GET"])
def get_task(task_id):
    return jsonify(task_service.get_task_detail(task_id)), 200


@task_bp.route("/tasks/<int:task_id>", methods=["PUT", "PATCH"])
@require_role("member")
def update_task(task_id):
    actor_id, _ = current_actor()
    task_service.update_task(task_id, json_body(), actor_id)
    return jsonify(task_service.get_task_detail(task_id)), 200


@task_bp.route("/tasks/<int:task_id>", methods=["DELETE"])
@require_role("member")
def archive_task(task_id):
    actor_id, _ = current_actor()
    task = task_service.archive_task(task_id, actor_id)
    return jsonify({
        "message": "Task archived",
        "id": task.id,
        "archived_at": task.archived_at.isoformat() if task.archived_at else None,
    }), 200


@task_bp.route("/tasks/<int:task_id>/restore", methods=["POST"])
@require_role("member")
def restore_task(task_id):
    actor_id, _ = current_actor()
    task_service.restore_task(task_id, actor_id)
    return jsonify(task_service.get_task_detail(task_id)), 200


# ═════════════════════════════════════════════════════════════════════════
# Comments
# ═════════════════════════════════════════════════════════════════════════


@task_bp.route("/tasks/<int:task_id>/comments", methods=["GET"])
def list_comments(task_id):
    comments = comment_service.list_comments(task_id)
    return jsonify([c.to_dict(include_parent=True) for c in comments]), 200


@task_bp.route("/tasks/<int:task_id>/comments", methods=["POST"])
@require_role("member")
def add_comment(task_id):
    actor_id, _ = current_actor()
    data = json_body()
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", details={"body": "object required"})
    comment = comment_service.add_comment(task_id, data, actor_id)
    return jsonify(comment.to_dict(include_parent=True)), 201


@task_bp.route("/tasks/<int:task_id>/comments/<int:comment_id>", methods=["DELETE"])
@require_role("member")
def delete_comment(task_id, comment_id):
    actor_id, role = current_actor()
    comment_service.soft_delete_comment(task_id, comment_id, actor_id, role)
    return jsonify({"message": "Comment deleted", "id": comment_id}), 200


# ═════════════════════════════════════════════════════════════════════════
# Assignments
# ═════════════════════════════════════════════════════════════════════════


@task_bp.route("/tasks/<int:task_id>/assignments", methods=["GET"])
def list_assignments(task_id):
    return jsonify([a.to_dict() for a in assignment_service.list_assignments(task_id)]), 200


@task_bp.route("/tasks/<int:task_id>/assignments", methods=["POST"])
@require_role("member")
def assign(task_id):
    actor_id, _ = current_actor()
    data = json_body()
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", details={"body": "object required"})
    assignment = assignment_service.assign(
        task_id,
        data.get("user_id"),
        data.get("role", "assignee"),
        data.get("workload_percentage", 100),
        actor_id=actor_id,
    )
    return jsonify(assignment.to_dict()), 200


@task_bp.route("/tasks/<int:task_id>/assignments/respond", methods=["POST"])
def respond_to_assignment(task_id):
    actor_id, _ = current_actor()
    data = json_body()
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", details={"body": "object required"})
    assignment = assignment_service.respond(
        task_id, data.get("role", "assignee"), data.get("accept"), actor_id=actor_id,
    )
    return jsonify(assignment.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Dependencies
# ═════════════════════════════════════════════════════════════════════════


@task_bp.route("/tasks/<int:task_id>/dependencies", methods=["GET"])
def list_dependencies(task_id):
    return jsonify(dependency_service.list_dependencies(task_id)), 200


@task_bp.route("/tasks/<int:task_id>/dependencies", methods=["POST"])
@require_role("member")
def add_dependency(task_id):
    """Link this task to another. Body names the other end:
    ``predecessor_id`` (other → this) or ``successor_id`` (this → other)."""
    actor_id, _ = current_actor()
    data = json_body()
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", details={"body": "object required"})
    if data.get("predecessor_id") is not None:
        pred_id, succ_id = data["predecessor_id"], task_id
    elif data.get("successor_id") is not None:
        pred_id, succ_id = task_id, data["successor_id"]
    else:
        raise ValidationError(
            "predecessor_id or successor_id is required",
            details={"predecessor_id": "required"},
        )
    if isinstance(pred_id, bool) or isinstance(succ_id, bool) or not isinstance(pred_id, int) or not isinstance(succ_id, int):
        raise ValidationError("Task ids must be integers", details={"predecessor_id": "integer"})
    dep = dependency_service.add_dependency(
        pred_id,
        succ_id,
        data.get("dependency_type", "finish_to_start"),
        data.get("lag_days", 0),
        actor_id=actor_id,
    )
    return jsonify(dep.to_dict()), 201


@task_bp.route("/dependencies/<int:dep_id>", methods=["DELETE"])
@require_role("member")
def remove_dependency(dep_id):
    actor_id, _ = current_actor()
    dependency_service.remove_dependency(dep_id, actor_id=actor_id)
    return jsonify({"message": "Dependency removed", "id": dep_id}), 200


# ═════════════════════════════════════════════════════════════════════════
# Workflow & attachments
# ═════════════════════════════════════════════════════════════════════════


@task_bp.route("/tasks/<int:task_id>/workflow", methods=["POST"])
@require_role("member")
def apply_workflow(task_id):
    actor_id, _ = current_actor()
    data = json_body()
    workflow_id = data.get("workflow_id") if isinstance(data, dict) else None
    if isinstance(workflow_id, bool) or not isinstance(workflow_id, int):
        raise ValidationError("workflow_id is required", details={"workflow_id": "integer required"})
    workflow_service.apply_workflow(task_id, workflow_id, actor_id)
    return jsonify(task_service.get_task_detail(task_id)), 200


@task_bp.route("/tasks/<int:task_id>/attachments", methods=["GET"])
def list_attachments(task_id):
    return jsonify([a.to_dict() for a in attachment_service.list_attachments(task_id)]), 200


@task_bp.route("/tasks/<int:task_id>/attachments", methods=["POST"])
@require_role("member")
def add_attachment(task_id):
    actor_id, _ = current_actor()
    data = json_body()
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", details={"body": "object required"})
    attachment = attachment_service.add_attachment(task_id, data, actor_id)
    return jsonify(attachment.to_dict()), 201
