"""
Task Tracking Engine
Workflow catalog blueprint (read-only).

Endpoints:
    GET /api/v1/workflows       — active workflows with ordered steps
    GET /api/v1/task-templates  — active task templates
"""

from flask import Blueprint, jsonify

from taskhub.blueprints import register_error_handlers
from taskhub.services import workflow_service

workflow_bp = Blueprint("workflows", __name__, url_prefix="/api/v1")
register_error_handlers(workflow_bp)


@workflow_bp.route("/workflows", methods=["GET"])
def list_workflows():
    return jsonify(workflow_service.list_workflows()), 200


@workflow_bp.route("/task-templates", methods=["GET"])
def list_templates():
    return jsonify(workflow_service.list_templates()), 200
