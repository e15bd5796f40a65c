"""
Task Tracking Engine
Workflow reference data.

Models:
    - Workflow:      named, ordered list of steps a task can be pinned to
    - WorkflowStep:  one stage with an SLA (hours)
    - TaskTemplate:  reusable defaults for new tasks, optionally with a workflow

Read-mostly: task operations never write these tables. The process-wide
snapshot lives in ``taskhub.services.workflow_service.WorkflowCatalog``.
"""

from datetime import datetime, timezone

from taskhub.models import db


# ── Constants ────────────────────────────────────────────────────────────────

STEP_TYPES = {"start", "task", "review", "approval", "end"}


class Workflow(db.Model):
    __tablename__ = "workflows"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False, unique=True)
    description = db.Column(db.Text, default="")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    steps = db.relationship(
        "WorkflowStep", backref="workflow", lazy="selectin",
        cascade="all, delete-orphan", order_by="WorkflowStep.step_number",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "steps": [s.to_dict() for s in self.steps],
        }

    def __repr__(self):
        return f"<Workflow {self.id}: {self.name}>"


class WorkflowStep(db.Model):
    __tablename__ = "workflow_steps"

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    step_number = db.Column(db.Integer, nullable=False, comment="1-based position")
    step_name = db.Column(db.String(150), nullable=False)
    step_type = db.Column(db.String(20), nullable=False, default="task")
    sla_hours = db.Column(db.Integer, nullable=True)

    __table_args__ = (
        db.UniqueConstraint("workflow_id", "step_number", name="uq_workflow_step_number"),
    )

    def to_dict(self):
        return {
            "step_number": self.step_number,
            "step_name": self.step_name,
            "step_type": self.step_type,
            "sla_hours": self.sla_hours,
        }


class TaskTemplate(db.Model):
    __tablename__ = "task_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False, unique=True)
    description = db.Column(db.Text, default="")
    default_type = db.Column(db.String(20), nullable=False, default="task")
    default_priority = db.Column(db.String(20), nullable=False, default="medium")
    default_estimated_hours = db.Column(db.Float, nullable=True)
    default_workflow_id = db.Column(
        db.Integer, db.ForeignKey("workflows.id", ondelete="SET NULL"), nullable=True,
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    default_workflow = db.relationship("Workflow")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "default_type": self.default_type,
            "default_priority": self.default_priority,
            "default_estimated_hours": self.default_estimated_hours,
            "default_workflow_id": self.default_workflow_id,
            "workflow_name": self.default_workflow.name if self.default_workflow else None,
            "is_active": self.is_active,
        }


# ── Seed Helpers ─────────────────────────────────────────────────────────────

DEFAULT_WORKFLOWS = [
    {
        "name": "Standard",
        "description": "Simple to-do → done flow with a review stage",
        "steps": [
            ("Backlog", "start", None),
            ("In progress", "task", 40),
            ("Review", "review", 24),
            ("Done", "end", None),
        ],
    },
    {
        "name": "Approval",
        "description": "Work that needs a formal sign-off before closure",
        "steps": [
            ("Request", "start", None),
            ("Preparation", "task", 48),
            ("Manager approval", "approval", 24),
            ("Execution", "task", 72),
            ("Closure", "end", None),
        ],
    },
    {
        "name": "Inspection",
        "description": "Site inspection: plan, visit, report, corrective actions",
        "steps": [
            ("Planning", "start", 72),
            ("Site visit", "task", 8),
            ("Report writing", "task", 48),
            ("Report review", "review", 24),
            ("Corrective actions", "task", 168),
            ("Closed", "end", None),
        ],
    },
]

DEFAULT_TEMPLATES = [
    {"name": "Bug fix", "default_type": "task", "default_priority": "high",
     "default_estimated_hours": 4, "workflow": "Standard"},
    {"name": "User story", "default_type": "story", "default_priority": "medium",
     "default_estimated_hours": 8, "workflow": "Standard"},
    {"name": "Purchase request", "default_type": "task", "default_priority": "medium",
     "default_estimated_hours": 2, "workflow": "Approval"},
    {"name": "Site inspection", "default_type": "milestone", "default_priority": "high",
     "default_estimated_hours": 16, "workflow": "Inspection"},
]


def seed_default_workflows():
    """
    Install the standard workflows and templates. Existing names are skipped.

    Returns the number of workflows created (caller commits).
    """
    created = 0
    by_name = {w.name: w for w in Workflow.query.all()}
    for spec in DEFAULT_WORKFLOWS:
        if spec["name"] in by_name:
            continue
        wf = Workflow(name=spec["name"], description=spec["description"])
        for number, (step_name, step_type, sla) in enumerate(spec["steps"], start=1):
            wf.steps.append(WorkflowStep(
                step_number=number, step_name=step_name, step_type=step_type, sla_hours=sla,
            ))
        db.session.add(wf)
        by_name[wf.name] = wf
        created += 1
    db.session.flush()

    existing_templates = {t.name for t in TaskTemplate.query.all()}
    for spec in DEFAULT_TEMPLATES:
        if spec["name"] in existing_templates:
            continue
        db.session.add(TaskTemplate(
            name=spec["name"],
            default_type=spec["default_type"],
            default_priority=spec["default_priority"],
            default_estimated_hours=spec["default_estimated_hours"],
            default_workflow_id=by_name[spec["workflow"]].id,
        ))
    return created
