"""
Soft Delete Mixin.

Adds an ``is_deleted`` flag plus ``deleted_at`` / ``deleted_by`` stamps.
Models that include this mixin mark records as deleted rather than
physically removing them, so the audit trail survives retraction.

Usage:
    class MyModel(SoftDeleteMixin, db.Model):
        ...

    # Soft delete
    obj.soft_delete(actor_id)
    db.session.commit()

    # Query only live records
    MyModel.query_active().all()

    # Include deleted
    MyModel.query.all()

Deletion is one-way here: retracted records stay retracted.
"""

from datetime import datetime, timezone

from taskhub.models import db


class SoftDeleteMixin:
    """Mixin that adds soft delete support to any SQLAlchemy model."""

    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None)
    deleted_by = db.Column(db.Integer, nullable=True)

    def soft_delete(self, actor_id=None):
        """Mark this record as deleted."""
        self.is_deleted = True
        self.deleted_at = datetime.now(timezone.utc)
        self.deleted_by = actor_id

    @classmethod
    def query_active(cls):
        """Return a query that excludes soft-deleted records."""
        return cls.query.filter(cls.is_deleted.is_(False))

    @classmethod
    def query_deleted(cls):
        """Return only soft-deleted records."""
        return cls.query.filter(cls.is_deleted.is_(True))
