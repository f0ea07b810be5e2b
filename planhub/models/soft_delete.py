"""
Soft Delete Mixin - plan items are never physically removed.

Adds ``is_active`` + ``deactivated_at`` columns and query helpers.
Rows stay in place (and keep their ``parent_id``) so the history
ledger always points at a real record.

Usage:
    class PlanItem(SoftDeleteMixin, db.Model):
        ...

    item.soft_delete()
    PlanItem.query_active().filter_by(project_id=pid).all()
"""

from datetime import datetime, timezone

from planhub.models import db


class SoftDeleteMixin:
    """Mixin that adds soft delete support to any SQLAlchemy model."""

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    deactivated_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None)

    def soft_delete(self):
        """Mark this record as inactive."""
        self.is_active = False
        self.deactivated_at = datetime.now(timezone.utc)

    @classmethod
    def query_active(cls):
        """Return a query that excludes soft-deleted records."""
        return cls.query.filter(cls.is_active.is_(True))
