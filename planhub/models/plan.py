"""
Plan domain models.

Models:
    - PlanItemType: level in the plan hierarchy (system or organization owned)
    - PlanItem: one node of a project's plan tree
    - PlanItemHistory: append-only field change ledger
"""

import uuid
from datetime import datetime, timezone

from planhub.models import db
from planhub.models.soft_delete import SoftDeleteMixin

# ── Constants ────────────────────────────────────────────────────────────────

PLAN_ITEM_STATUSES = (
    "not_started",
    "in_progress",
    "completed",
    "on_hold",
    "cancelled",
)
DEFAULT_STATUS = "not_started"

# Separator between ancestor names in PlanItem.path
PATH_SEPARATOR = " > "

SYSTEM_PLAN_ITEM_TYPES = (
    {"name": "Workstream", "slug": "workstream", "level": 1,
     "description": "High-level work category or stream", "icon": "Layers", "color": "#3b82f6"},
    {"name": "Milestone", "slug": "milestone", "level": 2,
     "description": "Key project milestone or checkpoint", "icon": "Flag", "color": "#10b981"},
    {"name": "Activity", "slug": "activity", "level": 3,
     "description": "A specific activity within a milestone", "icon": "Activity", "color": "#8b5cf6"},
    {"name": "Task", "slug": "task", "level": 4,
     "description": "A task to be completed", "icon": "CheckSquare", "color": "#f59e0b"},
    {"name": "Subtask", "slug": "subtask", "level": 5,
     "description": "A subtask within a task", "icon": "Check", "color": "#6b7280"},
)


def _uuid():
    return str(uuid.uuid4())


def _iso(value):
    return value.isoformat() if value else None


class PlanItemType(db.Model):
    """
    One rank of the plan hierarchy.

    ``organization_id`` NULL marks a system type, visible to every
    organization as a fallback. Organization types shadow system types.
    """

    __tablename__ = "plan_item_types"
    __table_args__ = (
        db.UniqueConstraint("slug", "organization_id", name="uq_plan_item_types_slug_org"),
        db.Index("ix_plan_item_types_org_level", "organization_id", "level"),
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer,
        db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    slug = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    level = db.Column(db.Integer, nullable=False, default=1, comment="1 = root rank")
    icon = db.Column(db.String(50), nullable=True)
    color = db.Column(db.String(20), nullable=True)
    is_system = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "level": self.level,
            "icon": self.icon,
            "color": self.color,
            "is_system": self.is_system,
            "is_active": self.is_active,
        }

    def __repr__(self) -> str:
        return f"<PlanItemType L{self.level} {self.slug}>"


class PlanItem(SoftDeleteMixin, db.Model):
    """
    Node of a project's plan tree.

    ``parent_id`` is a lookup key only; traversal goes through
    ``PlanTreeIndex``. ``path`` is the chain of ancestor names including
    this node, joined with PATH_SEPARATOR; ``depth`` is the ancestor count.
    """

    __tablename__ = "plan_items"
    __table_args__ = (
        db.Index("ix_plan_items_project_parent", "project_id", "parent_id"),
        db.Index("ix_plan_items_project_status", "project_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(
        db.String(36),
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    parent_id = db.Column(
        db.String(36),
        db.ForeignKey("plan_items.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    item_type_id = db.Column(
        db.Integer,
        db.ForeignKey("plan_item_types.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.String(30), nullable=False, default=DEFAULT_STATUS,
        comment="not_started | in_progress | completed | on_hold | cancelled",
    )
    owner = db.Column(db.String(255), nullable=True)
    start_date = db.Column(db.Date, nullable=True)
    target_end_date = db.Column(db.Date, nullable=True)
    actual_start_date = db.Column(db.Date, nullable=True)
    actual_end_date = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    references = db.Column(db.JSON, default=list, comment="Evidence content ids")
    path = db.Column(db.Text, nullable=False, default="")
    depth = db.Column(db.Integer, nullable=False, default=0)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    item_type = db.relationship("PlanItemType", lazy="joined")
    history = db.relationship(
        "PlanItemHistory", backref="plan_item", lazy="dynamic",
        order_by="PlanItemHistory.id.desc()",
    )

    def to_dict(self, include_type: bool = True) -> dict:
        data = {
            "id": self.id,
            "project_id": self.project_id,
            "parent_id": self.parent_id,
            "item_type_id": self.item_type_id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "owner": self.owner,
            "start_date": _iso(self.start_date),
            "target_end_date": _iso(self.target_end_date),
            "actual_start_date": _iso(self.actual_start_date),
            "actual_end_date": _iso(self.actual_end_date),
            "notes": self.notes,
            "references": list(self.references or []),
            "path": self.path,
            "depth": self.depth,
            "sort_order": self.sort_order,
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_type and self.item_type is not None:
            data["item_type"] = {
                "id": self.item_type.id,
                "name": self.item_type.name,
                "slug": self.item_type.slug,
                "level": self.item_type.level,
                "icon": self.item_type.icon,
                "color": self.item_type.color,
            }
        return data

    def __repr__(self) -> str:
        return f"<PlanItem {self.id}: {self.path}>"


# Active siblings may not share a name (case-insensitive). Root items have a
# NULL parent_id, which SQL treats as distinct, so roots are guarded in code.
db.Index(
    "uq_plan_items_active_sibling_name",
    PlanItem.project_id,
    PlanItem.parent_id,
    db.func.lower(PlanItem.name),
    unique=True,
    postgresql_where=db.text("is_active IS TRUE"),
    sqlite_where=db.text("is_active = 1"),
)


class PlanItemHistory(db.Model):
    """
    Append-only ledger of field-level changes to plan items.

    One row per changed field. Rows are never updated or deleted.
    """

    __tablename__ = "plan_item_history"
    __table_args__ = (
        db.Index("ix_plan_item_history_item_created", "plan_item_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    plan_item_id = db.Column(
        db.String(36),
        db.ForeignKey("plan_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    field = db.Column(db.String(50), nullable=False)
    old_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)
    changed_by_user_id = db.Column(db.Integer, nullable=True)
    changed_by_email = db.Column(db.String(200), nullable=True)
    change_reason = db.Column(db.Text, nullable=True)
    evidence_content_ids = db.Column(db.JSON, default=list)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "plan_item_id": self.plan_item_id,
            "field": self.field,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "changed_by_user_id": self.changed_by_user_id,
            "changed_by_email": self.changed_by_email,
            "change_reason": self.change_reason,
            "evidence_content_ids": list(self.evidence_content_ids or []),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<PlanItemHistory {self.id}: {self.field} on {self.plan_item_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_history(
    *,
    plan_item_id: str,
    field: str,
    old_value,
    new_value,
    actor_id: int | None = None,
    actor_email: str | None = None,
    reason: str | None = None,
    evidence_content_ids: list[str] | None = None,
) -> PlanItemHistory:
    """
    Append a single history row. Does not flush or commit; callers
    own the transaction.
    """
    entry = PlanItemHistory(
        plan_item_id=plan_item_id,
        field=field,
        old_value=_stringify(old_value),
        new_value=_stringify(new_value),
        changed_by_user_id=actor_id,
        changed_by_email=actor_email,
        change_reason=reason,
        evidence_content_ids=list(evidence_content_ids or []),
    )
    db.session.add(entry)
    return entry


def _stringify(value):
    if value is None:
        return None
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)
