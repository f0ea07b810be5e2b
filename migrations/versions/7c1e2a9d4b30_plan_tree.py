"""plan_tree

Create organizations, projects, plan_item_types, plan_items and
plan_item_history, and seed the five system plan item types.

Revision ID: 7c1e2a9d4b30
Revises:
Create Date: 2026-10-19 09:30:00.000000
"""

from datetime import datetime, timezone

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "7c1e2a9d4b30"
down_revision = None
branch_labels = None
depends_on = None


_SYSTEM_TYPES = [
    ("Workstream", "workstream", 1, "High-level work category or stream", "Layers", "#3b82f6"),
    ("Milestone", "milestone", 2, "Key project milestone or checkpoint", "Flag", "#10b981"),
    ("Activity", "activity", 3, "A specific activity within a milestone", "Activity", "#8b5cf6"),
    ("Task", "task", 4, "A task to be completed", "CheckSquare", "#f59e0b"),
    ("Subtask", "subtask", 5, "A subtask within a task", "Check", "#6b7280"),
]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "organizations" not in existing_tables:
        op.create_table(
            "organizations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug"),
        )

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_projects_organization_id", "projects", ["organization_id"])

    if "plan_item_types" not in existing_tables:
        op.create_table(
            "plan_item_types",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=True),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("icon", sa.String(length=50), nullable=True),
            sa.Column("color", sa.String(length=20), nullable=True),
            sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug", "organization_id", name="uq_plan_item_types_slug_org"),
        )
        op.create_index("ix_plan_item_types_organization_id", "plan_item_types", ["organization_id"])
        op.create_index("ix_plan_item_types_org_level", "plan_item_types", ["organization_id", "level"])

        plan_item_types = sa.table(
            "plan_item_types",
            sa.column("name", sa.String),
            sa.column("slug", sa.String),
            sa.column("level", sa.Integer),
            sa.column("description", sa.Text),
            sa.column("icon", sa.String),
            sa.column("color", sa.String),
            sa.column("is_system", sa.Boolean),
            sa.column("is_active", sa.Boolean),
            sa.column("created_at", sa.DateTime(timezone=True)),
        )
        now = datetime.now(timezone.utc)
        op.bulk_insert(plan_item_types, [
            {
                "name": name, "slug": slug, "level": level, "description": description,
                "icon": icon, "color": color, "is_system": True, "is_active": True,
                "created_at": now,
            }
            for name, slug, level, description, icon, color in _SYSTEM_TYPES
        ])

    if "plan_items" not in existing_tables:
        op.create_table(
            "plan_items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("project_id", sa.String(length=36), nullable=False),
            sa.Column("parent_id", sa.String(length=36), nullable=True),
            sa.Column("item_type_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=500), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="not_started"),
            sa.Column("owner", sa.String(length=255), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("target_end_date", sa.Date(), nullable=True),
            sa.Column("actual_start_date", sa.Date(), nullable=True),
            sa.Column("actual_end_date", sa.Date(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("references", sa.JSON(), nullable=True),
            sa.Column("path", sa.Text(), nullable=False, server_default=""),
            sa.Column("depth", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["parent_id"], ["plan_items.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["item_type_id"], ["plan_item_types.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_plan_items_project_id", "plan_items", ["project_id"])
        op.create_index("ix_plan_items_parent_id", "plan_items", ["parent_id"])
        op.create_index("ix_plan_items_item_type_id", "plan_items", ["item_type_id"])
        op.create_index("ix_plan_items_is_active", "plan_items", ["is_active"])
        op.create_index("ix_plan_items_project_parent", "plan_items", ["project_id", "parent_id"])
        op.create_index("ix_plan_items_project_status", "plan_items", ["project_id", "status"])
        op.create_index(
            "uq_plan_items_active_sibling_name",
            "plan_items",
            ["project_id", "parent_id", sa.text("lower(name)")],
            unique=True,
            postgresql_where=sa.text("is_active IS TRUE"),
            sqlite_where=sa.text("is_active = 1"),
        )

    if "plan_item_history" not in existing_tables:
        op.create_table(
            "plan_item_history",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("plan_item_id", sa.String(length=36), nullable=False),
            sa.Column("field", sa.String(length=50), nullable=False),
            sa.Column("old_value", sa.Text(), nullable=True),
            sa.Column("new_value", sa.Text(), nullable=True),
            sa.Column("changed_by_user_id", sa.Integer(), nullable=True),
            sa.Column("changed_by_email", sa.String(length=200), nullable=True),
            sa.Column("change_reason", sa.Text(), nullable=True),
            sa.Column("evidence_content_ids", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["plan_item_id"], ["plan_items.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_plan_item_history_plan_item_id", "plan_item_history", ["plan_item_id"])
        op.create_index(
            "ix_plan_item_history_item_created", "plan_item_history", ["plan_item_id", "created_at"],
        )


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    for table in ("plan_item_history", "plan_items", "plan_item_types", "projects", "organizations"):
        if table in existing_tables:
            op.drop_table(table)
