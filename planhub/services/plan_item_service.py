"""Plan item CRUD, tree read and history read, scoped by organization.

Services flush only; blueprints commit (see ``db_commit_or_error``).
"""

from __future__ import annotations

import logging

from planhub.core.exceptions import ValidationError
from planhub.models import db
from planhub.models.plan import PLAN_ITEM_STATUSES, PlanItem, PlanItemHistory, PlanItemType, write_history
from planhub.services.helpers.scoped_queries import get_plan_item as get_scoped_plan_item
from planhub.services.helpers.scoped_queries import get_project
from planhub.services.plan_csv import normalize_status
from planhub.services.plan_tree import PlanTreeIndex
from planhub.services.plan_type_registry import TypeRegistry
from planhub.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

TRACKED_FIELDS = (
    "name",
    "description",
    "owner",
    "status",
    "start_date",
    "target_end_date",
    "actual_start_date",
    "actual_end_date",
    "notes",
)
DATE_FIELDS = ("start_date", "target_end_date", "actual_start_date", "actual_end_date")
TEXT_FIELDS = ("description", "owner", "notes")


# ── Reads ────────────────────────────────────────────────────────────────────

def list_plan_item_types(organization_id: int | None) -> list[PlanItemType]:
    """Active system types plus the organization's own, by level."""
    return TypeRegistry.for_organization(organization_id).visible_types()


def get_plan_tree(
    project_id: str,
    *,
    organization_id: int | None = None,
    status: str | None = None,
    item_type_id: int | None = None,
) -> dict:
    """Nested plan tree of a project: ``{"items": [...], "total": n}``."""
    project = get_project(project_id, organization_id=organization_id)
    if status is not None and status not in PLAN_ITEM_STATUSES:
        raise ValidationError(f"Invalid status filter '{status}'")
    registry = TypeRegistry.for_organization(project.organization_id)
    index = PlanTreeIndex.load(project.id, registry)
    return index.build_tree(status=status, item_type_id=item_type_id)


def get_plan_item(item_id: str, *, organization_id: int | None = None) -> dict:
    """One item with its active children."""
    item = get_scoped_plan_item(item_id, organization_id=organization_id)
    children = (
        PlanItem.query_active()
        .filter(PlanItem.parent_id == item.id)
        .order_by(PlanItem.sort_order.asc())
        .all()
    )
    data = item.to_dict()
    data["children"] = [child.to_dict() for child in children]
    return data


def get_plan_item_history(item_id: str, *, organization_id: int | None = None):
    """History query for an item (inactive items included), newest first."""
    item = get_scoped_plan_item(item_id, organization_id=organization_id, active_only=False)
    return (
        PlanItemHistory.query
        .filter(PlanItemHistory.plan_item_id == item.id)
        .order_by(PlanItemHistory.created_at.desc(), PlanItemHistory.id.desc())
    )


# ── Field coercion ───────────────────────────────────────────────────────────

def _coerce(field: str, value):
    if field in DATE_FIELDS:
        try:
            return parse_date_input(value)
        except ValueError as exc:
            raise ValidationError(f"{field}: {exc}", details={field: str(exc)}) from exc
    if field == "status":
        status = normalize_status(value)
        if status is None:
            raise ValidationError(
                f"status must be one of: {', '.join(PLAN_ITEM_STATUSES)}",
                details={"status": value},
            )
        return status
    if field == "name":
        name = str(value or "").strip()
        if not name:
            raise ValidationError("name is required", details={"name": "required"})
        if len(name) > 500:
            raise ValidationError("name must be at most 500 characters")
        return name
    if field in TEXT_FIELDS:
        text = str(value).strip() if value is not None else ""
        return text or None
    return value


# ── Writes ───────────────────────────────────────────────────────────────────

def create_plan_item(
    project_id: str,
    data: dict,
    *,
    organization_id: int | None = None,
) -> PlanItem:
    """Create one item interactively, appended after its siblings.

    ``item_type_id`` is optional; when omitted the type for the position
    (parent level + 1, or level 1) is resolved from the registry.
    """
    project = get_project(project_id, organization_id=organization_id)
    registry = TypeRegistry.for_organization(project.organization_id)
    index = PlanTreeIndex.load(project.id, registry)

    name = _coerce("name", data.get("name"))
    parent_id = data.get("parent_id") or None
    parent = index.get(parent_id) if parent_id else None
    if parent_id and (parent is None or not parent.is_active):
        raise ValidationError("Parent plan item not found in this project", details={"parent_id": parent_id})

    expected_level = index.expected_level(parent)
    if data.get("item_type_id") is not None:
        try:
            item_type = registry.get(int(data["item_type_id"]))
        except (TypeError, ValueError):
            item_type = None
        if item_type is None:
            raise ValidationError("Unknown plan item type", details={"item_type_id": data["item_type_id"]})
        if item_type.level != expected_level:
            raise ValidationError(
                f"Item type '{item_type.slug}' (level {item_type.level}) cannot be placed "
                f"where level {expected_level} is required",
            )
    else:
        item_type = registry.resolve_type(expected_level)

    fields = {}
    for field in TRACKED_FIELDS:
        if field == "name" or field not in data:
            continue
        value = _coerce(field, data[field])
        if value is not None:
            fields[field] = value

    item = index.insert(parent_id, item_type, name, **fields)
    db.session.flush()
    logger.info("Plan item created id=%s path=%r", item.id, item.path, extra={"project_id": project.id})
    return item


def update_plan_item(
    item_id: str,
    data: dict,
    *,
    organization_id: int | None = None,
    actor_id: int | None = None,
    actor_email: str | None = None,
) -> PlanItem:
    """Update tracked fields; one history row per changed field.

    Renames and re-parenting rewrite ``path``/``depth`` for the subtree.
    """
    item = get_scoped_plan_item(item_id, organization_id=organization_id)
    project = get_project(item.project_id)
    registry = TypeRegistry.for_organization(project.organization_id)
    index = PlanTreeIndex.load(project.id, registry)
    item = index.get(item.id)

    # Coerce everything up front so a bad value leaves the item untouched.
    values = {field: _coerce(field, data[field]) for field in TRACKED_FIELDS if field in data}

    changes = []

    if "parent_id" in data:
        new_parent_id = data.get("parent_id") or None
        if new_parent_id != item.parent_id:
            old_parent_id = item.parent_id
            if new_parent_id is not None and index.get(new_parent_id) is None:
                raise ValidationError(
                    "New parent plan item not found in this project",
                    details={"parent_id": new_parent_id},
                )
            old_name = item.name
            index.move(item, new_parent_id, new_name=values.pop("name", None))
            changes.append(("parent_id", old_parent_id, new_parent_id))
            if item.name != old_name:
                changes.append(("name", old_name, item.name))

    for field, value in values.items():
        old_value = getattr(item, field)
        if old_value == value:
            continue
        if field == "name":
            index.rename(item, value)
        else:
            setattr(item, field, value)
        changes.append((field, old_value, value))

    for field, old_value, new_value in changes:
        write_history(
            plan_item_id=item.id,
            field=field,
            old_value=old_value,
            new_value=new_value,
            actor_id=actor_id,
            actor_email=actor_email,
            reason=data.get("change_reason"),
        )

    db.session.flush()
    return item


def delete_plan_item(item_id: str, *, organization_id: int | None = None) -> int:
    """Soft-delete an item and its active subtree. Returns rows deactivated."""
    item = get_scoped_plan_item(item_id, organization_id=organization_id)
    project = get_project(item.project_id)
    registry = TypeRegistry.for_organization(project.organization_id)
    index = PlanTreeIndex.load(project.id, registry)

    affected = index.deactivate_subtree(index.get(item.id))
    db.session.flush()
    logger.info(
        "Plan item %s soft-deleted with %d descendant(s)",
        item.id, len(affected) - 1, extra={"project_id": project.id},
    )
    return len(affected)
