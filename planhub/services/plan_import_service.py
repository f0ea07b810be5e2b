"""
Plan Import Service - CSV reconciliation onto a project's plan tree.

Pipeline: parse → reconcile → commit, as one unit of work per call.

Reconciliation, per row (rows strictly in file order):
  1. The deepest filled hierarchy column is the row's target level. A
     filled column below an empty one is a row error ("gap in hierarchy").
  2. Walk levels 1..target from the project root. At each level reuse the
     active child with the same name (case-insensitive) or insert a new
     node of the level's type, then descend into it.
  3. Only the target node receives the row's status/owner/dates/notes.
  4. Outcome: ``created`` if the target node was inserted, ``updated`` if
     it was reused, ``error`` otherwise.

Because every level is matched by name before anything is created,
importing the same file twice creates nothing the second time.

Row errors never abort the import. Configuration errors and store
failures roll the whole import back.
"""

import logging

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from planhub.core.exceptions import NotFoundError, PlanConfigurationError, PlanTransactionError
from planhub.models import db
from planhub.models.plan import write_history
from planhub.services.helpers.scoped_queries import get_project
from planhub.services.plan_csv import parse_plan_csv, row_metadata
from planhub.services.plan_tree import PlanTreeIndex
from planhub.services.plan_type_registry import TypeRegistry

logger = logging.getLogger(__name__)

IMPORT_CHANGE_REASON = "CSV import"
DEFAULT_MAX_ROWS = 5000


def _max_rows() -> int:
    return current_app.config.get("PLAN_IMPORT_MAX_ROWS", DEFAULT_MAX_ROWS)


# ═══════════════════════════════════════════════════════════════
# Preview (no mutation)
# ═══════════════════════════════════════════════════════════════

def preview_import(project_id: str, csv_text: str | bytes, *, organization_id: int | None = None) -> dict:
    """Parse a plan CSV for review before commit. Never writes."""
    project = get_project(project_id, organization_id=organization_id)
    registry = TypeRegistry.for_organization(project.organization_id)
    registry.validate_chain()
    columns = registry.hierarchy_columns()

    parsed = parse_plan_csv(csv_text, columns, max_rows=_max_rows())

    errors = list(parsed["errors"])
    rows = []
    for row in parsed["rows"]:
        row_errors = list(row["errors"])
        if row["gap_error"] and not row_errors:
            row_errors.append(row["gap_error"])
            errors.append({"row": row["row_num"], "error": row["gap_error"]})
        filled = [name for name in row["levels"] if name]
        rows.append({
            "row": row["row_num"],
            "values": row["values"],
            "target_level": row["target_level"],
            "target_type": columns[row["target_level"] - 1] if row["target_level"] else None,
            "path": filled,
            "errors": row_errors,
            "warnings": row["warnings"],
        })

    errors.sort(key=lambda e: e["row"])
    return {
        "headers": parsed["headers"],
        "hierarchy_columns": columns,
        "rows": rows,
        "errors": errors,
        "warnings": parsed["warnings"],
        "total_rows": len(rows),
    }


# ═══════════════════════════════════════════════════════════════
# Reconciliation
# ═══════════════════════════════════════════════════════════════

def reconcile_rows(
    index: PlanTreeIndex,
    rows: list[dict],
    hierarchy_columns: list[str],
    *,
    actor_id: int | None = None,
    actor_email: str | None = None,
) -> dict:
    """Map parsed rows onto the tree held by ``index``, mutating it in place."""
    registry = index.registry
    items_created = 0
    items_updated = 0
    errors = []
    outcomes = []

    for row in rows:
        row_num = row["row_num"]

        if row["errors"]:
            # Already reported by the parser; the row is skipped.
            outcomes.append({"row": row_num, "outcome": "error", "error": row["errors"][0]})
            continue

        target_level = row["target_level"]
        if row["gap_error"]:
            errors.append({"row": row_num, "error": row["gap_error"]})
            outcomes.append({"row": row_num, "outcome": "error", "error": row["gap_error"]})
            continue

        parent_id = None
        node = None
        created = False
        for level in range(1, target_level + 1):
            name = row["levels"][level - 1]
            node = index.find_child_by_name(parent_id, name)
            if node is None:
                try:
                    item_type = registry.resolve_type(level)
                except NotFoundError as exc:
                    raise PlanConfigurationError(
                        f"No plan item type configured for level {level} "
                        f"('{hierarchy_columns[level - 1]}')",
                        details={"level": level},
                    ) from exc
                node = index.insert(parent_id, item_type, name)
                items_created += 1
                created = True
            else:
                created = False
            parent_id = node.id

        changes = index.apply_leaf_metadata(node, row_metadata(row))

        if created:
            outcomes.append({"row": row_num, "outcome": "created", "item_id": node.id, "path": node.path})
            continue

        items_updated += 1
        for field, old_value, new_value in changes:
            write_history(
                plan_item_id=node.id,
                field=field,
                old_value=old_value,
                new_value=new_value,
                actor_id=actor_id,
                actor_email=actor_email,
                reason=IMPORT_CHANGE_REASON,
            )
        outcomes.append({
            "row": row_num,
            "outcome": "updated",
            "item_id": node.id,
            "path": node.path,
            "changed_fields": [change[0] for change in changes],
        })

    return {
        "items_created": items_created,
        "items_updated": items_updated,
        "errors": errors,
        "rows": outcomes,
    }


# ═══════════════════════════════════════════════════════════════
# Import (unit of work)
# ═══════════════════════════════════════════════════════════════

def import_plan_items(
    project_id: str,
    csv_text: str | bytes,
    actor_id: int | None = None,
    actor_email: str | None = None,
    *,
    organization_id: int | None = None,
) -> dict:
    """
    Full pipeline: parse → reconcile → commit.

    Returns ``{total_rows, items_created, items_updated, errors, warnings, rows}``.
    Fatal errors (project missing, broken type chain, store rejection)
    roll back everything and propagate; no partial counts are returned.
    """
    try:
        project = get_project(project_id, organization_id=organization_id, for_update=True)
        registry = TypeRegistry.for_organization(project.organization_id)
        registry.validate_chain()
        columns = registry.hierarchy_columns()

        parsed = parse_plan_csv(csv_text, columns, max_rows=_max_rows())

        index = PlanTreeIndex.load(project.id, registry)
        result = reconcile_rows(
            index,
            parsed["rows"],
            columns,
            actor_id=actor_id,
            actor_email=actor_email,
        )
        db.session.flush()
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("Plan import rolled back for project=%s: %s", project_id, exc)
        raise PlanTransactionError(
            "plan_import", project_id, str(getattr(exc, "orig", None) or exc)
        ) from exc
    except Exception:
        db.session.rollback()
        raise

    errors = sorted(parsed["errors"] + result["errors"], key=lambda e: e["row"])
    logger.info(
        "Plan import project=%s rows=%d created=%d updated=%d errors=%d",
        project_id,
        len(parsed["rows"]),
        result["items_created"],
        result["items_updated"],
        len(errors),
        extra={"project_id": project_id},
    )
    return {
        "total_rows": len(parsed["rows"]),
        "items_created": result["items_created"],
        "items_updated": result["items_updated"],
        "errors": errors,
        "warnings": parsed["warnings"],
        "rows": result["rows"],
    }
