"""
Plan Update Service - atomic bulk field updates with a history ledger.

Applies a batch of accepted field changes (e.g. suggestions reviewed by a
user) to existing plan items of one project:

  - Updates naming items outside the project (or inactive ones) are
    dropped from the batch silently and are not counted.
  - Every remaining update captures the old value, mutates the item and
    appends one PlanItemHistory row.
  - ``notes`` are appended with a dated marker, never replaced.
  - Evidence content ids are appended to the item's ``references``.
  - The batch commits as a whole or not at all.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from planhub.core.exceptions import PlanTransactionError, ValidationError
from planhub.models import db
from planhub.models.plan import PlanItem, write_history
from planhub.services.helpers.scoped_queries import get_project
from planhub.services.plan_csv import normalize_status
from planhub.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

BULK_UPDATE_FIELDS = (
    "status",
    "notes",
    "owner",
    "start_date",
    "target_end_date",
    "actual_end_date",
)
DATE_FIELDS = ("start_date", "target_end_date", "actual_end_date")

NOTES_SEPARATOR = "\n\n"


def notes_marker(now: datetime | None = None) -> str:
    """Dated prefix for appended notes, e.g. ``[2026-10-19]``."""
    now = now or datetime.now(timezone.utc)
    return f"[{now.date().isoformat()}]"


def append_notes(existing: str | None, text: str, now: datetime | None = None) -> str:
    entry = f"{notes_marker(now)} {text}"
    if existing:
        return f"{existing}{NOTES_SEPARATOR}{entry}"
    return entry


# ═══════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════

def _normalize_update(raw: dict, position: int) -> dict:
    """Validate one update; raise ValidationError naming its position."""
    if not isinstance(raw, dict):
        raise ValidationError(f"updates[{position}] must be an object")

    plan_item_id = str(raw.get("plan_item_id") or "").strip()
    field = str(raw.get("field") or "").strip()
    value = raw.get("value", raw.get("new_value"))

    if not plan_item_id:
        raise ValidationError(f"updates[{position}].plan_item_id is required")
    if field not in BULK_UPDATE_FIELDS:
        raise ValidationError(
            f"updates[{position}].field must be one of: {', '.join(BULK_UPDATE_FIELDS)}",
            details={"field": field},
        )

    if field == "status":
        parsed = normalize_status(value)
        if parsed is None:
            raise ValidationError(f"updates[{position}]: invalid status '{value}'")
        value = parsed
    elif field in DATE_FIELDS:
        try:
            value = parse_date_input(value)
        except ValueError as exc:
            raise ValidationError(f"updates[{position}]: {exc}") from exc
    elif field == "notes":
        value = str(value or "").strip()
        if not value:
            raise ValidationError(f"updates[{position}]: notes text is required")
    else:
        value = str(value).strip() if value is not None else None
        value = value or None

    evidence = raw.get("evidence_content_ids") or []
    if not isinstance(evidence, (list, tuple)):
        raise ValidationError(f"updates[{position}].evidence_content_ids must be a list")

    return {
        "plan_item_id": plan_item_id,
        "field": field,
        "value": value,
        "reason": (raw.get("reason") or "").strip() or None,
        "evidence_content_ids": [str(e) for e in evidence],
    }


def _apply_field(item: PlanItem, field: str, value, now: datetime):
    """Mutate one field; return (old_value, stored_value)."""
    old_value = getattr(item, field)
    if field == "notes":
        new_value = append_notes(item.notes, value, now)
    else:
        new_value = value
    setattr(item, field, new_value)
    return old_value, new_value


# ═══════════════════════════════════════════════════════════════
# Bulk update (unit of work)
# ═══════════════════════════════════════════════════════════════

def bulk_update_plan_items(
    project_id: str,
    updates: list[dict],
    actor_id: int | None = None,
    actor_email: str | None = None,
    *,
    organization_id: int | None = None,
) -> dict:
    """
    Apply accepted field updates atomically.

    Returns ``{"updated": n, "history_records": n}``. The whole batch is
    validated before anything is written; one invalid update rejects it.
    """
    if not isinstance(updates, list):
        raise ValidationError("updates must be a list")
    normalized = [_normalize_update(raw, i) for i, raw in enumerate(updates)]

    try:
        project = get_project(project_id, organization_id=organization_id, for_update=True)

        item_ids = {u["plan_item_id"] for u in normalized}
        items = {}
        if item_ids:
            items = {
                item.id: item
                for item in PlanItem.query.filter(
                    PlanItem.id.in_(item_ids),
                    PlanItem.project_id == project.id,
                    PlanItem.is_active.is_(True),
                ).all()
            }

        valid = [u for u in normalized if u["plan_item_id"] in items]
        dropped = len(normalized) - len(valid)
        if dropped:
            logger.info(
                "Bulk update project=%s dropped %d update(s) for items outside the project",
                project_id, dropped, extra={"project_id": project_id},
            )
        if not valid:
            db.session.rollback()
            return {"updated": 0, "history_records": 0}

        now = datetime.now(timezone.utc)
        history_records = 0
        for update in valid:
            item = items[update["plan_item_id"]]
            old_value, new_value = _apply_field(item, update["field"], update["value"], now)

            if update["evidence_content_ids"]:
                references = list(item.references or [])
                for content_id in update["evidence_content_ids"]:
                    if content_id not in references:
                        references.append(content_id)
                item.references = references

            write_history(
                plan_item_id=item.id,
                field=update["field"],
                old_value=old_value,
                new_value=new_value,
                actor_id=actor_id,
                actor_email=actor_email,
                reason=update["reason"],
                evidence_content_ids=update["evidence_content_ids"],
            )
            history_records += 1

        db.session.flush()
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("Bulk update rolled back for project=%s: %s", project_id, exc)
        raise PlanTransactionError(
            "plan_bulk_update", project_id, str(getattr(exc, "orig", None) or exc)
        ) from exc
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Bulk update project=%s updated=%d history=%d",
        project_id, len(valid), history_records, extra={"project_id": project_id},
    )
    return {"updated": len(valid), "history_records": history_records}
