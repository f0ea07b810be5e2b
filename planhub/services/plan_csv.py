"""
Plan CSV parsing - spreadsheet rows → typed rows for the reconciler.

Format:
  - Header row required; names are matched case-insensitively.
  - Hierarchy columns in rank order (reference set:
    workstream, milestone, activity, task, subtask).
  - Metadata columns: status, owner, start_date, target_end_date, notes.
    They apply to the deepest filled hierarchy cell of the row.
  - Dates: YYYY-MM-DD or MM/DD/YYYY.

Row outcomes from parsing:
  - error:   no hierarchy cell filled, or an unparseable date. The row is
             kept in the parsed output (preview shows it) but never imported.
  - warning: unknown status, ignored (new items get ``not_started``).

Rows are numbered from 1 starting at the first data row.
"""

import csv
import io
import logging

from planhub.core.exceptions import ValidationError
from planhub.models.plan import DEFAULT_STATUS, PLAN_ITEM_STATUSES
from planhub.services.plan_type_registry import (
    DEFAULT_HIERARCHY_COLUMNS,
    METADATA_COLUMNS,
    normalize_column_name,
)
from planhub.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

DATE_COLUMNS = ("start_date", "target_end_date")

CSV_TEMPLATE_EXAMPLE = [
    "Development", "Sprint 1", "Setup", "Create project", "",
    "in_progress", "John Doe", "2024-01-15", "2024-01-20", "Initial setup",
]


# ═══════════════════════════════════════════════════════════════
# CSV Template
# ═══════════════════════════════════════════════════════════════

def generate_csv_template(include_example: bool = True) -> str:
    """Header row plus at most one example data row."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(list(DEFAULT_HIERARCHY_COLUMNS) + list(METADATA_COLUMNS))
    if include_example:
        writer.writerow(CSV_TEMPLATE_EXAMPLE)
    return output.getvalue()


# ═══════════════════════════════════════════════════════════════
# Row helpers
# ═══════════════════════════════════════════════════════════════

def normalize_status(raw) -> str | None:
    """Map a status cell onto the enum; None if it does not match."""
    key = normalize_column_name(raw)
    return key if key in PLAN_ITEM_STATUSES else None


def find_target_level(levels: list, hierarchy_columns) -> tuple[int, str | None]:
    """Deepest filled hierarchy level of a row and a gap error, if any.

    Returns ``(0, None)`` when no hierarchy cell is filled. A filled cell
    below an empty one returns the level plus a "gap in hierarchy" message.
    """
    target = 0
    for position, value in enumerate(levels, start=1):
        if value:
            target = position
    for position in range(1, target):
        if not levels[position - 1]:
            return target, (
                f"Gap in hierarchy: '{hierarchy_columns[position - 1]}' is empty "
                f"but '{hierarchy_columns[target - 1]}' is filled"
            )
    return target, None


def _decode(file_content) -> str:
    if isinstance(file_content, bytes):
        return file_content.decode("utf-8-sig")  # Handle BOM
    return (file_content or "").lstrip("\ufeff")


# ═══════════════════════════════════════════════════════════════
# Parsing
# ═══════════════════════════════════════════════════════════════

def parse_plan_csv(
    file_content: str | bytes,
    hierarchy_columns=DEFAULT_HIERARCHY_COLUMNS,
    *,
    max_rows: int | None = None,
) -> dict:
    """
    Parse plan CSV text.

    Returns::

        {
            "headers":  [...original header names...],
            "rows":     [row dict, ...],
            "errors":   [{"row": n, "error": "..."}],
            "warnings": [{"row": n, "warning": "..."}],
        }

    Each row dict holds ``row_num``, ``levels`` (one cell per hierarchy
    column, None when empty), the parsed metadata, ``target_level``,
    ``gap_error``, the verbatim ``values`` by header, and its own
    ``errors`` / ``warnings`` lists.

    Raises ValidationError for input that cannot be parsed at all
    (empty, no hierarchy column in the header, no data rows, too many rows).
    """
    text = _decode(file_content)
    if not text.strip():
        raise ValidationError("CSV content is empty")

    hierarchy_columns = [normalize_column_name(c) for c in hierarchy_columns]

    try:
        reader = csv.DictReader(io.StringIO(text))
        headers = [(h or "").strip() for h in (reader.fieldnames or [])]
        raw_rows = list(reader)
    except csv.Error as exc:
        raise ValidationError(f"CSV could not be parsed: {exc}") from exc

    normalized_headers = {normalize_column_name(h) for h in headers}
    if not normalized_headers.intersection(hierarchy_columns):
        raise ValidationError(
            "CSV must have at least one hierarchy column "
            f"({', '.join(hierarchy_columns)}). Found columns: {', '.join(headers)}",
            details={"headers": headers},
        )
    if not raw_rows:
        raise ValidationError("CSV file has no data rows")
    if max_rows is not None and len(raw_rows) > max_rows:
        raise ValidationError(
            f"CSV has {len(raw_rows)} data rows; the limit is {max_rows}",
            details={"max_rows": max_rows},
        )

    rows = []
    errors = []
    warnings = []
    for row_num, raw in enumerate(raw_rows, start=1):
        row = _parse_row(row_num, raw, hierarchy_columns)
        rows.append(row)
        errors.extend({"row": row_num, "error": e} for e in row["errors"])
        warnings.extend({"row": row_num, "warning": w} for w in row["warnings"])

    if warnings:
        logger.info("Plan CSV parsed with %d warning(s)", len(warnings))

    return {"headers": headers, "rows": rows, "errors": errors, "warnings": warnings}


def _parse_row(row_num: int, raw: dict, hierarchy_columns: list[str]) -> dict:
    values = {}
    cells = {}
    for key, value in raw.items():
        if key is None:  # cells beyond the header row
            continue
        cell = (value or "").strip() if isinstance(value, str) else ""
        values[key.strip()] = cell
        cells.setdefault(normalize_column_name(key), cell)

    levels = [cells.get(column) or None for column in hierarchy_columns]
    row_errors = []
    row_warnings = []

    target_level, gap_error = find_target_level(levels, hierarchy_columns)
    if target_level == 0:
        row_errors.append("Row has no hierarchy data")

    status = None
    raw_status = cells.get("status", "")
    if raw_status:
        status = normalize_status(raw_status)
        if status is None:
            # Left unset: new items get the default, existing items keep theirs.
            row_warnings.append(
                f"Invalid status '{raw_status}', ignored "
                f"(new items default to '{DEFAULT_STATUS}', existing items keep their status)"
            )

    dates = {}
    for column in DATE_COLUMNS:
        try:
            dates[column] = parse_date_input(cells.get(column, ""))
        except ValueError as exc:
            row_errors.append(f"{column}: {exc}")
            dates[column] = None

    return {
        "row_num": row_num,
        "levels": levels,
        "target_level": target_level,
        "gap_error": gap_error,
        "status": status,
        "owner": cells.get("owner") or None,
        "start_date": dates["start_date"],
        "target_end_date": dates["target_end_date"],
        "notes": cells.get("notes") or None,
        "values": values,
        "errors": row_errors,
        "warnings": row_warnings,
    }


def row_metadata(row: dict) -> dict:
    """Metadata of a parsed row, ready for ``apply_leaf_metadata``."""
    return {
        "status": row.get("status"),
        "owner": row.get("owner"),
        "start_date": row.get("start_date"),
        "target_end_date": row.get("target_end_date"),
        "notes": row.get("notes"),
    }
