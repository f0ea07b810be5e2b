"""
Plan item type registry.

Builds the effective level chain (1..N) for one organization out of its
own types and the system types, and answers level / slug / column
lookups for the tree index, the CSV parser and the reconciler.

Resolution rules:
  - An organization type at a level wins over the system type there.
  - An organization type also shadows any system type with the same slug,
    at whatever level that system type sits.
  - The chain must run 1..N without holes; ``validate_chain`` raises
    PlanConfigurationError otherwise.

A registry is a plain value built per call (``for_organization``) and
passed explicitly to the code that needs it; nothing is cached at
module level.
"""

import logging

from sqlalchemy import or_

from planhub.core.exceptions import NotFoundError, PlanConfigurationError
from planhub.models import db
from planhub.models.plan import SYSTEM_PLAN_ITEM_TYPES, PlanItemType

logger = logging.getLogger(__name__)

# Reference configuration: hierarchy columns in rank order, and the
# metadata columns that apply to the deepest filled cell of a row.
DEFAULT_HIERARCHY_COLUMNS = ("workstream", "milestone", "activity", "task", "subtask")
METADATA_COLUMNS = ("status", "owner", "start_date", "target_end_date", "notes")


def normalize_column_name(name) -> str:
    """Header cell → lookup key: trimmed, lower-case, spaces/hyphens as underscores."""
    key = str(name or "").strip().lower()
    return "_".join(key.replace("-", " ").split())


class TypeRegistry:
    """Effective plan item type chain for one organization."""

    def __init__(self, types, organization_id: int | None = None):
        self.organization_id = organization_id
        active = [t for t in types if t.is_active]

        org_types = [t for t in active if t.organization_id is not None]
        org_slugs = {t.slug.lower() for t in org_types}
        system_types = [
            t for t in active
            if t.organization_id is None and t.slug.lower() not in org_slugs
        ]

        # Every visible type, including shadowed system ones, so that items
        # created before an organization override still resolve their level.
        self._by_id = {t.id: t for t in active}

        self._by_level = {}
        for t in sorted(system_types, key=lambda x: x.id):
            self._by_level.setdefault(t.level, t)
        org_by_level = {}
        for t in sorted(org_types, key=lambda x: x.id):
            org_by_level.setdefault(t.level, t)
        self._by_level.update(org_by_level)

        self._by_slug = {}
        for t in system_types + org_types:
            self._by_slug[t.slug.lower()] = t

    @classmethod
    def for_organization(cls, organization_id: int | None) -> "TypeRegistry":
        """Load active system types plus the organization's own types."""
        query = PlanItemType.query.filter(PlanItemType.is_active.is_(True))
        if organization_id is None:
            query = query.filter(PlanItemType.organization_id.is_(None))
        else:
            query = query.filter(
                or_(
                    PlanItemType.organization_id.is_(None),
                    PlanItemType.organization_id == organization_id,
                )
            )
        return cls(query.all(), organization_id=organization_id)

    # ── Chain ────────────────────────────────────────────────────────────

    @property
    def max_level(self) -> int:
        return max(self._by_level) if self._by_level else 0

    def chain(self) -> list[PlanItemType]:
        """Types at levels 1..N in rank order."""
        return [self._by_level[level] for level in sorted(self._by_level)]

    def validate_chain(self) -> None:
        """Raise PlanConfigurationError unless levels run 1..N without holes."""
        if not self._by_level:
            raise PlanConfigurationError(
                "No plan item types are configured",
                details={"organization_id": self.organization_id},
            )
        missing = [level for level in range(1, self.max_level + 1) if level not in self._by_level]
        if missing:
            raise PlanConfigurationError(
                f"Plan item type chain has no type for level(s) {missing}",
                details={"organization_id": self.organization_id, "missing_levels": missing},
            )

    def hierarchy_columns(self) -> list[str]:
        """CSV hierarchy column names in rank order (the chain's slugs)."""
        return [normalize_column_name(t.slug) for t in self.chain()]

    # ── Lookups ──────────────────────────────────────────────────────────

    def resolve_type(self, level_or_slug) -> PlanItemType:
        """Return the effective type for a level (int) or slug (str).

        Raises NotFoundError when nothing matches.
        """
        if isinstance(level_or_slug, int):
            item_type = self._by_level.get(level_or_slug)
        else:
            item_type = self._by_slug.get(str(level_or_slug).strip().lower())
        if item_type is None:
            raise NotFoundError(resource="PlanItemType", resource_id=level_or_slug)
        return item_type

    def get(self, type_id: int) -> PlanItemType | None:
        return self._by_id.get(type_id)

    def visible_types(self) -> list[PlanItemType]:
        """Every active type visible to the organization, shadowed ones included."""
        return sorted(self._by_id.values(), key=lambda t: (t.level, t.organization_id is None, t.id))

    def level_of(self, type_id: int) -> int:
        """Level of a visible type id; PlanConfigurationError if unknown."""
        item_type = self._by_id.get(type_id)
        if item_type is None:
            raise PlanConfigurationError(
                f"Plan item type id={type_id} is not visible to this organization",
                details={"organization_id": self.organization_id, "item_type_id": type_id},
            )
        return item_type.level

    def level_for_column(self, column_name) -> int | None:
        """Map a hierarchy column header to its level, or None if unrecognised."""
        key = normalize_column_name(column_name)
        for item_type in self.chain():
            if normalize_column_name(item_type.slug) == key:
                return item_type.level
        return None

    def __repr__(self) -> str:
        return f"<TypeRegistry org={self.organization_id} levels={self.hierarchy_columns()}>"


def seed_system_plan_item_types() -> int:
    """
    Insert the five system plan item types (workstream .. subtask).
    Safe to run multiple times; skips slugs that already exist as system types.

    Call this from the Flask CLI command or from scripts/seed_plan_item_types.py.
    """
    created = 0
    for spec in SYSTEM_PLAN_ITEM_TYPES:
        exists = PlanItemType.query.filter_by(
            slug=spec["slug"],
            organization_id=None,
        ).first()
        if not exists:
            db.session.add(PlanItemType(is_system=True, is_active=True, **spec))
            created += 1

    if created > 0:
        db.session.flush()
        logger.info("Seeded %d system plan item types", created)

    return created
