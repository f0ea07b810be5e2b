"""
Plan tree index - in-memory view of one project's plan items.

All plan items of the project are held in an id-keyed arena; ``parent_id``
is only ever used as a lookup key into that arena. On top of it the index
keeps, per parent, a map of active children keyed by lower-cased name, so
"does an active child named X exist under P?" is a dict lookup. A second
per-parent map holds every child, soft-deleted ones included, so
renames and moves keep their paths current.

The index mutates ORM objects in the current session (``db.session.add``)
but never flushes or commits; the calling unit of work owns the
transaction.
"""

import logging
import uuid
from collections import defaultdict

from planhub.core.exceptions import (
    ConflictError,
    NotFoundError,
    PlanConfigurationError,
    ValidationError,
)
from planhub.models import db
from planhub.models.plan import DEFAULT_STATUS, PATH_SEPARATOR, PlanItem

logger = logging.getLogger(__name__)

# Fields a CSV row may set on its deepest node.
LEAF_METADATA_FIELDS = ("status", "owner", "start_date", "target_end_date", "notes")


def name_key(name) -> str:
    """Sibling identity key: trimmed, case-insensitive."""
    return str(name or "").strip().lower()


def _is_empty(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class PlanTreeIndex:
    """Id-indexed arena of a project's plan items with sibling lookups."""

    def __init__(self, project_id: str, items, registry):
        self.project_id = project_id
        self.registry = registry
        self._items = {}
        self._children = defaultdict(dict)
        # Every child by parent, inactive ones included, for path upkeep.
        self._all_children = defaultdict(dict)
        self._max_sort = {}

        for item in sorted(items, key=lambda i: (i.depth or 0, i.sort_order or 0)):
            self._items[item.id] = item
            self._all_children[item.parent_id][item.id] = item
            if item.is_active:
                self._register(item)

    @classmethod
    def load(cls, project_id: str, registry) -> "PlanTreeIndex":
        """Load every plan item (active and inactive) of a project."""
        items = PlanItem.query.filter(PlanItem.project_id == project_id).all()
        return cls(project_id, items, registry)

    def _register(self, item):
        siblings = self._children[item.parent_id]
        key = name_key(item.name)
        if key in siblings and siblings[key].id != item.id:
            logger.warning(
                "Duplicate active sibling name %r under parent=%s in project=%s; keeping %s",
                item.name, item.parent_id, self.project_id, siblings[key].id,
            )
        else:
            siblings[key] = item
        current = self._max_sort.get(item.parent_id)
        if current is None or (item.sort_order or 0) > current:
            self._max_sort[item.parent_id] = item.sort_order or 0

    def _unregister(self, item):
        siblings = self._children.get(item.parent_id, {})
        key = name_key(item.name)
        if key in siblings and siblings[key].id == item.id:
            del siblings[key]

    # ── Queries ──────────────────────────────────────────────────────────

    def __len__(self):
        return len(self._items)

    def get(self, item_id: str) -> PlanItem | None:
        return self._items.get(item_id)

    def find_child_by_name(self, parent_id: str | None, name: str) -> PlanItem | None:
        """Case-insensitive exact match among the active children of a parent."""
        return self._children.get(parent_id, {}).get(name_key(name))

    def children(self, parent_id: str | None) -> list[PlanItem]:
        """Active children of a parent ordered by sort_order."""
        return sorted(
            self._children.get(parent_id, {}).values(),
            key=lambda i: (i.sort_order, i.name.lower()),
        )

    def descendants(self, item_id: str) -> list[PlanItem]:
        """Active descendants of a node, parents before children."""
        result = []
        stack = list(reversed(self.children(item_id)))
        while stack:
            node = stack.pop()
            result.append(node)
            stack.extend(reversed(self.children(node.id)))
        return result

    def next_sort_order(self, parent_id: str | None) -> int:
        current = self._max_sort.get(parent_id)
        return 0 if current is None else current + 1

    def expected_level(self, parent: PlanItem | None) -> int:
        """Type level a child of ``parent`` must have (1 for roots)."""
        if parent is None:
            return 1
        return self.registry.level_of(parent.item_type_id) + 1

    def _active_parent(self, parent_id: str | None) -> PlanItem | None:
        if parent_id is None:
            return None
        parent = self._items.get(parent_id)
        if parent is None or not parent.is_active:
            raise NotFoundError(resource="PlanItem", resource_id=parent_id)
        return parent

    # ── Mutations ────────────────────────────────────────────────────────

    def insert(self, parent_id: str | None, item_type, name: str, **fields) -> PlanItem:
        """Create a node under ``parent_id`` and append it after its siblings.

        The type level must equal the parent's level + 1 (1 for roots);
        a mismatch is a PlanConfigurationError, not a per-row failure.
        """
        name = str(name or "").strip()
        parent = self._active_parent(parent_id)

        expected = self.expected_level(parent)
        if item_type.level != expected:
            raise PlanConfigurationError(
                f"Plan item type '{item_type.slug}' has level {item_type.level}, "
                f"expected {expected} under parent {parent_id or 'root'}",
                details={"item_type_id": item_type.id, "parent_id": parent_id},
            )

        if self.find_child_by_name(parent_id, name) is not None:
            raise ConflictError(resource="PlanItem", field="name", value=name)

        item = PlanItem(
            id=str(uuid.uuid4()),
            project_id=self.project_id,
            parent_id=parent_id,
            item_type_id=item_type.id,
            name=name,
            status=fields.pop("status", None) or DEFAULT_STATUS,
            path=f"{parent.path}{PATH_SEPARATOR}{name}" if parent is not None else name,
            depth=parent.depth + 1 if parent is not None else 0,
            sort_order=self.next_sort_order(parent_id),
            references=[],
            is_active=True,
            **fields,
        )
        item.item_type = item_type
        db.session.add(item)

        self._items[item.id] = item
        self._all_children[parent_id][item.id] = item
        self._register(item)
        return item

    def apply_leaf_metadata(self, item: PlanItem, metadata: dict) -> list[tuple]:
        """Merge status/owner/dates/notes onto a node.

        Empty inputs never overwrite a value. Returns the changed fields
        as ``(field, old_value, new_value)`` tuples.
        """
        changes = []
        for field in LEAF_METADATA_FIELDS:
            value = metadata.get(field)
            if _is_empty(value):
                continue
            if isinstance(value, str):
                value = value.strip()
            old = getattr(item, field)
            if old == value:
                continue
            setattr(item, field, value)
            changes.append((field, old, value))
        return changes

    def rename(self, item: PlanItem, new_name: str) -> None:
        """Rename a node and rewrite the paths of its subtree."""
        new_name = str(new_name or "").strip()
        existing = self.find_child_by_name(item.parent_id, new_name)
        if existing is not None and existing.id != item.id:
            raise ConflictError(resource="PlanItem", field="name", value=new_name)
        self._unregister(item)
        item.name = new_name
        self._register(item)
        self._recompute_subtree(item)

    def move(self, item: PlanItem, new_parent_id: str | None, new_name: str | None = None) -> None:
        """Re-parent a node at the end of its new siblings.

        The new parent must not be the node itself or one of its
        descendants, and the node's type level must fit under it. With
        ``new_name`` the node is renamed in the same step, and sibling
        uniqueness is checked against that name.
        """
        name = str(new_name).strip() if new_name is not None else item.name
        new_parent = self._active_parent(new_parent_id)
        if new_parent is not None:
            if new_parent.id == item.id or new_parent.id in {d.id for d in self.descendants(item.id)}:
                raise ValidationError("Cannot move item to its own descendant")

        expected = self.expected_level(new_parent)
        item_level = self.registry.level_of(item.item_type_id)
        if item_level != expected:
            raise ValidationError(
                f"Item of level {item_level} cannot be placed where level {expected} is required",
                details={"parent_id": new_parent_id},
            )

        clash = self.find_child_by_name(new_parent_id, name)
        if clash is not None and clash.id != item.id:
            raise ConflictError(resource="PlanItem", field="name", value=name)

        self._unregister(item)
        self._all_children[item.parent_id].pop(item.id, None)
        item.parent_id = new_parent_id
        item.name = name
        item.sort_order = self.next_sort_order(new_parent_id)
        self._all_children[new_parent_id][item.id] = item
        self._register(item)
        self._recompute_subtree(item)

    def deactivate_subtree(self, item: PlanItem) -> list[PlanItem]:
        """Soft-delete a node and its active descendants; parent_id is kept."""
        affected = [item] + self.descendants(item.id)
        for node in affected:
            self._unregister(node)
            node.soft_delete()
        return affected

    def _recompute_subtree(self, item: PlanItem) -> None:
        """Rewrite path/depth below ``item``, soft-deleted descendants included."""
        parent = self._items.get(item.parent_id) if item.parent_id else None
        self._set_path(item, parent)
        stack = list(self._all_children.get(item.id, {}).values())
        while stack:
            node = stack.pop()
            self._set_path(node, self._items.get(node.parent_id))
            stack.extend(self._all_children.get(node.id, {}).values())

    @staticmethod
    def _set_path(node: PlanItem, parent: PlanItem | None) -> None:
        if parent is None:
            node.path = node.name
            node.depth = 0
        else:
            node.path = f"{parent.path}{PATH_SEPARATOR}{node.name}"
            node.depth = parent.depth + 1

    # ── Rendering ────────────────────────────────────────────────────────

    def build_tree(self, *, status: str | None = None, item_type_id: int | None = None) -> dict:
        """Nested dicts of the reachable active tree.

        With filters, a node is kept when it matches or when one of its
        descendants does, so matching nodes always keep their context.
        """
        filtered = status is not None or item_type_id is not None

        def matches(node):
            if status is not None and node.status != status:
                return False
            if item_type_id is not None and node.item_type_id != item_type_id:
                return False
            return True

        total = 0

        def walk(parent_id):
            nonlocal total
            out = []
            for node in self.children(parent_id):
                kids = walk(node.id)
                hit = matches(node)
                if hit:
                    total += 1
                if filtered and not hit and not kids:
                    continue
                data = node.to_dict()
                data["children"] = kids
                out.append(data)
            return out

        return {"items": walk(None), "total": total}
