"""
Tests for planhub/services/plan_tree.py - the in-memory plan tree index.

Each test loads a fresh index for the ``project`` fixture; inserts are
committed where the test needs the store to see them.
"""

from datetime import date

import pytest

from planhub.core.exceptions import (
    ConflictError,
    NotFoundError,
    PlanConfigurationError,
    ValidationError,
)
from planhub.models import db as _db
from planhub.models.plan import PlanItem
from planhub.services.plan_tree import PlanTreeIndex, name_key
from planhub.services.plan_type_registry import TypeRegistry


def _index(project):
    registry = TypeRegistry.for_organization(project.organization_id)
    return PlanTreeIndex.load(project.id, registry)


def _seed_tree(index, system_types):
    """Dev > Sprint 1 > Setup, Dev > Sprint 2, Ops."""
    dev = index.insert(None, system_types["workstream"], "Dev")
    sprint1 = index.insert(dev.id, system_types["milestone"], "Sprint 1")
    setup = index.insert(sprint1.id, system_types["activity"], "Setup")
    sprint2 = index.insert(dev.id, system_types["milestone"], "Sprint 2")
    ops = index.insert(None, system_types["workstream"], "Ops")
    _db.session.commit()
    return dev, sprint1, setup, sprint2, ops


class TestInsert:
    def test_paths_depths_and_sort_order(self, project, system_types):
        dev, sprint1, setup, sprint2, ops = _seed_tree(_index(project), system_types)

        assert setup.path == "Dev > Sprint 1 > Setup"
        assert (dev.depth, sprint1.depth, setup.depth) == (0, 1, 2)
        assert (sprint1.sort_order, sprint2.sort_order) == (0, 1)
        assert (dev.sort_order, ops.sort_order) == (0, 1)
        assert setup.status == "not_started"
        assert PlanItem.query.count() == 5

    def test_names_are_trimmed(self, project, system_types):
        item = _index(project).insert(None, system_types["workstream"], "  Dev  ")
        assert item.name == "Dev"
        assert item.path == "Dev"

    def test_duplicate_sibling_name_conflicts(self, project, system_types):
        index = _index(project)
        index.insert(None, system_types["workstream"], "Dev")

        with pytest.raises(ConflictError):
            index.insert(None, system_types["workstream"], "DEV")

    def test_same_name_under_different_parents_is_allowed(self, project, system_types):
        index = _index(project)
        dev = index.insert(None, system_types["workstream"], "Dev")
        ops = index.insert(None, system_types["workstream"], "Ops")

        a = index.insert(dev.id, system_types["milestone"], "Go-Live")
        b = index.insert(ops.id, system_types["milestone"], "Go-Live")
        _db.session.commit()

        assert a.id != b.id

    def test_wrong_level_is_configuration_error(self, project, system_types):
        index = _index(project)
        with pytest.raises(PlanConfigurationError):
            index.insert(None, system_types["milestone"], "Sprint 1")

    def test_unknown_parent_is_not_found(self, project, system_types):
        index = _index(project)
        with pytest.raises(NotFoundError):
            index.insert("does-not-exist", system_types["milestone"], "Sprint 1")

    def test_extra_fields_are_stored(self, project, system_types):
        item = _index(project).insert(
            None, system_types["workstream"], "Dev", status="in_progress", owner="Ana",
        )
        assert item.status == "in_progress"
        assert item.owner == "Ana"


class TestLookups:
    def test_find_child_by_name_is_case_insensitive(self, project, system_types):
        dev, sprint1, *_ = _seed_tree(_index(project), system_types)
        index = _index(project)

        assert index.find_child_by_name(None, " dev ").id == dev.id
        assert index.find_child_by_name(dev.id, "SPRINT 1").id == sprint1.id
        assert index.find_child_by_name(dev.id, "Sprint 3") is None
        assert index.find_child_by_name(None, "Sprint 1") is None

    def test_children_are_ordered(self, project, system_types):
        dev, sprint1, setup, sprint2, ops = _seed_tree(_index(project), system_types)
        index = _index(project)

        assert [c.name for c in index.children(None)] == ["Dev", "Ops"]
        assert [c.name for c in index.children(dev.id)] == ["Sprint 1", "Sprint 2"]

    def test_descendants_parents_first(self, project, system_types):
        dev, *_ = _seed_tree(_index(project), system_types)
        names = [d.name for d in _index(project).descendants(dev.id)]
        assert names == ["Sprint 1", "Setup", "Sprint 2"]

    def test_next_sort_order_after_reload(self, project, system_types):
        dev, *_ = _seed_tree(_index(project), system_types)
        index = _index(project)

        assert index.next_sort_order(dev.id) == 2
        assert index.next_sort_order(None) == 2

    def test_name_key(self):
        assert name_key("  Sprint 1 ") == "sprint 1"
        assert name_key(None) == ""


class TestLeafMetadata:
    def test_changes_are_reported(self, project, system_types):
        index = _index(project)
        item = index.insert(None, system_types["workstream"], "Dev")

        changes = index.apply_leaf_metadata(item, {
            "status": "completed",
            "owner": "Ana",
            "start_date": date(2026, 1, 5),
            "notes": None,
        })

        assert item.status == "completed"
        assert ("status", "not_started", "completed") in changes
        assert ("owner", None, "Ana") in changes
        assert [c[0] for c in changes] == ["status", "owner", "start_date"]

    def test_empty_values_never_overwrite(self, project, system_types):
        index = _index(project)
        item = index.insert(None, system_types["workstream"], "Dev", owner="Ana", notes="keep")

        changes = index.apply_leaf_metadata(item, {"owner": "", "notes": "  ", "status": None})

        assert changes == []
        assert item.owner == "Ana"
        assert item.notes == "keep"

    def test_unchanged_values_are_not_reported(self, project, system_types):
        index = _index(project)
        item = index.insert(None, system_types["workstream"], "Dev", owner="Ana")

        assert index.apply_leaf_metadata(item, {"owner": "Ana"}) == []


class TestRenameAndMove:
    def test_rename_rewrites_subtree_paths(self, project, system_types):
        dev, sprint1, setup, *_ = _seed_tree(_index(project), system_types)
        index = _index(project)

        index.rename(index.get(dev.id), "Development")
        _db.session.commit()

        assert _db.session.get(PlanItem, setup.id).path == "Development > Sprint 1 > Setup"
        assert index.find_child_by_name(None, "development") is not None
        assert index.find_child_by_name(None, "dev") is None

    def test_rename_to_sibling_name_conflicts(self, project, system_types):
        _, sprint1, *_ = _seed_tree(_index(project), system_types)
        index = _index(project)

        with pytest.raises(ConflictError):
            index.rename(index.get(sprint1.id), "sprint 2")

    def test_move_under_other_parent(self, project, system_types):
        dev, sprint1, setup, sprint2, ops = _seed_tree(_index(project), system_types)
        index = _index(project)

        index.move(index.get(sprint1.id), ops.id)
        _db.session.commit()

        moved = _db.session.get(PlanItem, sprint1.id)
        assert moved.parent_id == ops.id
        assert moved.sort_order == 0
        assert _db.session.get(PlanItem, setup.id).path == "Ops > Sprint 1 > Setup"

    def test_move_under_own_descendant_is_rejected(self, project, system_types):
        dev, sprint1, setup, *_ = _seed_tree(_index(project), system_types)
        index = _index(project)

        with pytest.raises(ValidationError, match="descendant"):
            index.move(index.get(dev.id), setup.id)
        with pytest.raises(ValidationError, match="descendant"):
            index.move(index.get(dev.id), dev.id)

    def test_move_breaking_level_chain_is_rejected(self, project, system_types):
        dev, sprint1, setup, *_ = _seed_tree(_index(project), system_types)
        index = _index(project)

        with pytest.raises(ValidationError, match="level"):
            index.move(index.get(sprint1.id), None)

    def test_rename_rewrites_soft_deleted_descendant_paths(self, project, system_types):
        dev, sprint1, setup, *_ = _seed_tree(_index(project), system_types)
        _index(project).deactivate_subtree(_db.session.get(PlanItem, sprint1.id))
        _db.session.commit()
        index = _index(project)

        index.rename(index.get(dev.id), "Build")
        _db.session.commit()

        assert _db.session.get(PlanItem, sprint1.id).path == "Build > Sprint 1"
        assert _db.session.get(PlanItem, setup.id).path == "Build > Sprint 1 > Setup"

    def test_move_rewrites_soft_deleted_descendant_paths(self, project, system_types):
        dev, sprint1, setup, sprint2, ops = _seed_tree(_index(project), system_types)
        _index(project).deactivate_subtree(_db.session.get(PlanItem, setup.id))
        _db.session.commit()
        index = _index(project)

        index.move(index.get(sprint1.id), ops.id)
        _db.session.commit()

        deleted = _db.session.get(PlanItem, setup.id)
        assert deleted.is_active is False
        assert deleted.path == "Ops > Sprint 1 > Setup"

    def test_move_with_new_name_checks_the_final_name(self, project, system_types):
        dev, sprint1, setup, sprint2, ops = _seed_tree(_index(project), system_types)
        index = _index(project)
        index.insert(ops.id, system_types["milestone"], "Sprint 1")

        with pytest.raises(ConflictError):
            index.move(index.get(sprint1.id), ops.id)

        index.move(index.get(sprint1.id), ops.id, new_name="Sprint 1b")
        _db.session.commit()

        moved = _db.session.get(PlanItem, sprint1.id)
        assert moved.name == "Sprint 1b"
        assert _db.session.get(PlanItem, setup.id).path == "Ops > Sprint 1b > Setup"
        assert index.find_child_by_name(ops.id, "sprint 1b").id == sprint1.id
        assert index.find_child_by_name(dev.id, "sprint 1") is None


class TestDeactivate:
    def test_subtree_is_soft_deleted(self, project, system_types):
        dev, sprint1, setup, sprint2, ops = _seed_tree(_index(project), system_types)
        index = _index(project)

        affected = index.deactivate_subtree(index.get(dev.id))
        _db.session.commit()

        assert {a.name for a in affected} == {"Dev", "Sprint 1", "Setup", "Sprint 2"}
        assert PlanItem.query.count() == 5
        assert PlanItem.query_active().count() == 1
        assert _db.session.get(PlanItem, setup.id).parent_id == sprint1.id
        assert _db.session.get(PlanItem, setup.id).deactivated_at is not None

    def test_inactive_names_can_be_reused(self, project, system_types):
        dev, *_ = _seed_tree(_index(project), system_types)
        index = _index(project)
        index.deactivate_subtree(index.get(dev.id))
        _db.session.commit()

        index = _index(project)
        assert index.find_child_by_name(None, "Dev") is None
        fresh = index.insert(None, system_types["workstream"], "Dev")
        _db.session.commit()

        assert fresh.id != dev.id
        assert len(index) == 6


class TestBuildTree:
    def test_nested_tree(self, project, system_types):
        _seed_tree(_index(project), system_types)

        tree = _index(project).build_tree()

        assert tree["total"] == 5
        assert [n["name"] for n in tree["items"]] == ["Dev", "Ops"]
        dev = tree["items"][0]
        assert [c["name"] for c in dev["children"]] == ["Sprint 1", "Sprint 2"]
        assert dev["children"][0]["children"][0]["path"] == "Dev > Sprint 1 > Setup"
        assert dev["item_type"]["slug"] == "workstream"

    def test_status_filter_keeps_ancestors(self, project, system_types):
        _, _, setup, *_ = _seed_tree(_index(project), system_types)
        setup.status = "completed"
        _db.session.commit()

        tree = _index(project).build_tree(status="completed")

        assert tree["total"] == 1
        assert [n["name"] for n in tree["items"]] == ["Dev"]
        sprint = tree["items"][0]["children"]
        assert [n["name"] for n in sprint] == ["Sprint 1"]
        assert sprint[0]["children"][0]["status"] == "completed"

    def test_type_filter(self, project, system_types):
        _seed_tree(_index(project), system_types)

        tree = _index(project).build_tree(item_type_id=system_types["milestone"].id)

        assert tree["total"] == 2
        assert [n["name"] for n in tree["items"]] == ["Dev"]

    def test_inactive_items_are_hidden(self, project, system_types):
        dev, *_ = _seed_tree(_index(project), system_types)
        index = _index(project)
        index.deactivate_subtree(index.get(dev.id))
        _db.session.commit()

        tree = _index(project).build_tree()

        assert tree["total"] == 1
        assert tree["items"][0]["name"] == "Ops"
