"""
Tests for planhub/services/plan_import_service.py

Scenarios covered:
  1. Reconciliation basics (reuse by name, intermediates, leaf-only metadata)
  2. Idempotence and row-order invariance
  3. Row-level errors never abort the import
  4. Fatal errors (missing project, broken type chain, store rejection)
  5. History written for metadata changes on reused nodes
  6. Preview never writes
"""

from datetime import date

import pytest
from sqlalchemy.exc import OperationalError

from planhub.core.exceptions import NotFoundError, PlanConfigurationError, PlanTransactionError, ValidationError
from planhub.models import db as _db
from planhub.models.organization import Project
from planhub.models.plan import PlanItem, PlanItemHistory, PlanItemType
from planhub.services import plan_import_service
from planhub.services.plan_import_service import IMPORT_CHANGE_REASON, import_plan_items, preview_import

PLAN_CSV = """workstream,milestone,activity,status,owner,start_date,target_end_date,notes
Development,Sprint 1,Setup,in_progress,Ana,2026-01-05,2026-01-16,Kickoff
Development,Sprint 1,Build,,Ben,,,
Development,Sprint 2,,not_started,,,,
Testing,UAT,,,,02/01/2026,,
"""


def _active(project, name):
    return PlanItem.query_active().filter_by(project_id=project.id, name=name).one()


def _paths(project):
    return sorted(i.path for i in PlanItem.query_active().filter_by(project_id=project.id))


# ── 1. Reconciliation basics ─────────────────────────────────────────────────


class TestReconcile:
    def test_example_scenario(self, project):
        """Second row reuses Sprint1 and only updates its status."""
        csv_text = "workstream,milestone,status\nDev,Sprint1,in_progress\nDev,Sprint1,completed\n"

        result = import_plan_items(project.id, csv_text)

        assert result["total_rows"] == 2
        assert result["items_created"] == 2
        assert result["items_updated"] == 1
        assert result["errors"] == []
        assert [r["outcome"] for r in result["rows"]] == ["created", "updated"]
        assert _active(project, "Sprint1").status == "completed"
        assert PlanItem.query.count() == 2

    def test_builds_the_tree(self, project):
        result = import_plan_items(project.id, PLAN_CSV)

        assert result["errors"] == []
        assert result["items_created"] == 7
        assert _paths(project) == [
            "Development",
            "Development > Sprint 1",
            "Development > Sprint 1 > Build",
            "Development > Sprint 1 > Setup",
            "Development > Sprint 2",
            "Testing",
            "Testing > UAT",
        ]
        setup = _active(project, "Setup")
        assert setup.depth == 2
        assert setup.item_type.slug == "activity"
        assert setup.parent_id == _active(project, "Sprint 1").id

    def test_metadata_applies_to_the_leaf_only(self, project):
        import_plan_items(project.id, PLAN_CSV)

        setup = _active(project, "Setup")
        assert setup.status == "in_progress"
        assert setup.owner == "Ana"
        assert setup.start_date == date(2026, 1, 5)
        assert setup.target_end_date == date(2026, 1, 16)
        assert setup.notes == "Kickoff"

        for ancestor in ("Development", "Sprint 1"):
            node = _active(project, ancestor)
            assert node.status == "not_started"
            assert node.owner is None
            assert node.start_date is None

        assert _active(project, "UAT").start_date == date(2026, 2, 1)

    def test_names_match_case_insensitively(self, project):
        import_plan_items(project.id, "workstream,milestone\nDev,Sprint 1\n")

        result = import_plan_items(project.id, "workstream,milestone\n DEV ,sprint 1\n")

        assert result["items_created"] == 0
        assert result["items_updated"] == 1
        assert _active(project, "Dev").name == "Dev"
        assert PlanItem.query.count() == 2

    def test_shallow_row_after_deep_row_reuses_intermediate(self, project):
        result = import_plan_items(project.id, "workstream,milestone,status\nDev,Sprint 1,\nDev,,completed\n")

        assert result["items_created"] == 2
        assert result["items_updated"] == 1
        assert _active(project, "Dev").status == "completed"
        assert _active(project, "Sprint 1").status == "not_started"

    def test_new_children_append_after_existing_siblings(self, project):
        import_plan_items(project.id, "workstream,milestone\nDev,Sprint 1\nDev,Sprint 2\n")
        import_plan_items(project.id, "workstream,milestone\nDev,Sprint 3\n")

        assert _active(project, "Sprint 3").sort_order == 2

    def test_soft_deleted_nodes_are_not_reused(self, project):
        import_plan_items(project.id, "workstream,milestone\nDev,Sprint 1\n")
        dev = _active(project, "Dev")
        dev.soft_delete()
        _active(project, "Sprint 1").soft_delete()
        _db.session.commit()

        result = import_plan_items(project.id, "workstream,milestone\nDev,Sprint 1\n")

        assert result["items_created"] == 2
        assert _active(project, "Dev").id != dev.id
        assert PlanItem.query.count() == 4

    def test_actor_is_not_required(self, project):
        result = import_plan_items(project.id, "workstream\nDev\n", None, None)
        assert result["items_created"] == 1


# ── 2. Idempotence & ordering ────────────────────────────────────────────────


class TestIdempotence:
    def test_second_import_creates_nothing(self, project):
        first = import_plan_items(project.id, PLAN_CSV)
        count = PlanItem.query.count()

        second = import_plan_items(project.id, PLAN_CSV)

        assert first["items_created"] == 7
        assert second["items_created"] == 0
        assert second["items_updated"] == 4
        assert PlanItem.query.count() == count

    def test_reimport_writes_no_history_when_nothing_changed(self, project):
        import_plan_items(project.id, PLAN_CSV)
        import_plan_items(project.id, PLAN_CSV)

        assert PlanItemHistory.query.count() == 0

    def test_row_order_does_not_change_the_tree(self, organization, project):
        lines = PLAN_CSV.strip().splitlines()
        header, rows = lines[0], lines[1:]
        shuffled = "\n".join([header] + list(reversed(rows))) + "\n"
        other = Project(organization_id=organization.id, name="Mirror")
        _db.session.add(other)
        _db.session.commit()

        import_plan_items(project.id, PLAN_CSV)
        import_plan_items(other.id, shuffled)

        assert _paths(project) == _paths(other)


# ── 3. Row-level errors ──────────────────────────────────────────────────────


class TestRowErrors:
    def test_gap_row_is_skipped(self, project):
        csv_text = "workstream,milestone,activity\nDev,,Setup\nOps,Plan,\n"

        result = import_plan_items(project.id, csv_text)

        assert result["items_created"] == 2
        assert len(result["errors"]) == 1
        assert result["errors"][0]["row"] == 1
        assert "Gap in hierarchy" in result["errors"][0]["error"]
        assert result["rows"][0]["outcome"] == "error"
        assert _paths(project) == ["Ops", "Ops > Plan"]

    def test_bad_date_and_empty_rows_are_reported(self, project):
        csv_text = "workstream,owner,start_date\nDev,,2026-13-45\n,Ana,\nOps,,\n"

        result = import_plan_items(project.id, csv_text)

        assert [e["row"] for e in result["errors"]] == [1, 2]
        assert result["items_created"] == 1
        assert _paths(project) == ["Ops"]

    def test_invalid_status_is_a_warning_only(self, project):
        result = import_plan_items(project.id, "workstream,status\nDev,finished\n")

        assert result["errors"] == []
        assert result["warnings"][0]["row"] == 1
        assert _active(project, "Dev").status == "not_started"

    def test_invalid_status_keeps_existing_status(self, project):
        import_plan_items(project.id, "workstream,status\nDev,completed\n")

        result = import_plan_items(project.id, "workstream,status\nDev,done-ish\n")

        assert result["warnings"][0]["row"] == 1
        assert result["rows"][0]["outcome"] == "updated"
        assert result["rows"][0]["changed_fields"] == []
        assert _active(project, "Dev").status == "completed"


# ── 4. Fatal errors ──────────────────────────────────────────────────────────


class TestFatalErrors:
    def test_unknown_project(self, system_types):
        with pytest.raises(NotFoundError):
            import_plan_items("missing-project", "workstream\nDev\n")

    def test_project_of_other_organization(self, project, other_organization):
        with pytest.raises(NotFoundError):
            import_plan_items(project.id, "workstream\nDev\n", organization_id=other_organization.id)

    def test_inactive_project(self, project):
        project.is_active = False
        _db.session.commit()

        with pytest.raises(NotFoundError):
            import_plan_items(project.id, "workstream\nDev\n")

    def test_broken_type_chain_aborts_without_writes(self, organization, project):
        _db.session.add(PlanItemType(organization_id=organization.id, name="Late", slug="milestone", level=7))
        _db.session.commit()

        with pytest.raises(PlanConfigurationError):
            import_plan_items(project.id, "workstream\nDev\n")
        assert PlanItem.query.count() == 0

    def test_unparseable_csv_is_validation_error(self, project):
        with pytest.raises(ValidationError):
            import_plan_items(project.id, "owner,status\nAna,completed\n")

    def test_row_limit_from_config(self, app, project, monkeypatch):
        monkeypatch.setitem(app.config, "PLAN_IMPORT_MAX_ROWS", 1)

        with pytest.raises(ValidationError, match="limit is 1"):
            import_plan_items(project.id, "workstream\nDev\nOps\n")

    def test_store_failure_rolls_everything_back(self, project, monkeypatch):
        real_reconcile = plan_import_service.reconcile_rows

        def _reconcile_then_fail(*args, **kwargs):
            real_reconcile(*args, **kwargs)
            raise OperationalError("INSERT INTO plan_items", {}, Exception("disk I/O error"))

        monkeypatch.setattr(plan_import_service, "reconcile_rows", _reconcile_then_fail)

        with pytest.raises(PlanTransactionError) as exc_info:
            import_plan_items(project.id, PLAN_CSV)

        assert exc_info.value.operation == "plan_import"
        assert "disk I/O error" in str(exc_info.value)
        assert PlanItem.query.count() == 0


# ── 5. History ───────────────────────────────────────────────────────────────


class TestImportHistory:
    def test_changed_fields_on_reused_nodes_are_recorded(self, project):
        import_plan_items(project.id, "workstream,status,owner\nDev,in_progress,Ana\n")

        import_plan_items(project.id, "workstream,status,owner\nDev,completed,Ana\n", 7, "pm@acme.test")

        entries = PlanItemHistory.query.all()
        assert len(entries) == 1
        entry = entries[0]
        assert (entry.field, entry.old_value, entry.new_value) == ("status", "in_progress", "completed")
        assert entry.change_reason == IMPORT_CHANGE_REASON
        assert entry.changed_by_user_id == 7
        assert entry.changed_by_email == "pm@acme.test"

    def test_empty_cells_keep_existing_values(self, project):
        import_plan_items(project.id, "workstream,owner,notes\nDev,Ana,Kickoff\n")

        result = import_plan_items(project.id, "workstream,owner,notes\nDev,,\n")

        assert result["rows"][0]["changed_fields"] == []
        dev = _active(project, "Dev")
        assert (dev.owner, dev.notes) == ("Ana", "Kickoff")

    def test_created_nodes_have_no_history(self, project):
        import_plan_items(project.id, PLAN_CSV)
        assert PlanItemHistory.query.count() == 0


# ── 6. Preview ───────────────────────────────────────────────────────────────


class TestPreview:
    def test_preview_reports_rows_without_writing(self, project):
        csv_text = "workstream,milestone,activity,status\nDev,Sprint 1,,bogus\nDev,,Setup,\n"

        preview = preview_import(project.id, csv_text)

        assert PlanItem.query.count() == 0
        assert preview["total_rows"] == 2
        assert preview["hierarchy_columns"][:3] == ["workstream", "milestone", "activity"]
        first, second = preview["rows"]
        assert first["target_type"] == "milestone"
        assert first["path"] == ["Dev", "Sprint 1"]
        assert first["warnings"]
        assert second["errors"] and "Gap in hierarchy" in second["errors"][0]
        assert preview["errors"] == [{"row": 2, "error": second["errors"][0]}]

    def test_preview_of_unknown_project(self, system_types):
        with pytest.raises(NotFoundError):
            preview_import("nope", "workstream\nDev\n")
