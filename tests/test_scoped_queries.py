"""
Unit tests for planhub.services.helpers.scoped_queries.

Covers:
    1. get_project: organization scope, inactive projects, row lock
    2. get_plan_item: organization scope through the project, inactive items
    3. Cross-organization lookups are indistinguishable from missing ones
"""

import pytest

from planhub.core.exceptions import NotFoundError
from planhub.models import db
from planhub.services import plan_item_service
from planhub.services.helpers.scoped_queries import get_plan_item, get_project


def _make_item(project, name="Finance"):
    item = plan_item_service.create_plan_item(
        project.id, {"name": name}, organization_id=project.organization_id
    )
    db.session.commit()
    return item


# ── 1. get_project ───────────────────────────────────────────────────────────


class TestGetProject:
    def test_correct_organization_returns_project(self, project):
        result = get_project(project.id, organization_id=project.organization_id)
        assert result.id == project.id

    def test_other_organization_is_not_found(self, project, other_organization):
        with pytest.raises(NotFoundError) as exc_info:
            get_project(project.id, organization_id=other_organization.id)
        assert exc_info.value.resource == "Project"
        assert exc_info.value.organization_id == other_organization.id

    def test_nonexistent_pk(self, organization):
        with pytest.raises(NotFoundError):
            get_project("does-not-exist", organization_id=organization.id)

    def test_for_update(self, project):
        assert get_project(project.id, for_update=True).id == project.id

    def test_inactive_project_is_not_found(self, project):
        project.is_active = False
        db.session.commit()
        with pytest.raises(NotFoundError):
            get_project(project.id)


# ── 2. get_plan_item ─────────────────────────────────────────────────────────


class TestGetPlanItem:
    def test_correct_organization_returns_item(self, project):
        item = _make_item(project, name="Operations")
        result = get_plan_item(item.id, organization_id=project.organization_id)
        assert result.id == item.id
        assert result.name == "Operations"

    def test_other_organization_is_not_found(self, project, other_organization):
        item = _make_item(project)
        with pytest.raises(NotFoundError) as exc_info:
            get_plan_item(item.id, organization_id=other_organization.id)
        assert exc_info.value.resource == "PlanItem"

    def test_item_of_other_organizations_project(self, project, other_project):
        item = _make_item(other_project)
        with pytest.raises(NotFoundError):
            get_plan_item(item.id, organization_id=project.organization_id)

    def test_skips_inactive_unless_asked(self, project):
        item = _make_item(project)
        plan_item_service.delete_plan_item(item.id, organization_id=project.organization_id)
        db.session.commit()

        with pytest.raises(NotFoundError):
            get_plan_item(item.id)
        assert get_plan_item(item.id, active_only=False).id == item.id


# ── 3. Missing vs. foreign ───────────────────────────────────────────────────


class TestMissingAndForeignLookLikeTheSame:
    def test_same_error_shape(self, project, other_organization):
        item = _make_item(project)

        with pytest.raises(NotFoundError) as foreign:
            get_plan_item(item.id, organization_id=other_organization.id)
        with pytest.raises(NotFoundError) as missing:
            get_plan_item("missing", organization_id=other_organization.id)

        assert type(foreign.value) is type(missing.value)
        assert foreign.value.resource == missing.value.resource
