"""
Scope-enforcing query helpers.

Every get-by-id for plan data MUST go through these helpers instead of
``db.session.get(Model, pk)``. A direct get bypasses organization
isolation and returns soft-deleted rows.

Usage:
    # Active project of the calling organization
    project = get_project(project_id, organization_id=org_id)

    # Active project, row-locked for a unit of work
    project = get_project(project_id, for_update=True)

    # Plan item, scoped through its project's organization
    item = get_plan_item(item_id, organization_id=org_id)

Missing records and records of another organization are
indistinguishable: both raise NotFoundError.
"""

import logging

from sqlalchemy import select

from planhub.core.exceptions import NotFoundError
from planhub.models import db
from planhub.models.organization import Project
from planhub.models.plan import PlanItem

logger = logging.getLogger(__name__)


def get_project(
    project_id: str,
    *,
    organization_id: int | None = None,
    for_update: bool = False,
) -> Project:
    """Return an active project, optionally scoped and row-locked.

    ``for_update=True`` issues ``SELECT ... FOR UPDATE`` so two units of
    work on the same project serialize on the store's row lock. SQLite
    ignores the clause; it serializes writers on its own.
    """
    stmt = select(Project).where(Project.id == project_id, Project.is_active.is_(True))
    if organization_id is not None:
        stmt = stmt.where(Project.organization_id == organization_id)
    if for_update:
        stmt = stmt.with_for_update()

    project = db.session.execute(stmt).scalar_one_or_none()
    if project is None:
        logger.debug("get_project: %s not found (organization=%s)", project_id, organization_id)
        raise NotFoundError(resource="Project", resource_id=project_id, organization_id=organization_id)
    return project


def get_plan_item(item_id: str, *, organization_id: int | None = None, active_only: bool = True) -> PlanItem:
    """Return a plan item, scoped to its project's organization."""
    stmt = (
        select(PlanItem)
        .join(Project, Project.id == PlanItem.project_id)
        .where(PlanItem.id == item_id)
    )
    if organization_id is not None:
        stmt = stmt.where(Project.organization_id == organization_id)
    if active_only:
        stmt = stmt.where(PlanItem.is_active.is_(True))

    item = db.session.execute(stmt).scalar_one_or_none()
    if item is None:
        logger.debug("get_plan_item: %s not found (organization=%s)", item_id, organization_id)
        raise NotFoundError(resource="PlanItem", resource_id=item_id, organization_id=organization_id)
    return item
