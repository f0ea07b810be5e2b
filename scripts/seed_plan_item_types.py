"""
Seed Plan Item Types - the five system levels (workstream .. subtask).

Usage:
    python scripts/seed_plan_item_types.py               # Uses development DB
    python scripts/seed_plan_item_types.py --env production
    python scripts/seed_plan_item_types.py --demo        # Also a demo org + project

This script is idempotent - safe to run multiple times.
"""

import argparse
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from planhub import create_app
from planhub.models import db
from planhub.models.organization import Organization, Project
from planhub.services.plan_type_registry import TypeRegistry, seed_system_plan_item_types

DEMO_ORG_SLUG = "demo"
DEMO_PROJECT_NAME = "Demo Rollout"


def seed_demo_organization():
    """Create the demo organization and one project if missing."""
    org = Organization.query.filter_by(slug=DEMO_ORG_SLUG).first()
    if not org:
        org = Organization(name="Demo Organization", slug=DEMO_ORG_SLUG)
        db.session.add(org)
        db.session.flush()
        print(f"  + organization {org.slug} (id={org.id})")

    project = Project.query.filter_by(organization_id=org.id, name=DEMO_PROJECT_NAME).first()
    if not project:
        project = Project(organization_id=org.id, name=DEMO_PROJECT_NAME)
        db.session.add(project)
        db.session.flush()
        print(f"  + project {project.name} (id={project.id})")
    return org, project


def main():
    parser = argparse.ArgumentParser(description="Seed system plan item types")
    parser.add_argument("--env", default="development", help="App environment")
    parser.add_argument("--demo", action="store_true", help="Also create a demo organization and project")
    args = parser.parse_args()

    os.environ.setdefault("APP_ENV", args.env)
    app = create_app(args.env)

    with app.app_context():
        print("=" * 60)
        print("  SEED: System plan item types")
        print("=" * 60)

        created = seed_system_plan_item_types()
        print(f"  {created} new type(s) created")

        if args.demo:
            org, project = seed_demo_organization()
            print(f"  Use X-Organization-Id: {org.id} with /api/v1/projects/{project.id}/plan")

        db.session.commit()

        registry = TypeRegistry.for_organization(None)
        print(f"  Hierarchy columns: {', '.join(registry.hierarchy_columns())}")


if __name__ == "__main__":
    main()
