"""
Plan Items Blueprint - project plan tree, CSV import, bulk update.

Endpoints:
  GET    /api/v1/plan-item-types                            - Visible item types
  GET    /api/v1/plan-items/import/template                 - Download CSV template
  GET    /api/v1/projects/<project_id>/plan                 - Plan tree
  POST   /api/v1/projects/<project_id>/plan                 - Create one item
  POST   /api/v1/projects/<project_id>/plan/import/preview  - Parse CSV, no writes
  POST   /api/v1/projects/<project_id>/plan/import          - Reconcile CSV onto the tree
  POST   /api/v1/projects/<project_id>/plan/bulk-update     - Apply accepted updates
  GET    /api/v1/plan-items/<item_id>                       - One item with children
  PUT    /api/v1/plan-items/<item_id>                       - Update tracked fields
  DELETE /api/v1/plan-items/<item_id>                       - Soft delete with subtree
  GET    /api/v1/plan-items/<item_id>/history               - Change ledger
"""

import logging

from flask import Blueprint, Response, g, jsonify, request

from planhub.blueprints import paginate_query
from planhub.core.exceptions import (
    ConflictError,
    NotFoundError,
    PlanConfigurationError,
    PlanTransactionError,
    ValidationError,
)
from planhub.models import db
from planhub.services import plan_import_service, plan_item_service, plan_update_service
from planhub.services.plan_csv import generate_csv_template
from planhub.utils.errors import E, api_error
from planhub.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

plan_items_bp = Blueprint("plan_items", __name__, url_prefix="/api/v1")


# ═══════════════════════════════════════════════════════════════
# Error Handlers
# ═══════════════════════════════════════════════════════════════
@plan_items_bp.errorhandler(NotFoundError)
def handle_not_found(e):
    db.session.rollback()
    return api_error(E.NOT_FOUND, f"{e.resource} not found")


@plan_items_bp.errorhandler(ValidationError)
def handle_validation(e):
    db.session.rollback()
    return api_error(E.VALIDATION_INVALID, str(e), details=e.details)


@plan_items_bp.errorhandler(ConflictError)
def handle_conflict(e):
    db.session.rollback()
    return api_error(E.CONFLICT_DUPLICATE, str(e), details={e.field: e.value})


@plan_items_bp.errorhandler(PlanConfigurationError)
def handle_plan_configuration(e):
    db.session.rollback()
    logger.error("Plan configuration error: %s", e)
    return api_error(E.PLAN_CONFIGURATION, str(e), details=e.details)


@plan_items_bp.errorhandler(PlanTransactionError)
def handle_plan_transaction(e):
    return api_error(E.TRANSACTION_ROLLED_BACK, f"{e.operation} was rolled back, nothing was saved")


# ═══════════════════════════════════════════════════════════════
# Item types & template
# ═══════════════════════════════════════════════════════════════
@plan_items_bp.route("/plan-item-types", methods=["GET"])
def list_plan_item_types():
    types = plan_item_service.list_plan_item_types(g.organization_id)
    return jsonify({"items": [t.to_dict() for t in types], "total": len(types)})


@plan_items_bp.route("/plan-items/import/template", methods=["GET"])
def download_template():
    """Download a CSV template for plan import."""
    include_example = request.args.get("example", "true").lower() != "false"
    return Response(
        generate_csv_template(include_example=include_example),
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=plan_import_template.csv"},
    )


# ═══════════════════════════════════════════════════════════════
# Project plan
# ═══════════════════════════════════════════════════════════════
@plan_items_bp.route("/projects/<project_id>/plan", methods=["GET"])
def get_plan_tree(project_id):
    status = request.args.get("status") or None
    item_type_id = request.args.get("item_type_id", type=int)
    tree = plan_item_service.get_plan_tree(
        project_id,
        organization_id=g.organization_id,
        status=status,
        item_type_id=item_type_id,
    )
    return jsonify(tree)


@plan_items_bp.route("/projects/<project_id>/plan", methods=["POST"])
def create_plan_item(project_id):
    data = request.get_json(silent=True) or {}
    if not str(data.get("name") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "name is required")

    item = plan_item_service.create_plan_item(project_id, data, organization_id=g.organization_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(item.to_dict()), 201


@plan_items_bp.route("/projects/<project_id>/plan/import/preview", methods=["POST"])
def preview_plan_import(project_id):
    """Parse and validate a plan CSV without writing anything."""
    file_content = _extract_file_content()
    if not file_content:
        return api_error(E.VALIDATION_REQUIRED, "CSV file is required (file upload, csv_content or raw body)")

    result = plan_import_service.preview_import(
        project_id, file_content, organization_id=g.organization_id,
    )
    return jsonify(result)


@plan_items_bp.route("/projects/<project_id>/plan/import", methods=["POST"])
def import_plan(project_id):
    """Reconcile a plan CSV onto the project's plan tree."""
    file_content = _extract_file_content()
    if not file_content:
        return api_error(E.VALIDATION_REQUIRED, "CSV file is required (file upload, csv_content or raw body)")

    result = plan_import_service.import_plan_items(
        project_id,
        file_content,
        getattr(g, "actor_id", None),
        getattr(g, "actor_email", None),
        organization_id=g.organization_id,
    )
    status_code = 200 if not result["errors"] else 207
    return jsonify(result), status_code


@plan_items_bp.route("/projects/<project_id>/plan/bulk-update", methods=["POST"])
def bulk_update_plan(project_id):
    """Apply accepted field updates to plan items in one transaction."""
    data = request.get_json(silent=True) or {}
    updates = data.get("updates")
    if updates is None:
        return api_error(E.VALIDATION_REQUIRED, "updates is required")

    result = plan_update_service.bulk_update_plan_items(
        project_id,
        updates,
        getattr(g, "actor_id", None),
        getattr(g, "actor_email", None),
        organization_id=g.organization_id,
    )
    return jsonify(result)


# ═══════════════════════════════════════════════════════════════
# Single item
# ═══════════════════════════════════════════════════════════════
@plan_items_bp.route("/plan-items/<item_id>", methods=["GET"])
def get_plan_item(item_id):
    return jsonify(plan_item_service.get_plan_item(item_id, organization_id=g.organization_id))


@plan_items_bp.route("/plan-items/<item_id>", methods=["PUT"])
def update_plan_item(item_id):
    data = request.get_json(silent=True) or {}
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "Request body is required")

    item = plan_item_service.update_plan_item(
        item_id,
        data,
        organization_id=g.organization_id,
        actor_id=getattr(g, "actor_id", None),
        actor_email=getattr(g, "actor_email", None),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(item.to_dict())


@plan_items_bp.route("/plan-items/<item_id>", methods=["DELETE"])
def delete_plan_item(item_id):
    count = plan_item_service.delete_plan_item(item_id, organization_id=g.organization_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Plan item deleted", "deactivated": count})


@plan_items_bp.route("/plan-items/<item_id>/history", methods=["GET"])
def get_plan_item_history(item_id):
    query = plan_item_service.get_plan_item_history(item_id, organization_id=g.organization_id)
    entries, total = paginate_query(query, default_limit=100, max_limit=500)
    return jsonify({"items": [h.to_dict() for h in entries], "total": total})


# ═══════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════
def _extract_file_content() -> str | None:
    """Extract CSV file content from multipart upload, JSON field or raw body."""
    # Multipart file upload
    if request.files:
        file = request.files.get("file")
        if file:
            return file.read().decode("utf-8-sig")

    # JSON body with csv_content field
    data = request.get_json(silent=True)
    if isinstance(data, dict) and "csv_content" in data:
        return data["csv_content"]

    # Raw body (text/csv)
    if request.data and not request.is_json:
        return request.data.decode("utf-8-sig")

    return None
