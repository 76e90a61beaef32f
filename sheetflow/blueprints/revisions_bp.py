"""
Revisions Blueprint — revision history and restore.

Endpoints:
    GET    /api/v1/sheets/<sheet_id>/revisions?page=1&page_size=20
           Returns: 200 { "total", "page", "page_size", "items": [summary, ...] }
           newest first; page_size clamped to 1..REVISION_PAGE_SIZE_MAX.

    GET    /api/v1/sheets/<sheet_id>/revisions/<revision_id>
           Returns: 200 with the revision and its decoded snapshot.

    POST   /api/v1/sheets/<sheet_id>/revisions/<revision_id>/restore
           Body: { "comment": "..." }  (optional; the new revision records
                                         the live sheet status)
           Returns: 200 { sheet_id, restored_from_revision_id,
                          new_revision_id, revision_num, message }
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from sheetflow.core.exceptions import NotFoundError, ValidationError
from sheetflow.middleware.permission_required import current_actor
from sheetflow.services import revision_ledger
from sheetflow.services.helpers.scoped_queries import get_sheet_for_tenant
from sheetflow.services.restore_service import restore_revision
from sheetflow.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

revisions_bp = Blueprint("revisions", __name__, url_prefix="/api/v1")
register_error_handlers(revisions_bp)


@revisions_bp.route("/sheets/<int:sheet_id>/revisions", methods=["GET"])
def list_revisions(sheet_id: int):
    _actor_id, tenant_id = current_actor()
    sheet = get_sheet_for_tenant(sheet_id, tenant_id)

    page = max(1, request.args.get("page", 1, type=int) or 1)
    page_size = request.args.get(
        "page_size", current_app.config["REVISION_PAGE_SIZE_DEFAULT"], type=int,
    )
    page_size = min(current_app.config["REVISION_PAGE_SIZE_MAX"], max(1, page_size))

    total, items = revision_ledger.list_revisions(sheet.id, page=page, page_size=page_size)
    return jsonify({"total": total, "page": page, "page_size": page_size, "items": items}), 200


@revisions_bp.route("/sheets/<int:sheet_id>/revisions/<int:revision_id>", methods=["GET"])
def get_revision(sheet_id: int, revision_id: int):
    _actor_id, tenant_id = current_actor()
    sheet = get_sheet_for_tenant(sheet_id, tenant_id)
    revision = revision_ledger.get_revision(sheet.id, revision_id)
    if revision is None:
        raise NotFoundError(resource="Revision", resource_id=revision_id)
    return jsonify(revision), 200


@revisions_bp.route("/sheets/<int:sheet_id>/revisions/<int:revision_id>/restore", methods=["POST"])
def restore(sheet_id: int, revision_id: int):
    actor_id, tenant_id = current_actor()
    data = request.get_json(silent=True) or {}
    comment = data.get("comment")
    if comment is not None and not isinstance(comment, str):
        raise ValidationError("comment must be a string", details={"comment": "must be a string"})
    result = restore_revision(
        tenant_id, sheet_id, revision_id, actor_id,
        comment=(comment or None),
    )
    return jsonify(result), 200
