"""
Sheets Blueprint — datasheet CRUD and status transitions.

Endpoints:
    POST   /api/v1/sheets
           Body: { "document": {...}, "template_id": <int optional>,
                   "is_template": <bool optional> }
           Returns: 201 with the new Draft sheet.

    GET    /api/v1/sheets/<sheet_id>
    PUT    /api/v1/sheets/<sheet_id>
           Body: { "document": {...}, "comment": "..." }
           Returns: 200 with the sheet and the minted revision number.

    POST   /api/v1/sheets/<sheet_id>/verify
    POST   /api/v1/sheets/<sheet_id>/reject      Body: { "comment": "..." }
    POST   /api/v1/sheets/<sheet_id>/approve
    GET    /api/v1/sheets/<sheet_id>/transitions

    GET    /api/v1/notifications?unread_only=true&limit=50&offset=0

Layer contract:
    - Blueprint: parse input, resolve identity, call service, return JSON.
    - NO db.session calls here; all writes owned by the services.
"""

import logging

from flask import Blueprint, jsonify, request

from sheetflow.core.exceptions import ValidationError
from sheetflow.middleware.permission_required import current_actor
from sheetflow.services import sheet_lifecycle, sheet_service
from sheetflow.services.notification import NotificationService
from sheetflow.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

sheets_bp = Blueprint("sheets", __name__, url_prefix="/api/v1")
register_error_handlers(sheets_bp)


# ── Helper ─────────────────────────────────────────────────────────────────────


def _document_from_body(data: dict) -> dict:
    document = data.get("document")
    if not isinstance(document, dict):
        raise ValidationError("Field 'document' is required.", details={"document": "required"})
    return document


# ── Routes ─────────────────────────────────────────────────────────────────────


@sheets_bp.route("/sheets", methods=["POST"])
def create_sheet():
    actor_id, tenant_id = current_actor()
    data = request.get_json(silent=True) or {}
    template_id = data.get("template_id")
    if template_id is not None and not isinstance(template_id, int):
        raise ValidationError("template_id must be an integer", details={"template_id": "must be an integer"})

    sheet = sheet_service.create_sheet(
        tenant_id, actor_id, _document_from_body(data),
        template_id=template_id,
        is_template=bool(data.get("is_template", False)),
    )
    return jsonify(sheet), 201


@sheets_bp.route("/sheets/<int:sheet_id>", methods=["GET"])
def get_sheet(sheet_id: int):
    _actor_id, tenant_id = current_actor()
    return jsonify(sheet_service.get_sheet(tenant_id, sheet_id)), 200


@sheets_bp.route("/sheets/<int:sheet_id>", methods=["PUT"])
def update_sheet(sheet_id: int):
    """Apply an edited document; every accepted edit mints one revision."""
    actor_id, tenant_id = current_actor()
    data = request.get_json(silent=True) or {}
    result = sheet_service.update_sheet(
        tenant_id, sheet_id, actor_id, _document_from_body(data),
        comment=(data.get("comment") or None),
    )
    return jsonify(result), 200


@sheets_bp.route("/sheets/<int:sheet_id>/verify", methods=["POST"])
def verify_sheet(sheet_id: int):
    actor_id, tenant_id = current_actor()
    return jsonify(sheet_lifecycle.verify_sheet(tenant_id, sheet_id, actor_id)), 200


@sheets_bp.route("/sheets/<int:sheet_id>/reject", methods=["POST"])
def reject_sheet(sheet_id: int):
    actor_id, tenant_id = current_actor()
    data = request.get_json(silent=True) or {}
    return jsonify(sheet_lifecycle.reject_sheet(tenant_id, sheet_id, actor_id, data.get("comment"))), 200


@sheets_bp.route("/sheets/<int:sheet_id>/approve", methods=["POST"])
def approve_sheet(sheet_id: int):
    actor_id, tenant_id = current_actor()
    return jsonify(sheet_lifecycle.approve_sheet(tenant_id, sheet_id, actor_id)), 200


@sheets_bp.route("/sheets/<int:sheet_id>/transitions", methods=["GET"])
def get_transitions(sheet_id: int):
    _actor_id, tenant_id = current_actor()
    return jsonify(sheet_lifecycle.get_available_transitions(tenant_id, sheet_id)), 200


@sheets_bp.route("/notifications", methods=["GET"])
def list_notifications():
    actor_id, tenant_id = current_actor()
    unread_only = request.args.get("unread_only", "false").lower() == "true"
    limit = min(request.args.get("limit", 50, type=int), 200)
    offset = max(request.args.get("offset", 0, type=int), 0)
    items, total = NotificationService.list_for_recipient(
        actor_id, tenant_id=tenant_id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({"items": [n.to_dict() for n in items], "total": total}), 200
