"""
Value Sets Blueprint — Requirement / Offered / AsBuilt contexts.

Endpoints:
    GET    /api/v1/sheets/<sheet_id>/value-sets
    POST   /api/v1/sheets/<sheet_id>/value-sets
           Body: { "context": "Requirement|Offered|AsBuilt", "party_id": <int> }
           Returns: 201 when created, 200 when it already existed.

    POST   /api/v1/sheets/<sheet_id>/value-sets/<vs_id>/status
           Body: { "status": "Locked|Verified" }

    PATCH  /api/v1/sheets/<sheet_id>/value-sets/<vs_id>/variances
           Body: { "field_id": <int>, "status": "DeviatesAccepted|DeviatesRejected|null" }

    GET    /api/v1/sheets/<sheet_id>/value-sets/<vs_id>/values
    PUT    /api/v1/sheets/<sheet_id>/value-sets/<vs_id>/values
           Body: { "values": [{ "field_id", "value", "uom" }, ...] }

    GET    /api/v1/sheets/<sheet_id>/compare?party_id=<int>
"""

import logging

from flask import Blueprint, jsonify, request

from sheetflow.core.exceptions import ValidationError
from sheetflow.middleware.permission_required import current_actor
from sheetflow.services import value_set_service
from sheetflow.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

value_sets_bp = Blueprint("value_sets", __name__, url_prefix="/api/v1")
register_error_handlers(value_sets_bp)


def _optional_int(data: dict, key: str):
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{key} must be an integer", details={key: "must be an integer"})
    return value


def _required_text(data: dict, key: str) -> str:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{key} must be a string", details={key: "must be a string"})
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"Field '{key}' is required.", details={key: "required"})
    return value


@value_sets_bp.route("/sheets/<int:sheet_id>/value-sets", methods=["GET"])
def list_value_sets(sheet_id: int):
    _actor_id, tenant_id = current_actor()
    items = value_set_service.list_value_sets(tenant_id, sheet_id)
    return jsonify({"items": items, "total": len(items)}), 200


@value_sets_bp.route("/sheets/<int:sheet_id>/value-sets", methods=["POST"])
def create_value_set(sheet_id: int):
    actor_id, tenant_id = current_actor()
    data = request.get_json(silent=True) or {}
    context = _required_text(data, "context")

    result = value_set_service.ensure_value_set(
        tenant_id, sheet_id, context, _optional_int(data, "party_id"), actor_id,
    )
    return jsonify(result), 201 if result["created"] else 200


@value_sets_bp.route("/sheets/<int:sheet_id>/value-sets/<int:vs_id>/status", methods=["POST"])
def transition_status(sheet_id: int, vs_id: int):
    actor_id, tenant_id = current_actor()
    data = request.get_json(silent=True) or {}
    target = _required_text(data, "status")
    result = value_set_service.transition_value_set_status(tenant_id, sheet_id, vs_id, target, actor_id)
    return jsonify(result), 200


@value_sets_bp.route("/sheets/<int:sheet_id>/value-sets/<int:vs_id>/variances", methods=["PATCH"])
def patch_variance(sheet_id: int, vs_id: int):
    actor_id, tenant_id = current_actor()
    data = request.get_json(silent=True) or {}
    field_id = _optional_int(data, "field_id")
    if field_id is None:
        raise ValidationError("Field 'field_id' is required.", details={"field_id": "required"})
    if "status" not in data:
        raise ValidationError("Field 'status' is required (null clears).", details={"status": "required"})

    override = value_set_service.patch_variance(
        tenant_id, sheet_id, vs_id, field_id, data["status"], actor_id,
    )
    return jsonify({"value_set_id": vs_id, "field_id": field_id, "override": override}), 200


@value_sets_bp.route("/sheets/<int:sheet_id>/value-sets/<int:vs_id>/values", methods=["GET"])
def get_values(sheet_id: int, vs_id: int):
    _actor_id, tenant_id = current_actor()
    return jsonify(value_set_service.get_value_set_values(tenant_id, sheet_id, vs_id)), 200


@value_sets_bp.route("/sheets/<int:sheet_id>/value-sets/<int:vs_id>/values", methods=["PUT"])
def set_values(sheet_id: int, vs_id: int):
    actor_id, tenant_id = current_actor()
    data = request.get_json(silent=True) or {}
    result = value_set_service.set_value_set_values(
        tenant_id, sheet_id, vs_id, data.get("values"), actor_id,
    )
    return jsonify(result), 200


@value_sets_bp.route("/sheets/<int:sheet_id>/compare", methods=["GET"])
def compare(sheet_id: int):
    _actor_id, tenant_id = current_actor()
    party_id = request.args.get("party_id", type=int)
    return jsonify(value_set_service.get_compare_data(tenant_id, sheet_id, party_id=party_id)), 200
