"""
Ratings Blueprint — nameplate/ratings blocks and their lock.

Endpoints:
    GET    /api/v1/sheets/<sheet_id>/ratings
    POST   /api/v1/sheets/<sheet_id>/ratings
           Body: { "block_type": "nameplate", "notes": "...",
                   "source_value_set_id": <int>, "entries": [{key, value, uom}] }
    GET    /api/v1/sheets/<sheet_id>/ratings/<block_id>
    PUT    /api/v1/sheets/<sheet_id>/ratings/<block_id>
    DELETE /api/v1/sheets/<sheet_id>/ratings/<block_id>
    POST   /api/v1/sheets/<sheet_id>/ratings/<block_id>/lock
    POST   /api/v1/sheets/<sheet_id>/ratings/<block_id>/unlock   (admin only)
"""

import logging

from flask import Blueprint, jsonify, request

from sheetflow.middleware.permission_required import current_actor, require_role
from sheetflow.services import ratings_service
from sheetflow.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

ratings_bp = Blueprint("ratings", __name__, url_prefix="/api/v1")
register_error_handlers(ratings_bp)


@ratings_bp.route("/sheets/<int:sheet_id>/ratings", methods=["GET"])
def list_blocks(sheet_id: int):
    _actor_id, tenant_id = current_actor()
    items = ratings_service.list_ratings_blocks(tenant_id, sheet_id)
    return jsonify({"items": items, "total": len(items)}), 200


@ratings_bp.route("/sheets/<int:sheet_id>/ratings", methods=["POST"])
def create_block(sheet_id: int):
    actor_id, tenant_id = current_actor()
    data = request.get_json(silent=True) or {}
    return jsonify(ratings_service.create_ratings_block(tenant_id, sheet_id, data, actor_id)), 201


@ratings_bp.route("/sheets/<int:sheet_id>/ratings/<int:block_id>", methods=["GET"])
def get_block(sheet_id: int, block_id: int):
    _actor_id, tenant_id = current_actor()
    return jsonify(ratings_service.get_ratings_block(tenant_id, sheet_id, block_id)), 200


@ratings_bp.route("/sheets/<int:sheet_id>/ratings/<int:block_id>", methods=["PUT"])
def update_block(sheet_id: int, block_id: int):
    actor_id, tenant_id = current_actor()
    data = request.get_json(silent=True) or {}
    return jsonify(ratings_service.update_ratings_block(tenant_id, sheet_id, block_id, data, actor_id)), 200


@ratings_bp.route("/sheets/<int:sheet_id>/ratings/<int:block_id>", methods=["DELETE"])
def delete_block(sheet_id: int, block_id: int):
    actor_id, tenant_id = current_actor()
    ratings_service.delete_ratings_block(tenant_id, sheet_id, block_id, actor_id)
    return "", 204


@ratings_bp.route("/sheets/<int:sheet_id>/ratings/<int:block_id>/lock", methods=["POST"])
def lock_block(sheet_id: int, block_id: int):
    actor_id, tenant_id = current_actor()
    return jsonify(ratings_service.lock_ratings_block(tenant_id, sheet_id, block_id, actor_id)), 200


@ratings_bp.route("/sheets/<int:sheet_id>/ratings/<int:block_id>/unlock", methods=["POST"])
@require_role("admin")
def unlock_block(sheet_id: int, block_id: int):
    actor_id, tenant_id = current_actor()
    return jsonify(ratings_service.unlock_ratings_block(tenant_id, sheet_id, block_id, actor_id)), 200
