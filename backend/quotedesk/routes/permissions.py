# backend/quotedesk/routes/permissions.py
"""
Permission API Routes

- GET /api/permissions/check?resource=orders&action=edit   does the actor hold it?
- GET /api/permissions                                     role x resource matrix
- PUT /api/permissions                                     grant / revoke one flag

Admin rows are implicit (everything granted) and cannot be edited.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import QuoteDeskError, ValidationError
from ..services import permission_service
from ..services.access_scope_service import get_client_access_type
from ..permissions import RESOURCE_DEFINITIONS, ACTIONS
from ..decorators import require_auth, require_permission


permissions_bp = Blueprint("permissions", __name__, url_prefix="/api/permissions")


@permissions_bp.get("/check")
@require_auth
def check_permission_route():
    """
    Response:
        {"resource": "orders", "action": "edit", "allowed": true,
         "client_access_type": "own"}
    """
    resource = request.args.get("resource", "").strip()
    action = request.args.get("action", "view").strip()
    if not resource:
        return jsonify({"error": "resource is required"}), 400

    try:
        allowed = permission_service.actor_has_permission(g.actor, resource, action)
        data = {"resource": resource, "action": action, "allowed": allowed}
        if g.actor.has_role(permission_service.ROLE_SALESPERSON):
            data["client_access_type"] = get_client_access_type(g.actor.id)
        return jsonify(data), 200
    except Exception:
        current_app.logger.exception("Failed to check permission")
        return jsonify({"error": "Internal server error"}), 500


@permissions_bp.get("")
@require_auth
@require_permission("permissions", "view")
def get_permission_matrix_route():
    try:
        return jsonify({
            "roles": permission_service.list_role_permissions(),
            "resources": [
                {"name": name, "description": description, "category": category}
                for name, description, category in RESOURCE_DEFINITIONS
            ],
            "actions": list(ACTIONS),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to load permission matrix")
        return jsonify({"error": "Internal server error"}), 500


@permissions_bp.put("")
@require_auth
@require_permission("permissions", "edit")
def set_permission_route():
    """
    Request body:
        {"role": "salesperson", "resource": "orders", "action": "delete", "allowed": true}
    """
    try:
        payload = request.get_json(silent=True) or {}
        for key in ("role", "resource", "action", "allowed"):
            if key not in payload:
                raise ValidationError(f"{key} is required")
        if not isinstance(payload["allowed"], bool):
            raise ValidationError("allowed must be a boolean")

        permission_service.set_role_permission(
            payload["role"],
            payload["resource"],
            payload["action"],
            payload["allowed"],
        )
        current_app.logger.info(
            "Permission changed: role=%s resource=%s action=%s allowed=%s by=%s",
            payload["role"], payload["resource"], payload["action"], payload["allowed"], g.actor.id,
        )
        return jsonify({"permissions": permission_service.get_role_permissions(payload["role"])}), 200
    except QuoteDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update permission")
        return jsonify({"error": "Internal server error"}), 500
