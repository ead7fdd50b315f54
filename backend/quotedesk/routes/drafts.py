# backend/quotedesk/routes/drafts.py
"""
Draft Order (Cart) API Routes

- GET    /api/drafts/:session_key                  draft (created empty on first access)
- PUT    /api/drafts/:session_key                  checkout fields (email, notes, contact)
- DELETE /api/drafts/:session_key                  discard
- POST   /api/drafts/:session_key/items            add / merge item
- DELETE /api/drafts/:session_key/items/:index     remove item
- POST   /api/drafts/:session_key/submit           create the order (orders:create)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import QuoteDeskError
from ..services import draft_service
from ..decorators import require_auth, require_permission


drafts_bp = Blueprint("drafts", __name__, url_prefix="/api/drafts")


@drafts_bp.get("/<session_key>")
def get_draft_route(session_key: str):
    try:
        draft = draft_service.get_or_create_draft(session_key)
        return jsonify({"draft": draft.to_dict()}), 200
    except QuoteDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load draft")
        return jsonify({"error": "Internal server error"}), 500


@drafts_bp.put("/<session_key>")
def update_draft_route(session_key: str):
    try:
        draft = draft_service.update_draft_details(session_key, request.get_json(silent=True) or {})
        return jsonify({"draft": draft.to_dict()}), 200
    except QuoteDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update draft")
        return jsonify({"error": "Internal server error"}), 500


@drafts_bp.delete("/<session_key>")
def discard_draft_route(session_key: str):
    try:
        draft_service.discard_draft(session_key)
        return jsonify({"message": "Draft discarded"}), 200
    except QuoteDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to discard draft")
        return jsonify({"error": "Internal server error"}), 500


@drafts_bp.post("/<session_key>/items")
def add_draft_item_route(session_key: str):
    try:
        draft, warnings = draft_service.put_draft_item(session_key, request.get_json(silent=True))
        return jsonify({"draft": draft.to_dict(), "variant_warnings": warnings}), 201
    except QuoteDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add draft item")
        return jsonify({"error": "Internal server error"}), 500


@drafts_bp.delete("/<session_key>/items/<int:index>")
def remove_draft_item_route(session_key: str, index: int):
    try:
        draft = draft_service.remove_draft_item(session_key, index)
        return jsonify({"draft": draft.to_dict()}), 200
    except QuoteDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to remove draft item")
        return jsonify({"error": "Internal server error"}), 500


@drafts_bp.post("/<session_key>/submit")
@require_auth
@require_permission("orders", "create")
def submit_draft_route(session_key: str):
    """
    Request body:
        {"customer_email": "...", "notes": "...", "contact_preference": "whatsapp"}

    customer_email defaults to the draft's, then to the actor's email.
    """
    try:
        payload = request.get_json(silent=True) or {}
        result = draft_service.submit_draft(
            session_key,
            payload.get("customer_email"),
            g.actor,
            notes=payload.get("notes"),
            contact_preference=payload.get("contact_preference"),
        )
        return jsonify({
            "order": result.order.to_dict(include_items=True),
            "variant_warnings": result.variant_warnings,
        }), 201
    except QuoteDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to submit draft")
        return jsonify({"error": "Internal server error"}), 500
