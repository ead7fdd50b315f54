# backend/quotedesk/routes/orders.py
"""
Order Lifecycle API Routes

- POST   /api/orders                              create order (optionally with items)
- GET    /api/orders                              list orders visible to the actor
- GET    /api/orders/:id                          order with items
- PATCH  /api/orders/:id                          update terms / notes / shipping
- POST   /api/orders/:id/items                    add item
- PATCH  /api/orders/:id/items/:item_id           update item
- DELETE /api/orders/:id/items/:item_id           remove item
- POST   /api/orders/:id/status                   change status
- GET    /api/orders/:id/document                 quote document metadata + signed link
- POST   /api/orders/:id/document                 (re)generate quote document
- POST   /api/orders/:id/document/send            email the quote link to the customer
- GET    /api/orders/:id/audit                    audit log, most recent first
- GET    /api/orders/:id/notifications            notification attempts

SECURITY:
- Actor identity comes from trusted upstream headers (see decorators.require_auth)
- Coarse permission via @require_permission; row scope enforced in the services
- Actor ids recorded in audit entries come from g.actor, NEVER from the body

CONCURRENCY:
- Mutations accept an optional expected version, from the If-Match header or
  "expected_version" in the body. A mismatch returns 409 and writes nothing.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import QuoteDeskError, ValidationError
from ..validation import coerce_int
from ..services import (
    audit_service,
    document_service,
    notification_service,
    order_service,
    order_status_service,
)
from ..services.storage_service import get_artifact_store
from ..decorators import require_auth, require_permission


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _expected_version(payload: dict | None = None):
    raw = request.headers.get("If-Match")
    if raw:
        raw = raw.strip().strip('"').removeprefix("W/").strip('"')
    elif payload and payload.get("expected_version") is not None:
        raw = payload.get("expected_version")
    if raw is None or raw == "":
        return None
    return coerce_int("expected_version", raw)


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def _without(payload: dict, *keys: str) -> dict:
    return {k: v for k, v in payload.items() if k not in keys}


def _error(e: QuoteDeskError):
    return jsonify(e.to_dict()), e.status_code


@orders_bp.post("")
@require_auth
@require_permission("orders", "create")
def create_order_route():
    """
    Create an order.

    Request body:
        {
            "customer_email": "cliente@empresa.com.br",   // required
            "items": [{"product_id": 1, "quantity": 10, "unit_price_cents": 1250,
                       "selected_variants": {"Cor": "Azul"}}],
            "payment_terms": "...", "notes": "...", "shipping_cost_cents": 0
        }

    Response: 201 {"order": {...}, "variant_warnings": [...]}
    """
    try:
        result = order_service.create_order(_json_body(), g.actor)
        return jsonify({
            "order": result.order.to_dict(include_items=True),
            "variant_warnings": result.variant_warnings,
        }), 201
    except QuoteDeskError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_auth
@require_permission("orders", "view")
def list_orders_route():
    """
    List orders visible to the actor (row-scoped).

    Query params: status, limit (default 100, max 500), offset
    """
    try:
        rows, total = order_service.list_orders(
            g.actor,
            status=request.args.get("status") or None,
            limit=coerce_int("limit", request.args.get("limit", "100")),
            offset=coerce_int("offset", request.args.get("offset", "0")),
        )
        return jsonify({
            "orders": [o.to_dict() for o in rows],
            "total": total,
        }), 200
    except QuoteDeskError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
@require_permission("orders", "view")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id, g.actor)
        data = order.to_dict(include_items=True)
        data["allowed_next_statuses"] = order_status_service.allowed_next_statuses(order.status)
        return jsonify({"order": data}), 200
    except QuoteDeskError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>")
@require_auth
@require_permission("orders", "edit")
def update_order_route(order_id: int):
    """
    Update writable header fields.

    Response: {"order": {...}, "changes": {...}}; "changes" is empty for a no-op.
    """
    try:
        payload = _json_body()
        result = order_service.update_order_terms(
            order_id,
            _without(payload, "expected_version"),
            g.actor,
            expected_version=_expected_version(payload),
        )
        return jsonify(result.to_dict()), 200
    except QuoteDeskError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to update order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/items")
@require_auth
@require_permission("orders", "edit")
def add_item_route(order_id: int):
    try:
        payload = _json_body()
        result = order_service.add_item(
            order_id,
            _without(payload, "expected_version"),
            g.actor,
            expected_version=_expected_version(payload),
        )
        return jsonify(result.to_dict()), 201
    except QuoteDeskError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to add order item")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/items/<int:item_id>")
@require_auth
@require_permission("orders", "edit")
def update_item_route(order_id: int, item_id: int):
    try:
        payload = _json_body()
        result = order_service.update_item(
            order_id,
            item_id,
            _without(payload, "expected_version"),
            g.actor,
            expected_version=_expected_version(payload),
        )
        return jsonify(result.to_dict()), 200
    except QuoteDeskError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to update order item")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>/items/<int:item_id>")
@require_auth
@require_permission("orders", "edit")
def remove_item_route(order_id: int, item_id: int):
    try:
        result = order_service.remove_item(
            order_id,
            item_id,
            g.actor,
            expected_version=_expected_version(),
        )
        return jsonify(result.to_dict()), 200
    except QuoteDeskError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to remove order item")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/status")
@require_auth
@require_permission("orders", "edit")
def change_status_route(order_id: int):
    """
    Request body: {"status": "processing", "expected_version": 3}

    Error responses:
        400: Unknown status or disallowed transition (details.allowed lists valid targets)
        409: expected_version mismatch
    """
    try:
        payload = _json_body()
        status = payload.get("status")
        if not status:
            raise ValidationError("status is required")
        order = order_status_service.change_status(
            order_id,
            status,
            g.actor,
            expected_version=_expected_version(payload),
        )
        data = order.to_dict()
        data["allowed_next_statuses"] = order_status_service.allowed_next_statuses(order.status)
        return jsonify({"order": data}), 200
    except QuoteDeskError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to change order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/document")
@require_auth
@require_permission("orders", "view")
def get_document_route(order_id: int):
    try:
        order = order_service.get_order(order_id, g.actor)
        doc = document_service.get_quote_document(order.id)
        if doc is None:
            return jsonify({"error": "Quote document not generated yet"}), 404
        link = get_artifact_store().get_signed_url(
            doc.storage_key, current_app.config.get("QUOTE_LINK_TTL_SECONDS")
        )
        return jsonify({"document": doc.to_dict(), "link": link}), 200
    except QuoteDeskError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to get quote document")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/document")
@require_auth
@require_permission("orders", "edit")
def generate_document_route(order_id: int):
    """
    Generate (or regenerate) the quote PDF.

    Runs on the task runner, bounded by DOCUMENT_TIMEOUT_SECONDS (504 on timeout).
    """
    try:
        handle = document_service.generate_quote_document_async(order_id, g.actor)
        doc = handle.wait(timeout=current_app.config.get("DOCUMENT_TIMEOUT_SECONDS"))
        return jsonify({"document": doc}), 201
    except QuoteDeskError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to generate quote document")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/document/send")
@require_auth
@require_permission("orders", "edit")
def send_document_route(order_id: int):
    """
    Email the customer a time-limited link to the quote.

    Request body (optional): {"ttl_seconds": 604800}
    Error responses:
        502: Mail channel failed (attempt recorded in notifications)
        504: Not sent within NOTIFY_TIMEOUT_SECONDS
    """
    try:
        payload = _json_body()
        ttl = payload.get("ttl_seconds")
        ttl = coerce_int("ttl_seconds", ttl) if ttl is not None else None
        handle = notification_service.send_quote_async(order_id, g.actor, ttl=ttl)
        result = handle.wait(timeout=current_app.config.get("NOTIFY_TIMEOUT_SECONDS"))
        return jsonify(result), 200
    except QuoteDeskError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to send quote document")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/audit")
@require_auth
@require_permission("orders", "view")
def list_audit_route(order_id: int):
    try:
        order = order_service.get_order(order_id, g.actor)
        entries = audit_service.list_entries(order.id)
        return jsonify({
            "entries": [audit_service.format_entry(e) for e in entries],
        }), 200
    except QuoteDeskError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to list audit log")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/notifications")
@require_auth
@require_permission("orders", "view")
def list_notifications_route(order_id: int):
    try:
        order = order_service.get_order(order_id, g.actor)
        logs = notification_service.list_notifications(order.id)
        return jsonify({"notifications": [n.to_dict() for n in logs]}), 200
    except QuoteDeskError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to list notifications")
        return jsonify({"error": "Internal server error"}), 500
