# Overview: Server-side draft orders (session-scoped cart) and their submission into real orders.

"""
Draft Orders

A draft collects items before checkout under an opaque session key. Items go
through the same validation as order items, so submit_draft() cannot produce
an invalid Order. Adding the same product with the same variant selection
again merges quantities.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import DraftOrder, Product
from ..validation import validate_email, validate_item_payload
from .concurrency import lock_for_update, run_in_transaction
from .notification_service import schedule_new_order_notification
from .order_service import OrderMutation, create_order, variant_warnings
from .permission_service import Actor


def _check_session_key(session_key: str) -> str:
    if not isinstance(session_key, str) or not session_key.strip():
        raise ValidationError("session_key is required")
    if len(session_key) > 128:
        raise ValidationError("session_key exceeds max length 128")
    return session_key.strip()


def get_draft(session_key: str) -> DraftOrder | None:
    return db.session.query(DraftOrder).filter_by(session_key=_check_session_key(session_key)).first()


def get_or_create_draft(session_key: str) -> DraftOrder:
    session_key = _check_session_key(session_key)
    draft = get_draft(session_key)
    if draft is not None:
        return draft

    def _op() -> DraftOrder:
        new_draft = DraftOrder(session_key=session_key, items=[])
        db.session.add(new_draft)
        return new_draft

    return run_in_transaction(_op)


def put_draft_item(session_key: str, item: dict) -> tuple[DraftOrder, list[str]]:
    """Add an item (or merge quantity into a matching line). Returns (draft, variant warnings)."""
    clean = validate_item_payload(item)

    warnings: list[str] = []
    if clean.get("product_id") is not None:
        product = db.session.get(Product, clean["product_id"])
        if product is None:
            raise ValidationError(f"Product {clean['product_id']} not found")
        warnings = variant_warnings(product, clean["selected_variants"])

    draft = get_or_create_draft(session_key)

    def _op() -> DraftOrder:
        items = [dict(i) for i in (draft.items or [])]
        for existing in items:
            if (
                clean.get("product_id") is not None
                and existing.get("product_id") == clean["product_id"]
                and existing.get("selected_variants", {}) == clean["selected_variants"]
            ):
                existing["quantity"] += clean["quantity"]
                existing["unit_price_cents"] = clean["unit_price_cents"]
                break
        else:
            items.append({
                "product_id": clean.get("product_id"),
                "custom_name": clean.get("custom_name"),
                "custom_image_url": clean.get("custom_image_url"),
                "quantity": clean["quantity"],
                "unit_price_cents": clean["unit_price_cents"],
                "selected_variants": clean["selected_variants"],
            })
        # JSON columns are not mutation-tracked; assign a new list
        draft.items = items
        return draft

    return run_in_transaction(_op), warnings


def update_draft_details(session_key: str, fields: dict) -> DraftOrder:
    """Checkout form fields kept with the draft: customer_email, notes, contact_preference."""
    allowed = {"customer_email", "notes", "contact_preference"}
    if not isinstance(fields, dict):
        raise ValidationError("Invalid JSON payload")
    for k in fields:
        if k not in allowed:
            raise ValidationError(f"Field not allowed: {k}", details={"field": k})
    if fields.get("customer_email"):
        fields = dict(fields, customer_email=validate_email(fields["customer_email"]))

    draft = get_or_create_draft(session_key)

    def _op() -> DraftOrder:
        for k, v in fields.items():
            setattr(draft, k, v.strip() if isinstance(v, str) else v)
        return draft

    return run_in_transaction(_op)


def remove_draft_item(session_key: str, index: int) -> DraftOrder:
    draft = get_draft(session_key)
    if draft is None:
        raise NotFoundError("Draft not found")

    items = list(draft.items or [])
    if not isinstance(index, int) or index < 0 or index >= len(items):
        raise NotFoundError(f"Draft item {index} not found")

    def _op() -> DraftOrder:
        del items[index]
        draft.items = items
        return draft

    return run_in_transaction(_op)


def discard_draft(session_key: str) -> None:
    draft = get_draft(session_key)
    if draft is None:
        return
    db.session.delete(draft)
    db.session.commit()


def submit_draft(
    session_key: str,
    customer_email: str | None,
    actor: Actor,
    *,
    notes: str | None = None,
    contact_preference: str | None = None,
) -> OrderMutation:
    """
    Turn a draft into a pending Order.

    The draft is deleted in the same transaction as the order insert, so a
    failed checkout leaves the draft intact and no order behind. The admin
    new-order notice is scheduled after commit.
    """
    draft = get_draft(session_key)
    if draft is None or not draft.items:
        raise ValidationError("Cannot submit an empty draft")

    payload = {
        "customer_email": customer_email or draft.customer_email or actor.email,
        "notes": notes if notes is not None else draft.notes,
        "contact_preference": contact_preference if contact_preference is not None else draft.contact_preference,
        "items": [dict(i) for i in draft.items],
    }
    draft_id = draft.id

    def _consume_draft(order) -> None:
        locked = (
            lock_for_update(db.session.query(DraftOrder).filter_by(id=draft_id))
            .populate_existing()
            .first()
        )
        if locked is None:
            raise ValidationError("Draft was already submitted")
        db.session.delete(locked)

    # Order insert and draft removal commit together
    result = create_order(payload, actor, on_created=_consume_draft)

    current_app.logger.info("Draft submitted: session=%s order=%s", session_key, result.order.order_number)
    schedule_new_order_notification(result.order.id)
    return result
