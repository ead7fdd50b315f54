# Overview: Service-layer operations for orders and their items; encapsulates business logic and database work.

"""
Order Aggregate Store

WHY: An order and its items form one aggregate. Every mutation recomputes the
derived totals and appends its audit entry in the SAME transaction, so a
failure leaves neither a half-updated order nor an orphan audit record.

RULES:
- total_cents = subtotal_cents + shipping_cost_cents, recomputed by the
  server after every item or shipping change; never client-settable
- order_number is allocated once on creation and never written again
- "updated"-class audit entries are gated on a non-empty diff; no-op
  mutations write nothing (the order row and version are untouched)
- Orders in a terminal status are read-only
- expected_version (optional) rejects writes prepared against a stale read
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..errors import NotFoundError, PermissionDeniedError, ValidationError
from ..models import Order, OrderItem, Product, STATUS_PENDING, ORDER_STATUSES, TERMINAL_STATUSES
from ..time_utils import utcnow
from ..validation import (
    ORDER_CREATE_POLICY,
    ORDER_TERMS_POLICY,
    enforce_rules_order_terms,
    validate_email,
    validate_item_payload,
    validate_payload,
)
from . import audit_service
from .access_scope_service import require_order_access, scope_orders_query
from .change_detector import ChangeSet, detect_changes
from .concurrency import check_version, lock_for_update, run_in_transaction
from .permission_service import Actor, ROLE_ADMIN, ROLE_SALESPERSON, require_permission
from .sequence_service import next_order_number


RESOURCE_ORDERS = "orders"

TRACKED_ORDER_FIELDS = (
    "order_number",
    "status",
    "customer_email",
    "subtotal_cents",
    "shipping_cost_cents",
    "total_cents",
    "payment_terms",
    "delivery_terms",
    "validity_terms",
    "notes",
    "contact_preference",
    "salesperson_id",
)

TRACKED_ITEM_FIELDS = (
    "quantity",
    "unit_price_cents",
    "selected_variants",
    "custom_name",
    "custom_image_url",
)


@dataclass
class OrderMutation:
    """Outcome of an order write."""
    order: Order
    item: OrderItem | None = None
    changes: ChangeSet = field(default_factory=ChangeSet)
    variant_warnings: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.changes)

    def to_dict(self) -> dict:
        data = {
            "order": self.order.to_dict(include_items=True),
            "changes": self.changes.to_json(),
            "variant_warnings": list(self.variant_warnings),
        }
        if self.item is not None:
            data["item"] = self.item.to_dict()
        return data


# =============================================================================
# Snapshots / derived values
# =============================================================================

def order_snapshot(order: Order) -> dict:
    """Tracked-field view of an order, as compared by the change detector."""
    return {name: getattr(order, name) for name in TRACKED_ORDER_FIELDS}


def item_snapshot(item: OrderItem) -> dict:
    return {
        "quantity": item.quantity,
        "unit_price_cents": item.unit_price_cents,
        "selected_variants": dict(item.selected_variants or {}),
        "custom_name": item.custom_name,
        "custom_image_url": item.custom_image_url,
    }


def recompute_totals(order: Order) -> None:
    order.subtotal_cents = sum(item.quantity * item.unit_price_cents for item in order.items)
    order.total_cents = order.subtotal_cents + (order.shipping_cost_cents or 0)


def resolve_item_name(item: OrderItem, product: Product | None = None) -> str:
    """Display name for a line: catalog name, else the ad-hoc custom_name."""
    if product is None and item.product_id is not None:
        product = db.session.get(Product, item.product_id)
    if product is not None:
        return product.name
    if item.custom_name:
        return item.custom_name
    return f"Produto #{item.product_id}" if item.product_id else "Item"


def _touch(order: Order) -> None:
    # Marks the order row dirty so item-only changes still bump version_id
    order.updated_at = utcnow()


# =============================================================================
# Lookups and guards
# =============================================================================

def _get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ValidationError(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def variant_warnings(product: Product | None, variants: dict | None) -> list[str]:
    """
    Variant keys the product does not define.

    Tolerated (the catalog may have changed since the cart was built) but
    surfaced to the caller and logged.
    """
    if product is None or not variants:
        return []
    known = product.variant_names()
    unknown = sorted(k for k in variants if k not in known)
    if not unknown:
        return []
    current_app.logger.warning(
        "Selected variants not defined on product: product_id=%s keys=%s",
        product.id, ",".join(unknown),
    )
    return [f"Variant '{k}' is not defined for product '{product.name}'" for k in unknown]


def _load_order(order_id: int, *, for_update: bool = False) -> Order:
    query = db.session.query(Order).filter_by(id=order_id)
    if for_update:
        query = lock_for_update(query).populate_existing()
    order = query.first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def _load_item(order: Order, item_id: int) -> OrderItem:
    for item in order.items:
        if item.id == item_id:
            return item
    raise NotFoundError(
        f"Item {item_id} not found on order {order.order_number}",
        details={"order_id": order.id, "item_id": item_id},
    )


def ensure_mutable(order: Order) -> None:
    if order.status in TERMINAL_STATUSES:
        raise ValidationError(
            f"Order {order.order_number} is {order.status} and can no longer be changed",
            details={"order_id": order.id, "status": order.status},
        )


def load_order_for_mutation(order_id: int, actor: Actor, expected_version: int | None = None) -> Order:
    """
    Latest committed row, locked where supported, after the row-scope and
    optimistic version gates. Status-independent (callers decide).
    """
    order = _load_order(order_id, for_update=True)
    require_order_access(actor, order)
    check_version(order, expected_version)
    return order


# =============================================================================
# Commands
# =============================================================================

def create_order(draft: dict, actor: Actor, *, on_created=None) -> OrderMutation:
    """
    Create an order with optional initial items.

    draft: {"customer_email": ..., "items": [...], plus any terms field}
    on_created: optional callable(order) run inside the same transaction,
    after the order row and its audit entry are staged.
    """
    require_permission(actor, RESOURCE_ORDERS, "create")

    if not isinstance(draft, dict):
        raise ValidationError("Invalid JSON payload")
    header = {k: v for k, v in draft.items() if k != "items"}
    fields = validate_payload(model=Order, payload=header, policy=ORDER_CREATE_POLICY, partial=False)
    fields["customer_email"] = validate_email(fields.get("customer_email"))
    enforce_rules_order_terms(fields)

    # Customers may only open orders for themselves
    is_staff = actor.is_admin or actor.has_role(ROLE_SALESPERSON)
    if not is_staff and (actor.email or "").lower() != fields["customer_email"].lower():
        raise PermissionDeniedError("Customers can only create orders for their own email")

    if actor.has_role(ROLE_SALESPERSON) and not actor.has_role(ROLE_ADMIN):
        fields.setdefault("salesperson_id", actor.id)

    raw_items = draft.get("items") or []
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list")

    items: list[dict] = []
    warnings: list[str] = []
    for raw in raw_items:
        clean = validate_item_payload(raw)
        product = _get_product(clean["product_id"]) if clean.get("product_id") is not None else None
        warnings.extend(variant_warnings(product, clean.get("selected_variants")))
        items.append(clean)

    cfg = current_app.config

    def _op() -> Order:
        order = Order(
            order_number=next_order_number(),
            status=STATUS_PENDING,
            customer_email=fields["customer_email"],
            shipping_cost_cents=fields.get("shipping_cost_cents") or 0,
            payment_terms=fields.get("payment_terms") or cfg.get("DEFAULT_PAYMENT_TERMS"),
            delivery_terms=fields.get("delivery_terms") or cfg.get("DEFAULT_DELIVERY_TERMS"),
            validity_terms=fields.get("validity_terms") or cfg.get("DEFAULT_VALIDITY_TERMS"),
            notes=fields.get("notes"),
            contact_preference=fields.get("contact_preference"),
            salesperson_id=fields.get("salesperson_id"),
            created_by_user_id=actor.id,
        )
        for clean in items:
            order.items.append(OrderItem(**clean))
        recompute_totals(order)
        db.session.add(order)
        db.session.flush()

        changes = detect_changes({}, order_snapshot(order), TRACKED_ORDER_FIELDS)
        audit_service.append_entry(order.id, audit_service.ACTION_CREATED, changes, actor)
        if on_created is not None:
            on_created(order)
        return order

    order = run_in_transaction(_op)
    current_app.logger.info("Order created: %s items=%s by=%s", order.order_number, len(items), actor.id)
    return OrderMutation(
        order=order,
        changes=detect_changes({}, order_snapshot(order), TRACKED_ORDER_FIELDS),
        variant_warnings=warnings,
    )


def update_order_terms(
    order_id: int,
    patch: dict,
    actor: Actor,
    expected_version: int | None = None,
) -> OrderMutation:
    """
    Patch header fields (terms, notes, shipping, contact, salesperson).

    Unknown or non-writable fields are rejected. Returns a mutation with an
    empty ChangeSet when nothing actually changed.
    """
    require_permission(actor, RESOURCE_ORDERS, "edit")

    fields = validate_payload(model=Order, payload=patch, policy=ORDER_TERMS_POLICY, partial=True)
    enforce_rules_order_terms(fields)

    def _op() -> tuple[Order, ChangeSet]:
        order = load_order_for_mutation(order_id, actor, expected_version)
        ensure_mutable(order)

        before = order_snapshot(order)
        proposed = dict(before)
        proposed.update(fields)
        # Derived totals follow the proposed shipping cost
        proposed["total_cents"] = order.subtotal_cents + (proposed.get("shipping_cost_cents") or 0)

        changes = detect_changes(before, proposed, TRACKED_ORDER_FIELDS)
        if not changes:
            return order, changes

        for name in fields:
            if name in changes:
                setattr(order, name, fields[name])
        recompute_totals(order)

        audit_service.append_entry(order.id, audit_service.ACTION_UPDATED, changes, actor)
        return order, changes

    order, changes = run_in_transaction(_op)
    return OrderMutation(order=order, changes=changes)


def add_item(
    order_id: int,
    payload: dict,
    actor: Actor,
    expected_version: int | None = None,
) -> OrderMutation:
    require_permission(actor, RESOURCE_ORDERS, "edit")

    clean = validate_item_payload(payload)
    product = _get_product(clean["product_id"]) if clean.get("product_id") is not None else None
    warnings = variant_warnings(product, clean.get("selected_variants"))

    def _op() -> tuple[Order, OrderItem, ChangeSet]:
        order = load_order_for_mutation(order_id, actor, expected_version)
        ensure_mutable(order)

        old_total = order.total_cents
        item = OrderItem(**clean)
        order.items.append(item)
        recompute_totals(order)
        _touch(order)
        db.session.flush()

        changes = ChangeSet.from_pairs({
            "product_name": (None, resolve_item_name(item, product)),
            "quantity": (None, item.quantity),
            "unit_price_cents": (None, item.unit_price_cents),
            "selected_variants": (None, dict(item.selected_variants or {})),
            "total_cents": (old_total, order.total_cents),
        })
        audit_service.append_entry(order.id, audit_service.ACTION_ITEM_ADDED, changes, actor)
        return order, item, changes

    order, item, changes = run_in_transaction(_op)
    return OrderMutation(order=order, item=item, changes=changes, variant_warnings=warnings)


def remove_item(
    order_id: int,
    item_id: int,
    actor: Actor,
    expected_version: int | None = None,
) -> OrderMutation:
    """Delete one line. The referenced catalog product is never touched."""
    require_permission(actor, RESOURCE_ORDERS, "edit")

    def _op() -> tuple[Order, ChangeSet]:
        order = load_order_for_mutation(order_id, actor, expected_version)
        ensure_mutable(order)
        item = _load_item(order, item_id)

        old_total = order.total_cents
        name = resolve_item_name(item)
        old_values = item_snapshot(item)

        order.items.remove(item)
        recompute_totals(order)
        _touch(order)

        changes = ChangeSet.from_pairs({
            "product_name": (name, None),
            "quantity": (old_values["quantity"], None),
            "unit_price_cents": (old_values["unit_price_cents"], None),
            "selected_variants": (old_values["selected_variants"], None),
            "total_cents": (old_total, order.total_cents),
        })
        audit_service.append_entry(order.id, audit_service.ACTION_ITEM_REMOVED, changes, actor)
        return order, changes

    order, changes = run_in_transaction(_op)
    return OrderMutation(order=order, changes=changes)


def update_item(
    order_id: int,
    item_id: int,
    patch: dict,
    actor: Actor,
    expected_version: int | None = None,
) -> OrderMutation:
    """
    Patch quantity, price, variants or ad-hoc name/image of one line.

    quantity < 1 is rejected. An unchanged patch writes nothing.
    """
    require_permission(actor, RESOURCE_ORDERS, "edit")

    clean = validate_item_payload(patch, partial=True)

    def _op() -> tuple[Order, OrderItem, ChangeSet, list[str]]:
        order = load_order_for_mutation(order_id, actor, expected_version)
        ensure_mutable(order)
        item = _load_item(order, item_id)

        before = item_snapshot(item)
        proposed = dict(before)
        proposed.update(clean)
        if item.product_id is None and not proposed.get("custom_name"):
            raise ValidationError("Ad-hoc items require custom_name", details={"field": "custom_name"})
        changes = detect_changes(before, proposed, TRACKED_ITEM_FIELDS)
        if not changes:
            return order, item, changes, []

        warnings: list[str] = []
        if "selected_variants" in changes and item.product_id is not None:
            warnings = variant_warnings(db.session.get(Product, item.product_id), proposed["selected_variants"])

        old_total = order.total_cents
        for name in changes:
            setattr(item, name, proposed[name])
        recompute_totals(order)
        _touch(order)

        logged = ChangeSet(changes)
        if order.total_cents != old_total:
            logged.update(ChangeSet.from_pairs({"total_cents": (old_total, order.total_cents)}))
        audit_service.append_entry(order.id, audit_service.ACTION_ITEM_UPDATED, logged, actor)
        return order, item, changes, warnings

    order, item, changes, warnings = run_in_transaction(_op)
    return OrderMutation(order=order, item=item, changes=changes, variant_warnings=warnings)


# =============================================================================
# Queries
# =============================================================================

def get_order(order_id: int, actor: Actor | None = None) -> Order:
    order = _load_order(order_id)
    if actor is not None:
        require_order_access(actor, order)
    return order


def get_order_by_number(order_number: str) -> Order:
    order = db.session.query(Order).filter_by(order_number=order_number).first()
    if order is None:
        raise NotFoundError(f"Order {order_number} not found", details={"order_number": order_number})
    return order


def list_orders(
    actor: Actor,
    *,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Order], int]:
    """Orders visible to the actor, newest first. Returns (rows, total)."""
    query = scope_orders_query(db.session.query(Order), actor)
    if status:
        if status not in ORDER_STATUSES:
            raise ValidationError(f"Unknown status '{status}'", details={"status": status})
        query = query.filter(Order.status == status)

    total = query.count()
    rows = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset(max(offset, 0))
        .limit(min(max(limit, 1), 500))
        .all()
    )
    return rows, total
