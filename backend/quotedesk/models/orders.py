from __future__ import annotations

from ..extensions import db
from quotedesk.time_utils import to_utc_z


STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

ORDER_STATUSES = (STATUS_PENDING, STATUS_PROCESSING, STATUS_COMPLETED, STATUS_CANCELLED)
TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_CANCELLED})


class Order(db.Model):
    """
    Quote request ("order") aggregate root.

    WHY: The order and its items are mutated together. Totals are derived
    columns maintained by order_service, never written by clients.

    CONCURRENCY: version_id is SQLAlchemy's optimistic version counter.
    Every UPDATE bumps it; callers may pass expected_version to reject
    writes prepared against an outdated snapshot.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        db.Index("ix_orders_salesperson", "salesperson_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g. "Q-2026-00042"), assigned once
    order_number = db.Column(db.String(32), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=STATUS_PENDING, index=True)

    # Weak reference to profiles.email (not a foreign key)
    customer_email = db.Column(db.String(255), nullable=False, index=True)

    # Derived money columns (cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_terms = db.Column(db.Text, nullable=True)
    delivery_terms = db.Column(db.Text, nullable=True)
    validity_terms = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    contact_preference = db.Column(db.String(32), nullable=True)

    # External identity ids (issued by the identity provider)
    salesperson_id = db.Column(db.String(64), nullable=True)
    created_by_user_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "status": self.status,
            "customer_email": self.customer_email,
            "subtotal_cents": self.subtotal_cents,
            "shipping_cost_cents": self.shipping_cost_cents,
            "total_cents": self.total_cents,
            "payment_terms": self.payment_terms,
            "delivery_terms": self.delivery_terms,
            "validity_terms": self.validity_terms,
            "notes": self.notes,
            "contact_preference": self.contact_preference,
            "salesperson_id": self.salesperson_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    One line of an order.

    product_id is a weak reference: the catalog product may be edited or
    removed independently. Ad-hoc lines (product_id NULL) carry their own
    custom_name / custom_image_url.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_order_items_price_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, nullable=True, index=True)

    custom_name = db.Column(db.String(255), nullable=True)
    custom_image_url = db.Column(db.String(1024), nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)

    # {"Tamanho": "M", "Cor": "Azul"}
    selected_variants = db.Column(db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "custom_name": self.custom_name,
            "custom_image_url": self.custom_image_url,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "selected_variants": dict(self.selected_variants or {}),
            "created_at": to_utc_z(self.created_at),
        }


class OrderNumberSequence(db.Model):
    """Per-year counter backing order_number allocation."""
    __tablename__ = "order_number_sequences"
    __table_args__ = (
        db.UniqueConstraint("year", name="uq_order_number_sequences_year"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    year = db.Column(db.Integer, nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
