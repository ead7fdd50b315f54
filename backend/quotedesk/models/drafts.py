from __future__ import annotations

from ..extensions import db
from quotedesk.time_utils import to_utc_z


class DraftOrder(db.Model):
    """
    Session-scoped draft order (server-side cart).

    WHY: Items collected before checkout follow the same validation rules as
    real order items, so submission cannot produce an invalid Order.
    items is a list of {product_id, custom_name, custom_image_url,
    quantity, unit_price_cents, selected_variants}.
    """
    __tablename__ = "draft_orders"
    __table_args__ = (
        db.UniqueConstraint("session_key", name="uq_draft_orders_session_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_key = db.Column(db.String(128), nullable=False)

    customer_email = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    contact_preference = db.Column(db.String(32), nullable=True)

    items = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        items = list(self.items or [])
        return {
            "id": self.id,
            "session_key": self.session_key,
            "customer_email": self.customer_email,
            "notes": self.notes,
            "contact_preference": self.contact_preference,
            "items": items,
            "subtotal_cents": sum(i["quantity"] * i["unit_price_cents"] for i in items),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
