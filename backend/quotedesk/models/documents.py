from __future__ import annotations

from ..extensions import db
from quotedesk.time_utils import to_utc_z


class QuoteDocument(db.Model):
    """
    Generated quote artifact for an order.

    One row per order. Regeneration overwrites both the stored bytes
    (same storage_key) and this row; there is no versioning.
    """
    __tablename__ = "quote_documents"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_quote_documents_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)

    # Keyed by order_number, e.g. "quotes/Q-2026-00001.pdf"
    storage_key = db.Column(db.String(255), nullable=False)
    content_type = db.Column(db.String(64), nullable=False, default="application/pdf")

    page_count = db.Column(db.Integer, nullable=False)
    row_count = db.Column(db.Integer, nullable=False)
    byte_size = db.Column(db.Integer, nullable=False)

    generated_at = db.Column(db.DateTime(timezone=True), nullable=False)
    generated_by_user_id = db.Column(db.String(64), nullable=True)

    order = db.relationship(
        "Order",
        backref=db.backref("quote_document", uselist=False, cascade="all, delete-orphan"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "storage_key": self.storage_key,
            "content_type": self.content_type,
            "page_count": self.page_count,
            "row_count": self.row_count,
            "byte_size": self.byte_size,
            "generated_at": to_utc_z(self.generated_at),
            "generated_by_user_id": self.generated_by_user_id,
        }
