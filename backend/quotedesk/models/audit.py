from __future__ import annotations

from ..extensions import db
from quotedesk.time_utils import to_utc_z


AUDIT_ACTIONS = (
    "created",
    "updated",
    "status_changed",
    "item_added",
    "item_removed",
    "item_updated",
)


class OrderAuditLog(db.Model):
    """
    Order change audit trail.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    The only removal path is the explicit retention purge (flask audit purge).

    changes holds raw values {"field": {"old": ..., "new": ...}}. Formatting
    (currency, labels, variant maps) happens at read time.
    """
    __tablename__ = "order_audit_logs"
    __table_args__ = (
        db.Index("ix_order_audit_logs_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    # Actor snapshot; all NULL means "system"
    user_id = db.Column(db.String(64), nullable=True)
    user_email = db.Column(db.String(255), nullable=True)
    user_name = db.Column(db.String(255), nullable=True)

    action = db.Column(db.String(32), nullable=False, index=True)
    changes = db.Column(db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "user_email": self.user_email,
            "user_name": self.user_name,
            "action": self.action,
            "changes": self.changes or {},
            "created_at": to_utc_z(self.created_at),
        }
