from __future__ import annotations

from ..extensions import db
from quotedesk.time_utils import to_utc_z


TRIGGER_AUTO = "AUTO"
TRIGGER_MANUAL = "MANUAL"

KIND_STATUS_CHANGED = "STATUS_CHANGED"
KIND_QUOTE_LINK = "QUOTE_LINK"
KIND_NEW_ORDER = "NEW_ORDER"


class NotificationLog(db.Model):
    """
    Record of every outbound customer/admin notification attempt.

    Append-only. A failed attempt is recorded with success=False and the
    error text; the order mutation that triggered it is never rolled back.
    """
    __tablename__ = "notification_logs"
    __table_args__ = (
        db.Index("ix_notification_logs_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    trigger = db.Column(db.String(16), nullable=False)  # AUTO, MANUAL
    kind = db.Column(db.String(32), nullable=False)     # STATUS_CHANGED, QUOTE_LINK, NEW_ORDER

    recipient = db.Column(db.String(255), nullable=False)
    subject = db.Column(db.String(255), nullable=False)

    success = db.Column(db.Boolean, nullable=False, index=True)
    error = db.Column(db.Text, nullable=True)

    requested_by_user_id = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "trigger": self.trigger,
            "kind": self.kind,
            "recipient": self.recipient,
            "subject": self.subject,
            "success": self.success,
            "error": self.error,
            "requested_by_user_id": self.requested_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
