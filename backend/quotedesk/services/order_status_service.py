# Overview: Order status state machine; validates transitions and audits them.

"""
Order Status State Machine

STATES:
- pending:    quote requested, not yet worked on
- processing: salesperson is preparing / negotiating the quote
- completed:  closed (terminal)
- cancelled:  abandoned or rejected (terminal)

TRANSITIONS:
- pending    -> processing | cancelled
- processing -> completed  | cancelled

Same-state changes are not transitions and are rejected like any other
disallowed change. A rejected change writes nothing, not even an audit entry.

After a successful commit the customer notification is scheduled on the task
runner. Its failure never affects the committed transition.
"""

from __future__ import annotations

from flask import current_app

from ..errors import InvalidTransition
from ..models import (
    Order,
    ORDER_STATUSES,
    TERMINAL_STATUSES,
    STATUS_PENDING,
    STATUS_PROCESSING,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
)
from . import audit_service
from .change_detector import ChangeSet
from .concurrency import run_in_transaction
from .notification_service import schedule_status_notification
from .order_service import RESOURCE_ORDERS, load_order_for_mutation
from .permission_service import Actor, require_permission


ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_PENDING: frozenset({STATUS_PROCESSING, STATUS_CANCELLED}),
    STATUS_PROCESSING: frozenset({STATUS_COMPLETED, STATUS_CANCELLED}),
    STATUS_COMPLETED: frozenset(),
    STATUS_CANCELLED: frozenset(),
}


def validate_status(status: str) -> None:
    if status not in ORDER_STATUSES:
        raise InvalidTransition(
            f"Invalid status: {status}. Must be one of {', '.join(ORDER_STATUSES)}",
            details={"status": status},
        )


def can_transition(from_status: str, to_status: str) -> bool:
    """
    Check if transition is allowed.

    Valid transitions:
    - PENDING -> PROCESSING
    - PENDING -> CANCELLED
    - PROCESSING -> COMPLETED
    - PROCESSING -> CANCELLED
    """
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


def allowed_next_statuses(status: str) -> list[str]:
    return [s for s in ORDER_STATUSES if s in ALLOWED_TRANSITIONS.get(status, frozenset())]


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def change_status(
    order_id: int,
    new_status: str,
    actor: Actor,
    expected_version: int | None = None,
    *,
    notify: bool | None = None,
) -> Order:
    """
    Move an order to new_status.

    Raises InvalidTransition (no mutation, no audit) for unknown statuses and
    disallowed or same-state transitions.

    notify: schedule the automatic customer notification after commit
    (defaults to NOTIFY_ON_STATUS_CHANGE).
    """
    require_permission(actor, RESOURCE_ORDERS, "edit")
    validate_status(new_status)

    def _op() -> tuple[Order, str]:
        order = load_order_for_mutation(order_id, actor, expected_version)
        old_status = order.status
        if not can_transition(old_status, new_status):
            raise InvalidTransition(
                f"Cannot transition order {order.order_number} from {old_status} to {new_status}",
                details={
                    "from": old_status,
                    "to": new_status,
                    "allowed": allowed_next_statuses(old_status),
                },
            )

        order.status = new_status
        audit_service.append_entry(
            order.id,
            audit_service.ACTION_STATUS_CHANGED,
            ChangeSet.from_pairs({"status": (old_status, new_status)}),
            actor,
        )
        return order, old_status

    order, old_status = run_in_transaction(_op)
    current_app.logger.info(
        "Order %s status %s -> %s by=%s", order.order_number, old_status, new_status, actor.id,
    )

    if notify is None:
        notify = current_app.config.get("NOTIFY_ON_STATUS_CHANGE", True)
    if notify:
        schedule_status_notification(order.id, old_status, new_status)

    return order
