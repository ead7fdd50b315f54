"""
Order status state machine tests.

Verifies:
- Allowed transitions and terminal states
- Disallowed, unknown and same-state changes write nothing
- Successful changes are audited and notify the customer
"""

import pytest

from quotedesk.errors import InvalidTransition, StaleWriteError
from quotedesk.models import OrderAuditLog, NotificationLog
from quotedesk.services import order_status_service


class TestTransitionTable:

    @pytest.mark.parametrize(
        "old,new",
        [
            ("pending", "processing"),
            ("pending", "cancelled"),
            ("processing", "completed"),
            ("processing", "cancelled"),
        ],
    )
    def test_allowed(self, old, new):
        assert order_status_service.can_transition(old, new)

    @pytest.mark.parametrize(
        "old,new",
        [
            ("pending", "pending"),
            ("pending", "completed"),
            ("processing", "pending"),
            ("completed", "processing"),
            ("cancelled", "pending"),
            ("completed", "cancelled"),
        ],
    )
    def test_disallowed(self, old, new):
        assert not order_status_service.can_transition(old, new)

    def test_terminal_states_have_no_successors(self):
        assert order_status_service.allowed_next_statuses("completed") == []
        assert order_status_service.allowed_next_statuses("cancelled") == []
        assert order_status_service.is_terminal("completed")
        assert not order_status_service.is_terminal("processing")

    def test_allowed_next_statuses_order(self):
        assert order_status_service.allowed_next_statuses("pending") == ["processing", "cancelled"]


class TestChangeStatus:

    def test_change_is_audited(self, db_session, admin, make_order):
        order = make_order()

        updated = order_status_service.change_status(order.id, "processing", admin, notify=False)

        assert updated.status == "processing"
        entry = (
            db_session.query(OrderAuditLog)
            .filter_by(order_id=order.id, action="status_changed")
            .one()
        )
        assert entry.changes == {"status": {"old": "pending", "new": "processing"}}
        assert entry.user_name == "Ana Admin"

    def test_full_lifecycle(self, db_session, admin, make_order):
        order = make_order()
        order_status_service.change_status(order.id, "processing", admin, notify=False)
        order_status_service.change_status(order.id, "completed", admin, notify=False)

        with pytest.raises(InvalidTransition):
            order_status_service.change_status(order.id, "cancelled", admin, notify=False)

    def test_rejected_change_writes_nothing(self, db_session, admin, make_order):
        order = make_order()
        version = order.version_id

        with pytest.raises(InvalidTransition) as exc:
            order_status_service.change_status(order.id, "completed", admin, notify=False)

        assert exc.value.details["allowed"] == ["processing", "cancelled"]
        db_session.expire_all()
        assert order.status == "pending"
        assert order.version_id == version
        assert db_session.query(OrderAuditLog).filter_by(action="status_changed").count() == 0

    def test_same_state_rejected(self, db_session, admin, make_order):
        order = make_order()
        with pytest.raises(InvalidTransition):
            order_status_service.change_status(order.id, "pending", admin, notify=False)

    def test_unknown_status_rejected(self, db_session, admin, make_order):
        order = make_order()
        with pytest.raises(InvalidTransition):
            order_status_service.change_status(order.id, "shipped", admin, notify=False)

    def test_stale_version_rejected(self, db_session, admin, make_order):
        order = make_order()
        with pytest.raises(StaleWriteError):
            order_status_service.change_status(
                order.id, "processing", admin, expected_version=order.version_id + 5, notify=False
            )

    def test_change_notifies_customer(self, db_session, admin, make_order, outbox):
        order = make_order()

        order_status_service.change_status(order.id, "processing", admin)

        assert len(outbox) == 1
        assert outbox[0].to == "cliente@empresa.test"
        assert order.order_number in outbox[0].subject
        log = db_session.query(NotificationLog).filter_by(order_id=order.id).one()
        assert log.trigger == "AUTO"
        assert log.kind == "STATUS_CHANGED"
        assert log.success is True

    def test_notification_failure_does_not_undo_change(self, app, db_session, admin, make_order):
        class BrokenSender:
            def send(self, to, subject, html):
                raise RuntimeError("smtp down")

        app.extensions["quotedesk.mail"] = BrokenSender()
        order = make_order()

        updated = order_status_service.change_status(order.id, "processing", admin)

        assert updated.status == "processing"
        log = db_session.query(NotificationLog).filter_by(order_id=order.id).one()
        assert log.success is False
        assert "smtp down" in log.error
