"""
Notification dispatcher tests.

Verifies:
- Automatic dispatch never raises and records failures
- Manual quote sending generates the document, emails a working signed
  link, and raises when the channel fails
- Every attempt is recorded
"""

import threading

import pytest

from quotedesk.errors import ExternalServiceError
from quotedesk.models import NotificationLog, QuoteDocument
from quotedesk.services import notification_service
from quotedesk.tasks import TaskCancelled


class FailingSender:
    def send(self, to, subject, html):
        raise ExternalServiceError("Mail endpoint returned 503")


class TestAutomaticDispatch:

    def test_status_change_email(self, db_session, make_order, outbox, customer_profile):
        order = make_order()

        ok = notification_service.dispatch_status_change(order.id, "pending", "processing")

        assert ok is True
        assert len(outbox) == 1
        assert "Diego Cliente" in outbox[0].html
        assert order.order_number in outbox[0].html

    def test_includes_link_when_document_exists(self, db_session, admin, make_order, outbox):
        from quotedesk.services import document_service

        order = make_order()
        document_service.generate_quote_document(order.id, admin)

        notification_service.dispatch_status_change(order.id, "pending", "processing")

        assert "/api/quotes/" in outbox[0].html

    def test_failure_is_swallowed_and_recorded(self, app, db_session, make_order):
        app.extensions["quotedesk.mail"] = FailingSender()
        order = make_order()

        ok = notification_service.dispatch_status_change(order.id, "pending", "processing")

        assert ok is False
        log = db_session.query(NotificationLog).filter_by(order_id=order.id).one()
        assert log.success is False
        assert log.trigger == "AUTO"
        assert "503" in log.error

    def test_missing_order_is_skipped(self, db_session):
        assert notification_service.dispatch_status_change(9999, "pending", "processing") is False

    def test_new_order_notice_goes_to_admin(self, db_session, make_order, outbox):
        order = make_order()

        assert notification_service.notify_new_order(order.id) is True

        assert outbox[-1].to == "vendas@cronos.test"
        assert "Caneca Personalizada" in outbox[-1].html
        log = db_session.query(NotificationLog).filter_by(order_id=order.id, kind="NEW_ORDER").one()
        assert log.success is True

    def test_new_order_notice_disabled_without_recipient(self, app, db_session, make_order, outbox, monkeypatch):
        monkeypatch.setitem(app.config, "ADMIN_NOTIFY_EMAIL", "")
        order = make_order()
        assert notification_service.notify_new_order(order.id) is False
        assert outbox == []


class TestManualSend:

    def test_send_quote_generates_document_and_link(self, client, db_session, admin, make_order, outbox):
        order = make_order()

        log, link = notification_service.send_quote(order.id, admin)

        assert log.success is True
        assert log.trigger == "MANUAL"
        assert log.requested_by_user_id == "admin-1"
        assert db_session.query(QuoteDocument).filter_by(order_id=order.id).count() == 1
        assert link in outbox[0].html

        # The emailed link downloads the PDF
        resp = client.get(link.replace("http://quotes.test", ""))
        assert resp.status_code == 200
        assert resp.mimetype == "application/pdf"
        assert resp.data.startswith(b"%PDF")

    def test_send_quote_failure_raises_and_records(self, app, db_session, admin, make_order):
        app.extensions["quotedesk.mail"] = FailingSender()
        order = make_order()

        with pytest.raises(ExternalServiceError):
            notification_service.send_quote(order.id, admin)

        log = db_session.query(NotificationLog).filter_by(order_id=order.id).one()
        assert log.success is False
        assert log.trigger == "MANUAL"

    def test_send_quote_async_returns_notification_and_link(self, db_session, admin, make_order, outbox):
        order = make_order()

        handle = notification_service.send_quote_async(order.id, admin, ttl=3600)
        result = handle.wait(timeout=5)

        assert handle.done()
        assert result["notification"]["success"] is True
        assert result["link"] in outbox[0].html

    def test_send_quote_async_surfaces_delivery_failure(self, app, db_session, admin, make_order):
        app.extensions["quotedesk.mail"] = FailingSender()
        order = make_order()

        handle = notification_service.send_quote_async(order.id, admin)
        with pytest.raises(ExternalServiceError):
            handle.wait(timeout=5)

    def test_cancelled_send_delivers_nothing(self, db_session, admin, make_order, outbox):
        order = make_order()
        cancel_event = threading.Event()
        cancel_event.set()

        with pytest.raises(TaskCancelled):
            notification_service.send_quote(order.id, admin, cancel_event=cancel_event)
        assert outbox == []

    def test_list_notifications(self, db_session, admin, make_order):
        order = make_order()
        notification_service.send_quote(order.id, admin)
        notification_service.dispatch_status_change(order.id, "pending", "processing")

        logs = notification_service.list_notifications(order.id)
        assert {l.kind for l in logs} == {"QUOTE_LINK", "STATUS_CHANGED"}
