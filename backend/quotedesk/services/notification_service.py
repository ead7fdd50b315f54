# Overview: Customer/admin notifications for order events; automatic dispatch never fails the caller.

"""
Notification Dispatcher

TRIGGERS:
- AUTO   status change (scheduled on the task runner after commit) and new
         checkout orders (admin notice). Failures are logged and swallowed.
- MANUAL staff sends the quote link. Failures are recorded and raised.

Every attempt, successful or not, is recorded in NotificationLog.
Messages are Jinja templates under templates/email/ with the variables
nome, email, order_number, status, link and total.
"""

from __future__ import annotations

import threading

from flask import current_app, render_template
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db, tasks
from ..errors import ExternalServiceError
from ..models import NotificationLog, Order, Profile
from ..models.communications import (
    TRIGGER_AUTO,
    TRIGGER_MANUAL,
    KIND_STATUS_CHANGED,
    KIND_QUOTE_LINK,
    KIND_NEW_ORDER,
)
from ..tasks import TaskHandle, check_cancelled
from .audit_service import STATUS_LABELS, format_money
from .document_service import generate_quote_document, get_quote_document
from .mail_service import get_email_sender
from .order_service import RESOURCE_ORDERS, get_order, resolve_item_name
from .permission_service import Actor, require_permission
from .storage_service import get_artifact_store


def _customer_name(order: Order) -> str:
    profile = (
        db.session.query(Profile)
        .filter(db.func.lower(Profile.email) == order.customer_email.lower())
        .first()
    )
    return profile.display_name if profile else order.customer_email


def _template_context(order: Order, link: str | None = None) -> dict:
    return {
        "nome": _customer_name(order),
        "email": order.customer_email,
        "order_number": order.order_number,
        "status": STATUS_LABELS.get(order.status, order.status),
        "link": link,
        "total": format_money(order.total_cents),
        "company_name": current_app.config.get("COMPANY_NAME", ""),
    }


def _existing_document_link(order: Order) -> str | None:
    doc = get_quote_document(order.id)
    if doc is None:
        return None
    store = get_artifact_store()
    if not store.exists(doc.storage_key):
        return None
    return store.get_signed_url(doc.storage_key, current_app.config.get("QUOTE_LINK_TTL_SECONDS"))


def _record(
    order: Order,
    *,
    trigger: str,
    kind: str,
    recipient: str,
    subject: str,
    success: bool,
    error: str | None = None,
    actor: Actor | None = None,
) -> NotificationLog:
    log = NotificationLog(
        order_id=order.id,
        trigger=trigger,
        kind=kind,
        recipient=recipient,
        subject=subject,
        success=success,
        error=error,
        requested_by_user_id=actor.id if actor else None,
    )
    db.session.add(log)
    db.session.commit()
    return log


def _record_failure_quietly(order_id: int, **fields) -> None:
    """Best-effort failure record for automatic dispatch."""
    try:
        db.session.rollback()
        order = db.session.get(Order, order_id)
        if order is not None:
            _record(order, success=False, **fields)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to record notification failure: order_id=%s", order_id)


def dispatch_status_change(
    order_id: int,
    old_status: str,
    new_status: str,
    *,
    cancel_event: threading.Event | None = None,
) -> bool:
    """
    Automatic status-change email to the customer.

    Includes a signed quote link when a document exists. Never raises.
    """
    recipient = ""
    subject = ""
    try:
        check_cancelled(cancel_event)
        order = db.session.get(Order, order_id)
        if order is None:
            current_app.logger.warning("Status notification skipped, order %s not found", order_id)
            return False

        recipient = order.customer_email
        ctx = _template_context(order, _existing_document_link(order))
        ctx["old_status"] = STATUS_LABELS.get(old_status, old_status)
        ctx["status"] = STATUS_LABELS.get(new_status, new_status)
        subject = f"Orçamento #{order.order_number}: {ctx['status']}"
        html = render_template("email/status_changed.html", **ctx)

        get_email_sender().send(recipient, subject, html)
        _record(
            order,
            trigger=TRIGGER_AUTO,
            kind=KIND_STATUS_CHANGED,
            recipient=recipient,
            subject=subject,
            success=True,
        )
        current_app.logger.info("Status notification sent: order=%s to=%s", order.order_number, recipient)
        return True
    except Exception as exc:
        current_app.logger.exception("Status notification failed: order_id=%s", order_id)
        _record_failure_quietly(
            order_id,
            trigger=TRIGGER_AUTO,
            kind=KIND_STATUS_CHANGED,
            recipient=recipient or "-",
            subject=subject or "-",
            error=str(exc),
        )
        return False


def schedule_status_notification(order_id: int, old_status: str, new_status: str) -> TaskHandle:
    return tasks.submit("dispatch_status_change", dispatch_status_change, order_id, old_status, new_status)


def send_quote(
    order_id: int,
    actor: Actor,
    ttl: int | None = None,
    *,
    cancel_event: threading.Event | None = None,
) -> tuple[NotificationLog, str]:
    """
    Manually email the customer a time-limited link to the quote document.

    Generates the document first when it does not exist yet. Returns
    (NotificationLog, link). Delivery failure is recorded and raised as
    ExternalServiceError.
    """
    require_permission(actor, RESOURCE_ORDERS, "edit")
    order = get_order(order_id, actor)

    store = get_artifact_store()
    doc = get_quote_document(order.id)
    if doc is None or not store.exists(doc.storage_key):
        doc = generate_quote_document(order.id, actor, cancel_event=cancel_event)

    ttl = int(ttl or current_app.config.get("QUOTE_LINK_TTL_SECONDS"))
    link = store.get_signed_url(doc.storage_key, ttl)

    subject = f"Seu orçamento #{order.order_number}"
    html = render_template("email/quote_link.html", **_template_context(order, link), ttl_days=max(ttl // 86400, 1))
    check_cancelled(cancel_event)

    try:
        get_email_sender().send(order.customer_email, subject, html)
    except ExternalServiceError as exc:
        current_app.logger.warning("Quote email failed: order=%s error=%s", order.order_number, exc)
        _record(
            order,
            trigger=TRIGGER_MANUAL,
            kind=KIND_QUOTE_LINK,
            recipient=order.customer_email,
            subject=subject,
            success=False,
            error=str(exc),
            actor=actor,
        )
        raise

    log = _record(
        order,
        trigger=TRIGGER_MANUAL,
        kind=KIND_QUOTE_LINK,
        recipient=order.customer_email,
        subject=subject,
        success=True,
        actor=actor,
    )
    current_app.logger.info("Quote email sent: order=%s to=%s", order.order_number, order.customer_email)
    return log, link


def _send_quote_task(order_id: int, actor: Actor, ttl: int | None, *, cancel_event: threading.Event) -> dict:
    log, link = send_quote(order_id, actor, ttl, cancel_event=cancel_event)
    return {"notification": log.to_dict(), "link": link}


def send_quote_async(order_id: int, actor: Actor, ttl: int | None = None) -> TaskHandle:
    """
    Schedule send_quote() on the task runner.

    handle.wait(NOTIFY_TIMEOUT_SECONDS) returns {"notification": ..., "link": ...}
    and re-raises delivery failures; on timeout nothing is sent once the
    cancel token is seen.
    """
    return tasks.submit("send_quote", _send_quote_task, order_id, actor, ttl)


def notify_new_order(order_id: int, *, cancel_event: threading.Event | None = None) -> bool:
    """Admin notice for a new checkout order (ADMIN_NOTIFY_EMAIL). Never raises."""
    recipient = current_app.config.get("ADMIN_NOTIFY_EMAIL") or ""
    if not recipient:
        return False

    subject = ""
    try:
        check_cancelled(cancel_event)
        order = db.session.get(Order, order_id)
        if order is None:
            return False

        profile = (
            db.session.query(Profile)
            .filter(db.func.lower(Profile.email) == order.customer_email.lower())
            .first()
        )
        items = [
            {
                "name": resolve_item_name(item),
                "quantity": item.quantity,
                "total": format_money(item.line_total_cents),
            }
            for item in order.items
        ]
        subject = f"Novo Orçamento Recebido - #{order.order_number}"
        html = render_template(
            "email/new_order.html",
            **_template_context(order),
            items=items,
            phone=profile.phone if profile else None,
            notes=order.notes,
        )

        get_email_sender().send(recipient, subject, html)
        _record(
            order,
            trigger=TRIGGER_AUTO,
            kind=KIND_NEW_ORDER,
            recipient=recipient,
            subject=subject,
            success=True,
        )
        return True
    except Exception as exc:
        current_app.logger.exception("New order notification failed: order_id=%s", order_id)
        _record_failure_quietly(
            order_id,
            trigger=TRIGGER_AUTO,
            kind=KIND_NEW_ORDER,
            recipient=recipient,
            subject=subject or "-",
            error=str(exc),
        )
        return False


def schedule_new_order_notification(order_id: int) -> TaskHandle:
    return tasks.submit("notify_new_order", notify_new_order, order_id)


def list_notifications(order_id: int) -> list[NotificationLog]:
    return (
        db.session.query(NotificationLog)
        .filter_by(order_id=order_id)
        .order_by(NotificationLog.created_at.desc(), NotificationLog.id.desc())
        .all()
    )
