# Overview: Service-layer operations for the order audit log; append-only writes and read-time formatting.

"""
Order Audit Log

WHY: The audit log is the system of record for how an order evolved. There
is no versioning of order rows beyond it.

RULES:
- append_entry() is the only write; it never commits (joins the caller's
  transaction so an aborted mutation leaves no partial entry)
- Updated-class actions with an empty diff are refused
- Raw values are stored untouched; format_entry() is presentation only
- No update/delete API; purge_before() exists solely for explicit retention
"""

from __future__ import annotations

from datetime import datetime
from typing import Mapping

from flask import current_app

from ..extensions import db
from ..models import OrderAuditLog, AUDIT_ACTIONS
from .change_detector import ChangeSet
from .permission_service import Actor


ACTION_CREATED = "created"
ACTION_UPDATED = "updated"
ACTION_STATUS_CHANGED = "status_changed"
ACTION_ITEM_ADDED = "item_added"
ACTION_ITEM_REMOVED = "item_removed"
ACTION_ITEM_UPDATED = "item_updated"

# Actions that only make sense with a non-empty diff
UPDATE_CLASS_ACTIONS = {ACTION_UPDATED, ACTION_STATUS_CHANGED, ACTION_ITEM_UPDATED}


ACTION_LABELS = {
    ACTION_CREATED: "Pedido criado",
    ACTION_UPDATED: "Pedido atualizado",
    ACTION_STATUS_CHANGED: "Status alterado",
    ACTION_ITEM_ADDED: "Item adicionado",
    ACTION_ITEM_REMOVED: "Item removido",
    ACTION_ITEM_UPDATED: "Item atualizado",
}

FIELD_LABELS = {
    "status": "Status",
    "total_cents": "Total",
    "subtotal_cents": "Subtotal",
    "notes": "Observações",
    "payment_terms": "Condições de Pagamento",
    "delivery_terms": "Prazo de Entrega",
    "validity_terms": "Validade",
    "customer_email": "Email do Cliente",
    "shipping_cost_cents": "Custo de Envio",
    "contact_preference": "Preferência de Contato",
    "salesperson_id": "Vendedor",
    "quantity": "Quantidade",
    "unit_price_cents": "Preço",
    "selected_variants": "Variantes",
    "product_name": "Produto",
    "custom_name": "Produto",
    "custom_image_url": "Imagem",
    "order_number": "Número",
}

# Canonical statuses plus the legacy display vocabulary found in older entries
STATUS_LABELS = {
    "pending": "Pendente",
    "processing": "Processando",
    "completed": "Concluído",
    "cancelled": "Cancelado",
    "approved": "Aprovado",
    "rejected": "Rejeitado",
    "in_production": "Em Produção",
    "shipped": "Enviado",
    "delivered": "Entregue",
    "sold": "Vendido",
    "lost": "Perdido",
}

MONEY_FIELDS = {"total_cents", "subtotal_cents", "shipping_cost_cents", "unit_price_cents"}


def append_entry(
    order_id: int,
    action: str,
    changes: ChangeSet | Mapping,
    actor: Actor | None = None,
) -> OrderAuditLog:
    """
    Append one audit entry to the current session (no commit).

    Raises ValueError for unknown actions or an empty diff on an
    updated-class action.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action '{action}'")

    if isinstance(changes, ChangeSet):
        payload = changes.to_json()
    else:
        payload = dict(changes or {})

    if action in UPDATE_CLASS_ACTIONS and not payload:
        raise ValueError(f"Refusing to log '{action}' with no changes")

    entry = OrderAuditLog(
        order_id=order_id,
        user_id=actor.id if actor else None,
        user_email=actor.email if actor else None,
        user_name=(actor.name or actor.email) if actor and not actor.is_system else None,
        action=action,
        changes=payload,
    )
    db.session.add(entry)
    return entry


def list_entries(order_id: int, limit: int | None = None) -> list[OrderAuditLog]:
    """Entries for an order, most recent first."""
    q = (
        db.session.query(OrderAuditLog)
        .filter_by(order_id=order_id)
        .order_by(OrderAuditLog.created_at.desc(), OrderAuditLog.id.desc())
    )
    if limit:
        q = q.limit(limit)
    return q.all()


def format_money(cents: int, symbol: str | None = None) -> str:
    """1234567 -> "R$ 12.345,67" (symbol defaults to CURRENCY_SYMBOL)."""
    if symbol is None:
        symbol = current_app.config.get("CURRENCY_SYMBOL", "R$")
    text = f"{cents / 100:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{symbol} {text}"


def format_value(field: str, value) -> str:
    """Render a raw stored value for display."""
    if value is None:
        return "-"

    if field == "status":
        return STATUS_LABELS.get(value, str(value))

    if field in MONEY_FIELDS:
        try:
            return format_money(int(value))
        except (TypeError, ValueError):
            return str(value)

    if isinstance(value, dict):
        if not value:
            return "-"
        return ", ".join(f"{k}: {v}" for k, v in value.items())

    if isinstance(value, bool):
        return "Sim" if value else "Não"

    return str(value)


def format_entry(entry: OrderAuditLog) -> dict:
    """Presentation view of an entry: labels and formatted old/new values."""
    changes = []
    for field, change in (entry.changes or {}).items():
        change = change or {}
        changes.append({
            "field": field,
            "label": FIELD_LABELS.get(field, field),
            "old": format_value(field, change.get("old")),
            "new": format_value(field, change.get("new")),
        })

    data = entry.to_dict()
    data["action_label"] = ACTION_LABELS.get(entry.action, entry.action)
    data["actor_label"] = entry.user_name or entry.user_email or "Sistema"
    data["formatted_changes"] = changes
    return data


def purge_before(cutoff: datetime) -> int:
    """
    Retention policy purge. Deletes entries created before cutoff.

    Only reachable from the CLI; there is no API for it.
    """
    count = (
        db.session.query(OrderAuditLog)
        .filter(OrderAuditLog.created_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return count
