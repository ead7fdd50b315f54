# Overview: Row-level scoping for salespeople and customers; independent of resource permissions.

"""
Row-Level Access Scoping

The coarse gate (permission_service) answers "may this role view orders at
all?". This module answers "which orders / customer profiles?".

RULES:
- admin:                     every row
- salesperson, master access: every row
- salesperson, own access:   rows whose owning salesperson is the caller
                             (Order.salesperson_id / Profile.assigned_salesperson_id)
- customer:                  only their own orders (Order.customer_email)

A user without a client_access_type row is treated as "own" (fail closed).
"""

from __future__ import annotations

from sqlalchemy import func, or_
from sqlalchemy.sql import false

from ..extensions import db
from ..errors import PermissionDeniedError, ValidationError
from ..models import Order, Profile, UserRole, CLIENT_ACCESS_TYPES, ROLES
from .permission_service import Actor, ROLE_SALESPERSON, ROLE_CUSTOMER


ACCESS_MASTER = "master"
ACCESS_OWN = "own"


def get_client_access_type(user_id: str | None) -> str:
    if not user_id:
        return ACCESS_OWN
    row = db.session.query(UserRole).filter_by(user_id=user_id, role=ROLE_SALESPERSON).first()
    if row and row.client_access_type == ACCESS_MASTER:
        return ACCESS_MASTER
    return ACCESS_OWN


def set_client_access_type(user_id: str, access_type: str) -> UserRole:
    if access_type not in CLIENT_ACCESS_TYPES:
        raise ValidationError("client_access_type must be master or own")
    row = db.session.query(UserRole).filter_by(user_id=user_id, role=ROLE_SALESPERSON).first()
    if row is None:
        row = UserRole(user_id=user_id, role=ROLE_SALESPERSON)
        db.session.add(row)
    row.client_access_type = access_type
    db.session.commit()
    return row


def _sees_everything(actor: Actor) -> bool:
    if actor.is_admin or actor.is_system:
        return True
    if actor.has_role(ROLE_SALESPERSON):
        return get_client_access_type(actor.id) == ACCESS_MASTER
    return False


def scope_orders_query(query, actor: Actor):
    """Apply the row filter for the actor to an Order query."""
    if _sees_everything(actor):
        return query

    conditions = []
    if actor.has_role(ROLE_SALESPERSON):
        conditions.append(Order.salesperson_id == actor.id)
    if actor.has_role(ROLE_CUSTOMER) and actor.email:
        conditions.append(func.lower(Order.customer_email) == actor.email.lower())

    if not conditions:
        return query.filter(false())
    if len(conditions) == 1:
        return query.filter(conditions[0])
    return query.filter(or_(*conditions))


def can_view_order(actor: Actor, order: Order) -> bool:
    """Single-row equivalent of scope_orders_query."""
    if _sees_everything(actor):
        return True
    if actor.has_role(ROLE_SALESPERSON) and order.salesperson_id == actor.id:
        return True
    if (
        actor.has_role(ROLE_CUSTOMER)
        and actor.email
        and (order.customer_email or "").lower() == actor.email.lower()
    ):
        return True
    return False


def require_order_access(actor: Actor, order: Order) -> None:
    if not can_view_order(actor, order):
        raise PermissionDeniedError(
            "Order is outside your client access scope",
            details={"order_id": order.id},
        )


def scope_profiles_query(query, actor: Actor):
    """Apply the row filter for the actor to a Profile query."""
    if _sees_everything(actor):
        return query
    if actor.has_role(ROLE_SALESPERSON):
        return query.filter(Profile.assigned_salesperson_id == actor.id)
    if actor.has_role(ROLE_CUSTOMER) and actor.email:
        return query.filter(func.lower(Profile.email) == actor.email.lower())
    return query.filter(false())


def assign_role(user_id: str, role: str, client_access_type: str | None = None) -> UserRole:
    """
    Record a role for an externally authenticated user.

    client_access_type is only stored for salespeople. Idempotent: an
    existing (user_id, role) row is updated in place.
    """
    if not user_id or not str(user_id).strip():
        raise ValidationError("user_id is required")
    if role not in ROLES:
        raise ValidationError(f"Role '{role}' not found")
    if client_access_type is not None:
        if role != ROLE_SALESPERSON:
            raise ValidationError("client_access_type only applies to salespeople")
        if client_access_type not in CLIENT_ACCESS_TYPES:
            raise ValidationError("client_access_type must be master or own")

    user_id = str(user_id).strip()
    row = db.session.query(UserRole).filter_by(user_id=user_id, role=role).first()
    if row is None:
        row = UserRole(user_id=user_id, role=role)
        db.session.add(row)
    if client_access_type is not None:
        row.client_access_type = client_access_type
    db.session.commit()
    return row
