# Overview: Service-layer operations for permission; encapsulates business logic and database work.

"""
Role/Resource Permission Resolution

WHY: Every order operation is preconditioned on a coarse capability check:
may this role perform this action on this resource?

DESIGN PRINCIPLES:
- Fail closed: no ResourcePermission row means deny for non-admin roles
- Admin bypass is an explicit early return, not a capability object
- Log denials only: permission grants are not logged
- Row-level scoping is a separate gate (see access_scope_service.py)
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..errors import PermissionDeniedError, ValidationError
from ..models import Resource, ResourcePermission, ROLES
from ..permissions import (
    RESOURCE_DEFINITIONS,
    DEFAULT_ROLE_PERMISSIONS,
    ACTION_FLAGS,
    ACTION_VIEW,
    validate_action,
)


ROLE_ADMIN = "admin"
ROLE_SALESPERSON = "salesperson"
ROLE_CUSTOMER = "customer"


@dataclass(frozen=True)
class Actor:
    """
    Externally authenticated caller.

    The service trusts this identity as supplied; it performs no
    authentication itself. An actor with id=None is the system.
    """
    id: str | None
    email: str | None = None
    name: str | None = None
    roles: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return ROLE_ADMIN in self.roles

    @property
    def is_system(self) -> bool:
        return self.id is None

    def has_role(self, role: str) -> bool:
        return role in self.roles


SYSTEM_ACTOR = Actor(id=None, name="system", roles=frozenset({ROLE_ADMIN}))


def make_actor(*, user_id: str, email: str | None = None, name: str | None = None, roles=()) -> Actor:
    normalized = frozenset(r.strip().lower() for r in roles if r and r.strip())
    unknown = normalized - set(ROLES)
    if unknown:
        raise ValidationError(f"Unknown role(s): {', '.join(sorted(unknown))}")
    return Actor(id=str(user_id), email=email, name=name, roles=normalized)


def has_permission(role: str, resource: str, action: str) -> bool:
    """
    Coarse capability check for a single role.

    Returns True unconditionally for admin. Otherwise returns the flag of
    the (role, resource) row for the action; False when the row, the
    resource or the action is unknown.
    """
    if role == ROLE_ADMIN:
        return True

    flag = ACTION_FLAGS.get(action)
    if flag is None:
        return False

    row = (
        db.session.query(ResourcePermission)
        .join(Resource, Resource.id == ResourcePermission.resource_id)
        .filter(ResourcePermission.role == role, Resource.name == resource)
        .first()
    )
    if row is None:
        return False
    return bool(getattr(row, flag))


def can_access(role: str, resource: str) -> bool:
    """Shorthand for has_permission(role, resource, "view")."""
    return has_permission(role, resource, ACTION_VIEW)


def actor_has_permission(actor: Actor, resource: str, action: str) -> bool:
    """True when any of the actor's roles grants the action."""
    if actor.is_admin:
        return True
    return any(has_permission(role, resource, action) for role in sorted(actor.roles))


def require_permission(actor: Actor, resource: str, action: str) -> None:
    """
    Require permission, raise PermissionDeniedError if not.

    Usage:
        require_permission(actor, "orders", "edit")
    """
    if actor_has_permission(actor, resource, action):
        return

    current_app.logger.warning(
        "Permission denied: user=%s roles=%s resource=%s action=%s",
        actor.id, ",".join(sorted(actor.roles)), resource, action,
    )
    raise PermissionDeniedError(
        f"Permission denied: {resource}:{action}",
        details={"resource": resource, "action": action},
    )


def get_role_permissions(role: str) -> list[dict]:
    """Capability rows for a role (admin returns every resource fully granted)."""
    resources = db.session.query(Resource).order_by(Resource.name).all()
    if role == ROLE_ADMIN:
        return [
            {
                "role": role,
                "resource": res.name,
                "can_view": True,
                "can_create": True,
                "can_edit": True,
                "can_delete": True,
            }
            for res in resources
        ]

    rows = {
        p.resource_id: p
        for p in db.session.query(ResourcePermission).filter_by(role=role).all()
    }
    result = []
    for res in resources:
        row = rows.get(res.id)
        result.append({
            "role": role,
            "resource": res.name,
            "can_view": bool(row and row.can_view),
            "can_create": bool(row and row.can_create),
            "can_edit": bool(row and row.can_edit),
            "can_delete": bool(row and row.can_delete),
        })
    return result


def list_role_permissions() -> dict[str, list[dict]]:
    return {role: get_role_permissions(role) for role in ROLES}


def set_role_permission(role: str, resource_name: str, action: str, allowed: bool) -> ResourcePermission:
    """Grant or revoke one action of a (role, resource) pair, creating the row if needed."""
    if role == ROLE_ADMIN:
        raise ValidationError("Admin permissions are implicit and cannot be changed")
    if role not in ROLES:
        raise ValidationError(f"Role '{role}' not found")
    if not validate_action(action):
        raise ValidationError(f"Invalid action '{action}'")

    resource = db.session.query(Resource).filter_by(name=resource_name).first()
    if not resource:
        raise ValidationError(f"Resource '{resource_name}' not found")

    row = db.session.query(ResourcePermission).filter_by(
        role=role,
        resource_id=resource.id,
    ).first()
    if row is None:
        row = ResourcePermission(
            role=role,
            resource_id=resource.id,
            can_view=False,
            can_create=False,
            can_edit=False,
            can_delete=False,
        )
        db.session.add(row)

    setattr(row, ACTION_FLAGS[action], bool(allowed))
    db.session.commit()
    return row


def initialize_resources() -> int:
    """
    Create Resource records for every entry in RESOURCE_DEFINITIONS.

    Idempotent: Safe to run multiple times.
    """
    created_count = 0

    for name, description, _category in RESOURCE_DEFINITIONS:
        existing = db.session.query(Resource).filter_by(name=name).first()
        if not existing:
            db.session.add(Resource(name=name, description=description))
            created_count += 1

    db.session.commit()
    return created_count


def assign_default_role_permissions() -> int:
    """
    Create ResourcePermission rows from DEFAULT_ROLE_PERMISSIONS.

    Idempotent: existing rows are left untouched so manual changes survive.
    """
    created_count = 0

    for role, grants in DEFAULT_ROLE_PERMISSIONS.items():
        for resource_name, (view, create, edit, delete) in grants.items():
            resource = db.session.query(Resource).filter_by(name=resource_name).first()
            if not resource:
                continue  # Resource doesn't exist, skip

            existing = db.session.query(ResourcePermission).filter_by(
                role=role,
                resource_id=resource.id,
            ).first()
            if existing:
                continue

            db.session.add(ResourcePermission(
                role=role,
                resource_id=resource.id,
                can_view=view,
                can_create=create,
                can_edit=edit,
                can_delete=delete,
            ))
            created_count += 1

    db.session.commit()
    return created_count
