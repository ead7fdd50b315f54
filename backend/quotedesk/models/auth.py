from __future__ import annotations

from ..extensions import db
from quotedesk.time_utils import to_utc_z


ROLES = ("admin", "salesperson", "customer")
CLIENT_ACCESS_TYPES = ("master", "own")


class Resource(db.Model):
    """
    Named area of functionality that permissions are granted against
    (e.g. "orders", "customers").
    """
    __tablename__ = "resources"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_resources_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }


class ResourcePermission(db.Model):
    """
    (role, resource) -> view/create/edit/delete capability flags.

    DEFAULT-DENY: absence of a row means no access for non-admin roles.
    Admin is never looked up here (explicit bypass in permission_service).
    """
    __tablename__ = "resource_permissions"
    __table_args__ = (
        db.UniqueConstraint("role", "resource_id", name="uq_resource_permissions_role_resource"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    role = db.Column(db.String(32), nullable=False, index=True)
    resource_id = db.Column(db.Integer, db.ForeignKey("resources.id"), nullable=False, index=True)

    can_view = db.Column(db.Boolean, nullable=False, default=False)
    can_create = db.Column(db.Boolean, nullable=False, default=False)
    can_edit = db.Column(db.Boolean, nullable=False, default=False)
    can_delete = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    resource = db.relationship("Resource", backref=db.backref("permissions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "resource": self.resource.name if self.resource else None,
            "can_view": self.can_view,
            "can_create": self.can_create,
            "can_edit": self.can_edit,
            "can_delete": self.can_delete,
        }


class UserRole(db.Model):
    """
    Role assignment for an externally authenticated user.

    client_access_type only matters for salespeople: "master" sees every
    customer/order, "own" (or NULL) only the ones assigned to them.
    """
    __tablename__ = "user_roles"
    __table_args__ = (
        db.UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    role = db.Column(db.String(32), nullable=False)
    client_access_type = db.Column(db.String(16), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "role": self.role,
            "client_access_type": self.client_access_type,
            "created_at": to_utc_z(self.created_at),
        }
