from __future__ import annotations

from ..extensions import db
from quotedesk.time_utils import to_utc_z


class Profile(db.Model):
    """
    Customer or staff profile.

    Orders reference customers weakly through customer_email. Staff
    profiles (salespeople) are found through user_id.

    assigned_salesperson_id drives row-level scoping for salespeople with
    "own" client access.
    """
    __tablename__ = "profiles"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_profiles_email"),
        db.Index("ix_profiles_assigned_salesperson", "assigned_salesperson_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=True, index=True)
    email = db.Column(db.String(255), nullable=False)

    company = db.Column(db.String(255), nullable=True)
    contact_name = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    tax_id = db.Column(db.String(32), nullable=True)

    address = db.Column(db.String(255), nullable=True)
    address_number = db.Column(db.String(32), nullable=True)
    address_complement = db.Column(db.String(128), nullable=True)
    city = db.Column(db.String(128), nullable=True)
    state = db.Column(db.String(64), nullable=True)
    postal_code = db.Column(db.String(16), nullable=True)

    assigned_salesperson_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    @property
    def display_name(self) -> str:
        return self.contact_name or self.company or self.email

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "email": self.email,
            "company": self.company,
            "contact_name": self.contact_name,
            "phone": self.phone,
            "tax_id": self.tax_id,
            "address": self.address,
            "address_number": self.address_number,
            "address_complement": self.address_complement,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "assigned_salesperson_id": self.assigned_salesperson_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
