from __future__ import annotations

from ..extensions import db
from quotedesk.time_utils import to_utc_z


class Product(db.Model):
    """
    Catalog product, read by the order subsystem through weak references.

    variants maps a variant axis to its selectable options:
    {"Tamanho": ["P", "M", "G"], "Cor": ["Azul", "Preto"]}
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    image_url = db.Column(db.String(1024), nullable=True)
    price_cents = db.Column(db.Integer, nullable=True)
    variants = db.Column(db.JSON, nullable=False, default=dict)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def variant_names(self) -> set[str]:
        return set((self.variants or {}).keys())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "image_url": self.image_url,
            "price_cents": self.price_cents,
            "variants": self.variants or {},
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
