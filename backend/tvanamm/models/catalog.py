from __future__ import annotations

from ..extensions import db
from tvanamm.money import to_rupees, bps_to_percent
from tvanamm.time_utils import to_utc_z


class Product(db.Model):
    """
    Catalog product as seen by pricing.

    price_paise is GST-exclusive. gst_rate_bps may be NULL for products
    imported without a rate; pricing then applies the default 18%.
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    price_paise = db.Column(db.Integer, nullable=False)
    gst_rate_bps = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "price_paise": self.price_paise,
            "price": to_rupees(self.price_paise),
            "gst_rate_bps": self.gst_rate_bps,
            "gst_rate": bps_to_percent(self.gst_rate_bps),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
