# Overview: Read-only catalog lookup feeding the cart with GST-exclusive prices and rates.

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import Product
from ..validation import NotFoundError, ValidationError
from .pricing_service import default_gst_rate_bps


@dataclass(frozen=True)
class CatalogEntry:
    id: int
    name: str
    price_paise: int  # GST-exclusive
    gst_rate_bps: int


def get_catalog_entry(product_id: int) -> CatalogEntry:
    """Product -> price/rate, defaulting a missing GST rate to 18%."""
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    if not product.is_active:
        raise ValidationError("Product is not available", details={"product_id": product_id})

    rate = product.gst_rate_bps if product.gst_rate_bps is not None else default_gst_rate_bps()
    return CatalogEntry(
        id=product.id,
        name=product.name,
        price_paise=product.price_paise,
        gst_rate_bps=rate,
    )


def create_product(sku: str, name: str, price_paise: int, gst_rate_bps: int | None = None,
                   description: str | None = None) -> Product:
    if db.session.query(Product).filter_by(sku=sku).first():
        raise ValidationError(f"SKU '{sku}' already exists")
    product = Product(
        sku=sku,
        name=name,
        description=description,
        price_paise=price_paise,
        gst_rate_bps=gst_rate_bps,
    )
    db.session.add(product)
    db.session.commit()
    return product
