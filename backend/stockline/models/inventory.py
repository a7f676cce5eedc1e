from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data with on-hand quantity.

    MULTI-TENANT: Products are scoped to stores via store_id.

    LOW STOCK: a product is low when quantity <= min_stock_level, or
    <= LOW_STOCK_DEFAULT_THRESHOLD when min_stock_level is NULL.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_store_name", "store_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.String(36), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    barcode = db.Column(db.String(64), nullable=True, index=True)
    # Serialized devices: unique across the system when present
    serial_number = db.Column(db.String(128), nullable=True, unique=True)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_cents = db.Column(db.Integer, nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock_level = db.Column(db.Integer, nullable=True)

    brand = db.Column(db.String(120), nullable=True)
    model = db.Column(db.String(120), nullable=True)
    color = db.Column(db.String(64), nullable=True)
    storage = db.Column(db.String(64), nullable=True)
    condition = db.Column(db.String(16), nullable=False, default="new")  # new, pre-owned, refurbished
    status = db.Column(db.String(16), nullable=False, default="active")  # active, discontinued, out_of_stock

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} qty={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "name": self.name,
            "sku": self.sku,
            "barcode": self.barcode,
            "serial_number": self.serial_number,
            "description": self.description,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "quantity": self.quantity,
            "min_stock_level": self.min_stock_level,
            "brand": self.brand,
            "model": self.model,
            "color": self.color,
            "storage": self.storage,
            "condition": self.condition,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
