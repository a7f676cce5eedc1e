from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Return(db.Model):
    """
    Return against an original sale.

    Inventory is restocked only when the return is (or becomes) completed,
    and only for items flagged return_to_inventory.
    """
    __tablename__ = "returns"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.String(36), nullable=False, index=True)
    original_sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    returned_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    status = db.Column(db.String(16), nullable=False, default="pending")  # pending, approved, completed, rejected
    return_type = db.Column(db.String(16), nullable=False, default="refund")  # refund, exchange, store_credit
    reason = db.Column(db.String(32), nullable=False, default="other")
    reason_details = db.Column(db.Text, nullable=True)

    refund_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    refund_method = db.Column(db.String(32), nullable=False, default="original_payment")
    processed_by = db.Column(db.String(36), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    items = db.relationship("ReturnItem", backref="return_doc", lazy=True, order_by="ReturnItem.id", cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "original_sale_id": self.original_sale_id,
            "customer_id": self.customer_id,
            "returned_at": to_utc_z(self.returned_at),
            "status": self.status,
            "return_type": self.return_type,
            "reason": self.reason,
            "reason_details": self.reason_details,
            "refund_amount_cents": self.refund_amount_cents,
            "refund_method": self.refund_method,
            "processed_by": self.processed_by,
            "notes": self.notes,
            "items": [item.to_dict() for item in self.items],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ReturnItem(db.Model):
    __tablename__ = "return_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    original_sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    returned_quantity = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    refund_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    condition = db.Column(db.String(16), nullable=False, default="good")  # good, damaged, defective, open_box
    return_to_inventory = db.Column(db.Boolean, nullable=False, default=True)
    restock_fee_cents = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "product_id": self.product_id,
            "original_sale_item_id": self.original_sale_item_id,
            "quantity": self.quantity,
            "returned_quantity": self.returned_quantity,
            "price_cents": self.price_cents,
            "refund_amount_cents": self.refund_amount_cents,
            "condition": self.condition,
            "return_to_inventory": self.return_to_inventory,
            "restock_fee_cents": self.restock_fee_cents,
        }
