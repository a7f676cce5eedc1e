from __future__ import annotations

import uuid

from ..extensions import db
from ..time_utils import to_utc_z


def new_uuid() -> str:
    return str(uuid.uuid4())


class Store(db.Model):
    """
    Multi-tenant root: every tenant is a Store.

    All products, customers, sales, returns and notifications carry a
    store_id and every query touching them filters on it.

    Ids are client-generated uuids so a store can be created while offline
    and pushed later by the sync manager.
    """
    __tablename__ = "stores"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    name = db.Column(db.String(120), nullable=False)
    address = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    owner_id = db.Column(db.String(36), nullable=True, index=True)

    subscription_status = db.Column(db.String(16), nullable=False, default="trial")  # active, inactive, trial, cancelled
    max_users = db.Column(db.Integer, nullable=False, default=2)
    max_products = db.Column(db.Integer, nullable=False, default=100)
    max_locations = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Store id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "phone": self.phone,
            "email": self.email,
            "owner_id": self.owner_id,
            "subscription_status": self.subscription_status,
            "max_users": self.max_users,
            "max_products": self.max_products,
            "max_locations": self.max_locations,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Subscription(db.Model):
    """Billing tier for a store. One current subscription per store."""
    __tablename__ = "subscriptions"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    user_id = db.Column(db.String(36), nullable=False, index=True)
    store_id = db.Column(db.String(36), nullable=False, index=True)

    tier = db.Column(db.String(16), nullable=False, default="free")  # free, basic, premium, enterprise
    status = db.Column(db.String(16), nullable=False, default="trial")  # active, inactive, trial, cancelled
    stripe_subscription_id = db.Column(db.String(255), nullable=True)

    current_period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_at_period_end = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "store_id": self.store_id,
            "tier": self.tier,
            "status": self.status,
            "stripe_subscription_id": self.stripe_subscription_id,
            "current_period_start": to_utc_z(self.current_period_start),
            "current_period_end": to_utc_z(self.current_period_end),
            "cancel_at_period_end": self.cancel_at_period_end,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
