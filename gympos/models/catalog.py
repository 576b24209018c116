from __future__ import annotations

from ..extensions import db
from gympos.time_utils import to_utc_z, to_iso_date


class InventoryItem(db.Model):
    """
    Sellable inventory item (apparel, supplements, equipment).

    STOCK: `stock` is a live counter, not a ledger. It is only ever changed
    through the conditional UPDATE primitives in catalog_service so that
    concurrent checkouts serialize at the row level. The CHECK constraint
    is the last line of defense against a negative counter.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_inventory_items_stock_nonneg"),
        db.Index("ix_inventory_items_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(32), nullable=False, default="Equipment")  # Apparel, Supplements, Equipment

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False)
    stock = db.Column(db.Integer, nullable=False, default=0)

    last_restock = db.Column(db.Date, nullable=True)
    image_url = db.Column(db.String(512), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<InventoryItem id={self.id} name={self.name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "price_cents": self.price_cents,
            "stock": self.stock,
            "last_restock": to_iso_date(self.last_restock),
            "image_url": self.image_url,
            "created_at": to_utc_z(self.created_at),
        }


class MembershipPlan(db.Model):
    """
    Membership plan sold at the POS.

    GIVEAWAY: giveaway_item_id optionally points at an inventory item that is
    handed out for free with every unit of this plan. The link is resolved
    when the plan is added to a cart; carts never store the plan itself.
    """
    __tablename__ = "membership_plans"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    duration_days = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.Text, nullable=True)

    giveaway_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    giveaway_item = db.relationship("InventoryItem")

    def __repr__(self) -> str:
        return f"<MembershipPlan id={self.id} name={self.name!r} days={self.duration_days}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "duration_days": self.duration_days,
            "price_cents": self.price_cents,
            "description": self.description,
            "giveaway_item_id": self.giveaway_item_id,
            "created_at": to_utc_z(self.created_at),
        }
