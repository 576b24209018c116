from __future__ import annotations

from ..extensions import db
from gympos.time_utils import to_utc_z, to_iso_date


class Transaction(db.Model):
    """
    Recorded POS sale.

    IMMUTABLE: Written once by fulfillment_service and removed only by
    void_service. There is no draft or pending state; a row either exists
    (the sale stands) or it was voided and deleted.

    member_ref is the member code when the customer has one, their profile
    id otherwise, or GUEST for walk-in sales.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_created", "created_at"),
        db.Index("ix_transactions_member_ref", "member_ref"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    member_id = db.Column(db.Integer, db.ForeignKey("profiles.id"), nullable=True, index=True)
    member_ref = db.Column(db.String(64), nullable=False)
    member_name = db.Column(db.String(255), nullable=False)

    sale_type = db.Column(db.String(16), nullable=False, index=True)  # GOODS_SALE, MEMBERSHIP_SALE, MIXED_SALE
    item_description = db.Column(db.Text, nullable=True)

    # All amounts in cents, as approved by the checkout authority
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    discount_percent = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=False)  # Card, Cash, Transfer

    created_by_profile_id = db.Column(db.Integer, db.ForeignKey("profiles.id"), nullable=True)
    transaction_date = db.Column(db.Date, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    lines = db.relationship(
        "TransactionLine",
        backref="transaction",
        order_by="TransactionLine.position",
        cascade="all, delete-orphan",
        lazy=True,
    )
    member = db.relationship("Profile", foreign_keys=[member_id])

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "member_id": self.member_id,
            "member_ref": self.member_ref,
            "member_name": self.member_name,
            "sale_type": self.sale_type,
            "item_description": self.item_description,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "discount_percent": self.discount_percent,
            "payment_method": self.payment_method,
            "created_by_profile_id": self.created_by_profile_id,
            "transaction_date": to_iso_date(self.transaction_date),
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class TransactionLine(db.Model):
    """Line item exactly as charged, giveaways included at a paid price of 0."""
    __tablename__ = "transaction_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(
        db.Integer,
        db.ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = db.Column(db.Integer, nullable=False)

    source_id = db.Column(db.String(64), nullable=False)
    kind = db.Column(db.String(16), nullable=False)  # INVENTORY, MEMBERSHIP
    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    unit_price_paid_cents = db.Column(db.Integer, nullable=False)
    unit_price_original_cents = db.Column(db.Integer, nullable=False)

    is_giveaway = db.Column(db.Boolean, nullable=False, default=False)
    is_custom = db.Column(db.Boolean, nullable=False, default=False)

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_paid_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "position": self.position,
            "source_id": self.source_id,
            "kind": self.kind,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_paid_cents": self.unit_price_paid_cents,
            "unit_price_original_cents": self.unit_price_original_cents,
            "line_total_cents": self.line_total_cents,
            "is_giveaway": self.is_giveaway,
            "is_custom": self.is_custom,
        }
