# Overview: Transaction store (create, fetch, list, delete) and record-shaping helpers.

from __future__ import annotations

from datetime import datetime

from ..constants import KIND_INVENTORY, KIND_MEMBERSHIP, SALE_TYPE_GOODS, SALE_TYPE_MEMBERSHIP, SALE_TYPE_MIXED
from ..extensions import db
from ..models import Transaction, TransactionLine
from gympos.time_utils import utcnow


def classify_sale(lines) -> str:
    """
    MIXED_SALE when inventory and membership lines are both present,
    MEMBERSHIP_SALE for memberships only, GOODS_SALE otherwise.

    Giveaway and custom lines count as inventory.
    """
    has_membership = any(line.kind == KIND_MEMBERSHIP for line in lines)
    has_inventory = any(line.kind == KIND_INVENTORY for line in lines)
    if has_membership and has_inventory:
        return SALE_TYPE_MIXED
    if has_membership:
        return SALE_TYPE_MEMBERSHIP
    return SALE_TYPE_GOODS


def describe_items(lines) -> str:
    """Human audit string: "Protein Bar x2, Monthly (30 days) x1"."""
    return ", ".join(f"{line.name} x{line.quantity}" for line in lines)


def record_transaction(decision, *, transaction_date=None) -> Transaction:
    """
    Persist an approved sale. Flushes but does not commit; the fulfillment
    transaction decides when the record becomes visible.
    """
    now = utcnow()
    tx = Transaction(
        member_id=decision.customer_id,
        member_ref=decision.member_ref,
        member_name=decision.member_name,
        sale_type=decision.sale_type,
        item_description=describe_items(decision.lines),
        subtotal_cents=decision.totals.subtotal_cents,
        discount_cents=decision.totals.discount_cents,
        tax_cents=decision.totals.tax_cents,
        total_cents=decision.totals.total_cents,
        discount_percent=decision.discount_percent,
        payment_method=decision.payment_method,
        created_by_profile_id=decision.actor_id,
        transaction_date=transaction_date or now.date(),
        created_at=now,
    )
    for position, line in enumerate(decision.lines, start=1):
        tx.lines.append(TransactionLine(
            position=position,
            source_id=line.source_id,
            kind=line.kind,
            name=line.name,
            quantity=line.quantity,
            unit_price_paid_cents=0 if line.is_giveaway else line.unit_price_paid_cents,
            unit_price_original_cents=line.unit_price_original_cents,
            is_giveaway=line.is_giveaway,
            is_custom=line.is_custom,
        ))

    db.session.add(tx)
    db.session.flush()
    return tx


def get_transaction(transaction_id: int) -> Transaction | None:
    return db.session.get(Transaction, transaction_id)


def list_transactions(
    *,
    limit: int = 50,
    since: datetime | None = None,
    member_ref: str | None = None,
    sale_type: str | None = None,
) -> list[Transaction]:
    """Most recent first."""
    q = db.session.query(Transaction)
    if since is not None:
        q = q.filter(Transaction.created_at >= since)
    if member_ref:
        q = q.filter(Transaction.member_ref == member_ref)
    if sale_type:
        q = q.filter(Transaction.sale_type == sale_type)
    return q.order_by(Transaction.created_at.desc(), Transaction.id.desc()).limit(limit).all()


def delete_transaction(tx: Transaction) -> None:
    """Remove a record and its lines. Only void_service calls this."""
    db.session.delete(tx)
    db.session.flush()
