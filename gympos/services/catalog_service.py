# Overview: Catalog lookups and the atomic stock primitives used by checkout and void.

"""
Catalog invariants (authoritative)

- CatalogSnapshot is read fresh for every checkout and never mutated.
- Stock is changed ONLY by decrement_stock/increment_stock, each a single
  conditional UPDATE against the live row. Never read-modify-write a stock
  value fetched earlier in the request.
- A decrement succeeds only if the row still holds enough stock; the caller
  learns about a lost race from the returned flag, not from an exception.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import update

from ..extensions import db
from ..models import InventoryItem, MembershipPlan
from gympos.time_utils import utcnow


@dataclass(frozen=True)
class ItemSnapshot:
    id: int
    name: str
    price_cents: int
    stock: int


@dataclass(frozen=True)
class PlanSnapshot:
    id: int
    name: str
    price_cents: int
    duration_days: int
    giveaway_item_id: int | None = None


@dataclass(frozen=True)
class CatalogSnapshot:
    items: dict = field(default_factory=dict)
    plans: dict = field(default_factory=dict)
    taken_at: datetime | None = None

    def item(self, source_id) -> ItemSnapshot | None:
        item_id = parse_catalog_id(source_id)
        return None if item_id is None else self.items.get(item_id)

    def plan(self, source_id) -> PlanSnapshot | None:
        plan_id = parse_catalog_id(source_id)
        return None if plan_id is None else self.plans.get(plan_id)


def parse_catalog_id(source_id) -> int | None:
    """Catalog ids are integers; synthetic (custom) ids are not."""
    if isinstance(source_id, bool):
        return None
    if isinstance(source_id, int):
        return source_id
    if isinstance(source_id, str) and source_id.strip().isdigit():
        return int(source_id.strip())
    return None


def item_snapshot(item: InventoryItem) -> ItemSnapshot:
    return ItemSnapshot(id=item.id, name=item.name, price_cents=item.price_cents, stock=item.stock)


def plan_snapshot(plan: MembershipPlan) -> PlanSnapshot:
    return PlanSnapshot(
        id=plan.id,
        name=plan.name,
        price_cents=plan.price_cents,
        duration_days=plan.duration_days,
        giveaway_item_id=plan.giveaway_item_id,
    )


def fetch_snapshot(item_ids, plan_ids) -> CatalogSnapshot:
    """Read current price/stock/plan data for the given ids in one pass each."""
    item_ids = {i for i in item_ids if i is not None}
    plan_ids = {p for p in plan_ids if p is not None}

    items = {}
    if item_ids:
        rows = db.session.query(InventoryItem).filter(InventoryItem.id.in_(item_ids)).all()
        items = {row.id: item_snapshot(row) for row in rows}

    plans = {}
    if plan_ids:
        rows = db.session.query(MembershipPlan).filter(MembershipPlan.id.in_(plan_ids)).all()
        plans = {row.id: plan_snapshot(row) for row in rows}

    return CatalogSnapshot(items=items, plans=plans, taken_at=utcnow())


def get_item(item_id: int) -> InventoryItem | None:
    return db.session.get(InventoryItem, item_id)


def get_plan_with_giveaway(plan_id: int) -> tuple[PlanSnapshot | None, ItemSnapshot | None]:
    """
    Resolve a plan and its linked giveaway item for the POS terminal.

    The giveaway is None when the plan has no link or the linked item no
    longer exists; Cart.add_membership_line turns the latter into a notice.
    """
    plan = db.session.get(MembershipPlan, plan_id)
    if plan is None:
        return None, None
    giveaway = None
    if plan.giveaway_item_id is not None:
        item = db.session.get(InventoryItem, plan.giveaway_item_id)
        if item is not None:
            giveaway = item_snapshot(item)
    return plan_snapshot(plan), giveaway


def decrement_stock(item_id: int, quantity: int) -> bool:
    """
    Atomically take `quantity` units. Returns False (and changes nothing)
    when the row is missing or holds fewer units.
    """
    if quantity <= 0:
        raise ValueError("quantity must be positive")

    stmt = (
        update(InventoryItem)
        .where(
            InventoryItem.id == item_id,
            InventoryItem.stock >= quantity,
        )
        .values(stock=InventoryItem.stock - quantity)
        .execution_options(synchronize_session="evaluate")
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1


def increment_stock(item_id: int, quantity: int) -> bool:
    """Atomically return `quantity` units. Returns False when the row is gone."""
    if quantity <= 0:
        raise ValueError("quantity must be positive")

    stmt = (
        update(InventoryItem)
        .where(InventoryItem.id == item_id)
        .values(stock=InventoryItem.stock + quantity)
        .execution_options(synchronize_session="evaluate")
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1
