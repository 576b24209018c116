"""
Checkout Authority - the trust boundary of the POS.

WHY: The terminal builds carts, computes a preview total and knows the
catalog prices it was shown. None of that is trusted. Before any stock,
membership or financial side effect, this module re-validates every line
against a fresh catalog snapshot, applies the role policy, and prices the
sale itself.

CONTRACT:
- Input: an untrusted Cart and the acting profile.
- Output: a frozen CheckoutDecision, or CheckoutRejected with a reason code.
- Never mutates anything; safe to retry after the cart is corrected.
- A client-computed total is never read. The decision carries the only total
  fulfillment will ever record.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app

from ..constants import KIND_INVENTORY, KIND_MEMBERSHIP, PAYMENT_METHODS
from ..permissions import DEFAULT_POLICY, PricingPolicy
from . import catalog_service, member_service
from .catalog_service import CatalogSnapshot, PlanSnapshot, parse_catalog_id
from .pricing_service import Totals, compute_totals
from .transaction_service import classify_sale


# =============================================================================
# REJECTION REASONS
# =============================================================================

EMPTY_CART = "EMPTY_CART"
NOT_STAFF = "NOT_STAFF"
UNKNOWN_ITEM = "UNKNOWN_ITEM"
PRICE_MISMATCH = "PRICE_MISMATCH"
OVERCHARGE_ATTEMPT = "OVERCHARGE_ATTEMPT"
INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
PRICE_OVERRIDE_FORBIDDEN = "PRICE_OVERRIDE_FORBIDDEN"
CUSTOM_ITEM_FORBIDDEN = "CUSTOM_ITEM_FORBIDDEN"
INVALID_GIVEAWAY = "INVALID_GIVEAWAY"
UNKNOWN_CUSTOMER = "UNKNOWN_CUSTOMER"
INVALID_DISCOUNT = "INVALID_DISCOUNT"
INVALID_PAYMENT_METHOD = "INVALID_PAYMENT_METHOD"


class CheckoutRejected(Exception):
    """Raised before any side effect. The cart can be fixed and resubmitted."""
    def __init__(self, reason: str, message: str, details: dict | None = None):
        super().__init__(message)
        self.reason = reason
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "reason": self.reason, "details": self.details}


@dataclass(frozen=True)
class ApprovedLine:
    source_id: str
    kind: str
    name: str
    quantity: int
    unit_price_paid_cents: int
    unit_price_original_cents: int
    is_giveaway: bool
    is_custom: bool
    catalog_id: int | None

    @property
    def tracks_stock(self) -> bool:
        return self.kind == KIND_INVENTORY and not self.is_custom and self.catalog_id is not None


@dataclass(frozen=True)
class CheckoutDecision:
    """
    An authorized, priced sale. Only authorize_checkout builds these; the
    fulfillment sequencer accepts nothing else.
    """
    lines: tuple
    totals: Totals
    sale_type: str
    customer_id: int | None
    member_ref: str
    member_name: str
    payment_method: str
    discount_percent: int
    is_initial_registration: bool
    actor_id: int | None
    actor_role: str | None
    plans: tuple
    has_price_override: bool
    authorized_at: datetime | None

    def plan(self, source_id) -> PlanSnapshot | None:
        plan_id = parse_catalog_id(source_id)
        for plan in self.plans:
            if plan.id == plan_id:
                return plan
        return None

    @property
    def total_cents(self) -> int:
        return self.totals.total_cents


# =============================================================================
# LINE CHECKS
# =============================================================================

def _check_paid_line(line, snapshot: CatalogSnapshot, tolerance: int) -> int:
    """Validate a catalog line and return its canonical unit price."""
    canonical = snapshot.item(line.source_id) if line.kind == KIND_INVENTORY else snapshot.plan(line.source_id)
    if canonical is None:
        raise CheckoutRejected(
            UNKNOWN_ITEM,
            f"Item {line.source_id} not found in catalog",
            {"source_id": line.source_id, "kind": line.kind},
        )

    if abs(line.unit_price_original_cents - canonical.price_cents) > tolerance:
        current_app.logger.warning(
            "Price mismatch for %s: client original=%s catalog=%s",
            line.name, line.unit_price_original_cents, canonical.price_cents,
        )
        raise CheckoutRejected(
            PRICE_MISMATCH,
            f"Price validation failed for {line.name}: catalog price changed",
            {
                "source_id": line.source_id,
                "client_original_cents": line.unit_price_original_cents,
                "catalog_price_cents": canonical.price_cents,
            },
        )

    # Paid may exceed neither the client original nor the catalog price beyond tolerance
    ceiling = min(line.unit_price_original_cents, canonical.price_cents) + tolerance
    if line.unit_price_paid_cents > ceiling:
        current_app.logger.warning(
            "Overcharge attempt for %s: paid=%s original=%s catalog=%s",
            line.name, line.unit_price_paid_cents, line.unit_price_original_cents, canonical.price_cents,
        )
        raise CheckoutRejected(
            OVERCHARGE_ATTEMPT,
            f"Price validation failed for {line.name}: paid price above catalog price",
            {
                "source_id": line.source_id,
                "unit_price_paid_cents": line.unit_price_paid_cents,
                "unit_price_original_cents": line.unit_price_original_cents,
            },
        )

    return canonical.price_cents


def _check_custom_line(line, role, policy: PricingPolicy) -> None:
    if not policy.can_sell_custom_item(role):
        raise CheckoutRejected(
            CUSTOM_ITEM_FORBIDDEN,
            f"Role {role!r} may not sell custom items",
            {"source_id": line.source_id, "name": line.name},
        )
    if line.unit_price_paid_cents < 1 or line.unit_price_paid_cents != line.unit_price_original_cents:
        raise CheckoutRejected(
            PRICE_MISMATCH,
            f"Custom item {line.name} must be charged its stated price",
            {"source_id": line.source_id},
        )


def _check_giveaway_line(line, cart, snapshot: CatalogSnapshot, seen_parents: set) -> bool:
    """
    Validate a giveaway line. Returns True for a manual giveaway (no owning
    membership line), which the caller treats as a price override.
    """
    if line.unit_price_paid_cents != 0:
        raise CheckoutRejected(
            INVALID_GIVEAWAY,
            f"Giveaway {line.name} must be free",
            {"source_id": line.source_id},
        )

    if snapshot.item(line.source_id) is None:
        raise CheckoutRejected(
            UNKNOWN_ITEM,
            f"Giveaway item {line.source_id} not found in catalog",
            {"source_id": line.source_id, "kind": line.kind},
        )

    if line.parent_source_id is None:
        return True

    parent = cart.find_line(line.parent_source_id, KIND_MEMBERSHIP)
    plan = snapshot.plan(line.parent_source_id)
    if (
        parent is None
        or plan is None
        or line.parent_source_id in seen_parents
        or plan.giveaway_item_id != parse_catalog_id(line.source_id)
        or line.quantity != parent.quantity
    ):
        raise CheckoutRejected(
            INVALID_GIVEAWAY,
            f"Giveaway {line.name} does not match its membership plan",
            {"source_id": line.source_id, "parent_source_id": line.parent_source_id},
        )
    seen_parents.add(line.parent_source_id)
    return False


def _approved(line) -> ApprovedLine:
    return ApprovedLine(
        source_id=line.source_id,
        kind=line.kind,
        name=line.name,
        quantity=line.quantity,
        unit_price_paid_cents=0 if line.is_giveaway else line.unit_price_paid_cents,
        unit_price_original_cents=line.unit_price_original_cents,
        is_giveaway=line.is_giveaway,
        is_custom=line.is_custom,
        catalog_id=None if line.is_custom else parse_catalog_id(line.source_id),
    )


# =============================================================================
# AUTHORIZATION
# =============================================================================

def authorize_checkout(
    cart,
    actor,
    *,
    policy: PricingPolicy | None = None,
    tax_rate_bps: int | None = None,
    tolerance_cents: int | None = None,
) -> CheckoutDecision:
    """
    Validate and price a cart on behalf of `actor` (a Profile or anything
    with id and role).
    """
    policy = policy or DEFAULT_POLICY
    config = current_app.config
    tax_rate_bps = config["TAX_RATE_BPS"] if tax_rate_bps is None else tax_rate_bps
    tolerance = config["PRICE_TOLERANCE_CENTS"] if tolerance_cents is None else tolerance_cents

    role = getattr(actor, "role", None)
    actor_id = getattr(actor, "id", None)

    if not policy.can_checkout(role):
        raise CheckoutRejected(NOT_STAFF, "Only staff may check out sales", {"role": role})

    if cart.is_empty:
        raise CheckoutRejected(EMPTY_CART, "Cart cannot be empty")

    discount = cart.discount_percent
    if not isinstance(discount, int) or isinstance(discount, bool) or not 0 <= discount <= 100:
        raise CheckoutRejected(INVALID_DISCOUNT, "Discount must be between 0 and 100", {"discount_percent": discount})

    if cart.payment_method not in PAYMENT_METHODS:
        raise CheckoutRejected(
            INVALID_PAYMENT_METHOD,
            f"Payment method must be one of {', '.join(PAYMENT_METHODS)}",
            {"payment_method": cart.payment_method},
        )

    # 1. Fresh snapshot covering every catalog entity the cart references
    item_ids: set[int] = set()
    plan_ids: set[int] = set()
    for line in cart.lines:
        if line.is_custom:
            continue
        catalog_id = parse_catalog_id(line.source_id)
        if catalog_id is None:
            raise CheckoutRejected(
                UNKNOWN_ITEM,
                f"Item {line.source_id} not found in catalog",
                {"source_id": line.source_id, "kind": line.kind},
            )
        if line.kind == KIND_INVENTORY:
            item_ids.add(catalog_id)
        else:
            plan_ids.add(catalog_id)
        if line.is_giveaway and line.parent_source_id is not None:
            parent_id = parse_catalog_id(line.parent_source_id)
            if parent_id is not None:
                plan_ids.add(parent_id)

    snapshot = catalog_service.fetch_snapshot(item_ids, plan_ids)

    # 2. Per-line validation
    has_override = False
    demand: dict[int, int] = {}
    seen_parents: set = set()
    for line in cart.lines:
        if line.is_custom:
            _check_custom_line(line, role, policy)
            continue

        if line.is_giveaway:
            if _check_giveaway_line(line, cart, snapshot, seen_parents):
                has_override = True
        else:
            catalog_price = _check_paid_line(line, snapshot, tolerance)
            if line.unit_price_paid_cents < catalog_price - tolerance:
                has_override = True

        if line.kind == KIND_INVENTORY:
            item_id = parse_catalog_id(line.source_id)
            demand[item_id] = demand.get(item_id, 0) + line.quantity

    insufficient = []
    for item_id, quantity in sorted(demand.items()):
        item = snapshot.items[item_id]
        if item.stock < quantity:
            insufficient.append({
                "item_id": item_id,
                "name": item.name,
                "requested_quantity": quantity,
                "stock": item.stock,
            })
    if insufficient:
        first = insufficient[0]
        raise CheckoutRejected(
            INSUFFICIENT_STOCK,
            f"Insufficient stock for {first['name']}. Required: {first['requested_quantity']}, "
            f"Available: {first['stock']}",
            {"items": insufficient},
        )

    # 3. Role policy for overrides
    if has_override and not policy.can_override_price(role):
        current_app.logger.warning(
            "Price override by profile %s (role %r) rejected", actor_id, role,
        )
        raise CheckoutRejected(
            PRICE_OVERRIDE_FORBIDDEN,
            "Cashiers are not authorized to apply manual price overrides",
            {"role": role},
        )

    # 4. Server-side pricing
    totals = compute_totals(cart.lines, discount, tax_rate_bps)

    # 5. Customer
    profile = None
    if cart.customer_ref:
        profile = member_service.resolve_customer(cart.customer_ref)
        if profile is None:
            raise CheckoutRejected(
                UNKNOWN_CUSTOMER,
                "Selected member not found",
                {"customer_ref": cart.customer_ref},
            )
    member_ref, member_name = member_service.customer_identity(profile)

    # 6. Decision
    lines = tuple(_approved(line) for line in cart.lines)
    plans = tuple(
        snapshot.plans[parse_catalog_id(line.source_id)]
        for line in cart.lines
        if line.kind == KIND_MEMBERSHIP
    )
    return CheckoutDecision(
        lines=lines,
        totals=totals,
        sale_type=classify_sale(lines),
        customer_id=profile.id if profile else None,
        member_ref=member_ref,
        member_name=member_name,
        payment_method=cart.payment_method,
        discount_percent=discount,
        is_initial_registration=bool(profile and cart.is_initial_registration),
        actor_id=actor_id,
        actor_role=role,
        plans=plans,
        has_price_override=has_override,
        authorized_at=snapshot.taken_at,
    )
