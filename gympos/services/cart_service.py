"""
Cart composition for the POS terminal.

WHY: The cashier builds a sale line by line before anything touches the
database. This module keeps the cart consistent while it is edited; it is a
client-side convenience, NOT a trust boundary. Everything here is re-checked
by checkout_service before any side effect happens.

INVARIANTS:
- At most one paid line per (source_id, kind).
- A membership line whose plan links a giveaway item owns exactly one
  giveaway line (keyed by the plan id in parent_source_id) with the same
  quantity. Removing or zeroing the membership line removes the giveaway;
  the giveaway line can never be removed on its own.
- Giveaway lines are always charged 0.

Stock checks here are advisory: they use the last stock figure the terminal
saw and only keep obviously bad carts from reaching checkout.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from ..constants import KIND_INVENTORY, KIND_MEMBERSHIP, LINE_KINDS, PAYMENT_CASH, PAYMENT_METHODS
from ..validation import (
    ValidationError,
    coerce_bool,
    coerce_int,
    coerce_price_cents,
    coerce_str,
)
from .pricing_service import Totals, compute_totals


# =============================================================================
# ADVISORY CODES
# =============================================================================

OUT_OF_STOCK = "OUT_OF_STOCK"
STOCK_LIMIT_REACHED = "STOCK_LIMIT_REACHED"
GIVEAWAY_UNAVAILABLE = "GIVEAWAY_UNAVAILABLE"
CANNOT_REMOVE_GIVEAWAY = "CANNOT_REMOVE_GIVEAWAY"
LINE_NOT_FOUND = "LINE_NOT_FOUND"
INVALID_PRICE = "INVALID_PRICE"
INVALID_QUANTITY = "INVALID_QUANTITY"
INVALID_DISCOUNT = "INVALID_DISCOUNT"
INVALID_PAYMENT_METHOD = "INVALID_PAYMENT_METHOD"

GIVEAWAY_SUFFIX = "(Free Giveaway)"
CUSTOM_ID_PREFIX = "custom-"


class CartError(Exception):
    """Raised when a cart edit is refused. The cart is left unchanged."""
    def __init__(self, code: str, message: str, details: dict | None = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}


@dataclass(frozen=True)
class CartNotice:
    """Non-fatal signal returned alongside a successful edit."""
    code: str
    message: str


@dataclass
class LineItem:
    source_id: str
    kind: str
    name: str
    quantity: int
    unit_price_paid_cents: int
    unit_price_original_cents: int
    is_giveaway: bool = False
    is_custom: bool = False
    # Giveaway lines: plan id of the owning membership line (None = manual giveaway)
    parent_source_id: str | None = None
    # Membership lines: inventory item id of the linked giveaway, once inserted
    giveaway_source_id: str | None = None
    # Last known stock (advisory, inventory lines only)
    stock_limit: int | None = None

    @property
    def is_override(self) -> bool:
        return not self.is_giveaway and self.unit_price_paid_cents < self.unit_price_original_cents

    @property
    def line_total_cents(self) -> int:
        return 0 if self.is_giveaway else self.unit_price_paid_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "kind": self.kind,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_paid_cents": self.unit_price_paid_cents,
            "unit_price_original_cents": self.unit_price_original_cents,
            "is_giveaway": self.is_giveaway,
            "is_custom": self.is_custom,
            "parent_source_id": self.parent_source_id,
            "giveaway_source_id": self.giveaway_source_id,
            "stock_limit": self.stock_limit,
        }

    @classmethod
    def from_dict(cls, data: dict, index: int = 0) -> "LineItem":
        if not isinstance(data, dict):
            raise ValidationError(f"lines[{index}] must be an object")
        prefix = f"lines[{index}]"

        kind = coerce_str(data.get("kind"), f"{prefix}.kind")
        kind = kind.upper()
        if kind not in LINE_KINDS:
            raise ValidationError(f"{prefix}.kind must be one of {', '.join(LINE_KINDS)}")

        is_giveaway = coerce_bool(data.get("is_giveaway"), f"{prefix}.is_giveaway")
        is_custom = coerce_bool(data.get("is_custom"), f"{prefix}.is_custom")
        if is_giveaway and kind != KIND_INVENTORY:
            raise ValidationError(f"{prefix}: giveaway lines must be INVENTORY")
        if is_custom and (kind != KIND_INVENTORY or is_giveaway):
            raise ValidationError(f"{prefix}: custom lines must be paid INVENTORY lines")

        stock_limit = data.get("stock_limit")
        return cls(
            source_id=coerce_str(data.get("source_id"), f"{prefix}.source_id", max_length=64),
            kind=kind,
            name=coerce_str(data.get("name"), f"{prefix}.name"),
            quantity=coerce_int(data.get("quantity"), f"{prefix}.quantity", minimum=1),
            unit_price_paid_cents=coerce_price_cents(
                data.get("unit_price_paid_cents"), f"{prefix}.unit_price_paid_cents"
            ),
            unit_price_original_cents=coerce_price_cents(
                data.get("unit_price_original_cents"), f"{prefix}.unit_price_original_cents"
            ),
            is_giveaway=is_giveaway,
            is_custom=is_custom,
            parent_source_id=coerce_str(
                data.get("parent_source_id"), f"{prefix}.parent_source_id", required=False, max_length=64
            ),
            giveaway_source_id=coerce_str(
                data.get("giveaway_source_id"), f"{prefix}.giveaway_source_id", required=False, max_length=64
            ),
            stock_limit=None if stock_limit is None else coerce_int(stock_limit, f"{prefix}.stock_limit"),
        )


@dataclass
class Cart:
    """
    In-memory cart owned by one checkout session.

    Edits raise CartError and leave the cart untouched when refused.
    """
    lines: list[LineItem] = field(default_factory=list)
    customer_ref: str | None = None
    customer_name: str | None = None
    payment_method: str = PAYMENT_CASH
    discount_percent: int = 0
    # The attached customer was registered together with this sale; their
    # first activation already happened, so fulfillment must not extend it.
    is_initial_registration: bool = False

    # -------------------------------------------------------------------------
    # lookup
    # -------------------------------------------------------------------------

    def find_line(self, source_id, kind: str) -> LineItem | None:
        """Paid (non-giveaway) line for a source, if any."""
        source_id = str(source_id)
        for line in self.lines:
            if line.source_id == source_id and line.kind == kind and not line.is_giveaway:
                return line
        return None

    def giveaway_line_for(self, plan_id) -> LineItem | None:
        plan_id = str(plan_id)
        for line in self.lines:
            if line.is_giveaway and line.parent_source_id == plan_id:
                return line
        return None

    def _has_giveaway_source(self, source_id: str) -> bool:
        return any(line.is_giveaway and line.source_id == source_id for line in self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    # -------------------------------------------------------------------------
    # inventory
    # -------------------------------------------------------------------------

    def add_inventory_line(self, item_id, name: str, catalog_price_cents: int, available_stock: int) -> LineItem:
        source_id = str(item_id)
        if available_stock <= 0:
            raise CartError(OUT_OF_STOCK, f"{name} is out of stock", {"source_id": source_id})

        existing = self.find_line(source_id, KIND_INVENTORY)
        if existing:
            if existing.quantity + 1 > available_stock:
                raise CartError(
                    STOCK_LIMIT_REACHED,
                    f"Cannot add more {name}: stock limit reached",
                    {"source_id": source_id, "available_stock": available_stock},
                )
            existing.quantity += 1
            existing.stock_limit = available_stock
            return existing

        line = LineItem(
            source_id=source_id,
            kind=KIND_INVENTORY,
            name=name,
            quantity=1,
            unit_price_paid_cents=catalog_price_cents,
            unit_price_original_cents=catalog_price_cents,
            stock_limit=available_stock,
        )
        self.lines.append(line)
        return line

    def add_catalog_item(self, item) -> LineItem:
        """Convenience for InventoryItem rows and ItemSnapshots."""
        return self.add_inventory_line(item.id, item.name, item.price_cents, item.stock)

    def add_custom_line(self, name: str, price_cents: int, quantity: int = 1) -> LineItem:
        """Ad-hoc item (service fee, one-off product). Taxed like inventory, never stock-tracked."""
        if not name or not name.strip():
            raise CartError(INVALID_PRICE, "Custom item name is required")
        if price_cents < 1:
            raise CartError(INVALID_PRICE, "Custom item price must be greater than zero")
        if quantity < 1:
            raise CartError(INVALID_QUANTITY, "Quantity must be at least 1")

        line = LineItem(
            source_id=f"{CUSTOM_ID_PREFIX}{uuid.uuid4().hex}",
            kind=KIND_INVENTORY,
            name=name.strip(),
            quantity=quantity,
            unit_price_paid_cents=price_cents,
            unit_price_original_cents=price_cents,
            is_custom=True,
        )
        self.lines.append(line)
        return line

    def update_stock_limit(self, item_id, available_stock: int) -> None:
        """Refresh the advisory ceiling with the latest stock the terminal saw."""
        line = self.find_line(item_id, KIND_INVENTORY)
        if line and not line.is_custom:
            line.stock_limit = available_stock

    # -------------------------------------------------------------------------
    # memberships
    # -------------------------------------------------------------------------

    def add_membership_line(self, plan, giveaway_item=None) -> list[CartNotice]:
        """
        Add one unit of a plan.

        `plan` needs id, name, duration_days, price_cents, giveaway_item_id.
        `giveaway_item` is the resolved inventory item for plan.giveaway_item_id
        (id, name, price_cents, optional stock) or None when the lookup failed.
        """
        notices: list[CartNotice] = []
        plan_id = str(plan.id)

        membership = self.find_line(plan_id, KIND_MEMBERSHIP)
        if membership:
            membership.quantity += 1
        else:
            membership = LineItem(
                source_id=plan_id,
                kind=KIND_MEMBERSHIP,
                name=f"{plan.name} ({plan.duration_days} days)",
                quantity=1,
                unit_price_paid_cents=plan.price_cents,
                unit_price_original_cents=plan.price_cents,
            )
            self.lines.append(membership)

        giveaway = self.giveaway_line_for(plan_id)
        if giveaway:
            giveaway.quantity = membership.quantity
            return notices

        if plan.giveaway_item_id is None:
            return notices

        if giveaway_item is None or str(giveaway_item.id) != str(plan.giveaway_item_id):
            notices.append(CartNotice(
                GIVEAWAY_UNAVAILABLE,
                f"Giveaway item for {plan.name} could not be found; plan added without it",
            ))
            return notices

        giveaway = LineItem(
            source_id=str(giveaway_item.id),
            kind=KIND_INVENTORY,
            name=f"{giveaway_item.name} {GIVEAWAY_SUFFIX}",
            quantity=membership.quantity,
            unit_price_paid_cents=0,
            unit_price_original_cents=giveaway_item.price_cents,
            is_giveaway=True,
            parent_source_id=plan_id,
            stock_limit=getattr(giveaway_item, "stock", None),
        )
        membership.giveaway_source_id = giveaway.source_id
        self.lines.append(giveaway)
        return notices

    # -------------------------------------------------------------------------
    # edits
    # -------------------------------------------------------------------------

    def _require_line(self, source_id, kind: str) -> LineItem:
        line = self.find_line(source_id, kind)
        if line is None:
            raise CartError(LINE_NOT_FOUND, "Line not found in cart", {"source_id": str(source_id), "kind": kind})
        return line

    def _drop(self, line: LineItem) -> None:
        self.lines = [l for l in self.lines if l is not line]
        if line.kind == KIND_MEMBERSHIP:
            self.lines = [
                l for l in self.lines
                if not (l.is_giveaway and l.parent_source_id == line.source_id)
            ]

    def adjust_quantity(self, source_id, kind: str, delta: int) -> LineItem | None:
        """
        Change a paid line's quantity by delta. Returns the line, or None when
        it dropped to zero and was removed.
        """
        line = self._require_line(source_id, kind)
        new_quantity = line.quantity + delta

        if new_quantity <= 0:
            self._drop(line)
            return None

        if (
            delta > 0
            and line.kind == KIND_INVENTORY
            and not line.is_custom
            and line.stock_limit is not None
            and new_quantity > line.stock_limit
        ):
            raise CartError(
                STOCK_LIMIT_REACHED,
                f"Cannot add more {line.name}: stock limit reached",
                {"source_id": line.source_id, "available_stock": line.stock_limit},
            )

        line.quantity = new_quantity
        if line.kind == KIND_MEMBERSHIP:
            giveaway = self.giveaway_line_for(line.source_id)
            if giveaway:
                giveaway.quantity = new_quantity
        return line

    def remove_line(self, source_id, kind: str, giveaway: bool = False) -> None:
        source_id = str(source_id)
        line = None if giveaway else self.find_line(source_id, kind)
        if line is None:
            if kind == KIND_INVENTORY and self._has_giveaway_source(source_id):
                raise CartError(
                    CANNOT_REMOVE_GIVEAWAY,
                    "Giveaway items are removed with their membership plan",
                    {"source_id": source_id},
                )
            raise CartError(LINE_NOT_FOUND, "Line not found in cart", {"source_id": source_id, "kind": kind})
        self._drop(line)

    def override_price(self, source_id, kind: str, new_price_cents: int) -> LineItem:
        """
        Set the charged unit price. No permission check here: the checkout
        authority decides whether the acting role may keep the override.
        """
        if not isinstance(new_price_cents, int) or isinstance(new_price_cents, bool):
            raise CartError(INVALID_PRICE, "Price must be an integer number of cents")
        if new_price_cents < 0:
            raise CartError(INVALID_PRICE, "Price cannot be negative")
        line = self._require_line(source_id, kind)
        line.unit_price_paid_cents = new_price_cents
        return line

    # -------------------------------------------------------------------------
    # header fields
    # -------------------------------------------------------------------------

    def select_customer(self, customer_ref, name: str | None = None, just_registered: bool = False) -> None:
        self.customer_ref = None if customer_ref is None else str(customer_ref)
        self.customer_name = name
        self.is_initial_registration = just_registered

    def clear_customer(self) -> None:
        self.customer_ref = None
        self.customer_name = None
        self.is_initial_registration = False

    def set_discount_percent(self, percent: int) -> None:
        if not isinstance(percent, int) or isinstance(percent, bool) or not 0 <= percent <= 100:
            raise CartError(INVALID_DISCOUNT, "Discount must be a whole percentage between 0 and 100")
        self.discount_percent = percent

    def set_payment_method(self, method: str) -> None:
        if method not in PAYMENT_METHODS:
            raise CartError(INVALID_PAYMENT_METHOD, f"Payment method must be one of {', '.join(PAYMENT_METHODS)}")
        self.payment_method = method

    def clear(self) -> None:
        self.lines = []
        self.discount_percent = 0
        self.payment_method = PAYMENT_CASH
        self.clear_customer()

    # -------------------------------------------------------------------------
    # derived
    # -------------------------------------------------------------------------

    def totals(self, tax_rate_bps: int = 800) -> Totals:
        """Preview only; the server recomputes at checkout."""
        return compute_totals(self.lines, self.discount_percent, tax_rate_bps)

    def giveaways_in_sync(self) -> bool:
        for line in self.lines:
            if line.kind != KIND_MEMBERSHIP or line.giveaway_source_id is None:
                continue
            giveaway = self.giveaway_line_for(line.source_id)
            if giveaway is None or giveaway.quantity != line.quantity:
                return False
        return True

    def to_payload(self) -> dict:
        """JSON body for /api/pos/checkout. Never carries a total."""
        return {
            "lines": [line.to_dict() for line in self.lines],
            "customer_ref": self.customer_ref,
            "payment_method": self.payment_method,
            "discount_percent": self.discount_percent,
            "is_initial_registration": self.is_initial_registration,
        }

    @classmethod
    def from_payload(cls, data: dict, default_payment_method: str = PAYMENT_CASH) -> "Cart":
        """
        Parse an untrusted checkout body. Shape and ranges only; catalog
        validation belongs to checkout_service. Unknown keys (including any
        client-computed total) are ignored.

        default_payment_method applies when the body omits payment_method.
        """
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")

        raw_lines = data.get("lines")
        if raw_lines is None:
            raw_lines = []
        if not isinstance(raw_lines, list):
            raise ValidationError("lines must be a list")

        payment_method = data.get("payment_method") or default_payment_method
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"payment_method must be one of {', '.join(PAYMENT_METHODS)}")

        discount = data.get("discount_percent")
        customer_ref = coerce_str(data.get("customer_ref"), "customer_ref", required=False, max_length=64)

        return cls(
            lines=[LineItem.from_dict(raw, i) for i, raw in enumerate(raw_lines)],
            customer_ref=customer_ref,
            payment_method=payment_method,
            discount_percent=0 if discount is None else coerce_int(discount, "discount_percent", minimum=0, maximum=100),
            is_initial_registration=coerce_bool(data.get("is_initial_registration"), "is_initial_registration"),
        )
