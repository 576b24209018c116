# Overview: Role tiers, permission definitions and the pricing/void policy consumed by the checkout core.

"""
Permission model

Roles come from the profile record (external capability check); this module
only decides what each role may do. Each permission is defined as:
(code, name, description, category)

TIERS:
- Staff (owner, co owner, manager, cashier): may check out and void sales.
- Privileged staff (owner, co owner, manager): may also override prices,
  sell custom items and issue manual giveaways.
- member: no POS access.
"""

from __future__ import annotations

from dataclasses import dataclass, field


class PermissionCategory:
    """Permission categories for grouping related permissions."""
    SALES = "SALES"
    PRICING = "PRICING"


ROLE_OWNER = "owner"
ROLE_CO_OWNER = "co owner"
ROLE_MANAGER = "manager"
ROLE_CASHIER = "cashier"
ROLE_MEMBER = "member"

STAFF_ROLES = frozenset({ROLE_OWNER, ROLE_CO_OWNER, ROLE_MANAGER, ROLE_CASHIER})
PRIVILEGED_ROLES = frozenset({ROLE_OWNER, ROLE_CO_OWNER, ROLE_MANAGER})


PERMISSION_DEFINITIONS = [
    (
        "CHECKOUT_SALE",
        "Checkout Sale",
        "Submit carts for checkout at the POS",
        PermissionCategory.SALES,
    ),
    (
        "VIEW_TRANSACTIONS",
        "View Transactions",
        "List and inspect recorded sales",
        PermissionCategory.SALES,
    ),
    (
        "VOID_SALE",
        "Void Sale",
        "Void recorded sales and restore their stock",
        PermissionCategory.SALES,
    ),
    (
        "OVERRIDE_PRICE",
        "Override Price",
        "Charge less than the catalog price on a line (includes manual giveaways)",
        PermissionCategory.PRICING,
    ),
    (
        "SELL_CUSTOM_ITEM",
        "Sell Custom Item",
        "Sell ad-hoc items that have no catalog entry",
        PermissionCategory.PRICING,
    ),
]


_STAFF_PERMISSIONS = ["CHECKOUT_SALE", "VIEW_TRANSACTIONS", "VOID_SALE"]
_PRIVILEGED_PERMISSIONS = _STAFF_PERMISSIONS + ["OVERRIDE_PRICE", "SELL_CUSTOM_ITEM"]

DEFAULT_ROLE_PERMISSIONS = {
    **{role: _PRIVILEGED_PERMISSIONS for role in PRIVILEGED_ROLES},
    # Cashier: POS access without pricing authority
    ROLE_CASHIER: _STAFF_PERMISSIONS,
    ROLE_MEMBER: [],
}


def get_all_permission_codes():
    """Get list of all permission codes."""
    return [perm[0] for perm in PERMISSION_DEFINITIONS]


def validate_permission_code(code):
    """Check if a permission code is valid."""
    return code in get_all_permission_codes()


def get_role_permissions(role: str | None) -> set[str]:
    """Permission codes granted to a role; unknown roles get nothing."""
    if not role:
        return set()
    return set(DEFAULT_ROLE_PERMISSIONS.get(role, []))


def has_permission(role: str | None, permission_code: str) -> bool:
    return permission_code in get_role_permissions(role)


@dataclass(frozen=True)
class PricingPolicy:
    """
    Capability checks used by the checkout authority and void processor.

    The default instance reads DEFAULT_ROLE_PERMISSIONS, where only
    PRIVILEGED_ROLES may override prices or sell custom items. Tests and
    deployments can pass their own mapping.
    """
    role_permissions: dict = field(default_factory=lambda: DEFAULT_ROLE_PERMISSIONS)

    def _allows(self, role: str | None, code: str) -> bool:
        if not role:
            return False
        return code in self.role_permissions.get(role, [])

    def can_checkout(self, role: str | None) -> bool:
        return self._allows(role, "CHECKOUT_SALE")

    def can_override_price(self, role: str | None) -> bool:
        return self._allows(role, "OVERRIDE_PRICE")

    def can_sell_custom_item(self, role: str | None) -> bool:
        return self._allows(role, "SELL_CUSTOM_ITEM")

    def can_void(self, role: str | None) -> bool:
        return self._allows(role, "VOID_SALE")


DEFAULT_POLICY = PricingPolicy()
