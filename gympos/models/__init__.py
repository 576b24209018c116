from .catalog import InventoryItem, MembershipPlan
from .members import Profile
from .sales import Transaction, TransactionLine

__all__ = [
    'InventoryItem', 'MembershipPlan',
    'Profile',
    'Transaction', 'TransactionLine',
]
