"""
Void/Reversal Processor

WHY: Staff void sales entered by mistake. Stock taken by the sale goes back
on the shelf; the financial record is deleted.

DESIGN:
- Every stock-tracked inventory line is restored, giveaways included (their
  stock was taken at sale time). Custom lines never touched stock.
- Membership extensions are NOT reversed. The previous expiration date is
  not recoverable from the stored lines, so MEMBERSHIP_SALE and MIXED_SALE
  voids report requires_manual_membership_reversal for staff follow-up.
- All increments and the delete share one database transaction: if any
  line cannot be restored, nothing changes and the record stays valid.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..constants import KIND_INVENTORY, SALE_TYPE_MEMBERSHIP, SALE_TYPE_MIXED
from ..extensions import db
from ..models import Transaction
from ..permissions import DEFAULT_POLICY, PricingPolicy
from . import catalog_service, transaction_service
from .catalog_service import parse_catalog_id
from .concurrency import lock_for_update, run_with_retry


NOT_FOUND = "NOT_FOUND"
FORBIDDEN = "FORBIDDEN"
STOCK_REVERSAL_FAILED = "STOCK_REVERSAL_FAILED"
VOID_FAILED = "VOID_FAILED"


class VoidError(Exception):
    """Raised when a void is refused or fails. The transaction is untouched."""
    def __init__(self, code: str, message: str, details: dict | None = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "reason": self.code, "details": self.details}


@dataclass(frozen=True)
class VoidResult:
    transaction_id: int
    success: bool
    requires_manual_membership_reversal: bool
    restored: tuple = ()

    def to_dict(self) -> dict:
        return {
            "transaction_id": self.transaction_id,
            "success": self.success,
            "requires_manual_membership_reversal": self.requires_manual_membership_reversal,
            "restored": [{"item_id": item_id, "quantity": qty} for item_id, qty in self.restored],
        }


def _restore_stock(tx: Transaction) -> tuple:
    restored = []
    for line in tx.lines:
        if line.kind != KIND_INVENTORY or line.is_custom:
            continue
        item_id = parse_catalog_id(line.source_id)
        if item_id is None or not catalog_service.increment_stock(item_id, line.quantity):
            raise VoidError(
                STOCK_REVERSAL_FAILED,
                f"Failed to reverse stock for item {line.source_id}",
                {"transaction_id": tx.id, "source_id": line.source_id, "quantity": line.quantity},
            )
        restored.append((item_id, line.quantity))
    return tuple(restored)


def void_transaction(transaction_id: int, actor, *, policy: PricingPolicy | None = None) -> VoidResult:
    """
    Void a recorded sale on behalf of `actor`.

    Raises VoidError(NOT_FOUND) for unknown or already voided transactions.
    """
    policy = policy or DEFAULT_POLICY
    role = getattr(actor, "role", None)
    if not policy.can_void(role):
        raise VoidError(FORBIDDEN, "Only staff may void transactions", {"role": role})

    def _op():
        tx = lock_for_update(db.session.query(Transaction).filter_by(id=transaction_id)).first()
        if not tx:
            raise VoidError(NOT_FOUND, "Transaction not found", {"transaction_id": transaction_id})

        restored = _restore_stock(tx)
        requires_manual = tx.sale_type in (SALE_TYPE_MEMBERSHIP, SALE_TYPE_MIXED)

        transaction_service.delete_transaction(tx)
        db.session.commit()
        return VoidResult(
            transaction_id=transaction_id,
            success=True,
            requires_manual_membership_reversal=requires_manual,
            restored=restored,
        )

    try:
        result = run_with_retry(_op)
    except VoidError as exc:
        if exc.code != NOT_FOUND:
            current_app.logger.error("Void of transaction %s failed: %s", transaction_id, exc)
        raise
    except SQLAlchemyError as exc:
        current_app.logger.exception("Void of transaction %s failed; nothing was reversed", transaction_id)
        raise VoidError(VOID_FAILED, "Void failed; nothing was reversed") from exc

    current_app.logger.info(
        "Voided transaction %s by profile %s (manual membership reversal: %s)",
        transaction_id, getattr(actor, "id", None), result.requires_manual_membership_reversal,
    )
    return result
