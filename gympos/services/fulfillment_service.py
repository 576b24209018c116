"""
Fulfillment Sequencer - applies the side effects of an authorized sale.

ORDER (fixed):
1. Classify the sale (already done by the authority; carried on the decision).
2. Decrement stock for every stock-tracked inventory line, giveaways included.
3. Extend the customer's membership once per purchased plan unit, unless the
   customer was registered together with this sale.
4. Write the Transaction record with its lines.

ATOMICITY: Steps 2-4 run inside one database transaction and commit once.
A failure at any step rolls back everything applied so far, so the outcome
is either "all effects plus record" or "nothing". Stock/membership still go
first so that the record write is the last thing that can fail.

RE-VALIDATION: The decrement is a conditional UPDATE against the live row.
If another checkout took the last units after authorization, the decrement
touches zero rows and the sale is rejected with INSUFFICIENT_STOCK.
"""

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..constants import KIND_MEMBERSHIP
from ..extensions import db
from ..models import Transaction
from . import catalog_service, member_service, transaction_service
from .checkout_service import (
    INSUFFICIENT_STOCK,
    UNKNOWN_ITEM,
    CheckoutDecision,
    CheckoutRejected,
    authorize_checkout,
)
from .concurrency import run_with_retry
from .member_service import MemberError


class FulfillmentError(Exception):
    """Raised when an authorized sale could not be applied. Nothing was recorded."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def _decrement_stock(decision: CheckoutDecision) -> None:
    # Ascending item id keeps lock order stable across concurrent checkouts
    stock_lines = sorted(
        (line for line in decision.lines if line.tracks_stock),
        key=lambda line: line.catalog_id,
    )
    for line in stock_lines:
        if catalog_service.decrement_stock(line.catalog_id, line.quantity):
            continue

        item = catalog_service.get_item(line.catalog_id)
        if item is None:
            raise CheckoutRejected(
                UNKNOWN_ITEM,
                f"Item {line.source_id} was removed from the catalog",
                {"source_id": line.source_id},
            )
        raise CheckoutRejected(
            INSUFFICIENT_STOCK,
            f"Insufficient stock for {line.name}. Required: {line.quantity}, Available: {item.stock}",
            {"items": [{
                "item_id": line.catalog_id,
                "name": line.name,
                "requested_quantity": line.quantity,
                "stock": item.stock,
            }]},
        )


def _apply_memberships(decision: CheckoutDecision, today: date | None) -> int:
    """Returns the number of plan units applied."""
    if decision.customer_id is None or decision.is_initial_registration:
        return 0

    applied = 0
    for line in decision.lines:
        if line.kind != KIND_MEMBERSHIP:
            continue
        plan = decision.plan(line.source_id)
        for _ in range(line.quantity):
            member_service.extend_membership(decision.customer_id, plan, today=today)
            applied += 1
    return applied


def fulfill_checkout(decision: CheckoutDecision, *, today: date | None = None) -> Transaction:
    """
    Apply an authorized sale and return the committed Transaction.

    Raises CheckoutRejected when stock vanished between authorization and
    mutation, FulfillmentError for anything else. Either way the database
    is left as it was before the call.
    """
    if not isinstance(decision, CheckoutDecision):
        raise TypeError("fulfill_checkout requires a CheckoutDecision")

    def _op():
        _decrement_stock(decision)
        _apply_memberships(decision, today)
        tx = transaction_service.record_transaction(decision, transaction_date=today)
        db.session.commit()
        return tx

    try:
        tx = run_with_retry(_op)
    except CheckoutRejected as exc:
        current_app.logger.warning("Checkout rejected at fulfillment: %s (%s)", exc, exc.reason)
        raise
    except (MemberError, SQLAlchemyError) as exc:
        current_app.logger.exception("Checkout fulfillment failed; all effects rolled back")
        raise FulfillmentError("Checkout failed; nothing was charged") from exc

    current_app.logger.info(
        "Recorded %s transaction %s for %s: total_cents=%s payment=%s by profile %s",
        tx.sale_type, tx.id, tx.member_ref, tx.total_cents, tx.payment_method, decision.actor_id,
    )
    return tx


def checkout(cart, actor, *, policy=None, today: date | None = None) -> Transaction:
    """Authorize then fulfill. The usual entry point for the POS route."""
    decision = authorize_checkout(cart, actor, policy=policy)
    return fulfill_checkout(decision, today=today)
