# Overview: Flask API routes for POS checkout, transaction history and voids; parses input and returns JSON responses.

"""POS API routes with permission enforcement"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import transaction_service
from ..services.cart_service import Cart
from ..services.checkout_service import INSUFFICIENT_STOCK, CheckoutRejected
from ..services.fulfillment_service import FulfillmentError, checkout
from ..services.void_service import FORBIDDEN, NOT_FOUND, VoidError, void_transaction
from ..decorators import require_auth, require_permission
from ..time_utils import parse_iso_datetime
from ..validation import ValidationError


pos_bp = Blueprint("pos", __name__, url_prefix="/api/pos")

MAX_LIST_LIMIT = 500


def _parse_cart() -> Cart:
    return Cart.from_payload(
        request.get_json(silent=True),
        default_payment_method=current_app.config["DEFAULT_PAYMENT_METHOD"],
    )


def _rejection_response(exc: CheckoutRejected):
    status = 409 if exc.reason == INSUFFICIENT_STOCK else 400
    return jsonify(exc.to_dict()), status


@pos_bp.post("/quote")
@require_auth
@require_permission("CHECKOUT_SALE")
def quote_route():
    """
    Server-computed totals for a cart payload.

    Preview only: the payload shape is validated, the catalog is not.
    """
    try:
        cart = _parse_cart()
        totals = cart.totals(current_app.config["TAX_RATE_BPS"])
        return jsonify({"totals": totals.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to quote cart")
        return jsonify({"error": "Internal server error"}), 500


@pos_bp.post("/checkout")
@require_auth
@require_permission("CHECKOUT_SALE")
def checkout_route():
    """
    Authorize and record a sale.

    Requires: CHECKOUT_SALE permission
    Available to: owner, co owner, manager, cashier
    """
    try:
        cart = _parse_cart()
        tx = checkout(cart, g.current_user)
        return jsonify({"transaction": tx.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except CheckoutRejected as e:
        return _rejection_response(e)
    except FulfillmentError:
        # Already logged with traceback by the fulfillment service
        return jsonify({"error": "Checkout failed. Please try again."}), 500
    except Exception:
        current_app.logger.exception("Failed to check out cart")
        return jsonify({"error": "Internal server error"}), 500


@pos_bp.get("/transactions")
@require_auth
@require_permission("VIEW_TRANSACTIONS")
def list_transactions_route():
    """Most recent transactions first. Filters: limit, since, member_ref, sale_type."""
    limit = request.args.get("limit", 50, type=int)
    if limit is None or limit < 1:
        return jsonify({"error": "limit must be a positive integer"}), 400
    limit = min(limit, MAX_LIST_LIMIT)

    since = None
    if request.args.get("since"):
        try:
            since = parse_iso_datetime(request.args.get("since"))
        except ValueError:
            return jsonify({"error": "since must be an ISO-8601 datetime"}), 400

    transactions = transaction_service.list_transactions(
        limit=limit,
        since=since,
        member_ref=request.args.get("member_ref"),
        sale_type=request.args.get("sale_type"),
    )
    return jsonify({
        "transactions": [tx.to_dict(include_lines=False) for tx in transactions],
        "count": len(transactions),
    }), 200


@pos_bp.get("/transactions/<int:transaction_id>")
@require_auth
@require_permission("VIEW_TRANSACTIONS")
def get_transaction_route(transaction_id: int):
    tx = transaction_service.get_transaction(transaction_id)
    if not tx:
        return jsonify({"error": "Transaction not found"}), 404
    return jsonify({"transaction": tx.to_dict()}), 200


@pos_bp.post("/transactions/<int:transaction_id>/void")
@require_auth
@require_permission("VOID_SALE")
def void_transaction_route(transaction_id: int):
    """
    Void a recorded sale and restore its stock.

    Requires: VOID_SALE permission
    Available to: owner, co owner, manager, cashier
    """
    try:
        result = void_transaction(transaction_id, g.current_user)
        return jsonify(result.to_dict()), 200

    except VoidError as e:
        if e.code == NOT_FOUND:
            return jsonify(e.to_dict()), 404
        if e.code == FORBIDDEN:
            return jsonify(e.to_dict()), 403
        return jsonify({"error": "Void failed. Nothing was changed.", "reason": e.code}), 500
    except Exception:
        current_app.logger.exception("Failed to void transaction")
        return jsonify({"error": "Internal server error"}), 500
