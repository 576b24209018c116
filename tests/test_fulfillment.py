"""
Fulfillment sequencer tests.

Verifies:
- Stock, membership and record effects of an accepted sale
- Fixed step order: stock, then membership, then record
- A failure at any step leaves the database untouched
- Two checkouts racing for the last unit: exactly one wins
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date

import pytest
from sqlalchemy.exc import SQLAlchemyError

from gympos import create_app
from gympos.config import Config
from gympos.extensions import db
from gympos.models import InventoryItem, Profile, Transaction
from gympos.services import catalog_service, member_service, transaction_service
from gympos.services.cart_service import Cart
from gympos.services.checkout_service import (
    INSUFFICIENT_STOCK,
    UNKNOWN_ITEM,
    CheckoutRejected,
    authorize_checkout,
)
from gympos.services.fulfillment_service import FulfillmentError, checkout, fulfill_checkout
from gympos.services.member_service import MemberError, next_membership_window


TODAY = date(2026, 6, 15)


def stock_of(session, item):
    session.expire_all()
    return session.get(InventoryItem, item.id).stock


class TestMembershipWindow:

    def test_active_membership_extends_from_expiration(self):
        start, end = next_membership_window(date(2026, 6, 30), 30, TODAY)
        assert start == date(2026, 7, 1)
        assert end == date(2026, 7, 31)

    def test_expired_membership_starts_today(self):
        start, end = next_membership_window(date(2026, 6, 1), 30, TODAY)
        assert start == TODAY
        assert end == date(2026, 7, 15)

    def test_new_member_starts_today(self):
        assert next_membership_window(None, 90, TODAY) == (TODAY, date(2026, 9, 13))


class TestGoodsSale:

    def test_records_and_decrements(self, db_session, cart, item, cashier):
        cart.add_catalog_item(item)
        cart.adjust_quantity(item.id, "INVENTORY", 1)
        cart.set_discount_percent(10)

        tx = checkout(cart, cashier, today=TODAY)

        assert tx.id is not None
        assert tx.sale_type == "GOODS_SALE"
        assert tx.total_cents == 1944
        assert tx.tax_cents == 144
        assert tx.member_ref == "GUEST"
        assert tx.transaction_date == TODAY
        assert tx.created_by_profile_id == cashier.id
        assert tx.item_description == "Protein Bar x2"
        assert stock_of(db_session, item) == 8

    def test_custom_line_does_not_touch_stock(self, db_session, cart, item, manager):
        cart.add_catalog_item(item)
        cart.add_custom_line("Locker rental", 300)

        tx = checkout(cart, manager, today=TODAY)

        assert [line.is_custom for line in tx.lines] == [False, True]
        assert stock_of(db_session, item) == 9

    def test_rejects_non_decision(self, db_session, cart):
        with pytest.raises(TypeError):
            fulfill_checkout(cart)


class TestMembershipSale:

    def test_extends_member_and_takes_giveaway(self, db_session, cart, plan, giveaway_item, member, cashier):
        cart.add_membership_line(plan, giveaway_item)
        cart.select_customer(member.member_code)

        tx = checkout(cart, cashier, today=TODAY)

        assert tx.sale_type == "MEMBERSHIP_SALE"
        assert tx.total_cents == 5000
        assert tx.member_id == member.id
        assert tx.item_description == "Monthly (30 days) x1, Shaker Bottle (Free Giveaway) x1"

        giveaway_line = tx.lines[1]
        assert giveaway_line.is_giveaway
        assert giveaway_line.unit_price_paid_cents == 0
        assert giveaway_line.unit_price_original_cents == 500

        assert stock_of(db_session, giveaway_item) == 9
        profile = db_session.get(Profile, member.id)
        assert profile.start_date == date(2026, 7, 1)
        assert profile.expiration_date == date(2026, 7, 31)
        assert profile.status == "Active"
        assert profile.plan_name == "Monthly"

    def test_each_unit_extends_once(self, db_session, cart, plain_plan, member, cashier):
        cart.add_membership_line(plain_plan)
        cart.add_membership_line(plain_plan)
        cart.select_customer(member.member_code)

        checkout(cart, cashier, today=TODAY)

        db_session.expire_all()
        profile = db_session.get(Profile, member.id)
        # 2026-07-01 + 90 = 2026-09-29, then +1 day +90
        assert profile.start_date == date(2026, 9, 30)
        assert profile.expiration_date == date(2026, 12, 29)

    def test_initial_registration_is_not_extended(self, db_session, cart, plain_plan, member, cashier):
        cart.add_membership_line(plain_plan)
        cart.select_customer(member.member_code, just_registered=True)

        tx = checkout(cart, cashier, today=TODAY)

        assert tx.sale_type == "MEMBERSHIP_SALE"
        db_session.expire_all()
        assert db_session.get(Profile, member.id).expiration_date == date(2026, 6, 30)

    def test_guest_membership_sale_records_without_extension(self, db_session, cart, plain_plan, cashier):
        cart.add_membership_line(plain_plan)

        tx = checkout(cart, cashier, today=TODAY)
        assert tx.member_ref == "GUEST"
        assert tx.member_id is None

    def test_mixed_sale(self, db_session, cart, item, plan, giveaway_item, member, cashier):
        cart.add_catalog_item(item)
        cart.add_membership_line(plan, giveaway_item)
        cart.select_customer(member.member_code)

        tx = checkout(cart, cashier, today=TODAY)

        assert tx.sale_type == "MIXED_SALE"
        assert tx.subtotal_cents == 6000
        assert tx.tax_cents == 80
        assert tx.total_cents == 6080
        assert stock_of(db_session, item) == 9
        assert stock_of(db_session, giveaway_item) == 9


class TestOrderAndAtomicity:

    def test_step_order(self, db_session, cart, item, plain_plan, member, cashier, monkeypatch):
        calls = []
        real_decrement = catalog_service.decrement_stock
        real_extend = member_service.extend_membership
        real_record = transaction_service.record_transaction

        def decrement(*args, **kwargs):
            calls.append("stock")
            return real_decrement(*args, **kwargs)

        def extend(*args, **kwargs):
            calls.append("membership")
            return real_extend(*args, **kwargs)

        def record(*args, **kwargs):
            calls.append("record")
            return real_record(*args, **kwargs)

        monkeypatch.setattr(catalog_service, "decrement_stock", decrement)
        monkeypatch.setattr(member_service, "extend_membership", extend)
        monkeypatch.setattr(transaction_service, "record_transaction", record)

        cart.add_membership_line(plain_plan)
        cart.add_catalog_item(item)
        cart.select_customer(member.member_code)
        checkout(cart, cashier, today=TODAY)

        assert calls == ["stock", "membership", "record"]

    def test_record_failure_rolls_back_everything(self, db_session, cart, item, plain_plan, member, cashier,
                                                  monkeypatch):
        def broken_record(*args, **kwargs):
            raise SQLAlchemyError("disk I/O error")

        monkeypatch.setattr(transaction_service, "record_transaction", broken_record)

        cart.add_catalog_item(item)
        cart.add_membership_line(plain_plan)
        cart.select_customer(member.member_code)

        with pytest.raises(FulfillmentError):
            checkout(cart, cashier, today=TODAY)

        assert stock_of(db_session, item) == 10
        assert db_session.get(Profile, member.id).expiration_date == date(2026, 6, 30)
        assert db_session.query(Transaction).count() == 0

    def test_membership_failure_rolls_back_stock(self, db_session, cart, item, plain_plan, member, cashier,
                                                 monkeypatch):
        def broken_extend(*args, **kwargs):
            raise MemberError("Member vanished")

        monkeypatch.setattr(member_service, "extend_membership", broken_extend)

        cart.add_catalog_item(item)
        cart.add_membership_line(plain_plan)
        cart.select_customer(member.member_code)

        with pytest.raises(FulfillmentError):
            checkout(cart, cashier, today=TODAY)

        assert stock_of(db_session, item) == 10
        assert db_session.query(Transaction).count() == 0

    def test_partial_stock_failure_restores_earlier_lines(self, db_session, cart, item, shirt, cashier):
        cart.add_catalog_item(item)
        cart.add_catalog_item(shirt)
        decision = authorize_checkout(cart, cashier)

        shirt_row = db_session.get(InventoryItem, shirt.id)
        shirt_row.stock = 0
        db_session.commit()

        with pytest.raises(CheckoutRejected) as exc:
            fulfill_checkout(decision, today=TODAY)
        assert exc.value.reason == INSUFFICIENT_STOCK

        assert stock_of(db_session, item) == 10
        assert db_session.query(Transaction).count() == 0


class TestConcurrentCheckout:

    def test_last_unit_goes_to_one_checkout(self, db_session, cashier, manager):
        last = InventoryItem(name="Resistance Band", category="Equipment", price_cents=1500, stock=1)
        db_session.add(last)
        db_session.commit()

        first_cart, second_cart = Cart(), Cart()
        first_cart.add_catalog_item(last)
        second_cart.add_catalog_item(last)

        # Both terminals pass authorization against the same snapshot
        first = authorize_checkout(first_cart, cashier)
        second = authorize_checkout(second_cart, manager)

        tx = fulfill_checkout(first, today=TODAY)
        with pytest.raises(CheckoutRejected) as exc:
            fulfill_checkout(second, today=TODAY)

        assert tx.id is not None
        assert exc.value.reason == INSUFFICIENT_STOCK
        assert stock_of(db_session, last) == 0
        assert db_session.query(Transaction).count() == 1

    def test_item_deleted_after_authorization(self, db_session, cart, cashier):
        doomed = InventoryItem(name="Discontinued Gloves", category="Apparel", price_cents=900, stock=4)
        db_session.add(doomed)
        db_session.commit()

        cart.add_catalog_item(doomed)
        decision = authorize_checkout(cart, cashier)

        db_session.delete(doomed)
        db_session.commit()

        with pytest.raises(CheckoutRejected) as exc:
            fulfill_checkout(decision, today=TODAY)
        assert exc.value.reason == UNKNOWN_ITEM


@pytest.fixture
def file_app(tmp_path):
    """App on a file-backed SQLite database so threads get real connections."""

    class FileConfig(Config):
        TESTING = True
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'race.sqlite3'}"
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 15}}

    app = create_app(FileConfig)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()


class TestThreadedCheckout:

    def test_racing_threads_sell_last_unit_once(self, file_app):
        with file_app.app_context():
            last = InventoryItem(name="Kettlebell 16kg", category="Equipment", price_cents=4500, stock=1)
            first_actor = Profile(member_code="S010", first_name="Ana", last_name="Cruz", role="cashier")
            second_actor = Profile(member_code="S011", first_name="Ben", last_name="Reyes", role="manager")
            db.session.add_all([last, first_actor, second_actor])
            db.session.commit()

            decisions = []
            for actor in (first_actor, second_actor):
                cart = Cart()
                cart.add_catalog_item(last)
                decisions.append(authorize_checkout(cart, actor))
            item_id = last.id

        barrier = threading.Barrier(len(decisions))

        def attempt(decision):
            with file_app.app_context():
                barrier.wait()
                try:
                    return fulfill_checkout(decision, today=TODAY).id
                except CheckoutRejected as exc:
                    return exc.reason

        with ThreadPoolExecutor(max_workers=len(decisions)) as pool:
            outcomes = list(pool.map(attempt, decisions))

        winners = [o for o in outcomes if isinstance(o, int)]
        assert len(winners) == 1
        assert outcomes.count(INSUFFICIENT_STOCK) == 1

        with file_app.app_context():
            assert db.session.get(InventoryItem, item_id).stock == 0
            assert db.session.query(Transaction).count() == 1
            assert db.session.query(Transaction).one().id == winners[0]
