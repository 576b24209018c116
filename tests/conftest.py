"""
Pytest fixtures for GymPOS tests.

Provides test database setup, catalog/profile fixtures, staff tokens and
test client.
"""

from datetime import date

import pytest
from gympos import create_app
from gympos.config import Config
from gympos.extensions import db
from gympos.models import InventoryItem, MembershipPlan, Profile
from gympos.services import staff_service
from gympos.services.cart_service import Cart


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    TAX_RATE_BPS = 800
    PRICE_TOLERANCE_CENTS = 1


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


# =============================================================================
# CATALOG
# =============================================================================


def make_item(session, name="Protein Bar", price_cents=1000, stock=10, category="Supplements"):
    item = InventoryItem(name=name, category=category, price_cents=price_cents, stock=stock)
    session.add(item)
    session.commit()
    return item


@pytest.fixture(scope='function')
def item(db_session):
    """$10.00 item, stock 10."""
    return make_item(db_session)


@pytest.fixture(scope='function')
def shirt(db_session):
    """$20.00 item, stock 5."""
    return make_item(db_session, name="Gym T-Shirt", price_cents=2000, stock=5, category="Apparel")


@pytest.fixture(scope='function')
def giveaway_item(db_session):
    """$5.00 item handed out with the monthly plan, stock 10."""
    return make_item(db_session, name="Shaker Bottle", price_cents=500, stock=10, category="Equipment")


@pytest.fixture(scope='function')
def plan(db_session, giveaway_item):
    """$50.00 / 30 day plan with a giveaway."""
    plan = MembershipPlan(
        name="Monthly",
        duration_days=30,
        price_cents=5000,
        giveaway_item_id=giveaway_item.id,
    )
    db_session.add(plan)
    db_session.commit()
    return plan


@pytest.fixture(scope='function')
def plain_plan(db_session):
    """$120.00 / 90 day plan without a giveaway."""
    plan = MembershipPlan(name="Quarterly", duration_days=90, price_cents=12000)
    db_session.add(plan)
    db_session.commit()
    return plan


# =============================================================================
# PROFILES
# =============================================================================


def make_profile(session, role, code, first_name="Test", last_name=None, **kwargs):
    profile = Profile(
        member_code=code,
        first_name=first_name,
        last_name=last_name or role.title(),
        role=role,
        **kwargs,
    )
    session.add(profile)
    session.commit()
    return profile


@pytest.fixture(scope='function')
def owner(db_session):
    return make_profile(db_session, "owner", "S001")


@pytest.fixture(scope='function')
def manager(db_session):
    return make_profile(db_session, "manager", "S002")


@pytest.fixture(scope='function')
def cashier(db_session):
    return make_profile(db_session, "cashier", "S003")


@pytest.fixture(scope='function')
def member(db_session):
    """Active member whose membership runs until 2026-06-30."""
    return make_profile(
        db_session,
        "member",
        "M001",
        first_name="Maria",
        last_name="Santos",
        status="Active",
        plan_name="Monthly",
        start_date=date(2026, 6, 1),
        expiration_date=date(2026, 6, 30),
    )


# =============================================================================
# AUTH HEADERS
# =============================================================================


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope='function')
def manager_headers(manager):
    return _bearer(staff_service.issue_token(manager))


@pytest.fixture(scope='function')
def cashier_headers(cashier):
    return _bearer(staff_service.issue_token(cashier))


@pytest.fixture(scope='function')
def member_headers(db_session, member):
    """A token stored on a non-staff profile; must never authenticate."""
    token = staff_service.generate_token()
    member.api_token_hash = staff_service.hash_token(token)
    db_session.commit()
    return _bearer(token)


# =============================================================================
# CARTS
# =============================================================================


@pytest.fixture(scope='function')
def cart():
    return Cart()
