"""pytest fixtures shared by the DealSpot test suite."""
from __future__ import annotations

import sys
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

import pytest

# Ensure the project root is available on sys.path so tests can import the app package.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from dealspot import create_app
from dealspot.auth import USER_SALT, build_token
from dealspot.extensions import db
from dealspot.models import Business, Category, Deal, User, Voucher, utc_now

TEST_CONFIG = {
    "TESTING": True,
    "SECRET_KEY": "test-secret",
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "STRIPE_SECRET_KEY": None,
    "MOCK_PAYMENT_SUCCESS_RATE": 1.0,
}

SCENARIO_CODE = "DS-1700000000000-AB12CD"


@pytest.fixture
def app(request, tmp_path):
    config = dict(TEST_CONFIG)
    if request.node.get_closest_marker("file_db"):
        # Threads need their own connections onto one shared database.
        config["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{tmp_path / 'dealspot.db'}"

    app = create_app(config)
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def seed(app):
    """A buyer, two businesses and one live deal offered by ``b1``."""
    with app.app_context():
        db.session.add_all([
            User(id="u1", email="buyer@example.com", first_name="Bea", last_name="Bakker"),
            Category(id="c1", name="Restaurants", name_nl="Restaurants", icon="utensils"),
            Business(id="b1", name="Restaurant De Gouden Eeuw", address="Prinsengracht 123", city="Amsterdam"),
            Business(id="b2", name="Zen Wellness Spa", address="Vondelpark 45", city="Amsterdam"),
        ])
        db.session.flush()
        db.session.add(Deal(
            id="d1",
            business_id="b1",
            category_id="c1",
            title="3-gangen diner met wijn",
            description="Drie gangen inclusief een glas wijn per persoon",
            original_price=Decimal("65.00"),
            discounted_price=Decimal("39.00"),
            discount_percentage=40,
            is_featured=True,
            available_count=10,
            expires_at=utc_now() + timedelta(days=30),
        ))
        db.session.commit()

    return {
        "user_id": "u1",
        "business_id": "b1",
        "other_business_id": "b2",
        "category_id": "c1",
        "deal_id": "d1",
    }


@pytest.fixture
def make_voucher(app, seed):
    """Insert a voucher directly, bypassing issuance, and return its id."""

    def _make(code=SCENARIO_CODE, *, status="active", expires_in=timedelta(days=1),
              user_id="u1", deal_id="d1"):
        with app.app_context():
            voucher = Voucher(
                user_id=user_id,
                deal_id=deal_id,
                code=code,
                status=status,
                expires_at=utc_now() + expires_in,
                used_at=utc_now() if status == "used" else None,
            )
            db.session.add(voucher)
            db.session.commit()
            return voucher.id

    return _make


@pytest.fixture
def auth_headers(app):
    """Build an ``Authorization`` header carrying a signed token."""

    def _headers(payload=None, salt=USER_SALT):
        with app.app_context():
            token = build_token(payload or {"user_id": "u1"}, salt=salt)
        return {"Authorization": f"Bearer {token}"}

    return _headers
