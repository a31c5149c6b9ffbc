"""Pytest fixtures: a prize pool service bound to a throwaway SQLite database."""

from decimal import Decimal

import pytest

from prizepool.service import PrizePoolService
from prizepool.storage import make_engine, setup_database


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(
        f"sqlite:///{tmp_path / 'prize_pool_test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    setup_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def service(engine):
    return PrizePoolService(engine)


@pytest.fixture
def make_user(service):
    def _make_user(user_id, points=0, contact_handle=None):
        return service.register_user({
            "user_id": user_id,
            "name": f"User {user_id}",
            "email": f"{user_id}@example.com",
            "contact_handle": contact_handle,
            "loyalty_points": points,
        })
    return _make_user


@pytest.fixture
def make_affiliate(service, make_user):
    """Register a user and make them an affiliate; returns the Affiliate."""
    def _make_affiliate(user_id, points=0):
        make_user(user_id, points=points)
        return service.create_affiliate({"user_id": user_id}).affiliate
    return _make_affiliate


@pytest.fixture
def credit(service):
    """Record a products sale (8%) sized to credit exactly `commission` to the code."""
    def _credit(referral_code, commission):
        amount = Decimal(str(commission)) / Decimal("0.08")
        return service.record_sale({
            "buyer_id": "buyer-1",
            "amount": amount.quantize(Decimal("0.01")),
            "category": "products",
            "referral_code": referral_code,
        })
    return _credit
