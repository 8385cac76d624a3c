"""Tests for Hall of Fame position allocation (app/services/positions.py)"""
import itertools

from app.models.leaderboard_band import LeaderboardBand
from app.models.order import Order, OrderStatus, PaymentProviderName
from app.services.positions import allocate_next_position, is_tier_available, remaining_slots

_seed_ids = itertools.count(1)


def _order_at(db, position, amount=15000):
    order = Order(
        provider=PaymentProviderName.STRIPE,
        provider_payment_id=f"pi_seed_{next(_seed_ids)}",
        amount=amount,
        status=OrderStatus.COMPLETED,
        hall_of_fame_position=position,
    )
    db.add(order)
    db.commit()
    return order


class TestAllocateNextPosition:
    def test_first_standard_position_is_2(self, db_session):
        assert allocate_next_position(db_session, 15000) == 2

    def test_returns_lowest_free_position(self, db_session):
        _order_at(db_session, 2)
        _order_at(db_session, 3)
        _order_at(db_session, 5)
        assert allocate_next_position(db_session, 15000) == 4

    def test_full_band_returns_none(self, db_session):
        for position in range(2, 12):
            _order_at(db_session, position)
        assert allocate_next_position(db_session, 15000) is None

    def test_premium_taken_returns_none(self, db_session):
        _order_at(db_session, 1, amount=30000)
        assert allocate_next_position(db_session, 30000) is None

    def test_other_bands_do_not_interfere(self, db_session):
        _order_at(db_session, 1, amount=30000)
        _order_at(db_session, 2)
        assert allocate_next_position(db_session, 7500) == 12

    def test_no_band_returns_none(self, db_session):
        assert allocate_next_position(db_session, 5000) is None
        assert allocate_next_position(db_session, 999) is None

    def test_creates_band_lock_row_on_first_use(self, db_session):
        allocate_next_position(db_session, 7500)
        row = db_session.query(LeaderboardBand).filter(LeaderboardBand.name == "hall_of_fame").one()
        assert (row.first_position, row.last_position) == (12, 100)


class TestAvailability:
    def test_remaining_slots(self, db_session):
        assert remaining_slots(db_session, 15000) == 10
        _order_at(db_session, 2)
        assert remaining_slots(db_session, 15000) == 9

    def test_sold_out_tier_is_unavailable(self, db_session):
        _order_at(db_session, 1, amount=30000)
        assert is_tier_available(db_session, 30000) is False
        assert is_tier_available(db_session, 15000) is True

    def test_unbanded_tier_is_always_available(self, db_session):
        assert remaining_slots(db_session, 5000) is None
        assert is_tier_available(db_session, 5000) is True
