"""
Unit Tests for the Draw Engine and Drawing Recorder

Tests cover:
1. Tax withholding boundaries
2. Selection with replacement and empty-pool errors
3. Seeded replay for audit
4. All-or-nothing drawing commit
5. Winner read-back and payout status
"""

from collections import Counter
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from prizepool import config
from prizepool.draw import DrawEngine, snapshot_client_seed, verify_draw, withholding_tax
from prizepool.drawings import DrawingRecorder
from prizepool.errors import (
    InvalidStateTransitionError,
    NotFoundError,
    SelectionError,
    TransactionError,
    ValidationError,
)
from prizepool.models import Entry, EntrySource, PrizeTier, WinnerStatus
from prizepool.storage import lottery_drawings, lottery_winners


def _entries(*user_ids):
    return [Entry(user_id=u, source=EntrySource.CONSUMER) for u in user_ids]


def _count_rows(engine, table):
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(table)).scalar_one()


class TestWithholding:
    @pytest.mark.parametrize("prize,expected", [
        (Decimal("100"), Decimal("0.00")),
        (Decimal("20000"), Decimal("0.00")),
        (Decimal("20000.01"), Decimal("2000.00")),
        (Decimal("20001"), Decimal("2000.10")),
        (Decimal("50000"), Decimal("5000.00")),
    ])
    def test_flat_rate_above_threshold(self, prize, expected):
        assert withholding_tax(prize) == expected


class TestDrawEngine:
    """Tests for winner selection."""

    def test_single_entry_pool_wins_every_slot(self):
        """{prize: 50000, count: 2} on a one-entry pool: same winner twice, tax 5000, net 45000."""
        outcome = DrawEngine().draw([PrizeTier(prize=Decimal("50000"), count=2)], _entries("solo"))

        assert len(outcome.selections) == 2
        for selection in outcome.selections:
            assert selection.user_id == "solo"
            assert selection.prize_amount == Decimal("50000.00")
            assert selection.tax_withheld == Decimal("5000.00")
            assert selection.net_amount == Decimal("45000.00")

    def test_empty_pool_raises(self):
        with pytest.raises(SelectionError):
            DrawEngine().draw([PrizeTier(prize=Decimal("100"), count=1)], [])

    def test_no_tiers_rejected(self):
        with pytest.raises(ValidationError):
            DrawEngine().draw([], _entries("a"))

    def test_one_selection_per_slot_in_tier_order(self):
        tiers = [PrizeTier(prize=Decimal("30000"), count=1), PrizeTier(prize=Decimal("1000"), count=3)]
        outcome = DrawEngine().draw(tiers, _entries("a", "b", "c"))

        assert [s.slot for s in outcome.selections] == [0, 1, 2, 3]
        assert [s.prize_amount for s in outcome.selections] == [
            Decimal("30000.00"), Decimal("1000.00"), Decimal("1000.00"), Decimal("1000.00"),
        ]
        assert outcome.selections[0].tax_withheld == Decimal("3000.00")
        assert outcome.selections[1].tax_withheld == Decimal("0.00")

    def test_same_seed_same_winners(self):
        tiers = [PrizeTier(prize=Decimal("500"), count=10)]
        pool = _entries("a", "b", "c", "d", "e")

        first = DrawEngine().draw(tiers, pool, server_seed="ab" * 32)
        second = DrawEngine().draw(tiers, pool, server_seed="ab" * 32)

        assert [s.user_id for s in first.selections] == [s.user_id for s in second.selections]
        assert first.proof_hash == second.proof_hash

    def test_fresh_seed_each_draw(self):
        tiers = [PrizeTier(prize=Decimal("500"), count=1)]
        pool = _entries("a", "b")
        assert DrawEngine().draw(tiers, pool).server_seed != DrawEngine().draw(tiers, pool).server_seed

    def test_selection_weighted_by_entries(self):
        """An actor holding 3 of 4 entries wins roughly 3/4 of slots."""
        pool = _entries("heavy", "heavy", "heavy", "light")
        outcome = DrawEngine().draw([PrizeTier(prize=Decimal("1"), count=4000)], pool, server_seed="cd" * 32)

        wins = Counter(s.user_id for s in outcome.selections)
        assert 2700 < wins["heavy"] < 3300
        assert wins["heavy"] + wins["light"] == 4000

    def test_client_seed_binds_snapshot(self):
        assert snapshot_client_seed(_entries("a", "b")) != snapshot_client_seed(_entries("b", "a"))
        assert snapshot_client_seed(_entries("a", "b")).startswith("2:")


class TestExecuteDraw:
    """Tests for drawing execution and persistence."""

    def test_draw_persists_drawing_and_winners(self, service, make_user):
        make_user("u1", points=10, contact_handle="line-u1")

        result = service.execute_draw({"prize_tiers": [{"prize": 50000, "count": 2}]})

        assert result.winners_count == 2
        assert all(w.user_id == "u1" for w in result.winners)
        assert all(w.status == WinnerStatus.PENDING for w in result.winners)
        assert all(w.net_amount == Decimal("45000.00") for w in result.winners)

        drawing = service.get_drawing(result.drawing_id)
        assert drawing.entry_count == 1
        assert drawing.prize_tiers == [PrizeTier(prize=Decimal("50000"), count=2)]
        assert [w.winner_id for w in drawing.winners] == [w.winner_id for w in result.winners]

    def test_empty_pool_creates_no_drawing(self, service, engine):
        with pytest.raises(SelectionError):
            service.execute_draw({"prize_tiers": [{"prize": 1000, "count": 1}]})

        assert _count_rows(engine, lottery_drawings) == 0
        assert _count_rows(engine, lottery_winners) == 0

    def test_failed_winner_insert_leaves_nothing(self, service, engine, make_user, monkeypatch):
        """A failure on any winner insert rolls back the header and earlier winners."""
        make_user("u1", points=30)
        original = DrawingRecorder._insert_winner
        calls = []

        def flaky_insert(self, conn, drawing_id, selection):
            calls.append(selection.slot)
            if len(calls) == 3:
                raise OperationalError("INSERT INTO lottery_winners", {}, Exception("disk I/O error"))
            return original(self, conn, drawing_id, selection)

        monkeypatch.setattr(DrawingRecorder, "_insert_winner", flaky_insert)

        with pytest.raises(TransactionError):
            service.execute_draw({"prize_tiers": [{"prize": 100, "count": 5}]})

        assert calls == [0, 1, 2]
        assert _count_rows(engine, lottery_drawings) == 0
        assert _count_rows(engine, lottery_winners) == 0

    def test_invalid_tiers_rejected(self, service, make_user):
        make_user("u1", points=10)
        for payload in ({"prize_tiers": []}, {"prize_tiers": [{"prize": 0, "count": 1}]},
                        {"prize_tiers": [{"prize": 100, "count": 0}]}):
            with pytest.raises(ValidationError):
                service.execute_draw(payload)

    def test_tier_count_is_capped(self, service, make_user):
        """A single tier cannot ask for more winners than the configured cap."""
        make_user("u1", points=10)

        with pytest.raises(ValidationError):
            service.execute_draw({"prize_tiers": [{"prize": 1, "count": 1_000_000_000}]})
        with pytest.raises(ValidationError):
            service.execute_draw({"prize_tiers": [{"prize": 1, "count": config.MAX_WINNERS_PER_TIER + 1}]})

        assert _count_rows(service.engine, lottery_drawings) == 0
        result = service.execute_draw({"prize_tiers": [{"prize": 1, "count": config.MAX_WINNERS_PER_TIER}]})
        assert result.winners_count == config.MAX_WINNERS_PER_TIER

    def test_draw_uses_fresh_entries(self, service, make_user):
        make_user("early", points=10)
        service.check_threshold({"revenue_threshold": "1"})
        service.award_loyalty_points("early", 10)
        make_user("late", points=10)

        result = service.execute_draw({"prize_tiers": [{"prize": 100, "count": 1}]})

        assert service.get_drawing(result.drawing_id).entry_count == 3


class TestAudit:
    """Replaying persisted drawings."""

    def test_verify_against_same_snapshot(self, service, make_user):
        make_user("u1", points=20)
        make_user("u2", points=40)
        result = service.execute_draw({"prize_tiers": [{"prize": 25000, "count": 3}]})

        assert service.verify_drawing(result.drawing_id) is True

    def test_verify_fails_after_pool_changes(self, service, make_user):
        make_user("u1", points=20)
        result = service.execute_draw({"prize_tiers": [{"prize": 100, "count": 2}]})
        snapshot = service.generate_entries()
        service.award_loyalty_points("u1", 10)

        assert service.verify_drawing(result.drawing_id) is False
        assert service.verify_drawing(result.drawing_id, entries=snapshot) is True

    def test_verify_detects_tampered_winner(self, service, make_user):
        make_user("u1", points=10)
        make_user("u2", points=10)
        result = service.execute_draw({"prize_tiers": [{"prize": 100, "count": 4}]})
        drawing = service.get_drawing(result.drawing_id)
        entries = service.generate_entries()

        tampered = drawing.model_copy(update={"winners": [
            w.model_copy(update={"user_id": "intruder"}) for w in drawing.winners
        ]})

        assert verify_draw(drawing, entries) is True
        assert verify_draw(tampered, entries) is False


class TestWinners:
    """Winner read-back and payout transitions."""

    def test_get_winners_joins_contact_info(self, service, make_user):
        make_user("u1", points=10, contact_handle="line-u1")
        service.execute_draw({"prize_tiers": [{"prize": 100, "count": 1}]})
        service.execute_draw({"prize_tiers": [{"prize": 200, "count": 2}]})

        winners = service.get_winners()

        assert len(winners) == 3
        assert {w.contact_handle for w in winners} == {"line-u1"}
        assert {w.email for w in winners} == {"u1@example.com"}
        assert sorted(w.prize_amount for w in winners) == [Decimal("100.00"), Decimal("200.00"), Decimal("200.00")]

    def test_pending_to_paid(self, service, make_user):
        make_user("u1", points=10)
        result = service.execute_draw({"prize_tiers": [{"prize": 100, "count": 1}]})
        winner_id = result.winners[0].winner_id

        paid = service.mark_winner_paid(winner_id)

        assert paid.status == WinnerStatus.PAID
        assert paid.paid_at is not None
        assert [w.status for w in service.get_winners(WinnerStatus.PAID)] == [WinnerStatus.PAID]
        assert service.get_winners(WinnerStatus.PENDING) == []

    def test_cannot_pay_twice(self, service, make_user):
        make_user("u1", points=10)
        result = service.execute_draw({"prize_tiers": [{"prize": 100, "count": 1}]})
        winner_id = result.winners[0].winner_id
        service.mark_winner_paid(winner_id)

        with pytest.raises(InvalidStateTransitionError):
            service.mark_winner_paid(winner_id)

    def test_unknown_winner_and_drawing(self, service):
        with pytest.raises(NotFoundError):
            service.mark_winner_paid("missing")
        with pytest.raises(NotFoundError):
            service.get_drawing("missing")
