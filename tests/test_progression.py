"""Tests for credmarket.progression — streaks, badges and the activity log."""

import threading
from datetime import date, datetime, timedelta, timezone

import pytest

from credmarket.events import EventBus, EventType
from credmarket.points import DataMetrics, compute_data_points
from credmarket.progression import ACTIVITY_LOG_SIZE, ProgressionEngine, next_streak


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def engine(clock):
    return ProgressionEngine(clock=clock)


@pytest.fixture
def basic():
    # 50 base + 25 for one site
    return DataMetrics(site_count=1)


class TestNextStreak:
    def test_first_issuance(self):
        assert next_streak(0, None, date(2025, 1, 1)) == 1

    def test_same_day(self):
        assert next_streak(3, date(2025, 1, 1), date(2025, 1, 1)) == 3

    def test_next_day(self):
        assert next_streak(3, date(2025, 1, 1), date(2025, 1, 2)) == 4

    def test_gap_resets(self):
        assert next_streak(3, date(2025, 1, 1), date(2025, 1, 4)) == 1


class TestIssuance:
    def test_first_issuance(self, engine, basic):
        outcome = engine.record_credential_issued("0xabc", basic)
        assert outcome.data_points == 75
        assert outcome.streak_bonus == 0
        assert outcome.points == 75
        assert outcome.daily_streak == 1

    def test_same_day_counts_points_twice_streak_once(self, engine, clock, basic):
        engine.record_credential_issued("0xabc", basic)
        clock.advance(hours=5)
        second = engine.record_credential_issued("0xabc", basic)
        assert second.daily_streak == 1
        # streak bonus from the pre-issuance streak of 1
        assert second.points == 75 + 75 + 5

    def test_next_day_extends_streak(self, engine, clock, basic):
        engine.record_credential_issued("0xabc", basic)
        clock.advance(days=1)
        outcome = engine.record_credential_issued("0xabc", basic)
        assert outcome.daily_streak == 2
        assert outcome.streak_bonus == 5

    def test_gap_resets_streak(self, engine, clock, basic):
        for _ in range(3):
            engine.record_credential_issued("0xabc", basic)
            clock.advance(days=1)
        clock.advance(days=2)
        outcome = engine.record_credential_issued("0xabc", basic)
        assert outcome.daily_streak == 1

    def test_streak_bonus_capped(self, engine, clock, basic):
        outcome = None
        for _ in range(25):
            outcome = engine.record_credential_issued("0xabc", basic)
            clock.advance(days=1)
        assert outcome.daily_streak == 25
        assert outcome.streak_bonus == 100

    def test_users_are_independent(self, engine, basic):
        engine.record_credential_issued("alice", basic)
        assert engine.points("bob") == 0
        assert engine.snapshot("bob").daily_streak == 0

    def test_outcome_wire_shape(self, engine, basic):
        d = engine.record_credential_issued("0xabc", basic).to_dict()
        assert set(d) == {"points", "dailyStreak", "newBadges", "dataPoints", "streakBonus"}


class TestBadges:
    def test_point_badges_awarded_once(self, engine):
        big = DataMetrics(site_count=25)  # 200 points
        first = engine.record_credential_issued("u", big)
        assert [b.id for b in first.new_badges] == ["starter-100", "explorer-20"]
        second = engine.record_credential_issued("u", big)
        assert second.new_badges == []
        assert sorted(engine.snapshot("u").badge_ids) == ["explorer-20", "starter-100"]

    def test_crossing_several_thresholds(self, engine, reference_metrics):
        outcome = engine.record_credential_issued("u", reference_metrics)
        ids = {b.id for b in outcome.new_badges}
        assert {"starter-100", "grinder-500", "explorer-20"} <= ids
        assert "master-1000" not in ids

    def test_interactive_badge(self, engine):
        outcome = engine.record_credential_issued("u", DataMetrics(total_interactions=1500))
        assert "interactive-1000" in {b.id for b in outcome.new_badges}

    def test_streak_badge(self, engine, clock, basic):
        awarded = []
        for _ in range(7):
            awarded += engine.record_credential_issued("u", basic).new_badges
            clock.advance(days=1)
        assert "streak-7" in {b.id for b in awarded}

    def test_sale_can_award_point_badge(self, engine):
        outcome = engine.record_sale("u", "bafy-1", 0.5)
        assert outcome.awarded == 100
        assert [b.id for b in outcome.new_badges] == ["starter-100"]

    def test_badge_events(self, clock):
        bus = EventBus()
        engine = ProgressionEngine(clock=clock, event_bus=bus)
        engine.record_credential_issued("u", DataMetrics(site_count=25))
        events = bus.history(EventType.BADGE_AWARDED.value)
        assert {e.data["id"] for e in events} == {"starter-100", "explorer-20"}
        assert all(e.data["user"] == "u" for e in events)


class TestMarketActivity:
    def test_listing(self, engine):
        outcome = engine.record_listing("u", "bafy-1", 1.0)
        assert outcome.awarded == 100
        state = engine.snapshot("u")
        assert state.points == 100
        assert state.listings[0].cid == "bafy-1"

    def test_sale(self, engine):
        engine.record_sale("u", "bafy-1", 1.25)
        state = engine.snapshot("u")
        assert state.points == 250
        assert state.sales[0].price == 1.25

    def test_negative_price(self, engine):
        with pytest.raises(ValueError):
            engine.record_listing("u", "bafy-1", -1)
        assert engine.points("u") == 0

    def test_activity_log_bounded(self, engine):
        for i in range(ACTIVITY_LOG_SIZE + 5):
            engine.record_listing("u", f"bafy-{i}", 0.05)
        state = engine.snapshot("u")
        assert len(state.activity) == ACTIVITY_LOG_SIZE
        assert state.activity[-1].action == "Listed dataset (0.05 MOCA)"
        assert len(state.listings) == ACTIVITY_LOG_SIZE + 5

    def test_snapshot_is_a_copy(self, engine):
        engine.record_listing("u", "bafy-1", 1.0)
        snap = engine.snapshot("u")
        snap.points = 0
        assert engine.points("u") == 100

    def test_reads_of_unseen_user_create_no_state(self, engine):
        assert engine.snapshot("ghost").points == 0
        assert engine.snapshot("ghost").badges == {}
        assert engine.points("ghost") == 0
        assert engine.users == []


class TestConcurrency:
    def test_no_lost_updates(self, engine):
        def worker():
            for _ in range(50):
                engine.record_listing("u", "bafy", 0.05)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert engine.points("u") == 8 * 50 * 15

    def test_same_day_race_advances_streak_once(self, engine, basic):
        threads = [threading.Thread(target=engine.record_credential_issued, args=("u", basic)) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert engine.snapshot("u").daily_streak == 1


class TestEventFeed:
    def test_attach(self, clock, basic):
        bus = EventBus()
        engine = ProgressionEngine(clock=clock)
        engine.attach(bus)

        bus.emit(EventType.CREDENTIAL_ISSUED, {"user": "u", "metrics": basic.to_dict()})
        bus.emit(EventType.DATASET_LISTED, {"user": "u", "cid": "bafy-1", "price": 0.5})
        bus.emit(EventType.DATASET_SOLD, {"user": "u", "cid": "bafy-1", "price": 0.5})

        assert engine.points("u") == compute_data_points(basic) + 60 + 100

    def test_issuance_without_metrics_ignored(self, clock):
        bus = EventBus()
        engine = ProgressionEngine(clock=clock)
        engine.attach(bus)
        bus.emit(EventType.CREDENTIAL_ISSUED, {"user": "u", "credentialId": "c1"})
        assert engine.points("u") == 0


@pytest.fixture
def reference_metrics():
    return DataMetrics(
        site_count=25, total_interactions=1200, data_quality="premium",
        has_performance_metrics=True, has_device_specs=True, has_network_data=True,
        unique_domains=12, resources_loaded=100, total_time_spent=3700, data_size=2_000_000,
    )
