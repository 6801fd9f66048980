"""
credmarket.progression — Points, daily streaks, badges and activity history.

One ProgressionState per user key, created with zeros on the first write and
never deleted; reads of an unseen user return zeros without creating state.
Points and the badge set only grow. Mutations for the same user are
serialized by a per-user lock, so two issuances on the same calendar day
cannot both advance the streak and concurrent awards cannot lose updates.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, Optional

from .events import Event, EventBus, EventType
from .points import (
    DataMetrics, compute_data_points, describe_dataset,
    points_for_listing, points_for_sale,
)

logger = logging.getLogger(__name__)

ACTIVITY_LOG_SIZE = 20
STREAK_BONUS_PER_DAY = 5
STREAK_BONUS_CAP = 100


@dataclass(frozen=True)
class BadgeSpec:
    id: str
    name: str
    description: str


POINT_BADGES: tuple[tuple[int, BadgeSpec], ...] = (
    (100, BadgeSpec("starter-100", "Starter", "Earned 100 points")),
    (500, BadgeSpec("grinder-500", "Grinder", "Earned 500 points")),
    (1000, BadgeSpec("master-1000", "Master Farmer", "Earned 1000 points")),
)
STREAK_BADGE = (7, BadgeSpec("streak-7", "7-Day Streak", "Issued credentials 7 days in a row"))
EXPLORER_BADGE = (20, BadgeSpec("explorer-20", "Explorer", "Collected data from 20+ sites"))
INTERACTIVE_BADGE = (1000, BadgeSpec("interactive-1000", "Highly Interactive", "1000+ interactions tracked"))


@dataclass
class Badge:
    id: str
    name: str
    description: str
    earned_at: str

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "description": self.description, "earnedAt": self.earned_at}


@dataclass
class ActivityEntry:
    action: str
    points: int
    timestamp: str

    def to_dict(self) -> dict:
        return {"action": self.action, "points": self.points, "timestamp": self.timestamp}


@dataclass
class MarketRecord:
    cid: str
    price: float
    timestamp: str

    def to_dict(self) -> dict:
        return {"cid": self.cid, "price": self.price, "timestamp": self.timestamp}


@dataclass
class ProgressionState:
    points: int = 0
    daily_streak: int = 0
    last_issued_at: Optional[datetime] = None
    badges: dict[str, Badge] = field(default_factory=dict)
    listings: list[MarketRecord] = field(default_factory=list)
    sales: list[MarketRecord] = field(default_factory=list)
    activity: deque = field(default_factory=lambda: deque(maxlen=ACTIVITY_LOG_SIZE))

    @property
    def badge_ids(self) -> set[str]:
        return set(self.badges)

    def to_dict(self) -> dict:
        return {
            "points": self.points,
            "dailyStreak": self.daily_streak,
            "lastIssuedAt": self.last_issued_at.isoformat() if self.last_issued_at else None,
            "badges": [b.to_dict() for b in self.badges.values()],
            "listings": [r.to_dict() for r in self.listings],
            "sales": [r.to_dict() for r in self.sales],
            "recentActivity": [a.to_dict() for a in self.activity],
        }


@dataclass
class IssuanceOutcome:
    data_points: int
    streak_bonus: int
    points: int
    daily_streak: int
    new_badges: list[Badge]

    @property
    def awarded(self) -> int:
        return self.data_points + self.streak_bonus

    def to_dict(self) -> dict:
        return {
            "points": self.points,
            "dailyStreak": self.daily_streak,
            "newBadges": [b.to_dict() for b in self.new_badges],
            "dataPoints": self.data_points,
            "streakBonus": self.streak_bonus,
        }


@dataclass
class MarketOutcome:
    awarded: int
    points: int
    new_badges: list[Badge]

    def to_dict(self) -> dict:
        return {"awarded": self.awarded, "points": self.points, "newBadges": [b.to_dict() for b in self.new_badges]}


def next_streak(current: int, last: Optional[date], today: date) -> int:
    """Streak after an issuance on ``today``.

    Same day keeps the streak, the next day extends it, a skipped day (or the
    first issuance ever) restarts it at 1.
    """
    if last is None:
        return 1
    delta = (today - last).days
    if delta <= 0:
        return max(current, 1)
    if delta == 1:
        return current + 1
    return 1


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProgressionEngine:
    """Applies marketplace activity to per-user progression state.

    Args:
        clock: returns the current time; calendar days are taken in UTC.
        event_bus: optional bus that receives ``badge.awarded`` events.
    """

    def __init__(self, clock: Callable[[], datetime] = _utc_now, event_bus: Optional[EventBus] = None):
        self._clock = clock
        self._event_bus = event_bus
        self._states: dict[str, ProgressionState] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _now(self) -> datetime:
        now = self._clock()
        return now if now.tzinfo else now.replace(tzinfo=timezone.utc)

    def _lock_for(self, user: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(user)
            if lock is None:
                lock = self._locks[user] = threading.Lock()
                self._states[user] = ProgressionState()
            return lock

    # ── Recording ──

    def record_credential_issued(self, user: str, metrics: DataMetrics) -> IssuanceOutcome:
        data_points = compute_data_points(metrics)
        now = self._now()

        with self._lock_for(user):
            state = self._states[user]
            streak_bonus = min(STREAK_BONUS_CAP, state.daily_streak * STREAK_BONUS_PER_DAY)
            total = data_points + streak_bonus

            state.activity.append(ActivityEntry(
                action=f'Issued "{describe_dataset(metrics)}" credential',
                points=total,
                timestamp=now.isoformat(),
            ))
            last_day = state.last_issued_at.astimezone(timezone.utc).date() if state.last_issued_at else None
            state.daily_streak = next_streak(state.daily_streak, last_day, now.astimezone(timezone.utc).date())
            state.last_issued_at = now
            state.points += total

            new_badges = self._award_point_badges(state, now)
            threshold, spec = STREAK_BADGE
            if state.daily_streak >= threshold:
                new_badges += self._award(state, spec, now)
            threshold, spec = EXPLORER_BADGE
            if metrics.site_count >= threshold:
                new_badges += self._award(state, spec, now)
            threshold, spec = INTERACTIVE_BADGE
            if metrics.total_interactions >= threshold:
                new_badges += self._award(state, spec, now)

            outcome = IssuanceOutcome(
                data_points=data_points,
                streak_bonus=streak_bonus,
                points=state.points,
                daily_streak=state.daily_streak,
                new_badges=new_badges,
            )

        logger.info("Credential issuance recorded", extra={
            "user": user, "awarded": outcome.awarded, "points": outcome.points,
            "daily_streak": outcome.daily_streak,
        })
        self._announce(user, outcome.new_badges)
        return outcome

    def record_listing(self, user: str, cid: str, price: float) -> MarketOutcome:
        return self._record_market(user, cid, price, points_for_listing(_check_price(price)),
                                   f"Listed dataset ({price} MOCA)", listing=True)

    def record_sale(self, user: str, cid: str, price: float) -> MarketOutcome:
        return self._record_market(user, cid, price, points_for_sale(_check_price(price)),
                                   f"Sold dataset ({price} MOCA)", listing=False)

    def _record_market(self, user: str, cid: str, price: float, awarded: int,
                       action: str, listing: bool) -> MarketOutcome:
        now = self._now()
        with self._lock_for(user):
            state = self._states[user]
            record = MarketRecord(cid=cid, price=price, timestamp=now.isoformat())
            (state.listings if listing else state.sales).append(record)
            state.activity.append(ActivityEntry(action=action, points=awarded, timestamp=now.isoformat()))
            state.points += awarded
            new_badges = self._award_point_badges(state, now)
            outcome = MarketOutcome(awarded=awarded, points=state.points, new_badges=new_badges)

        logger.info("Marketplace activity recorded", extra={
            "user": user, "cid": cid, "kind": "listing" if listing else "sale", "awarded": awarded,
        })
        self._announce(user, new_badges)
        return outcome

    # ── Badges ──

    def _award_point_badges(self, state: ProgressionState, now: datetime) -> list[Badge]:
        awarded: list[Badge] = []
        for threshold, spec in POINT_BADGES:
            if state.points >= threshold:
                awarded += self._award(state, spec, now)
        return awarded

    @staticmethod
    def _award(state: ProgressionState, spec: BadgeSpec, now: datetime) -> list[Badge]:
        """Insert a badge keyed by id; a badge already held is left untouched."""
        if spec.id in state.badges:
            return []
        badge = Badge(spec.id, spec.name, spec.description, earned_at=now.isoformat())
        state.badges[spec.id] = badge
        return [badge]

    def _announce(self, user: str, badges: list[Badge]) -> None:
        if self._event_bus is None:
            return
        for badge in badges:
            self._event_bus.emit(EventType.BADGE_AWARDED, {"user": user, **badge.to_dict()})

    # ── Reads ──

    def _existing_lock(self, user: str) -> Optional[threading.Lock]:
        with self._registry_lock:
            return self._locks.get(user)

    def snapshot(self, user: str) -> ProgressionState:
        """Deep copy of a user's state (zeros for unseen users, who stay unseen)."""
        lock = self._existing_lock(user)
        if lock is None:
            return ProgressionState()
        with lock:
            return copy.deepcopy(self._states[user])

    def points(self, user: str) -> int:
        lock = self._existing_lock(user)
        if lock is None:
            return 0
        with lock:
            return self._states[user].points

    @property
    def users(self) -> list[str]:
        with self._registry_lock:
            return list(self._states)

    # ── Event feed ──

    def attach(self, bus: EventBus) -> list[str]:
        """Subscribe to the marketplace activity events on ``bus``."""
        return [
            bus.subscribe(EventType.CREDENTIAL_ISSUED, self._on_credential_issued),
            bus.subscribe(EventType.DATASET_LISTED, self._on_listed),
            bus.subscribe(EventType.DATASET_SOLD, self._on_sold),
        ]

    def _on_credential_issued(self, event: Event) -> None:
        metrics = event.data.get("metrics")
        if metrics is None:
            return
        if not isinstance(metrics, DataMetrics):
            metrics = DataMetrics.from_dict(metrics)
        self.record_credential_issued(event.data["user"], metrics)

    def _on_listed(self, event: Event) -> None:
        self.record_listing(event.data["user"], event.data["cid"], float(event.data["price"]))

    def _on_sold(self, event: Event) -> None:
        self.record_sale(event.data["user"], event.data["cid"], float(event.data["price"]))


def _check_price(price: float) -> float:
    if price < 0:
        raise ValueError(f"price must be non-negative, got {price}")
    return price
