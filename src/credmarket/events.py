"""
credmarket.events — Marketplace event notification

Marketplace activity (credential issued, dataset listed, dataset sold) and
engine side effects (revocations, badges) are published on an in-process bus.
The progression engine subscribes to the activity events.

Usage:
    bus = EventBus()
    bus.subscribe("dataset.*", my_handler)
    bus.emit("dataset.listed", {"user": "0xabc", "cid": "bafy...", "price": 0.5})
"""

import fnmatch
import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Standard marketplace event types."""
    CREDENTIAL_ISSUED = "credential.issued"
    CREDENTIAL_REVOKED = "credential.revoked"
    DATASET_LISTED = "dataset.listed"
    DATASET_SOLD = "dataset.sold"
    BADGE_AWARDED = "badge.awarded"


@dataclass
class Event:
    """A marketplace event with metadata."""
    event_type: str
    data: dict = field(default_factory=dict)
    timestamp: float = 0.0
    source: str = ""
    event_id: str = ""

    def __post_init__(self):
        if isinstance(self.event_type, EventType):
            self.event_type = self.event_type.value
        if not self.timestamp:
            self.timestamp = time.time()
        if not self.event_id:
            payload = f"{self.event_type}:{self.timestamp}:{json.dumps(self.data, sort_keys=True, default=str)}"
            self.event_id = hashlib.sha256(payload.encode()).hexdigest()[:16]

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Subscription:
    """A subscription to one or more event patterns."""
    subscriber_id: str
    patterns: list[str]  # glob patterns like "dataset.*"
    callback: Callable[[Event], None]
    created_at: float = field(default_factory=time.time)

    def matches(self, event_type: str) -> bool:
        return any(fnmatch.fnmatch(event_type, p) for p in self.patterns)


class EventBus:
    """
    In-process event bus. Thread-safe; callbacks run synchronously on the
    emitting thread, outside the bus lock.
    """

    def __init__(self, max_history: int = 1000):
        self._subscriptions: dict[str, Subscription] = {}
        self._history: list[Event] = []
        self._max_history = max_history
        self._lock = threading.Lock()
        self._counter = 0

    def subscribe(
        self,
        patterns: "str | EventType | list[str]",
        callback: Callable[[Event], None],
        subscriber_id: Optional[str] = None,
    ) -> str:
        """Subscribe to events matching glob pattern(s). Returns the subscription id."""
        if isinstance(patterns, (str, EventType)):
            patterns = [patterns]
        patterns = [p.value if isinstance(p, EventType) else p for p in patterns]

        with self._lock:
            self._counter += 1
            if not subscriber_id:
                subscriber_id = f"sub:{self._counter}"
            self._subscriptions[subscriber_id] = Subscription(
                subscriber_id=subscriber_id,
                patterns=patterns,
                callback=callback,
            )
        return subscriber_id

    def unsubscribe(self, subscriber_id: str) -> bool:
        with self._lock:
            return self._subscriptions.pop(subscriber_id, None) is not None

    def emit(self, event_type: "str | EventType", data: Optional[dict] = None, source: str = "") -> Event:
        """Emit an event and dispatch it to every matching subscriber."""
        event = Event(event_type=event_type, data=data or {}, source=source)

        with self._lock:
            self._history.append(event)
            if len(self._history) > self._max_history:
                self._history = self._history[-self._max_history:]
            subs = [s for s in self._subscriptions.values() if s.matches(event.event_type)]

        for sub in subs:
            try:
                sub.callback(event)
            except Exception:
                # a failing subscriber must not stop delivery to the others
                logger.exception("Subscriber %s failed on %s", sub.subscriber_id, event.event_type)

        return event

    def history(self, event_type: Optional[str] = None, limit: int = 50) -> list[Event]:
        """Query event history, optionally filtered by a glob pattern."""
        with self._lock:
            events = list(self._history)
        if event_type:
            events = [e for e in events if fnmatch.fnmatch(e.event_type, event_type)]
        return events[-limit:]

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)
