"""
credmarket.leaderboard — Local score merged with a remote per-address feed.

The remote feed (an HTTP endpoint or the marketplace contract itself) is
polled in the background. A failed or timed-out poll keeps the previous
snapshot; a poll that finishes late never overwrites a snapshot taken from a
newer request.

Configuration via environment (see credmarket.config):
    CREDMARKET_LEADERBOARD_URL       — remote feed
    CREDMARKET_LEADERBOARD_INTERVAL  — poll interval in seconds (default 30)
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

import httpx

from .errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

LOCAL_ADDRESS = "you"
DEFAULT_TOP_K = 10
WEI_PER_MOCA = 10 ** 18


@dataclass(frozen=True)
class LeaderboardRow:
    address: str
    points: int

    def to_dict(self) -> dict:
        return {"address": self.address, "points": self.points}

    @classmethod
    def from_dict(cls, data: dict) -> "LeaderboardRow":
        return cls(address=str(data["address"]), points=int(data["points"]))


def merge_leaderboard(local: Optional[LeaderboardRow], remote: Iterable[LeaderboardRow],
                      top_k: int = DEFAULT_TOP_K) -> list[LeaderboardRow]:
    """Deduplicate by address keeping the max (never the sum), rank, truncate.

    Order-independent: ties are broken by address so any permutation of the
    inputs yields the same list.
    """
    best: dict[str, int] = {}
    rows = ([local] if local is not None else []) + list(remote)
    for row in rows:
        if row.address not in best or row.points > best[row.address]:
            best[row.address] = row.points
    ranked = sorted(best.items(), key=lambda kv: (-kv[1], kv[0]))
    return [LeaderboardRow(address, points) for address, points in ranked[:top_k]]


# ─── Remote sources ────────────────────────────────────────────────

class RemoteScoreSource(ABC):
    """Read-only feed of per-address scores."""

    name: str = "remote"

    @abstractmethod
    async def fetch(self) -> list[LeaderboardRow]:
        """Return the current feed. Raises UpstreamUnavailable on failure."""


class HttpLeaderboardSource(RemoteScoreSource):
    """Feed served as ``{"leaderboard": [{"address": ..., "points": ...}, ...]}``."""

    name = "leaderboard-http"

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    async def fetch(self) -> list[LeaderboardRow]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(self.url)
                resp.raise_for_status()
                payload = resp.json()
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(self.name, str(e) or type(e).__name__) from e
        except ValueError as e:
            raise UpstreamUnavailable(self.name, "invalid JSON") from e

        entries = payload.get("leaderboard") if isinstance(payload, dict) else None
        if not isinstance(entries, list):
            raise UpstreamUnavailable(self.name, "response has no leaderboard list")
        rows = []
        for entry in entries:
            try:
                rows.append(LeaderboardRow.from_dict(entry))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed leaderboard entry", extra={"entry": repr(entry)[:200]})
        return rows


@dataclass
class ChainDataset:
    seller: str
    uri: str
    price_wei: int
    active: bool


class ChainReader(ABC):
    """Read interface of the marketplace contract."""

    @abstractmethod
    def next_id(self) -> int: ...

    @abstractmethod
    def dataset_at(self, dataset_id: int) -> ChainDataset: ...


def shorten_address(address: str) -> str:
    if len(address) <= 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


class ChainLeaderboardSource(RemoteScoreSource):
    """Scores sellers from their active on-chain listings.

    points = floor(50 per active listing + 100 per MOCA of listed value)
    """

    name = "leaderboard-chain"

    def __init__(self, reader: ChainReader, limit: int = 50):
        self.reader = reader
        self.limit = limit

    def _collect(self) -> list[LeaderboardRow]:
        try:
            count = int(self.reader.next_id())
        except Exception as e:
            raise UpstreamUnavailable(self.name, f"nextId failed: {e}") from e

        stats: dict[str, tuple[int, float]] = {}
        for dataset_id in range(1, count + 1):
            try:
                ds = self.reader.dataset_at(dataset_id)
            except Exception:
                logger.warning("Failed to fetch dataset", extra={"dataset_id": dataset_id}, exc_info=True)
                continue
            if not ds.active:
                continue
            listings, value = stats.get(ds.seller, (0, 0.0))
            stats[ds.seller] = (listings + 1, value + ds.price_wei / WEI_PER_MOCA)

        rows = [
            LeaderboardRow(shorten_address(seller), math.floor(listings * 50 + value * 100))
            for seller, (listings, value) in stats.items()
        ]
        rows.sort(key=lambda r: (-r.points, r.address))
        return rows[:self.limit]

    async def fetch(self) -> list[LeaderboardRow]:
        return await asyncio.to_thread(self._collect)


# ─── Aggregator ────────────────────────────────────────────────────

@dataclass
class LeaderboardSnapshot:
    rows: tuple[LeaderboardRow, ...]
    requested_at: float


class LeaderboardAggregator:
    """Holds the last good remote snapshot and merges local scores into it."""

    def __init__(self, source: Optional[RemoteScoreSource] = None, timeout: float = 10.0,
                 top_k: int = DEFAULT_TOP_K, clock: Callable[[], float] = time.time):
        self.source = source
        self.timeout = timeout
        self.top_k = top_k
        self._clock = clock
        self._snapshot: Optional[LeaderboardSnapshot] = None
        self.last_error: Optional[str] = None

    @property
    def snapshot(self) -> Optional[LeaderboardSnapshot]:
        return self._snapshot

    def apply(self, rows: Iterable[LeaderboardRow], requested_at: float) -> bool:
        """Install a fetched feed unless a newer request already produced one."""
        if self._snapshot is not None and requested_at < self._snapshot.requested_at:
            logger.info("Discarding stale leaderboard result", extra={
                "requested_at": requested_at, "held": self._snapshot.requested_at,
            })
            return False
        self._snapshot = LeaderboardSnapshot(tuple(rows), requested_at)
        self.last_error = None
        return True

    async def refresh(self) -> bool:
        """Poll the remote source once. Returns True if the snapshot changed."""
        if self.source is None:
            return False
        requested_at = self._clock()
        try:
            rows = await asyncio.wait_for(self.source.fetch(), timeout=self.timeout)
        except asyncio.TimeoutError:
            self.last_error = f"timed out after {self.timeout}s"
        except UpstreamUnavailable as e:
            self.last_error = str(e)
        else:
            return self.apply(rows, requested_at)

        logger.warning("Leaderboard refresh failed; keeping last snapshot", extra={
            "source": self.source.name, "error": self.last_error,
            "has_snapshot": self._snapshot is not None,
        })
        return False

    def leaderboard(self, local_points: Optional[int] = None) -> list[LeaderboardRow]:
        """Top rows with the local user merged in as ``you``.

        Raises UpstreamUnavailable only if no snapshot was ever obtained and
        the last refresh failed.
        """
        if self._snapshot is None and self.last_error is not None:
            raise UpstreamUnavailable(self.source.name if self.source else "leaderboard", self.last_error)
        remote = self._snapshot.rows if self._snapshot else ()
        local = LeaderboardRow(LOCAL_ADDRESS, local_points) if local_points is not None else None
        return merge_leaderboard(local, remote, self.top_k)


class LeaderboardPoller:
    """Background asyncio task refreshing an aggregator on a fixed interval."""

    def __init__(self, aggregator: LeaderboardAggregator, interval: float = 30.0):
        self.aggregator = aggregator
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Leaderboard poller started (interval=%.0fs)", self.interval)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Leaderboard poller stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.aggregator.refresh()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Leaderboard refresh cycle failed")
            try:
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                break
