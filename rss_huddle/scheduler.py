"""Periodic tick loop that delivers fresh items to subscribed channels."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Sequence
from urllib.parse import urlparse

from sqlalchemy.orm import Session, sessionmaker

from . import db
from .dedup import Fetcher, SeenStore, select_fresh
from .errors import SendError
from .feeds import fetch_feed_items
from .renderers import build_item_message
from .sinks import DeliverySink

logger = logging.getLogger(__name__)

MIN_POLL_SECONDS = 20
IDLE = "idle"
RUNNING = "running"


@dataclass
class SchedulerState:
    """Observable ticker status. Only the ticker writes to it."""

    phase: str = IDLE
    started_at: Optional[datetime] = None
    last_run_started: Optional[datetime] = None
    last_run_finished: Optional[datetime] = None
    last_success: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    ticks: int = 0
    delivered: int = 0


@dataclass
class RetentionPolicy:
    """How much of the seen-set to keep after each tick."""

    max_per_feed: Optional[int] = None
    max_age_days: Optional[float] = None

    @property
    def enabled(self) -> bool:
        return self.max_per_feed is not None or self.max_age_days is not None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def source_label(url: str, labels: Optional[Dict[str, str]] = None) -> str:
    """Return the display name for a feed: configured label, else its host."""
    if labels and url in labels:
        return labels[url]
    host = urlparse(url).netloc
    if host.startswith("www."):
        host = host[4:]
    return host or "Source"


class Ticker:
    """Drive scheduled deliveries one tick at a time.

    The next tick is armed only after the current one finishes, ``interval``
    seconds after its completion. Feeds are fetched one after another and
    every send is followed by ``send_delay`` seconds of pacing.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        sink: DeliverySink,
        default_feeds: Sequence[str],
        interval: float = 90,
        per_feed_limit: int = 2,
        send_delay: float = 0.7,
        fetch: Fetcher = fetch_feed_items,
        labels: Optional[Dict[str, str]] = None,
        retention: Optional[RetentionPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if interval < MIN_POLL_SECONDS:
            logger.warning(
                "Poll interval %ss is below the %ss floor; using %ss",
                interval,
                MIN_POLL_SECONDS,
                MIN_POLL_SECONDS,
            )
        self.interval = max(MIN_POLL_SECONDS, interval)
        self.per_feed_limit = per_feed_limit
        self.send_delay = send_delay
        self.default_feeds = list(default_feeds)
        self.labels = dict(labels or {})
        self.retention = retention
        self._session_factory = session_factory
        self._store = SeenStore(session_factory)
        self._sink = sink
        self._fetch = fetch
        self._sleep = sleep
        self._clock = clock
        self._state = SchedulerState()
        self._running = False

    def status(self) -> SchedulerState:
        """Return a copy of the current state."""
        return dataclasses.replace(self._state)

    def _record_error(self, message: str) -> None:
        self._state.last_error = message
        self._state.last_error_at = self._clock()

    def _channels(self) -> List[str]:
        with self._session_factory() as session:
            return db.list_subscriptions(session)

    def _feeds_for(self, channel_id: str) -> List[str]:
        with self._session_factory() as session:
            explicit = db.feeds_for(session, channel_id)
        return explicit or self.default_feeds

    async def tick(self) -> int:
        """Run one delivery cycle and return the number of messages sent."""
        delivered = 0
        for channel_id in self._channels():
            handle = await self._sink.resolve(channel_id)
            if handle is None:
                logger.debug("Channel %s is unavailable; skipping this tick", channel_id)
                continue

            for url in self._feeds_for(channel_id):
                items = await asyncio.to_thread(self._fetch, url)
                fresh = select_fresh(self._store, url, items, self.per_feed_limit)
                for item in fresh:
                    if not item.title.strip() or not (item.link or "").strip():
                        continue
                    message = build_item_message(item, source_label(url, self.labels))
                    try:
                        await self._sink.send(handle, message)
                    except SendError as exc:
                        logger.warning(
                            "Failed to deliver %s to %s: %s", item.link, channel_id, exc
                        )
                        self._record_error(f"SendError: {exc}")
                    else:
                        delivered += 1
                        self._state.delivered += 1
                    await self._sleep(self.send_delay)

        if self.retention is not None and self.retention.enabled:
            max_age = None
            if self.retention.max_age_days is not None:
                max_age = timedelta(days=self.retention.max_age_days)
            self._store.prune(max_per_feed=self.retention.max_per_feed, max_age=max_age)

        logger.info("Tick delivered %d messages", delivered)
        return delivered

    async def run_once(self) -> None:
        """Run a tick inside the error boundary and record its outcome."""
        state = self._state
        state.phase = RUNNING
        state.last_run_started = self._clock()
        try:
            await self.tick()
        except Exception as exc:  # noqa: BLE001 - a failed tick must not stop the loop
            logger.exception("Tick failed")
            self._record_error(f"{type(exc).__name__}: {exc}")
        else:
            state.last_success = self._clock()
        finally:
            state.phase = IDLE
            state.ticks += 1
            state.last_run_finished = self._clock()

    async def run(self) -> None:
        """Loop until :meth:`stop` is called, ``interval`` after each completion."""
        self._running = True
        self._state.started_at = self._state.started_at or self._clock()
        logger.info("Ticker started; polling every %ss", self.interval)
        while self._running:
            self._state.next_run_at = self._clock() + timedelta(seconds=self.interval)
            await self._sleep(self.interval)
            if not self._running:
                break
            await self.run_once()
        self._state.next_run_at = None
        logger.info("Ticker stopped")

    def stop(self) -> None:
        self._running = False
