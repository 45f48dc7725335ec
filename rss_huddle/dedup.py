"""Deduplication and merging of feed items.

Two modes share the newest-first ordering from :mod:`rss_huddle.feeds`:

* subscription mode (:func:`fresh_since_last_tick`) consults and updates the
  persistent seen-set, so each item is handed out at most once per feed;
* query mode (:func:`collect_latest`) merges several feeds and returns the
  newest unique items without touching the seen-set, so manual queries never
  consume items the ticker has yet to deliver.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session, sessionmaker

from . import db
from .feeds import (
    fetch_feed_items,
    item_hash,
    item_identity,
    select_unique_newest,
    sort_newest_first,
)
from .models import FeedItem

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], List[FeedItem]]
ItemPredicate = Callable[[FeedItem], bool]


class SeenStore:
    """Seen-set access bound to a session factory."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def has_seen(self, feed: str, digest: str) -> bool:
        with self._session_factory() as session:
            return db.has_seen(session, feed, digest)

    def mark_seen(
        self, feed: str, digest: str, seen_at: Optional[datetime] = None
    ) -> None:
        with self._session_factory() as session:
            db.mark_seen(session, feed, digest, seen_at=seen_at)

    def touch(
        self, feed: str, digests: Sequence[str], seen_at: Optional[datetime] = None
    ) -> None:
        with self._session_factory() as session:
            db.touch_seen(session, feed, digests, seen_at=seen_at)

    def prune(
        self, max_per_feed: Optional[int] = None, max_age: Optional[timedelta] = None
    ) -> int:
        with self._session_factory() as session:
            return db.prune_seen(session, max_per_feed=max_per_feed, max_age=max_age)


def select_fresh(
    store: SeenStore, feed_url: str, items: Iterable[FeedItem], limit: int
) -> List[FeedItem]:
    """Pick up to ``limit`` unseen items, newest first, marking each as seen.

    Items are marked when selected rather than when delivered: a failed send
    is not retried on the next tick. Items already seen get their ``seen_at``
    refreshed, so retention only ever evicts items that left the feed. Every
    record written here shares one timestamp, which marks the latest fetch.
    """
    fresh: List[FeedItem] = []
    if limit <= 0:
        return fresh

    now = datetime.now(timezone.utc)
    still_listed: List[str] = []
    for item in sort_newest_first(items):
        identity = item_identity(item)
        if identity is None:
            continue
        digest = item_hash(identity)
        if store.has_seen(feed_url, digest):
            still_listed.append(digest)
            continue
        if len(fresh) >= limit:
            continue
        fresh.append(item)
        store.mark_seen(feed_url, digest, seen_at=now)

    store.touch(feed_url, still_listed, seen_at=now)
    logger.debug("Feed %s yielded %d fresh items", feed_url, len(fresh))
    return fresh


def fresh_since_last_tick(
    store: SeenStore,
    feed_url: str,
    limit: int = 2,
    fetch: Fetcher = fetch_feed_items,
) -> List[FeedItem]:
    """Fetch ``feed_url`` and return its unseen items (see :func:`select_fresh`)."""
    return select_fresh(store, feed_url, fetch(feed_url), limit)


def collect_latest(
    feed_urls: Sequence[str],
    count: int,
    fetch: Fetcher = fetch_feed_items,
    predicate: Optional[ItemPredicate] = None,
) -> List[FeedItem]:
    """Merge ``feed_urls`` and return the ``count`` newest unique items."""
    merged: List[FeedItem] = []
    for url in feed_urls:
        merged.extend(fetch(url))

    if predicate is not None:
        merged = [item for item in merged if predicate(item)]

    return select_unique_newest(merged, count)
