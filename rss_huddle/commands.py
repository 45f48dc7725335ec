"""Chat command handlers, independent of the chat platform.

Every handler returns the reply text. Query handlers merge feeds in read-only
mode and never touch the seen-set; they block on network I/O, so async callers
should run them in a worker thread.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session, sessionmaker

from . import db
from .config import AppConfig
from .dedup import Fetcher, collect_latest
from .feeds import fetch_feed_items
from .health import FeedHealth
from .models import FeedConfig, FeedItem, Team
from .renderers import build_headlines, build_status_text
from .scheduler import SchedulerState, Ticker

logger = logging.getLogger(__name__)

ALL_SOURCES = "all"
MAX_CHOICES = 25

NOT_FOUND_TEAM = "Unknown team code."


def clamp_count(value: Optional[int], default: int = 3, maximum: int = 5) -> int:
    """Clamp a requested result count to ``1..maximum``."""
    if value is None:
        value = default
    return min(maximum, max(1, value))


def keyword_predicate(keywords: Sequence[str]):
    """Match items whose title or body mentions any keyword as a whole word."""
    words = [word.strip() for word in keywords if word and word.strip()]
    if not words:
        return lambda item: False
    pattern = re.compile(
        r"\b(?:" + "|".join(re.escape(word) for word in words) + r")\b",
        re.IGNORECASE,
    )

    def matches(item: FeedItem) -> bool:
        for text in (item.title, item.summary, item.content):
            if text and pattern.search(text):
                return True
        return False

    return matches


class CommandService:
    """Answers chat commands against the configured feeds and registry."""

    def __init__(
        self,
        config: AppConfig,
        session_factory: sessionmaker[Session],
        feeds: Sequence[FeedConfig],
        teams: Dict[str, Team],
        ticker: Optional[Ticker] = None,
        health: Optional[FeedHealth] = None,
        fetch: Fetcher = fetch_feed_items,
    ) -> None:
        self.config = config
        self.feeds = list(feeds)
        self.teams = teams
        self.ticker = ticker
        self.health = health
        self._session_factory = session_factory
        self._fetch = fetch
        self._injury_filter = keyword_predicate(config.injury_keywords)

    @property
    def default_feeds(self) -> List[str]:
        return list(dict.fromkeys(feed.url for feed in self.feeds))

    def sources(self) -> Dict[str, List[str]]:
        """Source key -> feed URLs, in configuration order."""
        grouped: Dict[str, List[str]] = {}
        for feed in self.feeds:
            grouped.setdefault(feed.category.lower(), []).append(feed.url)
        return grouped

    def _count(self, count: Optional[int]) -> int:
        return clamp_count(
            count,
            default=self.config.query.default_count,
            maximum=self.config.query.max_count,
        )

    def latest(self, count: Optional[int] = None, source: str = ALL_SOURCES) -> str:
        """Latest league headlines, from every default feed or one source."""
        source = (source or ALL_SOURCES).strip().lower()
        if source == ALL_SOURCES:
            urls = self.default_feeds
        else:
            urls = self.sources().get(source)
            if not urls:
                return f"Unknown source '{source}'."

        items = collect_latest(urls, self._count(count), fetch=self._fetch)
        return build_headlines(items, "No headlines right now.")

    def team(self, code: str, count: Optional[int] = None) -> str:
        team = self.teams.get((code or "").strip().upper())
        if team is None or not team.feeds:
            return NOT_FOUND_TEAM

        items = collect_latest(team.feeds, self._count(count), fetch=self._fetch)
        return build_headlines(items, f"No {team.label} headlines right now.")

    def injuries(self, count: Optional[int] = None) -> str:
        items = collect_latest(
            self.default_feeds,
            self._count(count),
            fetch=self._fetch,
            predicate=self._injury_filter,
        )
        return build_headlines(items, "No injury headlines right now.")

    def fantasy(self, count: Optional[int] = None) -> str:
        source = (self.config.fantasy_source or "").lower()
        urls = self.sources().get(source) if source else None
        if not urls:
            return "Fantasy news source is not configured."

        items = collect_latest(urls, self._count(count), fetch=self._fetch)
        return build_headlines(items, "No fantasy news right now.")

    def subscribe(self, channel_id: str) -> str:
        with self._session_factory() as session:
            created = db.subscribe(session, channel_id, self.default_feeds)
        if not created:
            return "This channel is already subscribed."
        return f"✅ Subscribed. Polling every {self._poll_seconds()}s."

    def unsubscribe(self, channel_id: str) -> str:
        with self._session_factory() as session:
            removed = db.unsubscribe(session, channel_id)
        if not removed:
            return "This channel was not subscribed."
        return "✅ Unsubscribed."

    def _poll_seconds(self) -> int:
        if self.ticker is not None:
            return int(self.ticker.interval)
        return int(self.config.poll_seconds)

    def status(self) -> str:
        state = self.ticker.status() if self.ticker is not None else SchedulerState()
        with self._session_factory() as session:
            subscription_count = len(db.list_subscriptions(session))
        return build_status_text(
            state,
            default_feed_count=len(self.default_feeds),
            team_count=len(self.teams),
            team_feed_count=sum(len(team.feeds) for team in self.teams.values()),
            subscription_count=subscription_count,
            suspended=self.health.snapshot() if self.health is not None else None,
        )

    def team_choices(self, query: str = "") -> List[Tuple[str, str]]:
        """Autocomplete entries as ``(label, code)`` pairs."""
        needle = (query or "").strip().lower()
        choices = [
            (team.label, team.code)
            for team in self.teams.values()
            if not needle
            or needle in team.code.lower()
            or needle in team.label.lower()
        ]
        return choices[:MAX_CHOICES]
