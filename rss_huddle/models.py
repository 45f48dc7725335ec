"""Shared data models for rss_huddle."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

EPOCH_ZERO = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class FeedConfig:
    """A single RSS feed from the OPML source list."""

    category: str
    title: str
    url: str


@dataclass
class FeedItem:
    """Normalised feed entry passed between the fetcher and the merger."""

    title: str
    link: Optional[str]
    guid: Optional[str] = None
    published: datetime = EPOCH_ZERO
    summary: Optional[str] = None
    content: Optional[str] = None


@dataclass
class Team:
    """Team directory entry: code, display label and its feed URLs."""

    code: str
    label: str
    feeds: List[str] = field(default_factory=list)
