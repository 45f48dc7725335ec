"""Feed fetching, item identity and the unique-newest merge."""

from __future__ import annotations

import calendar
import hashlib
import logging
import re
import time
from datetime import datetime, timezone
from typing import Iterable, List, Optional

import feedparser
import requests
from bs4 import BeautifulSoup

from . import __version__
from .errors import FetchError
from .health import FeedHealth
from .models import EPOCH_ZERO, FeedItem

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0

REQUEST_HEADERS = {
    "User-Agent": (
        f"rss-huddle/{__version__} (+https://github.com/rss-huddle/rss-huddle; "
        "football headline relay)"
    ),
    "Accept": (
        "application/rss+xml, application/atom+xml, application/xml;q=0.9, "
        "text/xml;q=0.9, */*;q=0.5"
    ),
}


def to_datetime(value: Optional[time.struct_time]) -> datetime:
    """Convert feedparser UTC timestamps to aware datetimes; missing is oldest."""
    if value is None:
        return EPOCH_ZERO
    try:
        return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return EPOCH_ZERO


def _download(url: str, timeout: float) -> bytes:
    try:
        response = requests.get(url, headers=REQUEST_HEADERS, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise FetchError(str(exc)) from exc
    return response.content


def _parse(url: str, content: bytes):
    try:
        parsed = feedparser.parse(content)
    except Exception as exc:  # noqa: BLE001 - feedparser internals
        raise FetchError(f"unparseable feed: {exc}") from exc

    if getattr(parsed, "bozo", False) and not parsed.entries:
        reason = getattr(parsed, "bozo_exception", None) or "malformed document"
        raise FetchError(f"unparseable feed: {reason}")
    return parsed


def fetch_feed_items(
    url: str,
    timeout: float = DEFAULT_TIMEOUT,
    health: Optional[FeedHealth] = None,
) -> List[FeedItem]:
    """Fetch and normalise one feed. Failures are logged and yield ``[]``."""
    if health is not None and health.is_suspended(url):
        logger.debug("Skipping suspended feed %s", url)
        return []

    logger.info("Fetching feed %s", url)
    try:
        parsed = _parse(url, _download(url, timeout))
    except FetchError as exc:
        logger.warning("Failed to fetch feed %s: %s", url, exc)
        if health is not None:
            health.record_failure(url, str(exc))
        return []

    if health is not None:
        health.record_success(url)

    items: List[FeedItem] = []
    for entry in parsed.entries:
        try:
            item = _to_item(entry)
        except Exception as exc:  # noqa: BLE001 - one bad entry must not sink the feed
            logger.warning("Skipping malformed entry in feed %s: %s", url, exc)
            continue
        if item is None:
            logger.debug("Skipping entry without title or link in feed %s", url)
            continue
        items.append(item)

    logger.info("Collected %d items from feed %s", len(items), url)
    return items


def _to_item(entry) -> Optional[FeedItem]:
    title = (getattr(entry, "title", None) or "").strip()
    link = (getattr(entry, "link", None) or "").strip() or None
    guid = (getattr(entry, "id", None) or getattr(entry, "guid", None) or "").strip()

    if not title and not link:
        return None

    summary = getattr(entry, "summary", None)
    if not summary:
        summary_detail = getattr(entry, "summary_detail", None)
        if summary_detail:
            summary = summary_detail.get("value")

    content = None
    raw_content = getattr(entry, "content", None)
    if raw_content:
        try:
            content = raw_content[0].get("value")
        except (TypeError, KeyError, IndexError, AttributeError):
            content = None

    published = None
    for attr in ("published_parsed", "updated_parsed", "created_parsed"):
        published = getattr(entry, attr, None)
        if published:
            break

    return FeedItem(
        title=title,
        link=link,
        guid=guid or None,
        published=to_datetime(published),
        summary=_strip_html(summary) if summary else None,
        content=_strip_html(content) if content else None,
    )


def _strip_html(raw_value: str) -> str:
    """Return text content extracted from HTML fragments."""
    soup = BeautifulSoup(raw_value, "html.parser")
    text = soup.get_text(separator=" ", strip=True)
    text = re.sub(r"\s+([.,;:!?])", r"\1", text)
    text = re.sub(r"\s{2,}", " ", text)
    return text.strip()


def item_key(item: FeedItem) -> Optional[str]:
    """Identity used to deduplicate within one merge: link, then title."""
    key = (item.link or "").strip() or (item.title or "").strip()
    return key or None


def item_identity(item: FeedItem) -> Optional[str]:
    """Identity persisted in the seen-set: link, then guid."""
    return (item.link or "").strip() or (item.guid or "").strip() or None


def item_hash(identity: str) -> str:
    return hashlib.sha1(identity.encode("utf-8")).hexdigest()


def sort_newest_first(items: Iterable[FeedItem]) -> List[FeedItem]:
    # sorted() is stable, so equal timestamps keep their feed order.
    return sorted(items, key=lambda item: item.published, reverse=True)


def select_unique_newest(items: Iterable[FeedItem], limit: int) -> List[FeedItem]:
    """Return up to ``limit`` newest items with distinct identity keys."""
    seen_keys = set()
    selected: List[FeedItem] = []
    if limit <= 0:
        return selected

    for item in sort_newest_first(items):
        key = item_key(item)
        if key is None or key in seen_keys:
            continue
        seen_keys.add(key)
        selected.append(item)
        if len(selected) >= limit:
            break

    logger.debug("Selected %d unique items (requested %d)", len(selected), limit)
    return selected
