"""Rendering helpers for chat messages."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from .models import FeedItem
from .templating import get_environment


def build_item_message(item: FeedItem, source: str) -> str:
    """Render one scheduled delivery: title, link and source line."""
    template = get_environment().get_template("item.txt.j2")
    return template.render(item=item, source=source).strip()


def build_headlines(items: Sequence[FeedItem], empty_text: str) -> str:
    """Render a bullet list of headlines, or ``empty_text`` when there are none."""
    template = get_environment().get_template("headlines.txt.j2")
    return template.render(items=items, empty_text=empty_text).strip()


def build_status_text(
    state: Any,
    default_feed_count: int,
    team_count: int,
    team_feed_count: int,
    subscription_count: int,
    suspended: Optional[Dict[str, dict]] = None,
    now: Optional[datetime] = None,
) -> str:
    """Render the ``/status`` report from a scheduler state snapshot."""
    now = now or datetime.now(timezone.utc)
    next_eta = None
    if state.next_run_at is not None:
        next_eta = max(0.0, (state.next_run_at - now).total_seconds())
    uptime = None
    if state.started_at is not None:
        uptime = (now - state.started_at).total_seconds()

    template = get_environment().get_template("status.txt.j2")
    return template.render(
        state=state,
        now=now,
        uptime=uptime,
        next_eta=next_eta,
        default_feed_count=default_feed_count,
        team_count=team_count,
        team_feed_count=team_feed_count,
        subscription_count=subscription_count,
        suspended={
            url: info
            for url, info in (suspended or {}).items()
            if info.get("suspended_for")
        },
    ).strip()
