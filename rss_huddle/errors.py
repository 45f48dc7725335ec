"""Exception hierarchy for rss_huddle."""

from __future__ import annotations


class HuddleError(Exception):
    """Base class for all rss_huddle errors."""


class FetchError(HuddleError):
    """A feed could not be downloaded or parsed.

    Raised only inside the fetcher; callers of ``fetch_feed_items`` never see it.
    """


class SendError(HuddleError):
    """The delivery sink rejected a message."""


class StoreError(HuddleError):
    """The persistent store failed to read or write."""


class ConfigError(HuddleError, ValueError):
    """Required startup configuration is missing or invalid."""
