"""Delivery sinks that scheduled messages are handed to."""

from __future__ import annotations

import logging
import sys
from typing import Any, List, Optional, Protocol, TextIO, Tuple

logger = logging.getLogger(__name__)


class DeliverySink(Protocol):
    """Destination for formatted messages.

    ``resolve`` returns ``None`` for destinations that no longer exist; the
    ticker skips those for the current tick. ``send`` raises
    :class:`~rss_huddle.errors.SendError` when a message is rejected.
    """

    async def resolve(self, destination: str) -> Optional[Any]: ...

    async def send(self, handle: Any, text: str) -> None: ...


class ConsoleSink:
    """Write every message to a text stream; used for dry runs."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self.stream = stream or sys.stdout
        self.sent: List[Tuple[str, str]] = []

    async def resolve(self, destination: str) -> Optional[str]:
        return destination

    async def send(self, handle: str, text: str) -> None:
        self.sent.append((handle, text))
        print(f"[{handle}] {text}", file=self.stream)
