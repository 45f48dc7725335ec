from datetime import datetime, timedelta, timezone

import pytest

from rss_huddle import db
from rss_huddle.errors import SendError
from rss_huddle.models import FeedItem

BASE_TIME = datetime(2024, 9, 8, 17, 0, tzinfo=timezone.utc)


def make_item(link, title="Headline", minutes=0, **kwargs) -> FeedItem:
    """Build a FeedItem published ``minutes`` after BASE_TIME."""
    return FeedItem(
        title=title,
        link=link,
        published=BASE_TIME + timedelta(minutes=minutes),
        **kwargs,
    )


class RecordingSink:
    """Delivery sink that keeps messages in memory."""

    def __init__(self, missing=(), failing=()):
        self.missing = set(missing)
        self.failing = set(failing)
        self.sent = []

    async def resolve(self, destination):
        if destination in self.missing:
            return None
        return destination

    async def send(self, handle, text):
        if any(marker in text for marker in self.failing):
            raise SendError("rate limited")
        self.sent.append((handle, text))


@pytest.fixture
def session_factory(tmp_path):
    """File-backed SQLite store, fresh per test."""
    engine = db.init_engine(f"sqlite:///{tmp_path / 'state.db'}")
    yield db.get_session_factory(engine)
    engine.dispose()


@pytest.fixture
def session(session_factory):
    with session_factory() as session:
        yield session
