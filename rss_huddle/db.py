"""Persistent state: subscription registry and per-feed seen-set."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterable, Iterator, List, Optional, Sequence

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    String,
    create_engine,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .errors import StoreError

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class SubscriptionModel(Base):
    """A destination channel that receives scheduled deliveries."""

    __tablename__ = "subscriptions"

    channel_id = Column(String, primary_key=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))


class ChannelFeedModel(Base):
    """One explicit feed URL for a subscribed channel."""

    __tablename__ = "channel_feeds"

    channel_id = Column(String, primary_key=True)
    feed = Column(String, primary_key=True)
    position = Column(Integer, nullable=False, default=0)


class SeenModel(Base):
    """Hash of an item identity already delivered for a feed."""

    __tablename__ = "seen"

    feed = Column(String, primary_key=True)
    item_hash = Column(String, primary_key=True)
    seen_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))


def init_engine(connection_string: Optional[str]) -> Optional[Engine]:
    """Initialize the database engine and create missing tables."""
    if not connection_string:
        return None

    logger.info("Initializing database connection: %s", connection_string)
    try:
        engine = create_engine(connection_string)
        Base.metadata.create_all(engine)
    except SQLAlchemyError as exc:
        raise StoreError(f"Could not initialise store: {exc}") from exc
    return engine


def get_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return a session factory for the given engine."""
    return sessionmaker(bind=engine)


@contextmanager
def _store_errors(session: Session, action: str) -> Iterator[None]:
    try:
        yield
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise StoreError(f"Failed to {action}: {exc}") from exc


# --- seen-set ---


def has_seen(session: Session, feed: str, item_hash: str) -> bool:
    try:
        row = session.get(SeenModel, (feed, item_hash))
    except SQLAlchemyError as exc:
        raise StoreError(f"Failed to read seen-set: {exc}") from exc
    return row is not None


def mark_seen(
    session: Session, feed: str, item_hash: str, seen_at: Optional[datetime] = None
) -> None:
    """Record ``item_hash`` as seen for ``feed``; repeated calls are no-ops."""
    with _store_errors(session, "mark item seen"):
        if session.get(SeenModel, (feed, item_hash)) is not None:
            return
        session.add(
            SeenModel(
                feed=feed,
                item_hash=item_hash,
                seen_at=seen_at or datetime.now(timezone.utc),
            )
        )


def touch_seen(
    session: Session,
    feed: str,
    item_hashes: Iterable[str],
    seen_at: Optional[datetime] = None,
) -> None:
    """Refresh ``seen_at`` for hashes that showed up again in a fetch of ``feed``."""
    hashes = list(dict.fromkeys(item_hashes))
    if not hashes:
        return
    with _store_errors(session, "touch seen-set"):
        session.execute(
            update(SeenModel)
            .where(SeenModel.feed == feed, SeenModel.item_hash.in_(hashes))
            .values(seen_at=seen_at or datetime.now(timezone.utc))
        )


def prune_seen(
    session: Session,
    max_per_feed: Optional[int] = None,
    max_age: Optional[timedelta] = None,
    now: Optional[datetime] = None,
) -> int:
    """Evict old seen records. Returns the number of deleted rows.

    ``max_age`` drops records not stamped within that window; ``max_per_feed``
    keeps the most recent records of each feed plus its latest fetch.
    """
    deleted = 0
    with _store_errors(session, "prune seen-set"):
        if max_age is not None:
            cutoff = (now or datetime.now(timezone.utc)) - max_age
            result = session.execute(delete(SeenModel).where(SeenModel.seen_at < cutoff))
            deleted += result.rowcount or 0

        if max_per_feed is not None:
            feeds = session.execute(select(SeenModel.feed).distinct()).scalars().all()
            for feed in feeds:
                # Rows stamped with the feed's newest seen_at are the items of
                # its latest fetch; they stay regardless of the count bound.
                latest = session.execute(
                    select(func.max(SeenModel.seen_at)).where(SeenModel.feed == feed)
                ).scalar_one_or_none()
                rows = session.execute(
                    select(SeenModel.item_hash, SeenModel.seen_at)
                    .where(SeenModel.feed == feed)
                    .order_by(SeenModel.seen_at.desc(), SeenModel.item_hash)
                    .offset(max_per_feed)
                ).all()
                stale = [digest for digest, seen_at in rows if seen_at != latest]
                if not stale:
                    continue
                result = session.execute(
                    delete(SeenModel).where(
                        SeenModel.feed == feed, SeenModel.item_hash.in_(stale)
                    )
                )
                deleted += result.rowcount or 0

    if deleted:
        logger.info("Pruned %d seen records", deleted)
    return deleted


def count_seen(session: Session) -> int:
    return session.execute(select(func.count()).select_from(SeenModel)).scalar_one()


# --- subscription registry ---


def subscribe(session: Session, channel_id: str, default_feeds: Sequence[str]) -> bool:
    """Subscribe ``channel_id``. Returns False if it was already subscribed.

    A new subscription gets a snapshot of ``default_feeds`` as its explicit
    feed list; later changes to the defaults do not touch it.
    """
    with _store_errors(session, "subscribe channel"):
        if session.get(SubscriptionModel, channel_id) is not None:
            return False
        session.add(SubscriptionModel(channel_id=channel_id))
        for position, feed in enumerate(dict.fromkeys(default_feeds)):
            session.add(
                ChannelFeedModel(channel_id=channel_id, feed=feed, position=position)
            )
    logger.info("Subscribed channel %s", channel_id)
    return True


def unsubscribe(session: Session, channel_id: str) -> bool:
    """Remove ``channel_id`` and its explicit feeds. Returns False if absent."""
    with _store_errors(session, "unsubscribe channel"):
        result = session.execute(
            delete(SubscriptionModel).where(SubscriptionModel.channel_id == channel_id)
        )
        session.execute(
            delete(ChannelFeedModel).where(ChannelFeedModel.channel_id == channel_id)
        )
    removed = bool(result.rowcount)
    if removed:
        logger.info("Unsubscribed channel %s", channel_id)
    return removed


def is_subscribed(session: Session, channel_id: str) -> bool:
    try:
        return session.get(SubscriptionModel, channel_id) is not None
    except SQLAlchemyError as exc:
        raise StoreError(f"Failed to read subscriptions: {exc}") from exc


def list_subscriptions(session: Session) -> List[str]:
    """Return subscribed channel ids in subscription order."""
    try:
        stmt = select(SubscriptionModel.channel_id).order_by(
            SubscriptionModel.created_at, SubscriptionModel.channel_id
        )
        return list(session.execute(stmt).scalars().all())
    except SQLAlchemyError as exc:
        raise StoreError(f"Failed to list subscriptions: {exc}") from exc


def feeds_for(session: Session, channel_id: str) -> List[str]:
    """Explicit feeds for ``channel_id`` in registration order; empty means defaults."""
    try:
        stmt = (
            select(ChannelFeedModel.feed)
            .where(ChannelFeedModel.channel_id == channel_id)
            .order_by(ChannelFeedModel.position, ChannelFeedModel.feed)
        )
        return list(session.execute(stmt).scalars().all())
    except SQLAlchemyError as exc:
        raise StoreError(f"Failed to read channel feeds: {exc}") from exc


def add_channel_feed(session: Session, channel_id: str, feed: str) -> bool:
    """Append ``feed`` to the channel's explicit list. Returns False if present."""
    with _store_errors(session, "add channel feed"):
        if session.get(ChannelFeedModel, (channel_id, feed)) is not None:
            return False
        last = session.execute(
            select(func.max(ChannelFeedModel.position)).where(
                ChannelFeedModel.channel_id == channel_id
            )
        ).scalar_one_or_none()
        session.add(
            ChannelFeedModel(
                channel_id=channel_id,
                feed=feed,
                position=0 if last is None else last + 1,
            )
        )
    return True


def remove_channel_feed(session: Session, channel_id: str, feed: str) -> bool:
    with _store_errors(session, "remove channel feed"):
        result = session.execute(
            delete(ChannelFeedModel).where(
                ChannelFeedModel.channel_id == channel_id,
                ChannelFeedModel.feed == feed,
            )
        )
    return bool(result.rowcount)
