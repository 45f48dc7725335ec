from datetime import datetime, timedelta, timezone

from rss_huddle import db
from rss_huddle.dedup import (
    SeenStore,
    collect_latest,
    fresh_since_last_tick,
    select_fresh,
)
from rss_huddle.feeds import item_hash

from conftest import make_item

FEED_A = "https://a.example.com/rss"


def _fetcher(mapping, calls=None):
    def fetch(url):
        if calls is not None:
            calls.append(url)
        return list(mapping.get(url, []))

    return fetch


def test_fresh_returns_newest_first_then_nothing(session_factory):
    store = SeenStore(session_factory)
    x = make_item("http://a/1", title="X", minutes=1)
    y = make_item("http://a/2", title="Y", minutes=2)
    fetch = _fetcher({FEED_A: [x, y]})

    first = fresh_since_last_tick(store, FEED_A, 2, fetch=fetch)
    second = fresh_since_last_tick(store, FEED_A, 2, fetch=fetch)

    assert [item.title for item in first] == ["Y", "X"]
    assert second == []


def test_fresh_bounds_first_poll_burst(session_factory):
    store = SeenStore(session_factory)
    backlog = [make_item(f"http://a/{index}", minutes=index) for index in range(50)]

    fresh = select_fresh(store, FEED_A, backlog, limit=2)

    assert [item.link for item in fresh] == ["http://a/49", "http://a/48"]
    with session_factory() as session:
        assert db.count_seen(session) == 2
    assert not store.has_seen(FEED_A, item_hash("http://a/47"))


def test_fresh_delivers_remaining_backlog_on_later_ticks(session_factory):
    store = SeenStore(session_factory)
    backlog = [make_item(f"http://a/{index}", minutes=index) for index in range(3)]

    first = select_fresh(store, FEED_A, backlog, limit=2)
    second = select_fresh(store, FEED_A, backlog, limit=2)

    assert [item.link for item in first] == ["http://a/2", "http://a/1"]
    assert [item.link for item in second] == ["http://a/0"]


def test_fresh_seen_state_is_per_feed(session_factory):
    store = SeenStore(session_factory)
    item = make_item("http://shared/1")

    assert select_fresh(store, FEED_A, [item], limit=2) == [item]
    assert select_fresh(store, "https://b.example.com/rss", [item], limit=2) == [item]
    assert select_fresh(store, FEED_A, [item], limit=2) == []


def test_fresh_uses_guid_when_link_missing(session_factory):
    store = SeenStore(session_factory)
    item = make_item(None, guid="urn:item:7")
    anonymous = make_item(None, title="No identity")

    assert select_fresh(store, FEED_A, [item, anonymous], limit=5) == [item]
    assert store.has_seen(FEED_A, item_hash("urn:item:7"))


def test_collect_latest_merges_feeds_without_touching_seen(session_factory):
    calls = []
    fetch = _fetcher(
        {
            FEED_A: [make_item("http://a/1", minutes=1), make_item("http://x/1", minutes=5)],
            "https://b.example.com/rss": [
                make_item("http://b/1", minutes=3),
                make_item("http://x/1", title="Duplicate", minutes=4),
            ],
        },
        calls,
    )

    first = collect_latest([FEED_A, "https://b.example.com/rss"], 3, fetch=fetch)
    second = collect_latest([FEED_A, "https://b.example.com/rss"], 3, fetch=fetch)

    assert [item.link for item in first] == ["http://x/1", "http://b/1", "http://a/1"]
    assert first[0].title == "Headline"
    assert [item.link for item in second] == [item.link for item in first]
    assert calls == [FEED_A, "https://b.example.com/rss"] * 2
    with session_factory() as session:
        assert db.count_seen(session) == 0


def test_collect_latest_applies_predicate_before_limit():
    fetch = _fetcher(
        {
            FEED_A: [
                make_item("http://a/1", title="Trade rumor", minutes=3),
                make_item("http://a/2", title="Ankle injury update", minutes=2),
                make_item("http://a/3", title="Another injury", minutes=1),
            ]
        }
    )

    items = collect_latest(
        [FEED_A], 1, fetch=fetch, predicate=lambda item: "injury" in item.title
    )

    assert [item.link for item in items] == ["http://a/2"]


def test_fresh_refreshes_seen_items_still_listed(session_factory):
    store = SeenStore(session_factory)
    long_ago = datetime.now(timezone.utc) - timedelta(days=90)
    store.mark_seen(FEED_A, item_hash("http://a/old"), seen_at=long_ago)
    items = [make_item("http://a/old", minutes=1), make_item("http://a/new", minutes=2)]

    fresh = select_fresh(store, FEED_A, items, limit=5)

    assert [item.link for item in fresh] == ["http://a/new"]
    assert store.prune(max_age=timedelta(days=30)) == 0
    assert store.has_seen(FEED_A, item_hash("http://a/old"))
