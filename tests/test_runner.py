import threading
import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from conftest import ATOM_DOCUMENT, RSS_DOCUMENT, make_post
from cplanet.models import FeedResult
from cplanet.runner import RunConfig, execute
import cplanet.runner as runner

NOW = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


def _fake_fetch(posts_by_url, calls=None):
    def fake(feed, http_session, config, session_factory=None):
        if calls is not None:
            calls.append(session_factory)
        posts = posts_by_url.get(feed.url)
        if isinstance(posts, Exception):
            raise posts
        return FeedResult(
            feed=feed,
            title=f"{feed.name} title",
            home=feed.home or feed.url,
            posts=list(posts or []),
        )

    return fake


def test_execute_merges_sorts_and_writes(monkeypatch, planet_config):
    alice, bob = planet_config.feeds
    monkeypatch.setattr(
        runner,
        "fetch_feed_posts",
        _fake_fetch(
            {
                alice.url: [
                    make_post("https://alice.example/1", NOW - timedelta(days=2)),
                    make_post("https://shared.example/x", NOW - timedelta(hours=1)),
                ],
                bob.url: [
                    make_post("https://bob.example/1", NOW - timedelta(hours=3)),
                    make_post("https://shared.example/x", NOW - timedelta(hours=5)),
                ],
            }
        ),
    )

    result = execute(RunConfig(planet=planet_config), now=NOW)

    assert [post.link for post in result.posts] == [
        "https://shared.example/x",
        "https://bob.example/1",
        "https://alice.example/1",
    ]
    assert result.ok
    assert result.written == [output.path for output in planet_config.outputs]
    with open(planet_config.outputs[1].path, encoding="utf-8") as handle:
        rss = handle.read()
    assert rss.count("<item>") == 3


def test_execute_applies_days_and_limit(monkeypatch, planet_config):
    alice, bob = planet_config.feeds
    planet_config.days = 1
    planet_config.limit = 1
    monkeypatch.setattr(
        runner,
        "fetch_feed_posts",
        _fake_fetch(
            {
                alice.url: [
                    make_post("https://alice.example/old", NOW - timedelta(days=2)),
                    make_post("https://alice.example/new", NOW - timedelta(hours=2)),
                ],
                bob.url: [make_post("https://bob.example/newer", NOW - timedelta(hours=1))],
            }
        ),
    )

    result = execute(RunConfig(planet=planet_config, dry_run=True), now=NOW)

    assert [post.link for post in result.posts] == ["https://bob.example/newer"]


def test_execute_survives_failing_feed(monkeypatch, planet_config):
    alice, bob = planet_config.feeds
    monkeypatch.setattr(
        runner,
        "fetch_feed_posts",
        _fake_fetch(
            {
                alice.url: RuntimeError("parser exploded"),
                bob.url: [make_post("https://bob.example/1", NOW)],
            }
        ),
    )

    result = execute(RunConfig(planet=planet_config, dry_run=True), now=NOW)

    assert [post.link for post in result.posts] == ["https://bob.example/1"]
    assert result.feeds[0].posts == []
    assert result.feeds[0].home == alice.url


def test_execute_keeps_configured_feed_order(monkeypatch, planet_config):
    alice, bob = planet_config.feeds
    release_alice = threading.Event()

    def fake(feed, http_session, config, session_factory=None):
        if feed.url == alice.url:
            release_alice.wait(timeout=5)
            time.sleep(0.05)
        else:
            release_alice.set()
        return FeedResult(feed=feed, title=feed.name, home=feed.url)

    monkeypatch.setattr(runner, "fetch_feed_posts", fake)

    result = execute(RunConfig(planet=planet_config, dry_run=True), now=NOW)

    assert [item.feed.url for item in result.feeds] == [alice.url, bob.url]


def test_execute_without_feeds_raises(planet_config):
    planet_config.feeds = []

    with pytest.raises(RuntimeError):
        execute(RunConfig(planet=planet_config, dry_run=True), now=NOW)


def test_execute_rejects_non_positive_days(planet_config):
    planet_config.days = 0

    with pytest.raises(ValueError):
        execute(RunConfig(planet=planet_config, dry_run=True), now=NOW)


def test_execute_passes_cache_session_factory(monkeypatch, tmp_path, planet_config):
    planet_config.cache.enabled = True
    planet_config.cache.connection_string = f"sqlite:///{tmp_path / 'cache.db'}"
    calls = []
    monkeypatch.setattr(runner, "fetch_feed_posts", _fake_fetch({}, calls))

    execute(RunConfig(planet=planet_config, dry_run=True), now=NOW)

    assert len(calls) == 2
    assert all(factory is not None for factory in calls)
    assert (tmp_path / "cache.db").exists()


def test_execute_cache_without_connection_string(monkeypatch, planet_config):
    planet_config.cache.enabled = True
    calls = []
    monkeypatch.setattr(runner, "fetch_feed_posts", _fake_fetch({}, calls))

    execute(RunConfig(planet=planet_config, dry_run=True), now=NOW)

    assert calls == [None, None]


class _DocumentSession:
    def __init__(self, documents):
        self.documents = documents

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def get(self, url, headers=None, timeout=None, allow_redirects=True):
        return SimpleNamespace(
            status_code=200,
            content=self.documents[url],
            headers={},
            raise_for_status=lambda: None,
        )


def test_execute_end_to_end_with_real_documents(monkeypatch, planet_config):
    alice, bob = planet_config.feeds
    monkeypatch.setattr(
        runner,
        "build_session",
        lambda config: _DocumentSession({alice.url: RSS_DOCUMENT, bob.url: ATOM_DOCUMENT}),
    )

    result = execute(RunConfig(planet=planet_config), now=NOW)

    assert [post.link for post in result.posts] == [
        "https://bob.example/entry",
        "https://alice.example/2",
        "https://alice.example/1",
    ]
    assert result.feeds[0].home == "https://alice.example/"
    with open(planet_config.outputs[3].path, encoding="utf-8") as handle:
        opml = handle.read()
    assert 'htmlUrl="https://alice.example/"' in opml
    with open(planet_config.outputs[2].path, encoding="utf-8") as handle:
        atom = handle.read()
    assert atom.count("<entry>") == 3


def test_execute_with_in_memory_cache_and_real_documents(monkeypatch, planet_config):
    alice, bob = planet_config.feeds
    planet_config.cache.enabled = True
    planet_config.cache.connection_string = "sqlite://"
    planet_config.concurrency = 2
    opened = []

    def build_session(config):
        http_session = _DocumentSession({alice.url: RSS_DOCUMENT, bob.url: ATOM_DOCUMENT})
        opened.append(http_session)
        return http_session

    monkeypatch.setattr(runner, "build_session", build_session)

    result = execute(RunConfig(planet=planet_config, dry_run=True), now=NOW)

    assert len(result.posts) == 3
    assert [len(item.posts) for item in result.feeds] == [2, 1]
    assert len(opened) == 2
    assert opened[0] is not opened[1]
