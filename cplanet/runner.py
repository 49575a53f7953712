"""High-level orchestration for a cplanet generation run."""

from __future__ import annotations

import concurrent.futures
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from itertools import chain
from typing import List, Optional

from . import db
from .config import PlanetConfig
from .feeds import build_session, fetch_feed_posts, select_recent_posts
from .models import FeedResult, Post
from .renderers import generate_outputs

logger = logging.getLogger(__name__)


@dataclass
class RunConfig:
    """Runtime options for executing one generation run."""

    planet: PlanetConfig
    dry_run: bool = False


@dataclass
class RunResult:
    """Returned data after executing a run."""

    feeds: List[FeedResult]
    posts: List[Post]
    written: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def _collect_feeds(config: PlanetConfig, session_factory=None) -> List[FeedResult]:
    feeds = config.feeds
    if not feeds:
        raise RuntimeError("No feeds found in the configuration.")

    results = {}

    def process_feed(feed):
        try:
            # requests sessions are not thread-safe; one per feed.
            with build_session(config.fetch) as http_session:
                return fetch_feed_posts(
                    feed, http_session, config.fetch, session_factory=session_factory
                )
        except Exception:
            logger.exception("Failed to process feed %s", feed.url)
            return FeedResult(feed=feed, title=feed.name, home=feed.home or feed.url)

    with concurrent.futures.ThreadPoolExecutor(
        max_workers=config.concurrency
    ) as executor:
        future_to_feed = {executor.submit(process_feed, feed): feed for feed in feeds}
        for future in concurrent.futures.as_completed(future_to_feed):
            feed = future_to_feed[future]
            results[feed.url] = future.result()

    # Completion order is arbitrary; keep the configured order.
    ordered = [results[feed.url] for feed in feeds]

    empty = [result.feed.url for result in ordered if not result.posts]
    if empty:
        logger.warning("%d feed(s) contributed no posts: %s", len(empty), ", ".join(empty))
    return ordered


def _build_cutoff(days: Optional[float], now: datetime) -> Optional[datetime]:
    if days is None:
        return None
    if days <= 0:
        raise ValueError("days must be positive.")
    cutoff = now - timedelta(days=days)
    logger.info("Applying post cutoff: newer than %s", cutoff)
    return cutoff


def execute(config: RunConfig, now: Optional[datetime] = None) -> RunResult:
    """Fetch every feed, merge the posts and generate all outputs."""
    planet = config.planet
    now = now or datetime.now(timezone.utc)

    session_factory = None
    if planet.cache.enabled:
        if not planet.cache.connection_string:
            logger.warning(
                "Cache enabled but no connection string provided. Caching disabled."
            )
        else:
            engine = db.init_engine(planet.cache.connection_string)
            if engine:
                session_factory = db.get_session_factory(engine)

    cutoff = _build_cutoff(planet.days, now)
    feeds = _collect_feeds(planet, session_factory=session_factory)

    posts = select_recent_posts(
        chain.from_iterable(result.posts for result in feeds),
        cutoff=cutoff,
        limit=planet.limit,
    )
    logger.info("Merged %d posts from %d feeds", len(posts), len(feeds))

    report = generate_outputs(
        planet, feeds, posts, generated_at=now, dry_run=config.dry_run
    )

    return RunResult(
        feeds=feeds,
        posts=posts,
        written=report["written"],
        failed=report["failed"],
    )
