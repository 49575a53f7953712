"""Feed fetching, parsing and post selection helpers."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

import feedparser
import requests
from bs4 import BeautifulSoup
from requests.adapters import HTTPAdapter
from sqlalchemy.exc import SQLAlchemyError
from urllib3.util.retry import Retry

from . import __version__, db
from .config import FetchConfig
from .dates import to_datetime
from .models import FeedConfig, FeedResult, Post

logger = logging.getLogger(__name__)

USER_AGENT = f"cplanet/{__version__}"
RETRY_STATUSES = (429, 500, 502, 503, 504)


@dataclass
class FeedDocument:
    """Raw HTTP answer for a feed."""

    status: int
    content: bytes = b""
    etag: Optional[str] = None
    modified: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)


def build_session(config: Optional[FetchConfig] = None) -> requests.Session:
    """Return a session that retries transient failures with exponential backoff."""
    config = config or FetchConfig()
    retry = Retry(
        total=config.retries,
        connect=config.retries,
        read=config.retries,
        status=config.retries,
        backoff_factor=config.backoff_factor,
        status_forcelist=RETRY_STATUSES,
        allowed_methods=frozenset(["GET", "HEAD"]),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session = requests.Session()
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({"User-Agent": USER_AGENT})
    return session


def download_feed(
    feed: FeedConfig,
    session: requests.Session,
    config: Optional[FetchConfig] = None,
    state: Optional[dict] = None,
) -> Optional[FeedDocument]:
    """Download a feed document, or return ``None`` when it cannot be retrieved."""
    config = config or FetchConfig()
    headers = {}
    if state:
        if state.get("etag"):
            headers["If-None-Match"] = state["etag"]
        if state.get("modified"):
            headers["If-Modified-Since"] = state["modified"]

    logger.info("Fetching feed '%s' (%s)", feed.name, feed.url)
    try:
        response = session.get(
            feed.url,
            headers=headers,
            timeout=(config.connect_timeout, config.timeout),
            allow_redirects=True,
        )
        if response.status_code == 304:
            logger.info("Feed '%s' not modified since last run", feed.name)
            return FeedDocument(status=304)
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("An error occurred while fetching %s: %s", feed.url, exc)
        return None

    if not response.content:
        logger.warning("Feed %s returned an empty document", feed.url)
        return None

    return FeedDocument(
        status=response.status_code,
        content=response.content,
        etag=response.headers.get("ETag"),
        modified=response.headers.get("Last-Modified"),
        headers=dict(response.headers),
    )


def _strip_html(raw_value: str) -> str:
    """Return text content extracted from HTML fragments."""
    if "<" not in raw_value and "&" not in raw_value:
        return re.sub(r"\s+", " ", raw_value).strip()
    soup = BeautifulSoup(raw_value, "html.parser")
    text = soup.get_text(separator=" ", strip=True)
    text = re.sub(r"\s+([.,;:!?])", r"\1", text)
    text = re.sub(r"\s{2,}", " ", text)
    return text.strip()


def _entry_description(entry) -> Optional[str]:
    content = getattr(entry, "content", None)
    if content:
        try:
            value = content[0].get("value")
        except (TypeError, KeyError, IndexError, AttributeError):
            value = None
        if value:
            return value

    summary = getattr(entry, "summary", None)
    if summary:
        return summary

    summary_detail = getattr(entry, "summary_detail", None)
    if summary_detail:
        return summary_detail.get("value") or None
    return None


def _entry_tags(entry) -> List[str]:
    tags: List[str] = []
    for tag in getattr(entry, "tags", None) or []:
        term = tag.get("term") if hasattr(tag, "get") else None
        if term and term.strip():
            tags.append(term.strip())
    return tags


def _entry_published(entry) -> Optional[datetime]:
    for attr in ("published_parsed", "updated_parsed", "created_parsed"):
        value = to_datetime(getattr(entry, attr, None))
        if value is not None:
            return value
    return None


def _entry_permalink(entry, link: str) -> Optional[str]:
    entry_id = getattr(entry, "id", None)
    if not entry_id or entry_id == link:
        return None
    if entry_id.startswith(("http://", "https://")):
        return entry_id
    return None


def entry_to_post(entry, feed: FeedConfig, feed_title: str) -> Optional[Post]:
    """Convert a parsed entry into a :class:`Post`, or ``None`` when unusable."""
    link = getattr(entry, "link", None)
    if not link:
        logger.debug("Skipping entry without link in feed '%s'", feed.url)
        return None

    published = _entry_published(entry)
    if published is None:
        logger.warning(
            "Invalid date format in the %s feed: skipping %s", feed.name, link
        )
        return None

    title = getattr(entry, "title", None) or ""
    author = getattr(entry, "author", None)
    if author:
        author = _strip_html(author) or None

    return Post(
        link=link,
        title=_strip_html(title),
        feed_name=feed_title,
        name=feed.name,
        published=published,
        author=author,
        description=_entry_description(entry),
        permalink=_entry_permalink(entry, link),
        tags=_entry_tags(entry),
    )


def parse_feed(
    feed: FeedConfig, content: bytes, headers: Optional[Dict[str, str]] = None
) -> Tuple[str, Optional[str], List[Post]]:
    """Parse a feed document; return its title, its site link and its posts."""
    parsed = feedparser.parse(content, response_headers=headers or {})

    if getattr(parsed, "bozo", False):
        logger.warning(
            "Feed '%s' is not well formed (%s); using recovered entries",
            feed.url,
            getattr(parsed, "bozo_exception", "unknown error"),
        )

    info = getattr(parsed, "feed", None)
    raw_title = getattr(info, "title", None) if info is not None else None
    title = _strip_html(raw_title) if raw_title else feed.name
    site_link = getattr(info, "link", None) if info is not None else None

    entries = list(getattr(parsed, "entries", None) or [])
    if not entries:
        logger.warning("No entries found in feed '%s'", feed.url)

    posts: List[Post] = []
    for entry in entries:
        post = entry_to_post(entry, feed, title)
        if post is not None:
            posts.append(post)

    logger.info("Collected %d posts from feed '%s'", len(posts), feed.url)
    return title, site_link or None, posts


def _cached_result(feed: FeedConfig, session_factory, state: Optional[dict]) -> FeedResult:
    if session_factory is None or state is None:
        return FeedResult(feed=feed, title=feed.name, home=feed.home or feed.url)

    with session_factory() as session:
        posts = db.get_posts(session, feed.url)
    logger.info("Using %d cached posts for feed '%s'", len(posts), feed.name)
    return FeedResult(
        feed=feed,
        title=state.get("title") or feed.name,
        home=feed.home or state.get("link") or feed.url,
        posts=posts,
        from_cache=True,
    )


def fetch_feed_posts(
    feed: FeedConfig,
    session: requests.Session,
    config: Optional[FetchConfig] = None,
    session_factory=None,
) -> FeedResult:
    """Fetch and parse one subscription, falling back to the cache on failure."""
    state = None
    if session_factory is not None:
        with session_factory() as db_session:
            state = db.get_feed_state(db_session, feed.url)

    document = download_feed(feed, session, config, state)
    if document is None or document.status == 304:
        return _cached_result(feed, session_factory, state)

    title, site_link, posts = parse_feed(feed, document.content, document.headers)

    if session_factory is not None:
        state = {
            "url": feed.url,
            "etag": document.etag,
            "modified": document.modified,
            "title": title,
            "link": site_link,
        }
        try:
            with session_factory() as db_session:
                db.store_feed(db_session, state, posts)
        except SQLAlchemyError as exc:
            logger.warning("Failed to cache feed %s: %s", feed.url, exc)

    return FeedResult(
        feed=feed,
        title=title,
        home=feed.home or site_link or feed.url,
        posts=posts,
    )


def select_recent_posts(
    posts: Iterable[Post],
    cutoff: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> List[Post]:
    """Return the newest unique posts respecting an optional cutoff and limit."""
    sorted_posts = sorted(posts, key=lambda item: item.published, reverse=True)
    seen_links = set()
    unique_posts: List[Post] = []

    for post in sorted_posts:
        if cutoff and post.published <= cutoff:
            logger.debug(
                "Skipping post older than cutoff (%s <= %s): %s",
                post.published,
                cutoff,
                post.link,
            )
            continue
        if post.link in seen_links:
            continue
        unique_posts.append(post)
        seen_links.add(post.link)
        if limit is not None and len(unique_posts) >= limit:
            break

    logger.info("Selected %d unique recent posts", len(unique_posts))
    return unique_posts
