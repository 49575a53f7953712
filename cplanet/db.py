"""Database abstraction layer for caching fetched feeds between runs."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    Column,
    DateTime,
    String,
    Text,
    create_engine,
    delete,
    select,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Post

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class FeedStateModel(Base):
    """HTTP validators and metadata from the last successful fetch of a feed."""

    __tablename__ = "feed_states"

    url = Column(String, primary_key=True)
    etag = Column(String, nullable=True)
    modified = Column(String, nullable=True)
    title = Column(String, nullable=True)
    link = Column(String, nullable=True)
    fetched_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))


class PostModel(Base):
    """Cached post belonging to a feed."""

    __tablename__ = "posts"

    feed_url = Column(String, primary_key=True)
    link = Column(String, primary_key=True)
    title = Column(String, nullable=True)
    feed_name = Column(String, nullable=True)
    name = Column(String, nullable=True)
    author = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    permalink = Column(String, nullable=True)
    tags = Column(Text, nullable=True)
    published = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))


def init_engine(connection_string: Optional[str]) -> Optional[Engine]:
    """Initialize the database engine."""
    if not connection_string:
        return None

    logger.info("Initializing feed cache: %s", connection_string)
    url = make_url(connection_string)
    if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
        # One shared connection, or each worker thread sees its own empty database.
        engine = create_engine(
            url, poolclass=StaticPool, connect_args={"check_same_thread": False}
        )
    else:
        engine = create_engine(connection_string)
    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return a session factory for the given engine."""
    return sessionmaker(bind=engine)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def get_feed_state(session: Session, url: str) -> Optional[dict]:
    """Retrieve the stored validators for a feed."""
    stmt = select(FeedStateModel).where(FeedStateModel.url == url)
    result = session.execute(stmt).scalar_one_or_none()
    if not result:
        return None

    return {
        "url": result.url,
        "etag": result.etag,
        "modified": result.modified,
        "title": result.title,
        "link": result.link,
        "fetched_at": _as_utc(result.fetched_at),
    }


def _stage_feed_state(session: Session, data: dict) -> None:
    url = data["url"]

    stmt = select(FeedStateModel).where(FeedStateModel.url == url)
    existing = session.execute(stmt).scalar_one_or_none()

    if existing:
        existing.etag = data.get("etag")
        existing.modified = data.get("modified")
        existing.title = data.get("title")
        existing.link = data.get("link")
        existing.fetched_at = datetime.now(timezone.utc)
    else:
        session.add(
            FeedStateModel(
                url=url,
                etag=data.get("etag"),
                modified=data.get("modified"),
                title=data.get("title"),
                link=data.get("link"),
                fetched_at=datetime.now(timezone.utc),
            )
        )


def get_posts(session: Session, feed_url: str) -> List[Post]:
    """Return the cached posts of a feed, newest first."""
    stmt = (
        select(PostModel)
        .where(PostModel.feed_url == feed_url)
        .order_by(PostModel.published.desc())
    )
    posts: List[Post] = []
    for row in session.execute(stmt).scalars().all():
        posts.append(
            Post(
                link=row.link,
                title=row.title or "",
                feed_name=row.feed_name or "",
                name=row.name or "",
                published=_as_utc(row.published),
                author=row.author,
                description=row.description,
                permalink=row.permalink,
                tags=json.loads(row.tags) if row.tags else [],
            )
        )
    return posts


def _stage_posts(session: Session, feed_url: str, posts: List[Post]) -> None:
    session.execute(delete(PostModel).where(PostModel.feed_url == feed_url))

    seen_links = set()
    for post in posts:
        if post.link in seen_links:
            continue
        seen_links.add(post.link)
        session.add(
            PostModel(
                feed_url=feed_url,
                link=post.link,
                title=post.title,
                feed_name=post.feed_name,
                name=post.name,
                author=post.author,
                description=post.description,
                permalink=post.permalink,
                tags=json.dumps(post.tags, ensure_ascii=False),
                published=post.published,
                updated_at=datetime.now(timezone.utc),
            )
        )


def store_feed(session: Session, state: dict, posts: List[Post]) -> None:
    """Replace a feed's posts and validators in a single transaction."""
    _stage_posts(session, state["url"], posts)
    _stage_feed_state(session, state)
    try:
        session.commit()
    except Exception:
        session.rollback()
        raise
