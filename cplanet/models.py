"""Shared data models for cplanet."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

OUTPUT_TYPES = ("HTML", "RSS", "ATOM", "OPML")


@dataclass
class FeedConfig:
    """A single subscribed feed."""

    name: str
    url: str
    home: Optional[str] = None


@dataclass
class OutputConfig:
    """One generated document: where it goes and how it is rendered."""

    path: str
    type: str = "HTML"
    template: Optional[str] = None


@dataclass
class Post:
    """Aggregated feed entry used throughout the app."""

    link: str
    title: str
    feed_name: str
    name: str
    published: datetime
    author: Optional[str] = None
    description: Optional[str] = None
    permalink: Optional[str] = None
    tags: List[str] = field(default_factory=list)


@dataclass
class FeedResult:
    """Outcome of fetching one subscription."""

    feed: FeedConfig
    title: str
    home: str
    posts: List[Post] = field(default_factory=list)
    from_cache: bool = False
