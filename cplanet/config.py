"""Configuration loading for the planet and its subscriptions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
from xml.etree import ElementTree as ET

from .dates import DEFAULT_DATE_FORMAT
from .models import OUTPUT_TYPES, FeedConfig, OutputConfig

logger = logging.getLogger(__name__)


@dataclass
class FetchConfig:
    timeout: float = 30.0
    connect_timeout: float = 10.0
    retries: int = 3
    backoff_factor: float = 0.5


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None
    syslog: bool = False


@dataclass
class CacheConfig:
    enabled: bool = False
    connection_string: Optional[str] = None


@dataclass
class PlanetConfig:
    name: str
    description: str = ""
    url: str = ""
    feeds: List[FeedConfig] = field(default_factory=list)
    outputs: List[OutputConfig] = field(default_factory=list)
    days: Optional[float] = None
    limit: Optional[int] = None
    date_format: str = DEFAULT_DATE_FORMAT
    concurrency: int = 10
    fetch: FetchConfig = field(default_factory=FetchConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)


def parse_feeds_config(path: str) -> List[FeedConfig]:
    """Parse an OPML subscription list and return feed definitions."""
    logger.info("Loading feed subscriptions from %s", path)
    tree = ET.parse(path)
    root = tree.getroot()
    body = root.find("body")
    feeds: List[FeedConfig] = []

    def walk(outline: ET.Element) -> None:
        title = outline.attrib.get("text") or outline.attrib.get("title")
        feed_url = outline.attrib.get("xmlUrl")
        outline_type = (outline.attrib.get("type") or "rss").lower()

        if feed_url and outline_type in ("rss", "atom"):
            feeds.append(
                FeedConfig(
                    name=title or feed_url,
                    url=feed_url,
                    home=outline.attrib.get("htmlUrl") or None,
                )
            )
            logger.debug("Registered feed '%s' (%s)", feeds[-1].name, feed_url)
            return

        for child in outline.findall("outline"):
            walk(child)

    if body is None:
        raise ValueError(f"{path} is missing the <body> section.")

    for outline in body.findall("outline"):
        walk(outline)

    logger.info("Loaded %d feeds from %s", len(feeds), path)
    return feeds


def _resolve_path(base_path: Path, target_path: str) -> str:
    """Resolve a path relative to the base config file if it's not absolute."""
    target = Path(target_path)
    if target.is_absolute():
        return str(target)
    return str((base_path.parent / target).resolve())


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("true", "yes", "1", "on")


def _positive_number(root: ET.Element, tag: str, cast):
    text = root.findtext(tag)
    if text is None or not text.strip():
        return None
    try:
        value = cast(text.strip())
    except ValueError:
        raise ValueError(f"<{tag}> must be a number, got {text.strip()!r}")
    if value <= 0:
        raise ValueError(f"<{tag}> must be positive.")
    return value


def _parse_feeds(config_path: Path, feeds_node: Optional[ET.Element]) -> List[FeedConfig]:
    if feeds_node is None:
        return []

    feeds: List[FeedConfig] = []
    for node in feeds_node.findall("feed"):
        url = node.attrib.get("url")
        if not url:
            raise ValueError("Every <feed> element needs a 'url' attribute.")
        feeds.append(
            FeedConfig(
                name=node.attrib.get("name") or url,
                url=url,
                home=node.attrib.get("home") or None,
            )
        )

    opml = feeds_node.attrib.get("opml")
    if opml:
        feeds.extend(parse_feeds_config(_resolve_path(config_path, opml)))

    unique: List[FeedConfig] = []
    seen_urls = set()
    for feed in feeds:
        if feed.url in seen_urls:
            logger.debug("Ignoring duplicate subscription %s", feed.url)
            continue
        seen_urls.add(feed.url)
        unique.append(feed)
    return unique


def _parse_outputs(
    config_path: Path, outputs_node: Optional[ET.Element]
) -> List[OutputConfig]:
    outputs: List[OutputConfig] = []
    if outputs_node is None:
        return outputs

    for node in outputs_node.findall("output"):
        path = node.attrib.get("path")
        if not path:
            raise ValueError("Every <output> element needs a 'path' attribute.")
        output_type = node.attrib.get("type", "html").upper()
        if output_type not in OUTPUT_TYPES:
            raise ValueError(
                f"Unsupported output type {output_type!r}; "
                f"expected one of {', '.join(OUTPUT_TYPES)}."
            )
        template = node.attrib.get("template")
        outputs.append(
            OutputConfig(
                path=_resolve_path(config_path, path),
                type=output_type,
                template=_resolve_path(config_path, template) if template else None,
            )
        )
    return outputs


def parse_app_config(path: str) -> PlanetConfig:
    """Parse the main planet configuration XML."""
    config_path = Path(path).resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    logger.info("Loading planet configuration from %s", config_path)
    tree = ET.parse(config_path)
    root = tree.getroot()

    name = (root.findtext("name") or "").strip()
    if not name:
        raise ValueError("Config missing <name>")

    outputs = _parse_outputs(config_path, root.find("outputs"))
    if not outputs:
        raise ValueError("Config declares no <output> entries")

    url = (root.findtext("url") or "").strip().rstrip("/")
    if not url and any(output.type == "ATOM" for output in outputs):
        raise ValueError("Config missing <url>, required by Atom outputs for the feed id")

    concurrency = int(root.findtext("concurrency", "10"))
    if concurrency < 1:
        raise ValueError("<concurrency> must be at least 1.")

    # Fetch
    fetch_node = root.find("fetch")
    fetch = FetchConfig()
    if fetch_node is not None:
        fetch.timeout = float(fetch_node.findtext("timeout", str(fetch.timeout)))
        fetch.connect_timeout = float(
            fetch_node.findtext("connect-timeout", str(fetch.connect_timeout))
        )
        fetch.retries = int(fetch_node.findtext("retries", str(fetch.retries)))
        fetch.backoff_factor = float(
            fetch_node.findtext("backoff-factor", str(fetch.backoff_factor))
        )
        if fetch.retries < 0:
            raise ValueError("<retries> cannot be negative.")

    # Logging
    log_node = root.find("logging")
    logging_config = LoggingConfig()
    if log_node is not None:
        logging_config.level = log_node.findtext("level", "INFO")
        log_file = log_node.findtext("file")
        if log_file:
            logging_config.file = _resolve_path(config_path, log_file)
        logging_config.syslog = _parse_bool(log_node.findtext("syslog"))

    # Cache
    cache_node = root.find("cache")
    cache = CacheConfig()
    if cache_node is not None:
        cache.enabled = _parse_bool(cache_node.findtext("enabled"))
        cache.connection_string = cache_node.findtext("connection-string")

    return PlanetConfig(
        name=name,
        description=(root.findtext("description") or "").strip(),
        url=url,
        feeds=_parse_feeds(config_path, root.find("feeds")),
        outputs=outputs,
        days=_positive_number(root, "days", float),
        limit=_positive_number(root, "limit", int),
        date_format=root.findtext("date-format") or DEFAULT_DATE_FORMAT,
        concurrency=concurrency,
        fetch=fetch,
        logging=logging_config,
        cache=cache,
    )
