"""Rendering helpers for the generated planet documents."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from jinja2 import TemplateError

from . import __version__
from .config import PlanetConfig
from .dates import format_for_output, format_iso8601, format_rfc822
from .models import FeedResult, OutputConfig, Post
from .templating import load_template

logger = logging.getLogger(__name__)


def output_links(outputs: Sequence[OutputConfig]) -> Dict[str, str]:
    """Map each output type to the file name of its first configured output."""
    links: Dict[str, str] = {}
    for output in outputs:
        links.setdefault(output.type.upper(), Path(output.path).name)
    return links


def _post_context(post: Post, output_type: str, date_format: str) -> dict:
    return {
        "Name": post.name,
        "FeedName": post.feed_name,
        "Title": post.title,
        "Link": post.link,
        "Permalink": post.permalink,
        "Author": post.author,
        "Description": post.description or "",
        "Date": format_rfc822(post.published),
        "DateISO8601": format_iso8601(post.published),
        "FormatedDate": format_for_output(post.published, output_type, date_format),
        "Tags": [{"Tag": tag} for tag in post.tags],
    }


def build_context(
    config: PlanetConfig,
    feeds: Sequence[FeedResult],
    posts: Sequence[Post],
    output_type: str,
    generated_at: Optional[datetime] = None,
) -> dict:
    """Assemble the ``CPlanet`` template context for one output type."""
    generated_at = generated_at or datetime.now(timezone.utc)
    return {
        "CPlanet": {
            "Name": config.name,
            "Description": config.description,
            "URL": config.url,
            "Version": __version__,
            "DateFormat": config.date_format,
            "GenerationDate": format_for_output(
                generated_at, output_type, config.date_format
            ),
            "GenerationDateISO8601": format_iso8601(generated_at),
            "Links": output_links(config.outputs),
            "Feed": [
                {"Name": result.feed.name, "Home": result.home, "URL": result.feed.url}
                for result in feeds
            ],
            "Posts": [
                _post_context(post, output_type, config.date_format) for post in posts
            ],
        }
    }


def render_output(output: OutputConfig, context: dict) -> str:
    """Render a single output document to a string."""
    template = load_template(output.type, output.template)
    return template.render(**context)


def write_output(path: str, content: str) -> None:
    """Write a rendered document, creating parent directories as needed."""
    location = Path(path)
    if location.parent and not location.parent.exists():
        location.parent.mkdir(parents=True, exist_ok=True)
    location.write_text(content, encoding="utf-8")
    logger.info("Wrote %s (%d bytes)", location, len(content.encode("utf-8")))


def generate_outputs(
    config: PlanetConfig,
    feeds: Sequence[FeedResult],
    posts: Sequence[Post],
    generated_at: Optional[datetime] = None,
    dry_run: bool = False,
) -> Dict[str, List[str]]:
    """Render and write every configured output; report written and failed paths."""
    generated_at = generated_at or datetime.now(timezone.utc)
    written: List[str] = []
    failed: List[str] = []

    for output in config.outputs:
        context = build_context(config, feeds, posts, output.type, generated_at)
        try:
            content = render_output(output, context)
            if dry_run:
                logger.info("Dry run: would write %s", output.path)
            else:
                write_output(output.path, content)
            written.append(output.path)
        except (TemplateError, OSError):
            logger.exception("Failed to generate %s output %s", output.type, output.path)
            failed.append(output.path)

    return {"written": written, "failed": failed}
