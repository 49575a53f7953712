"""Jinja2 environment for cplanet templates."""

from __future__ import annotations

from importlib import resources
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, Template, select_autoescape
from markupsafe import Markup, escape

DEFAULT_TEMPLATES = {
    "HTML": "cplanet.html.j2",
    "RSS": "cplanet.rss.j2",
    "ATOM": "cplanet.atom.j2",
    "OPML": "cplanet.opml.j2",
}

_ENV: Environment | None = None


def _html_escape(value: str | None) -> Markup:
    """Escape markup exactly once, for HTML carried inside XML text nodes."""
    if not value:
        return Markup("")
    return escape(value)


def _cdata(value: str | None) -> Markup:
    """Wrap a value in a CDATA section, splitting any embedded terminator."""
    text = str(value or "").replace("]]>", "]]]]><![CDATA[>")
    return Markup(f"<![CDATA[{text}]]>")


def get_environment() -> Environment:
    """Return a cached Jinja environment configured for package templates."""
    global _ENV
    if _ENV is None:
        template_dir = resources.files(__package__) / "templates"
        loader = FileSystemLoader(str(template_dir))
        _ENV = Environment(
            loader=loader,
            autoescape=select_autoescape(
                ["html", "xml", "j2"], default_for_string=True, default=True
            ),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        _ENV.filters["html_escape"] = _html_escape
        _ENV.filters["cdata"] = _cdata
    return _ENV


def load_template(output_type: str, path: str | None = None) -> Template:
    """Return the user template at ``path`` or the bundled one for ``output_type``."""
    env = get_environment()
    if path:
        location = Path(path)
        overlay = env.overlay(loader=FileSystemLoader(str(location.parent)))
        return overlay.get_template(location.name)
    try:
        name = DEFAULT_TEMPLATES[output_type.upper()]
    except KeyError:
        raise ValueError(f"No bundled template for output type {output_type!r}")
    return env.get_template(name)
