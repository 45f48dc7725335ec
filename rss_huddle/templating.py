"""Jinja2 environment for rss_huddle message templates."""

from __future__ import annotations

from datetime import datetime
from importlib import resources

from jinja2 import Environment, FileSystemLoader, select_autoescape

_ENV: Environment | None = None


def _timestamp(value: datetime | None) -> str:
    """Render an aware datetime as a short UTC timestamp."""
    if value is None:
        return "never"
    return value.strftime("%Y-%m-%d %H:%M:%S UTC")


def _duration(seconds: float | None) -> str:
    """Render a number of seconds as ``1h 2m 3s``."""
    if seconds is None:
        return "n/a"
    remaining = max(0, int(round(seconds)))
    hours, remaining = divmod(remaining, 3600)
    minutes, secs = divmod(remaining, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def get_environment() -> Environment:
    """Return a cached Jinja environment configured for package templates."""
    global _ENV
    if _ENV is None:
        template_dir = resources.files(__package__) / "templates"
        loader = FileSystemLoader(str(template_dir))
        _ENV = Environment(
            loader=loader,
            autoescape=select_autoescape(["html", "xml"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        _ENV.filters["timestamp"] = _timestamp
        _ENV.filters["duration"] = _duration
    return _ENV
