"""Configuration loading: app settings, OPML feed lists and secrets."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional
from xml.etree import ElementTree as ET

from .errors import ConfigError
from .models import FeedConfig, Team

logger = logging.getLogger(__name__)

DEFAULT_INJURY_KEYWORDS = [
    "injury",
    "injured",
    "injuries",
    "questionable",
    "doubtful",
    "out for",
    "ruled out",
    "ir",
    "injured reserve",
    "concussion",
    "hamstring",
    "ankle",
    "knee",
    "acl",
    "limited",
    "did not practice",
]


@dataclass
class QueryConfig:
    default_count: int = 3
    max_count: int = 5


@dataclass
class RetentionConfig:
    max_per_feed: Optional[int] = 500
    max_age_days: Optional[float] = 30.0


@dataclass
class FeedHealthConfig:
    enabled: bool = True
    failure_threshold: int = 3
    base_backoff_seconds: float = 300.0
    max_backoff_seconds: float = 3600.0


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class DatabaseConfig:
    connection_string: str = "sqlite:///state.db"


@dataclass
class AppConfig:
    feeds_file: str
    env_file: Optional[str] = None
    teams_file: Optional[str] = None
    poll_seconds: float = 90
    per_feed_limit: int = 2
    send_delay_ms: int = 700
    request_timeout: float = 10.0
    fantasy_source: Optional[str] = "rotowire"
    injury_keywords: List[str] = field(
        default_factory=lambda: list(DEFAULT_INJURY_KEYWORDS)
    )
    query: QueryConfig = field(default_factory=QueryConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    feed_health: FeedHealthConfig = field(default_factory=FeedHealthConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)


def parse_feeds_config(path: str) -> List[FeedConfig]:
    """Parse the OPML configuration file and return feed definitions.

    The enclosing outline's title becomes the feed's category, which doubles
    as the source key accepted by ``/nfl source:<key>``.
    """
    logger.info("Loading feed configuration from %s", path)
    tree = ET.parse(path)
    root = tree.getroot()
    body = root.find("body")
    feeds: List[FeedConfig] = []

    def walk(outline: ET.Element, current_category: Optional[str]) -> None:
        title = outline.attrib.get("title") or outline.attrib.get("text")
        feed_url = outline.attrib.get("xmlUrl")
        outline_type = outline.attrib.get("type")
        children = list(outline.findall("outline"))

        if outline_type == "rss" and feed_url:
            feeds.append(
                FeedConfig(
                    category=current_category or title or "Uncategorized",
                    title=title or feed_url,
                    url=feed_url,
                )
            )
            logger.debug(
                "Registered feed '%s' (category='%s')", feed_url, feeds[-1].category
            )
            return

        next_category = title if title else current_category
        for child in children:
            walk(child, next_category)

    if body is None:
        raise ConfigError(f"{path} is missing the <body> section.")

    for outline in body.findall("outline"):
        walk(outline, outline.attrib.get("title") or outline.attrib.get("text"))

    logger.info("Loaded %d feed endpoints from configuration", len(feeds))
    return feeds


def parse_team_directory(path: str) -> Dict[str, Team]:
    """Parse the team OPML file into a code -> Team mapping (file order)."""
    logger.info("Loading team directory from %s", path)
    root = ET.parse(path).getroot()
    body = root.find("body")
    if body is None:
        raise ConfigError(f"{path} is missing the <body> section.")

    teams: Dict[str, Team] = {}
    for outline in body.iter("outline"):
        code = outline.attrib.get("code")
        if not code:
            continue
        code = code.strip().upper()
        label = outline.attrib.get("title") or outline.attrib.get("text") or code
        urls = [
            child.attrib["xmlUrl"]
            for child in outline.findall("outline")
            if child.attrib.get("xmlUrl")
        ]
        if code in teams:
            raise ConfigError(f"Duplicate team code '{code}' in {path}")
        teams[code] = Team(code=code, label=label, feeds=urls)

    logger.info("Loaded %d teams from directory", len(teams))
    return teams


def _resolve_path(base_path: Path, target_path: str) -> str:
    """Resolve a path relative to the base config file if it's not absolute."""
    target = Path(target_path)
    if target.is_absolute():
        return str(target)
    return str((base_path.parent / target).resolve())


def parse_env_config(path: str) -> Dict[str, str]:
    """Parse environment variables from XML."""
    env_vars = {}
    if not path:
        return env_vars

    logger.info("Loading environment configuration from %s", path)
    try:
        tree = ET.parse(path)
        root = tree.getroot()
        for var in root.findall("variable"):
            name = var.attrib.get("name")
            value = var.text
            if name and value:
                env_vars[name] = value.strip()
    except Exception as exc:
        logger.warning("Failed to load environment config: %s", exc)
        raise

    return env_vars


def require_env(name: str) -> str:
    """Return a required environment value or raise :class:`ConfigError`."""
    value = (os.environ.get(name) or "").strip()
    if not value:
        raise ConfigError(f"Missing required setting {name}.")
    return value


def _optional_int(node: Optional[ET.Element], tag: str) -> Optional[int]:
    if node is None:
        return None
    text = node.findtext(tag)
    if text is None or not text.strip() or text.strip().lower() == "none":
        return None
    return int(text)


def _optional_float(node: Optional[ET.Element], tag: str) -> Optional[float]:
    if node is None:
        return None
    text = node.findtext(tag)
    if text is None or not text.strip() or text.strip().lower() == "none":
        return None
    return float(text)


def parse_app_config(path: str) -> AppConfig:
    """Parse the main application configuration XML."""
    config_path = Path(path).resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    logger.info("Loading application configuration from %s", config_path)
    tree = ET.parse(config_path)
    root = tree.getroot()

    # Feeds
    feeds_node = root.find("feeds")
    if feeds_node is None or not feeds_node.text:
        raise ConfigError("Config missing <feeds> path")
    feeds_file = _resolve_path(config_path, feeds_node.text.strip())

    teams_text = root.findtext("teams")
    teams_file = (
        _resolve_path(config_path, teams_text.strip())
        if teams_text and teams_text.strip()
        else None
    )

    # Env
    env_node = root.find("env")
    env_file = (
        _resolve_path(config_path, env_node.text.strip())
        if env_node is not None and env_node.text
        else None
    )

    # Simple values
    try:
        poll_seconds = float(root.findtext("poll-seconds", "90"))
        per_feed_limit = int(root.findtext("per-feed-limit", "2"))
        send_delay_ms = int(root.findtext("send-delay-ms", "700"))
        request_timeout = float(root.findtext("request-timeout", "10"))
    except ValueError as exc:
        raise ConfigError(f"Invalid numeric setting in {config_path}: {exc}") from exc

    if per_feed_limit < 1:
        raise ConfigError("<per-feed-limit> must be at least 1.")

    fantasy_source = (root.findtext("fantasy-source") or "rotowire").strip() or None

    keywords_text = root.findtext("injury-keywords")
    injury_keywords = list(DEFAULT_INJURY_KEYWORDS)
    if keywords_text and keywords_text.strip():
        injury_keywords = [
            word.strip().lower() for word in keywords_text.split(",") if word.strip()
        ]

    # Query
    query_node = root.find("query")
    query = QueryConfig()
    if query_node is not None:
        query.default_count = int(query_node.findtext("default-count", "3"))
        query.max_count = int(query_node.findtext("max-count", "5"))
    if not 1 <= query.default_count <= query.max_count:
        raise ConfigError("<query> counts must satisfy 1 <= default-count <= max-count.")

    # Seen-set retention
    retention_node = root.find("seen-retention")
    retention = RetentionConfig()
    if retention_node is not None:
        retention.max_per_feed = _optional_int(retention_node, "max-per-feed")
        retention.max_age_days = _optional_float(retention_node, "max-age-days")

    # Feed health
    health_node = root.find("feed-health")
    feed_health = FeedHealthConfig()
    if health_node is not None:
        feed_health.enabled = health_node.findtext("enabled", "true").lower() == "true"
        feed_health.failure_threshold = int(
            health_node.findtext("failure-threshold", "3")
        )
        feed_health.base_backoff_seconds = float(
            health_node.findtext("base-backoff-seconds", "300")
        )
        feed_health.max_backoff_seconds = float(
            health_node.findtext("max-backoff-seconds", "3600")
        )

    # Logging
    log_node = root.find("logging")
    logging_config = LoggingConfig()
    if log_node is not None:
        logging_config.level = log_node.findtext("level", "INFO")
        log_file = log_node.findtext("file")
        if log_file:
            logging_config.file = _resolve_path(config_path, log_file)

    # Database
    db_node = root.find("database")
    db_config = DatabaseConfig()
    if db_node is not None:
        connection_string = db_node.findtext("connection-string")
        if connection_string and connection_string.strip():
            db_config.connection_string = connection_string.strip()

    return AppConfig(
        feeds_file=feeds_file,
        env_file=env_file,
        teams_file=teams_file,
        poll_seconds=poll_seconds,
        per_feed_limit=per_feed_limit,
        send_delay_ms=send_delay_ms,
        request_timeout=request_timeout,
        fantasy_source=fantasy_source,
        injury_keywords=injury_keywords,
        query=query,
        retention=retention,
        feed_health=feed_health,
        logging=logging_config,
        database=db_config,
    )
