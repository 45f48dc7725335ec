"""Command-line interface for the rss_huddle application."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import functools
import logging
import os
import pprint
from datetime import timedelta
from pathlib import Path
from typing import List, Optional

from . import db
from .commands import CommandService
from .config import (
    AppConfig,
    parse_app_config,
    parse_env_config,
    parse_feeds_config,
    parse_team_directory,
    require_env,
)
from .dedup import SeenStore
from .errors import ConfigError, HuddleError
from .feeds import fetch_feed_items
from .health import FeedHealth
from .scheduler import RetentionPolicy, Ticker
from .sinks import ConsoleSink

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3000


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Relay fresh football headlines from RSS feeds to Discord."
    )
    parser.add_argument(
        "--config",
        default="configs/config.xml",
        help="Path to the main configuration XML file.",
    )

    # Overrides for logging/debugging
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (e.g. DEBUG, INFO, WARNING). Overrides config.",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Optional path to a log file. Overrides config.",
    )

    parser.add_argument(
        "--sync-commands",
        action="store_true",
        help="Sync slash commands to the guild in GUILD_ID on startup.",
    )

    # One-shot modes that do not connect to Discord
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--tick-once",
        action="store_true",
        help="Run a single delivery tick, printing messages instead of sending them.",
    )
    mode.add_argument(
        "--headlines",
        type=int,
        metavar="N",
        help="Print the latest N league headlines and exit.",
    )
    mode.add_argument(
        "--prune",
        action="store_true",
        help="Apply the seen-set retention policy and exit.",
    )

    return parser


def configure_logging(level_name: str, log_file: Optional[str] = None) -> None:
    """Initialise logging according to options."""
    log_level = getattr(logging, level_name.upper(), None)
    if not isinstance(log_level, int):
        raise ValueError(f"Unsupported log level: {level_name}")

    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.setLevel(log_level)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    if log_file:
        log_path = Path(log_file)
        if log_path.parent and not log_path.parent.exists():
            log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
        logger.debug(
            "Logger initialised with level %s and file output to %s",
            level_name.upper(),
            log_path,
        )
    else:
        logger.debug(
            "Logger initialised with console output at level %s", level_name.upper()
        )


def _retention_policy(app_config: AppConfig) -> RetentionPolicy:
    return RetentionPolicy(
        max_per_feed=app_config.retention.max_per_feed,
        max_age_days=app_config.retention.max_age_days,
    )


def _build_health(app_config: AppConfig) -> Optional[FeedHealth]:
    settings = app_config.feed_health
    if not settings.enabled:
        return None
    return FeedHealth(
        failure_threshold=settings.failure_threshold,
        base_backoff=settings.base_backoff_seconds,
        max_backoff=settings.max_backoff_seconds,
    )


def _optional_int_env(name: str) -> Optional[int]:
    value = (os.environ.get(name) or "").strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {value!r}.") from exc


def run(app_config: AppConfig, args: argparse.Namespace) -> int:
    """Wire the components together and run the selected mode."""
    bot_mode = not (args.prune or args.tick_once or args.headlines is not None)
    token = require_env("DISCORD_TOKEN") if bot_mode else None

    feeds = parse_feeds_config(app_config.feeds_file)
    if not feeds:
        raise ConfigError("No feeds found in the configuration.")
    teams = parse_team_directory(app_config.teams_file) if app_config.teams_file else {}

    engine = db.init_engine(app_config.database.connection_string)
    session_factory = db.get_session_factory(engine)

    health = _build_health(app_config)
    fetch = functools.partial(
        fetch_feed_items, timeout=app_config.request_timeout, health=health
    )
    default_feeds = list(dict.fromkeys(feed.url for feed in feeds))
    labels = {feed.url: feed.title for feed in feeds}
    for team in teams.values():
        for url in team.feeds:
            labels.setdefault(url, team.label)

    def make_ticker(sink) -> Ticker:
        return Ticker(
            session_factory,
            sink,
            default_feeds,
            interval=app_config.poll_seconds,
            per_feed_limit=app_config.per_feed_limit,
            send_delay=app_config.send_delay_ms / 1000.0,
            fetch=fetch,
            labels=labels,
            retention=_retention_policy(app_config),
        )

    if args.prune:
        policy = _retention_policy(app_config)
        max_age = (
            timedelta(days=policy.max_age_days)
            if policy.max_age_days is not None
            else None
        )
        removed = SeenStore(session_factory).prune(
            max_per_feed=policy.max_per_feed, max_age=max_age
        )
        print(f"Pruned {removed} seen records.")
        return 0

    if args.headlines is not None:
        service = CommandService(
            app_config, session_factory, feeds, teams, health=health, fetch=fetch
        )
        print(service.latest(args.headlines))
        return 0

    if args.tick_once:
        ticker = make_ticker(ConsoleSink())
        asyncio.run(ticker.run_once())
        state = ticker.status()
        if state.last_error:
            logger.error("Tick finished with error: %s", state.last_error)
            return 1
        return 0

    from .discord_bot import HuddleBot

    guild_id = _optional_int_env("GUILD_ID") if args.sync_commands else None
    if args.sync_commands and guild_id is None:
        raise ConfigError("--sync-commands requires GUILD_ID.")

    port = _optional_int_env("PORT") or DEFAULT_PORT
    bot = HuddleBot(guild_id=guild_id, liveness_port=port)
    ticker = make_ticker(bot.sink)
    service = CommandService(
        app_config,
        session_factory,
        feeds,
        teams,
        ticker=ticker,
        health=health,
        fetch=fetch,
    )
    bot.attach(ticker, service)
    bot.run(token, log_handler=None)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        app_config = parse_app_config(args.config)

        if app_config.env_file and Path(app_config.env_file).exists():
            env_vars = parse_env_config(app_config.env_file)
            os.environ.update(env_vars)
        elif app_config.env_file:
            logger.warning(
                "Env file %s not found; using process environment", app_config.env_file
            )

        # CLI overrides config
        log_level = args.log_level or app_config.logging.level
        log_file = args.log_file or app_config.logging.file

        configure_logging(log_level, log_file)

        config_dict = dataclasses.asdict(app_config)
        if "@" in config_dict["database"]["connection_string"]:
            config_dict["database"]["connection_string"] = "***MASKED***"
        logger.info("Active Configuration:\n%s", pprint.pformat(config_dict))

        return run(app_config, args)
    except ValueError as exc:
        parser.error(str(exc))
    except (HuddleError, RuntimeError, FileNotFoundError) as exc:
        logger.error("%s", exc)
        return 1
    except Exception:  # noqa: BLE001
        logger.exception("Unexpected error during execution.")
        return 1
