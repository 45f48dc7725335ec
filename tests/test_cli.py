import logging
import textwrap
from datetime import datetime, timedelta, timezone

import pytest

from rss_huddle import cli, db
from rss_huddle.config import AppConfig, LoggingConfig

from conftest import make_item


@pytest.fixture
def restore_root_handlers():
    original_handlers = list(logging.getLogger().handlers)
    for handler in logging.getLogger().handlers[:]:
        logging.getLogger().removeHandler(handler)
    yield
    for handler in logging.getLogger().handlers[:]:
        logging.getLogger().removeHandler(handler)
        handler.close()
    for handler in original_handlers:
        logging.getLogger().addHandler(handler)


@pytest.fixture
def config_dir(tmp_path):
    (tmp_path / "feeds.xml").write_text(
        textwrap.dedent(
            """\
            <opml version="2.0">
              <body>
                <outline text="espn">
                  <outline type="rss" text="ESPN" xmlUrl="https://espn.example.com/rss" />
                </outline>
              </body>
            </opml>
            """
        ),
        encoding="utf-8",
    )
    (tmp_path / "config.xml").write_text(
        textwrap.dedent(
            f"""\
            <config>
                <feeds>feeds.xml</feeds>
                <env>env.xml</env>
                <send-delay-ms>0</send-delay-ms>
                <database>
                    <connection-string>sqlite:///{tmp_path / 'state.db'}</connection-string>
                </database>
            </config>
            """
        ),
        encoding="utf-8",
    )
    return tmp_path


@pytest.fixture
def fake_fetch(monkeypatch):
    items = [
        make_item("https://espn.example.com/1", title="Opener recap", minutes=1),
        make_item("https://espn.example.com/2", title="Trade deadline", minutes=2),
    ]

    def fetch(url, timeout=10.0, health=None):
        return list(items)

    monkeypatch.setattr(cli, "fetch_feed_items", fetch)
    monkeypatch.setattr(cli, "configure_logging", lambda level, log_file=None: None)
    return items


def test_configure_logging_defaults_to_console_only(restore_root_handlers):
    cli.configure_logging("INFO")

    handlers = logging.getLogger().handlers
    assert any(isinstance(handler, logging.StreamHandler) for handler in handlers)
    assert not any(isinstance(handler, logging.FileHandler) for handler in handlers)


def test_configure_logging_with_log_file_creates_file_handler(
    restore_root_handlers, tmp_path
):
    log_path = tmp_path / "logs" / "custom.log"
    cli.configure_logging("INFO", str(log_path))

    assert log_path.exists()
    handlers = logging.getLogger().handlers
    assert any(isinstance(handler, logging.FileHandler) for handler in handlers)


def test_configure_logging_rejects_unknown_level(restore_root_handlers):
    with pytest.raises(ValueError):
        cli.configure_logging("CHATTY")


def test_main_cli_overrides_logging(monkeypatch):
    captured = {}

    def fake_configure(level, log_file=None):
        captured["level"] = level
        captured["file"] = log_file

    monkeypatch.setattr(cli, "configure_logging", fake_configure)
    monkeypatch.setattr(
        cli,
        "parse_app_config",
        lambda path: AppConfig(
            feeds_file="feeds.xml",
            logging=LoggingConfig(level="INFO", file="config.log"),
        ),
    )
    monkeypatch.setattr(cli, "run", lambda app_config, args: 0)

    exit_code = cli.main(["--log-level", "DEBUG", "--log-file", "cli.log"])

    assert exit_code == 0
    assert captured == {"level": "DEBUG", "file": "cli.log"}


def test_main_requires_discord_token_for_bot_mode(config_dir, fake_fetch, monkeypatch):
    monkeypatch.delenv("DISCORD_TOKEN", raising=False)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--config", str(config_dir / "config.xml")])

    assert excinfo.value.code == 2


def test_main_returns_error_for_missing_config(tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda level, log_file=None: None)

    assert cli.main(["--config", str(tmp_path / "missing.xml")]) == 1


def test_headlines_mode_prints_latest_items(config_dir, fake_fetch, capsys):
    exit_code = cli.main(["--config", str(config_dir / "config.xml"), "--headlines", "1"])

    assert exit_code == 0
    out = capsys.readouterr().out
    assert "Trade deadline" in out
    assert "Opener recap" not in out


def test_tick_once_prints_fresh_items_for_subscribed_channels(
    config_dir, fake_fetch, capsys
):
    engine = db.init_engine(f"sqlite:///{config_dir / 'state.db'}")
    with db.get_session_factory(engine)() as session:
        db.subscribe(session, "chan1", [])
    engine.dispose()

    first = cli.main(["--config", str(config_dir / "config.xml"), "--tick-once"])
    first_out = capsys.readouterr().out
    second = cli.main(["--config", str(config_dir / "config.xml"), "--tick-once"])
    second_out = capsys.readouterr().out

    assert first == second == 0
    assert first_out.index("Trade deadline") < first_out.index("Opener recap")
    assert "[chan1] **Trade deadline**" in first_out
    assert "_ESPN_" in first_out
    assert second_out == ""


def test_prune_mode_reports_removed_records(config_dir, fake_fetch, capsys):
    engine = db.init_engine(f"sqlite:///{config_dir / 'state.db'}")
    with db.get_session_factory(engine)() as session:
        old = datetime.now(timezone.utc) - timedelta(days=60)
        for index in range(3):
            db.mark_seen(session, "https://espn.example.com/rss", f"h{index}", seen_at=old)
        db.mark_seen(session, "https://espn.example.com/rss", "fresh")
    engine.dispose()

    exit_code = cli.main(["--config", str(config_dir / "config.xml"), "--prune"])

    assert exit_code == 0
    assert "Pruned 3 seen records." in capsys.readouterr().out
