from datetime import datetime, timezone

from rss_huddle.templating import get_environment


def test_get_environment_registers_duration_filter():
    env = get_environment()
    assert "duration" in env.filters
    rendered = env.from_string("{{ value | duration }}").render(value=3725)
    assert rendered == "1h 2m 5s"


def test_duration_filter_handles_zero_and_none():
    env = get_environment()
    assert env.from_string("{{ value | duration }}").render(value=0) == "0s"
    assert env.from_string("{{ value | duration }}").render(value=None) == "n/a"


def test_timestamp_filter_formats_utc():
    env = get_environment()
    value = datetime(2024, 9, 8, 17, 5, 9, tzinfo=timezone.utc)
    template = env.from_string("{{ value | timestamp }}")
    assert template.render(value=value) == "2024-09-08 17:05:09 UTC"
    assert template.render(value=None) == "never"
