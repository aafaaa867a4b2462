import pytest

from matchscheduler.config import Config

ENV_KEYS = [
    "DATABASE_PATH",
    "BASE_TIMEZONE",
    "EXPIRATION_SWEEP_OFFSET_MINUTES",
    "RECURRING_SWEEP_WEEKDAY",
    "RECURRING_SWEEP_TIME",
    "PROPOSAL_EXPIRY_WEEKDAY",
    "PROPOSAL_EXPIRY_TIME",
    "FIXTURE_FEEDS",
    "FIXTURE_FETCH_INTERVAL",
    "DISCORD_BOT_TOKEN",
    "DISCORD_CHANNEL_ID",
    "DISCORD_MENTION_ROLE_ID",
    "NOTIFY_MINUTES_BEFORE",
]


@pytest.fixture
def env(monkeypatch, tmp_path):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("FIXTURE_FEEDS_FILE", str(tmp_path / "fixture_feeds.txt"))
    return monkeypatch


def test_defaults(env):
    config = Config()
    assert config.database_path == "data/matchscheduler.db"
    assert config.base_timezone == "Europe/Berlin"
    assert config.expiration_sweep_offset_minutes == 1
    assert (config.recurring_sweep_weekday, config.recurring_sweep_time) == ("mon", "04:00")
    assert config.fixture_feeds == []
    assert config.fixture_fetch_interval == 60
    assert not config.reminders_enabled


def test_feeds_from_file_and_env_are_merged(env, tmp_path):
    (tmp_path / "fixture_feeds.txt").write_text(
        "# league feeds\n"
        "Premier: webcal://example.org/premier.ics\n"
        "https://example.org/cup.ics\n"
    )
    env.setenv("FIXTURE_FEEDS", "https://example.org/cup.ics, https://example.org/friendlies.ics")

    config = Config()

    assert config.fixture_feeds == [
        "https://example.org/premier.ics",
        "https://example.org/cup.ics",
        "https://example.org/friendlies.ics",
    ]


def test_reminders_need_token_and_channel(env):
    env.setenv("DISCORD_BOT_TOKEN", "secret")
    assert not Config().reminders_enabled
    env.setenv("DISCORD_CHANNEL_ID", "1234")
    assert Config().reminders_enabled


@pytest.mark.parametrize("key, value", [
    ("BASE_TIMEZONE", "Mars/Olympus"),
    ("EXPIRATION_SWEEP_OFFSET_MINUTES", "30"),
    ("EXPIRATION_SWEEP_OFFSET_MINUTES", "soon"),
    ("RECURRING_SWEEP_WEEKDAY", "funday"),
    ("PROPOSAL_EXPIRY_TIME", "25:00"),
    ("FIXTURE_FETCH_INTERVAL", "0"),
    ("NOTIFY_MINUTES_BEFORE", "-5"),
    ("DISCORD_CHANNEL_ID", "general"),
    ("DISCORD_MENTION_ROLE_ID", "@here"),
])
def test_invalid_values_are_rejected(env, key, value):
    env.setenv(key, value)
    with pytest.raises(ValueError):
        Config()
