import pytest

from book_catalog.config import load_config, load_dotenv, parse_env_text

ENV_KEYS = (
    "CATALOG_PATH",
    "STATS_URL",
    "SERVER_URL",
    "LANGUAGE_GRACE_HOURS",
    "FAILURE_LOG_CAP",
    "HTTP_RETRIES",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)


def test_defaults() -> None:
    cfg = load_config()
    assert cfg.catalog_path == "catalog.json"
    assert cfg.language_grace_hours == 2.0
    assert cfg.failure_log_cap == 20
    assert cfg.metrics == []


def test_dotenv_does_not_override_environment(tmp_path, monkeypatch) -> None:
    env_file = tmp_path / "custom.env"
    env_file.write_text(
        "export CATALOG_PATH='books.json'  # local copy\nFAILURE_LOG_CAP=5\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("ENV_PATH", str(env_file))
    monkeypatch.setenv("FAILURE_LOG_CAP", "7")

    assert load_dotenv() == str(env_file.resolve())
    cfg = load_config()
    assert cfg.catalog_path == "books.json"
    assert cfg.failure_log_cap == 7


def test_settings_file_overrides(tmp_path) -> None:
    settings = tmp_path / "settings.yaml"
    settings.write_text(
        "language_grace_hours: 6\n"
        "metrics:\n"
        "  - field: analytics_reads\n"
        "    feed_key: reads\n",
        encoding="utf-8",
    )
    cfg = load_config(str(settings))
    assert cfg.language_grace_hours == 6.0
    assert cfg.metrics == [{"field": "analytics_reads", "feed_key": "reads"}]


def test_bad_values_exit(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("HTTP_RETRIES", "many")
    with pytest.raises(SystemExit):
        load_config()
    monkeypatch.delenv("HTTP_RETRIES")

    with pytest.raises(SystemExit):
        load_config(str(tmp_path / "missing.yaml"))


def test_analytics_needs_stats_url() -> None:
    cfg = load_config()
    cfg.validate()
    with pytest.raises(SystemExit):
        cfg.validate(needs_stats=True)


def test_parse_env_text() -> None:
    text = "\n".join(
        [
            "# comment",
            "A=1",
            'B="x # not a comment"  # trailing',
            "C=plain value # trailing",
            "export D=4",
            "not a pair",
        ]
    )
    assert parse_env_text(text) == {"A": "1", "B": "x # not a comment", "C": "plain value", "D": "4"}
