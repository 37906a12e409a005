from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from uptime_watchdog.config import ClusterTarget, UrlTarget, WatchdogConfig, load_config

CONFIG_YAML = """
log_level: DEBUG
data_directory: /var/lib/watchdog
database:
  dsn: scott/tiger@db:1521/XE
  alert_group_id: ops
urls:
  - id: website
    url: https://example.com/
    interval_seconds: 30
cluster:
  namespaces: [prod]
alert_groups:
  - id: ops
    emails: ["1001"]
actions:
  Stop Pods:
    command: ["kubectl", "scale", "deploy", "--all", "--replicas=0"]
recovery:
  enabled: true
  max_attempts: 5
"""


def test_load_config_from_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("LOG_LEVEL", "WATCHDOG_DATA_DIR", "TELEGRAM_BOT_TOKEN", "DB_DSN", "WATCHDOG_API_PORT"):
        monkeypatch.delenv(name, raising=False)
    path = tmp_path / "watchdog.yaml"
    path.write_text(CONFIG_YAML, encoding="utf-8")

    config = load_config(str(path))

    assert config.log_level == "DEBUG"
    assert config.data_path == Path("/var/lib/watchdog")
    assert config.database.dsn == "scott/tiger@db:1521/XE"
    assert config.database.name == "database"
    assert config.urls[0].interval_seconds == 30
    assert config.cluster.excluded_statuses == ["Succeeded", "Completed"]
    assert config.actions["Stop Pods"].timeout_seconds == 300
    assert config.recovery.max_attempts == 5
    assert config.recovery.reset_attempts_on_partial_success is True
    assert [t.id for t in config.targets()] == ["database", "website", "cluster"]


def test_environment_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "watchdog.yaml"
    path.write_text(CONFIG_YAML, encoding="utf-8")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.setenv("WATCHDOG_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("DB_DSN", "other/dsn")
    monkeypatch.setenv("WATCHDOG_API_PORT", "9100")

    config = load_config(str(path))

    assert config.log_level == "WARNING"
    assert config.data_path == tmp_path / "data"
    assert config.notifier.telegram_bot_token == "123:abc"
    assert config.database.dsn == "other/dsn"
    assert config.api.port == 9100


def test_missing_file_gives_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WATCHDOG_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("WATCHDOG_DATA_DIR", raising=False)

    config = load_config()
    assert config.database is None
    assert config.urls == []
    assert config.recovery.enabled is False
    assert config.recent_checks_limit == 100


def test_timeout_must_be_shorter_than_interval() -> None:
    with pytest.raises(ValidationError, match="must be shorter"):
        UrlTarget(id="web", url="https://example.com/", interval_seconds=5, timeout_seconds=5)
    with pytest.raises(ValidationError):
        ClusterTarget(interval_seconds=10, timeout_seconds=30)


def test_duplicate_target_ids_rejected() -> None:
    with pytest.raises(ValidationError, match="Duplicate target ids: web"):
        WatchdogConfig(urls=[
            {"id": "web", "url": "https://a.example/"},
            {"id": "web", "url": "https://b.example/"},
        ])
