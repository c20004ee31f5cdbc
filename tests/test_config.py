"""Tests for settings and monitor config loading."""

import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest

from credit_check.config import (
    DEFAULT_A2A_ENDPOINT,
    ConfigError,
    Settings,
    load_monitor_config,
    parse_monitor_config,
    resolve_agent_url,
)


def _raw(**overrides: Any) -> dict[str, Any]:
    raw: dict[str, Any] = {
        "customers": [{"name": "Acme", "org_id": "org-acme", "credit_limit": 10000.50, "currency": "USD"}],
        "slack": {"alert_channel": "C1", "escalation_channel": "C2"},
    }
    raw.update(overrides)
    return raw


class TestSettings:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ("CONFIG_PATH", "DRY_RUN", "AGENT_MAX_ATTEMPTS", "MAX_CONCURRENCY"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings()
        assert settings.config_path == "./config/config.json"
        assert settings.dry_run is False
        assert settings.agent_max_attempts == 3
        assert settings.max_concurrency == 4

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DRY_RUN", "true")
        monkeypatch.setenv("MAX_CONCURRENCY", "1")
        monkeypatch.setenv("A2A_ENDPOINT", "http://billing.internal/rpc")
        settings = Settings()
        assert settings.dry_run is True
        assert settings.max_concurrency == 1
        assert settings.a2a_endpoint == "http://billing.internal/rpc"


class TestParseMonitorConfig:
    def test_defaults_applied(self) -> None:
        config = parse_monitor_config(_raw())

        assert config.thresholds.alert_remaining == Decimal(0)
        assert config.settings.buffer_days == 4
        assert config.settings.credit_increase_pct == Decimal(10)
        assert config.a2a.billing_url == ""

    def test_missing_customer_field_fails_fast(self) -> None:
        raw = _raw(customers=[{"name": "Acme", "org_id": "org-acme", "currency": "USD"}])

        with pytest.raises(ConfigError, match=r"customers\.0\.credit_limit"):
            parse_monitor_config(raw)

    def test_missing_slack_section(self) -> None:
        raw = _raw()
        del raw["slack"]
        with pytest.raises(ConfigError, match="slack"):
            parse_monitor_config(raw)

    def test_not_a_mapping(self) -> None:
        with pytest.raises(ConfigError):
            parse_monitor_config(["customers"])

    def test_negative_buffer_days_rejected(self) -> None:
        with pytest.raises(ConfigError, match="buffer_days"):
            parse_monitor_config(_raw(settings={"buffer_days": -1}))


class TestLoadMonitorConfig:
    def test_json_keeps_decimal_precision(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        _ = path.write_text(
            '{"customers": [{"name": "A", "org_id": "o", "credit_limit": 0.1, "currency": "USD"}],'
            ' "slack": {"alert_channel": "C1", "escalation_channel": "C2"}}'
        )

        config = load_monitor_config(path)

        assert config.customers[0].credit_limit == Decimal("0.1")

    def test_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        _ = path.write_text(
            "customers:\n"
            "  - name: Acme\n"
            "    org_id: org-acme\n"
            "    credit_limit: 25000\n"
            "    currency: EUR\n"
            "slack:\n"
            "  alert_channel: C1\n"
            "  escalation_channel: C2\n"
            "settings:\n"
            "  buffer_days: 7\n"
        )

        config = load_monitor_config(path)

        assert config.customers[0].credit_limit == Decimal(25000)
        assert config.settings.buffer_days == 7

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="example-config.json"):
            load_monitor_config(tmp_path / "nope.json")

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        _ = path.write_text("{broken")
        with pytest.raises(ConfigError, match="not valid JSON"):
            load_monitor_config(path)

    def test_shipped_example_is_valid(self) -> None:
        example = Path(__file__).resolve().parent.parent / "config" / "example-config.json"
        config = load_monitor_config(example)
        assert len(config.customers) == len(json.loads(example.read_text())["customers"])


class TestResolveAgentUrl:
    def test_config_file_wins(self, mock_settings: Any) -> None:
        mock_settings.a2a_endpoint = "http://env.test/rpc"
        config = parse_monitor_config(_raw(a2a={"billing_url": "http://file.test/rpc"}))
        assert resolve_agent_url(config, mock_settings) == "http://file.test/rpc"

    def test_env_next(self, mock_settings: Any) -> None:
        mock_settings.a2a_endpoint = "http://env.test/rpc"
        assert resolve_agent_url(parse_monitor_config(_raw()), mock_settings) == "http://env.test/rpc"

    def test_default_last(self, mock_settings: Any) -> None:
        assert resolve_agent_url(parse_monitor_config(_raw()), mock_settings) == DEFAULT_A2A_ENDPOINT
