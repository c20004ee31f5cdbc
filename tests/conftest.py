"""Shared pytest configuration and fixtures."""

import json
from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from credit_check.config import MonitorConfig, Settings, get_settings, parse_monitor_config
from credit_check.models import AgentQuery, AgentReply

EXAMPLE_CONFIG: dict[str, Any] = {
    "customers": [
        {"name": "Acme Corp", "org_id": "org-acme", "credit_limit": 10000, "currency": "USD"},
        {"name": "Globex", "org_id": "org-globex", "credit_limit": 50000, "currency": "EUR"},
    ],
    "slack": {"alert_channel": "C-ALERTS", "escalation_channel": "C-ESCALATE"},
    "thresholds": {"alert_remaining": 0},
    "settings": {"buffer_days": 4, "credit_increase_pct": 10},
    "a2a": {"billing_url": "http://agent.test/a2a/billing-account/rpc"},
}

AGENT_URL = "http://agent.test/a2a/billing-account/rpc"


@pytest.fixture(autouse=True)
def _no_dotenv() -> Generator[None]:
    """Block .env loading so a developer's local settings never leak into tests."""
    get_settings.cache_clear()
    original = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    try:
        yield
    finally:
        Settings.model_config["env_file"] = original
        get_settings.cache_clear()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.json"
    _ = path.write_text(json.dumps(EXAMPLE_CONFIG), encoding="utf-8")
    return path


@pytest.fixture
def monitor_config() -> MonitorConfig:
    return parse_monitor_config(EXAMPLE_CONFIG)


@pytest.fixture
def mock_settings(config_file: Path) -> Generator[Any]:
    """Provide fake settings so tests don't need a .env file.

    Patches get_settings at every import site so cached references are overridden.
    Retry delays are zero so retry paths run instantly.
    """
    fake_settings = type(
        "FakeSettings",
        (),
        {
            "config_path": str(config_file),
            "a2a_endpoint": "",
            # Slack
            "slack_bot_token": "xoxb-test-fake",
            "slack_api_url": "https://slack.test/api/chat.postMessage",
            "dry_run": False,
            # Retry policy
            "agent_max_attempts": 3,
            "agent_base_delay_seconds": 0.0,
            "agent_backoff_multiplier": 2.0,
            "agent_retry_jitter": 0.0,
            "agent_connect_timeout_seconds": 1.0,
            "agent_total_timeout_seconds": 5.0,
            # Run
            "max_concurrency": 2,
            "customer_timeout_seconds": 0.0,
            # Schedule
            "check_schedule_cron": "",
            "scheduled_post_to_slack": True,
            "log_level": "INFO",
        },
    )()
    with (
        patch("credit_check.config.get_settings", return_value=fake_settings),
        patch("credit_check.check.service.get_settings", return_value=fake_settings),
        patch("credit_check.check.scheduler.get_settings", return_value=fake_settings),
        patch("credit_check.notify.slack.get_settings", return_value=fake_settings),
        patch("credit_check.api.main.get_settings", return_value=fake_settings),
        patch("credit_check.cli.get_settings", return_value=fake_settings),
    ):
        yield fake_settings


class ScriptedClient:
    """Billing agent stand-in that answers by query kind (the id suffix)."""

    def __init__(self, answers: dict[str, dict[str, str | AgentReply]] | None = None) -> None:
        # org_id -> kind -> text or reply
        self.answers = answers or {}
        self.queries: list[AgentQuery] = []

    async def send(self, query: AgentQuery) -> AgentReply:
        self.queries.append(query)
        kind = query.id.rsplit("-", 1)[-1]
        for org_id, by_kind in self.answers.items():
            if org_id in query.prompt:
                answer = by_kind.get(kind, "")
                return answer if isinstance(answer, AgentReply) else AgentReply(text=answer)
        return AgentReply(text="")


def _healthy_answers(balance: str = "-$1,000.00", rate: str = "$50.00") -> dict[str, str]:
    return {
        "balance": f"The current balance is {balance} and the credit limit is $10,000.00.",
        "usage": f"Usage this month: $1,000.00. Next month MRC: $200.00. Daily run rate: {rate}.",
        "flags": "Auto-recharge is disabled. The account is not VIP.",
    }


@pytest.fixture
def scripted_client() -> type[ScriptedClient]:
    return ScriptedClient


@pytest.fixture
def healthy_answers() -> Any:
    """Factory for a complete, parseable set of answers (no protective flags)."""
    return _healthy_answers
