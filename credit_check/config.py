"""Runtime settings (environment / .env) and the monitored-customer file.

Two layers:

- ``Settings``: process-level knobs read from the environment.
- ``MonitorConfig``: the customer list, Slack channels, thresholds and
  projection settings, loaded from a JSON or YAML file at ``CONFIG_PATH``.
"""

import json
import logging
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from credit_check.models import CustomerSpec

logger = logging.getLogger(__name__)

DEFAULT_A2A_ENDPOINT = "http://localhost:8000/a2a/billing-account/rpc"


class ConfigError(Exception):
    """The monitor configuration is missing, unreadable, or invalid."""


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    config_path: str = "./config/config.json"
    a2a_endpoint: str = ""  # Overridden by a2a.billing_url in the config file

    # Slack (token optional in dry-run mode)
    slack_bot_token: str = ""
    slack_api_url: str = "https://slack.com/api/chat.postMessage"
    dry_run: bool = False

    # Billing agent retry policy
    agent_max_attempts: int = 3
    agent_base_delay_seconds: float = 2.0
    agent_backoff_multiplier: float = 2.0
    agent_retry_jitter: float = 0.25  # fraction of each delay added at random
    agent_connect_timeout_seconds: float = 10.0
    agent_total_timeout_seconds: float = 30.0

    # Parallelism across customers (1 = strictly sequential)
    max_concurrency: int = 4
    customer_timeout_seconds: float = 0.0  # 0 = derived from the retry policy

    # Check schedule (optional; empty disables the scheduler)
    check_schedule_cron: str = ""  # e.g. "0 9 28 * *"
    scheduled_post_to_slack: bool = True

    log_level: str = "INFO"

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Lazily load and cache settings. Fails at first call, not at import time."""
    return Settings()


# ---------------------------------------------------------------------------
# Monitor configuration file
# ---------------------------------------------------------------------------


class SlackChannels(BaseModel):
    alert_channel: str = Field(min_length=1)
    escalation_channel: str = Field(min_length=1)


class Thresholds(BaseModel):
    alert_remaining: Decimal = Decimal(0)


class ProjectionSettings(BaseModel):
    buffer_days: int = Field(default=4, ge=0)
    credit_increase_pct: Decimal = Field(default=Decimal(10), ge=0)


class AgentEndpoint(BaseModel):
    billing_url: str = ""


class MonitorConfig(BaseModel):
    """Validated contents of the monitor configuration file."""

    customers: list[CustomerSpec]
    slack: SlackChannels
    thresholds: Thresholds = Field(default_factory=Thresholds)
    settings: ProjectionSettings = Field(default_factory=ProjectionSettings)
    a2a: AgentEndpoint = Field(default_factory=AgentEndpoint)


def _describe_validation_error(exc: ValidationError) -> str:
    """Flatten pydantic errors into ``customers.0.credit_limit (Field required)`` form."""
    parts: list[str] = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err["loc"])
        parts.append(f"{location} ({err['msg']})")
    return ", ".join(parts)


def parse_monitor_config(raw: Any) -> MonitorConfig:
    """Validate already-decoded config data.

    Raises:
        ConfigError: If required fields are absent or malformed.
    """
    if not isinstance(raw, dict):
        msg = "Config must be a mapping with 'customers' and 'slack' keys"
        raise ConfigError(msg)
    try:
        return MonitorConfig.model_validate(raw)
    except ValidationError as exc:
        msg = f"Config missing or invalid fields: {_describe_validation_error(exc)}"
        raise ConfigError(msg) from exc


def load_monitor_config(path: str | Path) -> MonitorConfig:
    """Load and validate the monitor config file (JSON, or YAML by extension).

    Raises:
        ConfigError: If the file is missing, cannot be decoded, or fails validation.
    """
    config_path = Path(path)
    if not config_path.is_file():
        msg = (
            f"Config file not found at {config_path}. "
            "Copy config/example-config.json to config/config.json and fill in your data."
        )
        raise ConfigError(msg)

    text = config_path.read_text(encoding="utf-8")
    is_yaml = config_path.suffix.lower() in (".yaml", ".yml")
    try:
        raw: Any = yaml.safe_load(text) if is_yaml else json.loads(text, parse_float=Decimal)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        msg = f"{config_path} is not valid {'YAML' if is_yaml else 'JSON'}: {exc}"
        raise ConfigError(msg) from exc

    config = parse_monitor_config(raw)
    logger.debug("Loaded %d customer(s) from %s", len(config.customers), config_path)
    return config


def resolve_agent_url(config: MonitorConfig, settings: Settings) -> str:
    """Billing agent endpoint: config file, then A2A_ENDPOINT, then the default."""
    return config.a2a.billing_url or settings.a2a_endpoint or DEFAULT_A2A_ENDPOINT
