"""One complete credit check run, shared by the CLI, the API and the scheduler."""

import asyncio
import logging
import time
from pathlib import Path

from pydantic import BaseModel

from credit_check.agent.client import BillingAgentClient, RetryPolicy
from credit_check.check.output import write_report
from credit_check.check.runner import CheckOptions, run_credit_check
from credit_check.config import get_settings, load_monitor_config, resolve_agent_url
from credit_check.models import CreditCheckReport
from credit_check.notify.slack import SlackPostSummary, post_alerts
from credit_check.observability.metrics import RUN_DURATION, RUNS_TOTAL

logger = logging.getLogger(__name__)


class CheckRun(BaseModel):
    report: CreditCheckReport
    output_path: str | None = None
    slack: SlackPostSummary | None = None


async def execute_check(
    *,
    trigger: str,
    config_path: str | Path | None = None,
    output_path: str | Path | None = None,
    post: bool = False,
    dry_run: bool | None = None,
    stop_event: asyncio.Event | None = None,
) -> CheckRun:
    """Load config, check every customer, then optionally save and post the report.

    Raises:
        ConfigError: If the monitor config is missing or invalid, or Slack
            posting is requested without a token.
    """
    settings = get_settings()
    start = time.monotonic()
    try:
        config = load_monitor_config(config_path or settings.config_path)
        policy = RetryPolicy.from_settings(settings)
        options = CheckOptions.build(config, settings, policy)
        agent_url = resolve_agent_url(config, settings)
        logger.info("Using billing agent at %s", agent_url)

        async with BillingAgentClient(agent_url, policy) as client:
            report = await run_credit_check(config, client, options, stop_event=stop_event)

        run = CheckRun(report=report)
        if output_path:
            run.output_path = str(write_report(report, output_path))
        if post:
            run.slack = await post_alerts(report, dry_run=dry_run)
    except Exception:
        RUNS_TOTAL.labels(trigger=trigger, status="error").inc()
        RUN_DURATION.observe(time.monotonic() - start)
        raise

    RUNS_TOTAL.labels(trigger=trigger, status="success").inc()
    RUN_DURATION.observe(time.monotonic() - start)
    return run
