"""Credit check orchestration.

For each configured customer: ask the billing agent three sub-queries,
extract signals, project remaining credit and classify risk.  Every customer
yields exactly one ``CheckResult`` and a failure for one customer never
affects another.  Customers run concurrently under a semaphore, and results
keep the configured order.
"""

import asyncio
import logging
import time
from datetime import UTC, datetime
from decimal import Decimal
from typing import Protocol, Self

from pydantic import BaseModel, Field

from credit_check.agent.client import RetryPolicy
from credit_check.config import MonitorConfig, Settings
from credit_check.credit.projection import MissingSignalError, project
from credit_check.credit.risk import classify_risk
from credit_check.extraction.signals import build_queries, extract_signals
from credit_check.models import AgentQuery, AgentReply, CheckResult, CreditCheckReport, CustomerSpec
from credit_check.observability.metrics import (
    CUSTOMER_CHECKS_TOTAL,
    CUSTOMER_RISK_TOTAL,
    CUSTOMERS_NEEDING_ATTENTION,
)

logger = logging.getLogger(__name__)

NO_RESPONSE = "No response from billing agent"
CANCELLED = "Run cancelled before check started"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


class AgentClient(Protocol):
    async def send(self, query: AgentQuery) -> AgentReply: ...


class CheckOptions(BaseModel):
    """Run-wide settings handed to every customer check."""

    buffer_days: int = Field(default=4, ge=0)
    threshold: Decimal = Decimal(0)
    increase_pct: Decimal = Decimal(10)
    max_concurrency: int = Field(default=4, ge=1)
    customer_timeout: float | None = Field(default=None, gt=0)

    @classmethod
    def build(cls, config: MonitorConfig, settings: Settings, policy: RetryPolicy) -> Self:
        """Combine the monitor file with process settings.

        Without an explicit per-customer timeout, a customer gets three times
        the worst case of one sub-query.
        """
        timeout = settings.customer_timeout_seconds or 3 * policy.worst_case_seconds()
        return cls(
            buffer_days=config.settings.buffer_days,
            threshold=config.thresholds.alert_remaining,
            increase_pct=config.settings.credit_increase_pct,
            max_concurrency=settings.max_concurrency,
            customer_timeout=timeout,
        )


# ---------------------------------------------------------------------------
# Single customer
# ---------------------------------------------------------------------------


async def check_customer(
    customer: CustomerSpec,
    index: int,
    client: AgentClient,
    options: CheckOptions,
    run_ts: int | None = None,
) -> CheckResult:
    """Run the three sub-queries for one customer and decide its status."""
    run_ts = run_ts if run_ts is not None else int(time.time())
    logger.info("Checking %s (%s)...", customer.name, customer.org_id)

    answers: dict[str, str] = {}
    for kind, query in build_queries(customer, index, run_ts).items():
        reply = await client.send(query)
        if reply.failed:
            logger.error("Billing agent unreachable for %s: %s", customer.name, reply.error)
            return CheckResult.failed(customer, f"Billing agent request failed: {reply.error}")
        answers[kind] = reply.text

    if not any(text.strip() for text in answers.values()):
        logger.error("No response from billing agent for %s", customer.name)
        return CheckResult.failed(customer, NO_RESPONSE)

    raw_response = "\n\n".join(text for text in answers.values() if text.strip())
    signals = extract_signals(answers)

    if signals.reported_credit_limit is not None and signals.reported_credit_limit != customer.credit_limit:
        logger.warning(
            "%s: agent reports credit limit %s %s, config says %s %s",
            customer.name,
            customer.currency,
            signals.reported_credit_limit,
            customer.currency,
            customer.credit_limit,
        )

    try:
        projection = project(
            credit_limit=customer.credit_limit,
            current_balance=signals.current_balance,
            next_month_mrc=signals.next_month_mrc,
            daily_run_rate=signals.daily_run_rate,
            buffer_days=options.buffer_days,
            increase_pct=options.increase_pct,
            threshold=options.threshold,
        )
    except MissingSignalError as exc:
        logger.warning("Could not extract %s for %s", exc.field, customer.name)
        return CheckResult.unparsed(customer, raw_response, f"Could not extract: {exc.field}")

    risk_level = classify_risk(projection.remaining, signals.is_vip, signals.has_autorecharge)
    if projection.alert:
        logger.warning(
            "ALERT: %s shortfall of %s %s (risk: %s)",
            customer.name,
            customer.currency,
            abs(projection.remaining),
            risk_level,
        )
    else:
        logger.info("%s: %s %s remaining", customer.name, customer.currency, projection.remaining)

    return CheckResult.from_projection(customer, signals, projection, risk_level, options.buffer_days)


# ---------------------------------------------------------------------------
# Whole run
# ---------------------------------------------------------------------------


def _record(result: CheckResult) -> None:
    CUSTOMER_CHECKS_TOTAL.labels(status=result.status).inc()
    if result.risk_level is not None:
        CUSTOMER_RISK_TOTAL.labels(risk_level=result.risk_level.value).inc()


async def run_credit_check(
    config: MonitorConfig,
    client: AgentClient,
    options: CheckOptions,
    *,
    stop_event: asyncio.Event | None = None,
) -> CreditCheckReport:
    """Check every configured customer and assemble the report.

    Setting ``stop_event`` stops new customers from starting; they are
    recorded as errors.  Customers already in flight run to completion.
    """
    run_ts = int(time.time())
    timestamp = datetime.now(UTC).strftime(TIMESTAMP_FORMAT)
    semaphore = asyncio.Semaphore(options.max_concurrency)
    customers = config.customers
    logger.info("Starting credit check for %d customer(s)", len(customers))

    async def _guarded(index: int, customer: CustomerSpec) -> CheckResult:
        async with semaphore:
            if stop_event is not None and stop_event.is_set():
                return CheckResult.failed(customer, CANCELLED)
            try:
                return await asyncio.wait_for(
                    check_customer(customer, index, client, options, run_ts),
                    timeout=options.customer_timeout,
                )
            except TimeoutError:
                limit = options.customer_timeout or 0
                logger.error("Check for %s timed out after %.0fs", customer.name, limit)
                return CheckResult.failed(customer, f"Check timed out after {limit:.0f}s")
            except Exception as exc:
                logger.exception("Check for %s failed", customer.name)
                return CheckResult.failed(customer, f"{type(exc).__name__}: {exc}")

    results = list(await asyncio.gather(*[_guarded(i, c) for i, c in enumerate(customers)]))

    for result in results:
        _record(result)
    report = CreditCheckReport(
        timestamp=timestamp,
        alert_channel=config.slack.alert_channel,
        escalation_channel=config.slack.escalation_channel,
        threshold=options.threshold,
        results=results,
    )
    CUSTOMERS_NEEDING_ATTENTION.set(report.attention_count)
    logger.info(
        "Credit check completed: %d checked, %d alert(s), %d error(s)",
        len(results),
        len(report.alerts),
        len(report.errors),
    )
    return report
