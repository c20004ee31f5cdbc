"""Slack delivery of credit check alerts.

One run posts at most three kinds of message:

- a summary to the alert channel listing every alerting customer and the
  error count,
- a threaded detail reply under the summary for each HIGH risk customer,
- an escalation to the escalation channel listing the HIGH risk customers.

A clean run (no alerts, no errors) posts nothing.  Delivery failures are
logged and counted but never raised, so one failed message does not stop
the rest.
"""

import logging
from decimal import Decimal

import httpx
from pydantic import BaseModel, Field

from credit_check.config import ConfigError, get_settings
from credit_check.models import CheckResult, CreditCheckReport, RiskLevel
from credit_check.observability.metrics import SLACK_MESSAGES_TOTAL

logger = logging.getLogger(__name__)

DRY_RUN_TS = "dry-run"
SLACK_TIMEOUT = httpx.Timeout(30.0, connect=10.0)

_RISK_ICONS = {
    RiskLevel.OK: "✅ OK",
    RiskLevel.LOW_PROTECTED: "⚠️ Low (protected)",
    RiskLevel.MEDIUM: "⚠️ Medium",
    RiskLevel.HIGH: "🚨 HIGH",
}


class SlackPostSummary(BaseModel):
    """What a ``post_alerts`` call delivered."""

    posted: bool = False
    dry_run: bool = False
    summary_ts: str | None = None
    threaded: int = 0
    escalated: int = 0
    failures: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


# ---------------------------------------------------------------------------
# Message formatting
# ---------------------------------------------------------------------------


def format_money(currency: str | None, amount: Decimal | None) -> str:
    if amount is None:
        return "N/A"
    return f"{currency or ''} {amount:,.2f}".strip()


def _alert_line(result: CheckResult) -> str:
    remaining = result.remaining if result.remaining is not None else Decimal(0)
    if remaining < 0:
        position = f"Shortfall of {format_money(result.currency, abs(remaining))}"
    else:
        position = f"{format_money(result.currency, remaining)} remaining (below threshold)"

    autorecharge = "✅ ON" if result.has_autorecharge else "❌ OFF"
    vip = "✅ VIP" if result.is_vip else "❌ No"
    risk = _RISK_ICONS.get(result.risk_level or RiskLevel.HIGH, "🚨 HIGH")
    return (
        f"• *{result.customer}*: {position}"
        f" | Auto-Recharge: {autorecharge} | VIP: {vip} | Risk: {risk}"
        f" (limit: {format_money(result.currency, result.credit_limit)}"
        f" → suggested: {format_money(result.currency, result.suggested_credit_limit)})"
    )


def format_summary(report: CreditCheckReport) -> str:
    """Summary for the alert channel: every alerting customer plus the error count."""
    alerts = report.alerts
    lines = [
        f"🔴 *EOM Credit Check - {report.timestamp}*",
        f"{len(alerts)} of {len(report.results)} customers flagged",
        "",
    ]
    lines.extend(_alert_line(r) for r in alerts)

    error_count = len(report.errors)
    if error_count:
        lines.extend(["", f"⚠️ {error_count} customer(s) had errors - check logs."])
    return "\n".join(lines).rstrip()


def format_thread_detail(result: CheckResult) -> str:
    """Per-customer breakdown threaded under the summary."""
    currency = result.currency
    return "\n".join(
        [
            f"🚨 *{result.customer}* - HIGH RISK",
            f"Org: `{result.org_id}`",
            f"Credit Limit: {format_money(currency, result.credit_limit)}",
            f"Current Usage: {format_money(currency, result.current_month_usage)}"
            f" | MRC: {format_money(currency, result.next_month_mrc)}"
            f" | Daily Rate: {format_money(currency, result.daily_run_rate)}",
            f"Projected Remaining: {format_money(currency, result.remaining)}",
            f"Suggested Limit: {format_money(currency, result.suggested_credit_limit)}",
            "Action: Auto-recharge OFF, not VIP - needs manual review",
        ]
    )


def format_escalation(high_risk: list[CheckResult]) -> str:
    lines = [
        f"🚨 *CRITICAL ESCALATION - {len(high_risk)} customer(s) at HIGH risk (no auto-recharge, no VIP)*",
        "",
    ]
    lines.extend(
        f"• *{r.customer}*: {format_money(r.currency, r.remaining)} projected remaining" for r in high_risk
    )
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------


class SlackPoster:
    """Posts messages via ``chat.postMessage``, or logs them in dry-run mode."""

    def __init__(self, client: httpx.AsyncClient | None, token: str, api_url: str, *, dry_run: bool) -> None:
        self._client = client
        self._token = token
        self._api_url = api_url
        self.dry_run = dry_run

    async def post(self, channel: str, text: str, *, kind: str, thread_ts: str | None = None) -> str | None:
        """Post one message and return its ``ts``, or None if delivery failed."""
        if self.dry_run:
            thread = f" (thread {thread_ts})" if thread_ts else ""
            logger.info("[DRY-RUN] Would post to %s%s:\n%s", channel, thread, text)
            SLACK_MESSAGES_TOTAL.labels(kind=kind, status="dry_run").inc()
            return DRY_RUN_TS

        payload: dict[str, object] = {"channel": channel, "text": text, "mrkdwn": True}
        if thread_ts:
            payload["thread_ts"] = thread_ts

        if self._client is None:
            msg = "SlackPoster needs an HTTP client outside dry-run mode"
            raise RuntimeError(msg)
        try:
            resp = await self._client.post(
                self._api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self._token}"},
            )
            _ = resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Slack %s post to %s failed: %s", kind, channel, exc)
            SLACK_MESSAGES_TOTAL.labels(kind=kind, status="error").inc()
            return None

        if not isinstance(body, dict) or not body.get("ok"):
            error = body.get("error", "unknown error") if isinstance(body, dict) else "unexpected response"
            logger.error("Slack rejected %s post to %s: %s", kind, channel, error)
            SLACK_MESSAGES_TOTAL.labels(kind=kind, status="error").inc()
            return None

        SLACK_MESSAGES_TOTAL.labels(kind=kind, status="success").inc()
        ts = body.get("ts")
        return ts if isinstance(ts, str) else ""


async def _deliver(report: CreditCheckReport, poster: SlackPoster) -> SlackPostSummary:
    summary = SlackPostSummary(posted=True, dry_run=poster.dry_run)

    logger.info("Posting summary to alert channel (%s)...", report.alert_channel)
    summary_ts = await poster.post(report.alert_channel, format_summary(report), kind="summary")
    if summary_ts is None:
        summary.failures.append("summary")
    summary.summary_ts = summary_ts or None

    high_risk = report.high_risk
    if high_risk and summary.summary_ts:
        for result in high_risk:
            logger.info("Threading detail for %s...", result.customer)
            ts = await poster.post(
                report.alert_channel,
                format_thread_detail(result),
                kind="thread",
                thread_ts=summary.summary_ts,
            )
            if ts is None:
                summary.failures.append(f"thread:{result.customer}")
            else:
                summary.threaded += 1

    if high_risk:
        logger.info("Escalating %d HIGH risk case(s) to %s...", len(high_risk), report.escalation_channel)
        ts = await poster.post(report.escalation_channel, format_escalation(high_risk), kind="escalation")
        if ts is None:
            summary.failures.append("escalation")
        else:
            summary.escalated = len(high_risk)

    logger.info("Done. %d alert(s) posted.", len(report.alerts))
    return summary


async def post_alerts(report: CreditCheckReport, *, dry_run: bool | None = None) -> SlackPostSummary:
    """Post a report's alerts to Slack.

    Args:
        report: The finished credit check report.
        dry_run: Log messages instead of posting.  Defaults to the ``DRY_RUN`` setting.

    Returns:
        A ``SlackPostSummary``; ``posted`` is False when there was nothing to post.

    Raises:
        ConfigError: If ``SLACK_BOT_TOKEN`` is unset outside dry-run mode.
    """
    settings = get_settings()
    dry = settings.dry_run if dry_run is None else dry_run

    if not report.alerts and not report.errors:
        logger.info("All %d customers within credit limits. No alerts to post.", len(report.results))
        return SlackPostSummary(dry_run=dry)

    if dry:
        return await _deliver(report, SlackPoster(None, "", settings.slack_api_url, dry_run=True))

    if not settings.slack_bot_token:
        msg = "SLACK_BOT_TOKEN is not set"
        raise ConfigError(msg)

    async with httpx.AsyncClient(timeout=SLACK_TIMEOUT) as client:
        poster = SlackPoster(client, settings.slack_bot_token, settings.slack_api_url, dry_run=False)
        return await _deliver(report, poster)
