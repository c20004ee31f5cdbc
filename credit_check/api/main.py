"""FastAPI service for the EOM credit check.

Exposes Prometheus metrics, a dependency health check and an on-demand
check run.  The cron scheduler is started and stopped with the app.
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel

from credit_check.check.scheduler import start_scheduler, stop_scheduler
from credit_check.check.service import execute_check
from credit_check.config import ConfigError, MonitorConfig, get_settings, load_monitor_config, resolve_agent_url
from credit_check.notify.slack import SlackPostSummary
from credit_check.observability.metrics import APP_INFO, COMPONENT_HEALTHY, REQUEST_DURATION, REQUESTS_TOTAL

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class CheckRequest(BaseModel):
    """Request body for POST /check."""

    post: bool = False
    dry_run: bool | None = None


class CheckResponse(BaseModel):
    """Response body for POST /check."""

    report: dict[str, Any]
    alerts: int
    errors: int
    slack: SlackPostSummary | None = None


class ComponentHealth(BaseModel):
    """Health status of a single dependency."""

    name: str
    status: str
    detail: str | None = None


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str
    version: str
    components: list[ComponentHealth]


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the scheduler at startup, stop it on shutdown."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    APP_INFO.info({"version": VERSION})

    start_scheduler()
    yield
    stop_scheduler()
    logger.info("Shutting down EOM credit check service")


app = FastAPI(title="EOM Credit Check", lifespan=lifespan)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Check the monitor config, the billing agent and Slack credentials."""
    settings = get_settings()
    components: list[ComponentHealth] = []

    # --- Monitor config ---
    config: MonitorConfig | None = None
    try:
        config = load_monitor_config(settings.config_path)
        components.append(
            ComponentHealth(name="config", status="healthy", detail=f"{len(config.customers)} customer(s)")
        )
    except ConfigError as exc:
        components.append(ComponentHealth(name="config", status="unhealthy", detail=str(exc)))

    # --- Billing agent (any non-5xx answer means it is reachable) ---
    agent_url = resolve_agent_url(config, settings) if config else settings.a2a_endpoint
    if agent_url:
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(agent_url)
            if resp.status_code < 500:
                components.append(ComponentHealth(name="billing_agent", status="healthy"))
            else:
                components.append(
                    ComponentHealth(name="billing_agent", status="unhealthy", detail=f"HTTP {resp.status_code}")
                )
        except Exception as exc:
            components.append(ComponentHealth(name="billing_agent", status="unhealthy", detail=str(exc)))
    else:
        components.append(
            ComponentHealth(name="billing_agent", status="unhealthy", detail="No billing agent endpoint configured")
        )

    # --- Slack ---
    if settings.slack_bot_token:
        components.append(ComponentHealth(name="slack", status="healthy"))
    elif settings.dry_run:
        components.append(ComponentHealth(name="slack", status="healthy", detail="dry-run"))
    else:
        components.append(ComponentHealth(name="slack", status="unhealthy", detail="SLACK_BOT_TOKEN not set"))

    # --- Update Prometheus gauges ---
    for comp in components:
        COMPONENT_HEALTHY.labels(component=comp.name).set(1.0 if comp.status == "healthy" else 0.0)

    # --- Overall status ---
    healthy_count = sum(1 for c in components if c.status == "healthy")
    if healthy_count == len(components):
        overall = "healthy"
    elif healthy_count == 0:
        overall = "unhealthy"
    else:
        overall = "degraded"

    return HealthResponse(status=overall, version=VERSION, components=components)


@app.post("/check", response_model=CheckResponse)
async def check(request: CheckRequest | None = None) -> CheckResponse:
    """Run the credit check now, optionally posting alerts to Slack."""
    request = request or CheckRequest()
    start = time.monotonic()

    try:
        run = await execute_check(trigger="manual", post=request.post, dry_run=request.dry_run)
    except Exception as exc:
        REQUESTS_TOTAL.labels(endpoint="/check", status="error").inc()
        REQUEST_DURATION.labels(endpoint="/check").observe(time.monotonic() - start)
        logger.exception("Credit check failed")
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    REQUESTS_TOTAL.labels(endpoint="/check", status="success").inc()
    REQUEST_DURATION.labels(endpoint="/check").observe(time.monotonic() - start)

    report = run.report
    return CheckResponse(
        report=report.to_output(),
        alerts=len(report.alerts),
        errors=len(report.errors),
        slack=run.slack,
    )
