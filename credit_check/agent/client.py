"""JSON-RPC client for the upstream billing agent.

Each ``send`` posts one ``message/send`` request and unwraps the answer text.
Transient failures (connection errors, timeouts, non-2xx, empty or non-JSON
bodies) are retried under a ``RetryPolicy``.  ``send`` never raises for
transport problems: once attempts are exhausted it returns
``AgentReply.request_failed(...)`` and the caller decides what that means.
"""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import Any, ClassVar, Self

import httpx
from pydantic import BaseModel, ConfigDict, Field

from credit_check.config import Settings
from credit_check.models import AgentQuery, AgentReply
from credit_check.observability.metrics import AGENT_QUERIES_TOTAL, AGENT_QUERY_DURATION, AGENT_QUERY_RETRIES

logger = logging.getLogger(__name__)


class RetryPolicy(BaseModel):
    """Attempt budget, backoff schedule and timeouts for one agent query."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=2.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    jitter: float = Field(default=0.0, ge=0, le=1)
    connect_timeout: float = Field(default=10.0, gt=0)
    total_timeout: float = Field(default=30.0, gt=0)

    @classmethod
    def from_settings(cls, settings: Settings) -> Self:
        return cls(
            max_attempts=settings.agent_max_attempts,
            base_delay=settings.agent_base_delay_seconds,
            backoff_multiplier=settings.agent_backoff_multiplier,
            jitter=settings.agent_retry_jitter,
            connect_timeout=settings.agent_connect_timeout_seconds,
            total_timeout=settings.agent_total_timeout_seconds,
        )

    def backoff_delay(self, retry: int) -> float:
        """Delay before retry number ``retry`` (1-based), without jitter: 2, 4, 8, ..."""
        return self.base_delay * self.backoff_multiplier ** (retry - 1)

    def http_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.total_timeout, connect=self.connect_timeout)

    def worst_case_seconds(self) -> float:
        """Upper bound on one ``send``: every attempt times out and every delay hits max jitter."""
        delays = sum(self.backoff_delay(r) for r in range(1, self.max_attempts))
        return self.max_attempts * self.total_timeout + delays * (1 + self.jitter)


class AgentTransportError(Exception):
    """The agent answered, but not with something we can use (bad status, empty or non-JSON body)."""


def build_payload(query: AgentQuery) -> dict[str, object]:
    """Wrap a query in the agent's JSON-RPC ``message/send`` envelope."""
    return {
        "jsonrpc": "2.0",
        "id": query.id,
        "method": "message/send",
        "params": {
            "message": {
                "messageId": query.id,
                "role": "user",
                "parts": [{"kind": "text", "text": query.prompt}],
            }
        },
    }


def _first_part_text(parts: object) -> str:
    """Return the first non-blank ``text`` in a list of message parts."""
    if not isinstance(parts, list):
        return ""
    for part in parts:
        if isinstance(part, dict):
            text = part.get("text")
            if isinstance(text, str) and text.strip():
                return text
    return ""


def unwrap_agent_text(body: object) -> str:
    """Pull the answer text out of a JSON-RPC response.

    Tries ``result.artifacts[].parts[]``, then ``result.message.parts[]``,
    then ``result.parts[]``, and returns the first non-empty text.  Returns
    ``""`` when none of them hold any.
    """
    if not isinstance(body, dict):
        return ""
    result = body.get("result")
    if not isinstance(result, dict):
        return ""

    artifacts = result.get("artifacts")
    if isinstance(artifacts, list):
        for artifact in artifacts:
            if isinstance(artifact, dict):
                text = _first_part_text(artifact.get("parts"))
                if text:
                    return text

    message = result.get("message")
    if isinstance(message, dict):
        text = _first_part_text(message.get("parts"))
        if text:
            return text

    return _first_part_text(result.get("parts"))


class BillingAgentClient:
    """Sends queries to the billing agent with bounded retry and backoff.

    Use as an async context manager to share one connection pool across a
    run; outside a context each ``send`` opens its own client.
    """

    def __init__(
        self,
        url: str,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.url = url
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> Self:
        self._client = httpx.AsyncClient(timeout=self.policy.http_timeout())
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _retry_delay(self, retry: int) -> float:
        delay = self.policy.backoff_delay(retry)
        if self.policy.jitter:
            delay += self._rng.uniform(0, delay * self.policy.jitter)
        return delay

    async def _post(self, client: httpx.AsyncClient, payload: dict[str, object]) -> dict[str, Any]:
        response = await client.post(self.url, json=payload)
        _ = response.raise_for_status()
        if not response.content.strip():
            msg = "empty response body"
            raise AgentTransportError(msg)
        try:
            body: Any = response.json()
        except ValueError as exc:  # bad JSON or bad UTF-8
            msg = f"response is not JSON: {response.text[:200]}"
            raise AgentTransportError(msg) from exc
        if not isinstance(body, dict):
            msg = f"unexpected response type {type(body).__name__}"
            raise AgentTransportError(msg)
        return body

    async def _post_with_deadline(self, payload: dict[str, object]) -> dict[str, Any]:
        """One attempt, bounded by the policy's total timeout."""
        timeout = self.policy.total_timeout
        if self._client is not None:
            return await asyncio.wait_for(self._post(self._client, payload), timeout=timeout)
        async with httpx.AsyncClient(timeout=self.policy.http_timeout()) as client:
            return await asyncio.wait_for(self._post(client, payload), timeout=timeout)

    async def send(self, query: AgentQuery) -> AgentReply:
        """Send one query and return the agent's answer text."""
        payload = build_payload(query)
        max_attempts = self.policy.max_attempts
        last_error = ""

        for attempt in range(1, max_attempts + 1):
            start = time.monotonic()
            try:
                body = await self._post_with_deadline(payload)
            except httpx.HTTPStatusError as exc:
                last_error = f"HTTP {exc.response.status_code}"
            except (httpx.HTTPError, AgentTransportError) as exc:
                last_error = f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
            except TimeoutError:
                last_error = f"timed out after {self.policy.total_timeout:.0f}s"
            else:
                AGENT_QUERY_DURATION.observe(time.monotonic() - start)
                rpc_error = body.get("error")
                if rpc_error:
                    logger.warning("Billing agent returned an error for %s: %s", query.id, rpc_error)
                text = unwrap_agent_text(body)
                AGENT_QUERIES_TOTAL.labels(status="success" if text else "empty").inc()
                return AgentReply(text=text, attempts=attempt)

            AGENT_QUERY_DURATION.observe(time.monotonic() - start)
            if attempt >= max_attempts:
                break
            delay = self._retry_delay(attempt)
            AGENT_QUERY_RETRIES.inc()
            logger.warning(
                "Retry %d/%d for %s after %.1fs (%s)", attempt, max_attempts, query.id, delay, last_error
            )
            await self._sleep(delay)

        AGENT_QUERIES_TOTAL.labels(status="failed").inc()
        logger.error("Billing agent request %s failed after %d attempt(s): %s", query.id, max_attempts, last_error)
        return AgentReply.request_failed(last_error, attempts=max_attempts)
