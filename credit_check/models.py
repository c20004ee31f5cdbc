"""Pydantic models shared by the credit check pipeline.

Money is carried as ``Decimal`` end to end and serialised as a JSON number so
the audit output keeps the shape downstream tooling already consumes.
"""

from decimal import Decimal
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

CheckStatus = Literal["ok", "parse_error", "error"]


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


class CustomerSpec(BaseModel):
    """One monitored account, as configured."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    org_id: str = Field(min_length=1)
    credit_limit: Money
    currency: str = Field(min_length=1)


class AgentQuery(BaseModel):
    """A single natural-language question for the billing agent."""

    id: str
    prompt: str


class AgentReply(BaseModel):
    """Raw answer text for one ``AgentQuery``.

    ``failed`` marks a request that never got through (retries exhausted).
    An agent that answered with nothing useful has ``failed=False`` and an
    empty ``text``.
    """

    text: str = ""
    failed: bool = False
    attempts: int = 1
    error: str | None = None

    @classmethod
    def request_failed(cls, error: str, attempts: int) -> "AgentReply":
        return cls(text="", failed=True, attempts=attempts, error=error)


# ---------------------------------------------------------------------------
# Derived values
# ---------------------------------------------------------------------------


class ExtractedSignals(BaseModel):
    """Financial facts recovered from the agent's answers.

    Numbers are ``None`` when extraction failed.  Flags default to False:
    no evidence of a protective factor is treated as its absence.
    """

    current_balance: Decimal | None = None
    current_month_usage: Decimal | None = None
    next_month_mrc: Decimal | None = None
    daily_run_rate: Decimal | None = None
    has_autorecharge: bool = False
    is_vip: bool = False
    reported_credit_limit: Decimal | None = None


class Projection(BaseModel):
    remaining: Decimal
    alert: bool
    suggested_credit_limit: Decimal | None = None


class RiskLevel(StrEnum):
    OK = "OK"
    LOW_PROTECTED = "Low (protected)"
    MEDIUM = "Medium"
    HIGH = "HIGH"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

_OK_FIELDS = {
    "customer",
    "org_id",
    "currency",
    "credit_limit",
    "current_balance",
    "current_month_usage",
    "next_month_mrc",
    "daily_run_rate",
    "buffer_days",
    "remaining",
    "alert",
    "has_autorecharge",
    "is_vip",
    "risk_level",
    "suggested_credit_limit",
    "status",
}


class CheckResult(BaseModel):
    """Outcome of checking one customer.

    Only ``ok`` results carry projection fields.  ``error`` and
    ``parse_error`` results have ``remaining=None`` and always count as
    needing attention.
    """

    customer: str
    org_id: str
    status: CheckStatus
    currency: str | None = None
    credit_limit: Money | None = None
    current_balance: Money | None = None
    current_month_usage: Money | None = None
    next_month_mrc: Money | None = None
    daily_run_rate: Money | None = None
    buffer_days: int | None = None
    remaining: Money | None = None
    alert: bool = False
    has_autorecharge: bool | None = None
    is_vip: bool | None = None
    risk_level: RiskLevel | None = None
    suggested_credit_limit: Money | None = None
    error: str | None = None
    raw_response: str | None = None

    @classmethod
    def failed(cls, customer: CustomerSpec, error: str) -> "CheckResult":
        return cls(customer=customer.name, org_id=customer.org_id, status="error", error=error)

    @classmethod
    def unparsed(cls, customer: CustomerSpec, raw_response: str, error: str) -> "CheckResult":
        return cls(
            customer=customer.name,
            org_id=customer.org_id,
            status="parse_error",
            raw_response=raw_response,
            error=error,
        )

    @classmethod
    def from_projection(
        cls,
        customer: CustomerSpec,
        signals: ExtractedSignals,
        projection: Projection,
        risk_level: RiskLevel,
        buffer_days: int,
    ) -> "CheckResult":
        return cls(
            customer=customer.name,
            org_id=customer.org_id,
            status="ok",
            currency=customer.currency,
            credit_limit=customer.credit_limit,
            current_balance=signals.current_balance,
            current_month_usage=signals.current_month_usage,
            next_month_mrc=signals.next_month_mrc,
            daily_run_rate=signals.daily_run_rate,
            buffer_days=buffer_days,
            remaining=projection.remaining,
            alert=projection.alert,
            has_autorecharge=signals.has_autorecharge,
            is_vip=signals.is_vip,
            risk_level=risk_level,
            suggested_credit_limit=projection.suggested_credit_limit,
        )

    @property
    def needs_attention(self) -> bool:
        return self.alert or self.status != "ok"

    def to_output(self) -> dict[str, Any]:
        """Serialise in the audit-trail shape: full detail for ok, diagnostics otherwise."""
        if self.status == "ok":
            return self.model_dump(mode="json", include=_OK_FIELDS)
        return self.model_dump(
            mode="json",
            include={"customer", "org_id", "status", "error", "raw_response"},
            exclude_none=True,
        )


class CreditCheckReport(BaseModel):
    """Everything one run produced, in configured customer order."""

    timestamp: str
    alert_channel: str
    escalation_channel: str
    threshold: Money
    results: list[CheckResult]

    @property
    def alerts(self) -> list[CheckResult]:
        return [r for r in self.results if r.alert]

    @property
    def errors(self) -> list[CheckResult]:
        return [r for r in self.results if r.status != "ok"]

    @property
    def high_risk(self) -> list[CheckResult]:
        return [r for r in self.alerts if r.risk_level == RiskLevel.HIGH]

    @property
    def attention_count(self) -> int:
        return sum(1 for r in self.results if r.needs_attention)

    def to_output(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "alert_channel": self.alert_channel,
            "escalation_channel": self.escalation_channel,
            "threshold": float(self.threshold),
            "results": [r.to_output() for r in self.results],
        }
