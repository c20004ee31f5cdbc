"""Sub-query prompts for one customer and assembly of their answers into signals."""

import json
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Any

from credit_check.extraction.extractor import extract_bool, extract_number, parse_amount
from credit_check.models import AgentQuery, CustomerSpec, ExtractedSignals

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Sub-queries
# ---------------------------------------------------------------------------

BALANCE = "balance"
USAGE = "usage"
FLAGS = "flags"

QUERY_TEMPLATES: dict[str, str] = {
    BALANCE: (
        "For org {org_id}, what is the current account balance and the credit limit? "
        "Give both amounts in {currency}."
    ),
    USAGE: (
        "For org {org_id}, what is the usage so far this month, the MRC (monthly recurring "
        "charge) for next month, and the daily run rate? Give all amounts in {currency}."
    ),
    FLAGS: (
        "For org {org_id}, is auto-recharge enabled on the account, and is the account VIP "
        "priority (never auto-disabled)? Answer yes or no for each."
    ),
}

# ---------------------------------------------------------------------------
# Keyword patterns
# ---------------------------------------------------------------------------

BALANCE_PATTERN = r"balance"
CREDIT_LIMIT_PATTERN = r"credit.?limit"
USAGE_PATTERN = r"usage"
MRC_PATTERN = r"mrc|monthly.?recurring"
RUN_RATE_PATTERN = r"daily.?(?:run.?)?rate|run.?rate|per.?day"
AUTORECHARGE_PATTERN = r"auto.?recharge"
VIP_PATTERN = r"vip|priority"

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def build_queries(customer: CustomerSpec, index: int, run_ts: int) -> dict[str, AgentQuery]:
    """The three sub-queries for one customer keyed by kind, ids unique within the run."""
    return {
        kind: AgentQuery(
            id=f"eom-check-{run_ts}-{index}-{kind}",
            prompt=template.format(org_id=customer.org_id, currency=customer.currency),
        )
        for kind, template in QUERY_TEMPLATES.items()
    }


# ---------------------------------------------------------------------------
# Structured answers
# ---------------------------------------------------------------------------


def _embedded_json(text: str) -> dict[str, Any]:
    """Decode a JSON object embedded in the answer, or return an empty dict."""
    match = _JSON_OBJECT.search(text)
    if match is None:
        return {}
    try:
        data = json.loads(match.group(0), parse_float=Decimal)
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def _json_amount(value: object) -> Decimal | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal | int):
        amount: Decimal | None = Decimal(value)
    elif isinstance(value, str):
        try:
            amount = Decimal(value.replace(",", "").strip())
        except InvalidOperation:
            amount = parse_amount(value)
    else:
        return None
    return amount if amount is not None and amount.is_finite() else None


def _json_flag(value: object) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "enabled", "on"):
            return True
        if lowered in ("false", "no", "disabled", "off"):
            return False
    return None


def _first_key(data: dict[str, Any], *keys: str) -> object:
    for key in keys:
        if key in data:
            return data[key]
    return None


def structured_signals(text: str) -> dict[str, Any]:
    """Fields recoverable from a JSON object embedded in ``text``; absent keys are omitted."""
    data = _embedded_json(text)
    if not data:
        return {}

    found: dict[str, Any] = {}
    amounts = {
        "current_balance": ("current_balance", "balance"),
        "current_month_usage": ("current_month_usage", "usage"),
        "next_month_mrc": ("next_month_mrc", "mrc"),
        "daily_run_rate": ("daily_run_rate", "run_rate"),
        "reported_credit_limit": ("credit_limit",),
    }
    for field, keys in amounts.items():
        amount = _json_amount(_first_key(data, *keys))
        if amount is not None:
            found[field] = amount

    flags = {
        "has_autorecharge": ("has_autorecharge_enabled", "has_autorecharge", "autorecharge"),
        "is_vip": ("is_vip", "vip"),
    }
    for field, keys in flags.items():
        flag = _json_flag(_first_key(data, *keys))
        if flag is not None:
            found[field] = flag
    return found


# ---------------------------------------------------------------------------
# Free-text answers
# ---------------------------------------------------------------------------


def _number_from(answers: dict[str, str], primary: str, pattern: str) -> Decimal | None:
    """Look in the answer to the sub-query that asked for the field, then the others."""
    ordered = [answers.get(primary, "")] + [text for kind, text in answers.items() if kind != primary]
    for text in ordered:
        value = extract_number(text, pattern)
        if value is not None:
            return value
    return None


def _flag_from(answers: dict[str, str], primary: str, pattern: str) -> bool:
    """The first answer that mentions the keyword decides the flag."""
    keyword = re.compile(pattern, re.IGNORECASE)
    ordered = [answers.get(primary, "")] + [text for kind, text in answers.items() if kind != primary]
    for text in ordered:
        if keyword.search(text):
            return extract_bool(text, pattern)
    return False


def extract_signals(answers: dict[str, str]) -> ExtractedSignals:
    """Build ``ExtractedSignals`` from sub-query answers keyed by query kind.

    Values from an embedded JSON object take precedence over free-text
    heuristics for the same field.
    """
    structured: dict[str, Any] = {}
    for text in answers.values():
        for field, value in structured_signals(text).items():
            structured.setdefault(field, value)
    if structured:
        logger.debug("Structured fields in agent answer: %s", sorted(structured))

    heuristic = {
        "current_balance": _number_from(answers, BALANCE, BALANCE_PATTERN),
        "reported_credit_limit": _number_from(answers, BALANCE, CREDIT_LIMIT_PATTERN),
        "current_month_usage": _number_from(answers, USAGE, USAGE_PATTERN),
        "next_month_mrc": _number_from(answers, USAGE, MRC_PATTERN),
        "daily_run_rate": _number_from(answers, USAGE, RUN_RATE_PATTERN),
        "has_autorecharge": _flag_from(answers, FLAGS, AUTORECHARGE_PATTERN),
        "is_vip": _flag_from(answers, FLAGS, VIP_PATTERN),
    }
    return ExtractedSignals.model_validate(heuristic | structured)
