"""Heuristic extraction of amounts and flags from free-form agent answers.

The billing agent replies in prose, markdown, tables, or now and then JSON.
Each extractor runs a fixed sequence of named strategies and returns the
first hit, so a given text always yields the same value.

Nothing here raises for any input text: a missing amount is ``None``
(callers must treat it as a failed extraction, never as zero) and a missing
flag is ``False``.
"""

import logging
import re
from collections.abc import Callable
from decimal import Decimal, InvalidOperation

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Amount tokens
# ---------------------------------------------------------------------------

_CURRENCY_SYMBOL = r"[$€£¥]"
_AMOUNT = r"\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?"

# Sign and currency symbol may come in either order: -$1,234.50 or $-1,234.50.
# Percentages and digits glued to words (Q3, v2) are not amounts.
NUMBER_TOKEN = re.compile(
    rf"(?<![\w.,])(?P<sign>[-+])?(?:(?P<symbol>{_CURRENCY_SYMBOL})\s?)?(?P<inner_sign>[-+])?"
    rf"(?P<amount>{_AMOUNT})(?![.,]?\d)(?!\s?%)"
)

NEGATIVE_CURRENCY = re.compile(
    rf"(?<![\w.,])(?:-\s?{_CURRENCY_SYMBOL}\s?|{_CURRENCY_SYMBOL}\s?-)(?P<amount>{_AMOUNT})(?![.,]?\d)"
    rf"|(?<![\w.,])-(?P<coded_amount>{_AMOUNT})\s?(?:USD|EUR|GBP|CAD|AUD)\b"
)

# "Balance: -$5", "limit is $10,000", "rate of $12.50"
LABELLED_FIELD = re.compile(
    rf"[A-Za-z]{{2,}}\s*(?::|=|\b(?:is|was|of|at)\b)\s*(?:{_CURRENCY_SYMBOL}\s?)?[-+]?(?:{_CURRENCY_SYMBOL}\s?)?\d"
)

KEYWORD_WINDOW_CHARS = 30

_MARKUP = re.compile(r"[*`]")


def _normalise(text: str) -> str:
    """Drop markdown emphasis and unify Unicode minus signs."""
    return _MARKUP.sub("", text).replace("−", "-").replace("–", "-")


def _token_value(match: re.Match[str]) -> Decimal | None:
    amount = match.group("amount").replace(",", "")
    try:
        value = Decimal(amount)
    except InvalidOperation:
        return None
    negative = "-" in ((match.group("sign") or "") + (match.group("inner_sign") or ""))
    return -value if negative else value


def parse_amount(value: str) -> Decimal | None:
    """Parse the first amount in a short string such as ``"-$46,891.29 USD"``."""
    match = NUMBER_TOKEN.search(_normalise(value))
    return _token_value(match) if match else None


def _keyword(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


# ---------------------------------------------------------------------------
# Number strategies, in priority order
# ---------------------------------------------------------------------------


def _labelled_fields(line: str) -> int:
    return sum(1 for _ in LABELLED_FIELD.finditer(line))


def number_on_keyword_line(text: str, pattern: str) -> Decimal | None:
    """First amount on the first line that mentions the keyword.

    A line holding several labelled fields (``Limit: $50,000 | Balance: -$46,891``)
    is read from the keyword onwards instead, falling back to the first amount
    on the line.
    """
    keyword = _keyword(pattern)
    for line in text.splitlines():
        hit = keyword.search(line)
        if hit is None:
            continue
        token = None
        if _labelled_fields(line) > 1:
            token = NUMBER_TOKEN.search(line, hit.end())
        token = token or NUMBER_TOKEN.search(line)
        return _token_value(token) if token else None
    return None


def number_near_keyword(text: str, pattern: str) -> Decimal | None:
    """Keyword followed within a short window by an amount, across line breaks."""
    flat = " ".join(text.split())
    near = re.compile(
        rf"(?:{pattern}).{{0,{KEYWORD_WINDOW_CHARS}}}?{NUMBER_TOKEN.pattern}",
        re.IGNORECASE,
    )
    match = near.search(flat)
    return _token_value(match) if match else None


def first_negative_currency(text: str, pattern: str) -> Decimal | None:
    """Balances are usually quoted as negative amounts; take the first one.

    Only applies when the keyword concerns a balance.
    """
    if "balance" not in pattern.lower():
        return None
    match = NEGATIVE_CURRENCY.search(text)
    if match is None:
        return None
    amount = (match.group("amount") or match.group("coded_amount")).replace(",", "")
    try:
        return -Decimal(amount)
    except InvalidOperation:
        return None


NumberStrategy = Callable[[str, str], Decimal | None]

NUMBER_STRATEGIES: tuple[tuple[str, NumberStrategy], ...] = (
    ("keyword_line", number_on_keyword_line),
    ("keyword_window", number_near_keyword),
    ("negative_currency", first_negative_currency),
)


def extract_number(text: str, pattern: str) -> Decimal | None:
    """Locate an amount associated with ``pattern`` (a case-insensitive regex).

    Returns None when no strategy finds one.
    """
    if not text or not text.strip():
        return None
    normalised = _normalise(text)
    for name, strategy in NUMBER_STRATEGIES:
        value = strategy(normalised, pattern)
        if value is not None:
            logger.debug("Extracted %r = %s via %s", pattern, value, name)
            return value
    return None


# ---------------------------------------------------------------------------
# Flags
# ---------------------------------------------------------------------------

SNIPPET_AFTER_CHARS = 40
SNIPPET_BEFORE_CHARS = 20
WIDE_WINDOW_CHARS = 80

_CLAUSE_BREAK = re.compile(r"[.;,!()\n]|\b(?:but|however|while|whereas)\b", re.IGNORECASE)
_SENTENCE_BREAK = re.compile(r"[.;!\n]")

_POSITIVE_WORDS = re.compile(
    r"\b(?:enabled|activated|active|yes|true|configured)\b"
    r"|\b(?:is|turned|switched|set)\s+on\b|[:=]\s*on\b|✅|✓",
    re.IGNORECASE,
)
_NEGATIVE_WORDS = re.compile(
    r"\b(?:not|no|never|non|disabled|deactivated|inactive|off|false|none|without)\b|n['’]t\b|❌|✗",
    re.IGNORECASE,
)
# VIP accounts are described as never being auto-disabled.
_NEVER_AUTO_DISABLED = re.compile(r"\b(?:never|not)\s+(?:be\s+)?auto.?disabled\b", re.IGNORECASE)


def _explicit_phrase(pattern: str) -> re.Pattern[str]:
    """``is a VIP``, ``has auto-recharge``, ``priority: VIP`` style statements."""
    return re.compile(
        rf"\b(?:is|as)\s+(?:an?\s+)?(?:{pattern})"
        rf"|\bhas\s+(?:{pattern})"
        rf"|\b(?:priority|tier|status|level)\s*[:=-]?\s*(?:{pattern})",
        re.IGNORECASE,
    )


def _is_positive(snippet: str, pattern: str) -> bool:
    """Positive vocabulary present and not negated anywhere in the snippet.

    "never auto-disabled" is itself positive and its negation does not count.
    """
    protected = _NEVER_AUTO_DISABLED.search(snippet) is not None
    rest = _NEVER_AUTO_DISABLED.sub(" ", snippet)
    if _NEGATIVE_WORDS.search(rest):
        return False
    return protected or bool(_POSITIVE_WORDS.search(rest) or _explicit_phrase(pattern).search(rest))


def _clause_around(text: str, hit: re.Match[str]) -> str:
    """The clause holding the keyword: a little context before, up to 40 chars after."""
    start = max(0, hit.start() - SNIPPET_BEFORE_CHARS)
    breaks = list(_CLAUSE_BREAK.finditer(text, start, hit.start()))
    if breaks:
        start = breaks[-1].end()

    end = min(len(text), hit.end() + SNIPPET_AFTER_CHARS)
    stop = _CLAUSE_BREAK.search(text, hit.end(), end)
    if stop is not None:
        end = stop.start()
    phrase = _NEVER_AUTO_DISABLED.search(text, hit.end())
    if phrase is not None and phrase.start() < end < phrase.end():
        end = phrase.end()
    return text[start:end]


def flag_in_keyword_clause(text: str, pattern: str) -> bool | None:
    """Decide from the clause around the first keyword mention, or None if it says nothing."""
    hit = _keyword(pattern).search(text)
    if hit is None:
        return None
    snippet = _clause_around(text, hit)
    if _is_positive(snippet, pattern):
        return True
    if _NEGATIVE_WORDS.search(snippet):
        return False
    return None


def flag_anywhere(text: str, pattern: str) -> bool | None:
    """Any keyword mention followed, within the same sentence, by positive evidence."""
    for hit in _keyword(pattern).finditer(text):
        end = min(len(text), hit.end() + WIDE_WINDOW_CHARS)
        stop = _SENTENCE_BREAK.search(text, hit.end(), end)
        window = text[hit.start() : stop.start() if stop else end]
        if _is_positive(window, pattern):
            return True
    return None


FlagStrategy = Callable[[str, str], bool | None]

FLAG_STRATEGIES: tuple[tuple[str, FlagStrategy], ...] = (
    ("keyword_clause", flag_in_keyword_clause),
    ("wide_window", flag_anywhere),
)


def extract_bool(text: str, pattern: str) -> bool:
    """Locate a yes/no flag near ``pattern``. Defaults to False without positive evidence."""
    if not text or not text.strip():
        return False
    normalised = _normalise(text)
    for name, strategy in FLAG_STRATEGIES:
        value = strategy(normalised, pattern)
        if value is not None:
            logger.debug("Extracted %r = %s via %s", pattern, value, name)
            return value
    return False
