"""Month-end credit projection.

``remaining`` is the headroom left under the credit limit once the current
balance, next month's recurring charge and a buffer of daily run-rate usage
are taken out.  The current month's usage is already reflected in the
balance and is never subtracted.
"""

from decimal import ROUND_HALF_UP, Decimal

from credit_check.models import Projection

CENT = Decimal("0.01")


class MissingSignalError(ValueError):
    """A value the projection cannot do without was not extracted."""

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"{field} is required for the projection")


def to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def project(
    credit_limit: Decimal,
    current_balance: Decimal | None,
    next_month_mrc: Decimal | None,
    daily_run_rate: Decimal | None,
    buffer_days: int,
    increase_pct: Decimal,
    threshold: Decimal = Decimal(0),
) -> Projection:
    """Compute remaining credit and whether it falls below ``threshold``.

    A missing MRC counts as zero.  A missing balance or run rate raises
    ``MissingSignalError`` rather than producing a projection.
    """
    if current_balance is None:
        raise MissingSignalError("current_balance")
    if daily_run_rate is None:
        raise MissingSignalError("daily_run_rate")
    mrc = next_month_mrc if next_month_mrc is not None else Decimal(0)

    remaining = to_cents(credit_limit - abs(current_balance) - mrc - buffer_days * daily_run_rate)
    alert = remaining < threshold

    suggested = None
    if alert:
        suggested = to_cents(credit_limit * (1 + increase_pct / 100))
    return Projection(remaining=remaining, alert=alert, suggested_credit_limit=suggested)
