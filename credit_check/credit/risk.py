from decimal import Decimal

from credit_check.models import RiskLevel


def classify_risk(remaining: Decimal, is_vip: bool, has_autorecharge: bool) -> RiskLevel:
    """Grade a projection.  Each protective flag lowers the level of a shortfall by one step."""
    if remaining >= 0:
        return RiskLevel.OK
    if is_vip and has_autorecharge:
        return RiskLevel.LOW_PROTECTED
    if is_vip or has_autorecharge:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH
