"""
Quota evaluation: pure arithmetic over a quota row and a requested amount.

A missing quota row or limit_value == -1 means unlimited. No database access
happens here; callers load the quota first.
"""
import math
from dataclasses import dataclass
from typing import Optional

from metering.exceptions import ValidationError
from metering.models.usage_quota import UNLIMITED, UsageQuota


@dataclass(frozen=True)
class QuotaEvaluation:
    """Outcome of checking a requested amount against a quota."""
    allowed: bool
    remaining: float  # math.inf when unlimited
    would_exceed: bool
    upgrade_required: bool
    suggested_plan: Optional[str] = None


UNLIMITED_EVALUATION = QuotaEvaluation(
    allowed=True,
    remaining=math.inf,
    would_exceed=False,
    upgrade_required=False,
)


def remaining_capacity(limit_value: int, current_usage: int) -> float:
    """Units still available; never negative."""
    if limit_value == UNLIMITED:
        return math.inf
    return max(0, limit_value - current_usage)


def utilization_percentage(current_usage: int, limit_value: int) -> float:
    """
    current_usage * 100 / limit_value; 0 for unlimited quotas.
    A zero limit counts as fully used once anything has been consumed.
    """
    if limit_value == UNLIMITED:
        return 0.0
    if limit_value == 0:
        return 100.0 if current_usage > 0 else 0.0
    return current_usage * 100 / limit_value


class QuotaEvaluator:
    """Decides whether a metered action fits within a quota."""

    def __init__(self, suggested_plan: str = "pro"):
        self.suggested_plan = suggested_plan

    def evaluate(self, quota: Optional[UsageQuota], requested_amount: int) -> QuotaEvaluation:
        """
        Check `requested_amount` units against `quota`.

        Args:
            quota: Quota row, or None when no quota is configured
            requested_amount: Units the caller intends to consume (>= 1)

        Returns:
            QuotaEvaluation; suggested_plan is set only when the request
            would exceed the quota

        Raises:
            ValidationError: If requested_amount is below 1
        """
        if requested_amount < 1:
            raise ValidationError("Requested amount must be at least 1")

        # No quota configured: treated as unlimited
        if quota is None or quota.limit_value == UNLIMITED:
            return UNLIMITED_EVALUATION

        remaining = remaining_capacity(quota.limit_value, quota.current_usage)
        would_exceed = requested_amount > remaining

        return QuotaEvaluation(
            allowed=not would_exceed,
            remaining=remaining,
            would_exceed=would_exceed,
            upgrade_required=would_exceed,
            suggested_plan=self.suggested_plan if would_exceed else None,
        )
