"""
Usage analytics over a subject's event log.

Aggregation happens in Python over the events in the requested window;
windows are bounded (at most a year) and events are already indexed by
subject and creation time.
"""
import calendar
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from metering.exceptions import ValidationError
from metering.models.subject import Subject
from metering.models.usage_event import UsageEvent, UsageEventType
from metering.services.quota_evaluator import utilization_percentage
from metering.services.quota_service import QuotaService
from metering.utils.clock import billing_period

TIME_RANGES: Dict[str, timedelta] = {
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
}


@dataclass
class TrendPoint:
    date: str  # YYYY-MM-DD
    usage: int = 0
    cost: float = 0.0


@dataclass
class QuotaUtilization:
    used: int
    limit: int
    percentage: float


@dataclass
class UsageAnalytics:
    total_usage: int
    usage_by_type: Dict[str, int]
    usage_trend: List[TrendPoint]
    total_cost: float
    projected_cost: float
    current_period_usage: int
    previous_period_usage: int
    quota_utilization: Dict[str, QuotaUtilization] = field(default_factory=dict)


def event_cost(event: UsageEvent, pricing: Mapping[str, float]) -> float:
    """
    Dollar cost of an event: its own unit_price (cents) when set,
    otherwise the per-type price table.
    """
    if event.unit_price is not None:
        return event.unit_price / 100 * event.quantity
    return pricing.get(event.event_type.value, 0.0) * event.quantity


def project_monthly_cost(cost_so_far: float, now: datetime) -> float:
    """Extrapolate month-to-date cost linearly to the whole calendar month."""
    month_start, _ = billing_period(now)
    days_in_month = calendar.monthrange(now.year, now.month)[1]
    elapsed_days = (now - month_start).total_seconds() / 86400
    # Less than a day of data still projects as one full day
    return cost_so_far / max(elapsed_days, 1.0) * days_in_month


class AnalyticsService:
    """Service for usage analytics."""

    @staticmethod
    async def _events_between(
        db: AsyncSession,
        subject: Subject,
        start: datetime,
        end: datetime,
        event_type: Optional[UsageEventType] = None
    ) -> List[UsageEvent]:
        query = select(UsageEvent).where(
            UsageEvent.subject_key == subject.key,
            UsageEvent.created_at >= start,
            UsageEvent.created_at <= end
        )
        if event_type is not None:
            query = query.where(UsageEvent.event_type == event_type)
        result = await db.execute(query.order_by(UsageEvent.created_at.asc()))
        return list(result.scalars().all())

    @staticmethod
    async def _usage_between(
        db: AsyncSession,
        subject: Subject,
        start: datetime,
        end: datetime,
        event_type: Optional[UsageEventType] = None
    ) -> int:
        query = select(func.coalesce(func.sum(UsageEvent.quantity), 0)).where(
            UsageEvent.subject_key == subject.key,
            UsageEvent.created_at >= start,
            UsageEvent.created_at < end
        )
        if event_type is not None:
            query = query.where(UsageEvent.event_type == event_type)
        result = await db.execute(query)
        return int(result.scalar_one())

    @staticmethod
    async def analytics(
        db: AsyncSession,
        subject: Subject,
        now: datetime,
        pricing: Mapping[str, float],
        time_range: str = "30d",
        event_type: Optional[UsageEventType] = None,
        include_projections: bool = True
    ) -> UsageAnalytics:
        """
        Summarize a subject's usage over the window ending at `now`.

        Args:
            db: Database session
            subject: Subject whose events are aggregated
            now: End of the window
            pricing: Dollars per unit, keyed by event type
            time_range: One of 7d, 30d, 90d, 1y
            event_type: Restrict to a single event type
            include_projections: Compute projected_cost for the current month

        Returns:
            UsageAnalytics

        Raises:
            ValidationError: If time_range is unknown
        """
        if time_range not in TIME_RANGES:
            raise ValidationError(f"Invalid time range: {time_range}")

        window = TIME_RANGES[time_range]
        start = now - window

        events = await AnalyticsService._events_between(db, subject, start, now, event_type)

        usage_by_type: Dict[str, int] = {}
        trend: "OrderedDict[str, TrendPoint]" = OrderedDict()
        total_usage = 0
        total_cost = 0.0

        for event in events:
            cost = event_cost(event, pricing)
            total_usage += event.quantity
            total_cost += cost

            type_key = event.event_type.value
            usage_by_type[type_key] = usage_by_type.get(type_key, 0) + event.quantity

            day = event.created_at.date().isoformat()
            point = trend.setdefault(day, TrendPoint(date=day))
            point.usage += event.quantity
            point.cost = round(point.cost + cost, 6)

        previous_period_usage = await AnalyticsService._usage_between(
            db, subject, start - window, start, event_type
        )

        month_start, _ = billing_period(now)
        month_events = await AnalyticsService._events_between(db, subject, month_start, now, event_type)
        current_period_usage = sum(event.quantity for event in month_events)

        projected_cost = 0.0
        if include_projections:
            month_cost = sum(event_cost(event, pricing) for event in month_events)
            projected_cost = round(project_monthly_cost(month_cost, now), 6)

        quota_utilization = {
            quota.quota_type.value: QuotaUtilization(
                used=quota.current_usage,
                limit=quota.limit_value,
                percentage=round(utilization_percentage(quota.current_usage, quota.limit_value), 2),
            )
            for quota in await QuotaService.list_for_subject(db, subject)
        }

        return UsageAnalytics(
            total_usage=total_usage,
            usage_by_type=usage_by_type,
            usage_trend=list(trend.values()),
            total_cost=round(total_cost, 6),
            projected_cost=projected_cost,
            current_period_usage=current_period_usage,
            previous_period_usage=previous_period_usage,
            quota_utilization=quota_utilization,
        )
