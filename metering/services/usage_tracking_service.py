"""
Usage tracking: records an event, advances the matching quota and raises
threshold alerts.

Steps run in order and each commits on its own: the event is stored first,
then the quota increment, then any alert. A failure part-way leaves the
earlier writes in place.
"""
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from metering.models.billing_alert import BillingAlert
from metering.models.subject import Subject
from metering.models.usage_event import UsageEvent, UsageEventType
from metering.models.usage_quota import UNLIMITED, QuotaType
from metering.services.alert_service import AlertService
from metering.services.quota_evaluator import remaining_capacity, utilization_percentage
from metering.services.quota_service import QuotaService
from metering.services.usage_event_service import UsageEventService
from metering.utils.clock import Clock
from metering.utils.logging import log_usage_tracked
from metering.utils.metrics import usage_events_tracked_total, usage_units_tracked_total

logger = logging.getLogger(__name__)


# Usage event types that consume a quota. Anything else is recorded for
# analytics and cost only.
EVENT_QUOTA_TYPES: Dict[UsageEventType, QuotaType] = {
    UsageEventType.API_CALL: QuotaType.API_CALLS,
    UsageEventType.STORAGE_USED: QuotaType.STORAGE_GB,
    UsageEventType.PROJECT_CREATED: QuotaType.PROJECTS,
    UsageEventType.USER_INVITED: QuotaType.TEAM_MEMBERS,
    UsageEventType.EMAIL_SENT: QuotaType.EMAIL_SENDS,
    UsageEventType.EXPORT_GENERATED: QuotaType.EXPORTS,
    UsageEventType.BACKUP_CREATED: QuotaType.BACKUPS,
    UsageEventType.CUSTOM_DOMAIN: QuotaType.CUSTOM_DOMAINS,
}


def quota_type_for_event(event_type: UsageEventType) -> Optional[QuotaType]:
    return EVENT_QUOTA_TYPES.get(event_type)


@dataclass
class QuotaStatus:
    """Quota position after tracking. remaining is math.inf when unlimited."""
    current: int
    limit: int
    remaining: float
    percentage: float


def unlimited_status(quantity: int) -> QuotaStatus:
    """Status reported when no quota applies: just the units tracked now."""
    return QuotaStatus(current=quantity, limit=UNLIMITED, remaining=math.inf, percentage=0.0)


@dataclass
class TrackingResult:
    usage_event: UsageEvent
    quota_status: QuotaStatus
    created_alerts: List[BillingAlert] = field(default_factory=list)
    recent_alerts: List[BillingAlert] = field(default_factory=list)


class UsageTrackingService:
    """Orchestrates usage recording, quota increments and alerting."""

    @staticmethod
    async def track(
        db: AsyncSession,
        subject: Subject,
        event_type: UsageEventType,
        quantity: int,
        clock: Clock,
        metadata: Optional[Dict[str, Any]] = None,
        warning_threshold: int = 80,
        recent_alerts_limit: int = 5
    ) -> TrackingResult:
        """
        Record usage and update the subject's quota.

        Unmapped event types and subjects without a quota for the mapped type
        report an unlimited quota status and no alerts. Usage is recorded
        even when it pushes a quota past its limit; callers gate actions
        with a quota check beforehand.

        Args:
            db: Database session
            subject: Subject the usage belongs to
            event_type: Metered action
            quantity: Units consumed (>= 1)
            clock: Time source
            metadata: Free-form caller data stored on the event
            warning_threshold: Utilization percentage that raises a warning
            recent_alerts_limit: Unacknowledged alerts to return

        Returns:
            TrackingResult with the stored event, quota status and alerts
        """
        start_time = time.time()
        now = clock.now()

        usage_event = await UsageEventService.record(
            db, subject, event_type, quantity, now, metadata=metadata
        )
        usage_events_tracked_total.labels(event_type=event_type.value).inc()
        usage_units_tracked_total.labels(event_type=event_type.value).inc(quantity)

        quota_status = unlimited_status(quantity)
        created_alerts: List[BillingAlert] = []
        recent_alerts: List[BillingAlert] = []
        quota = None

        quota_type = quota_type_for_event(event_type)
        if quota_type is not None:
            quota = await QuotaService.increment(db, subject, quota_type, quantity, now)

        if quota is not None:
            quota_status = QuotaStatus(
                current=quota.current_usage,
                limit=quota.limit_value,
                remaining=remaining_capacity(quota.limit_value, quota.current_usage),
                percentage=utilization_percentage(quota.current_usage, quota.limit_value),
            )
            created_alerts = await AlertService.evaluate_thresholds(
                db,
                subject,
                quota_type,
                current_usage=quota.current_usage,
                limit_value=quota.limit_value,
                event_type=event_type,
                now=now,
                warning_threshold=warning_threshold,
            )
            recent_alerts = await AlertService.recent_unacknowledged(db, subject, limit=recent_alerts_limit)
        elif quota_type is not None:
            logger.debug(
                f"No {quota_type.value} quota configured for {subject.key}",
                extra={"event": "quota_not_configured", "subject": subject.key, "quota_type": quota_type.value}
            )

        log_usage_tracked(
            logger,
            subject=subject.key,
            event_type=event_type.value,
            quantity=quantity,
            usage_event_id=usage_event.id,
            current_usage=quota.current_usage if quota is not None else None,
            limit_value=quota.limit_value if quota is not None else None,
            duration_ms=(time.time() - start_time) * 1000,
        )

        return TrackingResult(
            usage_event=usage_event,
            quota_status=quota_status,
            created_alerts=created_alerts,
            recent_alerts=recent_alerts,
        )
