"""
Billing alerts: threshold triggering plus the alert inbox.

Quota warnings are de-duplicated per (subject, quota type) while one is still
unacknowledged. A lookback query skips the common case; the partial unique
index on billing_alerts settles concurrent requests, with the losing insert
becoming a no-op via ON CONFLICT DO NOTHING.
"""
import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from metering.models.base import generate_uuid
from metering.models.billing_alert import OPEN_WARNING_CLAUSE, AlertType, BillingAlert
from metering.models.subject import Subject
from metering.models.usage_event import UsageEventType
from metering.models.usage_quota import QuotaType
from metering.services.quota_evaluator import utilization_percentage
from metering.utils.logging import log_alert_triggered
from metering.utils.metrics import billing_alerts_created_total

logger = logging.getLogger(__name__)

# Dialects whose INSERT supports ON CONFLICT against a partial index
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class AlertService:
    """Service for creating, listing and acknowledging billing alerts."""

    @staticmethod
    async def find_open_warning(
        db: AsyncSession,
        subject: Subject,
        quota_type: QuotaType,
        min_threshold: int = 0
    ) -> Optional[BillingAlert]:
        """Unacknowledged quota warning at or above min_threshold, if any."""
        result = await db.execute(
            select(BillingAlert)
            .where(
                BillingAlert.subject_key == subject.key,
                BillingAlert.alert_type == AlertType.QUOTA_WARNING,
                BillingAlert.quota_type == quota_type,
                BillingAlert.threshold_percentage >= min_threshold,
                BillingAlert.acknowledged.is_(False)
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _insert_warning(db: AsyncSession, values: Dict[str, Any]) -> Optional[BillingAlert]:
        """Insert a quota warning unless an open one already exists; None if skipped."""
        dialect = db.get_bind().dialect.name
        insert = _UPSERT_INSERTS.get(dialect)
        if insert is None:
            raise RuntimeError(f"Unsupported database dialect for alerts: {dialect}")

        table = BillingAlert.__table__
        stmt = (
            insert(table)
            .values(**values)
            .on_conflict_do_nothing(
                index_elements=["subject_key", "quota_type"],
                index_where=OPEN_WARNING_CLAUSE,
            )
            .returning(table.c.id)
        )
        result = await db.execute(stmt)
        alert_id = result.scalar_one_or_none()
        await db.commit()

        if alert_id is None:
            return None
        return await db.get(BillingAlert, alert_id)

    @staticmethod
    async def evaluate_thresholds(
        db: AsyncSession,
        subject: Subject,
        quota_type: QuotaType,
        current_usage: int,
        limit_value: int,
        event_type: UsageEventType,
        now: datetime,
        warning_threshold: int = 80
    ) -> List[BillingAlert]:
        """
        Raise alerts for a quota that was just incremented.

        - utilization >= 100%: a quota_exceeded alert (threshold 100), every time
        - warning_threshold <= utilization < 100%: a quota_warning alert
          (threshold floor(utilization)), unless an unacknowledged one exists

        Args:
            db: Database session
            subject: Quota owner
            quota_type: Quota that was incremented
            current_usage: Usage after the increment
            limit_value: Quota limit (-1 never alerts)
            event_type: Usage event that caused the increment
            now: Trigger timestamp
            warning_threshold: Utilization percentage that raises a warning

        Returns:
            Alerts created by this call (possibly empty)
        """
        percentage = utilization_percentage(current_usage, limit_value)
        metadata = {
            "event_type": event_type.value,
            "percentage": percentage,
        }
        base_values = {
            **subject.columns(),
            "quota_type": quota_type,
            "current_usage": current_usage,
            "limit_value": limit_value,
            "acknowledged": False,
            "triggered_at": now,
        }

        if percentage >= 100:
            alert = BillingAlert(
                id=generate_uuid(),
                alert_type=AlertType.QUOTA_EXCEEDED,
                threshold_percentage=100,
                alert_metadata=metadata,
                **base_values,
            )
            db.add(alert)
            await db.commit()
        elif percentage >= warning_threshold:
            if await AlertService.find_open_warning(db, subject, quota_type, warning_threshold) is not None:
                return []
            alert = await AlertService._insert_warning(db, {
                "id": generate_uuid(),
                "alert_type": AlertType.QUOTA_WARNING,
                "threshold_percentage": math.floor(percentage),
                "metadata": metadata,
                **base_values,
            })
            if alert is None:
                logger.debug(
                    f"Quota warning for {subject.key} already open",
                    extra={"event": "quota_warning_deduplicated", "subject": subject.key}
                )
                return []
        else:
            return []

        billing_alerts_created_total.labels(alert_type=alert.alert_type.value).inc()
        log_alert_triggered(
            logger,
            subject=subject.key,
            alert_type=alert.alert_type.value,
            quota_type=quota_type.value,
            alert_id=alert.id,
            utilization=percentage,
        )
        return [alert]

    @staticmethod
    async def recent_unacknowledged(
        db: AsyncSession,
        subject: Subject,
        limit: int = 5
    ) -> List[BillingAlert]:
        """Newest-first unacknowledged alerts for a subject."""
        result = await db.execute(
            select(BillingAlert)
            .where(
                BillingAlert.subject_key == subject.key,
                BillingAlert.acknowledged.is_(False)
            )
            .order_by(BillingAlert.triggered_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_alerts(
        db: AsyncSession,
        subject: Subject,
        alert_type: Optional[AlertType] = None,
        acknowledged: Optional[bool] = None,
        limit: int = 10,
        offset: int = 0
    ) -> List[BillingAlert]:
        """Page through a subject's alerts, newest first."""
        filters = [BillingAlert.subject_key == subject.key]
        if alert_type is not None:
            filters.append(BillingAlert.alert_type == alert_type)
        if acknowledged is not None:
            filters.append(BillingAlert.acknowledged.is_(acknowledged))

        result = await db.execute(
            select(BillingAlert)
            .where(*filters)
            .order_by(BillingAlert.triggered_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get(db: AsyncSession, alert_id: str) -> Optional[BillingAlert]:
        return await db.get(BillingAlert, alert_id)

    @staticmethod
    async def acknowledge(db: AsyncSession, alert: BillingAlert, now: datetime) -> BillingAlert:
        """Mark an alert acknowledged. Acknowledging twice keeps the first timestamp."""
        if not alert.acknowledged:
            alert.acknowledged = True
            alert.acknowledged_at = now
            await db.commit()
        return alert

    @staticmethod
    async def dismiss(db: AsyncSession, alert: BillingAlert) -> None:
        """Delete an alert."""
        await db.delete(alert)
        await db.commit()
