"""
Usage event log: append-only record of metered actions.
Each event is stamped with the calendar-month billing period it falls in.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from metering.exceptions import ValidationError
from metering.models.subject import Subject
from metering.models.usage_event import UsageEvent, UsageEventType
from metering.utils.clock import billing_period


class UsageEventService:
    """Service for recording usage events."""

    @staticmethod
    async def record(
        db: AsyncSession,
        subject: Subject,
        event_type: UsageEventType,
        quantity: int,
        now: datetime,
        metadata: Optional[Dict[str, Any]] = None,
        unit_price: Optional[int] = None
    ) -> UsageEvent:
        """
        Persist a usage event for the billing period containing `now`.

        Args:
            db: Database session
            subject: Subject the usage is attributed to
            event_type: Type of metered action
            quantity: Units consumed (>= 1)
            now: Event timestamp
            metadata: Free-form caller data, stored as-is
            unit_price: Optional price per unit in cents

        Returns:
            The committed UsageEvent

        Raises:
            ValidationError: If quantity is below 1
        """
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")

        period_start, period_end = billing_period(now)

        usage_event = UsageEvent(
            **subject.columns(),
            event_type=event_type,
            quantity=quantity,
            unit_price=unit_price,
            event_metadata=metadata or {},
            billing_period_start=period_start,
            billing_period_end=period_end,
            processed=False,
            created_at=now,
        )
        db.add(usage_event)
        await db.commit()
        return usage_event
