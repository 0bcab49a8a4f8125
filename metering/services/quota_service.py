"""
Quota store: per-subject usage counters and limits.

Increments and resets are single UPDATE statements, so concurrent requests
for the same subject never lose usage.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from metering.exceptions import ConflictError, ValidationError
from metering.models.subject import Subject
from metering.models.usage_quota import QuotaType, ResetPeriod, UsageQuota
from metering.utils.clock import period_start

logger = logging.getLogger(__name__)


class QuotaService:
    """Service for reading and mutating usage quotas."""

    @staticmethod
    async def get(db: AsyncSession, subject: Subject, quota_type: QuotaType) -> Optional[UsageQuota]:
        """
        Load the quota row for a subject and quota type.

        Returns:
            The quota, or None when none is configured (not an error)
        """
        result = await db.execute(
            select(UsageQuota)
            .where(
                UsageQuota.subject_key == subject.key,
                UsageQuota.quota_type == quota_type
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def list_for_subject(db: AsyncSession, subject: Subject) -> List[UsageQuota]:
        result = await db.execute(
            select(UsageQuota)
            .where(UsageQuota.subject_key == subject.key)
            .order_by(UsageQuota.quota_type)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @staticmethod
    async def increment(
        db: AsyncSession,
        subject: Subject,
        quota_type: QuotaType,
        delta: int,
        now: datetime
    ) -> Optional[UsageQuota]:
        """
        Atomically add `delta` to current_usage and return the updated row.

        Args:
            db: Database session
            subject: Quota owner
            quota_type: Quota to increment
            delta: Units to add (must be positive)
            now: Timestamp for updated_at

        Returns:
            Updated quota, or None if the subject has no quota of this type

        Raises:
            ValidationError: If delta is not positive
        """
        if delta < 1:
            raise ValidationError("Increment must be positive")

        # UPDATE ... SET current_usage = current_usage + :delta RETURNING *
        result = await db.scalars(
            update(UsageQuota)
            .where(
                UsageQuota.subject_key == subject.key,
                UsageQuota.quota_type == quota_type
            )
            .values(current_usage=UsageQuota.current_usage + delta, updated_at=now)
            .returning(UsageQuota)
            .execution_options(synchronize_session=False),
            execution_options={"populate_existing": True}
        )
        quota = result.one_or_none()

        await db.commit()
        return quota

    @staticmethod
    async def set_limit(
        db: AsyncSession,
        subject: Subject,
        quota_type: QuotaType,
        limit_value: int,
        now: datetime,
        reset_period: Optional[ResetPeriod] = None
    ) -> UsageQuota:
        """
        Create or update a quota's limit (upsert on subject + quota type).

        Raises:
            ValidationError: If limit_value is below -1
            ConflictError: If the insert collides but no row can be found
        """
        if limit_value < -1:
            raise ValidationError("Limit value must be -1 (unlimited) or non-negative")

        quota = await QuotaService.get(db, subject, quota_type)
        if quota is None:
            quota = UsageQuota(
                **subject.columns(),
                quota_type=quota_type,
                limit_value=limit_value,
                current_usage=0,
                reset_period=reset_period or ResetPeriod.MONTHLY,
                last_reset=now,
                created_at=now,
                updated_at=now,
            )
            db.add(quota)
            try:
                await db.commit()
                return quota
            except IntegrityError:
                # Another request provisioned the same quota first; update theirs
                await db.rollback()
                quota = await QuotaService.get(db, subject, quota_type)
                if quota is None:
                    raise ConflictError("Quota was modified concurrently")

        quota.limit_value = limit_value
        if reset_period is not None:
            quota.reset_period = reset_period
        quota.updated_at = now
        await db.commit()
        return quota

    @staticmethod
    async def reset(
        db: AsyncSession,
        subject: Subject,
        now: datetime,
        quota_types: Optional[Iterable[QuotaType]] = None,
        reset_period: Optional[ResetPeriod] = None
    ) -> int:
        """
        Zero current_usage on every matching quota of a subject.

        Args:
            quota_types: Restrict to these quota types (all when empty)
            reset_period: Restrict to quotas in this reset cohort

        Returns:
            Number of quotas reset
        """
        stmt = (
            update(UsageQuota)
            .where(UsageQuota.subject_key == subject.key)
            .values(current_usage=0, last_reset=now, updated_at=now)
        )
        quota_types = list(quota_types or [])
        if quota_types:
            stmt = stmt.where(UsageQuota.quota_type.in_(quota_types))
        if reset_period is not None:
            stmt = stmt.where(UsageQuota.reset_period == reset_period)

        result = await db.execute(
            stmt.returning(UsageQuota.id).execution_options(synchronize_session=False)
        )
        reset_ids = result.scalars().all()
        await db.commit()
        return len(reset_ids)

    @staticmethod
    async def reset_due(
        db: AsyncSession,
        reset_period: ResetPeriod,
        now: datetime,
        dry_run: bool = False
    ) -> int:
        """
        Reset every quota of a cohort whose last reset predates the current window.

        The window starts at midnight (daily), Sunday (weekly), the first of
        the month (monthly) or January 1st (yearly).

        Returns:
            Number of quotas reset (or that would be, when dry_run)
        """
        cutoff = period_start(reset_period.value, now)
        due = (
            UsageQuota.reset_period == reset_period,
            UsageQuota.last_reset < cutoff,
        )

        if dry_run:
            result = await db.execute(select(func.count()).select_from(UsageQuota).where(*due))
            return result.scalar_one()

        result = await db.execute(
            update(UsageQuota)
            .where(*due)
            .values(current_usage=0, last_reset=now, updated_at=now)
            .returning(UsageQuota.id)
            .execution_options(synchronize_session=False)
        )
        reset_ids = result.scalars().all()
        await db.commit()
        return len(reset_ids)
