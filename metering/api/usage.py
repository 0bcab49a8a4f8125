"""
Usage endpoints: track metered actions, pre-flight quota checks and analytics.
All endpoints require Firebase JWT authentication.
"""
import logging
import time
from dataclasses import asdict
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from metering.auth.dependencies import get_current_user, resolve_subject
from metering.config import settings
from metering.database import get_db
from metering.exceptions import MeteringError, StorageError
from metering.models.usage_event import UsageEventType
from metering.models.usage_quota import UNLIMITED, ResetPeriod
from metering.models.user import User
from metering.schemas.alert import BillingAlertResponse
from metering.schemas.quota import UsageQuotaResponse
from metering.schemas.usage import (
    QuotaCheckRequest,
    QuotaCheckResponse,
    QuotaStatusResponse,
    UsageAnalyticsResponse,
    UsageEventResponse,
    UsageTrackingRequest,
    UsageTrackingResponse,
)
from metering.services.analytics_service import AnalyticsService
from metering.services.quota_evaluator import QuotaEvaluator
from metering.services.quota_service import QuotaService
from metering.services.usage_tracking_service import UsageTrackingService
from metering.utils.clock import Clock, get_clock
from metering.utils.logging import log_quota_checked
from metering.utils.metrics import quota_checks_total

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/track", response_model=UsageTrackingResponse)
async def track_usage(
    request_data: UsageTrackingRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock)
):
    """
    Record a metered action and advance the matching quota.

    Returns the stored event, the quota position after the increment and the
    subject's most recent unacknowledged alerts. Usage is never refused here;
    use /check-quota before performing a limited action.
    """
    start_time = time.time()
    user_id = current_user.id
    try:
        subject = await resolve_subject(db, current_user, request_data.organization_id)

        result = await UsageTrackingService.track(
            db,
            subject,
            event_type=request_data.event_type,
            quantity=request_data.quantity,
            clock=clock,
            metadata=request_data.metadata,
            warning_threshold=settings.quota_warning_threshold,
            recent_alerts_limit=settings.recent_alerts_limit,
        )

        status_ = result.quota_status
        return UsageTrackingResponse(
            success=True,
            usage_event=UsageEventResponse.model_validate(result.usage_event),
            quota_status=QuotaStatusResponse(
                current=status_.current,
                limit=status_.limit,
                remaining=status_.remaining,
                percentage=status_.percentage,
            ),
            alerts=[BillingAlertResponse.model_validate(alert) for alert in result.recent_alerts],
        )
    except MeteringError:
        raise
    except Exception as e:
        logger.error(
            f"Failed to track usage: {str(e)}",
            extra={
                "event": "usage_tracking_failed",
                "user_id": user_id,
                "event_type": request_data.event_type.value,
                "duration_ms": round((time.time() - start_time) * 1000, 2),
                "error": str(e)
            },
            exc_info=True
        )
        raise StorageError("Failed to track usage")


@router.post("/check-quota", response_model=QuotaCheckResponse)
async def check_quota(
    request_data: QuotaCheckRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock)
):
    """
    Check whether `requestedAmount` units fit within a quota.
    Nothing is consumed. A subject without a configured quota is unlimited.
    """
    user_id = current_user.id
    try:
        subject = await resolve_subject(db, current_user, request_data.organization_id)
        quota = await QuotaService.get(db, subject, request_data.quota_type)

        evaluation = QuotaEvaluator(settings.suggested_upgrade_plan).evaluate(
            quota, request_data.requested_amount
        )

        quota_checks_total.labels(
            quota_type=request_data.quota_type.value,
            result="allowed" if evaluation.allowed else "denied"
        ).inc()
        log_quota_checked(
            logger,
            subject=subject.key,
            quota_type=request_data.quota_type.value,
            requested_amount=request_data.requested_amount,
            allowed=evaluation.allowed,
            user_id=user_id,
        )

        if quota is not None:
            quota_payload = UsageQuotaResponse.model_validate(quota)
        else:
            # Nothing configured: report a synthetic unlimited quota
            now = clock.now()
            quota_payload = UsageQuotaResponse(
                id="",
                user_id=subject.user_id,
                organization_id=subject.organization_id,
                quota_type=request_data.quota_type,
                limit_value=UNLIMITED,
                current_usage=0,
                reset_period=ResetPeriod.MONTHLY,
                last_reset=now,
                created_at=now,
                updated_at=now,
            )

        return QuotaCheckResponse(
            allowed=evaluation.allowed,
            quota=quota_payload,
            remaining=evaluation.remaining,
            would_exceed=evaluation.would_exceed,
            upgrade_required=evaluation.upgrade_required,
            suggested_plan=evaluation.suggested_plan,
        )
    except MeteringError:
        raise
    except Exception as e:
        logger.error(
            f"Quota check failed: {str(e)}",
            extra={"event": "quota_check_failed", "user_id": user_id, "error": str(e)},
            exc_info=True
        )
        raise MeteringError()


@router.get("/analytics", response_model=UsageAnalyticsResponse)
async def usage_analytics(
    time_range: Literal["7d", "30d", "90d", "1y"] = Query("30d", alias="timeRange"),
    event_type: Optional[UsageEventType] = Query(None, alias="eventType"),
    organization_id: Optional[UUID] = Query(None, alias="organizationId"),
    include_projections: bool = Query(True, alias="includeProjections"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock)
):
    """
    Aggregate usage for the caller (or an organization they belong to) over
    the last 7/30/90 days or year: totals, per-type breakdown, a daily trend
    with costs, the previous equal-length window and the current month's
    projected cost.
    """
    user_id = current_user.id
    try:
        subject = await resolve_subject(db, current_user, organization_id)

        report = await AnalyticsService.analytics(
            db,
            subject,
            now=clock.now(),
            pricing=settings.usage_pricing,
            time_range=time_range,
            event_type=event_type,
            include_projections=include_projections,
        )

        return UsageAnalyticsResponse.model_validate({"time_range": time_range, **asdict(report)})
    except MeteringError:
        raise
    except Exception as e:
        logger.error(
            f"Failed to fetch usage analytics: {str(e)}",
            extra={"event": "usage_analytics_failed", "user_id": user_id, "error": str(e)},
            exc_info=True
        )
        raise StorageError("Failed to fetch usage analytics")
