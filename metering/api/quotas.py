"""
Quota endpoints: list quotas, set limits and reset usage counters.
All endpoints require Firebase JWT authentication.
"""
import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from metering.auth.dependencies import get_current_user, resolve_subject
from metering.database import get_db
from metering.exceptions import AuthorizationError, MeteringError, StorageError
from metering.models.user import User
from metering.schemas.quota import (
    QuotaResetRequest,
    QuotaResetResponse,
    QuotaUpdateRequest,
    UsageQuotaResponse,
)
from metering.services.quota_service import QuotaService
from metering.utils.clock import Clock, get_clock
from metering.utils.logging import log_quotas_reset
from metering.utils.metrics import quotas_reset_total

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=List[UsageQuotaResponse])
async def list_quotas(
    organization_id: Optional[UUID] = Query(None, alias="organizationId"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List the caller's quotas, or an organization's when organizationId is given."""
    user_id = current_user.id
    try:
        subject = await resolve_subject(db, current_user, organization_id)
        quotas = await QuotaService.list_for_subject(db, subject)
        return [UsageQuotaResponse.model_validate(quota) for quota in quotas]
    except MeteringError:
        raise
    except Exception as e:
        logger.error(
            f"Failed to fetch quotas: {str(e)}",
            extra={"event": "quota_list_failed", "user_id": user_id, "error": str(e)},
            exc_info=True
        )
        raise StorageError("Failed to fetch quotas")


@router.post("/update", response_model=UsageQuotaResponse)
async def update_quota(
    request_data: QuotaUpdateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock)
):
    """
    Create or change a quota limit.

    Organization quotas need the owner or admin role. Personal quotas can
    only be changed by platform admins; users cannot raise their own limits.
    """
    user_id = current_user.id
    try:
        if request_data.organization_id is None and not current_user.is_admin:
            raise AuthorizationError("Admin access required")

        subject = await resolve_subject(
            db, current_user, request_data.organization_id, require_admin=True
        )

        quota = await QuotaService.set_limit(
            db,
            subject,
            request_data.quota_type,
            request_data.limit_value,
            now=clock.now(),
            reset_period=request_data.reset_period,
        )

        logger.info(
            f"Quota {request_data.quota_type.value} for {subject.key} set to {request_data.limit_value}",
            extra={
                "event": "quota_limit_updated",
                "user_id": user_id,
                "subject": subject.key,
                "quota_type": request_data.quota_type.value,
                "limit_value": request_data.limit_value
            }
        )
        return UsageQuotaResponse.model_validate(quota)
    except MeteringError:
        raise
    except Exception as e:
        logger.error(
            f"Failed to update quota: {str(e)}",
            extra={"event": "quota_update_failed", "user_id": user_id, "error": str(e)},
            exc_info=True
        )
        raise StorageError("Failed to update quota")


@router.post("/reset", response_model=QuotaResetResponse)
async def reset_quotas(
    request_data: QuotaResetRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock)
):
    """
    Zero usage counters. An empty quotaTypes list resets every quota of the
    subject; resetPeriod narrows to one reset cohort. Resetting twice is
    harmless. Organization quotas need the owner or admin role.

    Users may reset their own personal quotas without being platform admins;
    only raising a personal limit is restricted (see /update).
    """
    user_id = current_user.id
    try:
        subject = await resolve_subject(
            db, current_user, request_data.organization_id, require_admin=True
        )

        reset_count = await QuotaService.reset(
            db,
            subject,
            now=clock.now(),
            quota_types=request_data.quota_types,
            reset_period=request_data.reset_period,
        )

        quotas_reset_total.labels(trigger="manual").inc(reset_count)
        log_quotas_reset(
            logger,
            reset_count=reset_count,
            subject=subject.key,
            reset_period=request_data.reset_period.value if request_data.reset_period else None,
            user_id=user_id,
        )
        return QuotaResetResponse(success=True, reset_count=reset_count)
    except MeteringError:
        raise
    except Exception as e:
        logger.error(
            f"Failed to reset quotas: {str(e)}",
            extra={"event": "quota_reset_failed", "user_id": user_id, "error": str(e)},
            exc_info=True
        )
        raise StorageError("Failed to reset quotas")
