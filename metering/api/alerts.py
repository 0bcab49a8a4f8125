"""
Alert inbox endpoints: list, acknowledge and dismiss billing alerts.
All endpoints require Firebase JWT authentication.
"""
import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from metering.auth.dependencies import can_access_subject, get_current_user, resolve_subject
from metering.database import get_db
from metering.exceptions import AuthorizationError, MeteringError, NotFoundError, StorageError
from metering.models.billing_alert import AlertType, BillingAlert
from metering.models.user import User
from metering.schemas.alert import AlertDismissResponse, BillingAlertResponse
from metering.services.alert_service import AlertService
from metering.utils.clock import Clock, get_clock

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_accessible_alert(db: AsyncSession, user: User, alert_id: str) -> BillingAlert:
    """Load an alert the user owns or whose organization they belong to."""
    alert = await AlertService.get(db, alert_id)
    if alert is None:
        raise NotFoundError("Alert not found")
    if not await can_access_subject(db, user, alert.subject):
        raise AuthorizationError("Access denied to alert")
    return alert


@router.get("", response_model=List[BillingAlertResponse])
async def list_alerts(
    alert_type: Optional[AlertType] = Query(None, alias="alertType"),
    acknowledged: Optional[bool] = Query(None),
    organization_id: Optional[UUID] = Query(None, alias="organizationId"),
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List billing alerts, newest first."""
    user_id = current_user.id
    try:
        subject = await resolve_subject(db, current_user, organization_id)
        alerts = await AlertService.list_alerts(
            db,
            subject,
            alert_type=alert_type,
            acknowledged=acknowledged,
            limit=limit,
            offset=offset,
        )
        return [BillingAlertResponse.model_validate(alert) for alert in alerts]
    except MeteringError:
        raise
    except Exception as e:
        logger.error(
            f"Failed to fetch alerts: {str(e)}",
            extra={"event": "alert_list_failed", "user_id": user_id, "error": str(e)},
            exc_info=True
        )
        raise StorageError("Failed to fetch alerts")


@router.post("/{alert_id}/acknowledge", response_model=BillingAlertResponse)
async def acknowledge_alert(
    alert_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock)
):
    """
    Acknowledge an alert. Once acknowledged, a quota warning no longer blocks
    a new warning for the same quota.
    """
    user_id = current_user.id
    try:
        alert = await _get_accessible_alert(db, current_user, alert_id)
        alert = await AlertService.acknowledge(db, alert, now=clock.now())

        logger.info(
            f"Alert {alert.id} acknowledged",
            extra={"event": "billing_alert_acknowledged", "user_id": user_id, "alert_id": alert.id}
        )
        return BillingAlertResponse.model_validate(alert)
    except MeteringError:
        raise
    except Exception as e:
        logger.error(
            f"Failed to acknowledge alert: {str(e)}",
            extra={"event": "alert_acknowledge_failed", "user_id": user_id, "error": str(e)},
            exc_info=True
        )
        raise StorageError("Failed to acknowledge alert")


@router.delete("/{alert_id}", response_model=AlertDismissResponse)
async def dismiss_alert(
    alert_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Delete an alert."""
    user_id = current_user.id
    try:
        alert = await _get_accessible_alert(db, current_user, alert_id)
        await AlertService.dismiss(db, alert)

        logger.info(
            f"Alert {alert_id} dismissed",
            extra={"event": "billing_alert_dismissed", "user_id": user_id, "alert_id": alert_id}
        )
        return AlertDismissResponse(success=True, alert_id=alert_id)
    except MeteringError:
        raise
    except Exception as e:
        logger.error(
            f"Failed to dismiss alert: {str(e)}",
            extra={"event": "alert_dismiss_failed", "user_id": user_id, "error": str(e)},
            exc_info=True
        )
        raise StorageError("Failed to dismiss alert")
