"""
Pydantic schemas for billing alert endpoints.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import AliasChoices, Field

from metering.models.billing_alert import AlertType
from metering.models.usage_quota import QuotaType
from metering.schemas.base import CamelModel


class BillingAlertResponse(CamelModel):
    """Schema for a billing alert."""
    id: str
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    alert_type: AlertType
    quota_type: Optional[QuotaType] = None
    threshold_percentage: Optional[int] = None
    current_usage: Optional[int] = None
    limit_value: Optional[int] = None
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("alert_metadata", "metadata"),
        serialization_alias="metadata",
    )
    acknowledged: bool
    acknowledged_at: Optional[datetime] = None
    triggered_at: datetime


class AlertDismissResponse(CamelModel):
    success: bool = True
    alert_id: str
