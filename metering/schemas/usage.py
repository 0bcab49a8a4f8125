"""
Pydantic schemas for usage tracking, quota checks and analytics.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import AliasChoices, Field, field_serializer

from metering.models.usage_event import UsageEventType
from metering.models.usage_quota import QuotaType
from metering.schemas.alert import BillingAlertResponse
from metering.schemas.base import MAX_UNITS, CamelModel, serialize_remaining
from metering.schemas.quota import UsageQuotaResponse


class UsageTrackingRequest(CamelModel):
    """Schema for recording a metered action."""
    event_type: UsageEventType
    quantity: int = Field(1, ge=1, le=MAX_UNITS, description="Units consumed")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    organization_id: Optional[UUID] = Field(None, description="Track against an organization instead of the caller")


class QuotaCheckRequest(CamelModel):
    """Schema for asking whether an action fits within a quota."""
    quota_type: QuotaType
    requested_amount: int = Field(1, ge=1, le=MAX_UNITS)
    organization_id: Optional[UUID] = None


class UsageEventResponse(CamelModel):
    """Schema for a stored usage event."""
    id: str
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    event_type: UsageEventType
    quantity: int
    unit_price: Optional[int] = None
    # The ORM attribute is event_metadata; Base.metadata is SQLAlchemy's own
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("event_metadata", "metadata"),
        serialization_alias="metadata",
    )
    billing_period_start: datetime
    billing_period_end: datetime
    processed: bool
    created_at: datetime


class QuotaStatusResponse(CamelModel):
    """Quota position after tracking; remaining is null when unlimited."""
    current: int
    limit: int
    remaining: Optional[float] = None
    percentage: float

    @field_serializer("remaining")
    def dump_remaining(self, value):
        return serialize_remaining(value)


class UsageTrackingResponse(CamelModel):
    success: bool = True
    usage_event: UsageEventResponse
    quota_status: QuotaStatusResponse
    alerts: List[BillingAlertResponse] = Field(default_factory=list)


class QuotaCheckResponse(CamelModel):
    """
    Result of a quota check. When no quota is configured, `quota` is a
    synthetic unlimited quota with an empty id.
    """
    allowed: bool
    quota: UsageQuotaResponse
    remaining: Optional[float] = None
    would_exceed: bool
    upgrade_required: bool
    suggested_plan: Optional[str] = None

    @field_serializer("remaining")
    def dump_remaining(self, value):
        return serialize_remaining(value)


class UsageTrendPoint(CamelModel):
    date: str
    usage: int
    cost: float


class QuotaUtilizationResponse(CamelModel):
    used: int
    limit: int
    percentage: float


class UsageAnalyticsResponse(CamelModel):
    """Aggregated usage over a time window."""
    time_range: Literal["7d", "30d", "90d", "1y"]
    total_usage: int
    usage_by_type: Dict[str, int]
    usage_trend: List[UsageTrendPoint]
    total_cost: float
    projected_cost: float
    current_period_usage: int
    previous_period_usage: int
    quota_utilization: Dict[str, QuotaUtilizationResponse]
