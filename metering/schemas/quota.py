"""
Pydantic schemas for quota endpoints.
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import Field

from metering.models.usage_quota import QuotaType, ResetPeriod
from metering.schemas.base import MAX_UNITS, CamelModel


class UsageQuotaResponse(CamelModel):
    """Schema for a usage quota."""
    id: str
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    quota_type: QuotaType
    limit_value: int
    current_usage: int
    reset_period: ResetPeriod
    last_reset: datetime
    created_at: datetime
    updated_at: datetime


class QuotaUpdateRequest(CamelModel):
    """Schema for creating or changing a quota limit."""
    quota_type: QuotaType
    limit_value: int = Field(..., ge=-1, le=MAX_UNITS, description="-1 for unlimited")
    reset_period: Optional[ResetPeriod] = None
    organization_id: Optional[UUID] = None


class QuotaResetRequest(CamelModel):
    """Schema for zeroing quota usage. An empty quotaTypes list resets every quota."""
    quota_types: List[QuotaType] = Field(default_factory=list)
    organization_id: Optional[UUID] = None
    reset_period: Optional[ResetPeriod] = None


class QuotaResetResponse(CamelModel):
    success: bool = True
    reset_count: int
