"""
Pydantic schemas for API request/response validation.
"""
from metering.schemas.alert import (
    AlertDismissResponse,
    BillingAlertResponse,
)
from metering.schemas.quota import (
    QuotaResetRequest,
    QuotaResetResponse,
    QuotaUpdateRequest,
    UsageQuotaResponse,
)
from metering.schemas.usage import (
    QuotaCheckRequest,
    QuotaCheckResponse,
    QuotaStatusResponse,
    UsageAnalyticsResponse,
    UsageEventResponse,
    UsageTrackingRequest,
    UsageTrackingResponse,
)

__all__ = [
    "AlertDismissResponse",
    "BillingAlertResponse",
    "QuotaResetRequest",
    "QuotaResetResponse",
    "QuotaUpdateRequest",
    "UsageQuotaResponse",
    "QuotaCheckRequest",
    "QuotaCheckResponse",
    "QuotaStatusResponse",
    "UsageAnalyticsResponse",
    "UsageEventResponse",
    "UsageTrackingRequest",
    "UsageTrackingResponse",
]
