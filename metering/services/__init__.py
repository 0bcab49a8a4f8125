"""
Business logic services.
"""
from metering.services.alert_service import AlertService
from metering.services.analytics_service import AnalyticsService
from metering.services.quota_evaluator import QuotaEvaluator
from metering.services.quota_service import QuotaService
from metering.services.usage_event_service import UsageEventService
from metering.services.usage_tracking_service import UsageTrackingService

__all__ = [
    "AlertService",
    "AnalyticsService",
    "QuotaEvaluator",
    "QuotaService",
    "UsageEventService",
    "UsageTrackingService",
]
