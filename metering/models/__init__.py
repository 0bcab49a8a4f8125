"""
Database models package.
"""
from metering.models.base import Base
from metering.models.subject import Subject
from metering.models.user import User
from metering.models.organization import MemberRole, Organization, OrganizationMember
from metering.models.usage_event import UsageEvent, UsageEventType
from metering.models.usage_quota import QuotaType, ResetPeriod, UsageQuota
from metering.models.billing_alert import AlertType, BillingAlert

__all__ = [
    "Base",
    "Subject",
    "User",
    "MemberRole",
    "Organization",
    "OrganizationMember",
    "UsageEvent",
    "UsageEventType",
    "QuotaType",
    "ResetPeriod",
    "UsageQuota",
    "AlertType",
    "BillingAlert",
]
