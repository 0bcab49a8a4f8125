"""
UsageQuota model: one counter per (subject, quota type).

limit_value == -1 means unlimited. current_usage only grows between resets.
"""
import enum

from sqlalchemy import Column, DateTime, Index, Integer, String, UniqueConstraint

from metering.models.base import Base, enum_type, generate_uuid
from metering.models.subject import SubjectMixin
from metering.utils.clock import utcnow

UNLIMITED = -1


class QuotaType(str, enum.Enum):
    """Limited resources tracked by quotas."""
    API_CALLS = "api_calls"
    STORAGE_GB = "storage_gb"
    PROJECTS = "projects"
    TEAM_MEMBERS = "team_members"
    EMAIL_SENDS = "email_sends"
    EXPORTS = "exports"
    BACKUPS = "backups"
    CUSTOM_DOMAINS = "custom_domains"


class ResetPeriod(str, enum.Enum):
    """How often a quota's usage counter rolls over."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class UsageQuota(SubjectMixin, Base):
    __tablename__ = "usage_quotas"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    quota_type = Column(enum_type(QuotaType), nullable=False)
    limit_value = Column(Integer, nullable=False)
    current_usage = Column(Integer, nullable=False, default=0)
    reset_period = Column(enum_type(ResetPeriod, length=20), nullable=False, default=ResetPeriod.MONTHLY)
    last_reset = Column(DateTime, nullable=False, default=utcnow)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("subject_key", "quota_type", name="uq_usage_quota_subject_type"),
        Index("idx_usage_quotas_reset", "reset_period", "last_reset"),
    )

    @property
    def is_unlimited(self) -> bool:
        return self.limit_value == UNLIMITED

    def __repr__(self):
        return (
            f"<UsageQuota(subject={self.subject_key}, type={self.quota_type}, "
            f"usage={self.current_usage}/{self.limit_value})>"
        )
