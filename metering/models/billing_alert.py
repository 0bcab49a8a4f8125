"""
BillingAlert model: notification raised when a billing condition occurs.

At most one unacknowledged quota warning may exist per (subject, quota type);
the partial unique index below enforces it at the store.
"""
import enum

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String, text
from sqlalchemy.dialects.postgresql import JSONB

from metering.models.base import Base, enum_type, generate_uuid
from metering.models.subject import SubjectMixin
from metering.models.usage_quota import QuotaType
from metering.utils.clock import utcnow


class AlertType(str, enum.Enum):
    QUOTA_WARNING = "quota_warning"
    QUOTA_EXCEEDED = "quota_exceeded"
    PAYMENT_FAILED = "payment_failed"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    TRIAL_ENDING = "trial_ending"
    FEATURE_LIMIT_REACHED = "feature_limit_reached"


OPEN_WARNING_CLAUSE = text("alert_type = 'quota_warning' AND acknowledged = false")


class BillingAlert(SubjectMixin, Base):
    __tablename__ = "billing_alerts"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    alert_type = Column(enum_type(AlertType), nullable=False)
    quota_type = Column(enum_type(QuotaType), nullable=True)
    threshold_percentage = Column(Integer, nullable=True)  # 1-100
    current_usage = Column(Integer, nullable=True)
    limit_value = Column(Integer, nullable=True)
    alert_metadata = Column("metadata", JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)

    acknowledged = Column(Boolean, nullable=False, default=False)
    acknowledged_at = Column(DateTime, nullable=True)
    triggered_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_billing_alerts_subject_type", "subject_key", "alert_type", "triggered_at"),
        Index("idx_billing_alerts_acknowledged", "acknowledged", "triggered_at"),
        Index(
            "uq_billing_alerts_open_warning",
            "subject_key",
            "quota_type",
            unique=True,
            postgresql_where=OPEN_WARNING_CLAUSE,
            sqlite_where=OPEN_WARNING_CLAUSE,
        ),
    )

    def __repr__(self):
        return (
            f"<BillingAlert(id={self.id}, subject={self.subject_key}, "
            f"type={self.alert_type}, acknowledged={self.acknowledged})>"
        )
