"""
UsageEvent model: append-only record of a billable action.
Rows are immutable apart from `processed`, which reconciliation flips.
"""
import enum

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB

from metering.models.base import Base, enum_type, generate_uuid
from metering.models.subject import SubjectMixin
from metering.utils.clock import utcnow


class UsageEventType(str, enum.Enum):
    """Billable actions that can be metered."""
    API_CALL = "api_call"
    STORAGE_USED = "storage_used"
    PROJECT_CREATED = "project_created"
    USER_INVITED = "user_invited"
    EMAIL_SENT = "email_sent"
    EXPORT_GENERATED = "export_generated"
    BACKUP_CREATED = "backup_created"
    CUSTOM_DOMAIN = "custom_domain"
    ADVANCED_FEATURE = "advanced_feature"


class UsageEvent(SubjectMixin, Base):
    """A single metered action attributed to a calendar-month billing period."""

    __tablename__ = "usage_events"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    event_type = Column(enum_type(UsageEventType), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Integer, nullable=True)  # In cents; overrides the configured price table
    event_metadata = Column("metadata", JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)

    billing_period_start = Column(DateTime, nullable=False)
    billing_period_end = Column(DateTime, nullable=False)
    processed = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_usage_events_subject_type_created", "subject_key", "event_type", "created_at"),
        Index("idx_usage_events_billing_period", "billing_period_start", "billing_period_end"),
        Index("idx_usage_events_processed", "processed", "created_at"),
    )

    def __repr__(self):
        return (
            f"<UsageEvent(id={self.id}, subject={self.subject_key}, "
            f"type={self.event_type}, quantity={self.quantity})>"
        )
