"""
User model.
Authenticated via Firebase (firebase_uid); created on first request.
"""
from sqlalchemy import Boolean, Column, DateTime, Index, String

from metering.models.base import Base, generate_uuid
from metering.utils.clock import utcnow


class User(Base):
    """Authenticated account; may own personal quotas and belong to organizations."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    firebase_uid = Column(String(128), nullable=False, unique=True)  # Firebase user ID
    email = Column(String(255), nullable=True)  # Email from Firebase token
    is_admin = Column(Boolean, nullable=False, default=False)  # Platform staff: may set personal quota limits

    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_user_firebase_uid", "firebase_uid"),
    )

    def __repr__(self):
        return f"<User(id={self.id}, firebase_uid={self.firebase_uid})>"
