"""
Organizations and their memberships.
Membership role decides read (any member) vs. write (owner/admin) access.
"""
import enum

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint

from metering.models.base import Base, enum_type, generate_uuid
from metering.utils.clock import utcnow


class MemberRole(str, enum.Enum):
    """Role of a user inside an organization."""
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


ADMIN_ROLES = frozenset({MemberRole.OWNER, MemberRole.ADMIN})


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    owner_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Organization(id={self.id}, slug={self.slug})>"


class OrganizationMember(Base):
    __tablename__ = "organization_members"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    organization_id = Column(
        String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(enum_type(MemberRole, length=20), nullable=False, default=MemberRole.MEMBER)

    joined_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_organization_member"),
    )

    def __repr__(self):
        return (
            f"<OrganizationMember(organization_id={self.organization_id}, "
            f"user_id={self.user_id}, role={self.role})>"
        )
