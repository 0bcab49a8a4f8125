"""
Billing subject: the entity quotas, usage events and alerts belong to.

A subject is either an individual user or an organization. Rows store both
nullable foreign keys (exactly one is set) plus a derived `subject_key`
that unique constraints can use without tripping over NULLs.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import Column, ForeignKey, String
from sqlalchemy.orm import declared_attr

USER = "user"
ORGANIZATION = "organization"


@dataclass(frozen=True)
class Subject:
    kind: str
    id: str

    @classmethod
    def for_user(cls, user_id: str) -> "Subject":
        return cls(USER, user_id)

    @classmethod
    def for_organization(cls, organization_id: str) -> "Subject":
        return cls(ORGANIZATION, organization_id)

    @property
    def key(self) -> str:
        return f"{self.kind}:{self.id}"

    @property
    def is_organization(self) -> bool:
        return self.kind == ORGANIZATION

    @property
    def user_id(self) -> Optional[str]:
        return None if self.is_organization else self.id

    @property
    def organization_id(self) -> Optional[str]:
        return self.id if self.is_organization else None

    def columns(self) -> Dict[str, Any]:
        """Column values identifying this subject on an owned row."""
        return {
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "subject_key": self.key,
        }


class SubjectMixin:
    """Columns linking a row to its owning subject."""

    @declared_attr
    def user_id(cls):
        return Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)

    @declared_attr
    def organization_id(cls):
        return Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True, index=True)

    subject_key = Column(String(64), nullable=False, index=True)  # "user:<id>" or "organization:<id>"

    @property
    def subject(self) -> Subject:
        if self.organization_id:
            return Subject.for_organization(self.organization_id)
        return Subject.for_user(self.user_id)
