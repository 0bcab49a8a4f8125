"""
FastAPI dependencies for authentication and subject access.

get_current_user verifies the Firebase bearer token and returns the User.
resolve_subject decides which billing subject a request acts on and checks
organization membership (any member may read, owner/admin may write).
"""
import logging
from typing import Optional, Union
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from metering.auth.firebase import verify_firebase_token
from metering.database import get_db
from metering.exceptions import AuthenticationError, AuthorizationError
from metering.models.organization import ADMIN_ROLES, OrganizationMember
from metering.models.subject import Subject
from metering.models.user import User

logger = logging.getLogger(__name__)

# auto_error=False so a missing header becomes our 401 rather than FastAPI's 403
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    Verify the bearer token and return the matching User.

    Flow:
    1. Extract Bearer token from Authorization header
    2. Verify token with Firebase Admin SDK
    3. Lookup user by firebase_uid, creating it on first sight

    Raises:
        AuthenticationError: If the token is missing, invalid, or expired
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Missing authentication token")

    try:
        decoded_token = verify_firebase_token(credentials.credentials)
    except ValueError as e:
        logger.info(
            f"Token rejected: {e}",
            extra={"event": "auth_token_rejected"}
        )
        raise AuthenticationError("Invalid authentication token")

    firebase_uid = decoded_token.get("uid")
    if not firebase_uid:
        raise AuthenticationError("Invalid authentication token")

    result = await db.execute(
        select(User).where(User.firebase_uid == firebase_uid)
    )
    user = result.scalar_one_or_none()

    if not user:
        user = User(
            firebase_uid=firebase_uid,
            email=decoded_token.get("email"),
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        logger.info(
            f"Provisioned user {user.id}",
            extra={"event": "user_provisioned", "user_id": user.id}
        )

    return user


async def get_membership(
    db: AsyncSession,
    organization_id: str,
    user_id: str
) -> Optional[OrganizationMember]:
    result = await db.execute(
        select(OrganizationMember).where(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.user_id == user_id
        )
    )
    return result.scalar_one_or_none()


async def resolve_subject(
    db: AsyncSession,
    user: User,
    organization_id: Optional[Union[str, UUID]] = None,
    require_admin: bool = False
) -> Subject:
    """
    Return the subject a request acts on.

    Without an organization the user acts on their own quotas. With one, the
    user must be a member; require_admin further demands owner or admin.

    Raises:
        AuthorizationError: If membership or role is missing
    """
    if not organization_id:
        return Subject.for_user(user.id)

    organization_id = str(organization_id)
    membership = await get_membership(db, organization_id, user.id)
    if membership is None:
        raise AuthorizationError("Access denied to organization")

    if require_admin and membership.role not in ADMIN_ROLES:
        raise AuthorizationError("Admin access required")

    return Subject.for_organization(organization_id)


async def can_access_subject(db: AsyncSession, user: User, subject: Subject) -> bool:
    """True if the user owns the subject or belongs to the subject organization."""
    if not subject.is_organization:
        return subject.id == user.id
    return await get_membership(db, subject.id, user.id) is not None
