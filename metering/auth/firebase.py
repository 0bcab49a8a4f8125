"""
Firebase Admin SDK initialization and token verification.
Firebase is the external identity provider: it issues the bearer ID tokens
the API accepts.
"""
import json
import logging
import os
from typing import Optional

import firebase_admin
from firebase_admin import auth, credentials

from metering.config import settings

logger = logging.getLogger(__name__)


_firebase_app: Optional[firebase_admin.App] = None


def _load_credentials(raw: str) -> credentials.Base:
    """Accept either a path to a service-account file or the JSON itself."""
    if os.path.exists(raw):
        logger.info(f"Loaded Firebase credentials from file: {raw}")
        return credentials.Certificate(raw)
    try:
        cred_dict = json.loads(raw)
    except json.JSONDecodeError:
        raise ValueError(
            f"FIREBASE_CREDENTIALS_JSON must be a valid file path or JSON string. Tried: {raw}"
        )
    logger.info("Loaded Firebase credentials from JSON string")
    return credentials.Certificate(cred_dict)


def initialize_firebase() -> None:
    """
    Initialize Firebase Admin SDK once per process.

    Without FIREBASE_CREDENTIALS_JSON, application default credentials are
    used (local development with gcloud).
    """
    global _firebase_app

    if _firebase_app is not None:
        return

    if not settings.firebase_project_id:
        raise ValueError("FIREBASE_PROJECT_ID must be set")

    if settings.firebase_credentials_json:
        cred = _load_credentials(settings.firebase_credentials_json)
    else:
        cred = credentials.ApplicationDefault()

    _firebase_app = firebase_admin.initialize_app(
        cred,
        {"projectId": settings.firebase_project_id}
    )


def verify_firebase_token(token: str) -> dict:
    """
    Verify a Firebase ID token and return its decoded claims.

    Raises:
        ValueError: If the token is invalid, expired, or revoked,
            or if the SDK has not been initialized
    """
    if _firebase_app is None:
        raise ValueError("Authentication provider not initialized")

    try:
        return auth.verify_id_token(token)
    except ValueError:
        raise
    except Exception as e:
        raise ValueError(f"Token verification failed: {str(e)}")
