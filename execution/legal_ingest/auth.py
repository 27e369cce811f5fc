"""
Session JWT Authentication and the Import Capability Gate

Callers authenticate with a short-lived HS256 session JWT. The ingestion core
never inspects tokens itself: it receives a ``Principal`` and asks an injected
``CapabilityChecker`` whether that principal may import public documents.
"""

import os
import logging
from typing import Iterable, Optional
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta

import jwt

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


def _get_jwt_secret() -> str:
    val = os.getenv("JWT_SECRET", "")
    if not val:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate a random secret string and set it in .env or as an environment variable."
        )
    return val


def _get_jwt_expiry_hours() -> int:
    return int(os.getenv("JWT_EXPIRY_HOURS", "168"))  # 7 days default


@dataclass(frozen=True)
class Principal:
    """The authenticated caller."""
    user_id: str
    email: str = ""
    name: str = ""


def create_session_jwt(user_id: str, email: str, name: str = "") -> str:
    """
    Create a JWT for session authentication.

    Args:
        user_id: The internal user id
        email: User's email (used by the admin capability check)
        name: User's display name

    Returns:
        Encoded JWT string
    """
    payload = {
        "sub": user_id,
        "email": email,
        "name": name,
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + timedelta(hours=_get_jwt_expiry_hours()),
    }
    return jwt.encode(payload, _get_jwt_secret(), algorithm=JWT_ALGORITHM)


def verify_session_jwt(token: str) -> Optional[Principal]:
    """
    Verify a session JWT.

    Returns:
        Principal if valid; None if invalid/expired
    """
    try:
        payload = jwt.decode(token, _get_jwt_secret(), algorithms=[JWT_ALGORITHM])
        return Principal(
            user_id=str(payload["sub"]),
            email=payload.get("email", ""),
            name=payload.get("name", ""),
        )
    except jwt.ExpiredSignatureError:
        logger.debug("JWT expired")
        return None
    except (jwt.InvalidTokenError, KeyError) as e:
        logger.debug(f"JWT invalid: {e}")
        return None


class CapabilityChecker:
    """Port deciding whether a principal holds a named capability."""

    def has_capability(self, principal: Principal, capability: str) -> bool:
        raise NotImplementedError


class AdminEmailCapabilityChecker(CapabilityChecker):
    """
    Grants every capability to principals whose email is a configured admin.

    The comparison is case-insensitive. With no admin configured nobody is
    granted anything.
    """

    def __init__(self, admin_emails: Iterable[str]):
        self.admin_emails = {e.strip().lower() for e in admin_emails if e and e.strip()}
        if not self.admin_emails:
            logger.warning("No ADMIN_EMAIL configured; all import requests will be refused")

    def has_capability(self, principal: Principal, capability: str) -> bool:
        if principal is None or not principal.email:
            return False
        granted = principal.email.strip().lower() in self.admin_emails
        if not granted:
            logger.info(f"Capability {capability} denied for user {principal.user_id}")
        return granted
