"""
Caller Identity

Reads the bearer token issued by the auth service and turns it into a
``CurrentUser``. Token issuance lives elsewhere; this module only verifies.

Token payload:
    {"userId": "<id>", "isAdmin": <bool>, "exp": <unix ts>}
"""

import logging
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Header

from food_ordering.core.config import get_settings
from food_ordering.core.exceptions import Unauthorized

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller."""
    user_id: str
    is_admin: bool = False

    def can_access(self, owner_id: str) -> bool:
        """Admins see everything; everyone else only their own records."""
        return self.is_admin or self.user_id == owner_id


def decode_token(token: str) -> CurrentUser:
    """
    Verify a bearer token and extract the caller.

    Raises:
        Unauthorized: If the token is expired, malformed or badly signed
    """
    settings = get_settings()

    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.PyJWTError as e:
        logger.warning(f"Token verification failed: {e}")
        raise Unauthorized("Token is not valid")

    user_id = payload.get("userId")
    if not user_id:
        raise Unauthorized("Invalid token structure")

    return CurrentUser(user_id=str(user_id), is_admin=bool(payload.get("isAdmin", False)))


async def get_current_user(
    authorization: Optional[str] = Header(None),
) -> CurrentUser:
    """FastAPI dependency resolving the caller from ``Authorization: Bearer``."""
    if not authorization:
        raise Unauthorized("No token, authorization denied")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise Unauthorized("No token, authorization denied")

    return decode_token(token.strip())
