"""
Identity boundary.

Accounts are owned by the external identity provider; this service only
verifies the bearer token it issues (HS256 JWT) and trusts the account id,
email and role claims it carries.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from boxoffice.core.config import get_settings
from boxoffice.core.logging import get_logger

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

ROLE_USER = "user"
ROLE_ORGANIZER = "organizer"
ROLE_STAFF = "staff"
ROLE_ADMIN = "admin"


@dataclass(frozen=True)
class Account:
    """Authenticated caller as asserted by the identity provider."""

    id: str
    email: str
    role: str = ROLE_USER

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def can_manage(self, organizer_id: str) -> bool:
        return self.is_admin or self.id == organizer_id

    def can_scan(self, organizer_id: str, assigned_staff: bool = False) -> bool:
        """Organizers scan their own events; staff only events they are assigned to."""
        return self.can_manage(organizer_id) or (self.role == ROLE_STAFF and assigned_staff)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Mint a token the way the identity provider does (used by tests and local tooling)."""
    settings = get_settings()
    payload = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    payload["exp"] = expire
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_account(token: str) -> Account:
    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.PyJWTError as e:
        logger.warning("token_rejected", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    account_id = claims.get("sub")
    email = claims.get("email")
    if not account_id or not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token is missing account claims",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return Account(id=str(account_id), email=email.lower(), role=claims.get("role", ROLE_USER))


async def get_optional_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[Account]:
    if credentials is None:
        return None
    return decode_account(credentials.credentials)


async def get_current_account(
    account: Optional[Account] = Depends(get_optional_account),
) -> Account:
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return account


async def get_organizer_account(account: Account = Depends(get_current_account)) -> Account:
    """Event and coupon management is limited to organizer accounts."""
    if account.role not in (ROLE_ORGANIZER, ROLE_ADMIN):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Organizer account required",
        )
    return account
