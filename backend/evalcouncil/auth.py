"""
Authentication utilities and dependencies

Tokens are issued by the external identity service; this side only verifies them.
"""
import hmac
import jwt
from datetime import datetime, timedelta, timezone
from fastapi import Depends, HTTPException, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from typing import Optional
from .config import settings

security = HTTPBearer(auto_error=False)

ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7  # 7 days


class CurrentUser(BaseModel):
    user_id: str
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return bool(self.email) and self.email == settings.ADMIN_EMAIL


def create_access_token(user_id: str, email: Optional[str] = None) -> str:
    """Create a JWT access token (used by tooling and tests)"""
    now = datetime.now(timezone.utc)
    to_encode = {
        "sub": user_id,
        "exp": now + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
        "iat": now,
    }
    if email:
        to_encode["email"] = email
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[CurrentUser]:
    """Decode a JWT access token and return the caller"""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None

    user_id = payload.get("sub")
    if not user_id:
        return None
    return CurrentUser(user_id=str(user_id), email=payload.get("email"))


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """
    Dependency to get current authenticated user from JWT token
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")

    user = decode_access_token(credentials.credentials)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")
    return user


async def get_current_user_optional(
    authorization: Optional[str] = Header(None),
) -> Optional[CurrentUser]:
    """
    Optional authentication - returns the user if authenticated, None otherwise
    """
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return decode_access_token(authorization.split(" ", 1)[1])


async def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def require_shared_secret(expected: str, provided: Optional[str]) -> None:
    """
    Constant-time check of a shared secret header.

    An unset secret refuses every call, so a deployment that forgot to configure
    it fails closed.
    """
    if not expected:
        raise HTTPException(status_code=503, detail="Callback endpoint is not configured")
    if not provided or not hmac.compare_digest(expected, provided):
        raise HTTPException(status_code=401, detail="Invalid callback credentials")
