"""
Security Module - Authentication & Authorization

Users sign in for a JWT (bearer header or `access_token` cookie). Each role
maps to a set of "<area>:<read|write>" permissions checked per route.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Set
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from orderledger.core.config import settings
from orderledger.core.database import get_db

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

bearer_scheme = HTTPBearer(auto_error=False)

# Production staff see orders; money is for admins
ROLE_PERMISSIONS = {
    "super-admin": {"*"},
    "admin": {
        "clients:read", "clients:write",
        "orders:read", "orders:write",
        "invoices:read",
        "payments:read", "payments:write",
        "banking:read", "banking:write",
        "audit:read",
    },
    "production": {"orders:read", "clients:read"},
}


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a token carrying `data` (sub = username, role) plus its expiry"""
    claims = dict(data)
    claims["exp"] = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    """Claims of a valid token, None for a forged or expired one"""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None


def permissions_for(role: str) -> Set[str]:
    return ROLE_PERMISSIONS.get(role, set())


def has_permissions(role: str, required: Set[str]) -> bool:
    granted = permissions_for(role)
    return "*" in granted or required.issubset(granted)


def _not_authenticated(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Session = Depends(get_db)
):
    """
    The signed-in user. A token issued before the user's role changed is
    refused so a demoted user cannot keep old permissions.
    """
    from orderledger.services.user_service import UserService

    token = credentials.credentials if credentials else request.cookies.get("access_token")
    if not token:
        raise _not_authenticated("Not authenticated")

    claims = decode_access_token(token)
    if not claims or not claims.get("sub"):
        raise _not_authenticated("Invalid or expired token")

    user = UserService(db).get_by_username(claims["sub"])
    if user is None:
        raise _not_authenticated("User not found")
    if claims.get("role") and claims["role"] != user.role:
        raise _not_authenticated("Role changed, please sign in again")

    return user


async def get_current_active_user(current_user = Depends(get_current_user)):
    if not current_user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is disabled"
        )
    return current_user


class PermissionChecker:
    """Route dependency: PermissionChecker(["payments:write"])"""

    def __init__(self, required_permissions: List[str]):
        self.required_permissions = set(required_permissions)

    def __call__(self, user = Depends(get_current_active_user)):
        if not has_permissions(user.role, self.required_permissions):
            missing = self.required_permissions - permissions_for(user.role)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required permissions: {', '.join(sorted(missing))}"
            )
