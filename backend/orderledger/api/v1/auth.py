"""
Sign-in and back-office user routes
"""
from fastapi import APIRouter, Depends, HTTPException, status, Response
from sqlalchemy.orm import Session
from datetime import timedelta
from typing import List

from orderledger.core.database import get_db
from orderledger.core.security import (
    create_access_token, get_current_active_user, PermissionChecker, permissions_for
)
from orderledger.core.config import settings
from orderledger.schemas import LoginRequest, Token, UserCreate, UserResponse, MessageResponse
from orderledger.services.user_service import UserService
from orderledger.services.audit_service import AuditService, AuditAction

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _set_token_cookie(response: Response, token: str, lifetime: timedelta):
    response.set_cookie(
        key="access_token",
        value=token,
        max_age=int(lifetime.total_seconds()),
        httponly=True,
        samesite="lax",
        secure=settings.SESSION_COOKIE_SECURE or settings.is_production,
    )


@router.post("/login", response_model=Token)
async def login(credentials: LoginRequest, response: Response, db: Session = Depends(get_db)):
    """Exchange username and password for a bearer token (also set as a cookie)"""
    audit = AuditService(db)
    user = UserService(db).authenticate(credentials.username, credentials.password)

    if user is None:
        audit.log("users", None, AuditAction.UPDATE,
                  f"Rejected sign-in for '{credentials.username}'")
        db.commit()
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid username or password")
    if not user.is_active:
        db.commit()
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Account is disabled")

    lifetime = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    token = create_access_token({"sub": user.username, "role": user.role}, lifetime)
    audit.log("users", user.id, AuditAction.UPDATE, f"'{user.username}' signed in", user_id=user.id)
    db.commit()

    _set_token_cookie(response, token, lifetime)
    return Token(access_token=token)


@router.post("/logout", response_model=MessageResponse)
async def logout(response: Response):
    response.delete_cookie("access_token")
    return MessageResponse(message="Signed out")


@router.get("/me")
async def get_me(current_user = Depends(get_current_active_user)):
    """Current user with the permissions of its role"""
    return {
        "user": UserResponse.model_validate(current_user),
        "permissions": sorted(permissions_for(current_user.role)),
    }


@router.get("/users", response_model=List[UserResponse], dependencies=[Depends(PermissionChecker(["users:read"]))])
async def list_users(db: Session = Depends(get_db)):
    return UserService(db).get_all()


@router.post("/users", response_model=UserResponse, dependencies=[Depends(PermissionChecker(["users:write"]))])
async def create_user(
    user_data: UserCreate,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    """Create a back-office user (super-admin only)"""
    user = UserService(db).create(user_data)
    AuditService(db).log("users", user.id, AuditAction.CREATE,
                         f"User '{user.username}' created with role {user.role}",
                         user_id=current_user.id)
    db.commit()
    return user
