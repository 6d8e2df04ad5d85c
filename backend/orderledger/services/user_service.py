"""
User Service - Business Logic for User Operations
"""
from typing import Optional, List
from datetime import datetime
from sqlalchemy.orm import Session

from orderledger.core.config import settings
from orderledger.core.exceptions import InvalidState
from orderledger.models import User
from orderledger.schemas import UserCreate
from orderledger.core.security import get_password_hash, verify_password


class UserService:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, user_id: int) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def get_by_username(self, username: str) -> Optional[User]:
        return self.db.query(User).filter(User.username == username).first()

    def get_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email).first()

    def get_all(self) -> List[User]:
        return self.db.query(User).order_by(User.username).all()

    def create(self, user_data: UserCreate) -> User:
        if self.get_by_username(user_data.username):
            raise InvalidState(f"Username {user_data.username} is already registered")
        if self.get_by_email(user_data.email):
            raise InvalidState(f"Email {user_data.email} is already registered")

        user = User(
            username=user_data.username,
            email=user_data.email,
            hashed_password=get_password_hash(user_data.password),
            full_name=user_data.full_name,
            role=user_data.role,
            is_active=True
        )
        self.db.add(user)
        self.db.flush()
        return user

    def authenticate(self, username: str, password: str) -> Optional[User]:
        """
        The user owning these credentials, or None.

        A successful check stamps last_login, even for a disabled account;
        the caller decides whether the account may sign in.
        """
        user = self.get_by_username(username)
        if user is None or not verify_password(password, user.hashed_password):
            return None
        user.last_login = datetime.utcnow()
        self.db.flush()
        return user


def seed_initial_admin(db: Session) -> Optional[User]:
    """Create the first super-admin from settings when the user table is empty"""
    if not settings.INITIAL_ADMIN_PASSWORD or db.query(User.id).first() is not None:
        return None

    user = User(
        username=settings.INITIAL_ADMIN_USERNAME,
        email=settings.INITIAL_ADMIN_EMAIL,
        hashed_password=get_password_hash(settings.INITIAL_ADMIN_PASSWORD),
        full_name="Administrator",
        role="super-admin",
        is_active=True
    )
    db.add(user)
    db.commit()
    return user
