"""
Identity store: user records and credential verification.
"""

import logging
from typing import List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auth.security import hash_password, verify_password
from database import transaction
from errors import AccountDeactivated, EmailAlreadyRegistered, InvalidCredentials, NotFound
from models import User
from time_utils import utc_now

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserService:
    def __init__(self, db: Session):
        self.db = db

    def create_user(self, name: str, email: str, password: str) -> User:
        email = normalize_email(email)
        logger.info(f"Registration attempt for email: {email}")

        if self.find_by_email(email) is not None:
            logger.info(f"Registration failed: email already exists: {email}")
            raise EmailAlreadyRegistered()

        user = User(name=name.strip(), email=email, password_hash=hash_password(password))
        try:
            with transaction(self.db):
                self.db.add(user)
        except IntegrityError:
            # Lost a race with a concurrent registration of the same address
            raise EmailAlreadyRegistered()

        self.db.refresh(user)
        logger.info(f"User registered: {user.email} (ID: {user.id})")
        return user

    def find_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(func.lower(User.email) == normalize_email(email)).first()

    def find_by_id(self, user_id: str) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def get(self, user_id: str) -> User:
        user = self.find_by_id(user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    def authenticate(self, email: str, password: str) -> User:
        """
        Verify credentials and record the login.

        Raises:
            InvalidCredentials: unknown email or wrong password
            AccountDeactivated: credentials are right but the account is inactive
        """
        user = self.find_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            logger.info(f"Login failed for email: {normalize_email(email)}")
            raise InvalidCredentials()

        if not user.is_active:
            logger.info(f"Login refused for deactivated account: {user.email}")
            raise AccountDeactivated()

        with transaction(self.db):
            user.last_login_at = utc_now()
        self.db.refresh(user)
        logger.info(f"User logged in: {user.email} (ID: {user.id})")
        return user

    def update_profile(self, user: User, name: Optional[str] = None, avatar: Optional[str] = None) -> User:
        with transaction(self.db):
            if name is not None:
                user.name = name.strip()
            if avatar is not None:
                user.avatar = avatar
        self.db.refresh(user)
        logger.info(f"Profile updated for user {user.id}")
        return user

    def set_avatar(self, user: User, avatar: Optional[str]) -> User:
        with transaction(self.db):
            user.avatar = avatar
        self.db.refresh(user)
        return user

    def change_password(self, user: User, current_password: str, new_password: str) -> None:
        if not verify_password(current_password, user.password_hash):
            logger.info(f"Password change refused for user {user.id}: wrong current password")
            raise InvalidCredentials("Current password is incorrect")

        with transaction(self.db):
            user.password_hash = hash_password(new_password)
        logger.info(f"Password changed for user {user.id}")

    def deactivate(self, user: User) -> User:
        with transaction(self.db):
            user.is_active = False
        self.db.refresh(user)
        logger.info(f"User {user.id} deactivated their account")
        return user

    def search(self, query: str, exclude_user_id: str, limit: int = 10) -> List[User]:
        """Active users whose name or email contains ``query`` (case-insensitive)."""
        pattern = f"%{query.strip().lower()}%"
        return (
            self.db.query(User)
            .filter(
                User.id != exclude_user_id,
                User.is_active.is_(True),
                or_(func.lower(User.name).like(pattern), func.lower(User.email).like(pattern)),
            )
            .order_by(User.name)
            .limit(limit)
            .all()
        )
