from __future__ import annotations

from typing import Optional

from sqlalchemy import select

from ..core.db import get_session, session_scope
from ..core.logging import get_logger
from ..core.security import create_access_token, hash_password, verify_password
from ..models.user import User, UserRole, UserTier
from .errors import NotFoundError


logger = get_logger(__name__)


class AuthenticationError(Exception):
    """Raised when username/password is invalid."""


class AuthService:
    def authenticate_user(self, username: str, password: str) -> User:
        with get_session() as session:
            stmt = select(User).where(User.username == username)
            user: Optional[User] = session.execute(stmt).scalar_one_or_none()

            if user is None:
                raise AuthenticationError("Invalid username or password")

            if not verify_password(password, user.password_hash):
                raise AuthenticationError("Invalid username or password")

            if not user.is_active:
                raise AuthenticationError("User is inactive")

            # detach from session
            session.expunge(user)

        return user

    def login(self, username: str, password: str) -> tuple[str, User]:
        user = self.authenticate_user(username, password)

        token_payload = {
            "userId": user.id,
            "username": user.username,
            "role": user.role,
            "tier": user.tier,
        }
        access_token = create_access_token(subject=token_payload)

        logger.info("User %s logged in (role=%s, tier=%s)", user.username, user.role, user.tier)
        return access_token, user

    def create_user(
        self,
        username: str,
        password: str,
        *,
        role: UserRole = UserRole.USER,
        tier: UserTier = UserTier.FREE,
        full_name: Optional[str] = None,
    ) -> User:
        username = (username or "").strip()
        if not username or not password:
            raise ValueError("Username and password are required")

        with session_scope() as session:
            user = User(
                username=username,
                password_hash=hash_password(password),
                full_name=full_name,
                role=UserRole(role).value,
                tier=UserTier(tier).value,
                is_active=True,
            )
            session.add(user)
            session.flush()
            session.refresh(user)

        logger.info("Created user %s (role=%s, tier=%s)", user.username, user.role, user.tier)
        return user

    def set_tier(self, user_id: int, tier: UserTier) -> User:
        tier = UserTier(tier)
        with session_scope() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found")
            user.tier = tier.value
            session.flush()
            session.refresh(user)

        logger.info("User %s moved to tier %s", user_id, tier.value)
        return user
