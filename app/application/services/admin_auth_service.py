from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import HTTPException, status
from jose import JWTError, jwt
from passlib.context import CryptContext

from ...domain.models import User
from ...domain.ports.persistence import UserRepository

logger = logging.getLogger(__name__)


class AdminAuthService:
    """Manages operator accounts and bearer-token authentication for the admin API."""

    def __init__(
        self,
        users: UserRepository,
        secret_key: str,
        token_exp_minutes: int = 1440,
        algorithm: str = "HS256",
    ) -> None:
        if not secret_key:
            raise RuntimeError("ADMIN_TOKEN_SECRET is not configured.")
        if secret_key == "change-me":
            logger.warning("ADMIN_TOKEN_SECRET is using the default value. Configure a real secret in production.")
        self._users = users
        self._secret_key = secret_key
        self._token_exp_minutes = token_exp_minutes
        self._algorithm = algorithm
        self._pwd = CryptContext(schemes=["bcrypt"], deprecated="auto")

    # ------------------------------------------------------------------
    def ensure_default_admin(self, email: Optional[str], password: Optional[str]) -> Optional[User]:
        if not email or not password:
            return None
        existing = self._users.get_user_by_email(email.lower())
        if existing:
            return existing
        hashed = self._pwd.hash(password)
        logger.info("Creating default administrator account for %s", email)
        return self._users.create_user(email=email.lower(), password_hash=hashed)

    def authenticate(self, email: str, password: str) -> str:
        email_clean = email.strip().lower()
        user = self._users.get_user_by_email(email_clean)
        if not user or not user.is_active:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials.")
        if not self._pwd.verify(password, user.password_hash):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials.")
        logger.info("Administrator %s logged in.", user.email)
        return self._create_token(user)

    def verify_token(self, token: str) -> User:
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except JWTError as exc:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token.") from exc
        user_id = payload.get("sub")
        if not user_id:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token.")
        try:
            user_id_int = int(user_id)
        except (TypeError, ValueError) as exc:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token.") from exc
        user = self._users.get_user_by_id(user_id_int)
        if not user:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Administrator not found.")
        return user

    def get_current_admin(self, token: str) -> User:
        user = self.verify_token(token)
        if not user.is_active:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Administrator is disabled.")
        return user

    def _create_token(self, user: User) -> str:
        now = datetime.now(tz=timezone.utc)
        expire = now + timedelta(minutes=self._token_exp_minutes)
        payload = {"sub": str(user.id), "email": user.email, "exp": expire}
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)
