"""
Authentication: password hashing, JWT tokens and role gates.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import JWT_ALGORITHM, JWT_EXPIRE_DAYS, JWT_SECRET
from .errors import InvalidToken, Unauthorized
from .schemas import User

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    """Hash a password using bcrypt"""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    return bcrypt.checkpw(plain_password.encode(), hashed_password.encode())


def create_jwt_token(user_id: str, expires_in: timedelta = timedelta(days=JWT_EXPIRE_DAYS)) -> str:
    """Create a JWT token"""
    payload = {"user_id": user_id, "exp": datetime.now(timezone.utc) + expires_in}
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_jwt_token(token: str) -> Optional[dict]:
    """Decode and verify a JWT token"""
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError:
        return None


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> User:
    """Get current authenticated user"""
    if credentials is None:
        raise InvalidToken()
    payload = decode_jwt_token(credentials.credentials)
    if not payload:
        raise InvalidToken()

    user = await request.app.state.store.get_user(payload.get("user_id", ""))
    if user is None:
        logger.warning(f"Token of unknown user {payload.get('user_id')}")
        raise InvalidToken("User not found")
    return user


def require_role(role: str):
    async def role_gate(user: User = Depends(get_current_user)) -> User:
        if user.role != role:
            raise Unauthorized()
        return user

    return role_gate


get_current_customer = require_role("CUSTOMER")
get_current_admin = require_role("ADMIN")
