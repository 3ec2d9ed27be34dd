"""
Security utilities - password hashing, session tokens and reset links
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

# Token generation and validation
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from jose import JWTError
from jose import jwt as jose_jwt

# Password hashing
from passlib.context import CryptContext

from .config import SECRET_KEY

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
PASSWORD_RESET_SALT = "password-reset"
PASSWORD_RESET_MAX_AGE = 3600

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# ============================================================================
# PASSWORD SECURITY
# ============================================================================


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password against bcrypt hash"""
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError as e:
        logger.error(f"Password verification error: {e}")
        return False


def check_password_strength(password: str) -> list[str]:
    """Problems with a new password; empty when acceptable"""
    problems = []
    if len(password) < 8:
        problems.append("Password must be at least 8 characters long")
    if not any(c.isalpha() for c in password):
        problems.append("Add letters")
    if not any(c.isdigit() for c in password):
        problems.append("Add numbers")
    return problems


# ============================================================================
# TOKENS
# ============================================================================


def create_jwt_token(data: dict[str, Any], expires_delta: timedelta) -> str:
    to_encode = data.copy()
    to_encode.update({"exp": datetime.now(timezone.utc) + expires_delta})
    return jose_jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_jwt_token(token: str) -> Optional[dict[str, Any]]:
    """
    Verify and decode a JWT token

    Returns:
        Decoded payload if valid, None if invalid or expired
    """
    try:
        return jose_jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        return None


def generate_reset_token(email: str) -> str:
    """Time-limited password reset token using itsdangerous"""
    serializer = URLSafeTimedSerializer(SECRET_KEY)
    return serializer.dumps({"email": email}, salt=PASSWORD_RESET_SALT)


def verify_reset_token(token: str, max_age: int = PASSWORD_RESET_MAX_AGE) -> Optional[str]:
    """Email address the token was issued for, or None if invalid or expired"""
    serializer = URLSafeTimedSerializer(SECRET_KEY)
    try:
        data = serializer.loads(token, salt=PASSWORD_RESET_SALT, max_age=max_age)
    except SignatureExpired:
        logger.warning("Reset token expired")
        return None
    except BadSignature:
        logger.warning("Invalid reset token signature")
        return None
    return data.get("email")


def constant_time_compare(a: str, b: str) -> bool:
    """Compare two strings in constant time"""
    return secrets.compare_digest(a.encode(), b.encode())
