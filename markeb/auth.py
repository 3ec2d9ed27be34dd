import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from .config import (
    ADMIN_PASSWORD,
    ADMIN_TOKEN_HOURS,
    SPECIALIST_PASSCODES,
    SPECIALIST_TOKEN_HOURS,
    USER_TOKEN_DAYS,
)
from .rate_limiter import create_rate_limiter
from .security_utils import constant_time_compare, create_jwt_token, verify_jwt_token

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

ROLE_ADMIN = "admin"
ROLE_USER = "user"
ROLE_SPECIALIST = "specialist"

router = APIRouter(prefix="/admin", tags=["Admin"])
specialist_router = APIRouter(prefix="/specialists", tags=["Specialists"])

admin_login_limiter = create_rate_limiter(limit=5, window_seconds=300, key_prefix="admin_login")
specialist_login_limiter = create_rate_limiter(limit=5, window_seconds=300, key_prefix="specialist_login")


def create_user_token(email: str) -> str:
    return create_jwt_token({"sub": email, "role": ROLE_USER}, timedelta(days=USER_TOKEN_DAYS))


def create_admin_token() -> str:
    return create_jwt_token({"sub": "admin", "role": ROLE_ADMIN}, timedelta(hours=ADMIN_TOKEN_HOURS))


def create_specialist_token(name: str) -> str:
    return create_jwt_token({"sub": name, "role": ROLE_SPECIALIST}, timedelta(hours=SPECIALIST_TOKEN_HOURS))


def _decode(credentials: Optional[HTTPAuthorizationCredentials]) -> dict:
    if not credentials or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    payload = verify_jwt_token(credentials.credentials)
    if not payload or not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return payload


async def get_current_user_email(credentials: HTTPAuthorizationCredentials = Depends(security)) -> str:
    """Email of the signed-in customer"""
    payload = _decode(credentials)
    if payload.get("role") != ROLE_USER:
        raise HTTPException(status_code=403, detail="Customer token required")
    return payload["sub"]


async def require_admin(credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    payload = _decode(credentials)
    if payload.get("role") != ROLE_ADMIN:
        logger.warning("⚠️ Non-admin token used on admin endpoint")
        raise HTTPException(status_code=403, detail="Admin access required")
    return payload


class AdminLoginRequest(BaseModel):
    password: str


@router.post("/login")
async def admin_login(data: AdminLoginRequest, _: None = Depends(admin_login_limiter)):
    if not ADMIN_PASSWORD:
        logger.error("❌ ADMIN_PASSWORD not configured - admin login disabled")
        raise HTTPException(status_code=503, detail="Admin login not configured")
    if not constant_time_compare(data.password, ADMIN_PASSWORD):
        logger.warning("⚠️ Failed admin login attempt")
        raise HTTPException(status_code=401, detail="Invalid password")

    logger.info("✅ Admin signed in")
    return {"success": True, "token": create_admin_token(), "expiresInHours": ADMIN_TOKEN_HOURS}


async def get_current_specialist(credentials: HTTPAuthorizationCredentials = Depends(security)) -> str:
    """Display name of the signed-in media specialist"""
    payload = _decode(credentials)
    if payload.get("role") != ROLE_SPECIALIST:
        raise HTTPException(status_code=403, detail="Specialist token required")
    return payload["sub"]


class SpecialistLoginRequest(BaseModel):
    name: str
    passcode: str


@specialist_router.post("/login")
async def specialist_login(data: SpecialistLoginRequest, _: None = Depends(specialist_login_limiter)):
    name = data.name.strip()
    expected = SPECIALIST_PASSCODES.get(name.lower())
    # Unknown name and wrong passcode look the same
    if not expected or not constant_time_compare(data.passcode.strip(), expected):
        logger.warning(f"⚠️ Failed specialist login for {name!r}")
        raise HTTPException(status_code=401, detail="Invalid credentials")

    display_name = name.title()
    logger.info(f"✅ Specialist {display_name} signed in")
    return {"success": True, "name": display_name, "token": create_specialist_token(display_name)}
