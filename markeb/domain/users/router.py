"""User router - FastAPI endpoints for accounts, preferences and points"""

import logging

from fastapi import APIRouter, Depends, Query

from ...auth import create_user_token, get_current_user_email, require_admin
from ...rate_limiter import create_rate_limiter
from ...record_store import AirtableClient, get_record_store
from ..bookings.repository import BookingRepository
from .models import REGION
from .repository import UserRepository
from .schemas import (
    EmailNotificationsUpdate,
    LoginRequest,
    ManualPointsRequest,
    PasswordResetConfirm,
    PasswordResetRequest,
    RegionUpdate,
    RegisterRequest,
    ReservePrivilegeUpdate,
)
from .service import UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])
admin_router = APIRouter(prefix="/admin/users", tags=["Admin"], dependencies=[Depends(require_admin)])

login_limiter = create_rate_limiter(limit=10, window_seconds=300, key_prefix="user_login")
reset_limiter = create_rate_limiter(limit=3, window_seconds=900, key_prefix="password_reset")


def get_user_service(store: AirtableClient = Depends(get_record_store)) -> UserService:
    """Dependency injection for UserService"""
    return UserService(UserRepository(store), BookingRepository(store))


# ============================================================================
# ACCOUNTS
# ============================================================================


@router.post("/register")
async def register(data: RegisterRequest, service: UserService = Depends(get_user_service)):
    user = await service.register(data.name, data.email, data.password, data.company, data.phone, data.region)
    return {"success": True, "token": create_user_token(user.email), "user": user.profile()}


@router.post("/login")
async def login(
    data: LoginRequest,
    _: None = Depends(login_limiter),
    service: UserService = Depends(get_user_service),
):
    user = await service.authenticate(data.email, data.password)
    return {"success": True, "token": create_user_token(user.email), "user": user.profile()}


@router.get("/me")
async def get_profile(
    email: str = Depends(get_current_user_email),
    service: UserService = Depends(get_user_service),
):
    user = await service.users.get_by_email(email)
    return {"success": True, "user": user.profile()}


@router.post("/password-reset/request")
async def request_password_reset(
    data: PasswordResetRequest,
    _: None = Depends(reset_limiter),
    service: UserService = Depends(get_user_service),
):
    """Always succeeds so the endpoint cannot be used to discover accounts"""
    await service.request_password_reset(data.email)
    return {"success": True, "message": "If an account exists, a reset link has been sent"}


@router.post("/password-reset/confirm")
async def confirm_password_reset(data: PasswordResetConfirm, service: UserService = Depends(get_user_service)):
    await service.reset_password(data.token, data.newPassword)
    return {"success": True, "message": "Password updated"}


# ============================================================================
# PREFERENCES
# ============================================================================


@router.get("/reserve-privilege")
async def check_reserve_privilege(
    email: str = Query(...),
    service: UserService = Depends(get_user_service),
):
    return {"success": True, "canReserve": await service.can_reserve(email)}


@router.put("/me/region")
async def update_region(
    data: RegionUpdate,
    email: str = Depends(get_current_user_email),
    service: UserService = Depends(get_user_service),
):
    user = await service.update_region(email, data.region)
    return {"success": True, "region": user.fields.get(REGION)}


@router.put("/me/email-notifications")
async def toggle_email_notifications(
    data: EmailNotificationsUpdate,
    email: str = Depends(get_current_user_email),
    service: UserService = Depends(get_user_service),
):
    user = await service.set_email_notifications(email, data.enabled)
    return {"success": True, "emailNotificationsEnabled": user.email_notifications_enabled}


# ============================================================================
# LOYALTY POINTS
# ============================================================================


@router.get("/me/points")
async def get_points(
    email: str = Depends(get_current_user_email),
    service: UserService = Depends(get_user_service),
):
    return await service.points_balance(email)


@router.post("/me/points/redeem")
async def redeem_points(
    email: str = Depends(get_current_user_email),
    service: UserService = Depends(get_user_service),
):
    return await service.redeem_points(email)


@router.post("/me/milestones/check")
async def check_milestone(
    email: str = Depends(get_current_user_email),
    service: UserService = Depends(get_user_service),
):
    """Send the milestone email if the balance has crossed a new one"""
    return await service.check_milestone(email)


# ============================================================================
# ADMIN
# ============================================================================


@admin_router.post("/points")
async def add_manual_points(data: ManualPointsRequest, service: UserService = Depends(get_user_service)):
    return await service.add_manual_points(data.email, data.points, data.reason)


@admin_router.post("/reserve-privilege")
async def update_reserve_privilege(data: ReservePrivilegeUpdate, service: UserService = Depends(get_user_service)):
    user = await service.set_reserve_privilege(data.email, data.allowed)
    return {"success": True, "email": user.email, "allowReserveWithoutPayment": user.can_reserve_without_payment}
