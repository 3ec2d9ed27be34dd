"""User service - accounts, preferences and loyalty points"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

from ... import email_service
from ...config import SITE_URL
from ...email_service import notify
from ...errors import AuthenticationFailed, ValidationFailed
from ...security_utils import (
    check_password_strength,
    generate_reset_token,
    hash_password,
    verify_password,
    verify_reset_token,
)
from ..bookings.fees import to_money
from ..bookings.repository import BookingRepository
from ..bookings.lifecycle import normalize_email
from . import models as u
from .models import User
from .repository import UserRepository

logger = logging.getLogger(__name__)

# One point per whole pound spent; 100 points are worth £1
POINT_VALUE = Decimal("0.01")


@dataclass(frozen=True)
class Milestone:
    points: int
    value: int
    kind: str
    tier: str
    subject: str

    def as_dict(self) -> dict[str, Any]:
        return {"points": self.points, "value": self.value, "type": self.kind, "tier": self.tier}


# Progress milestones encourage; redemption milestones unlock a service tier
MILESTONES = (
    Milestone(5000, 50, "progress", "Progress", "💪 Great start - 5,000 points earned!"),
    Milestone(9900, 99, "redemption", "Entry", "🎉 First Free Service Unlocked - £99+ to Spend!"),
    Milestone(15000, 150, "progress", "Progress", "💪 Almost there - 15,000 points!"),
    Milestone(16900, 169, "redemption", "Bronze", "🥉 Bronze Tier Unlocked - £169+ Available!"),
    Milestone(21900, 219, "redemption", "Silver", "🥈 Silver Tier Unlocked - Our Most Popular Package!"),
    Milestone(50000, 500, "redemption", "Gold", "🥇 Gold Tier Unlocked - Premium Services Available!"),
    Milestone(74500, 745, "redemption", "Elite", "🏆 Elite Status - Complete Branding Package Unlocked!"),
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserService:
    def __init__(
        self,
        users: UserRepository,
        bookings: BookingRepository,
        mailer=email_service,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.users = users
        self.bookings = bookings
        self.mailer = mailer
        self.clock = clock

    # ========================================================================
    # ACCOUNTS
    # ========================================================================

    async def register(
        self,
        name: str,
        email: str,
        password: str,
        company: Optional[str] = None,
        phone: Optional[str] = None,
        region: Optional[str] = None,
    ) -> User:
        email = normalize_email(email)
        if await self.users.find_by_email(email):
            raise ValidationFailed("An account with this email already exists")

        problems = check_password_strength(password)
        if problems:
            raise ValidationFailed("Password is too weak", {"problems": problems})

        fields = {
            u.NAME: name,
            u.EMAIL: email,
            u.PASSWORD_HASH: hash_password(password),
            u.ACCOUNT_STATUS: u.ACTIVE,
            u.CREATED_DATE: self.clock().isoformat(),
        }
        if company:
            fields[u.COMPANY] = company
        if phone:
            fields[u.PHONE] = phone
        if region:
            fields[u.REGION] = region

        user = await self.users.create(fields)
        logger.info(f"✅ Registered user {email}")
        await notify(self.mailer.send_welcome_email(email, name))
        return user

    async def authenticate(self, email: str, password: str) -> User:
        user = await self.users.find_by_email(email)
        if not user or not verify_password(password, user.password_hash):
            logger.warning(f"⚠️ Failed login for {normalize_email(email)}")
            raise AuthenticationFailed("Invalid email or password")
        if not user.is_active:
            raise AuthenticationFailed("Account is not active")
        return user

    async def request_password_reset(self, email: str) -> None:
        """Sends a reset link if the account exists; silent otherwise"""
        user = await self.users.find_by_email(email)
        if not user:
            logger.info("ℹ️ Password reset requested for unknown email")
            return
        token = generate_reset_token(user.email)
        link = f"{SITE_URL}/reset-password?token={token}"
        await notify(self.mailer.send_password_reset_email(user.email, user.name, link))

    async def reset_password(self, token: str, new_password: str) -> None:
        email = verify_reset_token(token)
        if not email:
            raise ValidationFailed("Invalid or expired reset link")

        problems = check_password_strength(new_password)
        if problems:
            raise ValidationFailed("Password is too weak", {"problems": problems})

        user = await self.users.get_by_email(email)
        await self.users.update(user.record_id, {u.PASSWORD_HASH: hash_password(new_password)})
        logger.info(f"✅ Password reset for {email}")

    # ========================================================================
    # PREFERENCES
    # ========================================================================

    async def can_reserve(self, email: str) -> bool:
        user = await self.users.find_by_email(email)
        return bool(user and user.can_reserve_without_payment)

    async def set_reserve_privilege(self, email: str, allowed: bool) -> User:
        user = await self.users.get_by_email(email)
        logger.info(f"🔑 Reserve privilege for {user.email} -> {allowed}")
        return await self.users.update(user.record_id, {u.ALLOW_RESERVE: allowed})

    async def update_region(self, email: str, region: str) -> User:
        if not region:
            raise ValidationFailed("Region is required")
        user = await self.users.get_by_email(email)
        return await self.users.update(user.record_id, {u.REGION: region})

    async def set_email_notifications(self, email: str, enabled: bool) -> User:
        user = await self.users.get_by_email(email)
        return await self.users.update(user.record_id, {u.EMAIL_NOTIFICATIONS: enabled})

    # ========================================================================
    # LOYALTY POINTS
    # ========================================================================

    async def _booking_points(self, email: str) -> int:
        bookings = await self.bookings.list_for_client(email)
        spend = sum((b.final_price for b in bookings if b.is_paid and not b.is_cancelled), Decimal("0"))
        return math.floor(spend)

    async def _available(self, user: User) -> tuple[int, int, int]:
        """(lifetime booking points, booking points since last redemption, available balance)"""
        booking_points = await self._booking_points(user.email)
        net_booking_points = max(0, booking_points - user.redemption_baseline)
        return booking_points, net_booking_points, net_booking_points + user.manual_points

    async def points_balance(self, email: str) -> dict[str, Any]:
        """
        Available points.

        Booking points are whole pounds spent on paid, non-cancelled bookings.
        Redeeming moves the baseline up to the spend at that moment, so only
        spend since the last redemption counts, plus any manually added points.
        """
        user = await self.users.get_by_email(email)
        _, net_booking_points, balance = await self._available(user)
        return {
            "success": True,
            "points": balance,
            "pointsValue": float(to_money(balance * POINT_VALUE)),
            "bookingPoints": net_booking_points,
            "manualPoints": user.manual_points,
            "lastRedemptionBaseline": user.redemption_baseline,
            "totalLifetimePoints": user.lifetime_points,
        }

    async def add_manual_points(self, email: str, points: int, reason: Optional[str] = None) -> dict[str, Any]:
        if points <= 0:
            raise ValidationFailed("Points must be a positive number")
        user = await self.users.get_by_email(email)
        total = user.manual_points + points
        await self.users.update(
            user.record_id,
            {
                u.MANUAL_POINTS: total,
                u.LAST_MANUAL_POINTS_ADDED: points,
                u.LAST_MANUAL_ADDITION_DATE: self.clock().isoformat(),
                u.MANUAL_ADDITION_REASON: reason or "",
            },
        )
        logger.info(f"⭐ Added {points} points to {user.email} (manual total {total})")
        return {"success": True, "manualPoints": total, "pointsAdded": points}

    async def redeem_points(self, email: str) -> dict[str, Any]:
        """Redeem the whole available balance"""
        user = await self.users.get_by_email(email)
        booking_points, _, balance = await self._available(user)
        if balance <= 0:
            raise ValidationFailed("No points available to redeem")

        value = to_money(balance * POINT_VALUE)
        await self.users.update(
            user.record_id,
            {
                u.MANUAL_POINTS: 0,
                u.LAST_REDEMPTION_BASELINE: booking_points,
                u.LAST_POINTS_REDEEMED: balance,
                u.LAST_POINTS_VALUE: float(value),
                u.LAST_REDEMPTION_DATE: self.clock().isoformat(),
                u.TOTAL_LIFETIME_POINTS: user.lifetime_points + balance,
            },
        )
        logger.info(f"🎁 {user.email} redeemed {balance} points (£{value})")
        return {
            "success": True,
            "message": "Points redeemed successfully",
            "redeemedPoints": balance,
            "redeemedValue": float(value),
        }

    # ========================================================================
    # MILESTONES
    # ========================================================================

    async def check_milestone(self, email: str) -> dict[str, Any]:
        """
        Email the customer when their balance crosses a new milestone.

        Only the highest milestone reached since the last email is sent, and
        the marker only moves once the email has gone out, so a failed send is
        retried on the next check.
        """
        user = await self.users.get_by_email(email)
        if not user.email_notifications_enabled:
            logger.info(f"ℹ️ Milestone check skipped for {user.email}: notifications disabled")
            return {"success": True, "skipped": True, "message": "Email notifications disabled for this user"}

        _, _, balance = await self._available(user)
        eligible = [m for m in MILESTONES if balance >= m.points and user.last_milestone < m.points]
        if not eligible:
            return {
                "success": True,
                "milestoneReached": False,
                "currentBalance": balance,
                "lastMilestoneReached": user.last_milestone,
            }

        milestone = eligible[-1]
        email_sent = await notify(self.mailer.send_milestone_email(user.email, user.name, milestone, balance))
        if email_sent:
            await self.users.update(
                user.record_id,
                {u.LAST_MILESTONE_REACHED: milestone.points, u.LAST_EMAIL_SENT_DATE: self.clock().isoformat()},
            )
            logger.info(f"🏅 {user.email} reached the {milestone.tier} milestone ({milestone.points} points)")

        return {
            "success": True,
            "milestoneReached": True,
            "milestone": milestone.as_dict(),
            "currentBalance": balance,
            "skippedMilestones": len(eligible) - 1,
            "emailSent": email_sent,
        }
