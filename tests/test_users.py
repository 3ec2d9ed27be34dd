from itertools import count
from typing import Any, Optional
from unittest.mock import AsyncMock

import pytest

from markeb.domain.users import models as u
from markeb.domain.users.models import User
from markeb.domain.users.service import UserService
from markeb.errors import AuthenticationFailed, RecordNotFound, ValidationFailed
from markeb.security_utils import generate_reset_token, hash_password, verify_password
from tests.conftest import InMemoryBookingRepository, london, paid_booking_fields

EMAIL = "sam@agency.co.uk"


class InMemoryUserRepository:
    def __init__(self):
        self.records: dict[str, dict[str, Any]] = {}
        self._ids = count(1)

    def add(self, **fields) -> User:
        record_id = f"recU{next(self._ids)}"
        self.records[record_id] = dict(fields)
        return User.from_record({"id": record_id, "fields": self.records[record_id]})

    async def find_by_email(self, email: str) -> Optional[User]:
        for record_id, fields in self.records.items():
            if (fields.get(u.EMAIL) or "").lower() == (email or "").strip().lower():
                return User.from_record({"id": record_id, "fields": dict(fields)})
        return None

    async def get_by_email(self, email: str) -> User:
        user = await self.find_by_email(email)
        if not user:
            raise RecordNotFound("User not found")
        return user

    async def create(self, fields: dict[str, Any]) -> User:
        return self.add(**fields)

    async def update(self, record_id: str, fields: dict[str, Any]) -> User:
        self.records[record_id].update(fields)
        return User.from_record({"id": record_id, "fields": dict(self.records[record_id])})


@pytest.fixture
def users():
    return InMemoryUserRepository()


@pytest.fixture
def bookings():
    return InMemoryBookingRepository()


@pytest.fixture
def mailer():
    return AsyncMock()


@pytest.fixture
def service(users, bookings, mailer):
    return UserService(users, bookings, mailer=mailer, clock=lambda: london(2025, 6, 1, 10, 0))


# ============================================================================
# ACCOUNTS
# ============================================================================


async def test_register_hashes_password_and_welcomes(service, users, mailer):
    user = await service.register("Sam Agent", "Sam@Agency.co.uk", "letmein123", company="Acme Estates")

    assert user.email == EMAIL
    assert user.company == "Acme Estates"
    assert verify_password("letmein123", user.password_hash)
    assert user.password_hash != "letmein123"
    mailer.send_welcome_email.assert_awaited_once_with(EMAIL, "Sam Agent")


async def test_register_rejects_duplicate_email(service, users):
    users.add(**{u.EMAIL: EMAIL})
    with pytest.raises(ValidationFailed, match="already exists"):
        await service.register("Sam", "SAM@agency.co.uk", "letmein123")


async def test_register_rejects_weak_password(service):
    with pytest.raises(ValidationFailed) as exc:
        await service.register("Sam", EMAIL, "short")
    assert "Add numbers" in exc.value.extra["problems"]


async def test_authenticate(service, users):
    users.add(**{u.EMAIL: EMAIL, u.PASSWORD_HASH: hash_password("letmein123")})

    assert (await service.authenticate(EMAIL, "letmein123")).email == EMAIL
    with pytest.raises(AuthenticationFailed):
        await service.authenticate(EMAIL, "wrong-password1")
    with pytest.raises(AuthenticationFailed):
        await service.authenticate("nobody@example.com", "letmein123")


async def test_inactive_account_cannot_sign_in(service, users):
    users.add(**{u.EMAIL: EMAIL, u.PASSWORD_HASH: hash_password("letmein123"), u.ACCOUNT_STATUS: "Suspended"})
    with pytest.raises(AuthenticationFailed, match="not active"):
        await service.authenticate(EMAIL, "letmein123")


async def test_password_reset_round_trip(service, users, mailer):
    user = users.add(**{u.EMAIL: EMAIL, u.NAME: "Sam", u.PASSWORD_HASH: hash_password("letmein123")})

    await service.request_password_reset(EMAIL)
    link = mailer.send_password_reset_email.call_args.args[2]
    assert "/reset-password?token=" in link

    await service.reset_password(link.split("token=")[1], "newpass456")
    assert verify_password("newpass456", users.records[user.record_id][u.PASSWORD_HASH])


async def test_password_reset_for_unknown_email_is_silent(service, mailer):
    await service.request_password_reset("nobody@example.com")
    mailer.send_password_reset_email.assert_not_called()


async def test_reset_with_bad_token(service):
    with pytest.raises(ValidationFailed, match="Invalid or expired"):
        await service.reset_password("not-a-token", "newpass456")


async def test_reset_still_checks_strength(service, users):
    users.add(**{u.EMAIL: EMAIL})
    with pytest.raises(ValidationFailed, match="too weak"):
        await service.reset_password(generate_reset_token(EMAIL), "abc")


# ============================================================================
# PREFERENCES
# ============================================================================


async def test_reserve_privilege(service, users):
    users.add(**{u.EMAIL: EMAIL})
    assert await service.can_reserve(EMAIL) is False

    await service.set_reserve_privilege(EMAIL, True)

    assert await service.can_reserve(EMAIL) is True
    assert await service.can_reserve("nobody@example.com") is False


async def test_notifications_default_to_enabled(service, users):
    users.add(**{u.EMAIL: EMAIL})
    user = await service.set_email_notifications(EMAIL, False)
    assert user.email_notifications_enabled is False


async def test_region_is_required(service, users):
    users.add(**{u.EMAIL: EMAIL})
    with pytest.raises(ValidationFailed):
        await service.update_region(EMAIL, "")


# ============================================================================
# LOYALTY POINTS
# ============================================================================


def add_spend(bookings, *prices, **overrides):
    for index, price in enumerate(prices):
        bookings.add(**paid_booking_fields(**{"Booking Reference": f"BK-{index}", "Final Price": price, **overrides}))


async def test_points_count_paid_spend_in_whole_pounds(service, users, bookings):
    users.add(**{u.EMAIL: EMAIL, u.MANUAL_POINTS: 25})
    add_spend(bookings, 120.50, 99.99)
    add_spend(bookings, 500, **{"Booking Status": "Cancelled"})
    add_spend(bookings, 300, **{"Payment Status": "Reserved"})

    balance = await service.points_balance(EMAIL)

    assert balance["bookingPoints"] == 220
    assert balance["points"] == 245
    assert balance["pointsValue"] == 2.45


async def test_redeem_moves_baseline_and_clears_manual_points(service, users, bookings):
    user = users.add(**{u.EMAIL: EMAIL, u.MANUAL_POINTS: 10, u.TOTAL_LIFETIME_POINTS: 40})
    add_spend(bookings, 150)

    result = await service.redeem_points(EMAIL)

    assert result["redeemedPoints"] == 160
    assert result["redeemedValue"] == 1.6
    stored = users.records[user.record_id]
    assert stored[u.MANUAL_POINTS] == 0
    assert stored[u.LAST_REDEMPTION_BASELINE] == 150
    assert stored[u.TOTAL_LIFETIME_POINTS] == 200
    assert (await service.points_balance(EMAIL))["points"] == 0


async def test_redeem_with_empty_balance(service, users):
    users.add(**{u.EMAIL: EMAIL})
    with pytest.raises(ValidationFailed, match="No points"):
        await service.redeem_points(EMAIL)


async def test_manual_points_must_be_positive(service, users):
    user = users.add(**{u.EMAIL: EMAIL, u.MANUAL_POINTS: 5})
    with pytest.raises(ValidationFailed):
        await service.add_manual_points(EMAIL, 0)

    result = await service.add_manual_points(EMAIL, 20, "Referral")

    assert result["manualPoints"] == 25
    assert users.records[user.record_id][u.MANUAL_ADDITION_REASON] == "Referral"


# ============================================================================
# MILESTONES
# ============================================================================


async def test_milestone_check_respects_notification_opt_out(service, users, mailer):
    user = users.add(**{u.EMAIL: EMAIL, u.MANUAL_POINTS: 20000, u.EMAIL_NOTIFICATIONS: False})

    result = await service.check_milestone(EMAIL)

    assert result["skipped"] is True
    mailer.send_milestone_email.assert_not_called()
    assert u.LAST_MILESTONE_REACHED not in users.records[user.record_id]


async def test_only_highest_new_milestone_is_emailed(service, users, bookings, mailer):
    user = users.add(**{u.EMAIL: EMAIL, u.NAME: "Sam Agent", u.MANUAL_POINTS: 9500})
    add_spend(bookings, 600)

    result = await service.check_milestone(EMAIL)

    assert result["milestone"] == {"points": 9900, "value": 99, "type": "redemption", "tier": "Entry"}
    assert result["currentBalance"] == 10100
    assert result["skippedMilestones"] == 1
    assert result["emailSent"] is True
    milestone = mailer.send_milestone_email.await_args.args[2]
    assert milestone.points == 9900
    assert users.records[user.record_id][u.LAST_MILESTONE_REACHED] == 9900

    again = await service.check_milestone(EMAIL)

    assert again["milestoneReached"] is False
    assert again["lastMilestoneReached"] == 9900
    mailer.send_milestone_email.assert_awaited_once()


async def test_failed_milestone_email_is_retried_next_check(service, users, mailer):
    user = users.add(**{u.EMAIL: EMAIL, u.MANUAL_POINTS: 5200, u.LAST_MILESTONE_REACHED: 0})
    mailer.send_milestone_email.side_effect = RuntimeError("resend is down")

    result = await service.check_milestone(EMAIL)

    assert result["emailSent"] is False
    assert users.records[user.record_id][u.LAST_MILESTONE_REACHED] == 0

    mailer.send_milestone_email.side_effect = None
    retried = await service.check_milestone(EMAIL)

    assert retried["emailSent"] is True
    assert users.records[user.record_id][u.LAST_MILESTONE_REACHED] == 5000
