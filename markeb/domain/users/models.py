"""User account model - typed view over a Markeb Media Users row"""

from dataclasses import dataclass, field
from typing import Any

NAME = "Name"
EMAIL = "Email"
COMPANY = "Company"
PHONE = "Phone"
PASSWORD_HASH = "Password Hash"
CREATED_DATE = "Created Date"
ACCOUNT_STATUS = "Account Status"
REGION = "Region"
ALLOW_RESERVE = "Allow Reserve Without Payment"
EMAIL_NOTIFICATIONS = "Email Notifications Enabled"

MANUAL_POINTS = "Manual Points"
LAST_MANUAL_POINTS_ADDED = "Last Manual Points Added"
LAST_MANUAL_ADDITION_DATE = "Last Manual Addition Date"
MANUAL_ADDITION_REASON = "Manual Addition Reason"
LAST_POINTS_REDEEMED = "Last Points Redeemed"
LAST_POINTS_VALUE = "Last Points Value"
LAST_REDEMPTION_DATE = "Last Redemption Date"
LAST_REDEMPTION_BASELINE = "Last Redemption Total Investment"
TOTAL_LIFETIME_POINTS = "Total Lifetime Points"
LAST_MILESTONE_REACHED = "Last Milestone Reached"
LAST_EMAIL_SENT_DATE = "Last Email Sent Date"

ACTIVE = "Active"


@dataclass
class User:
    record_id: str
    email: str
    fields: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "User":
        fields = record.get("fields", {})
        return cls(record_id=record["id"], email=(fields.get(EMAIL) or "").strip().lower(), fields=fields)

    @property
    def name(self) -> str:
        return self.fields.get(NAME) or ""

    @property
    def company(self) -> str:
        return self.fields.get(COMPANY) or ""

    @property
    def password_hash(self) -> str:
        return self.fields.get(PASSWORD_HASH) or ""

    @property
    def is_active(self) -> bool:
        return (self.fields.get(ACCOUNT_STATUS) or ACTIVE) == ACTIVE

    @property
    def can_reserve_without_payment(self) -> bool:
        return bool(self.fields.get(ALLOW_RESERVE))

    @property
    def email_notifications_enabled(self) -> bool:
        # Unset means enabled
        return self.fields.get(EMAIL_NOTIFICATIONS) is not False

    @property
    def manual_points(self) -> int:
        return int(self.fields.get(MANUAL_POINTS) or 0)

    @property
    def redemption_baseline(self) -> int:
        return int(self.fields.get(LAST_REDEMPTION_BASELINE) or 0)

    @property
    def lifetime_points(self) -> int:
        return int(self.fields.get(TOTAL_LIFETIME_POINTS) or 0)

    @property
    def last_milestone(self) -> int:
        return int(self.fields.get(LAST_MILESTONE_REACHED) or 0)

    def profile(self) -> dict[str, Any]:
        return {
            "id": self.record_id,
            "name": self.name,
            "email": self.email,
            "company": self.company,
            "phone": self.fields.get(PHONE),
            "region": self.fields.get(REGION),
            "accountStatus": self.fields.get(ACCOUNT_STATUS) or ACTIVE,
            "allowReserveWithoutPayment": self.can_reserve_without_payment,
            "emailNotificationsEnabled": self.email_notifications_enabled,
            "createdDate": self.fields.get(CREATED_DATE),
        }
