"""User domain schemas - Pydantic models for validation"""

from typing import Optional

from pydantic import BaseModel, field_validator

from ...shared.validators import validate_email, validate_uk_phone


class RegisterRequest(BaseModel):
    name: str
    email: str
    password: str
    company: Optional[str] = None
    phone: Optional[str] = None
    region: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_user_email(cls, v):
        return validate_email(v)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        if v:
            return validate_uk_phone(v)
        return v


class LoginRequest(BaseModel):
    email: str
    password: str


class PasswordResetRequest(BaseModel):
    email: str


class PasswordResetConfirm(BaseModel):
    token: str
    newPassword: str


class RegionUpdate(BaseModel):
    region: str


class EmailNotificationsUpdate(BaseModel):
    enabled: bool


class ManualPointsRequest(BaseModel):
    """Admin: add loyalty points to an account"""

    email: str
    points: int
    reason: Optional[str] = None


class ReservePrivilegeUpdate(BaseModel):
    email: str
    allowed: bool
