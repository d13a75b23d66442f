# examcoach/schemas.py
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


# -----------------------------
# AUTH
# -----------------------------
class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    account_id: Optional[str] = None


class LoginIn(BaseModel):
    phone_number: str
    password: str


class PasswordIn(BaseModel):
    # Empty string removes the password.
    password: str = Field(default="", max_length=256)


# -----------------------------
# ACCOUNTS
# -----------------------------
def _blank_to_none(v):
    if isinstance(v, str) and not v.strip():
        return None
    return v


class RegisterIn(BaseModel):
    # Left optional so an empty phone gets phone_required, not a generic 422.
    phone_number: str = ""
    email: Optional[EmailStr] = None
    full_name: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=256)

    @field_validator("email", mode="before")
    @classmethod
    def blank_email_is_none(cls, v):
        return _blank_to_none(v)


class DuplicateCheckIn(BaseModel):
    phone_number: str = ""
    email: Optional[EmailStr] = None

    @field_validator("email", mode="before")
    @classmethod
    def blank_email_is_none(cls, v):
        return _blank_to_none(v)


class DuplicateCheckOut(BaseModel):
    conflict: str
    available: bool


class SendOtpIn(BaseModel):
    phone_number: str


class VerifyOtpIn(BaseModel):
    phone_number: str
    code: str = Field(min_length=4, max_length=10)


class AccountOut(BaseModel):
    id: str
    phone_number: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    status: str
    has_password: bool = False

    trial_started_at: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None

    last_payment_at: Optional[datetime] = None
    subscription_paid_until: Optional[datetime] = None
    payment_reference: Optional[str] = None
    amount_paid_minor_units: Optional[int] = None

    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RegisterOut(BaseModel):
    account: AccountOut
    otp_sent: bool


class AccessOut(BaseModel):
    account_id: str
    access: str
    status: str
    allowed: bool
    trial_started_at: Optional[str] = None
    trial_ends_at: Optional[str] = None
    subscription_paid_until: Optional[str] = None
    message: Optional[str] = None
    trial_remaining: Optional[str] = None
    lock_reason: Optional[str] = None
    features: dict[str, bool] = {}


class VerifyOtpOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    account: AccountOut
    access: AccessOut


class MeOut(BaseModel):
    account: AccountOut
    access: AccessOut


# -----------------------------
# BILLING
# -----------------------------
class CheckoutOut(BaseModel):
    ok: bool = True
    provider: str
    reference: str
    checkout_url: str
    access_code: str = ""
    amount_minor_units: int
    currency: str


class ApplyResultOut(BaseModel):
    ok: bool = True
    outcome: str
    account_id: str
    reference: str
    subscription_paid_until: Optional[datetime] = None
    status: Optional[str] = None
