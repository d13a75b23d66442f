# examcoach/routers/accounts.py
from __future__ import annotations

from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Depends, status
from fastapi.security import OAuth2PasswordRequestForm

from examcoach import access_policy, auth, schemas
from examcoach.config import Settings
from examcoach.dependencies import get_account_service, get_clock, get_settings, get_store
from examcoach.duplicate_guard import DuplicateGuard
from examcoach.models import Account
from examcoach.registration import AccountService
from examcoach.store import AccountStore

router = APIRouter(prefix="/accounts", tags=["accounts"])


def _token_for(settings: Settings, account: Account) -> str:
    return auth.create_access_token(settings, account_id=account.id, phone_number=account.phone_number)


# -------------------------------------------------
# REGISTRATION
# -------------------------------------------------
@router.post("/check-duplicate", response_model=schemas.DuplicateCheckOut)
def check_duplicate(payload: schemas.DuplicateCheckIn, store: AccountStore = Depends(get_store)):
    """
    Advisory only. /register checks again under the phone lock.
    """
    reason = DuplicateGuard(store).check(payload.phone_number, payload.email)
    return {"conflict": reason.value, "available": reason.value == "none"}


@router.post("/register", response_model=schemas.RegisterOut, status_code=status.HTTP_201_CREATED)
def register(
    payload: schemas.RegisterIn,
    service: AccountService = Depends(get_account_service),
):
    result = service.register(
        payload.phone_number,
        email=payload.email,
        full_name=payload.full_name,
        password=payload.password,
    )
    return {"account": result.account, "otp_sent": result.otp_sent}


@router.post("/send-otp")
def send_otp(payload: schemas.SendOtpIn, service: AccountService = Depends(get_account_service)):
    return {"ok": True, "otp_sent": service.resend_code(payload.phone_number)}


@router.post("/verify-otp", response_model=schemas.VerifyOtpOut)
def verify_otp(
    payload: schemas.VerifyOtpIn,
    service: AccountService = Depends(get_account_service),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    account = service.verify_identity(payload.phone_number, payload.code)
    return {
        "access_token": _token_for(settings, account),
        "account": account,
        "access": access_policy.decision_payload(account, clock()),
    }


# -------------------------------------------------
# LOGIN
# -------------------------------------------------
@router.post("/login", response_model=schemas.TokenOut)
def login(
    payload: schemas.LoginIn,
    service: AccountService = Depends(get_account_service),
    settings: Settings = Depends(get_settings),
):
    account = service.authenticate(payload.phone_number, payload.password)
    return {"access_token": _token_for(settings, account), "account_id": account.id}


@router.post("/token", response_model=schemas.TokenOut)
def login_form(
    form_data: OAuth2PasswordRequestForm = Depends(),
    service: AccountService = Depends(get_account_service),
    settings: Settings = Depends(get_settings),
):
    """OAuth2 form login for Swagger: username is the phone number."""
    account = service.authenticate(form_data.username, form_data.password)
    return {"access_token": _token_for(settings, account), "account_id": account.id}


# -------------------------------------------------
# ME
# -------------------------------------------------
@router.get("/me", response_model=schemas.MeOut)
def me(
    account: Account = Depends(auth.get_current_account),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    return {"account": account, "access": access_policy.decision_payload(account, clock())}


@router.put("/me/password")
def set_password(
    payload: schemas.PasswordIn,
    account: Account = Depends(auth.get_current_account),
    service: AccountService = Depends(get_account_service),
):
    account = service.set_password(account, payload.password)
    return {"ok": True, "has_password": account.has_password}
