# examcoach/dependencies.py
from __future__ import annotations

from datetime import datetime
from typing import Callable

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .config import Settings
from .credential_vault import CredentialVault
from .database import get_db
from .locks import IdentityLocks
from .otp import OtpVerifier
from .payment_gateway import PaymentGateway
from .registration import AccountService
from .store import AccountStore
from .webhooks import WebhookProcessor


# Long-lived collaborators are built once in create_app() and parked on
# app.state; these accessors hand them to routes.
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_clock(request: Request) -> Callable[[], datetime]:
    return request.app.state.clock


def get_locks(request: Request) -> IdentityLocks:
    return request.app.state.locks


def get_vault(request: Request) -> CredentialVault:
    return request.app.state.vault


def get_otp(request: Request) -> OtpVerifier:
    return request.app.state.otp


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


def get_store(db: Session = Depends(get_db)) -> AccountStore:
    return AccountStore(db)


def get_account_service(
    store: AccountStore = Depends(get_store),
    vault: CredentialVault = Depends(get_vault),
    otp: OtpVerifier = Depends(get_otp),
    locks: IdentityLocks = Depends(get_locks),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> AccountService:
    return AccountService(store, vault, otp, locks, clock=clock)


def get_webhook_processor(
    store: AccountStore = Depends(get_store),
    locks: IdentityLocks = Depends(get_locks),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> WebhookProcessor:
    return WebhookProcessor(store, locks, clock=clock)
