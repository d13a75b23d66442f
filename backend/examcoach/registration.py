# examcoach/registration.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from . import access_policy, trial_clock
from .credential_vault import CredentialVault
from .duplicate_guard import DuplicateGuard
from .errors import AuthenticationFailed, NotFoundError, ValidationError
from .locks import IdentityLocks
from .logger import logger
from .models import Account
from .otp import OtpSendError, OtpVerifier
from .store import AccountStore, normalize_email, normalize_phone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Registration:
    account: Account
    otp_sent: bool


class AccountService:
    """
    Registration, identity verification and credential operations.
    Collaborators are passed in; nothing is looked up globally.
    """

    def __init__(
        self,
        store: AccountStore,
        vault: CredentialVault,
        otp: OtpVerifier,
        locks: IdentityLocks,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.vault = vault
        self.otp = otp
        self.locks = locks
        self.clock = clock
        self.guard = DuplicateGuard(store)

    # -----------------------------
    # Registration
    # -----------------------------
    def register(
        self,
        phone_number: str,
        email: Optional[str] = None,
        full_name: Optional[str] = None,
        password: Optional[str] = None,
    ) -> Registration:
        phone = normalize_phone(phone_number)
        if not phone:
            raise ValidationError("Phone number is required", code="phone_required")

        with self.locks.hold(f"phone:{phone}"):
            self.guard.ensure_available(phone, email)

            account = Account(
                phone_number=phone,
                email=normalize_email(email),
                full_name=(full_name or "").strip() or None,
            )
            account.credential_hash, account.credential_salt = self.vault.set_credential(password)
            access_policy.refresh_status(account, self.clock())
            account = self.store.create(account)

        logger.info("account registered", account_id=account.id)
        return Registration(account=account, otp_sent=self._send_code(account.phone_number))

    def _send_code(self, phone: str) -> bool:
        try:
            self.otp.send_code(phone)
        except OtpSendError as e:
            logger.warning("verification code not sent", error=str(e))
            return False
        return True

    def resend_code(self, phone_number: str) -> bool:
        account = self.store.find_by_phone(phone_number)
        if account is None:
            raise NotFoundError("No account for this phone number", code="ACCOUNT_NOT_FOUND")
        return self._send_code(account.phone_number)

    # -----------------------------
    # Identity verification -> trial
    # -----------------------------
    def verify_identity(self, phone_number: str, code: str) -> Account:
        """
        Consume an OTP result. The first successful verification starts
        the 48h trial; later ones leave the window where it is.
        """
        phone = normalize_phone(phone_number)
        account = self.store.find_by_phone(phone)
        if account is None:
            raise NotFoundError("No account for this phone number", code="ACCOUNT_NOT_FOUND")

        if not self.otp.verify(phone, (code or "").strip()):
            logger.info("verification code rejected", account_id=account.id)
            raise ValidationError("Invalid or expired verification code", code="INVALID_CODE")

        return self.activate_trial(account.id)

    def activate_trial(self, account_id: str) -> Account:
        with self.locks.hold(f"account:{account_id}"):
            account = self.store.get_for_update(account_id)
            if account is None:
                raise NotFoundError("Account not found", code="ACCOUNT_NOT_FOUND")

            now = self.clock()
            if account.trial_started_at is None:
                account.trial_started_at, account.trial_ends_at = trial_clock.activate(now)
                logger.info(
                    "trial activated",
                    account_id=account.id,
                    trial_ends_at=account.trial_ends_at.isoformat(),
                )
            access_policy.refresh_status(account, now)
            return self.store.put(account)

    # -----------------------------
    # Credentials
    # -----------------------------
    def set_password(self, account: Account, plaintext: Optional[str]) -> Account:
        """Empty plaintext removes the password."""
        with self.locks.hold(f"account:{account.id}"):
            account.credential_hash, account.credential_salt = self.vault.set_credential(plaintext)
            logger.info("credential updated", account_id=account.id, removed=not plaintext)
            return self.store.put(account)

    def authenticate(self, phone_number: str, password: str) -> Account:
        account = self.store.find_by_phone(phone_number)
        if account is None or not self.vault.verify(password, account.credential_hash, account.credential_salt):
            raise AuthenticationFailed("Incorrect phone number or password")
        return account
