# examcoach/duplicate_guard.py
from __future__ import annotations

import enum
from typing import Optional

from .errors import ConflictError, ValidationError
from .logger import logger
from .store import AccountStore, normalize_email, normalize_phone


class ConflictReason(str, enum.Enum):
    PHONE_REQUIRED = "phone_required"
    PHONE_TAKEN = "phone_taken"
    EMAIL_TAKEN = "email_taken"
    NONE = "none"


class DuplicateGuard:
    """
    Registration-time uniqueness check for phone and email.

    The two lookups run sequentially on the same store: phone first,
    email only if the phone is free and an email was given. Do not run
    them in parallel; concurrent lookups against the shared store have
    corrupted each other's state before.

    The answer is advisory. Between check() and the insert another
    registration can take the identity; the caller holds the per-phone
    lock and the store's unique constraints reject whatever still slips
    through. Two processes registering the same email under different
    phones is the residual case left to those constraints.
    """

    def __init__(self, store: AccountStore):
        self.store = store

    def check(self, phone_number: Optional[str], email: Optional[str] = None) -> ConflictReason:
        phone = normalize_phone(phone_number)
        if not phone:
            return ConflictReason.PHONE_REQUIRED

        if self.store.find_by_phone(phone) is not None:
            logger.info("duplicate phone at registration", conflict=ConflictReason.PHONE_TAKEN.value)
            return ConflictReason.PHONE_TAKEN

        e = normalize_email(email)
        if e is None:
            return ConflictReason.NONE

        if self.store.find_by_email(e) is not None:
            logger.info("duplicate email at registration", conflict=ConflictReason.EMAIL_TAKEN.value)
            return ConflictReason.EMAIL_TAKEN

        return ConflictReason.NONE

    def ensure_available(self, phone_number: Optional[str], email: Optional[str] = None) -> None:
        """check() that raises the matching error instead of returning a reason."""
        reason = self.check(phone_number, email)
        if reason is ConflictReason.PHONE_REQUIRED:
            raise ValidationError("Phone number is required", code=reason.value)
        if reason is not ConflictReason.NONE:
            raise ConflictError(reason.value)
