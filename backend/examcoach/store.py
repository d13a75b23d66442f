# examcoach/store.py
from __future__ import annotations

import re
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import ConflictError
from .logger import logger
from .models import Account, AppliedPayment

_PHONE_SEPARATORS = re.compile(r"[\s\-().]")


def normalize_phone(phone: Optional[str]) -> str:
    return _PHONE_SEPARATORS.sub("", (phone or "").strip())


def normalize_email(email: Optional[str]) -> Optional[str]:
    e = (email or "").strip().lower()
    return e or None


class AccountStore:
    """
    Persistent account store on a SQLAlchemy session.

    Lookups run one at a time on the caller's session; nothing here
    fans out concurrently.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, account_id: str) -> Optional[Account]:
        if not account_id:
            return None
        return self.db.get(Account, account_id)

    def get_for_update(self, account_id: str) -> Optional[Account]:
        """
        Re-read the row from the database, replacing whatever this session
        already holds. Callers hold the account lock; the row lock matters
        on backends that support FOR UPDATE.
        """
        if not account_id:
            return None
        return self.db.get(Account, account_id, populate_existing=True, with_for_update=True)

    def find_by_phone(self, phone_number: str) -> Optional[Account]:
        phone = normalize_phone(phone_number)
        if not phone:
            return None
        return self.db.scalar(select(Account).where(Account.phone_number == phone))

    def find_by_email(self, email: Optional[str]) -> Optional[Account]:
        e = normalize_email(email)
        if not e:
            return None
        return self.db.scalar(select(Account).where(Account.email == e))

    def is_reference_applied(self, reference: str) -> bool:
        row = self.db.scalar(select(AppliedPayment.id).where(AppliedPayment.reference == reference))
        return row is not None

    def create(self, account: Account) -> Account:
        """
        Insert a new account. The unique constraints are the final word on
        identity uniqueness: a row that slipped past DuplicateGuard is
        rejected here as a ConflictError.
        """
        account.phone_number = normalize_phone(account.phone_number)
        account.email = normalize_email(account.email)
        self.db.add(account)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            reason = self._conflict_reason(account)
            logger.warning("account insert rejected by unique constraint", conflict=reason)
            raise ConflictError(reason) from e
        self.db.refresh(account)
        return account

    def _conflict_reason(self, account: Account) -> str:
        if self.find_by_phone(account.phone_number) is not None:
            return "phone_taken"
        if account.email and self.find_by_email(account.email) is not None:
            return "email_taken"
        return "phone_taken"

    def put(self, account: Account) -> Account:
        self.db.add(account)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return account
