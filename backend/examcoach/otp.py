# examcoach/otp.py
from __future__ import annotations

import hashlib
import hmac
import secrets
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .config import OTP_MODE_DISABLED
from .logger import logger

CODE_LENGTH = 6
CODE_TTL = timedelta(minutes=10)
MAX_ATTEMPTS = 5


class OtpSendError(Exception):
    pass


class OtpVerifier:
    """
    Identity verification collaborator. The core only needs
    send_code(phone) and verify(phone, code) -> bool.
    """

    def send_code(self, phone_number: str) -> None:
        raise NotImplementedError

    def verify(self, phone_number: str, code: str) -> bool:
        raise NotImplementedError


class ConsoleOtpVerifier(OtpVerifier):
    """
    Local stand-in for an SMS provider: codes are kept in memory instead
    of being sent. The code itself is only written to the log when
    `log_codes` is set, which build_otp_verifier does for LOCAL only.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        log_codes: bool = False,
    ):
        self.clock = clock
        self.log_codes = log_codes
        self._lock = threading.Lock()
        self._pending: dict[str, tuple[str, datetime, int]] = {}
        self.last_code: Optional[str] = None

    @staticmethod
    def _digest(code: str) -> str:
        return hashlib.sha256(code.encode("utf-8")).hexdigest()

    def send_code(self, phone_number: str) -> None:
        if not phone_number:
            raise OtpSendError("Phone number is required")
        code = "".join(secrets.choice("0123456789") for _ in range(CODE_LENGTH))
        with self._lock:
            self._pending[phone_number] = (self._digest(code), self.clock() + CODE_TTL, 0)
        self.last_code = code
        if self.log_codes:
            logger.info("verification code issued", phone_number=phone_number, code=code)
        else:
            logger.info("verification code issued", phone_number=phone_number)

    def verify(self, phone_number: str, code: str) -> bool:
        with self._lock:
            entry = self._pending.get(phone_number)
            if entry is None:
                return False
            digest, expires_at, attempts = entry
            if self.clock() > expires_at or attempts >= MAX_ATTEMPTS:
                self._pending.pop(phone_number, None)
                return False
            if not hmac.compare_digest(digest, self._digest(code or "")):
                self._pending[phone_number] = (digest, expires_at, attempts + 1)
                return False
            self._pending.pop(phone_number, None)
            return True


class DisabledOtpVerifier(OtpVerifier):
    """Every code is refused; identity can only be verified out of band."""

    def send_code(self, phone_number: str) -> None:
        raise OtpSendError("Phone verification is disabled")

    def verify(self, phone_number: str, code: str) -> bool:
        return False


def build_otp_verifier(mode: str, env_mode: str = "LOCAL") -> OtpVerifier:
    if mode == OTP_MODE_DISABLED:
        return DisabledOtpVerifier()
    return ConsoleOtpVerifier(log_codes=env_mode.upper() == "LOCAL")
