# examcoach/errors.py
from __future__ import annotations

from typing import Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException


class AccessCoreError(Exception):
    """
    Base for every error the access core raises on purpose.

    `code` is the machine-readable reason sent to clients; `status_code`
    is what the HTTP layer answers with.
    """

    code = "ERROR"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationError(AccessCoreError):
    code = "VALIDATION_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(AccessCoreError):
    """Duplicate phone/email. The client should send the user to login instead."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, reason: str, message: Optional[str] = None):
        super().__init__(message or _CONFLICT_MESSAGES.get(reason, "Account already exists"), code=reason)
        self.reason = reason


class GatewayError(AccessCoreError):
    code = "GATEWAY_ERROR"
    status_code = status.HTTP_502_BAD_GATEWAY


class PaymentInitiationFailed(GatewayError):
    """Nothing was persisted; retrying from a clean state is safe."""

    code = "PAYMENT_INITIATION_FAILED"

    def __init__(self, cause: str, *, status_code: Optional[int] = None):
        super().__init__(f"Payment initialization failed: {cause}")
        self.cause = cause
        self.upstream_status = status_code


class PaymentVerificationFailed(GatewayError):
    code = "PAYMENT_VERIFICATION_FAILED"


class NotFoundError(AccessCoreError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class AuthenticationFailed(AccessCoreError):
    code = "INVALID_CREDENTIALS"
    status_code = status.HTTP_401_UNAUTHORIZED


class BillingDisabled(AccessCoreError):
    code = "BILLING_DISABLED"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


_CONFLICT_MESSAGES = {
    "phone_taken": "An account with this phone number already exists. Please log in instead.",
    "email_taken": "An account with this email already exists. Please log in instead.",
}


async def access_core_error_handler(request: Request, exc: AccessCoreError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )
