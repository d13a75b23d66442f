# examcoach/auth.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from .config import Settings
from .dependencies import get_settings, get_store
from .models import Account
from .store import AccountStore

ALGORITHM = "HS256"

# Swagger will use this to send: Authorization: Bearer <token>
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/accounts/token")


# -------------------------------------------------------------------
# JWT create/verify
# -------------------------------------------------------------------
def create_access_token(
    settings: Settings,
    *,
    account_id: str,
    phone_number: str,
    expires_minutes: Optional[int] = None,
) -> str:
    """
    Token claims:
      sub: account id
      phn: phone number (debug/compat)
      exp: expiry datetime

    Access state is NOT a claim; it is evaluated on every request.
    """
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )
    payload = {
        "sub": account_id,
        "phn": phone_number,
        "exp": expire,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(settings: Settings, token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
        if not payload.get("sub"):
            raise ValueError("Token missing required claims")
        return payload
    except (JWTError, ValueError) as e:
        raise ValueError("Invalid token") from e


def _auth_401() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "NOT_AUTHENTICATED", "message": "Not authenticated"},
        headers={"WWW-Authenticate": "Bearer"},
    )


# -------------------------------------------------------------------
# Dependencies
# -------------------------------------------------------------------
def get_current_account(
    token: str = Depends(oauth2_scheme),
    settings: Settings = Depends(get_settings),
    store: AccountStore = Depends(get_store),
) -> Account:
    """
    Validates the Bearer token and loads the account it names.
    """
    try:
        payload = decode_token(settings, token)
    except ValueError:
        raise _auth_401()

    account = store.get(str(payload["sub"]))
    if account is None:
        raise _auth_401()
    return account
