# examcoach/access_guard.py
from __future__ import annotations

from datetime import datetime
from typing import Callable

from fastapi import Depends, HTTPException, status

from . import access_policy
from .access_policy import AccessDecision
from .auth import get_current_account
from .dependencies import get_clock
from .models import Account, AccountStatus


def _locked_detail(account: Account, decision: AccessDecision, now: datetime) -> dict:
    code = "TRIAL_EXPIRED" if decision.status is AccountStatus.TRIAL_ENDED else "SUBSCRIPTION_REQUIRED"
    return {
        "code": code,
        "message": access_policy.lock_reason(decision),
        "access": decision.access.value,
        "status": decision.status.value,
        "trial_message": access_policy.access_status_message(account, now),
    }


def require_active_access(
    account: Account = Depends(get_current_account),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> Account:
    """
    Premium-content gate. Evaluated fresh on every request from the
    record's timestamps; the cached status column plays no part.
    """
    now = clock()
    decision = access_policy.evaluate_access(account, now)
    if decision.allowed:
        return account

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=_locked_detail(account, decision, now),
    )


def require_feature(feature: str):
    """Like require_active_access, for features that need more than an open trial."""

    def _dependency(
        account: Account = Depends(get_current_account),
        clock: Callable[[], datetime] = Depends(get_clock),
    ) -> Account:
        now = clock()
        decision = access_policy.evaluate_access(account, now)
        if access_policy.is_feature_available(decision, feature):
            return account

        if not decision.allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=_locked_detail(account, decision, now))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "code": "SUBSCRIPTION_REQUIRED",
                "message": "This feature is available to subscribers only.",
                "feature": feature,
                "access": decision.access.value,
                "status": decision.status.value,
            },
        )

    return _dependency
