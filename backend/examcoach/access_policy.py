# examcoach/access_policy.py
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from . import trial_clock
from .models import Account, AccountStatus
from .trial_clock import as_utc

FEATURE_BASIC_QUIZZES = "basic_quizzes"
FEATURE_ADVANCED_QUIZZES = "advanced_quizzes"
FEATURE_STUDY_MATERIALS = "study_materials"
FEATURE_PERFORMANCE_ANALYTICS = "performance_analytics"
FEATURE_OFFLINE_ACCESS = "offline_access"
FEATURE_UNLIMITED_ATTEMPTS = "unlimited_attempts"
FEATURE_EXPERT_EXPLANATIONS = "expert_explanations"
FEATURE_PERSONALIZED_PLANS = "personalized_plans"
FEATURE_ACHIEVEMENT_BADGES = "achievement_badges"
FEATURE_PROGRESS_TRACKING = "progress_tracking"

# Available whenever access is granted (trial or paid).
_ACCESS_FEATURES = (
    FEATURE_BASIC_QUIZZES,
    FEATURE_ADVANCED_QUIZZES,
    FEATURE_STUDY_MATERIALS,
    FEATURE_PERFORMANCE_ANALYTICS,
    FEATURE_UNLIMITED_ATTEMPTS,
    FEATURE_EXPERT_EXPLANATIONS,
    FEATURE_ACHIEVEMENT_BADGES,
    FEATURE_PROGRESS_TRACKING,
)

# Paid subscribers only.
_SUBSCRIBER_FEATURES = (
    FEATURE_OFFLINE_ACCESS,
    FEATURE_PERSONALIZED_PLANS,
)

LOCK_REASON_TRIAL_EXPIRED = "Your free trial has expired. Subscribe to access premium content."
LOCK_REASON_NO_SUBSCRIPTION = "You need an active subscription to access this content."


class Access(str, enum.Enum):
    GRANTED = "granted"
    TRIAL = "trial"
    LOCKED = "locked"


@dataclass(frozen=True)
class AccessDecision:
    access: Access
    status: AccountStatus
    trial_ends_at: Optional[datetime] = None
    paid_until: Optional[datetime] = None

    @property
    def allowed(self) -> bool:
        return self.access is not Access.LOCKED

    @property
    def subscribed(self) -> bool:
        return self.status is AccountStatus.PAID


def evaluate_access(account: Account, now: datetime) -> AccessDecision:
    """
    Pure function of the record's timestamps and `now`. The stored
    `status` column is never consulted.

      1. paid_until in the future           -> granted / paid
      2. trial end not yet passed (incl. =) -> trial   / trial
      3. trial was started                  -> locked  / trial_ended
      4. otherwise                          -> locked  / unregistered

    An open trial answers `trial`, not `granted`, though it unlocks the
    same content. Callers deciding whether to serve content should read
    `AccessDecision.allowed` rather than compare against "granted".
    """
    now = as_utc(now)
    paid_until = as_utc(account.subscription_paid_until)
    trial_ends = as_utc(account.trial_ends_at)

    if paid_until is not None and now < paid_until:
        return AccessDecision(Access.GRANTED, AccountStatus.PAID, trial_ends, paid_until)

    if trial_ends is not None and not trial_clock.is_expired(trial_ends, now):
        return AccessDecision(Access.TRIAL, AccountStatus.TRIAL, trial_ends, paid_until)

    if account.trial_started_at is not None:
        return AccessDecision(Access.LOCKED, AccountStatus.TRIAL_ENDED, trial_ends, paid_until)

    return AccessDecision(Access.LOCKED, AccountStatus.UNREGISTERED, trial_ends, paid_until)


def refresh_status(account: Account, now: datetime) -> AccessDecision:
    """Evaluate and write the result into the status display cache."""
    decision = evaluate_access(account, now)
    account.status = decision.status.value
    return decision


def _format_date(dt: datetime) -> str:
    dt = as_utc(dt)
    return f"{dt.day}/{dt.month}/{dt.year}"


def access_status_message(account: Account, now: datetime) -> Optional[str]:
    decision = evaluate_access(account, now)
    if decision.status is AccountStatus.PAID:
        return f"Subscription active until {_format_date(decision.paid_until)}"
    return trial_clock.display_message(account.trial_started_at, account.trial_ends_at, now)


def lock_reason(decision: AccessDecision) -> Optional[str]:
    if decision.allowed:
        return None
    if decision.status is AccountStatus.TRIAL_ENDED:
        return LOCK_REASON_TRIAL_EXPIRED
    return LOCK_REASON_NO_SUBSCRIPTION


def feature_access(decision: AccessDecision) -> dict[str, bool]:
    features = {name: decision.allowed for name in _ACCESS_FEATURES}
    for name in _SUBSCRIBER_FEATURES:
        features[name] = decision.allowed and decision.subscribed
    return features


def is_feature_available(decision: AccessDecision, feature: str) -> bool:
    return feature_access(decision).get(feature, False)


def decision_payload(account: Account, now: datetime) -> dict:
    decision = evaluate_access(account, now)
    return {
        "account_id": account.id,
        "access": decision.access.value,
        "status": decision.status.value,
        "allowed": decision.allowed,
        "trial_started_at": _iso(account.trial_started_at),
        "trial_ends_at": _iso(decision.trial_ends_at),
        "subscription_paid_until": _iso(decision.paid_until),
        "message": access_status_message(account, now),
        "trial_remaining": trial_clock.remaining_text(account.trial_ends_at, now)
        if decision.access is Access.TRIAL
        else None,
        "lock_reason": lock_reason(decision),
        "features": feature_access(decision),
    }


def _iso(dt: Optional[datetime]) -> Optional[str]:
    dt = as_utc(dt)
    return dt.isoformat() if dt else None
