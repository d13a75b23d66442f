# examcoach/webhooks.py
from __future__ import annotations

import enum
import hashlib
import hmac
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from sqlalchemy.exc import IntegrityError

from . import access_policy
from .errors import ValidationError
from .locks import IdentityLocks
from .logger import logger
from .models import AppliedPayment
from .payment_gateway import account_prefix_from_reference, parse_paid_at
from .store import AccountStore
from .trial_clock import as_utc

SUBSCRIPTION_LENGTH = timedelta(days=7)

EVENT_PAYMENT_SUCCESS = "payment.success"
EVENT_PAYMENT_FAILED = "payment.failed"
# Paystack's own name for a successful transaction.
EVENT_CHARGE_SUCCESS = "charge.success"


class ApplyOutcome(str, enum.Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    ACCOUNT_NOT_FOUND = "account_not_found"


@dataclass(frozen=True)
class ApplyResult:
    outcome: ApplyOutcome
    account_id: str
    reference: str
    subscription_paid_until: Optional[datetime] = None
    status: Optional[str] = None

    @property
    def applied(self) -> bool:
        # A repeat delivery is a success, not an error.
        return self.outcome is not ApplyOutcome.ACCOUNT_NOT_FOUND


@dataclass(frozen=True)
class WebhookEvent:
    event: str
    reference: str
    amount_minor_units: int
    paid_at: Optional[datetime]
    account_id: Optional[str]
    gateway_response: str = ""
    data: dict = field(default_factory=dict)

    @property
    def is_payment_success(self) -> bool:
        return self.event in (EVENT_PAYMENT_SUCCESS, EVENT_CHARGE_SUCCESS)

    @classmethod
    def from_payload(cls, payload: Any) -> "WebhookEvent":
        """
        {"event": "payment.success",
         "data": {"reference", "amount", "paid_at", "metadata": {"user_id"}}}
        """
        if isinstance(payload, (bytes, str)):
            try:
                payload = json.loads(payload)
            except ValueError as e:
                raise ValidationError("Webhook body is not valid JSON", code="INVALID_PAYLOAD") from e
        if not isinstance(payload, dict):
            raise ValidationError("Webhook body must be a JSON object", code="INVALID_PAYLOAD")

        data = payload.get("data") or {}
        if not isinstance(data, dict):
            raise ValidationError("Webhook data must be an object", code="INVALID_PAYLOAD")
        metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}

        try:
            amount = int(data.get("amount") or 0)
        except (TypeError, ValueError) as e:
            raise ValidationError("Webhook amount must be an integer", code="INVALID_PAYLOAD") from e

        return cls(
            event=str(payload.get("event") or "").strip(),
            reference=str(data.get("reference") or "").strip(),
            amount_minor_units=amount,
            paid_at=parse_paid_at(data.get("paid_at") or data.get("paidAt")),
            account_id=(str(metadata.get("user_id") or "").strip() or None),
            gateway_response=str(data.get("gateway_response") or ""),
            data=data,
        )


PAYMENT_AMOUNT_BELOW_PRICE = "amount_below_price"
PAYMENT_REFERENCE_MISMATCH = "reference_mismatch"


def payment_rejection(
    account_id: str,
    reference: str,
    amount_minor_units: int,
    price_minor_units: int,
) -> Optional[str]:
    """
    Reason a confirmed payment cannot buy a subscription, or None.

    Only checkouts started by this service carry the full price and a
    reference minted for the paying account.
    """
    if int(amount_minor_units or 0) < price_minor_units:
        return PAYMENT_AMOUNT_BELOW_PRICE
    if account_prefix_from_reference(reference) != (account_id or "")[:8]:
        return PAYMENT_REFERENCE_MISMATCH
    return None


def paystack_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()


def verify_paystack_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    if not secret or not signature:
        return False
    return hmac.compare_digest(paystack_signature(secret, body), signature.strip())


class WebhookProcessor:
    """
    Applies payment confirmations to accounts.

    Each reference extends the subscription once: paid_until becomes
    paid_at + 7 days (not added to any trial remainder). A reference seen
    before, either as the account's current payment_reference or in the
    applied_payments ledger, is acknowledged without touching the record.

    Input is trusted: signature checks belong to the HTTP layer.
    """

    def __init__(
        self,
        store: AccountStore,
        locks: IdentityLocks,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.locks = locks
        self.clock = clock

    def apply(
        self,
        account_id: str,
        reference: str,
        amount_minor_units: int,
        paid_at: Optional[datetime] = None,
        source: str = "webhook",
    ) -> ApplyResult:
        if not reference:
            raise ValidationError("Payment reference is required", code="INVALID_PAYLOAD")

        with self.locks.hold(f"account:{account_id}"):
            account = self.store.get_for_update(account_id)
            if account is None:
                logger.warning("payment for unknown account dropped", account_id=account_id, reference=reference)
                return ApplyResult(ApplyOutcome.ACCOUNT_NOT_FOUND, account_id, reference)

            if account.payment_reference == reference or self.store.is_reference_applied(reference):
                logger.info("payment reference already applied", account_id=account_id, reference=reference)
                return ApplyResult(
                    ApplyOutcome.ALREADY_APPLIED,
                    account_id,
                    reference,
                    as_utc(account.subscription_paid_until),
                    account.status,
                )

            paid_at = as_utc(paid_at) or self.clock()
            paid_until = paid_at + SUBSCRIPTION_LENGTH

            account.last_payment_at = paid_at
            account.subscription_paid_until = paid_until
            account.payment_reference = reference
            account.amount_paid_minor_units = int(amount_minor_units)
            decision = access_policy.refresh_status(account, self.clock())

            self.store.db.add(
                AppliedPayment(
                    reference=reference,
                    account_id=account.id,
                    amount_minor_units=int(amount_minor_units),
                    paid_at=paid_at,
                    paid_until=paid_until,
                    source=source,
                )
            )
            try:
                self.store.put(account)
            except IntegrityError:
                # Another worker recorded this reference between our check and commit.
                logger.info("payment reference applied concurrently", account_id=account_id, reference=reference)
                refreshed = self.store.get_for_update(account_id)
                return ApplyResult(
                    ApplyOutcome.ALREADY_APPLIED,
                    account_id,
                    reference,
                    as_utc(refreshed.subscription_paid_until) if refreshed else None,
                    refreshed.status if refreshed else None,
                )

            logger.info(
                "subscription payment applied",
                account_id=account_id,
                reference=reference,
                amount=int(amount_minor_units),
                paid_until=paid_until.isoformat(),
            )
            return ApplyResult(ApplyOutcome.APPLIED, account_id, reference, paid_until, decision.status.value)

    def apply_event(self, event: WebhookEvent) -> Optional[ApplyResult]:
        """
        Dispatch a parsed gateway event. Returns None for events that do
        not move money onto an account.
        """
        if event.event == EVENT_PAYMENT_FAILED:
            logger.warning(
                "payment failed",
                account_id=event.account_id,
                reference=event.reference,
                reason=event.gateway_response or "Unknown",
            )
            return None

        if not event.is_payment_success:
            logger.info("unhandled webhook event", event=event.event)
            return None

        if not event.account_id:
            raise ValidationError("Missing user information in payment metadata", code="INVALID_PAYLOAD")

        return self.apply(event.account_id, event.reference, event.amount_minor_units, event.paid_at)
