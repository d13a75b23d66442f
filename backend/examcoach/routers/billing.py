# examcoach/routers/billing.py
from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from starlette.concurrency import run_in_threadpool

from examcoach import access_policy, auth, schemas
from examcoach.config import Settings
from examcoach.dependencies import get_clock, get_gateway, get_settings, get_webhook_processor
from examcoach.errors import BillingDisabled, ValidationError
from examcoach.logger import logger
from examcoach.models import Account, AccountStatus
from examcoach.payment_gateway import PaymentGateway, parse_paid_at
from examcoach.trial_clock import as_utc
from examcoach.webhooks import (
    ApplyOutcome,
    ApplyResult,
    WebhookEvent,
    WebhookProcessor,
    payment_rejection,
    verify_paystack_signature,
)

# All billing endpoints live under /billing
router = APIRouter(prefix="/billing", tags=["billing"])


# -----------------------------
# Billing feature flag
# -----------------------------
def _require_billing_enabled(settings: Settings) -> None:
    if not settings.billing_enabled:
        raise BillingDisabled("Billing disabled")


def _result_payload(result: ApplyResult) -> dict:
    return {
        "ok": True,
        "outcome": result.outcome.value,
        "account_id": result.account_id,
        "reference": result.reference,
        "subscription_paid_until": result.subscription_paid_until,
        "status": result.status,
    }


def _ignored(reason: str, **extra) -> dict:
    return {"ok": True, "ignored": True, "reason": reason, **extra}


def _rejected(settings: Settings, account_id: str, reference: str, amount_minor_units: int) -> Optional[dict]:
    reason = payment_rejection(account_id, reference, amount_minor_units, settings.subscription_price_minor)
    if reason is None:
        return None
    logger.warning(
        "payment rejected",
        account_id=account_id,
        reference=reference,
        amount=amount_minor_units,
        reason=reason,
    )
    return {"ok": False, "ignored": True, "reason": reason, "reference": reference}


# -----------------------------
# Status (works even when billing is disabled)
# -----------------------------
@router.get("/status")
def billing_status(
    account: Account = Depends(auth.get_current_account),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    paid_until = as_utc(account.subscription_paid_until)
    return {
        "ok": True,
        "billing_enabled": settings.billing_enabled,
        "provider": settings.payment_provider,
        "price_minor_units": settings.subscription_price_minor,
        "currency": settings.subscription_currency,
        "access": access_policy.decision_payload(account, clock()),
        "payment": {
            "last_payment_at": as_utc(account.last_payment_at).isoformat() if account.last_payment_at else None,
            "subscription_paid_until": paid_until.isoformat() if paid_until else None,
            "payment_reference": account.payment_reference,
            "amount_paid_minor_units": account.amount_paid_minor_units,
        },
    }


# -----------------------------
# Checkout
# -----------------------------
@router.post("/checkout", response_model=schemas.CheckoutOut)
def billing_checkout(
    account: Account = Depends(auth.get_current_account),
    settings: Settings = Depends(get_settings),
    gateway: PaymentGateway = Depends(get_gateway),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """
    Starts checkout. Nothing on the account changes here; access is only
    granted once the gateway confirms the payment.
    """
    _require_billing_enabled(settings)

    decision = access_policy.evaluate_access(account, clock())
    if decision.status is AccountStatus.PAID:
        raise HTTPException(
            status_code=409,
            detail={"code": "SUBSCRIPTION_ACTIVE", "message": "Subscription already active"},
        )

    intent = gateway.initiate(account.id, account.email, account.full_name)
    return {
        "ok": True,
        "provider": gateway.provider,
        "reference": intent.reference,
        "checkout_url": intent.checkout_url,
        "access_code": intent.access_code,
        "amount_minor_units": intent.amount_minor_units,
        "currency": intent.currency,
    }


def _confirm_reference(
    settings: Settings,
    reference: str,
    gateway: PaymentGateway,
    processor: WebhookProcessor,
    expected_account_id: Optional[str] = None,
) -> dict:
    verification = gateway.verify(reference)
    if not verification.is_successful:
        logger.info("payment not successful on verify", reference=reference, status=verification.status)
        return {"ok": False, "reference": reference, "status": verification.status}

    account_id = verification.account_id
    if not account_id:
        raise ValidationError("Missing user information in payment metadata", code="INVALID_PAYLOAD")
    if expected_account_id and account_id != expected_account_id:
        raise HTTPException(
            status_code=403,
            detail={"code": "REFERENCE_MISMATCH", "message": "Payment reference belongs to another account"},
        )

    rejected = _rejected(settings, account_id, verification.reference, verification.amount_minor_units)
    if rejected:
        return rejected

    result = processor.apply(
        account_id,
        verification.reference,
        verification.amount_minor_units,
        verification.paid_at,
        source="verify",
    )
    if result.outcome is ApplyOutcome.ACCOUNT_NOT_FOUND:
        return _ignored("account_not_found", reference=reference)
    return _result_payload(result)


# -----------------------------
# Return from checkout (public: the browser lands here)
# -----------------------------
@router.get("/callback")
def billing_callback(
    reference: str = Query(..., min_length=1),
    cancelled: int = 0,
    settings: Settings = Depends(get_settings),
    gateway: PaymentGateway = Depends(get_gateway),
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    _require_billing_enabled(settings)
    if cancelled:
        return {"ok": False, "reference": reference, "status": "cancelled"}
    return _confirm_reference(settings, reference, gateway, processor)


@router.get("/verify/{reference}")
def billing_verify(
    reference: str,
    account: Account = Depends(auth.get_current_account),
    settings: Settings = Depends(get_settings),
    gateway: PaymentGateway = Depends(get_gateway),
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    _require_billing_enabled(settings)
    return _confirm_reference(settings, reference, gateway, processor, expected_account_id=account.id)


# -----------------------------
# Webhooks (public)
# -----------------------------
@router.post("/paystack/webhook")
async def paystack_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    _require_billing_enabled(settings)
    if not settings.paystack_secret_key:
        raise HTTPException(status_code=500, detail="Missing PAYSTACK_SECRET_KEY")

    payload = await request.body()
    sig = request.headers.get("x-paystack-signature")
    if not sig:
        raise HTTPException(status_code=400, detail="Missing Paystack signature header")
    if not verify_paystack_signature(settings.paystack_secret_key, payload, sig):
        logger.warning("invalid paystack webhook signature")
        raise HTTPException(status_code=400, detail="Invalid Paystack webhook signature")

    event = WebhookEvent.from_payload(payload)
    if event.is_payment_success and event.account_id:
        rejected = _rejected(settings, event.account_id, event.reference, event.amount_minor_units)
        if rejected:
            return rejected

    result = await run_in_threadpool(processor.apply_event, event)
    if result is None:
        return _ignored("event_not_applied", type=event.event)
    if result.outcome is ApplyOutcome.ACCOUNT_NOT_FOUND:
        return _ignored("account_not_found", reference=event.reference)
    return _result_payload(result)


@router.post("/stripe/webhook")
async def stripe_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    _require_billing_enabled(settings)
    if not settings.stripe_webhook_secret:
        raise HTTPException(status_code=500, detail="Missing STRIPE_WEBHOOK_SECRET")

    payload = await request.body()
    sig = request.headers.get("stripe-signature")
    if not sig:
        raise HTTPException(status_code=400, detail="Missing Stripe signature header")

    try:
        event = stripe.Webhook.construct_event(payload=payload, sig_header=sig, secret=settings.stripe_webhook_secret)
    except (ValueError, stripe.SignatureVerificationError):
        raise HTTPException(status_code=400, detail="Invalid Stripe webhook signature")

    etype = (event.get("type") or "").strip()
    obj = event.get("data", {}).get("object", {}) or {}

    if etype != "checkout.session.completed":
        return _ignored("event_not_applied", type=etype)
    if (obj.get("payment_status") or "").lower() != "paid":
        return _ignored("not_paid", type=etype)

    md = obj.get("metadata") or {}
    reference = (obj.get("client_reference_id") or md.get("reference") or "").strip()
    account_id = (md.get("user_id") or "").strip()
    if not reference or not account_id:
        raise ValidationError("Missing user information in payment metadata", code="INVALID_PAYLOAD")

    amount = int(obj.get("amount_total") or 0)
    rejected = _rejected(settings, account_id, reference, amount)
    if rejected:
        return rejected

    result = await run_in_threadpool(
        processor.apply,
        account_id,
        reference,
        amount,
        parse_paid_at(event.get("created")),
    )
    if result.outcome is ApplyOutcome.ACCOUNT_NOT_FOUND:
        return _ignored("account_not_found", reference=reference)
    return _result_payload(result)
