# examcoach/payment_gateway.py
from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
import stripe

from .config import PROVIDER_PAYSTACK, PROVIDER_STRIPE, Settings
from .errors import PaymentInitiationFailed, PaymentVerificationFailed
from .logger import logger
from .trial_clock import as_utc

REFERENCE_PREFIX = "exam_coach"
SUBSCRIPTION_TYPE = "weekly"
SUBSCRIPTION_DAYS = 7
PRODUCT_CODE = "exam_coach_premium"


@dataclass(frozen=True)
class PaymentIntent:
    reference: str
    amount_minor_units: int
    checkout_url: str
    access_code: str = ""
    currency: str = "NGN"


@dataclass(frozen=True)
class PaymentVerification:
    reference: str
    status: str
    amount_minor_units: int
    paid_at: Optional[datetime] = None
    gateway_response: str = ""
    metadata: dict = field(default_factory=dict)

    @property
    def is_successful(self) -> bool:
        return self.status == "success"

    @property
    def account_id(self) -> Optional[str]:
        return (self.metadata or {}).get("user_id")


def make_reference(account_id: str, now_ms: Optional[int] = None) -> str:
    """
    exam_coach_<first 8 of account id>_<unix millis>_<random hex>

    The account prefix keeps references traceable, the random tail keeps
    them unguessable.
    """
    prefix = (account_id or "user")[:8]
    ms = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{REFERENCE_PREFIX}_{prefix}_{ms}_{secrets.token_hex(8)}"


def account_prefix_from_reference(reference: str) -> Optional[str]:
    """Only the 8-char prefix is recoverable; it is for tracing, not lookup."""
    parts = (reference or "").split("_")
    if len(parts) != 5 or "_".join(parts[:2]) != REFERENCE_PREFIX:
        return None
    return parts[2] or None


def subscription_metadata(account_id: str, email: str, display_name: Optional[str] = None) -> dict:
    return {
        "user_id": account_id,
        "user_email": email,
        "user_name": display_name or "",
        "subscription_type": SUBSCRIPTION_TYPE,
        "subscription_duration_days": SUBSCRIPTION_DAYS,
        "product": PRODUCT_CODE,
    }


def parse_paid_at(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    try:
        return as_utc(datetime.fromisoformat(str(value).strip()))
    except ValueError:
        return None


class PaymentGateway:
    """
    Starts checkout with an external processor.

    The price always comes from settings, never from the caller. Any
    failure surfaces as PaymentInitiationFailed and nothing on the account
    changes: initiation alone never grants access.
    """

    provider = ""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.amount_minor_units = settings.subscription_price_minor
        self.currency = settings.subscription_currency

    def initiate(self, account_id: str, email: Optional[str], display_name: Optional[str] = None) -> PaymentIntent:
        account_id = (account_id or "").strip()
        email = (email or "").strip()
        if not account_id:
            raise PaymentInitiationFailed("malformed account data (missing account id)")
        if not email or "@" not in email:
            raise PaymentInitiationFailed("malformed account data (a valid email is required for checkout)")

        reference = make_reference(account_id)
        metadata = subscription_metadata(account_id, email, display_name)

        logger.info(
            "initializing payment",
            provider=self.provider,
            account_id=account_id,
            reference=reference,
            amount=self.amount_minor_units,
        )
        intent = self._create_checkout(reference, email, metadata)
        logger.info("payment initialized", provider=self.provider, reference=intent.reference)
        return intent

    def verify(self, reference: str) -> PaymentVerification:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def _create_checkout(self, reference: str, email: str, metadata: dict) -> PaymentIntent:
        raise NotImplementedError


class PaystackGateway(PaymentGateway):
    provider = PROVIDER_PAYSTACK

    def __init__(self, settings: Settings, client: Optional[httpx.Client] = None):
        super().__init__(settings)
        self._owns_client = client is None
        self.client = client or httpx.Client(
            base_url=settings.paystack_base_url,
            timeout=settings.payment_http_timeout,
        )

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.settings.paystack_secret_key}",
            "Content-Type": "application/json",
        }

    def _create_checkout(self, reference: str, email: str, metadata: dict) -> PaymentIntent:
        if not self.settings.paystack_secret_key:
            raise PaymentInitiationFailed("invalid merchant credentials (PAYSTACK_SECRET_KEY is not set)")

        body = {
            "email": email,
            "amount": self.amount_minor_units,
            "reference": reference,
            "callback_url": self.settings.payment_callback_url,
            "metadata": metadata,
            "currency": self.currency,
        }
        try:
            resp = self.client.post("/transaction/initialize", json=body, headers=self._headers())
        except httpx.HTTPError as e:
            logger.error("paystack unreachable", reference=reference, error=str(e))
            raise PaymentInitiationFailed(f"gateway unreachable ({e.__class__.__name__})") from e

        data = _json_or_empty(resp)
        if resp.status_code == 401:
            raise PaymentInitiationFailed("invalid merchant credentials", status_code=401)
        if resp.status_code != 200 or data.get("status") is not True:
            message = data.get("message") or f"HTTP {resp.status_code}"
            logger.error("paystack rejected initialization", reference=reference, status=resp.status_code)
            raise PaymentInitiationFailed(message, status_code=resp.status_code)

        d = data.get("data") or {}
        url = (d.get("authorization_url") or "").strip()
        if not url:
            raise PaymentInitiationFailed("gateway returned no authorization_url")

        return PaymentIntent(
            reference=d.get("reference") or reference,
            amount_minor_units=self.amount_minor_units,
            checkout_url=url,
            access_code=d.get("access_code") or "",
            currency=self.currency,
        )

    def verify(self, reference: str) -> PaymentVerification:
        if not reference:
            raise PaymentVerificationFailed("Missing payment reference")
        try:
            resp = self.client.get(f"/transaction/verify/{reference}", headers=self._headers())
        except httpx.HTTPError as e:
            raise PaymentVerificationFailed(f"Payment verification failed: gateway unreachable ({e.__class__.__name__})") from e

        data = _json_or_empty(resp)
        if resp.status_code != 200 or data.get("status") is not True:
            raise PaymentVerificationFailed(
                f"Payment verification failed: {data.get('message') or f'HTTP {resp.status_code}'}"
            )

        d = data.get("data") or {}
        return PaymentVerification(
            reference=d.get("reference") or reference,
            status=(d.get("status") or "").lower(),
            amount_minor_units=int(d.get("amount") or 0),
            paid_at=parse_paid_at(d.get("paid_at") or d.get("paidAt")),
            gateway_response=d.get("gateway_response") or "",
            metadata=d.get("metadata") if isinstance(d.get("metadata"), dict) else {},
        )

    def close(self) -> None:
        if self._owns_client:
            self.client.close()


class StripeCheckoutGateway(PaymentGateway):
    """
    One-off Checkout Session for a week of access. Stripe confirms the
    payment by webhook; there is no pull verification by reference.
    """

    provider = PROVIDER_STRIPE

    def _create_checkout(self, reference: str, email: str, metadata: dict) -> PaymentIntent:
        if not self.settings.stripe_secret_key:
            raise PaymentInitiationFailed("invalid merchant credentials (STRIPE_SECRET_KEY is not set)")

        md = {k: str(v) for k, v in metadata.items()}
        md["reference"] = reference
        base = self.settings.app_base_url
        try:
            session = stripe.checkout.Session.create(
                api_key=self.settings.stripe_secret_key,
                mode="payment",
                customer_email=email,
                client_reference_id=reference,
                line_items=[
                    {
                        "price_data": {
                            "currency": self.currency.lower(),
                            "unit_amount": self.amount_minor_units,
                            "product_data": {"name": "Exam Coach Premium (weekly)"},
                        },
                        "quantity": 1,
                    }
                ],
                success_url=f"{base}/billing/callback?reference={reference}",
                cancel_url=f"{base}/billing/callback?reference={reference}&cancelled=1",
                metadata=md,
                payment_intent_data={"metadata": md},
            )
        except stripe.AuthenticationError as e:
            raise PaymentInitiationFailed("invalid merchant credentials", status_code=401) from e
        except stripe.APIConnectionError as e:
            raise PaymentInitiationFailed("gateway unreachable (APIConnectionError)") from e
        except stripe.StripeError as e:
            raise PaymentInitiationFailed(getattr(e, "user_message", None) or str(e)) from e

        url = session["url"] or ""
        if not url:
            raise PaymentInitiationFailed("gateway returned no checkout url")

        return PaymentIntent(
            reference=reference,
            amount_minor_units=self.amount_minor_units,
            checkout_url=url,
            access_code=session["id"],
            currency=self.currency,
        )

    def verify(self, reference: str) -> PaymentVerification:
        raise PaymentVerificationFailed("Stripe payments are confirmed by webhook only")


def _json_or_empty(resp: httpx.Response) -> dict:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def build_gateway(settings: Settings, client: Optional[httpx.Client] = None) -> PaymentGateway:
    if settings.payment_provider == PROVIDER_STRIPE:
        return StripeCheckoutGateway(settings)
    return PaystackGateway(settings, client=client)
