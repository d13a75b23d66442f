import re
from datetime import datetime, timezone
from unittest import mock

import httpx
import pytest
import stripe

from examcoach.config import Settings
from examcoach.errors import PaymentInitiationFailed, PaymentVerificationFailed
from examcoach.payment_gateway import (
    PaystackGateway,
    StripeCheckoutGateway,
    account_prefix_from_reference,
    build_gateway,
    make_reference,
    parse_paid_at,
)

ACCOUNT_ID = "3f2b9c1e-0000-4000-8000-000000000001"


def test_reference_format():
    ref = make_reference(ACCOUNT_ID, now_ms=1738411200000)
    assert re.fullmatch(r"exam_coach_3f2b9c1e_1738411200000_[0-9a-f]{16}", ref)
    assert account_prefix_from_reference(ref) == "3f2b9c1e"
    assert account_prefix_from_reference("something_else") is None


def test_references_are_unique():
    refs = {make_reference(ACCOUNT_ID, now_ms=1) for _ in range(200)}
    assert len(refs) == 200


def test_initiate_uses_fixed_price_and_metadata(gateway, paystack, settings):
    intent = gateway.initiate(ACCOUNT_ID, "ada@example.com", "Ada Obi")

    assert intent.amount_minor_units == 60000
    assert intent.currency == "NGN"
    assert intent.checkout_url.startswith("https://checkout.paystack.com/")
    assert intent.access_code

    sent = paystack.initialized[-1]
    assert sent["amount"] == 60000
    assert sent["email"] == "ada@example.com"
    assert sent["reference"] == intent.reference
    assert sent["callback_url"] == settings.payment_callback_url
    assert sent["metadata"] == {
        "user_id": ACCOUNT_ID,
        "user_email": "ada@example.com",
        "user_name": "Ada Obi",
        "subscription_type": "weekly",
        "subscription_duration_days": 7,
        "product": "exam_coach_premium",
    }


def test_price_comes_from_settings_only(paystack):
    settings = Settings(
        database_url="sqlite://",
        paystack_secret_key="sk_test_examcoach",
        paystack_base_url="https://api.paystack.test",
        subscription_price_minor=75000,
    )
    client = httpx.Client(base_url=settings.paystack_base_url, transport=httpx.MockTransport(paystack.handler))
    intent = PaystackGateway(settings, client=client).initiate(ACCOUNT_ID, "ada@example.com")
    assert intent.amount_minor_units == 75000
    assert paystack.initialized[-1]["amount"] == 75000


@pytest.mark.parametrize("email", [None, "", "   ", "not-an-email"])
def test_malformed_account_data_is_rejected(gateway, paystack, email):
    with pytest.raises(PaymentInitiationFailed) as exc:
        gateway.initiate(ACCOUNT_ID, email)
    assert "malformed account data" in exc.value.message
    assert paystack.initialized == []


def test_missing_account_id_is_rejected(gateway):
    with pytest.raises(PaymentInitiationFailed):
        gateway.initiate("", "ada@example.com")


def test_bad_credentials(gateway, paystack):
    paystack.fail_with = httpx.Response(401, json={"status": False, "message": "Invalid key"})
    with pytest.raises(PaymentInitiationFailed) as exc:
        gateway.initiate(ACCOUNT_ID, "ada@example.com")
    assert exc.value.cause == "invalid merchant credentials"
    assert exc.value.upstream_status == 401


def test_gateway_unreachable(gateway, paystack):
    paystack.unreachable = True
    with pytest.raises(PaymentInitiationFailed) as exc:
        gateway.initiate(ACCOUNT_ID, "ada@example.com")
    assert exc.value.cause.startswith("gateway unreachable")


def test_gateway_rejection_message_is_passed_through(gateway, paystack):
    paystack.fail_with = httpx.Response(400, json={"status": False, "message": "Currency not supported"})
    with pytest.raises(PaymentInitiationFailed) as exc:
        gateway.initiate(ACCOUNT_ID, "ada@example.com")
    assert exc.value.message == "Payment initialization failed: Currency not supported"


def test_verify_successful_transaction(gateway, paystack):
    intent = gateway.initiate(ACCOUNT_ID, "ada@example.com")
    paystack.mark_paid(intent.reference, "2025-02-01T12:00:00.000Z")

    v = gateway.verify(intent.reference)
    assert v.is_successful
    assert v.amount_minor_units == 60000
    assert v.account_id == ACCOUNT_ID
    assert v.paid_at == datetime(2025, 2, 1, 12, 0, tzinfo=timezone.utc)


def test_verify_unpaid_transaction(gateway):
    intent = gateway.initiate(ACCOUNT_ID, "ada@example.com")
    v = gateway.verify(intent.reference)
    assert not v.is_successful
    assert v.status == "abandoned"


def test_verify_unknown_reference(gateway):
    with pytest.raises(PaymentVerificationFailed):
        gateway.verify("exam_coach_nobody_1_00")


def test_parse_paid_at_forms():
    when = datetime(2025, 2, 1, 12, 0, tzinfo=timezone.utc)
    assert parse_paid_at(when) == when
    assert parse_paid_at(int(when.timestamp())) == when
    assert parse_paid_at("2025-02-01T12:00:00+00:00") == when
    assert parse_paid_at("yesterday") is None
    assert parse_paid_at(None) is None


def test_build_gateway_picks_provider(settings):
    gw = build_gateway(settings)
    assert isinstance(gw, PaystackGateway)
    gw.close()
    stripe_settings = Settings(database_url="sqlite://", payment_provider="stripe", stripe_secret_key="sk")
    assert isinstance(build_gateway(stripe_settings), StripeCheckoutGateway)


# -------------------------------------------------
# Stripe Checkout
# -------------------------------------------------
@pytest.fixture
def stripe_gateway():
    return StripeCheckoutGateway(
        Settings(
            database_url="sqlite://",
            payment_provider="stripe",
            stripe_secret_key="sk_test_stripe",
            app_base_url="https://coach.example.com",
        )
    )


def test_stripe_checkout_session(stripe_gateway):
    session = {"id": "cs_test_123", "url": "https://checkout.stripe.com/c/pay/cs_test_123"}
    with mock.patch.object(stripe.checkout.Session, "create", return_value=session) as create:
        intent = stripe_gateway.initiate(ACCOUNT_ID, "ada@example.com", "Ada Obi")

    assert intent.checkout_url == session["url"]
    assert intent.access_code == "cs_test_123"
    assert intent.amount_minor_units == 60000

    kwargs = create.call_args.kwargs
    assert kwargs["mode"] == "payment"
    assert kwargs["client_reference_id"] == intent.reference
    assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 60000
    assert kwargs["line_items"][0]["price_data"]["currency"] == "ngn"
    assert kwargs["metadata"]["user_id"] == ACCOUNT_ID
    assert kwargs["metadata"]["reference"] == intent.reference
    assert kwargs["success_url"] == f"https://coach.example.com/billing/callback?reference={intent.reference}"


def test_stripe_auth_error(stripe_gateway):
    with mock.patch.object(stripe.checkout.Session, "create", side_effect=stripe.AuthenticationError("bad key")):
        with pytest.raises(PaymentInitiationFailed) as exc:
            stripe_gateway.initiate(ACCOUNT_ID, "ada@example.com")
    assert exc.value.cause == "invalid merchant credentials"


def test_stripe_connection_error(stripe_gateway):
    with mock.patch.object(stripe.checkout.Session, "create", side_effect=stripe.APIConnectionError("down")):
        with pytest.raises(PaymentInitiationFailed) as exc:
            stripe_gateway.initiate(ACCOUNT_ID, "ada@example.com")
    assert exc.value.cause.startswith("gateway unreachable")


def test_stripe_verify_is_webhook_only(stripe_gateway):
    with pytest.raises(PaymentVerificationFailed):
        stripe_gateway.verify("exam_coach_x_1_00")
