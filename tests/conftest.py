"""
Shared fixtures: in-memory database, a controllable clock, a console
OTP verifier and a Paystack API faked with httpx.MockTransport.
"""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi.testclient import TestClient

from examcoach.config import Settings
from examcoach.credential_vault import CredentialVault
from examcoach.database import Base, make_engine, make_session_factory
from examcoach.locks import IdentityLocks
from examcoach.main import create_app
from examcoach.otp import ConsoleOtpVerifier
from examcoach.payment_gateway import PaystackGateway
from examcoach.registration import AccountService
from examcoach.store import AccountStore
from examcoach.webhooks import WebhookProcessor

PAYSTACK_SECRET = "sk_test_examcoach"


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> datetime:
        self.now = now
        return now


class FakePaystack:
    """Just enough of the Paystack transaction API for the gateway."""

    def __init__(self):
        self.initialized: list[dict] = []
        self.transactions: dict[str, dict] = {}
        self.fail_with: httpx.Response | None = None
        self.unreachable = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if self.fail_with is not None:
            return self.fail_with

        if request.headers.get("authorization") != f"Bearer {PAYSTACK_SECRET}":
            return httpx.Response(401, json={"status": False, "message": "Invalid key"})

        if request.method == "POST" and request.url.path == "/transaction/initialize":
            body = json.loads(request.content)
            self.initialized.append(body)
            ref = body["reference"]
            self.transactions[ref] = {
                "reference": ref,
                "amount": body["amount"],
                "status": "abandoned",
                "metadata": body["metadata"],
                "paid_at": None,
                "gateway_response": "",
            }
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "message": "Authorization URL created",
                    "data": {
                        "authorization_url": f"https://checkout.paystack.com/{ref[-6:]}",
                        "access_code": f"ac_{ref[-6:]}",
                        "reference": ref,
                    },
                },
            )

        if request.method == "GET" and request.url.path.startswith("/transaction/verify/"):
            ref = request.url.path.rsplit("/", 1)[-1]
            tx = self.transactions.get(ref)
            if tx is None:
                return httpx.Response(400, json={"status": False, "message": "Transaction reference not found"})
            return httpx.Response(200, json={"status": True, "message": "Verification successful", "data": tx})

        return httpx.Response(404, json={"status": False, "message": "Not found"})

    def mark_paid(self, reference: str, paid_at: str) -> None:
        tx = self.transactions[reference]
        tx["status"] = "success"
        tx["paid_at"] = paid_at
        tx["gateway_response"] = "Successful"


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 1, 28, 10, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        secret_key="test-secret",
        paystack_secret_key=PAYSTACK_SECRET,
        paystack_base_url="https://api.paystack.test",
        stripe_webhook_secret="whsec_test",
        stripe_secret_key="sk_test_stripe",
        credential_rounds=1000,
        log_level="WARNING",
    )


@pytest.fixture
def paystack():
    return FakePaystack()


@pytest.fixture
def gateway(settings, paystack):
    client = httpx.Client(
        base_url=settings.paystack_base_url,
        transport=httpx.MockTransport(paystack.handler),
    )
    gw = PaystackGateway(settings, client=client)
    yield gw
    client.close()


@pytest.fixture
def otp(clock):
    return ConsoleOtpVerifier(clock=clock)


@pytest.fixture
def db():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    session = make_session_factory(engine)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def session_factory(tmp_path):
    """File-backed database so each session gets its own connection."""
    engine = make_engine(f"sqlite:///{tmp_path / 'accounts.db'}")
    Base.metadata.create_all(bind=engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(db):
    return AccountStore(db)


@pytest.fixture
def locks():
    return IdentityLocks()


@pytest.fixture
def vault():
    return CredentialVault(rounds=1000)


@pytest.fixture
def service(store, vault, otp, locks, clock):
    return AccountService(store, vault, otp, locks, clock=clock)


@pytest.fixture
def processor(store, locks, clock):
    return WebhookProcessor(store, locks, clock=clock)


@pytest.fixture
def app(settings, gateway, otp, clock):
    return create_app(settings, gateway=gateway, otp=otp, clock=clock)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def register_and_verify(client, otp, phone="+2348123456789", email="ada@example.com", password=None):
    """Register through the API and verify the phone. Returns (token, account_json)."""
    body = {"phone_number": phone, "email": email, "full_name": "Ada Obi"}
    if password is not None:
        body["password"] = password
    r = client.post("/accounts/register", json=body)
    assert r.status_code == 201, r.text
    r = client.post("/accounts/verify-otp", json={"phone_number": phone, "code": otp.last_code})
    assert r.status_code == 200, r.text
    data = r.json()
    return data["access_token"], data["account"]


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
