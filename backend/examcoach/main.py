# examcoach/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import FastAPI
from starlette.exceptions import HTTPException as StarletteHTTPException

from examcoach.config import Settings
from examcoach.credential_vault import CredentialVault
from examcoach.database import Base, make_engine, make_session_factory
from examcoach.errors import AccessCoreError, access_core_error_handler, http_exception_handler
from examcoach.locks import IdentityLocks
from examcoach.logger import configure_logging, logger
from examcoach.otp import OtpVerifier, build_otp_verifier
from examcoach.payment_gateway import PaymentGateway, build_gateway
from examcoach.routers import accounts, billing, content

APP_VERSION = "1.0.0"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_app(
    settings: Optional[Settings] = None,
    *,
    gateway: Optional[PaymentGateway] = None,
    otp: Optional[OtpVerifier] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    """
    Build the app with its collaborators. Anything not passed in is
    built from settings; tests pass fakes for the gateway, OTP and clock.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level, settings.env_mode)

    engine = make_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)

    gateway = gateway or build_gateway(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("examcoach starting", provider=settings.payment_provider, billing=settings.billing_enabled)
        yield
        app.state.gateway.close()
        engine.dispose()

    app = FastAPI(title="Exam Coach Access API", version=APP_VERSION, lifespan=lifespan)

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)
    app.state.locks = IdentityLocks()
    app.state.vault = CredentialVault(rounds=settings.credential_rounds)
    app.state.otp = otp or build_otp_verifier(settings.otp_mode, settings.env_mode)
    app.state.gateway = gateway
    app.state.clock = clock or _utcnow

    app.add_exception_handler(AccessCoreError, access_core_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    app.include_router(accounts.router)
    app.include_router(content.router)
    app.include_router(billing.router)

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get("/version")
    def version():
        return {"version": APP_VERSION}

    return app
