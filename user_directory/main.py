"""FastAPI application wiring for the user directory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.errors import install_error_handlers
from .api.routes import auth_router, users_router
from .config import Settings, get_settings
from .domain.authorization import RoleAuthorizer
from .domain.service import UserLifecycleService
from .domain.sessions import SessionIssuer
from .domain.validation import InputValidator
from .logging_config import setup_logging
from .notifications import SmtpNotifier
from .repository import AccountRepository
from .security.denylist import PasswordDenylist, PwnedPasswordsDenylist, StaticDenylist
from .security.passwords import BcryptHasher
from .security.rate_gate import build_rate_gate

settings = get_settings()
logger = logging.getLogger(__name__)


def _build_denylist(settings: Settings) -> PasswordDenylist:
    if settings.pwned_passwords_enabled:
        return PwnedPasswordsDenylist(
            settings.pwned_passwords_url, timeout=settings.pwned_passwords_timeout_seconds
        )
    return StaticDenylist()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, services, rate gate) for the app lifecycle."""
    setup_logging(settings)
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    repository = AccountRepository(pool)
    hasher = BcryptHasher(settings.bcrypt_rounds)
    denylist = _build_denylist(settings)
    validator = InputValidator(repository, denylist)

    app.state.pool = pool
    app.state.user_service = UserLifecycleService(
        repository,
        authorizer=RoleAuthorizer(repository),
        validator=validator,
        hasher=hasher,
        notifier=SmtpNotifier.from_settings(settings),
        notification_timeout=settings.notification_timeout_seconds,
    )
    app.state.session_issuer = SessionIssuer(
        repository,
        hasher=hasher,
        validator=validator,
        ttl_seconds=settings.session_ttl_seconds,
    )
    app.state.rate_gate = build_rate_gate(settings)
    logger.info("user directory started", extra={"version": settings.version})
    try:
        yield
    finally:
        if isinstance(denylist, PwnedPasswordsDenylist):
            denylist.close()
        pool.close()
        pool.wait_close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)

install_error_handlers(app)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(auth_router)
app.include_router(users_router)


def run() -> None:
    """Serve the application with uvicorn using the configured host and port."""
    import uvicorn

    uvicorn.run(
        app,
        host=settings.http_host,
        port=settings.http_port,
        proxy_headers=True,
        forwarded_allow_ips=settings.forwarded_allow_ips,
        log_config=None,
    )
