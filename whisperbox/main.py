"""FastAPI application wiring for the identity service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.guard import RouteGuardMiddleware
from .api.routes import install_error_handlers, router as api_router
from .config import Settings, get_settings
from .domain.contracts import AccountStore, EmailSender
from .domain.service import AccountService
from .mail import build_email_sender
from .repository import AccountRepository
from .security.passwords import get_hasher
from .security.throttle import Throttle, build_throttle
from .security.tokens import SessionTokenIssuer

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    repository: AccountStore | None = None,
    email_sender: EmailSender | None = None,
    throttle: Throttle | None = None,
) -> FastAPI:
    """Build the application; collaborators not supplied are created from ``settings``."""
    settings = (settings or get_settings()).validate()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialise shared resources (Postgres pool, services) for the app lifecycle."""
        pool: ConnectionPool | None = None
        store = repository
        if store is None:
            pool = ConnectionPool(settings.database_url, open=False)
            pool.open()
            store = AccountRepository(pool)
            store.ensure_schema()
        app.state.settings = settings
        app.state.throttle = throttle or build_throttle(
            backend=settings.rate_limit_backend,
            redis_url=settings.redis_url,
            max_attempts=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
        app.state.account_service = AccountService(
            store,
            hasher=get_hasher(settings.password_hasher, settings.bcrypt_rounds),
            token_issuer=SessionTokenIssuer(settings),
            email_sender=email_sender or build_email_sender(settings.resend_api_key, settings.mail_from),
            code_ttl=timedelta(seconds=settings.verify_code_ttl_seconds),
        )
        logger.info("%s %s started", settings.app_name, settings.version)
        try:
            yield
        finally:
            if pool is not None:
                pool.close()

    app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
    app.add_middleware(RouteGuardMiddleware)
    install_error_handlers(app)

    @app.get("/healthz", tags=["health"])
    def healthz() -> dict[str, str]:
        """Return a minimal readiness indicator used by orchestration systems."""
        return {"status": "ok"}

    @app.get("/metrics", include_in_schema=False)
    def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(api_router)
    return app


settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
app = create_app(settings)
