import logging
import os
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from rabbitmq_admin.clients.audit_store import AuditStore
from rabbitmq_admin.clients.credential_store import CredentialStore
from rabbitmq_admin.clients.pool import ClientPool
from rabbitmq_admin.clients.secrets import SecretCipher
from rabbitmq_admin.config import Settings
from rabbitmq_admin.deps import get_settings
from rabbitmq_admin.errors import (
    AccessDenied,
    ClusterUnavailable,
    DuplicateError,
    NotFoundError,
    ProxyError,
    ResourceNotFound,
    UpstreamRequestError,
    UpstreamUnreachable,
)
from rabbitmq_admin.routers import audit, clusters, health, monitoring, rabbitmq, users
from rabbitmq_admin.services.audit import AuditRecorder
from rabbitmq_admin.services.authz import AccessAuthorizer
from rabbitmq_admin.services.cluster_health import ClusterHealthMonitor
from rabbitmq_admin.services.dispatcher import ProxyDispatcher
from rabbitmq_admin.services.resources import ResourceOperations

logger = logging.getLogger(__name__)

# ── Error mapping ─────────────────────────────────────────────────────────────


def _proxy_status(exc: ProxyError) -> int:
    if isinstance(exc, AccessDenied):
        return 403
    if isinstance(exc, (ClusterUnavailable, ResourceNotFound)):
        return 404
    if isinstance(exc, UpstreamUnreachable):
        return 504 if exc.timed_out else 502
    if isinstance(exc, UpstreamRequestError):
        return exc.status_code
    # UpstreamAuthRejected, UpstreamServerError, UpstreamInvalidResponse: the
    # cluster failed us, not the caller.
    return 502


async def _proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
    body: dict[str, object] = {"error": exc.kind, "detail": str(exc)}
    if isinstance(exc, AccessDenied):
        body["reason"] = str(exc.reason)
    if isinstance(exc, UpstreamRequestError):
        body["upstream_body"] = exc.body
    return JSONResponse(status_code=_proxy_status(exc), content=body)


async def _not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": "NotFound", "detail": str(exc)})


async def _duplicate_handler(request: Request, exc: DuplicateError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"error": "Duplicate", "detail": str(exc)})


# ── Application factory ───────────────────────────────────────────────────────


def create_app(
    settings: Settings | None = None,
    upstream_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the application.  *upstream_transport* replaces the network in tests."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # type: ignore[no-untyped-def]
        credential_store = CredentialStore(
            settings.credential_store_path, SecretCipher(settings.secret_encryption_key)
        )
        audit_store = AuditStore(settings.audit_store_path, credential_store)
        pool = ClientPool(credential_store, settings, transport=upstream_transport)
        dispatcher = ProxyDispatcher(AccessAuthorizer(credential_store), pool)
        recorder = AuditRecorder(credential_store, audit_store, settings)

        app.state.settings = settings
        app.state.credential_store = credential_store
        app.state.audit_store = audit_store
        app.state.client_pool = pool
        app.state.dispatcher = dispatcher
        app.state.audit_recorder = recorder
        app.state.resources = ResourceOperations(dispatcher, recorder)
        app.state.health_monitor = ClusterHealthMonitor(credential_store, pool, settings)

        await credential_store.ensure_admin(settings.bootstrap_admin_username)
        logger.info("RabbitMQ admin proxy started (audit enabled: %s)", settings.audit_write_operations_enabled)
        try:
            yield
        finally:
            await recorder.drain()
            await pool.close()

    app = FastAPI(
        title="RabbitMQ Admin Proxy",
        description=(
            "Multi-cluster proxy for the RabbitMQ Management HTTP API with "
            "per-user cluster authorization and an audit trail of write operations."
        ),
        version="0.1.0",
        # root_path allows FastAPI to generate correct OpenAPI URLs when served
        # behind a reverse proxy at a sub-path.
        root_path=os.getenv("ROOT_PATH", ""),
        lifespan=lifespan,
    )

    # The signed session cookie carries the authenticated user ID.
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie=settings.session_cookie,
        max_age=settings.session_max_age,
        https_only=settings.session_https_only,
        same_site="lax",
    )

    app.add_exception_handler(ProxyError, _proxy_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(NotFoundError, _not_found_handler)  # type: ignore[arg-type]
    app.add_exception_handler(DuplicateError, _duplicate_handler)  # type: ignore[arg-type]

    app.include_router(health.router)
    app.include_router(users.router)
    app.include_router(clusters.router)
    app.include_router(monitoring.router)
    app.include_router(rabbitmq.router)
    app.include_router(audit.router)
    return app


logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()
