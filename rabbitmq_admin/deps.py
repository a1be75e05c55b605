"""FastAPI dependency providers.

Long-lived singletons (stores, client pool, dispatcher, audit recorder) are
built in the application lifespan and stored on ``app.state``; the providers
below hand them to routes via ``Depends``.  Tests override these functions
via ``app.dependency_overrides``.
"""

from functools import lru_cache

from fastapi import Depends, HTTPException, Request

from rabbitmq_admin.clients.audit_store import AuditStore
from rabbitmq_admin.clients.credential_store import CredentialStore
from rabbitmq_admin.clients.pool import ClientPool
from rabbitmq_admin.config import Settings
from rabbitmq_admin.models import Principal
from rabbitmq_admin.services.audit import AuditContext, AuditRecorder
from rabbitmq_admin.services.cluster_health import ClusterHealthMonitor
from rabbitmq_admin.services.dispatcher import ProxyDispatcher
from rabbitmq_admin.services.resources import ResourceOperations


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def get_app_settings(request: Request) -> Settings:
    """Settings the running application was built with."""
    return request.app.state.settings


def get_credential_store(request: Request) -> CredentialStore:
    return request.app.state.credential_store


def get_audit_store(request: Request) -> AuditStore:
    return request.app.state.audit_store


def get_client_pool(request: Request) -> ClientPool:
    return request.app.state.client_pool


def get_dispatcher(request: Request) -> ProxyDispatcher:
    return request.app.state.dispatcher


def get_audit_recorder(request: Request) -> AuditRecorder:
    return request.app.state.audit_recorder


def get_resources(request: Request) -> ResourceOperations:
    return request.app.state.resources


def get_health_monitor(request: Request) -> ClusterHealthMonitor:
    return request.app.state.health_monitor


# ── Identity ──────────────────────────────────────────────────────────────────


def get_current_user_id(request: Request) -> str | None:
    """Return the authenticated user ID from the trusted header or the session."""
    settings = get_app_settings(request)
    if settings.trusted_user_header:
        header = request.headers.get(settings.trusted_user_header)
        if header:
            return header
    user = request.session.get("user")
    if not user:
        return None
    return user.get("id")


async def get_principal(
    user_id: str | None = Depends(get_current_user_id),
    store: CredentialStore = Depends(get_credential_store),
) -> Principal:
    """Resolve the principal, re-reading role and assignments on every request."""
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = await store.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    return Principal(
        id=user.id,
        username=user.username,
        role=user.role,
        assigned_cluster_ids=await store.assigned_cluster_ids(user.id),
    )


def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_admin:
        raise HTTPException(status_code=403, detail="Administrator role required")
    return principal


def get_audit_context(
    cluster_id: str,
    request: Request,
    principal: Principal = Depends(get_principal),
) -> AuditContext:
    """Per-request audit facts for routes with a ``{cluster_id}`` path parameter."""
    client_ip = request.client.host if request.client else None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and get_app_settings(request).trust_forwarded_for:
        client_ip = forwarded.split(",")[0].strip()
    return AuditContext(
        principal=principal,
        cluster_id=cluster_id,
        client_ip=client_ip,
        user_agent=request.headers.get("user-agent"),
    )
