"""Cluster connection management.

Routes
──────
  GET    /api/clusters/my                       → clusters assigned to the caller
  GET    /api/clusters                          → all connections (admin)
  POST   /api/clusters                          → create a connection (admin)
  POST   /api/clusters/test                     → test unsaved settings (admin)
  GET    /api/clusters/exists/{name}            → name taken? (admin)
  GET    /api/clusters/{id}                     → one connection (admin)
  PUT    /api/clusters/{id}                     → update (admin)
  DELETE /api/clusters/{id}                     → delete (admin)
  POST   /api/clusters/{id}/test                → test stored settings (admin)
  GET    /api/clusters/{id}/users               → assigned users (admin)
  GET    /api/clusters/{id}/users/unassigned    → users not assigned (admin)
  PUT    /api/clusters/{id}/users               → replace assignments (admin)
  POST   /api/clusters/{id}/users/{user_id}     → assign one user (admin)
  DELETE /api/clusters/{id}/users/{user_id}     → unassign one user (admin)

A pooled client is evicted whenever an update changes the endpoint, the
credential or the active flag, and when the connection is deleted.  The
password is never returned.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from rabbitmq_admin.clients.credential_store import CredentialStore
from rabbitmq_admin.clients.pool import ClientPool
from rabbitmq_admin.deps import get_client_pool, get_credential_store, get_principal, require_admin
from rabbitmq_admin.errors import NotFoundError
from rabbitmq_admin.models import (
    AssignUsersRequest,
    ClusterConnection,
    ClusterConnectionResponse,
    ConnectionTestRequest,
    ConnectionTestResponse,
    CreateClusterConnectionRequest,
    Principal,
    UpdateClusterConnectionRequest,
    User,
    UserResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/clusters", tags=["clusters"])


async def _get(store: CredentialStore, cluster_id: str) -> ClusterConnection:
    cluster = await store.get_cluster(cluster_id)
    if cluster is None:
        raise NotFoundError(f"Cluster connection not found with ID: {cluster_id}")
    return cluster


# ── Any principal ────────────────────────────────────────────────────────────


@router.get("/my", response_model=list[ClusterConnectionResponse])
async def my_clusters(
    active_only: bool = True,
    principal: Principal = Depends(get_principal),
    store: CredentialStore = Depends(get_credential_store),
) -> list[ClusterConnectionResponse]:
    """Clusters the caller may use.  Administrators see every cluster."""
    if principal.is_admin:
        clusters = await (store.list_active_clusters() if active_only else store.list_clusters())
    else:
        clusters = await store.clusters_for_user(principal.id, active_only=active_only)
    return [ClusterConnectionResponse.from_cluster(c) for c in clusters]


# ── Administration ───────────────────────────────────────────────────────────


@router.get("", response_model=list[ClusterConnectionResponse])
async def list_clusters(
    active_only: bool = False,
    _: Principal = Depends(require_admin),
    store: CredentialStore = Depends(get_credential_store),
) -> list[ClusterConnectionResponse]:
    clusters = await (store.list_active_clusters() if active_only else store.list_clusters())
    return [ClusterConnectionResponse.from_cluster(c) for c in clusters]


@router.post("", response_model=ClusterConnectionResponse, status_code=201)
async def create_cluster(
    body: CreateClusterConnectionRequest,
    admin: Principal = Depends(require_admin),
    store: CredentialStore = Depends(get_credential_store),
) -> ClusterConnectionResponse:
    cluster = await store.create_cluster(
        name=body.name,
        api_url=body.api_url,
        username=body.username,
        password=body.password,
        description=body.description,
        active=body.active,
    )
    if body.user_ids:
        await store.set_cluster_users(cluster.id, body.user_ids)
    logger.info("Cluster connection '%s' created by '%s'", cluster.name, admin.username)
    return ClusterConnectionResponse.from_cluster(cluster)


@router.post("/test", response_model=ConnectionTestResponse)
async def test_settings(
    body: ConnectionTestRequest,
    _: Principal = Depends(require_admin),
    pool: ClientPool = Depends(get_client_pool),
) -> ConnectionTestResponse:
    return await pool.test_settings(body.api_url, body.username, body.password)


@router.get("/exists/{name}")
async def name_exists(
    name: str,
    _: Principal = Depends(require_admin),
    store: CredentialStore = Depends(get_credential_store),
) -> dict[str, bool]:
    return {"exists": await store.cluster_name_exists(name)}


@router.get("/{cluster_id}", response_model=ClusterConnectionResponse)
async def get_cluster(
    cluster_id: str,
    _: Principal = Depends(require_admin),
    store: CredentialStore = Depends(get_credential_store),
) -> ClusterConnectionResponse:
    return ClusterConnectionResponse.from_cluster(await _get(store, cluster_id))


@router.put("/{cluster_id}", response_model=ClusterConnectionResponse)
async def update_cluster(
    cluster_id: str,
    body: UpdateClusterConnectionRequest,
    admin: Principal = Depends(require_admin),
    store: CredentialStore = Depends(get_credential_store),
    pool: ClientPool = Depends(get_client_pool),
) -> ClusterConnectionResponse:
    cluster, connection_changed = await store.update_cluster(
        cluster_id, **body.model_dump(exclude={"user_ids"}, exclude_none=True)
    )
    if connection_changed:
        await pool.invalidate(cluster_id)
    if body.user_ids is not None:
        await store.set_cluster_users(cluster_id, body.user_ids)
    logger.info("Cluster connection '%s' updated by '%s'", cluster.name, admin.username)
    return ClusterConnectionResponse.from_cluster(cluster)


@router.delete("/{cluster_id}", status_code=204)
async def delete_cluster(
    cluster_id: str,
    admin: Principal = Depends(require_admin),
    store: CredentialStore = Depends(get_credential_store),
    pool: ClientPool = Depends(get_client_pool),
) -> None:
    cluster = await store.delete_cluster(cluster_id)
    await pool.invalidate(cluster_id)
    logger.info("Cluster connection '%s' deleted by '%s'", cluster.name, admin.username)


@router.post("/{cluster_id}/test", response_model=ConnectionTestResponse)
async def test_cluster(
    cluster_id: str,
    _: Principal = Depends(require_admin),
    store: CredentialStore = Depends(get_credential_store),
    pool: ClientPool = Depends(get_client_pool),
) -> ConnectionTestResponse:
    return await pool.test_connection(await _get(store, cluster_id))


# ── Assignments ──────────────────────────────────────────────────────────────


async def _user_responses(store: CredentialStore, users: list[User]) -> list[UserResponse]:
    return [
        UserResponse(**u.model_dump(), assigned_cluster_ids=sorted(await store.assigned_cluster_ids(u.id)))
        for u in users
    ]


@router.get("/{cluster_id}/users", response_model=list[UserResponse])
async def cluster_users(
    cluster_id: str,
    _: Principal = Depends(require_admin),
    store: CredentialStore = Depends(get_credential_store),
) -> list[UserResponse]:
    return await _user_responses(store, await store.users_for_cluster(cluster_id))


@router.get("/{cluster_id}/users/unassigned", response_model=list[UserResponse])
async def unassigned_users(
    cluster_id: str,
    _: Principal = Depends(require_admin),
    store: CredentialStore = Depends(get_credential_store),
) -> list[UserResponse]:
    return await _user_responses(store, await store.users_not_assigned_to_cluster(cluster_id))


@router.put("/{cluster_id}/users", status_code=204)
async def set_cluster_users(
    cluster_id: str,
    body: AssignUsersRequest,
    _: Principal = Depends(require_admin),
    store: CredentialStore = Depends(get_credential_store),
) -> None:
    await store.set_cluster_users(cluster_id, body.user_ids)


@router.post("/{cluster_id}/users/{user_id}", status_code=204)
async def assign_user(
    cluster_id: str,
    user_id: str,
    _: Principal = Depends(require_admin),
    store: CredentialStore = Depends(get_credential_store),
) -> None:
    await store.assign_user(cluster_id, user_id)


@router.delete("/{cluster_id}/users/{user_id}", status_code=204)
async def unassign_user(
    cluster_id: str,
    user_id: str,
    _: Principal = Depends(require_admin),
    store: CredentialStore = Depends(get_credential_store),
) -> None:
    await store.unassign_user(cluster_id, user_id)
