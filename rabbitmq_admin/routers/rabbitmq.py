"""Proxied RabbitMQ Management API calls for one cluster.

Every route authorizes the caller against ``{cluster_id}`` before anything is
sent upstream.  Write routes go through the audited resource operations.

The virtual host is a ``vhost`` query parameter (default ``/``): an encoded
``%2F`` path segment is decoded before routing and cannot be matched.

Routes (prefix /api/rabbitmq/{cluster_id})
──────
  GET    /overview | /nodes | /vhosts
  GET    /resources/{kind}                             → paged list (connections, channels, exchanges, queues)
  GET    /resources/exchanges/{name}[/bindings]
  GET    /resources/queues/{name}[/bindings]
  POST   /resources/queues/{name}/get                  → fetch messages (not audited)
  PUT    /resources/exchanges                          → CREATE_EXCHANGE
  DELETE /resources/exchanges/{name}                   → DELETE_EXCHANGE
  PUT    /resources/queues                             → CREATE_QUEUE
  DELETE /resources/queues/{name}                      → DELETE_QUEUE
  DELETE /resources/queues/{name}/contents             → PURGE_QUEUE
  POST   /resources/bindings/e/{source}/q/{queue}      → CREATE_BINDING_QUEUE
  POST   /resources/bindings/e/{source}/e/{dest}       → CREATE_BINDING_EXCHANGE
  DELETE /resources/bindings/e/{source}/{q|e}/{dest}/{props}  → DELETE_BINDING
  POST   /resources/exchanges/{exchange}/publish       → PUBLISH_MESSAGE_EXCHANGE
  POST   /resources/queues/{queue}/publish             → PUBLISH_MESSAGE_QUEUE
  POST   /resources/shovels                            → MOVE_MESSAGES_QUEUE
  GET    /proxy/{path}                                 → read-only passthrough of GET /api/{path}
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, Response

from rabbitmq_admin.deps import get_audit_context, get_principal, get_resources
from rabbitmq_admin.models import (
    BindingDestination,
    CreateBindingRequest,
    CreateExchangeRequest,
    CreateQueueRequest,
    CreateShovelRequest,
    GetMessagesRequest,
    PagedResponse,
    Principal,
    PublishMessageRequest,
    PublishResponse,
)
from rabbitmq_admin.services.audit import AuditContext
from rabbitmq_admin.services.resources import ResourceOperations

router = APIRouter(prefix="/api/rabbitmq/{cluster_id}", tags=["rabbitmq"])

VHOST = Query("/", description="Virtual host, '/' for the default vhost")


class ResourceKind(StrEnum):
    CONNECTIONS = "connections"
    CHANNELS = "channels"
    EXCHANGES = "exchanges"
    QUEUES = "queues"


# ── Cluster-level reads ──────────────────────────────────────────────────────


@router.get("/overview")
async def overview(
    cluster_id: str,
    principal: Principal = Depends(get_principal),
    resources: ResourceOperations = Depends(get_resources),
) -> Any:
    return await resources.overview(principal, cluster_id)


@router.get("/nodes")
async def nodes(
    cluster_id: str,
    principal: Principal = Depends(get_principal),
    resources: ResourceOperations = Depends(get_resources),
) -> Any:
    return await resources.nodes(principal, cluster_id)


@router.get("/vhosts")
async def vhosts(
    cluster_id: str,
    principal: Principal = Depends(get_principal),
    resources: ResourceOperations = Depends(get_resources),
) -> Any:
    return await resources.vhosts(principal, cluster_id)


# ── Resource reads ───────────────────────────────────────────────────────────


@router.get("/resources/{kind}", response_model=PagedResponse)
async def list_resources(
    cluster_id: str,
    kind: ResourceKind,
    vhost: str | None = Query(None, description="Restrict to one vhost"),
    name: str | None = None,
    use_regex: bool = False,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    principal: Principal = Depends(get_principal),
    resources: ResourceOperations = Depends(get_resources),
) -> PagedResponse:
    return await resources.list_resources(
        principal,
        cluster_id,
        kind.value,
        vhost=vhost,
        name=name,
        use_regex=use_regex,
        page=page,
        page_size=page_size,
    )


@router.get("/resources/exchanges/{name}")
async def get_exchange(
    cluster_id: str,
    name: str,
    vhost: str = VHOST,
    principal: Principal = Depends(get_principal),
    resources: ResourceOperations = Depends(get_resources),
) -> Any:
    return await resources.get_exchange(principal, cluster_id, vhost, name)


@router.get("/resources/exchanges/{name}/bindings")
async def exchange_bindings(
    cluster_id: str,
    name: str,
    vhost: str = VHOST,
    principal: Principal = Depends(get_principal),
    resources: ResourceOperations = Depends(get_resources),
) -> Any:
    return await resources.exchange_bindings(principal, cluster_id, vhost, name)


@router.get("/resources/queues/{name}")
async def get_queue(
    cluster_id: str,
    name: str,
    vhost: str = VHOST,
    principal: Principal = Depends(get_principal),
    resources: ResourceOperations = Depends(get_resources),
) -> Any:
    return await resources.get_queue(principal, cluster_id, vhost, name)


@router.get("/resources/queues/{name}/bindings")
async def queue_bindings(
    cluster_id: str,
    name: str,
    vhost: str = VHOST,
    principal: Principal = Depends(get_principal),
    resources: ResourceOperations = Depends(get_resources),
) -> Any:
    return await resources.queue_bindings(principal, cluster_id, vhost, name)


@router.post("/resources/queues/{name}/get")
async def get_messages(
    cluster_id: str,
    name: str,
    body: GetMessagesRequest,
    vhost: str = VHOST,
    principal: Principal = Depends(get_principal),
    resources: ResourceOperations = Depends(get_resources),
) -> Any:
    return await resources.get_messages(principal, cluster_id, vhost, name, body)


# ── Audited writes ───────────────────────────────────────────────────────────


@router.put("/resources/exchanges", status_code=204)
async def create_exchange(
    body: CreateExchangeRequest,
    ctx: AuditContext = Depends(get_audit_context),
    resources: ResourceOperations = Depends(get_resources),
) -> None:
    await resources.create_exchange(ctx, request=body)


@router.delete("/resources/exchanges/{name}", status_code=204)
async def delete_exchange(
    name: str,
    vhost: str = VHOST,
    if_unused: bool = False,
    ctx: AuditContext = Depends(get_audit_context),
    resources: ResourceOperations = Depends(get_resources),
) -> None:
    await resources.delete_exchange(ctx, vhost=vhost, name=name, if_unused=if_unused)


@router.put("/resources/queues", status_code=204)
async def create_queue(
    body: CreateQueueRequest,
    ctx: AuditContext = Depends(get_audit_context),
    resources: ResourceOperations = Depends(get_resources),
) -> None:
    await resources.create_queue(ctx, request=body)


@router.delete("/resources/queues/{name}", status_code=204)
async def delete_queue(
    name: str,
    vhost: str = VHOST,
    if_empty: bool = False,
    if_unused: bool = False,
    ctx: AuditContext = Depends(get_audit_context),
    resources: ResourceOperations = Depends(get_resources),
) -> None:
    await resources.delete_queue(ctx, vhost=vhost, name=name, if_empty=if_empty, if_unused=if_unused)


@router.delete("/resources/queues/{name}/contents", status_code=204)
async def purge_queue(
    name: str,
    vhost: str = VHOST,
    ctx: AuditContext = Depends(get_audit_context),
    resources: ResourceOperations = Depends(get_resources),
) -> None:
    await resources.purge_queue(ctx, vhost=vhost, name=name)


@router.post("/resources/bindings/e/{source}/q/{queue}", status_code=204)
async def bind_queue(
    source: str,
    queue: str,
    body: CreateBindingRequest,
    vhost: str = VHOST,
    ctx: AuditContext = Depends(get_audit_context),
    resources: ResourceOperations = Depends(get_resources),
) -> None:
    await resources.bind_queue(ctx, vhost=vhost, source=source, queue=queue, request=body)


@router.post("/resources/bindings/e/{source}/e/{destination}", status_code=204)
async def bind_exchange(
    source: str,
    destination: str,
    body: CreateBindingRequest,
    vhost: str = VHOST,
    ctx: AuditContext = Depends(get_audit_context),
    resources: ResourceOperations = Depends(get_resources),
) -> None:
    await resources.bind_exchange(ctx, vhost=vhost, source=source, destination=destination, request=body)


@router.delete("/resources/bindings/e/{source}/{destination_type}/{destination}/{properties_key}", status_code=204)
async def delete_binding(
    source: str,
    destination_type: BindingDestination,
    destination: str,
    properties_key: str,
    vhost: str = VHOST,
    ctx: AuditContext = Depends(get_audit_context),
    resources: ResourceOperations = Depends(get_resources),
) -> None:
    await resources.delete_binding(
        ctx,
        vhost=vhost,
        source=source,
        destination_type=destination_type,
        destination=destination,
        properties_key=properties_key,
    )


@router.post("/resources/exchanges/{exchange}/publish", response_model=PublishResponse)
async def publish_to_exchange(
    exchange: str,
    body: PublishMessageRequest,
    vhost: str = VHOST,
    ctx: AuditContext = Depends(get_audit_context),
    resources: ResourceOperations = Depends(get_resources),
) -> PublishResponse:
    return await resources.publish_to_exchange(ctx, vhost=vhost, exchange=exchange, request=body)


@router.post("/resources/queues/{queue}/publish", response_model=PublishResponse)
async def publish_to_queue(
    queue: str,
    body: PublishMessageRequest,
    vhost: str = VHOST,
    ctx: AuditContext = Depends(get_audit_context),
    resources: ResourceOperations = Depends(get_resources),
) -> PublishResponse:
    return await resources.publish_to_queue(ctx, vhost=vhost, queue=queue, request=body)


@router.post("/resources/shovels", status_code=204)
async def move_messages(
    body: CreateShovelRequest,
    ctx: AuditContext = Depends(get_audit_context),
    resources: ResourceOperations = Depends(get_resources),
) -> None:
    await resources.move_messages(ctx, request=body)


# ── Passthrough ──────────────────────────────────────────────────────────────


@router.get("/proxy/{path:path}")
async def proxy_get(
    cluster_id: str,
    path: str,
    request: Request,
    principal: Principal = Depends(get_principal),
    resources: ResourceOperations = Depends(get_resources),
) -> Response:
    upstream = await resources.passthrough(principal, cluster_id, path, dict(request.query_params))
    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        media_type=upstream.content_type,
    )
