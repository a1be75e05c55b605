"""RabbitMQ resource operations on top of the proxy dispatcher.

Every write is declared with ``@audited_write`` and takes an ``AuditContext``
plus keyword arguments only, so the recorder can read the resource name from
the call's parameters.  Reads are authorized like writes but not audited.

Names in upstream paths are percent-encoded with ``enc`` (``/`` → ``%2F``).
"""

from __future__ import annotations

import logging
from typing import Any

from rabbitmq_admin.clients.rabbitmq import enc
from rabbitmq_admin.models import (
    AuditOperationType,
    BindingDestination,
    CreateBindingRequest,
    CreateExchangeRequest,
    CreateQueueRequest,
    CreateShovelRequest,
    GetMessagesRequest,
    PagedResponse,
    Principal,
    ProxyOperation,
    PublishMessageRequest,
    PublishResponse,
    UpstreamResponse,
)
from rabbitmq_admin.services.audit import AuditContext, AuditRecorder, audited_write
from rabbitmq_admin.services.dispatcher import ProxyDispatcher

logger = logging.getLogger(__name__)

DEFAULT_EXCHANGE = "amq.default"


def _flags(**flags: bool) -> dict[str, str]:
    return {name.replace("_", "-"): "true" for name, on in flags.items() if on}


class ResourceOperations:
    def __init__(self, dispatcher: ProxyDispatcher, audit_recorder: AuditRecorder) -> None:
        self.dispatcher = dispatcher
        self.audit_recorder = audit_recorder

    @staticmethod
    def _target(ctx: AuditContext) -> tuple[Principal, str]:
        if ctx.principal is None or ctx.cluster_id is None:
            raise ValueError("Resource operations require a principal and a cluster")
        return ctx.principal, ctx.cluster_id

    async def _dispatch(self, ctx: AuditContext, operation: ProxyOperation) -> UpstreamResponse:
        return await self.dispatcher.dispatch(*self._target(ctx), operation)

    async def _dispatch_json(self, ctx: AuditContext, operation: ProxyOperation) -> Any:
        return await self.dispatcher.dispatch_json(*self._target(ctx), operation)

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def overview(self, principal: Principal, cluster_id: str) -> Any:
        return await self.dispatcher.get_json(principal, cluster_id, "/api/overview")

    async def nodes(self, principal: Principal, cluster_id: str) -> Any:
        return await self.dispatcher.get_json(principal, cluster_id, "/api/nodes")

    async def vhosts(self, principal: Principal, cluster_id: str) -> Any:
        return await self.dispatcher.get_json(principal, cluster_id, "/api/vhosts")

    async def list_resources(
        self,
        principal: Principal,
        cluster_id: str,
        kind: str,
        *,
        vhost: str | None = None,
        name: str | None = None,
        use_regex: bool = False,
        page: int = 1,
        page_size: int = 50,
    ) -> PagedResponse:
        """List connections, channels, exchanges or queues, paged locally.

        *name* is passed to the management API as its ``name`` filter.
        """
        path = f"/api/{kind}/{enc(vhost)}" if vhost else f"/api/{kind}"
        query: dict[str, str] = {}
        if name and name.strip():
            query["name"] = name.strip()
            if use_regex:
                query["use_regex"] = "true"
        items = await self.dispatcher.get_json(principal, cluster_id, path, query)
        # With a name filter, some versions answer with a paged envelope.
        if isinstance(items, dict):
            items = items.get("items", [])
        return PagedResponse.from_items(items or [], page, page_size)

    async def get_exchange(self, principal: Principal, cluster_id: str, vhost: str, name: str) -> Any:
        return await self.dispatcher.get_json(
            principal, cluster_id, f"/api/exchanges/{enc(vhost)}/{enc(name)}", resource_name=name
        )

    async def get_queue(self, principal: Principal, cluster_id: str, vhost: str, name: str) -> Any:
        return await self.dispatcher.get_json(
            principal, cluster_id, f"/api/queues/{enc(vhost)}/{enc(name)}", resource_name=name
        )

    async def exchange_bindings(self, principal: Principal, cluster_id: str, vhost: str, name: str) -> Any:
        return await self.dispatcher.get_json(
            principal, cluster_id, f"/api/exchanges/{enc(vhost)}/{enc(name)}/bindings/source", resource_name=name
        )

    async def queue_bindings(self, principal: Principal, cluster_id: str, vhost: str, name: str) -> Any:
        return await self.dispatcher.get_json(
            principal, cluster_id, f"/api/queues/{enc(vhost)}/{enc(name)}/bindings", resource_name=name
        )

    async def get_messages(
        self, principal: Principal, cluster_id: str, vhost: str, queue: str, request: GetMessagesRequest
    ) -> Any:
        """Fetch messages from *queue*.  A POST upstream, but not audited."""
        op = ProxyOperation(
            method="POST",
            path=f"/api/queues/{enc(vhost)}/{enc(queue)}/get",
            body=request.model_dump(exclude_none=True),
            resource_name=queue,
        )
        return await self.dispatcher.dispatch_json(principal, cluster_id, op)

    async def passthrough(
        self, principal: Principal, cluster_id: str, path: str, query: dict[str, str]
    ) -> UpstreamResponse:
        """Read-only GET of any management API path below ``/api/``."""
        return await self.dispatcher.dispatch(
            principal, cluster_id, ProxyOperation(path=f"/api/{path.lstrip('/')}", query=query)
        )

    # ── Exchanges ─────────────────────────────────────────────────────────────

    @audited_write(
        AuditOperationType.CREATE_EXCHANGE,
        "exchange",
        resource=lambda p: p["request"].name,
        description="Create a new exchange",
        include_parameters=True,
    )
    async def create_exchange(self, ctx: AuditContext, *, request: CreateExchangeRequest) -> None:
        body = request.model_dump(include={"type", "durable", "auto_delete", "internal", "arguments"})
        await self._dispatch(
            ctx,
            ProxyOperation(
                method="PUT",
                path=f"/api/exchanges/{enc(request.vhost)}/{enc(request.name)}",
                body=body,
                resource_name=request.name,
            ),
        )

    @audited_write(
        AuditOperationType.DELETE_EXCHANGE,
        "exchange",
        resource=lambda p: p["name"],
        description="Delete an exchange",
        include_parameters=True,
    )
    async def delete_exchange(self, ctx: AuditContext, *, vhost: str, name: str, if_unused: bool = False) -> None:
        await self._dispatch(
            ctx,
            ProxyOperation(
                method="DELETE",
                path=f"/api/exchanges/{enc(vhost)}/{enc(name)}",
                query=_flags(if_unused=if_unused),
                resource_name=name,
            ),
        )

    # ── Queues ────────────────────────────────────────────────────────────────

    @audited_write(
        AuditOperationType.CREATE_QUEUE,
        "queue",
        resource=lambda p: p["request"].name,
        description="Create a new queue",
        include_parameters=True,
    )
    async def create_queue(self, ctx: AuditContext, *, request: CreateQueueRequest) -> None:
        body = request.model_dump(include={"durable", "auto_delete", "exclusive", "arguments", "node"}, exclude_none=True)
        await self._dispatch(
            ctx,
            ProxyOperation(
                method="PUT",
                path=f"/api/queues/{enc(request.vhost)}/{enc(request.name)}",
                body=body,
                resource_name=request.name,
            ),
        )

    @audited_write(
        AuditOperationType.DELETE_QUEUE,
        "queue",
        resource=lambda p: p["name"],
        description="Delete a queue",
        include_parameters=True,
    )
    async def delete_queue(
        self, ctx: AuditContext, *, vhost: str, name: str, if_empty: bool = False, if_unused: bool = False
    ) -> None:
        await self._dispatch(
            ctx,
            ProxyOperation(
                method="DELETE",
                path=f"/api/queues/{enc(vhost)}/{enc(name)}",
                query=_flags(if_empty=if_empty, if_unused=if_unused),
                resource_name=name,
            ),
        )

    @audited_write(
        AuditOperationType.PURGE_QUEUE,
        "queue",
        resource=lambda p: p["name"],
        description="Purge all messages from a queue",
    )
    async def purge_queue(self, ctx: AuditContext, *, vhost: str, name: str) -> None:
        await self._dispatch(
            ctx,
            ProxyOperation(
                method="DELETE", path=f"/api/queues/{enc(vhost)}/{enc(name)}/contents", resource_name=name
            ),
        )

    # ── Bindings ──────────────────────────────────────────────────────────────

    async def _bind(
        self,
        ctx: AuditContext,
        vhost: str,
        source: str,
        dest_type: BindingDestination,
        destination: str,
        request: CreateBindingRequest,
    ) -> None:
        await self._dispatch(
            ctx,
            ProxyOperation(
                method="POST",
                path=f"/api/bindings/{enc(vhost)}/e/{enc(source)}/{dest_type.value}/{enc(destination)}",
                body={"routing_key": request.routing_key, "arguments": request.arguments},
                resource_name=f"{source} -> {destination}",
            ),
        )

    @audited_write(
        AuditOperationType.CREATE_BINDING_QUEUE,
        "binding",
        resource=lambda p: f"{p['source']} -> {p['queue']}",
        description="Create a binding from exchange to queue",
        include_parameters=True,
    )
    async def bind_queue(
        self, ctx: AuditContext, *, vhost: str, source: str, queue: str, request: CreateBindingRequest
    ) -> None:
        await self._bind(ctx, vhost, source, BindingDestination.QUEUE, queue, request)

    @audited_write(
        AuditOperationType.CREATE_BINDING_EXCHANGE,
        "binding",
        resource=lambda p: f"{p['source']} -> {p['destination']}",
        description="Create a binding from exchange to exchange",
        include_parameters=True,
    )
    async def bind_exchange(
        self, ctx: AuditContext, *, vhost: str, source: str, destination: str, request: CreateBindingRequest
    ) -> None:
        await self._bind(ctx, vhost, source, BindingDestination.EXCHANGE, destination, request)

    @audited_write(
        AuditOperationType.DELETE_BINDING,
        "binding",
        resource=lambda p: f"{p['source']} -> {p['destination']}",
        description="Delete a binding",
        include_parameters=True,
    )
    async def delete_binding(
        self,
        ctx: AuditContext,
        *,
        vhost: str,
        source: str,
        destination_type: BindingDestination,
        destination: str,
        properties_key: str,
    ) -> None:
        await self._dispatch(
            ctx,
            ProxyOperation(
                method="DELETE",
                path=(
                    f"/api/bindings/{enc(vhost)}/e/{enc(source)}/{destination_type.value}/"
                    f"{enc(destination)}/{enc(properties_key)}"
                ),
                resource_name=f"{source} -> {destination}",
            ),
        )

    # ── Messages ──────────────────────────────────────────────────────────────

    async def _publish(
        self, ctx: AuditContext, vhost: str, exchange: str, request: PublishMessageRequest
    ) -> PublishResponse:
        name = exchange or DEFAULT_EXCHANGE
        body = await self._dispatch_json(
            ctx,
            ProxyOperation(
                method="POST",
                path=f"/api/exchanges/{enc(vhost)}/{enc(name)}/publish",
                body=request.model_dump(),
                resource_name=name,
            ),
        )
        routed = body.get("routed", False) if isinstance(body, dict) else False
        return PublishResponse(routed=bool(routed))

    @audited_write(
        AuditOperationType.PUBLISH_MESSAGE_EXCHANGE,
        "message",
        resource=lambda p: p["exchange"] or DEFAULT_EXCHANGE,
        description="Publish a message to an exchange",
        include_return_value=True,
    )
    async def publish_to_exchange(
        self, ctx: AuditContext, *, vhost: str, exchange: str, request: PublishMessageRequest
    ) -> PublishResponse:
        return await self._publish(ctx, vhost, exchange, request)

    @audited_write(
        AuditOperationType.PUBLISH_MESSAGE_QUEUE,
        "message",
        resource=lambda p: p["queue"],
        description="Publish a message directly to a queue",
        include_return_value=True,
    )
    async def publish_to_queue(
        self, ctx: AuditContext, *, vhost: str, queue: str, request: PublishMessageRequest
    ) -> PublishResponse:
        # The default exchange routes by queue name.
        routed = request.model_copy(update={"routing_key": queue})
        return await self._publish(ctx, vhost, "", routed)

    @audited_write(
        AuditOperationType.MOVE_MESSAGES_QUEUE,
        "shovel",
        resource=lambda p: p["request"].name,
        description="Create a shovel to move messages between queues",
        include_parameters=True,
    )
    async def move_messages(self, ctx: AuditContext, *, request: CreateShovelRequest) -> None:
        value = {
            "src-protocol": "amqp091",
            "src-uri": request.source_uri,
            "src-queue": request.source_queue,
            "dest-protocol": "amqp091",
            "dest-uri": request.destination_uri,
            "dest-queue": request.destination_queue,
            "src-delete-after": request.delete_after,
            "ack-mode": request.ack_mode,
        }
        await self._dispatch(
            ctx,
            ProxyOperation(
                method="PUT",
                path=f"/api/parameters/shovel/{enc(request.vhost)}/{enc(request.name)}",
                body={"value": value},
                # 404 here usually means the shovel plugin is not enabled.
                resource_name=f"shovel plugin or vhost '{request.vhost}'",
            ),
        )
