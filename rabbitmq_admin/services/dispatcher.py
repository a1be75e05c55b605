"""Proxy dispatcher: the single entry point for calls to a cluster.

Every proxied call, read or write, goes through ``ProxyDispatcher.dispatch``:

  1. authorize the principal against the cluster (``AccessDenied``),
  2. resolve the pooled client (``ClusterUnavailable``),
  3. forward the operation unchanged with the cluster's credential,
  4. map the upstream outcome onto the error taxonomy.

Steps 1 and 2 complete before any upstream request is issued.  Successful
payloads are returned byte-for-byte.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from rabbitmq_admin.clients.pool import ClientPool
from rabbitmq_admin.errors import (
    ResourceNotFound,
    UpstreamAuthRejected,
    UpstreamInvalidResponse,
    UpstreamRequestError,
    UpstreamServerError,
    UpstreamUnreachable,
)
from rabbitmq_admin.models import Principal, ProxyOperation, UpstreamResponse
from rabbitmq_admin.services.authz import AccessAuthorizer

logger = logging.getLogger(__name__)


class ProxyDispatcher:
    def __init__(self, authorizer: AccessAuthorizer, pool: ClientPool) -> None:
        self.authorizer = authorizer
        self.pool = pool

    async def dispatch(
        self, principal: Principal, cluster_id: str, operation: ProxyOperation
    ) -> UpstreamResponse:
        await self.authorizer.require(principal, cluster_id)
        client = await self.pool.get_client(cluster_id)

        logger.debug(
            "Dispatching %s %s to cluster %s for '%s'",
            operation.method,
            operation.path,
            cluster_id,
            principal.username,
        )
        try:
            resp = await client.send(operation)
        except httpx.TimeoutException as exc:
            logger.error("Timeout calling cluster %s: %s %s", cluster_id, operation.method, operation.path)
            raise UpstreamUnreachable(
                cluster_id, f"RabbitMQ API at {client.base_url} timed out", timed_out=True
            ) from exc
        except httpx.TransportError as exc:
            logger.error("Cannot reach cluster %s at %s: %s", cluster_id, client.base_url, exc)
            raise UpstreamUnreachable(cluster_id, f"Unable to reach RabbitMQ API at {client.base_url}: {exc}") from exc

        return self._map(cluster_id, operation, resp)

    @staticmethod
    def _map(cluster_id: str, operation: ProxyOperation, resp: httpx.Response) -> UpstreamResponse:
        status = resp.status_code
        if status in (401, 403):
            logger.error("Cluster %s rejected the stored credentials (HTTP %d)", cluster_id, status)
            raise UpstreamAuthRejected(cluster_id, status)
        if status == 404:
            raise ResourceNotFound(operation.resource_name or operation.path)
        if 400 <= status < 500:
            raise UpstreamRequestError(status, resp.text)
        if status >= 500:
            logger.error("Cluster %s answered HTTP %d for %s %s", cluster_id, status, operation.method, operation.path)
            raise UpstreamServerError(status, resp.text)
        return UpstreamResponse(
            status_code=status,
            content=resp.content,
            content_type=resp.headers.get("content-type"),
        )

    async def dispatch_json(self, principal: Principal, cluster_id: str, operation: ProxyOperation) -> Any:
        """Dispatch *operation* and decode its JSON body (``None`` when empty).

        Raises:
            UpstreamInvalidResponse: the upstream answered 2xx with a body that
                is not JSON, e.g. the login page of an intercepting proxy.
        """
        resp = await self.dispatch(principal, cluster_id, operation)
        try:
            return resp.json_body()
        except ValueError as exc:
            body = resp.content.decode(errors="replace")
            logger.error(
                "Cluster %s answered %s %s with non-JSON content (%s)",
                cluster_id,
                operation.method,
                operation.path,
                resp.content_type,
            )
            raise UpstreamInvalidResponse(cluster_id, resp.content_type, body) from exc

    async def get_json(
        self,
        principal: Principal,
        cluster_id: str,
        path: str,
        query: dict[str, str] | None = None,
        resource_name: str | None = None,
    ) -> Any:
        """GET *path* and return the decoded JSON body (read routes)."""
        op = ProxyOperation(path=path, query=query or {}, resource_name=resource_name)
        return await self.dispatch_json(principal, cluster_id, op)
