"""RabbitMQ Management HTTP API client.

One ``RabbitMQClient`` exists per active cluster connection.  It owns a
long-lived ``httpx.AsyncClient`` (connection pool, Basic auth, bounded
timeouts) and forwards logical operations unchanged; interpreting the
upstream status is left to the proxy dispatcher.

RabbitMQ Management Plugin API reference:
  https://rawcdn.githack.com/rabbitmq/rabbitmq-management/v3.12.0/priv/www/api/index.html
"""

from __future__ import annotations

import logging
import time
from urllib.parse import quote

import httpx

from rabbitmq_admin.models import ConnectionTestResponse, ProxyOperation

logger = logging.getLogger(__name__)

USER_AGENT = "rabbitmq-admin-proxy/1.0"


class RabbitMQClient:
    """Async client bound to one cluster's management endpoint and credential."""

    def __init__(
        self,
        mgmt_url: str,
        username: str,
        password: str,
        *,
        timeout: httpx.Timeout,
        verify_tls: bool = True,
        max_connections: int = 20,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = mgmt_url.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            auth=(username, password),
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            timeout=timeout,
            verify=verify_tls,
            limits=httpx.Limits(max_connections=max_connections),
            transport=transport,
        )
        logger.debug(
            "RabbitMQ client created for %s (user '%s', password length %d)",
            self.base_url,
            username,
            len(password),
        )

    @property
    def closed(self) -> bool:
        return self._http.is_closed

    async def send(self, operation: ProxyOperation) -> httpx.Response:
        """Issue *operation* and return the raw response, whatever its status.

        Raises:
            httpx.TransportError: on network failures and timeouts.
        """
        return await self._http.request(
            operation.method,
            operation.path,
            params=operation.query or None,
            json=operation.body if operation.body is not None else None,
        )

    async def aclose(self) -> None:
        await self._http.aclose()


# ── Connection probing ───────────────────────────────────────────────────────


async def check_connection(
    api_url: str,
    username: str,
    password: str,
    *,
    timeout: httpx.Timeout,
    verify_tls: bool = True,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ConnectionTestResponse:
    """Call ``GET /api/overview`` with a throwaway client and report the outcome.

    Used before a connection is saved, so it never touches the client pool.
    """
    started = time.monotonic()
    client = RabbitMQClient(
        api_url, username, password, timeout=timeout, verify_tls=verify_tls, transport=transport
    )
    try:
        resp = await client.send(ProxyOperation(path="/api/overview"))
    except httpx.TransportError as exc:
        return ConnectionTestResponse(
            success=False,
            message="Connection timeout or network error",
            details=f"Unable to reach the RabbitMQ API at: {api_url}. {exc}",
        )
    finally:
        await client.aclose()

    elapsed_ms = int((time.monotonic() - started) * 1000)
    if resp.status_code == 200:
        return ConnectionTestResponse(
            success=True,
            message="Connection successful - RabbitMQ API is accessible",
            response_time_ms=elapsed_ms,
        )

    messages = {
        401: "Invalid credentials - authentication failed",
        403: "Access forbidden - insufficient permissions",
        404: "RabbitMQ Management API not found at the specified URL",
    }
    return ConnectionTestResponse(
        success=False,
        message=messages.get(resp.status_code, f"Connection failed with status: {resp.status_code}"),
        details=f"HTTP {resp.status_code} - {resp.reason_phrase}",
        response_time_ms=elapsed_ms,
    )


def enc(value: str) -> str:
    """Percent-encode a vHost, queue, exchange or user name for a URL path segment.

    RabbitMQ Management API requires ``%2F`` for the default ``/`` vHost.
    """
    return quote(value, safe="")
