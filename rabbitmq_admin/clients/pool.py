"""Client pool: one reusable ``RabbitMQClient`` per active cluster connection.

The pool is the only shared mutable structure of the proxy.  Entries are
keyed by cluster ID and carry the connection fingerprint (URL + credential)
they were built from, so a client is never reused for a different endpoint or
secret even if an explicit invalidation was missed.

Concurrency model
─────────────────
  • Clients are built outside any lock; building one opens no sockets.
  • Insertion is an insert-if-absent under a short ``threading.Lock`` that is
    never held across an ``await``.  When two requests race for the same
    uncached cluster, the loser closes its transient client and uses the
    winner's, so at most one client is ever retained per cluster.
  • Eviction pops the entry under the same lock and closes it afterwards.
  • A cached client whose fingerprint differs from the record a request read
    is replaced only once a fresh store read confirms that record.  A request
    holding a stale read therefore adopts the newer client instead of
    evicting it.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

import httpx

from rabbitmq_admin.clients.credential_store import CredentialStore
from rabbitmq_admin.clients.rabbitmq import RabbitMQClient, check_connection
from rabbitmq_admin.config import Settings
from rabbitmq_admin.errors import ClusterUnavailable
from rabbitmq_admin.models import ClusterConnection, ConnectionTestResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Entry:
    client: RabbitMQClient
    fingerprint: tuple[str, str, str]


class ClientPool:
    """Lazily creates, caches and disposes of per-cluster HTTP clients."""

    def __init__(
        self,
        store: CredentialStore,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        # Tests inject an httpx.MockTransport here.
        self._transport = transport
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    @property
    def size(self) -> int:
        return len(self._entries)

    def _timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            self._settings.upstream_read_timeout,
            connect=self._settings.upstream_connect_timeout,
        )

    def _build(self, cluster: ClusterConnection) -> RabbitMQClient:
        return RabbitMQClient(
            cluster.api_url,
            cluster.username,
            cluster.password,
            timeout=self._timeout(),
            verify_tls=self._settings.upstream_verify_tls,
            max_connections=self._settings.upstream_max_connections,
            transport=self._transport,
        )

    async def _load(self, cluster_id: str) -> ClusterConnection:
        try:
            cluster = await self._store.get_cluster(cluster_id)
        except ValueError as exc:
            raise ClusterUnavailable(cluster_id, f"Cluster connection '{cluster_id}' is unreadable: {exc}") from exc

        if cluster is None:
            await self.invalidate(cluster_id)
            raise ClusterUnavailable(cluster_id, f"Cluster connection not found: {cluster_id}")
        if not cluster.active:
            await self.invalidate(cluster_id)
            raise ClusterUnavailable(cluster_id, f"Cluster connection is not active: {cluster_id}")
        return cluster

    async def get_client(self, cluster_id: str) -> RabbitMQClient:
        """Return the pooled client for *cluster_id*, creating it on a miss.

        Raises:
            ClusterUnavailable: the connection is missing or inactive, or its
                stored secret cannot be read.
        """
        cluster = await self._load(cluster_id)
        while True:
            fingerprint = cluster.fingerprint()
            current = self._entries.get(cluster_id)
            if current is not None:
                if current.fingerprint == fingerprint:
                    return current.client
                # Either the cached client or the record read above is out of
                # date; the store decides which.
                latest = await self._load(cluster_id)
                if latest.fingerprint() != fingerprint:
                    cluster = latest
                    continue
                await self._evict(cluster_id, current)

            candidate = _Entry(self._build(cluster), fingerprint)
            with self._lock:
                inserted = cluster_id not in self._entries
                if inserted:
                    self._entries[cluster_id] = candidate
            if inserted:
                logger.info("RabbitMQ client created for cluster '%s' (%s)", cluster.name, cluster.api_url)
                return candidate.client
            # Lost the race: another request retained its client first.
            await candidate.client.aclose()

    async def _evict(self, cluster_id: str, entry: _Entry) -> None:
        """Remove *entry* if it is still the cached one, then close it."""
        with self._lock:
            if self._entries.get(cluster_id) is not entry:
                return
            del self._entries[cluster_id]
        logger.info("Replacing stale RabbitMQ client for cluster %s", cluster_id)
        await entry.client.aclose()

    async def invalidate(self, cluster_id: str) -> None:
        """Evict and close the client for *cluster_id*.  No-op when none is cached."""
        with self._lock:
            entry = self._entries.pop(cluster_id, None)
        if entry is None:
            return
        logger.info("RabbitMQ client for cluster %s evicted", cluster_id)
        await entry.client.aclose()

    async def close(self) -> None:
        """Close every pooled client (application shutdown)."""
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        logger.info("Closing RabbitMQ client pool, removing %d client(s)", len(entries))
        for entry in entries:
            await entry.client.aclose()

    async def test_settings(self, api_url: str, username: str, password: str) -> ConnectionTestResponse:
        """Test connection settings that are not (yet) stored."""
        return await check_connection(
            api_url,
            username,
            password,
            timeout=self._timeout(),
            verify_tls=self._settings.upstream_verify_tls,
            transport=self._transport,
        )

    async def test_connection(self, cluster: ClusterConnection) -> ConnectionTestResponse:
        return await self.test_settings(cluster.api_url, cluster.username, cluster.password)
