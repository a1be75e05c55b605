"""Cached connectivity status of every configured cluster.

Each check calls ``GET /api/overview`` through a throwaway client (see
``ClientPool.test_connection``), so monitoring never disturbs pooled clients
and works for clusters no user has touched yet.  Results are cached for
``health_check_interval_seconds``; the refresh operations bypass the cache.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import UTC, datetime

from rabbitmq_admin.clients.credential_store import CredentialStore
from rabbitmq_admin.clients.pool import ClientPool
from rabbitmq_admin.config import Settings
from rabbitmq_admin.errors import NotFoundError
from rabbitmq_admin.models import ClusterHealthStatus, ClusterHealthSummary

logger = logging.getLogger(__name__)


class ClusterHealthMonitor:
    def __init__(self, store: CredentialStore, pool: ClientPool, settings: Settings) -> None:
        self._store = store
        self._pool = pool
        self._settings = settings
        # cluster ID -> (monotonic time of the check, status)
        self._cache: dict[str, tuple[float, ClusterHealthStatus]] = {}
        self._last_sweep: float | None = None
        self._checked_at: datetime | None = None

    def _fresh(self, checked: float | None) -> bool:
        return checked is not None and time.monotonic() - checked <= self._settings.health_check_interval_seconds

    async def _check_now(self, cluster_id: str) -> ClusterHealthStatus:
        now = datetime.now(UTC)
        described = await self._store.describe_cluster(cluster_id)
        if described is None:
            raise NotFoundError(f"Cluster connection not found with ID: {cluster_id}")
        if not described.active:
            return ClusterHealthStatus(
                cluster_id=described.id,
                cluster_name=described.name,
                healthy=False,
                message="Cluster is inactive",
                last_checked=now,
            )
        try:
            cluster = await self._store.get_cluster(cluster_id)
        except ValueError as exc:
            logger.error("Health check failed for cluster '%s': %s", described.name, exc)
            return ClusterHealthStatus(
                cluster_id=described.id,
                cluster_name=described.name,
                healthy=False,
                message=f"Health check failed: {exc}",
                last_checked=now,
            )
        if cluster is None:
            raise NotFoundError(f"Cluster connection not found with ID: {cluster_id}")

        result = await self._pool.test_connection(cluster)
        if result.success:
            logger.debug("Health check successful for cluster '%s'", cluster.name)
        else:
            logger.warning("Health check failed for cluster '%s': %s", cluster.name, result.message)
        return ClusterHealthStatus(
            cluster_id=cluster.id,
            cluster_name=cluster.name,
            healthy=result.success,
            message="Cluster is healthy" if result.success else result.message,
            last_checked=now,
            response_time_ms=result.response_time_ms,
        )

    async def refresh(self, cluster_id: str) -> ClusterHealthStatus:
        """Check *cluster_id* now and cache the result.

        Raises:
            NotFoundError: no such cluster connection.
        """
        status = await self._check_now(cluster_id)
        self._cache[cluster_id] = (time.monotonic(), status)
        return status

    async def check(self, cluster_id: str) -> ClusterHealthStatus:
        """Cached status of *cluster_id*, probing when missing or expired."""
        cached = self._cache.get(cluster_id)
        if cached is not None and self._fresh(cached[0]):
            return cached[1]
        return await self.refresh(cluster_id)

    async def refresh_all(self) -> ClusterHealthSummary:
        """Check every active cluster concurrently.  Other clusters leave the cache."""
        clusters = [c for c in await self._store.describe_clusters() if c.active]
        logger.info("Refreshing health status for %d active cluster(s)", len(clusters))
        statuses = await asyncio.gather(*(self._check_now(c.id) for c in clusters))
        now = time.monotonic()
        self._cache = {s.cluster_id: (now, s) for s in statuses}
        self._last_sweep = now
        self._checked_at = datetime.now(UTC)
        return self._summary()

    async def overview(self) -> ClusterHealthSummary:
        """Summary of all active clusters, re-checked once the interval has passed."""
        if not self._fresh(self._last_sweep):
            return await self.refresh_all()
        return self._summary()

    def _summary(self) -> ClusterHealthSummary:
        statuses = sorted((s for _, s in self._cache.values()), key=lambda s: (s.cluster_name or "").lower())
        if not statuses:
            return ClusterHealthSummary(status="UNKNOWN", checked_at=self._checked_at)
        healthy = sum(1 for s in statuses if s.healthy)
        if healthy == len(statuses):
            overall = "UP"
        elif healthy == 0:
            overall = "DOWN"
        else:
            overall = "DEGRADED"
        return ClusterHealthSummary(
            status=overall,
            total_clusters=len(statuses),
            healthy_clusters=healthy,
            unhealthy_clusters=len(statuses) - healthy,
            clusters=statuses,
            checked_at=self._checked_at,
        )
