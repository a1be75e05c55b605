"""Cluster connectivity monitoring (administrators only).

Routes
──────
  GET  /api/monitoring/health/clusters                 → summary of all active clusters (cached)
  POST /api/monitoring/health/clusters/refresh         → re-check every active cluster
  GET  /api/monitoring/health/clusters/{id}            → one cluster (cached)
  POST /api/monitoring/health/clusters/{id}/refresh    → re-check one cluster
"""

from fastapi import APIRouter, Depends

from rabbitmq_admin.deps import get_health_monitor, require_admin
from rabbitmq_admin.models import ClusterHealthStatus, ClusterHealthSummary, Principal
from rabbitmq_admin.services.cluster_health import ClusterHealthMonitor

router = APIRouter(prefix="/api/monitoring/health/clusters", tags=["monitoring"])


@router.get("", response_model=ClusterHealthSummary)
async def all_clusters(
    _: Principal = Depends(require_admin),
    monitor: ClusterHealthMonitor = Depends(get_health_monitor),
) -> ClusterHealthSummary:
    return await monitor.overview()


@router.post("/refresh", response_model=ClusterHealthSummary)
async def refresh_all(
    _: Principal = Depends(require_admin),
    monitor: ClusterHealthMonitor = Depends(get_health_monitor),
) -> ClusterHealthSummary:
    return await monitor.refresh_all()


@router.get("/{cluster_id}", response_model=ClusterHealthStatus)
async def one_cluster(
    cluster_id: str,
    _: Principal = Depends(require_admin),
    monitor: ClusterHealthMonitor = Depends(get_health_monitor),
) -> ClusterHealthStatus:
    return await monitor.check(cluster_id)


@router.post("/{cluster_id}/refresh", response_model=ClusterHealthStatus)
async def refresh_one(
    cluster_id: str,
    _: Principal = Depends(require_admin),
    monitor: ClusterHealthMonitor = Depends(get_health_monitor),
) -> ClusterHealthStatus:
    return await monitor.refresh(cluster_id)
