"""Write-operation audit trail (administrators only).

Routes
──────
  GET /api/audit/records         → filtered, paged audit records (newest first)
  GET /api/audit/configuration   → whether and how write operations are audited
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from rabbitmq_admin.clients.audit_store import AuditStore
from rabbitmq_admin.config import Settings
from rabbitmq_admin.deps import get_app_settings, get_audit_store, require_admin
from rabbitmq_admin.models import (
    AuditConfigurationResponse,
    AuditFilter,
    AuditOperationStatus,
    AuditOperationType,
    AuditPage,
    Principal,
)

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("/records", response_model=AuditPage)
async def list_records(
    username: str | None = None,
    cluster_name: str | None = None,
    resource_name: str | None = None,
    resource_type: str | None = Query(None, description="Comma-separated, e.g. 'queue,exchange'"),
    operation_type: AuditOperationType | None = None,
    status: AuditOperationStatus | None = None,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    page: int = Query(0, ge=0),
    size: int = Query(50, ge=1, le=500),
    _: Principal = Depends(require_admin),
    store: AuditStore = Depends(get_audit_store),
) -> AuditPage:
    filters = AuditFilter(
        username=username,
        cluster_name=cluster_name,
        resource_name=resource_name,
        resource_type=resource_type,
        operation_type=operation_type,
        status=status,
        start_time=start_time,
        end_time=end_time,
    )
    items, total = await store.query(filters, page=page, size=size)
    return AuditPage(items=items, page=page, size=size, total=total)


@router.get("/configuration", response_model=AuditConfigurationResponse)
async def configuration(
    _: Principal = Depends(require_admin),
    settings: Settings = Depends(get_app_settings),
) -> AuditConfigurationResponse:
    return AuditConfigurationResponse(
        enabled=settings.audit_write_operations_enabled,
        async_processing=settings.audit_async_processing,
        persist_timeout=settings.audit_persist_timeout,
    )
