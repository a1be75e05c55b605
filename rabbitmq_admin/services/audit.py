"""Best-effort audit trail for mutating cluster operations.

A call site marks a write as auditable with ``@audited_write(...)``, naming
the operation type, the resource type and how to read the resource name from
the call's keyword arguments.  The wrapped call always runs; afterwards one
audit record is attempted with status SUCCESS or FAILURE, and the original
result or exception is handed back to the caller untouched.

Persistence is isolated from the caller:

  • async mode (default) schedules the write as a background task;
  • sync mode awaits it, bounded by ``audit_persist_timeout``.

Either way a persistence error is logged and dropped.  Records are never
retried or batched, and a record may become visible after the audited call
has already returned.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, TypeVar

from pydantic import BaseModel

from rabbitmq_admin.clients.audit_store import AuditStore
from rabbitmq_admin.clients.credential_store import CredentialStore
from rabbitmq_admin.config import Settings
from rabbitmq_admin.models import AuditOperationStatus, AuditOperationType, AuditRecord, Principal

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNKNOWN = "unknown"


@dataclass(frozen=True)
class AuditContext:
    """Request-scoped facts the recorder needs, passed explicitly by the caller."""

    principal: Principal | None
    cluster_id: str | None
    client_ip: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class AuditSpec:
    operation_type: AuditOperationType
    resource_type: str
    description: str = ""
    include_parameters: bool = False
    include_return_value: bool = False


class AuditRecorder:
    def __init__(self, credentials: CredentialStore, audit_store: AuditStore, settings: Settings) -> None:
        self._credentials = credentials
        self._audit_store = audit_store
        self._settings = settings
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def enabled(self) -> bool:
        return self._settings.audit_write_operations_enabled

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def run(
        self,
        spec: AuditSpec,
        ctx: AuditContext,
        call: Callable[[], Awaitable[T]],
        *,
        resource_name: str,
        parameters: Mapping[str, Any] | None = None,
        method_name: str = "",
    ) -> T:
        """Execute *call*, attempt one audit record, return or re-raise its outcome."""
        if not self.enabled:
            return await call()

        started_at = datetime.now(UTC)
        t0 = time.monotonic()
        try:
            result = await call()
        except Exception as exc:
            await self._attempt(
                spec, ctx, resource_name, AuditOperationStatus.FAILURE,
                error=str(exc) or type(exc).__name__,
                started_at=started_at, t0=t0, parameters=parameters, method_name=method_name,
            )
            raise
        await self._attempt(
            spec, ctx, resource_name, AuditOperationStatus.SUCCESS,
            started_at=started_at, t0=t0, parameters=parameters, method_name=method_name,
            result=result,
        )
        return result

    async def drain(self) -> None:
        """Wait for background audit writes still in flight (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ── Recording ─────────────────────────────────────────────────────────────

    async def _attempt(
        self,
        spec: AuditSpec,
        ctx: AuditContext,
        resource_name: str,
        status: AuditOperationStatus,
        *,
        started_at: datetime,
        t0: float,
        parameters: Mapping[str, Any] | None,
        method_name: str,
        error: str | None = None,
        result: Any = None,
    ) -> None:
        # Never raises: the caller's outcome is already decided.
        try:
            record = await self._build(
                spec, ctx, resource_name, status, error, started_at, t0, parameters, method_name, result
            )
            if record is None:
                return
            if self._settings.audit_async_processing:
                task = asyncio.create_task(self._persist(record))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
            else:
                await asyncio.wait_for(self._persist(record), timeout=self._settings.audit_persist_timeout)
        except Exception:
            logger.exception(
                "Audit attempt failed for %s on %s '%s' (cluster %s)",
                spec.operation_type, spec.resource_type, resource_name, ctx.cluster_id,
            )

    async def _build(
        self,
        spec: AuditSpec,
        ctx: AuditContext,
        resource_name: str,
        status: AuditOperationStatus,
        error: str | None,
        started_at: datetime,
        t0: float,
        parameters: Mapping[str, Any] | None,
        method_name: str,
        result: Any,
    ) -> AuditRecord | None:
        if ctx.principal is None:
            logger.warning("Skipping audit of %s: no authenticated principal", spec.operation_type)
            return None
        cluster = await self._credentials.describe_cluster(ctx.cluster_id) if ctx.cluster_id else None
        if cluster is None:
            logger.warning(
                "Skipping audit of %s by '%s': cluster %s could not be resolved",
                spec.operation_type, ctx.principal.username, ctx.cluster_id,
            )
            return None

        details: dict[str, Any] = {
            "method": method_name,
            "description": spec.description,
            "execution_time_ms": int((time.monotonic() - t0) * 1000),
            "timestamp": started_at.isoformat(),
        }
        if spec.include_parameters and parameters is not None:
            details["parameters"] = {k: sanitize(v) for k, v in parameters.items()}
        if spec.include_return_value and status == AuditOperationStatus.SUCCESS:
            details["return_value"] = sanitize(result)

        return AuditRecord(
            id=str(uuid.uuid4()),
            user_id=ctx.principal.id,
            username=ctx.principal.username,
            cluster_id=cluster.id,
            cluster_name=cluster.name,
            operation_type=spec.operation_type,
            resource_type=spec.resource_type,
            resource_name=resource_name or UNKNOWN,
            resource_details=json.dumps(details, default=str),
            status=status,
            error_message=error,
            timestamp=started_at,
            client_ip=ctx.client_ip,
            user_agent=ctx.user_agent,
            created_at=datetime.now(UTC),
        )

    async def _persist(self, record: AuditRecord) -> None:
        try:
            await self._audit_store.append(record)
        except Exception as exc:
            logger.error(
                "Failed to persist audit record %s for %s on %s '%s' (user '%s', cluster '%s'): %s",
                record.id,
                record.operation_type,
                record.resource_type,
                record.resource_name,
                record.username,
                record.cluster_name,
                exc,
            )
        else:
            logger.debug("Audit record %s persisted (%s %s)", record.id, record.operation_type, record.status)


# ── Declarative marking ───────────────────────────────────────────────────────


def sanitize(value: Any) -> Any:
    """Render a value for the audit details blob without copying bulk data."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (bytes, bytearray)):
        return f"bytes[size={len(value)}]"
    if isinstance(value, BaseModel):
        return {k: sanitize(v) for k, v in value}
    if isinstance(value, Mapping):
        return f"dict[size={len(value)}]"
    if isinstance(value, (list, tuple, set, frozenset)):
        return f"list[size={len(value)}]"
    return str(value)


def _resource_name(extract: Callable[[Mapping[str, Any]], str], params: Mapping[str, Any]) -> str:
    try:
        name = extract(params)
    except (KeyError, TypeError, AttributeError, ValueError):
        logger.debug("Resource name extraction failed for %s", sorted(params))
        return UNKNOWN
    return str(name) if name else UNKNOWN


def audited_write(
    operation_type: AuditOperationType,
    resource_type: str,
    *,
    resource: Callable[[Mapping[str, Any]], str],
    description: str = "",
    include_parameters: bool = False,
    include_return_value: bool = False,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Mark a coroutine method ``(self, ctx, **params)`` as an audited write.

    *resource* maps the call's keyword arguments to the affected resource
    name, e.g. ``lambda p: p["queue"]``.  The owning object must expose an
    ``audit_recorder`` attribute.
    """
    spec = AuditSpec(operation_type, resource_type, description, include_parameters, include_return_value)

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(self: Any, ctx: AuditContext, **params: Any) -> T:
            recorder: AuditRecorder = self.audit_recorder
            return await recorder.run(
                spec,
                ctx,
                functools.partial(func, self, ctx, **params),
                resource_name=_resource_name(resource, params),
                parameters=params,
                method_name=func.__qualname__,
            )

        wrapper.audit_spec = spec  # type: ignore[attr-defined]
        return wrapper

    return decorator
