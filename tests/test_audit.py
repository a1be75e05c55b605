"""Unit tests for the write-audit recorder and the audit store."""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from rabbitmq_admin.clients.audit_store import AuditStore
from rabbitmq_admin.clients.credential_store import CredentialStore
from rabbitmq_admin.config import Settings
from rabbitmq_admin.errors import AccessDenied, AuditPersistenceFailure, ResourceNotFound
from rabbitmq_admin.models import (
    AuditFilter,
    AuditOperationStatus,
    AuditOperationType,
    AuditRecord,
    CreateExchangeRequest,
    Principal,
)
from rabbitmq_admin.services.audit import AuditContext, AuditRecorder, audited_write, sanitize
from rabbitmq_admin.services.dispatcher import ProxyDispatcher
from rabbitmq_admin.services.resources import ResourceOperations
from tests.conftest import FakeRabbit, Seed


class QueueOps:
    """Minimal owner of audited methods."""

    def __init__(self, recorder: AuditRecorder) -> None:
        self.audit_recorder = recorder

    @audited_write(AuditOperationType.CREATE_QUEUE, "queue", resource=lambda p: p["name"], include_parameters=True)
    async def create(self, ctx: AuditContext, *, name: str, arguments: dict | None = None, fail: Exception | None = None):
        if fail is not None:
            raise fail
        return {"created": name}

    @audited_write(AuditOperationType.PURGE_QUEUE, "queue", resource=lambda p: p["request"].name)
    async def purge(self, ctx: AuditContext, *, request: object) -> str:
        return "purged"


def ctx_for(seed: Seed, user: str = "admin", cluster: str = "cluster_a") -> AuditContext:
    u = getattr(seed, user)
    return AuditContext(
        principal=Principal(id=u.id, username=u.username, role=u.role),
        cluster_id=getattr(seed, cluster).id,
        client_ip="10.0.0.5",
        user_agent="pytest",
    )


def mock_audit_store(**kwargs) -> AuditStore:
    store: AuditStore = MagicMock(spec=AuditStore)
    store.append = AsyncMock(**kwargs)  # type: ignore[method-assign]
    return store


def appended(store: AuditStore) -> list[AuditRecord]:
    return [call.args[0] for call in store.append.call_args_list]  # type: ignore[attr-defined]


# ── Outcome recording ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_success_records_one_success(store: CredentialStore, settings: Settings, seed: Seed) -> None:
    audit = mock_audit_store()
    ops = QueueOps(AuditRecorder(store, audit, settings))

    result = await ops.create(ctx_for(seed), name="orders")

    assert result == {"created": "orders"}
    [record] = appended(audit)
    assert record.status == AuditOperationStatus.SUCCESS
    assert record.operation_type == AuditOperationType.CREATE_QUEUE
    assert record.resource_type == "queue"
    assert record.resource_name == "orders"
    assert record.username == "admin"
    assert record.cluster_name == "cluster-a"
    assert record.client_ip == "10.0.0.5"
    assert record.user_agent == "pytest"
    assert record.error_message is None


@pytest.mark.asyncio
async def test_failure_records_one_failure_and_reraises_same_error(
    store: CredentialStore, settings: Settings, seed: Seed
) -> None:
    audit = mock_audit_store()
    ops = QueueOps(AuditRecorder(store, audit, settings))
    error = ResourceNotFound("orders")

    with pytest.raises(ResourceNotFound) as exc_info:
        await ops.create(ctx_for(seed), name="orders", fail=error)

    assert exc_info.value is error
    [record] = appended(audit)
    assert record.status == AuditOperationStatus.FAILURE
    assert record.error_message == "Resource not found: orders"


@pytest.mark.parametrize(
    "store_behaviour",
    [
        {"side_effect": AuditPersistenceFailure("audit db down")},
        {"side_effect": RuntimeError("unexpected")},
        {"side_effect": OSError("disk full")},
        {},
    ],
)
@pytest.mark.asyncio
async def test_audit_store_outcome_never_changes_the_result(
    store: CredentialStore, settings: Settings, seed: Seed, store_behaviour: dict
) -> None:
    ops = QueueOps(AuditRecorder(store, mock_audit_store(**store_behaviour), settings))
    assert await ops.create(ctx_for(seed), name="orders") == {"created": "orders"}

    error = ValueError("bad arguments")
    with pytest.raises(ValueError) as exc_info:
        await ops.create(ctx_for(seed), name="orders", fail=error)
    assert exc_info.value is error


@pytest.mark.asyncio
async def test_persistence_failure_is_logged(
    store: CredentialStore, settings: Settings, seed: Seed, caplog: pytest.LogCaptureFixture
) -> None:
    ops = QueueOps(AuditRecorder(store, mock_audit_store(side_effect=AuditPersistenceFailure("down")), settings))
    await ops.create(ctx_for(seed), name="orders")
    errors = [r for r in caplog.records if r.levelname == "ERROR"]
    assert errors
    message = errors[0].getMessage()
    assert "CREATE_QUEUE" in message and "orders" in message and "admin" in message and "cluster-a" in message


@pytest.mark.asyncio
async def test_slow_audit_store_is_bounded_in_sync_mode(store: CredentialStore, settings: Settings, seed: Seed) -> None:
    async def hang(record: AuditRecord) -> None:
        await asyncio.sleep(10)

    fast = settings.model_copy(update={"audit_persist_timeout": 0.05})
    ops = QueueOps(AuditRecorder(store, mock_audit_store(side_effect=hang), fast))
    result = await asyncio.wait_for(ops.create(ctx_for(seed), name="orders"), timeout=2)
    assert result == {"created": "orders"}


@pytest.mark.asyncio
async def test_async_mode_persists_in_background(store: CredentialStore, settings: Settings, seed: Seed) -> None:
    audit = mock_audit_store()
    recorder = AuditRecorder(store, audit, settings.model_copy(update={"audit_async_processing": True}))
    await QueueOps(recorder).create(ctx_for(seed), name="orders")
    await recorder.drain()
    assert len(appended(audit)) == 1
    assert recorder.pending == 0


@pytest.mark.asyncio
async def test_disabled_audit_runs_call_without_recording(
    store: CredentialStore, settings: Settings, seed: Seed
) -> None:
    audit = mock_audit_store()
    disabled = settings.model_copy(update={"audit_write_operations_enabled": False})
    assert await QueueOps(AuditRecorder(store, audit, disabled)).create(ctx_for(seed), name="q") == {"created": "q"}
    audit.append.assert_not_called()  # type: ignore[attr-defined]


# ── Resolution and extraction ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_missing_principal_skips_audit(store: CredentialStore, settings: Settings, seed: Seed) -> None:
    audit = mock_audit_store()
    ops = QueueOps(AuditRecorder(store, audit, settings))
    ctx = AuditContext(principal=None, cluster_id=seed.cluster_a.id)
    assert await ops.create(ctx, name="orders") == {"created": "orders"}
    audit.append.assert_not_called()  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_unknown_cluster_skips_audit(store: CredentialStore, settings: Settings, seed: Seed) -> None:
    audit = mock_audit_store()
    ops = QueueOps(AuditRecorder(store, audit, settings))
    ctx = AuditContext(principal=ctx_for(seed).principal, cluster_id="missing")
    assert await ops.create(ctx, name="orders") == {"created": "orders"}
    audit.append.assert_not_called()  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_resource_extraction_failure_records_placeholder(
    store: CredentialStore, settings: Settings, seed: Seed
) -> None:
    audit = mock_audit_store()
    ops = QueueOps(AuditRecorder(store, audit, settings))
    assert await ops.purge(ctx_for(seed), request="no name attribute") == "purged"
    [record] = appended(audit)
    assert record.resource_name == "unknown"


@pytest.mark.asyncio
async def test_details_hold_sanitized_parameters(store: CredentialStore, settings: Settings, seed: Seed) -> None:
    audit = mock_audit_store()
    ops = QueueOps(AuditRecorder(store, audit, settings))
    await ops.create(ctx_for(seed), name="orders", arguments={"x-max-length": 10, "x-queue-type": "quorum"})
    [record] = appended(audit)
    details = json.loads(record.resource_details or "{}")
    assert details["parameters"]["name"] == "orders"
    assert details["parameters"]["arguments"] == "dict[size=2]"
    assert details["method"].endswith("QueueOps.create")
    assert "execution_time_ms" in details
    assert "return_value" not in details


def test_sanitize_summarizes_collections() -> None:
    assert sanitize([1, 2, 3]) == "list[size=3]"
    assert sanitize({"a": 1}) == "dict[size=1]"
    assert sanitize(b"payload") == "bytes[size=7]"
    assert sanitize("text") == "text"
    assert sanitize(None) is None
    assert sanitize(CreateExchangeRequest(name="ex1")) == {
        "name": "ex1",
        "vhost": "/",
        "type": "direct",
        "durable": True,
        "auto_delete": False,
        "internal": False,
        "arguments": "dict[size=0]",
    }


# ── Through resource operations ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_delete_missing_queue_records_failure(
    resources: ResourceOperations, audit_store: AuditStore, fake_rabbit: FakeRabbit, seed: Seed
) -> None:
    fake_rabbit.on("DELETE", "/api/queues/%2F/q1", httpx.Response(404, json={"error": "Object Not Found"}))
    with pytest.raises(ResourceNotFound) as exc_info:
        await resources.delete_queue(ctx_for(seed), vhost="/", name="q1")
    assert exc_info.value.resource_name == "q1"

    records, total = await audit_store.query()
    assert total == 1
    assert records[0].status == AuditOperationStatus.FAILURE
    assert records[0].resource_name == "q1"
    assert records[0].operation_type == AuditOperationType.DELETE_QUEUE


@pytest.mark.asyncio
async def test_create_exchange_succeeds_when_audit_store_always_fails(
    dispatcher: ProxyDispatcher, store: CredentialStore, settings: Settings, fake_rabbit: FakeRabbit, seed: Seed
) -> None:
    failing = mock_audit_store(side_effect=AuditPersistenceFailure("audit store unavailable"))
    resources = ResourceOperations(dispatcher, AuditRecorder(store, failing, settings))

    await resources.create_exchange(ctx_for(seed), request=CreateExchangeRequest(name="ex1"))

    assert fake_rabbit.paths() == ["/api/exchanges/%2F/ex1"]
    failing.append.assert_awaited_once()  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_denied_write_is_still_audited_as_failure(
    resources: ResourceOperations, audit_store: AuditStore, fake_rabbit: FakeRabbit, seed: Seed
) -> None:
    with pytest.raises(AccessDenied):
        await resources.purge_queue(ctx_for(seed, "bob", "cluster_a"), vhost="/", name="q1")
    assert fake_rabbit.requests == []
    records, _ = await audit_store.query()
    assert [(r.status, r.username) for r in records] == [(AuditOperationStatus.FAILURE, "bob")]


# ── Audit store ───────────────────────────────────────────────────────────────


def _record(seed: Seed, **overrides) -> AuditRecord:
    now = datetime.now(UTC)
    fields = dict(
        id="r1",
        user_id=seed.admin.id,
        username="admin",
        cluster_id=seed.cluster_a.id,
        cluster_name="cluster-a",
        operation_type=AuditOperationType.CREATE_QUEUE,
        resource_type="queue",
        resource_name="orders",
        status=AuditOperationStatus.SUCCESS,
        timestamp=now,
        created_at=now,
    )
    fields.update(overrides)
    return AuditRecord(**fields)


@pytest.mark.asyncio
async def test_audit_store_enforces_referential_integrity(audit_store: AuditStore, seed: Seed) -> None:
    with pytest.raises(AuditPersistenceFailure):
        await audit_store.append(_record(seed, user_id="ghost"))
    with pytest.raises(AuditPersistenceFailure):
        await audit_store.append(_record(seed, cluster_id="ghost"))
    assert await audit_store.query() == ([], 0)


@pytest.mark.asyncio
async def test_audit_store_query_filters_and_orders(audit_store: AuditStore, seed: Seed) -> None:
    base = datetime(2026, 1, 1, tzinfo=UTC)
    await audit_store.append(_record(seed, id="1", timestamp=base))
    await audit_store.append(
        _record(
            seed,
            id="2",
            resource_type="exchange",
            resource_name="events",
            operation_type=AuditOperationType.CREATE_EXCHANGE,
            timestamp=base + timedelta(hours=1),
        )
    )
    await audit_store.append(
        _record(seed, id="3", status=AuditOperationStatus.FAILURE, timestamp=base + timedelta(hours=2))
    )

    records, total = await audit_store.query()
    assert [r.id for r in records] == ["3", "2", "1"]
    assert total == 3

    by_type, _ = await audit_store.query(AuditFilter(resource_type="exchange, binding"))
    assert [r.id for r in by_type] == ["2"]

    failures, _ = await audit_store.query(AuditFilter(status=AuditOperationStatus.FAILURE))
    assert [r.id for r in failures] == ["3"]

    window, _ = await audit_store.query(AuditFilter(end_time=datetime(2026, 1, 1, 0, 30)))
    assert [r.id for r in window] == ["1"]

    named, _ = await audit_store.query(AuditFilter(resource_name="ORD", cluster_name="cluster"))
    assert {r.id for r in named} == {"1", "3"}

    page, total = await audit_store.query(page=1, size=2)
    assert [r.id for r in page] == ["1"]
    assert total == 3
