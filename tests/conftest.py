"""Shared pytest fixtures and helpers.

The RabbitMQ Management API is replaced by ``FakeRabbit``, an
``httpx.MockTransport`` that records every request and answers from a small
route table, so tests run without a live broker.  The credential and audit
stores write to ``tmp_path``.  HTTP tests pick the acting user through
FastAPI's ``dependency_overrides`` mechanism.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient

from rabbitmq_admin.clients.audit_store import AuditStore
from rabbitmq_admin.clients.credential_store import CredentialStore
from rabbitmq_admin.clients.pool import ClientPool
from rabbitmq_admin.clients.secrets import SecretCipher
from rabbitmq_admin.config import Settings
from rabbitmq_admin.deps import get_current_user_id
from rabbitmq_admin.main import create_app
from rabbitmq_admin.models import ClusterConnection, User, UserRole
from rabbitmq_admin.services.audit import AuditRecorder
from rabbitmq_admin.services.authz import AccessAuthorizer
from rabbitmq_admin.services.dispatcher import ProxyDispatcher
from rabbitmq_admin.services.resources import ResourceOperations

# ── Constants ─────────────────────────────────────────────────────────────────

URL_A = "http://rabbit-a:15672"
URL_B = "http://rabbit-b:15672"
URL_C = "http://rabbit-c:15672"
ENCRYPTION_KEY = Fernet.generate_key().decode()

Answer = httpx.Response | Exception | Callable[[httpx.Request], httpx.Response]

# ── Fake management API ───────────────────────────────────────────────────────


@dataclass
class FakeRabbit:
    """Answers management API calls from ``routes`` and records each request.

    Routes are keyed by ``(method, raw_path)`` where ``raw_path`` keeps its
    percent-encoding, e.g. ``("DELETE", "/api/queues/%2F/q1")``.  Unrouted
    GETs answer ``200 {}``, other methods ``204``.
    """

    routes: dict[tuple[str, str], Answer] = field(default_factory=dict)
    requests: list[httpx.Request] = field(default_factory=list)

    def on(self, method: str, path: str, answer: Answer) -> None:
        self.routes[(method, path)] = answer

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.raw_path.decode().split("?")[0]
        answer = self.routes.get((request.method, path))
        if answer is None:
            return httpx.Response(200, json={}) if request.method == "GET" else httpx.Response(204)
        if isinstance(answer, Exception):
            raise answer
        if callable(answer):
            return answer(request)
        # Fresh copy so a route can answer more than once.
        return httpx.Response(answer.status_code, headers=answer.headers, content=answer.content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def paths(self) -> list[str]:
        return [r.url.raw_path.decode().split("?")[0] for r in self.requests]


@dataclass
class Seed:
    admin: User
    alice: User  # assigned to A and C
    bob: User  # no assignments
    cluster_a: ClusterConnection
    cluster_b: ClusterConnection
    cluster_c: ClusterConnection  # inactive


async def _seed(store: CredentialStore) -> Seed:
    admin = await store.create_user("admin", UserRole.ADMINISTRATOR)
    alice = await store.create_user("alice", UserRole.USER)
    bob = await store.create_user("bob", UserRole.USER)
    cluster_a = await store.create_cluster("cluster-a", URL_A, "guest", "secret-a")
    cluster_b = await store.create_cluster("cluster-b", URL_B, "guest", "secret-b")
    cluster_c = await store.create_cluster("cluster-c", URL_C, "guest", "secret-c", active=False)
    await store.assign_user(cluster_a.id, alice.id)
    await store.assign_user(cluster_c.id, alice.id)
    return Seed(admin, alice, bob, cluster_a, cluster_b, cluster_c)


# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        credential_store_path=str(tmp_path / "credentials.json"),
        audit_store_path=str(tmp_path / "audit.jsonl"),
        secret_encryption_key=ENCRYPTION_KEY,
        audit_async_processing=False,
        bootstrap_admin_username="",
    )


@pytest.fixture()
def fake_rabbit() -> FakeRabbit:
    return FakeRabbit()


@pytest.fixture()
def store(settings: Settings) -> CredentialStore:
    return CredentialStore(settings.credential_store_path, SecretCipher(settings.secret_encryption_key))


@pytest.fixture()
def seed(store: CredentialStore) -> Seed:
    return asyncio.run(_seed(store))


@pytest.fixture()
def audit_store(settings: Settings, store: CredentialStore) -> AuditStore:
    return AuditStore(settings.audit_store_path, store)


@pytest.fixture()
def pool(store: CredentialStore, settings: Settings, fake_rabbit: FakeRabbit) -> ClientPool:
    return ClientPool(store, settings, transport=fake_rabbit.transport)


@pytest.fixture()
def dispatcher(store: CredentialStore, pool: ClientPool) -> ProxyDispatcher:
    return ProxyDispatcher(AccessAuthorizer(store), pool)


@pytest.fixture()
def recorder(store: CredentialStore, audit_store: AuditStore, settings: Settings) -> AuditRecorder:
    return AuditRecorder(store, audit_store, settings)


@pytest.fixture()
def resources(dispatcher: ProxyDispatcher, recorder: AuditRecorder) -> ResourceOperations:
    return ResourceOperations(dispatcher, recorder)


@pytest.fixture()
def test_client(settings: Settings, seed: Seed, fake_rabbit: FakeRabbit) -> Iterator[TestClient]:
    app = create_app(settings, upstream_transport=fake_rabbit.transport)
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


def act_as(client: TestClient, user: User | None) -> TestClient:
    """Make *user* the authenticated principal of subsequent requests."""
    user_id = user.id if user else None
    client.app.dependency_overrides[get_current_user_id] = lambda: user_id  # type: ignore[attr-defined]
    return client


def json_response(payload: Any, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json=payload)
