"""Unit tests for cluster access decisions."""

from __future__ import annotations

import pytest

from rabbitmq_admin.clients.credential_store import CredentialStore
from rabbitmq_admin.clients.secrets import SecretCipher
from rabbitmq_admin.config import Settings
from rabbitmq_admin.errors import AccessDenied, DenyReason
from rabbitmq_admin.models import Principal, User
from rabbitmq_admin.services.authz import AccessAuthorizer
from tests.conftest import Seed


def principal(user: User) -> Principal:
    return Principal(id=user.id, username=user.username, role=user.role)


@pytest.mark.asyncio
async def test_admin_may_use_any_cluster(store: CredentialStore, seed: Seed) -> None:
    authz = AccessAuthorizer(store)
    for cluster in (seed.cluster_a, seed.cluster_b, seed.cluster_c):
        assert (await authz.authorize(principal(seed.admin), cluster.id)).allowed


@pytest.mark.asyncio
async def test_user_allowed_on_assigned_active_cluster(store: CredentialStore, seed: Seed) -> None:
    decision = await AccessAuthorizer(store).authorize(principal(seed.alice), seed.cluster_a.id)
    assert decision.allowed
    assert decision.reason is None


@pytest.mark.asyncio
async def test_user_denied_on_unassigned_cluster(store: CredentialStore, seed: Seed) -> None:
    decision = await AccessAuthorizer(store).authorize(principal(seed.alice), seed.cluster_b.id)
    assert not decision.allowed
    assert decision.reason == DenyReason.NOT_ASSIGNED


@pytest.mark.asyncio
async def test_user_denied_on_inactive_cluster(store: CredentialStore, seed: Seed) -> None:
    decision = await AccessAuthorizer(store).authorize(principal(seed.alice), seed.cluster_c.id)
    assert not decision.allowed
    assert decision.reason == DenyReason.CLUSTER_INACTIVE


@pytest.mark.asyncio
async def test_unknown_cluster_is_denied_for_users(store: CredentialStore, seed: Seed) -> None:
    decision = await AccessAuthorizer(store).authorize(principal(seed.bob), "missing")
    assert decision.reason == DenyReason.NOT_ASSIGNED


@pytest.mark.asyncio
async def test_assignments_are_reread_on_every_call(store: CredentialStore, seed: Seed) -> None:
    """A stale principal snapshot must not grant or keep access."""
    authz = AccessAuthorizer(store)
    alice = Principal(
        id=seed.alice.id,
        username="alice",
        role=seed.alice.role,
        assigned_cluster_ids=frozenset({seed.cluster_a.id}),
    )
    await store.unassign_user(seed.cluster_a.id, seed.alice.id)
    assert not (await authz.authorize(alice, seed.cluster_a.id)).allowed

    await store.assign_user(seed.cluster_b.id, seed.alice.id)
    assert (await authz.authorize(alice, seed.cluster_b.id)).allowed


@pytest.mark.asyncio
async def test_require_raises_access_denied(store: CredentialStore, seed: Seed) -> None:
    with pytest.raises(AccessDenied) as exc_info:
        await AccessAuthorizer(store).require(principal(seed.bob), seed.cluster_a.id)
    assert exc_info.value.reason == DenyReason.NOT_ASSIGNED
    assert exc_info.value.cluster_id == seed.cluster_a.id


@pytest.mark.asyncio
async def test_decisions_do_not_need_readable_secrets(settings: Settings, seed: Seed) -> None:
    keyless = AccessAuthorizer(CredentialStore(settings.credential_store_path, SecretCipher("")))
    assert (await keyless.authorize(principal(seed.alice), seed.cluster_a.id)).allowed
    decision = await keyless.authorize(principal(seed.alice), seed.cluster_c.id)
    assert decision.reason == DenyReason.CLUSTER_INACTIVE
