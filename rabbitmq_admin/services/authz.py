"""Cluster access decisions.

Administrators may operate on any cluster.  Regular users may operate only on
clusters that are assigned to them *and* active.  Assignments and cluster
state are read from the credential store on every call; nothing is cached
between requests, so an administrator's reassignment applies immediately.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from rabbitmq_admin.clients.credential_store import CredentialStore
from rabbitmq_admin.errors import AccessDenied, DenyReason
from rabbitmq_admin.models import Principal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessDecision:
    reason: DenyReason | None = None

    @property
    def allowed(self) -> bool:
        return self.reason is None

    @classmethod
    def allow(cls) -> AccessDecision:
        return cls()

    @classmethod
    def deny(cls, reason: DenyReason) -> AccessDecision:
        return cls(reason)


class AccessAuthorizer:
    def __init__(self, store: CredentialStore) -> None:
        self._store = store

    async def authorize(self, principal: Principal, cluster_id: str) -> AccessDecision:
        if principal.is_admin:
            return AccessDecision.allow()

        assigned = await self._store.assigned_cluster_ids(principal.id)
        if cluster_id not in assigned:
            return AccessDecision.deny(DenyReason.NOT_ASSIGNED)

        # Secrets stay encrypted: access depends on assignment and state only.
        cluster = await self._store.describe_cluster(cluster_id)
        if cluster is None:
            # Assignments cascade on delete, so this only happens mid-deletion.
            return AccessDecision.deny(DenyReason.NOT_ASSIGNED)
        if not cluster.active:
            return AccessDecision.deny(DenyReason.CLUSTER_INACTIVE)
        return AccessDecision.allow()

    async def require(self, principal: Principal, cluster_id: str) -> None:
        """Raise ``AccessDenied`` unless *principal* may operate on *cluster_id*."""
        decision = await self.authorize(principal, cluster_id)
        if decision.reason is None:
            return
        logger.warning(
            "Access denied: user '%s' (%s) -> cluster %s: %s",
            principal.username,
            principal.id,
            cluster_id,
            decision.reason,
        )
        raise AccessDenied(decision.reason, cluster_id)
