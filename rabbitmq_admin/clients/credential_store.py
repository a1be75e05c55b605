"""Persistent JSON store for cluster connections, users and their assignments.

A single JSON file at ``settings.credential_store_path`` holds every record.
Each read-modify-write runs under one asyncio.Lock so concurrent admin
edits cannot corrupt the file, and writes go through an atomic rename.

Structure::

    {
        "clusters": {
            "<cluster_id>": {
                "id":          "...",
                "name":        "production",
                "api_url":     "https://rabbit-prod:15672",
                "username":    "admin",
                "password":    "enc:fernet:v1:...",   # or plaintext without a key
                "description": "...",
                "active":      true,
                "created_at":  "ISO8601"
            }
        },
        "users": {
            "<user_id>": {"id": "...", "username": "...", "role": "ADMINISTRATOR|USER",
                          "created_at": "ISO8601"}
        },
        "assignments": [["<user_id>", "<cluster_id>"], ...]
    }

``assignments`` is the only authority for user→cluster access; neither users
nor clusters keep their own copy.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterable

from rabbitmq_admin.clients.secrets import SecretCipher
from rabbitmq_admin.errors import DuplicateError, NotFoundError
from rabbitmq_admin.models import ClusterConnection, ClusterConnectionResponse, User, UserRole

logger = logging.getLogger(__name__)

# Blank values for these fields are ignored on update.
_CONNECTION_FIELDS = ("api_url", "username", "password")


def _empty() -> dict[str, Any]:
    return {"clusters": {}, "users": {}, "assignments": []}


class CredentialStore:
    """Async facade over the credential JSON file."""

    def __init__(self, path: str | Path, cipher: SecretCipher | None = None) -> None:
        self._path = Path(path)
        self._cipher = cipher or SecretCipher()
        self._lock = asyncio.Lock()

    # ── File access ───────────────────────────────────────────────────────────

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return _empty()
        data = json.loads(self._path.read_text())
        for key, default in _empty().items():
            data.setdefault(key, default)
        return data  # type: ignore[no-any-return]

    def _write(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False))
        tmp.replace(self._path)

    async def _load(self) -> dict[str, Any]:
        async with self._lock:
            return self._read()

    # ── Conversion helpers ────────────────────────────────────────────────────

    def _cluster(self, raw: dict[str, Any]) -> ClusterConnection:
        return ClusterConnection(**{**raw, "password": self._cipher.decrypt(raw["password"])})

    @staticmethod
    def _name_taken(data: dict[str, Any], name: str, exclude_id: str | None = None) -> bool:
        wanted = name.strip().lower()
        return any(
            c["name"].lower() == wanted and c["id"] != exclude_id for c in data["clusters"].values()
        )

    @staticmethod
    def _require(data: dict[str, Any], table: str, record_id: str) -> dict[str, Any]:
        entry = data[table].get(record_id)
        if entry is None:
            kind = "Cluster connection" if table == "clusters" else "User"
            raise NotFoundError(f"{kind} not found with ID: {record_id}")
        return entry  # type: ignore[no-any-return]

    # ── Cluster connections ───────────────────────────────────────────────────

    async def list_clusters(self) -> list[ClusterConnection]:
        data = await self._load()
        clusters = [self._cluster(raw) for raw in data["clusters"].values()]
        return sorted(clusters, key=lambda c: c.name.lower())

    async def list_active_clusters(self) -> list[ClusterConnection]:
        return [c for c in await self.list_clusters() if c.active]

    async def get_cluster(self, cluster_id: str) -> ClusterConnection | None:
        data = await self._load()
        raw = data["clusters"].get(cluster_id)
        return self._cluster(raw) if raw else None

    async def describe_cluster(self, cluster_id: str) -> ClusterConnectionResponse | None:
        """Return the cluster without its secret.  Never decrypts, so it works with a wrong key."""
        data = await self._load()
        raw = data["clusters"].get(cluster_id)
        if not raw:
            return None
        return ClusterConnectionResponse(**{k: v for k, v in raw.items() if k != "password"})

    async def describe_clusters(self) -> list[ClusterConnectionResponse]:
        data = await self._load()
        clusters = [
            ClusterConnectionResponse(**{k: v for k, v in raw.items() if k != "password"})
            for raw in data["clusters"].values()
        ]
        return sorted(clusters, key=lambda c: c.name.lower())

    async def find_cluster_by_name(self, name: str) -> ClusterConnection | None:
        wanted = name.strip().lower()
        for cluster in await self.list_clusters():
            if cluster.name.lower() == wanted:
                return cluster
        return None

    async def cluster_name_exists(self, name: str) -> bool:
        return await self.find_cluster_by_name(name) is not None

    async def create_cluster(
        self,
        name: str,
        api_url: str,
        username: str,
        password: str,
        description: str = "",
        active: bool = True,
    ) -> ClusterConnection:
        async with self._lock:
            data = self._read()
            if self._name_taken(data, name):
                raise DuplicateError(f"Cluster connection name already exists: {name}")
            raw = {
                "id": str(uuid.uuid4()),
                "name": name.strip(),
                "api_url": api_url.strip(),
                "username": username,
                "password": self._cipher.encrypt(password),
                "description": description,
                "active": active,
                "created_at": datetime.now(UTC).isoformat(),
            }
            data["clusters"][raw["id"]] = raw
            self._write(data)
        logger.info("Cluster connection '%s' created (%s)", raw["name"], raw["id"])
        return self._cluster(raw)

    async def update_cluster(self, cluster_id: str, **changes: Any) -> tuple[ClusterConnection, bool]:
        """Apply *changes* and return ``(cluster, connection_changed)``.

        ``connection_changed`` is true when the endpoint, the credential or the
        active flag changed, i.e. when a pooled client must not be reused.
        ``None`` values and blank connection fields are ignored.
        """
        async with self._lock:
            data = self._read()
            raw = self._require(data, "clusters", cluster_id)
            before = self._cluster(raw)

            name = changes.get("name")
            if name is not None and name.strip() != raw["name"]:
                if self._name_taken(data, name, exclude_id=cluster_id):
                    raise DuplicateError(f"Cluster connection name already exists: {name}")
                raw["name"] = name.strip()
            for field in _CONNECTION_FIELDS:
                value = changes.get(field)
                if value is None or not str(value).strip():
                    continue
                raw[field] = self._cipher.encrypt(value) if field == "password" else value.strip()
            if changes.get("description") is not None:
                raw["description"] = changes["description"]
            if changes.get("active") is not None:
                raw["active"] = bool(changes["active"])

            self._write(data)

        after = self._cluster(raw)
        changed = before.fingerprint() != after.fingerprint() or before.active != after.active
        logger.info("Cluster connection '%s' updated (connection changed: %s)", after.name, changed)
        return after, changed

    async def delete_cluster(self, cluster_id: str) -> ClusterConnection:
        """Delete the cluster and every assignment referencing it."""
        async with self._lock:
            data = self._read()
            raw = self._require(data, "clusters", cluster_id)
            del data["clusters"][cluster_id]
            before = len(data["assignments"])
            data["assignments"] = [a for a in data["assignments"] if a[1] != cluster_id]
            self._write(data)
        logger.info(
            "Cluster connection '%s' deleted, %d assignment(s) removed",
            raw["name"],
            before - len(data["assignments"]),
        )
        return self._cluster(raw)

    # ── Users ─────────────────────────────────────────────────────────────────

    async def list_users(self) -> list[User]:
        data = await self._load()
        return sorted((User(**u) for u in data["users"].values()), key=lambda u: u.username.lower())

    async def get_user(self, user_id: str) -> User | None:
        data = await self._load()
        raw = data["users"].get(user_id)
        return User(**raw) if raw else None

    async def find_user_by_username(self, username: str) -> User | None:
        for user in await self.list_users():
            if user.username == username:
                return user
        return None

    async def create_user(self, username: str, role: UserRole = UserRole.USER) -> User:
        async with self._lock:
            data = self._read()
            if any(u["username"] == username for u in data["users"].values()):
                raise DuplicateError(f"User already exists: {username}")
            raw = {
                "id": str(uuid.uuid4()),
                "username": username,
                "role": role.value,
                "created_at": datetime.now(UTC).isoformat(),
            }
            data["users"][raw["id"]] = raw
            self._write(data)
        logger.info("User '%s' created with role %s", username, role.value)
        return User(**raw)

    async def delete_user(self, user_id: str) -> None:
        async with self._lock:
            data = self._read()
            self._require(data, "users", user_id)
            del data["users"][user_id]
            data["assignments"] = [a for a in data["assignments"] if a[0] != user_id]
            self._write(data)

    # ── Assignments ───────────────────────────────────────────────────────────

    async def assign_user(self, cluster_id: str, user_id: str) -> None:
        async with self._lock:
            data = self._read()
            self._require(data, "clusters", cluster_id)
            self._require(data, "users", user_id)
            if [user_id, cluster_id] not in data["assignments"]:
                data["assignments"].append([user_id, cluster_id])
                self._write(data)

    async def unassign_user(self, cluster_id: str, user_id: str) -> None:
        async with self._lock:
            data = self._read()
            self._require(data, "clusters", cluster_id)
            self._require(data, "users", user_id)
            data["assignments"] = [a for a in data["assignments"] if a != [user_id, cluster_id]]
            self._write(data)

    async def set_cluster_users(self, cluster_id: str, user_ids: Iterable[str]) -> None:
        """Replace the set of users assigned to *cluster_id*."""
        user_ids = list(dict.fromkeys(user_ids))
        async with self._lock:
            data = self._read()
            self._require(data, "clusters", cluster_id)
            for user_id in user_ids:
                self._require(data, "users", user_id)
            kept = [a for a in data["assignments"] if a[1] != cluster_id]
            data["assignments"] = kept + [[user_id, cluster_id] for user_id in user_ids]
            self._write(data)

    async def assigned_cluster_ids(self, user_id: str) -> frozenset[str]:
        data = await self._load()
        return frozenset(cluster_id for uid, cluster_id in data["assignments"] if uid == user_id)

    async def clusters_for_user(self, user_id: str, active_only: bool = False) -> list[ClusterConnection]:
        assigned = await self.assigned_cluster_ids(user_id)
        return [c for c in await self.list_clusters() if c.id in assigned and (c.active or not active_only)]

    async def users_for_cluster(self, cluster_id: str) -> list[User]:
        data = await self._load()
        self._require(data, "clusters", cluster_id)
        user_ids = {uid for uid, cid in data["assignments"] if cid == cluster_id}
        return [u for u in await self.list_users() if u.id in user_ids]

    async def users_not_assigned_to_cluster(self, cluster_id: str) -> list[User]:
        assigned = {u.id for u in await self.users_for_cluster(cluster_id)}
        return [u for u in await self.list_users() if u.id not in assigned]

    async def ensure_admin(self, username: str) -> User | None:
        """Create *username* as administrator if the store has no administrator yet."""
        if not username:
            return None
        for user in await self.list_users():
            if user.role == UserRole.ADMINISTRATOR:
                return None
        user = await self.create_user(username, UserRole.ADMINISTRATOR)
        logger.info("Bootstrap administrator '%s' created (%s)", username, user.id)
        return user
