"""Append-only JSON-lines store for write-operation audit records.

One record per line at ``settings.audit_store_path``.  Records are never
updated or deleted here; retention is handled outside the service.

Referential integrity is checked at write time: the actor and the cluster
named by a record must exist in the credential store when the record is
appended.  Nothing is re-checked retroactively.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError

from rabbitmq_admin.clients.credential_store import CredentialStore
from rabbitmq_admin.errors import AuditPersistenceFailure
from rabbitmq_admin.models import AuditFilter, AuditRecord

logger = logging.getLogger(__name__)


class AuditStore:
    def __init__(self, path: str | Path, credential_store: CredentialStore) -> None:
        self._path = Path(path)
        self._credentials = credential_store
        self._lock = asyncio.Lock()

    async def append(self, record: AuditRecord) -> None:
        """Persist *record*.

        Raises:
            AuditPersistenceFailure: the actor or cluster does not exist, or
                the file could not be written.
        """
        if await self._credentials.get_user(record.user_id) is None:
            raise AuditPersistenceFailure(f"Audit actor does not exist: {record.user_id}")
        if await self._credentials.describe_cluster(record.cluster_id) is None:
            raise AuditPersistenceFailure(f"Audit cluster does not exist: {record.cluster_id}")

        line = record.model_dump_json() + "\n"
        async with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("a", encoding="utf-8") as fh:
                    fh.write(line)
            except OSError as exc:
                raise AuditPersistenceFailure(f"Audit log {self._path} is not writable: {exc}") from exc

    async def _read_all(self) -> list[AuditRecord]:
        if not self._path.exists():
            return []
        async with self._lock:
            lines = self._path.read_text(encoding="utf-8").splitlines()
        records = []
        for lineno, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                records.append(AuditRecord.model_validate_json(line))
            except ValidationError:
                logger.warning("Skipping malformed audit record at %s:%d", self._path, lineno)
        return records

    async def query(
        self, filters: AuditFilter | None = None, page: int = 0, size: int = 50
    ) -> tuple[list[AuditRecord], int]:
        """Return one page of matching records (newest first) and the total match count."""
        filters = filters or AuditFilter()
        matches = [r for r in await self._read_all() if _matches(r, filters)]
        matches.sort(key=lambda r: r.timestamp, reverse=True)
        start = page * size
        return matches[start : start + size], len(matches)


def _contains(value: str, needle: str | None) -> bool:
    return not needle or needle.strip().lower() in value.lower()


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _matches(record: AuditRecord, f: AuditFilter) -> bool:
    if not _contains(record.username, f.username):
        return False
    if not _contains(record.cluster_name, f.cluster_name):
        return False
    if not _contains(record.resource_name, f.resource_name):
        return False
    if f.resource_type:
        wanted = {t.strip().lower() for t in f.resource_type.split(",") if t.strip()}
        if wanted and record.resource_type.lower() not in wanted:
            return False
    if f.operation_type is not None and record.operation_type != f.operation_type:
        return False
    if f.status is not None and record.status != f.status:
        return False
    if f.start_time is not None and record.timestamp < _aware(f.start_time):
        return False
    if f.end_time is not None and record.timestamp > _aware(f.end_time):
        return False
    return True
