"""
Dimension store interface and the in-memory implementation.

A store answers code -> dimension id lookups and owns the pending-entry
backlog for codes nobody has mapped yet. The pipeline only reads and
creates; resolving and rejecting belong to reviewers.
"""

import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Protocol

from src.core.models import DimensionType, PendingEntry, PendingStatus


def normalize_code(code: str) -> str:
    """Codes are compared trimmed and upper-cased."""
    return " ".join(str(code).split()).upper()


class PendingEntryClosed(ValueError):
    """Raised when a reviewer acts on an entry that is no longer pending."""

    def __init__(self, entry: PendingEntry):
        self.entry = entry
        super().__init__(f"Pending entry {entry.pending_id} is already {entry.status.value}")


class DimensionStore(Protocol):
    """Operations the engine needs from dimension storage."""

    def lookup(self, organization_id: str, dimension_type: DimensionType, code: str) -> str | None:
        ...

    def register(self, organization_id: str, dimension_type: DimensionType, code: str, dimension_id: str) -> None:
        ...

    def create_pending(
        self,
        organization_id: str,
        dimension_type: DimensionType,
        code: str,
        file_id: str | None = None,
    ) -> PendingEntry:
        ...

    def get_pending(self, pending_id: str) -> PendingEntry | None:
        ...

    def list_pending(
        self,
        organization_id: str | None = None,
        status: PendingStatus | None = PendingStatus.PENDING,
        dimension_type: DimensionType | None = None,
    ) -> list[PendingEntry]:
        ...

    def resolve_pending(
        self, pending_id: str, resolved_value: str, actor: str, notes: str | None = None
    ) -> PendingEntry:
        ...

    def reject_pending(self, pending_id: str, actor: str, notes: str | None = None) -> PendingEntry:
        ...

    def pending_history(self, pending_id: str) -> list[dict[str, Any]]:
        ...


class InMemoryDimensionStore:
    """
    Thread-safe store kept in process memory.

    Used by unit tests and dry runs. Deduplication of pending entries happens
    under a single lock, which plays the role of the uniqueness constraint in
    the PostgreSQL store.
    """

    def __init__(self, references: dict[tuple[str, str, str], str] | None = None):
        """
        Initialize store.

        Args:
            references: Optional seed of (organization, type, code) -> dimension id
        """
        self._lock = threading.Lock()
        self._references: dict[tuple[str, str, str], str] = {}
        self._pending: dict[str, PendingEntry] = {}
        self._pending_by_code: dict[tuple[str, str, str], str] = {}
        self._history: dict[str, list[dict[str, Any]]] = {}

        for (org, dim_type, code), dimension_id in (references or {}).items():
            self._references[(org, DimensionType(dim_type).value, normalize_code(code))] = dimension_id

    @staticmethod
    def _key(organization_id: str, dimension_type: DimensionType, code: str) -> tuple[str, str, str]:
        return organization_id, DimensionType(dimension_type).value, normalize_code(code)

    def lookup(self, organization_id: str, dimension_type: DimensionType, code: str) -> str | None:
        return self._references.get(self._key(organization_id, dimension_type, code))

    def register(self, organization_id: str, dimension_type: DimensionType, code: str, dimension_id: str) -> None:
        with self._lock:
            self._references[self._key(organization_id, dimension_type, code)] = dimension_id

    def create_pending(
        self,
        organization_id: str,
        dimension_type: DimensionType,
        code: str,
        file_id: str | None = None,
    ) -> PendingEntry:
        key = self._key(organization_id, dimension_type, code)
        with self._lock:
            existing = self._pending_by_code.get(key)
            if existing is not None:
                return self._pending[existing]

            entry = PendingEntry(
                pending_id=str(uuid.uuid4()),
                organization_id=organization_id,
                dimension_type=DimensionType(dimension_type),
                code=key[2],
                first_seen_file_id=file_id,
            )
            self._pending[entry.pending_id] = entry
            self._pending_by_code[key] = entry.pending_id
            self._history[entry.pending_id] = [
                {
                    "from_status": None,
                    "to_status": PendingStatus.PENDING.value,
                    "actor": None,
                    "notes": None,
                    "file_id": file_id,
                    "created_at": entry.created_at,
                }
            ]
            return entry

    def get_pending(self, pending_id: str) -> PendingEntry | None:
        return self._pending.get(pending_id)

    def list_pending(
        self,
        organization_id: str | None = None,
        status: PendingStatus | None = PendingStatus.PENDING,
        dimension_type: DimensionType | None = None,
    ) -> list[PendingEntry]:
        with self._lock:
            entries = list(self._pending.values())
        return [
            e
            for e in sorted(entries, key=lambda e: e.created_at)
            if (organization_id is None or e.organization_id == organization_id)
            and (status is None or e.status == status)
            and (dimension_type is None or e.dimension_type == dimension_type)
        ]

    def _close(
        self,
        pending_id: str,
        status: PendingStatus,
        actor: str,
        notes: str | None,
        resolved_value: str | None = None,
    ) -> PendingEntry:
        with self._lock:
            entry = self._pending.get(pending_id)
            if entry is None:
                raise KeyError(f"Pending entry not found: {pending_id}")
            if not entry.is_open:
                raise PendingEntryClosed(entry)

            now = datetime.now(timezone.utc)
            updated = entry.model_copy(
                update={
                    "status": status,
                    "resolved_value": resolved_value,
                    "resolved_by": actor,
                    "notes": notes,
                    "updated_at": now,
                }
            )
            self._pending[pending_id] = updated
            if resolved_value is not None:
                key = self._key(entry.organization_id, entry.dimension_type, entry.code)
                self._references[key] = resolved_value
            self._history[pending_id].append(
                {
                    "from_status": entry.status.value,
                    "to_status": status.value,
                    "actor": actor,
                    "notes": notes,
                    "file_id": None,
                    "created_at": now,
                }
            )
            return updated

    def resolve_pending(
        self, pending_id: str, resolved_value: str, actor: str, notes: str | None = None
    ) -> PendingEntry:
        return self._close(pending_id, PendingStatus.RESOLVED, actor, notes, resolved_value=resolved_value)

    def reject_pending(self, pending_id: str, actor: str, notes: str | None = None) -> PendingEntry:
        return self._close(pending_id, PendingStatus.REJECTED, actor, notes)

    def pending_history(self, pending_id: str) -> list[dict[str, Any]]:
        return list(self._history.get(pending_id, []))
