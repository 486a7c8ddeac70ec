"""
Dimension resolution for validated records.
"""

import threading

from pydantic import BaseModel, ConfigDict, Field

from src.core.errors import DimensionUnresolved
from src.core.models import DimensionReference, DimensionType, EnrichmentStatus, PendingEntry
from src.core.rules import DimensionFieldConfig
from src.observability.logger import get_logger
from src.observability.metrics import increment_counter, pending_entries_created_total

from .store import DimensionStore, normalize_code

logger = get_logger(__name__)


class DimensionResolution(BaseModel):
    """
    Outcome of resolving every dimension field of one row.

    Attributes:
        references: Dimension type -> reference
        status: SUCCESS, PARTIAL or NO_MATCH
        unresolved: One DimensionUnresolved per code that fell back to a pending entry
        critical_unresolved: Dimension types flagged critical that did not resolve
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    references: dict[str, DimensionReference] = Field(default_factory=dict)
    status: EnrichmentStatus = EnrichmentStatus.SUCCESS
    unresolved: list[DimensionUnresolved] = Field(default_factory=list)
    critical_unresolved: list[str] = Field(default_factory=list)

    @property
    def pending_ids(self) -> list[str]:
        return [u.pending_id for u in self.unresolved if u.pending_id]


def enrichment_status(resolved: int, total: int) -> EnrichmentStatus:
    """
    Status from resolved/total counts.

    A row with no dimension codes at all has nothing to enrich and counts as
    SUCCESS.
    """
    if resolved == total:
        return EnrichmentStatus.SUCCESS
    if resolved == 0:
        return EnrichmentStatus.NO_MATCH
    return EnrichmentStatus.PARTIAL


class DimensionResolver:
    """
    Resolves business codes through a store with a process-local cache.

    Hits and pending ids are memoized per (organization, type, code). The
    cache is safe to share across validation threads; pending-entry
    deduplication itself is left to the store.
    """

    def __init__(self, store: DimensionStore, fields: list[DimensionFieldConfig]):
        """
        Initialize resolver.

        Args:
            store: Dimension store
            fields: Dimension fields of the pipeline
        """
        self.store = store
        self.fields = fields
        self._lock = threading.Lock()
        self._resolved: dict[tuple[str, str, str], str] = {}
        self._pending: dict[tuple[str, str, str], str] = {}
        self._created: dict[str, PendingEntry] = {}

    def clear_cache(self) -> None:
        """Forget memoized lookups and the per-run pending backlog."""
        with self._lock:
            self._resolved.clear()
            self._pending.clear()
            self._created.clear()

    def invalidate(self, organization_id: str, dimension_type: DimensionType, code: str) -> None:
        """Drop one code from the cache (after a reviewer resolved it)."""
        key = (organization_id, DimensionType(dimension_type).value, normalize_code(code))
        with self._lock:
            self._resolved.pop(key, None)
            self._pending.pop(key, None)

    @property
    def pending_entries(self) -> list[PendingEntry]:
        """Pending entries touched since the last ``clear_cache``."""
        with self._lock:
            return list(self._created.values())

    def resolve_code(
        self,
        organization_id: str,
        dimension_type: DimensionType,
        code: str,
        file_id: str | None = None,
    ) -> DimensionReference:
        """
        Resolve one code, creating a pending entry when it is unknown.

        Returns:
            Reference with ``dimension_id`` set, or with ``pending_id`` set
        """
        dim_type = DimensionType(dimension_type)
        normalized = normalize_code(code)
        key = (organization_id, dim_type.value, normalized)

        with self._lock:
            dimension_id = self._resolved.get(key)
            pending_id = self._pending.get(key)
        if dimension_id is not None:
            return DimensionReference(dimension_type=dim_type, code=normalized, dimension_id=dimension_id)
        if pending_id is not None:
            return DimensionReference(dimension_type=dim_type, code=normalized, pending_id=pending_id)

        dimension_id = self.store.lookup(organization_id, dim_type, normalized)
        if dimension_id is not None:
            with self._lock:
                self._resolved[key] = dimension_id
            return DimensionReference(dimension_type=dim_type, code=normalized, dimension_id=dimension_id)

        entry = self.store.create_pending(organization_id, dim_type, normalized, file_id=file_id)
        with self._lock:
            first_time = key not in self._pending
            self._pending[key] = entry.pending_id
            self._created[entry.pending_id] = entry
        if first_time and entry.first_seen_file_id == file_id:
            increment_counter(pending_entries_created_total, dimension_type=dim_type.value)
        logger.debug(
            f"Unknown {dim_type.value} code {normalized}, pending entry {entry.pending_id}",
            extra={"organization_id": organization_id, "file_id": file_id},
        )
        return DimensionReference(dimension_type=dim_type, code=normalized, pending_id=entry.pending_id)

    def resolve(
        self,
        organization_id: str,
        values: dict,
        file_id: str | None = None,
    ) -> DimensionResolution:
        """
        Resolve every configured dimension field of a row.

        Unknown codes never fail the row; they yield a pending reference and
        a DimensionUnresolved finding.

        Args:
            organization_id: Owning organization
            values: Cleansed row values
            file_id: File being processed (recorded on new pending entries)

        Returns:
            DimensionResolution for the row
        """
        resolution = DimensionResolution()
        resolved = 0
        total = 0

        for field in self.fields:
            code = values.get(field.field)
            if code is None or str(code).strip() == "":
                continue
            total += 1

            reference = self.resolve_code(organization_id, field.type, str(code), file_id=file_id)
            resolution.references[field.type.value] = reference
            if reference.resolved:
                resolved += 1
            else:
                resolution.unresolved.append(
                    DimensionUnresolved(field.type.value, reference.code, reference.pending_id)
                )
                if field.critical:
                    resolution.critical_unresolved.append(field.type.value)

        resolution.status = enrichment_status(resolved, total)
        return resolution
