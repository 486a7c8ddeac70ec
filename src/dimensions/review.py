"""
Reviewer actions on the pending-entry backlog.
"""

from src.core.models import PendingEntry
from src.observability.logger import get_logger
from src.warehouse.audit import AuditSink

from .resolver import DimensionResolver
from .store import DimensionStore

logger = get_logger(__name__)


class PendingReviewService:
    """
    Resolves or rejects pending entries on behalf of a reviewer.

    Each action is recorded in the entry's history by the store and emits
    one audit event.
    """

    def __init__(
        self,
        store: DimensionStore,
        audit: AuditSink,
        resolver: DimensionResolver | None = None,
    ):
        """
        Initialize review service.

        Args:
            store: Dimension store holding the backlog
            audit: Audit sink
            resolver: Resolver whose cache must forget reviewed codes (optional)
        """
        self.store = store
        self.audit = audit
        self.resolver = resolver

    def list(self, organization_id: str | None = None) -> list[PendingEntry]:
        """Open entries, oldest first."""
        return self.store.list_pending(organization_id)

    def resolve(
        self, pending_id: str, resolved_value: str, actor: str, notes: str | None = None
    ) -> PendingEntry:
        """
        Map a pending code to a dimension id.

        Raises:
            KeyError: If the entry does not exist
            PendingEntryClosed: If the entry is already resolved or rejected
        """
        entry = self.store.resolve_pending(pending_id, resolved_value, actor, notes)
        if self.resolver is not None:
            self.resolver.invalidate(entry.organization_id, entry.dimension_type, entry.code)

        self.audit.log_event(
            "info",
            "pending_entry_resolved",
            f"{entry.dimension_type.value} code {entry.code} resolved to {resolved_value}",
            details={
                "pending_id": pending_id,
                "dimension_type": entry.dimension_type.value,
                "code": entry.code,
                "resolved_value": resolved_value,
                "actor": actor,
                "notes": notes,
            },
            organization_id=entry.organization_id,
            file_id=entry.first_seen_file_id,
        )
        logger.info(
            f"Pending entry {pending_id} resolved by {actor}",
            extra={"organization_id": entry.organization_id, "code": entry.code},
        )
        return entry

    def reject(self, pending_id: str, actor: str, notes: str | None = None) -> PendingEntry:
        """
        Mark a pending code as invalid.

        Raises:
            KeyError: If the entry does not exist
            PendingEntryClosed: If the entry is already resolved or rejected
        """
        entry = self.store.reject_pending(pending_id, actor, notes)
        if self.resolver is not None:
            self.resolver.invalidate(entry.organization_id, entry.dimension_type, entry.code)

        self.audit.log_event(
            "info",
            "pending_entry_rejected",
            f"{entry.dimension_type.value} code {entry.code} rejected",
            details={
                "pending_id": pending_id,
                "dimension_type": entry.dimension_type.value,
                "code": entry.code,
                "actor": actor,
                "notes": notes,
            },
            organization_id=entry.organization_id,
            file_id=entry.first_seen_file_id,
        )
        logger.info(
            f"Pending entry {pending_id} rejected by {actor}",
            extra={"organization_id": entry.organization_id, "code": entry.code},
        )
        return entry
