"""
Integration tests for the PostgreSQL dimension store and pending review.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from src.core.models import DimensionType, PendingStatus
from src.dimensions import DimensionResolver, PendingEntryClosed, PendingReviewService, PostgresDimensionStore
from src.warehouse.audit import AuditTrail


@pytest.fixture
def store(db_pool):
    return PostgresDimensionStore(db_pool)


@pytest.mark.integration
class TestReferences:
    """Tests for lookup and register"""

    def test_lookup_normalizes_code(self, store):
        store.register("org-1", DimensionType.PEN, " cur-001 ", "pen-1")

        assert store.lookup("org-1", "pen", "CUR-001") == "pen-1"
        assert store.lookup("org-1", "pen", "cur-001") == "pen-1"
        assert store.lookup("org-2", "pen", "CUR-001") is None

    def test_register_replaces_mapping(self, store):
        store.register("org-1", "diet", "D1", "diet-1")
        store.register("org-1", "diet", "D1", "diet-2")

        assert store.lookup("org-1", "diet", "D1") == "diet-2"


@pytest.mark.integration
class TestPendingEntries:
    """Tests for pending entry creation and closing"""

    def test_create_is_idempotent(self, store):
        first = store.create_pending("org-1", "diet", "adaptacao", file_id="file-1")
        second = store.create_pending("org-1", "diet", "ADAPTACAO", file_id="file-2")

        assert first.pending_id == second.pending_id
        assert second.code == "ADAPTACAO"
        assert second.first_seen_file_id == "file-1"
        assert len(store.list_pending("org-1")) == 1

    def test_concurrent_creation_yields_one_entry(self, store):
        """Test that racing workers share a single pending entry"""
        with ThreadPoolExecutor(max_workers=6) as executor:
            entries = list(
                executor.map(lambda i: store.create_pending("org-1", "pen", "CUR-099", file_id=f"f-{i}"), range(24))
            )

        assert len({e.pending_id for e in entries}) == 1
        assert len(store.list_pending()) == 1
        assert len(store.pending_history(entries[0].pending_id)) == 1

    def test_resolve_registers_reference(self, store):
        entry = store.create_pending("org-1", "pen", "CUR-099", file_id="file-1")

        resolved = store.resolve_pending(entry.pending_id, "pen-99", actor="ana", notes="new pen")

        assert resolved.status == PendingStatus.RESOLVED
        assert resolved.resolved_value == "pen-99"
        assert store.lookup("org-1", "pen", "CUR-099") == "pen-99"
        assert store.list_pending("org-1") == []
        assert [e.pending_id for e in store.list_pending(status=None)] == [entry.pending_id]

    def test_history_records_every_change(self, store):
        entry = store.create_pending("org-1", "equipment", "TRATOR", file_id="file-1")
        store.reject_pending(entry.pending_id, actor="bruno", notes="not a mixer")

        history = store.pending_history(entry.pending_id)
        assert [(h["from_status"], h["to_status"]) for h in history] == [
            (None, "pending"),
            ("pending", "rejected"),
        ]
        assert history[0]["file_id"] == "file-1"
        assert history[1]["actor"] == "bruno"

    def test_closed_entry_cannot_change(self, store):
        entry = store.create_pending("org-1", "pen", "CUR-099")
        store.reject_pending(entry.pending_id, actor="ana")

        with pytest.raises(PendingEntryClosed):
            store.resolve_pending(entry.pending_id, "pen-99", actor="ana")

    def test_unknown_entry(self, store):
        with pytest.raises(KeyError):
            store.reject_pending("missing", actor="ana")


@pytest.mark.integration
class TestReviewWithResolver:
    """Tests for review actions against a live resolver"""

    def test_resolved_code_is_used_by_next_rows(self, store, db_pool, loading_definition):
        resolver = DimensionResolver(store, loading_definition.dimensions)
        review = PendingReviewService(store, AuditTrail(db_pool), resolver=resolver)

        before = resolver.resolve_code("org-1", "diet", "ADAPTACAO", file_id="file-1")
        assert before.resolved is False

        review.resolve(before.pending_id, "diet-7", actor="ana")
        after = resolver.resolve_code("org-1", "diet", "ADAPTACAO", file_id="file-2")

        assert after.dimension_id == "diet-7"
        events = AuditTrail(db_pool).query_events(action="pending_entry_resolved")
        assert len(events) == 1
        assert events[0].details["resolved_value"] == "diet-7"
        assert events[0].file_id == "file-1"
