"""
Unit tests for dimension resolution and pending-entry review
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from src.core.models import DimensionType, EnrichmentStatus, PendingStatus
from src.core.rules import DimensionFieldConfig
from src.dimensions import (
    DimensionResolver,
    InMemoryDimensionStore,
    PendingEntryClosed,
    PendingReviewService,
    enrichment_status,
    normalize_code,
)

FIELDS = [
    DimensionFieldConfig(field="curral_codigo", type=DimensionType.PEN, critical=True),
    DimensionFieldConfig(field="dieta_nome", type=DimensionType.DIET),
    DimensionFieldConfig(field="equipamento", type=DimensionType.EQUIPMENT),
]


@pytest.fixture
def store():
    return InMemoryDimensionStore({
        ("org-1", "pen", "CUR-001"): "pen-1",
        ("org-1", "diet", "DIETA A"): "diet-1",
        ("org-1", "equipment", "BAHMAN"): "eq-1",
    })


@pytest.fixture
def resolver(store):
    return DimensionResolver(store, FIELDS)


def row(**overrides):
    values = {"curral_codigo": "CUR-001", "dieta_nome": "Dieta A", "equipamento": "BAHMAN"}
    values.update(overrides)
    return values


@pytest.mark.unit
class TestEnrichmentStatus:
    @pytest.mark.parametrize("resolved,total,expected", [
        (3, 3, EnrichmentStatus.SUCCESS),
        (0, 0, EnrichmentStatus.SUCCESS),
        (1, 3, EnrichmentStatus.PARTIAL),
        (0, 2, EnrichmentStatus.NO_MATCH),
    ])
    def test_status(self, resolved, total, expected):
        assert enrichment_status(resolved, total) == expected

    def test_normalize_code(self):
        assert normalize_code("  cur   001 ") == "CUR 001"


@pytest.mark.unit
class TestDimensionResolver:
    """Tests for DimensionResolver"""

    def test_all_codes_known(self, resolver):
        resolution = resolver.resolve("org-1", row(), file_id="f-1")

        assert resolution.status == EnrichmentStatus.SUCCESS
        assert resolution.references["pen"].dimension_id == "pen-1"
        assert resolution.references["diet"].dimension_id == "diet-1"
        assert resolution.unresolved == []

    def test_unknown_code_creates_pending_entry(self, resolver, store):
        resolution = resolver.resolve("org-1", row(dieta_nome="Dieta Z"), file_id="f-1")

        assert resolution.status == EnrichmentStatus.PARTIAL
        reference = resolution.references["diet"]
        assert reference.dimension_id is None
        assert reference.code == "DIETA Z"

        entry = store.get_pending(reference.pending_id)
        assert entry.status == PendingStatus.PENDING
        assert entry.first_seen_file_id == "f-1"
        assert resolution.unresolved[0].dimension_type == "diet"
        assert resolution.pending_ids == [reference.pending_id]
        assert resolution.critical_unresolved == []

    def test_critical_dimension_reported(self, resolver):
        resolution = resolver.resolve("org-1", row(curral_codigo="CUR-999"))
        assert resolution.critical_unresolved == ["pen"]

    def test_nothing_resolves(self, resolver):
        resolution = resolver.resolve("org-2", row())
        assert resolution.status == EnrichmentStatus.NO_MATCH
        assert len(resolution.unresolved) == 3

    def test_empty_codes_are_skipped(self, resolver):
        resolution = resolver.resolve("org-1", row(dieta_nome=None, equipamento="  "))

        assert set(resolution.references) == {"pen"}
        assert resolution.status == EnrichmentStatus.SUCCESS

    def test_codes_are_scoped_per_organization(self, resolver, store):
        resolver.resolve("org-2", row())
        assert store.list_pending("org-1") == []
        assert len(store.list_pending("org-2")) == 3

    def test_repeated_code_reuses_pending_entry(self, resolver, store):
        first = resolver.resolve_code("org-1", DimensionType.PEN, "CUR-999", file_id="f-1")
        second = resolver.resolve_code("org-1", DimensionType.PEN, " cur-999 ", file_id="f-2")

        assert first.pending_id == second.pending_id
        assert len(store.list_pending("org-1")) == 1
        assert [e.pending_id for e in resolver.pending_entries] == [first.pending_id]

    def test_concurrent_unknown_code_yields_one_entry(self, store):
        """Many threads seeing the same unknown code create a single pending entry"""
        resolver = DimensionResolver(store, FIELDS)

        with ThreadPoolExecutor(max_workers=16) as executor:
            references = list(executor.map(
                lambda i: resolver.resolve_code("org-1", DimensionType.DIET, "Dieta Nova", file_id="f-1"),
                range(64),
            ))

        assert len({r.pending_id for r in references}) == 1
        assert len(store.list_pending("org-1", dimension_type=DimensionType.DIET)) == 1

    def test_cache_avoids_store_lookups(self, store):
        calls = []
        original_lookup = store.lookup

        def counting_lookup(*args):
            calls.append(args)
            return original_lookup(*args)

        store.lookup = counting_lookup
        resolver = DimensionResolver(store, FIELDS)
        for _ in range(5):
            resolver.resolve_code("org-1", DimensionType.PEN, "CUR-001")

        assert len(calls) == 1

    def test_clear_cache(self, resolver):
        resolver.resolve_code("org-1", DimensionType.PEN, "CUR-999")
        resolver.clear_cache()
        assert resolver.pending_entries == []


@pytest.mark.unit
class TestPendingReviewService:
    """Tests for reviewer actions"""

    def test_resolve_maps_future_rows(self, store, resolver, recording_audit):
        reference = resolver.resolve_code("org-1", DimensionType.PEN, "CUR-999", file_id="f-1")
        service = PendingReviewService(store, recording_audit, resolver=resolver)

        entry = service.resolve(reference.pending_id, "pen-9", actor="ana", notes="new pen")

        assert entry.status == PendingStatus.RESOLVED
        assert entry.resolved_by == "ana"
        assert store.lookup("org-1", DimensionType.PEN, "cur-999") == "pen-9"
        assert resolver.resolve_code("org-1", DimensionType.PEN, "CUR-999").dimension_id == "pen-9"

        event = recording_audit.events[0]
        assert event.action == "pending_entry_resolved"
        assert event.details["resolved_value"] == "pen-9"
        assert event.file_id == "f-1"

    def test_reject(self, store, resolver, recording_audit):
        reference = resolver.resolve_code("org-1", DimensionType.DIET, "LIXO")
        service = PendingReviewService(store, recording_audit, resolver=resolver)

        entry = service.reject(reference.pending_id, actor="ana", notes="typo")

        assert entry.status == PendingStatus.REJECTED
        assert service.list("org-1") == []
        assert recording_audit.actions() == ["pending_entry_rejected"]

    def test_closed_entry_cannot_be_reviewed_again(self, store, resolver, recording_audit):
        reference = resolver.resolve_code("org-1", DimensionType.DIET, "LIXO")
        service = PendingReviewService(store, recording_audit)
        service.reject(reference.pending_id, actor="ana")

        with pytest.raises(PendingEntryClosed, match="already rejected"):
            service.resolve(reference.pending_id, "diet-9", actor="bruno")
        assert len(recording_audit.events) == 1

    def test_unknown_entry(self, store, recording_audit):
        with pytest.raises(KeyError):
            PendingReviewService(store, recording_audit).resolve("missing", "x", actor="ana")

    def test_history_records_every_status_change(self, store, resolver, recording_audit):
        reference = resolver.resolve_code("org-1", DimensionType.PEN, "CUR-999", file_id="f-1")
        PendingReviewService(store, recording_audit).resolve(reference.pending_id, "pen-9", actor="ana")

        history = store.pending_history(reference.pending_id)

        assert [(h["from_status"], h["to_status"]) for h in history] == [
            (None, "pending"),
            ("pending", "resolved"),
        ]
        assert history[0]["file_id"] == "f-1"
        assert history[1]["actor"] == "ana"
