"""
Unit tests for the duplicate-upload gate
"""

import hashlib

import pytest

from src.core.errors import DuplicateFileError
from src.core.models import FileProcessingState, FileState
from src.lifecycle import ChecksumService, compute_checksum

CONTENT = b"data;curral;kg\n2025-01-15;C01;100\n"
CHECKSUM = hashlib.sha256(CONTENT).hexdigest()


class FakeFileStateRepository:
    """Keeps file records and reprocessing log entries in memory"""

    def __init__(self, files=None):
        self.files = list(files or [])
        self.reprocessing = []

    def find_by_checksum(self, organization_id, checksum):
        return [f for f in self.files if f.organization_id == organization_id and f.checksum == checksum]

    def log_reprocessing(self, record):
        self.reprocessing.append(record)


def existing_file(state, retries_exhausted=False, organization_id="org-1"):
    return FileProcessingState(
        file_id=f"file-{state.value}",
        organization_id=organization_id,
        file_name="desvio.csv",
        pipeline_type="loading_deviation",
        checksum=CHECKSUM,
        state=state,
        retries_exhausted=retries_exhausted,
    )


@pytest.mark.unit
class TestComputeChecksum:
    def test_sha256_hex(self):
        assert compute_checksum(CONTENT) == CHECKSUM
        assert len(compute_checksum(b"")) == 64

    def test_any_byte_change_changes_checksum(self):
        assert compute_checksum(CONTENT) != compute_checksum(CONTENT.replace(b"100", b"101"))


@pytest.mark.unit
class TestChecksumService:
    """Tests for ChecksumService.check"""

    def test_new_content_passes(self):
        decision = ChecksumService(FakeFileStateRepository()).check("org-1", CHECKSUM)

        assert decision.original is None
        assert decision.is_reprocess is False

    def test_other_organization_does_not_block(self):
        repository = FakeFileStateRepository([existing_file(FileState.LOADED, organization_id="org-2")])
        assert ChecksumService(repository).check("org-1", CHECKSUM).original is None

    def test_loaded_duplicate_rejected(self):
        repository = FakeFileStateRepository([existing_file(FileState.LOADED)])

        with pytest.raises(DuplicateFileError) as exc_info:
            ChecksumService(repository).check("org-1", CHECKSUM)

        assert exc_info.value.original_file_id == "file-loaded"
        assert exc_info.value.original_state == "loaded"

    def test_in_progress_duplicate_rejected(self):
        repository = FakeFileStateRepository([existing_file(FileState.VALIDATING)])
        with pytest.raises(DuplicateFileError):
            ChecksumService(repository).check("org-1", CHECKSUM)

    @pytest.mark.parametrize("state", [FileState.FAILED, FileState.CANCELLED])
    def test_failed_or_cancelled_may_be_reprocessed(self, state):
        repository = FakeFileStateRepository([existing_file(state)])

        decision = ChecksumService(repository).check("org-1", CHECKSUM)

        assert decision.is_reprocess is True
        assert decision.forced is False
        assert decision.original.file_id == f"file-{state.value}"

    def test_exhausted_failure_needs_force(self):
        repository = FakeFileStateRepository([existing_file(FileState.FAILED, retries_exhausted=True)])
        service = ChecksumService(repository)

        with pytest.raises(DuplicateFileError):
            service.check("org-1", CHECKSUM)

        decision = service.check("org-1", CHECKSUM, force=True, reason="fixed export", actor="ana")
        assert decision.forced is True

    def test_force_overrides_loaded(self):
        repository = FakeFileStateRepository([existing_file(FileState.LOADED)])

        decision = ChecksumService(repository).check(
            "org-1", CHECKSUM, force=True, reason="corrected diet codes", actor="ana"
        )

        assert decision.is_reprocess is True
        assert decision.forced is True
        assert decision.reason == "corrected diet codes"

    @pytest.mark.parametrize("reason,actor", [(None, "ana"), ("fix", None), ("", "")])
    def test_force_requires_reason_and_actor(self, reason, actor):
        with pytest.raises(ValueError, match="reason and an actor"):
            ChecksumService(FakeFileStateRepository()).check("org-1", CHECKSUM, force=True, reason=reason, actor=actor)


@pytest.mark.unit
class TestRecordReprocess:
    """Tests for ChecksumService.record_reprocess"""

    def test_forced_reprocess_is_logged_and_audited(self, recording_audit):
        repository = FakeFileStateRepository([existing_file(FileState.LOADED)])
        service = ChecksumService(repository, audit=recording_audit)
        decision = service.check("org-1", CHECKSUM, force=True, reason="late corrections", actor="ana")

        record = service.record_reprocess(decision, "file-new", run_id="run-1")

        assert record.original_file_id == "file-loaded"
        assert record.requested_by == "ana"
        assert record.forced is True
        assert repository.reprocessing == [record]

        event = recording_audit.events[0]
        assert event.action == "forced_reprocess"
        assert event.level == "warning"
        assert event.details["reason"] == "late corrections"
        assert event.file_id == "file-new"

    def test_retry_of_failed_file_is_info(self, recording_audit):
        repository = FakeFileStateRepository([existing_file(FileState.FAILED)])
        service = ChecksumService(repository, audit=recording_audit)

        service.record_reprocess(service.check("org-1", CHECKSUM), "file-failed")

        assert recording_audit.actions() == ["reprocess"]
        assert recording_audit.events[0].level == "info"

    def test_only_reprocess_decisions_recorded(self):
        service = ChecksumService(FakeFileStateRepository())
        with pytest.raises(ValueError):
            service.record_reprocess(service.check("org-1", CHECKSUM), "file-1")
