"""Tests for the pending-duplicate queue: resolve, skip and FIFO ordering."""

import os
import zipfile
from pathlib import Path

import pytest

from conftest import make_documents
from roster_reconcile.models.reconciliation_models import (
    MatchingMode, PendingState, RosterRecord, SheetParseResult,
)
from roster_reconcile.services.document_indexer import get_document_index
from roster_reconcile.services.duplicate_resolution import (
    DuplicateResolutionWorkflow, Selection, parse_selections,
)
from roster_reconcile.services.matching_engine import match_records
from roster_reconcile.utils.error_handlers import (
    ConflictError, PendingNotFoundError, ResolutionMismatchError, ValidationError,
)

WANG_LEI_TICKETS = ["T-1-WANG LEI--a.pdf", "T-2-WANG LEI--b.pdf", "T-3-WANG LEI--c.pdf"]


@pytest.fixture
def workflow(finalizer):
    return DuplicateResolutionWorkflow(finalizer)


@pytest.fixture
def documents(session):
    make_documents(Path(session.extract_path), WANG_LEI_TICKETS + ["T-4-ZHOU JIE--d.pdf"])
    return get_document_index(session)


def queue_sheet(workflow, session, documents, sheet_name="Sheet1", upload_path=None, records=None):
    records = records or (
        RosterRecord(name="WANG LEI", id_card="110"),
        RosterRecord(name="WANG LEI", id_card="220"),
        RosterRecord(name="ZHOU JIE", id_card="330"),
        RosterRecord(name="LI NA", id_card="440"),
    )
    parsed = SheetParseResult(mode=MatchingMode.NAME_ONLY, records=tuple(records), sheet_name=sheet_name)
    result = match_records(parsed, documents)
    return workflow.enqueue(
        session,
        display_name=f"roster.xlsx ({sheet_name})",
        output_base_name=f"roster-{sheet_name}",
        sheet_name=sheet_name,
        match_result=result,
        total_records=len(records),
        upload_path=upload_path,
    )


class TestEnqueue:
    def test_entry_describes_duplicates(self, workflow, session, documents):
        entry = queue_sheet(workflow, session, documents)
        assert entry.state == PendingState.QUEUED
        assert entry.pending_id.startswith("s1-Sheet1-")
        descriptor = entry.to_descriptor()
        assert descriptor["matched"] == 1
        assert descriptor["total"] == 4
        assert [d["id_card"] for d in descriptor["duplicates"]] == ["110", "220"]
        assert all(len(d["options"]) == 3 for d in descriptor["duplicates"])
        assert entry.unmatched == [{"name": "LI NA", "id_card": "440"}]

    def test_pending_ids_are_unique(self, workflow, session, documents):
        first = queue_sheet(workflow, session, documents)
        second = queue_sheet(workflow, session, documents)
        assert first.pending_id != second.pending_id
        assert list(session.pending) == [first.pending_id, second.pending_id]

    def test_sheet_without_duplicates_is_not_queued(self, workflow, session, documents):
        with pytest.raises(ValueError):
            queue_sheet(workflow, session, documents, records=(RosterRecord(name="ZHOU JIE", id_card="1"),))


class TestResolve:
    def test_full_resolution_finalizes_sheet(self, workflow, session, documents):
        entry = queue_sheet(workflow, session, documents)
        processed, next_entry = workflow.resolve(session, entry.pending_id, [
            Selection(selected_filename="T-1-WANG LEI--a.pdf", record_index=0),
            Selection(selected_filename="T-3-WANG LEI--c.pdf", record_index=1),
        ])
        assert next_entry is None
        assert entry.pending_id not in session.pending
        assert entry.state == PendingState.RESOLVED
        assert session.processed_files == [processed]
        assert processed.matched_count == 3
        assert processed.total_count == 4
        assert processed.resolution == "resolved"
        with zipfile.ZipFile(processed.output_path) as zf:
            assert sorted(zf.namelist()) == ["T-1-WANG LEI--a.pdf", "T-3-WANG LEI--c.pdf", "T-4-ZHOU JIE--d.pdf"]

    def test_partial_selection_leaves_entry_untouched(self, workflow, session, documents):
        entry = queue_sheet(workflow, session, documents)
        before = entry.to_descriptor()
        with pytest.raises(ResolutionMismatchError) as exc_info:
            workflow.resolve(session, entry.pending_id, [
                Selection(selected_filename="T-1-WANG LEI--a.pdf", record_index=0),
            ])
        assert exc_info.value.details["missing_record_indexes"] == [1]
        assert session.pending[entry.pending_id] is entry
        assert entry.to_descriptor() == before
        assert session.processed_files == []

    def test_selection_by_name_and_id_card(self, workflow, session, documents):
        entry = queue_sheet(workflow, session, documents)
        processed, _ = workflow.resolve(session, entry.pending_id, [
            Selection(selected_filename="T-2-WANG LEI--b.pdf", name="WANG LEI", id_card="220"),
            Selection(selected_filename="T-1-WANG LEI--a.pdf", name="WANG LEI", id_card="110"),
        ])
        assert processed.matched_count == 3

    def test_foreign_filename_is_ignored(self, workflow, session, documents):
        entry = queue_sheet(workflow, session, documents)
        processed, _ = workflow.resolve(session, entry.pending_id, [
            Selection(selected_filename="T-1-WANG LEI--a.pdf", record_index=0),
            Selection(selected_filename="../../etc/passwd", record_index=1),
        ])
        assert processed.matched_count == 2
        assert entry.pending_id not in session.pending

    def test_same_document_chosen_twice_is_bundled_once(self, workflow, session, documents):
        entry = queue_sheet(workflow, session, documents)
        processed, _ = workflow.resolve(session, entry.pending_id, [
            Selection(selected_filename="T-2-WANG LEI--b.pdf", record_index=0),
            Selection(selected_filename="T-2-WANG LEI--b.pdf", record_index=1),
        ])
        assert processed.matched_count == 2
        with zipfile.ZipFile(processed.output_path) as zf:
            assert sorted(zf.namelist()) == ["T-2-WANG LEI--b.pdf", "T-4-ZHOU JIE--d.pdf"]

    def test_room_mismatch_cannot_reuse_exactly_matched_document(self, workflow, session):
        make_documents(Path(session.extract_path), ["T-203-LI LEI--a.pdf", "T-207-LI LEI--b.pdf"])
        records = (RosterRecord(name="LI LEI", room="205"), RosterRecord(name="LI LEI", room="203"))
        parsed = SheetParseResult(mode=MatchingMode.ROOM_NAME, records=records, sheet_name="Rooms")
        result = match_records(parsed, get_document_index(session))
        entry = workflow.enqueue(
            session, display_name="rooms.xlsx", output_base_name="rooms", sheet_name="Rooms",
            match_result=result, total_records=2, upload_path=None,
        )
        [duplicate] = entry.to_descriptor()["duplicates"]
        assert duplicate["options"] == [{"filename": "T-207-LI LEI--b.pdf", "room": "207"}]

        processed, _ = workflow.resolve(session, entry.pending_id, [
            Selection(selected_filename="T-203-LI LEI--a.pdf", record_index=0),
        ])
        assert processed.matched_count == 1
        with zipfile.ZipFile(processed.output_path) as zf:
            assert zf.namelist() == ["T-203-LI LEI--a.pdf"]

    def test_unknown_pending_id(self, workflow, session, documents):
        queue_sheet(workflow, session, documents)
        with pytest.raises(PendingNotFoundError):
            workflow.resolve(session, "s1-nope", [])

    def test_only_head_may_be_resolved(self, workflow, session, documents):
        first = queue_sheet(workflow, session, documents, sheet_name="A")
        second = queue_sheet(workflow, session, documents, sheet_name="B")
        with pytest.raises(ConflictError):
            workflow.abandon(session, second.pending_id)

        _, next_entry = workflow.abandon(session, first.pending_id)
        assert next_entry is second
        assert workflow.active(session) is second


class TestAbandon:
    def test_skip_keeps_matched_and_drops_ambiguous(self, workflow, session, documents):
        entry = queue_sheet(workflow, session, documents)
        processed, next_entry = workflow.abandon(session, entry.pending_id)
        assert next_entry is None
        assert entry.state == PendingState.ABANDONED
        assert processed.matched_count == 1
        assert processed.dropped_count == 2
        assert processed.resolution == "abandoned"
        # dropped records are not converted to unmatched
        assert list(processed.unmatched) == [{"name": "LI NA", "id_card": "440"}]


class TestUploadRelease:
    def test_upload_kept_until_last_entry_finishes(self, workflow, session, documents, tmp_path):
        upload = tmp_path / "roster.xlsx"
        upload.write_bytes(b"xlsx")
        first = queue_sheet(workflow, session, documents, sheet_name="A", upload_path=str(upload))
        second = queue_sheet(workflow, session, documents, sheet_name="B", upload_path=str(upload))

        workflow.abandon(session, first.pending_id)
        assert upload.exists()
        workflow.abandon(session, second.pending_id)
        assert not os.path.exists(upload)


class TestParseSelections:
    def test_accepts_camel_case(self):
        [selection] = parse_selections([{"selectedFilename": "a.pdf", "recordIndex": 2, "idCard": 123}])
        assert selection == Selection(selected_filename="a.pdf", record_index=2, id_card="123")

    @pytest.mark.parametrize("raw", [
        None,
        {"selected_filename": "a.pdf"},
        ["a.pdf"],
        [{"record_index": 0}],
        [{"selected_filename": "a.pdf", "record_index": "0"}],
        [{"selected_filename": "a.pdf", "record_index": True}],
    ])
    def test_rejects_malformed(self, raw):
        with pytest.raises(ValidationError):
            parse_selections(raw)
