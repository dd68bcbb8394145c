"""
Roster Reconciliation Service
Request-level operations: ingest a ticket bundle, ingest a roster against it,
resolve or skip duplicate names, and look up output bundles.
"""

import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from roster_reconcile.models.reconciliation_models import (
    PendingDuplicateEntry, ProcessedFile, Session,
)
from roster_reconcile.services.archive_service import extract_archive
from roster_reconcile.services.document_indexer import get_document_index
from roster_reconcile.services.duplicate_resolution import DuplicateResolutionWorkflow, parse_selections
from roster_reconcile.services.export_service import SheetFinalizer
from roster_reconcile.services.matching_engine import match_records
from roster_reconcile.services.session_store import SessionStore
from roster_reconcile.services.sheet_parser import parse_workbook
from roster_reconcile.utils.error_handlers import (
    APIError, NotFoundError, RosterRejectedError, SessionNotFoundError, ValidationError,
)
from roster_reconcile.utils.file_cleanup import remove_path
from roster_reconcile.utils.monitoring import track_sheet
from roster_reconcile.utils.security import validate_file_extension, validate_file_path
from roster_reconcile.utils.structured_logger import StructuredLogger

logger = StructuredLogger(__name__)


class ReconciliationService:

    def __init__(self, store: SessionStore, *, extract_dir: str, output_dir: str,
                 document_extension: str = ".pdf", archive_encoding: str = "cp936",
                 archive_extensions=(".zip", ".rar"), roster_extensions=(".xlsx", ".xlsm", ".xls"),
                 max_excel_rows: Optional[int] = None):
        self.store = store
        self.extract_dir = extract_dir
        self.output_dir = output_dir
        self.document_extension = document_extension
        self.archive_encoding = archive_encoding
        self.archive_extensions = set(archive_extensions)
        self.roster_extensions = set(roster_extensions)
        self.max_excel_rows = max_excel_rows
        self.finalizer = SheetFinalizer(output_dir, clock=store.clock)
        self.workflow = DuplicateResolutionWorkflow(self.finalizer)

    # === Bundle ingestion ===

    def ingest_bundle(self, archive_path: str, original_name: str) -> Session:
        """Extract an uploaded bundle and open a session for it"""
        if not validate_file_extension(original_name, self.archive_extensions):
            remove_path(archive_path)
            raise ValidationError(
                "Unsupported archive type",
                details={"filename": original_name, "allowed_extensions": sorted(self.archive_extensions)},
            )

        session_id = self.store.new_session_id()
        extract_path = os.path.join(self.extract_dir, session_id)
        try:
            extract_archive(archive_path, extract_path, self.archive_encoding)
        except APIError:
            remove_path(archive_path)
            raise

        return self.store.create(
            extract_path=extract_path,
            archive_path=archive_path,
            archive_name=original_name,
            session_id=session_id,
        )

    # === Roster ingestion ===

    def ingest_roster(self, session_id: str, roster_path: str, original_name: str) -> Dict[str, Any]:
        """
        Match every valid sheet of a roster against the session's documents.

        Unambiguous sheets are finalized at once; sheets with duplicate names
        are queued. The upload is kept until its queued sheets are finished.
        """
        session = self.store.find(session_id)
        if session is None:
            remove_path(roster_path)
            raise SessionNotFoundError(details={"session_id": session_id})

        if not validate_file_extension(original_name, self.roster_extensions):
            remove_path(roster_path)
            raise ValidationError(
                "Unsupported roster file type",
                details={"filename": original_name, "allowed_extensions": sorted(self.roster_extensions)},
            )

        with session.lock:
            # a sweep may have dropped the session while we waited for its lock
            if self.store.find(session_id) is not session:
                remove_path(roster_path)
                raise SessionNotFoundError(details={"session_id": session_id})

            try:
                results, rejections = parse_workbook(roster_path, self.max_excel_rows)
            except RosterRejectedError:
                remove_path(roster_path)
                raise

            for _ in rejections:
                track_sheet("rejected")
            if not results:
                remove_path(roster_path)
                raise RosterRejectedError(details={
                    "filename": original_name,
                    "sheets": [r.to_dict() for r in rejections],
                })

            documents = get_document_index(session, self.document_extension)
            base_name = Path(original_name).stem
            multi_sheet = len(results) > 1
            finalized: List[ProcessedFile] = []
            queued: List[PendingDuplicateEntry] = []

            for sheet in results:
                display_name = f"{original_name} ({sheet.sheet_name})" if multi_sheet else original_name
                output_base_name = f"{base_name}-{sheet.sheet_name}" if multi_sheet else base_name
                match_result = match_records(sheet, documents)

                if match_result.ambiguous:
                    queued.append(self.workflow.enqueue(
                        session,
                        display_name=display_name,
                        output_base_name=output_base_name,
                        sheet_name=sheet.sheet_name,
                        match_result=match_result,
                        total_records=len(sheet.records),
                        upload_path=roster_path,
                    ))
                    track_sheet("pending")
                else:
                    finalized.append(self.finalizer.finalize(
                        session,
                        display_name=display_name,
                        output_base_name=output_base_name,
                        sheet_name=sheet.sheet_name,
                        documents=match_result.matched_documents,
                        total_count=len(sheet.records),
                        unmatched=match_result.unmatched_descriptors,
                    ))
                    track_sheet("finalized")

            if not queued:
                remove_path(roster_path)

            batch = {
                "excel_name": original_name,
                "sheets_processed": len(results),
                "sheets_finalized": len(finalized),
                "sheets_queued": len(queued),
                "rejected_sheets": [r.to_dict() for r in rejections],
            }
            active = session.active_pending
            if active is not None:
                return {**self._pending_payload(session, active), **batch}

            matched = sum(p.matched_count for p in finalized)
            total = sum(p.total_count for p in finalized)
            return {
                "success": True,
                "has_duplicates": False,
                "matched": matched,
                "total": total,
                "message": (f"Processed {len(results)} sheets, matched {matched} documents"
                            if multi_sheet else f"Matched {matched} documents"),
                "all_processed": self._all_processed(session),
                **batch,
            }

    # === Duplicate resolution ===

    def resolve_duplicates(self, session_id: str, pending_id: str, raw_selections: Any) -> Dict[str, Any]:
        session = self.store.get(session_id)
        selections = parse_selections(raw_selections)
        with session.lock:
            self._require_live(session)
            processed, next_entry = self.workflow.resolve(session, pending_id, selections)
            unmatched_count = len(processed.unmatched)
            message = f"Matched {processed.matched_count} documents"
            if unmatched_count:
                message += f", {unmatched_count} participants have no document"
            return self._finished_payload(session, processed, next_entry, message)

    def skip_duplicates(self, session_id: str, pending_id: str) -> Dict[str, Any]:
        session = self.store.get(session_id)
        with session.lock:
            self._require_live(session)
            processed, next_entry = self.workflow.abandon(session, pending_id)
            message = (f"Skipped {processed.dropped_count} duplicate records, "
                       f"matched {processed.matched_count} documents")
            return self._finished_payload(session, processed, next_entry, message)

    # === Queries ===

    def session_overview(self, session_id: str) -> Dict[str, Any]:
        session = self.store.get(session_id)
        with session.lock:
            active = session.active_pending
            return {
                "success": True,
                "session_id": session.session_id,
                "created_at": datetime.fromtimestamp(session.created_at).isoformat(),
                "archive_name": session.archive_name,
                "document_count": len(session.document_index) if session.document_index is not None else None,
                "pending_sheets_count": len(session.pending),
                "active_pending": active.to_descriptor() if active else None,
                "all_processed": self._all_processed(session),
            }

    def find_download(self, download_id: str) -> ProcessedFile:
        processed = self.store.find_processed_file(download_id)
        if (processed is None or not processed.output_path
                or not validate_file_path(processed.output_path, self.output_dir)
                or not os.path.exists(processed.output_path)):
            raise NotFoundError("The file does not exist or has expired", details={"download_id": download_id})
        return processed

    # === Payload helpers ===

    def _require_live(self, session: Session):
        """Call with the session lock held; fails when a sweep already dropped it"""
        if self.store.find(session.session_id) is not session:
            raise SessionNotFoundError(details={"session_id": session.session_id})

    @staticmethod
    def _all_processed(session: Session) -> List[Dict[str, Any]]:
        return [p.to_summary() for p in session.processed_files]

    def _pending_payload(self, session: Session, entry: PendingDuplicateEntry) -> Dict[str, Any]:
        return {
            "success": True,
            "has_duplicates": True,
            **entry.to_descriptor(),
            "pending_sheets_count": len(session.pending),
            "message": (f'Sheet "{entry.sheet_name}" has {len(entry.ambiguous)} duplicate names, '
                        f"please choose the matching document for each"),
            "all_processed": self._all_processed(session),
        }

    def _finished_payload(self, session: Session, processed: ProcessedFile,
                          next_entry: Optional[PendingDuplicateEntry], message: str) -> Dict[str, Any]:
        summary = processed.to_summary()
        return {
            "success": True,
            **summary,
            "message": message,
            "has_duplicates": next_entry is not None,
            "next_pending": next_entry.to_descriptor() if next_entry else None,
            "pending_sheets_count": len(session.pending),
            "all_processed": self._all_processed(session),
        }
