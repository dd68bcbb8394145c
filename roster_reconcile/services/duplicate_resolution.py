"""
Duplicate Resolution Workflow
Queues sheets with ambiguous records and finalizes them once a human has
chosen a document for every ambiguous record (or skipped the sheet).

Each session keeps its pending entries in creation order. Only the head of
that queue is active: it is the entry surfaced to the caller, and the only
one that may be resolved or skipped. Entries move from ``queued`` to
``resolved`` or ``abandoned`` exactly once and leave the queue when they do.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from roster_reconcile.models.reconciliation_models import (
    MatchResult, PendingDuplicateEntry, PendingState, ProcessedFile, Session,
)
from roster_reconcile.services.export_service import SheetFinalizer
from roster_reconcile.utils.error_handlers import (
    ConflictError, PendingNotFoundError, ResolutionMismatchError, ValidationError,
)
from roster_reconcile.utils.file_cleanup import remove_path
from roster_reconcile.utils.monitoring import track_resolution
from roster_reconcile.utils.structured_logger import StructuredLogger

logger = StructuredLogger(__name__)


@dataclass(frozen=True)
class Selection:
    """A human's document choice for one ambiguous record"""
    selected_filename: str
    record_index: Optional[int] = None
    name: Optional[str] = None
    id_card: Optional[str] = None


def parse_selections(raw: Any) -> List[Selection]:
    """Validate the JSON selection list of a resolution request"""
    if not isinstance(raw, list):
        raise ValidationError("selections must be a list")

    selections = []
    for position, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValidationError("each selection must be an object", details={"position": position})
        filename = item.get("selected_filename", item.get("selectedFilename"))
        if not isinstance(filename, str) or not filename:
            raise ValidationError("selection is missing selected_filename", details={"position": position})
        record_index = item.get("record_index", item.get("recordIndex"))
        if record_index is not None and (isinstance(record_index, bool) or not isinstance(record_index, int)):
            raise ValidationError("record_index must be an integer", details={"position": position})
        id_card = item.get("id_card", item.get("idCard"))
        selections.append(Selection(
            selected_filename=filename,
            record_index=record_index,
            name=item.get("name"),
            id_card=str(id_card) if id_card is not None else None,
        ))
    return selections


class DuplicateResolutionWorkflow:

    def __init__(self, finalizer: SheetFinalizer):
        self.finalizer = finalizer

    def _new_pending_id(self, session: Session, sheet_name: str) -> str:
        base = f"{session.session_id}-{sheet_name}-{int(self.finalizer.clock() * 1000)}"
        pending_id = base
        counter = 2
        while pending_id in session.pending:
            pending_id = f"{base}-{counter}"
            counter += 1
        return pending_id

    def enqueue(self, session: Session, *, display_name: str, output_base_name: str, sheet_name: str,
                match_result: MatchResult, total_records: int,
                upload_path: Optional[str]) -> PendingDuplicateEntry:
        """Queue a sheet that has at least one ambiguous record"""
        ambiguous = match_result.ambiguous
        if not ambiguous:
            raise ValueError("Only sheets with ambiguous records can be queued")

        entry = PendingDuplicateEntry(
            pending_id=self._new_pending_id(session, sheet_name),
            display_name=display_name,
            output_base_name=output_base_name,
            sheet_name=sheet_name,
            mode=match_result.mode,
            matched_documents=match_result.matched_documents,
            ambiguous=ambiguous,
            unmatched=match_result.unmatched_descriptors,
            total_records=total_records,
            upload_path=upload_path,
            created_at=self.finalizer.clock(),
        )
        session.pending[entry.pending_id] = entry
        logger.info("Duplicate names queued for resolution", context={
            "session_id": session.session_id,
            "pending_id": entry.pending_id,
            "duplicates": len(ambiguous),
            "queued": len(session.pending),
        })
        return entry

    def active(self, session: Session) -> Optional[PendingDuplicateEntry]:
        return session.active_pending

    def _require_active(self, session: Session, pending_id: str) -> PendingDuplicateEntry:
        entry = session.pending.get(pending_id)
        if entry is None:
            raise PendingNotFoundError(details={"pending_id": pending_id})
        head = session.active_pending
        if head is not entry:
            raise ConflictError(
                "Another duplicate selection must be completed first",
                details={"pending_id": pending_id, "active_pending_id": head.pending_id},
            )
        return entry

    @staticmethod
    def _assign(entry: PendingDuplicateEntry, selections: Sequence[Selection]) -> Dict[int, Selection]:
        """Map selections onto ambiguous record indexes"""
        by_index = {o.record_index: o for o in entry.ambiguous}
        assigned: Dict[int, Selection] = {}
        for selection in selections:
            if selection.record_index is not None:
                if selection.record_index in by_index:
                    assigned[selection.record_index] = selection
                continue
            for outcome in entry.ambiguous:
                if outcome.record_index in assigned:
                    continue
                if outcome.record.name == selection.name and outcome.record.id_card == (selection.id_card or ""):
                    assigned[outcome.record_index] = selection
                    break
        return assigned

    def _finish(self, session: Session, entry: PendingDuplicateEntry, state: PendingState):
        entry.state = state
        del session.pending[entry.pending_id]
        still_referenced = any(e.upload_path == entry.upload_path for e in session.pending.values())
        if entry.upload_path and not still_referenced:
            remove_path(entry.upload_path)
        track_resolution(state.value)

    def resolve(self, session: Session, pending_id: str,
                selections: Sequence[Selection]) -> Tuple[ProcessedFile, Optional[PendingDuplicateEntry]]:
        """
        Finalize the active entry with one chosen document per ambiguous record.

        Nothing changes unless the selections cover every ambiguous record. A
        chosen filename outside the record's own candidates, or one already taken by
        another record of the sheet, is ignored.
        """
        entry = self._require_active(session, pending_id)
        assigned = self._assign(entry, selections)
        missing = [o.record_index for o in entry.ambiguous if o.record_index not in assigned]
        if missing:
            raise ResolutionMismatchError(details={
                "pending_id": pending_id,
                "expected": len(entry.ambiguous),
                "received": len(selections),
                "missing_record_indexes": missing,
            })

        documents = list(entry.matched_documents)
        taken = {d.path for d in documents}
        for outcome in entry.ambiguous:
            filename = assigned[outcome.record_index].selected_filename
            chosen = outcome.find_candidate(filename)
            if chosen is None:
                logger.warning("Selection is not a candidate of its record, ignored", context={
                    "pending_id": pending_id, "name": outcome.record.name, "filename": filename,
                })
                continue
            if chosen.path in taken:
                logger.warning("Document already assigned to another record, ignored", context={
                    "pending_id": pending_id, "name": outcome.record.name, "filename": filename,
                })
                continue
            taken.add(chosen.path)
            documents.append(chosen)
            logger.info("Duplicate resolved", context={
                "name": outcome.record.name, "id_card": outcome.record.id_card, "filename": chosen.filename,
            })

        processed = self.finalizer.finalize(
            session,
            display_name=entry.display_name,
            output_base_name=entry.output_base_name,
            sheet_name=entry.sheet_name,
            documents=documents,
            total_count=entry.total_records,
            unmatched=entry.unmatched,
            resolution="resolved",
        )
        self._finish(session, entry, PendingState.RESOLVED)
        return processed, session.active_pending

    def abandon(self, session: Session, pending_id: str) -> Tuple[ProcessedFile, Optional[PendingDuplicateEntry]]:
        """
        Skip the active entry. Its already matched documents are finalized;
        its ambiguous records are dropped and not reported as unmatched.
        """
        entry = self._require_active(session, pending_id)
        processed = self.finalizer.finalize(
            session,
            display_name=entry.display_name,
            output_base_name=entry.output_base_name,
            sheet_name=entry.sheet_name,
            documents=list(entry.matched_documents),
            total_count=entry.total_records,
            unmatched=entry.unmatched,
            resolution="abandoned",
            dropped_count=len(entry.ambiguous),
        )
        self._finish(session, entry, PendingState.ABANDONED)
        logger.warning("Duplicate selection skipped, ambiguous records dropped", context={
            "pending_id": pending_id, "dropped": len(entry.ambiguous),
        })
        return processed, session.active_pending
