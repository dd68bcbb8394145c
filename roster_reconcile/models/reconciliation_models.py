"""
Reconciliation Models
Roster records, indexed documents, match outcomes, pending duplicates and sessions
"""

import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any, Tuple


class MatchingMode(str, Enum):
    """How a whole sheet is matched against the document index"""
    ROOM_NAME = "room-name"  # room disambiguates same-name documents
    NAME_ONLY = "name-only"  # a human disambiguates, id number shown for reference


class MatchStatus(str, Enum):
    MATCHED = "matched"
    AMBIGUOUS = "ambiguous"
    UNMATCHED = "unmatched"


class PendingState(str, Enum):
    QUEUED = "queued"
    RESOLVED = "resolved"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class RosterRecord:
    """One expected participant extracted from a spreadsheet row"""
    name: str
    room: Optional[str] = None
    id_card: str = ""
    row_number: Optional[int] = None  # 1-based row in the sheet


@dataclass(frozen=True)
class ColumnLayout:
    """Header row and semantic column indexes detected for a sheet"""
    header_row: int
    room: Optional[int] = None
    name: Optional[int] = None
    surname: Optional[int] = None
    given_name: Optional[int] = None
    id_card: Optional[int] = None
    headers: Tuple[str, ...] = ()

    @property
    def has_name_source(self) -> bool:
        return self.name is not None or (self.surname is not None and self.given_name is not None)

    def label(self, index: Optional[int]) -> Optional[str]:
        if index is None or index >= len(self.headers):
            return None
        return self.headers[index]


@dataclass(frozen=True)
class SheetParseResult:
    """One validated sheet: a fixed matching mode and at least one record"""
    mode: MatchingMode
    records: Tuple[RosterRecord, ...]
    sheet_name: str
    layout: Optional[ColumnLayout] = None

    def __post_init__(self):
        if not self.records:
            raise ValueError(f"Sheet {self.sheet_name!r} has no records")


@dataclass(frozen=True)
class SheetRejection:
    """Why a sheet was skipped"""
    sheet_name: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"sheet_name": self.sheet_name, "reason": self.reason}


@dataclass(frozen=True)
class DocumentEntry:
    """One indexed document, identified by the room and name in its filename"""
    path: str
    filename: str
    room: str
    name: str
    normalized_name: str

    def to_option(self) -> Dict[str, str]:
        return {"filename": self.filename, "room": self.room}


@dataclass(frozen=True)
class MatchOutcome:
    """Classification of a single roster record"""
    status: MatchStatus
    record_index: int
    record: RosterRecord
    document: Optional[DocumentEntry] = None
    candidates: Tuple[DocumentEntry, ...] = ()

    def find_candidate(self, filename: str) -> Optional[DocumentEntry]:
        for candidate in self.candidates:
            if candidate.filename == filename:
                return candidate
        return None

    def to_duplicate_dict(self) -> Dict[str, Any]:
        return {
            "record_index": self.record_index,
            "name": self.record.name,
            "id_card": self.record.id_card,
            "room": self.record.room,
            "options": [c.to_option() for c in self.candidates],
        }


def describe_unmatched(record: RosterRecord, mode: MatchingMode) -> Dict[str, Optional[str]]:
    """Identity descriptor reported for a record nobody matched"""
    if mode == MatchingMode.ROOM_NAME:
        return {"room": record.room, "name": record.name}
    return {"name": record.name, "id_card": record.id_card}


@dataclass(frozen=True)
class MatchResult:
    """Outcomes for every record of one sheet, in record order"""
    mode: MatchingMode
    outcomes: Tuple[MatchOutcome, ...]

    def _with_status(self, status: MatchStatus) -> List[MatchOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def matched(self) -> List[MatchOutcome]:
        return self._with_status(MatchStatus.MATCHED)

    @property
    def ambiguous(self) -> List[MatchOutcome]:
        return self._with_status(MatchStatus.AMBIGUOUS)

    @property
    def unmatched(self) -> List[MatchOutcome]:
        return self._with_status(MatchStatus.UNMATCHED)

    @property
    def matched_documents(self) -> List[DocumentEntry]:
        return [o.document for o in self.matched]

    @property
    def unmatched_descriptors(self) -> List[Dict[str, Optional[str]]]:
        return [describe_unmatched(o.record, self.mode) for o in self.unmatched]


@dataclass
class PendingDuplicateEntry:
    """A sheet whose ambiguous records await a human choice"""
    pending_id: str
    display_name: str  # "roster.xlsx" or "roster.xlsx (Sheet2)"
    output_base_name: str
    sheet_name: str
    mode: MatchingMode
    matched_documents: List[DocumentEntry]
    ambiguous: List[MatchOutcome]
    unmatched: List[Dict[str, Optional[str]]]
    total_records: int
    upload_path: Optional[str]
    created_at: float
    state: PendingState = PendingState.QUEUED

    def to_descriptor(self) -> Dict[str, Any]:
        return {
            "pending_id": self.pending_id,
            "sheet_name": self.sheet_name,
            "excel_name": self.display_name,
            "mode": self.mode.value,
            "duplicates": [o.to_duplicate_dict() for o in self.ambiguous],
            "matched": len(self.matched_documents),
            "total": self.total_records,
            "state": self.state.value,
        }


@dataclass(frozen=True)
class ProcessedFile:
    """Finalized reconciliation result for one sheet"""
    display_name: str
    sheet_name: str
    matched_count: int
    total_count: int
    unmatched: Tuple[Dict[str, Optional[str]], ...]
    processed_at: float
    output_path: Optional[str] = None
    output_filename: Optional[str] = None
    download_id: Optional[str] = None
    resolution: str = "automatic"  # automatic, resolved, abandoned
    dropped_count: int = 0  # ambiguous records discarded by an abandonment

    def to_summary(self) -> Dict[str, Any]:
        return {
            "excel_name": self.display_name,
            "sheet_name": self.sheet_name,
            "matched": self.matched_count,
            "total": self.total_count,
            "unmatched_count": len(self.unmatched),
            "unmatched": list(self.unmatched),
            "download_url": f"/api/download/{self.download_id}" if self.download_id else None,
            "download_filename": self.output_filename,
            "resolution": self.resolution,
            "dropped_count": self.dropped_count,
        }


@dataclass
class Session:
    """One reconciliation run: a document bundle and every roster processed against it"""
    session_id: str
    created_at: float
    extract_path: str
    archive_path: Optional[str] = None
    archive_name: Optional[str] = None
    document_index: Optional[List[DocumentEntry]] = None
    index_scans: int = 0
    processed_files: List[ProcessedFile] = field(default_factory=list)
    pending: "OrderedDict[str, PendingDuplicateEntry]" = field(default_factory=OrderedDict)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def active_pending(self) -> Optional[PendingDuplicateEntry]:
        """Head of the FIFO, the only entry that may be resolved or skipped"""
        for entry in self.pending.values():
            return entry
        return None

    def owned_paths(self) -> List[str]:
        """Filesystem artifacts removed together with the session"""
        paths = [self.extract_path]
        if self.archive_path:
            paths.append(self.archive_path)
        paths.extend(p.output_path for p in self.processed_files if p.output_path)
        paths.extend(e.upload_path for e in self.pending.values() if e.upload_path)
        return paths
