"""
Matching Engine
Classifies every roster record of a sheet as matched, ambiguous or unmatched
against the session's document index.
"""

from typing import Dict, List, Sequence

from roster_reconcile.models.reconciliation_models import (
    DocumentEntry, MatchingMode, MatchOutcome, MatchResult, MatchStatus, RosterRecord, SheetParseResult,
)
from roster_reconcile.services.name_normalizer import normalize_name
from roster_reconcile.utils.structured_logger import StructuredLogger

logger = StructuredLogger(__name__)


def _index_by_name(documents: Sequence[DocumentEntry]) -> Dict[str, List[DocumentEntry]]:
    by_name: Dict[str, List[DocumentEntry]] = {}
    for document in documents:
        by_name.setdefault(document.normalized_name, []).append(document)
    return by_name


def _match_room_name(records: Sequence[RosterRecord], documents: Sequence[DocumentEntry]) -> List[MatchOutcome]:
    """
    Room + name must both agree for an automatic match. A same-name
    document in another room is only a candidate: a human confirms it,
    even when it is the only one.

    Exact matches are settled for the whole sheet first, so a document
    claimed by one record is never offered as a candidate to another.
    """
    by_name = _index_by_name(documents)
    consumed = set()
    exact_matches: Dict[int, DocumentEntry] = {}

    for index, record in enumerate(records):
        same_name = by_name.get(normalize_name(record.name), [])
        exact = next((d for d in same_name if d.room == record.room and d.path not in consumed), None)
        if exact is not None:
            consumed.add(exact.path)
            exact_matches[index] = exact

    outcomes = []
    for index, record in enumerate(records):
        exact = exact_matches.get(index)
        if exact is not None:
            outcomes.append(MatchOutcome(MatchStatus.MATCHED, index, record, document=exact))
            logger.debug("Matched", context={"room": record.room, "name": record.name, "file": exact.filename})
            continue

        same_name = [d for d in by_name.get(normalize_name(record.name), []) if d.path not in consumed]
        if same_name:
            outcomes.append(MatchOutcome(MatchStatus.AMBIGUOUS, index, record, candidates=tuple(same_name)))
            logger.info("Room mismatch, same-name documents found", context={
                "room": record.room, "name": record.name, "candidates": len(same_name),
            })
        else:
            outcomes.append(MatchOutcome(MatchStatus.UNMATCHED, index, record))
            logger.debug("Unmatched", context={"room": record.room, "name": record.name})

    return outcomes


def _match_name_only(records: Sequence[RosterRecord], documents: Sequence[DocumentEntry]) -> List[MatchOutcome]:
    by_name = _index_by_name(documents)
    outcomes = []

    for index, record in enumerate(records):
        candidates = by_name.get(normalize_name(record.name), [])
        if not candidates:
            outcomes.append(MatchOutcome(MatchStatus.UNMATCHED, index, record))
        elif len(candidates) == 1:
            outcomes.append(MatchOutcome(MatchStatus.MATCHED, index, record, document=candidates[0]))
        else:
            outcomes.append(MatchOutcome(MatchStatus.AMBIGUOUS, index, record, candidates=tuple(candidates)))
            logger.info("Duplicate name detected", context={
                "name": record.name, "id_card": record.id_card, "candidates": len(candidates),
            })

    return outcomes


def match_records(parse_result: SheetParseResult, documents: Sequence[DocumentEntry]) -> MatchResult:
    """Produce exactly one outcome per record of ``parse_result``"""
    if parse_result.mode == MatchingMode.ROOM_NAME:
        outcomes = _match_room_name(parse_result.records, documents)
    else:
        outcomes = _match_name_only(parse_result.records, documents)

    result = MatchResult(mode=parse_result.mode, outcomes=tuple(outcomes))
    logger.info("Sheet matched", context={
        "sheet": parse_result.sheet_name,
        "mode": parse_result.mode.value,
        "records": len(parse_result.records),
        "documents": len(documents),
        "matched": len(result.matched),
        "ambiguous": len(result.ambiguous),
        "unmatched": len(result.unmatched),
    })
    return result
