"""
Document Indexer
Builds the per-session index of ticket documents from the extracted bundle.

Ticket filenames embed the room and the passenger name:
``<prefix>-<room digits>-<name>--<suffix>.pdf``. Files that do not follow
the pattern are left out of the index and can never be matched.
"""

import os
import re
from typing import List, Optional, Pattern

from roster_reconcile.models.reconciliation_models import DocumentEntry, Session
from roster_reconcile.services.name_normalizer import normalize_name
from roster_reconcile.utils.structured_logger import StructuredLogger

logger = StructuredLogger(__name__)

DEFAULT_DOCUMENT_EXTENSION = ".pdf"


def filename_pattern(extension: str = DEFAULT_DOCUMENT_EXTENSION) -> Pattern:
    return re.compile(r"^.*?-(\d+)-([^-]+)--.*" + re.escape(extension) + r"$", re.IGNORECASE)


def parse_document_filename(filename: str, pattern: Optional[Pattern] = None) -> Optional[tuple]:
    """(room, name) embedded in a ticket filename, or None"""
    match = (pattern or filename_pattern()).match(filename)
    if not match:
        return None
    return match.group(1).strip(), match.group(2).strip()


def scan_documents(root: str, extension: str = DEFAULT_DOCUMENT_EXTENSION) -> List[DocumentEntry]:
    """Walk ``root`` recursively and index every well-named document"""
    if not os.path.isdir(root):
        logger.error("Document root does not exist", context={"root": root})
        return []

    pattern = filename_pattern(extension)
    suffix = extension.lower()
    entries = []
    skipped = 0
    total_files = 0

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for filename in sorted(filenames):
            total_files += 1
            if not filename.lower().endswith(suffix):
                continue
            info = parse_document_filename(filename, pattern)
            if info is None:
                skipped += 1
                logger.warning("Filename does not follow the ticket pattern", context={"filename": filename})
                continue
            room, name = info
            entries.append(DocumentEntry(
                path=os.path.join(dirpath, filename),
                filename=filename,
                room=room,
                name=name,
                normalized_name=normalize_name(name),
            ))

    logger.info("Document tree scanned", context={
        "root": root,
        "files": total_files,
        "indexed": len(entries),
        "skipped": skipped,
    })
    return entries


def get_document_index(session: Session, extension: str = DEFAULT_DOCUMENT_EXTENSION) -> List[DocumentEntry]:
    """
    The session's document index, scanned on first use and reused afterwards.

    The scan runs under the session lock so concurrent first calls cannot
    build it twice.
    """
    with session.lock:
        if session.document_index is None:
            session.document_index = scan_documents(session.extract_path, extension)
            session.index_scans += 1
        return session.document_index
