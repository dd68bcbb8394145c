"""
Export Service
Packages matched ticket documents into downloadable ZIP bundles and
records the finalized result of each sheet.
"""

import os
import time
import uuid
import zipfile
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from roster_reconcile.models.reconciliation_models import DocumentEntry, ProcessedFile, Session
from roster_reconcile.utils.security import sanitize_filename
from roster_reconcile.utils.structured_logger import StructuredLogger

logger = StructuredLogger(__name__)


def _unique_entry_name(name: str, used: set) -> str:
    if name not in used:
        used.add(name)
        return name
    stem, ext = os.path.splitext(name)
    counter = 2
    while f"{stem} ({counter}){ext}" in used:
        counter += 1
    unique = f"{stem} ({counter}){ext}"
    used.add(unique)
    return unique


def create_output_bundle(entries: Sequence[Tuple[str, str]], output_path: str) -> str:
    """
    Write one ZIP containing exactly ``entries`` (source path, entry name).

    The archive is written next to ``output_path`` and moved into place when
    complete. Repeated entry names get a " (2)" style suffix.
    """
    os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
    partial_path = f"{output_path}.partial"
    used: set = set()
    try:
        with zipfile.ZipFile(partial_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for source_path, entry_name in entries:
                zf.write(source_path, _unique_entry_name(entry_name, used))
        os.replace(partial_path, output_path)
    except Exception:
        if os.path.exists(partial_path):
            os.remove(partial_path)
        raise

    logger.info("Output bundle written", context={"path": output_path, "files": len(entries)})
    return output_path


class SheetFinalizer:
    """Builds the output bundle for a sheet and appends its ProcessedFile to the session"""

    def __init__(self, output_dir: str, clock: Callable[[], float] = time.time):
        self.output_dir = output_dir
        self.clock = clock

    def export(self, session_id: str, base_name: str,
               documents: Sequence[DocumentEntry]) -> Tuple[str, str, str]:
        """Returns (output path, download filename, download id)"""
        safe_base = sanitize_filename(base_name)
        output_filename = f"{safe_base}.zip"
        download_id = f"{session_id}-{int(self.clock() * 1000)}-{uuid.uuid4().hex[:12]}"
        output_path = os.path.join(self.output_dir, f"{download_id}.zip")
        create_output_bundle([(d.path, d.filename) for d in documents], output_path)
        return output_path, output_filename, download_id

    def finalize(self, session: Session, *, display_name: str, output_base_name: str, sheet_name: str,
                 documents: List[DocumentEntry], total_count: int,
                 unmatched: Sequence[Dict[str, Optional[str]]], resolution: str = "automatic",
                 dropped_count: int = 0) -> ProcessedFile:
        output_path = output_filename = download_id = None
        if documents:
            output_path, output_filename, download_id = self.export(session.session_id, output_base_name, documents)

        processed = ProcessedFile(
            display_name=display_name,
            sheet_name=sheet_name,
            matched_count=len(documents),
            total_count=total_count,
            unmatched=tuple(unmatched),
            processed_at=self.clock(),
            output_path=output_path,
            output_filename=output_filename,
            download_id=download_id,
            resolution=resolution,
            dropped_count=dropped_count,
        )
        session.processed_files.append(processed)
        logger.info("Sheet finalized", context={
            "session_id": session.session_id,
            "excel": display_name,
            "matched": processed.matched_count,
            "total": processed.total_count,
            "unmatched": len(processed.unmatched),
            "resolution": resolution,
        })
        return processed
