"""
Archive Service
Verifies and extracts uploaded ticket bundles (ZIP or RAR).

Extraction happens in a hidden sibling directory that is renamed into
place only after every member was written, so the document indexer never
sees a half-extracted tree.
"""

import os
import shutil
import tempfile
import zipfile
import zlib
from pathlib import Path
from typing import Union

import rarfile

from roster_reconcile.utils.error_handlers import ExtractionError, ValidationError
from roster_reconcile.utils.structured_logger import StructuredLogger

logger = StructuredLogger(__name__)

SUPPORTED_ARCHIVE_EXTENSIONS = {".zip", ".rar"}

# Resource-fork folders added by the macOS archiver
IGNORED_PREFIXES = ("__MACOSX/",)

_ARCHIVE_ERRORS = (zipfile.BadZipFile, zipfile.LargeZipFile, rarfile.Error, zlib.error, EOFError, OSError,
                   UnicodeDecodeError, LookupError, NotImplementedError)

Archive = Union[zipfile.ZipFile, rarfile.RarFile]


def _archive_suffix(archive_path: str) -> str:
    return Path(archive_path).suffix.lower()


def _open_archive(archive_path: str, filename_encoding: str) -> Archive:
    if _archive_suffix(archive_path) == ".rar":
        # RAR stores member names as unicode; no legacy encoding to apply
        return rarfile.RarFile(archive_path, errors="strict")
    # metadata_encoding only applies to members without the UTF-8 flag
    return zipfile.ZipFile(archive_path, metadata_encoding=filename_encoding)


def _first_bad_member(archive: Archive):
    """Name of the first member failing its CRC check, None when all pass"""
    if isinstance(archive, rarfile.RarFile):
        # testrar raises on the first damaged member
        archive.testrar()
        return None
    return archive.testzip()


def check_archive_integrity(archive_path: str, filename_encoding: str = "cp936") -> bool:
    """True when every member of the archive passes its CRC check"""
    try:
        with _open_archive(archive_path, filename_encoding) as archive:
            bad_member = _first_bad_member(archive)
    except _ARCHIVE_ERRORS as e:
        logger.warning("Archive integrity check failed", context={"archive": archive_path}, error=e)
        return False
    if bad_member is not None:
        logger.warning("Archive member failed CRC check", context={"archive": archive_path, "member": bad_member})
        return False
    return True


def extract_archive(archive_path: str, target_dir: str, filename_encoding: str = "cp936") -> str:
    """
    Extract ``archive_path`` into ``target_dir`` (which must not exist yet).

    Raises ExtractionError when the archive is corrupt or incomplete; nothing
    is left at ``target_dir`` in that case.
    """
    suffix = _archive_suffix(archive_path)
    if suffix not in SUPPORTED_ARCHIVE_EXTENSIONS:
        raise ValidationError(
            f"Unsupported archive format: {suffix or 'none'}",
            details={"allowed_extensions": sorted(SUPPORTED_ARCHIVE_EXTENSIONS)},
        )

    if not check_archive_integrity(archive_path, filename_encoding):
        raise ExtractionError(details={"archive": os.path.basename(archive_path)})

    parent = os.path.dirname(os.path.abspath(target_dir))
    os.makedirs(parent, exist_ok=True)
    staging_dir = tempfile.mkdtemp(prefix=".partial-", dir=parent)

    try:
        with _open_archive(archive_path, filename_encoding) as archive:
            members = [m for m in archive.infolist() if not m.filename.startswith(IGNORED_PREFIXES)]
            archive.extractall(staging_dir, members=members)
        os.replace(staging_dir, target_dir)
    except _ARCHIVE_ERRORS as e:
        shutil.rmtree(staging_dir, ignore_errors=True)
        logger.error("Archive extraction failed", context={"archive": archive_path}, error=e)
        raise ExtractionError(details={"archive": os.path.basename(archive_path), "reason": str(e)}) from e

    logger.info("Archive extracted", context={
        "archive": os.path.basename(archive_path),
        "target": target_dir,
        "members": len(members),
    })
    return target_dir
