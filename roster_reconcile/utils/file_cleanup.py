"""
Filesystem cleanup for uploads, extracted bundles and generated archives.
"""

import os
import shutil
import logging
from typing import Iterable, List, Optional, Set

logger = logging.getLogger(__name__)


def remove_path(path: Optional[str]) -> bool:
    """Delete a file or directory tree; returns True when something was removed"""
    if not path or not os.path.lexists(path):
        return False
    try:
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        else:
            os.remove(path)
        return True
    except OSError as e:
        logger.warning(f"Could not remove {path}: {e}")
        return False


def sweep_stale_files(directories: Iterable[str], max_age_seconds: float, now: float,
                      keep: Optional[Set[str]] = None) -> List[str]:
    """
    Remove direct children of ``directories`` whose mtime is older than
    ``max_age_seconds``. Paths listed in ``keep`` are left alone.
    """
    keep = {os.path.abspath(p) for p in (keep or set())}
    removed = []
    for directory in directories:
        if not os.path.isdir(directory):
            continue
        for entry in os.scandir(directory):
            path = os.path.abspath(entry.path)
            if path in keep:
                continue
            try:
                age = now - entry.stat(follow_symlinks=False).st_mtime
            except OSError:
                continue
            if age > max_age_seconds and remove_path(path):
                removed.append(path)
    if removed:
        logger.info(f"Removed {len(removed)} stale file(s)")
    return removed
