"""
Retention Scheduler
Periodically sweeps expired sessions and stale files from the data folders.
"""

import threading
from typing import Dict, List, Optional, Sequence

from roster_reconcile.services.session_store import SessionStore
from roster_reconcile.utils.file_cleanup import sweep_stale_files
from roster_reconcile.utils.structured_logger import StructuredLogger

logger = StructuredLogger(__name__)


class RetentionScheduler:
    """Runs ``run_once`` every ``interval_seconds`` on a daemon timer thread"""

    def __init__(self, store: SessionStore, directories: Sequence[str], interval_seconds: float):
        self.store = store
        self.directories = list(directories)
        self.interval_seconds = interval_seconds
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._stopped = True

    def run_once(self) -> Dict[str, List[str]]:
        now = self.store.now()
        expired = self.store.sweep(now)
        stale = sweep_stale_files(
            self.directories,
            self.store.retention_seconds,
            now,
            keep=set(self.store.live_paths()),
        )
        return {"sessions": expired, "files": stale}

    def _tick(self):
        try:
            self.run_once()
        except Exception as e:
            logger.error("Retention sweep failed", error=e)
        finally:
            self._schedule()

    def _schedule(self):
        with self._lock:
            if self._stopped:
                return
            self._timer = threading.Timer(self.interval_seconds, self._tick)
            self._timer.daemon = True
            self._timer.start()

    def start(self):
        with self._lock:
            if not self._stopped:
                return
            self._stopped = False
        logger.info("Retention sweep scheduled", context={
            "interval_seconds": self.interval_seconds,
            "retention_seconds": self.store.retention_seconds,
        })
        self._schedule()

    def stop(self):
        with self._lock:
            self._stopped = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
