"""
Session Store
Process-local table of reconciliation sessions with an age-based sweep.
"""

import threading
import time
import uuid
from typing import Callable, Dict, List, Optional

from roster_reconcile.models.reconciliation_models import ProcessedFile, Session
from roster_reconcile.utils.error_handlers import SessionNotFoundError
from roster_reconcile.utils.file_cleanup import remove_path
from roster_reconcile.utils.monitoring import active_sessions, sessions_swept
from roster_reconcile.utils.structured_logger import StructuredLogger

logger = StructuredLogger(__name__)

Clock = Callable[[], float]


class SessionStore:
    """Keyed store of sessions; the clock is injectable so expiry can be tested"""

    def __init__(self, retention_seconds: float, clock: Clock = time.time):
        self.retention_seconds = retention_seconds
        self.clock = clock
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def now(self) -> float:
        return self.clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def new_session_id(self) -> str:
        return uuid.uuid4().hex

    def create(self, extract_path: str, archive_path: Optional[str] = None,
               archive_name: Optional[str] = None, session_id: Optional[str] = None) -> Session:
        session = Session(
            session_id=session_id or self.new_session_id(),
            created_at=self.now(),
            extract_path=extract_path,
            archive_path=archive_path,
            archive_name=archive_name,
        )
        with self._lock:
            self._sessions[session.session_id] = session
            active_sessions.set(len(self._sessions))
        logger.info("Session created", context={"session_id": session.session_id, "archive": archive_name})
        return session

    def find(self, session_id: Optional[str]) -> Optional[Session]:
        if not session_id:
            return None
        with self._lock:
            return self._sessions.get(session_id)

    def get(self, session_id: Optional[str]) -> Session:
        session = self.find(session_id)
        if session is None:
            raise SessionNotFoundError(details={"session_id": session_id})
        return session

    def sessions(self) -> List[Session]:
        with self._lock:
            return list(self._sessions.values())

    def find_processed_file(self, download_id: str) -> Optional[ProcessedFile]:
        for session in self.sessions():
            for processed in list(session.processed_files):
                if processed.download_id == download_id:
                    return processed
        return None

    def live_paths(self) -> List[str]:
        paths = []
        for session in self.sessions():
            paths.extend(session.owned_paths())
        return paths

    def remove(self, session_id: str) -> Optional[Session]:
        """Drop a session and delete every file it owns"""
        with self._lock:
            session = self._sessions.pop(session_id, None)
            active_sessions.set(len(self._sessions))
        if session is None:
            return None
        with session.lock:
            for path in session.owned_paths():
                remove_path(path)
        return session

    def sweep(self, now: Optional[float] = None) -> List[str]:
        """Remove sessions older than the retention window; returns their ids"""
        now = self.now() if now is None else now
        with self._lock:
            expired = [sid for sid, s in self._sessions.items()
                       if now - s.created_at > self.retention_seconds]

        for session_id in expired:
            self.remove(session_id)
            sessions_swept.inc()

        if expired:
            logger.info("Expired sessions swept", context={"count": len(expired), "session_ids": expired})
        return expired
