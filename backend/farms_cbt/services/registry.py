"""
In-memory registry of live exam sessions, keyed by an opaque session id.

A session leaves the registry once its result has been written; from then
on the attempt record is authoritative. Idleness is measured from the last
lookup of a session: after SESSION_TTL seconds a session that was never
started is dropped, and a paused one is submitted (its trainee left
mid-pause) and dropped once the result is stored. A running session needs
no help, its countdown submits it.
"""

import os
import time
import uuid
from typing import Dict, Optional

from farms_cbt.services.session import PAUSE_TIMEOUT, AttemptStatus, ExamSession
from farms_cbt.logging_config import get_logger, log_with_context

logger = get_logger("session")

SESSION_TTL = int(os.getenv("CBT_SESSION_TTL_SECONDS", "3600"))


class SessionRegistry:
    def __init__(self, ttl: int = SESSION_TTL):
        self.ttl = ttl
        self._sessions: Dict[str, ExamSession] = {}
        self._last_seen: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def add(self, session: ExamSession) -> str:
        self.cleanup_expired()
        sid = uuid.uuid4().hex
        self._sessions[sid] = session
        self._last_seen[sid] = time.time()
        return sid

    def get(self, sid: str) -> Optional[ExamSession]:
        session = self._sessions.get(sid)
        if session is not None:
            self._last_seen[sid] = time.time()
        return session

    def discard(self, sid: str) -> None:
        self._sessions.pop(sid, None)
        self._last_seen.pop(sid, None)

    def release_if_persisted(self, sid: str) -> bool:
        """Drop a completed session whose result is durably stored."""
        session = self._sessions.get(sid)
        if session is not None and session.status == AttemptStatus.COMPLETED and session.persisted:
            self.discard(sid)
            return True
        return False

    def cleanup_expired(self, now: float = None) -> int:
        """
        Submit paused sessions idle past the TTL, then remove idle sessions
        that were never started or whose result is stored. Returns the
        count removed.
        """
        now = now or time.time()
        stale = [sid for sid, seen in self._last_seen.items() if now - seen > self.ttl]

        for sid in stale:
            session = self._sessions[sid]
            if session.status == AttemptStatus.PAUSED:
                log_with_context(logger, "WARNING", "Submitting session abandoned while paused",
                                 context={"session_id": sid, "attempt_id": session.state.attempt_id},
                                 extra_data={"idle_seconds": round(now - self._last_seen[sid])})
                session.submit(auto_submitted=True, violation_reason=PAUSE_TIMEOUT)

        expired = [sid for sid in stale if self._idle(self._sessions[sid])]
        for sid in expired:
            self.discard(sid)
        if expired:
            log_with_context(logger, "INFO", "Expired {} idle sessions".format(len(expired)))
        return len(expired)

    @staticmethod
    def _idle(session: ExamSession) -> bool:
        if session.status == AttemptStatus.NOT_STARTED:
            return True
        return session.status == AttemptStatus.COMPLETED and session.persisted
