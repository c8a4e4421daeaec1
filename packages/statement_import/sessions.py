"""In-memory registry of import sessions.

Each session is written only by the worker that owns it and read by any
number of pollers. All access goes through one lock; readers get deep copies,
never the live object. A session becomes terminal (``completed``/``failed``)
exactly once; later transitions raise ``RuntimeError``.
"""

from __future__ import annotations

import threading
import uuid
from datetime import UTC, datetime

from .models import (
    ExecuteImportResult,
    ImportSession,
    ProcessImportResult,
    SessionError,
    SessionKind,
)


class SessionRegistry:
    def __init__(self) -> None:
        self._sessions: dict[str, ImportSession] = {}
        self._lock = threading.Lock()

    def create(self, kind: SessionKind, total: int) -> ImportSession:
        session = ImportSession(
            session_id=uuid.uuid4().hex,
            kind=kind,
            status="pending",
            total=total,
            started_at=datetime.now(UTC),
        )
        with self._lock:
            self._sessions[session.session_id] = session
            return session.model_copy(deep=True)

    def get(self, session_id: str) -> ImportSession | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy(deep=True) if session is not None else None

    def _live(self, session_id: str) -> ImportSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(session_id)
        if session.is_terminal:
            raise RuntimeError(f"session {session_id} is already {session.status}")
        return session

    def start(self, session_id: str, *, current_step: str) -> None:
        with self._lock:
            session = self._live(session_id)
            session.status = "processing"
            session.current_step = current_step

    def set_step(self, session_id: str, current_step: str) -> None:
        with self._lock:
            self._live(session_id).current_step = current_step

    def advance(self, session_id: str, *, by: int = 1, current_step: str | None = None) -> None:
        with self._lock:
            session = self._live(session_id)
            session.processed_count = min(session.total, session.processed_count + by)
            if current_step is not None:
                session.current_step = current_step

    def add_error(self, session_id: str, error: SessionError) -> None:
        with self._lock:
            self._live(session_id).errors.append(error)

    def complete(
        self, session_id: str, result: ProcessImportResult | ExecuteImportResult
    ) -> None:
        with self._lock:
            session = self._live(session_id)
            session.status = "completed"
            session.current_step = None
            session.result = result
            session.finished_at = datetime.now(UTC)

    def fail(
        self,
        session_id: str,
        error: str,
        *,
        partial: ProcessImportResult | ExecuteImportResult | None = None,
    ) -> None:
        with self._lock:
            session = self._live(session_id)
            session.status = "failed"
            session.errors.append(SessionError(index=None, error=error))
            if partial is not None:
                session.result = partial
            session.finished_at = datetime.now(UTC)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


__all__ = ["SessionRegistry"]
