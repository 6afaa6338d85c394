import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, MutableMapping, Optional

from intake.exceptions import NotFoundError
from intake.models import SessionRecord


class SessionStore:
    """
    Session records for the /api/session endpoint.

    Backed by a plain mapping held for the process lifetime. Nothing is
    evicted unless `ttl_seconds` is set; with the default in-memory mapping,
    records are lost on restart.
    """

    def __init__(
        self,
        backing: Optional[MutableMapping[str, SessionRecord]] = None,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._records = backing if backing is not None else {}
        self._written_at: Dict[str, float] = {}
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def __len__(self) -> int:
        return len(self._records)

    def _expired(self, session_id: str) -> bool:
        if self.ttl_seconds is None:
            return False
        written = self._written_at.get(session_id)
        return written is not None and self._clock() - written > self.ttl_seconds

    def write(self, payload: Any, session_id: Optional[str] = None, created_at: Optional[str] = None) -> SessionRecord:
        """Creates the record, or overwrites its payload when the id already exists."""
        session_id = session_id or uuid.uuid4().hex
        timestamp = datetime.now(timezone.utc).isoformat()
        existing = None if self._expired(session_id) else self._records.get(session_id)
        record = SessionRecord(
            id=session_id,
            created_at=created_at or (existing.created_at if existing else timestamp),
            updated_at=timestamp,
            payload=payload,
        )
        self._records[session_id] = record
        self._written_at[session_id] = self._clock()
        return record

    def get(self, session_id: str) -> SessionRecord:
        if self._expired(session_id):
            self.delete(session_id)
        record = self._records.get(session_id)
        if record is None:
            raise NotFoundError("Session not found")
        return record

    def delete(self, session_id: str) -> None:
        self._records.pop(session_id, None)
        self._written_at.pop(session_id, None)
