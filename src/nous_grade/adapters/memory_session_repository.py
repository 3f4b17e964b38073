"""In-memory session repository."""

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from nous_grade.domain.sessions import Session
from nous_grade.services.store import SessionRepository


@dataclass
class InMemorySessionRepository(SessionRepository):
    """Process-local repository; records do not survive a restart.

    Records are kept serialized so every read hands out a fresh copy.
    """

    records: dict[UUID, dict[str, object]] = field(default_factory=dict)

    def get_session(self, session_id: UUID) -> Session | None:
        """Return a session by id, if present."""
        record = self.records.get(session_id)
        if record is None:
            return None
        return Session.model_validate(record)

    def save_session(self, session: Session) -> None:
        """Insert or replace a session record."""
        self.records[session.id] = session.model_dump(mode="json")

    def delete_session(self, session_id: UUID) -> bool:
        """Delete a session record."""
        return self.records.pop(session_id, None) is not None

    def delete_expired(self, cutoff: datetime) -> int:
        """Delete records that expired before the cutoff."""
        expired = [
            session_id
            for session_id, record in self.records.items()
            if datetime.fromisoformat(str(record["expires_at"])) < cutoff
        ]
        for session_id in expired:
            self.records.pop(session_id, None)
        return len(expired)
