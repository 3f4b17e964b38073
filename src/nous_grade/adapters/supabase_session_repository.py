"""Supabase-backed session repository."""

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from supabase import Client

from nous_grade.domain.sessions import Session
from nous_grade.services.store import SessionRepository

_TABLE = "grading_sessions"


@dataclass
class SupabaseSessionRepository(SessionRepository):
    """Supabase implementation storing the full session as JSON."""

    client: Client

    def get_session(self, session_id: UUID) -> Session | None:
        """Return a session by id, if present."""
        response = (
            self.client.table(_TABLE)
            .select("id, record_json")
            .eq("id", str(session_id))
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return Session.model_validate(response.data[0]["record_json"])

    def save_session(self, session: Session) -> None:
        """Upsert the session row."""
        self.client.table(_TABLE).upsert(
            {
                "id": str(session.id),
                "status": session.status.value,
                "expires_at": session.expires_at.isoformat(),
                "record_json": session.model_dump(mode="json"),
                "updated_at": datetime.now(tz=UTC).isoformat(),
            }
        ).execute()

    def delete_session(self, session_id: UUID) -> bool:
        """Delete a session row."""
        response = self.client.table(_TABLE).delete().eq("id", str(session_id)).execute()
        return bool(response.data)

    def delete_expired(self, cutoff: datetime) -> int:
        """Delete rows that expired before the cutoff."""
        response = (
            self.client.table(_TABLE)
            .delete()
            .lt("expires_at", cutoff.isoformat())
            .execute()
        )
        return len(response.data or [])
