"""Flat-file session repository storing one JSON document per session."""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from uuid import UUID

from nous_grade.domain.sessions import Session
from nous_grade.services.store import SessionRepository

logger = logging.getLogger(__name__)


@dataclass
class JsonFileSessionRepository(SessionRepository):
    """Repository that keeps each session in ``<directory>/<id>.json``."""

    directory: Path

    @classmethod
    def create(cls, directory: str | Path) -> "JsonFileSessionRepository":
        """Create the repository and its data directory."""
        path = Path(directory)
        path.mkdir(parents=True, exist_ok=True)
        return cls(directory=path)

    def get_session(self, session_id: UUID) -> Session | None:
        """Return a session by id, if present."""
        path = self._path(session_id)
        if not path.exists():
            return None
        return Session.model_validate_json(path.read_text(encoding="utf-8"))

    def save_session(self, session: Session) -> None:
        """Write the session atomically by replacing its file."""
        path = self._path(session.id)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(session.model_dump_json(indent=2), encoding="utf-8")
        tmp_path.replace(path)

    def delete_session(self, session_id: UUID) -> bool:
        """Delete a session file."""
        path = self._path(session_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def delete_expired(self, cutoff: datetime) -> int:
        """Delete session files that expired before the cutoff."""
        removed = 0
        for path in self.directory.glob("*.json"):
            try:
                payload = json.loads(path.read_text(encoding="utf-8"))
                expires_at = datetime.fromisoformat(payload["expires_at"])
            except (OSError, ValueError, KeyError):
                logger.warning("Skipping unreadable session file", extra={"path": path})
                continue
            if expires_at < cutoff:
                path.unlink(missing_ok=True)
                removed += 1
        return removed

    def _path(self, session_id: UUID) -> Path:
        return self.directory / f"{session_id}.json"
