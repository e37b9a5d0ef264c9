"""
Observation Service - Researcher notes on invitations and sessions.
"""
from typing import Any, Dict, List, Optional

from coach.core.exceptions import BadRequestError, ForbiddenError, NotFoundError
from coach.core.logging_config import get_logger
from coach.database.connection import DatabaseConnection, get_database
from coach.database.models import ConversationSession, Invitation, ObservationNote
from coach.services.telemetry import TelemetryEvents, track

logger = get_logger(__name__)

MAX_NOTE_LENGTH = 5000


class ObservationService:
    def __init__(self, db: Optional[DatabaseConnection] = None):
        self._db = db

    @property
    def db(self) -> DatabaseConnection:
        return self._db or get_database()

    def create(
        self,
        researcher_id: str,
        invitation_id: str,
        content: str,
        session_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Add a note to an invitation, optionally pinned to one of its sessions.

        Raises:
            NotFoundError: Unknown invitation
            BadRequestError: Empty or oversized content, or a session that
                belongs to another invitation
        """
        content = (content or "").strip()
        if not content or len(content) > MAX_NOTE_LENGTH:
            raise BadRequestError(
                f"Note must be between 1 and {MAX_NOTE_LENGTH} characters",
                field="content",
            )

        with self.db.get_session() as session:
            if session.get(Invitation, invitation_id) is None:
                raise NotFoundError("Invitation not found")

            if session_id is not None:
                conversation = session.get(ConversationSession, session_id)
                if conversation is None or conversation.invitation_id != invitation_id:
                    raise BadRequestError("Session does not belong to this invitation", field="session_id")

            note = ObservationNote(
                invitation_id=invitation_id,
                session_id=session_id,
                researcher_id=researcher_id,
                content=content,
            )
            session.add(note)
            session.flush()
            created = note.to_dict()

        track(
            self.db,
            TelemetryEvents.OBSERVATION_NOTE_ADDED,
            {"invitationId": invitation_id, "noteId": created["id"]},
            user_id=researcher_id,
            session_id=session_id,
        )
        return created

    def list(self, invitation_id: str, session_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """Notes for an invitation, newest first."""
        with self.db.get_session() as session:
            query = session.query(ObservationNote).filter(ObservationNote.invitation_id == invitation_id)
            if session_id is not None:
                query = query.filter(ObservationNote.session_id == session_id)

            notes = query.order_by(ObservationNote.timestamp.desc()).all()
            return [
                {
                    **note.to_dict(),
                    "researcher": {"id": note.researcher.id, "name": note.researcher.name},
                }
                for note in notes
            ]

    def delete(self, researcher_id: str, note_id: str) -> Dict[str, Any]:
        """
        Delete a note. Researchers may only delete their own.

        Raises:
            NotFoundError: Unknown note
            ForbiddenError: Note belongs to another researcher
        """
        with self.db.get_session() as session:
            note = session.get(ObservationNote, note_id)
            if note is None:
                raise NotFoundError("Note not found")

            if note.researcher_id != researcher_id:
                raise ForbiddenError("Cannot delete another researcher's note")

            deleted = note.to_dict()
            session.delete(note)

        logger.info(f"Observation note deleted: note={note_id}")
        return deleted


_observation_service: Optional[ObservationService] = None


def get_observation_service() -> ObservationService:
    """Get or create the observation service instance."""
    global _observation_service
    if _observation_service is None:
        _observation_service = ObservationService()
    return _observation_service
