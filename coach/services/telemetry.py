"""
Telemetry Service - Append-only product analytics.

Events are written with track(), which never raises: a failed write is
logged and dropped so analytics can't break a user-facing request. The
dashboard queries read the same table back as summaries, daily counts, top
scenarios and a paginated event list.

Property bags are free-form JSON. Aggregations that look inside them
(completion reason, durations, token counts, scenario slugs) scan the rows in
Python so they behave the same on SQLite and Postgres.
"""
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from coach.core.logging_config import get_logger
from coach.database.connection import DatabaseConnection, get_database
from coach.database.models import TelemetryEvent, User

logger = get_logger(__name__)


class TelemetryEvents:
    """Standard event names."""
    # Conversation lifecycle
    CONVERSATION_STARTED = "conversation_started"
    MESSAGE_SENT = "message_sent"
    CONVERSATION_ENDED = "conversation_ended"

    # Streaming & models
    STREAM_COMPLETED = "stream_completed"
    STREAM_ERROR = "stream_error"

    # Quota
    QUOTA_WARNING = "quota_warning"
    QUOTA_EXHAUSTED = "quota_exhausted"

    # Invitations
    INVITATION_CREATED = "invitation_created"
    INVITATION_CLAIMED = "invitation_claimed"

    # Research
    OBSERVATION_NOTE_ADDED = "observation_note_added"

    # Auth and users
    USER_AUTHENTICATED = "user_authenticated"
    USER_MERGED = "user_merged"
    USER_ROLE_CHANGED = "user_role_changed"


def track(
    db: Optional[DatabaseConnection],
    name: str,
    properties: Optional[Dict[str, Any]] = None,
    user_id: Optional[str] = None,
    session_id: Optional[int] = None,
) -> None:
    """
    Record one telemetry event in its own transaction.

    Failures are logged and swallowed.

    Example:
        >>> track(db, TelemetryEvents.CONVERSATION_STARTED, {"scenarioId": 1}, user_id="abc")
    """
    try:
        db = db or get_database()
        with db.get_session() as session:
            session.add(TelemetryEvent(
                name=name,
                properties=dict(properties or {}),
                user_id=user_id,
                session_id=session_id,
            ))
    except Exception as e:
        logger.error(f"Failed to track telemetry event {name}: {e}")


def create_tracker(
    db: Optional[DatabaseConnection],
    user_id: Optional[str] = None,
) -> Callable[..., None]:
    """
    Bind track() to a user, for request handlers where the caller is known.

    Example:
        >>> tracker = create_tracker(db, caller.user_id)
        >>> tracker(TelemetryEvents.MESSAGE_SENT, {"length": 150}, session_id=7)
    """
    def _track(
        name: str,
        properties: Optional[Dict[str, Any]] = None,
        session_id: Optional[int] = None,
    ) -> None:
        track(db, name, properties, user_id=user_id, session_id=session_id)

    return _track


def track_client_event(
    name: str,
    properties: Optional[Dict[str, Any]] = None,
    user_id: Optional[str] = None,
    session_id: Optional[int] = None,
    db: Optional[DatabaseConnection] = None,
) -> None:
    """
    Record an event reported by the browser.

    The cookie may name a user that was deleted or merged away; the event is
    then stored as anonymous.
    """
    db = db or get_database()
    if user_id:
        with db.get_session() as session:
            if session.get(User, user_id) is None:
                logger.debug(f"Telemetry from unknown user {user_id}, recording as anonymous")
                user_id = None
    track(db, name, properties, user_id=user_id, session_id=session_id)


@dataclass
class TelemetrySummary:
    total_events: int
    conversations_started: int
    conversations_completed: int
    completion_rate: float
    avg_duration_ms: float
    total_tokens: int


@dataclass
class EventPage:
    events: List[Dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[str] = None


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


class TelemetryService:
    """Read side of telemetry for the admin dashboard."""

    def __init__(self, db: Optional[DatabaseConnection] = None):
        self._db = db

    @property
    def db(self) -> DatabaseConnection:
        return self._db or get_database()

    def _in_range(self, session: Session, start: datetime, end: datetime):
        return session.query(TelemetryEvent).filter(
            TelemetryEvent.created_at >= start,
            TelemetryEvent.created_at <= end,
        )

    def summary(self, start: datetime, end: datetime) -> TelemetrySummary:
        """
        Dashboard card metrics for a date range.

        A conversation counts as completed when its conversation_ended event
        carries reason == "completed". Durations come from the durationMs
        property of conversation_ended events, tokens from the inputTokens
        and outputTokens properties of stream_completed events.
        """
        with self.db.get_session() as session:
            total_events = self._in_range(session, start, end).count()
            started = (
                self._in_range(session, start, end)
                .filter(TelemetryEvent.name == TelemetryEvents.CONVERSATION_STARTED)
                .count()
            )
            ended = [
                e.properties or {}
                for e in self._in_range(session, start, end)
                .filter(TelemetryEvent.name == TelemetryEvents.CONVERSATION_ENDED)
                .all()
            ]
            streams = [
                e.properties or {}
                for e in self._in_range(session, start, end)
                .filter(TelemetryEvent.name == TelemetryEvents.STREAM_COMPLETED)
                .all()
            ]

        completed = sum(1 for props in ended if props.get("reason") == "completed")

        durations = [d for d in (_number(p.get("durationMs")) for p in ended) if d is not None]
        avg_duration_ms = sum(durations) / len(durations) if durations else 0

        total_tokens = 0
        for props in streams:
            total_tokens += int(_number(props.get("inputTokens")) or 0)
            total_tokens += int(_number(props.get("outputTokens")) or 0)

        return TelemetrySummary(
            total_events=total_events,
            conversations_started=started,
            conversations_completed=completed,
            completion_rate=completed / started if started > 0 else 0,
            avg_duration_ms=avg_duration_ms,
            total_tokens=total_tokens,
        )

    def time_series(
        self,
        start: datetime,
        end: datetime,
        event_names: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Daily event counts grouped by UTC calendar date.

        Returns:
            {"data": [{"date": "YYYY-MM-DD", "<event>": count, ...}, ...],
             "event_names": [...]} with days in ascending order.
        """
        with self.db.get_session() as session:
            query = self._in_range(session, start, end)
            if event_names:
                query = query.filter(TelemetryEvent.name.in_(event_names))
            rows = (
                query.with_entities(TelemetryEvent.name, TelemetryEvent.created_at)
                .order_by(TelemetryEvent.created_at.asc())
                .all()
            )

        by_day: "OrderedDict[str, Counter]" = OrderedDict()
        seen_names: List[str] = []
        for name, created_at in rows:
            day = created_at.strftime("%Y-%m-%d")
            by_day.setdefault(day, Counter())[name] += 1
            if name not in seen_names:
                seen_names.append(name)

        data = []
        for day, counts in by_day.items():
            entry: Dict[str, Any] = {"date": day}
            entry.update(counts)
            data.append(entry)

        return {"data": data, "event_names": seen_names}

    def top_scenarios(self, start: datetime, end: datetime, limit: int = 10) -> List[Dict[str, Any]]:
        """Conversations started per scenario slug, most popular first."""
        with self.db.get_session() as session:
            bags = [
                e.properties or {}
                for e in self._in_range(session, start, end)
                .filter(TelemetryEvent.name == TelemetryEvents.CONVERSATION_STARTED)
                .all()
            ]

        counts: Counter = Counter()
        for props in bags:
            slug = props.get("scenarioSlug")
            counts[slug if isinstance(slug, str) else "unknown"] += 1

        return [{"scenario": slug, "count": count} for slug, count in counts.most_common(limit)]

    def list_events(
        self,
        start: datetime,
        end: datetime,
        event_type: Optional[str] = None,
        user_id: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> EventPage:
        """
        Newest-first event listing with cursor pagination.

        The cursor is the id of the first event of the next page. Ties on
        created_at are broken by id so pages never overlap.
        """
        with self.db.get_session() as session:
            query = self._in_range(session, start, end)
            if event_type:
                query = query.filter(TelemetryEvent.name == event_type)
            if user_id:
                query = query.filter(TelemetryEvent.user_id == user_id)

            if cursor:
                anchor = session.get(TelemetryEvent, cursor)
                if anchor is not None:
                    query = query.filter(or_(
                        TelemetryEvent.created_at < anchor.created_at,
                        and_(
                            TelemetryEvent.created_at == anchor.created_at,
                            TelemetryEvent.id <= anchor.id,
                        ),
                    ))

            rows = (
                query.outerjoin(User, TelemetryEvent.user_id == User.id)
                .with_entities(TelemetryEvent, User)
                .order_by(TelemetryEvent.created_at.desc(), TelemetryEvent.id.desc())
                .limit(limit + 1)
                .all()
            )

        next_cursor = None
        if len(rows) > limit:
            next_cursor = rows[limit][0].id
            rows = rows[:limit]

        events = [
            {
                "id": event.id,
                "name": event.name,
                "properties": event.properties or {},
                "user_id": event.user_id,
                "session_id": event.session_id,
                "created_at": event.created_at,
                "user": (
                    {"id": user.id, "name": user.name, "avatar_url": user.avatar_url}
                    if user is not None else None
                ),
            }
            for event, user in rows
        ]
        return EventPage(events=events, next_cursor=next_cursor)

    def event_types(self) -> List[str]:
        """Distinct event names, alphabetically."""
        with self.db.get_session() as session:
            rows = (
                session.query(TelemetryEvent.name)
                .distinct()
                .order_by(TelemetryEvent.name.asc())
                .all()
            )
        return [name for (name,) in rows]
