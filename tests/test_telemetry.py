from datetime import datetime, timedelta

import pytest

from coach.database.connection import DatabaseConnection
from coach.database.models import Role, TelemetryEvent
from coach.services.telemetry import (
    TelemetryEvents,
    TelemetryService,
    create_tracker,
    track,
    track_client_event,
)
from tests.helpers import make_user

START = datetime(2025, 3, 1)
END = datetime(2025, 3, 31, 23, 59, 59)


@pytest.fixture
def service(db):
    return TelemetryService(db)


def _add(db, name, created_at, properties=None, user_id=None):
    with db.get_session() as session:
        event = TelemetryEvent(name=name, properties=properties or {}, user_id=user_id, created_at=created_at)
        session.add(event)
        session.flush()
        return event.id


def test_track_writes_event(db):
    user_id = make_user(db, Role.USER)
    track(db, TelemetryEvents.MESSAGE_SENT, {"length": 12}, user_id=user_id, session_id=7)

    with db.get_session() as session:
        event = session.query(TelemetryEvent).one()
        assert event.name == "message_sent"
        assert event.properties == {"length": 12}
        assert event.user_id == user_id
        assert event.session_id == 7


def test_track_swallows_failures(caplog):
    broken = DatabaseConnection("sqlite://")  # no tables

    track(broken, "conversation_started")

    assert "Failed to track telemetry event conversation_started" in caplog.text


def test_client_event_from_unknown_user_is_anonymous(db):
    track_client_event("landing_viewed", {"ref": "email"}, user_id="merged-away", db=db)

    with db.get_session() as session:
        event = session.query(TelemetryEvent).one()
        assert event.name == "landing_viewed"
        assert event.user_id is None


def test_client_event_keeps_known_user(db):
    user_id = make_user(db, Role.USER)

    track_client_event("landing_viewed", user_id=user_id, session_id=3, db=db)

    with db.get_session() as session:
        event = session.query(TelemetryEvent).one()
        assert (event.user_id, event.session_id) == (user_id, 3)


def test_create_tracker_binds_user(db):
    user_id = make_user(db, Role.USER)
    tracker = create_tracker(db, user_id)
    tracker(TelemetryEvents.CONVERSATION_ENDED, {"reason": "completed"}, session_id=3)

    with db.get_session() as session:
        event = session.query(TelemetryEvent).one()
        assert event.user_id == user_id
        assert event.session_id == 3


def test_summary_without_starts_has_zero_completion_rate(db, service):
    _add(db, "message_sent", START + timedelta(days=1))

    summary = service.summary(START, END)

    assert summary.total_events == 1
    assert summary.conversations_started == 0
    assert summary.completion_rate == 0
    assert summary.avg_duration_ms == 0


def test_summary_metrics(db, service):
    day = START + timedelta(days=2)
    for _ in range(4):
        _add(db, "conversation_started", day)
    _add(db, "conversation_ended", day, {"reason": "completed", "durationMs": 1000})
    _add(db, "conversation_ended", day, {"reason": "abandoned", "durationMs": 3000})
    _add(db, "conversation_ended", day, {"reason": "completed", "durationMs": "bad"})
    _add(db, "stream_completed", day, {"inputTokens": 100, "outputTokens": 40})
    _add(db, "stream_completed", day, {"inputTokens": 10})
    _add(db, "conversation_started", END + timedelta(days=1))

    summary = service.summary(START, END)

    assert summary.total_events == 9
    assert summary.conversations_started == 4
    assert summary.conversations_completed == 2
    assert summary.completion_rate == 0.5
    assert summary.avg_duration_ms == 2000
    assert summary.total_tokens == 150


def test_time_series_groups_by_utc_day(db, service):
    day = datetime(2025, 3, 5, 10, 0)
    _add(db, "message_sent", day)
    _add(db, "conversation_started", day + timedelta(hours=2))
    _add(db, "message_sent", day + timedelta(hours=3))
    _add(db, "message_sent", datetime(2025, 3, 6, 0, 30))

    result = service.time_series(START, END)

    assert result["data"] == [
        {"date": "2025-03-05", "message_sent": 2, "conversation_started": 1},
        {"date": "2025-03-06", "message_sent": 1},
    ]
    assert sorted(result["event_names"]) == ["conversation_started", "message_sent"]


def test_time_series_filters_event_names(db, service):
    day = datetime(2025, 3, 5, 10, 0)
    _add(db, "message_sent", day)
    _add(db, "conversation_started", day)

    result = service.time_series(START, END, ["conversation_started"])

    assert result["data"] == [{"date": "2025-03-05", "conversation_started": 1}]


def test_top_scenarios(db, service):
    day = START + timedelta(days=1)
    for slug in ["uncle", "uncle", "coworker", None]:
        _add(db, "conversation_started", day, {"scenarioSlug": slug} if slug else {})

    assert service.top_scenarios(START, END, limit=2) == [
        {"scenario": "uncle", "count": 2},
        {"scenario": "coworker", "count": 1},
    ]


def test_list_events_paginates_newest_first(db, service):
    user_id = make_user(db, Role.USER, name="Pat")
    ids = [
        _add(db, "message_sent", START + timedelta(hours=i), user_id=user_id if i == 4 else None)
        for i in range(5)
    ]

    first = service.list_events(START, END, limit=2)
    assert [e["id"] for e in first.events] == [ids[4], ids[3]]
    assert first.events[0]["user"]["name"] == "Pat"
    assert first.events[1]["user"] is None
    assert first.next_cursor == ids[2]

    second = service.list_events(START, END, cursor=first.next_cursor, limit=2)
    assert [e["id"] for e in second.events] == [ids[2], ids[1]]

    last = service.list_events(START, END, cursor=second.next_cursor, limit=2)
    assert [e["id"] for e in last.events] == [ids[0]]
    assert last.next_cursor is None


def test_list_events_filters(db, service):
    user_id = make_user(db, Role.USER)
    _add(db, "message_sent", START + timedelta(hours=1), user_id=user_id)
    _add(db, "message_sent", START + timedelta(hours=2))
    _add(db, "conversation_started", START + timedelta(hours=3), user_id=user_id)

    assert len(service.list_events(START, END, event_type="message_sent").events) == 2
    assert len(service.list_events(START, END, user_id=user_id).events) == 2


def test_event_types_sorted_distinct(db, service):
    for name in ["stream_error", "message_sent", "stream_error"]:
        _add(db, name, START)

    assert service.event_types() == ["message_sent", "stream_error"]
