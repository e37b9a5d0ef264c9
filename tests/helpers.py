"""Test doubles and small helpers shared by the test modules."""
import json

from coach.database.models import Role, Scenario, User
from coach.llm.providers.base import estimate_tokens
from coach.llm.types import DeltaChunk, DoneChunk, TokenUsage


class ScriptedProvider:
    """Provider double that replays one scripted chunk list per call."""

    def __init__(self, provider_id="anthropic", scripts=None):
        self.id = provider_id
        self.scripts = list(scripts or [])
        self.calls = []

    def reply(self, text="Hello there.", input_tokens=10, output_tokens=5):
        self.scripts.append([
            DeltaChunk(content=text),
            DoneChunk(usage=TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens)),
        ])

    async def stream_completion(self, params):
        self.calls.append(params)
        if self.scripts:
            script = self.scripts.pop(0)
        else:
            script = [DeltaChunk(content="Okay."), DoneChunk(usage=TokenUsage(10, 5))]
        for chunk in script:
            yield chunk

    async def count_tokens(self, messages):
        return estimate_tokens(messages)


def parse_sse(body):
    """[(event_type, data), ...] from a text/event-stream body."""
    events = []
    for block in body.strip().split("\n\n"):
        if not block:
            continue
        fields = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((fields["event"], json.loads(fields["data"])))
    return events


def make_user(db, role=Role.USER, name=None):
    with db.get_session() as session:
        user = User(role=Role(role).value, name=name)
        session.add(user)
        session.flush()
        return user.id


def first_scenario_id(db):
    with db.get_session() as session:
        return session.query(Scenario).order_by(Scenario.id).first().id
