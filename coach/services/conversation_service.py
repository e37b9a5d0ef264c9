"""
Conversation Service - One user turn, streamed.

A turn is: persist the user's message, stream the partner's reply, then
stream the coach's commentary on the exchange. Each step is reported as a
TurnEvent which the API layer writes out as Server-Sent Events:

    partner:delta ... partner:done, coach:delta ... coach:done
    quota:exhausted / quota:warning
    error

Context rules:
- The partner sees only the user/partner dialogue.
- The coach sees everything, with the partner's lines and its own earlier
  advice prefixed so it can tell them apart.

Retryable provider errors are retried with a linear backoff, but only
while no text has been sent for that reply. When a stream ends in error, whatever text arrived is kept as an incomplete message.
"""
import asyncio
import json
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from coach.core.exceptions import CoachException, ForbiddenError, NotFoundError
from coach.core.logging_config import LoggerMixin
from coach.database.connection import DatabaseConnection, get_database
from coach.database.models import ConversationSession, Message, UsageLog
from coach.llm.registry import ProviderRegistry
from coach.llm.types import (
    ABORTED,
    DeltaChunk,
    DoneChunk,
    ErrorChunk,
    LLMMessage,
    StreamParams,
    TokenUsage,
)
from coach.services.quota import get_invitation_quota_status
from coach.services.telemetry import TelemetryEvents, track

MAX_RETRIES = 2
RETRY_DELAY_SECONDS = 1.0
MAX_RESPONSE_TOKENS = 1024

PARTNER = "partner"
COACH = "coach"

PROVIDER_ERROR = "PROVIDER_ERROR"
BUSY = "RATE_LIMITED"
INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass(frozen=True)
class TurnEvent:
    """One server-sent event of a turn."""
    type: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_sse(self) -> str:
        return f"event: {self.type}\ndata: {json.dumps(self.data, default=str)}\n\n"


@dataclass
class _TurnContext:
    """Snapshot of the session needed to run a turn outside a DB scope."""
    session_id: int
    user_id: Optional[str]
    invitation_id: Optional[str]
    partner_model: str
    coach_model: str
    partner_prompt: str
    coach_prompt: str
    partner_use_web_search: bool
    history: List[Tuple[str, str]]


@dataclass
class _StreamOutcome:
    ok: bool = False
    model: str = ""
    usage: TokenUsage = field(default_factory=TokenUsage)
    duration_ms: int = 0


def build_context(role: str, history: Sequence[Tuple[str, str]]) -> List[LLMMessage]:
    """
    Turn stored (role, content) pairs into the message list for a stream.

    Example:
        >>> build_context("coach", [("user", "Hi"), ("partner", "Hello")])
        [LLMMessage(role='user', content='Hi'), LLMMessage(role='assistant', content='[Partner] Hello')]
    """
    if role == PARTNER:
        return [
            LLMMessage(role="user" if r == "user" else "assistant", content=c)
            for r, c in history
            if r in ("user", PARTNER)
        ]

    messages = []
    for r, c in history:
        if r == "user":
            messages.append(LLMMessage(role="user", content=c))
        else:
            prefix = "[Partner]" if r == PARTNER else "[Your previous advice]"
            messages.append(LLMMessage(role="assistant", content=f"{prefix} {c}"))
    return messages


class ConversationService(LoggerMixin):
    """
    Runs conversation turns against the provider registry.

    Only one turn per session runs at a time; a second request while one is
    streaming gets an error event with code RATE_LIMITED. A running turn can
    be cancelled with cancel_turn().
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        db: Optional[DatabaseConnection] = None,
        max_retries: int = MAX_RETRIES,
        retry_delay_seconds: float = RETRY_DELAY_SECONDS,
    ):
        self.registry = registry
        self._db = db
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self._active_turns: Dict[int, asyncio.Event] = {}

    @property
    def db(self) -> DatabaseConnection:
        return self._db or get_database()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_owned_session(self, user_id: str, session_id: int) -> Dict[str, Any]:
        """
        Check the session exists and belongs to the caller.

        Raises:
            NotFoundError: Unknown session
            ForbiddenError: Session belongs to someone else
        """
        with self.db.get_session() as session:
            conversation = session.get(ConversationSession, session_id)
            if conversation is None:
                raise NotFoundError("Session not found")
            if conversation.user_id != user_id:
                raise ForbiddenError("This session belongs to another user")
            return {
                "id": conversation.id,
                "status": conversation.status,
                "scenario": conversation.scenario.summary(),
                "total_messages": conversation.total_messages,
            }

    def history(
        self,
        user_id: str,
        session_id: int,
        after_message_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Session info plus messages, optionally only those after a given id."""
        info = self.get_owned_session(user_id, session_id)
        with self.db.get_session() as session:
            query = session.query(Message).filter(Message.session_id == session_id)
            if after_message_id is not None:
                query = query.filter(Message.id > after_message_id)
            messages = [m.to_dict() for m in query.order_by(Message.id.asc()).all()]
        return {"session": info, "messages": messages}

    def is_busy(self, session_id: int) -> bool:
        return session_id in self._active_turns

    def cancel_turn(self, user_id: str, session_id: int) -> bool:
        """Signal the running turn of a session to stop. False if none is running."""
        self.get_owned_session(user_id, session_id)
        signal = self._active_turns.get(session_id)
        if signal is None:
            return False
        signal.set()
        self.logger.info(f"Turn cancelled: session={session_id}")
        return True

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------

    async def stream_turn(self, session_id: int, content: str) -> AsyncIterator[TurnEvent]:
        """
        Run one turn and yield its events.

        The caller has already checked ownership and validated content.
        """
        if session_id in self._active_turns:
            yield TurnEvent("error", {
                "code": BUSY,
                "message": "Please wait for the current response to complete",
                "recoverable": True,
            })
            return

        signal = asyncio.Event()
        self._active_turns[session_id] = signal
        try:
            async for event in self._run_turn(session_id, content, signal):
                yield event
        except Exception as e:
            self.logger.exception(f"Error handling turn: session={session_id}: {e}")
            yield TurnEvent("error", {
                "code": INTERNAL_ERROR,
                "message": "An unexpected error occurred",
                "recoverable": True,
            })
        finally:
            self._active_turns.pop(session_id, None)

    async def _run_turn(self, session_id: int, content: str, signal: asyncio.Event) -> AsyncIterator[TurnEvent]:
        ctx = self._load_context(session_id)

        if ctx.invitation_id:
            with self.db.get_session() as session:
                status = get_invitation_quota_status(session, ctx.invitation_id)
            if not status.allowed:
                track(self.db, TelemetryEvents.QUOTA_EXHAUSTED, {"invitationId": ctx.invitation_id},
                      user_id=ctx.user_id, session_id=session_id)
                yield TurnEvent("quota:exhausted", status.to_dict())
                return

        self._persist_message(session_id, "user", content)
        ctx.history.append(("user", content))
        track(self.db, TelemetryEvents.MESSAGE_SENT, {"length": len(content)},
              user_id=ctx.user_id, session_id=session_id)

        partner = _StreamOutcome()
        async for event in self._stream_role(PARTNER, ctx, signal, partner):
            yield event
        if not partner.ok:
            return

        coach = _StreamOutcome()
        async for event in self._stream_role(COACH, ctx, signal, coach):
            yield event
        if not coach.ok:
            return

        self._record_turn(ctx, partner, coach)

        for role, outcome in ((PARTNER, partner), (COACH, coach)):
            track(
                self.db,
                TelemetryEvents.STREAM_COMPLETED,
                {
                    "streamType": role,
                    "model": outcome.model,
                    "inputTokens": outcome.usage.input_tokens,
                    "outputTokens": outcome.usage.output_tokens,
                    "durationMs": outcome.duration_ms,
                },
                user_id=ctx.user_id,
                session_id=session_id,
            )

        if ctx.invitation_id:
            with self.db.get_session() as session:
                status = get_invitation_quota_status(session, ctx.invitation_id)
            if not status.allowed:
                yield TurnEvent("quota:exhausted", status.to_dict())
            elif status.low:
                track(self.db, TelemetryEvents.QUOTA_WARNING, status.to_dict(),
                      user_id=ctx.user_id, session_id=session_id)
                yield TurnEvent("quota:warning", {"remaining": status.remaining, "total": status.total})

    async def _stream_role(
        self,
        role: str,
        ctx: _TurnContext,
        signal: asyncio.Event,
        outcome: _StreamOutcome,
    ) -> AsyncIterator[TurnEvent]:
        """Stream one role's reply, retrying transient failures."""
        model_string = ctx.partner_model if role == PARTNER else ctx.coach_model
        params = StreamParams(
            model=model_string,
            system_prompt=ctx.partner_prompt if role == PARTNER else ctx.coach_prompt,
            messages=build_context(role, ctx.history),
            max_tokens=MAX_RESPONSE_TOKENS,
            signal=signal,
            use_web_search=role == PARTNER and ctx.partner_use_web_search,
        )
        outcome.model = model_string
        started = time.monotonic()

        attempt = 0
        while True:
            parts: List[str] = []
            usage: Optional[TokenUsage] = None
            error: Optional[ErrorChunk] = None

            try:
                stream = self.registry.stream_completion(model_string, params)
            except CoachException as e:
                stream = None
                error = ErrorChunk(code=e.error_code, message=e.message, retryable=False)

            if stream is not None:
                async with aclosing(stream) as chunks:
                    async for chunk in chunks:
                        if isinstance(chunk, DeltaChunk):
                            parts.append(chunk.content)
                            yield TurnEvent(f"{role}:delta", {"content": chunk.content})
                        elif isinstance(chunk, DoneChunk):
                            usage = chunk.usage
                        else:
                            error = chunk

            if error is None:
                break

            # Deltas already sent cannot be taken back, so only an empty attempt is retried
            if error.retryable and not parts and attempt < self.max_retries:
                attempt += 1
                self.logger.warning(
                    f"Retrying {role} stream: session={ctx.session_id}, "
                    f"attempt={attempt}, code={error.code}"
                )
                await asyncio.sleep(self.retry_delay_seconds * attempt)
                continue

            partial = "".join(parts)
            aborted = error.code == ABORTED
            client_code = ABORTED if aborted else PROVIDER_ERROR
            self.logger.error(
                f"Error streaming {role}: session={ctx.session_id}, "
                f"code={error.code}, message={error.message}"
            )
            if partial:
                self._persist_message(ctx.session_id, role, partial, {"complete": False, "error": client_code})
            track(
                self.db,
                TelemetryEvents.STREAM_ERROR,
                {"streamType": role, "model": model_string, "code": error.code, "retries": attempt},
                user_id=ctx.user_id,
                session_id=ctx.session_id,
            )
            yield TurnEvent("error", {
                "code": client_code,
                "message": "Response cancelled" if aborted else "AI service temporarily unavailable",
                "recoverable": not aborted,
            })
            return

        full = "".join(parts)
        message_id = self._persist_message(ctx.session_id, role, full)
        ctx.history.append((role, full))

        outcome.ok = True
        outcome.usage = usage or TokenUsage()
        outcome.duration_ms = int((time.monotonic() - started) * 1000)

        yield TurnEvent(f"{role}:done", {
            "message_id": message_id,
            "usage": {
                "input_tokens": outcome.usage.input_tokens,
                "output_tokens": outcome.usage.output_tokens,
            },
        })

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load_context(self, session_id: int) -> _TurnContext:
        with self.db.get_session() as session:
            conversation = session.get(ConversationSession, session_id)
            if conversation is None:
                raise NotFoundError("Session not found")
            scenario = conversation.scenario
            return _TurnContext(
                session_id=conversation.id,
                user_id=conversation.user_id,
                invitation_id=conversation.invitation_id,
                partner_model=scenario.partner_model,
                coach_model=scenario.coach_model,
                partner_prompt=scenario.partner_system_prompt,
                coach_prompt=scenario.coach_system_prompt,
                partner_use_web_search=scenario.partner_use_web_search,
                history=[(m.role, m.content) for m in conversation.messages],
            )

    def _persist_message(
        self,
        session_id: int,
        role: str,
        content: str,
        extra_data: Optional[Dict[str, Any]] = None,
    ) -> int:
        with self.db.get_session() as session:
            message = Message(session_id=session_id, role=role, content=content, extra_data=extra_data)
            session.add(message)
            session.flush()
            return message.id

    def _record_turn(self, ctx: _TurnContext, partner: _StreamOutcome, coach: _StreamOutcome) -> None:
        """Usage rows for both streams and the message counter, in one transaction."""
        with self.db.get_session() as session:
            for role, outcome in ((PARTNER, partner), (COACH, coach)):
                session.add(UsageLog(
                    session_id=ctx.session_id,
                    user_id=ctx.user_id,
                    invitation_id=ctx.invitation_id,
                    model=outcome.model,
                    stream_type=role,
                    input_tokens=outcome.usage.input_tokens,
                    output_tokens=outcome.usage.output_tokens,
                ))
            # user + partner + coach
            session.query(ConversationSession).filter(ConversationSession.id == ctx.session_id).update(
                {ConversationSession.total_messages: ConversationSession.total_messages + 3},
                synchronize_session=False,
            )
        self.logger.info(
            f"Turn complete: session={ctx.session_id}, "
            f"tokens={partner.usage.total + coach.usage.total}"
        )
