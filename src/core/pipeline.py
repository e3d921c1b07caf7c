# src/core/pipeline.py
"""
Middleware pipeline run around every inbound event.

    RECEIVED -> RATE_CHECKED -> SESSION_LOADED -> HANDLED -> SESSION_SAVED -> DONE
                     |
                     +-> REJECTED (rate limited, no session I/O)

Load, handler and save run under the per-user session lock, so events
for one user are applied in arrival order while other users proceed
concurrently.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional
import logging

from src.models.event_models import EventType, InboundEvent
from src.models.session_state import Session, UserIdentity
from src.core.session_store import SessionStore
from src.core.security import AuthorizationGate, RateLimiter
from src.core.exceptions import HandlerFailure, Unauthorized

logger = logging.getLogger(__name__)

RATE_LIMIT_NOTICE = "Too many requests. Please wait a moment and try again."
ACCESS_DENIED_NOTICE = "Access denied."
FAILURE_NOTICE = "Something went wrong. Please try again later."
FALLBACK_REPLY = "Sorry, I didn't understand that. Send /help to see what I can do."


class PipelineState(str, Enum):
    RECEIVED = "received"
    RATE_CHECKED = "rate_checked"
    SESSION_LOADED = "session_loaded"
    HANDLED = "handled"
    SESSION_SAVED = "session_saved"
    DONE = "done"
    REJECTED = "rejected"


class PipelineOutcome(str, Enum):
    ALLOWED = "allowed"
    REJECTED = "rejected"
    UNAUTHORIZED = "unauthorized"
    FAILED = "failed"


@dataclass
class EventContext:
    """What a handler sees besides the session"""
    event: InboundEvent
    gate: AuthorizationGate

    @property
    def identity(self) -> UserIdentity:
        return self.event.identity

    @property
    def user_id(self) -> int:
        return self.event.user_id

    @property
    def payload(self):
        return self.event.payload

    def authorize(self, action: str) -> bool:
        """Check the caller against the super admin identity"""
        # Transport ids are ints; the configured identity is its decimal string
        return self.gate.is_authorized(str(self.event.user_id), action)

    def require_admin(self, action: str) -> None:
        """Raise Unauthorized unless the caller is the super admin"""
        self.gate.require(str(self.event.user_id), action)


Handler = Callable[[EventContext, Session], Awaitable[Optional[str]]]


@dataclass
class PipelineResult:
    outcome: PipelineOutcome
    state: PipelineState
    reply: Optional[str] = None
    session: Optional[Session] = None


class MiddlewarePipeline:
    """
    Runs rate limiting and session persistence around business handlers.

    Handlers are registered per event type. A handler may mutate the
    session and may return a reply text for the transport.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        session_store: SessionStore,
        gate: AuthorizationGate,
        session_ttl: Optional[int] = None
    ):
        self.rate_limiter = rate_limiter
        self.session_store = session_store
        self.gate = gate
        self.session_ttl = session_ttl
        self._handlers: Dict[EventType, Handler] = {}

    def register(self, event_type: EventType, handler: Handler) -> None:
        if event_type in self._handlers:
            logger.warning(f"Replacing handler for {event_type.value} events")
        self._handlers[event_type] = handler

    def on(self, event_type: EventType) -> Callable[[Handler], Handler]:
        """Decorator form of register()"""
        def decorator(handler: Handler) -> Handler:
            self.register(event_type, handler)
            return handler
        return decorator

    async def process(self, event: InboundEvent) -> PipelineResult:
        user_id = event.user_id
        state = PipelineState.RECEIVED

        allowed = self.rate_limiter.check(user_id)
        state = self._advance(user_id, state, PipelineState.RATE_CHECKED)
        if not allowed:
            self._advance(user_id, state, PipelineState.REJECTED)
            return PipelineResult(
                outcome=PipelineOutcome.REJECTED,
                state=PipelineState.REJECTED,
                reply=RATE_LIMIT_NOTICE,
            )

        async with self.session_store.lock(user_id):
            session = await self.session_store.load(user_id)
            state = self._advance(user_id, state, PipelineState.SESSION_LOADED)
            ctx = EventContext(event=event, gate=self.gate)
            session.touch(ctx.identity.username)

            outcome, reply = await self._invoke(ctx, session)
            state = self._advance(user_id, state, PipelineState.HANDLED)

            # Partial mutations from a failed handler are kept
            await self.session_store.save(user_id, session, self.session_ttl)
            state = self._advance(user_id, state, PipelineState.SESSION_SAVED)

        state = self._advance(user_id, state, PipelineState.DONE)
        return PipelineResult(outcome=outcome, state=state, reply=reply, session=session)

    async def _invoke(self, ctx: EventContext, session: Session):
        event_type = ctx.event.type
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.debug(f"No handler for {event_type.value} events")
            return PipelineOutcome.ALLOWED, FALLBACK_REPLY

        try:
            reply = await handler(ctx, session)
            return PipelineOutcome.ALLOWED, reply

        except Unauthorized as e:
            logger.warning(f"Denied {e.action or 'privileged action'} for user {ctx.user_id}")
            return PipelineOutcome.UNAUTHORIZED, ACCESS_DENIED_NOTICE

        except Exception as e:
            failure = HandlerFailure(
                f"Handler for {event_type.value} events failed",
                event_type=event_type.value,
                user_id=ctx.user_id,
                details={'original_error': str(e), 'error_type': type(e).__name__}
            )
            logger.error(str(failure), exc_info=True)
            return PipelineOutcome.FAILED, FAILURE_NOTICE

    @staticmethod
    def _advance(user_id: int, current: PipelineState, new: PipelineState) -> PipelineState:
        logger.debug(f"user {user_id}: {current.value} -> {new.value}")
        return new
