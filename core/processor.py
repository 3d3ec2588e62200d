"""
Processor — the turn controller.

One call to `process_message()` is one turn for one sender:

    RECEIVED → STATE-LOCKED → USER-PROFILE-ENSURED → TOKEN-RESOLVED
             → DISPATCHED (+ queued postbacks) → STATE-MERGED → PERSISTED → FLUSHED

At most one turn per sender runs at a time: the state record is locked
through the storage's create-or-lock operation, retried a few times with a
fixed wait, and released when the merged state is saved.

Postbacks emitted by handlers are queued and dispatched in emission order
on the same locked state and the same outbound sender, so every message of
the causal chain is flushed together after the last postback settles.
"""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog
from pydantic import ValidationError
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_fixed

from channels.sender import HttpTransport, MessageSender, SenderFactory
from channels.user_loader import HttpUserLoader, UserLoader
from config.settings import BotSettings, ProcessorConfig
from core.ai import ai
from core.request import Request
from core.response import AutoTyping, Response, ResponseOptions
from core.security import TokenIssuer
from database.store_base import BaseStateStorage, StateLockedError
from database.store_memory import InMemoryStateStorage
from models.schemas import (
    EXPECTED_ACTION_KEY, EXPECTED_KEYWORDS_KEY, Event, StateRecord, TurnResult,
)
from routing.postback import PostBack
from routing.reducers import ExitSignal, settle
from routing.resolver import resolve
from routing.wrapper import ReducerWrapper

logger = structlog.get_logger()

RESERVED_KEYS = (EXPECTED_ACTION_KEY, EXPECTED_KEYWORDS_KEY)


class LockTimeoutError(Exception):
    """The sender's state stayed locked for the whole retry budget."""

    def __init__(self, sender_id: str, attempts: int):
        self.sender_id = sender_id
        self.attempts = attempts
        super().__init__(f"State of {sender_id} still locked after {attempts} attempts")


def _now_ms() -> int:
    return int(time.time() * 1000)


# ══════════════════════════════════════════════════════════════
#  TURN
# ══════════════════════════════════════════════════════════════

class QueuedPostBack(PostBack):
    """
    Postback emitter of one turn. Emitted postbacks become futures in the
    turn's queue; `wait()` reserves a slot the handler resolves later.
    """

    def __init__(self, queue: list[asyncio.Future]):
        self._queue = queue

    def __call__(self, action: Optional[str], data: dict[str, Any] = None) -> None:
        future = asyncio.get_running_loop().create_future()
        future.set_result((action, data or {}))
        self._queue.append(future)

    def wait(self) -> Callable[..., None]:
        future = asyncio.get_running_loop().create_future()
        self._queue.append(future)

        def resolve(action: Optional[str] = None, data: dict[str, Any] = None) -> None:
            if not future.done():
                future.set_result((action, data or {}))
        return resolve


class _Turn:
    """Everything one turn (and its postbacks) shares."""

    def __init__(self, event: Event, record: StateRecord, page_id: Optional[str]):
        self.event = event
        self.record = record
        self.sender_id = event.effective_sender_id
        self.page_id = page_id
        self.state: dict[str, Any] = dict(record.state)
        self.explicit: set[str] = set()         # reserved keys set by a handler
        self.queue: list[asyncio.Future] = []
        self.post_back = QueuedPostBack(self.queue)
        self.sender: Optional[MessageSender] = None
        self.token: Optional[str] = None
        self.sent_count = 0
        self.durable_sender_id: Optional[str] = None

    def on_response(self, response: Any, payload: dict[str, Any]) -> None:
        if not self.event.is_optin_ref or self.durable_sender_id:
            return
        if isinstance(response, dict) and response.get("recipient_id"):
            self.durable_sender_id = str(response["recipient_id"])


# ══════════════════════════════════════════════════════════════
#  PROCESSOR
# ══════════════════════════════════════════════════════════════

class Processor:

    def __init__(
        self,
        reducer: Any,
        sender_factory: Callable[..., MessageSender],
        storage: Optional[BaseStateStorage] = None,
        config: Optional[ProcessorConfig] = None,
        token_issuer: Optional[TokenIssuer] = None,
        user_loader: Optional[UserLoader] = None,
        options: Optional[ResponseOptions] = None,
    ):
        if sender_factory is None:
            raise ValueError("Processor requires a sender factory")
        if not hasattr(reducer, "reduce"):
            reducer = ReducerWrapper(reducer)

        self.reducer = reducer
        self.sender_factory = sender_factory
        self.storage = storage or InMemoryStateStorage()
        self.config = config or ProcessorConfig()
        self.token_issuer = token_issuer
        self.user_loader = user_loader
        self.options = options or ResponseOptions(app_url=self.config.app_url)

        if self.config.load_users and self.user_loader is None:
            raise ValueError("load_users is enabled but no user loader was given")

    @classmethod
    def from_settings(cls, reducer: Any, settings: BotSettings,
                      storage: Optional[BaseStateStorage] = None, **kwargs) -> Processor:
        """Wire the HTTP sender (and user loader) from settings."""
        token = settings.sender.page_token
        if not token:
            raise ValueError("sender.page_token is required for the HTTP sender")

        transport = HttpTransport(settings.sender.url, timeout_s=settings.sender.timeout_s)
        user_loader = None
        if settings.processor.load_users:
            user_loader = HttpUserLoader(settings.sender.profile_url, token)

        ai.configure(settings.ai)
        auto_typing = AutoTyping() if settings.sender.auto_typing else None
        options = ResponseOptions(app_url=settings.processor.app_url, auto_typing=auto_typing)

        if storage is None:
            from database.store_factory import create_storage
            storage = create_storage(settings.storage)

        return cls(
            reducer, SenderFactory(transport, token), storage=storage,
            config=settings.processor, user_loader=user_loader, options=options, **kwargs,
        )

    # ── Entry point ───────────────────────────────────────

    async def process_message(self, event: Any, page_id: Optional[str] = None) -> TurnResult:
        """
        Run one turn. Never raises for handler, storage or delivery failures;
        raises LockTimeoutError when the sender's state cannot be locked.
        """
        if isinstance(event, dict):
            try:
                event = Event.model_validate(event)
            except ValidationError as e:
                logger.warning("malformed_event", reason="invalid event payload",
                               errors=e.error_count())
                return TurnResult(status=400, error="invalid event payload")

        if event.is_system:
            return TurnResult(status=204, sender_id=event.effective_sender_id)

        sender_id = event.effective_sender_id
        if not sender_id:
            logger.warning("malformed_event", reason="missing sender identity",
                           event_type=event.event_type.value)
            return TurnResult(status=400, error="missing sender identity")

        page_id = page_id or event.page_id
        record = await self._load_and_lock(sender_id)

        if event.timestamp is not None and event.timestamp in record.last_timestamps:
            logger.info("duplicate_event_skipped", sender_id=sender_id, timestamp=event.timestamp)
            record.lock = 0
            try:
                await self.storage.save_state(record)
            except Exception as e:
                logger.error("state_save_failed", sender_id=sender_id, error=str(e), exc_info=True)
                return TurnResult(status=500, sender_id=sender_id, error=str(e) or e.__class__.__name__)
            return TurnResult(status=204, sender_id=sender_id)

        turn: Optional[_Turn] = None
        error: Optional[str] = None
        try:
            turn = _Turn(event, record, page_id)
            turn.sender = self.sender_factory(sender_id, event, page_id, turn.on_response)

            req = Request(event, turn.state, page_id)
            turn.record = await self.storage.on_after_state_load(req, record)
            if turn.record is not record:
                turn.state = dict(turn.record.state)
                req = Request(event, turn.state, page_id)
            await self._ensure_user(turn)

            if self.token_issuer is not None and not event.is_optin_ref:
                turn.token = await self.token_issuer.get_or_create_token(sender_id)

            await self._dispatch(turn, req)
            await self._drain_postbacks(turn)
        except Exception as e:
            error = str(e) or e.__class__.__name__
            state = turn.state if turn is not None else record.state
            logger.error("turn_failed", sender_id=sender_id,
                         action=resolve(event, state).action,
                         error=error, exc_info=True)

        try:
            if turn is not None:
                await self._persist(turn)
            else:
                record.lock = 0
                await self.storage.save_state(record)
        except Exception as e:
            logger.error("state_save_failed", sender_id=sender_id, error=str(e), exc_info=True)
            error = error or str(e) or e.__class__.__name__

        if turn is None or turn.sender is None:
            return TurnResult(status=500, sender_id=sender_id, error=error)

        send_result = await turn.sender.flush()
        if send_result.status != 200:
            await self._record_send_error(turn, send_result.error, send_result.code)

        if event.is_optin_ref:
            try:
                await self._finish_optin(turn)
            except Exception as e:
                logger.error("state_save_failed", sender_id=turn.durable_sender_id,
                             error=str(e), exc_info=True)
                error = error or str(e) or e.__class__.__name__

        if error is not None:
            return TurnResult(status=500, responses=send_result.responses,
                              sender_id=sender_id, error=error)

        logger.debug("turn_processed", sender_id=sender_id, sent=turn.sent_count,
                     send_status=send_result.status)
        return TurnResult(status=200, responses=send_result.responses,
                          sender_id=turn.durable_sender_id or sender_id,
                          error=send_result.error)

    # ── Locking ───────────────────────────────────────────

    async def _load_and_lock(self, sender_id: str) -> StateRecord:
        cfg = self.config
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(cfg.lock_retries),
                wait=wait_fixed(cfg.retry_delay_s),
                retry=retry_if_exception_type(StateLockedError),
                before_sleep=lambda rs: logger.warning(
                    "state_locked_retrying", sender_id=sender_id,
                    attempt=rs.attempt_number,
                ),
            ):
                with attempt:
                    return await self.storage.get_or_create_and_lock(
                        sender_id, dict(cfg.default_state), cfg.lock_timeout_ms,
                    )
        except RetryError:
            logger.error("state_lock_timeout", sender_id=sender_id, attempts=cfg.lock_retries)
            raise LockTimeoutError(sender_id, cfg.lock_retries) from None

    # ── Before dispatch ───────────────────────────────────

    async def _ensure_user(self, turn: _Turn) -> None:
        if not self.config.load_users or turn.event.is_optin_ref:
            return
        if turn.state.get("user"):
            return
        profile = await self.user_loader.load_user(turn.sender_id)
        if profile:
            turn.state["user"] = profile

    # ── Dispatch ──────────────────────────────────────────

    async def _dispatch(self, turn: _Turn, req: Request) -> None:
        res = Response(
            turn.sender_id, turn.sender.send, is_ref=turn.event.is_optin_ref,
            token=turn.token, options=self.options,
        )
        result = await settle(self.reducer.reduce(req, res, turn.post_back))

        if isinstance(result, ExitSignal):
            logger.debug("exit_not_handled", sender_id=turn.sender_id, exit=result.name)

        turn.state.update(res.new_state)
        turn.explicit.update(k for k in RESERVED_KEYS if k in res.new_state)
        turn.sent_count += res.sent_count

    async def _drain_postbacks(self, turn: _Turn) -> None:
        while turn.queue:
            future = turn.queue.pop(0)
            action, data = await future
            if not action:
                continue
            event = Event(
                sender_id=turn.event.sender_id,
                user_ref=turn.event.user_ref,
                page_id=turn.page_id,
                postback={"action": action, "data": data},
                timestamp=_now_ms(),
            )
            logger.debug("postback_dispatched", sender_id=turn.sender_id, action=action)
            await self._dispatch(turn, Request(event, turn.state, turn.page_id))

    # ── After dispatch ────────────────────────────────────

    async def _persist(self, turn: _Turn) -> None:
        state = turn.state
        if turn.event.is_user_event:
            for key in RESERVED_KEYS:
                if key not in turn.explicit:
                    state[key] = None

        record = turn.record
        timestamps = list(record.last_timestamps)
        if turn.event.timestamp is not None:
            timestamps.append(turn.event.timestamp)

        record.state = state
        record.lock = 0
        record.last_interaction = datetime.now(timezone.utc)
        record.last_timestamps = timestamps[-self.config.dedup_window:]
        await self.storage.save_state(record)

    async def _record_send_error(self, turn: _Turn, message: Optional[str],
                                 code: Optional[int]) -> None:
        try:
            record = await self.storage.get_state(turn.sender_id) or turn.record
            record.state.update({
                "lastSendError": datetime.now(timezone.utc).isoformat(),
                "lastErrorMessage": message,
                "lastErrorCode": code,
            })
            await self.storage.save_state(record)
        except Exception as e:
            logger.warning("send_error_not_recorded", sender_id=turn.sender_id, error=str(e))

    async def _finish_optin(self, turn: _Turn) -> None:
        if turn.sent_count == 0:
            logger.warning("optin_not_handled", user_ref=turn.event.user_ref,
                           action=resolve(turn.event, turn.state).action)
            return
        if turn.durable_sender_id and turn.durable_sender_id != turn.sender_id:
            record = turn.record.model_copy(deep=True)
            record.sender_id = turn.durable_sender_id
            record.lock = 0
            await self.storage.save_state(record)
            logger.info("optin_sender_resolved", user_ref=turn.event.user_ref,
                        sender_id=turn.durable_sender_id)

