"""
Tester — drives a bot through whole turns without a chat platform.

    t = Tester(bot)
    await t.text("hello")
    t.passed_action("/start")
    t.last_res().contains("welcome")
    await t.quick_reply("play")        # taps the reply offered last time

The Processor runs for real: in-memory state storage, the regular
MessageSender, and a transport that records payloads instead of posting
them.
"""
from __future__ import annotations

import itertools
import time
import uuid
from typing import Any, Optional

from channels.sender import MessageSender
from config.settings import ProcessorConfig
from core.processor import Processor
from database.store_base import BaseStateStorage
from database.store_memory import InMemoryStateStorage
from models.schemas import Event, TurnResult
from routing.paths import action_matches
from routing.resolver import parse_action_payload
from routing.wrapper import ReducerWrapper
from testing.asserts import AnyResponseAssert, ResponseAssert, get_quick_replies


class Tester:

    def __init__(
        self,
        reducer: Any,
        sender_id: Optional[str] = None,
        config: Optional[ProcessorConfig] = None,
        storage: Optional[BaseStateStorage] = None,
        **processor_kwargs: Any,
    ):
        if not hasattr(reducer, "reduce"):
            reducer = ReducerWrapper(reducer)

        self.sender_id = sender_id or uuid.uuid4().hex
        self.storage = storage or InMemoryStateStorage()
        self.reducer = reducer
        self.reducer.on("action", self._on_action)

        self.processor = Processor(
            reducer, self._sender_factory, storage=self.storage,
            config=config or ProcessorConfig(), **processor_kwargs,
        )

        self.responses: list[dict[str, Any]] = []
        self.actions: list[dict[str, Any]] = []
        self.result: Optional[TurnResult] = None

        self._responses_collector: list[dict[str, Any]] = []
        self._actions_collector: list[dict[str, Any]] = []
        self._sequence = itertools.count()
        self._last_timestamp = 0

    # ── Plumbing ──────────────────────────────────────────

    async def _transport(self, payload: dict[str, Any], token: Optional[str] = None) -> dict[str, Any]:
        self._responses_collector.append(payload)
        return {
            "recipient_id": self.sender_id,
            "message_id": f"mid.{next(self._sequence)}",
        }

    def _sender_factory(self, sender_id, event=None, page_id=None, response_handler=None):
        return MessageSender(self._transport, "test-token", sender_id, event, page_id,
                             response_handler)

    def _on_action(self, sender_id: str, action: Optional[str], text: str, req: Any) -> None:
        self._actions_collector.append({"action": action, "text": text})

    def _timestamp(self) -> int:
        # strictly increasing, or fast tests would trip the dedup window
        self._last_timestamp = max(int(time.time() * 1000), self._last_timestamp + 1)
        return self._last_timestamp

    async def _request(self, event: Event) -> TurnResult:
        event.timestamp = self._timestamp()
        self.result = await self.processor.process_message(event)
        self.acquire_response_actions()
        return self.result

    def acquire_response_actions(self) -> None:
        """Publish what the last turn sent and passed through, reset the collectors."""
        self.responses = self._responses_collector
        self.actions = self._actions_collector
        self._responses_collector = []
        self._actions_collector = []

    # ── Requests ──────────────────────────────────────────

    async def text(self, text: str) -> TurnResult:
        return await self._request(Event.text_message(self.sender_id, text))

    async def intent(self, intent: str, text: Optional[str] = None,
                     score: Optional[float] = None) -> TurnResult:
        return await self._request(
            Event.intent_event(self.sender_id, text or intent, intent, score),
        )

    async def postback(self, action: str, data: dict[str, Any] = None,
                       ref_action: str = None, ref_data: dict[str, Any] = None) -> TurnResult:
        return await self._request(
            Event.postback_event(self.sender_id, action, data, ref_action, ref_data),
        )

    async def quick_reply(self, action: str, data: dict[str, Any] = None) -> TurnResult:
        """
        Taps a quick reply. When the last response offers one whose action
        matches `action`, its exact payload is used.
        """
        used_action, used_data = action, data or {}
        if self.responses:
            for reply in get_quick_replies(self.responses[-1]):
                route, reply_data = parse_action_payload(reply)
                if action_matches(route, action):
                    used_action, used_data = route, reply_data
                    break
        return await self._request(
            Event.quick_reply_event(self.sender_id, used_action, used_data),
        )

    async def optin(self, action: str, data: dict[str, Any] = None,
                    user_ref: Optional[str] = None) -> TurnResult:
        user_ref = user_ref or f"ref-{uuid.uuid4().hex}"
        return await self._request(Event.optin_event(user_ref, action, data))

    async def pass_thread(self, data: Any = None, app_id: str = "random-app") -> TurnResult:
        return await self._request(Event.pass_thread_event(self.sender_id, app_id, data))

    async def attachment(self, url: str, type_: str = "image") -> TurnResult:
        return await self._request(Event.attachment_event(self.sender_id, url, type_))

    # ── Assertions ────────────────────────────────────────

    def res(self, index: int = 0) -> ResponseAssert:
        if index >= len(self.responses) or index < -len(self.responses):
            raise AssertionError(
                f"Response {index} does not exist. There are {len(self.responses)} responses",
            )
        return ResponseAssert(self.responses[index])

    def any(self) -> AnyResponseAssert:
        return AnyResponseAssert(self.responses)

    def last_res(self) -> ResponseAssert:
        if not self.responses:
            raise AssertionError("There is no response")
        return ResponseAssert(self.responses[-1])

    def passed_action(self, path: str) -> Tester:
        ok = any(
            a["action"] and "*" not in a["action"] and action_matches(a["action"], path)
            for a in self.actions
        )
        if not ok:
            passed = [a["action"] for a in self.actions]
            raise AssertionError(f"Action {path} was not passed. Passed: {passed}")
        return self

    # ── State ─────────────────────────────────────────────

    async def get_state(self) -> dict[str, Any]:
        record = await self.storage.get_state(self.sender_id)
        return record.state if record else {}

    async def set_state(self, patch: dict[str, Any]) -> None:
        record = await self.storage.get_state(self.sender_id)
        if record is None:
            record = await self.storage.get_or_create_and_lock(self.sender_id, {})
            record.lock = 0
        record.state = {**record.state, **patch}
        await self.storage.save_state(record)
