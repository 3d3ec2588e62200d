"""
Response — the per-turn output and state-mutation builder.

Handlers never touch the persisted state directly. They record patches
(`set_state`, `expected`, quick-reply keywords) and queue outgoing payloads;
the Processor merges `new_state` into the stored state once the turn
settles.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from models.schemas import (
    CALLBACK_ACTION_KEY, CALLBACK_CONTEXT_KEY, CALLBACK_TEXT_KEY, DEFAULT_CALLBACK_CONTEXT,
    EXPECTED_ACTION_KEY, EXPECTED_KEYWORDS_KEY,
)
from routing.paths import make_absolute
from utils.quick_replies import make_quick_replies


@dataclass
class AutoTyping:
    time: int = 450                     # ms per `per_characters` characters
    per_characters: int = len("Sample text Sample texts")
    min_time: int = 400
    max_time: int = 1400

    def duration(self, text: Optional[str]) -> int:
        length = len(text) if isinstance(text, str) else self.per_characters
        per_char = self.time / self.per_characters
        return int(min(max(length * per_char, self.min_time), self.max_time))


@dataclass
class ResponseOptions:
    translator: Callable[[str], str] = field(default=lambda text: text)
    app_url: str = ""
    auto_typing: Optional[AutoTyping] = None


class Response:

    def __init__(
        self,
        sender_id: str,
        send: Callable[[dict[str, Any]], Any],
        is_ref: bool = False,
        token: Optional[str] = None,
        options: Optional[ResponseOptions] = None,
    ):
        self.sender_id = sender_id
        self.is_ref = is_ref
        self.token = token
        self.options = options or ResponseOptions()
        self.new_state: dict[str, Any] = {}
        self.data: dict[str, Any] = {}      # scratch space shared by the turn's reducers
        self.path = "/"
        self.route_path = "/"
        self.sent_count = 0
        self.callback: Optional[Any] = None   # PendingCallback, set by callback_middleware()

        self._send = send
        self._t = self.options.translator
        self._quick_reply_collector: list[dict[str, Any]] = []

    # ── Location ──────────────────────────────────────────

    def set_path(self, absolute_path: str, route_path: str = "/") -> None:
        self.path = absolute_path
        self.route_path = route_path

    def to_absolute_action(self, action: str) -> str:
        return make_absolute(action, self.path)

    # ── State ─────────────────────────────────────────────

    def set_state(self, patch: dict[str, Any]) -> Response:
        self.new_state.update(patch)
        return self

    def expected(self, action: Optional[str], data: dict[str, Any] = None) -> Response:
        """Action to run when the next message is bare free text; None clears it."""
        if not action:
            return self.set_state({EXPECTED_ACTION_KEY: None})
        return self.set_state({
            EXPECTED_ACTION_KEY: {"action": make_absolute(action, self.path), "data": data or {}},
        })

    def add_quick_reply(self, action: str, title: str, data: dict[str, Any] = None,
                        prepend: bool = False) -> Response:
        """Collected replies join the quick replies of the next `text()`."""
        reply = {"action": make_absolute(action, self.path), "title": title, **(data or {})}
        if prepend:
            reply["prepend"] = True
        self._quick_reply_collector.append(reply)
        return self

    # ── Callbacks ─────────────────────────────────────────

    def set_callback(self, action: str, context: Optional[str] = None,
                     text: Optional[str] = None) -> Response:
        """Where `proceed_callback()` returns the user to; `text` titles its quick reply."""
        return self.set_state({
            CALLBACK_ACTION_KEY: self.to_absolute_action(action),
            CALLBACK_CONTEXT_KEY: context or DEFAULT_CALLBACK_CONTEXT,
            CALLBACK_TEXT_KEY: text,
        })

    def proceed_callback(self, context: Optional[str] = None) -> bool:
        return self.callback is not None and self.callback.proceed(self, context)

    def add_callback_quick_reply(self, text: str) -> Response:
        if self.callback is not None:
            self.callback.add_quick_reply(self, text)
        return self

    # ── Output ────────────────────────────────────────────

    def _recipient(self) -> dict[str, Any]:
        if self.is_ref:
            return {"user_ref": self.sender_id}
        return {"id": self.sender_id}

    def send(self, payload: dict[str, Any]) -> Response:
        self.sent_count += 1
        self._send(payload)
        return self

    def text(self, text: str, *args: Any, quick_replies: Any = None) -> Response:
        """
        Send a text. Positional args are %-formatted into the translated
        text; a trailing dict or list is taken as quick replies.
        """
        if quick_replies is None and args and isinstance(args[-1], (dict, list)):
            quick_replies, args = args[-1], args[:-1]

        translated = self._t(text)
        if args:
            translated = translated % tuple("" if a is None else a for a in args)

        message: dict[str, Any] = {"text": translated}

        if quick_replies or self._quick_reply_collector:
            replies, keywords = make_quick_replies(
                quick_replies or {}, self.path, self._t, self._quick_reply_collector,
            )
            self._quick_reply_collector = []
            message["quick_replies"] = replies
            self.set_state({EXPECTED_KEYWORDS_KEY: keywords})

        self._auto_typing(translated)
        return self.send({"recipient": self._recipient(), "message": message})

    def image(self, url: str) -> Response:
        if not url.startswith(("http://", "https://")):
            url = f"{self.options.app_url}{url}"
        self._auto_typing(None)
        return self.send({
            "recipient": self._recipient(),
            "message": {"attachment": {"type": "image", "payload": {"url": url}}},
        })

    def wait(self, ms: int = 600) -> Response:
        return self.send({"wait": ms})

    def typing_on(self) -> Response:
        return self._sender_action("typing_on")

    def typing_off(self) -> Response:
        return self._sender_action("typing_off")

    def seen(self) -> Response:
        return self._sender_action("mark_seen")

    def pass_thread(self, target_app_id: str, data: Any = None) -> Response:
        metadata = data if data is None or isinstance(data, str) else json.dumps(data)
        return self.send({
            "recipient": self._recipient(),
            "target_app_id": target_app_id,
            "metadata": metadata,
        })

    def _sender_action(self, action: str) -> Response:
        return self.send({"recipient": self._recipient(), "sender_action": action})

    def _auto_typing(self, text: Optional[str]) -> None:
        typing = self.options.auto_typing
        if typing is None:
            return
        self.typing_on().wait(typing.duration(text))
