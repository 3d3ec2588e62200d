"""
Request — read-only view of one incoming event plus the sender's state.

The action is resolved once, at construction, from the event and the
expectations stored in the state.
"""
from __future__ import annotations

from typing import Any, Optional

from models.schemas import (
    CALLBACK_ACTION_KEY, CALLBACK_CONTEXT_KEY, EXPECTED_ACTION_KEY, EXPECTED_KEYWORDS_KEY,
    FROM_CALLBACK_KEY, Attachment, Event, EventType,
    ExpectedAction, ExpectedKeyword,
)
from routing.resolver import ResolvedAction, resolve
from utils.tokenizer import tokenize


class Request:

    def __init__(self, event: Event, state: dict[str, Any], page_id: Optional[str] = None):
        self.event = event
        self.state = state
        self.sender_id = event.effective_sender_id
        self.page_id = page_id or event.page_id
        self.attachments: list[Attachment] = list(event.attachments)
        self._resolved: ResolvedAction = resolve(event, state)

        self.ai_intent: Optional[str] = event.intent
        self.ai_intent_score: Optional[float] = event.intent_score

    # ── Action ────────────────────────────────────────────

    def action(self) -> Optional[str]:
        return self._resolved.action

    def action_data(self) -> dict[str, Any]:
        return dict(self._resolved.data)

    @property
    def action_source(self) -> str:
        return self._resolved.source

    # ── Classification ────────────────────────────────────

    @property
    def is_message(self) -> bool:
        return self.event.is_message

    @property
    def is_text(self) -> bool:
        return bool(self.event.text) and self.event.quick_reply is None

    @property
    def is_postback(self) -> bool:
        return self.event.postback is not None

    @property
    def is_quick_reply(self) -> bool:
        return self.event.quick_reply is not None

    @property
    def is_referral(self) -> bool:
        return self.event.referral is not None

    @property
    def is_optin(self) -> bool:
        return self.event.optin is not None

    @property
    def is_pass_thread(self) -> bool:
        return self.event.pass_thread is not None

    @property
    def is_attachment(self) -> bool:
        return len(self.attachments) > 0

    @property
    def event_type(self) -> EventType:
        return self.event.event_type

    @property
    def timestamp(self) -> Optional[int]:
        return self.event.timestamp

    # ── Content ───────────────────────────────────────────

    def text(self, tokenized: bool = False) -> str:
        text = self.event.text or ""
        return tokenize(text) if tokenized else text

    def attachment(self, index: int = 0) -> Optional[Attachment]:
        if len(self.attachments) <= index:
            return None
        return self.attachments[index]

    def attachment_url(self, index: int = 0) -> Optional[str]:
        attachment = self.attachment(index)
        if attachment is None:
            return None
        return attachment.url or attachment.payload.get("url")

    def _is_attachment_type(self, kind: str, index: int) -> bool:
        attachment = self.attachment(index)
        return attachment is not None and attachment.type == kind

    def is_image(self, index: int = 0) -> bool:
        return self._is_attachment_type("image", index)

    def is_file(self, index: int = 0) -> bool:
        return self._is_attachment_type("file", index)

    # ── Expectations ──────────────────────────────────────

    def expected(self) -> Optional[ExpectedAction]:
        value = self.state.get(EXPECTED_ACTION_KEY)
        if not value:
            return None
        if isinstance(value, str):
            return ExpectedAction(action=value)
        return ExpectedAction.model_validate(value)

    def expected_keywords(self) -> list[ExpectedKeyword]:
        return [ExpectedKeyword.model_validate(k) for k in self.state.get(EXPECTED_KEYWORDS_KEY) or []]

    # ── Callbacks ─────────────────────────────────────────

    def has_callback(self, context: Optional[str] = None) -> bool:
        """A text arrived while a callback of another context is stored."""
        if not self.state.get(CALLBACK_ACTION_KEY) or not self.is_text:
            return False
        return context != self.state.get(CALLBACK_CONTEXT_KEY)

    def is_from_callback(self, context: Optional[str] = None) -> bool:
        from_callback = self._resolved.data.get(FROM_CALLBACK_KEY)
        if context is None:
            return bool(from_callback)
        return from_callback == context

    def __repr__(self):
        return f"<Request sender={self.sender_id} action={self.action()} type={self.event_type.value}>"
