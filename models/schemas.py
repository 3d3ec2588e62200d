"""
Core data models for the routing engine.
These are the universal types shared across all modules.
"""
from __future__ import annotations

import base64
import json
import time
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


# ──────────────────────────────────────────────────────────────
#  Reserved state keys
# ──────────────────────────────────────────────────────────────

EXPECTED_ACTION_KEY = "_expected_action"
EXPECTED_KEYWORDS_KEY = "_expected_keywords"

CALLBACK_ACTION_KEY = "_callback_action"
CALLBACK_CONTEXT_KEY = "_callback_context"
CALLBACK_TEXT_KEY = "_callback_text"
FROM_CALLBACK_KEY = "_from_callback"     # action data of a postback returning to a callback
DEFAULT_CALLBACK_CONTEXT = "default"

PASS_THREAD_ACTION = "pass-thread"


class EventType(str, Enum):
    MESSAGE = "message"
    POSTBACK = "postback"
    QUICK_REPLY = "quick_reply"
    REFERRAL = "referral"
    OPTIN = "optin"
    PASS_THREAD = "pass_thread"
    ATTACHMENT = "attachment"
    SYSTEM = "system"                       # receipts, echoes, standby


def _now_ms() -> int:
    return int(time.time() * 1000)


# ──────────────────────────────────────────────────────────────
#  Event — one incoming chat event
# ──────────────────────────────────────────────────────────────

class Attachment(BaseModel):
    type: str = "file"                      # image | file | audio | video | location
    url: str = ""
    payload: dict[str, Any] = {}


class Event(BaseModel):
    """
    A single incoming event. Platform adapters map their webhook payloads
    onto this shape; the engine never looks at platform-specific fields.
    """
    sender_id: Optional[str] = None
    page_id: Optional[str] = None
    timestamp: Optional[int] = None
    text: Optional[str] = None
    postback: Optional[Any] = None          # payload: str | {action, data} | {payload: ...}
    quick_reply: Optional[Any] = None       # payload of the tapped quick reply
    referral: Optional[Any] = None          # ref payload of a referral
    optin: Optional[Any] = None             # ref of a first-contact optin
    user_ref: Optional[str] = None          # temporary id of an optin sender
    pass_thread: Optional[dict[str, Any]] = None   # {"metadata": ..., "app_id": ...}
    attachments: list[Attachment] = []
    intent: Optional[str] = None            # pre-scored intent (tests, NLU adapters)
    intent_score: Optional[float] = None
    is_echo: bool = False
    is_delivery: bool = False
    is_read: bool = False
    is_standby: bool = False

    # ── Classification ────────────────────────────────────

    @property
    def is_message(self) -> bool:
        return self.text is not None or self.quick_reply is not None or bool(self.attachments)

    @property
    def is_user_event(self) -> bool:
        """Events initiated by the user reset stale expectations."""
        return (self.is_message or self.postback is not None
                or self.referral is not None)

    @property
    def is_system(self) -> bool:
        return self.is_echo or self.is_delivery or self.is_read or self.is_standby

    @property
    def event_type(self) -> EventType:
        if self.is_system:
            return EventType.SYSTEM
        if self.postback is not None:
            return EventType.POSTBACK
        if self.referral is not None:
            return EventType.REFERRAL
        if self.optin is not None:
            return EventType.OPTIN
        if self.quick_reply is not None:
            return EventType.QUICK_REPLY
        if self.pass_thread is not None:
            return EventType.PASS_THREAD
        if self.attachments and self.text is None:
            return EventType.ATTACHMENT
        return EventType.MESSAGE

    @property
    def is_optin_ref(self) -> bool:
        """First contact through an optin: no durable sender id yet."""
        return not self.sender_id and bool(self.user_ref)

    @property
    def effective_sender_id(self) -> Optional[str]:
        return self.sender_id or self.user_ref

    # ── Factories ─────────────────────────────────────────

    @classmethod
    def text_message(cls, sender_id: str, text: str, **kwargs) -> Event:
        return cls(sender_id=sender_id, text=text, timestamp=kwargs.pop("timestamp", _now_ms()), **kwargs)

    @classmethod
    def postback_event(cls, sender_id: str, action: str, data: dict[str, Any] = None,
                       ref_action: str = None, ref_data: dict[str, Any] = None, **kwargs) -> Event:
        referral = None
        if ref_action:
            referral = {"action": ref_action, "data": ref_data or {}}
        return cls(
            sender_id=sender_id,
            postback={"action": action, "data": data or {}},
            referral=referral,
            timestamp=kwargs.pop("timestamp", _now_ms()),
            **kwargs,
        )

    @classmethod
    def quick_reply_event(cls, sender_id: str, action: str, data: dict[str, Any] = None,
                          text: str = None, **kwargs) -> Event:
        return cls(
            sender_id=sender_id,
            text=text if text is not None else action,
            quick_reply=json.dumps({"action": action, "data": data or {}}),
            timestamp=kwargs.pop("timestamp", _now_ms()),
            **kwargs,
        )

    @classmethod
    def referral_event(cls, sender_id: str, action: str, data: dict[str, Any] = None, **kwargs) -> Event:
        return cls(
            sender_id=sender_id,
            referral={"action": action, "data": data or {}},
            timestamp=kwargs.pop("timestamp", _now_ms()),
            **kwargs,
        )

    @classmethod
    def optin_event(cls, user_ref: str, action: str, data: dict[str, Any] = None, **kwargs) -> Event:
        ref = base64.b64encode(
            json.dumps({"action": action, "data": data or {}}).encode("utf-8")
        ).decode("ascii")
        return cls(user_ref=user_ref, optin=ref, timestamp=kwargs.pop("timestamp", _now_ms()), **kwargs)

    @classmethod
    def pass_thread_event(cls, sender_id: str, app_id: str = "", metadata: Any = None, **kwargs) -> Event:
        if metadata is not None and not isinstance(metadata, str):
            metadata = json.dumps(metadata)
        return cls(
            sender_id=sender_id,
            pass_thread={"app_id": app_id, "metadata": metadata},
            timestamp=kwargs.pop("timestamp", _now_ms()),
            **kwargs,
        )

    @classmethod
    def attachment_event(cls, sender_id: str, url: str, type: str = "file", **kwargs) -> Event:
        return cls(
            sender_id=sender_id,
            attachments=[Attachment(type=type, url=url, payload={"url": url})],
            timestamp=kwargs.pop("timestamp", _now_ms()),
            **kwargs,
        )

    @classmethod
    def intent_event(cls, sender_id: str, text: str, intent: str, score: float = None, **kwargs) -> Event:
        return cls(
            sender_id=sender_id, text=text, intent=intent, intent_score=score,
            timestamp=kwargs.pop("timestamp", _now_ms()), **kwargs,
        )


# ──────────────────────────────────────────────────────────────
#  Expectations — persisted hints about the next turn
# ──────────────────────────────────────────────────────────────

class ExpectedAction(BaseModel):
    action: str
    data: dict[str, Any] = {}


class ExpectedKeyword(BaseModel):
    action: str
    match: str                              # regex over tokenized text
    data: dict[str, Any] = {}


# ──────────────────────────────────────────────────────────────
#  Conversation state record
# ──────────────────────────────────────────────────────────────

class StateRecord(BaseModel):
    """The persisted per-sender document, owned by the lock holder."""
    sender_id: str
    state: dict[str, Any] = {}
    lock: int = 0                           # ms timestamp of the lock, 0 = free
    last_interaction: Optional[datetime] = None
    last_timestamps: list[int] = []         # dedup window of processed events


# ──────────────────────────────────────────────────────────────
#  Results
# ──────────────────────────────────────────────────────────────

class SendResult(BaseModel):
    status: int = 200                       # 200 ok | 403 forbidden | 500 failed
    responses: list[Any] = []
    error: Optional[str] = None
    code: Optional[int] = None


class TurnResult(BaseModel):
    status: int = 200                       # 200 | 204 no-op | 400 malformed | 500 failed
    responses: list[Any] = []
    sender_id: Optional[str] = None
    error: Optional[str] = None


class IntentScore(BaseModel):
    tag: str
    score: float = Field(ge=0.0, le=1.0)
