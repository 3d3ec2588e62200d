"""
Action Resolver — derives "what the user is trying to do" from an event.

Rules are tried in a fixed order and the first one that produces an action
wins:

  1. referral ref payload
  2. postback payload
  3. optin ref (base64 JSON, raw string fallback)
  4. quick reply payload
  5. thread hand-off metadata (or the bare "pass-thread" action)
  6. exactly one matching expected keyword
  7. the expected action
  8. nothing — free-text handlers may still run

Payload parsing is permissive: payloads come from several producers and a
malformed one degrades to a best-effort action instead of raising.
"""
from __future__ import annotations

import base64
import binascii
import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import structlog

from models.schemas import (
    EXPECTED_ACTION_KEY, EXPECTED_KEYWORDS_KEY, PASS_THREAD_ACTION, Event,
)
from routing.paths import normalize
from utils.tokenizer import tokenize

logger = structlog.get_logger()

_JSON_OBJECT = re.compile(r"^\{.*\}$", re.DOTALL)


@dataclass
class ResolvedAction:
    action: Optional[str]
    data: dict[str, Any] = field(default_factory=dict)
    source: str = ""                        # which rule produced it

    def __bool__(self):
        return bool(self.action)


# ──────────────────────────────────────────────────────────────
#  Payload parsing
# ──────────────────────────────────────────────────────────────

def _loads_object(text: str) -> Optional[dict]:
    if not _JSON_OBJECT.match(text.strip()):
        return None
    try:
        value = json.loads(text)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def parse_action_payload(value: Any) -> tuple[Optional[str], dict[str, Any]]:
    """
    Accepts "action", {"action", "data"}, {"payload": "<json>" | {...}} or a
    JSON string of either object form. Anything else becomes the action.
    """
    if value is None:
        return None, {}

    if isinstance(value, str):
        parsed = _loads_object(value)
        if parsed is None:
            return value or None, {}
        value = parsed

    if not isinstance(value, dict):
        return str(value), {}

    if isinstance(value.get("action"), str):
        data = value.get("data")
        return value["action"], data if isinstance(data, dict) else {}

    payload = value.get("payload", value)
    if isinstance(payload, str):
        parsed = _loads_object(payload)
        if parsed is None:
            return payload or None, {}
        payload = parsed

    if isinstance(payload, dict):
        data = payload.get("data")
        if not isinstance(data, dict):
            data = {k: v for k, v in payload.items() if k != "action"}
        action = payload.get("action")
        return (str(action) if action else None), data

    return str(payload), {}


def _decode_optin_ref(ref: Any) -> tuple[Optional[str], dict[str, Any]]:
    if isinstance(ref, str):
        try:
            decoded = base64.b64decode(ref, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError, ValueError):
            decoded = None
        if decoded is not None and _loads_object(decoded) is not None:
            return parse_action_payload(decoded)
    return parse_action_payload(ref)


# ──────────────────────────────────────────────────────────────
#  Keyword matching
# ──────────────────────────────────────────────────────────────

def match_keyword(expected_keywords: list[dict[str, Any]], text: str) -> Optional[dict[str, Any]]:
    """The single keyword matching the normalized text; None when 0 or >1."""
    normalized = tokenize(text)
    if not normalized or not expected_keywords:
        return None

    found = []
    for keyword in expected_keywords:
        pattern = keyword.get("match") if isinstance(keyword, dict) else None
        if not pattern:
            continue
        try:
            if re.search(pattern, normalized):
                found.append(keyword)
        except re.error:
            logger.warning("invalid_keyword_pattern", pattern=pattern)

    if len(found) != 1:
        if len(found) > 1:
            logger.debug("ambiguous_keyword_match", text=normalized, matches=len(found))
        return None
    return found[0]


# ──────────────────────────────────────────────────────────────
#  Resolver
# ──────────────────────────────────────────────────────────────

def _from_referral(event: Event, state: dict) -> Optional[tuple]:
    if event.referral is None:
        return None
    return parse_action_payload(event.referral)


def _from_postback(event: Event, state: dict) -> Optional[tuple]:
    if event.postback is None:
        return None
    return parse_action_payload(event.postback)


def _from_optin(event: Event, state: dict) -> Optional[tuple]:
    if event.optin is None:
        return None
    return _decode_optin_ref(event.optin)


def _from_quick_reply(event: Event, state: dict) -> Optional[tuple]:
    if event.quick_reply is None:
        return None
    return parse_action_payload(event.quick_reply)


def _from_pass_thread(event: Event, state: dict) -> Optional[tuple]:
    if event.pass_thread is None:
        return None
    metadata = event.pass_thread.get("metadata")
    if not metadata:
        return PASS_THREAD_ACTION, {}
    return parse_action_payload(metadata)


def _from_keywords(event: Event, state: dict) -> Optional[tuple]:
    keywords = state.get(EXPECTED_KEYWORDS_KEY)
    if not keywords or not event.text:
        return None
    keyword = match_keyword(keywords, event.text)
    if keyword is None:
        return None
    return keyword.get("action"), keyword.get("data") or {}


def _from_expected(event: Event, state: dict) -> Optional[tuple]:
    expected = state.get(EXPECTED_ACTION_KEY)
    if not expected:
        return None
    if isinstance(expected, str):
        return expected, {}
    return expected.get("action"), expected.get("data") or {}


Rule = Callable[[Event, dict], Optional[tuple]]

RULES: list[tuple[str, Rule]] = [
    ("referral", _from_referral),
    ("postback", _from_postback),
    ("optin", _from_optin),
    ("quick_reply", _from_quick_reply),
    ("pass_thread", _from_pass_thread),
    ("keyword", _from_keywords),
    ("expected", _from_expected),
]


def resolve(event: Event, state: Optional[dict[str, Any]] = None) -> ResolvedAction:
    """Apply the rules in order; the first producing an action wins."""
    state = state or {}
    for source, rule in RULES:
        found = rule(event, state)
        if not found:
            continue
        action, data = found
        if action:
            return ResolvedAction(normalize(action), data or {}, source)
    return ResolvedAction(None, {}, "")
