"""
Quick replies — outgoing reply buttons plus the keywords that let a user
type the button title instead of tapping it.

    replies = {"play": "Play", "back": {"title": "Go back", "page": 2}}
    quick_replies, keywords = make_quick_replies(replies, path="/music")

    keywords → [{"action": "/music/play", "match": "^play$", "data": {}},
                {"action": "/music/back", "match": "^go-back$", "data": {"page": 2}}]
"""
from __future__ import annotations

import json
import re
from typing import Any, Callable, Optional, Union

from routing.paths import make_absolute
from utils.tokenizer import tokenize

Replies = Union[dict[str, Any], list[dict[str, Any]]]

_RESERVED = ("title", "action", "match", "prepend")


def make_expected_keyword(action: str, title: str, matcher: Any = None,
                          data: dict[str, Any] = None) -> dict[str, Any]:
    if isinstance(matcher, re.Pattern):
        match = matcher.pattern
    elif isinstance(matcher, str):
        match = f"^{tokenize(matcher)}$"
    else:
        match = f"^{tokenize(title or '')}$"
    return {"action": action, "match": match, "data": data or {}}


def _as_list(replies: Replies) -> list[dict[str, Any]]:
    if isinstance(replies, list):
        return [dict(r) for r in replies]
    items = []
    for action, value in replies.items():
        if isinstance(value, dict):
            items.append({**value, "action": action})
        else:
            items.append({"title": value, "action": action})
    return items


def make_quick_replies(
    replies: Replies,
    path: str = "/",
    translate: Optional[Callable[[str], str]] = None,
    collected: Optional[list[dict[str, Any]]] = None,
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Build outgoing quick replies and the matching expected keywords."""
    translate = translate or (lambda text: text)
    items = _as_list(replies)

    prepend_at = 0
    for reply in collected or []:
        reply = dict(reply)
        if reply.pop("prepend", False):
            items.insert(prepend_at, reply)
            prepend_at += 1
        else:
            items.append(reply)

    quick_replies = []
    expected_keywords = []
    for reply in items:
        absolute = make_absolute(reply.get("action"), path)
        data = {k: v for k, v in reply.items() if k not in _RESERVED}

        payload: Any = absolute
        if data:
            payload = json.dumps({"action": absolute, "data": data})

        title = translate(reply.get("title") or "")
        expected_keywords.append(make_expected_keyword(absolute, title, reply.get("match"), data))
        quick_replies.append({
            "content_type": "text",
            "title": title,
            "payload": payload,
        })

    return quick_replies, expected_keywords
