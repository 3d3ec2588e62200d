"""
Callbacks — bring the user back to where a side question interrupted them.

    bot.use(callback_middleware())

    def order(req, res, post_back):
        if not req.is_from_callback():
            res.text("What size?")
        if not req.has_callback():
            res.set_callback("order", text="Back to the order")

    def opening_hours(req, res, post_back):
        res.text("We are open 9-17")
        if not res.proceed_callback():
            res.add_callback_quick_reply("Continue")

The middleware takes the stored callback off the state at the start of
every dispatch. It is offered once, unless a handler stores it again or
the route keeps it with `sustain_callback()`.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog

from models.schemas import (
    CALLBACK_ACTION_KEY, CALLBACK_CONTEXT_KEY, CALLBACK_TEXT_KEY,
    DEFAULT_CALLBACK_CONTEXT, FROM_CALLBACK_KEY,
)
from routing.reducers import CONTINUE

logger = structlog.get_logger()

CALLBACK_KEYS = (CALLBACK_ACTION_KEY, CALLBACK_CONTEXT_KEY, CALLBACK_TEXT_KEY)


def current_route(res: Any) -> str:
    """Absolute path of the route the response is being built in."""
    prefix = "" if res.path == "/" else res.path
    return f"{prefix}{res.route_path}"


@dataclass
class PendingCallback:
    """The callback stored in the state when the dispatch started."""
    action: Optional[str]
    context: str
    text: Optional[str]
    is_text: bool
    post_back: Callable[..., Any]

    def offered(self, res: Any, context: Optional[str] = None) -> bool:
        if not self.action or not self.is_text:
            return False
        if context == self.context:
            return False
        return self.action != current_route(res)

    def proceed(self, res: Any, context: Optional[str] = None) -> bool:
        if not self.offered(res, context):
            return False
        logger.debug("callback_proceeded", action=self.action, context=self.context)
        self.post_back(self.action, {FROM_CALLBACK_KEY: self.context})
        return True

    def add_quick_reply(self, res: Any, text: str) -> None:
        if not self.offered(res):
            return
        res.add_quick_reply(self.action, self.text or text,
                            {FROM_CALLBACK_KEY: self.context}, prepend=True)


def callback_middleware() -> Callable:
    def take_callback(req, res, post_back=None):
        action = req.state.get(CALLBACK_ACTION_KEY)
        res.callback = PendingCallback(
            action=action,
            context=req.state.get(CALLBACK_CONTEXT_KEY) or DEFAULT_CALLBACK_CONTEXT,
            text=req.state.get(CALLBACK_TEXT_KEY),
            is_text=req.is_text,
            post_back=post_back,
        )
        if action:
            res.set_state({key: None for key in CALLBACK_KEYS})
        return CONTINUE

    return take_callback


def sustain_callback() -> Callable:
    """Keeps the stored callback for one more turn."""
    def keep_callback(req, res, post_back=None):
        if req.state.get(CALLBACK_ACTION_KEY):
            res.set_state({key: req.state.get(key) for key in CALLBACK_KEYS})
        return CONTINUE

    return keep_callback
