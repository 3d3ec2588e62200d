"""Shared test fixtures for the routing engine."""
import pytest
from typing import Any

from config.settings import AiConfig
from core.ai import ai
from core.request import Request
from core.response import Response
from database.store_factory import reset_storage
from models.schemas import Event
from utils.tokenizer import set_tokenizer


SENDER_ID = "user-1"


@pytest.fixture(autouse=True)
def _reset_globals():
    yield
    ai.mock_intent(None)
    ai.configure(AiConfig())
    set_tokenizer(None)
    reset_storage()


@pytest.fixture
def sent() -> list[dict[str, Any]]:
    """Payloads handed to the Response's send callable."""
    return []


@pytest.fixture
def make_turn(sent):
    """Build a (Request, Response) pair for a text, or a postback when `action` is given."""
    def _make(text: str = "hello", action: str = None, data: dict = None,
              state: dict = None, event: Event = None):
        if event is None:
            if action is not None:
                event = Event.postback_event(SENDER_ID, action, data)
            else:
                event = Event.text_message(SENDER_ID, text)
        req = Request(event, state if state is not None else {})
        res = Response(event.effective_sender_id, sent.append)
        return req, res
    return _make


class PostBackRecorder:
    """Plain postback callable that remembers every emission."""

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []

    def __call__(self, action, data=None):
        self.calls.append((action, data or {}))

    @property
    def actions(self) -> list[str]:
        return [a for a, _ in self.calls]


@pytest.fixture
def post_back() -> PostBackRecorder:
    return PostBackRecorder()
