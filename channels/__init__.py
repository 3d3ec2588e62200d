"""Outbound delivery and profile loading for the chat platform."""
from channels.sender import (
    HttpTransport,
    MessageSender,
    SendError,
    SenderFactory,
)
from channels.user_loader import HttpUserLoader, UserLoader

__all__ = [
    "HttpTransport", "MessageSender", "SendError", "SenderFactory",
    "HttpUserLoader", "UserLoader",
]
