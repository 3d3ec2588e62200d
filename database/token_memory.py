"""
InMemoryTokenStorage — bot tokens kept in dicts, lost on restart.
"""
from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Optional


@dataclass
class BotToken:
    sender_id: str
    token: str


class InMemoryTokenStorage:

    def __init__(self, token_bytes: int = 32):
        self._token_bytes = token_bytes
        self._by_sender: dict[str, BotToken] = {}
        self._by_token: dict[str, BotToken] = {}

    async def find_by_token(self, token: str) -> Optional[BotToken]:
        return self._by_token.get(token)

    async def get_or_create_token(self, sender_id: str) -> BotToken:
        existing = self._by_sender.get(sender_id)
        if existing is not None:
            return existing
        token = BotToken(sender_id=sender_id, token=secrets.token_urlsafe(self._token_bytes))
        self._by_sender[sender_id] = token
        self._by_token[token.token] = token
        return token
