"""
Bot tokens — per-sender secrets used to authorize callbacks from web views.
"""
from __future__ import annotations

from typing import Optional, Protocol

import structlog

from database.token_memory import InMemoryTokenStorage

logger = structlog.get_logger()


class TokenIssuer(Protocol):
    async def get_or_create_token(self, sender_id: str) -> str:
        ...


class SecurityMiddleware:
    """Issues tokens through a token storage; optional Processor collaborator."""

    def __init__(self, token_storage: Optional[InMemoryTokenStorage] = None):
        self.token_storage = token_storage or InMemoryTokenStorage()

    async def get_or_create_token(self, sender_id: str) -> str:
        token = await self.token_storage.get_or_create_token(sender_id)
        logger.debug("bot_token_issued", sender_id=sender_id)
        return token.token

    async def sender_for_token(self, token: str) -> Optional[str]:
        found = await self.token_storage.find_by_token(token)
        return found.sender_id if found else None
