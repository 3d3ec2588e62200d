"""
AI intent matching — reducers driven by a pluggable intent scorer.

    ai.register(HttpIntentProvider("https://nlu.example.com/model"))

    bot.use(ai.match("greeting"), greet)
    bot.use(["/help", ai.match(["help", "support"], 0.8)], show_help)

A matching reducer returns CONTINUE when the scorer's best tag is one of
the intents with at least the required confidence, BREAK otherwise. The
matched intent is left on `req.ai_intent` / `req.ai_intent_score`.
"""
from __future__ import annotations

from typing import Any, Callable, Optional, Protocol, Union

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from models.schemas import IntentScore
from routing.reducers import BREAK, CONTINUE

logger = structlog.get_logger()

DEFAULT_PREFIX = "default"


class IntentProvider(Protocol):
    async def resolve(self, text: str) -> list[IntentScore]:
        ...


class HttpIntentProvider:
    """Asks an NLU service for tags: GET `{url}?text=...&matches=n`."""

    def __init__(self, url: str, matches: int = 3, timeout_s: float = 5.0):
        self.url = url
        self.matches = matches
        self.timeout_s = timeout_s

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(min=1, max=5),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def resolve(self, text: str) -> list[IntentScore]:
        async with httpx.AsyncClient(timeout=self.timeout_s) as client:
            resp = await client.get(self.url, params={"text": text, "matches": self.matches})
            resp.raise_for_status()
            tags = resp.json().get("tags", [])
        return [IntentScore(tag=t["tag"], score=t["score"]) for t in tags]


class Ai:

    def __init__(self, confidence: float = 0.94, threshold: float = 0.6):
        self.confidence = confidence    # required by match()
        self.threshold = threshold      # scores below are dropped
        self._providers: dict[str, IntentProvider] = {}
        self._mock: Optional[IntentScore] = None

    def register(self, provider: IntentProvider, prefix: str = DEFAULT_PREFIX) -> IntentProvider:
        self._providers[prefix] = provider
        return provider

    def configure(self, config: Any) -> Ai:
        """Take `confidence` and `threshold` from an AiConfig."""
        self.confidence = config.confidence
        self.threshold = config.threshold
        return self

    def mock_intent(self, intent: Optional[str] = None, confidence: Optional[float] = None) -> Ai:
        """Every text will score `intent`; call with no intent to stop mocking."""
        if intent is None:
            self._mock = None
        else:
            self._mock = IntentScore(tag=intent, score=confidence if confidence is not None
                                     else self.confidence)
        return self

    async def scores(self, req: Any, prefix: str = DEFAULT_PREFIX) -> list[IntentScore]:
        """Best-first intent scores for the request text."""
        if self._mock is not None:
            return [self._mock]
        if req.event.intent:
            score = req.event.intent_score
            return [IntentScore(tag=req.event.intent,
                                score=score if score is not None else self.confidence)]

        provider = self._providers.get(prefix)
        text = req.text()
        if provider is None or not text:
            return []

        try:
            found = await provider.resolve(text)
        except Exception as e:
            logger.warning("intent_resolve_failed", prefix=prefix, error=str(e))
            return []

        found = [s for s in found if s.score >= self.threshold]
        return sorted(found, key=lambda s: s.score, reverse=True)

    def match(self, intent: Union[str, list[str]], confidence: Optional[float] = None,
              prefix: str = DEFAULT_PREFIX) -> Callable:
        intents = [intent] if isinstance(intent, str) else list(intent)

        async def match_intent(req, res, post_back=None):
            if not req.is_text:
                return BREAK
            found = await self.scores(req, prefix)
            if not found:
                return BREAK
            best = found[0]
            required = confidence if confidence is not None else self.confidence
            if best.tag not in intents or best.score < required:
                return BREAK
            req.ai_intent = best.tag
            req.ai_intent_score = best.score
            return CONTINUE

        match_intent.__name__ = f"ai_match_{'_'.join(intents)}"
        return match_intent


ai = Ai()
