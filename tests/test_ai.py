"""
Tests for intent matching reducers.
"""
from unittest.mock import patch

import httpx
import pytest

from core.ai import Ai, HttpIntentProvider, ai
from models.schemas import Event, IntentScore
from routing.reducers import BREAK, CONTINUE
from routing.router import Router

_RealAsyncClient = httpx.AsyncClient


class StaticProvider:
    def __init__(self, *scores):
        self.scores = [IntentScore(tag=t, score=s) for t, s in scores]
        self.texts = []

    async def resolve(self, text):
        self.texts.append(text)
        return list(self.scores)


class FailingProvider:
    async def resolve(self, text):
        raise httpx.ConnectError("nlu down")


class TestAiMatch:
    @pytest.mark.asyncio
    async def test_provider_match(self, make_turn):
        engine = Ai()
        provider = engine.register(StaticProvider(("greeting", 0.97), ("bye", 0.7)))
        req, res = make_turn("hello there")

        assert await engine.match("greeting")(req, res) is CONTINUE
        assert req.ai_intent == "greeting"
        assert req.ai_intent_score == 0.97
        assert provider.texts == ["hello there"]

    @pytest.mark.asyncio
    async def test_only_best_tag_counts(self, make_turn):
        engine = Ai()
        engine.register(StaticProvider(("bye", 0.7), ("greeting", 0.97)))
        req, res = make_turn("hello")

        assert await engine.match("bye", 0.5)(req, res) is BREAK

    @pytest.mark.asyncio
    async def test_below_confidence(self, make_turn):
        engine = Ai()
        engine.register(StaticProvider(("greeting", 0.9)))
        req, res = make_turn("hello")

        assert await engine.match("greeting")(req, res) is BREAK
        assert await engine.match("greeting", 0.85)(req, res) is CONTINUE

    @pytest.mark.asyncio
    async def test_threshold_drops_low_scores(self, make_turn):
        engine = Ai(threshold=0.6)
        engine.register(StaticProvider(("greeting", 0.5)))
        req, _ = make_turn("hello")
        assert await engine.scores(req) == []

    @pytest.mark.asyncio
    async def test_any_of_several_intents(self, make_turn):
        engine = Ai()
        engine.register(StaticProvider(("support", 0.99)))
        req, res = make_turn("I need help")
        assert await engine.match(["help", "support"])(req, res) is CONTINUE

    @pytest.mark.asyncio
    async def test_postback_never_matches(self, make_turn):
        engine = Ai().mock_intent("greeting")
        req, res = make_turn(action="/start")
        assert await engine.match("greeting")(req, res) is BREAK

    @pytest.mark.asyncio
    async def test_no_provider(self, make_turn):
        req, res = make_turn("hello")
        assert await Ai().match("greeting")(req, res) is BREAK

    @pytest.mark.asyncio
    async def test_provider_failure_is_a_miss(self, make_turn):
        engine = Ai()
        engine.register(FailingProvider())
        req, res = make_turn("hello")
        assert await engine.match("greeting")(req, res) is BREAK

    @pytest.mark.asyncio
    async def test_prefixes_select_provider(self, make_turn):
        engine = Ai()
        engine.register(StaticProvider(("greeting", 0.99)))
        engine.register(StaticProvider(("pozdrav", 0.99)), prefix="cs")
        req, res = make_turn("ahoj")

        assert await engine.match("pozdrav", prefix="cs")(req, res) is CONTINUE
        assert await engine.match("pozdrav")(req, res) is BREAK

    @pytest.mark.asyncio
    async def test_pre_scored_event_intent(self, make_turn):
        req, res = make_turn(event=Event.intent_event("u1", "hi", "greeting", 0.95))
        assert await Ai().match("greeting")(req, res) is CONTINUE

    @pytest.mark.asyncio
    async def test_mock_intent(self, make_turn):
        engine = Ai().mock_intent("greeting")
        req, res = make_turn("whatever")
        assert await engine.match("greeting")(req, res) is CONTINUE

        engine.mock_intent(None)
        assert await engine.match("greeting")(req, res) is BREAK


class TestAiInRouter:
    @pytest.mark.asyncio
    async def test_intent_route(self, make_turn, sent):
        ai.mock_intent("greeting")
        bot = Router()
        bot.use(ai.match("greeting"), lambda req, res, pb: res.text(f"hi ({req.ai_intent})"))
        bot.use(lambda req, res, pb: res.text("fallback"))

        req, res = make_turn("hey")
        await bot.reduce(req, res)

        assert sent[0]["message"]["text"] == "hi (greeting)"

    @pytest.mark.asyncio
    async def test_intent_in_or_group(self, make_turn, sent):
        ai.mock_intent("other")
        bot = Router()
        bot.use(["/help", ai.match("help")], lambda req, res, pb: res.text("help"))
        bot.use(lambda req, res, pb: res.text("fallback"))

        req, res = make_turn(action="/help")
        await bot.reduce(req, res)
        req, res = make_turn("??")
        await bot.reduce(req, res)

        assert [p["message"]["text"] for p in sent] == ["help", "fallback"]


class TestHttpIntentProvider:
    @pytest.mark.asyncio
    async def test_resolve(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"tags": [
                {"tag": "greeting", "score": 0.91}, {"tag": "bye", "score": 0.2},
            ]})

        provider = HttpIntentProvider("https://nlu.example/model", matches=2)
        with patch("core.ai.httpx.AsyncClient",
                   side_effect=lambda **kw: _RealAsyncClient(transport=httpx.MockTransport(handler), **kw)):
            scores = await provider.resolve("hello")

        assert [(s.tag, s.score) for s in scores] == [("greeting", 0.91), ("bye", 0.2)]
        assert requests[0].url.params["text"] == "hello"
        assert requests[0].url.params["matches"] == "2"
