"""
Tests for action resolution: payload parsing, rule precedence and keyword matching.
"""
import base64
import json

import pytest

from models.schemas import EXPECTED_ACTION_KEY, EXPECTED_KEYWORDS_KEY, Event
from routing.resolver import match_keyword, parse_action_payload, resolve
from utils.tokenizer import set_tokenizer, tokenize


# ──────────────────────────────────────────────────────────────
#  Payload parsing
# ──────────────────────────────────────────────────────────────

class TestParseActionPayload:
    def test_bare_string(self):
        assert parse_action_payload("/start") == ("/start", {})

    def test_action_object(self):
        assert parse_action_payload({"action": "/buy", "data": {"sku": 7}}) == ("/buy", {"sku": 7})

    def test_json_string(self):
        raw = json.dumps({"action": "/buy", "data": {"sku": 7}})
        assert parse_action_payload(raw) == ("/buy", {"sku": 7})

    def test_payload_holding_json(self):
        value = {"title": "Buy", "payload": json.dumps({"action": "/buy", "data": {"n": 1}})}
        assert parse_action_payload(value) == ("/buy", {"n": 1})

    def test_payload_holding_plain_action(self):
        assert parse_action_payload({"payload": "/help"}) == ("/help", {})

    def test_payload_holding_object(self):
        assert parse_action_payload({"payload": {"action": "/x", "data": {"a": 1}}}) == ("/x", {"a": 1})

    def test_broken_json_degrades_to_action(self):
        assert parse_action_payload("{not json") == ("{not json", {})

    def test_unknown_shape_degrades(self):
        assert parse_action_payload(42) == ("42", {})
        assert parse_action_payload(None) == (None, {})

    def test_non_dict_data_is_dropped(self):
        assert parse_action_payload({"action": "/x", "data": "oops"}) == ("/x", {})


# ──────────────────────────────────────────────────────────────
#  Rule precedence
# ──────────────────────────────────────────────────────────────

class TestResolvePrecedence:
    def test_referral_outranks_postback(self):
        event = Event.postback_event("u", "/get-started", ref_action="/promo", ref_data={"c": 1})
        resolved = resolve(event, {})
        assert resolved.action == "/promo"
        assert resolved.data == {"c": 1}
        assert resolved.source == "referral"

    def test_postback(self):
        resolved = resolve(Event.postback_event("u", "/start", {"a": 1}), {})
        assert (resolved.action, resolved.data, resolved.source) == ("/start", {"a": 1}, "postback")

    def test_optin_base64_json(self):
        resolved = resolve(Event.optin_event("ref-1", "/welcome", {"from": "web"}), {})
        assert resolved.action == "/welcome"
        assert resolved.data == {"from": "web"}

    def test_optin_raw_string_fallback(self):
        resolved = resolve(Event(user_ref="ref-1", optin="/plain"), {})
        assert resolved.action == "/plain"

    def test_optin_base64_of_non_json_is_raw(self):
        ref = base64.b64encode(b"hello").decode("ascii")
        resolved = resolve(Event(user_ref="ref-1", optin=ref), {})
        assert resolved.action == f"/{ref}"

    def test_quick_reply_outranks_expectations(self):
        event = Event.quick_reply_event("u", "/buy", {"sku": 7}, text="Buy")
        state = {
            EXPECTED_ACTION_KEY: {"action": "/other", "data": {}},
            EXPECTED_KEYWORDS_KEY: [{"action": "/kw", "match": "^buy$", "data": {}}],
        }
        resolved = resolve(event, state)
        assert resolved.action == "/buy"
        assert resolved.data == {"sku": 7}
        assert resolved.source == "quick_reply"

    def test_pass_thread_metadata(self):
        event = Event.pass_thread_event("u", "app", {"action": "/handover", "data": {"x": 1}})
        resolved = resolve(event, {})
        assert (resolved.action, resolved.data) == ("/handover", {"x": 1})

    def test_pass_thread_without_metadata(self):
        resolved = resolve(Event.pass_thread_event("u", "app"), {})
        assert resolved.action == "/pass-thread"
        assert resolved.data == {}

    def test_single_keyword_match(self):
        state = {EXPECTED_KEYWORDS_KEY: [
            {"action": "/yes", "match": "^yes$", "data": {"v": 1}},
            {"action": "/no", "match": "^no$", "data": {}},
        ]}
        resolved = resolve(Event.text_message("u", "Yes!"), state)
        assert (resolved.action, resolved.data, resolved.source) == ("/yes", {"v": 1}, "keyword")

    def test_ambiguous_keywords_yield_nothing(self):
        state = {EXPECTED_KEYWORDS_KEY: [
            {"action": "/a", "match": "^foo$", "data": {}},
            {"action": "/b", "match": "^foo$", "data": {}},
        ]}
        assert resolve(Event.text_message("u", "foo"), state).action is None

    def test_ambiguous_keywords_fall_through_to_expected(self):
        state = {
            EXPECTED_KEYWORDS_KEY: [
                {"action": "/a", "match": "^foo$", "data": {}},
                {"action": "/b", "match": "^foo$", "data": {}},
            ],
            EXPECTED_ACTION_KEY: {"action": "/fallback", "data": {"k": 2}},
        }
        resolved = resolve(Event.text_message("u", "foo"), state)
        assert (resolved.action, resolved.data, resolved.source) == ("/fallback", {"k": 2}, "expected")

    def test_expected_action(self):
        state = {EXPECTED_ACTION_KEY: {"action": "/ask-name", "data": {}}}
        assert resolve(Event.text_message("u", "John"), state).action == "/ask-name"

    def test_nothing(self):
        resolved = resolve(Event.text_message("u", "hello"), {})
        assert resolved.action is None
        assert not resolved

    def test_relative_payload_is_normalized(self):
        assert resolve(Event.postback_event("u", "start"), {}).action == "/start"


# ──────────────────────────────────────────────────────────────
#  Keywords and tokenization
# ──────────────────────────────────────────────────────────────

class TestKeywords:
    def test_tokenize_folds_diacritics(self):
        assert tokenize("Příliš Žluťoučký kůň") == "prilis-zlutoucky-kun"
        assert tokenize("  Go   back! ") == "go-back"

    def test_match_against_tokenized_text(self):
        keywords = [{"action": "/back", "match": "^go-back$", "data": {}}]
        assert match_keyword(keywords, "Go back")["action"] == "/back"

    def test_no_match(self):
        keywords = [{"action": "/back", "match": "^go-back$", "data": {}}]
        assert match_keyword(keywords, "forward") is None

    def test_invalid_pattern_is_skipped(self):
        keywords = [
            {"action": "/bad", "match": "([", "data": {}},
            {"action": "/ok", "match": "^ok$", "data": {}},
        ]
        assert match_keyword(keywords, "ok")["action"] == "/ok"

    def test_custom_tokenizer(self):
        set_tokenizer(lambda text: text.upper())
        keywords = [{"action": "/x", "match": "^HI$", "data": {}}]
        assert match_keyword(keywords, "hi")["action"] == "/x"
