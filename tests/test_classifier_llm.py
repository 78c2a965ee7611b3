"""
LLM classifier tests: output coercion, prompt construction and failure
handling. The OpenAI client is replaced by a fake; nothing leaves the box.
"""

from __future__ import annotations

import json
from decimal import Decimal
from types import SimpleNamespace

import pytest

from intent_resolver.classifier_llm import (
    HISTORY_WINDOW,
    OpenAIClassifier,
    build_classifier,
    parse_classifier_output,
)
from intent_resolver.classifier_rules import RuleBasedClassifier
from intent_resolver.exceptions import ClassifierError
from intent_resolver.models import (
    ChatMessage,
    Direction,
    IntentKind,
    SettlementMode,
    TransactionPayload,
)


def _fake_openai(content: str | None = None, error: Exception | None = None, sent: list | None = None):
    """Build a stand-in for ``openai.OpenAI`` returning ``content``."""

    def create(**kwargs):
        if sent is not None:
            sent.append(kwargs)
        if error is not None:
            raise error
        message = SimpleNamespace(content=content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    class FakeOpenAI:
        def __init__(self, **kwargs):
            self.chat = SimpleNamespace(completions=SimpleNamespace(create=create))

    return FakeOpenAI


def _classify(classifier: OpenAIClassifier, **kwargs):
    defaults = {
        "utterance": "Paid Benny £500",
        "known_vendors": ["Benny"],
        "known_banks": ["Barclays"],
        "base_currency": "GBP",
    }
    defaults.update(kwargs)
    return classifier.classify(**defaults)


# ═══════════════════════════════════════════════════════════════════════
# OUTPUT PARSING
# ═══════════════════════════════════════════════════════════════════════


class TestParseClassifierOutput:
    def test_well_formed(self):
        result = parse_classifier_output(
            {
                "intent": "purchase",
                "confidence": 0.92,
                "explanation": "Recording a purchase.",
                "payload": {
                    "quantity": 2,
                    "event": "Arsenal vs Tottenham",
                    "bought_from": "Benny",
                    "cost": 200,
                    "currency": "gbp",
                },
            }
        )
        assert result.intent == IntentKind.PURCHASE
        assert result.confidence == pytest.approx(0.92)
        assert result.explanation == "Recording a purchase."
        p = result.payload
        assert p.quantity == 2
        assert p.event_query == "Arsenal vs Tottenham"
        assert p.cost == Decimal("200")
        assert p.currency == "GBP"

    def test_alias_and_messy_values(self):
        result = parse_classifier_output(
            {
                "intent": "manual_transaction",
                "confidence": "0.8",
                "payload": {
                    "amount": "1,250.50",
                    "direction": "OUT",
                    "mode": "cash",
                    "quantity": "two",
                    "vendor_name": "  ",
                    "currency": "pounds",
                },
            }
        )
        assert result.intent == IntentKind.MANUAL_TRANSFER
        assert result.confidence == pytest.approx(0.8)
        p = result.payload
        assert p.amount == Decimal("1250.50")
        assert p.direction == Direction.OUT
        assert p.mode is None
        assert p.quantity is None
        assert p.vendor_name is None
        assert p.currency is None

    def test_settlement_mode_values(self):
        result = parse_classifier_output({"payload": {"mode": "journal_voucher"}})
        assert result.payload.mode == SettlementMode.JOURNAL_VOUCHER

    def test_unknown_label(self):
        assert parse_classifier_output({"intent": "refund"}).intent == IntentKind.UNKNOWN

    @pytest.mark.parametrize(
        "raw, expected",
        [("nan", 0.0), (5, 1.0), (-1, 0.0), (None, 0.0), ("high", 0.0)],
    )
    def test_confidence_clamped(self, raw, expected):
        assert parse_classifier_output({"confidence": raw}).confidence == expected

    def test_payload_not_an_object(self):
        result = parse_classifier_output({"intent": "order", "payload": ["nope"]})
        assert result.payload == TransactionPayload()
        assert result.explanation == ""

    def test_infinite_money_dropped(self):
        result = parse_classifier_output({"payload": {"cost": "Infinity", "selling": True}})
        assert result.payload.cost is None
        assert result.payload.selling is None


# ═══════════════════════════════════════════════════════════════════════
# PROMPT CONSTRUCTION
# ═══════════════════════════════════════════════════════════════════════


class TestBuildMessages:
    def test_directory_names_in_system_prompt(self):
        messages = OpenAIClassifier(api_key="sk-test")._build_messages(
            "hi", ["Benny", "John Smith"], ["Barclays"], "GBP", (), None
        )
        system = messages[0]["content"]
        assert messages[0]["role"] == "system"
        assert "Known counterparties: Benny, John Smith" in system
        assert "Known bank accounts: Barclays" in system
        assert '"Spurs" → "Tottenham"' in system
        assert messages[-1] == {"role": "user", "content": "hi"}

    def test_collected_fields_sent_back(self):
        memory = TransactionPayload(
            quantity=2, game_id="fx-101", game_name="Arsenal vs Tottenham Hotspur"
        )
        messages = OpenAIClassifier(api_key="sk-test")._build_messages(
            "Benny", [], [], "GBP", (), memory
        )
        system = messages[0]["content"]
        assert "ALREADY COLLECTED" in system
        assert '"event": "Arsenal vs Tottenham Hotspur"' in system
        assert "fx-101" not in system

    def test_history_window(self):
        history = [ChatMessage(role="user", content=f"message {i}") for i in range(15)]
        messages = OpenAIClassifier(api_key="sk-test")._build_messages(
            "latest", [], [], "GBP", history, None
        )
        # system + window + current utterance
        assert len(messages) == HISTORY_WINDOW + 2
        assert messages[1]["content"] == "message 5"


# ═══════════════════════════════════════════════════════════════════════
# API CALLS
# ═══════════════════════════════════════════════════════════════════════


class TestOpenAIClassifier:
    def test_successful_call(self, monkeypatch):
        sent: list = []
        content = json.dumps(
            {
                "intent": "manual_transfer",
                "confidence": 0.9,
                "payload": {"amount": 500, "vendor_name": "Benny", "direction": "out"},
            }
        )
        monkeypatch.setattr("openai.OpenAI", _fake_openai(content, sent=sent))

        result = _classify(OpenAIClassifier(api_key="sk-test", model="gpt-test"))

        assert result.intent == IntentKind.MANUAL_TRANSFER
        assert result.payload.amount == Decimal("500")
        assert sent[0]["model"] == "gpt-test"
        assert sent[0]["response_format"] == {"type": "json_object"}

    def test_transport_error_becomes_classifier_error(self, monkeypatch):
        monkeypatch.setattr("openai.OpenAI", _fake_openai(error=ConnectionError("offline")))
        with pytest.raises(ClassifierError, match="LLM request failed") as exc:
            _classify(OpenAIClassifier(api_key="sk-test"))
        assert exc.value.code == "CLASSIFIER_FAILED"

    def test_empty_content(self, monkeypatch):
        monkeypatch.setattr("openai.OpenAI", _fake_openai(""))
        with pytest.raises(ClassifierError, match="empty"):
            _classify(OpenAIClassifier(api_key="sk-test"))

    def test_invalid_json(self, monkeypatch):
        monkeypatch.setattr("openai.OpenAI", _fake_openai("not json"))
        with pytest.raises(ClassifierError, match="invalid JSON"):
            _classify(OpenAIClassifier(api_key="sk-test"))

    def test_non_object_json(self, monkeypatch):
        monkeypatch.setattr("openai.OpenAI", _fake_openai("[1, 2]"))
        with pytest.raises(ClassifierError, match="non-object"):
            _classify(OpenAIClassifier(api_key="sk-test"))


class TestBuildClassifier:
    def test_rules_without_key(self):
        assert isinstance(build_classifier(), RuleBasedClassifier)

    def test_openai_with_key(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setenv("INTENT_CLASSIFIER_MODEL", "gpt-custom")
        classifier = build_classifier()
        assert isinstance(classifier, OpenAIClassifier)
        assert classifier.model == "gpt-custom"
