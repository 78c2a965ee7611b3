"""
Dialogue engine tests: full conversations through the rule-based
classifier, plus scripted classifiers for the edge cases.

Deterministic: seeded RNG, in-memory fixtures, no LLM.
"""

from __future__ import annotations

import random
from decimal import Decimal
from typing import Any

from intent_resolver.classifier_rules import RuleBasedClassifier
from intent_resolver.composer import HELP_MESSAGE, SUGGESTIONS
from intent_resolver.directory import build_engine
from intent_resolver.engine import APOLOGY, DialogueEngine, choose_candidate
from intent_resolver.exceptions import ClassifierError
from intent_resolver.models import (
    AwaitingDisambiguation,
    AwaitingSlot,
    ChatMessage,
    ClassifierResult,
    Complete,
    Counterparty,
    Direction,
    DirectorySnapshot,
    Failed,
    Fixture,
    Fresh,
    IntentKind,
    LedgerAccount,
    SettlementMode,
    Slot,
    TransactionPayload,
)
from intent_resolver.slots import AREA_OPTIONS

BENNY_PURCHASE = "Bought 2 tickets from Benny for Arsenal vs Spurs at £100 each"


# ─── Test Data ───────────────────────────────────────────────────────


def _make_snapshot(**overrides: Any) -> DirectorySnapshot:
    fields: dict[str, Any] = {
        "vendors": [
            LedgerAccount(id="v-benny", name="Benny", balance=Decimal("250")),
            LedgerAccount(id="v-john", name="John Smith", balance=Decimal("-120.50")),
        ],
        "banks": [
            LedgerAccount(id="b-barclays", name="Barclays", balance=Decimal("10450")),
            LedgerAccount(id="b-monzo", name="Monzo Business", balance=Decimal("820.25")),
        ],
        "counterparties": [
            Counterparty(id="c-sarah", name="Sarah Connor", phone="07700 900789", role="broker"),
        ],
        "fixtures": [
            Fixture(id="fx-101", home_team="Arsenal", away_team="Tottenham Hotspur"),
            Fixture(id="fx-103", home_team="Chelsea", away_team="Arsenal"),
        ],
        "fx_rates": {"USD": Decimal("1"), "GBP": Decimal("0.79"), "EUR": Decimal("0.92")},
    }
    fields.update(overrides)
    return DirectorySnapshot(**fields)


def _with_benny_jr() -> DirectorySnapshot:
    snapshot = _make_snapshot()
    vendors = [*snapshot.vendors, LedgerAccount(id="v-bennyjr", name="Benny Jr", balance=Decimal("-40"))]
    return _make_snapshot(vendors=vendors)


def _make_engine(snapshot: DirectorySnapshot | None = None) -> DialogueEngine:
    return build_engine(
        snapshot or _make_snapshot(),
        classifier=RuleBasedClassifier(),
        rng=random.Random(7),
    )


class ScriptedClassifier:
    """Returns a fixed result and records every call."""

    def __init__(self, result: ClassifierResult | None = None, error: Exception | None = None):
        self.result = result or ClassifierResult()
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def classify(self, **kwargs: Any) -> ClassifierResult:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.result


def _scripted_engine(classifier: ScriptedClassifier) -> DialogueEngine:
    return build_engine(_make_snapshot(), classifier=classifier, rng=random.Random(7))


# ═══════════════════════════════════════════════════════════════════════
# SINGLE-TURN COMPLETION
# ═══════════════════════════════════════════════════════════════════════


class TestSingleTurnPurchase:
    def test_completes_with_confirmation(self):
        result = _make_engine().handle(BENNY_PURCHASE, None, _make_snapshot())
        assert result.requires_confirmation is True
        assert isinstance(result.state, Complete)
        assert result.intent == IntentKind.PURCHASE
        assert result.conversation_state is None

    def test_payload_is_resolved(self):
        result = _make_engine().handle(BENNY_PURCHASE, None, _make_snapshot())
        p = result.payload
        assert p is not None
        assert p.quantity == 2
        assert p.cost == Decimal("200.00")
        assert p.currency == "GBP"
        assert p.bought_from == "Benny"
        assert p.bought_from_vendor_id == "v-benny"
        assert p.game_id == "fx-101"
        assert p.game_name == "Arsenal vs Tottenham Hotspur"
        assert p.event_query is None
        assert p.area in AREA_OPTIONS
        assert p.notes == ""

    def test_summary_and_affordances(self):
        result = _make_engine().handle(BENNY_PURCHASE, None, _make_snapshot())
        assert "Total cost: £200.00" in result.message
        assert "Bought from: Benny" in result.message
        assert result.message.endswith("Please review and confirm, or edit anything that's wrong.")
        assert [a.action for a in result.affordances] == ["confirm", "edit", "cancel"]

    def test_area_default_follows_rng(self):
        first = _make_engine().handle(BENNY_PURCHASE, None, _make_snapshot())
        second = _make_engine().handle(BENNY_PURCHASE, None, _make_snapshot())
        assert first.payload.area == second.payload.area

    def test_foreign_currency_converted(self):
        result = _make_engine().handle(
            "Sold 3 tickets to John for Chelsea vs Arsenal at $90 each", None, _make_snapshot()
        )
        assert isinstance(result.state, Complete)
        p = result.payload
        assert p.selling == Decimal("213.30")  # 270 USD at 0.79
        assert p.currency == "GBP"
        assert p.sold_to == "John Smith"
        assert p.sold_to_vendor_id == "v-john"
        assert p.game_id == "fx-103"


# ═══════════════════════════════════════════════════════════════════════
# DISAMBIGUATION
# ═══════════════════════════════════════════════════════════════════════


class TestDisambiguation:
    def test_ambiguous_name_lists_candidates(self):
        snapshot = _with_benny_jr()
        result = _make_engine(snapshot).handle(BENNY_PURCHASE, None, snapshot)
        state = result.state
        assert isinstance(state, AwaitingDisambiguation)
        assert [c.id for c in state.pending.candidates] == ["v-benny", "v-bennyjr"]
        assert state.pending.search_term == "Benny"
        assert "1. Benny" in result.message
        assert "2. Benny Jr" in result.message
        assert result.requires_confirmation is False

    def test_event_already_matched_while_waiting(self):
        snapshot = _with_benny_jr()
        result = _make_engine(snapshot).handle(BENNY_PURCHASE, None, snapshot)
        assert result.state.partial_payload.game_id == "fx-101"

    def test_numbered_reply_completes(self):
        snapshot = _with_benny_jr()
        engine = _make_engine(snapshot)
        first = engine.handle(BENNY_PURCHASE, None, snapshot)
        second = engine.handle("2", first.conversation_state, snapshot)
        assert isinstance(second.state, Complete)
        assert second.payload.bought_from == "Benny Jr"
        assert second.payload.bought_from_vendor_id == "v-bennyjr"
        assert second.payload.game_id == "fx-101"

    def test_name_reply_completes(self):
        snapshot = _with_benny_jr()
        engine = _make_engine(snapshot)
        first = engine.handle(BENNY_PURCHASE, None, snapshot)
        second = engine.handle("benny jr", first.conversation_state, snapshot)
        assert second.payload.bought_from_vendor_id == "v-bennyjr"

    def test_unrecognised_reply_asks_again(self):
        snapshot = _with_benny_jr()
        engine = _make_engine(snapshot)
        first = engine.handle(BENNY_PURCHASE, None, snapshot)
        second = engine.handle("the other one", first.conversation_state, snapshot)
        assert second.state == first.state
        assert second.message.startswith("Sorry, I didn't catch which one you meant.")

    def test_reply_never_calls_classifier(self):
        classifier = ScriptedClassifier(error=RuntimeError("should not be called"))
        snapshot = _with_benny_jr()
        first = _make_engine(snapshot).handle(BENNY_PURCHASE, None, snapshot)
        engine = build_engine(snapshot, classifier=classifier)
        second = engine.handle("1", first.conversation_state, snapshot)
        assert classifier.calls == []
        assert second.payload.bought_from_vendor_id == "v-benny"

    def test_state_survives_json_round_trip(self):
        snapshot = _with_benny_jr()
        engine = _make_engine(snapshot)
        first = engine.handle(BENNY_PURCHASE, None, snapshot)
        restored = AwaitingDisambiguation.model_validate_json(first.state.model_dump_json())
        second = engine.handle("1", restored, snapshot)
        assert isinstance(second.state, Complete)


class TestChooseCandidate:
    def test_out_of_range_number(self):
        snapshot = _with_benny_jr()
        result = _make_engine(snapshot).handle(BENNY_PURCHASE, None, snapshot)
        assert choose_candidate("3", result.state.pending.candidates) is None
        assert choose_candidate("0", result.state.pending.candidates) is None

    def test_blank_reply(self):
        assert choose_candidate("  ", []) is None


# ═══════════════════════════════════════════════════════════════════════
# MULTI-TURN SLOT FILLING
# ═══════════════════════════════════════════════════════════════════════


class TestManualTransferFlow:
    def test_three_turns_to_completion(self):
        engine = _make_engine()
        snapshot = _make_snapshot()

        first = engine.handle("Record a manual transaction for £500", None, snapshot)
        assert isinstance(first.state, AwaitingSlot)
        assert first.state.field == Slot.DIRECTION
        assert first.state.step == 2
        assert first.message == (
            "I understand you want to record a payment. Was this a payment you made or received?"
        )

        second = engine.handle("received", first.conversation_state, snapshot)
        assert isinstance(second.state, AwaitingSlot)
        assert second.state.field == Slot.MODE_BANK
        assert second.state.step == 3
        assert second.message == "Was this paid by cash or bank transfer? If bank, which account?"

        third = engine.handle("Barclays", second.conversation_state, snapshot)
        assert isinstance(third.state, Complete)
        p = third.payload
        assert p.amount == Decimal("500.00")
        assert p.direction == Direction.IN
        assert p.mode == SettlementMode.STANDARD
        assert p.bank_account_id == "b-barclays"
        assert p.bank_balance == Decimal("10450")
        assert p.category == "other"
        assert "Bank: Barclays (balance £10,450.00)" in third.message

    def test_cash_needs_no_bank(self):
        engine = _make_engine()
        snapshot = _make_snapshot()
        first = engine.handle("Record a manual transaction for £500", None, snapshot)
        second = engine.handle("I paid it", first.conversation_state, snapshot)
        third = engine.handle("cash", second.conversation_state, snapshot)
        assert isinstance(third.state, Complete)
        assert third.payload.direction == Direction.OUT
        assert third.payload.mode == SettlementMode.JOURNAL_VOUCHER
        assert third.payload.bank_account_id is None

    def test_bank_transfer_defaults_to_first_bank(self):
        result = _make_engine().handle("Paid Benny £300 by bank transfer", None, _make_snapshot())
        assert isinstance(result.state, Complete)
        p = result.payload
        assert p.vendor_id == "v-benny"
        assert p.direction == Direction.OUT
        assert p.bank_name == "Barclays"
        assert p.bank_account_id == "b-barclays"

    def test_unknown_bank_offers_to_create_it(self):
        engine = _make_engine()
        snapshot = _make_snapshot()
        first = engine.handle("Received £75 by bank transfer", None, snapshot)
        assert isinstance(first.state, Complete)
        assert first.payload.bank_account_id == "b-barclays"

        edited = engine.handle(
            "HSBC",
            AwaitingSlot(
                step=2,
                intent=IntentKind.MANUAL_TRANSFER,
                field=Slot.MODE_BANK,
                partial_payload=TransactionPayload(
                    amount=Decimal("75.00"), direction=Direction.IN, currency="GBP"
                ),
            ),
            snapshot,
        )
        assert isinstance(edited.state, AwaitingSlot)
        assert edited.state.field == Slot.MODE_BANK
        assert edited.message.startswith('I couldn\'t find a bank account matching "HSBC". ')
        assert edited.affordances[0].action == "create_bank_account"
        assert edited.affordances[0].prefill == {"name": "HSBC"}


class TestCounterpartyNotFound:
    def test_unknown_name_asks_again_with_create_affordance(self):
        result = _make_engine().handle(
            "Bought 2 tickets from Zed for Arsenal vs Spurs at £100 each", None, _make_snapshot()
        )
        state = result.state
        assert isinstance(state, AwaitingSlot)
        assert state.field == Slot.COUNTERPARTY
        assert state.missing_fields[0] == Slot.COUNTERPARTY
        assert state.partial_payload.bought_from is None
        assert result.message == (
            'I couldn\'t find "Zed" in your directory. Who did you buy them from?'
        )
        affordance = result.affordances[0]
        assert affordance.action == "create_counterparty"
        assert affordance.prefill == {"name": "Zed"}

    def test_follow_up_with_known_name_completes(self):
        engine = _make_engine()
        snapshot = _make_snapshot()
        first = engine.handle(
            "Bought 2 tickets from Zed for Arsenal vs Spurs at £100 each", None, snapshot
        )
        second = engine.handle("Benny", first.conversation_state, snapshot)
        assert isinstance(second.state, Complete)
        assert second.payload.bought_from_vendor_id == "v-benny"
        assert second.payload.cost == Decimal("200.00")
        assert second.payload.game_id == "fx-101"


class TestEventNotFound:
    def test_warns_and_asks_for_event(self):
        result = _make_engine().handle(
            "Bought 2 tickets from Benny for Leeds vs Hull at £50 each", None, _make_snapshot()
        )
        assert result.warnings == ['No event found matching "Leeds vs Hull".']
        assert isinstance(result.state, AwaitingSlot)
        assert result.state.field == Slot.EVENT
        assert result.state.partial_payload.game_id is None
        assert result.state.partial_payload.event_query is None
        assert result.state.partial_payload.bought_from_vendor_id == "v-benny"


class TestStepLimit:
    def test_gives_up_after_three_questions(self):
        engine = _make_engine()
        snapshot = _make_snapshot()
        result = engine.handle("Bought 2 tickets", None, snapshot)
        for expected_step in (3, 4):
            assert isinstance(result.state, AwaitingSlot)
            result = engine.handle("no idea", result.conversation_state, snapshot)
            if isinstance(result.state, AwaitingSlot):
                assert result.state.step == expected_step

        result = engine.handle("no idea", result.conversation_state, snapshot)
        assert isinstance(result.state, Failed)
        assert result.state.missing_field == Slot.EVENT
        assert result.state.reason == "missing required information: event"
        assert result.conversation_state is None

    def test_complete_payload_still_accepted_past_limit(self):
        state = AwaitingSlot(
            step=4,
            intent=IntentKind.PURCHASE,
            field=Slot.COST,
            partial_payload=TransactionPayload(
                quantity=2,
                game_id="fx-101",
                game_name="Arsenal vs Tottenham Hotspur",
                bought_from="Benny",
                bought_from_vendor_id="v-benny",
                area="Longside Lower",
            ),
        )
        result = _make_engine().handle("£180", state, _make_snapshot())
        assert isinstance(result.state, Complete)
        assert result.payload.cost == Decimal("180.00")

    def test_ambiguous_answer_past_limit_fails(self):
        snapshot = _with_benny_jr()
        state = AwaitingSlot(
            step=4,
            intent=IntentKind.PURCHASE,
            field=Slot.COUNTERPARTY,
            partial_payload=TransactionPayload(
                quantity=2,
                cost=Decimal("200.00"),
                game_id="fx-101",
                game_name="Arsenal vs Tottenham Hotspur",
                area="Longside Lower",
            ),
        )
        result = _make_engine(snapshot).handle("Benny", state, snapshot)
        assert isinstance(result.state, Failed)
        assert result.state.missing_field == Slot.COUNTERPARTY
        assert result.conversation_state is None


# ═══════════════════════════════════════════════════════════════════════
# QUERIES AND OTHER INTENTS
# ═══════════════════════════════════════════════════════════════════════


class TestQueries:
    def test_vendor_balance(self):
        result = _make_engine().handle("How much does John Smith owe?", None, _make_snapshot())
        assert isinstance(result.state, Complete)
        assert result.intent == IntentKind.QUERY_VENDOR_BALANCE
        assert result.message == "You owe John Smith £120.50."
        assert result.requires_confirmation is False

    def test_profit_and_loss(self):
        result = _make_engine().handle(
            "What's my profit for Arsenal vs Spurs?", None, _make_snapshot()
        )
        assert isinstance(result.state, Complete)
        assert result.message == "Pulling up the profit and loss for Arsenal vs Tottenham Hotspur."
        assert result.payload.game_id == "fx-101"

    def test_general_query_passes_through(self):
        classifier = ScriptedClassifier(
            ClassifierResult(
                intent=IntentKind.QUERY, confidence=0.9, explanation="Checking your stock."
            )
        )
        result = _scripted_engine(classifier).handle("What's in stock?", None, _make_snapshot())
        assert isinstance(result.state, Complete)
        assert result.message == "Checking your stock."

    def test_create_counterparty(self):
        result = _make_engine().handle(
            "Add a new counterparty called Sarah Lee, phone 07700 900111", None, _make_snapshot()
        )
        assert isinstance(result.state, Complete)
        assert result.requires_confirmation is True
        assert "Name: Sarah Lee" in result.message


# ═══════════════════════════════════════════════════════════════════════
# INTENT DECISION
# ═══════════════════════════════════════════════════════════════════════


class TestIntentDecision:
    def test_gibberish_gets_help_and_suggestions(self):
        result = _make_engine().handle("hello there", None, _make_snapshot())
        assert result.message == HELP_MESSAGE
        assert result.suggestions == list(SUGGESTIONS)
        assert isinstance(result.state, Fresh)
        assert result.intent == IntentKind.UNKNOWN

    def test_low_confidence_explanation_shown(self):
        classifier = ScriptedClassifier(
            ClassifierResult(confidence=0.1, explanation="Could you say that another way?")
        )
        result = _scripted_engine(classifier).handle("hmm", None, _make_snapshot())
        assert result.message == "Could you say that another way?"
        assert result.suggestions == []

    def test_low_confidence_promoted_by_shape(self):
        classifier = ScriptedClassifier(
            ClassifierResult(
                intent=IntentKind.UNKNOWN,
                confidence=0.2,
                payload=TransactionPayload(
                    amount=Decimal("50"),
                    direction=Direction.OUT,
                    mode=SettlementMode.JOURNAL_VOUCHER,
                ),
            )
        )
        result = _scripted_engine(classifier).handle("50 cash out", None, _make_snapshot())
        assert result.intent == IntentKind.MANUAL_TRANSFER
        assert isinstance(result.state, Complete)

    def test_classifier_ids_are_ignored(self):
        classifier = ScriptedClassifier(
            ClassifierResult(
                intent=IntentKind.PURCHASE,
                confidence=0.95,
                payload=TransactionPayload(
                    quantity=2,
                    event_query="Arsenal vs Tottenham",
                    game_id="fx-999",
                    bought_from="Benny",
                    bought_from_vendor_id="v-invented",
                    cost=Decimal("200"),
                ),
            )
        )
        result = _scripted_engine(classifier).handle("anything", None, _make_snapshot())
        assert result.payload.bought_from_vendor_id == "v-benny"
        assert result.payload.game_id == "fx-101"

    def test_mid_flow_context_sent_to_classifier(self):
        classifier = ScriptedClassifier(
            ClassifierResult(payload=TransactionPayload(direction=Direction.IN), confidence=0.6)
        )
        state = AwaitingSlot(
            step=2,
            intent=IntentKind.MANUAL_TRANSFER,
            field=Slot.DIRECTION,
            partial_payload=TransactionPayload(amount=Decimal("500.00"), currency="GBP"),
        )
        result = _scripted_engine(classifier).handle("received", state, _make_snapshot())

        call = classifier.calls[0]
        assert call["partial_payload"].amount == Decimal("500.00")
        assert call["conversation_history"] == [
            ChatMessage(role="assistant", content="Was this a payment you made or received?")
        ]
        assert call["known_banks"] == ["Barclays", "Monzo Business"]
        assert "Benny" in call["known_vendors"]
        assert isinstance(result.state, AwaitingSlot)
        assert result.state.field == Slot.MODE_BANK

    def test_echoed_money_not_converted_twice(self):
        classifier = ScriptedClassifier(
            ClassifierResult(
                payload=TransactionPayload(amount=Decimal("395.00"), currency="GBP"),
                confidence=0.6,
            )
        )
        state = AwaitingSlot(
            step=2,
            intent=IntentKind.MANUAL_TRANSFER,
            field=Slot.DIRECTION,
            partial_payload=TransactionPayload(amount=Decimal("395.00"), currency="GBP"),
        )
        result = _scripted_engine(classifier).handle("ok", state, _make_snapshot())
        assert result.payload.amount == Decimal("395.00")

    def test_same_number_in_new_currency_is_converted(self):
        classifier = ScriptedClassifier(
            ClassifierResult(
                payload=TransactionPayload(amount=Decimal("200"), currency="USD"),
                confidence=0.6,
            )
        )
        state = AwaitingSlot(
            step=2,
            intent=IntentKind.MANUAL_TRANSFER,
            field=Slot.DIRECTION,
            partial_payload=TransactionPayload(amount=Decimal("200.00"), currency="GBP"),
        )
        result = _scripted_engine(classifier).handle("it was $200, not £200", state, _make_snapshot())
        assert result.payload.amount == Decimal("158.00")
        assert result.payload.currency == "GBP"


# ═══════════════════════════════════════════════════════════════════════
# FAILURES
# ═══════════════════════════════════════════════════════════════════════


class TestFailures:
    def test_classifier_error_apologises_and_resets(self):
        classifier = ScriptedClassifier(error=ClassifierError("quota exceeded"))
        result = _scripted_engine(classifier).handle(BENNY_PURCHASE, None, _make_snapshot())
        assert result.message == APOLOGY
        assert isinstance(result.state, Fresh)

    def test_unexpected_classifier_exception_is_contained(self):
        classifier = ScriptedClassifier(error=RuntimeError("boom"))
        state = AwaitingSlot(
            step=2,
            intent=IntentKind.MANUAL_TRANSFER,
            field=Slot.DIRECTION,
            partial_payload=TransactionPayload(amount=Decimal("1")),
        )
        result = _scripted_engine(classifier).handle("received", state, _make_snapshot())
        assert result.message == APOLOGY
        assert isinstance(result.state, Fresh)

    def test_no_exchange_rate_without_converter(self):
        engine = DialogueEngine(RuleBasedClassifier(), rng=random.Random(1))
        result = engine.handle(
            "Sold 3 tickets to John for Chelsea vs Arsenal at $90 each", None, _make_snapshot()
        )
        assert "can't convert USD to GBP" in result.message
        assert isinstance(result.state, Fresh)

    def test_conversion_failure_keeps_question_open(self):
        state = AwaitingSlot(
            step=2,
            intent=IntentKind.PURCHASE,
            field=Slot.COST,
            partial_payload=TransactionPayload(quantity=2, bought_from="Benny"),
        )
        result = _make_engine(_make_snapshot(fx_rates={})).handle("€150", state, _make_snapshot())
        assert result.state == state
        assert result.intent == IntentKind.PURCHASE

    def test_missing_directory_treated_as_empty(self):
        result = _make_engine().handle(BENNY_PURCHASE)
        assert isinstance(result.state, AwaitingSlot)
        assert result.state.field == Slot.COUNTERPARTY
        assert result.message.startswith('I couldn\'t find "Benny" in your directory.')
