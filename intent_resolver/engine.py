"""
Slot-filling dialogue engine: one user turn in, one reply out.

Flow:
  ┌─────────────┐
  │  Utterance  │
  └──────┬──────┘
         │
  ┌──────▼──────┐   yes   ┌──────────────────┐
  │ Awaiting a  ├────────►│ Pick candidate   │   ← no classifier call
  │ choice?     │         └────────┬─────────┘
  └──────┬──────┘                  │
         │ no                      │
  ┌──────▼──────┐                  │
  │ Classifier  │   ← best-effort guess, memory = partial payload
  └──────┬──────┘                  │
  ┌──────▼──────┐                  │
  │  Currency   │   ← convert + round new money values only
  └──────┬──────┘                  │
  ┌──────▼──────┐                  │
  │ Merge, pick │   ← new values win, unknown may auto-promote
  │   intent    │                  │
  └──────┬──────┘                  │
         └────────────┬────────────┘
               ┌──────▼──────┐
               │ Event match │   ← ticket intents and P&L queries
               └──────┬──────┘
               ┌──────▼──────┐
               │   Resolve   │   ← counterparty / bank, may branch off
               │  entities   │     into disambiguation or not-found
               └──────┬──────┘
               ┌──────▼──────┐
               │ Completeness│   ← confirm, ask one question, or give up
               └─────────────┘

The engine keeps no per-conversation state. The caller hands back the
``state`` of the previous TurnResult; Fresh, Complete and Failed all mean
"start over". Nothing raised by a collaborator escapes ``handle``.
"""

from __future__ import annotations

import logging
import random
from typing import Protocol, Sequence

from .composer import (
    HELP_MESSAGE,
    SUGGESTIONS,
    compose,
    compose_balance,
    compose_disambiguation,
)
from .currency import MONETARY_FIELDS, Converter, currency_symbol, normalize
from .entity_resolver import (
    MultipleMatches,
    NotFound,
    ResolutionOutcome,
    SingleMatch,
    lookup,
    resolve,
)
from .event_matcher import SearchFn, find_event
from .exceptions import ClassifierError, CurrencyConversionError
from .models import (
    Affordance,
    AwaitingDisambiguation,
    AwaitingSlot,
    ChatMessage,
    ClassifierResult,
    Complete,
    ConversationState,
    DirectorySnapshot,
    EntityMatch,
    Failed,
    Fresh,
    IntentKind,
    PendingDisambiguation,
    SettlementMode,
    Slot,
    SourceKind,
    TransactionPayload,
    TRANSACTION_INTENTS,
    TurnResult,
)
from .slots import (
    AREA_OPTIONS,
    BANK_FIELDS,
    COUNTERPARTY_FIELDS,
    DEFAULT_CATEGORY,
    EVENT_INTENTS,
    SLOT_LABELS,
    merge_payloads,
    missing_fields,
    promote,
    question_for,
)

logger = logging.getLogger(__name__)

MAX_STEPS = 3
CONFIDENCE_FLOOR = 0.5

APOLOGY = "Sorry, something went wrong while I was reading that. Please try again."

# Identity fields are only ever written by resolution, never by a classifier
_IDENTITY_FIELDS = (
    "game_id",
    "game_name",
    "bought_from_vendor_id",
    "sold_to_vendor_id",
    "vendor_id",
    "bank_account_id",
    "bank_balance",
)

_CONFIRM_INTROS = {
    IntentKind.PURCHASE: "Here's the purchase I'm about to record.",
    IntentKind.ORDER: "Here's the sale I'm about to record.",
    IntentKind.MANUAL_TRANSFER: "Here's the payment I'm about to record.",
    IntentKind.CREATE_COUNTERPARTY: "Here's the counterparty I'm about to create.",
}


class Classifier(Protocol):
    def classify(
        self,
        utterance: str,
        known_vendors: Sequence[str],
        known_banks: Sequence[str],
        base_currency: str,
        conversation_history: Sequence[ChatMessage] = (),
        partial_payload: TransactionPayload | None = None,
    ) -> ClassifierResult: ...


def choose_candidate(reply: str, candidates: Sequence[EntityMatch]) -> EntityMatch | None:
    """Match a disambiguation reply: a 1-based number or an exact name."""
    text = " ".join(reply.split()).rstrip(".").lower()
    if not text:
        return None
    if text.isdigit():
        index = int(text)
        return candidates[index - 1] if 1 <= index <= len(candidates) else None
    for attribute in ("display_name", "canonical_name"):
        for candidate in candidates:
            if " ".join(getattr(candidate, attribute).split()).lower() == text:
                return candidate
    return None


class DialogueEngine:
    """Turns utterances into confirmed transaction payloads, one turn at a time.

    Usage:
        engine = DialogueEngine(build_classifier(), event_search=FixtureSearch(...))
        result = engine.handle("Bought 2 tickets from Benny", None, snapshot)
        next_state = result.conversation_state   # hand back on the next turn
    """

    def __init__(
        self,
        classifier: Classifier,
        event_search: SearchFn | None = None,
        converter: Converter | None = None,
        base_currency: str = "GBP",
        rng: random.Random | None = None,
        max_steps: int = MAX_STEPS,
    ):
        self.classifier = classifier
        self.event_search = event_search
        self.converter = converter
        self.base_currency = base_currency.upper()
        self.rng = rng or random.Random()
        self.max_steps = max_steps

    @property
    def currency_symbol(self) -> str:
        return currency_symbol(self.base_currency)

    def handle(
        self,
        utterance: str,
        state: ConversationState | None = None,
        directory: DirectorySnapshot | None = None,
        history: Sequence[ChatMessage] = (),
    ) -> TurnResult:
        """Process one user utterance.

        Args:
            utterance: What the user typed.
            state: The previous turn's state, or None for a new conversation.
            directory: Counterparties, vendors, banks for entity resolution.
            history: Recent chat messages, oldest first.

        Returns:
            TurnResult with the reply and the state to hand back next turn.
        """
        state = state or Fresh()
        directory = directory or DirectorySnapshot()

        try:
            if isinstance(state, AwaitingDisambiguation):
                return self._resume_disambiguation(utterance, state, directory)
            return self._classify_turn(utterance, state, directory, history)
        except ClassifierError as e:
            logger.error("Classifier failed, resetting conversation: %s", e)
            return TurnResult(message=APOLOGY)
        except CurrencyConversionError as e:
            logger.warning("Currency conversion failed: %s", e)
            source = e.details.get("from", "that currency")
            keep = state if isinstance(state, AwaitingSlot) else Fresh()
            return TurnResult(
                message=(
                    f"Sorry, I can't convert {source} to {self.base_currency} right now. "
                    f"Please give the amount in {self.base_currency}."
                ),
                state=keep,
                intent=keep.intent if isinstance(keep, AwaitingSlot) else IntentKind.UNKNOWN,
            )
        except Exception:
            logger.exception("Unexpected failure handling %r", utterance)
            return TurnResult(message=APOLOGY)

    # ─── Classifier Turn ─────────────────────────────────────────────

    def _classify_turn(
        self,
        utterance: str,
        state: ConversationState,
        directory: DirectorySnapshot,
        history: Sequence[ChatMessage],
    ) -> TurnResult:
        in_flight = state if isinstance(state, AwaitingSlot) else None
        memory = in_flight.partial_payload if in_flight else TransactionPayload()
        step = in_flight.step if in_flight else 1

        result = self._classify(utterance, in_flight, directory, history)

        fresh = self._normalize(_strip_identity(result.payload), memory)
        merged = merge_payloads(memory, fresh)

        intent = self._decide_intent(result, in_flight.intent if in_flight else None, merged)
        if intent is None:
            return self._not_understood(result)

        logger.info(
            "Turn intent %s (classifier: %s @ %.2f), step %d",
            intent.value,
            result.intent.value,
            result.confidence,
            step,
        )

        if intent == IntentKind.QUERY:
            return TurnResult(
                message=result.explanation or "Let me look that up.",
                state=Complete(intent=intent, payload=merged),
                intent=intent,
                payload=merged,
            )

        return self._advance(
            intent,
            merged,
            step,
            directory,
            utterance=utterance,
            event_candidate=fresh.event_query,
            explanation=result.explanation,
        )

    def _classify(
        self,
        utterance: str,
        in_flight: AwaitingSlot | None,
        directory: DirectorySnapshot,
        history: Sequence[ChatMessage],
    ) -> ClassifierResult:
        history = list(history)
        if in_flight and not history:
            history = [
                ChatMessage(role="assistant", content=question_for(in_flight.intent, in_flight.field))
            ]

        try:
            return self.classifier.classify(
                utterance=utterance,
                known_vendors=_known_vendor_names(directory),
                known_banks=[bank.name for bank in directory.banks],
                base_currency=self.base_currency,
                conversation_history=history,
                partial_payload=in_flight.partial_payload if in_flight else None,
            )
        except ClassifierError:
            raise
        except Exception as e:
            raise ClassifierError(f"Classifier raised {type(e).__name__}: {e}") from e

    def _normalize(
        self, fresh: TransactionPayload, memory: TransactionPayload
    ) -> TransactionPayload:
        """Normalize only money the classifier newly reported this turn."""
        same_currency = fresh.currency is None or fresh.currency.upper() == (
            memory.currency or self.base_currency
        ).upper()
        echoed = {
            name: None
            for name in MONETARY_FIELDS
            if same_currency
            and getattr(fresh, name) is not None
            and getattr(fresh, name) == getattr(memory, name)
        }
        delta = fresh.model_copy(update=echoed)
        return normalize(delta, fresh.currency, self.base_currency, self.converter)

    def _decide_intent(
        self,
        result: ClassifierResult,
        prior: IntentKind | None,
        merged: TransactionPayload,
    ) -> IntentKind | None:
        if result.intent != IntentKind.UNKNOWN and result.confidence >= CONFIDENCE_FLOOR:
            return result.intent

        promoted = promote(merged)
        if promoted is not None:
            logger.info("Auto-promoted %s guess to %s", result.intent.value, promoted.value)
            return promoted
        return prior

    def _not_understood(self, result: ClassifierResult) -> TurnResult:
        if result.explanation:
            return TurnResult(message=result.explanation)
        return TurnResult(message=HELP_MESSAGE, suggestions=list(SUGGESTIONS))

    # ─── Disambiguation Reply ────────────────────────────────────────

    def _resume_disambiguation(
        self,
        utterance: str,
        state: AwaitingDisambiguation,
        directory: DirectorySnapshot,
    ) -> TurnResult:
        pending = state.pending
        choice = choose_candidate(utterance, pending.candidates)
        if choice is None:
            logger.info("Unrecognised choice %r for %r", utterance, pending.search_term)
            return TurnResult(
                message=(
                    "Sorry, I didn't catch which one you meant.\n"
                    + compose_disambiguation(pending, self.currency_symbol)
                ),
                state=state,
                intent=state.intent,
                payload=state.partial_payload,
            )

        logger.info("Picked %s (%s) for %r", choice.canonical_name, choice.id, pending.search_term)
        payload = self._apply_match(state.intent, pending.slot, state.partial_payload, choice)
        return self._advance(state.intent, payload, state.step, directory)

    # ─── Shared Pipeline ─────────────────────────────────────────────

    def _advance(
        self,
        intent: IntentKind,
        payload: TransactionPayload,
        step: int,
        directory: DirectorySnapshot,
        utterance: str = "",
        event_candidate: str | None = None,
        explanation: str = "",
    ) -> TurnResult:
        warnings: list[str] = []
        payload = self._apply_defaults(intent, payload, directory)

        if intent in EVENT_INTENTS:
            payload, warning = self._match_event(payload, utterance, event_candidate)
            if warning:
                warnings.append(warning)

        not_found: dict[Slot, str] = {}
        for slot in self._resolution_slots(intent, payload):
            outcome, payload = self._resolve_slot(intent, slot, payload, directory)
            if isinstance(outcome, MultipleMatches):
                if step > self.max_steps:
                    return self._fail(intent, slot, warnings)
                return self._disambiguate(intent, slot, outcome, payload, step, warnings)
            if isinstance(outcome, NotFound):
                not_found[slot] = outcome.search_term

        missing = missing_fields(intent, payload)
        for slot in reversed(list(not_found)):
            if slot in missing:
                missing.remove(slot)
            missing.insert(0, slot)

        if not missing:
            return self._complete(intent, payload, explanation, warnings, directory)
        if step > self.max_steps:
            return self._fail(intent, missing[0], warnings)
        return self._ask(intent, payload, missing, step, not_found, warnings)

    def _apply_defaults(
        self,
        intent: IntentKind,
        payload: TransactionPayload,
        directory: DirectorySnapshot,
    ) -> TransactionPayload:
        updates: dict[str, object] = {}

        if intent in (IntentKind.PURCHASE, IntentKind.ORDER) and not payload.area:
            updates["area"] = self.rng.choice(AREA_OPTIONS)

        if intent == IntentKind.MANUAL_TRANSFER:
            if not payload.category:
                updates["category"] = DEFAULT_CATEGORY
            if (
                payload.mode == SettlementMode.STANDARD
                and not payload.bank_name
                and not payload.bank_account_id
                and directory.banks
            ):
                first = directory.banks[0]
                logger.info("No bank named, defaulting to %s", first.name)
                updates.update(
                    bank_name=first.name,
                    bank_account_id=first.id,
                    bank_balance=first.balance,
                )

        if intent in TRANSACTION_INTENTS and payload.notes is None:
            updates["notes"] = ""

        return payload.model_copy(update=updates) if updates else payload

    def _match_event(
        self,
        payload: TransactionPayload,
        utterance: str,
        event_candidate: str | None,
    ) -> tuple[TransactionPayload, str | None]:
        query = (payload.event_query or "").strip()
        if payload.game_id and (
            not query
            or query.lower() in {payload.game_id.lower(), (payload.game_name or "").lower()}
        ):
            return payload.model_copy(update={"event_query": None}), None

        if self.event_search is None or not (query or utterance):
            return payload, None

        match = find_event(query or None, utterance, self.event_search)
        if match is not None:
            logger.info("Matched event %r → %s", query or utterance, match.display_name)
            return (
                payload.model_copy(
                    update={"game_id": match.id, "game_name": match.display_name, "event_query": None}
                ),
                None,
            )

        warning = f'No event found matching "{event_candidate}".' if event_candidate else None
        cleared = payload.model_copy(update={"game_id": None, "game_name": None, "event_query": None})
        return cleared, warning

    # ─── Entity Resolution ───────────────────────────────────────────

    @staticmethod
    def _resolution_slots(intent: IntentKind, payload: TransactionPayload) -> list[Slot]:
        slots: list[Slot] = []
        if intent in COUNTERPARTY_FIELDS:
            slots.append(Slot.COUNTERPARTY)
        if intent == IntentKind.MANUAL_TRANSFER and payload.mode != SettlementMode.JOURNAL_VOUCHER:
            slots.append(Slot.MODE_BANK)
        return slots

    @staticmethod
    def _slot_fields(intent: IntentKind, slot: Slot) -> tuple[str, str]:
        if slot == Slot.MODE_BANK:
            return BANK_FIELDS
        return COUNTERPARTY_FIELDS[intent]

    @staticmethod
    def _pools(slot: Slot, directory: DirectorySnapshot) -> tuple[list, list, SourceKind]:
        if slot == Slot.MODE_BANK:
            return [], directory.banks, SourceKind.BANK
        return directory.counterparties, directory.vendors, SourceKind.LEDGER

    def _resolve_slot(
        self,
        intent: IntentKind,
        slot: Slot,
        payload: TransactionPayload,
        directory: DirectorySnapshot,
    ) -> tuple[ResolutionOutcome | None, TransactionPayload]:
        """Re-resolve one name slot; returns (outcome or None if untouched, payload)."""
        name_field, id_field = self._slot_fields(intent, slot)
        name = (getattr(payload, name_field) or "").strip()
        current_id = getattr(payload, id_field)
        people, ledger, kind = self._pools(slot, directory)

        if current_id:
            known = lookup(current_id, people, ledger, kind)
            if known and (not name or name.lower() == known.canonical_name.strip().lower()):
                return None, self._apply_match(intent, slot, payload, known)

        if not name:
            if current_id:
                return None, payload.model_copy(update={id_field: None})
            return None, payload

        outcome = resolve(name, people, ledger, kind)
        if isinstance(outcome, SingleMatch):
            return outcome, self._apply_match(intent, slot, payload, outcome.match)
        if isinstance(outcome, NotFound):
            logger.info("No %s matches %r", SLOT_LABELS[slot], name)
            return outcome, payload.model_copy(update={name_field: None, id_field: None})
        logger.info("%d candidates for %r", len(outcome.matches), name)
        return outcome, payload

    def _apply_match(
        self,
        intent: IntentKind,
        slot: Slot,
        payload: TransactionPayload,
        match: EntityMatch,
    ) -> TransactionPayload:
        name_field, id_field = self._slot_fields(intent, slot)
        updates: dict[str, object] = {name_field: match.canonical_name, id_field: match.id}
        if slot == Slot.MODE_BANK:
            updates["bank_balance"] = match.balance
            if payload.mode is None:
                updates["mode"] = SettlementMode.STANDARD
        return payload.model_copy(update=updates)

    # ─── Turn Outcomes ───────────────────────────────────────────────

    def _disambiguate(
        self,
        intent: IntentKind,
        slot: Slot,
        outcome: MultipleMatches,
        payload: TransactionPayload,
        step: int,
        warnings: list[str],
    ) -> TurnResult:
        name_field, _ = self._slot_fields(intent, slot)
        pending = PendingDisambiguation(
            slot=slot,
            search_term=getattr(payload, name_field) or "",
            candidates=list(outcome.matches),
        )
        state = AwaitingDisambiguation(
            step=step,
            intent=intent,
            partial_payload=payload,
            missing_fields=missing_fields(intent, payload),
            pending=pending,
        )
        return TurnResult(
            message=compose_disambiguation(pending, self.currency_symbol),
            state=state,
            intent=intent,
            payload=payload,
            warnings=warnings,
        )

    def _ask(
        self,
        intent: IntentKind,
        payload: TransactionPayload,
        missing: list[Slot],
        step: int,
        not_found: dict[Slot, str],
        warnings: list[str],
    ) -> TurnResult:
        slot = missing[0]
        prefix = ""
        affordances: list[Affordance] = []

        if slot in not_found:
            term = not_found[slot]
            if slot == Slot.MODE_BANK:
                prefix = f'I couldn\'t find a bank account matching "{term}". '
                affordances.append(
                    Affordance(
                        action="create_bank_account",
                        label=f'Add "{term}" as a bank account',
                        prefill={"name": term},
                    )
                )
            else:
                prefix = f'I couldn\'t find "{term}" in your directory. '
                affordances.append(
                    Affordance(
                        action="create_counterparty",
                        label=f'Create "{term}" as a new counterparty',
                        prefill={"name": term},
                    )
                )
        elif step == 1 and intent == IntentKind.MANUAL_TRANSFER:
            who = f" with {payload.vendor_name}" if payload.vendor_name else ""
            prefix = f"I understand you want to record a payment{who}. "

        state = AwaitingSlot(
            step=step + 1,
            intent=intent,
            field=slot,
            missing_fields=missing,
            partial_payload=payload,
        )
        return TurnResult(
            message=prefix + question_for(intent, slot),
            state=state,
            intent=intent,
            payload=payload,
            affordances=affordances,
            warnings=warnings,
        )

    def _complete(
        self,
        intent: IntentKind,
        payload: TransactionPayload,
        explanation: str,
        warnings: list[str],
        directory: DirectorySnapshot,
    ) -> TurnResult:
        state = Complete(intent=intent, payload=payload)

        if intent == IntentKind.QUERY_VENDOR_BALANCE:
            match = lookup(payload.vendor_id, directory.counterparties, directory.vendors)
            message = (
                compose_balance(match, self.currency_symbol)
                if match
                else f"I couldn't find a ledger balance for {payload.vendor_name}."
            )
            return TurnResult(message=message, state=state, intent=intent, payload=payload)

        if intent == IntentKind.QUERY_PROFIT_LOSS:
            return TurnResult(
                message=f"Pulling up the profit and loss for {payload.game_name}.",
                state=state,
                intent=intent,
                payload=payload,
                warnings=warnings,
            )

        parts = [explanation or _CONFIRM_INTROS.get(intent, ""), compose(intent, payload, self.currency_symbol)]
        if warnings:
            parts.append("\n".join(f"Note: {warning}" for warning in warnings))
        parts.append("Please review and confirm, or edit anything that's wrong.")

        return TurnResult(
            message="\n\n".join(part for part in parts if part),
            requires_confirmation=True,
            state=state,
            intent=intent,
            payload=payload,
            affordances=[
                Affordance(action="confirm", label="Confirm"),
                Affordance(action="edit", label="Edit"),
                Affordance(action="cancel", label="Cancel"),
            ],
            warnings=warnings,
        )

    def _fail(self, intent: IntentKind, slot: Slot, warnings: list[str]) -> TurnResult:
        label = SLOT_LABELS[slot]
        reason = f"missing required information: {label}"
        logger.warning("Giving up on %s after %d questions, %s", intent.value, self.max_steps, reason)
        return TurnResult(
            message=(
                f"Sorry, I'm still missing required information: {label}. "
                "Let's start over; please send all the details in one message."
            ),
            state=Failed(reason=reason, missing_field=slot),
            intent=intent,
            warnings=warnings,
        )


# ─── Helpers ─────────────────────────────────────────────────────────


def _strip_identity(payload: TransactionPayload) -> TransactionPayload:
    return payload.model_copy(update={name: None for name in _IDENTITY_FIELDS})


def _known_vendor_names(directory: DirectorySnapshot) -> list[str]:
    names = [entry.name for entry in directory.counterparties]
    names += [vendor.name for vendor in directory.vendors]
    return list(dict.fromkeys(name for name in names if name))
