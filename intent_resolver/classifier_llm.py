"""
LLM-based intent classification using OpenAI JSON mode.

The model reads one utterance plus the conversation so far and returns a
best-effort guess: intent label, confidence, and whatever transaction fields
it could pick out. We never trust it for entity identity. Names it returns
are re-resolved against the directory, and any ids it invents are dropped.

Design:
  - JSON mode enforced (structured output, not free text)
  - Already-collected fields are sent back so follow-up answers merge
  - Every value is coerced field by field; a bad field is dropped, not fatal
  - Transport or parse failure raises ClassifierError; the engine apologises
"""

from __future__ import annotations

import json
import logging
import math
import os
from decimal import Decimal
from enum import Enum
from typing import Sequence, TypeVar

from .classifier_rules import RuleBasedClassifier
from .event_matcher import TEAM_NICKNAMES
from .exceptions import ClassifierError
from .models import (
    ChatMessage,
    ClassifierResult,
    Direction,
    IntentKind,
    SettlementMode,
    TransactionPayload,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
HISTORY_WINDOW = 10  # most recent messages sent as context

# Labels the model may use for an intent, beyond the enum values themselves
_INTENT_ALIASES: dict[str, IntentKind] = {
    "manual_transaction": IntentKind.MANUAL_TRANSFER,
    "manual": IntentKind.MANUAL_TRANSFER,
    "sale": IntentKind.ORDER,
    "counterparty": IntentKind.CREATE_COUNTERPARTY,
}


# ─── System Prompt ───────────────────────────────────────────────────

SYSTEM_PROMPT = """\
You turn chat messages from a ticket trader into structured ledger entries.

Classify the latest user message as one of these intents:
  purchase              bought tickets from someone
  order                 sold tickets to someone
  manual_transfer       money paid to or received from someone, no tickets
  create_counterparty   add a new contact to the directory
  query_profit_loss     profit or loss for a specific match
  query_vendor_balance  who owes whom with a specific counterparty
  query                 any other question about the data
  unknown               anything else, or not enough information yet

RULES:
1. Extract only what the user said. Never invent names, amounts or ids.
2. Keep every already-collected field in your payload and add new ones.
3. "each" means per ticket: multiply by the quantity for the total.
4. Report the currency the user spoke in as a 3-letter code.
5. Use the formal club name for events. Nicknames:
{nicknames}
   "Blues", "Reds" and "United" depend on context; pick from the conversation.
6. "cash" means mode "journal_voucher"; a bank transfer means "standard".

Return a JSON object with these exact keys:
{{
    "intent": "one of the intents above",
    "confidence": number between 0 and 1,
    "explanation": "one friendly sentence for the user",
    "payload": {{
        "quantity": integer or null,
        "event": "Home vs Away, or null",
        "area": "string or null",
        "block": "string or null",
        "row": "string or null",
        "seats": "string or null",
        "bought_from": "string or null",
        "sold_to": "string or null",
        "cost": total number or null,
        "selling": total number or null,
        "order_number": "string or null",
        "vendor_name": "string or null",
        "amount": number or null,
        "direction": "in" | "out" | null,
        "mode": "standard" | "journal_voucher" | null,
        "bank_name": "string or null",
        "category": "string or null",
        "name": "string or null",
        "phone": "string or null",
        "role": "string or null",
        "email": "string or null",
        "currency": "3-letter code or null",
        "notes": "string or null"
    }}
}}

Known counterparties: {vendors}
Known bank accounts: {banks}
Ledger currency: {base_currency}
"""

_STRING_FIELDS = (
    "area",
    "block",
    "row",
    "seats",
    "bought_from",
    "sold_to",
    "order_number",
    "vendor_name",
    "bank_name",
    "category",
    "name",
    "phone",
    "role",
    "email",
    "notes",
)


class OpenAIClassifier:
    """Classifier backed by the OpenAI chat completions API.

    Usage:
        classifier = OpenAIClassifier(api_key=os.environ["OPENAI_API_KEY"])
        result = classifier.classify("Paid Benny £500", ["Benny"], ["Barclays"], "GBP")
    """

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        timeout: float = 30.0,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    def classify(
        self,
        utterance: str,
        known_vendors: Sequence[str],
        known_banks: Sequence[str],
        base_currency: str,
        conversation_history: Sequence[ChatMessage] = (),
        partial_payload: TransactionPayload | None = None,
    ) -> ClassifierResult:
        messages = self._build_messages(
            utterance,
            known_vendors,
            known_banks,
            base_currency,
            conversation_history,
            partial_payload,
        )

        try:
            from openai import OpenAI

            client = OpenAI(api_key=self.api_key, timeout=self.timeout)
            response = client.chat.completions.create(
                model=self.model,
                messages=messages,
                response_format={"type": "json_object"},
                temperature=0.2,
            )
            content = response.choices[0].message.content
        except Exception as e:
            logger.error("LLM classification failed: %s", e)
            raise ClassifierError(f"LLM request failed: {e}") from e

        if not content:
            logger.error("LLM returned empty content")
            raise ClassifierError("LLM returned empty content")

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error("LLM returned invalid JSON: %s", e)
            raise ClassifierError("LLM returned invalid JSON", {"content": content[:200]}) from e

        if not isinstance(data, dict):
            raise ClassifierError("LLM returned a non-object JSON value")

        result = parse_classifier_output(data)
        logger.info(
            "LLM classified %r as %s (confidence %.2f)",
            utterance,
            result.intent.value,
            result.confidence,
        )
        return result

    # ─── Prompt Construction ─────────────────────────────────────────

    def _build_messages(
        self,
        utterance: str,
        known_vendors: Sequence[str],
        known_banks: Sequence[str],
        base_currency: str,
        conversation_history: Sequence[ChatMessage],
        partial_payload: TransactionPayload | None,
    ) -> list[dict[str, str]]:
        nicknames = "\n".join(
            f'   - "{nickname.title()}" → "{formal}"'
            for nickname, formal in TEAM_NICKNAMES.items()
        )
        system = SYSTEM_PROMPT.format(
            nicknames=nicknames,
            vendors=", ".join(known_vendors) or "(none)",
            banks=", ".join(known_banks) or "(none)",
            base_currency=base_currency,
        )

        collected = _collected_fields(partial_payload)
        if collected:
            system += (
                "\nALREADY COLLECTED (include all of it in your payload):\n"
                f"{json.dumps(collected, indent=2)}\n"
            )

        messages = [{"role": "system", "content": system}]
        for message in list(conversation_history)[-HISTORY_WINDOW:]:
            messages.append({"role": message.role, "content": message.content})
        messages.append({"role": "user", "content": utterance})
        return messages


def _collected_fields(payload: TransactionPayload | None) -> dict[str, object]:
    if payload is None:
        return {}
    data = payload.model_dump(mode="json", exclude_none=True)
    if payload.game_name:
        data["event"] = payload.game_name
    elif payload.event_query:
        data["event"] = payload.event_query
    for internal in ("event_query", "game_id", "game_name"):
        data.pop(internal, None)
    return data


# ─── Output Parsing ──────────────────────────────────────────────────


def parse_classifier_output(data: dict) -> ClassifierResult:
    """Coerce raw model JSON into a ClassifierResult, dropping bad fields."""
    raw_payload = data.get("payload")
    if not isinstance(raw_payload, dict):
        raw_payload = {}

    payload = TransactionPayload(
        quantity=_safe_int(raw_payload.get("quantity")),
        event_query=_safe_str(raw_payload.get("event") or raw_payload.get("game_id")),
        cost=_safe_decimal(raw_payload.get("cost")),
        selling=_safe_decimal(raw_payload.get("selling")),
        amount=_safe_decimal(raw_payload.get("amount")),
        direction=_safe_enum(Direction, raw_payload.get("direction")),
        mode=_safe_enum(SettlementMode, raw_payload.get("mode")),
        currency=_safe_currency(raw_payload.get("currency")),
        **{name: _safe_str(raw_payload.get(name)) for name in _STRING_FIELDS},
    )

    return ClassifierResult(
        intent=_safe_intent(data.get("intent")),
        confidence=_safe_confidence(data.get("confidence")),
        payload=payload,
        explanation=_safe_str(data.get("explanation")) or "",
    )


# ─── Safe Type Converters ────────────────────────────────────────────

E = TypeVar("E", bound=Enum)


def _safe_str(value: object) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _safe_int(value: object) -> int | None:
    """Safely convert an LLM output to int. Returns None on failure."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(Decimal(str(value)))
    except Exception:
        return None


def _safe_decimal(value: object) -> Decimal | None:
    """Safely convert an LLM output to Decimal. Returns None on failure."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value).replace(",", ""))
    except Exception:
        return None
    return result if result.is_finite() else None


def _safe_enum(enum_type: type[E], value: object) -> E | None:
    if value is None:
        return None
    try:
        return enum_type(str(value).strip().lower())
    except ValueError:
        return None


def _safe_currency(value: object) -> str | None:
    text = _safe_str(value)
    if text and len(text) == 3 and text.isalpha():
        return text.upper()
    return None


def _safe_intent(value: object) -> IntentKind:
    label = (_safe_str(value) or "").lower()
    if label in _INTENT_ALIASES:
        return _INTENT_ALIASES[label]
    try:
        return IntentKind(label)
    except ValueError:
        return IntentKind.UNKNOWN


def _safe_confidence(value: object) -> float:
    try:
        confidence = float(str(value))
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(confidence):
        return 0.0
    return min(max(confidence, 0.0), 1.0)


# ─── Factory ─────────────────────────────────────────────────────────


def build_classifier() -> OpenAIClassifier | RuleBasedClassifier:
    """LLM classifier when OPENAI_API_KEY is set, rule-based otherwise."""
    api_key = os.environ.get("OPENAI_API_KEY")
    if not api_key:
        logger.info("No OPENAI_API_KEY set, using rule-based classifier")
        return RuleBasedClassifier()

    model = os.environ.get("INTENT_CLASSIFIER_MODEL", DEFAULT_MODEL)
    logger.info("Using OpenAI classifier (%s)", model)
    return OpenAIClassifier(api_key=api_key, model=model)
