"""
Deterministic rule-based intent classification, no LLM.

Used when no OpenAI key is configured. Every pattern is conservative: it
is better to leave a field empty (the dialogue engine will ask for it)
than to fill it with a wrong value.

Short follow-up answers ("£500", "received", "Barclays") carry no intent
keyword, so they are read against the question the assistant asked last
and the fields already collected.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Sequence

from .event_matcher import formal_team_name
from .models import (
    ChatMessage,
    ClassifierResult,
    Direction,
    IntentKind,
    SettlementMode,
    Slot,
    TransactionPayload,
)
from .number_words import replace_number_words
from .slots import AREA_OPTIONS, COUNTERPARTY_FIELDS

KEYWORD_CONFIDENCE = 0.9
FOLLOW_UP_CONFIDENCE = 0.6

# ─── Intent Keywords ─────────────────────────────────────────────────
# Checked in order; the first hit wins.

_INTENT_PATTERNS: tuple[tuple[IntentKind, re.Pattern[str]], ...] = (
    (
        IntentKind.CREATE_COUNTERPARTY,
        re.compile(
            r"\b(?:create|add|new|save)\b.*\b(?:counterparty|contact)\b",
            re.IGNORECASE,
        ),
    ),
    (IntentKind.PURCHASE, re.compile(r"\b(?:bought|buy|purchased?)\b", re.IGNORECASE)),
    (IntentKind.ORDER, re.compile(r"\b(?:sold|sell|sale)\b", re.IGNORECASE)),
    (
        IntentKind.QUERY_PROFIT_LOSS,
        re.compile(r"\b(?:profit|loss|p\s*&\s*l|pnl)\b", re.IGNORECASE),
    ),
    (
        IntentKind.QUERY_VENDOR_BALANCE,
        re.compile(r"\b(?:balance|owes?|owing|outstanding)\b", re.IGNORECASE),
    ),
    (
        IntentKind.MANUAL_TRANSFER,
        re.compile(
            r"\b(?:paid|pay|payment|received|receipt|transferred|sent|"
            r"manual\s+(?:entry|transaction|transfer))\b",
            re.IGNORECASE,
        ),
    ),
)

# What the last assistant question was about, judged by its wording
_QUESTION_INTENTS: tuple[tuple[IntentKind, re.Pattern[str]], ...] = (
    (IntentKind.CREATE_COUNTERPARTY, re.compile(r"counterparty's|new counterparty", re.I)),
    (IntentKind.PURCHASE, re.compile(r"\b(?:buy|bought)\b", re.I)),
    (IntentKind.ORDER, re.compile(r"\b(?:sell|sold)\b", re.I)),
    (IntentKind.QUERY_PROFIT_LOSS, re.compile(r"\bprofit\b", re.I)),
    (IntentKind.QUERY_VENDOR_BALANCE, re.compile(r"\bbalance\b", re.I)),
    (IntentKind.MANUAL_TRANSFER, re.compile(r"\b(?:payment|paid|cash)\b", re.I)),
)

# Slot.AMOUNT stands for "some money figure" here; the intent decides which field
_QUESTION_SLOTS: tuple[tuple[Slot, re.Pattern[str]], ...] = (
    (Slot.QUANTITY, re.compile(r"\bhow many\b", re.I)),
    (Slot.EVENT, re.compile(r"\bwhich (?:game|match)\b", re.I)),
    (Slot.COUNTERPARTY, re.compile(r"\bwho (?:did|was)\b|\bwhich counterparty\b", re.I)),
    (Slot.DIRECTION, re.compile(r"\bmade or received\b", re.I)),
    (Slot.MODE_BANK, re.compile(r"\bcash or bank\b", re.I)),
    (Slot.PHONE, re.compile(r"\bphone\b", re.I)),
    (Slot.NAME, re.compile(r"\bname\?", re.I)),
    (Slot.AMOUNT, re.compile(r"\b(?:cost|price|how much)\b", re.I)),
)

# ─── Field Patterns ──────────────────────────────────────────────────

_NUMBER = r"(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)"

_QUANTITY = re.compile(r"\b(\d+)\s*(?:x\s*)?(?:tickets?|tix|tkts?|seats)\b", re.IGNORECASE)

_MONEY_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(rf"[£$€]\s*{_NUMBER}"),
    re.compile(
        rf"\b{_NUMBER}\s*(?:gbp|usd|eur|pounds?|quid|dollars?|euros?)\b",
        re.IGNORECASE,
    ),
    re.compile(
        rf"\b(?:at|for|cost|costs|costing|price|total|paid|received|of)\s+{_NUMBER}\b"
        r"(?!\s*(?:tickets?|tix|seats))",
        re.IGNORECASE,
    ),
)
_BARE_NUMBER = re.compile(rf"(?<![\w.,]){_NUMBER}(?![\w.,]*\w)")

_PER_TICKET = re.compile(r"\b(?:each|ea|per ticket|a ticket|apiece|per seat)\b", re.IGNORECASE)

_CURRENCY_MARKERS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("GBP", re.compile(r"£|\b(?:gbp|pounds?|quid)\b", re.IGNORECASE)),
    ("USD", re.compile(r"\$|\b(?:usd|dollars?)\b", re.IGNORECASE)),
    ("EUR", re.compile(r"€|\b(?:eur|euros?)\b", re.IGNORECASE)),
)

_DIRECTION_IN = re.compile(
    r"\b(?:received|receipt|got paid|collected|incoming|payment from)\b", re.IGNORECASE
)
_DIRECTION_OUT = re.compile(
    r"\b(?:paid|sent|transferred|outgoing|payment to)\b", re.IGNORECASE
)
# Only trusted when the last question asked for the direction
_DIRECTION_IN_SHORT = re.compile(r"\b(?:in|got|received)\b", re.IGNORECASE)
_DIRECTION_OUT_SHORT = re.compile(r"\b(?:out|made|gave|paid)\b", re.IGNORECASE)

_CASH = re.compile(r"\bcash\b", re.IGNORECASE)
_BANK_TRANSFER = re.compile(r"\b(?:bank|transfer|bacs|faster payment)\b", re.IGNORECASE)

_NAME = r"([A-Z][\w&'-]*(?:\s+[A-Z][\w&'-]*)*)"
_COUNTERPARTY_PATTERNS: dict[IntentKind, re.Pattern[str]] = {
    IntentKind.PURCHASE: re.compile(rf"\b(?i:from)\s+{_NAME}"),
    IntentKind.ORDER: re.compile(rf"\b(?i:to)\s+{_NAME}"),
    IntentKind.MANUAL_TRANSFER: re.compile(
        rf"\b(?i:paid|pay|payment\s+to|payment\s+from|from|to|sent|with)\s+{_NAME}"
    ),
    IntentKind.QUERY_VENDOR_BALANCE: re.compile(
        rf"\b(?i:with|owe|owes|does|for|of)\s+{_NAME}|{_NAME}'s\s+(?i:balance)"
    ),
}
_NOT_A_NAME = {"i", "me", "cash", "bank", "gbp", "usd", "eur", "tickets"}

_CREATE_NAME_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(rf"\b(?i:called|named)\s+{_NAME}"),
    re.compile(rf"\b(?i:counterparty|contact)\s*:?\s+{_NAME}"),
    re.compile(rf"\b(?i:add|create|save)\s+{_NAME}\s+(?i:as)\b"),
)
_PHONE = re.compile(r"(\+?\d[\d\s()-]{6,}\d)")
_EMAIL = re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+")
_ROLE = re.compile(
    r"\b(vendor|supplier|customer|buyer|seller|broker|agent|client)\b", re.IGNORECASE
)

# "Benny for Arsenal vs Spurs at" → trimmed to "Arsenal" / "Spurs" below
_EVENT_VS = re.compile(
    r"\b([A-Za-z][A-Za-z&'.-]*(?:\s+[A-Za-z][A-Za-z&'.-]*){0,2})"
    r"\s+(?:vs?\.?|versus)\s+"
    r"([A-Za-z][A-Za-z&'.-]*(?:\s+[A-Za-z][A-Za-z&'.-]*){0,2})",
    re.IGNORECASE,
)
_EVENT_FOR = re.compile(
    rf"\b(?i:for|on)\s+(?i:the\s+)?{_NAME}(?:\s+(?i:game|match))?"
)
_EVENT_STOPWORDS = {
    "a", "an", "and", "at", "bought", "buy", "each", "for", "from", "game",
    "in", "is", "it", "match", "my", "of", "on", "profit", "loss", "sell",
    "sold", "the", "ticket", "tickets", "to", "was", "what's", "whats", "with",
}

_AREA = re.compile(
    r"\b(short|long)(?:\s*-?\s*side)?\s+(upper|lower|hospitality)(?:\s+(central))?\b",
    re.IGNORECASE,
)
_BLOCK = re.compile(r"\bblock\s+([A-Za-z0-9]+)\b", re.IGNORECASE)
_ROW = re.compile(r"\brow\s+([A-Za-z0-9]+)\b", re.IGNORECASE)
_SEATS = re.compile(r"\bseats?\s+(\d+(?:\s*(?:-|,|and|to)\s*\d+)*)", re.IGNORECASE)
_ORDER_NUMBER = re.compile(
    r"\border\s*(?:number|no\.?|#)\s*:?\s*([A-Za-z0-9-]+)", re.IGNORECASE
)
_CATEGORY = re.compile(
    r"\b(rent|wages|salary|fees?|expenses?|refund|commission|travel|bank charges?)\b",
    re.IGNORECASE,
)

_EXPLANATIONS: dict[IntentKind, str] = {
    IntentKind.PURCHASE: "Got it! Let's record that ticket purchase.",
    IntentKind.ORDER: "Got it! Let's record that ticket sale.",
    IntentKind.MANUAL_TRANSFER: "Got it! Let's record that payment.",
    IntentKind.CREATE_COUNTERPARTY: "Sure, let's add that counterparty.",
    IntentKind.QUERY_PROFIT_LOSS: "Let me look up that match.",
    IntentKind.QUERY_VENDOR_BALANCE: "Let me check that balance.",
}


# ─── Classifier ──────────────────────────────────────────────────────


class RuleBasedClassifier:
    """Keyword and regex classifier with the same interface as OpenAIClassifier."""

    name = "rules"

    def classify(
        self,
        utterance: str,
        known_vendors: Sequence[str],
        known_banks: Sequence[str],
        base_currency: str,
        conversation_history: Sequence[ChatMessage] = (),
        partial_payload: TransactionPayload | None = None,
    ) -> ClassifierResult:
        text = replace_number_words(" ".join(utterance.split()))
        memory = partial_payload or TransactionPayload()
        # Only a conversation already in flight has a pending question
        question = _last_question(conversation_history) if partial_payload is not None else ""
        asked = _question_slot(question) if question else None

        label = detect_intent(text)
        context = (_question_intent(question) if asked else None) or _memory_intent(memory)
        if label == IntentKind.MANUAL_TRANSFER and asked and context in (
            IntentKind.PURCHASE,
            IntentKind.ORDER,
        ):
            # "I paid £500" while answering a ticket question is the ticket price
            label = IntentKind.UNKNOWN
        if label != IntentKind.UNKNOWN:
            context = label

        fields = _extract(text, context, asked, memory, known_vendors, known_banks)

        if label != IntentKind.UNKNOWN:
            confidence = KEYWORD_CONFIDENCE
        elif fields:
            confidence = FOLLOW_UP_CONFIDENCE
        else:
            confidence = 0.0

        return ClassifierResult(
            intent=label,
            confidence=confidence,
            payload=TransactionPayload(**fields),
            explanation=_EXPLANATIONS.get(label, ""),
        )


def detect_intent(text: str) -> IntentKind:
    for intent, pattern in _INTENT_PATTERNS:
        if pattern.search(text):
            return intent
    return IntentKind.UNKNOWN


# ─── Conversation Context ────────────────────────────────────────────


def _last_question(history: Sequence[ChatMessage]) -> str:
    for message in reversed(history):
        if message.role == "assistant":
            return message.content
    return ""


def _question_intent(question: str) -> IntentKind | None:
    for intent, pattern in _QUESTION_INTENTS:
        if pattern.search(question):
            return intent
    return None


def _question_slot(question: str) -> Slot | None:
    for slot, pattern in _QUESTION_SLOTS:
        if pattern.search(question):
            return slot
    return None


def _memory_intent(memory: TransactionPayload) -> IntentKind:
    if memory.bought_from or memory.bought_from_vendor_id or memory.cost:
        return IntentKind.PURCHASE
    if memory.sold_to or memory.sold_to_vendor_id or memory.selling:
        return IntentKind.ORDER
    if memory.amount or memory.direction or memory.mode:
        return IntentKind.MANUAL_TRANSFER
    if memory.phone or memory.name:
        return IntentKind.CREATE_COUNTERPARTY
    return IntentKind.UNKNOWN


# ─── Field Extraction ────────────────────────────────────────────────


def _extract(
    text: str,
    context: IntentKind,
    asked: Slot | None,
    memory: TransactionPayload,
    known_vendors: Sequence[str],
    known_banks: Sequence[str],
) -> dict[str, object]:
    if context == IntentKind.UNKNOWN:
        return {}
    if context == IntentKind.CREATE_COUNTERPARTY:
        return _extract_counterparty_details(text, asked)

    fields: dict[str, object] = {}
    rest = text

    if context in (IntentKind.PURCHASE, IntentKind.ORDER):
        rest = _extract_ticket_details(rest, fields, asked)

    if context in (IntentKind.PURCHASE, IntentKind.ORDER, IntentKind.QUERY_PROFIT_LOSS):
        event = _extract_event(text, asked)
        if event:
            fields["event_query"] = event

    if context in (IntentKind.PURCHASE, IntentKind.ORDER, IntentKind.MANUAL_TRANSFER):
        quantity = fields.get("quantity") or memory.quantity
        money = _extract_money(rest, asked, quantity)
        if money is not None:
            money_field = {
                IntentKind.PURCHASE: "cost",
                IntentKind.ORDER: "selling",
                IntentKind.MANUAL_TRANSFER: "amount",
            }[context]
            fields[money_field] = money
            currency = _detect_currency(text)
            if currency:
                fields["currency"] = currency

    if context == IntentKind.MANUAL_TRANSFER:
        _extract_settlement(text, asked, known_banks, fields)
        category = _CATEGORY.search(text)
        if category:
            fields["category"] = category.group(1).lower()

    if context in COUNTERPARTY_FIELDS and asked != Slot.MODE_BANK:
        name = _extract_counterparty(text, context, asked, known_vendors, known_banks)
        if name:
            fields[COUNTERPARTY_FIELDS[context][0]] = name

    return fields


def _extract_ticket_details(text: str, fields: dict[str, object], asked: Slot | None) -> str:
    """Pull quantity, area and seat details; return text with those spans removed."""
    quantity = _QUANTITY.search(text)
    if quantity:
        fields["quantity"] = int(quantity.group(1))
    elif asked == Slot.QUANTITY:
        bare = _BARE_NUMBER.search(text)
        if bare:
            fields["quantity"] = int(Decimal(bare.group(1).replace(",", "")))

    area = _AREA.search(text)
    if area:
        fields["area"] = _area_name(*area.groups())

    for field_name, pattern in (
        ("block", _BLOCK),
        ("row", _ROW),
        ("seats", _SEATS),
        ("order_number", _ORDER_NUMBER),
    ):
        match = pattern.search(text)
        if match:
            fields[field_name] = match.group(1).strip()

    rest = text
    for pattern in (_QUANTITY, _BLOCK, _ROW, _SEATS, _ORDER_NUMBER):
        rest = pattern.sub(" ", rest)
    if "quantity" in fields and asked == Slot.QUANTITY and not quantity:
        rest = ""
    return rest


def _area_name(side: str, tier: str, central: str | None) -> str:
    area = f"{side.title()}side {tier.title()}"
    if central and f"{area} Central" in AREA_OPTIONS:
        return f"{area} Central"
    return area


def _extract_money(text: str, asked: Slot | None, quantity: int | None) -> Decimal | None:
    value: Decimal | None = None
    for pattern in _MONEY_PATTERNS:
        match = pattern.search(text)
        if match:
            value = _to_decimal(match.group(1))
            break

    if value is None and asked == Slot.AMOUNT:
        bare = _BARE_NUMBER.search(text)
        if bare:
            value = _to_decimal(bare.group(1))

    if value is None or value <= 0:
        return None
    if quantity and _PER_TICKET.search(text):
        value *= quantity
    return value


def _to_decimal(raw: str) -> Decimal | None:
    try:
        return Decimal(raw.replace(",", ""))
    except InvalidOperation:
        return None


def _detect_currency(text: str) -> str | None:
    hits = [
        (match.start(), code)
        for code, pattern in _CURRENCY_MARKERS
        for match in [pattern.search(text)]
        if match
    ]
    return min(hits)[1] if hits else None


def _extract_settlement(
    text: str,
    asked: Slot | None,
    known_banks: Sequence[str],
    fields: dict[str, object],
) -> None:
    """Direction, settlement mode and bank account for a manual transfer."""
    if asked != Slot.MODE_BANK:
        direction = _first_direction(text, _DIRECTION_IN, _DIRECTION_OUT)
        if direction is None and asked == Slot.DIRECTION:
            direction = _first_direction(text, _DIRECTION_IN_SHORT, _DIRECTION_OUT_SHORT)
        if direction is not None:
            fields["direction"] = direction

    bank = _mentioned(text, known_banks)
    if bank:
        fields["mode"] = SettlementMode.STANDARD
        fields["bank_name"] = bank
    elif _CASH.search(text):
        fields["mode"] = SettlementMode.JOURNAL_VOUCHER
    elif _BANK_TRANSFER.search(text):
        fields["mode"] = SettlementMode.STANDARD
    elif asked == Slot.MODE_BANK:
        name = re.fullmatch(rf"\s*{_NAME}\s*[.!]?\s*", text)
        if name:
            fields["mode"] = SettlementMode.STANDARD
            fields["bank_name"] = name.group(1)


def _first_direction(
    text: str, inbound: re.Pattern[str], outbound: re.Pattern[str]
) -> Direction | None:
    hits = []
    match_in = inbound.search(text)
    if match_in:
        hits.append((match_in.start(), Direction.IN))
    match_out = outbound.search(text)
    if match_out:
        hits.append((match_out.start(), Direction.OUT))
    return min(hits)[1] if hits else None


def _mentioned(text: str, names: Sequence[str]) -> str | None:
    """The longest known name mentioned anywhere in ``text``."""
    for name in sorted(names, key=len, reverse=True):
        if name.strip() and re.search(rf"\b{re.escape(name.strip())}\b", text, re.IGNORECASE):
            return name
    return None


def _extract_counterparty(
    text: str,
    context: IntentKind,
    asked: Slot | None,
    known_vendors: Sequence[str],
    known_banks: Sequence[str],
) -> str | None:
    banks = {bank.strip().lower() for bank in known_banks}

    def usable(candidate: str | None) -> bool:
        if not candidate:
            return False
        lowered = candidate.lower()
        return lowered not in _NOT_A_NAME and lowered not in banks

    for match in _COUNTERPARTY_PATTERNS[context].finditer(text):
        candidate = next((group for group in match.groups() if group), None)
        if usable(candidate):
            return candidate

    mentioned = _mentioned(text, known_vendors)
    if usable(mentioned):
        return mentioned

    if asked == Slot.COUNTERPARTY:
        reply = re.sub(r"^(?i:from|to|it was|by|with)\s+", "", text.strip()).rstrip(".!")
        if reply and len(reply.split()) <= 4 and usable(reply):
            return reply
    return None


def _extract_event(text: str, asked: Slot | None) -> str | None:
    match = _EVENT_VS.search(text)
    if match:
        home = _trim_team(match.group(1).split(), from_end=True)
        away = _trim_team(match.group(2).split(), from_end=False)
        if home and away:
            return f"{formal_team_name(home)} vs {formal_team_name(away)}"

    named = _EVENT_FOR.search(text)
    if named:
        return formal_team_name(named.group(1))

    if asked == Slot.EVENT:
        reply = text.strip().rstrip(".!?")
        if reply:
            return formal_team_name(reply)
    return None


def _trim_team(words: list[str], from_end: bool) -> str:
    """Keep the words on the team side of the nearest stopword."""
    kept: list[str] = []
    sequence = reversed(words) if from_end else iter(words)
    for word in sequence:
        word = word.strip(".")
        if not word or word.lower() in _EVENT_STOPWORDS:
            break
        kept.append(word)
    if from_end:
        kept.reverse()
    return " ".join(kept)


def _extract_counterparty_details(text: str, asked: Slot | None) -> dict[str, object]:
    fields: dict[str, object] = {}

    for pattern in _CREATE_NAME_PATTERNS:
        match = pattern.search(text)
        if match:
            fields["name"] = match.group(1)
            break
    else:
        if asked == Slot.NAME:
            reply = text.strip().rstrip(".!")
            if reply:
                fields["name"] = reply

    phone = _PHONE.search(text)
    if phone:
        fields["phone"] = " ".join(phone.group(1).split())

    email = _EMAIL.search(text)
    if email:
        fields["email"] = email.group(0)

    role = _ROLE.search(text)
    if role:
        fields["role"] = role.group(1).lower()

    return fields
