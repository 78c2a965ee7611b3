"""
Slot definitions: what each intent needs, in what order it is asked for,
and how a partial payload is merged with a new classifier guess.

Everything here is a pure function of (intent, payload); the dialogue
engine owns sequencing and state.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Callable

from .models import IntentKind, SettlementMode, Slot, TransactionPayload

# ─── Ticket Areas ───────────────────────────────────────────────────

AREA_OPTIONS: tuple[str, ...] = (
    "Shortside Upper",
    "Shortside Lower",
    "Shortside Hospitality",
    "Longside Hospitality",
    "Longside Upper",
    "Longside Upper Central",
    "Longside Lower",
    "Longside Lower Central",
)

DEFAULT_CATEGORY = "other"

# ─── Field Groups ───────────────────────────────────────────────────

# (name field, resolved id field) holding the counterparty for each intent
COUNTERPARTY_FIELDS: dict[IntentKind, tuple[str, str]] = {
    IntentKind.PURCHASE: ("bought_from", "bought_from_vendor_id"),
    IntentKind.ORDER: ("sold_to", "sold_to_vendor_id"),
    IntentKind.MANUAL_TRANSFER: ("vendor_name", "vendor_id"),
    IntentKind.QUERY_VENDOR_BALANCE: ("vendor_name", "vendor_id"),
}

BANK_FIELDS: tuple[str, str] = ("bank_name", "bank_account_id")

EVENT_INTENTS = frozenset(
    {IntentKind.PURCHASE, IntentKind.ORDER, IntentKind.QUERY_PROFIT_LOSS}
)

# Required slots, highest priority first
REQUIRED_SLOTS: dict[IntentKind, tuple[Slot, ...]] = {
    IntentKind.PURCHASE: (Slot.QUANTITY, Slot.EVENT, Slot.COUNTERPARTY, Slot.COST, Slot.AREA),
    IntentKind.ORDER: (Slot.QUANTITY, Slot.EVENT, Slot.COUNTERPARTY, Slot.SELLING, Slot.AREA),
    IntentKind.MANUAL_TRANSFER: (Slot.AMOUNT, Slot.DIRECTION, Slot.MODE_BANK),
    IntentKind.CREATE_COUNTERPARTY: (Slot.NAME, Slot.PHONE),
    IntentKind.QUERY_PROFIT_LOSS: (Slot.EVENT,),
    IntentKind.QUERY_VENDOR_BALANCE: (Slot.COUNTERPARTY,),
}

SLOT_LABELS: dict[Slot, str] = {
    Slot.QUANTITY: "quantity",
    Slot.EVENT: "event",
    Slot.COUNTERPARTY: "counterparty",
    Slot.COST: "total cost",
    Slot.SELLING: "selling price",
    Slot.AREA: "area",
    Slot.AMOUNT: "amount",
    Slot.DIRECTION: "direction (paid or received)",
    Slot.MODE_BANK: "payment method",
    Slot.NAME: "name",
    Slot.PHONE: "phone number",
}


# ─── Presence Checks ────────────────────────────────────────────────


def _positive(value: int | Decimal | None) -> bool:
    return value is not None and value > 0


def _filled(value: str | None) -> bool:
    return bool(value and value.strip())


def _mode_and_bank(payload: TransactionPayload) -> bool:
    if payload.mode == SettlementMode.JOURNAL_VOUCHER:
        return True
    return payload.mode == SettlementMode.STANDARD and _filled(payload.bank_account_id)


def _slot_checks(intent: IntentKind) -> dict[Slot, Callable[[TransactionPayload], bool]]:
    counterparty_id = COUNTERPARTY_FIELDS.get(intent, ("", ""))[1]
    return {
        Slot.QUANTITY: lambda p: _positive(p.quantity),
        Slot.EVENT: lambda p: _filled(p.game_id),
        Slot.COUNTERPARTY: lambda p: _filled(getattr(p, counterparty_id, None)),
        Slot.COST: lambda p: _positive(p.cost),
        Slot.SELLING: lambda p: _positive(p.selling),
        Slot.AREA: lambda p: _filled(p.area),
        Slot.AMOUNT: lambda p: _positive(p.amount),
        Slot.DIRECTION: lambda p: p.direction is not None,
        Slot.MODE_BANK: _mode_and_bank,
        Slot.NAME: lambda p: _filled(p.name),
        Slot.PHONE: lambda p: _filled(p.phone),
    }


def missing_fields(intent: IntentKind, payload: TransactionPayload) -> list[Slot]:
    """Required slots still absent for ``intent``, highest priority first.

    Zero or negative quantities and amounts count as absent.
    """
    checks = _slot_checks(intent)
    return [slot for slot in REQUIRED_SLOTS.get(intent, ()) if not checks[slot](payload)]


# ─── Auto-promotion ─────────────────────────────────────────────────

# Promotion order when the classifier gave up but the data is all there
PROMOTION_ORDER: tuple[IntentKind, ...] = (
    IntentKind.PURCHASE,
    IntentKind.ORDER,
    IntentKind.MANUAL_TRANSFER,
)


def has_shape(intent: IntentKind, payload: TransactionPayload) -> bool:
    """True when ``payload`` carries raw values for every required field.

    Names stand in for ids here; resolution happens afterwards.
    """
    p = payload
    if intent == IntentKind.PURCHASE:
        return (
            _positive(p.quantity)
            and (_filled(p.game_id) or _filled(p.event_query))
            and (_filled(p.bought_from_vendor_id) or _filled(p.bought_from))
            and _positive(p.cost)
        )
    if intent == IntentKind.ORDER:
        return (
            _positive(p.quantity)
            and (_filled(p.game_id) or _filled(p.event_query))
            and (_filled(p.sold_to_vendor_id) or _filled(p.sold_to))
            and _positive(p.selling)
        )
    if intent == IntentKind.MANUAL_TRANSFER:
        return _positive(p.amount) and p.direction is not None and p.mode is not None
    return False


def promote(payload: TransactionPayload) -> IntentKind | None:
    for intent in PROMOTION_ORDER:
        if has_shape(intent, payload):
            return intent
    return None


# ─── Merging ────────────────────────────────────────────────────────


def merge_payloads(
    prior: TransactionPayload, update: TransactionPayload
) -> TransactionPayload:
    """Overlay ``update`` on ``prior``; None and blank strings never overwrite."""
    changes = {
        name: value
        for name, value in update.model_dump(exclude_none=True).items()
        if not (isinstance(value, str) and not value.strip())
    }
    return prior.model_copy(update=changes)


# ─── Questions ──────────────────────────────────────────────────────

_QUESTIONS: dict[tuple[IntentKind, Slot], str] = {
    (IntentKind.PURCHASE, Slot.QUANTITY): "How many tickets did you buy?",
    (IntentKind.PURCHASE, Slot.EVENT): "Which game did you buy the tickets for?",
    (IntentKind.PURCHASE, Slot.COUNTERPARTY): "Who did you buy them from?",
    (IntentKind.PURCHASE, Slot.COST): "What was the total cost of the tickets you bought?",
    (IntentKind.ORDER, Slot.QUANTITY): "How many tickets did you sell?",
    (IntentKind.ORDER, Slot.EVENT): "Which game did you sell the tickets for?",
    (IntentKind.ORDER, Slot.COUNTERPARTY): "Who did you sell them to?",
    (IntentKind.ORDER, Slot.SELLING): "What was the total selling price of the tickets you sold?",
    (IntentKind.MANUAL_TRANSFER, Slot.AMOUNT): "How much was the payment?",
    (IntentKind.MANUAL_TRANSFER, Slot.DIRECTION): "Was this a payment you made or received?",
    (IntentKind.MANUAL_TRANSFER, Slot.MODE_BANK): (
        "Was this paid by cash or bank transfer? If bank, which account?"
    ),
    (IntentKind.MANUAL_TRANSFER, Slot.COUNTERPARTY): "Who was the payment with?",
    (IntentKind.CREATE_COUNTERPARTY, Slot.NAME): "What's the new counterparty's name?",
    (IntentKind.CREATE_COUNTERPARTY, Slot.PHONE): "What's the counterparty's phone number?",
    (IntentKind.QUERY_PROFIT_LOSS, Slot.EVENT): "Which match do you want the profit and loss for?",
    (IntentKind.QUERY_VENDOR_BALANCE, Slot.COUNTERPARTY): (
        "Which counterparty do you want the balance for?"
    ),
}


def question_for(intent: IntentKind, slot: Slot) -> str:
    return _QUESTIONS.get((intent, slot), f"What is the {SLOT_LABELS[slot]}?")
