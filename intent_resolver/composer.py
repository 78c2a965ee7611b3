"""
Plain-text rendering of payloads, balances and candidate menus.

Field order per intent is fixed so the same payload always renders the
same way. Absent required fields show as "(not set)"; absent optional
fields are left out.
"""

from __future__ import annotations

from decimal import Decimal

from .models import (
    Direction,
    EntityMatch,
    IntentKind,
    PendingDisambiguation,
    SettlementMode,
    TransactionPayload,
)

NOT_SET = "(not set)"

HELP_MESSAGE = "I didn't quite understand that. Try one of these:"

SUGGESTIONS: tuple[str, ...] = (
    "Bought 2 tickets from Benny for Arsenal vs Spurs at £100 each",
    "Sold 2 tickets to John at £150 each",
    "Paid Benny £3,250",
    "What's my profit for Arsenal vs Spurs?",
)

_DIRECTION_LABELS = {
    Direction.IN: "Money In (Receipt)",
    Direction.OUT: "Money Out (Payment)",
}

_MODE_LABELS = {
    SettlementMode.STANDARD: "Bank transfer",
    SettlementMode.JOURNAL_VOUCHER: "Cash (journal voucher)",
}

# (label, value, required)
Row = tuple[str, object, bool]


def format_money(value: Decimal | None, currency_symbol: str = "£") -> str | None:
    if value is None:
        return None
    sign = "-" if value < 0 else ""
    return f"{sign}{currency_symbol}{abs(value):,.2f}"


def _render(title: str, rows: list[Row]) -> str:
    lines = [title]
    for label, value, required in rows:
        if value is None or value == "":
            if not required:
                continue
            value = NOT_SET
        lines.append(f"  {label}: {value}")
    return "\n".join(lines)


def _event(payload: TransactionPayload) -> str | None:
    return payload.game_name or payload.event_query


def compose(
    intent: IntentKind,
    payload: TransactionPayload,
    currency_symbol: str = "£",
) -> str:
    """Render a confirmation summary for ``payload`` under ``intent``."""
    p = payload

    def money(value: Decimal | None) -> str | None:
        return format_money(value, currency_symbol)

    if intent == IntentKind.PURCHASE:
        return _render(
            "Purchase details:",
            [
                ("Event", _event(p), True),
                ("Quantity", p.quantity, True),
                ("Area", p.area, True),
                ("Bought from", p.bought_from, True),
                ("Total cost", money(p.cost), True),
                ("Block", p.block, False),
                ("Row", p.row, False),
                ("Seats", p.seats, False),
                ("Notes", p.notes, False),
            ],
        )

    if intent == IntentKind.ORDER:
        return _render(
            "Sale details:",
            [
                ("Event", _event(p), True),
                ("Quantity", p.quantity, True),
                ("Area", p.area, True),
                ("Sold to", p.sold_to, True),
                ("Selling price", money(p.selling), True),
                ("Block", p.block, False),
                ("Row", p.row, False),
                ("Seats", p.seats, False),
                ("Order number", p.order_number, False),
                ("Notes", p.notes, False),
            ],
        )

    if intent == IntentKind.MANUAL_TRANSFER:
        bank = p.bank_name
        if bank and p.bank_balance is not None:
            bank = f"{bank} (balance {money(p.bank_balance)})"
        return _render(
            "Payment details:",
            [
                ("Counterparty", p.vendor_name, False),
                ("Amount", money(p.amount), True),
                ("Direction", _DIRECTION_LABELS.get(p.direction) if p.direction else None, True),
                ("Method", _MODE_LABELS.get(p.mode) if p.mode else None, True),
                ("Bank", bank, p.mode == SettlementMode.STANDARD),
                ("Category", p.category, False),
                ("Notes", p.notes, False),
            ],
        )

    if intent == IntentKind.CREATE_COUNTERPARTY:
        return _render(
            "New counterparty:",
            [
                ("Name", p.name, True),
                ("Phone", p.phone, True),
                ("Role", p.role, False),
                ("Email", p.email, False),
                ("Notes", p.notes, False),
            ],
        )

    if intent == IntentKind.QUERY_PROFIT_LOSS:
        return _render("Profit and loss query:", [("Event", _event(p), True)])

    if intent == IntentKind.QUERY_VENDOR_BALANCE:
        return _render("Balance query:", [("Counterparty", p.vendor_name, True)])

    return ""


def compose_balance(match: EntityMatch, currency_symbol: str = "£") -> str:
    """Say who owes whom, from the ledger's point of view."""
    name = match.canonical_name
    if match.balance is None:
        return f"I couldn't find a ledger balance for {name}."
    if match.balance > 0:
        return f"{name} owes you {format_money(match.balance, currency_symbol)}."
    if match.balance < 0:
        return f"You owe {name} {format_money(-match.balance, currency_symbol)}."
    return f"You and {name} are all settled up."


def compose_disambiguation(pending: PendingDisambiguation, currency_symbol: str = "£") -> str:
    lines = [
        f'I found {len(pending.candidates)} matches for "{pending.search_term}". '
        "Which one did you mean?"
    ]
    for number, candidate in enumerate(pending.candidates, start=1):
        line = f"  {number}. {candidate.display_name}"
        if candidate.balance is not None:
            line += f" (balance {format_money(candidate.balance, currency_symbol)})"
        lines.append(line)
    lines.append("Reply with the number or the name.")
    return "\n".join(lines)
