"""
Pydantic models for the conversational intent resolver.

Everything that crosses a boundary (classifier output, directory snapshot,
conversation state handed back to the caller, turn output) is a typed model.
Conversation state is an explicit tagged union discriminated by ``kind`` so a
caller can round-trip it through JSON without losing which phase it is in.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field


# ─── Enumerations ───────────────────────────────────────────────────


class IntentKind(str, Enum):
    """What the user is trying to do."""

    PURCHASE = "purchase"
    ORDER = "order"
    MANUAL_TRANSFER = "manual_transfer"
    CREATE_COUNTERPARTY = "create_counterparty"
    QUERY = "query"
    QUERY_PROFIT_LOSS = "query_profit_loss"
    QUERY_VENDOR_BALANCE = "query_vendor_balance"
    UNKNOWN = "unknown"


TRANSACTION_INTENTS = frozenset(
    {IntentKind.PURCHASE, IntentKind.ORDER, IntentKind.MANUAL_TRANSFER}
)


class Direction(str, Enum):
    IN = "in"  # money received
    OUT = "out"  # money paid


class SettlementMode(str, Enum):
    STANDARD = "standard"  # bank transfer, needs a bank account
    JOURNAL_VOUCHER = "journal_voucher"  # cash, no bank involved


class SourceKind(str, Enum):
    """Which pool an entity match came from."""

    DIRECTORY = "directory"
    LEDGER = "ledger"
    BANK = "bank"


class Slot(str, Enum):
    """A unit of information the dialogue engine can ask for."""

    QUANTITY = "quantity"
    EVENT = "event"
    COUNTERPARTY = "counterparty"
    COST = "cost"
    SELLING = "selling"
    AREA = "area"
    AMOUNT = "amount"
    DIRECTION = "direction"
    MODE_BANK = "mode_bank"
    NAME = "name"
    PHONE = "phone"


# ─── Directory Entities ─────────────────────────────────────────────


class LedgerAccount(BaseModel):
    """A vendor or bank account as the ledger knows it."""

    id: str
    name: str
    balance: Decimal = Decimal("0")


class Counterparty(BaseModel):
    """A directory contact, optionally linked to a ledger vendor."""

    id: str
    name: str
    phone: str = ""
    role: Optional[str] = None
    email: Optional[str] = None
    vendor_id: Optional[str] = None


class Fixture(BaseModel):
    """A match/event tickets can be bought or sold for."""

    id: Optional[str] = None
    home_team: str
    away_team: str
    date: Optional[str] = None

    @property
    def display_name(self) -> str:
        return f"{self.home_team} vs {self.away_team}"

    @property
    def key(self) -> str:
        return self.id or f"{self.home_team}-{self.away_team}-{self.date or ''}"


class DirectorySnapshot(BaseModel):
    """Everything the engine may resolve names against for one tenant."""

    vendors: list[LedgerAccount] = Field(default_factory=list)
    banks: list[LedgerAccount] = Field(default_factory=list)
    counterparties: list[Counterparty] = Field(default_factory=list)
    fixtures: list[Fixture] = Field(default_factory=list)
    fx_rates: dict[str, Decimal] = Field(default_factory=dict)
    base_currency: str = "GBP"


# ─── Resolution Results ─────────────────────────────────────────────


class EntityMatch(BaseModel):
    """A resolved counterparty or bank candidate."""

    id: str
    canonical_name: str
    display_name: str
    balance: Optional[Decimal] = None
    source_kind: SourceKind


class EventMatch(BaseModel):
    id: str
    display_name: str


# ─── Transaction Payload ────────────────────────────────────────────


class TransactionPayload(BaseModel):
    """Union of every field any intent variant can carry.

    Every field is Optional: the payload is accumulated across turns and
    only checked for completeness against the active intent.
    ``event_query`` holds the raw event text until the event matcher turns
    it into ``game_id``/``game_name``.
    """

    # Ticket purchase / order
    quantity: Optional[int] = None
    event_query: Optional[str] = None
    game_id: Optional[str] = None
    game_name: Optional[str] = None
    area: Optional[str] = None
    block: Optional[str] = None
    row: Optional[str] = None
    seats: Optional[str] = None
    bought_from: Optional[str] = None
    bought_from_vendor_id: Optional[str] = None
    sold_to: Optional[str] = None
    sold_to_vendor_id: Optional[str] = None
    cost: Optional[Decimal] = None
    selling: Optional[Decimal] = None
    order_number: Optional[str] = None

    # Manual transfer
    vendor_name: Optional[str] = None
    vendor_id: Optional[str] = None
    amount: Optional[Decimal] = None
    direction: Optional[Direction] = None
    mode: Optional[SettlementMode] = None
    bank_name: Optional[str] = None
    bank_account_id: Optional[str] = None
    bank_balance: Optional[Decimal] = None
    category: Optional[str] = None

    # Counterparty creation
    name: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None
    email: Optional[str] = None

    currency: Optional[str] = None
    notes: Optional[str] = None


# ─── Classifier ─────────────────────────────────────────────────────


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ClassifierResult(BaseModel):
    """Best-effort structured guess returned by a classifier."""

    intent: IntentKind = IntentKind.UNKNOWN
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    payload: TransactionPayload = Field(default_factory=TransactionPayload)
    explanation: str = ""


# ─── Conversation State ─────────────────────────────────────────────


class PendingDisambiguation(BaseModel):
    slot: Slot
    search_term: str
    candidates: list[EntityMatch]


class Fresh(BaseModel):
    kind: Literal["fresh"] = "fresh"


class AwaitingDisambiguation(BaseModel):
    kind: Literal["awaiting_disambiguation"] = "awaiting_disambiguation"
    step: int = Field(default=1, ge=1)
    intent: IntentKind
    partial_payload: TransactionPayload
    missing_fields: list[Slot] = Field(default_factory=list)
    pending: PendingDisambiguation


class AwaitingSlot(BaseModel):
    kind: Literal["awaiting_slot"] = "awaiting_slot"
    step: int = Field(default=1, ge=1)
    intent: IntentKind
    field: Slot
    missing_fields: list[Slot] = Field(default_factory=list)
    partial_payload: TransactionPayload


class Complete(BaseModel):
    kind: Literal["complete"] = "complete"
    intent: IntentKind
    payload: TransactionPayload


class Failed(BaseModel):
    kind: Literal["failed"] = "failed"
    reason: str
    missing_field: Optional[Slot] = None


ConversationState = Annotated[
    Union[Fresh, AwaitingDisambiguation, AwaitingSlot, Complete, Failed],
    Field(discriminator="kind"),
]


# ─── Turn Output ────────────────────────────────────────────────────


class Affordance(BaseModel):
    """An action the UI can offer next to the reply."""

    action: Literal[
        "confirm", "edit", "cancel", "create_counterparty", "create_bank_account"
    ]
    label: str
    prefill: dict[str, str] = Field(default_factory=dict)


class TurnResult(BaseModel):
    """The engine's answer to one utterance."""

    message: str
    requires_confirmation: bool = False
    state: ConversationState = Field(default_factory=Fresh)
    intent: IntentKind = IntentKind.UNKNOWN
    payload: Optional[TransactionPayload] = None
    affordances: list[Affordance] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def conversation_state(self) -> AwaitingSlot | AwaitingDisambiguation | None:
        """State to hand back next turn; None once the conversation is over."""
        if isinstance(self.state, (AwaitingSlot, AwaitingDisambiguation)):
            return self.state
        return None


# ─── Ledger Submission ──────────────────────────────────────────────


class SubmissionFinding(BaseModel):
    """A reason a payload cannot be sent to the ledger yet."""

    code: str  # e.g. "MISSING_REQUIRED_FIELD"
    field: str
    message: str


class PreparedSubmission(BaseModel):
    """The ledger request a confirmed payload turns into."""

    endpoint: str
    method: Literal["POST"] = "POST"
    body: dict[str, Any] = Field(default_factory=dict)
