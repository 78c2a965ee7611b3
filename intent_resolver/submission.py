"""
Confirmation-time checks and ledger request preparation.

The dialogue engine only surfaces a payload once it is complete, but the
user may edit it before confirming. These checks run again on whatever
comes back, and they never call a classifier or guess a value.

Each check:
  - Takes an intent and a payload
  - Returns a list of SubmissionFinding objects (empty = ready to send)

Sending the request is the caller's job; ``prepare_submission`` only builds
the endpoint and body.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from enum import Enum

from .exceptions import IncompletePayloadError
from .models import (
    IntentKind,
    PreparedSubmission,
    SettlementMode,
    SubmissionFinding,
    TransactionPayload,
)

logger = logging.getLogger(__name__)

# ─── Constants ───────────────────────────────────────────────────────

SUBMISSION_ENDPOINTS: dict[IntentKind, str] = {
    IntentKind.PURCHASE: "/inventory-records/purchases",
    IntentKind.ORDER: "/inventory-records/orders",
    IntentKind.MANUAL_TRANSFER: "/transactions/manual",
    IntentKind.CREATE_COUNTERPARTY: "/directory/counterparties",
}

_BODY_FIELDS: dict[IntentKind, tuple[str, ...]] = {
    IntentKind.PURCHASE: (
        "quantity", "game_id", "area", "block", "row", "seats",
        "bought_from_vendor_id", "cost", "currency", "notes",
    ),
    IntentKind.ORDER: (
        "quantity", "game_id", "area", "block", "row", "seats",
        "sold_to_vendor_id", "selling", "order_number", "currency", "notes",
    ),
    IntentKind.MANUAL_TRANSFER: (
        "vendor_id", "amount", "direction", "mode", "bank_account_id",
        "category", "currency", "notes",
    ),
    IntentKind.CREATE_COUNTERPARTY: ("name", "phone", "role", "email", "notes"),
}


# ─── Checks ──────────────────────────────────────────────────────────


def _missing(field: str, message: str) -> SubmissionFinding:
    return SubmissionFinding(code="MISSING_REQUIRED_FIELD", field=field, message=message)


def _not_positive(field: str, message: str) -> SubmissionFinding:
    return SubmissionFinding(code="NON_POSITIVE_VALUE", field=field, message=message)


def _check_tickets(
    payload: TransactionPayload,
    vendor_field: str,
    vendor_label: str,
    price_field: str,
    price_label: str,
) -> list[SubmissionFinding]:
    findings: list[SubmissionFinding] = []
    if not payload.game_id:
        findings.append(_missing("game_id", "Event/Game is required"))
    if not payload.quantity or payload.quantity < 1:
        findings.append(_not_positive("quantity", "Quantity must be at least 1"))
    if not payload.area:
        findings.append(_missing("area", "Area/Section is required"))
    if not getattr(payload, vendor_field):
        findings.append(_missing(vendor_field, f"Vendor ({vendor_label}) is required"))
    price = getattr(payload, price_field)
    if price is None or price <= 0:
        findings.append(_not_positive(price_field, f"{price_label} must be greater than 0"))
    return findings


def _check_manual(payload: TransactionPayload) -> list[SubmissionFinding]:
    findings: list[SubmissionFinding] = []
    if payload.amount is None or payload.amount <= 0:
        findings.append(_not_positive("amount", "Amount must be greater than 0"))
    if payload.direction is None:
        findings.append(_missing("direction", "Direction (in or out) is required"))
    if payload.mode is None:
        findings.append(_missing("mode", "Payment method (cash or bank) is required"))
    elif payload.mode == SettlementMode.STANDARD and not payload.bank_account_id:
        findings.append(_missing("bank_account_id", "Bank Account is required"))
    return findings


def _check_counterparty(payload: TransactionPayload) -> list[SubmissionFinding]:
    findings: list[SubmissionFinding] = []
    if not (payload.name and payload.name.strip()):
        findings.append(_missing("name", "Name is required"))
    if not (payload.phone and payload.phone.strip()):
        findings.append(_missing("phone", "Phone is required"))
    return findings


def validate_for_submission(
    intent: IntentKind, payload: TransactionPayload
) -> list[SubmissionFinding]:
    """Every reason ``payload`` cannot be sent to the ledger as ``intent``."""
    if intent == IntentKind.PURCHASE:
        return _check_tickets(payload, "bought_from_vendor_id", "Bought From", "cost", "Total Cost")
    if intent == IntentKind.ORDER:
        return _check_tickets(payload, "sold_to_vendor_id", "Sold To", "selling", "Selling Price")
    if intent == IntentKind.MANUAL_TRANSFER:
        return _check_manual(payload)
    if intent == IntentKind.CREATE_COUNTERPARTY:
        return _check_counterparty(payload)
    return [
        SubmissionFinding(
            code="NOT_SUBMITTABLE",
            field="intent",
            message=f"'{intent.value}' is not something that can be recorded",
        )
    ]


# ─── Request Preparation ─────────────────────────────────────────────


def _wire_value(value: object) -> object:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


def prepare_submission(intent: IntentKind, payload: TransactionPayload) -> PreparedSubmission:
    """Build the ledger request for a confirmed payload.

    Raises:
        IncompletePayloadError: The payload still has findings.
    """
    findings = validate_for_submission(intent, payload)
    if findings:
        logger.warning("Refusing %s submission: %d finding(s)", intent.value, len(findings))
        raise IncompletePayloadError(
            "Cannot submit, please fix: " + "; ".join(f.message for f in findings),
            details={"findings": [f.model_dump() for f in findings]},
        )

    fields = _BODY_FIELDS[intent]
    body = {
        name: _wire_value(getattr(payload, name))
        for name in fields
        if getattr(payload, name) is not None
    }
    if intent == IntentKind.MANUAL_TRANSFER:
        body["type"] = "manual"
        if payload.mode == SettlementMode.JOURNAL_VOUCHER:
            body.pop("bank_account_id", None)

    logger.info("Prepared %s submission to %s", intent.value, SUBMISSION_ENDPOINTS[intent])
    return PreparedSubmission(endpoint=SUBMISSION_ENDPOINTS[intent], body=body)
