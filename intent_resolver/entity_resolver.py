"""
Counterparty and bank-account name resolution.

Maps a free-text name ("benny", "barclays") onto known entities. Two pools
are searched:

  1. The directory (counterparties). Richer display metadata; an entry's
     identifier is the ledger vendor it is linked to, when it has one.
  2. The ledger pool (vendors, or bank accounts for bank slots).

Strategy:
  1. Normalize the search term (trim + lowercase). Empty → NotFound.
  2. Exact: a stored name equal to the normalized term short-circuits.
  3. Fuzzy: substring containment in either direction, both pools merged
     and de-duplicated by identifier, directory entries first.

The resolver is pure: no I/O, no mutation of its inputs.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Sequence, Union

from .models import Counterparty, EntityMatch, LedgerAccount, SourceKind

# ─── Outcomes ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class NotFound:
    search_term: str


@dataclass(frozen=True)
class SingleMatch:
    match: EntityMatch


@dataclass(frozen=True)
class MultipleMatches:
    matches: tuple[EntityMatch, ...]


ResolutionOutcome = Union[NotFound, SingleMatch, MultipleMatches]


# ─── Candidate Building ─────────────────────────────────────────────


def _display_name(entry: Counterparty) -> str:
    if entry.role:
        return f"{entry.name} ({entry.role})"
    return entry.name


def _candidates(
    directory: Iterable[Counterparty],
    ledger: Sequence[LedgerAccount],
    ledger_kind: SourceKind,
) -> list[tuple[str, EntityMatch]]:
    """Flatten both pools into (stored name, match) pairs, directory first."""
    balances: dict[str, Decimal] = {account.id: account.balance for account in ledger}
    pairs: list[tuple[str, EntityMatch]] = []

    for entry in directory:
        resolved_id = entry.vendor_id or entry.id
        pairs.append(
            (
                entry.name,
                EntityMatch(
                    id=resolved_id,
                    canonical_name=entry.name,
                    display_name=_display_name(entry),
                    balance=balances.get(resolved_id),
                    source_kind=SourceKind.DIRECTORY,
                ),
            )
        )

    for account in ledger:
        pairs.append(
            (
                account.name,
                EntityMatch(
                    id=account.id,
                    canonical_name=account.name,
                    display_name=account.name,
                    balance=account.balance,
                    source_kind=ledger_kind,
                ),
            )
        )

    return pairs


def _dedupe(matches: Iterable[EntityMatch]) -> list[EntityMatch]:
    seen: set[str] = set()
    unique: list[EntityMatch] = []
    for match in matches:
        if match.id in seen:
            continue
        seen.add(match.id)
        unique.append(match)
    return unique


def _outcome(matches: list[EntityMatch]) -> ResolutionOutcome | None:
    if len(matches) == 1:
        return SingleMatch(matches[0])
    if matches:
        return MultipleMatches(tuple(matches))
    return None


# ─── Public API ──────────────────────────────────────────────────────


def resolve(
    search_term: str | None,
    directory: Iterable[Counterparty] = (),
    ledger: Sequence[LedgerAccount] = (),
    ledger_kind: SourceKind = SourceKind.LEDGER,
) -> ResolutionOutcome:
    """Resolve a free-text name against the directory and ledger pools.

    Args:
        search_term: The name as the user (or classifier) gave it.
        directory: Counterparties, searched first.
        ledger: Vendors or bank accounts, searched second.
        ledger_kind: How matches from ``ledger`` are tagged.

    Returns:
        NotFound, SingleMatch or MultipleMatches. The number of matches never
        exceeds the de-duplicated union of both pools.

    An exact name short-circuits unless the term also sits inside a longer
    candidate name: "Benny Jr" resolves directly, while "Benny" still
    collects both "Benny" and "Benny Jr" in the fuzzy step.
    """
    term = (search_term or "").strip().lower()
    if not term:
        return NotFound(search_term or "")

    pairs = [
        (name.strip(), match)
        for name, match in _candidates(directory, ledger, ledger_kind)
        if name and name.strip()
    ]

    extends_term = any(term in name.lower() and name.lower() != term for name, _ in pairs)
    if not extends_term:
        exact = _outcome(_dedupe(match for name, match in pairs if name.lower() == term))
        if exact is not None:
            return exact

    fuzzy = _outcome(
        _dedupe(
            match
            for name, match in pairs
            if term in name.lower() or name.lower() in term
        )
    )
    return fuzzy if fuzzy is not None else NotFound(search_term or "")


def lookup(
    entity_id: str | None,
    directory: Iterable[Counterparty] = (),
    ledger: Sequence[LedgerAccount] = (),
    ledger_kind: SourceKind = SourceKind.LEDGER,
) -> EntityMatch | None:
    """Find the entity an already-resolved identifier belongs to."""
    if not entity_id:
        return None
    for _, match in _candidates(directory, ledger, ledger_kind):
        if match.id == entity_id:
            return match
    return None
