"""
Event (fixture) matching for ticket transactions and profit/loss queries.

Two layers:

  ``find_event``   picks a search seed (classifier candidate, else patterns
                   over the raw utterance), runs the search with one
                   first-word retry, and returns the first hit. Never raises.

  ``FixtureSearch`` is the concrete search function: it splits
                   "Home vs Away" queries and expands club nicknames, fans
                   several candidate queries out in parallel against a
                   lookup backend, merges and de-duplicates the results,
                   then filters by team tokens.
"""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, Sequence

from .models import EventMatch, Fixture

logger = logging.getLogger(__name__)

SearchFn = Callable[[str], Sequence[Fixture]]

MIN_CANDIDATE_LENGTH = 3  # classifier candidates of 2 chars or fewer are noise
MAX_PARALLEL_QUERIES = 4

# ─── Team Nicknames ─────────────────────────────────────────────────
# Fixtures are stored under formal club names. Nicknames that depend on
# context ("Blues", "Reds", "United") are left to the LLM classifier.

TEAM_NICKNAMES: dict[str, str] = {
    "spurs": "Tottenham",
    "gunners": "Arsenal",
    "red devils": "Manchester United",
    "man utd": "Manchester United",
    "man united": "Manchester United",
    "citizens": "Manchester City",
    "man city": "Manchester City",
    "city": "Manchester City",
    "hammers": "West Ham",
    "saints": "Southampton",
    "toffees": "Everton",
    "magpies": "Newcastle",
    "foxes": "Leicester",
    "wolves": "Wolverhampton",
    "villa": "Aston Villa",
    "palace": "Crystal Palace",
    "eagles": "Crystal Palace",
    "seagulls": "Brighton",
    "bees": "Brentford",
    "cherries": "Bournemouth",
    "clarets": "Burnley",
}


def formal_team_name(name: str) -> str:
    """Map a club nickname onto its formal name; other names pass through."""
    cleaned = " ".join(name.split())
    return TEAM_NICKNAMES.get(cleaned.lower(), cleaned)


# ─── Seed Patterns ──────────────────────────────────────────────────

_TEAM = r"[A-Z][a-zA-Z'&-]*(?:\s+[A-Z][a-zA-Z'&-]*)?"

# (a) "Arsenal vs Spurs", "Man City v. Liverpool", "Leeds versus Hull"
_VS_PATTERN = re.compile(rf"\b({_TEAM})\s+(?i:vs?\.?|versus)\s+({_TEAM})")

# (b) "for Arsenal", "for Man City"
_FOR_PATTERN = re.compile(rf"\b(?i:for)\s+({_TEAM})")

# (c) capitalised tokens left after stripping transaction words
_STOPWORDS = re.compile(
    r"\b(?:i|bought|buy|sold|sell|purchased?|orders?|tickets?|from|to|at|for|"
    r"each|vs|versus|the|a|an|of|paid|received|profit|loss|on|match|game)\b|"
    r"[£$€]|\d+(?:[.,]\d+)*",
    re.IGNORECASE,
)
_CAPITALISED = re.compile(r"\b[A-Z][a-zA-Z'&-]+\b")

# Home/away separator for FixtureSearch
_SPLIT_PATTERN = re.compile(r"\s+(?:vs\.?|v\.?|versus|@)\s+", re.IGNORECASE)


def derive_seed(utterance: str) -> str | None:
    """Guess an event search seed from the raw utterance."""
    if not utterance:
        return None

    vs_match = _VS_PATTERN.search(utterance)
    if vs_match:
        return f"{vs_match.group(1)} vs {vs_match.group(2)}"

    for_match = _FOR_PATTERN.search(utterance)
    if for_match:
        return for_match.group(1)

    cleaned = _STOPWORDS.sub(" ", utterance)
    tokens = _CAPITALISED.findall(cleaned)[:2]
    return " ".join(tokens) or None


def find_event(
    query_or_id: str | None,
    utterance: str,
    search_fn: SearchFn,
) -> EventMatch | None:
    """Resolve an event name (or fragment of the utterance) to a fixture.

    Args:
        query_or_id: The classifier's event candidate, if any.
        utterance: The raw user text, used when the candidate is too short.
        search_fn: Fixture search backend.

    Returns:
        The first matching fixture, or None when nothing matched or the
        search failed.
    """
    candidate = (query_or_id or "").strip()
    seed = candidate if len(candidate) >= MIN_CANDIDATE_LENGTH else derive_seed(utterance)
    if not seed:
        return None

    try:
        results = list(search_fn(seed))
        if not results:
            first_word = seed.split()[0]
            if len(first_word) >= MIN_CANDIDATE_LENGTH and first_word != seed:
                logger.info("No events for %r, retrying with %r", seed, first_word)
                results = list(search_fn(first_word))
    except Exception as e:
        logger.warning("Event search failed for %r: %s", seed, e)
        return None

    if not results:
        logger.info("No event found for %r", seed)
        return None

    fixture = results[0]
    return EventMatch(id=fixture.key, display_name=fixture.display_name)


# ─── Fixture Search ─────────────────────────────────────────────────


def _tokens(text: str) -> list[str]:
    return [token for token in re.split(r"\s+", text.lower()) if token]


class FixtureSearch:
    """Parallel multi-query fixture search over a lookup backend.

    Usage:
        search = FixtureSearch(FixtureCatalogue(snapshot.fixtures).search)
        fixtures = search("Arsenal vs Tottenham")
    """

    def __init__(
        self,
        lookup: Callable[[str], Iterable[Fixture]],
        max_queries: int = MAX_PARALLEL_QUERIES,
    ):
        self.lookup = lookup
        self.max_queries = max_queries

    def __call__(self, query: str) -> list[Fixture]:
        trimmed = " ".join((query or "").split())
        if len(trimmed) < 2:
            return []

        segments = [formal_team_name(s) for s in _SPLIT_PATTERN.split(trimmed, maxsplit=1)]
        home_tokens = _tokens(segments[0])
        away_tokens = _tokens(segments[1]) if len(segments) > 1 else []
        normalized = " ".join(segments)

        candidates = self._candidate_queries(normalized, segments, home_tokens + away_tokens)

        with ThreadPoolExecutor(max_workers=len(candidates)) as pool:
            responses = list(pool.map(self._safe_lookup, candidates))

        merged: dict[str, Fixture] = {}
        for fixtures in responses:
            for fixture in fixtures:
                merged.setdefault(fixture.key, fixture)

        return [
            fixture
            for fixture in merged.values()
            if self._matches(fixture, home_tokens, away_tokens)
        ]

    def _candidate_queries(
        self, normalized: str, segments: list[str], tokens: list[str]
    ) -> list[str]:
        ordered = dict.fromkeys(
            q.lower() for q in [normalized, *segments, *tokens] if q and len(q) >= 2
        )
        return list(ordered)[: self.max_queries]

    def _safe_lookup(self, query: str) -> list[Fixture]:
        try:
            return list(self.lookup(query))
        except Exception as e:
            logger.warning("Fixture lookup failed for %r: %s", query, e)
            return []

    @staticmethod
    def _matches(fixture: Fixture, home_tokens: list[str], away_tokens: list[str]) -> bool:
        home = fixture.home_team.lower()
        away = fixture.away_team.lower()
        if away_tokens:
            return all(t in home for t in home_tokens) and all(t in away for t in away_tokens)
        haystack = f"{home} {away}"
        return all(t in haystack for t in home_tokens)


class FixtureCatalogue:
    """In-memory fixture lookup over a directory snapshot."""

    def __init__(self, fixtures: Iterable[Fixture]):
        self.fixtures = list(fixtures)

    def search(self, query: str) -> list[Fixture]:
        """Fixtures sharing at least one token with ``query``, best first."""
        tokens = _tokens(query)
        scored: list[tuple[int, int, Fixture]] = []
        for position, fixture in enumerate(self.fixtures):
            haystack = f"{fixture.home_team} {fixture.away_team}".lower()
            hits = sum(1 for token in tokens if token in haystack)
            if hits:
                scored.append((-hits, position, fixture))
        return [fixture for _, _, fixture in sorted(scored, key=lambda s: s[:2])]
