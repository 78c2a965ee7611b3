"""
Spelled-out English numbers in chat utterances.

People type "two tickets" and "five hundred quid" as often as "2 tickets"
and "£500". The rule-based classifier runs ``replace_number_words`` first so
its digit patterns see both forms.

Supported patterns:
    "Two"                          → 2
    "Twenty Five"                  → 25
    "Five Hundred Pounds"          → 500  (ignores "Pounds")
    "One Thousand Two Hundred"     → 1,200
"""

from __future__ import annotations

import re
from decimal import Decimal

# ─── Word Lookup Tables ──────────────────────────────────────────────

_ONES: dict[str, int] = {
    "zero": 0,
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
    "ten": 10,
    "eleven": 11,
    "twelve": 12,
    "thirteen": 13,
    "fourteen": 14,
    "fifteen": 15,
    "sixteen": 16,
    "seventeen": 17,
    "eighteen": 18,
    "nineteen": 19,
}

_TENS: dict[str, int] = {
    "twenty": 20,
    "thirty": 30,
    "forty": 40,
    "fifty": 50,
    "sixty": 60,
    "seventy": 70,
    "eighty": 80,
    "ninety": 90,
}

_SCALES: dict[str, int] = {
    "hundred": 100,
    "thousand": 1_000,
    "million": 1_000_000,
}

# Currency words that may trail a spelled-out amount
_IGNORE: set[str] = {
    "and",
    "pounds",
    "pound",
    "quid",
    "euros",
    "euro",
    "dollars",
    "dollar",
}

_NUMBER_WORDS = set(_ONES) | set(_TENS) | set(_SCALES)

# A run of number words, allowing "and"/hyphens between them
_RUN_PATTERN = re.compile(
    r"\b(?:%(w)s)(?:(?:[\s-]+|\s+and\s+)(?:%(w)s))*\b"
    % {"w": "|".join(sorted(_NUMBER_WORDS, key=len, reverse=True))},
    re.IGNORECASE,
)


def _apply(word: str, current: int, result: int, source: str) -> tuple[int, int]:
    if word in _ONES:
        return current + _ONES[word], result
    if word in _TENS:
        return current + _TENS[word], result
    if word == "hundred":
        return (current or 1) * 100, result
    if word in _SCALES:
        return 0, result + (current or 1) * _SCALES[word]
    raise ValueError(f"Unrecognized number word: {word!r} in {source!r}")


def words_to_number(text: str) -> Decimal:
    """Convert English number words to a Decimal value.

    Raises:
        ValueError: If the text is empty or contains unrecognized words.
    """
    if not text or not text.strip():
        raise ValueError("Empty text cannot be converted to a number")

    words = text.lower().replace("-", " ").replace(",", " ").split()
    words = [w for w in words if w not in _IGNORE]
    if not words:
        raise ValueError(f"No number words found in: {text!r}")

    result = 0
    current = 0
    for word in words:
        current, result = _apply(word, current, result, text)
    return Decimal(result + current)


def replace_number_words(text: str) -> str:
    """Rewrite every run of number words in ``text`` as digits.

    >>> replace_number_words("bought two tickets for fifty pounds each")
    'bought 2 tickets for 50 pounds each'
    """

    def _to_digits(match: re.Match[str]) -> str:
        try:
            return str(words_to_number(match.group(0)))
        except ValueError:
            return match.group(0)

    return _RUN_PATTERN.sub(_to_digits, text)
