"""
Custom exception hierarchy for the intent resolver.

Each exception type maps to a category of failure that the dialogue engine
knows how to turn into a user-facing reply. None of them are allowed to
escape ``DialogueEngine.handle``; they exist so the engine (and the HTTP
surface) can tell the failure categories apart.
"""

from __future__ import annotations


class IntentResolverError(Exception):
    """Base exception for all intent resolver failures."""

    def __init__(self, code: str, message: str, details: dict | None = None):
        self.code = code
        self.details = details or {}
        super().__init__(message)


class ClassifierError(IntentResolverError):
    """The external classifier failed (network, quota, or unparseable output)."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("CLASSIFIER_FAILED", message, details)


class CurrencyConversionError(IntentResolverError):
    """A detected currency has no exchange rate against the base currency."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("CURRENCY_CONVERSION_FAILED", message, details)


class IncompletePayloadError(IntentResolverError):
    """A payload was submitted to the ledger before every required field was resolved."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("INCOMPLETE_PAYLOAD", message, details)
