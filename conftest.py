"""Pytest configuration: makes the project root importable."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))


@pytest.fixture(autouse=True)
def _no_llm_calls(monkeypatch):
    """Force the rule-based classifier so no test ever calls the OpenAI API."""
    for name in ("OPENAI_API_KEY", "LEDGER_DIRECTORY_PATH", "LEDGER_BASE_CURRENCY"):
        monkeypatch.delenv(name, raising=False)
    yield
