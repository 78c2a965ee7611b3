"""
Directory snapshot loading and engine wiring.

A snapshot is the per-tenant reference data the engine resolves against:
ledger vendors, bank accounts, directory counterparties, fixtures and FX
rates. In production it comes from the ledger service; locally it is read
from ``directory.json`` at the project root.
"""

from __future__ import annotations

import json
import logging
import os
import random
from pathlib import Path

from .classifier_llm import build_classifier
from .currency import RateTableConverter
from .engine import Classifier, DialogueEngine
from .event_matcher import FixtureCatalogue, FixtureSearch
from .models import DirectorySnapshot

logger = logging.getLogger(__name__)

DIRECTORY_ENV_VAR = "LEDGER_DIRECTORY_PATH"
BASE_CURRENCY_ENV_VAR = "LEDGER_BASE_CURRENCY"


def load_directory(path: str | Path | None = None) -> DirectorySnapshot:
    """Load a directory snapshot from a JSON file.

    Args:
        path: Path to the snapshot. Defaults to ``$LEDGER_DIRECTORY_PATH``,
            then ``directory.json`` at the project root.

    ``$LEDGER_BASE_CURRENCY``, when set, overrides the snapshot's base currency.
    """
    if path is None:
        path = os.environ.get(DIRECTORY_ENV_VAR) or Path(__file__).parent.parent / "directory.json"
    resolved = Path(path)

    with resolved.open(encoding="utf-8") as f:
        snapshot = DirectorySnapshot.model_validate(json.load(f))

    override = os.environ.get(BASE_CURRENCY_ENV_VAR)
    if override:
        snapshot = snapshot.model_copy(update={"base_currency": override.strip().upper()})

    logger.info(
        "Loaded directory %s: %d vendors, %d banks, %d counterparties, %d fixtures",
        resolved.name,
        len(snapshot.vendors),
        len(snapshot.banks),
        len(snapshot.counterparties),
        len(snapshot.fixtures),
    )
    return snapshot


def build_engine(
    snapshot: DirectorySnapshot,
    classifier: Classifier | None = None,
    rng: random.Random | None = None,
) -> DialogueEngine:
    """Wire a DialogueEngine to the fixtures and FX rates in ``snapshot``."""
    converter = (
        RateTableConverter(snapshot.fx_rates, snapshot.base_currency)
        if snapshot.fx_rates
        else None
    )
    return DialogueEngine(
        classifier=classifier or build_classifier(),
        event_search=FixtureSearch(FixtureCatalogue(snapshot.fixtures).search),
        converter=converter,
        base_currency=snapshot.base_currency,
        rng=rng,
    )
