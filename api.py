"""
Intent Resolver: FastAPI Server
===============================

Chat endpoint for turning trader messages into ledger transactions.

Endpoints:
    POST /chat              Process one user message
    POST /confirm           Check a confirmed payload and build the ledger request
    GET  /health            Health check / readiness probe

Conversation state lives with the client: every /chat response carries a
``state`` that must be sent back with the next message.

Run:
    uvicorn api:app --reload              # Dev (http://localhost:8000)
    uvicorn api:app --host 0.0.0.0        # Production
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from intent_resolver import __version__
from intent_resolver.directory import build_engine, load_directory
from intent_resolver.engine import DialogueEngine
from intent_resolver.exceptions import IncompletePayloadError
from intent_resolver.models import (
    ChatMessage,
    ConversationState,
    DirectorySnapshot,
    IntentKind,
    PreparedSubmission,
    SubmissionFinding,
    TransactionPayload,
    TurnResult,
)
from intent_resolver.submission import prepare_submission

load_dotenv()

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ─── Application Lifespan (load directory, build engine) ────────────

_engine: DialogueEngine | None = None
_directory: DirectorySnapshot | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load the directory snapshot and wire the engine on startup."""
    global _engine, _directory  # noqa: PLW0603
    _directory = load_directory()
    _engine = build_engine(_directory)
    logger.info("Engine ready with %s classifier", getattr(_engine.classifier, "name", "custom"))
    yield
    _engine = None
    _directory = None


# ─── FastAPI App ─────────────────────────────────────────────────────

app = FastAPI(
    title="Intent Resolver API",
    description=(
        "Turns chat messages from ticket traders into confirmed purchases, "
        "sales and payments. Asks follow-up questions for missing details and "
        "resolves counterparties, banks and fixtures against the directory."
    ),
    version=__version__,
    lifespan=lifespan,
)


# ─── Request / Response Schemas ─────────────────────────────────────


class ChatRequest(BaseModel):
    """Request body for the /chat endpoint."""

    utterance: str = Field(
        ...,
        min_length=1,
        description="What the user typed.",
        json_schema_extra={"example": "Bought 2 tickets from Benny for Arsenal vs Spurs at £100 each"},
    )
    state: Optional[ConversationState] = Field(
        default=None,
        description="The `state` from the previous /chat response; omit to start over.",
    )
    history: list[ChatMessage] = Field(
        default_factory=list,
        description="Recent messages, oldest first.",
    )


class ConfirmRequest(BaseModel):
    intent: IntentKind
    payload: TransactionPayload


class ConfirmRejected(BaseModel):
    """Returned with 422 when a confirmed payload still has problems."""

    message: str
    findings: list[SubmissionFinding]


class HealthResponse(BaseModel):
    status: str
    version: str
    classifier: str
    vendors_loaded: int
    banks_loaded: int
    fixtures_loaded: int


# ─── Helpers ─────────────────────────────────────────────────────────


def _get_engine() -> tuple[DialogueEngine, DirectorySnapshot]:
    if _engine is None or _directory is None:
        raise HTTPException(status_code=503, detail="Engine not initialised")
    return _engine, _directory


# ─── Endpoints ───────────────────────────────────────────────────────


@app.post(
    "/chat",
    summary="Process one chat message",
    tags=["Conversation"],
    responses={503: {"description": "Engine not yet initialised"}},
)
def chat(request: ChatRequest) -> TurnResult:
    """Run one dialogue turn.

    Returns:
    - **message**: the reply to show the user
    - **state**: hand this back with the next message
    - **requires_confirmation**: `true` once the payload is complete
    - **affordances**: actions the UI can offer (confirm, create counterparty, ...)
    """
    engine, directory = _get_engine()
    return engine.handle(request.utterance, request.state, directory, request.history)


@app.post(
    "/confirm",
    summary="Build the ledger request for a confirmed payload",
    tags=["Conversation"],
    responses={
        422: {"model": ConfirmRejected, "description": "Payload is not ready to submit"},
        503: {"description": "Engine not yet initialised"},
    },
)
def confirm(request: ConfirmRequest) -> PreparedSubmission:
    """Re-check a (possibly edited) payload and return the ledger request for it."""
    _get_engine()
    try:
        return prepare_submission(request.intent, request.payload)
    except IncompletePayloadError as e:
        raise HTTPException(
            status_code=422,
            detail=ConfirmRejected(
                message=str(e),
                findings=[SubmissionFinding(**f) for f in e.details.get("findings", [])],
            ).model_dump(),
        ) from e


@app.get(
    "/health",
    summary="Health check",
    tags=["System"],
    responses={503: {"description": "Engine not yet initialised"}},
)
def health_check() -> HealthResponse:
    """Returns service status and configuration info."""
    engine, directory = _get_engine()
    return HealthResponse(
        status="healthy",
        version=__version__,
        classifier=getattr(engine.classifier, "name", "custom"),
        vendors_loaded=len(directory.vendors),
        banks_loaded=len(directory.banks),
        fixtures_loaded=len(directory.fixtures),
    )
