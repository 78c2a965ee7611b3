#!/usr/bin/env python3
"""
Intent Resolver: Entry Point
============================

Chat with the dialogue engine from the terminal, or replay a scripted demo.

Usage:
    python main.py                          # Scripted demo, rule-based classifier
    python main.py --interactive            # Type your own messages
    OPENAI_API_KEY=sk-... python main.py    # LLM classifier instead of rules
"""

from __future__ import annotations

import argparse
import logging
import os
import sys

from dotenv import load_dotenv

from intent_resolver.directory import build_engine, load_directory
from intent_resolver.engine import DialogueEngine
from intent_resolver.models import ChatMessage, DirectorySnapshot, TurnResult

# ─── Demo Script ────────────────────────────────────────────────────

DEMO_CONVERSATIONS: tuple[tuple[str, ...], ...] = (
    ("Bought 2 tickets from Benny for Arsenal vs Spurs at £100 each",),
    ("Record a manual transaction for £500", "received", "Barclays"),
    ("Sold 3 tickets to Zed for Chelsea vs Arsenal at $90 each",),
    ("How much does John Smith owe?",),
)


# ─── ANSI Color Constants ───────────────────────────────────────────

_RED = "\033[91m"
_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"
_BOLD = "\033[1m"
_RESET = "\033[0m"
_WIDTH = 72


# ─── Pretty Printer ─────────────────────────────────────────────────


def print_turn(utterance: str, result: TurnResult) -> None:
    """Print one exchange with the reply and anything the UI would offer."""
    print(f"  {_BOLD}you>{_RESET} {utterance}")
    colour = _GREEN if result.requires_confirmation else _CYAN
    for line in result.message.splitlines():
        print(f"  {colour}bot>{_RESET} {line}")

    for warning in result.warnings:
        print(f"  {_YELLOW}warning:{_RESET} {warning}")
    for affordance in result.affordances:
        print(f"  {_DIM}[{affordance.action}] {affordance.label}{_RESET}")
    for suggestion in result.suggestions:
        print(f"  {_DIM}try: {suggestion}{_RESET}")

    state = result.state
    if state.kind == "failed":
        print(f"  {_RED}{_BOLD}gave up: {state.reason}{_RESET}")
    else:
        print(f"  {_DIM}state: {state.kind} ({result.intent.value}){_RESET}")
    print()


# ─── Conversation Loops ─────────────────────────────────────────────


def run_conversation(
    engine: DialogueEngine, directory: DirectorySnapshot, utterances: tuple[str, ...]
) -> TurnResult | None:
    history: list[ChatMessage] = []
    state = None
    result = None
    for utterance in utterances:
        result = engine.handle(utterance, state, directory, history)
        print_turn(utterance, result)
        history += [
            ChatMessage(role="user", content=utterance),
            ChatMessage(role="assistant", content=result.message),
        ]
        state = result.conversation_state
    return result


def run_demo(engine: DialogueEngine, directory: DirectorySnapshot) -> int:
    completed = 0
    for number, utterances in enumerate(DEMO_CONVERSATIONS, start=1):
        print(f"{'─' * _WIDTH}")
        print(f"{_BOLD}{_CYAN}  Conversation {number}{_RESET}")
        print(f"{'─' * _WIDTH}")
        result = run_conversation(engine, directory, utterances)
        if result is not None and result.state.kind == "complete":
            completed += 1

    print(f"{'=' * _WIDTH}")
    print(f"  {_BOLD}{completed}/{len(DEMO_CONVERSATIONS)} conversations completed{_RESET}")
    print(f"{'=' * _WIDTH}\n")
    return 0


def run_interactive(engine: DialogueEngine, directory: DirectorySnapshot) -> int:
    print(f"  {_DIM}Type a message, or 'quit' to exit.{_RESET}\n")
    history: list[ChatMessage] = []
    state = None
    while True:
        try:
            utterance = input(f"  {_BOLD}you>{_RESET} ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            return 0
        if utterance.lower() in {"quit", "exit"}:
            return 0
        if not utterance:
            continue

        result = engine.handle(utterance, state, directory, history)
        # the prompt already echoed the utterance
        print("\033[F", end="")
        print_turn(utterance, result)
        history = (
            history
            + [
                ChatMessage(role="user", content=utterance),
                ChatMessage(role="assistant", content=result.message),
            ]
        )[-10:]
        state = result.conversation_state


# ─── Main ────────────────────────────────────────────────────────────


def main() -> None:
    """Load the directory, build the engine and start talking."""
    load_dotenv()

    parser = argparse.ArgumentParser(description="Chat with the intent resolver.")
    parser.add_argument("--interactive", "-i", action="store_true", help="type your own messages")
    parser.add_argument("--directory", help="path to a directory snapshot JSON file")
    args = parser.parse_args()

    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "WARNING").upper(),
        format=f"  {_DIM}%(levelname)s %(name)s: %(message)s{_RESET}",
    )

    directory = load_directory(args.directory)
    engine = build_engine(directory)

    print(f"\n{'=' * _WIDTH}")
    print(f"{_BOLD}{_CYAN}  INTENT RESOLVER{_RESET}  {_DIM}classifier: {engine.classifier.name}{_RESET}")
    print(f"{'=' * _WIDTH}\n")

    runner = run_interactive if args.interactive else run_demo
    sys.exit(runner(engine, directory))


if __name__ == "__main__":
    main()
