"""
iac_runner.prompts — Operator I/O and the decisions taken from it.

The decision functions are pure: they take what the operator typed (or
whether a lock is held) and return an outcome, so they are testable without
a terminal. The Prompter classes only gather input and print.
"""

from __future__ import annotations

import sys
from collections.abc import Iterable, Sequence
from enum import StrEnum
from typing import Protocol

from iac_runner.exceptions import PreflightError

DESTROY_PHRASE = "DESTROY"
PROVISION_PHRASE = "yes"
DIVIDER = "─" * 50


class LockPolicy(StrEnum):
    INTERACTIVE = "interactive"
    STRICT = "strict"


class LockAction(StrEnum):
    PROCEED = "proceed"
    CLEAR = "clear"
    ABORT = "abort"
    REFUSE = "refuse"


def confirmation_matches(answer: str, phrase: str) -> bool:
    """Exact, case-sensitive match. Surrounding whitespace is not forgiven."""
    return answer == phrase


def lock_removal_confirmed(answer: str) -> bool:
    return answer.strip().lower() == "y"


def decide_lock_action(
    *,
    lock_held: bool,
    policy: LockPolicy,
    removal_confirmed: bool = False,
) -> LockAction:
    """Choose what to do about the Terraform state lock before mutating anything."""
    if not lock_held:
        return LockAction.PROCEED
    if policy is LockPolicy.STRICT:
        return LockAction.REFUSE
    return LockAction.CLEAR if removal_confirmed else LockAction.ABORT


class Prompter(Protocol):
    def ask(self, prompt: str) -> str: ...

    def show(self, text: str = "") -> None: ...


class ConsolePrompter:
    """Reads answers from an interactive terminal."""

    def ask(self, prompt: str) -> str:
        if not sys.stdin.isatty():
            raise PreflightError("This command is interactive; run it from a terminal")
        try:
            # input() strips only the newline; other whitespace is kept on purpose.
            return input(prompt)
        except EOFError:
            return ""

    def show(self, text: str = "") -> None:
        print(text, flush=True)


def render_rows(rows: Iterable[tuple[str, str]], *, marker: str = "") -> list[str]:
    prefix = f"  {marker}  " if marker else "  "
    return [f"{prefix}{label:<22} {value}" for label, value in rows]


def show_block(prompter: Prompter, title: str, lines: Sequence[str]) -> None:
    prompter.show()
    prompter.show(DIVIDER)
    prompter.show(f"  {title}")
    prompter.show(DIVIDER)
    for line in lines:
        prompter.show(line)
    prompter.show()
