"""Unit tests for the operator decision functions in iac_runner.prompts."""

from __future__ import annotations

import pytest

from iac_runner.prompts import (
    DESTROY_PHRASE,
    PROVISION_PHRASE,
    LockAction,
    LockPolicy,
    confirmation_matches,
    decide_lock_action,
    lock_removal_confirmed,
    render_rows,
)


def test_destroy_phrase_matches_exactly() -> None:
    assert confirmation_matches("DESTROY", DESTROY_PHRASE)


@pytest.mark.parametrize("answer", ["Destroy", "destroy", "DESTROY ", " DESTROY", "", "yes"])
def test_destroy_phrase_rejects_near_misses(answer: str) -> None:
    assert not confirmation_matches(answer, DESTROY_PHRASE)


@pytest.mark.parametrize(("answer", "expected"), [("yes", True), ("YES", False), ("y", False)])
def test_provision_phrase(answer: str, expected: bool) -> None:
    assert confirmation_matches(answer, PROVISION_PHRASE) is expected


@pytest.mark.parametrize(
    ("answer", "expected"), [("y", True), ("Y ", True), ("", False), ("yes", False)]
)
def test_lock_removal_confirmed(answer: str, expected: bool) -> None:
    assert lock_removal_confirmed(answer) is expected


def test_no_lock_always_proceeds() -> None:
    for policy in LockPolicy:
        assert decide_lock_action(lock_held=False, policy=policy) is LockAction.PROCEED


def test_strict_policy_refuses_even_when_removal_confirmed() -> None:
    action = decide_lock_action(lock_held=True, policy=LockPolicy.STRICT, removal_confirmed=True)
    assert action is LockAction.REFUSE


def test_interactive_policy_clears_or_aborts() -> None:
    assert (
        decide_lock_action(lock_held=True, policy=LockPolicy.INTERACTIVE, removal_confirmed=True)
        is LockAction.CLEAR
    )
    assert (
        decide_lock_action(lock_held=True, policy=LockPolicy.INTERACTIVE) is LockAction.ABORT
    )


def test_render_rows_aligns_labels() -> None:
    assert render_rows([("Bucket:", "b")]) == [f"  {'Bucket:':<22} b"]
    assert render_rows([("Bucket:", "b")], marker="✓") == [f"  ✓  {'Bucket:':<22} b"]
