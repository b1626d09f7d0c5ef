"""Unit tests for iac_runner.run_context."""

from __future__ import annotations

from pathlib import Path

import pytest

from iac_runner.exceptions import PreflightError
from iac_runner.run_context import RunContext


def test_releases_in_reverse_order() -> None:
    released: list[str] = []
    with RunContext() as ctx:
        ctx.acquire("first", lambda: released.append("first"))
        ctx.acquire("second", lambda: released.append("second"))
        assert ctx.held == ("first", "second")
    assert released == ["second", "first"]
    assert ctx.held == ()


def test_releases_when_block_raises() -> None:
    released: list[str] = []
    with pytest.raises(RuntimeError, match="boom"):
        with RunContext() as ctx:
            ctx.acquire("plan", lambda: released.append("plan"))
            raise RuntimeError("boom")
    assert released == ["plan"]


def test_releases_on_keyboard_interrupt() -> None:
    released: list[str] = []
    with pytest.raises(KeyboardInterrupt):
        with RunContext() as ctx:
            ctx.acquire("plan", lambda: released.append("plan"))
            raise KeyboardInterrupt
    assert released == ["plan"]


def test_release_failure_is_recorded_and_others_still_run() -> None:
    released: list[str] = []

    def _fail() -> None:
        raise OSError("permission denied")

    with RunContext() as ctx:
        ctx.acquire("kept", lambda: released.append("kept"))
        ctx.acquire("broken", _fail)
    assert released == ["kept"]
    assert len(ctx.cleanup_errors) == 1
    assert "broken" in str(ctx.cleanup_errors[0])


def test_scratch_file_is_removed(tmp_path: Path) -> None:
    plan = tmp_path / "tfplan.destroy"
    with RunContext() as ctx:
        ctx.scratch_file(plan)
        plan.write_text("plan", encoding="utf-8")
    assert not plan.exists()


def test_borrow_file_copies_and_returns_template(tmp_path: Path) -> None:
    template = tmp_path / "terraform" / "providers.tf"
    template.parent.mkdir()
    template.write_text("terraform {}\n", encoding="utf-8")
    target = tmp_path / "app" / "providers.tf"
    target.parent.mkdir()

    with RunContext() as ctx:
        assert ctx.borrow_file(target, template) is True
        assert target.read_text(encoding="utf-8") == "terraform {}\n"
    assert not target.exists()
    assert template.exists()


def test_borrow_file_leaves_existing_target_alone(tmp_path: Path) -> None:
    target = tmp_path / "providers.tf"
    target.write_text("own\n", encoding="utf-8")
    with RunContext() as ctx:
        assert ctx.borrow_file(target, tmp_path / "missing.tf") is False
    assert target.read_text(encoding="utf-8") == "own\n"


def test_borrow_file_without_template_is_fatal(tmp_path: Path) -> None:
    with RunContext() as ctx:
        with pytest.raises(PreflightError, match="Cannot connect to remote state"):
            ctx.borrow_file(tmp_path / "providers.tf", tmp_path / "missing.tf")
