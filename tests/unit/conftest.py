"""Shared fixtures: fake AWS credentials, a scripted operator and a fake terraform."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import pytest

from iac_runner.config import Settings, load_settings
from iac_runner.exceptions import AdoptConflict, ConvergenceError

REGION = "us-east-1"


@pytest.fixture(autouse=True)
def aws_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Fake credentials; no endpoint override, so moto's mock_aws intercepts every call."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")  # pragma: allowlist secret
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", REGION)
    for name in (
        "IAC_RUNNER_ROOT",
        "IAC_RUNNER_INVENTORY",
        "IAC_RUNNER_BACKEND_DIR",
        "IAC_RUNNER_IAM_DIR",
        "IAC_RUNNER_WORKFLOW_FILE",
        "IAC_RUNNER_PROVIDERS_TEMPLATE",
        "IAC_RUNNER_STATE_KEY",
        "IAC_RUNNER_TERRAFORM_BIN",
        "IAC_RUNNER_DEFAULT_REGION",
        "IAC_RUNNER_AWS_ENDPOINT",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return load_settings(tmp_path)


class ScriptedPrompter:
    """Answers prompts from a fixed script and records everything shown."""

    def __init__(self, answers: list[str] | None = None) -> None:
        self.answers = list(answers or [])
        self.asked: list[str] = []
        self.shown: list[str] = []

    def ask(self, prompt: str) -> str:
        self.asked.append(prompt)
        if not self.answers:
            raise AssertionError(f"Unexpected prompt: {prompt!r}")
        return self.answers.pop(0)

    def show(self, text: str = "") -> None:
        self.shown.append(text)

    @property
    def output(self) -> str:
        return "\n".join(self.shown)


class FakeTerraform:
    """Stands in for TerraformRunner; records calls per working directory."""

    def __init__(
        self,
        working_dir: Path,
        *,
        calls: list[tuple[str, str]],
        tracked: set[str] | None = None,
        outputs: Mapping[str, str] | None = None,
        plan: dict[str, Any] | None = None,
        fail_on: set[str] | None = None,
        import_fails: bool = False,
    ) -> None:
        self.working_dir = working_dir
        self.calls = calls
        self.tracked = tracked or set()
        self.outputs = dict(outputs or {})
        self.plan = plan or {}
        self.fail_on = fail_on or set()
        self.import_fails = import_fails

    def _record(self, command: str) -> None:
        self.calls.append((self.working_dir.name, command))
        if command in self.fail_on:
            raise ConvergenceError(
                f"Command failed (1): terraform {command}",
                command=f"terraform {command}",
                return_code=1,
                output=f"Error: {command} failed",
            )

    def init(
        self, *, backend_config: Mapping[str, str] | None = None, reconfigure: bool = True
    ) -> None:
        self._record("init")
        self.backend_config = dict(backend_config) if backend_config else None

    def state_addresses(self) -> set[str]:
        return set(self.tracked)

    def import_resource(
        self, address: str, resource_id: str, variables: Mapping[str, str] | None = None
    ) -> None:
        self.calls.append((self.working_dir.name, f"import {address} {resource_id}"))
        if self.import_fails:
            raise AdoptConflict(address=address, resource_id=resource_id, output="conflict")

    def apply(self, variables: Mapping[str, str] | None = None) -> None:
        self._record("apply")

    def apply_plan(self, plan_file: str) -> None:
        self._record("apply_plan")

    def plan_destroy(self, plan_file: str, variables: Mapping[str, str] | None = None) -> None:
        self._record("plan_destroy")
        (self.working_dir / plan_file).write_text("binary plan", encoding="utf-8")

    def show_plan(self, plan_file: str) -> dict[str, Any]:
        self._record("show_plan")
        return self.plan

    def destroy(self, variables: Mapping[str, str] | None = None) -> None:
        self._record("destroy")

    def output_raw(self, name: str) -> str:
        return self.outputs.get(name, "")


@pytest.fixture
def prompter_factory() -> type[ScriptedPrompter]:
    return ScriptedPrompter


@pytest.fixture
def terraform_factory() -> type[FakeTerraform]:
    return FakeTerraform
