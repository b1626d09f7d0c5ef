"""
iac_runner.terraform — Thin wrapper over the terraform CLI.

Every call is blocking and runs in a single working directory. Output is
captured and logged line by line; failures raise ConvergenceError carrying
the tail of the tool's own diagnostics.
"""

from __future__ import annotations

import json
import logging
import subprocess
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from iac_runner.exceptions import AdoptConflict, ConvergenceError

logger = logging.getLogger(__name__)

_OUTPUT_TAIL_CHARS = 8000


def _var_args(variables: Mapping[str, str] | None) -> list[str]:
    args: list[str] = []
    for key, value in (variables or {}).items():
        args.extend(["-var", f"{key}={value}"])
    return args


def _tail(result: subprocess.CompletedProcess[str]) -> str:
    combined = "\n".join(part.strip() for part in (result.stdout, result.stderr) if part.strip())
    return combined[-_OUTPUT_TAIL_CHARS:]


class TerraformRunner:
    """Runs terraform subcommands inside one working directory."""

    def __init__(self, working_dir: Path, *, binary: str = "terraform") -> None:
        self.working_dir = working_dir
        self.binary = binary

    def _run(
        self,
        args: list[str],
        *,
        check: bool = True,
        echo: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        command = [self.binary, *args]
        cmd_display = " ".join(command)
        logger.info("Running: %s (in %s)", cmd_display, self.working_dir)
        result = subprocess.run(
            command,
            cwd=str(self.working_dir),
            check=False,
            capture_output=True,
            text=True,
        )
        if echo:
            for line in (result.stdout + result.stderr).splitlines():
                logger.info("    %s", line)

        if check and result.returncode != 0:
            raise ConvergenceError(
                f"Command failed ({result.returncode}): {cmd_display}",
                command=cmd_display,
                return_code=result.returncode,
                output=_tail(result),
            )
        return result

    def init(
        self,
        *,
        backend_config: Mapping[str, str] | None = None,
        reconfigure: bool = True,
    ) -> None:
        """Initialise providers. Without backend_config the local backend is used."""
        args = ["init", "-upgrade", "-input=false", "-no-color"]
        if reconfigure:
            args.append("-reconfigure")
        if backend_config is None:
            args.append("-backend=false")
        else:
            args.extend(f"-backend-config={key}={value}" for key, value in backend_config.items())
        self._run(args)

    def state_addresses(self) -> set[str]:
        """Addresses currently tracked in state; empty when there is no state yet."""
        result = self._run(["state", "list", "-no-color"], check=False, echo=False)
        if result.returncode != 0:
            logger.debug("No Terraform state in %s: %s", self.working_dir, _tail(result))
            return set()
        return {line.strip() for line in result.stdout.splitlines() if line.strip()}

    def import_resource(
        self,
        address: str,
        resource_id: str,
        variables: Mapping[str, str] | None = None,
    ) -> None:
        args = ["import", "-input=false", "-no-color", *_var_args(variables)]
        try:
            self._run([*args, address, resource_id])
        except ConvergenceError as exc:
            raise AdoptConflict(
                address=address, resource_id=resource_id, output=exc.output
            ) from exc

    def apply(self, variables: Mapping[str, str] | None = None) -> None:
        self._run(["apply", "-auto-approve", "-input=false", "-no-color", *_var_args(variables)])

    def apply_plan(self, plan_file: str) -> None:
        self._run(["apply", "-auto-approve", "-input=false", "-no-color", plan_file])

    def plan_destroy(self, plan_file: str, variables: Mapping[str, str] | None = None) -> None:
        self._run(
            [
                "plan",
                "-destroy",
                "-input=false",
                "-no-color",
                f"-out={plan_file}",
                *_var_args(variables),
            ]
        )

    def show_plan(self, plan_file: str) -> dict[str, Any]:
        result = self._run(["show", "-json", "-no-color", plan_file], echo=False)
        try:
            parsed = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise ConvergenceError(
                f"terraform show returned invalid JSON for {plan_file}",
                command=f"{self.binary} show -json {plan_file}",
                output=result.stdout[-_OUTPUT_TAIL_CHARS:],
            ) from exc
        return parsed if isinstance(parsed, dict) else {}

    def destroy(self, variables: Mapping[str, str] | None = None) -> None:
        self._run(["destroy", "-auto-approve", "-input=false", "-no-color", *_var_args(variables)])

    def output_raw(self, name: str) -> str:
        result = self._run(["output", "-raw", "-no-color", name], echo=False)
        return result.stdout.strip()


def planned_deletions(plan: Mapping[str, Any]) -> list[str]:
    """Addresses a `terraform show -json` plan would delete, in plan order."""
    addresses: list[str] = []
    for change in plan.get("resource_changes", []) or []:
        actions = (change.get("change") or {}).get("actions", [])
        if "delete" in actions:
            addresses.append(str(change.get("address", "")))
    return addresses
