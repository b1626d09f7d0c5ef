"""
iac_runner.config — Settings read from the environment.

Every value has a default matching the repository layout the platform
expects; environment variables override them for tests and unusual checkouts.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_REGION = "us-east-1"
DEFAULT_INVENTORY_FILE = "inventory.json"
DEFAULT_BACKEND_DIR = "terraform/backend"
DEFAULT_IAM_DIR = "terraform/iam"
DEFAULT_WORKFLOW_FILE = ".github/workflows/terraform-apply.yaml"
DEFAULT_PROVIDERS_TEMPLATE = "terraform/providers.tf"
DEFAULT_STATE_KEY = "platform/terraform.tfstate"
DEFAULT_TERRAFORM_BIN = "terraform"

PROVIDERS_FILENAME = "providers.tf"
DESTROY_PLAN_FILENAME = "tfplan.destroy"


@dataclass(frozen=True)
class Settings:
    root: Path
    inventory_file: Path
    backend_dir: Path
    iam_dir: Path
    workflow_file: Path
    providers_template: Path
    state_key: str
    terraform_bin: str
    default_region: str
    aws_endpoint: str | None = None

    def relative(self, path: Path) -> str:
        """Render a path relative to the repository root for operator output."""
        try:
            return str(path.relative_to(self.root))
        except ValueError:
            return str(path)


def _env(name: str, default: str) -> str:
    value = os.environ.get(name, "").strip()
    return value or default


def load_settings(root: Path | None = None) -> Settings:
    """Build Settings from IAC_RUNNER_* environment variables."""
    base = (root or Path(_env("IAC_RUNNER_ROOT", os.getcwd()))).resolve()
    return Settings(
        root=base,
        inventory_file=base / _env("IAC_RUNNER_INVENTORY", DEFAULT_INVENTORY_FILE),
        backend_dir=base / _env("IAC_RUNNER_BACKEND_DIR", DEFAULT_BACKEND_DIR),
        iam_dir=base / _env("IAC_RUNNER_IAM_DIR", DEFAULT_IAM_DIR),
        workflow_file=base / _env("IAC_RUNNER_WORKFLOW_FILE", DEFAULT_WORKFLOW_FILE),
        providers_template=base
        / _env("IAC_RUNNER_PROVIDERS_TEMPLATE", DEFAULT_PROVIDERS_TEMPLATE),
        state_key=_env("IAC_RUNNER_STATE_KEY", DEFAULT_STATE_KEY),
        terraform_bin=_env("IAC_RUNNER_TERRAFORM_BIN", DEFAULT_TERRAFORM_BIN),
        default_region=_env("IAC_RUNNER_DEFAULT_REGION", DEFAULT_REGION),
        # None lets boto3 use its default endpoints, which moto intercepts in tests.
        aws_endpoint=os.environ.get("IAC_RUNNER_AWS_ENDPOINT") or None,
    )
