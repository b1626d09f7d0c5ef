"""
iac_runner.workflow — Renders the generated files from typed parameters.

  - The GitHub Actions workflow that runs Terraform on push to the default branch.
  - The providers.tf wiring that points the watched directory at the S3 backend.

Rendering is pure (params in, text out); writing is a separate atomic step.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from string import Template

from iac_runner.exceptions import PreflightError
from iac_runner.inventory import atomic_write_text
from iac_runner.models import InventoryRecord

# `$$` renders a literal `$` for GitHub expressions.
_WORKFLOW_TEMPLATE = Template(
    """\
# Generated by iac-runner install — do not edit manually
name: Terraform Apply

on:
  push:
    branches:
      - ${default_branch}
    paths:
      - '${watch_dir}/**/*.tf'
      - '${watch_dir}/**/*.tfvars'

permissions:
  id-token: write   # Required for GitHub OIDC token
  contents: read

jobs:
  terraform:
    name: Terraform Apply
    runs-on: ubuntu-latest
    environment: production

    env:
      AWS_REGION: ${region}
      TF_BUCKET: ${state_bucket}
      TF_LOCK_TABLE: ${lock_table}

    steps:
      - name: Checkout
        uses: actions/checkout@v4

      - name: Configure AWS credentials via OIDC
        uses: aws-actions/configure-aws-credentials@v4
        with:
          role-to-assume: ${role_arn}
          aws-region: $${{ env.AWS_REGION }}

      - name: Setup Terraform
        uses: hashicorp/setup-terraform@v3
        with:
          terraform_version: "~> 1.7"

      - name: Terraform Init
        working-directory: ${watch_dir}
        run: |
          terraform init \\
            -backend-config="bucket=$${{ env.TF_BUCKET }}" \\
            -backend-config="key=${state_key}" \\
            -backend-config="region=$${{ env.AWS_REGION }}" \\
            -backend-config="dynamodb_table=$${{ env.TF_LOCK_TABLE }}" \\
            -backend-config="encrypt=true"

      - name: Terraform Validate
        working-directory: ${watch_dir}
        run: terraform validate

      - name: Terraform Plan
        working-directory: ${watch_dir}
        run: terraform plan -out=tfplan

      - name: Terraform Apply
        working-directory: ${watch_dir}
        run: terraform apply -auto-approve tfplan
"""
)

_PROVIDERS_TEMPLATE = Template(
    """\
terraform {
  required_version = ">= 1.7.0"

  required_providers {
    aws = {
      source  = "hashicorp/aws"
      version = "~> 5.0"
    }
  }

  backend "s3" {}
}

provider "aws" {
  region = var.aws_region
}

variable "aws_region" {
  description = "AWS region for resources"
  type        = string
  default     = "${region}"
}
"""
)


@dataclass(frozen=True)
class WorkflowParams:
    region: str
    state_bucket: str
    lock_table: str
    role_arn: str
    default_branch: str
    watch_dir: str
    state_key: str

    @classmethod
    def from_record(cls, record: InventoryRecord, *, state_key: str) -> WorkflowParams:
        return cls(
            region=record.aws_region,
            state_bucket=record.s3_bucket,
            lock_table=record.dynamodb_table,
            role_arn=record.iam_role_arn,
            default_branch=record.default_branch,
            watch_dir=record.tf_watch_dir,
            state_key=state_key,
        )


def render_workflow(params: WorkflowParams) -> str:
    missing = [name for name, value in asdict(params).items() if not value]
    if missing:
        raise PreflightError(f"Workflow parameters missing: {', '.join(missing)}")
    return _WORKFLOW_TEMPLATE.substitute(asdict(params))


def render_providers(region: str) -> str:
    return _PROVIDERS_TEMPLATE.substitute(region=region)


def write_workflow(path: Path, params: WorkflowParams) -> None:
    atomic_write_text(path, render_workflow(params))


def ensure_providers(path: Path, region: str) -> bool:
    """Write providers.tf when missing. Returns True when a file was created.

    Without it Terraform silently falls back to local state even when
    -backend-config flags are passed.
    """
    if path.exists():
        return False
    atomic_write_text(path, render_providers(region))
    return True
