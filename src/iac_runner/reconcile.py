"""
iac_runner.reconcile — Install-time convergence of the platform resources.

For each resource group, in order:
  1. terraform init with the local backend
  2. existence check of every resource against the AWS APIs
  3. plan: tracked in state → converge, exists but untracked → import,
     missing → create
  4. import the untracked ones (failures are warnings, not fatal)
  5. one terraform apply for the whole group

Import only seeds Terraform state; the apply is what creates missing
resources and corrects drift on imported ones, so it is the authoritative
convergence step and surfaces any real problem an import hid.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from iac_runner import aws
from iac_runner.config import Settings
from iac_runner.exceptions import AdoptConflict
from iac_runner.models import (
    InventoryRecord,
    PlanAction,
    PlanStep,
    ResourceGroup,
    ResourceHandle,
    ResourceKind,
)
from iac_runner.terraform import TerraformRunner

logger = logging.getLogger(__name__)

BUCKET_ADDRESS = "aws_s3_bucket.state"
TABLE_ADDRESS = "aws_dynamodb_table.lock"
OIDC_PROVIDER_ADDRESS = "aws_iam_openid_connect_provider.github"
ROLE_ADDRESS = "aws_iam_role.github_actions"
ROLE_ARN_OUTPUT = "iam_role_arn"

RunnerFactory = Callable[[Path], TerraformRunner]


@dataclass
class ReconcileResult:
    group: str
    plan: list[PlanStep]
    adopt_conflicts: list[AdoptConflict] = field(default_factory=list)

    @property
    def actions(self) -> dict[str, PlanAction]:
        return {step.handle.address: step.action for step in self.plan}


def build_plan(handles: Iterable[ResourceHandle], tracked: set[str]) -> list[PlanStep]:
    """Decide create/import/converge for each handle from live existence + state."""
    steps: list[PlanStep] = []
    for handle in handles:
        import_id = handle.locate()
        if handle.address in tracked:
            steps.append(PlanStep(handle=handle, action=PlanAction.CONVERGE))
        elif import_id is not None:
            steps.append(PlanStep(handle=handle, action=PlanAction.IMPORT, import_id=import_id))
        else:
            steps.append(PlanStep(handle=handle, action=PlanAction.CREATE))
    return steps


# ---------------------------------------------------------------------------
# Resource groups
# ---------------------------------------------------------------------------


def backend_variables(record: InventoryRecord) -> dict[str, str]:
    return {
        "aws_region": record.aws_region,
        "s3_bucket_name": record.s3_bucket,
        "dynamodb_table_name": record.dynamodb_table,
    }


def identity_variables(record: InventoryRecord) -> dict[str, str]:
    return {
        **backend_variables(record),
        "iam_role_name": record.iam_role_name,
        "github_org": record.github_org,
        "github_repo": record.github_repo,
        "aws_account_id": record.aws_account_id,
    }


def backend_group(
    settings: Settings,
    record: InventoryRecord,
    *,
    s3_client: Any,
    ddb_client: Any,
) -> ResourceGroup:
    """State bucket and lock table; neither depends on the other."""
    bucket = record.s3_bucket
    table = record.dynamodb_table
    return ResourceGroup(
        name="backend",
        working_dir=settings.backend_dir,
        handles=(
            ResourceHandle(
                kind=ResourceKind.STATE_STORE,
                identifier=bucket,
                address=BUCKET_ADDRESS,
                locate=lambda: bucket if aws.bucket_exists(s3_client, bucket) else None,
            ),
            ResourceHandle(
                kind=ResourceKind.LOCK_TABLE,
                identifier=table,
                address=TABLE_ADDRESS,
                locate=lambda: table if aws.table_exists(ddb_client, table) else None,
            ),
        ),
        variables=backend_variables(record),
    )


def identity_group(
    settings: Settings,
    record: InventoryRecord,
    *,
    iam_client: Any,
) -> ResourceGroup:
    """OIDC provider and the role GitHub Actions assumes.

    The provider is unique per account and issuer: it is found by issuer and
    imported, never created twice.
    """
    role = record.iam_role_name
    return ResourceGroup(
        name="identity",
        working_dir=settings.iam_dir,
        handles=(
            ResourceHandle(
                kind=ResourceKind.TRUST_PROVIDER,
                identifier=aws.GITHUB_OIDC_ISSUER,
                address=OIDC_PROVIDER_ADDRESS,
                locate=lambda: aws.find_github_oidc_provider_arn(iam_client),
            ),
            ResourceHandle(
                kind=ResourceKind.TRUST_ROLE,
                identifier=role,
                address=ROLE_ADDRESS,
                locate=lambda: role if aws.role_exists(iam_client, role) else None,
            ),
        ),
        variables=identity_variables(record),
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ReconciliationEngine:
    def __init__(self, runner_factory: RunnerFactory) -> None:
        self.runner_factory = runner_factory

    def reconcile(self, group: ResourceGroup) -> ReconcileResult:
        logger.info("==> Reconciling %s resources in %s", group.name, group.working_dir)
        runner = self.runner_factory(group.working_dir)
        runner.init()

        plan = build_plan(group.handles, runner.state_addresses())
        result = ReconcileResult(group=group.name, plan=plan)
        for step in plan:
            logger.info(
                "  %-9s %-16s %s", step.action.value, step.handle.kind.value, step.handle.identifier
            )

        for step in plan:
            if step.action is not PlanAction.IMPORT or step.import_id is None:
                continue
            logger.warning(
                "%s %s already exists — importing into Terraform state.",
                step.handle.kind.value,
                step.handle.identifier,
            )
            try:
                runner.import_resource(step.handle.address, step.import_id, group.variables)
            except AdoptConflict as exc:
                logger.warning("%s; continuing, apply will converge it", exc)
                result.adopt_conflicts.append(exc)

        runner.apply(group.variables)
        logger.info("%s resources converged.", group.name.capitalize())
        return result

    def read_output(self, group: ResourceGroup, name: str) -> str:
        return self.runner_factory(group.working_dir).output_raw(name)
