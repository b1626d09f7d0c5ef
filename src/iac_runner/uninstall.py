"""
iac_runner.uninstall — Remove everything install created.

Any Terraform state lock is fatal here: uninstall destroys the bucket that
holds the state, so it must never race a running plan or apply.

Stages are attempted independently so one failure does not strand the rest.
The inventory record is deleted only when every stage succeeded; otherwise
it is kept and a retry resumes from it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from iac_runner import aws, gitctx
from iac_runner.aws import AwsClients
from iac_runner.config import Settings
from iac_runner.exceptions import (
    CleanupError,
    ConfirmationDeclined,
    ConvergenceError,
    PreflightError,
)
from iac_runner.inventory import InventoryStore
from iac_runner.lock_guard import LockGuard
from iac_runner.models import InventoryRecord
from iac_runner.prompts import (
    DESTROY_PHRASE,
    LockPolicy,
    Prompter,
    confirmation_matches,
    render_rows,
    show_block,
)
from iac_runner.reconcile import backend_variables, identity_variables
from iac_runner.terraform import TerraformRunner

logger = logging.getLogger(__name__)

REQUIRED_TOOLS: tuple[str, ...] = ("terraform",)


@dataclass
class StageOutcome:
    name: str
    ok: bool
    detail: str = ""


class UninstallOrchestrator:
    def __init__(
        self,
        settings: Settings,
        *,
        prompter: Prompter,
        store: InventoryStore | None = None,
        clients_factory: Callable[[str], AwsClients] | None = None,
        runner_factory: Callable[[Path], TerraformRunner] | None = None,
        preflight: Callable[[], None] | None = None,
    ) -> None:
        self.settings = settings
        self.prompter = prompter
        self.store = store or InventoryStore(settings.inventory_file)
        self.clients_factory = clients_factory or (
            lambda region: AwsClients.for_region(region, endpoint_url=settings.aws_endpoint)
        )
        self.runner_factory = runner_factory or (
            lambda working_dir: TerraformRunner(working_dir, binary=settings.terraform_bin)
        )
        self.preflight = preflight or (lambda: gitctx.require_tools(REQUIRED_TOOLS))

    def run(self) -> list[StageOutcome]:
        record = self.store.load()
        if record is None:
            raise PreflightError(f"{self.store.path.name} not found. Nothing to uninstall.")
        if not record.aws_region:
            raise PreflightError(
                f"{self.store.path.name} has no aws_region; cannot locate platform resources."
            )
        self.preflight()

        logger.info("Verifying AWS credentials...")
        clients = self.clients_factory(record.aws_region)
        aws.verify_account(clients.sts, record.aws_account_id, source=self.store.path.name)
        if record.dynamodb_table:
            LockGuard(
                clients.dynamodb,
                table_name=record.dynamodb_table,
                policy=LockPolicy.STRICT,
                prompter=self.prompter,
            ).gate()

        self._confirm(record)

        outcomes = [
            self._stage("identity", lambda: self._destroy_identity(record)),
            self._stage("backend", lambda: self._destroy_backend(record, clients)),
            self._stage("workflow", self._remove_workflow),
        ]
        failed = [outcome for outcome in outcomes if not outcome.ok]
        if failed:
            raise ConvergenceError(
                "Uninstall incomplete; failed stage(s): "
                + ", ".join(f"{outcome.name} ({outcome.detail})" for outcome in failed)
                + f". {self.store.path.name} was kept; re-run uninstall to retry.",
            )

        self.store.delete()
        self._show_complete(record)
        return outcomes

    def _stage(self, name: str, action: Callable[[], None]) -> StageOutcome:
        logger.info("==> Uninstall stage: %s", name)
        try:
            action()
        except Exception as exc:
            logger.error("Stage %s failed: %s", name, exc)
            if isinstance(exc, ConvergenceError) and exc.output:
                logger.error("%s", exc.output)
            lines = str(exc).splitlines()
            detail = lines[0] if lines else type(exc).__name__
            return StageOutcome(name=name, ok=False, detail=detail)
        return StageOutcome(name=name, ok=True)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _destroy_identity(self, record: InventoryRecord) -> None:
        if not self.settings.iam_dir.is_dir():
            logger.warning(
                "%s not found; skipping IAM destroy.", self.settings.relative(self.settings.iam_dir)
            )
            return
        runner = self.runner_factory(self.settings.iam_dir)
        runner.init()
        runner.destroy(identity_variables(record))
        logger.info("IAM role and OIDC provider destroyed.")

    def _destroy_backend(self, record: InventoryRecord, clients: AwsClients) -> None:
        if record.s3_bucket:
            try:
                removed = aws.drain_bucket(clients.s3, record.s3_bucket)
                logger.info("Emptied %s (%d version(s) removed).", record.s3_bucket, removed)
            except CleanupError as exc:
                logger.warning("%s; continuing with backend destroy", exc)

        if self.settings.backend_dir.is_dir():
            runner = self.runner_factory(self.settings.backend_dir)
            runner.init()
            runner.destroy(backend_variables(record))
            logger.info("S3 bucket and DynamoDB table destroyed.")
            return

        logger.warning(
            "%s not found; deleting backend resources directly.",
            self.settings.relative(self.settings.backend_dir),
        )
        if record.s3_bucket and not aws.delete_bucket(clients.s3, record.s3_bucket):
            logger.info("Bucket %s already absent.", record.s3_bucket)
        if record.dynamodb_table and not aws.delete_table(clients.dynamodb, record.dynamodb_table):
            logger.info("Table %s already absent.", record.dynamodb_table)

    def _remove_workflow(self) -> None:
        workflow = self.settings.workflow_file
        if workflow.exists():
            workflow.unlink()
            logger.info("Removed %s", self.settings.relative(workflow))
        else:
            logger.info("%s already absent.", self.settings.relative(workflow))

    # ------------------------------------------------------------------
    # Operator output
    # ------------------------------------------------------------------

    def _confirm(self, record: InventoryRecord) -> None:
        rows = [
            ("S3 Bucket:", record.s3_bucket or "(not recorded)"),
            ("DynamoDB Table:", record.dynamodb_table or "(not recorded)"),
            ("IAM Role:", record.iam_role_arn or record.iam_role_name or "(not recorded)"),
            ("Workflow file:", self.settings.relative(self.settings.workflow_file)),
            ("Inventory file:", self.store.path.name),
        ]
        context = [
            ("Installed:", record.created_at or "unknown"),
            ("Repo:", f"{record.github_org}/{record.github_repo}"),
            ("Region:", record.aws_region),
        ]
        lines = [
            "  The following will be permanently destroyed:",
            *render_rows(rows, marker="✗"),
            "",
            *render_rows(context),
            "",
            "  Terraform state in the bucket will be lost.",
        ]
        show_block(self.prompter, "WARNING: Platform uninstall", lines)
        answer = self.prompter.ask(
            f"Type {DESTROY_PHRASE} to continue (anything else aborts): "
        )
        if not confirmation_matches(answer, DESTROY_PHRASE):
            raise ConfirmationDeclined("Aborted. No resources were modified.")

    def _show_complete(self, record: InventoryRecord) -> None:
        rows = [
            ("S3 bucket:", record.s3_bucket),
            ("DynamoDB table:", record.dynamodb_table),
            ("IAM role:", record.iam_role_name),
            ("Workflow:", self.settings.relative(self.settings.workflow_file)),
            ("Inventory:", self.store.path.name),
        ]
        lines = [
            "  Removed:",
            *render_rows(rows, marker="✓"),
            "",
            "  Run iac-runner install to bootstrap again.",
        ]
        show_block(self.prompter, "Uninstall Complete", lines)
