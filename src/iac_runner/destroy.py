"""
iac_runner.destroy — Tear down the application resources in the watched directory.

Platform primitives (state bucket, lock table, OIDC role) are never touched:
the plan is built in the watch dir against the shared remote state, and the
watch dir may not be one of the platform's own Terraform directories.

The borrowed providers.tf and the saved plan file are scoped to the run and
removed on every exit path.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from iac_runner import aws, gitctx
from iac_runner.aws import AwsClients
from iac_runner.config import DESTROY_PLAN_FILENAME, PROVIDERS_FILENAME, Settings
from iac_runner.exceptions import ConfirmationDeclined, PreflightError
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
from iac_runner.run_context import RunContext
from iac_runner.terraform import TerraformRunner, planned_deletions

logger = logging.getLogger(__name__)

REQUIRED_TOOLS: tuple[str, ...] = ("terraform",)
_REQUIRED_FIELDS = ("aws_region", "s3_bucket", "dynamodb_table", "tf_watch_dir")


def _inside(path: Path, directory: Path) -> bool:
    # Terraform does not recurse, so only the watch dir itself matters.
    path, directory = path.resolve(), directory.resolve()
    return path == directory or directory in path.parents


class DestroyOrchestrator:
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

    def run(self) -> list[str]:
        """Destroy everything the watch dir's plan would delete. Returns the addresses."""
        record = self._load_record()
        self.preflight()
        watch = self._watch_dir(record)
        logger.info("Verifying AWS credentials...")
        clients = self.clients_factory(record.aws_region)
        aws.verify_account(clients.sts, record.aws_account_id, source=self.store.path.name)

        with RunContext() as ctx:
            ctx.borrow_file(watch / PROVIDERS_FILENAME, self.settings.providers_template)

            LockGuard(
                clients.dynamodb,
                table_name=record.dynamodb_table,
                policy=LockPolicy.INTERACTIVE,
                prompter=self.prompter,
            ).gate()

            runner = self.runner_factory(watch)
            logger.info("Initialising Terraform with remote backend...")
            runner.init(backend_config=self._backend_config(record))

            plan_path = ctx.scratch_file(watch / DESTROY_PLAN_FILENAME)
            logger.info("Planning destroy for %s/...", record.tf_watch_dir)
            runner.plan_destroy(plan_path.name)
            addresses = planned_deletions(runner.show_plan(plan_path.name))
            if not addresses:
                logger.info("Nothing to destroy in %s/.", record.tf_watch_dir)
                return []

            self._confirm(record, addresses)
            logger.info("Destroying application infrastructure...")
            runner.apply_plan(plan_path.name)

        self._show_complete(record, addresses)
        return addresses

    def _load_record(self) -> InventoryRecord:
        record = self.store.load()
        if record is None:
            raise PreflightError(
                f"{self.store.path.name} not found. Run install first to bootstrap the platform."
            )
        missing = [name for name in _REQUIRED_FIELDS if not getattr(record, name)]
        if missing:
            raise PreflightError(
                f"{self.store.path.name} is missing required fields: {', '.join(missing)}. "
                "Re-run install to complete the bootstrap."
            )
        return record

    def _watch_dir(self, record: InventoryRecord) -> Path:
        watch = self.settings.root / record.tf_watch_dir
        if not watch.is_dir():
            raise PreflightError(f"Terraform watch directory not found: {record.tf_watch_dir}")
        for platform_dir in (self.settings.backend_dir, self.settings.iam_dir):
            if _inside(watch, platform_dir):
                raise PreflightError(
                    f"Watch directory {record.tf_watch_dir} is inside platform directory "
                    f"{self.settings.relative(platform_dir)}; refusing to destroy it."
                )
        return watch

    def _backend_config(self, record: InventoryRecord) -> dict[str, str]:
        return {
            "bucket": record.s3_bucket,
            "key": self.settings.state_key,
            "region": record.aws_region,
            "dynamodb_table": record.dynamodb_table,
            "encrypt": "true",
        }

    def _confirm(self, record: InventoryRecord, addresses: list[str]) -> None:
        lines = [
            *render_rows([("Directory:", f"{record.tf_watch_dir}/")]),
            f"  Resources to destroy ({len(addresses)}):",
            *(f"    - {address}" for address in addresses),
            "",
            "  This does NOT destroy platform infrastructure (S3 state, IAM role, DynamoDB).",
        ]
        show_block(self.prompter, "Destroy application infrastructure", lines)
        answer = self.prompter.ask(
            f"Type {DESTROY_PHRASE} to continue (anything else aborts): "
        )
        if not confirmation_matches(answer, DESTROY_PHRASE):
            raise ConfirmationDeclined("Aborted. No resources were modified.")

    def _show_complete(self, record: InventoryRecord, addresses: list[str]) -> None:
        lines = [
            *render_rows([("Directory:", f"{record.tf_watch_dir}/")]),
            *render_rows([(address, "destroyed") for address in addresses], marker="✓"),
            "",
            "  Platform infrastructure is intact. Push new .tf files to redeploy.",
        ]
        show_block(self.prompter, "Destroy Complete", lines)
