"""
iac_runner.install — Bootstrap the platform CI infrastructure.

Ordered stages, each persisted to the inventory record as it completes:

  names     derived names written before anything is provisioned
  backend   S3 state bucket + DynamoDB lock table
  identity  GitHub OIDC provider + IAM role (ARN written last)
  workflow  GitHub Actions workflow rendered from the record

Idempotent and safe to re-run: a retry reuses the recorded names, existence
checks are always repeated, and existing resources are imported, not recreated.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from iac_runner import aws, gitctx
from iac_runner.aws import AwsClients
from iac_runner.config import PROVIDERS_FILENAME, Settings
from iac_runner.exceptions import ConfirmationDeclined, ConvergenceError, PreflightError
from iac_runner.gitctx import GitContext
from iac_runner.inventory import (
    ExistingInventoryChoice,
    InventoryStore,
    resolve_existing_inventory,
)
from iac_runner.lock_guard import LockGuard
from iac_runner.models import InventoryRecord, ResourceKind
from iac_runner.naming import derive_names
from iac_runner.prompts import (
    PROVISION_PHRASE,
    LockPolicy,
    Prompter,
    confirmation_matches,
    render_rows,
    show_block,
)
from iac_runner.reconcile import (
    ROLE_ARN_OUTPUT,
    ReconciliationEngine,
    backend_group,
    identity_group,
)
from iac_runner.terraform import TerraformRunner
from iac_runner.workflow import WorkflowParams, ensure_providers, write_workflow

logger = logging.getLogger(__name__)

REQUIRED_TOOLS: tuple[str, ...] = ("terraform", "git")


def utc_now_iso() -> str:
    """Return current UTC timestamp as YYYY-MM-DDTHH:MM:SSZ."""
    return datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def normalise_watch_dir(raw: str) -> str:
    """Strip whitespace and leading/trailing slashes. Empty input is fatal.

    An empty watch dir would make the workflow trigger on every push.
    """
    value = raw.strip().strip("/")
    if not value:
        raise PreflightError(
            "Terraform watch directory is required. Re-run install and provide a "
            "directory name (e.g. terraform)."
        )
    return value


class InstallOrchestrator:
    def __init__(
        self,
        settings: Settings,
        *,
        prompter: Prompter,
        store: InventoryStore | None = None,
        clients_factory: Callable[[str], AwsClients] | None = None,
        engine: ReconciliationEngine | None = None,
        git_context: Callable[[Path], GitContext] = gitctx.detect_context,
        preflight: Callable[[Path], None] | None = None,
    ) -> None:
        self.settings = settings
        self.prompter = prompter
        self.store = store or InventoryStore(settings.inventory_file)
        self.clients_factory = clients_factory or (
            lambda region: AwsClients.for_region(region, endpoint_url=settings.aws_endpoint)
        )
        self.engine = engine or ReconciliationEngine(
            lambda working_dir: TerraformRunner(working_dir, binary=settings.terraform_bin)
        )
        self.git_context = git_context
        self.preflight = preflight or self._default_preflight

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def run(self) -> InventoryRecord:
        record = self._load_or_init()
        self.preflight(self.settings.root)

        region = record.aws_region or self._ask_region()
        watch_dir = record.tf_watch_dir or normalise_watch_dir(
            self.prompter.ask("Enter Terraform directory to watch (required, e.g. terraform): ")
        )

        logger.info("Verifying AWS credentials...")
        clients = self.clients_factory(region)
        account_id, caller_arn = aws.caller_identity(clients.sts)
        logger.info("Authenticated as: %s (account: %s)", caller_arn, account_id)
        if record.aws_account_id and record.aws_account_id != account_id:
            raise PreflightError(
                f"Credentials resolve to account {account_id} but "
                f"{self.store.path.name} was created in account {record.aws_account_id}. "
                "Switch credentials or uninstall first."
            )

        self._fill_identity(record, region=region, watch_dir=watch_dir, account_id=account_id)

        LockGuard(
            clients.dynamodb,
            table_name=record.dynamodb_table,
            policy=LockPolicy.INTERACTIVE,
            prompter=self.prompter,
        ).gate()

        self._confirm(record)

        logger.info("Writing %s...", self.store.path.name)
        self.store.save(record)
        self._prepare_watch_dir(record)

        backend = backend_group(
            self.settings, record, s3_client=clients.s3, ddb_client=clients.dynamodb
        )
        self.engine.reconcile(backend)
        logger.info("S3 bucket and DynamoDB table provisioned.")

        identity = identity_group(self.settings, record, iam_client=clients.iam)
        self.engine.reconcile(identity)
        role_arn = self.engine.read_output(identity, ROLE_ARN_OUTPUT)
        if not role_arn:
            raise ConvergenceError(f"terraform output {ROLE_ARN_OUTPUT} is empty after apply")
        self.store.merge(record, iam_role_arn=role_arn)
        logger.info("IAM OIDC role provisioned: %s", role_arn)

        write_workflow(
            self.settings.workflow_file,
            WorkflowParams.from_record(record, state_key=self.settings.state_key),
        )
        logger.info(
            "%s written to %s",
            ResourceKind.PIPELINE_TRIGGER.value,
            self.settings.relative(self.settings.workflow_file),
        )

        self._show_complete(record)
        return record

    def _default_preflight(self, root: Path) -> None:
        gitctx.ensure_git_repo(root)
        gitctx.require_tools(REQUIRED_TOOLS)

    def _load_or_init(self) -> InventoryRecord:
        record = self.store.load()
        if record is None:
            return InventoryRecord()

        self.prompter.show()
        logger.warning(
            "%s already exists — a previous install may have partially completed.",
            self.store.path.name,
        )
        self.prompter.show("  Options:")
        self.prompter.show(
            "    [r] Retry  — re-run install using existing resource names "
            "(safe if resources exist)"
        )
        self.prompter.show("    [x] Abort  — exit without changes")
        self.prompter.show()
        choice = resolve_existing_inventory(self.prompter.ask("Choose [r/x]: "))
        if choice is ExistingInventoryChoice.ABORT:
            raise PreflightError(
                "Aborted. Run uninstall first to start clean, or choose [r] to retry."
            )
        logger.info("Retrying install with existing inventory (state: %s)...", record.state.value)
        # The ARN marks completion; it is merged back only after the identity stage.
        record.iam_role_arn = ""
        return record

    def _ask_region(self) -> str:
        answer = self.prompter.ask(f"Enter AWS region [{self.settings.default_region}]: ")
        return answer.strip() or self.settings.default_region

    def _fill_identity(
        self,
        record: InventoryRecord,
        *,
        region: str,
        watch_dir: str,
        account_id: str,
    ) -> None:
        """Populate unset fields. Recorded values always win over fresh ones."""
        record.aws_region = region
        record.tf_watch_dir = watch_dir
        record.aws_account_id = account_id

        if not (record.github_org and record.github_repo and record.default_branch):
            context = self.git_context(self.settings.root)
            record.github_org = record.github_org or context.org
            record.github_repo = record.github_repo or context.repo
            record.default_branch = record.default_branch or context.default_branch
        logger.info(
            "GitHub context: %s/%s (branch: %s)",
            record.github_org,
            record.github_repo,
            record.default_branch,
        )

        if record.derived_names_set:
            logger.info("Using saved resource names from previous install attempt.")
        else:
            names = derive_names(record.github_org, record.github_repo, account_id)
            record.s3_bucket = record.s3_bucket or names.state_store
            record.dynamodb_table = record.dynamodb_table or names.lock_table
            record.iam_role_name = record.iam_role_name or names.trust_role

        record.created_at = record.created_at or utc_now_iso()

    def _confirm(self, record: InventoryRecord) -> None:
        rows = [
            ("AWS Region:", record.aws_region),
            ("S3 Bucket:", record.s3_bucket),
            ("DynamoDB Table:", record.dynamodb_table),
            ("IAM Role:", record.iam_role_name),
            ("GitHub Repo:", f"{record.github_org}/{record.github_repo}"),
            ("TF Watch Dir:", record.tf_watch_dir),
            ("Workflow file:", self.settings.relative(self.settings.workflow_file)),
        ]
        show_block(self.prompter, "Resources to be created:", render_rows(rows))
        answer = self.prompter.ask("Proceed? (yes/no): ")
        if not confirmation_matches(answer, PROVISION_PHRASE):
            raise ConfirmationDeclined("Aborted by user. No resources were modified.")

    def _prepare_watch_dir(self, record: InventoryRecord) -> None:
        watch = self.settings.root / record.tf_watch_dir
        if not watch.is_dir():
            watch.mkdir(parents=True, exist_ok=True)
            logger.info("Created directory: %s", record.tf_watch_dir)
        if ensure_providers(watch / PROVIDERS_FILENAME, record.aws_region):
            logger.info(
                "Created %s/%s with backend configuration", record.tf_watch_dir, PROVIDERS_FILENAME
            )
        else:
            logger.info("%s already exists in %s", PROVIDERS_FILENAME, record.tf_watch_dir)

    def _show_complete(self, record: InventoryRecord) -> None:
        rows = [
            ("S3 bucket:", record.s3_bucket),
            ("DynamoDB table:", record.dynamodb_table),
            ("IAM role:", record.iam_role_arn),
            ("Workflow:", self.settings.relative(self.settings.workflow_file)),
        ]
        lines = [
            "  Resources created:",
            *render_rows(rows, marker="✓"),
            "",
            "  Next steps:",
            "    1. Commit and push this repository to GitHub",
            f"    2. GitHub Actions will trigger on push to '{record.default_branch}'",
            "    3. Terraform will run in CI — never locally",
            f"    4. Only changes to '{record.tf_watch_dir}/**/*.tf' trigger the workflow",
            "    5. To destroy application infra: iac-runner destroy",
            "",
            f"  Keep {self.store.path.name} committed. It is the platform source of truth.",
        ]
        show_block(self.prompter, "Bootstrap Complete!", lines)
