"""Uninstall flow tests: strict lock gate, independent stages, record kept on failure."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Any

import boto3
import pytest
from botocore.exceptions import NoCredentialsError
from moto import mock_aws

from iac_runner import aws
from iac_runner.config import Settings
from iac_runner.exceptions import (
    AuthError,
    ConfirmationDeclined,
    ConvergenceError,
    LockConflictError,
    PreflightError,
)
from iac_runner.gitctx import GitContext
from iac_runner.install import InstallOrchestrator
from iac_runner.inventory import InventoryStore
from iac_runner.models import InstallState, InventoryRecord, state_of
from iac_runner.reconcile import ReconciliationEngine
from iac_runner.uninstall import UninstallOrchestrator

_REGION = "us-east-1"
_BUCKET = "tf-state-platform-abcd1234"
_TABLE = "tf-lock-platform-abcd1234"
_STATE_KEY = "platform/terraform.tfstate"


def _record() -> InventoryRecord:
    return InventoryRecord(
        aws_region=_REGION,
        aws_account_id="123456789012",
        s3_bucket=_BUCKET,
        dynamodb_table=_TABLE,
        iam_role_name="github-actions-terraform-platform",
        iam_role_arn="arn:aws:iam::123456789012:role/github-actions-terraform-platform",
        github_org="acme",
        github_repo="platform",
        default_branch="main",
        tf_watch_dir="terraform",
        created_at="2026-01-01T12:00:00Z",
    )


def _provision(settings: Settings, *, platform_dirs: bool = True) -> None:
    s3 = boto3.client("s3", region_name=_REGION)
    s3.create_bucket(Bucket=_BUCKET)
    s3.put_bucket_versioning(Bucket=_BUCKET, VersioningConfiguration={"Status": "Enabled"})
    s3.put_object(Bucket=_BUCKET, Key=_STATE_KEY, Body=b"{}")
    s3.put_object(Bucket=_BUCKET, Key=_STATE_KEY, Body=b"{ }")
    boto3.client("dynamodb", region_name=_REGION).create_table(
        TableName=_TABLE,
        KeySchema=[{"AttributeName": "LockID", "KeyType": "HASH"}],
        AttributeDefinitions=[{"AttributeName": "LockID", "AttributeType": "S"}],
        BillingMode="PAY_PER_REQUEST",
    )
    InventoryStore(settings.inventory_file).save(_record())
    settings.workflow_file.parent.mkdir(parents=True)
    settings.workflow_file.write_text("name: Terraform Apply\n", encoding="utf-8")
    if platform_dirs:
        settings.backend_dir.mkdir(parents=True)
        settings.iam_dir.mkdir(parents=True)


def _uninstaller(
    settings: Settings,
    prompter: Any,
    terraform_factory: Any,
    calls: list[tuple[str, str]],
    *,
    failing_dir: str | None = None,
    clients_factory: Any = None,
) -> UninstallOrchestrator:
    def _runner(path: Path) -> Any:
        fail_on = {"destroy"} if path.name == failing_dir else set()
        return terraform_factory(path, calls=calls, fail_on=fail_on)

    return UninstallOrchestrator(
        settings,
        prompter=prompter,
        clients_factory=clients_factory,
        runner_factory=_runner,
        preflight=lambda: None,
    )


def _versions(bucket: str) -> int:
    listing = boto3.client("s3", region_name=_REGION).list_object_versions(Bucket=bucket)
    return len(listing.get("Versions", [])) + len(listing.get("DeleteMarkers", []))


@mock_aws
def test_uninstall_removes_everything(
    settings: Settings, prompter_factory: Any, terraform_factory: Any
) -> None:
    _provision(settings)
    calls: list[tuple[str, str]] = []
    prompter = prompter_factory(["DESTROY"])

    outcomes = _uninstaller(settings, prompter, terraform_factory, calls).run()

    assert [outcome.name for outcome in outcomes] == ["identity", "backend", "workflow"]
    assert all(outcome.ok for outcome in outcomes)
    assert calls == [
        ("iam", "init"),
        ("iam", "destroy"),
        ("backend", "init"),
        ("backend", "destroy"),
    ]
    assert _versions(_BUCKET) == 0
    assert not settings.workflow_file.exists()
    assert not settings.inventory_file.exists()
    assert "2026-01-01T12:00:00Z" in prompter.output
    assert "Uninstall Complete" in prompter.output


@mock_aws
def test_active_lock_is_fatal_with_zero_destructive_calls(
    settings: Settings, prompter_factory: Any, terraform_factory: Any
) -> None:
    _provision(settings)
    boto3.client("dynamodb", region_name=_REGION).put_item(
        TableName=_TABLE, Item={"LockID": {"S": f"{_BUCKET}/{_STATE_KEY}"}}
    )
    calls: list[tuple[str, str]] = []
    prompter = prompter_factory()

    with pytest.raises(LockConflictError, match="LOCKED"):
        _uninstaller(settings, prompter, terraform_factory, calls).run()

    assert calls == []
    assert prompter.asked == []
    assert _versions(_BUCKET) == 2
    assert settings.workflow_file.exists()
    assert settings.inventory_file.exists()



class _NoCredentialsSts:
    def get_caller_identity(self) -> dict[str, str]:
        raise NoCredentialsError()


@mock_aws
def test_missing_credentials_are_fatal_before_any_stage(
    settings: Settings, prompter_factory: Any, terraform_factory: Any
) -> None:
    _provision(settings)
    clients = replace(aws.AwsClients.for_region(_REGION), sts=_NoCredentialsSts())
    calls: list[tuple[str, str]] = []
    prompter = prompter_factory()

    with pytest.raises(AuthError, match="AWS authentication failed"):
        _uninstaller(
            settings, prompter, terraform_factory, calls, clients_factory=lambda region: clients
        ).run()

    assert calls == []
    assert prompter.asked == []
    assert _versions(_BUCKET) == 2
    assert settings.inventory_file.exists()


@mock_aws
def test_credentials_for_another_account_are_fatal(
    settings: Settings, prompter_factory: Any, terraform_factory: Any
) -> None:
    _provision(settings)
    store = InventoryStore(settings.inventory_file)
    store.merge(store.load(), aws_account_id="999999999999")
    calls: list[tuple[str, str]] = []

    with pytest.raises(PreflightError, match="account 999999999999"):
        _uninstaller(settings, prompter_factory(), terraform_factory, calls).run()

    assert calls == []
    assert _versions(_BUCKET) == 2

@mock_aws
def test_declined_uninstall_changes_nothing(
    settings: Settings, prompter_factory: Any, terraform_factory: Any
) -> None:
    _provision(settings)
    calls: list[tuple[str, str]] = []

    with pytest.raises(ConfirmationDeclined):
        _uninstaller(settings, prompter_factory(["destroy"]), terraform_factory, calls).run()

    assert calls == []
    assert _versions(_BUCKET) == 2
    assert settings.inventory_file.exists()


@mock_aws
def test_failed_stage_keeps_record_and_still_attempts_others(
    settings: Settings, prompter_factory: Any, terraform_factory: Any
) -> None:
    _provision(settings)
    calls: list[tuple[str, str]] = []

    with pytest.raises(ConvergenceError, match="identity"):
        _uninstaller(
            settings, prompter_factory(["DESTROY"]), terraform_factory, calls, failing_dir="iam"
        ).run()

    assert ("backend", "destroy") in calls
    assert not settings.workflow_file.exists()
    assert InventoryStore(settings.inventory_file).load() == _record()


@mock_aws
def test_missing_backend_dir_deletes_resources_directly(
    settings: Settings, prompter_factory: Any, terraform_factory: Any
) -> None:
    _provision(settings, platform_dirs=False)
    calls: list[tuple[str, str]] = []

    _uninstaller(settings, prompter_factory(["DESTROY"]), terraform_factory, calls).run()

    clients = aws.AwsClients.for_region(_REGION)
    assert calls == []
    assert aws.bucket_exists(clients.s3, _BUCKET) is False
    assert aws.table_exists(clients.dynamodb, _TABLE) is False
    assert not settings.inventory_file.exists()


def test_uninstall_without_inventory_is_fatal(
    settings: Settings, prompter_factory: Any, terraform_factory: Any
) -> None:
    with pytest.raises(PreflightError, match="Nothing to uninstall"):
        _uninstaller(settings, prompter_factory(), terraform_factory, []).run()


@mock_aws
def test_install_then_uninstall_round_trip(
    settings: Settings, prompter_factory: Any, terraform_factory: Any
) -> None:
    calls: list[tuple[str, str]] = []
    arn = "arn:aws:iam::123456789012:role/github-actions-terraform-platform"
    installer = InstallOrchestrator(
        settings,
        prompter=prompter_factory(["", "terraform", "yes"]),
        engine=ReconciliationEngine(
            lambda path: terraform_factory(path, calls=calls, outputs={"iam_role_arn": arn})
        ),
        git_context=lambda root: GitContext(org="acme", repo="platform", default_branch="main"),
        preflight=lambda root: None,
    )
    installer.run()
    store = InventoryStore(settings.inventory_file)
    assert state_of(store.load()) is InstallState.BOOTSTRAPPED

    _uninstaller(settings, prompter_factory(["DESTROY"]), terraform_factory, calls).run()

    assert state_of(store.load()) is InstallState.UNINSTALLED
    assert not settings.workflow_file.exists()
