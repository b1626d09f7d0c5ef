"""
iac_runner.models — Typed records shared by the lifecycle flows.

InventoryRecord is the single persisted source of truth for one platform
installation. Everything else here is recomputed on every run.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field, fields
from enum import StrEnum
from pathlib import Path
from typing import Any

from iac_runner.exceptions import PreflightError

_ACCOUNT_ID_RE = re.compile(r"^\d{12}$")


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class InstallState(StrEnum):
    UNINSTALLED = "uninstalled"
    PARTIAL = "partial"
    BOOTSTRAPPED = "bootstrapped"


class ResourceKind(StrEnum):
    STATE_STORE = "state-store"
    LOCK_TABLE = "lock-table"
    TRUST_PROVIDER = "trust-provider"
    TRUST_ROLE = "trust-role"
    PIPELINE_TRIGGER = "pipeline-trigger"


class PlanAction(StrEnum):
    CREATE = "create"
    IMPORT = "import"
    CONVERGE = "converge"
    DESTROY = "destroy"


# ---------------------------------------------------------------------------
# InventoryRecord
# ---------------------------------------------------------------------------


@dataclass
class InventoryRecord:
    """Persisted description of what has been provisioned, and with what names.

    Fields start empty and are filled as each install stage succeeds.
    ``iam_role_arn`` is written last and marks a completed install.
    """

    aws_region: str = ""
    aws_account_id: str = ""
    s3_bucket: str = ""
    dynamodb_table: str = ""
    iam_role_name: str = ""
    iam_role_arn: str = ""
    github_org: str = ""
    github_repo: str = ""
    default_branch: str = ""
    tf_watch_dir: str = ""
    created_at: str = ""

    @property
    def derived_names_set(self) -> bool:
        return bool(self.s3_bucket and self.dynamodb_table and self.iam_role_name)

    @property
    def state(self) -> InstallState:
        if self.derived_names_set and self.iam_role_arn:
            return InstallState.BOOTSTRAPPED
        return InstallState.PARTIAL

    def to_dict(self) -> dict[str, str]:
        # Unset fields are omitted so a partial record never claims empty values.
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name)}

    @classmethod
    def from_dict(cls, data: Any) -> InventoryRecord:
        """Build a record from parsed JSON. Rejects anything it cannot trust."""
        if not isinstance(data, dict):
            raise PreflightError("Inventory record must be a JSON object")

        known = {f.name for f in fields(cls)}
        values: dict[str, str] = {}
        for key, value in data.items():
            if key not in known:
                continue
            if value is None:
                continue
            if not isinstance(value, str):
                raise PreflightError(
                    f"Inventory field {key!r} must be a string, got {type(value).__name__}"
                )
            values[key] = value.strip()

        account_id = values.get("aws_account_id", "")
        if account_id and not _ACCOUNT_ID_RE.match(account_id):
            raise PreflightError(
                f"Inventory field 'aws_account_id' is not a 12-digit id: {account_id!r}"
            )

        return cls(**values)


def state_of(record: InventoryRecord | None) -> InstallState:
    return InstallState.UNINSTALLED if record is None else record.state


# ---------------------------------------------------------------------------
# Derived names
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResourceNames:
    state_store: str
    lock_table: str
    trust_role: str


# ---------------------------------------------------------------------------
# Managed resources and plans
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResourceHandle:
    """An external resource known only by identifier and operations.

    ``locate`` queries the cloud control plane and returns the id Terraform
    should import the resource with, or None when the resource is absent.
    """

    kind: ResourceKind
    identifier: str
    address: str
    locate: Callable[[], str | None]

    def exists(self) -> bool:
        return self.locate() is not None


@dataclass(frozen=True)
class PlanStep:
    handle: ResourceHandle
    action: PlanAction
    import_id: str | None = None


@dataclass(frozen=True)
class ResourceGroup:
    """Resources created and destroyed together by one Terraform working dir."""

    name: str
    working_dir: Path
    handles: tuple[ResourceHandle, ...]
    variables: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class LockRecord:
    count: int
    lock_id: str | None = None

    @property
    def held(self) -> bool:
        return self.count > 0
