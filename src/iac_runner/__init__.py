"""
iac_runner — Bootstrap, converge and tear down the Terraform CI platform of a repository.

Platform primitives (S3 state bucket, DynamoDB lock table, GitHub OIDC role)
are reconciled by Terraform; what was provisioned is recorded in inventory.json.
"""

from iac_runner.exceptions import (
    AdoptConflict,
    AuthError,
    CleanupError,
    ConfirmationDeclined,
    ConvergenceError,
    IacRunnerError,
    LockConflictError,
    PreflightError,
)
from iac_runner.models import InstallState, InventoryRecord, ResourceNames
from iac_runner.naming import derive_names

__all__ = [
    "AdoptConflict",
    "AuthError",
    "CleanupError",
    "ConfirmationDeclined",
    "ConvergenceError",
    "IacRunnerError",
    "InstallState",
    "InventoryRecord",
    "LockConflictError",
    "PreflightError",
    "ResourceNames",
    "derive_names",
]
