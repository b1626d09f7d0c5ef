"""
iac_runner.exceptions — Error taxonomy for the platform lifecycle flows.

Fatal errors stop a flow immediately. AdoptConflict and CleanupError are
warnings: they are logged and the flow continues.
"""

from __future__ import annotations


class IacRunnerError(RuntimeError):
    """Base class for platform lifecycle errors."""


class PreflightError(IacRunnerError):
    """Raised when a precondition fails before any side effect."""


class AuthError(IacRunnerError):
    """Raised when the AWS credential check fails."""


class LockConflictError(IacRunnerError):
    """Raised when the Terraform state lock table holds an active lock."""

    def __init__(self, message: str, *, count: int, lock_id: str | None = None) -> None:
        super().__init__(message)
        self.count = count
        self.lock_id = lock_id


class ConfirmationDeclined(IacRunnerError):
    """Raised when the operator does not type the exact confirmation phrase."""


class ConvergenceError(IacRunnerError):
    """
    Raised when a Terraform command fails.

    Attributes:
        command:     The command line that was run.
        return_code: Exit status of the tool.
        output:      Tail of the tool's combined stdout/stderr.
    """

    def __init__(
        self,
        message: str,
        *,
        command: str = "",
        return_code: int | None = None,
        output: str = "",
    ) -> None:
        super().__init__(message)
        self.command = command
        self.return_code = return_code
        self.output = output


class AdoptConflict(IacRunnerError):
    """Raised when an existing resource cannot be imported into Terraform state."""

    def __init__(self, *, address: str, resource_id: str, output: str = "") -> None:
        self.address = address
        self.resource_id = resource_id
        self.output = output
        super().__init__(f"Could not import {resource_id!r} into {address}")


class CleanupError(IacRunnerError):
    """Raised when a best-effort cleanup step fails. Never fatal."""
