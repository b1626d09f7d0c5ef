"""
iac_runner.lock_guard — Admission control through the Terraform lock table.

This module never acquires the Terraform state lock; terraform does that
itself during apply/destroy. It only inspects the table and, after explicit
operator confirmation, deletes a lock the operator judges stale.

Policies:
  interactive (install, destroy) — show the lock, offer removal, abort on "no".
  strict      (uninstall)        — any lock is fatal; removal is never offered.

Lock presence is a row count; there is no timestamp-based staleness check.
"""

from __future__ import annotations

import logging
from typing import Any

from iac_runner import aws
from iac_runner.exceptions import LockConflictError
from iac_runner.models import LockRecord
from iac_runner.prompts import (
    LockAction,
    LockPolicy,
    Prompter,
    decide_lock_action,
    lock_removal_confirmed,
)

logger = logging.getLogger(__name__)

_STALE_HINTS = (
    "  - The GitHub Actions workflow already completed",
    "  - The pipeline crashed mid-apply",
    "  - No terraform operations are currently running",
)


class LockGuard:
    def __init__(
        self,
        ddb_client: Any,
        *,
        table_name: str,
        policy: LockPolicy,
        prompter: Prompter,
    ) -> None:
        self.ddb_client = ddb_client
        self.table_name = table_name
        self.policy = policy
        self.prompter = prompter

    def check_lock(self) -> LockRecord:
        return aws.scan_locks(self.ddb_client, self.table_name)

    def gate(self) -> LockRecord:
        """Return once it is safe to proceed; raise LockConflictError otherwise.

        Each removal is followed by a fresh scan, so the returned record is
        what the table actually holds and every further lock is shown and
        confirmed on its own.
        """
        logger.info("Checking for active DynamoDB state locks in %s...", self.table_name)
        lock = self.check_lock()

        while True:
            confirmed = False
            if lock.held and self.policy is LockPolicy.INTERACTIVE:
                confirmed = self._ask_removal(lock)

            action = decide_lock_action(
                lock_held=lock.held,
                policy=self.policy,
                removal_confirmed=confirmed,
            )

            if action is LockAction.PROCEED:
                logger.info("No active state locks found.")
                return lock

            if action is LockAction.REFUSE:
                raise LockConflictError(
                    f"Terraform state is currently LOCKED ({lock.count} lock(s) in "
                    f"{self.table_name}).\nRefusing to destroy while a plan or apply is in "
                    "progress.\nWait for CI to finish or manually remove the lock before "
                    "uninstalling.",
                    count=lock.count,
                    lock_id=lock.lock_id,
                )

            if action is LockAction.ABORT:
                raise LockConflictError(
                    "Aborted. Wait for any running operations to finish, or manually remove "
                    "the lock.",
                    count=lock.count,
                    lock_id=lock.lock_id,
                )

            self.clear(lock)
            lock = self.check_lock()

    def clear(self, lock: LockRecord) -> None:
        if not lock.lock_id:
            raise LockConflictError(
                f"Found {lock.count} lock(s) in {self.table_name} but none has a readable "
                "LockID; remove the lock manually.",
                count=lock.count,
            )
        logger.info("Removing stale lock %s...", lock.lock_id)
        aws.delete_lock(self.ddb_client, self.table_name, lock.lock_id)
        logger.info("Lock removed.")

    def _ask_removal(self, lock: LockRecord) -> bool:
        logger.warning("Found %d active state lock(s) in %s", lock.count, self.table_name)
        self.prompter.show()
        self.prompter.show("Lock details:")
        self.prompter.show(f"  {'Lock ID:':<20} {lock.lock_id or 'unknown'}")
        self.prompter.show()
        self.prompter.show("This lock may be stale if:")
        for hint in _STALE_HINTS:
            self.prompter.show(hint)
        self.prompter.show()
        return lock_removal_confirmed(self.prompter.ask("Remove this lock? [y/N]: "))
