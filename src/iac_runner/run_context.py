"""
iac_runner.run_context — Scoped acquisitions released on every exit path.

A RunContext is entered with ``with``; anything acquired inside it is
released in reverse acquisition order when the block exits, whether it
finished, raised, or was interrupted with Ctrl-C. Release failures are
logged as CleanupError warnings and never mask the original outcome.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType

from iac_runner.exceptions import CleanupError, PreflightError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScopedAcquisition:
    resource: str
    release: Callable[[], None]


class RunContext:
    def __init__(self) -> None:
        self._acquisitions: list[ScopedAcquisition] = []
        self.cleanup_errors: list[CleanupError] = []

    def __enter__(self) -> RunContext:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release_all()

    @property
    def held(self) -> tuple[str, ...]:
        return tuple(acq.resource for acq in self._acquisitions)

    def acquire(self, resource: str, release: Callable[[], None]) -> None:
        self._acquisitions.append(ScopedAcquisition(resource=resource, release=release))

    def release_all(self) -> None:
        while self._acquisitions:
            acquisition = self._acquisitions.pop()
            try:
                acquisition.release()
            except Exception as exc:
                error = CleanupError(f"Failed to release {acquisition.resource}: {exc}")
                self.cleanup_errors.append(error)
                logger.warning("%s", error)

    def scratch_file(self, path: Path) -> Path:
        """Register a file the run creates so it is removed on exit."""

        def _remove() -> None:
            if path.exists():
                path.unlink()
                logger.info("Removed %s", path.name)

        self.acquire(str(path), _remove)
        return path

    def borrow_file(self, target: Path, template: Path) -> bool:
        """Copy template to target for the duration of the run.

        Returns False (and borrows nothing) when target already exists.
        """
        if target.exists():
            return False
        if not template.exists():
            raise PreflightError(
                f"No {target.name} found in {target.parent} or {template.parent}\n"
                "Cannot connect to remote state backend without it."
            )
        shutil.copyfile(template, target)
        logger.info("Temporarily copied %s into %s", template, target.parent)

        def _return() -> None:
            if target.exists():
                target.unlink()
                logger.info("Removed borrowed %s", target)

        self.acquire(str(target), _return)
        return True
