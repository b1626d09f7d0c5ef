"""
iac_runner.inventory — Load and persist the inventory record.

The file's presence is the only "is installed" signal. Writes go to a temp
file in the same directory and are moved into place with os.replace, so a
crash mid-write leaves either the old record or the new one, never a torn one.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from enum import StrEnum
from pathlib import Path
from typing import Any

from iac_runner.exceptions import PreflightError
from iac_runner.models import InventoryRecord

logger = logging.getLogger(__name__)


class ExistingInventoryChoice(StrEnum):
    RETRY = "retry"
    ABORT = "abort"


def resolve_existing_inventory(answer: str) -> ExistingInventoryChoice:
    """Map the operator's answer at the re-install prompt to an outcome."""
    if answer.strip() in {"r", "R"}:
        return ExistingInventoryChoice.RETRY
    return ExistingInventoryChoice.ABORT


def atomic_write_text(path: Path, text: str) -> None:
    """Write text to path with temp-file-then-rename semantics."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=str(path.parent),
            prefix=path.name + ".",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            temp_path = Path(tmp.name)
            tmp.write(text)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(temp_path, path)
    finally:
        if temp_path is not None and temp_path.exists():
            temp_path.unlink(missing_ok=True)


class InventoryStore:
    """File-backed store for the single InventoryRecord of a checkout."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> InventoryRecord | None:
        """Return the record, None when absent. Unparseable records are fatal."""
        if not self.path.exists():
            return None
        try:
            data: Any = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise PreflightError(f"Cannot parse {self.path.name}: {exc}") from exc
        return InventoryRecord.from_dict(data)

    def save(self, record: InventoryRecord) -> None:
        payload = json.dumps(record.to_dict(), indent=2) + "\n"
        atomic_write_text(self.path, payload)
        logger.debug("Wrote %s", self.path)

    def merge(self, record: InventoryRecord, **updates: str) -> InventoryRecord:
        """Set fields on the in-memory record and persist it."""
        for key, value in updates.items():
            if not hasattr(record, key):
                raise AttributeError(f"InventoryRecord has no field {key!r}")
            setattr(record, key, value)
        self.save(record)
        return record

    def delete(self) -> bool:
        if not self.path.exists():
            return False
        self.path.unlink()
        logger.info("Deleted %s", self.path.name)
        return True
