"""
persistence.py — Keep work package statuses in line with a run's result.

The orchestrator itself never writes anywhere. Whoever calls it owns
the work package repository and is expected to:

  * mark the requested ids in_progress before the run,
  * mark succeeded ids completed afterwards,
  * put failed ids back to pending so they can be resubmitted.

These helpers do exactly that against anything with a set_status()
method. A failed status write is logged and skipped; one flaky row
shouldn't leave the rest of the batch stuck in in_progress.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Protocol

from tender_generation.schemas import RunResult

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"


class WorkPackageStatusStore(Protocol):
    def set_status(self, work_package_id: str, status: str) -> None: ...


class InMemoryStatusStore:
    """Dict-backed store for the API and the tests."""

    def __init__(self):
        self._statuses: Dict[str, str] = {}

    def set_status(self, work_package_id: str, status: str) -> None:
        self._statuses[work_package_id] = status

    def get_status(self, work_package_id: str) -> Optional[str]:
        return self._statuses.get(work_package_id)


def _set_many(store: WorkPackageStatusStore, ids: Iterable[str], status: str) -> int:
    written = 0
    for wp_id in ids:
        try:
            store.set_status(wp_id, status)
            written += 1
        except Exception as exc:
            logger.error("Failed to set %s to %s: %s", wp_id, status, exc)
    return written


def mark_in_progress(store: WorkPackageStatusStore, ids: Iterable[str]) -> int:
    return _set_many(store, ids, STATUS_IN_PROGRESS)


def apply_run_result(store: WorkPackageStatusStore, result: RunResult) -> int:
    """Succeeded → completed, failed → pending. Returns rows written."""
    written = _set_many(store, result.succeeded, STATUS_COMPLETED)
    written += _set_many(store, result.failed_ids, STATUS_PENDING)
    logger.info(
        "Status sync: %d completed, %d reverted to pending (%d writes ok)",
        len(result.succeeded), len(result.failed), written,
    )
    return written
