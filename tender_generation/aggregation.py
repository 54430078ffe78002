"""
aggregation.py — Collect batch outcomes into the final RunResult.

Batches finish in whatever order the endpoint answers them, so nothing
here assumes batch 0 lands before batch 1. Each outcome is recorded
once, and every id in it goes to exactly one of succeeded / failed.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from tender_generation.progress import ProgressEmitter
from tender_generation.schemas import (
    BATCH_PROMPT,
    BatchOutcome,
    FailedItem,
    RunResult,
)

logger = logging.getLogger(__name__)


class ResultAggregator:
    """
    Accumulates terminal outcomes and fires the matching terminal events.

    Recording and emitting happen together so the progress stream and the
    returned result can never disagree about an id.
    """

    def __init__(self, emitter: Optional[ProgressEmitter] = None):
        self._emitter = emitter or ProgressEmitter()
        self._succeeded: List[str] = []
        self._failed: List[FailedItem] = []
        self._retries = 0
        self._modes: List[str] = []

    def record(self, outcome: BatchOutcome) -> None:
        self._retries += outcome.retries
        if outcome.execution_mode:
            self._modes.append(outcome.execution_mode)

        for item in outcome.items:
            if item.success:
                self._succeeded.append(item.work_package_id)
                self._emitter.succeeded(item.work_package_id)
            else:
                error = item.error or "Generation failed"
                self._failed.append(FailedItem(work_package_id=item.work_package_id, error=error))
                self._emitter.failed(item.work_package_id, error)

    def execution_mode(self) -> Optional[str]:
        """A degraded mode from any batch wins over the normal one."""
        for mode in self._modes:
            if mode != BATCH_PROMPT:
                return mode
        return BATCH_PROMPT if self._modes else None

    def result(self) -> RunResult:
        result = RunResult(
            succeeded=list(self._succeeded),
            failed=list(self._failed),
            execution_mode=self.execution_mode(),
            retries=self._retries,
        )
        logger.info(
            "Run finished: %s (%d failed, %d rate-limit retries)",
            result.summary(), len(result.failed), result.retries,
        )
        return result
