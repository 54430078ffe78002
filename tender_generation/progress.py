"""
progress.py — Per-work-package progress reporting.

The UI shows one row per document with a live state pill, so the
orchestrator reports every id individually no matter which batch or
worker touched it. Events go to a caller-supplied sink synchronously;
the sink must not block, it runs on the event loop.

Per id the order is always queued → running → success | error, and the
terminal state fires exactly once.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from tender_generation.schemas import ProgressEvent, ProgressState

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressEvent], None]


class ProgressEmitter:
    """Thin wrapper around an optional sink with one method per transition."""

    def __init__(self, sink: Optional[ProgressSink] = None):
        self._sink = sink

    def queued(self, ids: Iterable[str]) -> None:
        for wp_id in ids:
            self._emit(wp_id, "queued")

    def running(self, batch: Iterable[str]) -> None:
        for wp_id in batch:
            self._emit(wp_id, "running")

    def succeeded(self, wp_id: str) -> None:
        self._emit(wp_id, "success")

    def failed(self, wp_id: str, message: str) -> None:
        self._emit(wp_id, "error", message)

    def _emit(self, wp_id: str, state: ProgressState, message: Optional[str] = None) -> None:
        logger.debug("%s → %s%s", wp_id, state, f" ({message})" if message else "")
        if self._sink is None:
            return
        self._sink(ProgressEvent(work_package_id=wp_id, state=state, message=message))
