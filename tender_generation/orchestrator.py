"""
orchestrator.py — Parallel batch generation.

This is the entry point that ties everything together:

    ids ─► create_smart_batches ─► BatchScheduler (N workers)
                                      │  each worker: claim next batch,
                                      │  emit running, call the endpoint
                                      ▼
                                 ResultAggregator ─► RunResult

The scheduler runs min(concurrency, len(batches)) worker coroutines
over a shared cursor, so at most `concurrency` requests are ever in
flight however many batches there are and however slow each one is.
All state lives on the scheduler instance, which means two runs in the
same process (two users clicking "Generate" at once) don't see each
other's counters.

Expected failures (transport, rate limit, rejection, per-item) end up in
RunResult.failed. Only bugs raise.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Hashable, List, Optional, Sequence

from tender_generation.aggregation import ResultAggregator
from tender_generation.batching import create_smart_batches
from tender_generation.client import BatchGenerationClient
from tender_generation.config import config
from tender_generation.progress import ProgressEmitter, ProgressSink
from tender_generation.schemas import RunResult

logger = logging.getLogger(__name__)


class BatchCursor:
    """Hands out batch indexes, each exactly once."""

    def __init__(self, total: int):
        self._total = total
        self._next = 0

    def claim(self) -> Optional[int]:
        # No await between the read and the increment, so under asyncio
        # two workers can never get the same index.
        if self._next >= self._total:
            return None
        index = self._next
        self._next += 1
        return index


class BatchScheduler:
    """
    Bounded worker pool for one run.

    Usage:
        scheduler = BatchScheduler(client, batches, concurrency=2,
                                   emitter=emitter, aggregator=aggregator)
        await scheduler.run("proj_1")
    """

    def __init__(
        self,
        client: BatchGenerationClient,
        batches: List[List[str]],
        concurrency: int,
        emitter: ProgressEmitter,
        aggregator: ResultAggregator,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self._client = client
        self._batches = batches
        self._cursor = BatchCursor(len(batches))
        self._emitter = emitter
        self._aggregator = aggregator
        self.worker_count = min(concurrency, len(batches))
        self.in_flight = 0
        self.peak_in_flight = 0

    async def run(self, project_id: str, instructions: Optional[str] = None) -> None:
        """Start the workers and wait for all of them to drain."""
        if not self._batches:
            return

        logger.info(
            "Dispatching %d batches on %d workers for project %s",
            len(self._batches), self.worker_count, project_id,
        )
        tasks = [
            asyncio.create_task(
                self._worker(project_id, instructions),
                name=f"batch-worker-{n}",
            )
            for n in range(self.worker_count)
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _worker(self, project_id: str, instructions: Optional[str]) -> None:
        while True:
            index = self._cursor.claim()
            if index is None:
                return
            batch = self._batches[index]
            self._emitter.running(batch)

            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            try:
                outcome = await self._client.generate_batch(project_id, batch, instructions)
            finally:
                self.in_flight -= 1

            self._aggregator.record(outcome)


async def parallel_generate_documents(
    project_id: str,
    work_package_ids: Sequence[str],
    instructions: Optional[str] = None,
    max_batch_size: Optional[int] = None,
    concurrency: Optional[int] = None,
    on_progress: Optional[ProgressSink] = None,
    client: Optional[BatchGenerationClient] = None,
    batch_key: Optional[Callable[[str], Hashable]] = None,
) -> RunResult:
    """
    Generate work packages in parallel batches with bounded concurrency.

    Args:
        project_id:       Project the work packages belong to.
        work_package_ids: Ids to generate, in the order they were selected.
        instructions:     Optional free-text guidance forwarded to the model.
        max_batch_size:   Ids per request (default from config).
        concurrency:      Max simultaneous requests (default from config).
        on_progress:      Called synchronously with every ProgressEvent.
        client:           Reuse an existing client. When omitted one is
                          created from config and closed afterwards.
        batch_key:        Optional affinity key, see create_smart_batches().

    Returns:
        RunResult where every requested id is in exactly one of
        succeeded / failed.
    """
    ids = list(work_package_ids)
    if not ids:
        return RunResult()

    max_batch_size = max_batch_size if max_batch_size is not None else config.generation.max_batch_size
    concurrency = concurrency if concurrency is not None else config.generation.concurrency
    if max_batch_size < 1:
        raise ValueError(f"max_batch_size must be >= 1, got {max_batch_size}")
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")

    batches = create_smart_batches(ids, max_batch_size, key=batch_key)
    emitter = ProgressEmitter(on_progress)
    aggregator = ResultAggregator(emitter)

    emitter.queued(ids)

    owns_client = client is None
    if owns_client:
        client = BatchGenerationClient()
    try:
        scheduler = BatchScheduler(client, batches, concurrency, emitter, aggregator)
        await scheduler.run(project_id, instructions)
    finally:
        if owns_client:
            await client.aclose()

    return aggregator.result()
