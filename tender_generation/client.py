"""
client.py — HTTP client for the generate-batch endpoint.

One call to generate_batch() is one *logical* request: it may hit the
endpoint several times if the endpoint answers 429, but the caller only
ever sees a single BatchOutcome with a disposition for every id it sent.

Failure handling, in the order we check it:

  1. Transport errors (connection refused, DNS, read timeout, our own
     overall timeout): every id in the batch fails with the same message.
  2. 2xx: the body is a per-item breakdown. Each item's own success flag
     decides its fate; one bad document never sinks its sibling, and
     neither does one malformed entry in results.
  3. Rate limited (429, or isRateLimitError in the body): sleep for the
     server's retryDelaySeconds and resend the identical batch, at most
     max_rate_limit_retries times. Only this worker sleeps.
  4. Anything else non-2xx, including the 400 "Select up to N documents"
     rejection: permanent, every id fails with the server's message.

The error body is parsed exactly once into an ErrorEnvelope before we
branch on it. A streamed body can only be consumed once.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Sequence
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from tender_generation.config import config
from tender_generation.schemas import (
    BatchItemResult,
    BatchOutcome,
    BatchRequest,
    BatchResponse,
    ErrorEnvelope,
    ItemOutcome,
)

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]

REQUEST_TIMEOUT_MESSAGE = "Request timeout"
RATE_LIMIT_MESSAGE = "Rate limit exceeded"
MISSING_RESULT_MESSAGE = "No result returned for work package"
ITEM_FAILED_MESSAGE = "Generation failed"


class BatchResponseError(ValueError):
    """A 2xx response whose body is not a valid batch envelope."""


def parse_error_envelope(response: httpx.Response) -> ErrorEnvelope:
    """Parse a non-2xx body once. Garbage bodies become an empty envelope."""
    try:
        return ErrorEnvelope.model_validate_json(response.content)
    except ValidationError:
        logger.debug(
            "Unparseable error body (HTTP %d): %r",
            response.status_code, response.content[:200],
        )
        return ErrorEnvelope()


def parse_batch_response(response: httpx.Response) -> BatchResponse:
    try:
        return BatchResponse.model_validate_json(response.content)
    except ValidationError as exc:
        raise BatchResponseError(
            f"Invalid response from generation endpoint (HTTP {response.status_code}): "
            f"{exc.error_count()} validation error(s)"
        ) from exc


def is_rate_limited(response: httpx.Response, envelope: ErrorEnvelope) -> bool:
    return (
        response.status_code == httpx.codes.TOO_MANY_REQUESTS
        or envelope.is_rate_limit_error
    )


def classify_results(
    batch: Sequence[str],
    results: List[BatchItemResult],
) -> List[ItemOutcome]:
    """
    Match the server's per-item results back to the ids we sent.

    Ids are matched as a multiset, so a batch that contains the same id
    twice needs two results for it. Ids the server never mentioned fail;
    results for ids we never sent are dropped.
    """
    by_id: Dict[str, Deque[BatchItemResult]] = {}
    for item in results:
        by_id.setdefault(item.work_package_id, deque()).append(item)

    outcomes: List[ItemOutcome] = []
    for wp_id in batch:
        queue = by_id.get(wp_id)
        if not queue:
            logger.warning("No result for work package %s in batch response", wp_id)
            outcomes.append(
                ItemOutcome(work_package_id=wp_id, success=False, error=MISSING_RESULT_MESSAGE)
            )
            continue

        item = queue.popleft()
        if item.success:
            outcomes.append(ItemOutcome(work_package_id=wp_id, success=True))
        else:
            outcomes.append(
                ItemOutcome(
                    work_package_id=wp_id,
                    success=False,
                    error=item.error or ITEM_FAILED_MESSAGE,
                )
            )

    unexpected = [wp_id for wp_id, queue in by_id.items() for _ in queue]
    if unexpected:
        logger.warning("Ignoring results for ids not in the batch: %s", unexpected)

    return outcomes


class BatchGenerationClient:
    """
    Async client for POST /api/projects/{project_id}/generate-batch.

    Usage:
        async with BatchGenerationClient() as client:
            outcome = await client.generate_batch("proj_1", ["wp1", "wp2"])

    transport and sleep are injectable so tests can swap in an
    httpx.MockTransport and a sleep that does not actually wait.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_rate_limit_retries: Optional[int] = None,
        default_retry_delay_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        gen = config.generation
        self.base_url = base_url or gen.base_url
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else gen.request_timeout_seconds
        )
        self.max_rate_limit_retries = (
            max_rate_limit_retries
            if max_rate_limit_retries is not None
            else gen.max_rate_limit_retries
        )
        self.default_retry_delay_seconds = (
            default_retry_delay_seconds
            if default_retry_delay_seconds is not None
            else gen.default_retry_delay_seconds
        )
        self._sleep = sleep
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout_seconds),
            transport=transport,
        )

    async def __aenter__(self) -> "BatchGenerationClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def generate_batch(
        self,
        project_id: str,
        batch: Sequence[str],
        instructions: Optional[str] = None,
    ) -> BatchOutcome:
        """Send one batch, retrying on rate limits, and classify every id."""
        batch = list(batch)
        request = BatchRequest(work_package_ids=batch, instructions=instructions)
        retries = 0

        while True:
            try:
                response = await self._post(project_id, request)
            except (asyncio.TimeoutError, httpx.TimeoutException):
                logger.error(
                    "Batch %s timed out after %.0fs", batch, self.timeout_seconds
                )
                return BatchOutcome.failed_batch(batch, REQUEST_TIMEOUT_MESSAGE, retries)
            except httpx.HTTPError as exc:
                message = str(exc) or exc.__class__.__name__
                logger.error("Batch %s transport error: %s", batch, message)
                return BatchOutcome.failed_batch(batch, message, retries)

            if response.is_success:
                try:
                    parsed = parse_batch_response(response)
                except BatchResponseError as exc:
                    logger.error("Batch %s: %s", batch, exc)
                    return BatchOutcome.failed_batch(batch, str(exc), retries)

                items = classify_results(batch, parsed.results)
                logger.info(
                    "Batch %s done: %d/%d ok (mode=%s, retries=%d)",
                    batch, sum(1 for i in items if i.success), len(items),
                    parsed.execution_mode, retries,
                )
                return BatchOutcome(
                    batch=batch,
                    items=items,
                    execution_mode=parsed.execution_mode,
                    retries=retries,
                )

            envelope = parse_error_envelope(response)

            if is_rate_limited(response, envelope):
                if retries < self.max_rate_limit_retries:
                    delay = envelope.retry_delay_seconds
                    if delay is None:
                        delay = self.default_retry_delay_seconds
                    delay = max(0.0, delay)
                    retries += 1
                    logger.warning(
                        "Batch %s rate limited. Retry %d/%d in %.1fs.",
                        batch, retries, self.max_rate_limit_retries, delay,
                    )
                    await self._sleep(delay)
                    continue

                logger.error(
                    "Batch %s still rate limited after %d retries, giving up.",
                    batch, retries,
                )
                return BatchOutcome.failed_batch(
                    batch, envelope.error or RATE_LIMIT_MESSAGE, retries
                )

            message = envelope.error or f"Batch generation failed (HTTP {response.status_code})"
            if response.status_code == httpx.codes.BAD_REQUEST:
                logger.error("Batch %s rejected by endpoint: %s", batch, message)
            else:
                logger.error(
                    "Batch %s failed with HTTP %d: %s",
                    batch, response.status_code, message,
                )
            return BatchOutcome.failed_batch(batch, message, retries)

    async def _post(self, project_id: str, request: BatchRequest) -> httpx.Response:
        # httpx timeouts are per phase (connect, read, ...). wait_for bounds
        # the whole exchange so a trickling response can't stall a worker.
        path = f"/api/projects/{quote(project_id, safe='')}/generate-batch"
        return await asyncio.wait_for(
            self._http.post(
                path,
                json=request.model_dump(by_alias=True, exclude_none=True),
            ),
            timeout=self.timeout_seconds,
        )
