"""
schemas.py — Pydantic v2 models for batch generation.

Two families live here:

  * Wire models (BatchRequest, ErrorEnvelope, BatchResponse) that mirror
    the generate-batch endpoint's JSON exactly, camelCase aliases and all.
  * Run models (ProgressEvent, BatchOutcome, RunResult) that the
    orchestrator hands back to callers.

Wire models ignore unknown fields. The endpoint adds bookkeeping keys
(totalSaved, correlationId, ...) whenever someone needs them for a
dashboard, and a new key should never turn a good batch into a failure.
"""

from __future__ import annotations
import json
import logging
import math
from typing import Any, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

ProgressState = Literal["queued", "running", "success", "error"]

BATCH_PROMPT = "batch_prompt"
FALLBACK_SEQUENTIAL = "fallback_sequential"

INVALID_ITEM_MESSAGE = "Invalid result entry from generation endpoint"


def _as_message(v: Any) -> Optional[str]:
    """Error fields arrive as strings, {"message": ...} objects, or worse."""
    if v is None or isinstance(v, str):
        return v
    if isinstance(v, dict) and isinstance(v.get("message"), str):
        return v["message"]
    return json.dumps(v, default=str)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ── Outbound request / inbound envelopes ──────────────────────────────────

class BatchRequest(_WireModel):
    """Body POSTed to /api/projects/{id}/generate-batch."""
    work_package_ids: List[str] = Field(..., alias="workPackageIds")
    instructions: Optional[str] = None

    @field_validator("work_package_ids")
    @classmethod
    def batch_must_not_be_empty(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("a batch must contain at least one work package id")
        return v


class ErrorEnvelope(_WireModel):
    """Body of any non-2xx response. Every field is optional and parsed on
    its own, because proxies and crashed handlers send whatever they like.
    A bad error field must not cost us the server's retry delay."""
    error: Optional[str] = None
    suggestion: Optional[str] = None
    is_rate_limit_error: bool = Field(default=False, alias="isRateLimitError")
    retry_delay_seconds: Optional[float] = Field(default=None, alias="retryDelaySeconds")

    @field_validator("error", "suggestion", mode="before")
    @classmethod
    def coerce_message(cls, v: Any) -> Optional[str]:
        return _as_message(v)

    @field_validator("is_rate_limit_error", mode="before")
    @classmethod
    def coerce_flag(cls, v: Any) -> bool:
        return v is True

    @field_validator("retry_delay_seconds", mode="before")
    @classmethod
    def coerce_delay(cls, v: Any) -> Optional[float]:
        if isinstance(v, bool):
            return None
        try:
            delay = float(v)
        except (TypeError, ValueError):
            return None
        return delay if math.isfinite(delay) else None


class BatchItemResult(_WireModel):
    """One work package's outcome inside a successful batch response."""
    work_package_id: str = Field(..., alias="workPackageId")
    success: bool
    error: Optional[str] = None

    @field_validator("error", mode="before")
    @classmethod
    def coerce_message(cls, v: Any) -> Optional[str]:
        return _as_message(v)


class BatchResponse(_WireModel):
    """Body of a 2xx response.

    Entries in results are validated one by one. A malformed entry that
    still names its work package becomes a failure for that id alone;
    one without a usable id is dropped, and the id is later reported as
    missing. Siblings are unaffected either way.
    """
    execution_mode: Optional[str] = Field(default=None, alias="executionMode")
    results: List[BatchItemResult]

    @field_validator("execution_mode", mode="before")
    @classmethod
    def ignore_odd_mode(cls, v: Any) -> Optional[str]:
        return v if isinstance(v, str) else None

    @field_validator("results", mode="before")
    @classmethod
    def validate_each_item(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return v
        items: List[BatchItemResult] = []
        for raw in v:
            try:
                items.append(BatchItemResult.model_validate(raw))
            except ValidationError as exc:
                wp_id = raw.get("workPackageId") if isinstance(raw, dict) else None
                if not isinstance(wp_id, str):
                    logger.warning("Dropping result entry without a work package id: %r", raw)
                    continue
                logger.warning(
                    "Malformed result for %s (%d validation error(s))", wp_id, exc.error_count()
                )
                items.append(BatchItemResult(
                    work_package_id=wp_id, success=False, error=INVALID_ITEM_MESSAGE,
                ))
        return items


# ── Run models ────────────────────────────────────────────────────────────

class ProgressEvent(BaseModel):
    """A single state transition for one work package."""
    model_config = ConfigDict(populate_by_name=True)

    work_package_id: str = Field(..., alias="workPackageId")
    state: ProgressState
    message: Optional[str] = None


class ItemOutcome(BaseModel):
    """Terminal disposition of one id after its batch resolved."""
    work_package_id: str
    success: bool
    error: Optional[str] = None


class BatchOutcome(BaseModel):
    """Classified result of one batch, after any rate-limit retries."""
    batch: List[str]
    items: List[ItemOutcome] = Field(default_factory=list)
    execution_mode: Optional[str] = None
    retries: int = 0

    @classmethod
    def failed_batch(
        cls,
        batch: List[str],
        error: str,
        retries: int = 0,
    ) -> "BatchOutcome":
        """The same error for every id in the batch."""
        return cls(
            batch=list(batch),
            items=[
                ItemOutcome(work_package_id=wp_id, success=False, error=error)
                for wp_id in batch
            ],
            retries=retries,
        )


class FailedItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    work_package_id: str = Field(..., alias="workPackageId")
    error: str


class RunResult(BaseModel):
    """What a caller gets back once every batch has resolved."""
    model_config = ConfigDict(populate_by_name=True)

    succeeded: List[str] = Field(default_factory=list)
    failed: List[FailedItem] = Field(default_factory=list)
    execution_mode: Optional[str] = Field(default=None, alias="executionMode")
    retries: int = 0

    @property
    def failed_ids(self) -> List[str]:
        return [item.work_package_id for item in self.failed]

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    def summary(self) -> str:
        """Human-readable count, e.g. "3 of 5 succeeded"."""
        return f"{len(self.succeeded)} of {self.total} succeeded"
