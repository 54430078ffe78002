"""
config.py — Central configuration for TenderDraftPro.

All tunable params live here.  In production most of these are
overridden by environment variables, so the same build can point at the
staging or the production generation backend.

The batching numbers mirror the limits of the generate-batch endpoint:
the server rejects anything over two work packages per request with a
400, and it answers 429 with a retryDelaySeconds hint when the model
provider throttles us.
"""

from dataclasses import dataclass, field
import os
import logging

logger = logging.getLogger(__name__)


@dataclass
class GenerationConfig:
    """
    Batch generation settings.

    max_batch_size is the client-side partition size. Keep it at or below
    server_max_batch_size unless you want the endpoint's "Select up to N
    documents" rejection surfaced for every id in the oversized batch.
    """
    base_url: str = os.getenv("GENERATION_BASE_URL", "http://localhost:3000")
    max_batch_size: int = int(os.getenv("GENERATION_MAX_BATCH_SIZE", "2"))
    server_max_batch_size: int = 2
    concurrency: int = int(os.getenv("GENERATION_CONCURRENCY", "2"))

    # 429 handling. The endpoint always sends retryDelaySeconds, the 60s
    # fallback only kicks in when a proxy in front of it eats the body.
    max_rate_limit_retries: int = 3
    default_retry_delay_seconds: float = 60.0

    # The endpoint itself is capped at 5 minutes, no point waiting longer.
    request_timeout_seconds: float = float(
        os.getenv("GENERATION_TIMEOUT_SECONDS", "300")
    )


@dataclass
class Config:
    """Master config — instantiated once, used everywhere."""
    generation: GenerationConfig = field(default_factory=GenerationConfig)

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def __post_init__(self):
        """Validate config on startup so a bad env var fails at import,
        not halfway through a run."""
        gen = self.generation
        if gen.max_batch_size < 1:
            raise ValueError(f"max_batch_size must be >= 1, got {gen.max_batch_size}")
        if gen.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {gen.concurrency}")
        if gen.max_rate_limit_retries < 0:
            raise ValueError(
                f"max_rate_limit_retries must be >= 0, got {gen.max_rate_limit_retries}"
            )
        if gen.request_timeout_seconds <= 0:
            raise ValueError(
                f"request_timeout_seconds must be > 0, got {gen.request_timeout_seconds}"
            )

        if gen.max_batch_size > gen.server_max_batch_size:
            logger.warning(
                "max_batch_size=%d exceeds the endpoint cap of %d. "
                "Oversized batches will be rejected with HTTP 400.",
                gen.max_batch_size, gen.server_max_batch_size,
            )


# Singleton — every module imports this same instance
config = Config()
