"""
main.py — Command-line entry point for TenderDraftPro.

Runs one parallel generation over the given work package ids against
the configured generate-batch endpoint and prints the RunResult as JSON.
Handy for re-running the failures from a UI session without clicking
through the dialog again:

    python -m tender_generation.main proj_42 wp_7 wp_9 --concurrency 1
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import List, Optional

from tender_generation.client import BatchGenerationClient
from tender_generation.config import config
from tender_generation.orchestrator import parallel_generate_documents
from tender_generation.schemas import ProgressEvent, RunResult

logger = logging.getLogger("tender_generation")


def _log_progress(event: ProgressEvent) -> None:
    if event.state == "error":
        logger.warning("  ✗ %s: %s", event.work_package_id, event.message)
    elif event.state == "success":
        logger.info("  ✓ %s", event.work_package_id)
    else:
        logger.debug("  · %s %s", event.work_package_id, event.state)


async def run_generation(
    project_id: str,
    work_package_ids: List[str],
    instructions: Optional[str] = None,
    max_batch_size: Optional[int] = None,
    concurrency: Optional[int] = None,
    base_url: Optional[str] = None,
) -> RunResult:
    async with BatchGenerationClient(base_url=base_url) as client:
        return await parallel_generate_documents(
            project_id,
            work_package_ids,
            instructions=instructions,
            max_batch_size=max_batch_size,
            concurrency=concurrency,
            on_progress=_log_progress,
            client=client,
        )


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point. Returns the process exit code."""
    parser = argparse.ArgumentParser(
        prog="tender_generation",
        description="TenderDraftPro — Generate work package content in parallel batches",
    )
    parser.add_argument("project_id", help="Project the work packages belong to")
    parser.add_argument("work_package_ids", nargs="+", help="Work package ids to generate")
    parser.add_argument("--instructions", default=None, help="Extra guidance for the model")
    parser.add_argument("--batch-size", type=int, default=None,
                        help=f"Ids per request (default: {config.generation.max_batch_size})")
    parser.add_argument("--concurrency", type=int, default=None,
                        help=f"Parallel requests (default: {config.generation.concurrency})")
    parser.add_argument("--base-url", default=None,
                        help=f"Generation backend (default: {config.generation.base_url})")
    parser.add_argument("--output", "-o", default=None, help="JSON output path (default: stdout)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        result = asyncio.run(run_generation(
            args.project_id,
            args.work_package_ids,
            instructions=args.instructions,
            max_batch_size=args.batch_size,
            concurrency=args.concurrency,
            base_url=args.base_url,
        ))
    except ValueError as exc:
        logger.error("Invalid input: %s", exc)
        return 1

    logger.info("%s", result.summary())
    payload = result.model_dump(by_alias=True)
    if args.output:
        os.makedirs(os.path.dirname(args.output) or ".", exist_ok=True)
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
        logger.info("Output written to: %s", args.output)
    else:
        print(json.dumps(payload, indent=2, ensure_ascii=False))

    return 0 if not result.failed else 1


if __name__ == "__main__":
    sys.exit(main())
