"""
batching.py — Split work package ids into bounded-size batches.

The generate-batch endpoint builds one combined prompt per request, so
the batch size is what keeps the prompt under the model's context limit.
Two work packages per batch is what the endpoint accepts today.

Batches are deterministic for identical input. The tests depend on it,
and so does anyone comparing two runs' logs side by side.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Hashable, List, Optional, Sequence

logger = logging.getLogger(__name__)


def create_batches(ids: Sequence[str], max_batch_size: int) -> List[List[str]]:
    """
    Chunk ids into consecutive batches of at most max_batch_size.

    The last batch may be short; it is never dropped.

    >>> create_batches(["a", "b", "c", "d", "e"], 2)
    [['a', 'b'], ['c', 'd'], ['e']]
    """
    if max_batch_size < 1:
        raise ValueError(f"max_batch_size must be >= 1, got {max_batch_size}")

    return [
        list(ids[start:start + max_batch_size])
        for start in range(0, len(ids), max_batch_size)
    ]


def create_smart_batches(
    ids: Sequence[str],
    max_batch_size: int,
    key: Optional[Callable[[str], Hashable]] = None,
) -> List[List[str]]:
    """
    Batch ids so that work packages sharing an affinity key travel together.

    Groups are ordered by the first appearance of their key, and ids keep
    their input order inside a group. Each group is then chunked on its
    own, so a batch never mixes keys. Without a key this is plain
    create_batches().

    Typical keys are the document type ("method statement", "CV", ...)
    or a coarse size bucket, which keeps one long deliverable from
    dragging a short one into a huge combined prompt.
    """
    if key is None:
        return create_batches(ids, max_batch_size)
    if max_batch_size < 1:
        raise ValueError(f"max_batch_size must be >= 1, got {max_batch_size}")

    groups: Dict[Hashable, List[str]] = {}
    for wp_id in ids:
        groups.setdefault(key(wp_id), []).append(wp_id)

    batches: List[List[str]] = []
    for group in groups.values():
        batches.extend(create_batches(group, max_batch_size))

    logger.debug(
        "Grouped %d ids into %d affinity groups, %d batches",
        len(ids), len(groups), len(batches),
    )
    return batches
