"""
Backend contract and dispatch helpers for routeq.

A backend is anything with an async ``generate(prompt, model)`` method.
routeq ships no concrete SDK clients; embedders register their own under
the same ids used in the pricing table.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

from .errors import NotFoundError
from .queue import PromptRecord, WorkQueue

_log = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    """What a backend returns for one prompt."""
    text: str
    tokens_used: Optional[int] = None  # None when the backend does not report usage


class Backend(Protocol):
    """Async text-generation backend. May raise on any failure."""

    async def generate(self, prompt: str, model: str) -> GenerationResult:
        ...


async def process_next(queue: WorkQueue, backends: Dict[str, Backend]) -> Optional[PromptRecord]:
    """Dequeue one record and run it on its routed backend.

    Whatever the backend raises is stored on the record as-is via
    :meth:`WorkQueue.fail`; nothing is retried or re-raised. A record routed
    to a backend missing from *backends* fails with :class:`NotFoundError`.

    Returns:
        The processed record (now COMPLETED or FAILED), or None when the
        queue is empty.
    """
    record = queue.dequeue()
    if record is None:
        return None

    backend = backends.get(record.route.backend)
    if backend is None:
        queue.fail(record.id, NotFoundError(f"No backend registered for {record.route.backend!r}"))
        return record

    try:
        result = await backend.generate(record.text, record.route.model)
    except asyncio.CancelledError:
        queue.fail(record.id, asyncio.CancelledError("processing cancelled"))
        raise
    except Exception as exc:
        _log.debug("Backend %s failed on %s: %r", record.route.backend, record.id, exc)
        queue.fail(record.id, exc)
    else:
        queue.complete(record.id, result)
    return record


async def drain(queue: WorkQueue, backends: Dict[str, Backend],
                limit: Optional[int] = None) -> List[PromptRecord]:
    """Process pending records in priority order until empty (or *limit*)."""
    processed: List[PromptRecord] = []
    while limit is None or len(processed) < limit:
        record = await process_next(queue, backends)
        if record is None:
            break
        processed.append(record)
    return processed
