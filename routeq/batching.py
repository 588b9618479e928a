"""
Batch accumulation for routeq.

Groups pending prompts whose text is similar to an open batch's
representative. A batch is only a grouping: a ready batch is handed back
as a member list and the caller decides whether to dispatch it as one call
or many. No cost is deduplicated across members.
"""

import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .errors import ConfigError
from .similarity import TextSimilarityIndex

DEFAULT_MAX_BATCH_SIZE = 5
DEFAULT_BATCH_TIMEOUT = 5.0  # seconds
DEFAULT_READY_SIZE = 3
DEFAULT_SIMILARITY_THRESHOLD = 0.6


@dataclass
class Batch:
    """A time/size-bounded group of similar prompts."""
    id: str
    representative: str
    members: List[str]
    created_at: float

    def age(self, now: float) -> float:
        return now - self.created_at

    def __len__(self) -> int:
        return len(self.members)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'representative': self.representative,
            'members': list(self.members),
            'created_at': self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Batch':
        return cls(
            id=data['id'],
            representative=data['representative'],
            members=list(data.get('members', [])),
            created_at=float(data['created_at']),
        )


@dataclass
class BatchAssignment:
    """Where ``add_to_batch`` placed an item."""
    batch_id: str
    is_new: bool
    similarity: Optional[float] = None  # None for a freshly opened batch


class BatchAccumulator:
    """Collects similar items into batches bounded by size and age.

    A batch accepts new members while ``age < batch_timeout`` and it holds
    fewer than ``max_batch_size`` items. It becomes ready once it holds
    ``ready_size`` members or its timeout elapses.
    """

    def __init__(
        self,
        index: Optional[TextSimilarityIndex] = None,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        batch_timeout: float = DEFAULT_BATCH_TIMEOUT,
        ready_size: int = DEFAULT_READY_SIZE,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the accumulator.

        Args:
            index: Similarity index to compare texts with. Share the queue's
                index so batching benefits from corpus statistics.
            max_batch_size: Max members per batch.
            batch_timeout: Seconds a batch stays open for new members.
            ready_size: Member count at which a batch is ready early.
            similarity_threshold: Similarity to the representative that must
                be exceeded to join a batch.
            clock: Time source.
        """
        if max_batch_size < 1:
            raise ConfigError(f"max_batch_size must be >= 1, got {max_batch_size}")
        if batch_timeout <= 0:
            raise ConfigError(f"batch_timeout must be > 0, got {batch_timeout}")
        if ready_size < 1:
            raise ConfigError(f"ready_size must be >= 1, got {ready_size}")
        if not (0.0 <= similarity_threshold <= 1.0):
            raise ConfigError(
                f"similarity_threshold must be 0.0–1.0, got {similarity_threshold}"
            )

        self.index = index if index is not None else TextSimilarityIndex()
        self.max_batch_size = max_batch_size
        self.batch_timeout = batch_timeout
        self.ready_size = ready_size
        self.similarity_threshold = similarity_threshold
        self._clock = clock
        self.batches: Dict[str, Batch] = {}

    def _is_open(self, batch: Batch, now: float) -> bool:
        return batch.age(now) < self.batch_timeout and len(batch) < self.max_batch_size

    def add_to_batch(self, item_id: str, text: str) -> BatchAssignment:
        """Place an item in the first open batch it is similar to.

        Opens a new batch with *text* as representative when none matches.
        """
        now = self._clock()
        for batch in self.batches.values():
            if not self._is_open(batch, now):
                continue
            sim = self.index.similarity(text, batch.representative)
            if sim > self.similarity_threshold:
                batch.members.append(item_id)
                return BatchAssignment(batch_id=batch.id, is_new=False, similarity=sim)

        batch = Batch(
            id=f"batch_{uuid.uuid4().hex[:12]}",
            representative=text,
            members=[item_id],
            created_at=now,
        )
        self.batches[batch.id] = batch
        return BatchAssignment(batch_id=batch.id, is_new=True)

    def is_ready(self, batch: Batch) -> bool:
        return len(batch) >= self.ready_size or batch.age(self._clock()) >= self.batch_timeout

    def get_ready_batch(self, batch_id: str) -> Optional[Batch]:
        """Remove and return the batch if it is ready, else None."""
        batch = self.batches.get(batch_id)
        if batch is None or not self.is_ready(batch):
            return None
        del self.batches[batch_id]
        return batch

    def ready_batch_ids(self) -> List[str]:
        return [b.id for b in self.batches.values() if self.is_ready(b)]

    def cleanup(self) -> List[Batch]:
        """Drop batches older than twice the timeout, ready or not.

        Returns:
            The dropped batches, so their members can be un-batched
        """
        now = self._clock()
        expired = [b for b in self.batches.values() if b.age(now) > 2 * self.batch_timeout]
        for batch in expired:
            del self.batches[batch.id]
        return expired

    def flush_all(self) -> List[Batch]:
        """Force-close every open batch, e.g. at shutdown."""
        batches = list(self.batches.values())
        self.batches.clear()
        return batches

    def __len__(self) -> int:
        return len(self.batches)
