"""
Work queue for routeq.

Owns the pending, in-flight, and terminal record sets. Every enqueue is
routed through the CandidateSelector, registered with the similarity index,
and (for non-urgent work) offered to the BatchAccumulator.

Lifecycle per record::

    PENDING ──dequeue──▶ PROCESSING ──complete──▶ COMPLETED
                                     └──fail─────▶ FAILED

Terminal states are final. All operations are synchronous and the queue
has no internal locking or timers: call it from one execution context, or
serialize access externally. Periodic maintenance (:meth:`WorkQueue.sweep`,
:meth:`WorkQueue.expire_stale`) is driven by the caller.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Callable, Deque, Dict, List, Optional

from .batching import Batch, BatchAccumulator
from .complexity import ComplexityResult
from .config import Config
from .costs import DEFAULT_HISTORY_LIMIT, DEFAULT_OUTPUT_RATIO, CostLedger, CostModel, PricingTable
from .errors import ConfigError, NotFoundError, RouteqError, ValidationError
from .events import (
    EVENT_COMPLETED,
    EVENT_DEQUEUED,
    EVENT_ENQUEUED,
    EVENT_FAILED,
    EVENT_FALLBACK,
    EventBus,
    Handler,
    Subscription,
)
from .selector import DEFAULT_MAX_ALTERNATIVES, DEFAULT_QUALITY, CandidateSelector, Route, Selection
from .similarity import TextSimilarityIndex
from .utils import atomic_write_json

_log = logging.getLogger(__name__)

DEFAULT_MAX_HISTORY = 1000


class Status(str, Enum):
    """Record lifecycle state."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Priority(IntEnum):
    """Named priorities. Lower is more urgent; any int is accepted."""
    URGENT = 1
    HIGH = 2
    NORMAL = 3
    LOW = 4
    BACKGROUND = 5


_TRANSITIONS = {
    Status.PENDING: {Status.PROCESSING},
    Status.PROCESSING: {Status.COMPLETED, Status.FAILED},
    Status.COMPLETED: set(),
    Status.FAILED: set(),
}


def _jsonable(value: Any) -> Any:
    """Return *value* if it survives JSON encoding, else a string stand-in."""
    if value is None:
        return None
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        if isinstance(value, BaseException):
            return f"{type(value).__name__}: {value}"
        return repr(value)


# ── PromptRecord ──────────────────────────────────────────────────────────────

@dataclass
class PromptRecord:
    """One prompt's journey through the queue."""

    id: str
    text: str
    priority: int
    created_at: float
    routing: Selection
    sequence: int = 0
    status: Status = Status.PENDING
    batch_id: Optional[str] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    duration_ms: Optional[float] = None
    result: Any = None
    error: Any = None

    @property
    def route(self) -> Route:
        return self.routing.route

    @property
    def estimated_cost(self) -> float:
        return self.routing.route.estimated_cost

    @property
    def complexity(self) -> ComplexityResult:
        return self.routing.complexity

    @property
    def is_terminal(self) -> bool:
        return self.status in (Status.COMPLETED, Status.FAILED)

    def sort_key(self):
        return (self.priority, self.estimated_cost, self.created_at, self.sequence)

    def advance(self, status: Status) -> None:
        """Move to *status*, refusing any transition the lifecycle forbids."""
        if status not in _TRANSITIONS[self.status]:
            raise RouteqError(
                f"record {self.id}: illegal transition {self.status.value} → {status.value}"
            )
        self.status = status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "priority": self.priority,
            "created_at": self.created_at,
            "sequence": self.sequence,
            "status": self.status.value,
            "routing": self.routing.to_dict(),
            "batch_id": self.batch_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_ms": self.duration_ms,
            "result": _jsonable(self.result),
            "error": _jsonable(self.error),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PromptRecord":
        return cls(
            id=data["id"],
            text=data["text"],
            priority=int(data["priority"]),
            created_at=float(data["created_at"]),
            sequence=int(data.get("sequence", 0)),
            status=Status(data.get("status", Status.PENDING.value)),
            routing=Selection.from_dict(data["routing"]),
            batch_id=data.get("batch_id"),
            started_at=data.get("started_at"),
            finished_at=data.get("finished_at"),
            duration_ms=data.get("duration_ms"),
            result=data.get("result"),
            error=data.get("error"),
        )


@dataclass
class EnqueueResult:
    """What :meth:`WorkQueue.enqueue` hands back."""
    id: str
    routing: Selection
    position: int  # 1-based position in the pending order

    @property
    def route(self) -> Route:
        return self.routing.route


@dataclass
class SimilarItem:
    """A pending record ranked by similarity to a query."""
    record: PromptRecord
    similarity: float


def _empty_stats() -> Dict[str, Any]:
    return {
        "total_enqueued": 0,
        "total_processed": 0,
        "total_failed": 0,
        "total_cost": 0.0,
        "by_backend": {},
        "by_complexity": {},
    }


# ── WorkQueue ─────────────────────────────────────────────────────────────────

class WorkQueue:
    """Cost-aware priority queue with routing and similarity batching.

    Pending records are ordered by (priority, estimated cost, arrival).
    Records with priority above ``batch_priority_cutoff`` are also grouped
    with similar pending work unless enqueued with ``no_batch=True``.
    """

    def __init__(
        self,
        config_path: str = None,
        config: Optional[Config] = None,
        budget_limit: Optional[float] = None,
        prefer_local: Optional[bool] = None,
        max_history: Optional[int] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize the queue.

        Args:
            config_path: Directory holding ``config.json``; packaged
                defaults are used when None.
            config: Pre-built :class:`Config`; takes precedence over
                ``config_path``.
            budget_limit: Spend ceiling overriding the configured one.
            prefer_local: Override the configured prefer-local routing flag.
            max_history: Override how many terminal records are retained.
            clock: Time source (seconds since epoch); ``time.time`` by default.

        Raises:
            ConfigError: If the pricing table or any setting is malformed.
        """
        self.config = config if config is not None else Config(config_path)
        self._clock = clock or time.time

        costs = self.config.get_costs()
        routing = self.config.get_routing()
        fallback = self.config.get_fallback()
        batching = self.config.get_batching()
        queue_cfg = self.config.get_queue()

        try:
            pricing = PricingTable.from_config(self.config.get_pricing())
            self.cost_model = CostModel(
                pricing,
                budget_limit=budget_limit if budget_limit is not None else costs.get("budget_limit"),
                output_ratio=costs.get("output_ratio", DEFAULT_OUTPUT_RATIO),
                history_limit=costs.get("history_limit", DEFAULT_HISTORY_LIMIT),
                clock=self._clock,
            )
            self.selector = CandidateSelector(
                self.cost_model,
                fallback_backend=fallback.get("backend", "ollama"),
                fallback_model=fallback.get("model", "llama3.2:3b"),
                prefer_local=routing.get("prefer_local", True) if prefer_local is None else prefer_local,
                quality_thresholds=routing.get("quality_thresholds"),
                default_quality=routing.get("default_quality", DEFAULT_QUALITY),
                max_alternatives=routing.get("max_alternatives", DEFAULT_MAX_ALTERNATIVES),
            )
            self.index = TextSimilarityIndex()
            self.batcher = BatchAccumulator(self.index, clock=self._clock, **batching)
            self.max_history = int(
                max_history if max_history is not None
                else queue_cfg.get("max_history", DEFAULT_MAX_HISTORY)
            )
            self.batch_priority_cutoff = int(queue_cfg.get("batch_priority_cutoff", Priority.HIGH))
        except (TypeError, ValueError) as exc:
            if isinstance(exc, ConfigError):
                raise
            raise ConfigError(f"Invalid queue configuration: {exc}") from exc
        if self.max_history <= 0:
            raise ConfigError(f"max_history must be > 0, got {self.max_history}")

        self.events = EventBus()
        self._pending: List[PromptRecord] = []
        self._in_flight: Dict[str, PromptRecord] = {}
        self._history: Deque[PromptRecord] = deque()
        self._records: Dict[str, PromptRecord] = {}
        self._sequence = 0
        self.stats: Dict[str, Any] = _empty_stats()

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def enqueue(
        self,
        text: str,
        priority: int = Priority.NORMAL,
        no_batch: bool = False,
        force_cloud: bool = False,
        record_id: Optional[str] = None,
        prefer_local: Optional[bool] = None,
    ) -> EnqueueResult:
        """Route *text* and add it to the pending set.

        Args:
            text: Prompt text; must be a non-blank string.
            priority: Lower is more urgent. See :class:`Priority`.
            no_batch: Skip similarity batching for this record.
            force_cloud: Let paid backends compete regardless of complexity.
            record_id: Caller-chosen id; generated when omitted.
            prefer_local: Per-call override of the prefer-local flag.

        Returns:
            :class:`EnqueueResult` with id, routing decision, and position.

        Raises:
            ValidationError: On non-text input, a non-integer priority, or a
                duplicate id.
        """
        if not isinstance(text, str):
            raise ValidationError(f"prompt text must be a str, got {type(text).__name__}")
        if not text.strip():
            raise ValidationError("prompt text must not be empty")
        if isinstance(priority, bool) or not isinstance(priority, int):
            raise ValidationError(f"priority must be an int, got {type(priority).__name__}")
        if record_id is None:
            record_id = f"pq_{uuid.uuid4().hex[:12]}"
        elif not isinstance(record_id, str) or not record_id:
            raise ValidationError("record_id must be a non-empty str")
        if record_id in self._records:
            raise ValidationError(f"record id {record_id!r} already exists")

        self.sweep()
        selection = self.selector.select(text, force_cloud=force_cloud, prefer_local=prefer_local)
        self.index.add_document(text)

        self._sequence += 1
        record = PromptRecord(
            id=record_id,
            text=text,
            priority=int(priority),
            created_at=self._clock(),
            routing=selection,
            sequence=self._sequence,
        )

        if record.priority > self.batch_priority_cutoff and not no_batch:
            assignment = self.batcher.add_to_batch(record.id, text)
            record.batch_id = assignment.batch_id

        self._pending.append(record)
        self._records[record.id] = record
        self._sort_pending()
        self.stats["total_enqueued"] += 1

        _log.debug(
            "Enqueued %s → %s/%s (%s, $%.6f)",
            record.id, record.route.backend, record.route.model,
            selection.complexity.level, record.estimated_cost,
        )
        if selection.fallback:
            self.events.emit(EVENT_FALLBACK, record)
        self.events.emit(EVENT_ENQUEUED, record)

        return EnqueueResult(
            id=record.id,
            routing=selection,
            position=self._pending.index(record) + 1,
        )

    def dequeue(self, record_id: Optional[str] = None) -> Optional[PromptRecord]:
        """Take the head of the pending order (or a specific pending record).

        Args:
            record_id: Claim this pending record instead of the head, e.g.
                to dispatch the members of a ready batch.

        Returns:
            The record, now PROCESSING, or None when nothing is pending.

        Raises:
            NotFoundError: If *record_id* is given but not pending.
        """
        self.sweep()
        if record_id is None:
            if not self._pending:
                return None
            record = self._pending.pop(0)
        else:
            for i, candidate in enumerate(self._pending):
                if candidate.id == record_id:
                    record = self._pending.pop(i)
                    break
            else:
                raise NotFoundError(f"No pending record {record_id!r}")

        record.advance(Status.PROCESSING)
        record.started_at = self._clock()
        self._in_flight[record.id] = record

        _log.debug("Dequeued %s", record.id)
        self.events.emit(EVENT_DEQUEUED, record)
        return record

    def complete(self, record_id: str, result: Any = None) -> bool:
        """Mark an in-flight record COMPLETED.

        Records the estimated cost in the ledger and bumps the per-backend
        and per-complexity counters.

        Returns:
            False if *record_id* is not in flight.
        """
        record = self._in_flight.pop(record_id, None)
        if record is None:
            return False

        self._finish(record, Status.COMPLETED)
        record.result = result

        backend = record.route.backend
        level = record.complexity.level
        self.stats["total_processed"] += 1
        self.stats["total_cost"] += record.estimated_cost
        self.stats["by_backend"][backend] = self.stats["by_backend"].get(backend, 0) + 1
        self.stats["by_complexity"][level] = self.stats["by_complexity"].get(level, 0) + 1

        self.cost_model.record_actual_cost(record.estimated_cost, {
            "record_id": record.id,
            "backend": backend,
            "model": record.route.model,
            "duration_ms": record.duration_ms,
        })

        self._archive(record)
        self.events.emit(EVENT_COMPLETED, record)
        return True

    def fail(self, record_id: str, error: Any = None) -> bool:
        """Mark an in-flight record FAILED, storing *error* untouched.

        No retry is attempted.

        Returns:
            False if *record_id* is not in flight.
        """
        record = self._in_flight.pop(record_id, None)
        if record is None:
            return False

        self._finish(record, Status.FAILED)
        record.error = error
        self.stats["total_failed"] += 1

        self._archive(record)
        self.events.emit(EVENT_FAILED, record)
        return True

    def _finish(self, record: PromptRecord, status: Status) -> None:
        record.advance(status)
        record.finished_at = self._clock()
        if record.started_at is not None:
            record.duration_ms = round((record.finished_at - record.started_at) * 1000, 3)
        _log.debug("Record %s %s after %sms", record.id, status.value, record.duration_ms)

    def _archive(self, record: PromptRecord) -> None:
        """Append to terminal history, dropping the oldest beyond the cap."""
        self._history.append(record)
        while len(self._history) > self.max_history:
            dropped = self._history.popleft()
            self._records.pop(dropped.id, None)

    def _sort_pending(self) -> None:
        self._pending.sort(key=PromptRecord.sort_key)

    # ── Queries ───────────────────────────────────────────────────────────

    def find_item(self, record_id: str) -> Optional[PromptRecord]:
        """Look up a pending, in-flight, or retained terminal record."""
        return self._records.get(record_id)

    def get_item(self, record_id: str) -> PromptRecord:
        """Like :meth:`find_item` but raises for unknown ids.

        Raises:
            NotFoundError: If the id is unknown or has aged out of history.
        """
        record = self._records.get(record_id)
        if record is None:
            raise NotFoundError(f"Unknown record {record_id!r}")
        return record

    def pending(self) -> List[PromptRecord]:
        """Pending records in dequeue order."""
        return list(self._pending)

    def in_flight(self) -> List[PromptRecord]:
        return list(self._in_flight.values())

    def history(self) -> List[PromptRecord]:
        """Retained terminal records, oldest first."""
        return list(self._history)

    def __len__(self) -> int:
        return len(self._pending)

    def find_similar(self, text: str, threshold: float = 0.5) -> List[SimilarItem]:
        """Rank pending records by similarity to *text*."""
        by_id = {r.id: r for r in self._pending}
        matches = self.index.find_similar(
            text, [(r.id, r.text) for r in self._pending], threshold
        )
        return [SimilarItem(record=by_id[m.key], similarity=m.similarity) for m in matches]

    def get_status(self) -> Dict[str, Any]:
        """Counts, per-backend/per-complexity breakdowns, and the ledger."""
        return {
            "pending_count": len(self._pending),
            "in_flight_count": len(self._in_flight),
            "completed_count": self.stats["total_processed"],
            "failed_count": self.stats["total_failed"],
            "total_enqueued": self.stats["total_enqueued"],
            "total_cost": round(self.stats["total_cost"], 6),
            "per_backend_counts": dict(self.stats["by_backend"]),
            "per_complexity_counts": dict(self.stats["by_complexity"]),
            "open_batches": len(self.batcher),
            "history_size": len(self._history),
            "ledger": self.cost_model.get_stats(),
        }

    # ── Batches ───────────────────────────────────────────────────────────

    def ready_batches(self) -> List[str]:
        """Ids of batches that :meth:`take_batch` would currently return."""
        return self.batcher.ready_batch_ids()

    def take_batch(self, batch_id: str) -> Optional[List[PromptRecord]]:
        """Close a ready batch and return its still-pending members.

        Members lose their ``batch_id`` but stay PENDING; dispatch them
        with ``dequeue(record_id)`` or let them drain in priority order.

        Returns:
            Member records, or None when the batch is unknown or not ready.
        """
        batch = self.batcher.get_ready_batch(batch_id)
        if batch is None:
            return None
        return self._pending_members(batch)

    def flush_batches(self) -> Dict[str, List[PromptRecord]]:
        """Force-close every open batch; maps batch id → pending members."""
        return {b.id: self._pending_members(b) for b in self.batcher.flush_all()}

    def _pending_members(self, batch: Batch) -> List[PromptRecord]:
        self._unbatch(batch)
        return [
            r for r in (self._records.get(m) for m in batch.members)
            if r is not None and r.status is Status.PENDING
        ]

    def _unbatch(self, batch: Batch) -> None:
        """Detach members from a batch that is no longer open."""
        for member_id in batch.members:
            record = self._records.get(member_id)
            if record is not None and record.batch_id == batch.id:
                record.batch_id = None

    # ── Maintenance ───────────────────────────────────────────────────────

    def sweep(self) -> List[Batch]:
        """Drop batches past twice their timeout and un-batch their members.

        The members stay queued; only the grouping is lost. Also runs at the
        start of every enqueue and dequeue.
        """
        expired = self.batcher.cleanup()
        for batch in expired:
            self._unbatch(batch)
        if expired:
            _log.debug("Swept %d expired batches", len(expired))
        return expired

    def expire_stale(self, max_age_seconds: float, error: Any = None) -> List[PromptRecord]:
        """Force-fail in-flight records older than *max_age_seconds*.

        Args:
            max_age_seconds: Max time a record may stay PROCESSING.
            error: Error stored on each expired record; a ``TimeoutError``
                describing the age limit when omitted.

        Returns:
            The records that were failed.
        """
        if max_age_seconds <= 0:
            raise ValidationError(f"max_age_seconds must be > 0, got {max_age_seconds}")
        now = self._clock()
        stale = [
            r for r in self._in_flight.values()
            if r.started_at is not None and now - r.started_at > max_age_seconds
        ]
        for record in stale:
            _log.info(
                "Force-failing %s: in flight %.1fs (limit %.1fs)",
                record.id, now - record.started_at, max_age_seconds,
            )
            self.fail(
                record.id,
                error if error is not None
                else TimeoutError(f"in flight longer than {max_age_seconds}s"),
            )
        return stale

    def subscribe(self, event: str, handler: Handler) -> Subscription:
        """Register a synchronous lifecycle handler. See :mod:`routeq.events`."""
        return self.events.subscribe(event, handler)

    def close(self) -> Dict[str, List[PromptRecord]]:
        """Flush open batches and drop all handlers."""
        flushed = self.flush_batches()
        self.events.clear()
        return flushed

    # ── Snapshots ─────────────────────────────────────────────────────────

    def export_state(self) -> Dict[str, Any]:
        """Best-effort JSON-serializable snapshot for restart continuity.

        Results and errors that do not survive JSON encoding are stored as
        strings.
        """
        return {
            "exported_at": self._clock(),
            "sequence": self._sequence,
            "pending": [r.to_dict() for r in self._pending],
            "in_flight": [r.to_dict() for r in self._in_flight.values()],
            "history": [r.to_dict() for r in self._history],
            "stats": json.loads(json.dumps(self.stats)),
            "corpus": self.index.to_dict(),
            "ledger": self.cost_model.ledger.to_dict(),
            "batches": [b.to_dict() for b in self.batcher.batches.values()],
        }

    def import_state(self, state: Dict[str, Any]) -> None:
        """Restore a snapshot produced by :meth:`export_state`.

        Budget ceiling, history caps, and routing settings come from this
        instance's configuration, not from the snapshot.

        Raises:
            ValidationError: If the queue already holds records or the
                snapshot is malformed.
        """
        if self._records or self.stats["total_enqueued"]:
            raise ValidationError("import_state requires a queue with no records")
        if not isinstance(state, dict):
            raise ValidationError("state must be a dictionary")

        try:
            pending = [PromptRecord.from_dict(d) for d in state.get("pending", [])]
            in_flight = [PromptRecord.from_dict(d) for d in state.get("in_flight", [])]
            history = [PromptRecord.from_dict(d) for d in state.get("history", [])]
            stats = _empty_stats()
            stats.update(state.get("stats", {}))
            index = TextSimilarityIndex.from_dict(state.get("corpus", {}))
            ledger_data = dict(state.get("ledger", {}))
            ledger_data["budget_limit"] = self.cost_model.ledger.budget_limit
            ledger_data["history_limit"] = self.cost_model.ledger.history.maxlen
            ledger = CostLedger.from_dict(ledger_data)
            batches = [Batch.from_dict(d) for d in state.get("batches", [])]
            sequence = int(state.get("sequence", 0))
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed queue snapshot: {exc}") from exc

        for record, expected in (
            [(r, Status.PENDING) for r in pending]
            + [(r, Status.PROCESSING) for r in in_flight]
        ):
            if record.status is not expected:
                raise ValidationError(
                    f"record {record.id} has status {record.status.value}, expected {expected.value}"
                )
        if any(not r.is_terminal for r in history):
            raise ValidationError("history may only hold completed or failed records")

        self._pending = sorted(pending, key=PromptRecord.sort_key)
        self._in_flight = {r.id: r for r in in_flight}
        self._history = deque(history[-self.max_history:])
        self._records = {r.id: r for r in self._pending}
        self._records.update(self._in_flight)
        self._records.update({r.id: r for r in self._history})
        self._sequence = max([sequence] + [r.sequence for r in self._records.values()])
        self.stats = stats

        self.index = index
        self.batcher.index = index
        self.cost_model.ledger = ledger
        self.batcher.batches = {b.id: b for b in batches}

        _log.debug(
            "Imported %d pending, %d in flight, %d terminal records",
            len(self._pending), len(self._in_flight), len(self._history),
        )

    def save(self, path: str) -> None:
        """Write :meth:`export_state` to *path* as JSON."""
        atomic_write_json(path, self.export_state())

    def load(self, path: str) -> None:
        """Restore a snapshot written by :meth:`save`.

        Raises:
            FileNotFoundError: If *path* does not exist.
            ValidationError: If the file is not a valid snapshot.
        """
        with open(path, "r") as f:
            try:
                state = json.load(f)
            except json.JSONDecodeError as exc:
                raise ValidationError(f"Snapshot at {path} is not valid JSON: {exc}") from exc
        self.import_state(state)
