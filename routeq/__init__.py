"""
routeq — Cost-aware prompt routing and queueing.

Decides which backend/model should handle each prompt, at what estimated
cost, and in what order relative to other pending work. Similar low-priority
prompts are grouped into batches along the way.
Zero external dependencies. All state is in memory, with optional JSON
snapshots.

Usage:
    from routeq import WorkQueue, Priority

    queue = WorkQueue(budget_limit=5.00)
    result = queue.enqueue("Explain recursion", priority=Priority.NORMAL)
    print(f"{result.route.backend}/{result.route.model} "
          f"(${result.route.estimated_cost:.4f}, position {result.position})")

    record = queue.dequeue()
    queue.complete(record.id, "Recursion is ...")
    print(queue.get_status()["ledger"]["total_spent"])

Dispatching to real backends:
    import asyncio
    from routeq import drain

    asyncio.run(drain(queue, {"ollama": my_ollama_client}))
"""

__version__ = "1.0.0"

from .errors import RouteqError, ValidationError, NotFoundError, ConfigError
from .config import Config
from .similarity import TextSimilarityIndex, SimilarMatch
from .complexity import (
    ComplexityScorer,
    ComplexityResult,
    LEVEL_SIMPLE,
    LEVEL_MODERATE,
    LEVEL_COMPLEX,
    LEVEL_ADVANCED,
)
from .costs import CostModel, CostEstimate, CostLedger, LedgerEntry, ModelPricing, PricingTable
from .selector import CandidateSelector, Route, Selection, rank_candidates
from .batching import BatchAccumulator, Batch, BatchAssignment
from .events import (
    EventBus,
    Subscription,
    EVENT_ENQUEUED,
    EVENT_DEQUEUED,
    EVENT_COMPLETED,
    EVENT_FAILED,
    EVENT_FALLBACK,
)
from .queue import WorkQueue, PromptRecord, EnqueueResult, SimilarItem, Status, Priority
from .backends import Backend, GenerationResult, process_next, drain

__all__ = [
    # Queue
    "WorkQueue",
    "PromptRecord",
    "EnqueueResult",
    "SimilarItem",
    "Status",
    "Priority",
    # Routing
    "CandidateSelector",
    "Route",
    "Selection",
    "rank_candidates",
    "ComplexityScorer",
    "ComplexityResult",
    "LEVEL_SIMPLE",
    "LEVEL_MODERATE",
    "LEVEL_COMPLEX",
    "LEVEL_ADVANCED",
    # Costs
    "CostModel",
    "CostEstimate",
    "CostLedger",
    "LedgerEntry",
    "ModelPricing",
    "PricingTable",
    # Similarity & batching
    "TextSimilarityIndex",
    "SimilarMatch",
    "BatchAccumulator",
    "Batch",
    "BatchAssignment",
    # Events
    "EventBus",
    "Subscription",
    "EVENT_ENQUEUED",
    "EVENT_DEQUEUED",
    "EVENT_COMPLETED",
    "EVENT_FAILED",
    "EVENT_FALLBACK",
    # Backends
    "Backend",
    "GenerationResult",
    "process_next",
    "drain",
    # Config & errors
    "Config",
    "RouteqError",
    "ValidationError",
    "NotFoundError",
    "ConfigError",
]
