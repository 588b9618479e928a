"""
Cost model for routeq.

Holds the static (backend, model) price table, estimates what a prompt will
cost on a given route, and keeps a running spend ledger checked against an
optional budget ceiling.

The budget check and the spend record are separate calls with no
reservation in between. Two selections interleaving between
``within_budget`` and ``record_actual_cost`` can both pass the check;
callers that need a hard ceiling under concurrency must serialize access
to the CostModel themselves.
"""

import math
import time
from collections import deque
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from .errors import ConfigError, NotFoundError, ValidationError

SPEED_FAST = "fast"
SPEED_MEDIUM = "medium"
SPEED_SLOW = "slow"

SPEED_RANK = {SPEED_FAST: 0, SPEED_MEDIUM: 1, SPEED_SLOW: 2}

# Rough token heuristics: ~4 characters per token, responses ~1.5x the prompt
CHARS_PER_TOKEN = 4
DEFAULT_OUTPUT_RATIO = 1.5

DEFAULT_HISTORY_LIMIT = 1000


@dataclass(frozen=True)
class ModelPricing:
    """Per-1K-token pricing and routing attributes for one model."""
    input_per_1k: float
    output_per_1k: float
    speed: str
    quality: float
    local: bool = False

    def __post_init__(self) -> None:
        rates = (self.input_per_1k, self.output_per_1k)
        if any(r < 0 or not math.isfinite(r) for r in rates):
            raise ConfigError(
                f"rates must be finite and >= 0, got input={self.input_per_1k} "
                f"output={self.output_per_1k}"
            )
        if self.speed not in SPEED_RANK:
            raise ConfigError(
                f"speed must be one of {sorted(SPEED_RANK)}, got {self.speed!r}"
            )
        if not (0.0 <= self.quality <= 1.0):
            raise ConfigError(f"quality must be 0.0–1.0, got {self.quality}")


class PricingTable:
    """Validated backend → model → ModelPricing mapping.

    Only backends listed here are visible to routing. Iteration order is
    the insertion order of the source mapping, which also decides the
    order of otherwise fully tied candidates.
    """

    def __init__(self, prices: Dict[str, Dict[str, ModelPricing]]):
        if not prices:
            raise ConfigError("pricing table must define at least one backend")
        self._prices: Dict[str, Dict[str, ModelPricing]] = {}
        for backend, models in prices.items():
            if not models:
                raise ConfigError(f"backend {backend!r} defines no models")
            for model, pricing in models.items():
                if not isinstance(pricing, ModelPricing):
                    raise ConfigError(
                        f"{backend}/{model}: expected ModelPricing, "
                        f"got {type(pricing).__name__}"
                    )
            self._prices[backend] = dict(models)

    @classmethod
    def from_config(cls, backends: Dict[str, Any]) -> 'PricingTable':
        """Build a table from the ``backends`` section of a Config.

        Raises:
            ConfigError: On any missing field or invalid value
        """
        if not isinstance(backends, dict):
            raise ConfigError("'backends' must be a dictionary")

        prices: Dict[str, Dict[str, ModelPricing]] = {}
        for backend, entry in backends.items():
            if not isinstance(entry, dict) or not isinstance(entry.get('models'), dict):
                raise ConfigError(f"backend {backend!r} must define a 'models' dictionary")
            backend_local = entry.get('local')
            models: Dict[str, ModelPricing] = {}
            for model, spec in entry['models'].items():
                path = f"backends.{backend}.models.{model}"
                if not isinstance(spec, dict):
                    raise ConfigError(f"{path} must be a dictionary")
                missing = {'input_per_1k', 'output_per_1k', 'speed', 'quality'} - set(spec)
                if missing:
                    raise ConfigError(f"{path} is missing {sorted(missing)}")
                try:
                    input_rate = float(spec['input_per_1k'])
                    output_rate = float(spec['output_per_1k'])
                    quality = float(spec['quality'])
                except (TypeError, ValueError) as exc:
                    raise ConfigError(f"{path} has a non-numeric value: {exc}") from exc
                local = spec.get('local', backend_local)
                if local is None:
                    local = input_rate == 0 and output_rate == 0
                models[model] = ModelPricing(
                    input_per_1k=input_rate,
                    output_per_1k=output_rate,
                    speed=spec['speed'],
                    quality=quality,
                    local=bool(local),
                )
            prices[backend] = models
        return cls(prices)

    def get_pricing(self, backend: str, model: str) -> ModelPricing:
        """Get pricing for a (backend, model) pair.

        Raises:
            NotFoundError: If the pair is not in the table
        """
        try:
            return self._prices[backend][model]
        except KeyError:
            raise NotFoundError(f"Unknown route: {backend}/{model}") from None

    def has(self, backend: str, model: str) -> bool:
        return model in self._prices.get(backend, {})

    def backends(self) -> List[str]:
        return list(self._prices)

    def models(self, backend: str) -> Dict[str, ModelPricing]:
        return dict(self._prices.get(backend, {}))

    def items(self) -> Iterator[Tuple[str, str, ModelPricing]]:
        """Yield ``(backend, model, pricing)`` in table order."""
        for backend, models in self._prices.items():
            for model, pricing in models.items():
                yield backend, model, pricing

    def local_routes(self) -> List[Tuple[str, str, ModelPricing]]:
        return [item for item in self.items() if item[2].local]

    def paid_routes(self) -> List[Tuple[str, str, ModelPricing]]:
        return [item for item in self.items() if not item[2].local]


@dataclass
class CostEstimate:
    """Estimated cost of running one prompt on one route."""
    cost: float
    input_tokens: int
    output_tokens: int
    input_cost: float
    output_cost: float
    backend: str
    model: str


@dataclass
class LedgerEntry:
    """A single recorded spend."""
    cost: float
    timestamp: float
    metadata: Dict[str, Any] = field(default_factory=dict)


class CostLedger:
    """Running spend total with a bounded entry history.

    ``total_spent`` only ever grows. The history is capped; old entries fall
    off but their amounts stay in the total.
    """

    def __init__(self, budget_limit: Optional[float] = None,
                 history_limit: int = DEFAULT_HISTORY_LIMIT):
        if budget_limit is not None and budget_limit < 0:
            raise ConfigError(f"budget_limit must be >= 0, got {budget_limit}")
        if history_limit <= 0:
            raise ConfigError(f"history_limit must be > 0, got {history_limit}")
        self.budget_limit = budget_limit
        self.history: deque = deque(maxlen=history_limit)
        self._total_spent = 0.0

    @property
    def total_spent(self) -> float:
        return self._total_spent

    @property
    def remaining(self) -> Optional[float]:
        """Budget left, or None when unbounded."""
        if self.budget_limit is None:
            return None
        return self.budget_limit - self._total_spent

    def record(self, amount: float, metadata: Dict[str, Any] = None,
               timestamp: float = None) -> LedgerEntry:
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise ValidationError(f"cost must be a number, got {type(amount).__name__}")
        if amount < 0 or math.isnan(amount):
            raise ValidationError(f"cost must be >= 0, got {amount}")
        entry = LedgerEntry(
            cost=float(amount),
            timestamp=time.time() if timestamp is None else timestamp,
            metadata=dict(metadata or {}),
        )
        self._total_spent += entry.cost
        self.history.append(entry)
        return entry

    def within_budget(self, candidate_cost: float) -> bool:
        if self.budget_limit is None:
            return True
        return self._total_spent + candidate_cost <= self.budget_limit

    def snapshot(self, recent: int = 100) -> Dict[str, Any]:
        """Summary for status reports.

        Args:
            recent: How many of the newest history entries to include
        """
        entries = list(self.history)[-recent:] if recent > 0 else []
        return {
            'total_spent': round(self._total_spent, 6),
            'budget_limit': self.budget_limit,
            'remaining': None if self.remaining is None else round(self.remaining, 6),
            'entries': len(self.history),
            'history': [asdict(e) for e in entries],
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_spent': self._total_spent,
            'budget_limit': self.budget_limit,
            'history_limit': self.history.maxlen,
            'history': [asdict(e) for e in self.history],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CostLedger':
        ledger = cls(
            budget_limit=data.get('budget_limit'),
            history_limit=data.get('history_limit') or DEFAULT_HISTORY_LIMIT,
        )
        for entry in data.get('history', []):
            ledger.history.append(LedgerEntry(
                cost=float(entry['cost']),
                timestamp=float(entry['timestamp']),
                metadata=dict(entry.get('metadata') or {}),
            ))
        ledger._total_spent = float(data.get('total_spent', 0.0))
        return ledger


class CostModel:
    """Price table + token heuristics + spend ledger.

    Each instance owns its own table and ledger, so independent queues never
    share spend state.
    """

    def __init__(
        self,
        pricing: PricingTable,
        budget_limit: Optional[float] = None,
        output_ratio: float = DEFAULT_OUTPUT_RATIO,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the cost model.

        Args:
            pricing: Validated pricing table
            budget_limit: Spend ceiling in dollars; None means unbounded
            output_ratio: Estimated output tokens per input token
            history_limit: Max ledger entries kept
            clock: Time source for ledger timestamps
        """
        if not isinstance(pricing, PricingTable):
            raise ConfigError("pricing must be a PricingTable")
        if output_ratio < 0:
            raise ConfigError(f"output_ratio must be >= 0, got {output_ratio}")
        self.pricing = pricing
        self.output_ratio = output_ratio
        self.ledger = CostLedger(budget_limit=budget_limit, history_limit=history_limit)
        self._clock = clock

    @property
    def budget_limit(self) -> Optional[float]:
        return self.ledger.budget_limit

    @property
    def total_spent(self) -> float:
        return self.ledger.total_spent

    def estimate_tokens(self, text: str) -> Tuple[int, int]:
        """Return ``(input_tokens, output_tokens)`` for *text*."""
        input_tokens = math.ceil(len(text) / CHARS_PER_TOKEN)
        output_tokens = math.ceil(input_tokens * self.output_ratio)
        return input_tokens, output_tokens

    def estimate_cost(self, text: str, backend: str, model: str) -> CostEstimate:
        """Estimate what *text* costs on ``backend/model``.

        Raises:
            NotFoundError: If the route is not in the pricing table
        """
        pricing = self.pricing.get_pricing(backend, model)
        input_tokens, output_tokens = self.estimate_tokens(text)
        input_cost = (input_tokens / 1000) * pricing.input_per_1k
        output_cost = (output_tokens / 1000) * pricing.output_per_1k
        return CostEstimate(
            cost=input_cost + output_cost,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            input_cost=input_cost,
            output_cost=output_cost,
            backend=backend,
            model=model,
        )

    def record_actual_cost(self, amount: float, metadata: Dict[str, Any] = None) -> LedgerEntry:
        """Add *amount* to the running total. Irreversible."""
        return self.ledger.record(amount, metadata, timestamp=self._clock())

    def within_budget(self, candidate_cost: float) -> bool:
        return self.ledger.within_budget(candidate_cost)

    def get_stats(self) -> Dict[str, Any]:
        return self.ledger.snapshot()
