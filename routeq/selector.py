"""
Candidate selection for routeq.

Combines complexity scoring and the cost model to enumerate feasible
(backend, model) routes for a prompt and rank them by cost, quality, and
speed. Selection never fails: when nothing qualifies the configured
fallback route is returned with ``fallback=True``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .complexity import (
    ComplexityResult,
    ComplexityScorer,
    LEVEL_ADVANCED,
    LEVEL_COMPLEX,
    LEVEL_MODERATE,
    LEVEL_SIMPLE,
)
from .costs import SPEED_RANK, CostModel
from .errors import ConfigError, ValidationError

_log = logging.getLogger(__name__)

DEFAULT_QUALITY_THRESHOLDS = {
    LEVEL_SIMPLE: 0.5,
    LEVEL_MODERATE: 0.65,
    LEVEL_COMPLEX: 0.8,
    LEVEL_ADVANCED: 0.9,
}
DEFAULT_QUALITY = 0.7
DEFAULT_MAX_ALTERNATIVES = 3

# Levels that also consider paid backends without force_cloud
CLOUD_LEVELS = {LEVEL_COMPLEX, LEVEL_ADVANCED}


# ── Route ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Route:
    """A (backend, model) pair with the attributes it was ranked on."""

    backend: str
    model: str
    quality: float
    speed: str
    local: bool
    estimated_cost: float = 0.0
    fallback: bool = False

    def sort_key(self):
        """Ranking key: cheapest, then best quality, then fastest."""
        return (self.estimated_cost, -self.quality, SPEED_RANK.get(self.speed, len(SPEED_RANK)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backend": self.backend,
            "model": self.model,
            "quality": self.quality,
            "speed": self.speed,
            "local": self.local,
            "estimated_cost": self.estimated_cost,
            "fallback": self.fallback,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Route":
        return cls(
            backend=data["backend"],
            model=data["model"],
            quality=float(data["quality"]),
            speed=data["speed"],
            local=bool(data["local"]),
            estimated_cost=float(data.get("estimated_cost", 0.0)),
            fallback=bool(data.get("fallback", False)),
        )


def rank_candidates(routes: Iterable[Route]) -> List[Route]:
    """Sort routes by (cost asc, quality desc, speed fast<medium<slow).

    The sort is stable, so routes tied on all three keep their input order.
    """
    return sorted(routes, key=Route.sort_key)


# ── Selection ─────────────────────────────────────────────────────────────────

@dataclass
class Selection:
    """Outcome of candidate selection for one prompt."""

    route: Route
    complexity: ComplexityResult
    alternatives: List[Route] = field(default_factory=list)
    required_quality: float = DEFAULT_QUALITY

    @property
    def fallback(self) -> bool:
        return self.route.fallback

    def to_dict(self) -> Dict[str, Any]:
        return {
            "route": self.route.to_dict(),
            "complexity": self.complexity.to_dict(),
            "alternatives": [r.to_dict() for r in self.alternatives],
            "required_quality": self.required_quality,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Selection":
        return cls(
            route=Route.from_dict(data["route"]),
            complexity=ComplexityResult.from_dict(data["complexity"]),
            alternatives=[Route.from_dict(r) for r in data.get("alternatives", [])],
            required_quality=float(data.get("required_quality", DEFAULT_QUALITY)),
        )


# ── CandidateSelector ─────────────────────────────────────────────────────────

class CandidateSelector:
    """Enumerate and rank feasible routes for a prompt.

    Local backends are considered for every prompt unless ``prefer_local``
    is off. Paid backends join only for complex/advanced prompts or when the
    caller forces cloud routing, and only while their estimated cost fits
    the remaining budget.
    """

    def __init__(
        self,
        cost_model: CostModel,
        fallback_backend: str = "ollama",
        fallback_model: str = "llama3.2:3b",
        prefer_local: bool = True,
        quality_thresholds: Optional[Dict[str, float]] = None,
        default_quality: float = DEFAULT_QUALITY,
        max_alternatives: int = DEFAULT_MAX_ALTERNATIVES,
        scorer: Optional[ComplexityScorer] = None,
    ):
        """Initialize the selector.

        Args:
            cost_model: Pricing table + budget ledger used for estimates.
            fallback_backend: Backend returned when no candidate qualifies.
            fallback_model: Model returned when no candidate qualifies.
                The pair must exist in the pricing table.
            prefer_local: Whether local/free backends are considered.
            quality_thresholds: Per-level minimum quality, merged over
                :data:`DEFAULT_QUALITY_THRESHOLDS`.
            default_quality: Minimum quality for levels without a threshold.
            max_alternatives: How many runners-up to report.
            scorer: Complexity scorer; a fresh :class:`ComplexityScorer`
                when omitted.
        """
        if not cost_model.pricing.has(fallback_backend, fallback_model):
            raise ConfigError(
                f"fallback route {fallback_backend}/{fallback_model} "
                f"is not in the pricing table"
            )
        thresholds = dict(DEFAULT_QUALITY_THRESHOLDS)
        thresholds.update(quality_thresholds or {})
        for level, value in thresholds.items():
            if not (0.0 <= value <= 1.0):
                raise ConfigError(
                    f"quality threshold for {level!r} must be 0.0–1.0, got {value}"
                )
        if max_alternatives < 0:
            raise ConfigError(f"max_alternatives must be >= 0, got {max_alternatives}")

        self.cost_model = cost_model
        self.scorer = scorer if scorer is not None else ComplexityScorer()
        self.fallback_backend = fallback_backend
        self.fallback_model = fallback_model
        self.prefer_local = prefer_local
        self.quality_thresholds = thresholds
        self.default_quality = default_quality
        self.max_alternatives = max_alternatives

    def required_quality(self, level: str) -> float:
        """Minimum acceptable quality for a complexity level."""
        return self.quality_thresholds.get(level, self.default_quality)

    def select(
        self,
        text: str,
        force_cloud: bool = False,
        prefer_local: Optional[bool] = None,
    ) -> Selection:
        """Pick the best route for *text*.

        Args:
            text: Prompt text.
            force_cloud: Consider paid backends regardless of complexity.
            prefer_local: Per-call override of the instance setting.

        Returns:
            :class:`Selection` with the top route, up to
            ``max_alternatives`` runners-up, and the complexity analysis.

        Raises:
            ValidationError: If *text* is not a string.
        """
        if not isinstance(text, str):
            raise ValidationError(f"prompt text must be a str, got {type(text).__name__}")

        complexity = self.scorer.analyze(text)
        threshold = self.required_quality(complexity.level)
        use_local = self.prefer_local if prefer_local is None else prefer_local

        candidates = self.candidates(
            text,
            threshold,
            include_local=use_local,
            include_paid=force_cloud or complexity.level in CLOUD_LEVELS,
        )
        ranked = rank_candidates(candidates)

        if ranked:
            route = ranked[0]
            alternatives = ranked[1:1 + self.max_alternatives]
        else:
            route = self._fallback_route(text)
            alternatives = []
            _log.warning(
                "No route meets quality %.2f for %s prompt (budget %s); "
                "falling back to %s/%s",
                threshold,
                complexity.level,
                "unbounded" if self.cost_model.budget_limit is None
                else f"{self.cost_model.total_spent:.4f}/{self.cost_model.budget_limit:.4f}",
                route.backend,
                route.model,
            )

        return Selection(
            route=route,
            complexity=complexity,
            alternatives=alternatives,
            required_quality=threshold,
        )

    def candidates(
        self,
        text: str,
        min_quality: float,
        include_local: bool = True,
        include_paid: bool = False,
    ) -> List[Route]:
        """Enumerate routes meeting *min_quality*, in pricing-table order."""
        routes: List[Route] = []
        pricing = self.cost_model.pricing

        if include_local:
            for backend, model, spec in pricing.local_routes():
                if spec.quality >= min_quality:
                    # Local routes are never budget-checked
                    routes.append(Route(
                        backend=backend,
                        model=model,
                        quality=spec.quality,
                        speed=spec.speed,
                        local=True,
                        estimated_cost=self.cost_model.estimate_cost(text, backend, model).cost,
                    ))

        if include_paid:
            for backend, model, spec in pricing.paid_routes():
                if spec.quality < min_quality:
                    continue
                estimate = self.cost_model.estimate_cost(text, backend, model)
                if not self.cost_model.within_budget(estimate.cost):
                    continue
                routes.append(Route(
                    backend=backend,
                    model=model,
                    quality=spec.quality,
                    speed=spec.speed,
                    local=False,
                    estimated_cost=estimate.cost,
                ))

        return routes

    def _fallback_route(self, text: str) -> Route:
        spec = self.cost_model.pricing.get_pricing(self.fallback_backend, self.fallback_model)
        cost = self.cost_model.estimate_cost(text, self.fallback_backend, self.fallback_model).cost
        return Route(
            backend=self.fallback_backend,
            model=self.fallback_model,
            quality=spec.quality,
            speed=spec.speed,
            local=spec.local,
            estimated_cost=cost,
            fallback=True,
        )
