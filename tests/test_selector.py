"""Tests for candidate enumeration and ranking."""

import logging

import pytest

from routeq import (
    CandidateSelector, Config, ConfigError, CostModel, ModelPricing, PricingTable,
    Route, ValidationError, rank_candidates,
)

COMPLEX_PROMPT = (
    "Firstly design the database architecture, then optimize the API "
    "cache performance for parallel stream processing"
)


def _selector(budget_limit=None, **kwargs):
    cost_model = CostModel(PricingTable.from_config(Config().get_pricing()),
                           budget_limit=budget_limit)
    return CandidateSelector(cost_model, **kwargs)


@pytest.fixture()
def selector():
    return _selector()


class TestRanking:

    def test_cost_then_quality_then_speed(self):
        routes = [
            Route("b", "slow-good", 0.9, "slow", False, 0.01),
            Route("a", "free-ok", 0.6, "fast", True, 0.0),
            Route("a", "free-good-slow", 0.8, "slow", True, 0.0),
            Route("a", "free-good-fast", 0.8, "fast", True, 0.0),
        ]
        ranked = [r.model for r in rank_candidates(routes)]
        assert ranked == ["free-good-fast", "free-good-slow", "free-ok", "slow-good"]

    def test_full_ties_keep_input_order(self):
        routes = [Route("x", "first", 0.7, "fast", True), Route("y", "second", 0.7, "fast", True)]
        assert [r.model for r in rank_candidates(routes)] == ["first", "second"]

    def test_speed_breaks_ties_in_selection(self):
        table = PricingTable({
            "lab": {
                "tortoise": ModelPricing(0, 0, "slow", 0.8, local=True),
                "hare": ModelPricing(0, 0, "fast", 0.8, local=True),
            }
        })
        selector = CandidateSelector(CostModel(table), fallback_backend="lab",
                                     fallback_model="tortoise")
        selection = selector.select("hello")
        assert selection.route.model == "hare"
        assert [r.model for r in selection.alternatives] == ["tortoise"]


class TestSelect:

    def test_simple_prompt_stays_local(self, selector):
        selection = selector.select("explain recursion")
        assert selection.complexity.level == "simple"
        assert selection.route.backend == "ollama"
        assert selection.route.model == "llama3.2:3b"
        assert selection.route.quality == 0.75
        assert selection.route.estimated_cost == 0.0
        assert selection.fallback is False
        assert selection.required_quality == 0.5

    def test_alternatives_capped(self, selector):
        selection = selector.select("explain recursion")
        assert len(selection.alternatives) == 3
        assert all(r.local for r in selection.alternatives)

    def test_complex_prompt_goes_to_cheapest_qualifying_paid_route(self, selector):
        selection = selector.select(COMPLEX_PROMPT)
        assert selection.complexity.level == "complex"
        assert selection.route.backend == "gemini"
        assert selection.route.model == "gemini-2.0-flash"
        assert selection.route.estimated_cost > 0
        assert selection.route.quality >= 0.8

    def test_force_cloud_does_not_beat_free_local(self, selector):
        selection = selector.select("explain recursion", force_cloud=True)
        assert selection.route.local

    def test_force_cloud_without_local(self, selector):
        selection = selector.select("explain recursion", force_cloud=True, prefer_local=False)
        assert selection.route.backend == "gemini"
        assert not selection.route.local

    def test_no_local_and_no_cloud_falls_back(self, selector):
        selection = selector.select("explain recursion", prefer_local=False)
        assert selection.fallback
        assert selection.route.model == "llama3.2:3b"
        assert selection.alternatives == []

    def test_exhausted_budget_falls_back_with_warning(self, caplog):
        selector = _selector(budget_limit=0.0)
        with caplog.at_level(logging.WARNING, logger="routeq.selector"):
            selection = selector.select(COMPLEX_PROMPT)
        assert selection.fallback
        assert selection.route.backend == "ollama"
        assert selection.route.model == "llama3.2:3b"
        assert "falling back" in caplog.text

    def test_budget_filters_expensive_routes(self):
        # Covers the flash models on this prompt (~$0.015) but not haiku (~$0.06)
        selector = _selector(budget_limit=0.05)
        selection = selector.select(COMPLEX_PROMPT)
        backends = {(r.backend, r.model) for r in [selection.route] + selection.alternatives}
        assert ("anthropic", "claude-3-5-sonnet") not in backends
        assert ("gemini", "gemini-1.5-pro") not in backends
        assert ("anthropic", "claude-3-haiku") not in backends
        assert selection.route.model == "gemini-2.0-flash"
        assert not selection.fallback

    def test_empty_text_is_accepted(self, selector):
        selection = selector.select("")
        assert selection.complexity.level == "simple"
        assert selection.route.local

    def test_non_text_rejected(self, selector):
        with pytest.raises(ValidationError):
            selector.select(None)
        with pytest.raises(ValidationError):
            selector.select(42)

    def test_threshold_override(self):
        selector = _selector(quality_thresholds={"simple": 0.74})
        selection = selector.select("explain recursion")
        assert selection.route.model == "llama3.2:3b"
        assert selection.alternatives == []


class TestSelectorConfig:

    def test_unknown_fallback_rejected(self):
        with pytest.raises(ConfigError):
            _selector(fallback_backend="openai", fallback_model="gpt-4o")

    def test_bad_threshold_rejected(self):
        with pytest.raises(ConfigError):
            _selector(quality_thresholds={"simple": 1.2})

    def test_negative_alternatives_rejected(self):
        with pytest.raises(ConfigError):
            _selector(max_alternatives=-1)

    def test_route_round_trip(self, selector):
        from routeq import Selection
        selection = selector.select(COMPLEX_PROMPT)
        assert Selection.from_dict(selection.to_dict()) == selection
