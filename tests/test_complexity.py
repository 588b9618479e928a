"""Tests for heuristic complexity scoring."""

import pytest

from routeq import ComplexityScorer, LEVEL_SIMPLE, LEVEL_MODERATE, LEVEL_COMPLEX, LEVEL_ADVANCED
from routeq.complexity import level_for_score


@pytest.fixture()
def scorer():
    return ComplexityScorer()


class TestLevels:

    @pytest.mark.parametrize("score,level", [
        (0.0, LEVEL_SIMPLE),
        (2.0, LEVEL_SIMPLE),
        (2.01, LEVEL_MODERATE),
        (5.0, LEVEL_MODERATE),
        (5.01, LEVEL_COMPLEX),
        (8.0, LEVEL_COMPLEX),
        (8.01, LEVEL_ADVANCED),
        (10.0, LEVEL_ADVANCED),
    ])
    def test_boundaries(self, score, level):
        assert level_for_score(score) == level


class TestAnalyze:

    def test_short_reasoning_prompt(self, scorer):
        result = scorer.analyze("explain recursion")
        assert result.word_count == 2
        assert result.score == 0.9
        assert result.level == LEVEL_SIMPLE
        assert result.features["requires_reasoning"] is True
        assert result.features["has_code"] is False

    def test_empty_text(self, scorer):
        result = scorer.analyze("")
        assert result.score == 0.0
        assert result.level == LEVEL_SIMPLE
        assert result.word_count == 0

    def test_simple_markers_clamp_at_zero(self, scorer):
        result = scorer.analyze("list show get set quick simple easy")
        assert result.features["simple_markers"] == 7
        assert result.score == 0.0

    def test_clamped_at_ten(self, scorer):
        text = "1. step then finally explain the api design " * 20
        result = scorer.analyze(text)
        assert result.score == 10.0
        assert result.level == LEVEL_ADVANCED

    def test_multi_step_technical_prompt_is_complex(self, scorer):
        result = scorer.analyze(
            "Firstly design the database architecture, then optimize the API "
            "cache performance for parallel stream processing"
        )
        assert result.level == LEVEL_COMPLEX
        assert result.features["is_multi_step"] is True
        assert result.features["technical_terms"] == 7

    def test_code_detected(self, scorer):
        result = scorer.analyze("```python\ndef handler(event):\n    return event\n```")
        assert result.features["has_code"] is True

    def test_more_technical_terms_never_lower_score(self, scorer):
        base = "review this change"
        previous = scorer.analyze(base).score
        for extra in ["database", "cache", "thread", "memory", "algorithm"]:
            base = f"{base} {extra}"
            score = scorer.analyze(base).score
            assert score >= previous
            previous = score

    def test_more_reasoning_terms_never_lower_score(self, scorer):
        base = "the service"
        previous = scorer.analyze(base).score
        for extra in ["explain", "compare", "evaluate", "justify"]:
            base = f"{extra} {base}"
            score = scorer.analyze(base).score
            assert score >= previous
            previous = score

    def test_deterministic(self, scorer):
        text = "Compare two caching strategies for a REST api"
        assert scorer.analyze(text) == scorer.analyze(text)

    def test_moderate_prompt(self, scorer):
        # 0.4 for length + 2 * 0.8 reasoning + 3 * 0.3 technical
        result = scorer.analyze("explain and compare database cache memory usage here")
        assert result.level == LEVEL_MODERATE

    def test_result_round_trip(self, scorer):
        from routeq import ComplexityResult
        result = scorer.analyze("explain recursion")
        assert ComplexityResult.from_dict(result.to_dict()) == result
