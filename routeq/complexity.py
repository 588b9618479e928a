"""
Prompt complexity scoring for routeq.

Scores a prompt's difficulty from word count and five pattern families
(code, multi-step structure, technical terms, reasoning verbs, simplicity
markers) and buckets the score into simple / moderate / complex / advanced.
Deterministic and stateless.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

LEVEL_SIMPLE = "simple"
LEVEL_MODERATE = "moderate"
LEVEL_COMPLEX = "complex"
LEVEL_ADVANCED = "advanced"

LEVELS = (LEVEL_SIMPLE, LEVEL_MODERATE, LEVEL_COMPLEX, LEVEL_ADVANCED)

# Upper score bound (inclusive) for each level; anything above is advanced
LEVEL_THRESHOLDS: Tuple[Tuple[str, float], ...] = (
    (LEVEL_SIMPLE, 2.0),
    (LEVEL_MODERATE, 5.0),
    (LEVEL_COMPLEX, 8.0),
)

MAX_SCORE = 10.0

PATTERNS = {
    'code': re.compile(
        r'```|function|class|def |const |let |var |import |export |async |await ',
        re.IGNORECASE,
    ),
    'multi_step': re.compile(
        r'\d\.\s|•|\*\s|-\s|firstly|secondly|then|finally|step\s*\d',
        re.IGNORECASE,
    ),
    'technical': re.compile(
        r'api|database|async|parallel|thread|memory|performance|cache|queue'
        r'|stream|algorithm|architecture',
        re.IGNORECASE,
    ),
    'reasoning': re.compile(
        r'explain|analyze|compare|contrast|evaluate|argue|justify|design|optimize',
        re.IGNORECASE,
    ),
    'simple': re.compile(
        r'what is|how to|define|list|show|get|set|quick|simple|easy',
        re.IGNORECASE,
    ),
}

WEIGHTS = {
    'code': 0.5,
    'multi_step': 1.5,
    'technical': 0.3,
    'reasoning': 0.8,
    'simple': -0.5,
}


@dataclass
class ComplexityResult:
    """Result of complexity analysis."""
    score: float
    level: str
    word_count: int
    features: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'score': self.score,
            'level': self.level,
            'word_count': self.word_count,
            'features': dict(self.features),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ComplexityResult':
        return cls(
            score=float(data['score']),
            level=data['level'],
            word_count=int(data['word_count']),
            features=dict(data.get('features', {})),
        )


def level_for_score(score: float) -> str:
    """Bucket a raw score into a complexity level."""
    for level, upper in LEVEL_THRESHOLDS:
        if score <= upper:
            return level
    return LEVEL_ADVANCED


class ComplexityScorer:
    """Heuristic prompt difficulty scorer.

    score = clamp(0, 10, min(words / 20, 3)
                         + 0.5 * code + 1.5 * multi_step + 0.3 * technical
                         + 0.8 * reasoning - 0.5 * simple)

    Pattern counts are substring matches, so ``"api"`` also fires inside
    ``"rapid"``; the heuristic trades precision for speed.
    """

    def analyze(self, text: str) -> ComplexityResult:
        """Score *text* and bucket it into a level.

        Args:
            text: Prompt text

        Returns:
            ComplexityResult with score (one decimal), level, word count,
            and feature flags
        """
        word_count = len(text.split())
        counts = self.count_patterns(text)

        raw = min(word_count / 20, 3.0)
        for name, weight in WEIGHTS.items():
            raw += weight * counts[name]
        raw = max(0.0, min(MAX_SCORE, raw))

        return ComplexityResult(
            score=round(raw, 1),
            level=level_for_score(raw),
            word_count=word_count,
            features={
                'has_code': counts['code'] > 0,
                'is_multi_step': counts['multi_step'] > 0,
                'technical_terms': counts['technical'],
                'requires_reasoning': counts['reasoning'] > 0,
                'simple_markers': counts['simple'],
            },
        )

    @staticmethod
    def count_patterns(text: str) -> Dict[str, int]:
        """Count matches for each pattern family."""
        return {name: len(pattern.findall(text)) for name, pattern in PATTERNS.items()}
