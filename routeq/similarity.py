"""
Text similarity index for routeq.

TF-IDF vectors + cosine similarity over a corpus that grows as prompts are
enqueued. Used to find related pending prompts and to group them into
batches. Zero external dependencies.
"""

import math
import re
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple, Union

_NON_WORD = re.compile(r'[^\w\s]')

Candidate = Union[str, Tuple[str, str]]


@dataclass
class SimilarMatch:
    """A candidate that cleared the similarity threshold."""
    key: Optional[str]  # record id when candidates were (id, text) pairs
    text: str
    similarity: float


class TextSimilarityIndex:
    """Append-only TF-IDF corpus with cosine similarity.

    Document frequencies only ever grow; there is no removal. Weights use
    smoothed IDF ``ln((N + 1) / (df + 1)) + 1`` so every weight is positive
    and unseen terms never divide by zero.
    """

    def __init__(self):
        self.doc_freq: Counter = Counter()
        self.doc_count: int = 0

    @staticmethod
    def tokenize(text: str) -> List[str]:
        """Lowercase, strip punctuation, drop tokens of two chars or fewer."""
        text = _NON_WORD.sub(' ', text.lower())
        return [t for t in text.split() if len(t) > 2]

    def add_document(self, text: str) -> None:
        """Register *text* in the corpus statistics."""
        self.doc_count += 1
        for term in set(self.tokenize(text)):
            self.doc_freq[term] += 1

    def document_frequency(self, term: str) -> int:
        return self.doc_freq.get(term, 0)

    @property
    def vocab_size(self) -> int:
        return len(self.doc_freq)

    def idf(self, term: str) -> float:
        df = self.doc_freq.get(term, 0)
        return math.log((self.doc_count + 1) / (df + 1)) + 1

    def vector(self, text: str) -> Dict[str, float]:
        """Convert text to a sparse TF-IDF vector."""
        tokens = self.tokenize(text)
        if not tokens:
            return {}
        total = len(tokens)
        return {
            term: (count / total) * self.idf(term)
            for term, count in Counter(tokens).items()
        }

    @staticmethod
    def cosine(vec_a: Dict[str, float], vec_b: Dict[str, float]) -> float:
        """Cosine similarity between two sparse vectors, clamped to [0, 1]."""
        if not vec_a or not vec_b:
            return 0.0
        # Fixed summation order keeps sim(a, b) == sim(b, a) bit for bit
        common = sorted(set(vec_a) & set(vec_b))
        dot = sum(vec_a[t] * vec_b[t] for t in common)
        norm_a = math.sqrt(sum(v * v for v in vec_a.values()))
        norm_b = math.sqrt(sum(v * v for v in vec_b.values()))
        if norm_a == 0 or norm_b == 0:
            return 0.0
        return max(0.0, min(1.0, dot / (norm_a * norm_b)))

    def similarity(self, text_a: str, text_b: str) -> float:
        return self.cosine(self.vector(text_a), self.vector(text_b))

    def find_similar(self, query: str, candidates: Iterable[Candidate],
                     threshold: float = 0.5) -> List[SimilarMatch]:
        """Rank candidates by similarity to *query*.

        Args:
            query: Text to compare against
            candidates: Plain strings, or ``(key, text)`` pairs
            threshold: Minimum similarity (inclusive) to keep a candidate

        Returns:
            Matches sorted by similarity, highest first
        """
        query_vec = self.vector(query)
        matches: List[SimilarMatch] = []
        for candidate in candidates:
            if isinstance(candidate, str):
                key, text = None, candidate
            else:
                key, text = candidate
            sim = self.cosine(query_vec, self.vector(text))
            if sim >= threshold:
                matches.append(SimilarMatch(key=key, text=text, similarity=sim))
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches

    def to_dict(self) -> Dict:
        return {
            'doc_freq': dict(self.doc_freq),
            'doc_count': self.doc_count,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'TextSimilarityIndex':
        index = cls()
        index.doc_freq = Counter({
            str(term): int(df) for term, df in data.get('doc_freq', {}).items()
        })
        index.doc_count = int(data.get('doc_count', 0))
        return index
