"""BM25 keyword scoring over chunks, with document frequency counted per note."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
import math
import re
from typing import Sequence

import numpy as np

from ..models import VectorDocument

BM25_K1 = 1.2
BM25_B = 0.75
MIN_TOKEN_LENGTH = 3
EXPANSION_WEIGHT = 0.3

_NON_WORD_RE = re.compile(r"[\W_]+")


def tokenize(text: str) -> list[str]:
    """Lowercase, split on anything that is not a letter or digit, drop tokens of 2 chars or less."""
    return [t for t in _NON_WORD_RE.sub(" ", text.lower()).split() if len(t) >= MIN_TOKEN_LENGTH]


@dataclass(frozen=True)
class KeywordIndex:
    """Token statistics for one snapshot of indexed chunks."""
    term_counts: tuple[Counter, ...]
    lengths: np.ndarray
    avg_length: float
    note_df: dict[str, int]
    note_count: int

    @staticmethod
    def build(documents: Sequence[VectorDocument]) -> "KeywordIndex":
        term_counts = []
        note_terms: dict[str, set[str]] = {}
        for doc in documents:
            counts = Counter(tokenize(doc.content))
            term_counts.append(counts)
            note_terms.setdefault(doc.note_id, set()).update(counts)

        df: Counter = Counter()
        for terms in note_terms.values():
            df.update(terms)

        lengths = np.array([len(d.content) for d in documents], dtype=np.float64)
        avg = float(lengths.mean()) if len(lengths) else 0.0
        return KeywordIndex(
            term_counts=tuple(term_counts),
            lengths=lengths,
            avg_length=avg,
            note_df=dict(df),
            note_count=len(note_terms),
        )

    def idf(self, term: str) -> float:
        df = self.note_df.get(term, 0)
        n = self.note_count
        return math.log((n - df + 0.5) / (df + 0.5) + 1.0)

    def score(
        self,
        query: str,
        expansion_terms: Sequence[str] = (),
        expansion_weight: float = EXPANSION_WEIGHT,
    ) -> np.ndarray:
        """BM25 score of every chunk for ``query`` (0 where no term matches).

        ``expansion_terms`` add to the score at ``expansion_weight`` times
        their BM25 contribution; terms already in the query are not counted twice.
        """
        scores = np.zeros(len(self.term_counts), dtype=np.float64)
        terms = list(dict.fromkeys(tokenize(query)))
        extra = [t for t in dict.fromkeys(expansion_terms) if t not in terms]
        if not (terms or extra) or not len(scores):
            return scores

        avg = self.avg_length or 1.0
        norm = BM25_K1 * (1.0 - BM25_B + BM25_B * self.lengths / avg)
        weighted = [(t, 1.0) for t in terms] + [(t, expansion_weight) for t in extra]
        for term, weight in weighted:
            if term not in self.note_df:
                continue
            idf = self.idf(term)
            tf = np.array([c.get(term, 0) for c in self.term_counts], dtype=np.float64)
            scores += weight * idf * (tf * (BM25_K1 + 1.0)) / (tf + norm)
        return scores
