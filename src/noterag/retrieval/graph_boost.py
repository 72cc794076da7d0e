"""Degree centrality from the link graph and the score boost derived from it."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Sequence

from ..models import NoteGraphStats, RetrievalResult, VectorDocument
from ..utils import normalize_note_title


def compute_centrality(documents: Sequence[VectorDocument], stats: NoteGraphStats | None) -> dict[str, float]:
    """Map note id to (in-degree + out-degree) / max degree, in [0, 1].

    In-degree comes from backlinks (keyed by title), out-degree from forward
    links (keyed by path). Notes the graph does not know get 0.
    """
    if stats is None:
        return {}
    incoming = {normalize_note_title(t): len(entries) for t, entries in stats.backlinks.items()}
    outgoing = {path: len(targets) for path, targets in stats.forward_links.items()}

    degree: dict[str, int] = {}
    for doc in documents:
        if doc.note_id in degree:
            continue
        degree[doc.note_id] = (
            incoming.get(normalize_note_title(doc.metadata.title), 0) + outgoing.get(doc.note_path, 0)
        )

    max_degree = max(degree.values(), default=0)
    if max_degree <= 0:
        return {note_id: 0.0 for note_id in degree}
    return {note_id: d / max_degree for note_id, d in degree.items()}


@dataclass
class GraphBoostConfig:
    """Configuration for centrality re-ranking."""
    enabled: bool = True
    boost_factor: float = 0.2


@dataclass
class GraphBoostAdjuster:
    """Apply ``final = base * (1 + centrality * boost_factor)``.

    ``base_score`` is never touched; results keep their input order.
    """

    config: GraphBoostConfig

    def apply(self, results: list[RetrievalResult]) -> list[RetrievalResult]:
        if not self.config.enabled:
            return [replace(r, final_score=r.base_score) for r in results]
        factor = self.config.boost_factor
        return [
            replace(r, final_score=r.base_score * (1.0 + r.graph_centrality * factor))
            for r in results
        ]
