"""Tests for BM25 keyword scoring."""

import math

import numpy as np

from noterag.models import DocumentMetadata, VectorDocument
from noterag.retrieval.keyword import KeywordIndex, tokenize


def _doc(note_id: str, idx: int, content: str) -> VectorDocument:
    return VectorDocument(
        id=f"{note_id}_chunk_{idx}", note_id=note_id, note_path=f"/n/{note_id}.md", chunk_index=idx,
        content=content, embedding=np.zeros(2, dtype=np.float32), metadata=DocumentMetadata(title=note_id),
    )


class TestTokenize:
    def test_lowercases_and_drops_short_tokens(self):
        assert tokenize("The Cat sat on a MAT, ok?") == ["the", "cat", "sat", "mat"]

    def test_splits_on_punctuation_and_underscores(self):
        assert tokenize("foo_bar-baz.qux") == ["foo", "bar", "baz", "qux"]

    def test_unicode_words(self):
        assert tokenize("망원경으로 별을 관측한다") == ["망원경으로", "관측한다"]


class TestKeywordIndex:
    def test_document_frequency_counts_notes_not_chunks(self):
        index = KeywordIndex.build([
            _doc("a", 0, "telescope lens"),
            _doc("a", 1, "telescope mirror"),
            _doc("b", 0, "bread dough"),
        ])
        assert index.note_df["telescope"] == 1
        assert index.note_count == 2
        assert math.isclose(index.idf("telescope"), math.log((2 - 1 + 0.5) / (1 + 0.5) + 1))

    def test_scores_only_matching_chunks(self):
        index = KeywordIndex.build([
            _doc("a", 0, "telescope lens telescope"),
            _doc("b", 0, "bread dough yeast"),
        ])
        scores = index.score("telescope")
        assert scores[0] > 0
        assert scores[1] == 0

    def test_more_occurrences_score_higher(self):
        index = KeywordIndex.build([
            _doc("a", 0, "star star star galaxy"),
            _doc("b", 0, "star planet moon comet"),
            _doc("c", 0, "bread dough yeast flour"),
        ])
        scores = index.score("star")
        assert scores[0] > scores[1] > 0

    def test_unknown_or_empty_query(self):
        index = KeywordIndex.build([_doc("a", 0, "telescope")])
        assert not index.score("nothing matches").any()
        assert not index.score("a an").any()

    def test_empty_index(self):
        index = KeywordIndex.build([])
        assert index.score("anything").shape == (0,)

    def test_expansion_terms_are_down_weighted(self):
        index = KeywordIndex.build([
            _doc("shop", 0, "weekly run to the supermarket"),
            _doc("hike", 0, "trail notes and a long ridge walk"),
        ])
        direct = index.score("supermarket")
        expanded = index.score("grocery", expansion_terms=["supermarket"])
        assert direct[0] > 0
        assert math.isclose(expanded[0], direct[0] * 0.3)
        assert expanded[1] == 0

    def test_expansion_terms_already_in_query_count_once(self):
        index = KeywordIndex.build([_doc("shop", 0, "supermarket receipts"), _doc("x", 0, "other")])
        plain = index.score("supermarket")
        assert np.allclose(index.score("supermarket", expansion_terms=["supermarket"]), plain)
