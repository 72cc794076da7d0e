"""Tests for rule-based query expansion and its effect on keyword retrieval."""

from dataclasses import replace
from pathlib import Path

import pytest

from conftest import write_note
from noterag.config import EngineConfig
from noterag.indexer import Indexer
from noterag.retrieval.query_expansion import (
    expand_query,
    extract_keywords,
    find_synonyms,
)
from noterag.retrieval.retriever import RetrievalConfig, Retriever
from noterag.store.memory_store import MemoryVectorStore


class TestKeywords:
    def test_stop_words_and_single_chars_dropped(self):
        assert extract_keywords("What is the best coffee in SF?") == ["best", "coffee", "sf"]

    def test_korean_particles_dropped(self):
        assert extract_keywords("마트 에서 장본 것") == ["마트", "장본"]

    def test_duplicates_collapse(self):
        assert extract_keywords("budget Budget BUDGET") == ["budget"]


class TestSynonyms:
    def test_direct_lookup_is_case_insensitive(self):
        syns = find_synonyms("Grocery")
        assert "supermarket" in syns
        assert "마트" in syns
        assert "grocery" not in [s.lower() for s in syns]

    def test_korean_word_with_particle_matches_stem(self):
        syns = find_synonyms("마트에서")
        assert "마트" in syns
        assert "grocery" in syns

    def test_short_ascii_entries_do_not_match_inside_words(self):
        assert find_synonyms("said") == []

    def test_unknown_word(self):
        assert find_synonyms("telescope") == []


class TestExpandQuery:
    def test_phrase_rules_come_first(self):
        expanded = expand_query("개발자 밋업 후기")
        assert expanded.expansions[:3] == ["developer meetup", "개발자 모임", "community"]

    def test_expansions_are_capped(self):
        expanded = expand_query("ai llm meetup conference research", max_keywords=5)
        assert len(expanded.expansions) == 5
        assert expand_query("ai llm", max_keywords=0).expansions == []

    def test_expansions_exclude_query_keywords(self):
        expanded = expand_query("grocery supermarket")
        assert "supermarket" not in expanded.expansions
        assert "grocery" not in expanded.expansions

    def test_expansion_terms_are_index_tokens(self):
        terms = expand_query("grocery").expansion_terms()
        assert "supermarket" in terms
        assert "groceries" in terms
        # two-character Korean words never reach the keyword index
        assert "마트" not in terms

    def test_nothing_to_expand(self):
        expanded = expand_query("quasar redshift")
        assert expanded.keywords == ["quasar", "redshift"]
        assert expanded.expansions == []
        assert expanded.expansion_terms() == []


@pytest.fixture
def errand_notes(tmp_path: Path) -> Path:
    root = tmp_path / "errands"
    write_note(root, "Shopping.md", "# Shopping\n\nWeekly trip to the supermarket for vegetables.\n")
    write_note(root, "Hiking.md", "# Hiking\n\nTrail notes from the northern ridge.\n")
    return root


class TestRetrieverExpansion:
    @pytest.mark.asyncio
    async def test_synonym_finds_note_without_query_word(self, errand_notes, embedder):
        cfg = EngineConfig(notes_dir=errand_notes, min_score=0.0)
        store = MemoryVectorStore()
        await Indexer(cfg, store, embedder).index_all()
        retriever = Retriever(embedder, errand_notes)
        await retriever.load_index(store.get_all_documents())

        plain = RetrievalConfig(min_score=0.0, search_mode="keyword", use_graph_reranking=False, expand_context=False)
        hits = await retriever.retrieve("grocery", plain)
        assert [r.note_id for r in hits] == ["Shopping"]
        assert hits[0].base_score == pytest.approx(1.0)

        assert await retriever.retrieve("grocery", replace(plain, query_expansion=False)) == []

    @pytest.mark.asyncio
    async def test_semantic_mode_ignores_expansion(self, errand_notes, embedder):
        cfg = EngineConfig(notes_dir=errand_notes, min_score=0.0)
        store = MemoryVectorStore()
        await Indexer(cfg, store, embedder).index_all()
        retriever = Retriever(embedder, errand_notes)
        await retriever.load_index(store.get_all_documents())

        cfg_on = RetrievalConfig(min_score=0.0, search_mode="semantic", expand_context=False)
        on = [(r.note_id, r.base_score) for r in await retriever.retrieve("grocery", cfg_on)]
        off = [(r.note_id, r.base_score) for r in await retriever.retrieve(
            "grocery", replace(cfg_on, query_expansion=False))]
        assert on == off
