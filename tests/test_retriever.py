"""Tests for hybrid retrieval: score composition, modes, centrality and context expansion."""

from dataclasses import replace
from pathlib import Path

import pytest

from conftest import FakeEmbedder, write_note
from noterag.config import EngineConfig
from noterag.errors import DimensionMismatchError, NotReadyError, ProviderError
from noterag.indexer import Indexer
from noterag.retrieval.retriever import RetrievalConfig, Retriever, expand_span
from noterag.store.memory_store import MemoryVectorStore

PLAIN = RetrievalConfig(min_score=0.0, use_graph_reranking=False, expand_context=False)


class BodyOnlyEmbedder(FakeEmbedder):
    """Ignores the ``# title`` line the indexer prepends, so equal bodies embed equally."""

    def embed_texts(self, texts):
        return super().embed_texts([t.split("\n\n", 1)[-1] for t in texts])


async def _load(cfg: EngineConfig, embedder, config: RetrievalConfig = PLAIN) -> Retriever:
    store = MemoryVectorStore()
    await Indexer(cfg, store, embedder).index_all()
    retriever = Retriever(embedder, cfg.notes_dir, config=config)
    await retriever.load_index(store.get_all_documents())
    return retriever


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_retrieve_before_load_raises(self, embedder, notes_dir):
        retriever = Retriever(embedder, notes_dir)
        assert not retriever.is_ready
        with pytest.raises(NotReadyError):
            await retriever.retrieve("stars")

    @pytest.mark.asyncio
    async def test_blank_query_returns_nothing(self, cfg, embedder):
        retriever = await _load(cfg, embedder)
        assert await retriever.retrieve("   ") == []

    @pytest.mark.asyncio
    async def test_empty_index_returns_nothing(self, embedder, notes_dir):
        retriever = Retriever(embedder, notes_dir)
        await retriever.load_index([])
        assert retriever.is_ready
        assert await retriever.retrieve("stars") == []

    @pytest.mark.asyncio
    async def test_reload_replaces_snapshot(self, cfg, embedder):
        retriever = await _load(cfg, embedder)
        assert retriever.note_count() == 4
        await retriever.load_index([])
        assert retriever.document_count() == 0
        assert retriever.note_count() == 0

    @pytest.mark.asyncio
    async def test_graph_stats_exposed(self, cfg, embedder):
        retriever = await _load(cfg, embedder)
        assert retriever.graph_stats is not None
        assert retriever.graph_stats.note_count == 4


class TestScoring:
    @pytest.mark.asyncio
    async def test_hybrid_is_weighted_blend_of_semantic_and_keyword(self, cfg, embedder):
        retriever = await _load(cfg, embedder)
        query = "telescope lens mirror"

        semantic = {r.note_id: r.base_score for r in await retriever.retrieve(
            query, replace(PLAIN, search_mode="semantic"))}
        keyword = {r.note_id: r.base_score for r in await retriever.retrieve(
            query, replace(PLAIN, search_mode="keyword"))}
        hybrid = await retriever.retrieve(query, PLAIN)

        assert hybrid
        for r in hybrid:
            expected = 0.7 * semantic.get(r.note_id, 0.0) + 0.3 * keyword.get(r.note_id, 0.0)
            assert r.base_score == pytest.approx(expected)
            assert r.final_score == pytest.approx(r.base_score)
            assert 0.0 <= r.confidence <= 1.0

    @pytest.mark.asyncio
    async def test_keyword_mode_normalizes_to_top_note(self, cfg, embedder):
        retriever = await _load(cfg, embedder)
        results = await retriever.retrieve(
            "telescope", replace(PLAIN, search_mode="keyword"))
        assert {r.note_id for r in results} == {"Telescopes", "Stars"}
        assert results[0].base_score == pytest.approx(1.0)
        assert all(r.base_score <= 1.0 for r in results)

    @pytest.mark.asyncio
    async def test_results_sorted_by_final_score_and_capped(self, cfg, embedder):
        retriever = await _load(cfg, embedder)
        results = await retriever.retrieve(
            "stars galaxies", RetrievalConfig(min_score=0.0, top_k=2, expand_context=False))
        assert len(results) == 2
        assert results[0].final_score >= results[1].final_score

    @pytest.mark.asyncio
    async def test_min_score_filters_on_base_score(self, cfg, embedder):
        retriever = await _load(cfg, embedder)
        results = await retriever.retrieve(
            "refracting lens",
            replace(PLAIN, search_mode="keyword", min_score=1.0),
        )
        assert [r.note_id for r in results] == ["Telescopes"]

    @pytest.mark.asyncio
    async def test_chunks_sorted_best_first(self, cfg, embedder):
        retriever = await _load(cfg, embedder)
        for r in await retriever.retrieve("reflecting telescopes curved mirror", PLAIN):
            scores = [c.score for c in r.chunks]
            assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_titles_come_from_metadata(self, cfg, embedder):
        retriever = await _load(cfg, embedder)
        results = await retriever.retrieve("dough yeast", PLAIN)
        bread = next(r for r in results if r.note_id == "cooking/Bread")
        assert bread.note_title == "Bread"
        assert bread.note_path == str(cfg.notes_dir / "cooking" / "Bread.md")


class TestCentralityBoost:
    @pytest.mark.asyncio
    async def test_linked_note_outranks_identical_unlinked_note(self, tmp_path: Path):
        body = "Quasar spectroscopy reveals cosmological redshift. See [[B]] and [[C]].\n"
        write_note(tmp_path, "A.md", body)
        write_note(tmp_path, "B.md", "Back to [[A]] for more.\n")
        write_note(tmp_path, "C.md", "Links to [[A]] and [[B]].\n")
        write_note(tmp_path, "D.md", body)
        cfg = EngineConfig(notes_dir=tmp_path)

        retriever = await _load(cfg, BodyOnlyEmbedder(), RetrievalConfig(min_score=0.0, expand_context=False))
        results = {r.note_id: r for r in await retriever.retrieve("quasar spectroscopy redshift")}

        a, d = results["A"], results["D"]
        assert a.base_score == pytest.approx(d.base_score)
        assert a.graph_centrality == 1.0
        assert d.graph_centrality < a.graph_centrality
        assert a.final_score > d.final_score
        ranked = [r.note_id for r in await retriever.retrieve("quasar spectroscopy redshift")]
        assert ranked.index("A") < ranked.index("D")

    @pytest.mark.asyncio
    async def test_reranking_never_lowers_scores(self, cfg, embedder):
        retriever = await _load(cfg, embedder, RetrievalConfig(min_score=0.0, expand_context=False))
        for r in await retriever.retrieve("stars telescope"):
            assert r.final_score >= r.base_score


class TestContextExpansion:
    def test_expand_span_adds_surrounding_lines(self):
        body = "l1\nl2\nl3\nl4\nl5\nl6\nl7"
        assert expand_span(body, "l4", 2) == "l2\nl3\nl4\nl5\nl6"
        assert expand_span(body, "l1", 1) == "l1\nl2"
        assert expand_span(body, "missing", 2) is None

    @pytest.mark.asyncio
    async def test_top_chunk_is_expanded_scores_unchanged(self, tmp_path: Path):
        write_note(tmp_path, "long.md", (
            "# Intro\nfirst intro line\nsecond intro line\n"
            "# Target\nunique zebra sighting\n"
            "# Outro\nfirst outro line\nsecond outro line\n"
        ))
        cfg = EngineConfig(notes_dir=tmp_path)
        embedder = FakeEmbedder()
        plain = RetrievalConfig(min_score=0.0, search_mode="keyword", expand_context=False)
        retriever = await _load(cfg, embedder, plain)

        before = (await retriever.retrieve("zebra"))[0]
        after = (await retriever.retrieve("zebra", RetrievalConfig(
            min_score=0.0, search_mode="keyword", expand_context=True, context_lines=2)))[0]

        assert before.chunks[0].content == "# Target\nunique zebra sighting"
        assert after.chunks[0].content == (
            "first intro line\nsecond intro line\n# Target\nunique zebra sighting\n# Outro\nfirst outro line"
        )
        assert after.base_score == before.base_score
        assert after.final_score == before.final_score


class TestProviderFailures:
    @pytest.mark.asyncio
    async def test_query_dimension_mismatch(self, cfg, embedder):
        retriever = await _load(cfg, embedder)
        retriever.embedder = FakeEmbedder(dims=32)
        with pytest.raises(DimensionMismatchError):
            await retriever.retrieve("stars", PLAIN)

    @pytest.mark.asyncio
    async def test_provider_outage_is_wrapped(self, cfg, embedder, monkeypatch):
        retriever = await _load(cfg, embedder)

        def down(query):
            raise ConnectionError("refused")

        monkeypatch.setattr(embedder, "embed_query", down)
        with pytest.raises(ProviderError):
            await retriever.retrieve("stars", PLAIN)
        # keyword mode does not need the provider
        assert await retriever.retrieve("stars", replace(PLAIN, search_mode="keyword"))
