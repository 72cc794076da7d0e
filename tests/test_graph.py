"""Tests for the wikilink graph analyzer and centrality boost."""

from pathlib import Path

import numpy as np

from conftest import write_note
from noterag.graph.analyzer import GraphAnalyzer
from noterag.models import DocumentMetadata, NoteGraphStats, RetrievalResult, VectorDocument
from noterag.retrieval.graph_boost import GraphBoostAdjuster, GraphBoostConfig, compute_centrality
from noterag.utils import extract_wikilinks, normalize_note_title, parse_wikilinks


def _doc(note_id: str, path: str, title: str) -> VectorDocument:
    return VectorDocument(
        id=f"{note_id}_chunk_0", note_id=note_id, note_path=path, chunk_index=0,
        content="", embedding=np.zeros(2, dtype=np.float32), metadata=DocumentMetadata(title=title),
    )


def _result(note_id: str, base: float, centrality: float) -> RetrievalResult:
    return RetrievalResult(
        note_id=note_id, note_path=f"/n/{note_id}.md", note_title=note_id, chunks=[],
        base_score=base, final_score=base, confidence=0.0, graph_centrality=centrality,
    )


class TestWikilinks:
    def test_parse_forms(self):
        links = parse_wikilinks("[[A]] [[B#Sec]] [[C|alias]] [[D#S|al]]")
        assert [(l.target, l.section, l.alias) for l in links] == [
            ("A", None, None), ("B", "Sec", None), ("C", None, "alias"), ("D", "S", "al"),
        ]

    def test_extract_unique_in_order(self):
        assert extract_wikilinks("[[B]] [[A]] [[B|again]]") == ["B", "A"]

    def test_normalize_title(self):
        assert normalize_note_title("  My_Note-Title.md ") == "my note title"


class TestGraphAnalyzer:
    def test_backlinks_forward_links_and_orphans(self, notes_dir: Path):
        stats = GraphAnalyzer().analyze(notes_dir)

        assert stats.note_count == 4
        assert {e.note_title for e in stats.backlinks["Stars"]} == {"Telescopes", "Galaxies"}
        assert [e.note_title for e in stats.backlinks["Telescopes"]] == ["Stars"]
        assert stats.backlinks["Telescopes"][0].alias == "telescope"
        assert stats.forward_links[str(notes_dir / "Telescopes.md")] == ["Stars", "Galaxies"]
        assert stats.orphan_notes == [str(notes_dir / "cooking" / "Bread.md")]
        assert stats.unique_connections == 4
        assert stats.total_mentions == 4
        assert stats.dangling_links == {}

    def test_dangling_links(self, tmp_path: Path):
        write_note(tmp_path, "a.md", "See [[Nowhere]].")
        stats = GraphAnalyzer().analyze(tmp_path)
        assert stats.dangling_links == {"Nowhere": [str(tmp_path / "a.md")]}

    def test_links_resolve_by_frontmatter_title(self, tmp_path: Path):
        write_note(tmp_path, "file-name.md", "---\ntitle: Pretty Title\n---\nbody")
        write_note(tmp_path, "other.md", "[[pretty title]] and [[file name]]")
        stats = GraphAnalyzer().analyze(tmp_path)
        assert len(stats.backlinks["Pretty Title"]) == 1
        assert stats.dangling_links == {}

    def test_ignore_patterns_and_hidden_dirs(self, tmp_path: Path):
        write_note(tmp_path, "keep.md", "x")
        write_note(tmp_path, "drafts/skip.md", "x")
        write_note(tmp_path, ".noterag/inner.md", "x")
        stats = GraphAnalyzer(ignore=["drafts/**"]).analyze(tmp_path)
        assert stats.note_count == 1

    def test_cache_is_reused_until_files_change(self, tmp_path: Path):
        write_note(tmp_path, "a.md", "[[b]]")
        analyzer = GraphAnalyzer()
        first = analyzer.analyze(tmp_path)
        assert analyzer.analyze(tmp_path) is first
        assert analyzer.analyze(tmp_path, use_cache=False) is not first

        write_note(tmp_path, "b.md", "new note")
        second = analyzer.analyze(tmp_path)
        assert second is not first
        assert "b" in second.backlinks

        analyzer.invalidate(tmp_path)
        assert analyzer.analyze(tmp_path) is not second


class TestCentrality:
    def test_degree_normalized_by_max(self):
        stats = NoteGraphStats(
            backlinks={"A": [object(), object()], "B": [object()]},
            forward_links={"/n/A.md": ["B", "C"], "/n/B.md": ["A"], "/n/C.md": ["A", "B"]},
        )
        docs = [_doc("A", "/n/A.md", "A"), _doc("B", "/n/B.md", "B"), _doc("C", "/n/C.md", "C"),
                _doc("D", "/n/D.md", "D")]
        c = compute_centrality(docs, stats)
        assert c["A"] == 1.0
        assert c["B"] == 0.5
        assert c["C"] == 0.5
        assert c["D"] == 0.0

    def test_no_graph_means_no_centrality(self):
        assert compute_centrality([_doc("A", "/n/A.md", "A")], None) == {}

    def test_no_links_gives_zero(self):
        c = compute_centrality([_doc("A", "/n/A.md", "A")], NoteGraphStats())
        assert c == {"A": 0.0}


class TestGraphBoost:
    def test_final_score_boosted_base_untouched(self):
        results = [_result("a", 0.5, 1.0), _result("b", 0.5, 0.0)]
        boosted = GraphBoostAdjuster(GraphBoostConfig(boost_factor=0.2)).apply(results)
        assert [r.base_score for r in boosted] == [0.5, 0.5]
        assert boosted[0].final_score == 0.5 * 1.2
        assert boosted[1].final_score == 0.5
        assert all(r.final_score >= r.base_score for r in boosted)
        assert [r.note_id for r in boosted] == ["a", "b"]

    def test_disabled_resets_final_to_base(self):
        results = [_result("a", 0.4, 1.0)]
        out = GraphBoostAdjuster(GraphBoostConfig(enabled=False)).apply(results)
        assert out[0].final_score == 0.4
