"""
Unit tests for posting and term record construction.
"""

import pytest

from irlab.bm25.index_builder import aggregate_term, build_postings, build_term_stats, summarize_terms
from irlab.config import FieldWeights

pytestmark = pytest.mark.unit


class TestBuildPostings:
    """Test one posting per (term, chunk)"""

    def test_posting_per_distinct_term(self, chunk_factory):
        chunk = chunk_factory("d1", 0, {"pod": 2, "yaml": 1})
        postings = build_postings([chunk])

        assert sorted((p.term, p.term_freq) for p in postings) == [("pod", 2), ("yaml", 1)]
        assert all(p.doc_id == "d1" and p.chunk_id == "d1-c0" for p in postings)

    def test_plain_chunk_weights(self, chunk_factory):
        posting = build_postings([chunk_factory("d1", 0, {"pod": 1})])[0]
        assert posting.content_weight == 1.0
        assert posting.title_weight is None
        assert posting.table_header_weight is None
        assert posting.field_weight() == 1.0

    def test_title_and_table_header_weights(self, chunk_factory):
        title = chunk_factory("d1", 0, {"guide": 1}, is_title=True)
        header = chunk_factory("d1", 1, {"version": 1}, is_table_header=True)
        postings = {p.term: p for p in build_postings([title, header])}

        assert postings["guide"].field_weight() == 2.0
        assert postings["version"].field_weight() == 1.5

    def test_strongest_field_wins(self, chunk_factory):
        chunk = chunk_factory("d1", 0, {"name": 1}, is_title=True, is_table_header=True)
        assert build_postings([chunk])[0].field_weight() == 2.0

    def test_custom_weights(self, chunk_factory):
        weights = FieldWeights(title=3.0, content=1.0, table_header=1.2)
        chunk = chunk_factory("d1", 0, {"guide": 1}, is_title=True)
        assert build_postings([chunk], weights)[0].field_weight() == 3.0


class TestTermStats:
    """Test term records derived from postings"""

    def test_aggregate(self, chunk_factory):
        chunks = [
            chunk_factory("d1", 0, {"pod": 2}),
            chunk_factory("d1", 1, {"pod": 4}),
            chunk_factory("d2", 0, {"pod": 3}),
        ]
        record = aggregate_term("pod", build_postings(chunks))

        assert record.doc_freq == 2
        assert record.chunk_freq == 3
        assert record.total_freq == 9
        assert record.avg_term_freq == pytest.approx(3.0)
        assert record.max_term_freq == 4

    def test_aggregate_empty(self):
        assert aggregate_term("pod", []) is None

    def test_build_term_stats(self, chunk_factory):
        chunks = [chunk_factory("d1", 0, {"pod": 1, "yaml": 2}), chunk_factory("d2", 0, {"pod": 1})]
        records = {r.term: r for r in build_term_stats(build_postings(chunks))}

        assert set(records) == {"pod", "yaml"}
        assert records["pod"].doc_freq == 2
        assert records["yaml"].chunk_freq == 1


class TestSummarizeTerms:
    """Test per-document term totals"""

    def test_summary(self, chunk_factory):
        chunks = [chunk_factory("d1", 0, {"pod": 2, "yaml": 1}), chunk_factory("d1", 1, {"pod": 1})]
        summary = summarize_terms(chunks)

        assert summary.total_terms == 4
        assert summary.unique_terms == 2
        assert summary.avg_terms_per_chunk == pytest.approx(2.0)

    def test_no_chunks(self):
        summary = summarize_terms([])
        assert summary.total_terms == 0
        assert summary.avg_terms_per_chunk == 0.0
