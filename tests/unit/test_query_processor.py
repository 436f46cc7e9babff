"""
Unit tests for query processing: terms, synonym expansion, phrases, PRF selection.
"""

import pytest

from irlab.bm25.feedback import select_expansion_terms
from irlab.bm25.query import SYNONYM_GROUPS, QueryProcessor

pytestmark = pytest.mark.unit


class TestQueryProcessor:
    """Test ProcessedQuery construction"""

    def test_terms_deduplicated_in_order(self):
        query = QueryProcessor().process("yaml pod yaml")
        assert query.terms == ["yaml", "pod"]
        assert query.original_query == "yaml pod yaml"

    def test_synonym_expansion_appends_group(self):
        """Expansion augments, never replaces"""
        query = QueryProcessor().process("质量")
        assert query.terms == ["质", "量", "质量"]
        assert query.expanded_terms == ["质", "量", "质量", "品质", "质量标准"]

    def test_scoring_terms_follow_expansion_flag(self):
        expanded = QueryProcessor(expand_synonyms=True).process("质量")
        plain = QueryProcessor(expand_synonyms=False).process("质量")
        assert "品质" in expanded.scoring_terms
        assert plain.scoring_terms == plain.terms
        assert "品质" in plain.expanded_terms

    def test_no_synonyms_for_unknown_terms(self):
        query = QueryProcessor().process("kubernetes")
        assert query.expanded_terms == query.terms == ["kubernetes"]

    def test_custom_synonym_table(self):
        processor = QueryProcessor(synonyms={"pod": ["container"]})
        assert processor.process("pod").expanded_terms == ["pod", "container"]

    def test_default_table_keys(self):
        assert set(SYNONYM_GROUPS) == {"产品", "标准", "质量", "制作", "流程"}

    def test_expand_example(self):
        assert QueryProcessor().expand(["质量", "iso"]) == ["质量", "iso", "品质", "质量标准"]

    def test_empty_query(self):
        query = QueryProcessor().process("  !! ")
        assert query.terms == []
        assert query.scoring_terms == []


class TestPhrases:
    """Test quoted phrase parsing"""

    def test_multi_term_phrase(self):
        query = QueryProcessor().process('find "quality control" now')
        assert query.phrases == [["quality", "control"]]

    def test_single_term_quote_is_not_a_phrase(self):
        assert QueryProcessor().process('"pods" running').phrases == []

    def test_several_phrases(self):
        phrases = QueryProcessor().extract_phrases('"blue green" and "canary release"')
        assert phrases == [["blue", "green"], ["canary", "release"]]


class TestWithExtraTerms:
    """Test query copies used by pseudo-relevance feedback"""

    def test_appends_without_duplicates(self):
        query = QueryProcessor().process("pod")
        extended = query.with_extra_terms(["helm", "pod"])
        assert extended.scoring_terms == ["pod", "helm"]
        assert query.scoring_terms == ["pod"]


class TestSelectExpansionTerms:
    """Test PRF term weighting: tf x chunk score"""

    def test_weighted_selection(self):
        feedback = [({"pod": 3, "yaml": 1}, 2.0), ({"pod": 1, "helm": 2}, 1.0)]
        assert select_expansion_terms(feedback, {"yaml"}, max_terms=2) == ["pod", "helm"]

    def test_query_terms_never_selected(self):
        feedback = [({"pod": 10, "helm": 1}, 1.0)]
        assert select_expansion_terms(feedback, {"pod"}) == ["helm"]

    def test_limit(self):
        feedback = [({f"t{i}": i + 1 for i in range(10)}, 1.0)]
        assert select_expansion_terms(feedback, set(), max_terms=5) == ["t9", "t8", "t7", "t6", "t5"]

    def test_ties_ordered_by_term(self):
        feedback = [({"zeta": 1, "alpha": 1, "mid": 1}, 1.0)]
        assert select_expansion_terms(feedback, set()) == ["alpha", "mid", "zeta"]

    def test_non_positive_weights_skipped(self):
        feedback = [({"pod": 2}, 0.0), ({"helm": 1}, -1.0)]
        assert select_expansion_terms(feedback, set()) == []

    def test_zero_terms_requested(self):
        assert select_expansion_terms([({"pod": 1}, 1.0)], set(), max_terms=0) == []
