"""
BM25 (Best Match 25) ranking for two-tier hierarchical retrieval.

Scores are computed against corpus-wide statistics kept by the index store:
document-level frequencies for the coarse stage, chunk-level frequencies
for the fine stage.

Components:
- tokenizer: Term extraction (Latin words, digit runs, CJK n-grams)
- scorer: Classic BM25 with IDF and field weights
- query: Query normalization, synonym expansion, phrase parsing
- feedback: Pseudo-relevance feedback term selection
- index_builder: Postings and term records from segmented chunks
"""

from .feedback import select_expansion_terms
from .index_builder import build_postings, build_term_stats, summarize_terms
from .query import ProcessedQuery, QueryProcessor
from .scorer import BM25Scorer, TermScore, bm25_term_score
from .tokenizer import extract_terms, term_frequencies, term_stream

__all__ = [
    "extract_terms",
    "term_stream",
    "term_frequencies",
    "BM25Scorer",
    "TermScore",
    "bm25_term_score",
    "QueryProcessor",
    "ProcessedQuery",
    "select_expansion_terms",
    "build_postings",
    "build_term_stats",
    "summarize_terms",
]
