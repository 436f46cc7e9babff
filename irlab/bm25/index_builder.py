"""
BM25 index builder - turns segmented chunks into postings and term records.

Each (term, chunk) pair becomes one Posting carrying the chunk-level term
frequency and the field weights of the chunk (title / table header flags).
Term records are aggregates over postings and are never edited by hand:

    doc_freq      = distinct documents among the term's postings
    chunk_freq    = number of postings
    total_freq    = Σ posting.term_freq
    avg_term_freq = total_freq / chunk_freq
    max_term_freq = max posting.term_freq
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from ..config import FieldWeights
from ..models import Chunk, Posting, TermStats, TermSummary

logger = logging.getLogger(__name__)


def build_postings(chunks: Iterable[Chunk], field_weights: Optional[FieldWeights] = None) -> List[Posting]:
    """
    One posting per distinct term of every chunk.

    Example:
        >>> chunk = Chunk(id="c1", doc_id="d1", chunk_index=0, content="Pod pod",
        ...               token_count=2, start_offset=0, end_offset=7,
        ...               term_frequencies={"pod": 2})
        >>> [(p.term, p.term_freq, p.field_weight()) for p in build_postings([chunk])]
        [('pod', 2, 1.0)]
    """
    weights = field_weights or FieldWeights()
    postings = []
    for chunk in chunks:
        for term, tf in chunk.term_frequencies.items():
            postings.append(Posting(
                term=term,
                doc_id=chunk.doc_id,
                chunk_id=chunk.id,
                term_freq=tf,
                content_weight=weights.content,
                title_weight=weights.title if chunk.is_title else None,
                table_header_weight=weights.table_header if chunk.is_table_header else None,
            ))
    return postings


def aggregate_term(term: str, postings: Iterable[Posting]) -> Optional[TermStats]:
    """Term record derived from its postings, None when there are none"""
    postings = list(postings)
    if not postings:
        return None
    total_freq = sum(p.term_freq for p in postings)
    return TermStats(
        term=term,
        doc_freq=len({p.doc_id for p in postings}),
        chunk_freq=len(postings),
        total_freq=total_freq,
        avg_term_freq=total_freq / len(postings),
        max_term_freq=max(p.term_freq for p in postings),
    )


def build_term_stats(postings: Iterable[Posting]) -> List[TermStats]:
    """Term records for every term in a posting batch"""
    by_term: Dict[str, List[Posting]] = defaultdict(list)
    for posting in postings:
        by_term[posting.term].append(posting)

    terms = [aggregate_term(term, plist) for term, plist in by_term.items()]
    logger.debug(f"Built {len(terms)} term records from {sum(len(p) for p in by_term.values())} postings")
    return terms


def summarize_terms(chunks: List[Chunk]) -> TermSummary:
    """Per-document term totals over its chunks"""
    total = sum(sum(c.term_frequencies.values()) for c in chunks)
    unique = set()
    for chunk in chunks:
        unique.update(chunk.term_frequencies)
    return TermSummary(
        total_terms=total,
        unique_terms=len(unique),
        avg_terms_per_chunk=total / len(chunks) if chunks else 0.0,
    )
