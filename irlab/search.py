"""
Hierarchical search orchestrator.

Two-stage retrieval over the index store:

1. Coarse stage (documents)
   tf     = Σ posting.term_freq of the term across the document's chunks
   length = document.total_tokens, avgdl = avg_document_length
   df, N  = term doc_freq, total_documents
   weight = 1.0
   Documents scoring <= 0 are dropped, the best top_k survive.

2. Fine stage (chunks of the surviving documents)
   tf     = posting.term_freq
   length = chunk.token_count, avgdl = avg_chunk_length
   df, N  = term chunk_freq, total_chunks
   weight = posting.field_weight()
   Chunks scoring <= 0 are dropped, the best top_n are returned.

Direct search skips stage 1 and ranks every chunk containing a query term.

Results under min_score are removed. With PRF enabled, terms from the top
results expand the query and the fine stage runs again over the same
candidate set; its results (filtered by min_score again) replace the
initial ones.

Ordering is deterministic: score descending, then document id, then
chunk index.

Scoring loops check an optional threading.Event between units and raise
SearchCancelledError once it is set.
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Union

from .bm25.feedback import select_expansion_terms
from .bm25.query import ProcessedQuery, QueryProcessor
from .bm25.scorer import BM25Scorer, TermScore
from .bm25.tokenizer import unique_terms
from .config import BM25Parameters, SearchOptions
from .exceptions import InconsistentIndexError, SearchCancelledError
from .index.base import IndexStore
from .models import Chunk, Document, DocumentStatus, Posting

logger = logging.getLogger(__name__)


@dataclass
class ScoreExplanation:
    """Why a unit scored what it scored"""
    term_scores: Dict[str, float]
    field_boosts: Dict[str, float]
    final_score: float
    details: Dict[str, TermScore] = field(default_factory=dict)
    expansion_terms: List[str] = field(default_factory=list)


@dataclass
class DocumentScore:
    """Coarse stage hit"""
    document: Document
    score: float
    explanation: Optional[ScoreExplanation] = None


@dataclass
class SearchResult:
    """Single ranked chunk with its owning document"""
    document: Document
    chunk: Chunk
    score: float
    explanation: Optional[ScoreExplanation] = None


def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise SearchCancelledError("Search was cancelled")


def _explain(term_scores: List[TermScore], total: float) -> ScoreExplanation:
    return ScoreExplanation(
        term_scores={ts.term: ts.score for ts in term_scores},
        field_boosts={ts.term: ts.field_weight for ts in term_scores},
        final_score=total,
        details={ts.term: ts for ts in term_scores},
    )


class HierarchicalSearcher:
    """
    Ranks chunks for a query against one index store.

    Holds the store's read lock for the duration of a query, so every
    stage sees the same snapshot of documents, postings and statistics.
    """

    def __init__(
        self,
        store: IndexStore,
        params: Optional[BM25Parameters] = None,
        query_processor: Optional[QueryProcessor] = None,
        prf_feedback_docs: int = 3,
        prf_expansion_terms: int = 5,
    ):
        self.store = store
        self.scorer = BM25Scorer(params)
        self.query_processor = query_processor or QueryProcessor()
        self.prf_feedback_docs = prf_feedback_docs
        self.prf_expansion_terms = prf_expansion_terms

    @property
    def params(self) -> BM25Parameters:
        return self.scorer.params

    def update_parameters(self, params: BM25Parameters) -> None:
        self.scorer = BM25Scorer(params)
        logger.info(f"Updated BM25 parameters: k1={params.k1}, b={params.b}")

    # ================ Entry points ================

    def search(
        self,
        query: Union[str, ProcessedQuery],
        options: Optional[SearchOptions] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[SearchResult]:
        """
        Run a query in the mode selected by options.use_hierarchical_search.

        Returns:
            Ranked results, [] when nothing matches
        """
        options = options or SearchOptions()
        if options.use_hierarchical_search:
            return self.hierarchical_search(query, options, cancel_event)
        return self.direct_search(query, options, cancel_event)

    def hierarchical_search(
        self,
        query: Union[str, ProcessedQuery],
        options: Optional[SearchOptions] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[SearchResult]:
        """Documents first, then chunks within the top_k documents"""
        return self._run(query, options or SearchOptions(), cancel_event, hierarchical=True)

    def direct_search(
        self,
        query: Union[str, ProcessedQuery],
        options: Optional[SearchOptions] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[SearchResult]:
        """Chunks across the whole corpus, no document stage"""
        return self._run(query, options or SearchOptions(), cancel_event, hierarchical=False)

    def _run(
        self,
        query: Union[str, ProcessedQuery],
        options: SearchOptions,
        cancel_event: Optional[threading.Event],
        hierarchical: bool,
    ) -> List[SearchResult]:
        processed = query if isinstance(query, ProcessedQuery) else self.query_processor.process(query)
        terms = processed.scoring_terms
        mode = "hierarchical" if hierarchical else "direct"
        logger.info(f"Searching ({mode}) {processed.original_query!r}: {len(terms)} scoring terms")

        if not terms:
            return []

        with self.store.lock.read_locked():
            candidate_ids: Optional[List[str]] = None
            if hierarchical:
                documents = self.search_documents(terms, options.top_k, options.explain, cancel_event)
                logger.debug(f"Coarse stage kept {len(documents)} documents")
                if not documents:
                    return []
                candidate_ids = [d.document.id for d in documents]

            results = self.search_chunks(terms, candidate_ids, options.top_n, options.explain, cancel_event)
            results = [r for r in results if r.score >= options.min_score]

            if options.use_prf and results:
                results = self._apply_feedback(processed, results, candidate_ids, options, cancel_event)

        logger.info(f"Search completed: {len(results)} results")
        return results

    # ================ Stages ================

    def search_documents(
        self,
        terms: List[str],
        top_k: int,
        explain: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[DocumentScore]:
        """Coarse stage: rank completed documents by aggregated term frequencies"""
        with self.store.lock.read_locked():
            stats = self.store.get_statistics()
            term_stats = self.store.lookup_terms(terms)
            postings = self.store.postings_for_terms(terms)

            doc_tf: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
            for term, plist in postings.items():
                for posting in plist:
                    doc_tf[posting.doc_id][term] += posting.term_freq

            hits = []
            for doc_id in sorted(doc_tf):
                _check_cancelled(cancel_event)
                document = self.store.get_document(doc_id)
                if document is None:
                    raise InconsistentIndexError(
                        f"Posting references missing document {doc_id}", details={"doc_id": doc_id}
                    )
                if document.status != DocumentStatus.COMPLETED:
                    continue

                breakdown = [
                    self.scorer.term_score(
                        term, tf, document.total_tokens, stats.avg_document_length,
                        self._term_record(term_stats, term).doc_freq, stats.total_documents,
                    )
                    for term, tf in doc_tf[doc_id].items()
                ]
                score = sum(ts.score for ts in breakdown)
                if score > 0:
                    hits.append(DocumentScore(document, score, _explain(breakdown, score) if explain else None))

        hits.sort(key=lambda h: (-h.score, h.document.id))
        return hits[:top_k]

    def search_chunks(
        self,
        terms: List[str],
        doc_ids: Optional[Iterable[str]],
        top_n: int,
        explain: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[SearchResult]:
        """Fine stage: rank chunks, optionally restricted to a document subset"""
        with self.store.lock.read_locked():
            stats = self.store.get_statistics()
            term_stats = self.store.lookup_terms(terms)
            if doc_ids is None:
                postings = self.store.postings_for_terms(terms)
            else:
                postings = self.store.postings_for_terms_in_documents(terms, doc_ids)

            by_chunk: Dict[str, List[Posting]] = defaultdict(list)
            for plist in postings.values():
                for posting in plist:
                    by_chunk[posting.chunk_id].append(posting)

            documents: Dict[str, Optional[Document]] = {}
            results = []
            for chunk_id in sorted(by_chunk):
                _check_cancelled(cancel_event)
                chunk = self.store.get_chunk(chunk_id)
                if chunk is None:
                    raise InconsistentIndexError(
                        f"Posting references missing chunk {chunk_id}", details={"chunk_id": chunk_id}
                    )
                if chunk.doc_id not in documents:
                    documents[chunk.doc_id] = self.store.get_document(chunk.doc_id)
                document = documents[chunk.doc_id]
                if document is None:
                    raise InconsistentIndexError(
                        f"Chunk {chunk_id} references missing document {chunk.doc_id}",
                        details={"chunk_id": chunk_id, "doc_id": chunk.doc_id},
                    )
                if document.status != DocumentStatus.COMPLETED:
                    continue

                breakdown = [
                    self.scorer.term_score(
                        p.term, p.term_freq, chunk.token_count, stats.avg_chunk_length,
                        self._term_record(term_stats, p.term).chunk_freq, stats.total_chunks,
                        p.field_weight(),
                    )
                    for p in by_chunk[chunk_id]
                ]
                score = sum(ts.score for ts in breakdown)
                if score > 0:
                    results.append(SearchResult(document, chunk, score, _explain(breakdown, score) if explain else None))

        results.sort(key=lambda r: (-r.score, r.document.id, r.chunk.chunk_index))
        return results[:top_n]

    def _term_record(self, term_stats, term):
        record = term_stats.get(term)
        if record is None:
            raise InconsistentIndexError(f"Term '{term}' has postings but no statistics", details={"term": term})
        return record

    # ================ Pseudo-relevance feedback ================

    def _apply_feedback(
        self,
        processed: ProcessedQuery,
        results: List[SearchResult],
        candidate_ids: Optional[List[str]],
        options: SearchOptions,
        cancel_event: Optional[threading.Event],
    ) -> List[SearchResult]:
        feedback = [(r.chunk.term_frequencies, r.score) for r in results[:self.prf_feedback_docs]]
        expansion = select_expansion_terms(feedback, set(processed.scoring_terms), self.prf_expansion_terms)
        if not expansion:
            logger.debug("PRF found no expansion terms")
            return results

        logger.info(f"Expanding query with feedback terms: {expansion}")
        expanded = processed.with_extra_terms(expansion)
        rerun = self.search_chunks(expanded.scoring_terms, candidate_ids, options.top_n, options.explain, cancel_event)
        rerun = [r for r in rerun if r.score >= options.min_score]
        for result in rerun:
            if result.explanation is not None:
                result.explanation.expansion_terms = list(expansion)
        return rerun

    # ================ Suggestions ================

    def suggestions(self, query: str, limit: int = 5) -> List[str]:
        """Indexed terms that contain a query term, most frequent first"""
        terms = unique_terms(query)
        if not terms:
            return []

        distribution = self.store.term_distribution()
        suggestions: List[str] = []
        for term in terms:
            related = [t for t, _ in distribution if term in t and t != term][:3]
            for candidate in related:
                if candidate not in suggestions:
                    suggestions.append(candidate)
        return suggestions[:limit]
