"""
In-memory index store.

Layout:
    _documents      doc_id -> Document
    _chunks         chunk_id -> Chunk
    _chunks_by_doc  doc_id -> [chunk_id, ...] ordered by chunk_index
    _postings       term -> {chunk_id: Posting}
    _terms          term -> TermStats (always derived from _postings)
    _terms_by_doc   doc_id -> {term, ...}

Documents are stored and returned as copies; chunks and postings are
treated as immutable once added.

Deletion paths collect the ids to remove first and mutate afterwards.
"""

import functools
import json
import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

from pydantic import ValidationError

from ..bm25.index_builder import aggregate_term, build_postings
from ..config import FieldWeights
from ..exceptions import InconsistentIndexError, NotFoundError
from ..models import Chunk, Document, DocumentStatus, IndexStatistics, Posting, TermStats
from ..utils import utc_now
from .base import IndexStore

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def _reads(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self.lock.read_locked():
            return method(self, *args, **kwargs)
    return wrapper


def _writes(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self.lock.write_locked():
            return method(self, *args, **kwargs)
    return wrapper


class MemoryIndexStore(IndexStore):
    """Process-local index store"""

    def __init__(self, field_weights: Optional[FieldWeights] = None):
        super().__init__()
        self.field_weights = field_weights or FieldWeights()
        self._documents: Dict[str, Document] = {}
        self._chunks: Dict[str, Chunk] = {}
        self._chunks_by_doc: Dict[str, List[str]] = {}
        self._postings: Dict[str, Dict[str, Posting]] = {}
        self._terms: Dict[str, TermStats] = {}
        self._terms_by_doc: Dict[str, Set[str]] = {}
        self._statistics = IndexStatistics()
        logger.info("Initialized in-memory index store")

    # ================ Documents ================

    @_writes
    def add_document(self, document: Document) -> Document:
        self._documents[document.id] = document.model_copy(deep=True)
        self._chunks_by_doc.setdefault(document.id, [])
        self._refresh_statistics()
        logger.debug(f"Stored document {document.id} ({document.file_name}, status={document.status.value})")
        return document.model_copy(deep=True)

    @_writes
    def update_document(self, doc_id: str, **changes) -> Document:
        existing = self._documents.get(doc_id)
        if existing is None:
            raise NotFoundError(f"Document not found: {doc_id}", details={"doc_id": doc_id})

        changes.setdefault("last_modified", utc_now())
        updated = Document.model_validate({**existing.model_dump(), **changes})
        self._documents[doc_id] = updated
        self._refresh_statistics()
        return updated.model_copy(deep=True)

    @_writes
    def delete_document(self, doc_id: str) -> None:
        if doc_id not in self._documents:
            raise NotFoundError(f"Document not found: {doc_id}", details={"doc_id": doc_id})

        postings_removed, terms_removed = self._drop_document_postings(doc_id)
        chunks_removed = self._drop_document_chunks(doc_id)
        del self._documents[doc_id]
        self._refresh_statistics()
        logger.info(
            f"Deleted document {doc_id}: {chunks_removed} chunks, "
            f"{postings_removed} postings, {terms_removed} orphaned terms"
        )

    @_reads
    def get_document(self, doc_id: str) -> Optional[Document]:
        document = self._documents.get(doc_id)
        return document.model_copy(deep=True) if document else None

    @_reads
    def list_documents(self) -> List[Document]:
        documents = sorted(self._documents.values(), key=lambda d: (d.uploaded_at, d.id), reverse=True)
        return [d.model_copy(deep=True) for d in documents]

    @_reads
    def find_document_by_hash(self, file_hash: str) -> Optional[Document]:
        for document in self._documents.values():
            if document.file_hash == file_hash:
                return document.model_copy(deep=True)
        return None

    # ================ Chunks ================

    @_writes
    def add_chunks(self, chunks: Iterable[Chunk]) -> None:
        touched: Set[str] = set()
        for chunk in chunks:
            self._chunks[chunk.id] = chunk.model_copy(deep=True)
            ids = self._chunks_by_doc.setdefault(chunk.doc_id, [])
            if chunk.id not in ids:
                ids.append(chunk.id)
            touched.add(chunk.doc_id)

        for doc_id in touched:
            self._chunks_by_doc[doc_id].sort(key=lambda cid: self._chunks[cid].chunk_index)
        self._refresh_statistics()

    @_reads
    def get_chunks_by_document(self, doc_id: str) -> List[Chunk]:
        return [
            self._chunks[cid].model_copy(deep=True)
            for cid in self._chunks_by_doc.get(doc_id, []) if cid in self._chunks
        ]

    @_reads
    def get_chunk(self, chunk_id: str) -> Optional[Chunk]:
        chunk = self._chunks.get(chunk_id)
        return chunk.model_copy(deep=True) if chunk else None

    @_writes
    def delete_chunks_for_document(self, doc_id: str) -> int:
        removed = self._drop_document_chunks(doc_id)
        self._refresh_statistics()
        return removed

    def _drop_document_chunks(self, doc_id: str) -> int:
        chunk_ids = set(self._chunks_by_doc.pop(doc_id, []))
        chunk_ids.update(cid for cid, c in self._chunks.items() if c.doc_id == doc_id)
        for chunk_id in chunk_ids:
            self._chunks.pop(chunk_id, None)

        # Postings must never outlive their chunk
        touched = set()
        for term in list(self._terms_by_doc.get(doc_id, ())):
            bucket = self._postings.get(term, {})
            stale = [cid for cid in bucket if cid in chunk_ids]
            for cid in stale:
                del bucket[cid]
            if stale:
                touched.add(term)
        self._recompute_terms(touched)
        self._rebuild_doc_terms(doc_id)
        return len(chunk_ids)

    # ================ Terms & postings ================

    @_writes
    def add_terms(self, terms: Iterable[TermStats]) -> None:
        """Refresh term records; records are always re-derived from postings"""
        touched = set()
        for record in terms:
            if self._postings.get(record.term):
                touched.add(record.term)
            else:
                logger.debug(f"Ignoring record for term '{record.term}' without postings")
        self._recompute_terms(touched)
        self._refresh_statistics()

    @_writes
    def add_postings(self, postings: Iterable[Posting]) -> None:
        touched = set()
        count = 0
        for posting in postings:
            self._postings.setdefault(posting.term, {})[posting.chunk_id] = posting
            self._terms_by_doc.setdefault(posting.doc_id, set()).add(posting.term)
            touched.add(posting.term)
            count += 1
        self._recompute_terms(touched)
        self._refresh_statistics()
        logger.debug(f"Added {count} postings across {len(touched)} terms")

    @_writes
    def delete_terms_for_document(self, doc_id: str) -> int:
        """Drop the document's contribution to every term; returns removed term count"""
        _, terms_removed = self._drop_document_postings(doc_id)
        self._refresh_statistics()
        return terms_removed

    @_writes
    def delete_postings_for_document(self, doc_id: str) -> int:
        postings_removed, _ = self._drop_document_postings(doc_id)
        self._refresh_statistics()
        return postings_removed

    def _drop_document_postings(self, doc_id: str) -> Tuple[int, int]:
        terms = self._terms_by_doc.pop(doc_id, set())
        postings_removed = 0
        for term in terms:
            bucket = self._postings.get(term, {})
            stale = [cid for cid, p in bucket.items() if p.doc_id == doc_id]
            for cid in stale:
                del bucket[cid]
            postings_removed += len(stale)

        before = len(self._terms)
        self._recompute_terms(terms)
        return postings_removed, before - len(self._terms)

    def _recompute_terms(self, terms: Iterable[str]) -> None:
        for term in list(terms):
            bucket = self._postings.get(term)
            record = aggregate_term(term, bucket.values()) if bucket else None
            if record is None:
                self._postings.pop(term, None)
                self._terms.pop(term, None)
            else:
                self._terms[term] = record

    def _rebuild_doc_terms(self, doc_id: str) -> None:
        remaining = {
            term for term in self._terms_by_doc.get(doc_id, ())
            if any(p.doc_id == doc_id for p in self._postings.get(term, {}).values())
        }
        if remaining:
            self._terms_by_doc[doc_id] = remaining
        else:
            self._terms_by_doc.pop(doc_id, None)

    @_reads
    def lookup_terms(self, terms: Iterable[str]) -> Dict[str, TermStats]:
        return {term: self._terms[term] for term in terms if term in self._terms}

    @_reads
    def postings_for_terms(self, terms: Iterable[str]) -> Dict[str, List[Posting]]:
        return {
            term: list(self._postings[term].values())
            for term in terms if self._postings.get(term)
        }

    @_reads
    def postings_for_terms_in_documents(
        self, terms: Iterable[str], doc_ids: Iterable[str]
    ) -> Dict[str, List[Posting]]:
        wanted = set(doc_ids)
        result = {}
        for term in terms:
            filtered = [p for p in self._postings.get(term, {}).values() if p.doc_id in wanted]
            if filtered:
                result[term] = filtered
        return result

    @_reads
    def all_terms(self) -> List[TermStats]:
        return list(self._terms.values())

    # ================ Statistics ================

    @_reads
    def get_statistics(self) -> IndexStatistics:
        return self._statistics.model_copy()

    @_writes
    def set_statistics(self, statistics: IndexStatistics) -> None:
        self._statistics = statistics.model_copy()

    def _refresh_statistics(self) -> None:
        completed = [d for d in self._documents.values() if d.status == DocumentStatus.COMPLETED]
        chunk_lengths = [
            self._chunks[cid].token_count
            for d in completed
            for cid in self._chunks_by_doc.get(d.id, [])
            if cid in self._chunks
        ]

        self._statistics = IndexStatistics(
            total_documents=len(completed),
            total_chunks=len(chunk_lengths),
            total_terms=sum(d.term_stats.total_terms for d in completed),
            unique_terms=len(self._terms),
            avg_document_length=sum(d.total_tokens for d in completed) / len(completed) if completed else 0.0,
            avg_chunk_length=sum(chunk_lengths) / len(chunk_lengths) if chunk_lengths else 0.0,
        )

    # ================ Maintenance ================

    @_writes
    def reindex_all(self, field_weights: Optional[FieldWeights] = None) -> IndexStatistics:
        if field_weights is not None:
            self.field_weights = field_weights

        logger.info("Starting full reindex...")
        orphaned = [cid for cid, c in self._chunks.items() if c.doc_id not in self._documents]
        for chunk_id in orphaned:
            del self._chunks[chunk_id]

        self._chunks_by_doc = {doc_id: [] for doc_id in self._documents}
        for chunk in sorted(self._chunks.values(), key=lambda c: (c.doc_id, c.chunk_index)):
            self._chunks_by_doc[chunk.doc_id].append(chunk.id)

        self._postings = {}
        self._terms = {}
        self._terms_by_doc = {}
        for doc_id, chunk_ids in self._chunks_by_doc.items():
            for posting in build_postings([self._chunks[cid] for cid in chunk_ids], self.field_weights):
                self._postings.setdefault(posting.term, {})[posting.chunk_id] = posting
                self._terms_by_doc.setdefault(doc_id, set()).add(posting.term)
        self._recompute_terms(list(self._postings))

        self._refresh_statistics()
        logger.info(
            f"Full reindex completed: {len(self._terms)} terms, "
            f"{sum(len(b) for b in self._postings.values())} postings, {len(orphaned)} orphaned chunks dropped"
        )
        return self._statistics.model_copy()

    @_writes
    def vacuum(self) -> Dict[str, int]:
        logger.info("Running vacuum...")
        orphaned_chunks = [cid for cid, c in self._chunks.items() if c.doc_id not in self._documents]
        for chunk_id in orphaned_chunks:
            del self._chunks[chunk_id]

        dangling_postings = 0
        for term, bucket in list(self._postings.items()):
            stale = [cid for cid, p in bucket.items() if cid not in self._chunks or p.doc_id not in self._documents]
            for cid in stale:
                del bucket[cid]
            dangling_postings += len(stale)

        empty_terms = [term for term in self._terms if not self._postings.get(term)]
        empty_buckets = [term for term, bucket in self._postings.items() if not bucket]
        self._recompute_terms(set(empty_terms) | set(empty_buckets) | set(self._postings))

        stale_docs = [d for d in set(self._chunks_by_doc) | set(self._terms_by_doc) if d not in self._documents]
        for doc_id in stale_docs:
            self._chunks_by_doc.pop(doc_id, None)
            self._terms_by_doc.pop(doc_id, None)
        for doc_id in list(self._terms_by_doc):
            self._rebuild_doc_terms(doc_id)

        self._refresh_statistics()
        result = {
            "orphaned_chunks": len(orphaned_chunks),
            "dangling_postings": dangling_postings,
            "empty_terms": len(set(empty_terms) | set(empty_buckets)),
            "stale_entries": len(stale_docs),
        }
        logger.info(f"Vacuum completed: {result}")
        return result

    @_reads
    def backup(self) -> str:
        snapshot = {
            "version": SNAPSHOT_VERSION,
            "timestamp": utc_now().isoformat(),
            "documents": [d.model_dump(mode="json") for d in self._documents.values()],
            "chunks": [c.model_dump(mode="json") for c in self._chunks.values()],
            "terms": [t.model_dump(mode="json") for t in self._terms.values()],
            "postings": [p.model_dump(mode="json") for b in self._postings.values() for p in b.values()],
            "statistics": self._statistics.model_dump(mode="json"),
        }
        data = json.dumps(snapshot, ensure_ascii=False, indent=2)
        logger.info(f"Backup created, size: {len(data)} characters")
        return data

    @_writes
    def restore(self, snapshot: Union[str, dict]) -> None:
        if isinstance(snapshot, str):
            try:
                snapshot = json.loads(snapshot)
            except json.JSONDecodeError as e:
                raise InconsistentIndexError(f"Snapshot is not valid JSON: {e}")

        try:
            documents = {d.id: d for d in map(Document.model_validate, snapshot.get("documents", []))}
            chunks = {c.id: c for c in map(Chunk.model_validate, snapshot.get("chunks", []))}
            postings = [Posting.model_validate(p) for p in snapshot.get("postings", [])]
        except (ValidationError, AttributeError, TypeError) as e:
            raise InconsistentIndexError(f"Snapshot has malformed records: {e}")

        for chunk in chunks.values():
            if chunk.doc_id not in documents:
                raise InconsistentIndexError(
                    f"Chunk {chunk.id} references missing document {chunk.doc_id}",
                    details={"chunk_id": chunk.id, "doc_id": chunk.doc_id},
                )
        for posting in postings:
            chunk = chunks.get(posting.chunk_id)
            if chunk is None or chunk.doc_id != posting.doc_id:
                raise InconsistentIndexError(
                    f"Posting for '{posting.term}' references missing chunk {posting.chunk_id}",
                    details={"term": posting.term, "chunk_id": posting.chunk_id, "doc_id": posting.doc_id},
                )

        # Validation passed: swap in the new state
        self._documents = documents
        self._chunks = chunks
        self._chunks_by_doc = {doc_id: [] for doc_id in documents}
        for chunk in sorted(chunks.values(), key=lambda c: (c.doc_id, c.chunk_index)):
            self._chunks_by_doc[chunk.doc_id].append(chunk.id)

        self._postings = {}
        self._terms = {}
        self._terms_by_doc = {}
        for posting in postings:
            self._postings.setdefault(posting.term, {})[posting.chunk_id] = posting
            self._terms_by_doc.setdefault(posting.doc_id, set()).add(posting.term)
        self._recompute_terms(list(self._postings))

        self._refresh_statistics()
        logger.info(
            f"Restored snapshot: {len(documents)} documents, {len(chunks)} chunks, {len(self._terms)} terms"
        )

    # ================ Diagnostics ================

    @_reads
    def check_consistency(self) -> List[str]:
        """Human-readable list of invariant violations (empty when consistent)"""
        problems = []
        for term, bucket in self._postings.items():
            for chunk_id, posting in bucket.items():
                if chunk_id not in self._chunks:
                    problems.append(f"posting '{term}' -> missing chunk {chunk_id}")
                if posting.doc_id not in self._documents:
                    problems.append(f"posting '{term}' -> missing document {posting.doc_id}")
            expected = aggregate_term(term, bucket.values())
            current = self._terms.get(term)
            if expected is None or current is None:
                problems.append(f"term '{term}' has no postings or no record")
            elif expected.model_dump(exclude={"updated_at"}) != current.model_dump(exclude={"updated_at"}):
                problems.append(f"term '{term}' statistics disagree with postings")

        for term in self._terms:
            if term not in self._postings:
                problems.append(f"term '{term}' has no postings")

        for doc_id, document in self._documents.items():
            chunks = [self._chunks[cid] for cid in self._chunks_by_doc.get(doc_id, []) if cid in self._chunks]
            if document.status == DocumentStatus.COMPLETED and sum(c.token_count for c in chunks) != document.total_tokens:
                problems.append(f"document {doc_id} token total disagrees with its chunks")
        return problems

    @_reads
    def term_distribution(self, limit: Optional[int] = None) -> List[Tuple[str, int]]:
        """(term, total_freq) pairs, most frequent first"""
        ranked = sorted(((t.term, t.total_freq) for t in self._terms.values()), key=lambda x: (-x[1], x[0]))
        return ranked[:limit] if limit is not None else ranked

    @_reads
    def document_distribution(self) -> List[Tuple[str, int]]:
        """(doc_id, distinct term count) pairs, richest vocabulary first"""
        return sorted(((d, len(t)) for d, t in self._terms_by_doc.items()), key=lambda x: (-x[1], x[0]))

    @_reads
    def memory_stats(self) -> dict:
        return {
            "documents": len(self._documents),
            "chunks": len(self._chunks),
            "terms": len(self._terms),
            "postings": sum(len(b) for b in self._postings.values()),
            "memory_footprint": {
                "documents": sum(len(d.model_dump_json()) for d in self._documents.values()),
                "chunks": sum(len(c.model_dump_json()) for c in self._chunks.values()),
                "terms": sum(len(t.model_dump_json()) for t in self._terms.values()),
            },
        }
