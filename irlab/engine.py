"""
IR engine facade.

Owns one index store plus the pipeline around it:

    bytes -> TextExtractor -> Segmenter -> postings -> IndexStore
    query -> QueryProcessor -> HierarchicalSearcher -> SearchResult[]

Ingest is atomic: the document, its chunks and postings are written inside
a single write-lock section and rolled back on failure, so readers see
either all of them or none. A failed ingest never raises; the document is
kept with status=error and the failure message.

Bulk ingest runs one such transaction per document so queries can
interleave during large loads.

Usage:
    engine = IREngine.from_env()
    doc = engine.ingest(data, "handbook.md", "text/markdown")
    results = engine.search("质量标准", SearchOptions(top_n=3))
    context = engine.relevant_context("质量标准", max_tokens=1500)
"""

import asyncio
import logging
import re
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .bm25.index_builder import build_postings, summarize_terms
from .bm25.query import QueryProcessor
from .bm25.tokenizer import detect_language
from .chunking import Segmenter
from .config import BM25Parameters, EngineConfig, FieldWeights, SearchOptions, load_config
from .exceptions import IRError
from .index.base import IndexStore
from .index.factory import create_index_store
from .models import Chunk, Document, DocumentStatus, IndexStatistics
from .search import HierarchicalSearcher, SearchResult
from .text_extraction import TextExtractor
from .utils import calculate_file_hash, estimate_tokens, utc_now

logger = logging.getLogger(__name__)


def title_from_file_name(file_name: str) -> str:
    """
    Human-readable title from a file name.

    Examples:
        >>> title_from_file_name("quality_standard-v2.pdf")
        'quality standard v2'
    """
    stem = re.sub(r'\.[^/.]+$', '', file_name)
    return re.sub(r'[-_]+', ' ', stem).strip() or file_name


class IREngine:
    """Hierarchical BM25 retrieval over an explicitly owned index store"""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        store: Optional[IndexStore] = None,
        extractor: Optional[TextExtractor] = None,
        max_workers: int = 4,
    ):
        self.config = config or EngineConfig()
        self.store = store or create_index_store(self.config.store_type, self.config.bm25.field_weights)
        self.extractor = extractor or TextExtractor()
        self.segmenter = Segmenter(self.config.chunking)
        self.query_processor = QueryProcessor(expand_synonyms=self.config.expand_synonyms)
        self.searcher = HierarchicalSearcher(
            self.store,
            params=self.config.bm25,
            query_processor=self.query_processor,
            prf_feedback_docs=self.config.prf_feedback_docs,
            prf_expansion_terms=self.config.prf_expansion_terms,
        )
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="irlab")
        self._started_at = time.monotonic()
        logger.info(
            f"IR engine ready: store={self.store.get_store_info()['type']}, "
            f"k1={self.config.bm25.k1}, b={self.config.bm25.b}"
        )

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, **kwargs) -> "IREngine":
        return cls(config=load_config(env), **kwargs)

    def close(self):
        self._executor.shutdown(wait=True)
        self.store.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ================ Ingest ================

    def ingest(self, file_bytes: bytes, file_name: str, media_type: str) -> Document:
        """
        Extract, segment and index one file.

        Args:
            file_bytes: Raw file content
            file_name: Original file name (used for the title and context headers)
            media_type: MIME type or extension

        Returns:
            Stored document: status=completed, or status=error with the reason
        """
        file_hash = calculate_file_hash(file_bytes)
        duplicate = self._find_duplicate(file_hash)
        if duplicate is not None:
            return duplicate

        logger.info(f"Ingesting {file_name} ({media_type}, {len(file_bytes)} bytes)")
        try:
            text = self.extractor.extract_text(file_bytes, media_type)
        except Exception as e:
            logger.error(f"Text extraction failed for {file_name}: {e}")
            return self._record_failure(file_name, media_type, len(file_bytes), file_hash, str(e))

        return self._index_text(text, file_name, media_type, len(file_bytes), file_hash)

    def ingest_text(self, text: str, file_name: str = "untitled.txt", media_type: str = "text/plain") -> Document:
        """Index already-extracted text"""
        data = text.encode("utf-8")
        file_hash = calculate_file_hash(data)
        duplicate = self._find_duplicate(file_hash)
        if duplicate is not None:
            return duplicate
        return self._index_text(text, file_name, media_type, len(data), file_hash)

    def ingest_many(self, files: Iterable[Tuple[bytes, str, str]]) -> List[Document]:
        """Ingest (bytes, file_name, media_type) triples, one transaction each"""
        documents = [self.ingest(data, name, media_type) for data, name, media_type in files]
        failed = sum(1 for d in documents if d.status == DocumentStatus.ERROR)
        logger.info(f"Bulk ingest finished: {len(documents)} documents, {failed} failed")
        return documents

    async def aingest(self, file_bytes: bytes, file_name: str, media_type: str) -> Document:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self.ingest, file_bytes, file_name, media_type)

    def _find_duplicate(self, file_hash: str) -> Optional[Document]:
        if not self.config.deduplicate_uploads:
            return None
        with self.store.lock.write_locked():
            existing = self.store.find_document_by_hash(file_hash)
            if existing is None:
                return None
            if existing.status == DocumentStatus.COMPLETED:
                logger.info(f"Duplicate upload of {existing.file_name}, returning document {existing.id}")
                return existing
            # Earlier attempt failed: replace it
            self.store.delete_document(existing.id)
            return None

    def _new_document(self, file_name: str, media_type: str, file_size: int, file_hash: str) -> Document:
        return Document(
            id=uuid.uuid4().hex,
            file_name=file_name,
            file_type=media_type,
            file_size=file_size,
            file_hash=file_hash,
            title=title_from_file_name(file_name),
        )

    def _record_failure(self, file_name: str, media_type: str, file_size: int, file_hash: str, message: str) -> Document:
        document = self._new_document(file_name, media_type, file_size, file_hash)
        document.status = DocumentStatus.ERROR
        document.error = message
        with self.store.lock.write_locked():
            # Another upload of the same bytes may have finished meanwhile
            duplicate = self._find_duplicate(file_hash)
            if duplicate is not None:
                return duplicate
            return self.store.add_document(document)

    def _index_text(self, text: str, file_name: str, media_type: str, file_size: int, file_hash: str) -> Document:
        document = self._new_document(file_name, media_type, file_size, file_hash)
        document.language = detect_language(text)

        # Chunking and postings are built before the write lock is taken
        try:
            chunks = self.segmenter.segment(text, document)
            if not chunks:
                raise IRError("Document contains no indexable text", details={"file_name": file_name})
            postings = build_postings(chunks, self.config.bm25.field_weights)
        except Exception as e:
            logger.error(f"Indexing failed for {file_name}: {e}")
            return self._record_failure(file_name, media_type, file_size, file_hash, str(e))

        with self.store.lock.write_locked():
            # Same bytes may have been indexed since the first check
            duplicate = self._find_duplicate(file_hash)
            if duplicate is not None:
                return duplicate

            self.store.add_document(document)
            try:
                self.store.add_chunks(chunks)
                self.store.add_postings(postings)
                document = self.store.update_document(
                    document.id,
                    status=DocumentStatus.COMPLETED,
                    processed_at=utc_now(),
                    total_tokens=sum(c.token_count for c in chunks),
                    chunk_count=len(chunks),
                    term_stats=summarize_terms(chunks),
                )
            except Exception as e:
                logger.error(f"Indexing failed for {file_name}: {e}")
                self.store.delete_postings_for_document(document.id)
                self.store.delete_chunks_for_document(document.id)
                return self.store.update_document(document.id, status=DocumentStatus.ERROR, error=str(e))

        logger.info(
            f"Indexed {file_name}: {document.chunk_count} chunks, {document.total_tokens} tokens, "
            f"{document.term_stats.unique_terms} unique terms"
        )
        return document

    # ================ Search ================

    def search(
        self,
        query: str,
        options: Optional[SearchOptions] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[SearchResult]:
        return self.searcher.search(query, options, cancel_event)

    def search_chunks(
        self,
        query: str,
        options: Optional[SearchOptions] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[SearchResult]:
        """Rank chunks across the whole corpus, skipping the document stage"""
        options = (options or SearchOptions()).model_copy(update={"use_hierarchical_search": False})
        return self.searcher.direct_search(query, options, cancel_event)

    async def asearch(self, query: str, options: Optional[SearchOptions] = None) -> List[SearchResult]:
        """
        Run search() in the engine's thread pool.

        Cancelling the awaiting task signals the scoring loop to stop.
        """
        cancel_event = threading.Event()
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor, self.search, query, options, cancel_event)
        try:
            return await future
        except asyncio.CancelledError:
            cancel_event.set()
            raise

    def relevant_context(self, query: str, max_tokens: int = 2000, options: Optional[SearchOptions] = None) -> str:
        """
        Concatenate ranked chunks, each headed by its source, within a token budget.

        Blocks look like:
            [From: handbook.pdf, Page 3]
            <chunk content>

        Blocks are appended in rank order until the next one would push the
        running estimate_tokens() total past max_tokens.
        """
        results = self.search(query, options or SearchOptions(top_n=10))
        if not results:
            logger.info(f"No context found for query: {query!r}")
            return ""

        blocks = []
        used = 0
        for result in results:
            page = f", Page {result.chunk.page}" if result.chunk.page else ""
            block = f"[From: {result.document.file_name}{page}]\n{result.chunk.content}"
            cost = estimate_tokens(block)
            if used + cost > max_tokens:
                break
            blocks.append(block)
            used += cost

        logger.info(f"Context built: {used} tokens from {len(blocks)} chunks")
        return "\n\n".join(blocks)

    def suggestions(self, query: str, limit: int = 5) -> List[str]:
        return self.searcher.suggestions(query, limit)

    # ================ Documents & maintenance ================

    def delete_document(self, doc_id: str) -> None:
        self.store.delete_document(doc_id)

    def list_documents(self) -> List[Document]:
        return self.store.list_documents()

    def get_document(self, doc_id: str) -> Optional[Document]:
        return self.store.get_document(doc_id)

    def get_chunks(self, doc_id: str) -> List[Chunk]:
        return self.store.get_chunks_by_document(doc_id)

    def reindex_all(self) -> IndexStatistics:
        return self.store.reindex_all(self.config.bm25.field_weights)

    def vacuum(self) -> Dict[str, int]:
        return self.store.vacuum()

    def backup(self) -> str:
        return self.store.backup()

    def restore(self, snapshot: Union[str, dict]) -> None:
        self.store.restore(snapshot)

    def get_statistics(self) -> IndexStatistics:
        return self.store.get_statistics()

    # ================ Tuning ================

    def get_bm25_parameters(self) -> BM25Parameters:
        return self.config.bm25

    def update_bm25_parameters(
        self,
        k1: Optional[float] = None,
        b: Optional[float] = None,
        field_weights: Optional[FieldWeights] = None,
    ) -> BM25Parameters:
        """
        Change ranking parameters at runtime.

        New field weights are stamped onto every posting through a full
        reindex; k1 and b apply from the next query.

        Raises:
            InvalidConfigurationError: values out of range
        """
        current = self.config.bm25
        params = BM25Parameters(
            k1=current.k1 if k1 is None else k1,
            b=current.b if b is None else b,
            field_weights=field_weights or current.field_weights,
        )
        self.config = self.config.model_copy(update={"bm25": params})
        self.searcher.update_parameters(params)
        if params.field_weights != current.field_weights:
            self.store.reindex_all(params.field_weights)
        return params

    # ================ Service helpers ================

    def health_check(self) -> bool:
        """Round-trip a sentinel document through the store"""
        sentinel = Document(
            id=f"health-check-{uuid.uuid4().hex}",
            file_name="health-check.txt",
            file_type="text/plain",
        )
        try:
            self.store.add_document(sentinel)
            if self.store.get_document(sentinel.id) is None:
                raise IRError("Failed to retrieve sentinel document")
            self.store.delete_document(sentinel.id)
        except Exception as e:
            logger.error(f"Health check failed: {e}", exc_info=True)
            return False

        logger.info("Health check passed")
        return True

    def get_metrics(self) -> dict:
        return {
            "service": {
                **self.store.get_store_info(),
                "uptime_seconds": round(time.monotonic() - self._started_at, 3),
            },
            "index_stats": self.store.get_statistics().model_dump(mode="json"),
            "memory_stats": self.store.memory_stats(),
            "timestamp": utc_now().isoformat(),
        }
