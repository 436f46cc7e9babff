"""
Abstract base class for index stores.

A store holds documents, chunks, vocabulary terms, postings and corpus
statistics. All stores must implement this interface to be swappable;
MemoryIndexStore is the implementation shipped with the engine.

Contract:
- Every mutating operation re-derives IndexStatistics before returning
- Term records always agree with their postings: touching postings
  recomputes the affected terms, a term left without postings is removed
- update_document / delete_document raise NotFoundError for unknown ids,
  every other operation is total (empty result on no match)
- Readers take `lock.read_locked()`, mutators `lock.write_locked()`
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Tuple, Union

from ..models import Chunk, Document, IndexStatistics, Posting, TermStats
from .locking import ReadWriteLock


class IndexStore(ABC):

    def __init__(self):
        self.lock = ReadWriteLock()

    # Documents

    @abstractmethod
    def add_document(self, document: Document) -> Document:
        """Insert or replace a document record"""
        pass

    @abstractmethod
    def update_document(self, doc_id: str, **changes) -> Document:
        """Apply field changes to an existing document (NotFoundError if unknown)"""
        pass

    @abstractmethod
    def delete_document(self, doc_id: str) -> None:
        """Remove a document with its chunks, postings and orphaned terms"""
        pass

    @abstractmethod
    def get_document(self, doc_id: str) -> Optional[Document]:
        pass

    @abstractmethod
    def list_documents(self) -> List[Document]:
        """All documents, newest upload first"""
        pass

    @abstractmethod
    def find_document_by_hash(self, file_hash: str) -> Optional[Document]:
        pass

    # Chunks

    @abstractmethod
    def add_chunks(self, chunks: Iterable[Chunk]) -> None:
        pass

    @abstractmethod
    def get_chunks_by_document(self, doc_id: str) -> List[Chunk]:
        """Chunks of one document ordered by chunk_index"""
        pass

    @abstractmethod
    def get_chunk(self, chunk_id: str) -> Optional[Chunk]:
        pass

    @abstractmethod
    def delete_chunks_for_document(self, doc_id: str) -> int:
        pass

    # Terms and postings

    @abstractmethod
    def add_terms(self, terms: Iterable[TermStats]) -> None:
        """Refresh records for terms that have postings; others are ignored"""
        pass

    @abstractmethod
    def add_postings(self, postings: Iterable[Posting]) -> None:
        pass

    @abstractmethod
    def delete_terms_for_document(self, doc_id: str) -> int:
        pass

    @abstractmethod
    def delete_postings_for_document(self, doc_id: str) -> int:
        pass

    @abstractmethod
    def lookup_terms(self, terms: Iterable[str]) -> Dict[str, TermStats]:
        pass

    @abstractmethod
    def postings_for_terms(self, terms: Iterable[str]) -> Dict[str, List[Posting]]:
        pass

    @abstractmethod
    def postings_for_terms_in_documents(
        self, terms: Iterable[str], doc_ids: Iterable[str]
    ) -> Dict[str, List[Posting]]:
        pass

    @abstractmethod
    def all_terms(self) -> List[TermStats]:
        pass

    # Statistics and maintenance

    @abstractmethod
    def get_statistics(self) -> IndexStatistics:
        pass

    @abstractmethod
    def set_statistics(self, statistics: IndexStatistics) -> None:
        pass

    @abstractmethod
    def reindex_all(self, field_weights=None) -> IndexStatistics:
        """Rebuild terms, postings and statistics from the live documents and chunks"""
        pass

    @abstractmethod
    def vacuum(self) -> Dict[str, int]:
        pass

    @abstractmethod
    def backup(self) -> str:
        """Full snapshot as a JSON string"""
        pass

    @abstractmethod
    def restore(self, snapshot: Union[str, dict]) -> None:
        """Replace the whole store content with a snapshot from backup()"""
        pass

    # Diagnostics

    @abstractmethod
    def check_consistency(self) -> List[str]:
        pass

    @abstractmethod
    def term_distribution(self, limit: Optional[int] = None) -> List[Tuple[str, int]]:
        pass

    @abstractmethod
    def document_distribution(self) -> List[Tuple[str, int]]:
        pass

    @abstractmethod
    def memory_stats(self) -> dict:
        pass

    def get_store_info(self) -> dict:
        """
        Describe the store implementation.

        Returns:
            Dict with keys: type, persistent
        """
        return {"type": self.__class__.__name__, "persistent": False}

    def close(self):
        """Optional cleanup (connections, file handles)"""
        pass
