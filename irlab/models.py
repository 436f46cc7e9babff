"""
Index data model: documents, chunks, vocabulary terms, postings and
corpus-wide statistics.

All entities are pydantic models so the store can snapshot them with
`model_dump(mode="json")` and rebuild them with `model_validate`.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .utils import utc_now


class DocumentStatus(str, Enum):
    """Ingest lifecycle of a document"""
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class TermSummary(BaseModel):
    """Per-document term statistics"""
    total_terms: int = 0
    unique_terms: int = 0
    avg_terms_per_chunk: float = 0.0


class Document(BaseModel):
    id: str
    file_name: str
    file_type: str
    file_size: int = 0
    file_hash: Optional[str] = None
    title: Optional[str] = None
    language: Optional[str] = None

    uploaded_at: datetime = Field(default_factory=utc_now)
    processed_at: Optional[datetime] = None
    last_modified: Optional[datetime] = None

    status: DocumentStatus = DocumentStatus.PROCESSING
    error: Optional[str] = None

    total_tokens: int = 0
    chunk_count: int = 0
    term_stats: TermSummary = Field(default_factory=TermSummary)


class Chunk(BaseModel):
    id: str
    doc_id: str
    chunk_index: int
    content: str
    token_count: int

    # Character span into the extracted source text
    start_offset: int
    end_offset: int

    is_title: bool = False
    is_table_header: bool = False
    section_title: Optional[str] = None
    page: Optional[int] = None

    language: Optional[str] = None
    confidence: Optional[float] = None

    term_frequencies: Dict[str, int] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def terms(self) -> List[str]:
        return list(self.term_frequencies)


class TermStats(BaseModel):
    """Corpus-wide statistics of one vocabulary term"""
    term: str
    doc_freq: int = 0
    chunk_freq: int = 0
    total_freq: int = 0
    avg_term_freq: float = 0.0
    max_term_freq: int = 0
    updated_at: datetime = Field(default_factory=utc_now)


class Posting(BaseModel):
    """One (term, document, chunk) occurrence context"""
    term: str
    doc_id: str
    chunk_id: str
    term_freq: int

    content_weight: float = 1.0
    title_weight: Optional[float] = None
    table_header_weight: Optional[float] = None

    # Reserved for phrase queries
    positions: Optional[List[int]] = None

    def field_weight(self) -> float:
        """Strongest multiplier among the fields this posting belongs to"""
        weight = self.content_weight
        if self.title_weight is not None:
            weight = max(weight, self.title_weight)
        if self.table_header_weight is not None:
            weight = max(weight, self.table_header_weight)
        return weight


class IndexStatistics(BaseModel):
    total_documents: int = 0
    total_chunks: int = 0
    total_terms: int = 0
    unique_terms: int = 0
    avg_document_length: float = 0.0
    avg_chunk_length: float = 0.0
    last_updated: datetime = Field(default_factory=utc_now)

    def same_counts(self, other: "IndexStatistics") -> bool:
        """Compare everything except the update timestamp"""
        return self.model_dump(exclude={"last_updated"}) == other.model_dump(exclude={"last_updated"})
