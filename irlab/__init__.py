"""
IR Lab - hierarchical BM25 retrieval engine.

Ingests business documents, segments them into overlapping token-bounded
chunks and answers free-text queries in two stages: documents first, then
chunks within the best documents.
"""

from .config import BM25Parameters, ChunkingConfig, EngineConfig, FieldWeights, SearchOptions, load_config
from .engine import IREngine
from .exceptions import (
    InconsistentIndexError,
    InvalidConfigurationError,
    IRError,
    NotFoundError,
    SearchCancelledError,
    UnsupportedInputError,
)
from .models import Chunk, Document, DocumentStatus, IndexStatistics, Posting, TermStats
from .search import HierarchicalSearcher, ScoreExplanation, SearchResult

__version__ = "0.1.0"

__all__ = [
    "IREngine",
    "HierarchicalSearcher",
    "SearchResult",
    "ScoreExplanation",
    "SearchOptions",
    "EngineConfig",
    "BM25Parameters",
    "ChunkingConfig",
    "FieldWeights",
    "load_config",
    "Document",
    "DocumentStatus",
    "Chunk",
    "TermStats",
    "Posting",
    "IndexStatistics",
    "IRError",
    "NotFoundError",
    "UnsupportedInputError",
    "InvalidConfigurationError",
    "InconsistentIndexError",
    "SearchCancelledError",
]
