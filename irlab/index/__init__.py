"""Index store: documents, chunks, terms, postings and statistics behind one lock"""

from .base import IndexStore
from .factory import create_index_store
from .locking import ReadWriteLock
from .memory import MemoryIndexStore

__all__ = ["IndexStore", "MemoryIndexStore", "ReadWriteLock", "create_index_store"]
