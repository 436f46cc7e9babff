"""
Factory to create index store instances based on configuration.
"""

import logging
import os
from typing import Optional

from ..config import FieldWeights
from ..exceptions import InvalidConfigurationError
from .base import IndexStore
from .memory import MemoryIndexStore

logger = logging.getLogger(__name__)

STORE_TYPES = ("memory",)


def create_index_store(store_type: Optional[str] = None, field_weights: Optional[FieldWeights] = None) -> IndexStore:
    """
    Create an index store.

    Config (env vars):
        IR_STORE_TYPE: "memory" (default)

    Supported types:
        - memory: process-local dictionaries, snapshots via backup()/restore()

    Args:
        store_type: Explicit type, overrides IR_STORE_TYPE
        field_weights: Weights stamped on postings built by reindex_all()

    Raises:
        InvalidConfigurationError: unknown store type
    """
    store_type = (store_type or os.getenv("IR_STORE_TYPE") or "memory").lower()

    if store_type == "memory":
        logger.info("Creating in-memory index store")
        return MemoryIndexStore(field_weights=field_weights)

    raise InvalidConfigurationError(
        f"Unknown index store type: {store_type}. Valid options: {', '.join(STORE_TYPES)}",
        details={"store_type": store_type},
    )
