"""Unit test helpers - hand-built documents and chunks"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import pytest

from irlab.models import Chunk, Document, DocumentStatus

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_document(
    doc_id: str,
    status: DocumentStatus = DocumentStatus.COMPLETED,
    total_tokens: int = 10,
    minutes: int = 0,
    file_hash: Optional[str] = None,
) -> Document:
    return Document(
        id=doc_id,
        file_name=f"{doc_id}.txt",
        file_type="text/plain",
        file_hash=file_hash,
        status=status,
        total_tokens=total_tokens,
        uploaded_at=BASE_TIME + timedelta(minutes=minutes),
    )


def make_chunk(
    doc_id: str,
    index: int,
    term_frequencies: Dict[str, int],
    token_count: int = 10,
    is_title: bool = False,
    is_table_header: bool = False,
) -> Chunk:
    content = " ".join(term for term, tf in term_frequencies.items() for _ in range(tf))
    return Chunk(
        id=f"{doc_id}-c{index}",
        doc_id=doc_id,
        chunk_index=index,
        content=content,
        token_count=token_count,
        start_offset=index * 100,
        end_offset=index * 100 + len(content),
        is_title=is_title,
        is_table_header=is_table_header,
        term_frequencies=term_frequencies,
    )


@pytest.fixture
def document_factory():
    return make_document


@pytest.fixture
def chunk_factory():
    return make_chunk
