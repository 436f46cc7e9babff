"""Shared pytest configuration and fixtures"""

import sys
from pathlib import Path

import pytest

# Add project root to path for irlab imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from irlab.config import ChunkingConfig, EngineConfig
from irlab.engine import IREngine


# Each text is a single chunk under the default chunking policy.
# Terms meant to discriminate appear in fewer than half of the documents,
# otherwise BM25 idf turns negative.
SAMPLE_CORPUS = [
    ("compliance.txt", "合规管理制度\n\n所有部门必须遵守合规要求，定期开展合规检查。"),
    ("product.txt", "产品设计说明\n\n本产品采用模块化设计，便于维护和升级。"),
    ("deployment.txt", "Deployment guide\n\nKubernetes pods are scheduled onto nodes by the scheduler."),
    ("billing.txt", "Billing overview\n\nInvoices are issued monthly. Payment terms are thirty days."),
    ("travel.txt", "Travel policy\n\nEconomy class flights for trips shorter than six hours."),
]


@pytest.fixture
def engine():
    """Fresh engine with an empty in-memory store"""
    instance = IREngine(config=EngineConfig())
    yield instance
    instance.close()


@pytest.fixture
def small_chunk_engine():
    """Engine with a tiny chunk budget so short texts split into several chunks"""
    instance = IREngine(config=EngineConfig(chunking=ChunkingConfig(min_tokens=10, max_tokens=30)))
    yield instance
    instance.close()


@pytest.fixture
def sample_corpus():
    return list(SAMPLE_CORPUS)


@pytest.fixture
def indexed_engine(engine, sample_corpus):
    """Engine with SAMPLE_CORPUS ingested"""
    for name, text in sample_corpus:
        document = engine.ingest_text(text, file_name=name)
        assert document.status.value == "completed", document.error
    return engine
