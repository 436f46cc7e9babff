"""
Unit tests for the IREngine facade: ingest, search, maintenance and tuning.
"""

import asyncio
import threading
from unittest.mock import patch

import pytest

from irlab.config import EngineConfig, FieldWeights, SearchOptions
from irlab.engine import IREngine, title_from_file_name
from irlab.exceptions import InvalidConfigurationError, SearchCancelledError
from irlab.models import DocumentStatus

pytestmark = pytest.mark.unit


class TestTitleFromFileName:

    def test_strips_extension_and_separators(self):
        assert title_from_file_name("quality_standard-v2.pdf") == "quality standard v2"

    def test_no_extension(self):
        assert title_from_file_name("README") == "README"


class TestIngest:
    """Test ingest outcomes"""

    def test_ingest_text(self, engine):
        document = engine.ingest_text("Deployment guide\n\nPods run on nodes.", file_name="deploy_guide.md")

        assert document.status == DocumentStatus.COMPLETED
        assert document.title == "deploy guide"
        assert document.language == "en"
        assert document.chunk_count == len(engine.get_chunks(document.id)) == 1
        assert document.total_tokens == sum(c.token_count for c in engine.get_chunks(document.id))
        assert document.term_stats.unique_terms > 0
        assert document.processed_at is not None
        assert len(document.file_hash) == 64

    def test_ingest_bytes(self, engine):
        document = engine.ingest("质量标准文档".encode("utf-8"), "standard.txt", "text/plain")
        assert document.status == DocumentStatus.COMPLETED
        assert document.language == "zh-cn"
        assert document.file_size == len("质量标准文档".encode("utf-8"))

    def test_unsupported_type_recorded_as_error(self, engine):
        document = engine.ingest(b"\x00\x01", "blob.bin", "application/octet-stream")

        assert document.status == DocumentStatus.ERROR
        assert "Unsupported file type" in document.error
        assert engine.get_document(document.id).status == DocumentStatus.ERROR
        assert engine.get_statistics().total_documents == 0

    def test_empty_text_recorded_as_error(self, engine):
        document = engine.ingest_text("   \n\n  ", file_name="blank.txt")
        assert document.status == DocumentStatus.ERROR
        assert engine.get_chunks(document.id) == []

    def test_duplicate_upload_returns_existing(self, engine):
        first = engine.ingest_text("Same content.", file_name="a.txt")
        second = engine.ingest_text("Same content.", file_name="b.txt")

        assert second.id == first.id
        assert len(engine.list_documents()) == 1

    def test_deduplication_disabled(self):
        with IREngine(config=EngineConfig(deduplicate_uploads=False)) as engine:
            engine.ingest_text("Same content.", file_name="a.txt")
            engine.ingest_text("Same content.", file_name="b.txt")
            assert len(engine.list_documents()) == 2

    def test_failed_attempt_replaced_on_retry(self, engine):
        with patch.object(engine.segmenter, "segment", side_effect=RuntimeError("segmenter crashed")):
            failed = engine.ingest_text("Retry me.", file_name="retry.txt")
        assert failed.status == DocumentStatus.ERROR

        retried = engine.ingest_text("Retry me.", file_name="retry.txt")

        assert retried.status == DocumentStatus.COMPLETED
        assert retried.id != failed.id
        assert [d.id for d in engine.list_documents()] == [retried.id]

    def test_segmentation_does_not_block_readers(self, indexed_engine):
        reader_finished = []
        segment = indexed_engine.segmenter.segment

        def segment_while_searching(text, document):
            reader = threading.Thread(target=indexed_engine.search, args=("invoices",))
            reader.start()
            reader.join(timeout=5)
            reader_finished.append(not reader.is_alive())
            return segment(text, document)

        with patch.object(indexed_engine.segmenter, "segment", side_effect=segment_while_searching):
            document = indexed_engine.ingest_text("Fresh notes about invoices.", file_name="fresh.txt")

        assert document.status == DocumentStatus.COMPLETED
        assert reader_finished == [True]

    def test_rollback_on_indexing_failure(self, engine):
        """Chunks written before the failure are removed again"""
        with patch.object(engine.store, "add_postings", side_effect=RuntimeError("disk full")):
            document = engine.ingest_text("Rollback test content.", file_name="rollback.txt")

        assert document.status == DocumentStatus.ERROR
        assert document.error == "disk full"
        assert engine.get_chunks(document.id) == []
        assert engine.get_statistics().total_chunks == 0
        assert engine.store.check_consistency() == []

    def test_ingest_many(self, engine):
        documents = engine.ingest_many([
            (b"First file.", "one.txt", "text/plain"),
            (b"\x00", "two.bin", "application/octet-stream"),
        ])
        assert [d.status for d in documents] == [DocumentStatus.COMPLETED, DocumentStatus.ERROR]

    @pytest.mark.asyncio
    async def test_aingest(self, engine):
        document = await engine.aingest(b"Async upload.", "async.txt", "text/plain")
        assert document.status == DocumentStatus.COMPLETED


class TestSearch:
    """Test query paths on the sample corpus"""

    def test_search(self, indexed_engine):
        results = indexed_engine.search("kubernetes pods")
        assert results
        assert results[0].document.file_name == "deployment.txt"

    def test_editing_results_leaves_index_intact(self, indexed_engine):
        result = indexed_engine.search("kubernetes pods")[0]
        expected = dict(result.chunk.term_frequencies)

        result.chunk.term_frequencies.clear()
        indexed_engine.get_chunks(result.document.id)[0].content = ""

        assert indexed_engine.store.get_chunk(result.chunk.id).term_frequencies == expected
        assert indexed_engine.get_chunks(result.document.id)[0].content
        assert indexed_engine.search("kubernetes pods")[0].chunk.id == result.chunk.id

    def test_search_chunks_is_direct(self, indexed_engine):
        with patch.object(indexed_engine.searcher, "hierarchical_search") as hierarchical:
            results = indexed_engine.search_chunks("invoices", SearchOptions(use_hierarchical_search=True))
        hierarchical.assert_not_called()
        assert [r.document.file_name for r in results] == ["billing.txt"]

    def test_relevant_context(self, indexed_engine):
        context = indexed_engine.relevant_context("invoices payment")
        assert context.startswith("[From: billing.txt]\n")
        assert "Invoices are issued monthly." in context

    def test_relevant_context_budget(self, indexed_engine):
        assert indexed_engine.relevant_context("invoices payment", max_tokens=3) == ""

    def test_relevant_context_no_match(self, indexed_engine):
        assert indexed_engine.relevant_context("nonexistentterm") == ""

    def test_suggestions(self, indexed_engine):
        assert "invoices" in indexed_engine.suggestions("invoice")

    def test_delete_document(self, indexed_engine):
        billing = next(d for d in indexed_engine.list_documents() if d.file_name == "billing.txt")
        indexed_engine.delete_document(billing.id)

        assert indexed_engine.search("invoices") == []
        assert indexed_engine.get_statistics().total_documents == 4

    @pytest.mark.asyncio
    async def test_asearch_matches_search(self, indexed_engine):
        expected = [(r.chunk.id, r.score) for r in indexed_engine.search("travel flights")]
        results = await indexed_engine.asearch("travel flights")
        assert [(r.chunk.id, r.score) for r in results] == expected

    @pytest.mark.asyncio
    async def test_asearch_cancellation_signals_worker(self, engine):
        started = threading.Event()
        seen = []

        def slow_search(query, options=None, cancel_event=None):
            seen.append(cancel_event)
            started.set()
            cancel_event.wait(5)
            raise SearchCancelledError("Search was cancelled")

        with patch.object(engine.searcher, "search", side_effect=slow_search):
            task = asyncio.ensure_future(engine.asearch("anything"))
            await asyncio.get_running_loop().run_in_executor(None, started.wait, 5)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert seen[0].is_set()


class TestMaintenance:
    """Test reindex, vacuum, backup and restore through the facade"""

    def test_reindex_keeps_counts(self, indexed_engine):
        before = indexed_engine.get_statistics()
        assert indexed_engine.reindex_all().same_counts(before)

    def test_vacuum_clean(self, indexed_engine):
        assert sum(indexed_engine.vacuum().values()) == 0

    def test_backup_restore(self, indexed_engine):
        snapshot = indexed_engine.backup()
        with IREngine() as restored:
            restored.restore(snapshot)
            assert restored.get_statistics().same_counts(indexed_engine.get_statistics())
            assert [r.chunk.id for r in restored.search("合规要求")] == [
                r.chunk.id for r in indexed_engine.search("合规要求")
            ]


class TestTuning:
    """Test runtime BM25 parameter changes"""

    def test_defaults(self, engine):
        params = engine.get_bm25_parameters()
        assert (params.k1, params.b) == (1.2, 0.75)

    def test_update_k1_b(self, indexed_engine):
        before = indexed_engine.search("kubernetes")[0].score
        params = indexed_engine.update_bm25_parameters(k1=2.0, b=0.3)

        assert (params.k1, params.b) == (2.0, 0.3)
        assert indexed_engine.get_bm25_parameters() == params
        assert indexed_engine.search("kubernetes")[0].score != pytest.approx(before)

    def test_invalid_values_rejected(self, engine):
        with pytest.raises(InvalidConfigurationError):
            engine.update_bm25_parameters(k1=5.0)
        assert engine.get_bm25_parameters().k1 == 1.2

    def test_field_weights_trigger_reindex(self, indexed_engine):
        with patch.object(indexed_engine.store, "reindex_all", wraps=indexed_engine.store.reindex_all) as reindex:
            indexed_engine.update_bm25_parameters(field_weights=FieldWeights(title=3.0))
        reindex.assert_called_once()

        postings = indexed_engine.store.postings_for_terms(["kubernetes"])["kubernetes"]
        assert postings[0].field_weight() == 3.0

    def test_k1_only_skips_reindex(self, indexed_engine):
        with patch.object(indexed_engine.store, "reindex_all") as reindex:
            indexed_engine.update_bm25_parameters(k1=1.5)
        reindex.assert_not_called()


class TestServiceHelpers:

    def test_health_check(self, indexed_engine):
        count = len(indexed_engine.list_documents())
        assert indexed_engine.health_check() is True
        assert len(indexed_engine.list_documents()) == count

    def test_health_check_failure(self, engine):
        with patch.object(engine.store, "get_document", return_value=None):
            assert engine.health_check() is False

    def test_metrics(self, indexed_engine):
        metrics = indexed_engine.get_metrics()
        assert set(metrics) == {"service", "index_stats", "memory_stats", "timestamp"}
        assert metrics["service"]["type"] == "MemoryIndexStore"
        assert metrics["index_stats"]["total_documents"] == 5

    def test_from_env(self):
        with IREngine.from_env({"IR_BM25_K1": "1.6"}) as engine:
            assert engine.get_bm25_parameters().k1 == 1.6
