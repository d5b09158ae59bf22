"""Unit tests for ingestion.pipeline module."""

import threading
from pathlib import Path
from unittest.mock import MagicMock

import numpy as np
import pytest

from docrag.errors import EmbeddingError
from docrag.ingestion.pipeline import (
    chunk_document,
    embed_chunks,
    embed_in_parallel,
    ingest_document,
    ingest_structured,
    store_sections,
)
from docrag.retrieval.chunker import Chunk
from docrag.retrieval.sections import Section, SectionParser
from docrag.stores.local import LocalVectorStore

REPORT = (
    "The committee met on Monday. Revenue grew in every region. "
    "Costs were flat. The board approved the budget for next year."
)


@pytest.fixture
def report_file(tmp_path: Path) -> Path:
    path = tmp_path / "report.txt"
    path.write_text(REPORT, encoding="utf-8")
    return path


class FailingEmbedder:
    def __init__(self, bad_text: str) -> None:
        self.bad_text = bad_text
        self.threads: set[str] = set()

    def embed_query(self, text: str) -> np.ndarray:
        self.threads.add(threading.current_thread().name)
        if text == self.bad_text:
            raise EmbeddingError("embedding", "request failed: 500")
        return np.ones(2, dtype=np.float32)


@pytest.mark.unit
class TestEmbedInParallel:
    """Tests for embed_in_parallel."""

    def test_keeps_input_order(self, fake_embedder):
        texts = [f"text {i}" for i in range(20)]

        vectors = embed_in_parallel(texts, fake_embedder, workers=4)

        expected = [fake_embedder.embed_query(text) for text in texts]
        assert len(vectors) == 20
        for vector, want in zip(vectors, expected):
            np.testing.assert_array_equal(vector, want)

    def test_empty_input(self, fake_embedder):
        assert embed_in_parallel([], fake_embedder, workers=4) == []
        assert fake_embedder.calls == []

    def test_first_failure_propagates(self):
        embedder = FailingEmbedder("bad")

        with pytest.raises(EmbeddingError, match="request failed"):
            embed_in_parallel(["ok", "bad", "ok"], embedder, workers=2)

    def test_runs_on_worker_threads(self):
        embedder = FailingEmbedder("never")

        embed_in_parallel(["a", "b", "c"], embedder, workers=2)

        assert threading.current_thread().name not in embedder.threads


@pytest.mark.unit
class TestChunking:
    """Tests for document chunking and chunk embedding."""

    def test_chunk_document(self, report_file):
        chunks = chunk_document(report_file, chunk_size=60, chunk_overlap=10)

        assert len(chunks) > 1
        assert all(len(chunk.content) <= 60 for chunk in chunks)
        assert [chunk.chunk_id for chunk in chunks] == list(range(1, len(chunks) + 1))
        assert {chunk.page_number for chunk in chunks} == {1}

    def test_embed_chunks_tags_source(self, fake_embedder):
        chunks = [Chunk("alpha", page_number=2, chunk_id=1), Chunk("beta", page_number=2, chunk_id=2)]

        embedded = embed_chunks(chunks, fake_embedder, "deck.pptx", workers=2)

        assert [(e.content, e.source_filename, e.page_number, e.chunk_id) for e in embedded] == [
            ("alpha", "deck.pptx", 2, 1),
            ("beta", "deck.pptx", 2, 2),
        ]
        np.testing.assert_array_equal(embedded[0].embedding, fake_embedder.embed_query("alpha"))


@pytest.mark.unit
class TestIngestDocument:
    """Tests for ingest_document."""

    def test_into_relational_store(self, report_file, fake_embedder):
        store = MagicMock()
        store.store_documents.side_effect = lambda items: len(list(items))

        count = ingest_document(report_file, store, fake_embedder, chunk_size=60, chunk_overlap=10, workers=2)

        assert count == len(chunk_document(report_file, 60, 10))
        store.create_schema.assert_called_once()
        store.drop_schema.assert_not_called()
        stored = store.store_documents.call_args.args[0]
        assert all(item.source_filename == "report.txt" for item in stored)

    def test_reset_drops_table(self, report_file, fake_embedder):
        store = MagicMock()

        ingest_document(report_file, store, fake_embedder, chunk_size=60, chunk_overlap=10, reset=True, workers=2)

        store.drop_schema.assert_called_once()
        store.create_schema.assert_called_once()

    def test_into_local_store(self, report_file, fake_embedder, tmp_store_dir):
        store = LocalVectorStore(path=tmp_store_dir, collection_name="docs")

        count = ingest_document(report_file, store, fake_embedder, chunk_size=60, chunk_overlap=10, workers=2)

        assert store.count == count
        assert (tmp_store_dir / "docs.index").exists()
        hit = store.query(embedding=fake_embedder.embed_query("anything"), limit=1)[0]
        assert hit.metadata["source_filename"] == "report.txt"
        assert hit.metadata["page_number"] == "1"

    def test_local_reset_clears_collection(self, report_file, fake_embedder):
        store = LocalVectorStore(collection_name="docs")

        first = ingest_document(report_file, store, fake_embedder, chunk_size=60, chunk_overlap=10, workers=2)
        ingest_document(report_file, store, fake_embedder, chunk_size=60, chunk_overlap=10, reset=True, workers=2)

        assert store.count == first


@pytest.mark.unit
class TestStructuredIngestion:
    """Tests for section storage."""

    def test_store_sections(self, fake_embedder, tmp_store_dir):
        store = LocalVectorStore(path=tmp_store_dir, collection_name="bg")
        sections = [
            Section("I", "Arjun-Vishad", "", "Sanjaya", "battle", 1),
            Section("I", "Arjun-Vishad", "", "Sanjaya", "", 2),
            Section("II", "Sankhya-Yog", "", "Krishna", "duty", 1),
        ]

        assert store_sections(sections, store, fake_embedder, workers=2) == 2
        assert store.get("I-Sanjaya-0-1").metadata == {
            "chapter": "I",
            "title": "Arjun-Vishad",
            "expanded_title": "",
            "speaker": "Sanjaya",
            "chunk_id": "1",
            "passage": "0",
        }
        assert store.get("I-Sanjaya-0-2") is None
        assert (tmp_store_dir / "bg.json").exists()

    def test_same_id_replaces(self, fake_embedder):
        store = LocalVectorStore()
        store_sections([Section("I", speaker="Sanjaya", content="old", chunk_id=1)], store, fake_embedder, workers=1)
        stored = store_sections(
            [Section("I", speaker="Sanjaya", content="new", chunk_id=1)], store, fake_embedder, workers=1
        )

        assert stored == 1
        assert store.count == 1
        assert store.get("I-Sanjaya-0-1").content == "new"

    def test_repeated_speaker_keeps_every_passage(self, fake_embedder):
        """Test that a speaker returning within a chapter does not overwrite earlier passages."""
        text = "CHAPTER I\nArjuna: first\nKrishna: second\nArjuna: third\nKrishna: fourth"
        sections = SectionParser().parse_text(text)
        store = LocalVectorStore()

        stored = store_sections(sections, store, fake_embedder, workers=2)

        assert len(sections) == 4
        assert stored == 4
        assert store.count == 4
        assert store.get("I-Arjuna-1-1").content == "first"
        assert store.get("I-Krishna-2-1").content == "second"
        assert store.get("I-Arjuna-3-1").content == "third"
        assert store.get("I-Krishna-4-1").content == "fourth"

    def test_duplicate_ids_are_not_counted_twice(self, fake_embedder):
        """Test that the returned count reflects what the collection actually holds."""
        store = LocalVectorStore()
        sections = [
            Section("I", speaker="Sanjaya", content="old", chunk_id=1, passage=1),
            Section("I", speaker="Sanjaya", content="new", chunk_id=1, passage=1),
        ]

        assert store_sections(sections, store, fake_embedder, workers=1) == 1
        assert store.count == 1
        assert store.get("I-Sanjaya-1-1").content == "new"

    def test_nothing_to_store_writes_nothing(self, fake_embedder, tmp_store_dir):
        store = LocalVectorStore(path=tmp_store_dir, collection_name="bg")

        assert store_sections([], store, fake_embedder) == 0
        assert not (tmp_store_dir / "bg.index").exists()

    def test_ingest_structured(self, sample_bg_file, fake_embedder, tmp_store_dir):
        store = LocalVectorStore(path=tmp_store_dir, collection_name="bg")

        sections = ingest_structured(
            sample_bg_file, store, fake_embedder, parser=SectionParser(200, 40), workers=2
        )

        assert [s.document_id() for s in sections] == [
            "I-Dhritirashtra-1-1",
            "I-Sanjaya-2-1",
            "II-Sanjaya-3-1",
            "II-Krishna-4-1",
        ]
        assert store.count == 4
        assert store.get("II-Krishna-4-1").metadata["title"] == "Sankhya-Yog"
