"""Unit tests for the command-line interface."""

from pathlib import Path
from unittest.mock import patch

import numpy as np
import pytest
from typer.testing import CliRunner

from docrag import __version__
from docrag.cli import app
from docrag.stores.local import LocalVectorStore, StoredDocument

runner = CliRunner()


@pytest.fixture
def populated_store(fake_embedder) -> LocalVectorStore:
    store = LocalVectorStore(collection_name="bg")
    store.add_documents(
        [
            StoredDocument(
                "I-Sanjaya-1",
                "Raja Duryodhana to Drona drew.",
                {"chapter": "I", "title": "Arjun-Vishad", "speaker": "Sanjaya", "chunk_id": "1"},
                fake_embedder.embed_query("Raja Duryodhana to Drona drew."),
            )
        ]
    )
    return store


@pytest.mark.unit
class TestCli:
    """Tests for CLI commands."""

    def test_version(self):
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert f"docrag v{__version__}" in result.output

    def test_parse_dry_run(self, sample_bg_file: Path):
        """Test that a dry run prints the sections and stores nothing."""
        with patch("docrag.resources.get_local_store") as mock_store:
            result = runner.invoke(app, ["parse", str(sample_bg_file), "--dry-run"])

        assert result.exit_code == 0
        assert "4 sections" in result.output
        assert "Dhritirashtra" in result.output
        mock_store.assert_not_called()

    def test_parse_missing_file(self, tmp_path: Path):
        result = runner.invoke(app, ["parse", str(tmp_path / "missing.txt"), "--dry-run"])

        assert result.exit_code == 1
        assert "DocumentReadError" in result.output

    def test_parse_stores_sections(self, sample_bg_file: Path, fake_embedder):
        store = LocalVectorStore(collection_name="bg")
        with (
            patch("docrag.resources.get_local_store", return_value=store),
            patch("docrag.resources.get_embedder", return_value=fake_embedder),
        ):
            result = runner.invoke(app, ["parse", str(sample_bg_file)])

        assert result.exit_code == 0
        assert store.count == 4

    def test_ingest_unsupported_format(self, tmp_path: Path, fake_embedder):
        path = tmp_path / "notes.odt"
        path.write_text("x")
        with (
            patch("docrag.resources.get_local_store", return_value=LocalVectorStore()),
            patch("docrag.resources.get_embedder", return_value=fake_embedder),
        ):
            result = runner.invoke(app, ["ingest", str(path), "--backend", "local"])

        assert result.exit_code == 1
        assert "UnsupportedFormatError" in result.output

    def test_query_prints_answer_and_references(self, populated_store, fake_embedder, mock_llm):
        with (
            patch("docrag.resources.get_local_store", return_value=populated_store),
            patch("docrag.resources.get_embedder", return_value=fake_embedder),
            patch("docrag.resources.get_llm", return_value=mock_llm),
        ):
            result = runner.invoke(app, ["query", "Who drew near?"])

        assert result.exit_code == 0
        assert "Krishna urges Arjuna to act without attachment." in result.output
        assert "[1] Chapter: I, Title: Arjun-Vishad, Speaker: Sanjaya, Chunk: 1" in result.output

    def test_query_empty_collection(self, fake_embedder, mock_llm):
        with (
            patch("docrag.resources.get_local_store", return_value=LocalVectorStore()),
            patch("docrag.resources.get_embedder", return_value=fake_embedder),
            patch("docrag.resources.get_llm", return_value=mock_llm),
        ):
            result = runner.invoke(app, ["query", "Anything?"])

        assert result.exit_code == 1
        assert "NoDocumentsFoundError" in result.output
        mock_llm.complete.assert_not_called()

    def test_export_and_import(self, populated_store, tmp_path: Path, tmp_store_dir: Path):
        snapshot = tmp_path / "bg.gz"
        with patch("docrag.resources.get_local_store", return_value=populated_store):
            exported = runner.invoke(app, ["export", str(snapshot)])

        target = LocalVectorStore(path=tmp_store_dir, collection_name="bg")
        with patch("docrag.resources.get_local_store", return_value=target):
            imported = runner.invoke(app, ["import", str(snapshot)])

        assert exported.exit_code == 0
        assert imported.exit_code == 0
        assert target.get("I-Sanjaya-1") is not None
        assert (tmp_store_dir / "bg.index").exists()
        np.testing.assert_allclose(
            target.get("I-Sanjaya-1").embedding,
            populated_store.get("I-Sanjaya-1").embedding,
            rtol=1e-6,
        )
