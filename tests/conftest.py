"""
Pytest configuration and shared fixtures.

Provides common fixtures for:
    - Configuration with test values
    - A deterministic fake embedder and mock completion clients
    - Sample speaker/chapter text
    - Temporary directories for local stores
"""

import hashlib
from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from docrag.llm.client import Choice, Completion

TEST_DIMENSION = 8


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture
def mock_settings():
    """Provide test settings without requiring .env file."""
    with patch.dict(
        "os.environ",
        {
            "CHUNK_SIZE": "200",
            "CHUNK_OVERLAP": "40",
            "MAX_RESULTS": "3",
            "EMBED_LLM_MODEL": "nomic-embed-text",
            "QUERY_LLM_MODEL": "test-model",
            "QUERY_LLM_KEY": "test-key",
        },
    ):
        from docrag.config import Settings
        yield Settings()


# =============================================================================
# Collaborator Fixtures
# =============================================================================

class FakeEmbedder:
    """Deterministic embedder: the same text always maps to the same unit vector."""

    def __init__(self, dimension: int = TEST_DIMENSION) -> None:
        self.dimension = dimension
        self.calls: list[str] = []

    def embed_query(self, text: str) -> np.ndarray:
        self.calls.append(text)
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:4], "little")
        vector = np.random.default_rng(seed).random(self.dimension).astype(np.float32)
        return vector / np.linalg.norm(vector)

    def embed_texts(self, texts: list[str]) -> np.ndarray:
        if not texts:
            return np.empty((0, self.dimension), dtype=np.float32)
        return np.vstack([self.embed_query(text) for text in texts])


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


def make_completion(*contents: str) -> Completion:
    return Completion(choices=[Choice(content=content) for content in contents])


@pytest.fixture
def mock_llm():
    """Completion client mock answering every request with one choice."""
    llm = MagicMock()
    llm.complete.return_value = make_completion("Krishna urges Arjuna to act without attachment.")
    llm.chat.return_value = make_completion("This passage opens the dialogue.")
    return llm


# =============================================================================
# Sample Data Fixtures
# =============================================================================

@pytest.fixture
def sample_bg_text() -> str:
    """Provide a short speaker/chapter formatted document."""
    return """CHAPTER I

Dhritirashtra:
Ranged thus for battle on the sacred plain,
What did my people and the Pandavas do?

Entitled "Arjun-Vishad"
Or "The Book of the Distress of Arjuna"

Sanjaya:
When he beheld the host of Pandavas,
Raja Duryodhana to Drona drew.

CHAPTER II

Sanjaya.
Him, filled with such compassion and such grief,
Madhusudan addressed with these words.

Krishna: How hath this weakness taken thee?
Whence springs the inglorious trouble?

Entitled "Sankhya-Yog"

[FN#1] Krishna, the Supreme Lord.
Arjuna:
This line comes after the footnote and is never read.
"""


@pytest.fixture
def sample_bg_file(tmp_path: Path, sample_bg_text: str) -> Path:
    path = tmp_path / "gita.txt"
    path.write_text(sample_bg_text, encoding="utf-8")
    return path


# =============================================================================
# Directory Fixtures
# =============================================================================

@pytest.fixture
def tmp_store_dir(tmp_path: Path) -> Path:
    """Provide temporary directory for a local vector store."""
    store_dir = tmp_path / "vectorstore"
    store_dir.mkdir()
    return store_dir
