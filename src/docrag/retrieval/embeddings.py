"""
Embedding generation over HTTP.

Two flavours of embedding service are supported:
    - Ollama: POST {base_url}/api/embeddings, one prompt per request
    - OpenAI-compatible: POST {base_url}/v1/embeddings, batched inputs

Vectors are returned as float32 arrays normalised to unit length.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx
import numpy as np
from numpy.typing import NDArray

from docrag.errors import EmbeddingError

logger = logging.getLogger(__name__)


@dataclass
class ChunkEmbedding:
    """A chunk together with its vector and provenance."""

    content: str
    embedding: NDArray[np.float32]
    source_filename: str
    page_number: int
    chunk_id: int


class BaseEmbedder:
    """
    Shared batching, retry and normalisation for HTTP embedders.

    Subclasses implement `_request_batch`, which turns one batch of texts
    into raw vectors using an open httpx.Client.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: Optional[str] = None,
        dimension: int = 768,
        timeout: float = 60.0,
        batch_size: int = 32,
        max_retries: int = 3,
    ) -> None:
        """
        Initialize the embedder.

        Args:
            base_url: Service root, e.g. http://localhost:11434
            model: Embedding model name
            api_key: Bearer token, if the service needs one
            dimension: Expected vector dimension (used for empty results)
            timeout: Request timeout in seconds
            batch_size: Number of texts per request batch
            max_retries: Attempts per batch when rate limited (HTTP 429)
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.dimension = dimension
        self.timeout = timeout
        self.batch_size = batch_size
        self.max_retries = max(1, max_retries)
        self.initial_retry_delay = 1.0  # seconds

    def embed_texts(self, texts: list[str]) -> NDArray[np.float32]:
        """
        Generate embeddings for a list of texts.

        Args:
            texts: List of texts to embed

        Returns:
            Array of shape (len(texts), dimension)

        Raises:
            EmbeddingError: If the service fails or returns malformed data
        """
        if not texts:
            return np.empty((0, self.dimension), dtype=np.float32)

        batches: list[NDArray[np.float32]] = []
        with httpx.Client(timeout=self.timeout, headers=self._headers()) as client:
            for i in range(0, len(texts), self.batch_size):
                batch = texts[i : i + self.batch_size]
                batches.append(self._embed_batch(client, batch))

        return np.vstack(batches)

    def embed_query(self, query: str) -> NDArray[np.float32]:
        """
        Generate the embedding for a single query.

        Returns:
            Array of shape (dimension,)
        """
        return self.embed_texts([query])[0]

    def _embed_batch(self, client: httpx.Client, texts: list[str]) -> NDArray[np.float32]:
        retry_delay = self.initial_retry_delay
        for attempt in range(self.max_retries):
            try:
                vectors = self._request_batch(client, texts)
            except httpx.HTTPStatusError as e:
                if e.response.status_code == 429 and attempt < self.max_retries - 1:
                    logger.warning(f"Embedding service rate limited, retrying in {retry_delay:.1f}s")
                    time.sleep(retry_delay)
                    retry_delay *= 2
                    continue
                raise EmbeddingError("embedding", f"request failed: {e}") from e
            except httpx.HTTPError as e:
                raise EmbeddingError("embedding", f"request failed: {e}") from e
            except (ValueError, KeyError, TypeError) as e:
                raise EmbeddingError("embedding", f"malformed response: {e}") from e

            embeddings = np.asarray(vectors, dtype=np.float32)
            if embeddings.ndim != 2 or len(embeddings) != len(texts):
                raise EmbeddingError(
                    "embedding",
                    f"expected {len(texts)} vectors, got array of shape {embeddings.shape}",
                )
            return self._normalize_embeddings(embeddings)

        raise EmbeddingError("embedding", "all retry attempts failed")

    def _request_batch(self, client: httpx.Client, texts: list[str]) -> list[list[float]]:
        raise NotImplementedError

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _normalize_embeddings(self, embeddings: NDArray[np.float32]) -> NDArray[np.float32]:
        """
        Normalize embeddings to unit length.

        Args:
            embeddings: Array of shape (n, dimension)

        Returns:
            Normalized embeddings of same shape
        """
        norms = np.linalg.norm(embeddings, axis=1, keepdims=True)
        # Avoid division by zero
        norms = np.where(norms == 0, 1, norms)
        return (embeddings / norms).astype(np.float32)


class OllamaEmbedder(BaseEmbedder):
    """
    Embeddings from an Ollama server.

    Example:
        >>> embedder = OllamaEmbedder("http://localhost:11434", "nomic-embed-text")
        >>> embedder.embed_query("Who is Arjuna?").shape
        (768,)
    """

    def _request_batch(self, client: httpx.Client, texts: list[str]) -> list[list[float]]:
        vectors = []
        for text in texts:
            response = client.post(
                f"{self.base_url}/api/embeddings",
                json={"model": self.model, "prompt": text},
            )
            response.raise_for_status()
            vectors.append(response.json()["embedding"])
        return vectors


class OpenAIEmbedder(BaseEmbedder):
    """Embeddings from an OpenAI-compatible /v1/embeddings endpoint."""

    def _request_batch(self, client: httpx.Client, texts: list[str]) -> list[list[float]]:
        response = client.post(
            f"{self.base_url}/v1/embeddings",
            json={"model": self.model, "input": texts},
        )
        response.raise_for_status()
        data: list[dict[str, Any]] = response.json()["data"]
        # The API may return items out of order; "index" is authoritative
        ordered = sorted(data, key=lambda item: item.get("index", 0))
        return [item["embedding"] for item in ordered]


def create_embedder() -> BaseEmbedder:
    """
    Create the configured embedder.

    Returns:
        OllamaEmbedder or OpenAIEmbedder depending on settings.embed_provider
    """
    from docrag.config import settings

    embedder_cls = OpenAIEmbedder if settings.embed_provider == "openai" else OllamaEmbedder
    return embedder_cls(
        base_url=settings.embed_llm_base_url,
        model=settings.embed_llm_model,
        api_key=settings.embed_llm_key_value,
        dimension=settings.embedding_dimension,
        timeout=settings.embedding_timeout,
    )
