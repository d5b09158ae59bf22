"""
Local collection store backed by a FAISS index.

Documents (id, content, string metadata, embedding) live in a named
collection. Similarity search runs on a FAISS inner-product index over
unit-normalised embeddings, so scores are cosine similarities. A collection
is persisted as two files under the store directory:

    <collection>.index   FAISS index (the normalised vectors)
    <collection>.json    document ids, contents and metadata

`export` / `import_` move a whole collection through a single portable
snapshot: gzip-compressed JSON, encrypted with AES-GCM when a key is set.
"""

import gzip
import json
import logging
import os
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import faiss
import numpy as np
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from numpy.typing import NDArray

from docrag.errors import BackendError

logger = logging.getLogger(__name__)

NONCE_SIZE = 12
KEY_SIZE = 32

EmbeddingFunction = Callable[[str], NDArray[np.float32]]


@dataclass
class StoredDocument:
    """A document held in a local collection."""

    id: str
    content: str
    metadata: dict[str, str] = field(default_factory=dict)
    embedding: Optional[NDArray[np.float32]] = None


@dataclass
class QueryResult(StoredDocument):
    """A query hit; ``similarity`` is the cosine similarity to the query."""

    similarity: float = 0.0


class LocalVectorStore:
    """
    Named document collection with FAISS similarity search.

    Adding a document whose id already exists replaces it.

    Example:
        >>> store = LocalVectorStore.from_disk("data/vectorstore", "bg_collection")
        >>> store.add_documents([StoredDocument("I-Sanjaya-1", text, meta, vector)])
        >>> store.save()
        >>> hits = store.query(embedding=query_vector, limit=5)
    """

    def __init__(
        self,
        path: str | Path | None = None,
        collection_name: str = "bg_collection",
        dimension: int | None = None,
        embedding_function: Optional[EmbeddingFunction] = None,
        encryption_key: Optional[str] = None,
    ) -> None:
        """
        Initialize an empty collection.

        Args:
            path: Directory for the collection files (None keeps it in memory)
            collection_name: Collection name, also the file stem on disk
            dimension: Vector dimension (taken from the first document if None)
            embedding_function: Embeds text for documents or queries that
                arrive without a vector
            encryption_key: 32-character key for encrypted export/import
        """
        self.path = Path(path) if path is not None else None
        self.collection_name = collection_name
        self.dimension = dimension
        self.embedding_function = embedding_function
        self.encryption_key = encryption_key
        self._documents: dict[str, StoredDocument] = {}
        self._index: faiss.IndexFlatIP | None = None

    @property
    def count(self) -> int:
        """Number of documents in the collection."""
        return len(self._documents)

    @property
    def index_file(self) -> Path:
        return self._require_path().joinpath(f"{self.collection_name}.index")

    @property
    def metadata_file(self) -> Path:
        return self._require_path().joinpath(f"{self.collection_name}.json")

    def add_documents(self, documents: Iterable[StoredDocument]) -> None:
        """
        Add or replace documents.

        Documents without an embedding are embedded with the store's
        embedding function.

        Raises:
            BackendError: If a document has no embedding and none can be
                computed, or its dimension does not match the collection
        """
        added = 0
        for document in documents:
            embedding = document.embedding
            if embedding is None:
                embedding = self._embed(document.content, "add documents")

            vector = self._normalize(np.asarray(embedding, dtype=np.float32).reshape(1, -1))[0]
            if self.dimension is None:
                self.dimension = int(vector.shape[0])
            elif vector.shape[0] != self.dimension:
                raise BackendError(
                    "add documents",
                    f"document {document.id} has dimension {vector.shape[0]}, "
                    f"collection expects {self.dimension}",
                )

            self._documents[document.id] = StoredDocument(
                id=document.id,
                content=document.content,
                metadata={key: str(value) for key, value in document.metadata.items()},
                embedding=vector,
            )
            added += 1

        if added:
            self._index = None
        logger.debug(f"Added {added} documents to collection {self.collection_name}")

    def get(self, document_id: str) -> Optional[StoredDocument]:
        """Look up a document by id."""
        return self._documents.get(document_id)

    def query(
        self,
        text: str = "",
        embedding: Optional[NDArray[np.float32]] = None,
        limit: int = 5,
        where: Optional[dict[str, str]] = None,
    ) -> list[QueryResult]:
        """
        Find the documents most similar to a query.

        Args:
            text: Query text, embedded when no embedding is given
            embedding: Query vector
            limit: Maximum number of results
            where: Exact-match metadata filter

        Returns:
            Results sorted by similarity descending (at most ``limit``)

        Raises:
            BackendError: If there is no query vector and no way to compute one
        """
        if embedding is None:
            if not text:
                raise BackendError("local query", "either query text or an embedding is required")
            embedding = self._embed(text, "local query")

        if limit <= 0 or not self._documents:
            return []

        index = self._build_index()
        documents = list(self._documents.values())

        query_vector = self._normalize(np.asarray(embedding, dtype=np.float32).reshape(1, -1))
        if query_vector.shape[1] != self.dimension:
            raise BackendError(
                "local query",
                f"query has dimension {query_vector.shape[1]}, collection expects {self.dimension}",
            )

        # Filtering happens after search, so search everything when filtering
        k = len(documents) if where else min(limit, len(documents))
        scores, indices = index.search(np.ascontiguousarray(query_vector), k)

        results: list[QueryResult] = []
        for idx, score in zip(indices[0], scores[0]):
            if idx < 0:
                continue
            document = documents[idx]
            if where and any(document.metadata.get(key) != value for key, value in where.items()):
                continue
            results.append(
                QueryResult(
                    id=document.id,
                    content=document.content,
                    metadata=dict(document.metadata),
                    embedding=document.embedding,
                    similarity=float(score),
                )
            )
            if len(results) >= limit:
                break
        return results

    def delete_collection(self) -> None:
        """Remove every document, and the collection files if persisted."""
        self._documents.clear()
        self._index = None
        if self.path is not None:
            for file in (self.index_file, self.metadata_file):
                file.unlink(missing_ok=True)
        logger.info(f"Deleted collection {self.collection_name}")

    def save(self) -> None:
        """
        Write the collection to its directory.

        Raises:
            BackendError: If the store has no path or writing fails
        """
        path = self._require_path()
        index = self._build_index()
        documents = [
            {"id": doc.id, "content": doc.content, "metadata": doc.metadata}
            for doc in self._documents.values()
        ]
        try:
            path.mkdir(parents=True, exist_ok=True)
            faiss.write_index(index, str(self.index_file))
            with self.metadata_file.open("w", encoding="utf-8") as f:
                json.dump(
                    {"dimension": self.dimension, "documents": documents},
                    f,
                    indent=2,
                    ensure_ascii=False,
                )
        except (OSError, RuntimeError) as e:
            raise BackendError("save collection", str(e)) from e

    def load(self) -> None:
        """
        Read the collection from its directory.

        Raises:
            BackendError: If the files are missing, unreadable or inconsistent
        """
        index_file, metadata_file = self.index_file, self.metadata_file
        try:
            index = faiss.read_index(str(index_file))
            with metadata_file.open(encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, RuntimeError, ValueError) as e:
            raise BackendError("load collection", str(e)) from e

        entries = data.get("documents", [])
        if index.ntotal != len(entries):
            raise BackendError(
                "load collection",
                f"{index_file} holds {index.ntotal} vectors but {metadata_file} "
                f"lists {len(entries)} documents",
            )

        vectors = index.reconstruct_n(0, index.ntotal) if index.ntotal else []
        self.dimension = data.get("dimension") or index.d
        self._documents = {
            entry["id"]: StoredDocument(
                id=entry["id"],
                content=entry["content"],
                metadata=entry.get("metadata", {}),
                embedding=np.asarray(vector, dtype=np.float32),
            )
            for entry, vector in zip(entries, vectors)
        }
        self._index = index
        logger.info(f"Loaded collection {self.collection_name} ({self.count} documents)")

    @classmethod
    def from_disk(
        cls,
        path: str | Path,
        collection_name: str = "bg_collection",
        **kwargs: Any,
    ) -> "LocalVectorStore":
        """
        Open a persisted collection, or an empty one if none is saved yet.
        """
        store = cls(path=path, collection_name=collection_name, **kwargs)
        if store.index_file.exists() and store.metadata_file.exists():
            store.load()
        return store

    def export(self, path: str | Path) -> None:
        """
        Write the collection to a single snapshot file.

        The snapshot is gzip-compressed JSON, encrypted with AES-GCM (random
        12-byte nonce prepended) when the store has an encryption key.

        Raises:
            BackendError: If the key is invalid or writing fails
        """
        snapshot = {
            "collection": self.collection_name,
            "dimension": self.dimension,
            "documents": [
                {
                    "id": doc.id,
                    "content": doc.content,
                    "metadata": doc.metadata,
                    "embedding": doc.embedding.tolist() if doc.embedding is not None else None,
                }
                for doc in self._documents.values()
            ],
        }
        payload = gzip.compress(json.dumps(snapshot, ensure_ascii=False).encode("utf-8"))

        if self.encryption_key:
            nonce = os.urandom(NONCE_SIZE)
            payload = nonce + self._cipher("export").encrypt(nonce, payload, None)

        try:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            Path(path).write_bytes(payload)
        except OSError as e:
            raise BackendError("export", str(e)) from e
        logger.info(f"Exported {self.count} documents to {path}")

    def import_(self, path: str | Path) -> None:
        """
        Add every document from a snapshot written by `export`.

        Raises:
            BackendError: If the file cannot be read, decrypted or decoded
        """
        try:
            payload = Path(path).read_bytes()
        except OSError as e:
            raise BackendError("import", str(e)) from e

        if self.encryption_key:
            nonce, ciphertext = payload[:NONCE_SIZE], payload[NONCE_SIZE:]
            try:
                payload = self._cipher("import").decrypt(nonce, ciphertext, None)
            except InvalidTag as e:
                raise BackendError("import", "decryption failed (wrong key or corrupt file)") from e

        try:
            snapshot = json.loads(gzip.decompress(payload).decode("utf-8"))
        except (OSError, EOFError, ValueError) as e:
            raise BackendError("import", f"invalid snapshot: {e}") from e

        self.add_documents(
            StoredDocument(
                id=entry["id"],
                content=entry["content"],
                metadata=entry.get("metadata", {}),
                embedding=(
                    np.asarray(entry["embedding"], dtype=np.float32)
                    if entry.get("embedding") is not None
                    else None
                ),
            )
            for entry in snapshot.get("documents", [])
        )
        logger.info(f"Imported {len(snapshot.get('documents', []))} documents from {path}")

    def _cipher(self, operation: str) -> AESGCM:
        key = (self.encryption_key or "").encode("utf-8")
        if len(key) != KEY_SIZE:
            raise BackendError(operation, f"encryption key must be {KEY_SIZE} bytes, got {len(key)}")
        return AESGCM(key)

    def _embed(self, text: str, operation: str) -> NDArray[np.float32]:
        if self.embedding_function is None:
            raise BackendError(operation, "no embedding given and the store has no embedding function")
        return self.embedding_function(text)

    def _build_index(self) -> faiss.IndexFlatIP:
        if self._index is not None:
            return self._index
        if self.dimension is None:
            raise BackendError("build index", "collection dimension is unknown")

        index = faiss.IndexFlatIP(self.dimension)
        if self._documents:
            vectors = np.vstack([doc.embedding for doc in self._documents.values()])
            index.add(np.ascontiguousarray(vectors, dtype=np.float32))
        self._index = index
        return index

    def _require_path(self) -> Path:
        if self.path is None:
            raise BackendError("persist collection", "store was created without a path")
        return self.path

    @staticmethod
    def _normalize(embeddings: NDArray[np.float32]) -> NDArray[np.float32]:
        norms = np.linalg.norm(embeddings, axis=1, keepdims=True)
        # Avoid division by zero
        norms = np.where(norms == 0, 1, norms)
        return (embeddings / norms).astype(np.float32)
