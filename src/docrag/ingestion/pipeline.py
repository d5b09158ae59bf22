"""
Ingestion pipelines.

Two paths load documents into a store:

    ingest_document     any supported file -> page chunks -> embeddings -> store
    ingest_structured   speaker/chapter text -> labelled sections -> local store

Embedding requests fan out over a bounded thread pool; results keep the
order of the input chunks and the first failure aborts the batch.
"""

import logging
import os
import uuid
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

import numpy as np
from numpy.typing import NDArray

from docrag.ingestion.decoders import decode
from docrag.retrieval.chunker import Chunk, chunk_pages, resolve_chunking
from docrag.retrieval.embeddings import ChunkEmbedding
from docrag.retrieval.sections import Section, SectionParser
from docrag.stores.local import LocalVectorStore, StoredDocument

if TYPE_CHECKING:
    from docrag.retrieval.embeddings import BaseEmbedder
    from docrag.stores.relational import RelationalStore

logger = logging.getLogger(__name__)


def _worker_count(workers: int | None) -> int:
    from docrag.config import settings

    return workers or settings.embedding_workers or os.cpu_count() or 1


def embed_in_parallel(
    texts: Sequence[str],
    embedder: "BaseEmbedder",
    workers: int | None = None,
) -> list[NDArray[np.float32]]:
    """
    Embed texts one request each over a bounded thread pool.

    Args:
        texts: Texts to embed
        embedder: Embedder whose ``embed_query`` is called per text
        workers: Pool size (default: settings.embedding_workers, else CPU count)

    Returns:
        One vector per text, in input order

    Raises:
        EmbeddingError: From the first text that failed to embed
    """
    if not texts:
        return []

    pool = ThreadPoolExecutor(max_workers=min(_worker_count(workers), len(texts)))
    try:
        vectors = list(pool.map(embedder.embed_query, texts))
    except Exception:
        pool.shutdown(wait=True, cancel_futures=True)
        raise
    pool.shutdown(wait=True)
    return vectors


def embed_chunks(
    chunks: Sequence[Chunk],
    embedder: "BaseEmbedder",
    source_filename: str,
    workers: int | None = None,
) -> list[ChunkEmbedding]:
    """Embed page chunks, tagging each with its source file."""
    vectors = embed_in_parallel([chunk.content for chunk in chunks], embedder, workers)
    return [
        ChunkEmbedding(
            content=chunk.content,
            embedding=vector,
            source_filename=source_filename,
            page_number=chunk.page_number,
            chunk_id=chunk.chunk_id,
        )
        for chunk, vector in zip(chunks, vectors)
    ]


def chunk_document(
    path: str | Path,
    chunk_size: int | None = None,
    chunk_overlap: int | None = None,
) -> list[Chunk]:
    """Decode a file and chunk every page (defaults from settings)."""
    from docrag.config import settings

    size, overlap = resolve_chunking(
        chunk_size if chunk_size is not None else settings.chunk_size,
        chunk_overlap if chunk_overlap is not None else settings.chunk_overlap,
    )
    pages = decode(path)
    return chunk_pages(((page.text, page.page_number) for page in pages), size, overlap)


def ingest_document(
    path: str | Path,
    store: Union["RelationalStore", LocalVectorStore],
    embedder: "BaseEmbedder",
    chunk_size: int | None = None,
    chunk_overlap: int | None = None,
    reset: bool = False,
    workers: int | None = None,
) -> int:
    """
    Decode, chunk, embed and store one document.

    Args:
        path: Document to ingest
        store: Relational store, or a local store (chunks get random ids)
        embedder: Embedder for the chunks
        chunk_size: Override for settings.chunk_size
        chunk_overlap: Override for settings.chunk_overlap
        reset: Drop and recreate the table, or clear the collection, first
        workers: Embedding pool size

    Returns:
        Number of chunks stored
    """
    path = Path(path)
    chunks = chunk_document(path, chunk_size, chunk_overlap)
    logger.info(f"{path.name}: {len(chunks)} chunks")

    embeddings = embed_chunks(chunks, embedder, path.name, workers)

    if isinstance(store, LocalVectorStore):
        if reset:
            store.delete_collection()
        store.add_documents(
            StoredDocument(
                id=str(uuid.uuid4()),
                content=item.content,
                metadata={
                    "source_filename": item.source_filename,
                    "page_number": str(item.page_number),
                    "chunk_id": str(item.chunk_id),
                },
                embedding=item.embedding,
            )
            for item in embeddings
        )
        if store.path is not None and store.count:
            store.save()
        return len(embeddings)

    if reset:
        store.drop_schema()
    store.create_schema()
    return store.store_documents(embeddings)


def store_sections(
    sections: Sequence[Section],
    store: LocalVectorStore,
    embedder: "BaseEmbedder",
    reset: bool = False,
    workers: int | None = None,
) -> int:
    """
    Embed parsed sections and load them into a local collection.

    Each record is stored under ``Section.document_id()`` with
    ``Section.metadata()``; storing a record with an existing id replaces it.
    Records with empty content are skipped.

    Returns:
        Number of distinct documents written
    """
    sections = [section for section in sections if section.content]
    vectors = embed_in_parallel([section.content for section in sections], embedder, workers)

    if reset:
        store.delete_collection()
    documents = [
        StoredDocument(
            id=section.document_id(),
            content=section.content,
            metadata=section.metadata(),
            embedding=vector,
        )
        for section, vector in zip(sections, vectors)
    ]
    stored = len({document.id for document in documents})
    if stored < len(documents):
        logger.warning(f"{len(documents) - stored} records were replaced by a later record with the same id")

    store.add_documents(documents)
    if store.path is not None and store.count:
        store.save()
    return stored


def ingest_structured(
    path: str | Path,
    store: LocalVectorStore,
    embedder: "BaseEmbedder",
    parser: Optional[SectionParser] = None,
    reset: bool = False,
    workers: int | None = None,
) -> list[Section]:
    """
    Parse a speaker/chapter formatted text and load its sections.

    Args:
        path: Text file to parse
        store: Local collection to load
        embedder: Embedder for the section chunks
        parser: Configured parser (default: chunking from settings, no enrichment)
        reset: Clear the collection first
        workers: Embedding pool size

    Returns:
        The parsed sections
    """
    if parser is None:
        from docrag.config import settings

        parser = SectionParser(settings.chunk_size, settings.chunk_overlap)

    sections = parser.parse_file(path)
    logger.info(f"{Path(path).name}: {len(sections)} sections")
    store_sections(sections, store, embedder, reset=reset, workers=workers)
    return sections
