"""
Singleton resource management for stores and service clients.

Provides cached instances of resources that should only be created once
per process. Uses @lru_cache (same as config.py settings singleton) so the
CLI and library callers share one embedder, one completion client and one
handle per store.

Usage:
    store = get_local_store()  # First call loads from disk, later calls reuse it
    rag = RAG.from_handles(get_embedder(), get_llm(), local=store)

    # In tests (reset cache)
    clear_resource_cache()
"""

import logging
from functools import lru_cache
from typing import TYPE_CHECKING

from docrag.config import settings

if TYPE_CHECKING:
    from docrag.llm.factory import CompletionProtocol
    from docrag.retrieval.embeddings import BaseEmbedder
    from docrag.stores.local import LocalVectorStore
    from docrag.stores.relational import RelationalStore

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_embedder() -> "BaseEmbedder":
    """Get or create the configured embedder."""
    from docrag.retrieval.embeddings import create_embedder

    logger.info(
        f"Initializing {settings.embed_provider} embedder for model: {settings.embed_llm_model}"
    )
    return create_embedder()


@lru_cache(maxsize=1)
def get_llm() -> "CompletionProtocol":
    """Get or create the completion client used for answers and context."""
    from docrag.llm.factory import create_llm

    logger.info(f"Initializing completion client for model: {settings.query_llm_model}")
    return create_llm()


@lru_cache(maxsize=1)
def get_local_store() -> "LocalVectorStore":
    """
    Get or open the local collection.

    The collection is loaded from settings.local_store_path when saved
    files exist; otherwise an empty collection is returned. Text-only
    queries are embedded with `get_embedder()`.
    """
    from docrag.stores.local import LocalVectorStore

    store = LocalVectorStore.from_disk(
        settings.local_store_path,
        settings.collection_name,
        dimension=settings.embedding_dimension,
        embedding_function=lambda text: get_embedder().embed_query(text),
        encryption_key=settings.encryption_key_value,
    )
    logger.info(f"Local collection {store.collection_name} ready ({store.count} documents)")
    return store


@lru_cache(maxsize=1)
def get_relational_store() -> "RelationalStore":
    """Get or create the database-backed store."""
    from docrag.stores.relational import RelationalStore

    logger.info(
        f"Connecting to {settings.database_host}:{settings.database_port}/{settings.database_name}"
    )
    return RelationalStore.from_settings(settings)


def clear_resource_cache() -> None:
    """
    Clear all cached resources.

    Used in tests to reset state between test cases.
    """
    if get_relational_store.cache_info().currsize:
        get_relational_store().dispose()
    get_embedder.cache_clear()
    get_llm.cache_clear()
    get_local_store.cache_clear()
    get_relational_store.cache_clear()
    logger.debug("Resource cache cleared")
