"""
docrag: Document chunking and retrieval-augmented question answering

This package ingests documents into a vector store and answers natural
language questions from the most similar chunks, citing where each chunk
came from.

Key Components:
    - retrieval: Character chunker, speaker/chapter section parser,
      contextual chunk enrichment and embedding clients
    - rag: Query orchestration over a relational or local backend
    - stores: PostgreSQL/pgvector table and local FAISS collection
    - ingestion: Document decoders and ingestion pipelines
    - llm: OpenAI-compatible chat completion client

Example:
    >>> from docrag.rag import RAG
    >>> from docrag.resources import get_embedder, get_llm, get_local_store
    >>> rag = RAG.from_handles(get_embedder(), get_llm(), local=get_local_store())
    >>> print(rag.query("What does Krishna teach about action?").content)
"""

__version__ = "0.1.0"

from docrag.config import settings

__all__ = [
    "__version__",
    "settings",
]
