"""
Document retrieval components for the RAG pipeline.

Components:
    - chunker: Split text into overlapping character windows
    - sections: Parse speaker/chapter texts into labelled sections
    - context: Prefix chunks with a model-generated situating context
    - embeddings: Generate vector embeddings via Ollama or OpenAI-compatible APIs
"""

from docrag.retrieval.chunker import Chunk, chunk_content, get_chunks, merge_chunks
from docrag.retrieval.context import ContextAugmenter
from docrag.retrieval.embeddings import ChunkEmbedding, OllamaEmbedder, OpenAIEmbedder
from docrag.retrieval.sections import Section, SectionParser

__all__ = [
    "Chunk",
    "chunk_content",
    "get_chunks",
    "merge_chunks",
    "ContextAugmenter",
    "ChunkEmbedding",
    "OllamaEmbedder",
    "OpenAIEmbedder",
    "Section",
    "SectionParser",
]
