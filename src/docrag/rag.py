"""
Retrieval-augmented query orchestration.

A query is embedded, the configured backend returns the nearest chunks,
their contents become the context block of a two-message prompt, and the
model's answer is returned with a numbered list of the chunks it was
given:

    <answer>

    References:
    [1] Source: report.pdf, Page: 3, Chunk: 2
    [2] Chapter: II, Title: Sankhya-Yog, Speaker: Krishna, Chunk: 1
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Union

from docrag.errors import BackendConfigurationError, NoDocumentsFoundError, NoResponseError

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from docrag.llm.factory import CompletionProtocol
    from docrag.retrieval.embeddings import BaseEmbedder
    from docrag.stores.local import LocalVectorStore
    from docrag.stores.relational import RelationalStore

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = (
    "You are a helpful assistant. Answer the query using only the provided context. "
    "If the context does not contain enough information to answer, say \"I don't know\"."
)

USER_PROMPT_TEMPLATE = "Context:\n{context}\nQuery: {query}"

REFERENCES_HEADER = "\n\nReferences:\n"


@dataclass(frozen=True)
class PromptResponse:
    """Answer to a query."""

    query: str
    source: str
    """Context block the answer was generated from."""
    content: str
    """Model answer followed by the references section."""


@dataclass(frozen=True)
class RetrievedDocument:
    content: str
    reference: str


@dataclass(frozen=True)
class RelationalBackend:
    store: "RelationalStore"


@dataclass(frozen=True)
class LocalBackend:
    store: "LocalVectorStore"


Backend = Union[RelationalBackend, LocalBackend]


def local_reference(metadata: dict[str, str]) -> str:
    """Citation line for a local store hit, built from its metadata."""
    if "source_filename" in metadata:
        return (
            f"Source: {metadata['source_filename']}, "
            f"Page: {metadata.get('page_number', '')}, "
            f"Chunk: {metadata.get('chunk_id', '')}"
        )
    return (
        f"Chapter: {metadata.get('chapter', '')}, "
        f"Title: {metadata.get('title', '')}, "
        f"Speaker: {metadata.get('speaker', '')}, "
        f"Chunk: {metadata.get('chunk_id', '')}"
    )


class RAG:
    """
    Answer queries from one similarity-search backend.

    Example:
        >>> rag = RAG.from_handles(local=store, embedder=embedder, llm=create_llm())
        >>> response = rag.query("What does Krishna say about duty?")
        >>> print(response.content)
    """

    def __init__(
        self,
        backend: Backend,
        embedder: "BaseEmbedder",
        llm: "CompletionProtocol",
        max_results: int | None = None,
    ) -> None:
        """
        Args:
            backend: The backend to search
            embedder: Embeds the query text
            llm: Completion client that writes the answer
            max_results: Chunks retrieved per query (unset/0 uses settings)
        """
        if not isinstance(backend, (RelationalBackend, LocalBackend)):
            raise BackendConfigurationError(f"Unknown backend: {backend!r}")

        if not max_results or max_results <= 0:
            from docrag.config import settings

            max_results = settings.effective_max_results

        self.backend = backend
        self.embedder = embedder
        self.llm = llm
        self.max_results = max_results

    @classmethod
    def from_handles(
        cls,
        embedder: "BaseEmbedder",
        llm: "CompletionProtocol",
        relational: Optional["RelationalStore"] = None,
        local: Optional["LocalVectorStore"] = None,
        max_results: int | None = None,
    ) -> "RAG":
        """
        Build from store handles, exactly one of which must be given.

        Raises:
            BackendConfigurationError: If both or neither store is given
        """
        if relational is not None and local is not None:
            raise BackendConfigurationError("Configure exactly one backend, not both")
        if relational is not None:
            backend: Backend = RelationalBackend(relational)
        elif local is not None:
            backend = LocalBackend(local)
        else:
            raise BackendConfigurationError("No backend configured")
        return cls(backend, embedder, llm, max_results=max_results)

    def query(self, query: str) -> PromptResponse:
        """
        Answer a query from the backend's nearest chunks.

        Raises:
            EmbeddingError: If the query cannot be embedded
            BackendError: If the backend search fails
            NoDocumentsFoundError: If nothing was retrieved (the model is not called)
            CompletionError: If the completion request fails
            NoResponseError: If the model returns no choices
        """
        embedding = self.embedder.embed_query(query)
        documents = self.retrieve(query, embedding)

        source = "".join(f"{document.content}\n\n" for document in documents)
        if not source:
            raise NoDocumentsFoundError(query)
        logger.info(f"Retrieved {len(documents)} documents for query")

        completion = self.llm.complete(
            SYSTEM_PROMPT,
            USER_PROMPT_TEMPLATE.format(context=source, query=query),
        )
        if not completion.choices:
            raise NoResponseError()

        references = "\n".join(
            f"[{i}] {document.reference}" for i, document in enumerate(documents, start=1)
        )
        content = f"{completion.choices[0].content}{REFERENCES_HEADER}{references}"
        return PromptResponse(query=query, source=source, content=content)

    def retrieve(self, query: str, embedding: "NDArray[np.float32]") -> list[RetrievedDocument]:
        """Search the backend and attach a reference line to every hit."""
        backend = self.backend
        if isinstance(backend, RelationalBackend):
            rows = backend.store.search(embedding, self.max_results)
            return [RetrievedDocument(content=row.content, reference=row.reference) for row in rows]

        results = backend.store.query(text=query, embedding=embedding, limit=self.max_results)
        return [
            RetrievedDocument(content=result.content, reference=local_reference(result.metadata))
            for result in results
        ]
