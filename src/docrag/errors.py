"""
Exception hierarchy for docrag.

Every failure that can reach a caller during ingestion or query is one of
these types, so the CLI and library users can tell them apart:

    DocRagError
    ├── DocumentReadError          input file could not be opened or read
    ├── UnsupportedFormatError     no decoder for the file extension
    ├── BackendConfigurationError  orchestrator built with both/neither backend
    ├── NoDocumentsFoundError      retrieval returned an empty context
    ├── NoResponseError            completion returned zero choices
    └── CollaboratorError          an external call failed
        ├── EmbeddingError
        ├── CompletionError
        ├── ContextGenerationError
        └── BackendError
"""

from pathlib import Path


class DocRagError(Exception):
    """Base class for all docrag errors."""


class DocumentReadError(DocRagError):
    """A document could not be opened or read."""

    def __init__(self, path: str | Path, reason: str = "") -> None:
        self.path = Path(path)
        message = f"Failed to read document: {self.path}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class UnsupportedFormatError(DocRagError):
    """No decoder is registered for the document's extension."""

    def __init__(self, extension: str) -> None:
        self.extension = extension
        super().__init__(f"Unsupported file format: {extension or '<none>'}")


class BackendConfigurationError(DocRagError):
    """The retrieval orchestrator was given an invalid backend selection."""


class NoDocumentsFoundError(DocRagError):
    """Retrieval produced an empty context block."""

    def __init__(self, query: str = "") -> None:
        self.query = query
        super().__init__("No documents found for query")


class NoResponseError(DocRagError):
    """The language model returned no choices."""

    def __init__(self) -> None:
        super().__init__("No response from language model")


class CollaboratorError(DocRagError):
    """An external collaborator call failed.

    The originating operation name is kept on the exception and prefixed to
    the message; the underlying exception is chained as ``__cause__``.
    """

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"{operation}: {message}")


class EmbeddingError(CollaboratorError):
    """Embedding generation failed."""


class CompletionError(CollaboratorError):
    """Chat completion request failed."""


class ContextGenerationError(CollaboratorError):
    """Situating-context generation for a chunk failed."""


class BackendError(CollaboratorError):
    """A similarity-search backend call failed."""
