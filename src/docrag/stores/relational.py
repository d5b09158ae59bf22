"""
PostgreSQL + pgvector document store.

Chunks are stored in a single ``documents`` table with their embedding and
provenance. Nearest-neighbour search orders rows by L2 distance
(``embedding <-> :query``).
"""

import logging
from collections.abc import Generator, Iterable
from contextlib import contextmanager
from typing import TYPE_CHECKING, Optional

import numpy as np
from numpy.typing import NDArray
from pgvector.sqlalchemy import Vector
from sqlalchemy import Integer, Select, String, Text, create_engine, select, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from docrag.config import settings
from docrag.errors import BackendError

if TYPE_CHECKING:
    from docrag.config import Settings
    from docrag.retrieval.embeddings import ChunkEmbedding

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class DocumentRow(Base):
    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    embedding = mapped_column(Vector(settings.embedding_dimension), nullable=False)
    source_filename: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    page_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    chunk_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    @property
    def reference(self) -> str:
        """Human-readable citation for this chunk."""
        return f"Source: {self.source_filename}, Page: {self.page_number}, Chunk: {self.chunk_id}"


def database_url(config: "Settings") -> URL:
    """Build the psycopg connection URL from settings."""
    password = config.database_password.get_secret_value() if config.database_password else None
    return URL.create(
        "postgresql+psycopg",
        username=config.database_user,
        password=password,
        host=config.database_host,
        port=config.database_port,
        database=config.database_name,
    )


class RelationalStore:
    """
    Document table access for ingestion and nearest-neighbour search.

    Example:
        >>> store = RelationalStore.from_settings()
        >>> store.create_schema()
        >>> store.store_documents(chunk_embeddings)
        >>> rows = store.search(query_vector, limit=5)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._session_factory = sessionmaker(
            bind=engine, autocommit=False, autoflush=False, expire_on_commit=False
        )

    @classmethod
    def from_settings(cls, config: Optional["Settings"] = None) -> "RelationalStore":
        """Create a store connected to the configured database."""
        config = config or settings
        engine = create_engine(database_url(config), echo=config.database_debug)
        return cls(engine)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Yield a session that commits on success and rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_schema(self) -> None:
        """Enable the vector extension and create the documents table if missing."""
        try:
            with self.engine.begin() as connection:
                connection.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise BackendError("create schema", str(e)) from e
        logger.info("Documents table ready")

    def drop_schema(self) -> None:
        """Drop the documents table if it exists."""
        try:
            DocumentRow.__table__.drop(self.engine, checkfirst=True)
        except SQLAlchemyError as e:
            raise BackendError("drop schema", str(e)) from e
        logger.info("Documents table dropped")

    def store_documents(self, chunk_embeddings: Iterable["ChunkEmbedding"]) -> int:
        """
        Insert embedded chunks in one transaction.

        Returns:
            Number of rows inserted
        """
        rows = [
            DocumentRow(
                content=item.content,
                embedding=item.embedding,
                source_filename=item.source_filename,
                page_number=item.page_number,
                chunk_id=item.chunk_id,
            )
            for item in chunk_embeddings
        ]
        try:
            with self.session() as session:
                session.add_all(rows)
        except SQLAlchemyError as e:
            raise BackendError("store documents", str(e)) from e
        logger.info(f"Stored {len(rows)} documents")
        return len(rows)

    def search(self, embedding: NDArray[np.float32], limit: int) -> list[DocumentRow]:
        """
        Return the ``limit`` rows nearest to ``embedding`` by L2 distance.

        Raises:
            BackendError: If the query fails
        """
        try:
            with self.session() as session:
                return list(session.scalars(search_statement(embedding, limit)))
        except SQLAlchemyError as e:
            raise BackendError("relational search", str(e)) from e

    def dispose(self) -> None:
        self.engine.dispose()


def search_statement(embedding: NDArray[np.float32], limit: int) -> Select:
    """Nearest-neighbour SELECT ordered by ``embedding <-> :query``."""
    return (
        select(DocumentRow)
        .order_by(DocumentRow.embedding.l2_distance(np.asarray(embedding, dtype=np.float32)))
        .limit(limit)
    )
