"""
Similarity-search backends.

Components:
    - relational: PostgreSQL table with a pgvector embedding column
    - local: FAISS-backed named collection with encrypted snapshots
"""

from docrag.stores.local import LocalVectorStore, QueryResult, StoredDocument
from docrag.stores.relational import DocumentRow, RelationalStore

__all__ = [
    "LocalVectorStore",
    "QueryResult",
    "StoredDocument",
    "DocumentRow",
    "RelationalStore",
]
