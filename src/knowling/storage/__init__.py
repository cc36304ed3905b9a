"""Storage layer for the Knowling notebook."""

from knowling.storage.note_repository import NoteRepository
from knowling.storage.vector_index import VectorHit, VectorIndex, VectorRecord

__all__ = [
    "NoteRepository",
    "VectorIndex",
    "VectorHit",
    "VectorRecord",
]
