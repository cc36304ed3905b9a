"""Type protocols for embedding providers and embeddable records.

Defines the structural contracts that both production providers and
test fakes must satisfy. Uses Protocol (PEP 544) for structural
subtyping, so implementations don't need to inherit from these.

This module is importable without numpy installed (annotations are
deferred via __future__). Actual providers require numpy at runtime.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, List, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    import numpy as np


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Contract for embedding text into dense vectors."""

    @property
    def dimension(self) -> int:
        """Dimensionality of produced vectors."""
        ...

    def load(self) -> None:
        """Load model into memory. May be called multiple times (idempotent)."""
        ...

    def unload(self) -> None:
        """Release model from memory. May be called multiple times (idempotent)."""
        ...

    @property
    def is_loaded(self) -> bool:
        """Whether the model is currently loaded in memory."""
        ...

    def embed(self, text: str) -> np.ndarray:
        """Embed a single text into a dense vector.

        Returns:
            1-D numpy array of shape (dimension,).
        """
        ...

    def embed_batch(
        self, texts: Sequence[str], batch_size: int = 32
    ) -> List[np.ndarray]:
        """Embed multiple texts in batches.

        Returns:
            List of 1-D numpy arrays, each of shape (dimension,).
        """
        ...


@runtime_checkable
class Embeddable(Protocol):
    """Anything the vector index can store.

    The index only needs an identity, the text to embed and the two
    timestamps; it never depends on a concrete note type.
    """

    @property
    def id(self) -> str:
        ...

    @property
    def text(self) -> str:
        ...

    @property
    def created_at(self) -> int:
        ...

    @property
    def modified_at(self) -> int:
        ...
