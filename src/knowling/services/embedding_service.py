"""Embedding service.

Wraps an embedding provider with lazy, thread-safe model loading and
turns provider failures into EmbeddingError.

Usage:
    service = EmbeddingService(embedder=embedder)
    vector = service.embed("some text")
    vectors = service.embed_batch(["text1", "text2"])
    service.shutdown()  # Release the model on exit
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, List, Optional, Sequence

from knowling.exceptions import EmbeddingError, ErrorCode

if TYPE_CHECKING:
    import numpy as np

    from knowling.services.embedding_types import EmbeddingProvider

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Manages an embedding provider with lazy loading.

    The model is loaded on the first embed call and kept warm until
    shutdown(). Load and unload are guarded by a lock.

    Args:
        embedder: An EmbeddingProvider implementation.
        batch_size: Default number of texts per inference batch.
    """

    def __init__(self, embedder: EmbeddingProvider, batch_size: int = 32) -> None:
        self._embedder = embedder
        self._batch_size = batch_size
        self._embedder_lock = threading.Lock()

    @property
    def dimension(self) -> int:
        """Embedding dimensionality (delegates to provider)."""
        return self._embedder.dimension

    @property
    def embedder_loaded(self) -> bool:
        """Whether the embedding model is currently in memory."""
        return self._embedder.is_loaded

    def _ensure_embedder(self) -> None:
        """Load the embedder if not already loaded. Thread-safe."""
        if self._embedder.is_loaded:
            return
        with self._embedder_lock:
            if self._embedder.is_loaded:
                return  # Double-check after acquiring lock
            try:
                self._embedder.load()
                logger.info("Embedding model loaded")
            except Exception as e:
                raise EmbeddingError(
                    f"Failed to load embedding model: {e}",
                    code=ErrorCode.EMBEDDING_MODEL_LOAD_FAILED,
                    operation="embedder_load",
                    original_error=e,
                ) from e

    def embed(self, text: str) -> "np.ndarray":
        """Embed a single text into a dense vector.

        Raises:
            EmbeddingError: If model loading or inference fails.
        """
        self._ensure_embedder()
        try:
            return self._embedder.embed(text)
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(
                f"Embedding inference failed: {e}",
                code=ErrorCode.EMBEDDING_INFERENCE_FAILED,
                operation="embed",
                original_error=e,
            ) from e

    def embed_batch(
        self, texts: Sequence[str], batch_size: Optional[int] = None
    ) -> List["np.ndarray"]:
        """Embed multiple texts in batches.

        Returns:
            One vector per input text, in input order.

        Raises:
            EmbeddingError: If model loading or inference fails, or the
                provider returns the wrong number of vectors.
        """
        if not texts:
            return []
        self._ensure_embedder()
        try:
            vectors = self._embedder.embed_batch(
                list(texts), batch_size or self._batch_size
            )
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(
                f"Batch embedding failed: {e}",
                code=ErrorCode.EMBEDDING_INFERENCE_FAILED,
                operation="embed_batch",
                original_error=e,
            ) from e
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Embedding model returned {len(vectors)} vectors "
                f"for {len(texts)} texts",
                operation="embed_batch",
            )
        return vectors

    def shutdown(self) -> None:
        """Unload the model. Safe to call more than once."""
        with self._embedder_lock:
            if self._embedder.is_loaded:
                self._embedder.unload()
        logger.info("EmbeddingService shut down")
