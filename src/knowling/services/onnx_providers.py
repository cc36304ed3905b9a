"""ONNX Runtime embedding provider.

Runs a sentence embedding model exported to ONNX (by default
BAAI/bge-small-en-v1.5, 384 dimensions) with CLS pooling and L2
normalization. Model files come from the HuggingFace Hub.

onnxruntime, tokenizers and huggingface-hub are optional dependencies
(``pip install knowling[onnx]``); they are imported on first load.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)

_ort = None
_tokenizers = None
_hf_hub = None


def _ensure_imports() -> None:
    """Import optional dependencies, raising a clear error if missing."""
    global _ort, _tokenizers, _hf_hub
    if _ort is None:
        try:
            import onnxruntime as ort

            _ort = ort
        except ImportError:
            raise ImportError(
                "onnxruntime is required for embeddings. "
                "Install with: pip install knowling[onnx]"
            )
    if _tokenizers is None:
        try:
            import tokenizers as tok

            _tokenizers = tok
        except ImportError:
            raise ImportError(
                "tokenizers is required for embeddings. "
                "Install with: pip install knowling[onnx]"
            )
    if _hf_hub is None:
        try:
            import huggingface_hub as hfh

            _hf_hub = hfh
        except ImportError:
            raise ImportError(
                "huggingface-hub is required for embeddings. "
                "Install with: pip install knowling[onnx]"
            )


def _resolve_providers(preference: str = "auto") -> List[str]:
    """Resolve ONNX execution providers from a preference string.

    Args:
        preference: "auto" (CUDA when available, then CPU), "cpu", or a
            comma-separated list used as-is.
    """
    _ensure_imports()

    pref = preference.strip().lower()

    if pref == "cpu":
        return ["CPUExecutionProvider"]

    if pref == "auto":
        available = _ort.get_available_providers()
        providers = []
        if "CUDAExecutionProvider" in available:
            providers.append("CUDAExecutionProvider")
        providers.append("CPUExecutionProvider")
        return providers

    return [p.strip() for p in preference.split(",") if p.strip()]


def _download_model_files(
    model_id: str,
    filenames: List[str],
    cache_dir: Optional[Path] = None,
) -> Path:
    """Download model files from the HuggingFace Hub and return their directory."""
    _ensure_imports()
    snapshot_dir = _hf_hub.snapshot_download(
        repo_id=model_id,
        allow_patterns=filenames,
        cache_dir=str(cache_dir) if cache_dir else None,
    )
    return Path(snapshot_dir)


class OnnxEmbeddingProvider:
    """Embedding provider using direct ONNX Runtime inference.

    Args:
        model_id: HuggingFace model ID.
        dimension: Expected output dimension. Replaced by the dimension
            the loaded model reports, so a mismatch with the configured
            vector store is caught downstream.
        onnx_filename: Path to the ONNX model file within the repo.
        max_length: Maximum token length for truncation.
        cache_dir: Optional custom cache directory for model files.
        providers: Provider preference string ("auto", "cpu", or comma-separated).
    """

    def __init__(
        self,
        model_id: str = "BAAI/bge-small-en-v1.5",
        dimension: int = 384,
        onnx_filename: str = "onnx/model.onnx",
        max_length: int = 512,
        cache_dir: Optional[Path] = None,
        providers: str = "auto",
    ) -> None:
        self._model_id = model_id
        self._dim = dimension
        self._onnx_filename = onnx_filename
        self._max_length = max_length
        self._cache_dir = cache_dir
        self._providers_pref = providers
        self._session: Optional[object] = None  # ort.InferenceSession
        self._tokenizer: Optional[object] = None  # tokenizers.Tokenizer

    @property
    def dimension(self) -> int:
        return self._dim

    @property
    def model_id(self) -> str:
        return self._model_id

    def load(self) -> None:
        """Download and load the ONNX model and tokenizer."""
        if self._session is not None:
            return

        _ensure_imports()
        logger.info(f"Loading embedding model: {self._model_id} [{self._onnx_filename}]")
        t0 = time.perf_counter()

        model_dir = _download_model_files(
            self._model_id,
            [self._onnx_filename, "tokenizer.json", "tokenizer_config.json"],
            self._cache_dir,
        )

        tokenizer_path = model_dir / "tokenizer.json"
        self._tokenizer = _tokenizers.Tokenizer.from_file(str(tokenizer_path))
        self._tokenizer.enable_truncation(max_length=self._max_length)
        self._tokenizer.enable_padding(length=None)  # Dynamic padding per batch

        onnx_path = model_dir / self._onnx_filename
        if not onnx_path.exists():
            raise FileNotFoundError(
                f"ONNX model not found at {onnx_path}. "
                f"Check that {self._model_id} has an ONNX model at {self._onnx_filename}"
            )

        sess_options = _ort.SessionOptions()
        sess_options.graph_optimization_level = (
            _ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        )
        providers = _resolve_providers(self._providers_pref)
        self._session = _ort.InferenceSession(
            str(onnx_path), sess_options=sess_options, providers=providers
        )

        # Trust the model over the constructor argument
        outputs = self._session.get_outputs()
        if outputs and len(outputs[0].shape) >= 2 and isinstance(
            outputs[0].shape[-1], int
        ):
            self._dim = outputs[0].shape[-1]

        logger.info(
            f"Embedding model loaded: dim={self._dim}, "
            f"max_tokens={self._max_length}, "
            f"providers={self._session.get_providers()}, "
            f"took {time.perf_counter() - t0:.1f}s"
        )

    def unload(self) -> None:
        """Release model from memory."""
        self._session = None
        self._tokenizer = None
        logger.info(f"Embedding model unloaded: {self._model_id}")

    @property
    def is_loaded(self) -> bool:
        return self._session is not None

    def _tokenize(self, texts: Sequence[str]) -> dict:
        """Tokenize texts and return numpy arrays for ONNX input."""
        encodings = self._tokenizer.encode_batch(list(texts))
        max_len = max(len(e.ids) for e in encodings)

        input_ids = np.zeros((len(texts), max_len), dtype=np.int64)
        attention_mask = np.zeros((len(texts), max_len), dtype=np.int64)

        for i, encoding in enumerate(encodings):
            length = len(encoding.ids)
            input_ids[i, :length] = encoding.ids
            attention_mask[i, :length] = encoding.attention_mask

        return {"input_ids": input_ids, "attention_mask": attention_mask}

    def _forward(self, inputs: dict) -> np.ndarray:
        """Run inference, take the CLS token and L2-normalize."""
        input_names = {inp.name for inp in self._session.get_inputs()}
        feed = {k: v for k, v in inputs.items() if k in input_names}
        if "token_type_ids" in input_names:
            # Single-sequence input: all zeros
            feed["token_type_ids"] = np.zeros_like(inputs["input_ids"])

        outputs = self._session.run(None, feed)
        hidden_states = outputs[0]
        embeddings = hidden_states[:, 0, :] if hidden_states.ndim == 3 else hidden_states

        norms = np.linalg.norm(embeddings, axis=1, keepdims=True)
        norms = np.maximum(norms, 1e-12)
        return (embeddings / norms).astype(np.float32)

    def embed(self, text: str) -> np.ndarray:
        """Embed a single text into a normalized dense vector."""
        if not self.is_loaded:
            self.load()
        return self._forward(self._tokenize([text]))[0]

    def embed_batch(
        self, texts: Sequence[str], batch_size: int = 32
    ) -> List[np.ndarray]:
        """Embed multiple texts, processing in fixed-size batches."""
        if not self.is_loaded:
            self.load()

        results: List[np.ndarray] = []
        for i in range(0, len(texts), batch_size):
            batch = texts[i : i + batch_size]
            embeddings = self._forward(self._tokenize(batch))
            results.extend(embeddings[j] for j in range(len(batch)))
        logger.debug(f"embed_batch: {len(texts)} texts embedded")
        return results
