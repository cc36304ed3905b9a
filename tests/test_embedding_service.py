"""Tests for the embedding layer.

Covers the fake provider contract, EmbeddingService lifecycle and error
wrapping, and the parts of the ONNX provider that run without a model.
"""
import threading
from unittest.mock import patch

import numpy as np
import pytest

from knowling.exceptions import EmbeddingError, ErrorCode
from knowling.services.embedding_service import EmbeddingService
from knowling.services.embedding_types import Embeddable, EmbeddingProvider
from knowling.services.onnx_providers import OnnxEmbeddingProvider
from knowling.models.schema import Note
from tests.fakes import FakeEmbeddingProvider


class TestFakeEmbeddingProvider:
    """The fake must honor the provider contract."""

    def test_satisfies_protocol(self):
        assert isinstance(FakeEmbeddingProvider(), EmbeddingProvider)

    def test_deterministic_same_input(self):
        p = FakeEmbeddingProvider()
        np.testing.assert_array_equal(p.embed("hello"), p.embed("hello"))

    def test_different_inputs_different_vectors(self):
        p = FakeEmbeddingProvider()
        assert not np.allclose(p.embed("hello"), p.embed("world"))

    def test_l2_normalized(self):
        p = FakeEmbeddingProvider(dim=16)
        v = p.embed("anything")
        assert v.shape == (16,)
        assert v.dtype == np.float32
        assert np.linalg.norm(v) == pytest.approx(1.0, abs=1e-5)

    def test_pinned_vectors(self):
        p = FakeEmbeddingProvider(dim=3, vectors={"a": [1, 0, 0]})
        p.pin("b", [0, 2, 0])
        np.testing.assert_array_equal(p.embed("a"), [1, 0, 0])
        np.testing.assert_array_equal(p.embed("b"), [0, 2, 0])


class TestEmbeddableProtocol:
    def test_note_is_embeddable(self):
        assert isinstance(Note(text="x"), Embeddable)


class TestEmbeddingServiceLifecycle:
    """Lazy load and shutdown."""

    def test_embedder_not_loaded_on_init(self):
        fake = FakeEmbeddingProvider()
        svc = EmbeddingService(embedder=fake)
        assert not svc.embedder_loaded
        assert fake.load_count == 0

    def test_embedder_loaded_on_first_embed(self):
        fake = FakeEmbeddingProvider()
        svc = EmbeddingService(embedder=fake)
        svc.embed("hello")
        svc.embed("again")
        assert svc.embedder_loaded
        assert fake.load_count == 1

    def test_concurrent_first_use_loads_once(self):
        fake = FakeEmbeddingProvider()
        svc = EmbeddingService(embedder=fake)
        threads = [threading.Thread(target=svc.embed, args=(f"t{i}",)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert fake.load_count == 1

    def test_dimension_delegates_to_embedder(self):
        svc = EmbeddingService(embedder=FakeEmbeddingProvider(dim=12))
        assert svc.dimension == 12

    def test_shutdown_unloads(self):
        fake = FakeEmbeddingProvider()
        svc = EmbeddingService(embedder=fake)
        svc.embed("x")
        svc.shutdown()
        assert not svc.embedder_loaded
        assert fake.unload_count == 1
        svc.shutdown()
        assert fake.unload_count == 1

    def test_embed_batch(self):
        fake = FakeEmbeddingProvider()
        svc = EmbeddingService(embedder=fake)
        vectors = svc.embed_batch(["a", "b", "c"])
        assert len(vectors) == 3
        np.testing.assert_array_equal(vectors[1], fake.embed("b"))

    def test_embed_batch_empty_does_not_load(self):
        fake = FakeEmbeddingProvider()
        svc = EmbeddingService(embedder=fake)
        assert svc.embed_batch([]) == []
        assert fake.load_count == 0


class TestEmbeddingServiceErrors:
    """Provider failures become EmbeddingError."""

    def test_load_failure(self):
        fake = FakeEmbeddingProvider()
        fake.fail_on_load = True
        svc = EmbeddingService(embedder=fake)
        with pytest.raises(EmbeddingError) as exc_info:
            svc.embed("x")
        assert exc_info.value.code == ErrorCode.EMBEDDING_MODEL_LOAD_FAILED
        assert isinstance(exc_info.value.original_error, RuntimeError)

    def test_inference_failure(self):
        fake = FakeEmbeddingProvider()
        fake.fail_on_embed = True
        svc = EmbeddingService(embedder=fake)
        with pytest.raises(EmbeddingError) as exc_info:
            svc.embed("x")
        assert exc_info.value.code == ErrorCode.EMBEDDING_INFERENCE_FAILED

    def test_batch_inference_failure(self):
        fake = FakeEmbeddingProvider()
        fake.fail_on_embed = True
        svc = EmbeddingService(embedder=fake)
        with pytest.raises(EmbeddingError) as exc_info:
            svc.embed_batch(["a", "b"])
        assert exc_info.value.operation == "embed_batch"

    def test_wrong_vector_count(self):
        fake = FakeEmbeddingProvider()
        svc = EmbeddingService(embedder=fake)
        with patch.object(fake, "embed_batch", return_value=[fake.embed("a")]):
            with pytest.raises(EmbeddingError):
                svc.embed_batch(["a", "b"])


class TestOnnxProviderWithoutModel:
    """Behavior that does not need onnxruntime or model files."""

    def test_defaults(self):
        provider = OnnxEmbeddingProvider()
        assert provider.model_id == "BAAI/bge-small-en-v1.5"
        assert provider.dimension == 384
        assert not provider.is_loaded

    def test_satisfies_protocol(self):
        assert isinstance(OnnxEmbeddingProvider(), EmbeddingProvider)

    def test_unload_when_not_loaded(self):
        provider = OnnxEmbeddingProvider()
        provider.unload()
        assert not provider.is_loaded

    def test_missing_runtime_becomes_embedding_error(self):
        provider = OnnxEmbeddingProvider()
        svc = EmbeddingService(embedder=provider)
        with patch(
            "knowling.services.onnx_providers._ensure_imports",
            side_effect=ImportError("onnxruntime is required"),
        ):
            with pytest.raises(EmbeddingError) as exc_info:
                svc.embed("x")
        assert exc_info.value.code == ErrorCode.EMBEDDING_MODEL_LOAD_FAILED
