from __future__ import annotations

import os
import time
import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np
from sklearn.preprocessing import normalize
from tqdm import tqdm


DEFAULT_LOCAL_MODEL = "all-MiniLM-L6-v2"
DEFAULT_REMOTE_MODEL = "BAAI/bge-m3"
FALLBACK_DIM = 384


def retry_with_backoff(max_retries: int = 4, initial_delay: float = 1.0, backoff_factor: float = 2.0):
    """Retry decorator for transient API errors."""
    def decorator(func: Callable):
        def wrapper(*args, **kwargs):
            last_exc: Exception | None = None
            delay = initial_delay
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as e:  # noqa: BLE001 - surface provider errors
                    last_exc = e
                    if attempt < max_retries:
                        logging.warning(
                            "Embedding API failed, retry %d in %.1fs: %s",
                            attempt + 1,
                            delay,
                            str(e),
                        )
                        time.sleep(delay)
                        delay *= backoff_factor
                    else:
                        logging.error("Embedding API exhausted retries: %s", str(e))
            assert last_exc is not None
            raise last_exc
        return wrapper
    return decorator


class Embedder:
    name = "embedder"

    def embed(self, texts: List[str], batch_size: int = 64) -> np.ndarray:  # pragma: no cover - interface
        raise NotImplementedError


class SiliconFlowEmbedder(Embedder):
    """Embed via SiliconFlow's OpenAI-compatible embeddings endpoint."""

    name = "siliconflow"

    def __init__(self, model: str = DEFAULT_REMOTE_MODEL, base_url: str = "https://api.siliconflow.cn/v1/embeddings"):
        import requests  # lazy import

        self.requests = requests
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.api_key = os.environ.get("SILICONFLOW_API_KEY")
        if not self.api_key:
            raise RuntimeError("SiliconFlow API key is not configured (SILICONFLOW_API_KEY)")

    @retry_with_backoff(max_retries=4, initial_delay=1.0, backoff_factor=2.0)
    def _make_api_request(self, chunk: List[str], headers: Dict[str, str]):
        payload = {"model": self.model, "input": chunk}
        resp = self.requests.post(self.base_url, headers=headers, json=payload, timeout=60)
        if resp.status_code != 200:
            raise RuntimeError(f"SiliconFlow API error: {resp.status_code} {resp.text}")
        data = resp.json()
        embs = [d["embedding"] for d in data.get("data", [])]
        if len(embs) != len(chunk):
            raise RuntimeError("Embeddings count mismatch")
        return embs

    def embed(self, texts: List[str], batch_size: int = 64) -> np.ndarray:
        out: List[List[float]] = []
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        for i in tqdm(range(0, len(texts), batch_size), desc="embedding", ncols=100, disable=len(texts) <= batch_size):
            chunk = texts[i : i + batch_size]
            embs = self._make_api_request(chunk, headers)
            out.extend(embs)
        arr = np.asarray(out, dtype=np.float32)
        if arr.size == 0:
            return arr.reshape(0, FALLBACK_DIM)
        return normalize(arr)


class LocalSTEmbedder(Embedder):
    """Local sentence-transformers embedder (mean pooled, L2 normalized)."""

    name = "local"

    def __init__(self, model: str = DEFAULT_LOCAL_MODEL):
        from sentence_transformers import SentenceTransformer  # lazy import, loads torch

        logging.info("Loading embedding model: %s", model)
        self.model = SentenceTransformer(model)

    def embed(self, texts: List[str], batch_size: int = 64) -> np.ndarray:
        embs = self.model.encode(texts, batch_size=batch_size, normalize_embeddings=True, show_progress_bar=False)
        return np.asarray(embs, dtype=np.float32)


def make_embedder(provider: str = "local", model: Optional[str] = None) -> Embedder:
    p = provider.lower()
    if p == "local":
        return LocalSTEmbedder(model=model or DEFAULT_LOCAL_MODEL)
    if p == "siliconflow":
        return SiliconFlowEmbedder(model=model or DEFAULT_REMOTE_MODEL)
    raise ValueError(f"unknown embedding provider: {provider!r} (expected local / siliconflow)")


class LazyEmbedder:
    """Process-wide embedder handle created on first use.

    The first caller runs the factory while holding the lock; concurrent
    callers block until it finishes and then share the same instance. A
    failed initialization leaves the handle empty, so the next call tries
    again.
    """

    def __init__(self, factory: Callable[[], Embedder]) -> None:
        self._factory = factory
        self._lock = threading.Lock()
        self._instance: Optional[Embedder] = None

    @property
    def initialized(self) -> bool:
        return self._instance is not None

    def get(self) -> Embedder:
        if self._instance is not None:
            return self._instance
        with self._lock:
            if self._instance is None:
                self._instance = self._factory()
            return self._instance

    def embed(self, texts: List[str], batch_size: int = 64) -> np.ndarray:
        return self.get().embed(texts, batch_size=batch_size)


_HANDLES: Dict[Tuple[str, str], LazyEmbedder] = {}
_HANDLES_LOCK = threading.Lock()


def default_embedder(provider: str = "local", model: Optional[str] = None) -> LazyEmbedder:
    """Return the shared lazy handle for (provider, model)."""
    key = (provider.lower(), model or "")
    with _HANDLES_LOCK:
        handle = _HANDLES.get(key)
        if handle is None:
            handle = LazyEmbedder(lambda: make_embedder(provider, model))
            _HANDLES[key] = handle
        return handle


def random_embeddings(n: int, dim: int = FALLBACK_DIM, rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """Uniform vectors in [-0.5, 0.5), used when no provider is available."""
    gen = rng if rng is not None else np.random.default_rng()
    return gen.uniform(-0.5, 0.5, size=(n, dim))
