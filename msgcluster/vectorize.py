from __future__ import annotations

import math
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Hashable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .embeddings import FALLBACK_DIM, Embedder, LazyEmbedder, default_embedder, random_embeddings


FeatureVector = Union[np.ndarray, Mapping[Hashable, float]]

DENSE_TOL = 1e-6
SPARSE_TOL = 1e-3


# ------------------------------
# Vector metrics (dense or keyed)
# ------------------------------
def _as_mapping(v: FeatureVector) -> Mapping[Hashable, float]:
    if isinstance(v, Mapping):
        return v
    return {i: float(x) for i, x in enumerate(np.asarray(v, dtype=float).ravel())}


def _aligned(a: FeatureVector, b: FeatureVector) -> Tuple[np.ndarray, np.ndarray]:
    """Lay both vectors out over the union of their keys (absent keys are 0)."""
    if isinstance(a, Mapping) or isinstance(b, Mapping):
        ma, mb = _as_mapping(a), _as_mapping(b)
        keys = list(dict.fromkeys([*ma.keys(), *mb.keys()]))
        va = np.array([ma.get(k, 0.0) for k in keys], dtype=float)
        vb = np.array([mb.get(k, 0.0) for k in keys], dtype=float)
        return va, vb
    va = np.asarray(a, dtype=float).ravel()
    vb = np.asarray(b, dtype=float).ravel()
    if va.size != vb.size:
        n = max(va.size, vb.size)
        va = np.pad(va, (0, n - va.size))
        vb = np.pad(vb, (0, n - vb.size))
    return va, vb


def euclidean_distance(a: FeatureVector, b: FeatureVector) -> float:
    va, vb = _aligned(a, b)
    return float(np.sqrt(np.sum((va - vb) ** 2)))


def cosine_similarity(a: FeatureVector, b: FeatureVector) -> float:
    """Cosine over the union of keys; 0 when either vector has zero norm."""
    va, vb = _aligned(a, b)
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))


def stack_vectors(vectors: Sequence[FeatureVector]) -> Tuple[np.ndarray, Optional[List[Hashable]]]:
    """Stack vectors into a matrix.

    Returns the matrix and, when any input is keyed, the column keys in
    first-seen order (None for purely dense input).
    """
    if not vectors:
        return np.zeros((0, 0), dtype=float), None
    if any(isinstance(v, Mapping) for v in vectors):
        maps = [_as_mapping(v) for v in vectors]
        keys: List[Hashable] = list(dict.fromkeys(k for m in maps for k in m.keys()))
        col = {k: j for j, k in enumerate(keys)}
        X = np.zeros((len(maps), len(keys)), dtype=float)
        for i, m in enumerate(maps):
            for k, val in m.items():
                X[i, col[k]] = float(val)
        return X, keys
    rows = [np.asarray(v, dtype=float).ravel() for v in vectors]
    width = max(r.size for r in rows)
    X = np.zeros((len(rows), width), dtype=float)
    for i, r in enumerate(rows):
        X[i, : r.size] = r
    return X, None


# ------------------------------
# TF-IDF statistics
# ------------------------------
def term_frequencies(tokens: Sequence[str]) -> Dict[str, float]:
    total = len(tokens)
    if total == 0:
        return {}
    return {t: c / total for t, c in Counter(tokens).items()}


def inverse_document_frequencies(documents: Sequence[Sequence[str]]) -> Dict[str, float]:
    """idf(t) = ln(N / df(t)); only terms present in the corpus get an entry."""
    n_docs = len(documents)
    doc_freq: Counter = Counter()
    for tokens in documents:
        doc_freq.update(set(tokens))
    return {t: math.log(n_docs / df) for t, df in doc_freq.items()}


def tfidf_documents(documents: Sequence[Sequence[str]]) -> List[Dict[str, float]]:
    idf = inverse_document_frequencies(documents)
    return [{t: tf * idf[t] for t, tf in term_frequencies(tokens).items()} for tokens in documents]


def term_document_vectors(terms: Sequence[str], documents: Sequence[Sequence[str]]) -> np.ndarray:
    """One row per term, one column per document, valued tfidf(term, doc)."""
    doc_vectors = tfidf_documents(documents)
    X = np.zeros((len(terms), len(documents)), dtype=float)
    row = {t: i for i, t in enumerate(terms)}
    for j, dv in enumerate(doc_vectors):
        for t, score in dv.items():
            i = row.get(t)
            if i is not None:
                X[i, j] = score
    return X


# ------------------------------
# Strategies
# ------------------------------
@dataclass
class VectorizeResult:
    vectors: np.ndarray
    convergence_tol: float
    degraded: bool = False
    source: str = ""


class Vectorizer:
    name = "vectorizer"

    def vectorize(
        self,
        terms: Sequence[str],
        documents: Sequence[Sequence[str]],
        rng: Optional[np.random.Generator] = None,
    ) -> VectorizeResult:  # pragma: no cover - interface
        raise NotImplementedError


class TfidfTermVectorizer(Vectorizer):
    """Term vectors keyed by document index, valued by per-document TF-IDF."""

    name = "tfidf"

    def vectorize(self, terms, documents, rng=None) -> VectorizeResult:
        X = term_document_vectors(terms, documents)
        return VectorizeResult(vectors=X, convergence_tol=SPARSE_TOL, source=self.name)


class EmbeddingVectorizer(Vectorizer):
    """Embed each distinct term; falls back to random vectors when the provider fails."""

    name = "embedding"

    def __init__(self, embedder: Union[Embedder, LazyEmbedder, None] = None, fallback_dim: int = FALLBACK_DIM) -> None:
        self.embedder = embedder if embedder is not None else default_embedder()
        self.fallback_dim = fallback_dim

    def vectorize(self, terms, documents, rng=None) -> VectorizeResult:
        texts = list(terms)
        try:
            X = np.asarray(self.embedder.embed(texts), dtype=float)
            if X.ndim != 2 or X.shape[0] != len(texts):
                raise RuntimeError(f"embedding shape mismatch: {X.shape} for {len(texts)} terms")
            if not np.all(np.isfinite(X)):
                raise RuntimeError("embedding contains inf/nan")
        except Exception as e:  # noqa: BLE001 - provider failures degrade, never abort
            logging.warning(
                "Embedding provider unavailable, using random vectors for %d terms (degraded): %s",
                len(texts),
                str(e),
            )
            X = random_embeddings(len(texts), self.fallback_dim, rng=rng)
            return VectorizeResult(vectors=X, convergence_tol=DENSE_TOL, degraded=True, source="random")
        return VectorizeResult(vectors=X, convergence_tol=DENSE_TOL, source=self.name)


def make_vectorizer(strategy: str, **kwargs: Any) -> Vectorizer:
    s = strategy.lower()
    if s == "tfidf":
        return TfidfTermVectorizer()
    if s == "embedding":
        return EmbeddingVectorizer(**kwargs)
    raise ValueError(f"unknown strategy: {strategy!r} (expected tfidf / embedding)")
