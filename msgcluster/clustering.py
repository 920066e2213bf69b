from __future__ import annotations

import logging
from typing import Dict, Hashable, List, Optional, Sequence, Tuple, Union

import numpy as np

from .vectorize import DENSE_TOL, SPARSE_TOL, FeatureVector, stack_vectors


RandomSource = Union[None, int, np.random.Generator]


def as_generator(rng: RandomSource) -> np.random.Generator:
    if isinstance(rng, np.random.Generator):
        return rng
    return np.random.default_rng(rng)


def _nearest_centroid(X: np.ndarray, C: np.ndarray) -> np.ndarray:
    # argmin returns the first index on ties, i.e. the lowest centroid id
    dists = np.sqrt(((X[:, None, :] - C[None, :, :]) ** 2).sum(axis=2))
    return np.argmin(dists, axis=1)


def _to_mapping(row: np.ndarray, keys: List[Hashable]) -> Dict[Hashable, float]:
    return {k: float(v) for k, v in zip(keys, row) if v != 0.0}


def kmeans(
    vectors: Union[np.ndarray, Sequence[FeatureVector]],
    k: int,
    max_iterations: int = 100,
    tol: Optional[float] = None,
    rng: RandomSource = None,
) -> Tuple[List[int], List[FeatureVector]]:
    """Plain k-means with random initial centroids drawn from the data.

    Args:
        vectors: dense matrix / arrays, or keyed mappings (absent keys are 0)
        k: requested cluster count, clamped to the number of vectors
        max_iterations: upper bound on assign/update rounds
        tol: stop once every centroid moved less than this; defaults to
            1e-6 for dense input and 1e-3 for keyed input
        rng: seed or numpy Generator for the initial centroid draw

    Returns: (assignments in input order, centroids in the input's shape)
    """
    if isinstance(vectors, np.ndarray):
        X = np.asarray(vectors, dtype=float)
        if X.ndim == 1:
            X = X.reshape(-1, 1)
        keys: Optional[List[Hashable]] = None
    else:
        X, keys = stack_vectors(list(vectors))
    n = X.shape[0]
    if n == 0:
        return [], []

    k = max(1, min(int(k), n))
    if tol is None:
        tol = SPARSE_TOL if keys is not None else DENSE_TOL

    gen = as_generator(rng)
    init = gen.choice(n, size=k, replace=False)
    C = X[init].copy()
    labels = np.zeros(n, dtype=int)

    for it in range(max(1, int(max_iterations))):
        labels = _nearest_centroid(X, C)

        new_C = C.copy()
        for j in range(k):
            members = labels == j
            if members.any():
                new_C[j] = X[members].mean(axis=0)
            # empty cluster keeps its previous centroid

        shift = np.sqrt(((new_C - C) ** 2).sum(axis=1))
        C = new_C
        if np.all(shift < tol):
            logging.debug("kmeans converged after %d iterations (k=%d, n=%d)", it + 1, k, n)
            break

    assignments = [int(c) for c in labels]
    if keys is not None:
        centroids: List[FeatureVector] = [_to_mapping(row, keys) for row in C]
    else:
        centroids = [row for row in C]
    return assignments, centroids


def cluster_members(assignments: Sequence[int]) -> Dict[int, List[int]]:
    """Group item indices by cluster id."""
    out: Dict[int, List[int]] = {}
    for i, c in enumerate(assignments):
        out.setdefault(int(c), []).append(i)
    return out
