from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from .utils import getenv_float, getenv_int, getenv_optional_int


STRATEGIES = ("tfidf", "embedding")
EDGE_PREDICATES = ("cluster_or_cooccurrence", "cluster_and_similarity")

_DEFAULT_PREDICATE = {
    "tfidf": "cluster_or_cooccurrence",
    "embedding": "cluster_and_similarity",
}


@dataclass(frozen=True)
class ClusterConfig:
    """Options for one graph computation.

    `edge_predicate` defaults to the predicate paired with the strategy:
    same-cluster OR co-occurrence for tfidf, same-cluster AND cosine
    similarity for embedding.
    """

    strategy: str = "tfidf"
    k: int = 3
    max_nodes: int = 15
    similarity_threshold: float = 0.5
    cooccurrence_threshold: float = 0.2
    min_edge_weight: float = 0.3
    max_kmeans_iterations: int = 100
    edge_predicate: Optional[str] = None
    seed: Optional[int] = None
    embedding_provider: str = "local"
    embedding_model: Optional[str] = None

    def __post_init__(self) -> None:
        if self.strategy not in STRATEGIES:
            raise ValueError(f"strategy must be one of {STRATEGIES}, got {self.strategy!r}")
        if self.edge_predicate is not None and self.edge_predicate not in EDGE_PREDICATES:
            raise ValueError(f"edge_predicate must be one of {EDGE_PREDICATES}, got {self.edge_predicate!r}")
        if self.max_nodes < 1:
            raise ValueError("max_nodes must be >= 1")
        if self.max_kmeans_iterations < 1:
            raise ValueError("max_kmeans_iterations must be >= 1")
        if not 0.0 < self.min_edge_weight <= 1.0:
            raise ValueError("min_edge_weight must be in (0, 1]")

    @property
    def resolved_edge_predicate(self) -> str:
        return self.edge_predicate or _DEFAULT_PREDICATE[self.strategy]

    @classmethod
    def from_env(cls) -> "ClusterConfig":
        return cls(
            strategy=os.getenv("STRATEGY", "tfidf").strip().lower(),
            k=getenv_int("K", 3),
            max_nodes=getenv_int("MAX_NODES", 15),
            similarity_threshold=getenv_float("SIMILARITY_THR", 0.5),
            cooccurrence_threshold=getenv_float("COOCCURRENCE_THR", 0.2),
            max_kmeans_iterations=getenv_int("KMEANS_MAX_ITER", 100),
            edge_predicate=os.getenv("EDGE_PREDICATE") or None,
            seed=getenv_optional_int("SEED"),
            embedding_provider=os.getenv("EMBED_PROVIDER", "local"),
            embedding_model=os.getenv("EMBED_MODEL") or None,
        )
