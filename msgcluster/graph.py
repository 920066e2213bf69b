from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity as pairwise_cosine

from .clustering import RandomSource, as_generator, cluster_members, kmeans
from .config import ClusterConfig
from .data_processing import Message, tokenize_messages
from .embeddings import default_embedder
from .vectorize import Vectorizer, make_vectorizer


# ------------------------------
# Graph types
# ------------------------------
@dataclass
class ClusterNode:
    id: str
    label: str
    cluster_id: int
    message_ids: List[str]
    frequency: int
    vector: np.ndarray = field(repr=False)
    first_message_id: str = ""

    def to_dict(self, include_vector: bool = False) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "label": self.label,
            "clusterId": int(self.cluster_id),
            "messageIds": list(self.message_ids),
            "frequency": int(self.frequency),
            "firstMessageId": self.first_message_id,
        }
        if include_vector:
            out["vector"] = [float(x) for x in np.asarray(self.vector).ravel()]
        return out


@dataclass
class ClusterEdge:
    source: str
    target: str
    weight: float

    def to_dict(self) -> Dict[str, Any]:
        return {"source": self.source, "target": self.target, "weight": float(self.weight)}


@dataclass
class ClusterGraph:
    nodes: List[ClusterNode] = field(default_factory=list)
    edges: List[ClusterEdge] = field(default_factory=list)
    degraded: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.nodes

    def node(self, label: str) -> Optional[ClusterNode]:
        for n in self.nodes:
            if n.label == label:
                return n
        return None

    def to_dict(self, include_vectors: bool = False) -> Dict[str, Any]:
        return {
            "nodes": [n.to_dict(include_vector=include_vectors) for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }


# ------------------------------
# Edge construction
# ------------------------------
def cooccurrence(ids_a: Sequence[str], ids_b: Sequence[str]) -> float:
    """Shared messages over the larger of the two message sets."""
    denom = max(len(ids_a), len(ids_b))
    if denom == 0:
        return 0.0
    shared = len(set(ids_a).intersection(ids_b))
    return shared / denom


def build_edges(nodes: List[ClusterNode], config: ClusterConfig) -> List[ClusterEdge]:
    if len(nodes) < 2:
        return []
    predicate = config.resolved_edge_predicate
    sims: Optional[np.ndarray] = None
    if predicate == "cluster_and_similarity":
        sims = pairwise_cosine(np.vstack([np.asarray(n.vector, dtype=float) for n in nodes]))

    edges: List[ClusterEdge] = []
    for i in range(len(nodes)):
        for j in range(i + 1, len(nodes)):
            a, b = nodes[i], nodes[j]
            same_cluster = a.cluster_id == b.cluster_id
            if predicate == "cluster_or_cooccurrence":
                co = cooccurrence(a.message_ids, b.message_ids)
                if same_cluster or co > config.cooccurrence_threshold:
                    edges.append(ClusterEdge(a.id, b.id, max(co, config.min_edge_weight)))
            else:
                if not same_cluster:
                    continue
                sim = float(sims[i, j])
                if sim > config.similarity_threshold and sim > 0.0:
                    edges.append(ClusterEdge(a.id, b.id, min(sim, 1.0)))
    return edges


def _cap_nodes(nodes: List[ClusterNode], max_nodes: int) -> List[ClusterNode]:
    if len(nodes) <= max_nodes:
        return nodes
    # sorted() is stable, so equal frequencies keep discovery order
    return sorted(nodes, key=lambda n: -n.frequency)[:max_nodes]


# ------------------------------
# Pipeline
# ------------------------------
def build_graph(
    messages: Sequence[Message],
    k: Optional[int] = None,
    config: Optional[ClusterConfig] = None,
    vectorizer: Optional[Vectorizer] = None,
    rng: RandomSource = None,
) -> ClusterGraph:
    """Tokenize, vectorize, cluster and link the keywords of `messages`.

    Every call recomputes from scratch; the result holds at most
    `config.max_nodes` nodes and edges only between retained nodes.
    """
    cfg = config or ClusterConfig()
    k_eff = cfg.k if k is None else int(k)

    term_to_ids, documents = tokenize_messages(messages)
    if not term_to_ids:
        return ClusterGraph()

    terms = list(term_to_ids.keys())

    gen = as_generator(rng if rng is not None else cfg.seed)
    if vectorizer is None:
        if cfg.strategy == "embedding":
            vectorizer = make_vectorizer(
                cfg.strategy,
                embedder=default_embedder(cfg.embedding_provider, cfg.embedding_model),
            )
        else:
            vectorizer = make_vectorizer(cfg.strategy)
    result = vectorizer.vectorize(terms, documents, rng=gen)

    assignments, _centroids = kmeans(
        result.vectors,
        k_eff,
        max_iterations=cfg.max_kmeans_iterations,
        tol=result.convergence_tol,
        rng=gen,
    )
    if not assignments:
        return ClusterGraph(degraded=result.degraded)

    nodes: List[ClusterNode] = []
    for idx, term in enumerate(terms):
        ids = term_to_ids[term]
        nodes.append(
            ClusterNode(
                id=f"term-{idx}",
                label=term,
                cluster_id=assignments[idx],
                message_ids=list(ids),
                frequency=len(ids),
                vector=result.vectors[idx],
                first_message_id=ids[0],
            )
        )

    kept = _cap_nodes(nodes, cfg.max_nodes)
    for new_idx, n in enumerate(kept):
        n.id = f"term-{new_idx}"

    edges = build_edges(kept, cfg)
    logging.debug(
        "keyword graph: %d terms -> %d nodes, %d edges, cluster sizes %s (strategy=%s, degraded=%s)",
        len(terms),
        len(kept),
        len(edges),
        {c: len(m) for c, m in sorted(cluster_members(assignments).items())},
        vectorizer.name,
        result.degraded,
    )
    return ClusterGraph(nodes=kept, edges=edges, degraded=result.degraded)


def word_markers(node: ClusterNode, messages: Sequence[Message]) -> List[Tuple[str, float]]:
    """Relative positions (0-100) of the node's messages within `messages`."""
    index = {m.id: i for i, m in enumerate(messages)}
    span = max(len(messages) - 1, 1)
    out: List[Tuple[str, float]] = []
    for mid in node.message_ids:
        i = index.get(mid)
        if i is None:
            continue
        out.append((mid, float(min(100.0, max(0.0, i / span * 100.0)))))
    return out
