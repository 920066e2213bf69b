import numpy as np
import pytest

from msgcluster.config import ClusterConfig
from msgcluster.embeddings import LazyEmbedder
from msgcluster.graph import ClusterGraph, build_graph, cooccurrence, word_markers
from msgcluster.vectorize import EmbeddingVectorizer

from conftest import BrokenEmbedder, TableEmbedder, make_messages


CHATTER = [
    "deploy pipeline failed on staging",
    "staging deploy needs a rollback",
    "rollback finished, pipeline green again",
    "lunch order: pizza or sushi?",
    "sushi again? pizza please",
    "pizza arrives at noon",
    "who reviews the pipeline change",
    "review the staging config before lunch",
]


def _edge_between(graph, a, b):
    ids = {graph.node(a).id, graph.node(b).id}
    for e in graph.edges:
        if {e.source, e.target} == ids:
            return e
    return None


def _assert_invariants(graph, messages, max_nodes=15):
    input_ids = {m.id for m in messages}
    node_ids = [n.id for n in graph.nodes]
    assert len(graph.nodes) <= max_nodes
    assert len(set(node_ids)) == len(node_ids)
    for n in graph.nodes:
        assert n.message_ids
        assert n.frequency == len(n.message_ids)
        assert len(set(n.message_ids)) == len(n.message_ids)
        assert set(n.message_ids) <= input_ids
        assert n.first_message_id == n.message_ids[0]
    pairs = set()
    for e in graph.edges:
        assert 0.0 < e.weight <= 1.0
        assert e.source in node_ids and e.target in node_ids
        pair = frozenset((e.source, e.target))
        assert len(pair) == 2 and pair not in pairs
        pairs.add(pair)


def test_pet_messages_end_to_end(pet_messages):
    graph = build_graph(pet_messages, k=2, config=ClusterConfig(strategy="tfidf"), rng=0)
    assert {n.label for n in graph.nodes} == {"cat", "sat", "dog", "ran", "played"}
    assert graph.node("cat").message_ids == ["m1", "m3"]
    assert graph.node("dog").message_ids == ["m2", "m3"]
    assert graph.node("sat").message_ids == ["m1"]
    assert graph.node("ran").message_ids == ["m2"]
    assert graph.node("played").message_ids == ["m3"]

    edge = _edge_between(graph, "cat", "dog")
    assert edge is not None
    assert edge.weight == pytest.approx(0.5)
    assert all(0 <= n.cluster_id < 2 for n in graph.nodes)
    assert not graph.degraded
    _assert_invariants(graph, pet_messages)


def test_empty_inputs_give_empty_graph():
    assert build_graph([]).to_dict() == {"nodes": [], "edges": []}
    graph = build_graph(make_messages(["a an it", "the of", ""]))
    assert graph.is_empty
    assert graph.edges == []


def test_invariants_hold_on_mixed_chatter():
    msgs = make_messages(CHATTER)
    for seed in range(5):
        graph = build_graph(msgs, config=ClusterConfig(seed=seed))
        assert graph.nodes
        _assert_invariants(graph, msgs)


def test_node_cap_keeps_most_frequent_in_discovery_order():
    texts = [f"common word{i:02d}" for i in range(20)]
    msgs = make_messages(texts)
    graph = build_graph(msgs, config=ClusterConfig(max_nodes=15, seed=1))
    labels = [n.label for n in graph.nodes]
    assert len(labels) == 15
    assert labels[0] == "common"
    assert labels[1:] == [f"word{i:02d}" for i in range(14)]
    assert [n.id for n in graph.nodes] == [f"term-{i}" for i in range(15)]
    assert graph.node("common").frequency == 20
    _assert_invariants(graph, msgs)


def test_tfidf_mapping_is_stable_across_runs():
    msgs = make_messages(CHATTER)
    a = build_graph(msgs)
    b = build_graph(msgs)
    assert {n.label: n.message_ids for n in a.nodes} == {n.label: n.message_ids for n in b.nodes}
    assert {n.label: n.frequency for n in a.nodes} == {n.label: n.frequency for n in b.nodes}


def test_cooccurrence_normalized_by_larger_set():
    assert cooccurrence(["m1", "m3"], ["m2", "m3"]) == 0.5
    assert cooccurrence(["m1"], ["m1", "m2", "m3", "m4"]) == 0.25
    assert cooccurrence([], []) == 0.0


def test_embedding_path_links_similar_terms_in_same_cluster():
    table = {
        "cat": [1.0, 0.0],
        "dog": [1.0, 0.0],
        "car": [0.0, 1.0],
        "bus": [0.0, 1.0],
    }
    msgs = make_messages(["cat dog", "car bus"])
    cfg = ClusterConfig(strategy="embedding")
    graph = build_graph(msgs, k=2, config=cfg, vectorizer=EmbeddingVectorizer(embedder=TableEmbedder(table)), rng=4)

    assert graph.node("cat").cluster_id == graph.node("dog").cluster_id
    assert graph.node("car").cluster_id == graph.node("bus").cluster_id
    assert graph.node("cat").cluster_id != graph.node("car").cluster_id
    assert len(graph.edges) == 2
    assert _edge_between(graph, "cat", "dog").weight == pytest.approx(1.0)
    assert _edge_between(graph, "car", "bus").weight == pytest.approx(1.0)
    assert _edge_between(graph, "cat", "car") is None
    _assert_invariants(graph, msgs)


def test_embedding_path_requires_similarity_above_threshold():
    table = {"cat": [1.0, 0.0], "dog": [0.4, 1.0]}
    msgs = make_messages(["cat dog"])
    vec = EmbeddingVectorizer(embedder=TableEmbedder(table))
    graph = build_graph(msgs, k=1, config=ClusterConfig(strategy="embedding"), vectorizer=vec)
    # same cluster, cosine ~0.37
    assert graph.edges == []


def test_edge_predicate_can_be_overridden():
    msgs = make_messages(["the cat sat", "the dog ran", "cat and dog played"])
    cfg = ClusterConfig(strategy="tfidf", edge_predicate="cluster_and_similarity", similarity_threshold=0.99)
    graph = build_graph(msgs, k=1, config=cfg, rng=0)
    # a single cluster, but no pair of tf-idf rows is that similar
    assert graph.edges == []
    _assert_invariants(graph, msgs)


def test_degraded_embedding_still_builds_graph(pet_messages, caplog):
    vec = EmbeddingVectorizer(embedder=BrokenEmbedder())
    graph = build_graph(pet_messages, config=ClusterConfig(strategy="embedding", seed=3), vectorizer=vec)
    assert graph.degraded
    assert len(graph.nodes) == 5
    assert graph.node("cat").vector.shape == (384,)
    _assert_invariants(graph, pet_messages)


def test_to_dict_uses_documented_shape(pet_messages):
    graph = build_graph(pet_messages, config=ClusterConfig(seed=0))
    data = graph.to_dict()
    assert set(data) == {"nodes", "edges"}
    assert set(data["nodes"][0]) == {"id", "label", "clusterId", "messageIds", "frequency", "firstMessageId"}
    if data["edges"]:
        assert set(data["edges"][0]) == {"source", "target", "weight"}
    with_vec = graph.to_dict(include_vectors=True)
    assert len(with_vec["nodes"][0]["vector"]) == len(pet_messages)


def test_word_markers_positions(pet_messages):
    graph = build_graph(pet_messages, config=ClusterConfig(seed=0))
    cat = graph.node("cat")
    assert word_markers(cat, pet_messages) == [("m1", 0.0), ("m3", 100.0)]
    assert word_markers(cat, pet_messages[:1]) == [("m1", 0.0)]
    assert word_markers(cat, []) == []


def test_graph_lookup_helpers():
    g = ClusterGraph()
    assert g.is_empty
    assert g.node("missing") is None


def test_graph_recovers_once_lazy_provider_loads(pet_messages):
    attempts = []

    def factory():
        attempts.append(1)
        if len(attempts) == 1:
            raise OSError("model download interrupted")
        return TableEmbedder({"cat": [1.0, 0.0], "dog": [0.0, 1.0]})

    vec = EmbeddingVectorizer(embedder=LazyEmbedder(factory))
    cfg = ClusterConfig(strategy="embedding", seed=3)

    first = build_graph(pet_messages, config=cfg, vectorizer=vec)
    assert first.degraded
    assert first.node("cat").vector.shape == (384,)

    second = build_graph(pet_messages, config=cfg, vectorizer=vec)
    assert not second.degraded
    assert second.node("cat").vector.tolist() == [1.0, 0.0]
    assert len(attempts) == 2
    _assert_invariants(second, pet_messages)
