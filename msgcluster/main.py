#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from __future__ import annotations

import os
import argparse
import logging
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .config import EDGE_PREDICATES, STRATEGIES, ClusterConfig
from .data_processing import Message, read_messages
from .graph import build_graph, word_markers
from .utils import configure_logging, write_json


def cluster_once(messages: List[Message], config: ClusterConfig, include_vectors: bool = False) -> Dict[str, Any]:
    """Run the pipeline once and return the graph payload.

    Returns a dict with keys: nodes, edges, degraded, markers.
    """
    graph = build_graph(messages, config=config)
    payload = graph.to_dict(include_vectors=include_vectors)
    payload["degraded"] = graph.degraded
    payload["markers"] = {
        n.id: [{"messageId": mid, "position": pos} for mid, pos in word_markers(n, messages)]
        for n in graph.nodes
    }
    return payload


def run(
    input_path: str,
    output_path: str = "./out/graph.json",
    config: Optional[ClusterConfig] = None,
    include_vectors: bool = False,
) -> Dict[str, Any]:
    cfg = config or ClusterConfig()
    logging.info("Reading messages from %s", input_path)
    if not os.path.exists(input_path):
        raise SystemExit(f"input not found: {input_path}")
    msgs = read_messages(input_path)
    if not msgs:
        logging.warning("No messages read from %s, writing an empty graph", input_path)

    logging.info(
        "Building keyword graph (strategy=%s, k=%d, max_nodes=%d, predicate=%s)",
        cfg.strategy,
        cfg.k,
        cfg.max_nodes,
        cfg.resolved_edge_predicate,
    )
    payload = cluster_once(msgs, cfg, include_vectors=include_vectors)
    if payload["degraded"]:
        logging.warning("Embedding provider unavailable; graph was built from random vectors")

    logging.info("Writing %s", output_path)
    write_json(output_path, payload)
    logging.info(
        "Done. %d messages -> %d nodes, %d edges",
        len(msgs),
        len(payload["nodes"]),
        len(payload["edges"]),
    )
    return payload


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    try:
        env_cfg = ClusterConfig.from_env()
    except ValueError as e:
        raise SystemExit(f"invalid configuration in environment: {e}")
    p = argparse.ArgumentParser(
        description="Build a keyword cluster graph from chat messages",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("--input", default=os.getenv("INPUT", "./chat.jsonl"), help="Input .jsonl file or directory of .jsonl files")
    p.add_argument("--output", default=os.getenv("OUTPUT", "./out/graph.json"), help="Output JSON path")
    p.add_argument("--strategy", default=env_cfg.strategy, choices=list(STRATEGIES), help="Vectorization strategy")
    p.add_argument("--k", type=int, default=env_cfg.k, help="Requested cluster count")
    p.add_argument("--max_nodes", type=int, default=env_cfg.max_nodes, help="Node cap")
    p.add_argument("--similarity_threshold", type=float, default=env_cfg.similarity_threshold, help="Cosine threshold (embedding edges)")
    p.add_argument("--cooccurrence_threshold", type=float, default=env_cfg.cooccurrence_threshold, help="Co-occurrence threshold (tfidf edges)")
    p.add_argument("--max_iter", type=int, default=env_cfg.max_kmeans_iterations, help="k-means iteration cap")
    p.add_argument("--edge_predicate", default=env_cfg.edge_predicate, choices=list(EDGE_PREDICATES), help="Override the strategy's edge predicate")
    p.add_argument("--provider", default=env_cfg.embedding_provider, choices=["local", "siliconflow"], help="Embedding provider")
    p.add_argument("--model", default=env_cfg.embedding_model, help="Embedding model name")
    p.add_argument("--seed", type=int, default=env_cfg.seed, help="Random seed for k-means initialization")
    p.add_argument("--include_vectors", action="store_true", help="Include node vectors in the output")
    p.add_argument("--log_level", default="INFO", help="Log level: DEBUG/INFO/WARN/ERROR")
    return p.parse_args(argv)


def config_from_args(args: argparse.Namespace) -> ClusterConfig:
    return ClusterConfig(
        strategy=args.strategy,
        k=args.k,
        max_nodes=args.max_nodes,
        similarity_threshold=args.similarity_threshold,
        cooccurrence_threshold=args.cooccurrence_threshold,
        max_kmeans_iterations=args.max_iter,
        edge_predicate=args.edge_predicate,
        seed=args.seed,
        embedding_provider=args.provider,
        embedding_model=args.model,
    )


def main(argv: Optional[List[str]] = None) -> None:
    load_dotenv()
    args = parse_args(argv)
    configure_logging(args.log_level)
    try:
        cfg = config_from_args(args)
    except ValueError as e:
        raise SystemExit(f"invalid configuration: {e}")
    run(
        input_path=args.input,
        output_path=args.output,
        config=cfg,
        include_vectors=args.include_vectors,
    )


if __name__ == "__main__":
    main()
