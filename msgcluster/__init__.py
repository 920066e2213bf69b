"""
Message keyword-graph clustering package.

Modules:
- data_processing: Message dataclass, JSONL I/O, tokenizer
- embeddings: Embedding providers (local ST, SiliconFlow) and lazy handle
- vectorize: Embedding / TF-IDF term vectorizers and vector metrics
- clustering: k-means over feature vectors
- graph: Keyword graph construction
- session: Generation-guarded graph recomputation
- config: Pipeline options
- utils: Small shared utilities
- main: Command-line entry point (JSONL in, graph JSON out)
"""

__all__ = [
    "data_processing",
    "embeddings",
    "vectorize",
    "clustering",
    "graph",
    "session",
    "config",
    "utils",
    "main",
]
