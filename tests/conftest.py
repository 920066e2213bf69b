"""Shared pytest configuration and fixtures for the test suite."""
from __future__ import annotations

import sys
from pathlib import Path
from typing import List, Sequence

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from msgcluster.data_processing import Message  # noqa: E402
from msgcluster.embeddings import Embedder  # noqa: E402


def pytest_configure(config):
    """Register custom markers for test categorization."""
    config.addinivalue_line("markers", "unit: Fast tests with no I/O")
    config.addinivalue_line("markers", "integration: Tests touching the file system")


def make_messages(texts: Sequence[str], author: str = "u1") -> List[Message]:
    return [Message(id=f"m{i + 1}", text=t, author_id=author) for i, t in enumerate(texts)]


class TableEmbedder(Embedder):
    """Returns fixed vectors per term; unknown terms map to zeros."""

    name = "table"

    def __init__(self, table, dim: int = 2):
        self.table = {k: np.asarray(v, dtype=float) for k, v in table.items()}
        self.dim = dim
        self.calls = 0

    def embed(self, texts, batch_size=64):
        self.calls += 1
        return np.vstack([self.table.get(t, np.zeros(self.dim)) for t in texts])


class BrokenEmbedder(Embedder):
    name = "broken"

    def embed(self, texts, batch_size=64):
        raise RuntimeError("model download failed")


@pytest.fixture
def pet_messages() -> List[Message]:
    return make_messages(["the cat sat", "the dog ran", "cat and dog played"])
