from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, List, Optional, Tuple

from .config import ClusterConfig
from .data_processing import Message
from .graph import ClusterGraph, build_graph


GraphBuilder = Callable[..., ClusterGraph]


class GraphSession:
    """Current message snapshot plus the newest keyword graph computed from it.

    Each change bumps the snapshot version. Graphs are computed outside the
    lock and published only if their version is newer than the one already
    published, so a slow stale computation never overwrites a newer result.
    """

    def __init__(
        self,
        config: Optional[ClusterConfig] = None,
        builder: GraphBuilder = build_graph,
        auto_recompute: bool = True,
    ) -> None:
        self.config = config or ClusterConfig()
        self._builder = builder
        self._auto = auto_recompute
        self._lock = threading.RLock()
        self._messages: List[Message] = []
        self._version = 0
        self._published_version = -1
        self._graph = ClusterGraph()

    # ---- snapshot ----
    @property
    def messages(self) -> Tuple[Message, ...]:
        with self._lock:
            return tuple(self._messages)

    @property
    def version(self) -> int:
        return self._version

    @property
    def published_version(self) -> int:
        return self._published_version

    @property
    def graph(self) -> ClusterGraph:
        return self._graph

    def snapshot(self) -> Tuple[int, Tuple[Message, ...]]:
        with self._lock:
            return self._version, tuple(self._messages)

    def _after_change(self) -> ClusterGraph:
        if self._auto:
            return self.recompute()
        return self._graph

    # ---- mutations ----
    def add_message(self, message: Message) -> ClusterGraph:
        with self._lock:
            self._messages.append(message)
            self._version += 1
        return self._after_change()

    def remove_author_messages(self, author_id: str) -> ClusterGraph:
        with self._lock:
            self._messages = [m for m in self._messages if m.author_id != author_id]
            self._version += 1
        return self._after_change()

    def replace_messages(self, messages: Iterable[Message]) -> ClusterGraph:
        with self._lock:
            self._messages = list(messages)
            self._version += 1
        return self._after_change()

    def clear(self) -> ClusterGraph:
        return self.replace_messages([])

    # ---- computation ----
    def publish(self, version: int, graph: ClusterGraph) -> bool:
        with self._lock:
            if version <= self._published_version:
                logging.debug(
                    "discarding stale graph (version %d, published %d)", version, self._published_version
                )
                return False
            self._graph = graph
            self._published_version = version
            return True

    def recompute(self) -> ClusterGraph:
        version, msgs = self.snapshot()
        graph = self._builder(list(msgs), config=self.config)
        self.publish(version, graph)
        return self._graph
