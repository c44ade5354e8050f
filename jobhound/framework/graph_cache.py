# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Compiled workflow cache.

Compiling validates the whole graph, so applications compile once and reuse
the result for the life of the process. The cache is keyed by a SHA-256 hash
of the graph structure (nodes and their handlers, edges, entry point and
channel declarations).

Handlers and conditions are identified by object identity as well as by
name, so two graphs wired to different collaborator instances never share a
compiled workflow. Generated callables (closures rebuilt on every graph build)
expose the object that determines their behaviour as ``cache_identity``.

Example:
    cache = CompiledWorkflowCache()
    app = cache.get_or_compile(graph)

    stats = cache.get_stats()
    print(f"Hit rate: {stats['hit_rate']:.2%}")
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence, Union

from cachetools import LRUCache, TTLCache

if TYPE_CHECKING:
    from jobhound.config.settings import WorkflowSettings
    from jobhound.framework.executor import ExecutionConfig, ExecutionHook
    from jobhound.framework.graph import CompiledWorkflow, StateGraph

logger = logging.getLogger(__name__)


@dataclass
class CompiledWorkflowCacheConfig:
    """Configuration for compiled workflow caching.

    Attributes:
        enabled: Whether caching is enabled
        max_entries: Maximum number of compiled workflows kept
        ttl_seconds: Entry lifetime in seconds (None = process lifetime)
    """

    enabled: bool = True
    max_entries: int = 16
    ttl_seconds: Optional[int] = None

    @classmethod
    def from_settings(cls, settings: "WorkflowSettings") -> "CompiledWorkflowCacheConfig":
        return cls(
            enabled=settings.graph_cache_size > 0,
            max_entries=settings.graph_cache_size,
        )


@dataclass
class WorkflowCacheEntry:
    """A cached compiled workflow."""

    graph_hash: str
    compiled: "CompiledWorkflow"
    created_at: float
    hit_count: int = 0


def _callable_id(func: Any) -> Dict[str, Any]:
    return {
        "name": getattr(func, "__qualname__", getattr(func, "__name__", repr(func))),
        "module": getattr(func, "__module__", "unknown"),
        "id": id(getattr(func, "cache_identity", func)),
    }


class CompiledWorkflowCache:
    """Thread-safe cache of compiled workflows keyed by graph structure."""

    def __init__(self, config: Optional[CompiledWorkflowCacheConfig] = None) -> None:
        self._config = config or CompiledWorkflowCacheConfig()
        self._lock = threading.RLock()
        self._stats: Dict[str, int] = {"hits": 0, "misses": 0, "compilations": 0}

        self._cache: Optional[Union[LRUCache, TTLCache]]
        if not self._config.enabled or self._config.max_entries <= 0:
            self._cache = None
            logger.debug("Compiled workflow cache disabled")
        elif self._config.ttl_seconds is None:
            self._cache = LRUCache(maxsize=self._config.max_entries)
        else:
            self._cache = TTLCache(
                maxsize=self._config.max_entries,
                ttl=self._config.ttl_seconds,
            )

    @property
    def enabled(self) -> bool:
        return self._cache is not None

    def compute_graph_hash(
        self,
        graph: "StateGraph",
        config: Optional["ExecutionConfig"] = None,
        hooks: Sequence["ExecutionHook"] = (),
    ) -> str:
        """Compute SHA-256 hash of graph structure plus compile options."""
        hash_data: Dict[str, Any] = {
            "name": graph.name,
            "entry_point": graph.entry_point,
            "channels": graph.schema.describe(),
            "nodes": {},
            "edges": {},
            "config": repr(config),
            "hooks": [type(hook).__qualname__ for hook in hooks],
        }

        for node_id, stage in graph.nodes.items():
            hash_data["nodes"][node_id] = {
                "handler": _callable_id(stage.handler),
                "reads": list(stage.reads),
                "writes": list(stage.writes),
                "timeout": stage.timeout,
            }

        for source, edges in graph.edges.items():
            hash_data["edges"][source] = []
            for edge in edges:
                edge_data = edge.describe()
                if edge.condition is not None:
                    edge_data["condition"] = _callable_id(edge.condition)
                hash_data["edges"][source].append(edge_data)

        hash_str = json.dumps(hash_data, sort_keys=True, default=str)
        return hashlib.sha256(hash_str.encode()).hexdigest()

    def get(
        self,
        graph: "StateGraph",
        config: Optional["ExecutionConfig"] = None,
        hooks: Sequence["ExecutionHook"] = (),
    ) -> Optional["CompiledWorkflow"]:
        """Return the cached compiled workflow for ``graph``, if any."""
        if self._cache is None:
            return None

        graph_hash = self.compute_graph_hash(graph, config, hooks)
        with self._lock:
            entry: Optional[WorkflowCacheEntry] = self._cache.get(graph_hash)
            if entry is not None:
                entry.hit_count += 1
                self._stats["hits"] += 1
                logger.debug(f"Workflow cache hit: hash={graph_hash[:16]}...")
                return entry.compiled

            self._stats["misses"] += 1
            logger.debug(f"Workflow cache miss: hash={graph_hash[:16]}...")
            return None

    def put(
        self,
        graph: "StateGraph",
        compiled: "CompiledWorkflow",
        config: Optional["ExecutionConfig"] = None,
        hooks: Sequence["ExecutionHook"] = (),
    ) -> bool:
        """Cache ``compiled`` under the hash of ``graph``."""
        if self._cache is None:
            return False

        graph_hash = self.compute_graph_hash(graph, config, hooks)
        with self._lock:
            self._cache[graph_hash] = WorkflowCacheEntry(
                graph_hash=graph_hash,
                compiled=compiled,
                created_at=time.time(),
            )
        logger.debug(f"Workflow cached: hash={graph_hash[:16]}...")
        return True

    def get_or_compile(
        self,
        graph: "StateGraph",
        config: Optional["ExecutionConfig"] = None,
        hooks: Sequence["ExecutionHook"] = (),
    ) -> "CompiledWorkflow":
        """Return the cached compiled workflow or compile and cache it.

        Raises:
            CompileError: If the graph is invalid (nothing is cached)
        """
        cached = self.get(graph, config, hooks)
        if cached is not None:
            return cached

        with self._lock:
            self._stats["compilations"] += 1

        compiled = graph.compile(config=config, hooks=hooks)
        self.put(graph, compiled, config, hooks)
        return compiled

    def invalidate(
        self,
        graph: "StateGraph",
        config: Optional["ExecutionConfig"] = None,
        hooks: Sequence["ExecutionHook"] = (),
    ) -> bool:
        """Drop the entry for ``graph``. Returns True if one was removed."""
        if self._cache is None:
            return False

        graph_hash = self.compute_graph_hash(graph, config, hooks)
        with self._lock:
            if graph_hash in self._cache:
                del self._cache[graph_hash]
                return True
            return False

    def invalidate_all(self) -> int:
        """Clear the cache. Returns the number of entries removed."""
        if self._cache is None:
            return 0

        with self._lock:
            count = len(self._cache)
            self._cache.clear()
        logger.info(f"Cleared {count} compiled workflow cache entries")
        return count

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics (hits, misses, compilations, hit_rate, size)."""
        with self._lock:
            stats: Dict[str, Any] = dict(self._stats)
            total = stats["hits"] + stats["misses"]
            stats["hit_rate"] = stats["hits"] / total if total > 0 else 0.0
            stats["current_size"] = len(self._cache) if self._cache is not None else 0
            stats["max_size"] = self._config.max_entries if self._cache is not None else 0
            stats["enabled"] = self.enabled
            return stats


__all__ = [
    "CompiledWorkflowCacheConfig",
    "CompiledWorkflowCache",
]
