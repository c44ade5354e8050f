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

"""Tests for CompiledWorkflowCache."""

import pytest

from jobhound.config import WorkflowSettings
from jobhound.framework import (
    END,
    CompiledWorkflowCache,
    CompiledWorkflowCacheConfig,
    CompileError,
    ExecutionConfig,
    StateGraph,
    StateSchema,
    TracingHook,
    collaborator_stage,
)


def handler(state):
    return {"x": 1}


def build_graph(schema: StateSchema) -> StateGraph:
    graph = StateGraph(schema, name="cached")
    graph.add_node("A", handler, writes=["x"])
    graph.set_finish_point("A")
    graph.set_entry_point("A")
    return graph


class TestCompiledWorkflowCache:
    """Tests for compile-once reuse."""

    def test_rebuilt_graph_hits(self, schema: StateSchema) -> None:
        cache = CompiledWorkflowCache()

        first = cache.get_or_compile(build_graph(schema))
        second = cache.get_or_compile(build_graph(schema))

        assert first is second
        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["compilations"] == 1
        assert stats["current_size"] == 1
        assert stats["hit_rate"] == 0.5

    def test_structure_change_misses(self, schema: StateSchema) -> None:
        cache = CompiledWorkflowCache()
        first = cache.get_or_compile(build_graph(schema))

        other = build_graph(schema)
        other.add_node("B", handler, writes=["y"])
        other.add_edge("A", "B")

        with pytest.raises(CompileError):
            cache.get_or_compile(other)
        assert cache.get_stats()["current_size"] == 1
        assert cache.get(build_graph(schema)) is first

    def test_config_is_part_of_key(self, schema: StateSchema) -> None:
        cache = CompiledWorkflowCache()
        fast = cache.get_or_compile(build_graph(schema), config=ExecutionConfig(max_steps=5))
        slow = cache.get_or_compile(build_graph(schema), config=ExecutionConfig(max_steps=50))

        assert fast is not slow
        assert fast.config.max_steps == 5
        assert slow.config.max_steps == 50

    def test_hooks_are_part_of_key(self, schema: StateSchema) -> None:
        cache = CompiledWorkflowCache()
        plain = cache.get_or_compile(build_graph(schema))
        traced = cache.get_or_compile(build_graph(schema), hooks=[TracingHook("cached")])
        assert plain is not traced

    def test_collaborator_identity_distinguishes_graphs(
        self, schema: StateSchema, make_agent
    ) -> None:
        cache = CompiledWorkflowCache()

        def graph_for(agent):
            graph = StateGraph(schema)
            graph.add_node("A", collaborator_stage("A", agent, output="x"))
            graph.set_finish_point("A")
            graph.set_entry_point("A")
            return graph

        agent = make_agent(1)
        first = cache.get_or_compile(graph_for(agent))
        assert cache.get_or_compile(graph_for(agent)) is first
        assert cache.get_or_compile(graph_for(make_agent(1))) is not first

    def test_hash_is_stable(self, schema: StateSchema) -> None:
        cache = CompiledWorkflowCache()
        assert cache.compute_graph_hash(build_graph(schema)) == cache.compute_graph_hash(
            build_graph(schema)
        )

    def test_disabled(self, schema: StateSchema) -> None:
        cache = CompiledWorkflowCache(CompiledWorkflowCacheConfig(enabled=False))

        first = cache.get_or_compile(build_graph(schema))
        second = cache.get_or_compile(build_graph(schema))

        assert first is not second
        assert not cache.enabled
        assert cache.put(build_graph(schema), first) is False
        assert cache.get_stats()["compilations"] == 2

    def test_zero_entries_disables(self) -> None:
        cache = CompiledWorkflowCache(CompiledWorkflowCacheConfig(max_entries=0))
        assert not cache.enabled

    def test_lru_eviction(self, schema: StateSchema) -> None:
        cache = CompiledWorkflowCache(CompiledWorkflowCacheConfig(max_entries=1))
        cache.get_or_compile(build_graph(schema), config=ExecutionConfig(max_steps=1))
        cache.get_or_compile(build_graph(schema), config=ExecutionConfig(max_steps=2))
        assert cache.get(build_graph(schema), config=ExecutionConfig(max_steps=1)) is None

    def test_ttl_cache(self, schema: StateSchema) -> None:
        cache = CompiledWorkflowCache(CompiledWorkflowCacheConfig(ttl_seconds=60))
        first = cache.get_or_compile(build_graph(schema))
        assert cache.get(build_graph(schema)) is first

    def test_invalidate(self, schema: StateSchema) -> None:
        cache = CompiledWorkflowCache()
        cache.get_or_compile(build_graph(schema))

        assert cache.invalidate(build_graph(schema)) is True
        assert cache.invalidate(build_graph(schema)) is False
        assert cache.get(build_graph(schema)) is None

    def test_invalidate_all(self, schema: StateSchema) -> None:
        cache = CompiledWorkflowCache()
        cache.get_or_compile(build_graph(schema))
        cache.get_or_compile(build_graph(schema), config=ExecutionConfig(max_steps=3))

        assert cache.invalidate_all() == 2
        assert cache.get_stats()["current_size"] == 0

    @pytest.mark.asyncio
    async def test_cached_workflow_runs(self, schema: StateSchema) -> None:
        cache = CompiledWorkflowCache()
        app = cache.get_or_compile(build_graph(schema))
        final = await app.run({})
        assert final["x"] == 1
        assert final.status == "completed"
        assert END not in app.nodes

    def test_config_from_settings(self) -> None:
        config = CompiledWorkflowCacheConfig.from_settings(WorkflowSettings(graph_cache_size=4))
        assert config.enabled
        assert config.max_entries == 4

        disabled = CompiledWorkflowCacheConfig.from_settings(WorkflowSettings(graph_cache_size=0))
        assert not CompiledWorkflowCache(disabled).enabled
