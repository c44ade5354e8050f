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

"""StateGraph - graph definition and compiler for stage workflows.

A workflow is a set of stages (nodes) joined by edges over a shared state
record. ``StateGraph`` collects the wiring; ``compile()`` validates it and
returns an immutable ``CompiledWorkflow`` that can be run any number of times,
concurrently, with a fresh state per run.

Wiring mistakes are not raised while the graph is being built. They are
collected and reported together by ``compile()`` so that a graph assembled
from independently written stage modules is diagnosed in one pass.

Example:
    from jobhound.framework import END, StateGraph, StateSchema

    schema = StateSchema.build(overwrite=["jobs", "scores"])
    graph = StateGraph(schema)

    graph.add_node("search", search_jobs, writes=["jobs"])
    graph.add_node("score", score_jobs, reads=["jobs"], writes=["scores"])

    graph.add_conditional_edge(
        "search",
        lambda s: "stop" if s.errors else "continue",
        {"stop": END, "continue": "score"},
    )
    graph.add_edge("score", END)
    graph.set_entry_point("search")

    app = graph.compile()
    final_state = await app.run({"user_id": "u-1", "command": "find-jobs"})
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Iterable,
    Mapping,
    Optional,
    Sequence,
    Union,
)

from jobhound.framework.channels import StateSchema
from jobhound.framework.errors import CompileError, RoutingError
from jobhound.framework.stage import Stage, StageHandler

if TYPE_CHECKING:
    from jobhound.framework.executor import ExecutionConfig, ExecutionHook, ExecutionResult
    from jobhound.framework.state import StateRecord

logger = logging.getLogger(__name__)

# Terminal sink. Reserved: no node may use this name.
END = "end"

ConditionFunction = Callable[[Any], Any]


class EdgeType(Enum):
    """Types of edges in the graph."""

    STATIC = "static"
    CONDITIONAL = "conditional"


@dataclass(frozen=True)
class Edge:
    """Represents an edge leaving a node.

    Attributes:
        source: Source node ID
        target: Target node ID (static edges)
        edge_type: Static or conditional
        condition: Predicate over the post-merge state returning a branch label
        branches: Branch label -> target node ID (conditional edges)
    """

    source: str
    target: Optional[str] = None
    edge_type: EdgeType = EdgeType.STATIC
    condition: Optional[ConditionFunction] = None
    branches: Mapping[str, str] = field(default_factory=dict)

    @property
    def targets(self) -> tuple[str, ...]:
        if self.edge_type is EdgeType.STATIC:
            return (self.target,) if self.target is not None else ()
        return tuple(dict.fromkeys(self.branches.values()))

    def resolve(self, state: Any) -> str:
        """Pick the successor for ``state``.

        Raises:
            RoutingError: If the predicate fails or returns an unknown label
        """
        if self.edge_type is EdgeType.STATIC:
            if self.target is None:
                raise RoutingError(f"Static edge from '{self.source}' has no target", node=self.source)
            return self.target

        if self.condition is None:
            raise RoutingError(f"Conditional edge from '{self.source}' has no condition", node=self.source)

        try:
            label = self.condition(state)
        except Exception as e:
            raise RoutingError(
                f"Condition for '{self.source}' raised {type(e).__name__}: {e}",
                node=self.source,
                cause=e,
            ) from e

        try:
            return self.branches[label]
        except (KeyError, TypeError):
            raise RoutingError(
                f"Condition for '{self.source}' returned {label!r}, "
                f"expected one of {sorted(self.branches)}",
                node=self.source,
                branch=label,
            ) from None

    def describe(self) -> dict[str, Any]:
        data: dict[str, Any] = {"source": self.source, "type": self.edge_type.value}
        if self.edge_type is EdgeType.STATIC:
            data["target"] = self.target
        else:
            data["branches"] = dict(self.branches)
            data["condition"] = getattr(self.condition, "__name__", repr(self.condition))
        return data


class CompiledWorkflow:
    """Validated, immutable workflow ready for execution.

    Holds no per-run state, so one instance can serve many concurrent runs.
    """

    def __init__(
        self,
        nodes: Mapping[str, Stage],
        edges: Mapping[str, Edge],
        entry_point: str,
        schema: StateSchema,
        config: Optional["ExecutionConfig"] = None,
        name: str = "workflow",
        hooks: Sequence["ExecutionHook"] = (),
    ):
        self._nodes: Mapping[str, Stage] = MappingProxyType(dict(nodes))
        self._edges: Mapping[str, Edge] = MappingProxyType(dict(edges))
        self._entry_point = entry_point
        self._schema = schema
        self._config = config
        self._name = name
        self._hooks = tuple(hooks)
        self._acyclic = self._check_acyclic()

    @property
    def name(self) -> str:
        return self._name

    @property
    def nodes(self) -> Mapping[str, Stage]:
        return self._nodes

    @property
    def edges(self) -> Mapping[str, Edge]:
        return self._edges

    @property
    def entry_point(self) -> str:
        return self._entry_point

    @property
    def schema(self) -> StateSchema:
        return self._schema

    @property
    def config(self) -> Optional["ExecutionConfig"]:
        return self._config

    @property
    def is_acyclic(self) -> bool:
        return self._acyclic

    def successors(self, node_id: str) -> tuple[str, ...]:
        edge = self._edges.get(node_id)
        return edge.targets if edge is not None else ()

    def next_node(self, node_id: str, state: Any) -> str:
        """Resolve the node that follows ``node_id`` for the given state.

        Raises:
            RoutingError: If no edge resolves
        """
        edge = self._edges.get(node_id)
        if edge is None:
            raise RoutingError(f"Node '{node_id}' has no outgoing edge", node=node_id)
        target = edge.resolve(state)
        if target != END and target not in self._nodes:
            raise RoutingError(f"Edge from '{node_id}' leads to unknown node '{target}'", node=node_id)
        return target

    def _check_acyclic(self) -> bool:
        visiting: set[str] = set()
        done: set[str] = set()

        def visit(node_id: str) -> bool:
            if node_id == END or node_id in done:
                return True
            if node_id in visiting:
                return False
            visiting.add(node_id)
            for target in self.successors(node_id):
                if not visit(target):
                    return False
            visiting.discard(node_id)
            done.add(node_id)
            return True

        return all(visit(node_id) for node_id in self._nodes)

    async def invoke(
        self,
        initial_state: Mapping[str, Any],
        *,
        config: Optional["ExecutionConfig"] = None,
        hooks: Sequence["ExecutionHook"] = (),
    ) -> "ExecutionResult":
        """Execute the workflow and return the result with its trace."""
        from jobhound.framework.executor import ExecutionEngine

        engine = ExecutionEngine(
            self,
            config=config or self._config,
            hooks=(*self._hooks, *hooks),
        )
        return await engine.invoke(initial_state)

    async def run(
        self,
        initial_state: Mapping[str, Any],
        *,
        config: Optional["ExecutionConfig"] = None,
        hooks: Sequence["ExecutionHook"] = (),
    ) -> "StateRecord":
        """Execute the workflow and return the final state."""
        result = await self.invoke(initial_state, config=config, hooks=hooks)
        return result.state

    def run_sync(
        self,
        initial_state: Mapping[str, Any],
        *,
        config: Optional["ExecutionConfig"] = None,
    ) -> "StateRecord":
        """Blocking wrapper around ``run`` for callers without an event loop."""
        return asyncio.run(self.run(initial_state, config=config))

    def get_graph_schema(self) -> dict[str, Any]:
        """Describe the graph structure as plain data."""
        return {
            "name": self._name,
            "entry_point": self._entry_point,
            "nodes": {
                node_id: {"reads": list(stage.reads), "writes": list(stage.writes)}
                for node_id, stage in self._nodes.items()
            },
            "edges": [edge.describe() for edge in self._edges.values()],
            "channels": self._schema.describe(),
            "acyclic": self._acyclic,
        }

    def __repr__(self) -> str:
        return f"CompiledWorkflow(name={self._name!r}, nodes={list(self._nodes)})"


class StateGraph:
    """Builder for stage workflows.

    Example:
        graph = StateGraph(schema)
        graph.add_node("analyze", analyze, reads=["jobs"], writes=["analysis"])
        graph.add_node("prepare", prepare, reads=["analysis"], writes=["documents"])
        graph.add_edge("analyze", "prepare")
        graph.set_finish_point("prepare")
        graph.set_entry_point("analyze")

        app = graph.compile()
    """

    def __init__(self, schema: Optional[StateSchema] = None, name: str = "workflow"):
        self._schema = schema or StateSchema()
        self._name = name
        self._nodes: dict[str, Stage] = {}
        self._edges: dict[str, list[Edge]] = {}
        self._entry_point: Optional[str] = None
        self._build_violations: list[str] = []

    @property
    def schema(self) -> StateSchema:
        return self._schema

    @property
    def name(self) -> str:
        return self._name

    @property
    def nodes(self) -> Mapping[str, Stage]:
        return MappingProxyType(self._nodes)

    @property
    def edges(self) -> Mapping[str, list[Edge]]:
        return MappingProxyType(self._edges)

    @property
    def entry_point(self) -> Optional[str]:
        return self._entry_point

    def add_node(
        self,
        node_id: str,
        stage: Union[Stage, StageHandler],
        *,
        reads: Iterable[str] = (),
        writes: Iterable[str] = (),
        timeout: Optional[float] = None,
        **metadata: Any,
    ) -> "StateGraph":
        """Add a node to the graph.

        Args:
            node_id: Unique node identifier
            stage: A ``Stage`` or a bare handler callable
            reads: Channels the handler consumes (ignored for ``Stage``)
            writes: Channels the handler's delta may touch (ignored for ``Stage``)
            timeout: Per-stage timeout (ignored for ``Stage``)
            **metadata: Additional metadata (ignored for ``Stage``)

        Returns:
            Self for chaining
        """
        if node_id == END:
            self._build_violations.append(f"Node name '{END}' is reserved for the terminal sink")
            return self
        if node_id in self._nodes:
            self._build_violations.append(f"Node '{node_id}' already exists")
            return self

        if isinstance(stage, Stage):
            node = stage if stage.name == node_id else replace(stage, name=node_id)
        else:
            node = Stage(
                name=node_id,
                handler=stage,
                reads=tuple(reads),
                writes=tuple(writes),
                timeout=timeout,
                metadata=metadata,
            )

        self._nodes[node_id] = node
        logger.debug(f"Added node: {node_id}")
        return self

    def add_edge(self, source: str, target: str) -> "StateGraph":
        """Add a static edge between nodes.

        Args:
            source: Source node ID
            target: Target node ID (or END)

        Returns:
            Self for chaining
        """
        edge = Edge(source=source, target=target, edge_type=EdgeType.STATIC)
        self._edges.setdefault(source, []).append(edge)
        logger.debug(f"Added edge: {source} -> {target}")
        return self

    def add_conditional_edge(
        self,
        source: str,
        condition: ConditionFunction,
        branches: Union[Mapping[str, str], Iterable[str]],
    ) -> "StateGraph":
        """Add a conditional edge.

        Args:
            source: Source node ID
            condition: Predicate over the post-merge state returning a branch label
            branches: Label -> target mapping, or target names used as their own labels

        Returns:
            Self for chaining
        """
        if isinstance(branches, Mapping):
            branch_map = dict(branches)
        else:
            branch_map = {target: target for target in branches}

        edge = Edge(
            source=source,
            edge_type=EdgeType.CONDITIONAL,
            condition=condition,
            branches=MappingProxyType(branch_map),
        )
        self._edges.setdefault(source, []).append(edge)
        logger.debug(f"Added conditional edge: {source} -> {list(branch_map.values())}")
        return self

    def set_entry_point(self, node_id: str) -> "StateGraph":
        """Set the node execution starts from."""
        self._entry_point = node_id
        return self

    def set_finish_point(self, node_id: str) -> "StateGraph":
        """Set a node as finish point (adds edge to END)."""
        return self.add_edge(node_id, END)

    def compile(
        self,
        config: Optional["ExecutionConfig"] = None,
        hooks: Sequence["ExecutionHook"] = (),
    ) -> CompiledWorkflow:
        """Validate the graph and freeze it for execution.

        Args:
            config: Default execution config for runs of the compiled workflow
            hooks: Hooks attached to every run of the compiled workflow

        Returns:
            CompiledWorkflow ready for execution

        Raises:
            CompileError: Listing every structural violation found
        """
        violations = self.validate()
        if violations:
            logger.warning(f"Graph '{self._name}' failed to compile: {violations}")
            raise CompileError(violations)

        compiled = CompiledWorkflow(
            nodes=self._nodes,
            edges={source: edges[0] for source, edges in self._edges.items()},
            entry_point=self._entry_point or "",
            schema=self._schema,
            config=config,
            name=self._name,
            hooks=hooks,
        )
        logger.debug(
            f"Compiled graph '{self._name}': {len(self._nodes)} nodes, "
            f"acyclic={compiled.is_acyclic}"
        )
        return compiled

    def validate(self) -> list[str]:
        """Validate graph structure.

        Returns:
            List of violation messages (empty when the graph is valid)
        """
        errors = list(self._build_violations)

        if not self._nodes:
            errors.append("Graph has no nodes")

        if not self._entry_point:
            errors.append("No entry point set")
        elif self._entry_point not in self._nodes:
            errors.append(f"Entry point '{self._entry_point}' not found")

        for source, edges in self._edges.items():
            if source == END:
                errors.append(f"Edges cannot leave the terminal sink '{END}'")
                continue
            if source not in self._nodes:
                errors.append(f"Edge source '{source}' not found")

            static = [e for e in edges if e.edge_type is EdgeType.STATIC]
            conditional = [e for e in edges if e.edge_type is EdgeType.CONDITIONAL]
            if static and conditional:
                errors.append(f"Node '{source}' has both static and conditional edges")
            elif len(static) > 1:
                errors.append(f"Node '{source}' has {len(static)} static edges")
            elif len(conditional) > 1:
                errors.append(f"Node '{source}' has {len(conditional)} conditional edges")

            for edge in edges:
                if edge.edge_type is EdgeType.CONDITIONAL and not edge.branches:
                    errors.append(f"Conditional edge from '{source}' has no branches")
                for target in edge.targets:
                    if target != END and target not in self._nodes:
                        errors.append(f"Edge target '{target}' not found (from '{source}')")

        if self._entry_point in self._nodes:
            reachable = self._find_reachable()
            for node_id in self._nodes:
                if node_id not in reachable:
                    errors.append(f"Node '{node_id}' is unreachable from '{self._entry_point}'")

        reaches_end = self._find_nodes_reaching_end()
        for node_id in self._nodes:
            if node_id not in reaches_end:
                errors.append(f"Node '{node_id}' has no path to '{END}'")

        for node_id, stage in self._nodes.items():
            undeclared_reads = self._schema.undeclared(stage.reads)
            if undeclared_reads:
                errors.append(
                    f"Stage '{node_id}' reads undeclared channel(s): {', '.join(undeclared_reads)}"
                )
            undeclared_writes = self._schema.undeclared(stage.writes)
            if undeclared_writes:
                errors.append(
                    f"Stage '{node_id}' writes undeclared channel(s): {', '.join(undeclared_writes)}"
                )

        return errors

    def _find_reachable(self) -> set[str]:
        """Find all nodes reachable from the entry point."""
        if not self._entry_point:
            return set()

        reachable: set[str] = set()
        to_visit = [self._entry_point]

        while to_visit:
            node_id = to_visit.pop()
            if node_id in reachable or node_id == END:
                continue
            reachable.add(node_id)
            for edge in self._edges.get(node_id, []):
                to_visit.extend(edge.targets)

        return reachable

    def _find_nodes_reaching_end(self) -> set[str]:
        """Find all nodes with some path to END (reverse search from the sink)."""
        predecessors: dict[str, set[str]] = {}
        for source, edges in self._edges.items():
            for edge in edges:
                for target in edge.targets:
                    predecessors.setdefault(target, set()).add(source)

        reaches: set[str] = set()
        to_visit = list(predecessors.get(END, ()))
        while to_visit:
            node_id = to_visit.pop()
            if node_id in reaches:
                continue
            reaches.add(node_id)
            to_visit.extend(predecessors.get(node_id, ()))

        return reaches

    @classmethod
    def from_schema(
        cls,
        definition: Union[Mapping[str, Any], str],
        state_schema: Optional[StateSchema] = None,
        node_registry: Optional[Mapping[str, Union[Stage, StageHandler]]] = None,
        condition_registry: Optional[Mapping[str, ConditionFunction]] = None,
    ) -> "StateGraph":
        """Create a StateGraph from a dictionary or YAML definition.

        The definition holds:
            - nodes: list of ``{id, handler, reads, writes, timeout}``
            - edges: list of ``{source, target}`` (static) or
              ``{source, condition, branches}`` (conditional)
            - entry_point: starting node ID
            - channels (optional): ``{overwrite: [...], append: [...]}`` used
              when ``state_schema`` is not given
            - name (optional)

        Unknown handler or condition names raise ValueError immediately;
        structural problems are left for ``compile()``.

        Example:
            definition = '''
            name: job_application
            channels:
              overwrite: [jobs, scores]
            nodes:
              - id: search
                handler: search_jobs
                writes: [jobs]
              - id: score
                handler: score_jobs
                reads: [jobs]
                writes: [scores]
            edges:
              - source: search
                condition: has_errors
                branches: {stop: end, continue: score}
              - source: score
                target: end
            entry_point: search
            '''
            graph = StateGraph.from_schema(
                definition,
                node_registry={"search_jobs": search_jobs, "score_jobs": score_jobs},
                condition_registry={"has_errors": has_errors},
            )
        """
        import yaml

        if isinstance(definition, str):
            try:
                data = yaml.safe_load(definition)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML graph definition: {e}") from e
        else:
            data = definition

        if not isinstance(data, Mapping):
            raise ValueError("Graph definition must be a mapping")

        missing = [key for key in ("nodes", "edges", "entry_point") if key not in data]
        if missing:
            raise ValueError(f"Graph definition missing required fields: {missing}")

        node_registry = node_registry or {}
        condition_registry = condition_registry or {}

        if state_schema is None:
            channels = data.get("channels") or {}
            state_schema = StateSchema.build(
                overwrite=channels.get("overwrite", ()),
                append=channels.get("append", ()),
            )

        graph = cls(state_schema, name=data.get("name", "workflow"))

        for node_def in data["nodes"]:
            if not isinstance(node_def, Mapping) or not node_def.get("id"):
                raise ValueError(f"Invalid node definition: {node_def}")
            handler_name = node_def.get("handler")
            if handler_name not in node_registry:
                raise ValueError(
                    f"Handler '{handler_name}' for node '{node_def['id']}' not found. "
                    f"Available: {list(node_registry)}"
                )
            extra = {
                k: v
                for k, v in node_def.items()
                if k not in ("id", "handler", "reads", "writes", "timeout")
            }
            graph.add_node(
                node_def["id"],
                node_registry[handler_name],
                reads=node_def.get("reads", ()),
                writes=node_def.get("writes", ()),
                timeout=node_def.get("timeout"),
                **extra,
            )

        for edge_def in data["edges"]:
            if not isinstance(edge_def, Mapping) or not edge_def.get("source"):
                raise ValueError(f"Invalid edge definition: {edge_def}")
            source = edge_def["source"]

            if "condition" in edge_def:
                condition_name = edge_def["condition"]
                if condition_name not in condition_registry:
                    raise ValueError(
                        f"Condition '{condition_name}' not found. "
                        f"Available: {list(condition_registry)}"
                    )
                graph.add_conditional_edge(
                    source,
                    condition_registry[condition_name],
                    edge_def.get("branches") or {},
                )
            elif "target" in edge_def:
                graph.add_edge(source, edge_def["target"])
            else:
                raise ValueError(f"Edge from '{source}' needs 'target' or 'condition'")

        graph.set_entry_point(data["entry_point"])
        return graph


__all__ = [
    "StateGraph",
    "CompiledWorkflow",
    "Edge",
    "EdgeType",
    "END",
]
