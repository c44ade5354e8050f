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

"""Job application workflow: five agents chained over one state record.

    job_scout -> analysis -> document_prep -> application -> follow_up -> end

Each agent receives the full state plus its predecessor's results under the
key it expects (``jobs``, ``job_analysis``, ``documents``, ``applications``).
Only ``job_scout`` and ``analysis`` have explicit fail-fast edges to ``end``;
later stages rely on the engine stopping once status is ``failed``.

Agents are passed in through ``AgentSystem``; they are constructed and owned
by the caller, never looked up globally.

Example:
    agents = AgentSystem(
        job_scout=JobScoutAgent(),
        analysis=AnalysisAgent(),
        document_prep=DocumentPrepAgent(),
        application=ApplicationAgent(),
        follow_up=FollowUpAgent(),
    )
    app = initialize_agent_system(agents)
    final_state = await app.run(
        find_jobs_request("test-user", "Software Engineer", "Remote", max_results=5)
    )
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Protocol, runtime_checkable

from jobhound.config.settings import WorkflowSettings, load_settings
from jobhound.framework.channels import Channel, StateSchema, WorkflowStatus
from jobhound.framework.executor import ExecutionConfig, TracingHook
from jobhound.framework.graph import END, CompiledWorkflow, StateGraph
from jobhound.framework.graph_cache import CompiledWorkflowCache
from jobhound.framework.stage import collaborator_stage
from jobhound.logging_config import configure_logging

logger = logging.getLogger(__name__)

WORKFLOW_NAME = "job_application"

JOB_SCOUT = "job_scout"
ANALYSIS = "analysis"
DOCUMENT_PREP = "document_prep"
APPLICATION = "application"
FOLLOW_UP = "follow_up"

JOB_APPLICATION_SCHEMA = StateSchema().with_channels(
    Channel("job_scout_results", description="Job postings found by the scout"),
    Channel("analysis_results", description="Match analysis per posting"),
    Channel("document_results", description="Generated resumes and cover letters"),
    Channel("application_results", description="Submitted applications"),
    Channel("follow_up_results", description="Scheduled follow-ups"),
)


@runtime_checkable
class Agent(Protocol):
    """External collaborator wrapped by a stage.

    ``invoke`` may be sync or async. Implementations may also provide
    ``ainvoke``, which is preferred when present.
    """

    def invoke(self, payload: Mapping[str, Any]) -> Any: ...


@dataclass(frozen=True)
class AgentSystem:
    """The agents backing each stage of the workflow."""

    job_scout: Agent
    analysis: Agent
    document_prep: Agent
    application: Agent
    follow_up: Agent


def fail_fast_to(next_node: str) -> Callable[[Any], str]:
    """Route to END when any error was recorded, otherwise to ``next_node``."""

    def route(state: Any) -> str:
        return END if state.errors else next_node

    route.__name__ = f"fail_fast_to_{next_node}"
    route.cache_identity = fail_fast_to  # type: ignore[attr-defined]
    return route


def build_job_application_graph(
    agents: AgentSystem,
    *,
    stage_timeout: Optional[float] = None,
) -> StateGraph:
    """Wire the five agents into a graph (not yet compiled).

    Args:
        agents: Agent instances for each stage
        stage_timeout: Per-stage timeout override for every stage

    Returns:
        StateGraph ready to compile
    """
    graph = StateGraph(JOB_APPLICATION_SCHEMA, name=WORKFLOW_NAME)

    graph.add_node(
        JOB_SCOUT,
        collaborator_stage(
            JOB_SCOUT,
            agents.job_scout,
            output="job_scout_results",
            timeout=stage_timeout,
        ),
    )
    graph.add_node(
        ANALYSIS,
        collaborator_stage(
            ANALYSIS,
            agents.analysis,
            output="analysis_results",
            inputs={"jobs": "job_scout_results"},
            timeout=stage_timeout,
        ),
    )
    graph.add_node(
        DOCUMENT_PREP,
        collaborator_stage(
            DOCUMENT_PREP,
            agents.document_prep,
            output="document_results",
            inputs={"job_analysis": "analysis_results"},
            timeout=stage_timeout,
        ),
    )
    graph.add_node(
        APPLICATION,
        collaborator_stage(
            APPLICATION,
            agents.application,
            output="application_results",
            inputs={"documents": "document_results"},
            timeout=stage_timeout,
        ),
    )
    graph.add_node(
        FOLLOW_UP,
        collaborator_stage(
            FOLLOW_UP,
            agents.follow_up,
            output="follow_up_results",
            inputs={"applications": "application_results"},
            on_success={"status": WorkflowStatus.COMPLETED.value},
            timeout=stage_timeout,
        ),
    )

    graph.add_conditional_edge(JOB_SCOUT, fail_fast_to(ANALYSIS), [END, ANALYSIS])
    graph.add_conditional_edge(ANALYSIS, fail_fast_to(DOCUMENT_PREP), [END, DOCUMENT_PREP])
    graph.add_edge(DOCUMENT_PREP, APPLICATION)
    graph.add_edge(APPLICATION, FOLLOW_UP)
    graph.set_finish_point(FOLLOW_UP)

    graph.set_entry_point(JOB_SCOUT)
    return graph


def initialize_agent_system(
    agents: AgentSystem,
    settings: Optional[WorkflowSettings] = None,
    cache: Optional[CompiledWorkflowCache] = None,
) -> CompiledWorkflow:
    """Build and compile the job application workflow.

    Args:
        agents: Agent instances for each stage
        settings: Workflow settings (loaded from the environment when None);
            ``log_level`` is applied to the jobhound loggers
        cache: Compiled workflow cache to reuse across calls

    Returns:
        CompiledWorkflow ready to run

    Raises:
        CompileError: If the wiring is invalid
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    logger.info(
        f"Initializing {settings.project_name} agent workflow "
        f"(max_steps={settings.max_steps}, stage_timeout={settings.stage_timeout}, "
        f"tracing={settings.tracing_enabled})"
    )

    config = ExecutionConfig.from_settings(settings)
    hooks = (
        (TracingHook(WORKFLOW_NAME, project=settings.project_name),)
        if settings.tracing_enabled
        else ()
    )
    graph = build_job_application_graph(agents)

    if cache is not None:
        return cache.get_or_compile(graph, config=config, hooks=hooks)
    return graph.compile(config=config, hooks=hooks)


def find_jobs_request(
    user_id: str,
    job_title: str,
    location: str,
    max_results: int = 5,
) -> dict[str, Any]:
    """Initial state for a ``find-jobs`` command."""
    return {
        "user_id": user_id,
        "command": "find-jobs",
        "parameters": {
            "job_title": job_title,
            "location": location,
            "max_results": max_results,
        },
        "status": WorkflowStatus.IN_PROGRESS.value,
    }


__all__ = [
    "JOB_APPLICATION_SCHEMA",
    "Agent",
    "AgentSystem",
    "build_job_application_graph",
    "fail_fast_to",
    "find_jobs_request",
    "initialize_agent_system",
]
