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

"""Tests for the job application workflow."""

import logging

import pytest

from jobhound.config import WorkflowSettings
from jobhound.framework import (
    END,
    CompiledWorkflowCache,
    ExecutionConfig,
    FailureRecord,
    StateRecord,
    StateSchema,
    TracingHook,
)
from jobhound.workflows import (
    JOB_APPLICATION_SCHEMA,
    AgentSystem,
    build_job_application_graph,
    fail_fast_to,
    find_jobs_request,
    initialize_agent_system,
)

JOBS = [{"title": "Software Engineer", "company": "Acme", "location": "Remote"}]
ANALYSIS = [{"job": "Acme", "match_score": 0.87}]
DOCUMENTS = [{"job": "Acme", "resume": "resume.pdf", "cover_letter": "cover.pdf"}]
APPLICATIONS = [{"job": "Acme", "submitted": True}]
FOLLOW_UPS = [{"job": "Acme", "follow_up_date": "2026-11-02"}]


@pytest.fixture
def agents(make_agent, make_async_agent) -> AgentSystem:
    return AgentSystem(
        job_scout=make_agent(JOBS),
        analysis=make_async_agent(ANALYSIS),
        document_prep=make_agent(DOCUMENTS),
        application=make_agent(APPLICATIONS),
        follow_up=make_agent(FOLLOW_UPS),
    )


@pytest.fixture
def settings() -> WorkflowSettings:
    return WorkflowSettings(stage_timeout=5, max_steps=10)


@pytest.fixture
def request_state() -> dict:
    return find_jobs_request("test-user", "Software Engineer", "Remote", max_results=5)


class TestGraphWiring:
    """Tests for the structure of the job application graph."""

    def test_schema_extends_base_channels(self):
        assert JOB_APPLICATION_SCHEMA.names[-5:] == (
            "job_scout_results",
            "analysis_results",
            "document_results",
            "application_results",
            "follow_up_results",
        )
        assert set(StateSchema().names) < set(JOB_APPLICATION_SCHEMA.names)

    def test_pipeline_order(self, agents, settings):
        app = initialize_agent_system(agents, settings)

        assert app.entry_point == "job_scout"
        assert set(app.successors("job_scout")) == {END, "analysis"}
        assert set(app.successors("analysis")) == {END, "document_prep"}
        assert app.successors("document_prep") == ("application",)
        assert app.successors("application") == ("follow_up",)
        assert app.successors("follow_up") == (END,)
        assert app.is_acyclic

    def test_declared_channels(self, agents):
        graph = build_job_application_graph(agents)
        assert graph.nodes["analysis"].reads == ("job_scout_results",)
        assert graph.nodes["follow_up"].writes == ("follow_up_results", "status")

    def test_stage_timeout_override(self, agents):
        graph = build_job_application_graph(agents, stage_timeout=2.5)
        assert all(stage.timeout == 2.5 for stage in graph.nodes.values())

    def test_settings_flow_into_config(self, agents, settings):
        app = initialize_agent_system(agents, settings)
        assert app.config == ExecutionConfig(max_steps=10, stage_timeout=5.0)

    def test_fail_fast_route(self):
        class State:
            def __init__(self, errors):
                self.errors = errors

        route = fail_fast_to("analysis")
        assert route(State(())) == "analysis"
        assert route(State(("boom",))) == END

    def test_find_jobs_request(self, request_state):
        assert request_state == {
            "user_id": "test-user",
            "command": "find-jobs",
            "parameters": {"job_title": "Software Engineer", "location": "Remote", "max_results": 5},
            "status": "in_progress",
        }


class TestJobApplicationRuns:
    """Tests for end-to-end runs with stub agents."""

    @pytest.mark.asyncio
    async def test_full_pipeline_completes(self, agents, settings, request_state):
        """Test every agent runs once and sees its predecessor's results."""
        app = initialize_agent_system(agents, settings)

        result = await app.invoke(request_state)

        assert result.success
        assert result.node_history == [
            "job_scout",
            "analysis",
            "document_prep",
            "application",
            "follow_up",
        ]
        final = result.state
        assert final["job_scout_results"] == JOBS
        assert final["analysis_results"] == ANALYSIS
        assert final["document_results"] == DOCUMENTS
        assert final["application_results"] == APPLICATIONS
        assert final["follow_up_results"] == FOLLOW_UPS
        assert final.errors == ()

        assert agents.job_scout.calls[0]["parameters"]["job_title"] == "Software Engineer"
        assert agents.analysis.calls[0]["jobs"] == JOBS
        assert agents.document_prep.calls[0]["job_analysis"] == ANALYSIS
        assert agents.application.calls[0]["documents"] == DOCUMENTS
        assert agents.follow_up.calls[0]["applications"] == APPLICATIONS

    @pytest.mark.asyncio
    async def test_job_scout_failure_ends_run(self, agents, make_agent, settings, request_state):
        agents = AgentSystem(
            job_scout=make_agent(error=ConnectionError("job board timeout")),
            analysis=agents.analysis,
            document_prep=agents.document_prep,
            application=agents.application,
            follow_up=agents.follow_up,
        )
        app = initialize_agent_system(agents, settings)

        final = (await app.run(request_state)).to_dict()

        assert final["status"] == "failed"
        assert final["errors"] == [
            {
                "node": "job_scout",
                "message": "job board timeout",
                "cause": "ConnectionError: job board timeout",
                "kind": "stage_failure",
            }
        ]
        assert final["job_scout_results"] is None
        assert agents.analysis.calls == []

    @pytest.mark.asyncio
    async def test_document_prep_failure_halts(self, agents, make_agent, settings, request_state):
        """Stages past analysis have static edges; the failed status still stops the run."""
        agents = AgentSystem(
            job_scout=agents.job_scout,
            analysis=agents.analysis,
            document_prep=make_agent(error=RuntimeError("template missing")),
            application=agents.application,
            follow_up=agents.follow_up,
        )
        app = initialize_agent_system(agents, settings)

        result = await app.invoke(request_state)

        assert result.status == "failed"
        assert result.node_history == ["job_scout", "analysis", "document_prep"]
        assert result.state["analysis_results"] == ANALYSIS
        assert [e.node for e in result.errors] == ["document_prep"]
        assert agents.application.calls == []

    @pytest.mark.asyncio
    async def test_slow_agent_times_out(self, agents, make_async_agent, request_state):
        agents = AgentSystem(
            job_scout=agents.job_scout,
            analysis=make_async_agent(ANALYSIS, delay=5),
            document_prep=agents.document_prep,
            application=agents.application,
            follow_up=agents.follow_up,
        )
        app = initialize_agent_system(agents, WorkflowSettings(stage_timeout=0.05))

        final = await app.run(request_state)

        assert final.status == "failed"
        assert final.errors[0].node == "analysis"
        assert final.errors[0].kind == "timeout"
        assert agents.document_prep.calls == []


class TestInitializeAgentSystem:
    """Tests for compilation, caching and tracing."""

    def test_cache_reuses_compiled_workflow(self, agents, settings):
        cache = CompiledWorkflowCache()

        first = initialize_agent_system(agents, settings, cache=cache)
        second = initialize_agent_system(agents, settings, cache=cache)

        assert first is second
        assert cache.get_stats()["compilations"] == 1

    def test_different_agents_compile_separately(self, agents, make_agent, settings):
        cache = CompiledWorkflowCache()
        other = AgentSystem(
            job_scout=make_agent(JOBS),
            analysis=agents.analysis,
            document_prep=agents.document_prep,
            application=agents.application,
            follow_up=agents.follow_up,
        )

        assert initialize_agent_system(agents, settings, cache=cache) is not (
            initialize_agent_system(other, settings, cache=cache)
        )

    def test_loads_settings_from_environment(self, agents, monkeypatch):
        monkeypatch.setenv("JOBHOUND_MAX_STEPS", "9")
        assert initialize_agent_system(agents).config.max_steps == 9

    def test_applies_log_level(self, agents):
        initialize_agent_system(agents, WorkflowSettings(log_level="warning"))

        assert logging.getLogger("jobhound").level == logging.WARNING

    @pytest.mark.asyncio
    async def test_tracing_hook_logs_transitions(self, agents, request_state, caplog):
        settings = WorkflowSettings(tracing_enabled=True, project_name="job-search")
        app = initialize_agent_system(agents, settings)

        with caplog.at_level(logging.INFO, logger="jobhound"):
            final = await app.run(request_state)

        assert final.status == "completed"
        assert "[job-search:job_application] -> job_scout" in caplog.text
        assert "[job-search:job_application] <- follow_up ok" in caplog.text

    @pytest.mark.asyncio
    async def test_tracing_hook_logs_failure(self, caplog):
        hook = TracingHook("job_application")
        state = StateRecord.initial(StateSchema())
        with caplog.at_level(logging.INFO, logger="jobhound"):
            await hook.after_node("application", state, FailureRecord("application", "captcha"))

        assert "[job_application] <- application failed: captcha" in caplog.text
