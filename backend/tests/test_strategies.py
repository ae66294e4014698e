"""
Dependency strategy and orchestration tests.
"""

import asyncio

import pytest

from claude_hub.core.exceptions import DependencyCycleError
from claude_hub.core.models import ProjectInfo, Session, SessionStatus, SessionType
from claude_hub.core.sessions.orchestration import TaskDecomposer
from claude_hub.core.sessions.strategies import DependencyMode, schedule, scheduling_gates

PROJECT = ProjectInfo(repository="octo/repo", requirements="Build a REST api endpoint and a react frontend.")


def make_session(session_id: str, type_: SessionType, deps=()) -> Session:
    return Session(id=session_id, type=type_, project=PROJECT, dependencies=list(deps))


def batch():
    return [
        make_session("analysis", SessionType.ANALYSIS),
        make_session("impl-0", SessionType.IMPLEMENTATION),
        make_session("impl-1", SessionType.IMPLEMENTATION),
        make_session("testing", SessionType.TESTING, deps=["impl-0", "impl-1"]),
    ]


# ==========================================================================
# Gates
# ==========================================================================

class TestSchedulingGates:
    def test_parallel_adds_nothing(self):
        assert scheduling_gates(DependencyMode.PARALLEL, batch()) == {}

    def test_wait_for_core_gates_implementation_on_analysis(self):
        gates = scheduling_gates(DependencyMode.WAIT_FOR_CORE, batch())

        assert gates == {"impl-0": ["analysis"], "impl-1": ["analysis"]}

    def test_sequential_chains_everything(self):
        gates = scheduling_gates(DependencyMode.SEQUENTIAL, batch())

        assert gates == {"impl-0": ["analysis"], "impl-1": ["impl-0"], "testing": ["impl-1"]}


# ==========================================================================
# schedule
# ==========================================================================

class TestSchedule:
    async def _prepare(self, manager, runner, sessions):
        gates = {}
        for s in sessions:
            gates[s.id] = runner.gates[f"claude-{s.type.value}-{s.id}"] = asyncio.Event()
        manager.register(sessions)
        for s in sessions:
            await manager.create(s)
        return gates

    async def test_parallel_starts_independent_sessions(self, manager, runner):
        sessions = batch()
        await self._prepare(manager, runner, sessions)

        await schedule(DependencyMode.PARALLEL, manager, sessions)

        statuses = {s.id: manager.get(s.id).status for s in sessions}
        assert statuses == {
            "analysis": SessionStatus.RUNNING,
            "impl-0": SessionStatus.RUNNING,
            "impl-1": SessionStatus.RUNNING,
            "testing": SessionStatus.QUEUED,
        }

    async def test_wait_for_core_holds_implementation(self, manager, runner):
        sessions = batch()
        gates = await self._prepare(manager, runner, sessions)

        await schedule(DependencyMode.WAIT_FOR_CORE, manager, sessions)

        assert manager.get("analysis").status == SessionStatus.RUNNING
        assert manager.get("impl-0").status == SessionStatus.QUEUED
        assert manager.get("impl-1").status == SessionStatus.QUEUED

        gates["analysis"].set()
        await manager.wait("analysis", timeout=2)
        await asyncio.sleep(0)

        assert manager.get("impl-0").status == SessionStatus.RUNNING
        assert manager.get("impl-1").status == SessionStatus.RUNNING
        assert manager.get("testing").status == SessionStatus.QUEUED

    async def test_sequential_runs_one_at_a_time(self, manager, runner):
        sessions = batch()
        gates = await self._prepare(manager, runner, sessions)
        for gate in gates.values():
            gate.set()

        await schedule(DependencyMode.SEQUENTIAL, manager, sessions)
        await manager.wait("testing", timeout=2)

        assert runner.started == [
            "claude-analysis-analysis",
            "claude-implementation-impl-0",
            "claude-implementation-impl-1",
            "claude-testing-testing",
        ]

    async def test_cyclic_batch_is_rejected(self, manager):
        sessions = [
            make_session("x", SessionType.ANALYSIS, deps=["y"]),
            make_session("y", SessionType.ANALYSIS),
        ]
        manager.register(sessions)
        sessions[1].dependencies.append("x")

        with pytest.raises(DependencyCycleError):
            await schedule(DependencyMode.PARALLEL, manager, sessions)


# ==========================================================================
# Orchestration
# ==========================================================================

class TestTaskDecomposer:
    def test_components_from_keywords(self):
        components = TaskDecomposer().analyze_requirements(PROJECT.requirements)
        by_name = {c.name: c for c in components}

        assert set(by_name) == {"api", "frontend"}
        assert by_name["frontend"].dependencies == ["api"]
        assert by_name["api"].priority == "high"

    def test_fallback_component(self):
        components = TaskDecomposer().analyze_requirements("Make it faster")

        assert [c.name for c in components] == ["implementation"]

    def test_strategy(self):
        decomposition = TaskDecomposer().decompose(PROJECT)

        assert decomposition.strategy == DependencyMode.WAIT_FOR_CORE
        assert decomposition.estimated_sessions == len(decomposition.components) + 3


class TestOrchestrator:
    def test_build_sessions(self, orchestrator):
        sessions = orchestrator.build_sessions("orch", PROJECT)
        by_id = {s.id: s for s in sessions}

        assert list(by_id) == ["orch-analysis", "orch-impl-0", "orch-impl-1", "orch-testing", "orch-review"]
        assert by_id["orch-impl-0"].dependencies == ["orch-analysis"]
        assert by_id["orch-testing"].dependencies == ["orch-impl-0", "orch-impl-1"]
        assert by_id["orch-review"].dependencies == ["orch-impl-0", "orch-impl-1", "orch-testing"]

    def test_phases_limit_sessions(self, orchestrator):
        sessions = orchestrator.build_sessions("orch", PROJECT, phases=[SessionType.ANALYSIS, SessionType.IMPLEMENTATION])

        assert [s.type for s in sessions] == [SessionType.ANALYSIS, SessionType.IMPLEMENTATION, SessionType.IMPLEMENTATION]

    async def test_orchestrate_registers_and_schedules(self, orchestrator, manager, runner):
        result = await orchestrator.orchestrate(PROJECT, mode=DependencyMode.PARALLEL)

        assert len(result.sessions) == 5
        assert result.summary == "Started 5 Claude sessions for octo/repo"
        analysis = manager.get(f"{result.orchestration_id}-analysis")
        assert analysis.status in (SessionStatus.RUNNING, SessionStatus.COMPLETED)
        review = manager.get(f"{result.orchestration_id}-review")
        assert review.status in (SessionStatus.QUEUED, SessionStatus.RUNNING, SessionStatus.COMPLETED)
        described = orchestrator.describe(result)
        assert described["orchestrationId"] == result.orchestration_id
        assert described["mode"] == "parallel"
