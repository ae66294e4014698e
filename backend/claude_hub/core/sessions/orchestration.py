"""
Orchestration
=============

Splits a project request into sessions and schedules them:

    analysis -> implementation (one per component) -> testing -> review

TaskDecomposer is a keyword heuristic; the agent does the real planning
inside the analysis session.
"""

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

import structlog

from claude_hub.core.models import ProjectInfo, Session, SessionType
from claude_hub.core.sessions.manager import SessionManager
from claude_hub.core.sessions.strategies import DependencyMode, schedule

logger = structlog.get_logger()

DEFAULT_PHASES = (
    SessionType.ANALYSIS,
    SessionType.IMPLEMENTATION,
    SessionType.TESTING,
    SessionType.REVIEW,
)

# Component -> trigger keywords, in priority order
COMPONENT_KEYWORDS: Dict[str, List[str]] = {
    "api": ["api", "endpoint", "rest", "graphql", "service"],
    "frontend": ["ui", "frontend", "react", "vue", "angular", "interface"],
    "backend": ["backend", "server", "database", "model", "schema"],
    "auth": ["auth", "authentication", "authorization", "security", "jwt", "oauth"],
    "testing": ["test", "testing", "unit test", "integration test"],
    "deployment": ["deploy", "deployment", "docker", "kubernetes", "ci/cd"],
}

COMPONENT_PRIORITY = {
    "auth": "high",
    "backend": "high",
    "api": "high",
    "frontend": "medium",
    "testing": "low",
    "deployment": "low",
}

COMPONENT_DEPENDENCIES = {
    "api": ["backend"],
    "frontend": ["api"],
    "testing": ["backend", "api", "frontend"],
    "deployment": ["backend", "api", "frontend", "testing"],
}


@dataclass
class TaskComponent:
    name: str
    requirements: str
    priority: str = "medium"
    dependencies: List[str] = field(default_factory=list)
    context: Optional[str] = None


@dataclass
class TaskDecomposition:
    components: List[TaskComponent]
    strategy: DependencyMode
    estimated_sessions: int


class TaskDecomposer:
    """Keyword-driven split of free-form requirements into components."""

    def decompose(self, project: ProjectInfo) -> TaskDecomposition:
        logger.info("Decomposing project", repository=project.repository)
        components = self.analyze_requirements(project.requirements)
        return TaskDecomposition(
            components=components,
            strategy=self.determine_strategy(components),
            estimated_sessions=len(components) + 3,
        )

    def analyze_requirements(self, requirements: str) -> List[TaskComponent]:
        lowered = requirements.lower()
        present = [
            name for name, keywords in COMPONENT_KEYWORDS.items()
            if any(k in lowered for k in keywords)
        ]

        components = [
            TaskComponent(
                name=name,
                requirements=self._extract(requirements, name, COMPONENT_KEYWORDS[name]),
                priority=COMPONENT_PRIORITY[name],
                dependencies=[d for d in COMPONENT_DEPENDENCIES.get(name, []) if d in present],
            )
            for name in present
        ]
        if not components:
            components.append(TaskComponent(name="implementation", requirements=requirements, priority="high"))
        return components

    @staticmethod
    def _extract(requirements: str, name: str, keywords: Sequence[str]) -> str:
        sentences = [s.strip() for s in re.split(r"[.!?]+", requirements) if s.strip()]
        relevant = [s for s in sentences if any(k in s.lower() for k in keywords)]
        if relevant:
            return ". ".join(relevant)
        return f"Implement {name} functionality as described in the overall requirements"

    @staticmethod
    def determine_strategy(components: Sequence[TaskComponent]) -> DependencyMode:
        if any(c.dependencies for c in components):
            return DependencyMode.WAIT_FOR_CORE
        if len(components) > 3:
            return DependencyMode.PARALLEL
        return DependencyMode.SEQUENTIAL


@dataclass
class OrchestrationResult:
    orchestration_id: str
    mode: DependencyMode
    sessions: List[Session]

    @property
    def summary(self) -> str:
        repository = self.sessions[0].project.repository if self.sessions else ""
        return f"Started {len(self.sessions)} Claude sessions for {repository}"


class Orchestrator:
    """
    Builds, prepares and schedules the session batch for one project.

    Usage:
        orchestrator = Orchestrator(manager)
        result = await orchestrator.orchestrate(project, mode=DependencyMode.PARALLEL)
    """

    def __init__(self, manager: SessionManager, decomposer: Optional[TaskDecomposer] = None):
        self.manager = manager
        self.decomposer = decomposer or TaskDecomposer()

    def build_sessions(
        self,
        orchestration_id: str,
        project: ProjectInfo,
        phases: Sequence[SessionType] = DEFAULT_PHASES,
    ) -> List[Session]:
        decomposition = self.decomposer.decompose(project)

        analysis = Session(id=f"{orchestration_id}-analysis", type=SessionType.ANALYSIS, project=project)
        sessions = [analysis]

        if SessionType.IMPLEMENTATION in phases:
            for i, component in enumerate(decomposition.components):
                sessions.append(Session(
                    id=f"{orchestration_id}-impl-{i}",
                    type=SessionType.IMPLEMENTATION,
                    project=ProjectInfo(
                        repository=project.repository,
                        requirements=component.requirements,
                        context=component.context,
                        branch=project.branch,
                    ),
                    dependencies=[analysis.id],
                ))

        implementation_ids = [s.id for s in sessions if s.type == SessionType.IMPLEMENTATION]

        if SessionType.TESTING in phases:
            sessions.append(Session(
                id=f"{orchestration_id}-testing",
                type=SessionType.TESTING,
                project=project,
                dependencies=list(implementation_ids),
            ))

        if SessionType.REVIEW in phases:
            sessions.append(Session(
                id=f"{orchestration_id}-review",
                type=SessionType.REVIEW,
                project=project,
                dependencies=[
                    s.id for s in sessions
                    if s.type in (SessionType.IMPLEMENTATION, SessionType.TESTING)
                ],
            ))

        return sessions

    async def orchestrate(
        self,
        project: ProjectInfo,
        mode: Optional[DependencyMode] = None,
        phases: Optional[Sequence[SessionType]] = None,
        timeout_ms: Optional[int] = None,
    ) -> OrchestrationResult:
        orchestration_id = str(uuid4())
        mode = mode or DependencyMode(self.manager.settings.SESSION_DEPENDENCY_MODE)
        sessions = self.build_sessions(orchestration_id, project, phases or DEFAULT_PHASES)

        logger.info(
            "Starting orchestration",
            orchestration_id=orchestration_id,
            repository=project.repository,
            mode=mode.value,
            sessions=len(sessions),
        )

        self.manager.register(sessions)
        await asyncio.gather(*(self.manager.create(s) for s in sessions))
        await schedule(mode, self.manager, sessions, timeout_ms=timeout_ms)

        return OrchestrationResult(orchestration_id=orchestration_id, mode=mode, sessions=sessions)

    @staticmethod
    def describe(result: OrchestrationResult) -> Dict[str, Any]:
        return {
            "orchestrationId": result.orchestration_id,
            "status": "initiated",
            "mode": result.mode.value,
            "summary": result.summary,
        }
