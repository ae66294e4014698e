"""
Session Manager
===============

Owns every session and its dependency graph. All reads and writes of the
session table go through this class; one instance is shared by the whole
process.

Key properties:
1. A session only reaches RUNNING once every dependency (and every extra
   scheduling gate) is COMPLETED.
2. Waiting sessions cost nothing: readiness is re-checked only when a
   session they wait on finishes. There is no polling loop.
3. A dependency that fails or is stopped fails its waiters, so nothing is
   left queued forever.
4. Dependency graphs are validated acyclic when sessions are registered
   and again when a batch is scheduled.
"""

import asyncio
import json
import re
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

import structlog

from claude_hub.core.artifacts import ArtifactStore
from claude_hub.core.config import Settings
from claude_hub.core.credentials import CredentialVault
from claude_hub.core.exceptions import (
    DependencyCycleError,
    ExecutionFailure,
    ImageMissing,
    SessionNotFound,
    SessionStateError,
    ValidationError,
)
from claude_hub.core.execution.executor import ContainerExecutor, build_launch_spec
from claude_hub.core.execution.prompts import build_session_command
from claude_hub.core.models import (
    OperationType,
    Session,
    SessionArtifact,
    SessionOutput,
    SessionStatus,
    SessionType,
    VolumeMount,
)
from claude_hub.core.sanitize import new_error_reference, redact, validate_ref, validate_repository
from claude_hub.core.schemas import Artifact, ArtifactMetadata

logger = structlog.get_logger()

_SESSION_ID_PATTERN = re.compile(r"^[a-zA-Z0-9._\-]{1,128}$")
STARTABLE = (SessionStatus.PENDING, SessionStatus.INITIALIZING)


# ==========================================================================
# Graph helpers
# ==========================================================================

def topological_order(
    sessions: Sequence[Session],
    gates: Optional[Mapping[str, Iterable[str]]] = None,
    known: Iterable[str] = (),
) -> List[Session]:
    """
    Order a batch so every session follows the ones it waits on.

    Edges to sessions outside the batch must point at ``known`` ids.
    Raises DependencyCycleError on cycles or unknown ids. Input order is
    preserved wherever the graph allows.
    """
    gates = gates or {}
    by_id = {s.id: s for s in sessions}
    known_ids = set(known)
    edges: Dict[str, Set[str]] = {}

    for s in sessions:
        deps = set(s.dependencies) | set(gates.get(s.id, ()))
        if s.id in deps:
            raise DependencyCycleError(f"Session {s.id} depends on itself", field="dependencies")
        missing = [d for d in deps if d not in by_id and d not in known_ids]
        if missing:
            raise DependencyCycleError(f"Session {s.id} depends on unknown sessions: {sorted(missing)}", field="dependencies")
        edges[s.id] = {d for d in deps if d in by_id}

    indegree = {sid: len(deps) for sid, deps in edges.items()}
    dependents: Dict[str, List[str]] = {sid: [] for sid in edges}
    for sid, deps in edges.items():
        for d in deps:
            dependents[d].append(sid)

    position = {s.id: i for i, s in enumerate(sessions)}
    ready = deque(sorted((sid for sid, n in indegree.items() if n == 0), key=position.get))
    ordered: List[Session] = []
    while ready:
        sid = ready.popleft()
        ordered.append(by_id[sid])
        for child in sorted(dependents[sid], key=position.get):
            indegree[child] -= 1
            if indegree[child] == 0:
                ready.append(child)

    if len(ordered) != len(sessions):
        stuck = sorted(sid for sid, n in indegree.items() if n > 0)
        raise DependencyCycleError(f"Dependency cycle among sessions: {stuck}", field="dependencies")
    return ordered


def parse_session_output(lines: Sequence[str]) -> SessionOutput:
    artifacts: List[SessionArtifact] = []
    summary: List[str] = []
    next_steps: List[str] = []

    for line in lines:
        if "Created file:" in line:
            artifacts.append(SessionArtifact(type="file", path=line.split("Created file:", 1)[1].strip()))
        elif "Committed:" in line:
            artifacts.append(SessionArtifact(type="commit", sha=line.split("Committed:", 1)[1].strip()))
        elif "Summary:" in line:
            summary.append(line.split("Summary:", 1)[1].strip())
        elif "Next step:" in line:
            next_steps.append(line.split("Next step:", 1)[1].strip())

    return SessionOutput(
        logs=list(lines),
        artifacts=artifacts,
        summary="\n".join(summary) if summary else "Session completed",
        next_steps=next_steps,
    )


def parse_claude_session_id(first_line: str) -> Optional[str]:
    """The stream-json init event carries the agent's own session id."""
    try:
        data = json.loads(first_line)
    except json.JSONDecodeError:
        return None
    if isinstance(data, dict) and data.get("type") == "system" and data.get("subtype") == "init":
        return data.get("session_id")
    return None


@dataclass
class SessionFilter:
    status: Optional[SessionStatus] = None
    type: Optional[SessionType] = None
    orchestration_id: Optional[str] = None
    repository: Optional[str] = None

    def matches(self, session: Session) -> bool:
        if self.status is not None and session.status != self.status:
            return False
        if self.type is not None and session.type != self.type:
            return False
        if self.orchestration_id and not session.id.startswith(self.orchestration_id):
            return False
        if self.repository and session.project.repository != self.repository:
            return False
        return True


# ==========================================================================
# Manager
# ==========================================================================

class SessionManager:
    """
    Lifecycle owner for sessions.

    Usage:
        manager = SessionManager(settings, vault, executor, artifacts)
        await manager.create(session)
        await manager.start(session.id)
    """

    def __init__(
        self,
        settings: Settings,
        vault: CredentialVault,
        executor: ContainerExecutor,
        artifacts: Optional[ArtifactStore] = None,
    ):
        self.settings = settings
        self.vault = vault
        self.executor = executor
        self.artifacts = artifacts

        self._sessions: Dict[str, Session] = {}
        self._gates: Dict[str, List[str]] = {}
        self._waiters: Dict[str, Set[str]] = {}
        self._timeouts: Dict[str, int] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._done: Dict[str, asyncio.Event] = {}

    # ======================================================================
    # Registration
    # ======================================================================

    def _validate(self, session: Session) -> None:
        if not _SESSION_ID_PATTERN.match(session.id):
            raise ValidationError("Session id contains invalid characters", field="id")
        validate_repository(session.project.repository)
        validate_ref(session.project.branch)
        if not session.project.requirements:
            raise ValidationError("Requirements are required for a session", field="requirements")

    def register(self, sessions: Sequence[Session]) -> None:
        """Add a batch of sessions, validating ids and acyclicity."""
        for s in sessions:
            self._validate(s)
            if s.id in self._sessions:
                raise ValidationError(f"Session {s.id} already exists", field="id")
        topological_order(sessions, known=self._sessions.keys())

        for s in sessions:
            self._sessions[s.id] = s
            self._gates[s.id] = list(s.dependencies)
            self._done[s.id] = asyncio.Event()

    def container_name(self, session: Session) -> str:
        return f"claude-{session.type.value}-{session.id}"

    async def create(self, session: Session) -> str:
        """Register a session and prepare its workspace volume. Does not start it."""
        if session.id not in self._sessions:
            self.register([session])
        session = self._sessions[session.id]
        if session.status != SessionStatus.PENDING:
            raise SessionStateError(f"Session {session.id} already prepared")

        container = self.container_name(session)
        logger.info("Creating session resources", session_id=session.id, container=container)
        await self.executor.prepare_volume(f"{container}-volume")

        session.container_id = container
        session.status = SessionStatus.INITIALIZING
        return container

    # ======================================================================
    # Queries
    # ======================================================================

    def get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def list(self, session_filter: Optional[SessionFilter] = None) -> List[Session]:
        session_filter = session_filter or SessionFilter()
        return [s for s in self._sessions.values() if session_filter.matches(s)]

    def __len__(self) -> int:
        return len(self._sessions)

    def unmet_dependencies(self, session_id: str) -> List[str]:
        return [
            dep for dep in self._gates.get(session_id, [])
            if self._sessions.get(dep) is None or self._sessions[dep].status != SessionStatus.COMPLETED
        ]

    def output(self, session_id: str) -> Optional[SessionOutput]:
        return self.get(session_id).output

    async def wait(self, session_id: str, timeout: Optional[float] = None) -> Session:
        """Block until the session reaches a terminal status."""
        session = self.get(session_id)
        await asyncio.wait_for(self._done[session_id].wait(), timeout=timeout)
        return session

    # ======================================================================
    # Scheduling
    # ======================================================================

    def validate_schedule(self, sessions: Sequence[Session], gates: Mapping[str, Iterable[str]]) -> List[Session]:
        known = set(self._sessions) - {s.id for s in sessions}
        return topological_order(sessions, gates=gates, known=known)

    async def start(self, session_id: str) -> Session:
        """
        Start a session now, or queue it if dependencies are unmet.

        Only PENDING or INITIALIZING sessions may be started.
        """
        session = self.get(session_id)
        if session.status not in STARTABLE:
            raise SessionStateError(f"Session cannot be started in status: {session.status.value}")
        return await self.queue(session_id)

    async def queue(
        self,
        session_id: str,
        after: Iterable[str] = (),
        timeout_ms: Optional[int] = None,
    ) -> Session:
        """
        Defer the start until every dependency, plus ``after``, completes.

        Starts immediately when nothing is outstanding.
        """
        session = self.get(session_id)
        if session.status not in STARTABLE and session.status != SessionStatus.QUEUED:
            raise SessionStateError(f"Session cannot be queued in status: {session.status.value}")

        gates = self._gates.setdefault(session_id, [])
        for gate in after:
            if gate not in gates:
                gates.append(gate)
        if timeout_ms:
            self._timeouts[session_id] = timeout_ms

        dead = [d for d in gates if d in self._sessions and self._sessions[d].status in (SessionStatus.FAILED, SessionStatus.STOPPED)]
        if dead:
            self._finish(session, SessionStatus.FAILED, error=f"Dependency {dead[0]} did not complete")
            return session

        unmet = self.unmet_dependencies(session_id)
        if not unmet:
            self._launch(session)
            return session

        session.status = SessionStatus.QUEUED
        for dep in unmet:
            self._waiters.setdefault(dep, set()).add(session_id)
        logger.info("Session queued", session_id=session_id, waiting_for=unmet)
        return session

    def _launch(self, session: Session) -> None:
        if self.unmet_dependencies(session.id):
            raise SessionStateError(f"Session {session.id} has unmet dependencies")

        session.status = SessionStatus.RUNNING
        session.started_at = datetime.now(timezone.utc)
        self._tasks[session.id] = asyncio.create_task(self._run(session))
        logger.info("Session started", session_id=session.id, type=session.type.value)

    async def _run(self, session: Session) -> None:
        container = session.container_id or self.container_name(session)
        session.container_id = container
        spec = build_launch_spec(
            self.settings,
            container_name=container,
            environment={
                "SESSION_ID": session.id,
                "SESSION_TYPE": session.type.value,
                "REPO_FULL_NAME": session.project.repository,
                "BRANCH_NAME": session.project.branch or "",
                "OPERATION_TYPE": OperationType.SESSION.value,
                "OUTPUT_FORMAT": "stream-json",
                "GITHUB_TOKEN": self.vault.get("GITHUB_TOKEN") or "",
                "ANTHROPIC_API_KEY": self.vault.get("ANTHROPIC_API_KEY") or "",
            },
            volume_mounts=[VolumeMount(f"{container}-volume", self.settings.SESSION_WORKSPACE_PATH)],
        )
        timeout_ms = self._timeouts.get(session.id) or self.settings.CONTAINER_LIFETIME_MS

        try:
            result = await self.executor.execute(spec, build_session_command(session), timeout_ms)
        except (ExecutionFailure, ImageMissing) as e:
            reference = new_error_reference()
            logger.error(
                "Session execution failed",
                session_id=session.id,
                error_id=reference.error_id,
                error_type=type(e).__name__,
                detail=getattr(e, "detail", ""),
            )
            self._finish(session, SessionStatus.FAILED, error=reference.message)
            return
        except asyncio.CancelledError:
            self._finish(session, SessionStatus.STOPPED, error="Session stopped")
            raise
        except Exception as e:
            reference = new_error_reference()
            logger.error(
                "Session crashed",
                session_id=session.id,
                error_id=reference.error_id,
                error_type=type(e).__name__,
                exc_info=e,
            )
            self._finish(session, SessionStatus.FAILED, error=reference.message)
            return

        lines = [line for line in result.stdout.splitlines() if line.strip()]
        if lines:
            session.claude_session_id = parse_claude_session_id(lines[0])
        session.output = parse_session_output(lines)
        self._finish(session, SessionStatus.COMPLETED)

        if self.artifacts is not None:
            now = datetime.now(timezone.utc)
            self.artifacts.save_in_background(Artifact(
                timestamp=now,
                repository=session.project.repository,
                operation_type=f"session-{session.type.value}",
                command=redact(build_session_command(session), self.vault.known_values()),
                output=result.stdout,
                metadata=ArtifactMetadata(
                    output_length=len(result.stdout),
                    saved_at=now,
                    container_name=container,
                    execution_time_ms=result.execution_time_ms,
                    branch_name=session.project.branch,
                ),
            ))

    def _finish(self, session: Session, status: SessionStatus, error: Optional[str] = None) -> None:
        if session.status.is_terminal:
            return
        session.status = status
        session.error = error
        session.completed_at = datetime.now(timezone.utc)
        self._tasks.pop(session.id, None)
        self._done[session.id].set()
        logger.info("Session finished", session_id=session.id, status=status.value)
        self._notify(session.id)

    def _notify(self, finished_id: str) -> None:
        """Re-check every session waiting on ``finished_id``."""
        finished = self._sessions[finished_id]
        for waiting_id in sorted(self._waiters.pop(finished_id, set())):
            waiting = self._sessions[waiting_id]
            if waiting.status != SessionStatus.QUEUED:
                continue
            if finished.status != SessionStatus.COMPLETED:
                self._finish(waiting, SessionStatus.FAILED, error=f"Dependency {finished_id} did not complete")
                continue
            if not self.unmet_dependencies(waiting_id):
                logger.info("Starting waiting session", session_id=waiting_id)
                self._launch(waiting)

    # ======================================================================
    # Stop / shutdown
    # ======================================================================

    async def stop(self, session_id: str) -> Session:
        session = self.get(session_id)
        if session.status.is_terminal:
            return session

        task = self._tasks.get(session_id)
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            if session.container_id:
                await self.executor.kill(session.container_id)
        self._finish(session, SessionStatus.STOPPED, error="Session stopped")
        return session

    async def shutdown(self) -> None:
        """Stop every running session."""
        for session_id in list(self._tasks):
            await self.stop(session_id)
