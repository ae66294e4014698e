"""
Claude Hub - Test Fixtures
==========================

Shared pytest fixtures for all tests. The container engine and the
repository host are replaced with in-process fakes; nothing here touches
docker or the network.
"""

import asyncio
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Union
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from claude_hub.api import deps
from claude_hub.api.main import app
from claude_hub.core.artifacts import ArtifactStore
from claude_hub.core.config import Settings
from claude_hub.core.credentials import CredentialVault
from claude_hub.core.execution.commands import CommandProcessor
from claude_hub.core.execution.executor import ContainerExecutor, ProcessResult
from claude_hub.core.models import ReviewPolicy
from claude_hub.core.review.automation import AutomatedReviewer
from claude_hub.core.review.decision import ReviewDecisionEngine
from claude_hub.core.router import EventRouter
from claude_hub.core.sessions.manager import SessionManager
from claude_hub.core.sessions.orchestration import Orchestrator

GITHUB_TOKEN = "ghp_" + "A1b2C3d4E5" * 4
ANTHROPIC_KEY = "sk-ant-REDACTED"
GITHUB_WEBHOOK_SECRET = "gh-webhook-secret-value"
CLAUDE_WEBHOOK_SECRET = "claude-webhook-secret-value"
CLAUDE_API_TOKEN = "claude-api-token-value"

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


# ==========================================================================
# Fake container engine
# ==========================================================================

class FakeDockerRunner:
    """
    Scripted stand-in for DockerRunner.

    ``docker run`` returns ``default_result`` unless a per-container entry
    exists in ``results``; a container listed in ``gates`` blocks until its
    event is set. ``engine_error`` is raised by every command except
    ``volume``, as when the engine binary is missing.
    """

    def __init__(self):
        self.calls: List[List[str]] = []
        self.started: List[str] = []
        self.image_present = True
        self.build_ok = True
        self.default_result: Union[ProcessResult, BaseException] = ProcessResult(0, "Agent output", "")
        self.results: Dict[str, Union[ProcessResult, BaseException]] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.logs_output = ""
        self.volume_ok = True
        self.engine_error: Optional[BaseException] = None

    def commands(self, name: str) -> List[List[str]]:
        return [c for c in self.calls if c[0] == name]

    async def run(self, args: Sequence[str], timeout: Optional[float] = None) -> ProcessResult:
        args = list(args)
        self.calls.append(args)
        command = args[0]

        if self.engine_error is not None and command != "volume":
            raise self.engine_error
        if command == "image":
            if self.image_present:
                return ProcessResult(0, "[]", "")
            return ProcessResult(1, "", "Error: No such image")
        if command == "build":
            if self.build_ok:
                self.image_present = True
                return ProcessResult(0, "built", "")
            return ProcessResult(1, "", "build failed")
        if command == "run":
            name = args[args.index("--name") + 1]
            self.started.append(name)
            gate = self.gates.get(name)
            if gate is not None:
                await gate.wait()
            result = self.results.get(name, self.default_result)
            if isinstance(result, BaseException):
                raise result
            return result
        if command == "logs":
            return ProcessResult(0, self.logs_output, "")
        if command == "volume":
            return ProcessResult(0 if self.volume_ok else 1, args[-1], "" if self.volume_ok else "volume error")
        return ProcessResult(0, "", "")


# ==========================================================================
# Core fixtures
# ==========================================================================

@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        BOT_USERNAME="ClaudeBot",
        AUTHORIZED_USERS="octocat,hubot",
        ARTIFACTS_DIR=str(tmp_path / "outputs"),
        CLAUDE_AUTH_HOST_DIR=None,
        CLAUDE_API_AUTH_REQUIRED=True,
        SKIP_WEBHOOK_VERIFICATION=False,
    )


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault({
        "GITHUB_TOKEN": GITHUB_TOKEN,
        "ANTHROPIC_API_KEY": ANTHROPIC_KEY,
        "GITHUB_WEBHOOK_SECRET": GITHUB_WEBHOOK_SECRET,
        "CLAUDE_WEBHOOK_SECRET": CLAUDE_WEBHOOK_SECRET,
        "CLAUDE_API_AUTH_TOKEN": CLAUDE_API_TOKEN,
    })


@pytest.fixture
def runner() -> FakeDockerRunner:
    return FakeDockerRunner()


@pytest.fixture
def executor(settings: Settings, vault: CredentialVault, runner: FakeDockerRunner) -> ContainerExecutor:
    return ContainerExecutor(settings, vault, runner=runner)


@pytest_asyncio.fixture
async def artifact_store(settings: Settings) -> AsyncGenerator[ArtifactStore, None]:
    store = ArtifactStore(settings.ARTIFACTS_DIR, retention_days=30)
    yield store
    await store.flush()


@pytest_asyncio.fixture
async def manager(
    settings: Settings,
    vault: CredentialVault,
    executor: ContainerExecutor,
    artifact_store: ArtifactStore,
) -> AsyncGenerator[SessionManager, None]:
    manager = SessionManager(settings, vault, executor, artifact_store)
    yield manager
    await manager.shutdown()


@pytest.fixture
def processor(
    settings: Settings,
    vault: CredentialVault,
    executor: ContainerExecutor,
    artifact_store: ArtifactStore,
) -> CommandProcessor:
    return CommandProcessor(settings, vault, executor, artifact_store)


@pytest.fixture
def host() -> AsyncMock:
    """Repository host double."""
    host = AsyncMock()
    host.post_comment.return_value = {"id": 1}
    host.list_reviews.return_value = []
    host.list_check_suites_for_ref.return_value = []
    host.get_combined_status.return_value = {"state": "success", "statuses": []}
    return host


@pytest.fixture
def policy() -> ReviewPolicy:
    return ReviewPolicy()


@pytest.fixture
def reviewer(host: AsyncMock, processor: CommandProcessor, policy: ReviewPolicy) -> AutomatedReviewer:
    return AutomatedReviewer(ReviewDecisionEngine(host, policy), processor, host)


@pytest.fixture
def orchestrator(manager: SessionManager) -> Orchestrator:
    return Orchestrator(manager)


@pytest.fixture
def event_router(
    settings: Settings,
    processor: CommandProcessor,
    reviewer: AutomatedReviewer,
    manager: SessionManager,
    orchestrator: Orchestrator,
    host: AsyncMock,
) -> EventRouter:
    return EventRouter(settings, processor, reviewer, manager, orchestrator, host)


# ==========================================================================
# HTTP client
# ==========================================================================

@pytest_asyncio.fixture
async def client(
    settings: Settings,
    vault: CredentialVault,
    processor: CommandProcessor,
    manager: SessionManager,
    event_router: EventRouter,
) -> AsyncGenerator[AsyncClient, None]:
    """Provide test HTTP client with every service overridden."""
    app.dependency_overrides[deps.get_settings] = lambda: settings
    app.dependency_overrides[deps.get_vault] = lambda: vault
    app.dependency_overrides[deps.get_command_processor] = lambda: processor
    app.dependency_overrides[deps.get_session_manager] = lambda: manager
    app.dependency_overrides[deps.get_event_router] = lambda: event_router

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def claude_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {CLAUDE_WEBHOOK_SECRET}"}
