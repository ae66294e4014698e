"""
Claude Hub - API Dependencies
=============================

Process-wide service singletons for FastAPI endpoints. The session table
must be owned by exactly one SessionManager, so every component is built
once and shared. Tests replace them through ``app.dependency_overrides``.
"""

from typing import Optional

from claude_hub.core.artifacts import ArtifactStore
from claude_hub.core.config import Settings, get_settings
from claude_hub.core.credentials import CredentialVault, get_vault
from claude_hub.core.execution.commands import CommandProcessor
from claude_hub.core.execution.executor import ContainerExecutor
from claude_hub.core.github_client import GitHubClient
from claude_hub.core.models import ReviewPolicy
from claude_hub.core.review.automation import AutomatedReviewer
from claude_hub.core.review.decision import ReviewDecisionEngine
from claude_hub.core.router import EventRouter
from claude_hub.core.sessions.manager import SessionManager
from claude_hub.core.sessions.orchestration import Orchestrator

__all__ = [
    "get_settings",
    "get_vault",
    "get_artifact_store",
    "get_executor",
    "get_github_client",
    "get_session_manager",
    "get_command_processor",
    "get_reviewer",
    "get_orchestrator",
    "get_event_router",
    "close_services",
]


# ==========================================================================
# Singletons
# ==========================================================================

_artifacts: Optional[ArtifactStore] = None
_executor: Optional[ContainerExecutor] = None
_github: Optional[GitHubClient] = None
_session_manager: Optional[SessionManager] = None
_processor: Optional[CommandProcessor] = None
_reviewer: Optional[AutomatedReviewer] = None
_orchestrator: Optional[Orchestrator] = None
_event_router: Optional[EventRouter] = None


def review_policy_from_settings(settings: Settings) -> ReviewPolicy:
    return ReviewPolicy(
        wait_for_all_checks=settings.PR_REVIEW_WAIT_FOR_ALL_CHECKS,
        trigger_workflow=settings.PR_REVIEW_TRIGGER_WORKFLOW,
        force_on_success=settings.PR_REVIEW_FORCE_ON_SUCCESS,
        conditional_timeout_ms=settings.PR_REVIEW_CONDITIONAL_TIMEOUT_MS,
        max_wait_ms=settings.PR_REVIEW_MAX_WAIT_MS,
    )


def get_artifact_store() -> ArtifactStore:
    global _artifacts
    if _artifacts is None:
        settings = get_settings()
        _artifacts = ArtifactStore(
            settings.ARTIFACTS_DIR,
            retention_days=settings.ARTIFACT_RETENTION_DAYS,
            prune_interval_seconds=settings.ARTIFACT_PRUNE_INTERVAL_SECONDS,
        )
    return _artifacts


def get_executor() -> ContainerExecutor:
    global _executor
    if _executor is None:
        _executor = ContainerExecutor(get_settings(), get_vault())
    return _executor


def get_github_client() -> GitHubClient:
    global _github
    if _github is None:
        settings = get_settings()
        _github = GitHubClient(
            token=get_vault().get("GITHUB_TOKEN"),
            api_url=settings.GITHUB_API_URL,
            timeout=settings.GITHUB_TIMEOUT_SECONDS,
        )
    return _github


def get_session_manager() -> SessionManager:
    """Get or create the session manager singleton."""
    global _session_manager
    if _session_manager is None:
        _session_manager = SessionManager(get_settings(), get_vault(), get_executor(), get_artifact_store())
    return _session_manager


def get_command_processor() -> CommandProcessor:
    global _processor
    if _processor is None:
        _processor = CommandProcessor(get_settings(), get_vault(), get_executor(), get_artifact_store())
    return _processor


def get_reviewer() -> AutomatedReviewer:
    global _reviewer
    if _reviewer is None:
        github = get_github_client()
        engine = ReviewDecisionEngine(github, review_policy_from_settings(get_settings()))
        _reviewer = AutomatedReviewer(engine, get_command_processor(), github)
    return _reviewer


def get_orchestrator() -> Orchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = Orchestrator(get_session_manager())
    return _orchestrator


def get_event_router() -> EventRouter:
    global _event_router
    if _event_router is None:
        _event_router = EventRouter(
            get_settings(),
            get_command_processor(),
            get_reviewer(),
            get_session_manager(),
            get_orchestrator(),
            get_github_client(),
        )
    return _event_router


async def close_services() -> None:
    """Stop sessions, flush artifacts and close the HTTP client."""
    global _artifacts, _executor, _github, _session_manager, _processor, _reviewer, _orchestrator, _event_router

    if _session_manager is not None:
        await _session_manager.shutdown()
    if _artifacts is not None:
        await _artifacts.stop_pruner()
        await _artifacts.flush()
    if _github is not None:
        await _github.close()

    _artifacts = _executor = _github = _session_manager = None
    _processor = _reviewer = _orchestrator = _event_router = None
