"""
Event Router
============

Classifies inbound events and hands them to the right component.

GitHub events:
    issues.opened                          -> auto-tagging command
    issue_comment.created                  -> bot-mention command
    pull_request_review_comment.created    -> bot-mention command
    check_suite.completed                  -> AutomatedReviewer
    anything else                          -> ignored

Claude API events:
    orchestrate                            -> Orchestrator
    session.create|get|list|start|output|stop -> SessionManager
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import uuid4

import httpx
import structlog

from claude_hub.core.config import Settings
from claude_hub.core.exceptions import CommandFailed, ValidationError
from claude_hub.core.execution.commands import CommandProcessor
from claude_hub.core.github_client import RepositoryHost, parse_check_suite
from claude_hub.core.models import (
    CommandRequest,
    OperationType,
    ProjectInfo,
    Session,
    SessionStatus,
    SessionType,
)
from claude_hub.core.review.automation import AutomatedReviewer
from claude_hub.core.sanitize import sanitize_bot_mentions
from claude_hub.core.schemas import (
    ClaudeWebhookRequest,
    ProjectSchema,
    SessionOutputSchema,
    SessionSchema,
)
from claude_hub.core.sessions.manager import SessionFilter, SessionManager
from claude_hub.core.sessions.orchestration import Orchestrator
from claude_hub.core.sessions.strategies import DependencyMode

logger = structlog.get_logger()

UNAUTHORIZED_REPLY = "❌ Sorry @{user}, only authorized users can trigger Claude commands."
ERROR_REPLY = (
    "❌ An error occurred while processing your command. (Reference: {error_id}, Time: {timestamp})\n\n"
    "Please check with an administrator to review the logs for more details."
)

# (label, keywords); first match wins within each group
_TYPE_KEYWORDS = [
    ("type:documentation", (" doc ", "docs", "readme", "documentation")),
    ("type:bug", ("bug", "error", "issue", "problem")),
    ("type:feature", ("feature", "add", "new")),
    ("type:enhancement", ("improve", "enhance", "better")),
    ("type:question", ("question", "help", "how")),
]
_PRIORITY_KEYWORDS = [
    ("priority:critical", ("critical", "urgent", "security", "down")),
    ("priority:high", ("important", "high")),
]
_COMPONENT_KEYWORDS = [
    ("component:api", ("api", "endpoint")),
    ("component:frontend", ("ui", "frontend", "interface")),
    ("component:backend", ("backend", "server")),
    ("component:database", ("database", "db")),
    ("component:auth", ("auth", "login", "permission")),
    ("component:webhook", ("webhook", "github")),
    ("component:docker", ("docker", "container")),
]


def _first_match(content: str, table) -> Optional[str]:
    for label, keywords in table:
        if any(k in content for k in keywords):
            return label
    return None


def fallback_labels(title: str, body: Optional[str]) -> List[str]:
    """Keyword labels used when agent-driven tagging did not succeed."""
    content = f"{title} {body or ''}".lower()
    labels = [
        _first_match(content, _TYPE_KEYWORDS),
        _first_match(content, _PRIORITY_KEYWORDS) or "priority:medium",
        _first_match(content, _COMPONENT_KEYWORDS),
    ]
    return [label for label in labels if label]


def serialize_session(session: Session) -> Dict[str, Any]:
    return SessionSchema.model_validate(session, from_attributes=True).model_dump(by_alias=True, mode="json")


@dataclass
class RouteResult:
    handled: bool
    message: str
    data: Dict[str, Any] = field(default_factory=dict)


class EventRouter:
    """
    Single dispatch point for webhook and API events.

    Usage:
        router = EventRouter(settings, processor, reviewer, manager, orchestrator, github)
        result = await router.route_github("issue_comment", payload)
    """

    def __init__(
        self,
        settings: Settings,
        processor: CommandProcessor,
        reviewer: AutomatedReviewer,
        manager: SessionManager,
        orchestrator: Orchestrator,
        host: RepositoryHost,
    ):
        self.settings = settings
        self.processor = processor
        self.reviewer = reviewer
        self.manager = manager
        self.orchestrator = orchestrator
        self.host = host

    # ======================================================================
    # GitHub
    # ======================================================================

    async def route_github(self, event: str, payload: Dict[str, Any]) -> RouteResult:
        action = payload.get("action")
        repository = payload.get("repository") or {}
        logger.info("Received GitHub event", event=event, action=action, repo=repository.get("full_name"))

        if event == "issues" and action == "opened":
            return await self._issue_opened(payload)
        if event in ("issue_comment", "pull_request_review_comment") and action == "created":
            return await self._comment_created(event, payload)
        if event == "check_suite" and action == "completed":
            return await self._check_suite_completed(payload)

        return RouteResult(handled=False, message="Event ignored")

    @staticmethod
    def _repository(payload: Dict[str, Any]) -> Dict[str, str]:
        repository = payload.get("repository")
        if not repository or not repository.get("full_name"):
            raise ValidationError("Repository data is missing from payload", field="repository")
        owner, _, name = repository["full_name"].partition("/")
        return {"full_name": repository["full_name"], "owner": owner, "name": name}

    async def _issue_opened(self, payload: Dict[str, Any]) -> RouteResult:
        issue = payload.get("issue")
        if not issue:
            raise ValidationError("Issue data is missing from payload", field="issue")
        repo = self._repository(payload)
        title = issue.get("title") or ""
        body = issue.get("body")

        logger.info("Processing new issue for auto-tagging", repo=repo["full_name"], issue=issue["number"])
        request = CommandRequest(
            repo_full_name=repo["full_name"],
            command=f"Title: {title}\nDescription: {body or 'No description provided'}",
            issue_number=issue["number"],
            operation_type=OperationType.AUTO_TAGGING,
        )

        try:
            result = await self.processor.process(request)
            succeeded = "error" not in result.stdout and "failed" not in result.stdout
        except CommandFailed as e:
            logger.warning("Auto-tagging failed", repo=repo["full_name"], issue=issue["number"], error_id=e.error_id)
            succeeded = False

        if succeeded:
            return RouteResult(handled=True, message="Issue auto-tagged successfully",
                               data={"repo": repo["full_name"], "issue": issue["number"]})

        labels = fallback_labels(title, body)
        try:
            await self.host.add_labels(repo["owner"], repo["name"], issue["number"], labels)
        except httpx.HTTPError as e:
            logger.error("Failed to apply fallback labels", repo=repo["full_name"], issue=issue["number"], error=str(e))
            return RouteResult(handled=True, message="Auto-tagging failed",
                               data={"repo": repo["full_name"], "issue": issue["number"]})

        logger.info("Applied fallback labels", repo=repo["full_name"], issue=issue["number"], labels=labels)
        return RouteResult(handled=True, message="Issue tagged with fallback labels",
                           data={"repo": repo["full_name"], "issue": issue["number"], "labels": labels})

    def _extract_command(self, body: str) -> Optional[str]:
        mention = self.settings.bot_mention
        if not mention:
            return None
        match = re.search(rf"{re.escape(mention)}\s+(.*)", body, flags=re.DOTALL | re.IGNORECASE)
        if not match or not match.group(1).strip():
            return None
        return match.group(1).strip()

    async def _comment_created(self, event: str, payload: Dict[str, Any]) -> RouteResult:
        comment = payload.get("comment") or {}
        body = comment.get("body") or ""
        author = (comment.get("user") or {}).get("login", "")
        repo = self._repository(payload)

        if event == "pull_request_review_comment":
            target = payload.get("pull_request")
            is_pull_request = True
        else:
            target = payload.get("issue")
            is_pull_request = bool(target and "pull_request" in target)
        if not target:
            raise ValidationError("Issue or pull request data is missing from payload", field="issue")
        number = target["number"]

        bare_bot = (self.settings.BOT_USERNAME or "").lstrip("@").lower()
        if author.lower() == bare_bot:
            return RouteResult(handled=False, message="Comment from bot ignored")

        command = self._extract_command(body)
        if command is None:
            return RouteResult(handled=False, message="No bot mention")

        if author not in self.settings.authorized_users:
            logger.info("Unauthorized user attempted a command", repo=repo["full_name"], issue=number, sender=author)
            await self._reply(repo, number, UNAUTHORIZED_REPLY.format(user=author))
            return RouteResult(handled=True, message="Unauthorized user - command ignored",
                               data={"repo": repo["full_name"], "issue": number, "sender": author})

        branch = ((payload.get("pull_request") or {}).get("head") or {}).get("ref")
        request = CommandRequest(
            repo_full_name=repo["full_name"],
            command=command,
            issue_number=number,
            is_pull_request=is_pull_request,
            branch_name=branch,
        )

        try:
            result = await self.processor.process(request)
        except CommandFailed as e:
            await self._reply(repo, number, ERROR_REPLY.format(error_id=e.error_id, timestamp=e.timestamp))
            return RouteResult(handled=True, message=str(e),
                               data={"errorReference": e.error_id, "timestamp": e.timestamp})

        await self._reply(repo, number, result.stdout)
        return RouteResult(
            handled=True,
            message="Command processed and response posted",
            data={
                "repo": repo["full_name"],
                "issue": number,
                "type": "pull_request" if is_pull_request else "issue_comment",
                "branch": branch,
            },
        )

    async def _reply(self, repo: Dict[str, str], number: int, body: str) -> None:
        try:
            await self.host.post_comment(
                repo["owner"], repo["name"], number, sanitize_bot_mentions(body, self.settings.BOT_USERNAME),
            )
        except httpx.HTTPError as e:
            logger.error("Failed to post comment", repo=repo["full_name"], issue=number, error=str(e))

    async def _check_suite_completed(self, payload: Dict[str, Any]) -> RouteResult:
        data = payload.get("check_suite")
        if not data:
            raise ValidationError("Check suite data is missing from payload", field="check_suite")
        repo = self._repository(payload)

        suite = parse_check_suite(data)
        summary = await self.reviewer.review_check_suite(repo["owner"], repo["name"], suite)
        return RouteResult(handled=True, message=summary.message, data=summary.as_dict())

    # ======================================================================
    # Claude API
    # ======================================================================

    async def route_claude(self, request: ClaudeWebhookRequest) -> RouteResult:
        logger.info("Received Claude webhook", type=request.type)
        handlers = {
            "orchestrate": self._orchestrate,
            "session.create": self._session_create,
            "session.get": self._session_get,
            "session.list": self._session_list,
            "session.start": self._session_start,
            "session.output": self._session_output,
            "session.stop": self._session_stop,
        }
        handler = handlers.get(request.type)
        if handler is None:
            raise ValidationError(f"Unknown webhook type: {request.type}", field="type")
        return await handler(request)

    @staticmethod
    def _project(schema: Optional[ProjectSchema]) -> ProjectInfo:
        if schema is None:
            raise ValidationError("Project information is required", field="project")
        return ProjectInfo(
            repository=schema.repository,
            requirements=schema.requirements,
            context=schema.context,
            branch=schema.branch,
        )

    @staticmethod
    def _session_id(request: ClaudeWebhookRequest) -> str:
        if not request.session_id:
            raise ValidationError("sessionId is required", field="sessionId")
        return request.session_id

    async def _orchestrate(self, request: ClaudeWebhookRequest) -> RouteResult:
        project = self._project(request.project)
        strategy = request.strategy
        result = await self.orchestrator.orchestrate(
            project,
            mode=DependencyMode(strategy.dependency_mode) if strategy and strategy.dependency_mode else None,
            phases=strategy.phases if strategy else None,
            timeout_ms=strategy.timeout if strategy else None,
        )
        data = self.orchestrator.describe(result)
        data["sessions"] = [serialize_session(s) for s in result.sessions]
        return RouteResult(handled=True, message="Orchestration initiated", data=data)

    async def _session_create(self, request: ClaudeWebhookRequest) -> RouteResult:
        spec = request.session
        if spec is None:
            raise ValidationError("Session information is required", field="session")
        session = Session(
            id=spec.id or str(uuid4()),
            type=spec.type or SessionType.IMPLEMENTATION,
            project=self._project(spec.project),
            dependencies=list(spec.dependencies),
        )
        await self.manager.create(session)
        return RouteResult(handled=True, message="Session created",
                           data={"session": serialize_session(self.manager.get(session.id))})

    async def _session_get(self, request: ClaudeWebhookRequest) -> RouteResult:
        session = self.manager.get(self._session_id(request))
        return RouteResult(handled=True, message="Session found", data={"session": serialize_session(session)})

    async def _session_list(self, request: ClaudeWebhookRequest) -> RouteResult:
        sessions = self.manager.list(SessionFilter(orchestration_id=request.orchestration_id))
        return RouteResult(handled=True, message=f"Found {len(sessions)} sessions",
                           data={"sessions": [serialize_session(s) for s in sessions]})

    async def _session_start(self, request: ClaudeWebhookRequest) -> RouteResult:
        session_id = self._session_id(request)
        session = await self.manager.start(session_id)
        data: Dict[str, Any] = {"session": serialize_session(session)}
        if session.status == SessionStatus.QUEUED:
            data["waitingFor"] = self.manager.unmet_dependencies(session_id)
            return RouteResult(handled=True, message="Session queued, waiting for dependencies", data=data)
        if session.status == SessionStatus.FAILED:
            return RouteResult(handled=True, message=session.error or "Session failed", data=data)
        return RouteResult(handled=True, message="Session started", data=data)

    async def _session_output(self, request: ClaudeWebhookRequest) -> RouteResult:
        session = self.manager.get(self._session_id(request))
        output = None
        if session.output is not None:
            output = SessionOutputSchema.model_validate(session.output, from_attributes=True).model_dump(
                by_alias=True, mode="json",
            )
        return RouteResult(handled=True, message="Session output",
                           data={"sessionId": session.id, "status": session.status.value, "output": output})

    async def _session_stop(self, request: ClaudeWebhookRequest) -> RouteResult:
        session = await self.manager.stop(self._session_id(request))
        return RouteResult(handled=True, message="Session stopped", data={"session": serialize_session(session)})
