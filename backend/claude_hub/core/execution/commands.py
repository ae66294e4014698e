"""
Command Processor
=================

Pipeline for a single agent invocation:

    validate -> prompt -> environment -> launch spec -> execute
             -> sanitize -> artifact (background) -> result

Execution failures are logged in full (sanitized) under a fresh error id
and re-raised as CommandFailed carrying only that id and a timestamp.
"""

from datetime import datetime, timezone
from typing import Dict, Optional

import structlog

from claude_hub.core.artifacts import ArtifactStore
from claude_hub.core.config import Settings
from claude_hub.core.credentials import CredentialVault
from claude_hub.core.exceptions import CommandFailed, ConfigurationError, ExecutionFailure, ImageMissing
from claude_hub.core.execution.executor import ContainerExecutor, build_launch_spec, container_name_for
from claude_hub.core.execution.prompts import PromptContext, build_prompt
from claude_hub.core.models import CommandRequest, ExecutionResult
from claude_hub.core.sanitize import (
    new_error_reference,
    redact,
    sanitize_bot_mentions,
    validate_issue_number,
    validate_ref,
    validate_repository,
)
from claude_hub.core.schemas import Artifact, ArtifactMetadata

logger = structlog.get_logger()


def build_environment(
    request: CommandRequest,
    github_token: str,
    anthropic_api_key: str,
) -> Dict[str, str]:
    """Container environment contract. COMMAND is added by the executor."""
    return {
        "REPO_FULL_NAME": request.repo_full_name,
        "ISSUE_NUMBER": str(request.issue_number) if request.issue_number is not None else "",
        "IS_PULL_REQUEST": "true" if request.is_pull_request else "false",
        "BRANCH_NAME": request.branch_name or "",
        "OPERATION_TYPE": request.operation_type.value,
        "GITHUB_TOKEN": github_token,
        "ANTHROPIC_API_KEY": anthropic_api_key,
    }


class CommandProcessor:
    """
    Turns a CommandRequest into a sanitized agent response.

    Usage:
        processor = CommandProcessor(settings, vault, executor, artifacts)
        result = await processor.process(request)
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

    def validate(self, request: CommandRequest) -> None:
        validate_repository(request.repo_full_name)
        validate_issue_number(request.issue_number)
        validate_ref(request.branch_name)

    async def process(self, request: CommandRequest) -> ExecutionResult:
        self.validate(request)

        github_token = self.vault.get("GITHUB_TOKEN")
        if not github_token:
            raise ConfigurationError("GITHUB_TOKEN is not configured")

        prompt = build_prompt(
            request.operation_type,
            PromptContext(
                repo_full_name=request.repo_full_name,
                command=request.command,
                issue_number=request.issue_number,
                is_pull_request=request.is_pull_request,
                branch_name=request.branch_name,
                bot_username=self.settings.bot_mention or "ClaudeBot",
            ),
        )
        environment = build_environment(
            request,
            github_token=github_token,
            anthropic_api_key=self.vault.get("ANTHROPIC_API_KEY") or "",
        )
        spec = build_launch_spec(
            self.settings,
            container_name=container_name_for(request.repo_full_name),
            environment=environment,
        )

        logger.info(
            "Processing Claude command",
            repo=request.repo_full_name,
            issue=request.issue_number,
            operation_type=request.operation_type.value,
            is_pull_request=request.is_pull_request,
            container=spec.container_name,
        )

        try:
            result = await self.executor.execute(spec, prompt, self.settings.CONTAINER_LIFETIME_MS)
        except (ExecutionFailure, ImageMissing) as e:
            reference = new_error_reference()
            logger.error(
                "Claude command failed",
                error_id=reference.error_id,
                error_type=type(e).__name__,
                error=redact(str(e), self.vault.known_values()),
                detail=getattr(e, "detail", ""),
                container=spec.container_name,
                repo=request.repo_full_name,
                issue=request.issue_number,
            )
            raise CommandFailed(reference.message, reference.error_id, reference.timestamp) from None

        result.stdout = sanitize_bot_mentions(result.stdout, self.settings.BOT_USERNAME)

        if self.artifacts is not None:
            self.artifacts.save_in_background(self._artifact(request, result))

        return result

    def _artifact(self, request: CommandRequest, result: ExecutionResult) -> Artifact:
        now = datetime.now(timezone.utc)
        return Artifact(
            timestamp=now,
            repository=request.repo_full_name,
            issue_number=request.issue_number,
            operation_type=request.operation_type.value,
            command=redact(request.command, self.vault.known_values()),
            output=result.stdout,
            metadata=ArtifactMetadata(
                output_length=len(result.stdout),
                saved_at=now,
                container_name=result.container_name,
                execution_time_ms=result.execution_time_ms,
                is_pull_request=request.is_pull_request,
                branch_name=request.branch_name,
            ),
        )
