"""
Claude Hub - Direct Command API
===============================

POST /claude runs one agent command against a repository and returns the
sanitized response. When CLAUDE_API_AUTH_REQUIRED is set, the caller must
present CLAUDE_API_AUTH_TOKEN either as ``authToken`` in the body or as a
bearer token.
"""

import hmac
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header

from claude_hub.api.deps import get_command_processor, get_settings, get_vault
from claude_hub.api.webhooks import verify_bearer
from claude_hub.core.config import Settings
from claude_hub.core.credentials import CredentialVault
from claude_hub.core.exceptions import WebhookVerificationError
from claude_hub.core.execution.commands import CommandProcessor
from claude_hub.core.models import CommandRequest
from claude_hub.core.schemas import ClaudeCommandRequest, ClaudeCommandResponse

logger = structlog.get_logger()

router = APIRouter(tags=["claude"])


def _authorized(body_token: Optional[str], authorization: Optional[str], expected: Optional[str]) -> bool:
    if not expected:
        return False
    if body_token:
        return hmac.compare_digest(body_token.encode(), expected.encode())
    return verify_bearer(authorization, expected)


@router.post("/claude", response_model=ClaudeCommandResponse, response_model_by_alias=True)
async def run_command(
    body: ClaudeCommandRequest,
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
    vault: CredentialVault = Depends(get_vault),
    processor: CommandProcessor = Depends(get_command_processor),
) -> ClaudeCommandResponse:
    """Run a Claude command directly, outside any webhook."""
    if settings.CLAUDE_API_AUTH_REQUIRED:
        if not _authorized(body.auth_token, authorization, vault.get("CLAUDE_API_AUTH_TOKEN")):
            logger.warning("Rejected direct command with invalid token", repo=body.repo_full_name)
            raise WebhookVerificationError("Invalid authentication token")

    logger.info("Direct Claude command", repo=body.repo_full_name, issue=body.issue_number)
    result = await processor.process(CommandRequest(
        repo_full_name=body.repo_full_name,
        command=body.command,
        issue_number=body.issue_number,
        is_pull_request=body.is_pull_request,
        branch_name=body.branch_name,
    ))

    return ClaudeCommandResponse(
        message="Command processed successfully",
        response=result.stdout,
        context={
            "repo": body.repo_full_name,
            "issue": body.issue_number,
            "isPullRequest": body.is_pull_request,
            "branch": body.branch_name,
        },
    )
