"""
Claude Hub Webhooks
===================

Inbound event endpoints:

- POST /webhooks/github   GitHub events, signed with HMAC-SHA256
                          (``X-Hub-Signature-256``) using GITHUB_WEBHOOK_SECRET.
- POST /webhooks/claude   Session and orchestration commands, authorized
                          with ``Authorization: Bearer <CLAUDE_WEBHOOK_SECRET>``.

Setup:
1. Go to GitHub repo → Settings → Webhooks → Add webhook
2. Payload URL: https://your-domain/api/webhooks/github
3. Content type: application/json
4. Secret: the value of GITHUB_WEBHOOK_SECRET
5. Events: Issues, Issue comments, Pull request review comments, Check suites
"""

import hashlib
import hmac
import json
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, Request

from claude_hub.api.deps import get_event_router, get_settings, get_vault
from claude_hub.core.config import Settings
from claude_hub.core.credentials import CredentialVault
from claude_hub.core.exceptions import ValidationError, WebhookVerificationError
from claude_hub.core.router import EventRouter
from claude_hub.core.schemas import ClaudeWebhookRequest, WebhookResponse

logger = structlog.get_logger()

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


# ==========================================================================
# Verification
# ==========================================================================

def verify_signature(payload: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Verify a GitHub ``sha256=`` webhook signature."""
    if not signature or not secret:
        return False

    expected = "sha256=" + hmac.new(
        secret.encode(),
        payload,
        hashlib.sha256,
    ).hexdigest()

    return hmac.compare_digest(expected, signature)


def verify_bearer(authorization: Optional[str], expected: Optional[str]) -> bool:
    if not authorization or not expected:
        return False
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return False
    return hmac.compare_digest(token.strip().encode(), expected.encode())


async def require_claude_webhook_token(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
    vault: CredentialVault = Depends(get_vault),
) -> None:
    if settings.SKIP_WEBHOOK_VERIFICATION:
        return
    if not verify_bearer(authorization, vault.get("CLAUDE_WEBHOOK_SECRET")):
        logger.warning("Rejected Claude webhook with invalid token")
        raise WebhookVerificationError("Invalid or missing webhook token")


# ==========================================================================
# Endpoints
# ==========================================================================

@router.post("/github", response_model=WebhookResponse)
async def github_webhook(
    request: Request,
    x_hub_signature_256: Optional[str] = Header(None),
    x_github_event: Optional[str] = Header(None),
    x_github_delivery: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
    vault: CredentialVault = Depends(get_vault),
    event_router: EventRouter = Depends(get_event_router),
) -> WebhookResponse:
    """
    Handle GitHub webhook events.

    Supported events:
    - issues (opened): auto-tagging
    - issue_comment / pull_request_review_comment (created): bot commands
    - check_suite (completed): automated PR review
    """
    payload = await request.body()

    if not settings.SKIP_WEBHOOK_VERIFICATION:
        if not verify_signature(payload, x_hub_signature_256, vault.get("GITHUB_WEBHOOK_SECRET")):
            logger.warning("Rejected GitHub webhook with invalid signature", delivery=x_github_delivery)
            raise WebhookVerificationError("Invalid signature")

    if not x_github_event:
        raise ValidationError("Missing X-GitHub-Event header", field="X-GitHub-Event")

    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        raise ValidationError("Request body is not valid JSON") from None
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    result = await event_router.route_github(x_github_event, data)
    logger.info(
        "GitHub webhook processed",
        event=x_github_event,
        delivery=x_github_delivery,
        handled=result.handled,
    )
    return WebhookResponse(success=True, message=result.message, data=result.data or None)


@router.post(
    "/claude",
    response_model=WebhookResponse,
    dependencies=[Depends(require_claude_webhook_token)],
)
async def claude_webhook(
    body: ClaudeWebhookRequest,
    event_router: EventRouter = Depends(get_event_router),
) -> WebhookResponse:
    """Session management and orchestration commands."""
    result = await event_router.route_claude(body)
    return WebhookResponse(success=True, message=result.message, data=result.data or None)
