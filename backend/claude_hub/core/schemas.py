"""
Claude Hub - Pydantic Schemas
=============================

Request and response schemas for the HTTP surface, plus the on-disk
artifact document.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from claude_hub.core.models import SessionStatus, SessionType


# ==========================================================================
# Base Schemas
# ==========================================================================

class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class CamelSchema(BaseModel):
    """camelCase on the wire, snake_case in Python. Strings kept verbatim."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


# ==========================================================================
# Artifacts
# ==========================================================================

class ArtifactMetadata(CamelSchema):
    output_length: int
    saved_at: datetime
    container_name: Optional[str] = None
    execution_time_ms: Optional[int] = None
    is_pull_request: bool = False
    branch_name: Optional[str] = None


class Artifact(CamelSchema):
    """One persisted execution record. Immutable once written."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    repository: str
    issue_number: Optional[int] = None
    operation_type: str
    command: str
    output: str
    metadata: ArtifactMetadata


# ==========================================================================
# Direct command API
# ==========================================================================

class ClaudeCommandRequest(CamelSchema):
    repo_full_name: str = Field(
        ...,
        validation_alias=AliasChoices("repoFullName", "repository", "repo_full_name"),
    )
    command: str = Field(..., min_length=1)
    issue_number: Optional[int] = None
    is_pull_request: bool = False
    branch_name: Optional[str] = None
    auth_token: Optional[str] = None


class ClaudeCommandResponse(CamelSchema):
    message: str
    response: str
    context: Dict[str, Any] = Field(default_factory=dict)


# ==========================================================================
# Sessions / orchestration
# ==========================================================================

class ProjectSchema(CamelSchema):
    repository: str
    requirements: str
    context: Optional[str] = None
    branch: Optional[str] = None


class StrategySchema(CamelSchema):
    phases: Optional[List[SessionType]] = None
    dependency_mode: Optional[Literal["sequential", "wait_for_core", "parallel"]] = None
    timeout: Optional[int] = Field(None, gt=0, description="Per-session lifetime in ms")


class SessionCreateSchema(CamelSchema):
    id: Optional[str] = None
    type: SessionType = SessionType.IMPLEMENTATION
    project: ProjectSchema
    dependencies: List[str] = Field(default_factory=list)


class SessionArtifactSchema(CamelSchema):
    type: str
    path: Optional[str] = None
    sha: Optional[str] = None


class SessionOutputSchema(CamelSchema):
    logs: List[str] = Field(default_factory=list)
    artifacts: List[SessionArtifactSchema] = Field(default_factory=list)
    summary: str = ""
    next_steps: List[str] = Field(default_factory=list)


class SessionSchema(CamelSchema):
    id: str
    type: SessionType
    status: SessionStatus
    project: ProjectSchema
    dependencies: List[str]
    container_id: Optional[str] = None
    claude_session_id: Optional[str] = None
    output: Optional[SessionOutputSchema] = None
    error: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ClaudeWebhookRequest(CamelSchema):
    """Body of POST /webhooks/claude."""
    type: str
    project: Optional[ProjectSchema] = None
    strategy: Optional[StrategySchema] = None
    session_id: Optional[str] = None
    orchestration_id: Optional[str] = None
    session: Optional[SessionCreateSchema] = None


class WebhookResponse(BaseSchema):
    success: bool = True
    message: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


# ==========================================================================
# Misc
# ==========================================================================

class ErrorResponse(BaseSchema):
    """Error response schema."""

    error: str
    detail: Optional[str] = None
    code: Optional[str] = None
    error_reference: Optional[str] = Field(None, serialization_alias="errorReference")
    timestamp: Optional[str] = None


class HealthResponse(BaseSchema):
    """Health check response."""

    status: str
    version: str
    environment: str
    sessions: int
