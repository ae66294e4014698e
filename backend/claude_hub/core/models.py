"""
Claude Hub - Domain Models
==========================

In-memory state for executions, sessions and review decisions.
Nothing here is persisted except through ArtifactStore.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ==========================================================================
# Enums
# ==========================================================================

class SessionType(str, enum.Enum):
    """Kind of agent work a session performs."""
    ANALYSIS = "analysis"
    IMPLEMENTATION = "implementation"
    TESTING = "testing"
    REVIEW = "review"
    COORDINATION = "coordination"


class SessionStatus(str, enum.Enum):
    """Session lifecycle."""
    PENDING = "pending"             # Registered, nothing prepared
    INITIALIZING = "initializing"   # Workspace volume prepared
    QUEUED = "queued"               # Waiting on dependencies
    RUNNING = "running"             # Container executing
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.STOPPED)


class OperationType(str, enum.Enum):
    """Discriminator passed to the container entrypoint."""
    DEFAULT = "default"
    AUTO_TAGGING = "auto-tagging"
    PR_REVIEW = "pr-review"
    SESSION = "session"


class CheckSuiteStatus(str, enum.Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class DecisionOutcome(str, enum.Enum):
    """Result of evaluating CI state for one commit."""
    TRIGGER = "trigger"
    DEFER = "defer"     # Re-evaluated on the next event for this commit
    SKIP = "skip"       # Permanent for this commit


# Conclusions that never block a review
IGNORABLE_CONCLUSIONS = frozenset({"neutral", "skipped"})


# ==========================================================================
# Execution
# ==========================================================================

@dataclass(frozen=True)
class ResourceLimits:
    memory: str = "2g"
    cpu_shares: int = 1024
    pids_limit: int = 256


@dataclass(frozen=True)
class SecurityProfile:
    """
    Launch posture for an agent container.

    When ``privileged`` is set the capability set is always empty; the two
    representations are mutually exclusive.
    """
    privileged: bool = False
    capabilities: frozenset[str] = frozenset()
    resource_limits: ResourceLimits = field(default_factory=ResourceLimits)


@dataclass(frozen=True)
class VolumeMount:
    source: str
    target: str

    def as_arg(self) -> str:
        return f"{self.source}:{self.target}"


@dataclass
class LaunchSpecification:
    """Everything needed to start one container run."""
    container_name: str
    image: str
    entrypoint: str
    environment: Dict[str, str]
    security_profile: SecurityProfile
    volume_mounts: List[VolumeMount] = field(default_factory=list)


@dataclass
class ExecutionResult:
    stdout: str
    recovered_from_logs: bool = False
    container_name: str = ""
    execution_time_ms: int = 0


# ==========================================================================
# Commands
# ==========================================================================

@dataclass
class CommandRequest:
    """A single agent invocation against a repository."""
    repo_full_name: str
    command: str
    issue_number: Optional[int] = None
    is_pull_request: bool = False
    branch_name: Optional[str] = None
    operation_type: OperationType = OperationType.DEFAULT

    @property
    def owner(self) -> str:
        return self.repo_full_name.split("/", 1)[0]

    @property
    def repo(self) -> str:
        return self.repo_full_name.split("/", 1)[1]


# ==========================================================================
# Sessions
# ==========================================================================

@dataclass
class ProjectInfo:
    repository: str
    requirements: str
    context: Optional[str] = None
    branch: Optional[str] = None


@dataclass
class SessionArtifact:
    type: str               # "file" or "commit"
    path: Optional[str] = None
    sha: Optional[str] = None


@dataclass
class SessionOutput:
    logs: List[str] = field(default_factory=list)
    artifacts: List[SessionArtifact] = field(default_factory=list)
    summary: str = "Session completed"
    next_steps: List[str] = field(default_factory=list)


@dataclass
class Session:
    """
    One tracked unit of agent work.

    Mutated only by SessionManager. A session with dependencies never
    reaches RUNNING while any dependency is not COMPLETED.
    """
    id: str
    type: SessionType
    project: ProjectInfo
    dependencies: List[str] = field(default_factory=list)
    status: SessionStatus = SessionStatus.PENDING
    container_id: Optional[str] = None
    claude_session_id: Optional[str] = None
    output: Optional[SessionOutput] = None
    error: Optional[str] = None

    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


# ==========================================================================
# Review
# ==========================================================================

@dataclass(frozen=True)
class PullRequestRef:
    number: int
    head_sha: Optional[str] = None
    head_ref: Optional[str] = None


@dataclass
class CheckSuiteObservation:
    """One CI integration's aggregate state for a commit."""
    id: int
    app_identity: str
    status: CheckSuiteStatus
    head_sha: str
    conclusion: Optional[str] = None
    pull_requests: List[PullRequestRef] = field(default_factory=list)
    check_runs_count: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    app_slug: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.app_identity} (#{self.id})"


@dataclass(frozen=True)
class ReviewPolicy:
    wait_for_all_checks: bool = True
    trigger_workflow: Optional[str] = None
    force_on_success: bool = False
    conditional_timeout_ms: int = 300_000
    max_wait_ms: int = 1_800_000


@dataclass
class ReviewDecision:
    """Recomputed per (PR, commit); never persisted."""
    outcome: DecisionOutcome
    reason: str
    already_reviewed_at_commit: bool = False
    pending: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def should_trigger(self) -> bool:
        return self.outcome == DecisionOutcome.TRIGGER and not self.already_reviewed_at_commit


@dataclass
class ReviewResult:
    pr_number: int
    success: bool
    error: Optional[str] = None
    skipped_reason: Optional[str] = None


@dataclass
class ReviewSummary:
    results: List[ReviewResult] = field(default_factory=list)

    @property
    def reviewed(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success and not r.skipped_reason)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped_reason)

    @property
    def message(self) -> str:
        return f"{self.reviewed} reviewed, {self.failed} failed, {self.skipped} skipped"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.message,
            "results": [
                {
                    "prNumber": r.pr_number,
                    "success": r.success,
                    "error": r.error,
                    "skippedReason": r.skipped_reason,
                }
                for r in self.results
            ],
        }
