"""
Claude Hub - Exceptions
=======================

Error taxonomy shared by every layer. The API layer maps these onto HTTP
status codes; anything else escaping a request becomes an opaque 500.
"""

from typing import Optional


class ClaudeHubError(Exception):
    """Base class for all service errors."""


class ConfigurationError(ClaudeHubError):
    """A required credential or identity is missing. Fatal at startup."""


class ValidationError(ClaudeHubError):
    """Malformed input rejected before anything is executed."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class WebhookVerificationError(ClaudeHubError):
    """Inbound webhook signature or token did not verify."""


# ==========================================================================
# Execution
# ==========================================================================

class ImageMissing(ClaudeHubError):
    """Agent image is absent and the single rebuild attempt failed."""

    def __init__(self, image: str, detail: str = ""):
        super().__init__(f"Container image {image} is not available")
        self.image = image
        self.detail = detail


class ExecutionFailure(ClaudeHubError):
    """
    The agent container did not produce a usable result.

    ``detail`` is already sanitized and safe to log. Callers surfacing
    the failure to users must still go through ``new_error_reference``.
    """

    def __init__(self, message: str, container_name: str = "", detail: str = ""):
        super().__init__(message)
        self.container_name = container_name
        self.detail = detail


class LaunchFailure(ExecutionFailure):
    """Container exited non-zero or could not be started."""

    def __init__(
        self,
        message: str,
        container_name: str = "",
        detail: str = "",
        exit_code: Optional[int] = None,
    ):
        super().__init__(message, container_name=container_name, detail=detail)
        self.exit_code = exit_code


class ExecutionTimeout(ExecutionFailure):
    """Container exceeded its wall-clock lifetime and was killed."""

    def __init__(self, container_name: str, timeout_ms: int):
        super().__init__(
            f"Container {container_name} exceeded lifetime of {timeout_ms}ms",
            container_name=container_name,
        )
        self.timeout_ms = timeout_ms


class ArtifactWriteFailure(ClaudeHubError):
    """Persisting an execution artifact failed. Never fatal."""


# ==========================================================================
# Sessions
# ==========================================================================

class SessionNotFound(ClaudeHubError):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class SessionStateError(ClaudeHubError):
    """Operation not allowed in the session's current status."""


class DependencyCycleError(ValidationError):
    """Session batch declares a dependency cycle or an unknown dependency."""


class CommandFailed(ClaudeHubError):
    """
    Opaque, caller-facing execution error.

    Carries only a correlation id and timestamp; full sanitized detail is in
    the server log under the same id.
    """

    def __init__(self, message: str, error_id: str, timestamp: str):
        super().__init__(message)
        self.error_id = error_id
        self.timestamp = timestamp
