"""
Claude Hub - Configuration
==========================

All application settings loaded from environment variables.
Uses pydantic-settings for validation and type conversion.
"""

from functools import lru_cache
from typing import Literal

from pydantic import computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    APP_NAME: str = "Claude Hub"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = "development"
    LOG_LEVEL: str = "INFO"

    # ==========================================================================
    # Bot identity / authorization
    # ==========================================================================
    BOT_USERNAME: str | None = None
    AUTHORIZED_USERS: str = ""
    DEFAULT_AUTHORIZED_USER: str = "admin"

    # ==========================================================================
    # Container launch
    # ==========================================================================
    CLAUDE_CONTAINER_IMAGE: str = "claudecode:latest"
    CLAUDE_DOCKERFILE: str = "Dockerfile.claudecode"
    CLAUDE_BUILD_CONTEXT: str = "."
    CLAUDE_ENTRYPOINT: str = "/scripts/runtime/claudecode-entrypoint.sh"
    CLAUDE_AUTH_HOST_DIR: str | None = None
    CONTAINER_LIFETIME_MS: int = 7_200_000
    DOCKER_BINARY: str = "docker"

    CLAUDE_CONTAINER_MEMORY_LIMIT: str = "2g"
    CLAUDE_CONTAINER_CPU_SHARES: int = 1024
    CLAUDE_CONTAINER_PIDS_LIMIT: int = 256

    # Optional capabilities (NET_ADMIN and SYS_ADMIN are always granted)
    CLAUDE_CONTAINER_CAP_NET_RAW: bool = False
    CLAUDE_CONTAINER_CAP_SYS_TIME: bool = False
    CLAUDE_CONTAINER_CAP_DAC_OVERRIDE: bool = False
    CLAUDE_CONTAINER_CAP_AUDIT_WRITE: bool = False

    # Discouraged escape hatch: replaces the capability set with --privileged
    CLAUDE_CONTAINER_PRIVILEGED: bool = False

    # ==========================================================================
    # Artifacts
    # ==========================================================================
    ARTIFACTS_DIR: str = "./outputs"
    ARTIFACT_RETENTION_DAYS: int = 30
    ARTIFACT_PRUNE_INTERVAL_SECONDS: int = 3600

    # ==========================================================================
    # Automated PR review
    # ==========================================================================
    PR_REVIEW_WAIT_FOR_ALL_CHECKS: bool = True
    PR_REVIEW_TRIGGER_WORKFLOW: str | None = None
    PR_REVIEW_FORCE_ON_SUCCESS: bool = False
    PR_REVIEW_CONDITIONAL_TIMEOUT_MS: int = 300_000
    PR_REVIEW_MAX_WAIT_MS: int = 1_800_000

    # ==========================================================================
    # Sessions
    # ==========================================================================
    SESSION_DEPENDENCY_MODE: Literal["sequential", "wait_for_core", "parallel"] = "parallel"
    SESSION_WORKSPACE_PATH: str = "/home/user/project"

    # ==========================================================================
    # External Services
    # ==========================================================================
    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_TIMEOUT_SECONDS: float = 30.0

    # ==========================================================================
    # Inbound API
    # ==========================================================================
    API_PREFIX: str = "/api"
    CLAUDE_API_AUTH_REQUIRED: bool = False
    SKIP_WEBHOOK_VERIFICATION: bool = False

    @field_validator("BOT_USERNAME")
    @classmethod
    def strip_bot_username(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @computed_field  # type: ignore[misc]
    @property
    def authorized_users(self) -> list[str]:
        users = [u.strip() for u in self.AUTHORIZED_USERS.split(",") if u.strip()]
        return users or [self.DEFAULT_AUTHORIZED_USER]

    @computed_field  # type: ignore[misc]
    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @computed_field  # type: ignore[misc]
    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def bot_mention(self) -> str:
        """Bot handle as it appears in comments, always with a leading @."""
        if not self.BOT_USERNAME:
            return ""
        return self.BOT_USERNAME if self.BOT_USERNAME.startswith("@") else f"@{self.BOT_USERNAME}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
