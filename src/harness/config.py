"""Harness configuration using pydantic-settings.

This module defines the HarnessSettings class that reads configuration
from environment variables with the HARNESS_ prefix. The workspace path
also honours GITHUB_WORKSPACE so the harness works unchanged inside a
GitHub Actions runner.
"""

from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class HarnessSettings(BaseSettings):
    """Agent harness configuration from environment variables.

    All environment variables are prefixed with HARNESS_ (e.g., HARNESS_GITHUB_TOKEN).

    Required fields (must be set via environment variables):
    - github_token: GitHub API token for reactions, labels and comments
    """

    model_config = SettingsConfigDict(
        env_prefix="HARNESS_",
        case_sensitive=False,
        populate_by_name=True,
    )

    # -------------------------------------------------------------------------
    # GitHub Configuration
    # -------------------------------------------------------------------------
    github_token: str

    # Base URL for GitHub API (supports GitHub Enterprise)
    github_base_url: str = "https://api.github.com"

    # Login of the bot account, used to find its own reactions and comments
    bot_login: Optional[str] = None

    # Phrase a comment must contain to trigger the agent
    trigger_phrase: str = "@fro-bot"

    # -------------------------------------------------------------------------
    # Agent Configuration
    # -------------------------------------------------------------------------
    workspace_path: str = Field(
        default=".",
        validation_alias=AliasChoices("HARNESS_WORKSPACE_PATH", "GITHUB_WORKSPACE"),
    )

    agent: str = "build"

    # "provider/model", empty means the backend default
    model: Optional[str] = None

    # Hard limit for one invocation, 0 disables the deadline
    timeout_seconds: int = 1800

    # "async" sends prompt_async and polls, "sync" waits on the message call
    prompt_mode: str = "async"

    custom_prompt: Optional[str] = None

    # -------------------------------------------------------------------------
    # OpenCode Server Configuration
    # -------------------------------------------------------------------------
    opencode_path: str = "opencode"
    server_hostname: str = "127.0.0.1"
    server_port: int = 4096

    # Attach to an already running server instead of spawning one
    server_url: Optional[str] = None

    server_startup_timeout_seconds: float = 30.0
    ping_attempts: int = 5
    ping_delay_seconds: float = 0.5

    # Keep one server alive for the lifetime of the service
    reuse_backend: bool = True

    # -------------------------------------------------------------------------
    # Retry and Polling Configuration
    # -------------------------------------------------------------------------
    max_prompt_attempts: int = 3
    retry_delay_seconds: float = 5.0
    poll_interval_seconds: float = 0.5
    poll_max_seconds: float = 1800.0
    error_grace_cycles: int = 3
    event_shutdown_grace_seconds: float = 2.0
    initial_activity_timeout_seconds: float = 90.0

    # -------------------------------------------------------------------------
    # Artifact Configuration
    # -------------------------------------------------------------------------
    prompt_artifacts_enabled: bool = False
    log_path: str = "/tmp/opencode-logs"

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    log_json: bool = True

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("github_token")
    @classmethod
    def validate_github_token(cls, v: str) -> str:
        """Validate that GitHub token is not empty."""
        if not v or not v.strip():
            raise ValueError("github_token cannot be empty")
        return v.strip()

    @field_validator("model")
    @classmethod
    def validate_model(cls, v: Optional[str]) -> Optional[str]:
        """Validate the provider/model format, treating blank as unset."""
        if v is None or not v.strip():
            return None
        provider, sep, model_id = v.strip().partition("/")
        if not sep or not provider or not model_id:
            raise ValueError("model must be in the form provider/model")
        return v.strip()

    @field_validator("agent")
    @classmethod
    def validate_agent(cls, v: str) -> str:
        """Validate that the agent name is not empty."""
        if not v or not v.strip():
            raise ValueError("agent cannot be empty")
        return v.strip()

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        """Validate that the timeout is not negative (0 means unlimited)."""
        if v < 0:
            raise ValueError("timeout_seconds must be 0 or greater")
        return v

    @field_validator("prompt_mode")
    @classmethod
    def validate_prompt_mode(cls, v: str) -> str:
        """Validate that the prompt mode is async or sync."""
        mode = v.strip().lower()
        if mode not in ("async", "sync"):
            raise ValueError("prompt_mode must be 'async' or 'sync'")
        return mode

    @field_validator("server_url")
    @classmethod
    def validate_server_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate the attach URL format, treating blank as unset."""
        if v is None or not v.strip():
            return None
        if not v.startswith(("http://", "https://")):
            raise ValueError("server_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("max_prompt_attempts", "ping_attempts", "error_grace_cycles")
    @classmethod
    def validate_positive_count(cls, v: int) -> int:
        """Validate that attempt and cycle counts are at least 1."""
        if v < 1:
            raise ValueError("attempt and cycle counts must be at least 1")
        return v

    @field_validator(
        "retry_delay_seconds",
        "poll_interval_seconds",
        "poll_max_seconds",
        "ping_delay_seconds",
        "event_shutdown_grace_seconds",
    )
    @classmethod
    def validate_non_negative_duration(cls, v: float) -> float:
        """Validate that durations are not negative."""
        if v < 0:
            raise ValueError("durations must be 0 or greater")
        return v

    @field_validator("server_port", "port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @property
    def resolved_workspace(self) -> Path:
        """Absolute path of the working directory handed to the agent."""
        return Path(self.workspace_path).expanduser().resolve()


def get_settings() -> HarnessSettings:
    """Create and return HarnessSettings instance.

    Returns:
        HarnessSettings: Configured settings instance.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    return HarnessSettings()
