"""Bug fixer configuration using pydantic-settings.

This module defines the BugFixerSettings class that reads configuration
from environment variables with the BUGFIXER_ prefix (or a local .env
file). Required fields must be set for the service to start.
"""

from pathlib import Path
from typing import List, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BugFixerSettings(BaseSettings):
    """Bug fixer configuration from environment variables.

    All environment variables are prefixed with BUGFIXER_ (e.g., BUGFIXER_GITHUB_TOKEN).

    Required fields (must be set via environment variables):
    - github_token: GitHub API token for reading issues and opening PRs
    - llm_url: Base URL of the OpenAI-compatible LLM endpoint
    - llm_api_key: API key for the LLM endpoint
    - smtp_host, email_from, email_to: Mail transport for approval emails
    - validation_url: Public base URL of this service, used in email links
    """

    model_config = SettingsConfigDict(
        env_prefix="BUGFIXER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # GitHub Configuration
    # -------------------------------------------------------------------------
    # GitHub API token for issues, branches, PRs and authenticated clones
    github_token: str

    # Base URL for GitHub API (supports GitHub Enterprise)
    github_base_url: str = "https://api.github.com"

    # Web URL used to build clone URLs
    github_web_url: str = "https://github.com"

    # -------------------------------------------------------------------------
    # LLM Configuration
    # -------------------------------------------------------------------------
    # Base URL of the OpenAI-compatible endpoint
    llm_url: str

    # API key for the LLM endpoint
    llm_api_key: str

    # Model name for fix proposals
    llm_model: str = "kimi-k2.5"

    # Sampling temperature for fix proposals
    llm_temperature: float = 0.2

    # Maximum completion tokens for a single proposal
    llm_max_tokens: int = 4000

    # Client-level timeout for a single LLM call
    llm_timeout_seconds: float = 120.0

    # -------------------------------------------------------------------------
    # Email Configuration
    # -------------------------------------------------------------------------
    smtp_host: str
    smtp_port: int = 587

    # True selects implicit TLS (SMTPS); False uses STARTTLS when offered
    smtp_secure: bool = False

    smtp_user: str = ""
    smtp_password: str = ""
    smtp_timeout_seconds: float = 30.0
    email_from: str
    email_to: str

    # -------------------------------------------------------------------------
    # Application Configuration
    # -------------------------------------------------------------------------
    # Public base URL of this service; approve/reject links point here
    validation_url: str

    # Base path for per-repository working trees
    workspace_base_path: str = "/var/lib/bugfixer/repos"

    # Labels used to filter issues during scans (empty = all open issues)
    scan_labels: List[str] = []

    # Validation stage timeouts
    lint_timeout_seconds: int = 120
    build_timeout_seconds: int = 300
    test_timeout_seconds: int = 300

    # Timeout for individual git commands (clone, fetch, push)
    git_timeout_seconds: int = 300

    # Commit identity for applied fixes
    git_author_name: str = "Pluggable Bug Fixer"
    git_author_email: str = "bugfixer@users.noreply.github.com"

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("github_token", "llm_api_key", "smtp_host", "email_from", "email_to")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Validate that required string values are not blank."""
        if not v or not v.strip():
            raise ValueError("value cannot be empty")
        return v

    @field_validator("llm_url", "validation_url", "github_base_url", "github_web_url")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        """Validate that URL settings use http(s) and drop trailing slashes."""
        if not v or not v.strip():
            raise ValueError("URL cannot be empty")
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("workspace_base_path")
    @classmethod
    def validate_workspace_path(cls, v: str) -> str:
        """Validate that workspace base path is an absolute path."""
        if not Path(v).is_absolute():
            raise ValueError("workspace_base_path must be an absolute path")
        return v

    @field_validator(
        "lint_timeout_seconds",
        "build_timeout_seconds",
        "test_timeout_seconds",
        "git_timeout_seconds",
    )
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        """Validate that subprocess timeouts are positive."""
        if v < 1:
            raise ValueError("timeouts must be at least 1 second")
        return v

    @field_validator("port", "smtp_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v


def get_settings() -> BugFixerSettings:
    """Create and return BugFixerSettings instance.

    Returns:
        BugFixerSettings: Configured settings instance.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    return BugFixerSettings()
