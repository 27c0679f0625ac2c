"""Triage service configuration using pydantic-settings.

This module defines the TriageSettings class that reads configuration from
environment variables with the TRIAGE_ prefix. Values are loaded once at
startup and treated as immutable for the lifetime of the process.
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TriageSettings(BaseSettings):
    """Triage service configuration from environment variables.

    All environment variables are prefixed with TRIAGE_ (e.g.,
    TRIAGE_GITHUB_APP_ID).

    Required fields (must be set via environment variables):
    - github_app_id: GitHub App identifier, the JWT issuer
    - github_installation_id: Installation the access tokens are scoped to
    - github_private_key: PEM-encoded RSA key used to sign the app JWT
    - github_webhook_secret: Shared secret for webhook HMAC signatures
    - llm_url: URL of the OpenAI-compatible chat completion endpoint
    """

    model_config = SettingsConfigDict(
        env_prefix="TRIAGE_",
        case_sensitive=False,
        frozen=True,
    )

    # -------------------------------------------------------------------------
    # GitHub App Configuration
    # -------------------------------------------------------------------------
    github_app_id: str

    github_installation_id: str

    github_private_key: str

    github_webhook_secret: str

    # Base URL for GitHub API (supports GitHub Enterprise)
    github_base_url: str = "https://api.github.com"

    # -------------------------------------------------------------------------
    # LLM Configuration
    # -------------------------------------------------------------------------
    llm_url: str

    llm_model: str = "gpt-4o-mini"

    # vLLM and most local endpoints ignore the key
    llm_api_key: str = "not-needed"

    llm_temperature: float = 0.2

    llm_timeout_seconds: float = 60.0

    # -------------------------------------------------------------------------
    # Agent Loop Bounds
    # -------------------------------------------------------------------------
    max_messages: int = 10

    max_steps: int = 10

    # -------------------------------------------------------------------------
    # Outbound HTTP
    # -------------------------------------------------------------------------
    request_timeout_seconds: float = 10.0

    max_redirects: int = 5

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"

    port: int = 8080

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator(
        "github_app_id",
        "github_installation_id",
        "github_webhook_secret",
    )
    @classmethod
    def validate_not_empty(cls, v: str, info) -> str:
        """Validate that required GitHub identifiers are not empty."""
        if not v or not v.strip():
            raise ValueError(f"{info.field_name} cannot be empty")
        return v.strip()

    @field_validator("github_private_key")
    @classmethod
    def validate_private_key(cls, v: str) -> str:
        """Validate the private key and unescape single-line PEM values.

        Keys passed through env files often carry literal ``\\n`` sequences
        instead of newlines.
        """
        if not v or not v.strip():
            raise ValueError("github_private_key cannot be empty")
        key = v.replace("\\n", "\n").strip()
        if "PRIVATE KEY" not in key:
            raise ValueError("github_private_key must be a PEM-encoded key")
        return key

    @field_validator("llm_url", "github_base_url")
    @classmethod
    def validate_url(cls, v: str, info) -> str:
        """Validate that URLs have an http(s) scheme."""
        if not v or not v.strip():
            raise ValueError(f"{info.field_name} cannot be empty")
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"{info.field_name} must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("llm_temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        if not 0.0 <= v <= 2.0:
            raise ValueError("llm_temperature must be between 0 and 2")
        return v

    @field_validator("max_messages")
    @classmethod
    def validate_max_messages(cls, v: int) -> int:
        """The seed conversation alone holds two messages."""
        if v < 3:
            raise ValueError("max_messages must be at least 3")
        return v

    @field_validator("max_steps")
    @classmethod
    def validate_max_steps(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_steps must be at least 1")
        return v

    @field_validator("request_timeout_seconds", "llm_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float, info) -> float:
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return v

    @field_validator("max_redirects")
    @classmethod
    def validate_max_redirects(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_redirects cannot be negative")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v


def get_settings() -> TriageSettings:
    """Create and return a TriageSettings instance.

    Returns:
        TriageSettings: Configured settings instance.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    return TriageSettings()
