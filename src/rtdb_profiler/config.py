"""Configuration management for RTDB Profiler.

Loads settings from environment variables (and .env) using Pydantic.
Secrets such as FIREBASE_TOKEN and SERVICE_ACCOUNT must come from the
environment, never from source.

Usage:
    from rtdb_profiler.config import settings

    print(settings.gcp_project)
    print(settings.profile_duration)
"""

import shlex

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """RTDB Profiler configuration from environment variables.

    Everything is optional: a missing project or credential only fails the
    run that needs it, not the service start.

    Attributes:
        gcp_project: Default project to profile and upload to
        firebase_token: Token passed to the profiler command via --token
        service_account: Service account JSON (inline)
        service_account_path: Local service account file (fallback)
        gcp_access_token: OAuth access token used by the sinks
        bucket_name: Cloud Storage bucket (default: <project>.appspot.com)
        results_prefix: Object path prefix for uploaded results
        log_stream: Cloud Logging log name for result entries
        profile_duration: Default profiling duration (seconds)
        profiler_command: Command prefix that runs the Firebase CLI
        work_dir: Directory for temporary profiler output files
        pipe_output: Mirror profiler output to the service console
        run_interval: Delay between runs in fixed-interval mode (seconds)
        run_timeout: Wall-clock limit for the profiler command (seconds)
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore unknown env vars
    )

    # Project + auth (optional, resolved per run)
    gcp_project: str | None = Field(default=None, description="Default GCP project id")
    firebase_token: str | None = Field(default=None, description="Firebase CLI token")
    service_account: str | None = Field(default=None, description="Service account JSON")
    service_account_path: str = Field(
        default="./serviceAccount.json",
        description="Service account file used when SERVICE_ACCOUNT is unset",
    )
    gcp_access_token: str | None = Field(default=None, description="OAuth access token for sinks")

    # Sinks
    bucket_name: str | None = Field(default=None, description="Cloud Storage bucket override")
    results_prefix: str = Field(
        default="profiler-service-results",
        min_length=1,
        description="Object path prefix for results",
    )
    log_stream: str = Field(
        default="database-profiler",
        min_length=1,
        description="Cloud Logging log name",
    )
    storage_api_url: str = Field(default="https://storage.googleapis.com")
    logging_api_url: str = Field(default="https://logging.googleapis.com")
    http_timeout: float = Field(default=30.0, gt=0, description="Sink request timeout (seconds)")

    # Profiler command
    profile_duration: int = Field(default=30, ge=1, description="Default duration (seconds)")
    profiler_command: str = Field(default="npx firebase", description="Firebase CLI command")
    work_dir: str = Field(default="profiler-output", description="Temporary output directory")
    pipe_output: bool = Field(default=True, description="Mirror command output to console")
    run_timeout: float | None = Field(default=None, gt=0, description="Command timeout (seconds)")

    # Scheduling
    run_interval: float = Field(default=3600.0, gt=0, description="Interval between runs (seconds)")

    # System
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid:
            raise ValueError(f"log_level must be one of {valid}, got {v}")
        return v_upper

    @field_validator("profiler_command")
    @classmethod
    def validate_profiler_command(cls, v: str) -> str:
        """Ensure the command splits into at least one argument."""
        if not shlex.split(v):
            raise ValueError("profiler_command must not be empty")
        return v

    @property
    def command_argv(self) -> list[str]:
        """Profiler command split into an argument vector (no shell)."""
        return shlex.split(self.profiler_command)


# Global settings instance, loaded once at import
settings = Settings()
