"""Application Configuration using Pydantic Settings."""

import os
from pathlib import Path
from typing import List
from urllib.parse import urlparse

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_env_file() -> str:
    """
    Determine which .env file to load based on APP_ENV.

    Returns:
        Path to the .env file to load
    """
    app_env = os.getenv("APP_ENV", "development")
    base_dir = Path(__file__).parent.parent.parent  # backend/

    if app_env in ("test", "production"):
        env_file = base_dir / f".env.{app_env}"
        if env_file.exists():
            return str(env_file)

    return str(base_dir / ".env")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=get_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "CostGuard"
    APP_ENV: str = "development"
    DEBUG: bool = True
    API_V1_PREFIX: str = "/api/v1"

    # Database
    # Empty means the recommendation store is not configured (requests get 401)
    DATABASE_URL: str = ""
    DATABASE_ECHO: bool = False

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    # CORS
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_MAX_AGE: int = 600  # Preflight cache duration in seconds

    # Control plane ("inventory" applies actions to the cloud_resources table,
    # "aws" calls the real AWS APIs)
    CONTROL_PLANE: str = "inventory"
    CONTROL_PLANE_TIMEOUT_SECONDS: float = 30.0
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_DEFAULT_REGION: str = "us-east-1"

    # Execution
    EXECUTION_LEASE_SECONDS: int = 300
    # "automated" lets the drift tick execute auto-safe detections directly
    EXECUTION_MODE: str = "manual"
    EXECUTED_BY_DEFAULT: str = "auto-safe-agent"

    # Drift tick
    DRIFT_TICK_INTERVAL_MINUTES: int = 15
    RECOMMENDATION_EXPIRY_DAYS: int | None = None  # None disables expiry

    # Waste detector
    DETECTOR_URL: str = ""
    DETECTOR_TIMEOUT_SECONDS: float = 60.0

    # AI explanations (Anthropic)
    ANTHROPIC_API_KEY: str = ""
    EXPLAIN_MODEL: str = "claude-haiku-4-5-20250818"
    EXPLAIN_MAX_TOKENS: int = 600

    # Error Tracking (Sentry)
    SENTRY_DSN: str = ""
    SENTRY_ENVIRONMENT: str = "development"
    SENTRY_TRACES_SAMPLE_RATE: float = 0.1
    SENTRY_PROFILES_SAMPLE_RATE: float = 0.1

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_EXECUTE: str = "20/minute"  # Executions touch the control plane
    RATE_LIMIT_DRIFT_TICK: str = "6/minute"
    RATE_LIMIT_BULK_POLICY: str = "10/minute"
    RATE_LIMIT_API_DEFAULT: str = "100/minute"

    @field_validator("CONTROL_PLANE")
    @classmethod
    def validate_control_plane(cls, v: str) -> str:
        """Only the inventory and aws control planes exist."""
        v = v.strip().lower()
        if v not in ("inventory", "aws"):
            raise ValueError(f"CONTROL_PLANE must be 'inventory' or 'aws', got '{v}'")
        return v

    @field_validator("EXECUTION_MODE")
    @classmethod
    def validate_execution_mode(cls, v: str) -> str:
        """Manual only creates recommendations; automated also runs auto-safe actions."""
        v = v.strip().lower()
        if v not in ("manual", "automated"):
            raise ValueError(f"EXECUTION_MODE must be 'manual' or 'automated', got '{v}'")
        return v

    @field_validator("RECOMMENDATION_EXPIRY_DAYS", mode="before")
    @classmethod
    def parse_expiry_days(cls, v: str | int | None) -> int | None:
        """Treat empty strings and non-positive values as disabled."""
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        v = int(v)
        return v if v > 0 else None

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def parse_allowed_origins(cls, v: str | List[str]) -> List[str]:
        """Parse allowed origins from string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator("ALLOWED_ORIGINS", mode="after")
    @classmethod
    def validate_cors_origins(cls, origins: List[str], info) -> List[str]:
        """
        Validate CORS origins.

        Rules:
        1. No wildcards
        2. Valid URL format (scheme://host[:port])
        3. In production: HTTPS only (except localhost/127.0.0.1)

        Raises:
            ValueError: If any origin violates these rules
        """
        if not origins:
            raise ValueError("ALLOWED_ORIGINS cannot be empty. At least one origin must be specified.")

        is_production = info.data.get("APP_ENV", "development") == "production"
        validated_origins = []

        for origin in origins:
            origin = origin.strip()
            if not origin:
                raise ValueError("CORS origin cannot be empty or whitespace-only")

            if "*" in origin:
                raise ValueError(
                    f"CORS origin '{origin}' contains wildcard '*'. "
                    "Specify exact domains instead."
                )

            parsed = urlparse(origin)
            if not parsed.scheme or not parsed.netloc:
                raise ValueError(
                    f"CORS origin '{origin}' must look like scheme://host. "
                    f"Example: https://costguard.example.com"
                )

            if is_production:
                is_localhost = parsed.netloc.startswith(("localhost", "127.0.0.1"))
                if parsed.scheme != "https" and not is_localhost:
                    raise ValueError(
                        f"CORS origin '{origin}' must use HTTPS in production. "
                        f"Change to: https://{parsed.netloc}"
                    )

            validated_origins.append(origin)

        return validated_origins


# Create global settings instance
settings = Settings()  # type: ignore
