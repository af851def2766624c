import logging
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
    }

    # Generation backend (Gemini)
    GEMINI_API_KEY: str | None = Field(default=None, description="API key for the Gemini generation backend")
    TEXT_MODEL: str = Field(default="gemini-2.5-pro", description="Model for planning, analysis and audit")
    FAST_MODEL: str = Field(default="gemini-2.5-flash", description="Model for trend summaries and prompt refinement")
    IMAGE_MODEL: str = Field(default="gemini-2.5-flash-image", description="Model for image generation")

    # Per-call timeouts by latency class
    FAST_TIMEOUT_SECONDS: float = Field(default=30.0)
    ANALYSIS_TIMEOUT_SECONDS: float = Field(default=90.0)
    AUDIT_TIMEOUT_SECONDS: float = Field(default=45.0)
    IMAGE_TIMEOUT_SECONDS: float = Field(default=600.0)

    # Retry policy for transient backend failures
    RETRY_ATTEMPTS: int = Field(default=3, description="Total attempts per backend call")
    RETRY_BASE_SECONDS: float = Field(default=1.0, description="First backoff delay, doubled each attempt")
    RETRY_JITTER_SECONDS: float = Field(default=1.0, description="Upper bound of random jitter added to each delay")

    # Orchestration
    ORCHESTRATION_STRATEGY: str = Field(default="planner", description="planner | agent_loop")
    AUDIT_PASS_THRESHOLD: int = Field(default=70, description="Compliance score needed to pass in the planner path")
    AGENT_LOOP_PASS_THRESHOLD: int = Field(default=90, description="Compliance score needed to pass in the agent loop")
    AGENT_LOOP_MAX_ITERATIONS: int = Field(default=8, description="Tool-call cap for the agent loop")
    EXECUTOR_MAX_CONCURRENCY: int = Field(default=1, description="Ready tasks run concurrently when > 1")
    MAX_CANVAS_IMAGES: int = Field(default=10, description="Images sent to the brand analyst per request")

    # Transient image store
    IMAGE_STORE_TTL_SECONDS: int = Field(default=600)
    IMAGE_SWEEP_INTERVAL_SECONDS: int = Field(default=60)
    REDIS_URL: str | None = Field(default=None, description="Redis connection URL for the image store")

    # Document store
    DATABASE_URL: str = Field(default="sqlite+aiosqlite:///./studio.db")
    DB_ECHO: bool = Field(default=False)

    # CORS / web client
    CORS_ALLOW_ORIGINS: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    # Runtime
    STUDIO_ENV: str = Field(default="dev")
    DEBUG: bool = Field(default=False)

    def validate_production_config(self) -> None:
        """Validate configuration for production environments.

        Call this at startup so a misconfigured deployment fails fast.

        Raises:
            RuntimeError: If configuration is invalid
        """
        if self.STUDIO_ENV != "production":
            return

        if not self.GEMINI_API_KEY:
            raise RuntimeError("CRITICAL: GEMINI_API_KEY must be set in production.")

        if "*" in self.CORS_ALLOW_ORIGINS:
            raise RuntimeError(
                "CRITICAL: CORS_ALLOW_ORIGINS cannot be '*' in production. "
                "Specify exact origins."
            )

        if "http://localhost:3000" in self.CORS_ALLOW_ORIGINS:
            logging.getLogger(__name__).warning(
                "WARNING: CORS_ALLOW_ORIGINS contains localhost - update for production"
            )

        if self.ORCHESTRATION_STRATEGY not in ("planner", "agent_loop"):
            raise RuntimeError(f"CRITICAL: unknown ORCHESTRATION_STRATEGY '{self.ORCHESTRATION_STRATEGY}'")


settings = Settings()
