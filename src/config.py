"""Centralized configuration for the outfit try-on application."""

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class GeminiConfig:
    """Configuration for the remote image generation service."""
    api_key: str = ""
    model: str = "gemini-2.5-flash-image-preview"


@dataclass(frozen=True)
class ProgressConfig:
    """Configuration for the simulated progress readout."""
    interval_ms: int = 100
    seconds_per_job: float = 15.0  # rough duration of one remote call


@dataclass(frozen=True)
class BatchConfig:
    """Configuration for batch execution."""
    max_concurrency: int | None = None  # None means every job is issued at once


@dataclass(frozen=True)
class ServerConfig:
    """Configuration for the web server."""
    sse_queue_size: int = 100
    sse_timeout: float = 5.0  # seconds between keepalives


@dataclass(frozen=True)
class PathConfig:
    """Centralized path configuration for the application."""

    @property
    def root_dir(self) -> Path:
        """Project root directory."""
        return Path(__file__).parent.parent

    @property
    def src_dir(self) -> Path:
        """Source code directory."""
        return self.root_dir / "src"

    @property
    def generated_dir(self) -> Path:
        """Directory for images written by the CLI."""
        return self.root_dir / "generated"


# Singleton path configuration instance
paths = PathConfig()


def _optional_int(value: str | None) -> int | None:
    if value is None or value.strip() == "":
        return None
    return int(value)


@dataclass
class Settings:
    """Application settings, can be overridden via environment variables."""
    gemini: GeminiConfig = field(default_factory=GeminiConfig)
    progress: ProgressConfig = field(default_factory=ProgressConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables with TRYON_ prefix."""
        gemini = GeminiConfig(
            api_key=(
                os.environ.get("TRYON_API_KEY")
                or os.environ.get("GEMINI_API_KEY")
                or os.environ.get("API_KEY")
                or GeminiConfig.api_key
            ),
            model=os.environ.get("TRYON_MODEL", GeminiConfig.model),
        )
        progress = ProgressConfig(
            interval_ms=int(os.environ.get("TRYON_PROGRESS_INTERVAL_MS", ProgressConfig.interval_ms)),
            seconds_per_job=float(os.environ.get("TRYON_SECONDS_PER_JOB", ProgressConfig.seconds_per_job)),
        )
        batch = BatchConfig(
            max_concurrency=_optional_int(os.environ.get("TRYON_MAX_CONCURRENCY")),
        )
        server = ServerConfig(
            sse_queue_size=int(os.environ.get("TRYON_SSE_QUEUE_SIZE", ServerConfig.sse_queue_size)),
            sse_timeout=float(os.environ.get("TRYON_SSE_TIMEOUT", ServerConfig.sse_timeout)),
        )
        return cls(
            gemini=gemini,
            progress=progress,
            batch=batch,
            server=server,
        )


# Global settings instance - use from_env() for environment-aware settings
settings = Settings.from_env()
