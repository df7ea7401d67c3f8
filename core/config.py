"""
Configuration management for the Mission Console.

Centralizes all configuration including:
- API keys
- Model selections
- Retry policy for quota-limited calls
- Pipeline pacing and output locations
"""

import os
from dataclasses import dataclass, field
from typing import Literal, Optional


@dataclass
class APIConfig:
    """API configuration for the generative backend."""

    # AI Studio keys are exposed as API_KEY in hosted consoles
    google_api_key: str = field(
        default_factory=lambda: os.getenv("GOOGLE_API_KEY") or os.getenv("API_KEY", "")
    )


@dataclass
class ModelConfig:
    """Model selection configuration."""

    script_model: str = field(
        default_factory=lambda: os.getenv("SCRIPT_MODEL", "gemini-3-pro-preview")
    )
    topic_model: str = "gemini-3-flash-preview"
    image_model: str = "gemini-2.5-flash-image"
    speech_model: str = "gemini-2.5-flash-preview-tts"
    speech_voice: str = "Fenrir"

    video_models: list[str] = field(default_factory=lambda: [
        "veo-3.1-fast-generate-preview",  # Faster, cheaper
        "veo-3.1-generate-preview",       # Best quality
    ])
    default_video_model: str = "veo-3.1-fast-generate-preview"


@dataclass
class RetryPolicy:
    """Backoff policy for quota-exhausted calls (all durations in ms)."""
    max_attempts: int = 10
    base_delay_ms: int = 5000  # Exponential seed when the server gives no hint
    max_delay_ms: int = 60000
    safety_margin_ms: int = 2000  # Added on top of a server-suggested delay


@dataclass
class PipelineConfig:
    """Pacing for the segment pipeline and master run."""
    success_cooldown_seconds: float = 2.0
    failure_cooldown_seconds: float = 5.0
    video_poll_interval_seconds: float = 10.0
    output_dir: str = field(default_factory=lambda: os.getenv("MISSION_OUTPUT_DIR", "./output"))


@dataclass
class RenderDefaults:
    """Default render settings for new sessions."""
    resolution: Literal["720p", "1080p"] = "720p"
    aspect_ratio: Literal["16:9", "9:16"] = "16:9"
    fps: str = "24"


@dataclass
class Config:
    """Main configuration class."""

    api: APIConfig = field(default_factory=APIConfig)
    models: ModelConfig = field(default_factory=ModelConfig)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    render: RenderDefaults = field(default_factory=RenderDefaults)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls()

    def validate(self) -> list[str]:
        """Validate configuration and return list of issues."""
        issues = []

        if not self.api.google_api_key:
            issues.append("GOOGLE_API_KEY not configured (needed for every generation)")

        if self.retry.max_attempts < 1:
            issues.append("Retry policy needs at least one attempt")

        if self.models.default_video_model not in self.models.video_models:
            issues.append(f"Unknown default video model: {self.models.default_video_model}")

        return issues


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reload_config():
    """Reload configuration from environment."""
    global _config
    _config = Config.from_env()
