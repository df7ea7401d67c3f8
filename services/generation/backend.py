"""
Generation Backend interface.

The orchestrator and session only talk to this protocol. Implementations
wrap each remote call in a RetryingCaller and raise GenerationError (or
RetriesExhausted) on failure.
"""

from typing import Optional, Protocol

from .models import ConditioningImage, TrendingTopic


class GenerationBackend(Protocol):
    """Four generation operations plus the optional topic scan."""

    async def generate_script(self, topic: str, model: Optional[str] = None) -> str:
        """Return the JSON text of a ScriptDocument."""
        ...

    async def generate_speech(self, text: str, segment_id: str) -> bytes:
        """Return raw PCM audio (24 kHz, mono, 16-bit)."""
        ...

    async def generate_thumbnail(self, prompt: str, segment_id: str) -> bytes:
        """Return encoded image bytes."""
        ...

    async def generate_video(
        self,
        prompt: str,
        segment_id: str,
        resolution: str = "720p",
        aspect_ratio: str = "16:9",
        fps: str = "24",
        image: Optional[ConditioningImage] = None,
        model: Optional[str] = None,
    ) -> str:
        """Return a locator (local path or URI) for the rendered video."""
        ...

    async def scan_topics(self) -> list[TrendingTopic]:
        ...
