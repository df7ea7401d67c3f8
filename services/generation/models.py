"""
Script and asset models shared by the backend, orchestrator and session.

Scripts come back from the LLM as camelCase JSON; the models accept both the
JSON aliases and the Python field names.
"""

import base64
import re
from dataclasses import dataclass
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

_DATA_URL = re.compile(r"^data:(image/[a-zA-Z+]+);base64,")


class PipelineStage(str, Enum):
    """Stages of the per-segment pipeline, in execution order."""
    VOICE = "voice"
    KEYFRAME = "keyframe"
    VIDEO = "video"


class ScriptSegment(BaseModel):
    """One timed unit of a mission script."""

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    id: str
    title: str = ""
    time_range: str = Field(default="", alias="timeRange")
    visual_prompt: str = Field(default="", alias="visualPrompt")
    audio_sfx: str = Field(default="", alias="audioSfx")
    narration: str = Field(default="", alias="voicemail")

    # Produced artifacts
    thumbnail_url: Optional[str] = Field(default=None, alias="thumbnailUrl")
    video_url: Optional[str] = Field(default=None, alias="videoUrl")

    voice_speed: float = Field(default=1.0, alias="voiceSpeed")
    voice_pitch: Literal["low", "normal", "high"] = Field(default="low", alias="voicePitch")

    @property
    def produced(self) -> bool:
        """A segment counts as finished once its video exists."""
        return bool(self.video_url)


class ScriptDocument(BaseModel):
    """A full mission script."""

    model_config = ConfigDict(populate_by_name=True)

    topic: str
    segments: list[ScriptSegment] = Field(default_factory=list)

    def find(self, segment_id: str) -> Optional[ScriptSegment]:
        for segment in self.segments:
            if segment.id == segment_id:
                return segment
        return None


class TrendingTopic(BaseModel):
    """A topic suggestion from the trend scan."""
    title: str
    description: str = ""
    relevance: str = ""


@dataclass
class ConditioningImage:
    """Image bytes used to condition video generation."""
    image_bytes: bytes
    mime_type: str = "image/png"

    @classmethod
    def from_data_url(cls, url: str) -> "ConditioningImage":
        """Decode a ``data:image/...;base64,`` URL. Unknown types default to PNG."""
        match = _DATA_URL.match(url)
        mime_type = match.group(1) if match else "image/png"
        encoded = url.split(",", 1)[1] if "," in url else url
        return cls(image_bytes=base64.b64decode(encoded), mime_type=mime_type)


def to_data_url(data: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"
