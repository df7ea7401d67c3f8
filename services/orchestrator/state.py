"""
Pipeline Run State

Ephemeral records for single-segment pipelines and master runs. Nothing here
is persisted; a run's state lives only as long as the run.
"""

from dataclasses import dataclass, field
from typing import Literal, Optional

from services.generation.models import PipelineStage

# Execution order of the per-segment chain
STAGE_ORDER: tuple[PipelineStage, ...] = (
    PipelineStage.VOICE,
    PipelineStage.KEYFRAME,
    PipelineStage.VIDEO,
)


@dataclass
class RenderSettings:
    """Video render options chosen by the operator."""
    resolution: Literal["720p", "1080p"] = "720p"
    aspect_ratio: Literal["16:9", "9:16"] = "16:9"
    fps: str = "24"
    video_model: Optional[str] = None  # None = backend default


@dataclass
class PipelineRun:
    """The active single-segment pipeline."""
    segment_id: str
    stage: Optional[PipelineStage] = None
    autoplay: bool = True

    @property
    def step(self) -> int:
        return STAGE_ORDER.index(self.stage) + 1 if self.stage else 0


@dataclass
class MasterRunReport:
    """Outcome of a walk over every segment."""
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> dict:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
        }
