"""
Generation Service

Provides the Generation Backend used by the segment pipeline:
- Script drafting and trend scanning
- Keyframe images, narration audio and video clips

All remote calls go through the quota-aware retry wrapper.
"""

from .backend import GenerationBackend
from .gemini import GeminiBackend, pcm_to_wav, strip_code_fence
from .models import (
    ConditioningImage,
    PipelineStage,
    ScriptDocument,
    ScriptSegment,
    TrendingTopic,
    to_data_url,
)

__all__ = [
    "GenerationBackend",
    "GeminiBackend",
    "pcm_to_wav",
    "strip_code_fence",
    "ConditioningImage",
    "PipelineStage",
    "ScriptDocument",
    "ScriptSegment",
    "TrendingTopic",
    "to_data_url",
]
