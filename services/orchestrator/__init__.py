"""
Segment Pipeline Orchestrator

Implements:
- The per-segment VOICE -> KEYFRAME -> VIDEO chain
- The master run over every segment with skip / cool-down / abort
- Single-flight guards for pipelines and same-kind generations
"""

from .pipeline import PipelineOrchestrator
from .state import STAGE_ORDER, MasterRunReport, PipelineRun, RenderSettings

__all__ = [
    "PipelineOrchestrator",
    "MasterRunReport",
    "PipelineRun",
    "RenderSettings",
    "STAGE_ORDER",
]
