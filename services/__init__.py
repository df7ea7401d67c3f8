"""
Mission Console Services

Core services for mission production:
- generation: Gemini / Veo generation backend
- orchestrator: Segment pipelines and master runs
- streaming: Console log and progress events
- studio: Operator session state
- server: HTTP + SSE API
"""

from .orchestrator import PipelineOrchestrator
from .studio import StudioSession

__all__ = [
    "PipelineOrchestrator",
    "StudioSession",
]
