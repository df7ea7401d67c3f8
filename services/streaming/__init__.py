"""
Console Log Streaming

Structured log events for the mission console, rendered as CLI lines or
pushed to SSE clients by the API server.

Usage:
    tracker = ProgressTracker(mission_id="m-1")
    tracker.on_event(lambda e: print(e.to_cli_line()))
"""

from .progress_tracker import EventType, ProgressEvent, ProgressTracker

__all__ = [
    "ProgressTracker",
    "ProgressEvent",
    "EventType",
]
