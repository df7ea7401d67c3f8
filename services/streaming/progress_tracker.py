"""
Progress Tracker for the Mission Console

The console's terminal log. Every pipeline step, retry back-off and failure
becomes a structured ProgressEvent, kept in history and fanned out to
callbacks (CLI printer, SSE stream).
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional
from uuid import uuid4

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Types of progress events."""

    # Master run lifecycle
    STARTED = "started"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    # Segment pipeline
    STAGE_STARTED = "stage_started"
    STAGE_COMPLETED = "stage_completed"
    STAGE_FAILED = "stage_failed"
    PIPELINE_SUCCEEDED = "pipeline_succeeded"
    PIPELINE_FAILED = "pipeline_failed"
    SEGMENT_SKIPPED = "segment_skipped"

    # Resilience
    RETRY = "retry"

    # Resource events
    ASSET_GENERATED = "asset_generated"

    # Session events
    CREDENTIALS_REQUIRED = "credentials_required"

    # Info events
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class ProgressEvent:
    """A single log line of the console."""

    event_id: str = field(default_factory=lambda: str(uuid4()))
    mission_id: str = ""
    event_type: EventType = EventType.INFO
    timestamp: datetime = field(default_factory=datetime.utcnow)

    segment_id: Optional[str] = None
    stage: Optional[str] = None
    step: int = 0
    total_steps: int = 0

    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        event_data = {
            "id": self.event_id,
            "mission_id": self.mission_id,
            "type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
        }

        # Add optional fields
        if self.segment_id:
            event_data["segment_id"] = self.segment_id
        if self.stage:
            event_data["stage"] = self.stage
            event_data["step"] = self.step
            event_data["total_steps"] = self.total_steps
        if self.data:
            event_data["data"] = self.data
        return event_data

    def to_sse(self) -> str:
        """Format as SSE message."""
        json_data = json.dumps(self.to_dict())
        return f"id: {self.event_id}\nevent: {self.event_type.value}\ndata: {json_data}\n\n"

    def to_cli_line(self) -> str:
        """Format as single CLI line."""
        icons = {
            EventType.STARTED: "🚀",
            EventType.COMPLETED: "✅",
            EventType.CANCELLED: "⏹️",
            EventType.STAGE_STARTED: "▶️",
            EventType.STAGE_COMPLETED: "✔️",
            EventType.STAGE_FAILED: "❌",
            EventType.PIPELINE_SUCCEEDED: "🎬",
            EventType.PIPELINE_FAILED: "🔴",
            EventType.SEGMENT_SKIPPED: "⏭️",
            EventType.RETRY: "🔄",
            EventType.ASSET_GENERATED: "📦",
            EventType.CREDENTIALS_REQUIRED: "🔑",
            EventType.WARNING: "⚠️",
            EventType.ERROR: "🔴",
            EventType.INFO: "ℹ️",
        }
        icon = icons.get(self.event_type, "•")
        clock = self.timestamp.strftime("%H:%M:%S")

        if self.stage:
            return f"{clock} {icon} [{self.segment_id}] {self.step}/{self.total_steps} {self.message}"
        return f"{clock} {icon} {self.message}"


class ProgressTracker:
    """
    Collects console log events and emits them to callbacks.

    Usage:
        tracker = ProgressTracker(mission_id="abc123")

        # Register callback for SSE streaming
        tracker.on_event(lambda e: print(e.to_cli_line()))

        tracker.stage_started("1", "voice", 1, 3)
        tracker.retry("voice-1", 7000)
        tracker.stage_completed("1", "voice")
    """

    def __init__(self, mission_id: str = "", history_size: int = 500):
        self.mission_id = mission_id
        self.history_size = history_size

        self._callbacks: list[Callable[[ProgressEvent], None]] = []
        self._event_history: list[ProgressEvent] = []

    def on_event(self, callback: Callable[[ProgressEvent], None]) -> Callable[[], None]:
        """Register callback for progress events. Returns a remover."""
        self._callbacks.append(callback)

        def remove():
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    def _emit(self, event: ProgressEvent) -> ProgressEvent:
        """Emit event to all callbacks."""
        event.mission_id = event.mission_id or self.mission_id

        self._event_history.append(event)
        if len(self._event_history) > self.history_size:
            del self._event_history[: len(self._event_history) - self.history_size]

        for callback in list(self._callbacks):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Progress callback error: {e}")
        return event

    def started(self, message: str, total_segments: int = 0):
        self._emit(ProgressEvent(
            event_type=EventType.STARTED,
            message=message,
            data={"total_segments": total_segments},
        ))

    def completed(self, message: str, data: dict = None):
        self._emit(ProgressEvent(
            event_type=EventType.COMPLETED,
            message=message,
            data=data or {},
        ))

    def cancelled(self, message: str):
        self._emit(ProgressEvent(event_type=EventType.CANCELLED, message=message))

    def stage_started(self, segment_id: str, stage: str, step: int, total_steps: int = 3):
        self._emit(ProgressEvent(
            event_type=EventType.STAGE_STARTED,
            segment_id=segment_id,
            stage=stage,
            step=step,
            total_steps=total_steps,
            message=f"Step {step}/{total_steps} -> {stage}",
        ))

    def stage_completed(self, segment_id: str, stage: str, message: str = None):
        self._emit(ProgressEvent(
            event_type=EventType.STAGE_COMPLETED,
            segment_id=segment_id,
            message=message or f"{stage} ready for segment {segment_id}",
            data={"stage": stage},
        ))

    def stage_failed(self, segment_id: str, stage: str, error: str):
        self._emit(ProgressEvent(
            event_type=EventType.STAGE_FAILED,
            segment_id=segment_id,
            message=f"{stage} failed for segment {segment_id}: {error}",
            data={"stage": stage, "error": error},
        ))

    def pipeline_succeeded(self, segment_id: str):
        self._emit(ProgressEvent(
            event_type=EventType.PIPELINE_SUCCEEDED,
            segment_id=segment_id,
            message=f"Pipeline [{segment_id}]: fully synthesized",
        ))

    def pipeline_failed(self, segment_id: str):
        self._emit(ProgressEvent(
            event_type=EventType.PIPELINE_FAILED,
            segment_id=segment_id,
            message=f"Pipeline [{segment_id}]: sequence aborted",
        ))

    def segment_skipped(self, segment_id: str):
        self._emit(ProgressEvent(
            event_type=EventType.SEGMENT_SKIPPED,
            segment_id=segment_id,
            message=f"Segment {segment_id} already rendered, skipping",
        ))

    def retry(self, call_id: str, wait_ms: int):
        """Emit retry back-off event."""
        self._emit(ProgressEvent(
            event_type=EventType.RETRY,
            message=f"Quota reached for [{call_id}]. Backing off for {-(-wait_ms // 1000)}s...",
            data={"call_id": call_id, "wait_ms": wait_ms},
        ))

    def asset_generated(self, segment_id: str, asset_type: str, url: str = None):
        self._emit(ProgressEvent(
            event_type=EventType.ASSET_GENERATED,
            segment_id=segment_id,
            message=f"Generated {asset_type} for segment {segment_id}",
            data={"asset_type": asset_type, "url": url},
        ))

    def credentials_required(self, message: str):
        self._emit(ProgressEvent(event_type=EventType.CREDENTIALS_REQUIRED, message=message))

    def info(self, message: str, data: dict = None):
        self._emit(ProgressEvent(event_type=EventType.INFO, message=message, data=data or {}))

    def warning(self, message: str, data: dict = None):
        self._emit(ProgressEvent(event_type=EventType.WARNING, message=message, data=data or {}))

    def error(self, message: str, error: str = None):
        self._emit(ProgressEvent(
            event_type=EventType.ERROR,
            message=message,
            data={"error": error} if error else {},
        ))

    def get_history(self) -> list[ProgressEvent]:
        """Get all events emitted so far."""
        return self._event_history.copy()

    def lines(self) -> list[str]:
        return [event.message for event in self._event_history]
