"""
Single-flight guards and cooperative cancellation.

SingleFlight is a two-state machine (IDLE / RUNNING(id)) with one mutation
point. A start request while RUNNING is rejected, never queued. All callers
share one event loop, so try_acquire() is atomic as long as it is not split
by an await.
"""

import logging
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class FlightState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class SingleFlight:
    """
    Mutual exclusion without queuing.

    Usage:
        guard = SingleFlight("pipeline")

        if not guard.try_acquire(segment.id):
            return False
        try:
            ...
        finally:
            guard.release(segment.id)
    """

    def __init__(self, name: str):
        self.name = name
        self._running_id: Optional[str] = None

    @property
    def state(self) -> FlightState:
        return FlightState.IDLE if self._running_id is None else FlightState.RUNNING

    @property
    def running_id(self) -> Optional[str]:
        return self._running_id

    @property
    def is_running(self) -> bool:
        return self._running_id is not None

    def try_acquire(self, key: str) -> bool:
        """Move IDLE -> RUNNING(key). Returns False if already running."""
        if self._running_id is not None:
            logger.info(f"[{self.name}] rejected {key}: {self._running_id} is running")
            return False
        self._running_id = key
        return True

    def release(self, key: str):
        """Move RUNNING(key) -> IDLE. Releasing with another key is ignored."""
        if self._running_id == key:
            self._running_id = None


class CancellationToken:
    """Cooperative cancellation flag, checked by the holder at safe points."""

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        self._cancelled = True
