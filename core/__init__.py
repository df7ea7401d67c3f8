"""
Mission Console Core Components

Provides foundational infrastructure for the creative-production console:
- Quota-aware retry with observable backoff
- Normalized error variants for generative API calls
- Single-flight guards and cooperative cancellation
"""

from .concurrency import CancellationToken, FlightState, SingleFlight
from .config import Config, RetryPolicy, get_config
from .errors import (
    ErrorKind,
    GenerationBusy,
    GenerationError,
    RetriesExhausted,
    classify,
    describe_error,
    normalize_error,
)
from .retry import RetryEventBus, RetryingCaller, compute_wait_ms

__all__ = [
    "CancellationToken",
    "FlightState",
    "SingleFlight",
    "Config",
    "RetryPolicy",
    "get_config",
    "ErrorKind",
    "GenerationBusy",
    "GenerationError",
    "RetriesExhausted",
    "classify",
    "describe_error",
    "normalize_error",
    "RetryEventBus",
    "RetryingCaller",
    "compute_wait_ms",
]
