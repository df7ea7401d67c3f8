"""
Studio Session

Operator-facing console state shared by the CLI and the API server.
"""

from .session import AppState, StudioSession

__all__ = ["AppState", "StudioSession"]
