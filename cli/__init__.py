"""
Mission Console CLI Tools

Command-line tools for interacting with the console server.

Tools:
- progress_monitor: Real-time console log visualization
"""

from .progress_monitor import ProgressMonitor

__all__ = ["ProgressMonitor"]
