"""Explicit logging, action recording, and telemetry state."""

from .explorer import ExplorerLinks
from .formatting import format_action
from .logger import AgentLogger, LogEvent, LogListener, StdlibLogListener
from .recorder import ActionRecorder, LogEntry, PositionView, SignalView

__all__ = [
    # Logger
    "AgentLogger",
    "LogEvent",
    "LogListener",
    "StdlibLogListener",
    # Recorder
    "ActionRecorder",
    "LogEntry",
    "PositionView",
    "SignalView",
    # Formatting
    "ExplorerLinks",
    "format_action",
]
