"""Explicit logger passed into every component.

`AgentLogger.log(level, message, metadata)` fans a single event out to every
registered listener. The stdlib logging module is one listener; the telemetry
ring buffer (`ActionRecorder`) is another.

Metadata keys understood by the built-in listeners:
- depositor: depositor address the line is about (used for filtering)
- relevant: True for balance-impacting lines, False for diagnostics
- action: the `RebalanceAction` the line renders
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Protocol, Union

logger = logging.getLogger(__name__)

LevelLike = Union[int, str]


@dataclass(frozen=True)
class LogEvent:
    level: int
    message: str
    metadata: Mapping[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def depositor(self) -> Optional[str]:
        value = self.metadata.get("depositor")
        return str(value).lower() if value else None

    @property
    def relevant(self) -> bool:
        return bool(self.metadata.get("relevant", False))


class LogListener(Protocol):
    """Receives every event logged through an `AgentLogger`."""

    def on_log(self, event: LogEvent) -> None:
        ...


def _normalize_level(level: LevelLike) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


class StdlibLogListener:
    """Forwards events to a stdlib logger (console/file handlers live there)."""

    def __init__(self, target: logging.Logger | None = None) -> None:
        self._target = target or logging.getLogger("treasury.agent")

    def on_log(self, event: LogEvent) -> None:
        self._target.log(event.level, event.message)


class AgentLogger:
    """Logger interface shared by the scheduler, plugins and stores."""

    def __init__(self, *, listeners: Optional[list[LogListener]] = None) -> None:
        self._listeners: list[LogListener] = list(listeners) if listeners is not None else [StdlibLogListener()]

    @property
    def listeners(self) -> tuple[LogListener, ...]:
        return tuple(self._listeners)

    def add_listener(self, listener: LogListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: LogListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def log(self, level: LevelLike, message: str, metadata: Optional[Mapping[str, Any]] = None) -> None:
        event = LogEvent(level=_normalize_level(level), message=message, metadata=dict(metadata or {}))
        for listener in list(self._listeners):
            try:
                listener.on_log(event)
            except Exception as e:
                logger.error(f"Log listener {type(listener).__name__} failed: {e}")

    def debug(self, message: str, **metadata: Any) -> None:
        self.log(logging.DEBUG, message, metadata)

    def info(self, message: str, **metadata: Any) -> None:
        self.log(logging.INFO, message, metadata)

    def warning(self, message: str, **metadata: Any) -> None:
        self.log(logging.WARNING, message, metadata)

    def error(self, message: str, **metadata: Any) -> None:
        self.log(logging.ERROR, message, metadata)
