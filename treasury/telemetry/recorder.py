"""Bounded in-memory action recorder backing the telemetry API.

Keeps the newest log lines first, each tagged with an optional depositor and a
`relevant` flag (balance-impacting vs. diagnostic). It is registered as a
listener on the `AgentLogger`, so it never wraps stdout.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Literal, Optional

from treasury.telemetry.logger import LogEvent
from treasury.types import Position, RebalanceAction, YieldOpportunity, format_usdc

Tone = Literal["emerald", "amber", "rose", "sky"]

DEFAULT_BUFFER_SIZE = 200

_TAG_RE = re.compile(r"^\[([^\]]+)\]")


@dataclass(frozen=True)
class LogEntry:
    time: str
    level: str
    title: str
    detail: str
    tag: str
    user: Optional[str] = None
    relevant: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SignalView:
    label: str
    value: str
    meta: str
    tone: Tone


@dataclass(frozen=True)
class PositionView:
    name: str
    status: str
    detail: str
    tone: Tone
    user: Optional[str] = None


def parse_line(line: str, *, level: str = "INFO", timestamp: Optional[datetime] = None) -> LogEntry:
    """Split a log line into tag, title and detail.

    The tag comes from a leading `[Tag]` (lower-cased, default "agent"); title and
    detail are split on the first " - ", falling back to the first ": ".
    """
    when = (timestamp or datetime.now(timezone.utc)).isoformat()
    trimmed = line.strip()
    match = _TAG_RE.match(trimmed)
    tag = match.group(1).lower() if match else "agent"

    title, detail = trimmed, ""
    if " - " in trimmed:
        title, detail = trimmed.split(" - ", 1)
    elif ": " in trimmed:
        title, detail = trimmed.split(": ", 1)

    return LogEntry(time=when, level=level, title=title, detail=detail, tag=tag)


class ActionRecorder:
    """Ring buffer of recent log lines plus the latest agent state."""

    def __init__(self, *, max_entries: Optional[int] = None) -> None:
        if max_entries is None:
            max_entries = int(os.environ.get("AGENT_LOG_BUFFER", str(DEFAULT_BUFFER_SIZE)))
        self.max_entries = max(1, max_entries)
        self._entries: deque[LogEntry] = deque(maxlen=self.max_entries)
        self._signals: list[SignalView] = []
        self._positions: list[PositionView] = []
        self._last_action: Optional[LogEntry] = None
        self._actions: deque[RebalanceAction] = deque(maxlen=self.max_entries)
        # The telemetry API reads from a server thread.
        self._lock = threading.Lock()

    # ----- listener -----

    def on_log(self, event: LogEvent) -> None:
        if not event.message:
            return
        parsed = parse_line(
            event.message,
            level=logging.getLevelName(event.level),
            timestamp=event.timestamp,
        )
        entry = LogEntry(
            time=parsed.time,
            level=parsed.level,
            title=parsed.title,
            detail=parsed.detail,
            tag=parsed.tag,
            user=event.depositor,
            relevant=event.relevant,
        )
        action = event.metadata.get("action")
        with self._lock:
            self._entries.appendleft(entry)
            if isinstance(action, RebalanceAction):
                self._actions.appendleft(action)
                self._last_action = entry

    # ----- state updates -----

    def set_signals(self, opportunities: Iterable[YieldOpportunity]) -> None:
        signals = [
            SignalView(
                label=f"{opp.venue} ({opp.bucket})",
                value=f"{opp.yield_pct:.2f}%",
                meta=f"{opp.source} · confidence {opp.confidence:.2f}",
                tone="amber" if opp.mocked else "emerald",
            )
            for opp in opportunities
        ]
        with self._lock:
            self._signals = signals

    def set_positions(self, positions: Iterable[Position]) -> None:
        views = [
            PositionView(
                name=f"{position.family}:{position.venue}",
                status=position.status,
                detail=f"{format_usdc(position.principal_amount)} USDC since {position.opened_at.isoformat()}",
                tone="emerald" if position.status == "active" else "sky",
                user=position.depositor.lower(),
            )
            for position in positions
        ]
        with self._lock:
            self._positions = views

    # ----- readers -----

    def get_logs(self, *, user: Optional[str] = None, relevant_only: bool = False) -> list[LogEntry]:
        """Return entries newest first, optionally filtered by depositor.

        With a `user` filter, depositor-tagged lines for other depositors are
        dropped; untagged lines are kept only when they are diagnostic.
        """
        with self._lock:
            entries = list(self._entries)
        needle = user.lower() if user else None
        result = []
        for entry in entries:
            if relevant_only and not entry.relevant:
                continue
            if needle is not None and entry.user is not None and entry.user != needle:
                continue
            if needle is not None and entry.user is None and entry.relevant:
                continue
            result.append(entry)
        return result

    def get_actions(self) -> list[RebalanceAction]:
        with self._lock:
            return list(self._actions)

    def get_state(self, *, user: Optional[str] = None) -> dict[str, Any]:
        needle = user.lower() if user else None
        with self._lock:
            signals = list(self._signals)
            positions = list(self._positions)
            last_action = self._last_action
        if needle is not None:
            positions = [p for p in positions if p.user == needle]
            if last_action is not None and last_action.user not in (None, needle):
                last_action = None
        return {
            "signals": [asdict(s) for s in signals],
            "positions": [asdict(p) for p in positions],
            "last_action": last_action.to_dict() if last_action else None,
        }

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._actions.clear()
            self._last_action = None

