"""FastAPI telemetry surface for the rebalancing agent.

This module provides a read-only HTTP API:
- GET /logs?user=<address> - Recent log entries, newest first
- GET /state?user=<address> - Current signals, positions and last action
- GET /health - Liveness probe

All endpoints allow cross-origin reads (the web console is served elsewhere).
The agent process registers its `ActionRecorder` with `set_recorder()`; when
the API runs on its own, an empty recorder is used.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from treasury.telemetry.recorder import ActionRecorder

logger = logging.getLogger(__name__)

app = FastAPI(
    title="TreasuryForge Agent API",
    description="Read-only telemetry for the treasury rebalancing agent",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["*"],
)

# Recorder shared with the agent (set by the launcher)
_recorder: ActionRecorder | None = None


def set_recorder(recorder: Optional[ActionRecorder]) -> None:
    global _recorder
    _recorder = recorder


def get_recorder() -> ActionRecorder:
    global _recorder
    if _recorder is None:
        _recorder = ActionRecorder()
    return _recorder


class LogEntryModel(BaseModel):
    time: str
    level: str
    title: str
    detail: str
    tag: str
    user: Optional[str] = None
    relevant: bool = False


class LogsResponse(BaseModel):
    entries: list[LogEntryModel]


class HealthResponse(BaseModel):
    ok: bool


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(ok=True)


@app.get("/logs", response_model=LogsResponse)
async def get_logs(
    user: Optional[str] = Query(None, description="Depositor address to filter by"),
    relevant: bool = Query(False, description="Only balance-impacting entries"),
) -> LogsResponse:
    entries = get_recorder().get_logs(user=user, relevant_only=relevant)
    return LogsResponse(entries=[LogEntryModel(**entry.to_dict()) for entry in entries])


@app.get("/state")
async def get_state(
    user: Optional[str] = Query(None, description="Depositor address to filter by"),
) -> dict[str, Any]:
    return get_recorder().get_state(user=user)
