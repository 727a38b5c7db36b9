# src/talosvm/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single bootstrap invocation
    host: str         # target VM
    cluster: Optional[str]  # Talos cluster name

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def now_ts() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def new_ctx(host: str, cluster: Optional[str], run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": now_ts(),
        "run_id": run_id or str(uuid.uuid4()),
        "host": host,
        "cluster": cluster,
    }


# ---------------------------------------------------------------------
# Run lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class RunStarted(BaseEvent):
    total_steps: int
    dry_run: bool

@dataclass(frozen=True)
class RunPlanned(BaseEvent):
    steps: List[str]

@dataclass(frozen=True)
class RunFinished(BaseEvent):
    status: str       # "success" | "failed" | "planned"
    duration_s: float
    error: Optional[str] = None


# ---------------------------------------------------------------------
# Step lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class StepStarted(BaseEvent):
    name: str
    description: str
    index: int
    total: int
    percent: int

@dataclass(frozen=True)
class StepHeartbeat(BaseEvent):
    name: str
    elapsed_s: float

@dataclass(frozen=True)
class StepSucceeded(BaseEvent):
    name: str
    index: int
    total: int
    percent: int
    duration_s: float

@dataclass(frozen=True)
class StepFailed(BaseEvent):
    name: str
    index: int
    total: int
    duration_s: float
    error: str


# ---------------------------------------------------------------------
# Host identity
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class FingerprintRefreshed(BaseEvent):
    path: str
    previous: str
    current: str


# ---------------------------------------------------------------------
# provision-and-bootstrap phases
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class WorkflowPhase(BaseEvent):
    name: str
    index: int
    total: int
    status: str       # "started" | "success" | "failed" | "skipped"
    detail: Optional[str] = None
