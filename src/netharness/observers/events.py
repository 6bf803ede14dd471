# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netharness/observers/events.py

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
    run_id: str       # correlates all events in a single invocation
    network: str      # cluster name from the config

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(network: str, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
        "run_id": run_id or str(uuid.uuid4()),
        "network": network,
    }


# ---------------------------------------------------------------------
# Artifacts
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ArtifactsResolved(BaseEvent):
    method: str
    version: str
    bin_dir: str

@dataclass(frozen=True)
class ArtifactsFailed(BaseEvent):
    method: str
    error: str


# ---------------------------------------------------------------------
# Node lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class NodeLaunchStarted(BaseEvent):
    address: str
    role: str

@dataclass(frozen=True)
class NodeLaunched(BaseEvent):
    address: str
    role: str
    pid: int
    duration_ms: int

@dataclass(frozen=True)
class NodeLaunchFailed(BaseEvent):
    address: str
    role: str
    error: str

@dataclass(frozen=True)
class NodeStopped(BaseEvent):
    address: str
    role: str
    groups_killed: int

@dataclass(frozen=True)
class LaunchStaggered(BaseEvent):
    launched: int
    pause_s: float


# ---------------------------------------------------------------------
# Sanity
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class SanityStarted(BaseEvent):
    address: str

@dataclass(frozen=True)
class SanityFinished(BaseEvent):
    address: str
    ok: bool
    checks: Dict[str, str]


# ---------------------------------------------------------------------
# Clients & summary
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ClientLaunchIssued(BaseEvent):
    address: str

@dataclass(frozen=True)
class DeploySummary(BaseEvent):
    mode: str            # "start" | "update"
    ok: bool
    version: str
    leader_s: float
    additional_nodes_s: float
    clients_s: float
    failed: List[str]
