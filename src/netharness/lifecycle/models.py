# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netharness/lifecycle/models.py

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, Iterator, Optional, Tuple

from ..config.models import NetConfig


class NodeRole(str, Enum):
    BOOTSTRAP_LEADER = "bootstrap-leader"
    FULLNODE = "fullnode"
    BLOCKSTREAMER = "blockstreamer"
    CLIENT = "client"


class NodeState(str, Enum):
    PENDING = "Pending"
    STARTING = "Starting"
    RUNNING = "Running"
    STOPPED = "Stopped"
    FAILED = "Failed"

    @property
    def terminal(self) -> bool:
        return self in (NodeState.STOPPED, NodeState.FAILED)


_TRANSITIONS: Dict[NodeState, FrozenSet[NodeState]] = {
    NodeState.PENDING: frozenset({NodeState.STARTING, NodeState.STOPPED, NodeState.FAILED}),
    NodeState.STARTING: frozenset({NodeState.RUNNING, NodeState.STOPPED, NodeState.FAILED}),
    NodeState.RUNNING: frozenset({NodeState.STOPPED, NodeState.FAILED}),
    NodeState.STOPPED: frozenset(),
    NodeState.FAILED: frozenset(),
}


class InvalidTransition(RuntimeError):
    pass


@dataclass(frozen=True)
class LaunchHandle:
    """Supervision record of a remote process group."""
    pid: int
    pgid: int
    name: str


@dataclass
class NodeRecord:
    address: str
    role: NodeRole
    state: NodeState = NodeState.PENDING
    log_path: Optional[Path] = None
    launch: Optional[LaunchHandle] = None
    error: Optional[str] = None

    @property
    def name(self) -> str:
        return f"{self.role.value}-{self.address}"

    def transition(self, new: NodeState) -> bool:
        """
        Move to `new`. Returns False when re-entering the terminal state the
        node is already in, which is a no-op.
        """
        if new is self.state and self.state.terminal:
            return False
        if new not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.name}: {self.state.value} -> {new.value}")
        self.state = new
        return True


@dataclass(frozen=True)
class ClusterTopology:
    """Ordered, fixed membership of one deployment run."""

    nodes: Tuple[NodeRecord, ...]

    def __post_init__(self) -> None:
        leaders = [n for n in self.nodes if n.role is NodeRole.BOOTSTRAP_LEADER]
        if len(leaders) != 1:
            raise ValueError(f"topology needs exactly one bootstrap leader, got {len(leaders)}")

    @classmethod
    def from_config(cls, cfg: NetConfig) -> "ClusterTopology":
        nodes = [NodeRecord(cfg.bootstrap_leader, NodeRole.BOOTSTRAP_LEADER)]
        nodes += [NodeRecord(a, NodeRole.FULLNODE) for a in cfg.fullnodes[1:]]
        nodes += [NodeRecord(a, NodeRole.BLOCKSTREAMER) for a in cfg.blockstreamers]
        nodes += [NodeRecord(a, NodeRole.CLIENT) for a in cfg.clients]
        return cls(tuple(nodes))

    def __iter__(self) -> Iterator[NodeRecord]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def leader(self) -> NodeRecord:
        return next(n for n in self.nodes if n.role is NodeRole.BOOTSTRAP_LEADER)

    def by_role(self, role: NodeRole) -> list[NodeRecord]:
        return [n for n in self.nodes if n.role is role]

    @property
    def validators(self) -> list[NodeRecord]:
        """Every non-client node, leader first."""
        return [n for n in self.nodes if n.role is not NodeRole.CLIENT]

    def states(self) -> Dict[str, str]:
        return {n.name: n.state.value for n in self.nodes}
