# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netharness/lifecycle/controller.py

from __future__ import annotations

import json
import logging
import os
import time
from contextlib import AbstractContextManager, nullcontext
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from ..artifacts.distributor import ArtifactDistributor, ResolvedArtifacts
from ..config.models import NetConfig
from ..errors import DeploymentError, LaunchFailure
from ..observers.dispatcher import EventBus
from ..observers.events import NodeLaunched, NodeLaunchFailed, NodeLaunchStarted, NodeStopped, new_ctx
from ..utils.ssh import open_ssh
from ..utils.ssh_runner import SSHRunner, shq, supervised_launch
from .models import LaunchHandle, NodeRecord, NodeRole, NodeState

log = logging.getLogger("netharness")

# Environment variables copied verbatim from the controlling host into every
# remote node command.
PASSTHROUGH_ENV = ("RUST_LOG",)

# Last-resort process names for `stop`, used after every supervised group
# has been killed. Matched against process names, not command lines.
FALLBACK_PATTERNS = ("node", "solana-", "remote-")

Connector = Callable[[str, Optional[Path]], SSHRunner]


def passthrough_env(environ: Mapping[str, str] | None = None) -> Dict[str, str]:
    environ = os.environ if environ is None else environ
    return {k: environ[k] for k in PASSTHROUGH_ENV if k in environ}


class LifecycleController:
    """
    Starts and stops single nodes over SSH.

    This is the only place that moves a NodeRecord through its states.
    Every process it forks on a node is recorded as {name, pid, pgid} in
    <remote_root>/supervised/, and `stop` kills exactly those groups before
    falling back to name matching.
    """

    def __init__(
        self,
        cfg: NetConfig,
        distributor: ArtifactDistributor,
        *,
        connect: Optional[Connector] = None,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[dict] = None,
        environ: Optional[Mapping[str, str]] = None,
        fallback_patterns: Iterable[str] = FALLBACK_PATTERNS,
    ):
        self.cfg = cfg
        self.root = cfg.remote_root
        self.distributor = distributor
        self.connect: Connector = connect or (
            lambda address, log_file: open_ssh(address, cfg.ssh, log_file=log_file)
        )
        self.bus = bus or EventBus()
        self.run_ctx = run_ctx or new_ctx(network=cfg.name)
        self.env = passthrough_env(environ)
        self.fallback_patterns = tuple(fallback_patterns)

    def _ctx(self) -> dict:
        return new_ctx(network=self.run_ctx["network"], run_id=self.run_ctx["run_id"])

    # ------------------ host preparation ------------------

    def prepare_host(self, runner: SSHRunner, reuse: bool) -> None:
        """
        Reset the install root, or under reuse keep <root>/state (identity,
        ledger) and replace everything around it.
        """
        root = self.root
        dirs = f"{root}/bin {root}/supervised {root}/logs"
        if reuse:
            keep = f".{root.replace('/', '_')}-state"
            runner.check(
                f"mkdir -p {root}/state && rm -rf {keep} && mv {root}/state {keep} && "
                f"rm -rf {root} && mkdir -p {dirs} && mv {keep} {root}/state"
            )
        else:
            runner.check(f"rm -rf {root} && mkdir -p {dirs} {root}/state")

    # ------------------ commands ------------------

    def node_command(self, node: NodeRecord, expected_nodes: int) -> str:
        cfg = self.cfg
        entrypoint = f"{cfg.bootstrap_leader}:{cfg.gossip_port}"
        if node.role is NodeRole.CLIENT:
            return f"bin/solana-bench-tps --entrypoint {entrypoint} --num-nodes {expected_nodes}"

        args: List[str] = [
            "bin/solana-fullnode",
            "--identity state/identity.json",
            "--ledger state/ledger",
            f"--gossip-port {cfg.gossip_port}",
            f"--rpc-port {cfg.rpc_port}",
        ]
        if node.role is NodeRole.BOOTSTRAP_LEADER:
            args.append("--bootstrap-leader")
        else:
            args.append(f"--entrypoint {entrypoint}")
        if node.role is NodeRole.BLOCKSTREAMER:
            args.append("--blockstream state/blockstream.sock")
        if cfg.fullnode.public_network:
            args.append(f"--public-address {node.address}")
        args.extend(cfg.fullnode.node_args())
        return " ".join(args)

    def _launch(self, runner: SSHRunner, name: str, command: str, log_name: str) -> LaunchHandle:
        record = runner.run_json(
            f"cd {self.root} || exit 1; " + supervised_launch(name, command, f"logs/{log_name}.log"),
            env=self.env,
        )
        return LaunchHandle(pid=int(record["pid"]), pgid=int(record["pgid"]), name=str(record["name"]))

    # ------------------ public API ------------------

    def start(
        self,
        node: NodeRecord,
        artifacts: ResolvedArtifacts,
        *,
        expected_nodes: int,
        reuse: bool = False,
        artifact_gate: Callable[[], AbstractContextManager] = nullcontext,
    ) -> LaunchHandle:
        """
        Prepare the host, move binaries, fork the node and confirm the fork.

        Returns once the remote process is confirmed alive, not once it has
        synced. Any failure marks the node Failed and raises DeploymentError.
        """
        node.transition(NodeState.STARTING)
        self.bus.emit(NodeLaunchStarted(address=node.address, role=node.role.value, **self._ctx()))
        t0 = time.time()
        try:
            with self.connect(node.address, node.log_path) as runner:
                self.prepare_host(runner, reuse)
                if node.role is NodeRole.BOOTSTRAP_LEADER:
                    self.distributor.push(runner, artifacts, self.root)
                    self.distributor.serve(runner, self.root)
                    self._launch(runner, "drone", "bin/solana-drone", "drone")
                else:
                    with artifact_gate():
                        self.distributor.pull(runner, self.cfg.bootstrap_leader, self.root)
                log_name = "client" if node.role is NodeRole.CLIENT else "fullnode"
                handle = self._launch(runner, log_name, self.node_command(node, expected_nodes), log_name)
        except Exception as exc:
            node.error = str(exc)
            node.transition(NodeState.FAILED)
            self.bus.emit(NodeLaunchFailed(address=node.address, role=node.role.value, error=str(exc), **self._ctx()))
            failure = LaunchFailure(
                address=node.address,
                role=node.role.value,
                error=str(exc),
                log_path=str(node.log_path) if node.log_path else None,
            )
            raise DeploymentError(f"{node.name}: launch failed: {exc}", [failure]) from exc

        node.launch = handle
        node.transition(NodeState.RUNNING)
        self.bus.emit(
            NodeLaunched(
                address=node.address,
                role=node.role.value,
                pid=handle.pid,
                duration_ms=int((time.time() - t0) * 1000),
                **self._ctx(),
            )
        )
        log.info("[%s] running (pid=%d pgid=%d)", node.name, handle.pid, handle.pgid)
        return handle

    def _supervised(self, runner: SSHRunner) -> List[dict]:
        rc, out, _ = runner.run(f"cat {self.root}/supervised/*.json 2>/dev/null")
        records = []
        for line in out.splitlines():
            if not line.strip():
                continue
            try:
                rec = json.loads(line)
                records.append({"name": str(rec["name"]), "pgid": int(rec["pgid"])})
            except (ValueError, KeyError, TypeError):
                log.warning("[%s] ignoring unreadable supervision record %r", runner.address, line)
        return records

    def stop(self, node: NodeRecord) -> int:
        """
        Best-effort stop. Never raises; safe on nodes that are already
        stopped or no longer reachable. Returns the number of supervised
        process groups killed.
        """
        killed = 0
        try:
            with self.connect(node.address, node.log_path) as runner:
                runner.run("! tmux list-sessions >/dev/null 2>&1 || tmux kill-session")
                for rec in self._supervised(runner):
                    rc, _, _ = runner.run(f"kill -KILL -- -{rec['pgid']}")
                    if rc == 0:
                        killed += 1
                        log.debug("[%s] killed %s (pgid %d)", node.name, rec["name"], rec["pgid"])
                runner.run(f"rm -f {self.root}/supervised/*.json")
                for pattern in self.fallback_patterns:
                    runner.run(f"pkill -9 {shq(pattern)} || true")
        except Exception as exc:
            log.warning("[%s] stop incomplete (ignored): %s", node.name, exc)

        if not node.state.terminal:
            node.transition(NodeState.STOPPED)
        self.bus.emit(NodeStopped(address=node.address, role=node.role.value, groups_killed=killed, **self._ctx()))
        return killed

    def abandon(self, node: NodeRecord, reason: str) -> None:
        """Retire a node that was never launched, without touching its host."""
        if node.state is NodeState.PENDING:
            node.error = reason
            node.transition(NodeState.STOPPED)
            log.info("[%s] not started: %s", node.name, reason)

    def fetch_log(self, address: str, remote_log: str, dest: Path) -> bool:
        try:
            with self.connect(address, None) as runner:
                runner.fetch_file(f"{self.root}/logs/{remote_log}.log", dest)
        except Exception as exc:
            log.warning("failed to fetch %s.log from %s: %s", remote_log, address, exc)
            return False
        return True
