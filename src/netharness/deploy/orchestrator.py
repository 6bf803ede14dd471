# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netharness/deploy/orchestrator.py

from __future__ import annotations

import itertools
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from ..artifacts.distributor import ArtifactDistributor, ArtifactSource, ResolvedArtifacts
from ..config.models import NetConfig
from ..errors import ArtifactError, DeploymentError, LaunchFailure, LeaderRotationDisabled, SanityError
from ..lifecycle.controller import LifecycleController
from ..lifecycle.models import ClusterTopology, NodeRecord, NodeRole
from ..observers.dispatcher import EventBus
from ..observers.events import (
    ArtifactsFailed,
    ArtifactsResolved,
    ClientLaunchIssued,
    DeploySummary,
    LaunchStaggered,
    new_ctx,
)
from ..sanity.checker import SanityChecker, SanityOptions, SanityReport
from .throttle import LaunchThrottle

log = logging.getLogger("netharness")

LOG_TAIL_LINES = 40


@dataclass
class DeploymentReport:
    mode: str
    version: str = "unknown"
    leader_s: float = 0.0
    additional_nodes_s: float = 0.0
    clients_s: float = 0.0
    net_log_dir: Optional[Path] = None
    states: Dict[str, str] = field(default_factory=dict)
    sanity: Optional[SanityReport] = None
    ok: bool = False

    def summary(self) -> str:
        lines = [
            f"Deployment ({self.mode}) {'succeeded' if self.ok else 'FAILED'}",
            f"  Network version:           {self.version}",
            f"  Leader start:              {self.leader_s:.1f}s",
            f"  Additional nodes start:    {self.additional_nodes_s:.1f}s",
            f"  Client start:              {self.clients_s:.1f}s",
        ]
        if self.net_log_dir:
            lines.append(f"  Logs in {self.net_log_dir}")
        return "\n".join(lines)


def tail(path: Optional[Path], lines: int = LOG_TAIL_LINES) -> str:
    if path is None or not Path(path).is_file():
        return ""
    with open(path, encoding="utf-8", errors="replace") as f:
        return "".join(f.readlines()[-lines:])


class DeploymentOrchestrator:
    """
    Brings a cluster from cold to running:

      1. resolve artifacts (nothing is started if this fails)
      2. bootstrap leader, synchronously; its failure aborts the run
      3. remaining validators, one thread each, staggered, then joined
      4. sanity against the leader; failure leaves the cluster up
      5. clients, without waiting on them
    """

    def __init__(
        self,
        cfg: NetConfig,
        *,
        distributor: ArtifactDistributor,
        controller: LifecycleController,
        sanity_checker: SanityChecker,
        net_log_dir: Path,
        throttle: Optional[LaunchThrottle] = None,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[dict] = None,
    ):
        self.cfg = cfg
        self.distributor = distributor
        self.controller = controller
        self.sanity_checker = sanity_checker
        self.net_log_dir = Path(net_log_dir)
        self.throttle = throttle or LaunchThrottle.from_settings(cfg.throttle)
        self.bus = bus or EventBus()
        self.run_ctx = run_ctx or new_ctx(network=cfg.name)
        self._launch_ids = itertools.count(1)
        self._launch_ids_lock = threading.Lock()
        self.client_threads: List[threading.Thread] = []
        self.last_report: Optional[DeploymentReport] = None

    def _ctx(self) -> dict:
        return new_ctx(network=self.run_ctx["network"], run_id=self.run_ctx["run_id"])

    # ------------------ topology ------------------

    def topology(self) -> ClusterTopology:
        topology = ClusterTopology.from_config(self.cfg)
        self.net_log_dir.mkdir(parents=True, exist_ok=True)
        for node in topology:
            node.log_path = self.net_log_dir / f"{node.name}.log"
        return topology

    @property
    def expected_nodes(self) -> int:
        return len(self.cfg.fullnodes) + len(self.cfg.blockstreamers)

    def _alias(self, node: NodeRecord) -> None:
        """<role>-<launch number>.log next to the node log, pointing at it."""
        with self._launch_ids_lock:
            launch_id = next(self._launch_ids)
        alias = self.net_log_dir / f"{node.role.value}-{launch_id}.log"
        try:
            alias.unlink(missing_ok=True)
            alias.symlink_to(node.log_path.name)
        except OSError as exc:
            log.debug("could not create log alias %s: %s", alias, exc)

    # ------------------ artifacts ------------------

    def _resolve(self, source: ArtifactSource) -> ResolvedArtifacts:
        try:
            artifacts = self.distributor.resolve(source)
        except ArtifactError as exc:
            self.bus.emit(ArtifactsFailed(method=source.method.value, error=str(exc), **self._ctx()))
            raise
        self.bus.emit(
            ArtifactsResolved(
                method=artifacts.method.value,
                version=artifacts.version,
                bin_dir=str(artifacts.bin_dir),
                **self._ctx(),
            )
        )
        return artifacts

    # ------------------ public API ------------------

    def start(
        self,
        source: ArtifactSource,
        *,
        reuse: bool = False,
        sanity: SanityOptions = SanityOptions(),
    ) -> DeploymentReport:
        return self._deploy("start", source, reuse=reuse, sanity=sanity)

    def update(self, source: ArtifactSource, *, sanity: SanityOptions = SanityOptions()) -> DeploymentReport:
        """
        Replace every node in place, one at a time, leader included.
        Refuses to touch anything unless leader rotation is enabled.
        """
        if not self.cfg.fullnode.leader_rotation:
            raise LeaderRotationDisabled("Unable to update the network because leader rotation is disabled")
        return self._deploy("update", source, reuse=True, sanity=sanity)

    def restart(
        self,
        source: ArtifactSource,
        *,
        reuse: bool = False,
        sanity: SanityOptions = SanityOptions(),
    ) -> DeploymentReport:
        self.stop()
        return self.start(source, reuse=reuse, sanity=sanity)

    def stop(self) -> float:
        """Stop every node concurrently. Never raises. Returns elapsed seconds."""
        t0 = time.time()
        topology = self.topology()
        with ThreadPoolExecutor(max_workers=max(1, len(topology)), thread_name_prefix="stop") as pool:
            list(pool.map(self.controller.stop, topology))
        elapsed = time.time() - t0
        log.info("Stopping nodes took %.1fs", elapsed)
        return elapsed

    def sanity(self, opts: SanityOptions = SanityOptions()) -> SanityReport:
        return self.sanity_checker.check_or_raise(self.cfg.bootstrap_leader, self.expected_nodes, opts)

    def fetch_logs(self) -> List[Path]:
        """
        Copy remote node logs into the net log directory as
        remote-<log>-<address>.log. Unreachable logs are skipped.
        """
        self.net_log_dir.mkdir(parents=True, exist_ok=True)
        wanted = [(self.cfg.bootstrap_leader, "drone")]
        wanted += [(a, "fullnode") for a in self.cfg.fullnodes + self.cfg.blockstreamers]
        wanted += [(a, "client") for a in self.cfg.clients]
        fetched = []
        for address, name in wanted:
            dest = self.net_log_dir / f"remote-{name}-{address}.log"
            if self.controller.fetch_log(address, name, dest):
                fetched.append(dest)
        return fetched

    # ------------------ deployment ------------------

    def _deploy(self, mode: str, source: ArtifactSource, *, reuse: bool, sanity: SanityOptions) -> DeploymentReport:
        topology = self.topology()
        report = DeploymentReport(mode=mode, net_log_dir=self.net_log_dir)
        with self._launch_ids_lock:
            self._launch_ids = itertools.count(1)
        self.last_report = report
        failed: List[str] = []
        try:
            artifacts = self._resolve(source)
            report.version = artifacts.version
            if mode == "update":
                self._update_validators(topology, artifacts, report)
                self._stop_clients(topology)
            else:
                self._start_validators(topology, artifacts, reuse, report)

            report.sanity = self.sanity_checker.check_or_raise(
                topology.leader.address,
                self.expected_nodes,
                sanity,
                log_path=topology.leader.log_path,
            )
            report.clients_s = self._start_clients(topology.by_role(NodeRole.CLIENT), artifacts, reuse)
            report.ok = True
        except DeploymentError as exc:
            failed = [f.address for f in exc.failures]
            raise
        except SanityError as exc:
            report.sanity = exc.report
            raise
        finally:
            if not report.ok:
                for node in topology:
                    self.controller.abandon(node, "run aborted before launch")
            report.states = topology.states()
            self.bus.emit(
                DeploySummary(
                    mode=mode,
                    ok=report.ok,
                    version=report.version,
                    leader_s=report.leader_s,
                    additional_nodes_s=report.additional_nodes_s,
                    clients_s=report.clients_s,
                    failed=failed,
                    **self._ctx(),
                )
            )
        return report

    def _start_validators(
        self,
        topology: ClusterTopology,
        artifacts: ResolvedArtifacts,
        reuse: bool,
        report: DeploymentReport,
    ) -> None:
        leader = topology.leader
        t0 = time.time()
        try:
            self._alias(leader)
            self.controller.start(leader, artifacts, expected_nodes=self.expected_nodes, reuse=reuse)
        except DeploymentError as exc:
            raise DeploymentError(
                f"bootstrap leader {leader.address} failed to start",
                exc.failures,
                self._aggregate_logs(exc.failures),
            ) from exc
        finally:
            report.leader_s = time.time() - t0

        followers = [n for n in topology.validators if n is not leader]
        t0 = time.time()
        failures = self._launch_followers(followers, artifacts, reuse)
        report.additional_nodes_s = time.time() - t0
        if failures:
            raise DeploymentError(
                f"{len(failures)} of {len(followers)} node launches failed",
                failures,
                self._aggregate_logs(failures),
            )

    def _launch_followers(
        self,
        followers: List[NodeRecord],
        artifacts: ResolvedArtifacts,
        reuse: bool,
    ) -> List[LaunchFailure]:
        failures: List[LaunchFailure] = []
        lock = threading.Lock()

        def unit(node: NodeRecord) -> None:
            self._alias(node)
            try:
                self.controller.start(
                    node,
                    artifacts,
                    expected_nodes=self.expected_nodes,
                    reuse=reuse,
                    artifact_gate=self.throttle.gate,
                )
            except DeploymentError as exc:
                with lock:
                    failures.extend(exc.failures)

        threads = []
        for issued, node in enumerate(followers, start=1):
            t = threading.Thread(target=unit, args=(node,), name=f"launch-{node.address}")
            t.start()
            threads.append(t)
            if self.throttle.after_launch(issued, len(followers) - issued):
                self.bus.emit(LaunchStaggered(launched=issued, pause_s=self.throttle.stagger_pause_s, **self._ctx()))
        for t in threads:
            t.join()
        return failures

    def _update_validators(
        self,
        topology: ClusterTopology,
        artifacts: ResolvedArtifacts,
        report: DeploymentReport,
    ) -> None:
        for node in topology.validators:
            t0 = time.time()
            self.controller.stop(NodeRecord(node.address, node.role, log_path=node.log_path))
            try:
                self._alias(node)
                self.controller.start(node, artifacts, expected_nodes=self.expected_nodes, reuse=True)
            except DeploymentError as exc:
                raise DeploymentError(
                    f"update of {node.name} failed",
                    exc.failures,
                    self._aggregate_logs(exc.failures),
                ) from exc
            finally:
                elapsed = time.time() - t0
                if node.role is NodeRole.BOOTSTRAP_LEADER:
                    report.leader_s = elapsed
                else:
                    report.additional_nodes_s += elapsed

    def _stop_clients(self, topology: ClusterTopology) -> None:
        for node in topology.by_role(NodeRole.CLIENT):
            self.controller.stop(NodeRecord(node.address, node.role, log_path=node.log_path))

    def _start_clients(self, clients: List[NodeRecord], artifacts: ResolvedArtifacts, reuse: bool) -> float:
        def unit(node: NodeRecord) -> None:
            self._alias(node)
            try:
                self.controller.start(node, artifacts, expected_nodes=self.expected_nodes, reuse=reuse)
            except DeploymentError as exc:
                log.warning("[%s] client failed to start: %s", node.name, exc)

        t0 = time.time()
        for node in clients:
            t = threading.Thread(target=unit, args=(node,), name=f"client-{node.address}")
            t.start()
            self.client_threads.append(t)
            self.bus.emit(ClientLaunchIssued(address=node.address, **self._ctx()))
        return time.time() - t0

    def wait_for_clients(self, timeout: Optional[float] = None) -> None:
        for t in self.client_threads:
            t.join(timeout)

    def _aggregate_logs(self, failures: List[LaunchFailure]) -> str:
        chunks = []
        for f in failures:
            text = tail(Path(f.log_path) if f.log_path else None)
            chunks.append(f"==> {f.role} {f.address}: {f.error}\n{text}")
        return "\n".join(chunks)
