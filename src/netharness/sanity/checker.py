# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netharness/sanity/checker.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from ..config.models import NetConfig
from ..errors import SanityError
from ..gossip.discovery import GossipDiscovery, RpcGossipSource
from ..gossip.models import ContactInfo
from ..lifecycle.controller import Connector, passthrough_env
from ..observers.dispatcher import EventBus
from ..observers.events import SanityFinished, SanityStarted, new_ctx
from ..rpc.client import ControlPlaneClient
from ..utils.ssh import open_ssh

log = logging.getLogger("netharness")

# -o values accepted on the command line
SANITY_FLAGS = {
    "noLedgerVerify": "skip_ledger_verify",
    "noValidatorSanity": "skip_validator_sanity",
    "rejectExtraNodes": "reject_extra_nodes",
}


@dataclass(frozen=True)
class SanityOptions:
    skip_ledger_verify: bool = False
    skip_validator_sanity: bool = False
    reject_extra_nodes: bool = False
    skip_node_count: bool = False

    @classmethod
    def from_flags(cls, flags: Iterable[str]) -> "SanityOptions":
        kw = {}
        for flag in flags:
            if flag not in SANITY_FLAGS:
                raise ValueError(f"Unknown option: {flag} (expected one of {', '.join(SANITY_FLAGS)})")
            kw[SANITY_FLAGS[flag]] = True
        return cls(**kw)


class CheckStatus(str, Enum):
    PASSED = "passed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class CheckResult:
    name: str
    status: CheckStatus
    detail: str = ""


@dataclass
class SanityReport:
    address: str
    checks: List[CheckResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(c.status is not CheckStatus.FAILED for c in self.checks)

    def summary(self) -> Dict[str, str]:
        return {c.name: c.status.value for c in self.checks}

    def failures(self) -> List[CheckResult]:
        return [c for c in self.checks if c.status is CheckStatus.FAILED]


class _CheckFailed(Exception):
    pass


class SanityChecker:
    """
    Non-destructive probe of one running node. Each check is skipped only
    by its own flag; a failing check never stops the others from running,
    and nothing here stops a node.
    """

    def __init__(
        self,
        cfg: NetConfig,
        *,
        connect: Optional[Connector] = None,
        client_factory: Callable[[str], ControlPlaneClient] = ControlPlaneClient,
        discovery: Optional[GossipDiscovery] = None,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[dict] = None,
    ):
        self.cfg = cfg
        self.connect: Connector = connect or (
            lambda address, log_file: open_ssh(address, cfg.ssh, log_file=log_file)
        )
        self.client_factory = client_factory
        self.discovery = discovery or GossipDiscovery(RpcGossipSource(client_factory))
        self.bus = bus or EventBus()
        self.run_ctx = run_ctx or new_ctx(network=cfg.name)

    def _ctx(self) -> dict:
        return new_ctx(network=self.run_ctx["network"], run_id=self.run_ctx["run_id"])

    def check(
        self,
        address: str,
        expected_nodes: int,
        opts: SanityOptions = SanityOptions(),
        *,
        log_path: Optional[Path] = None,
    ) -> SanityReport:
        self.bus.emit(SanityStarted(address=address, **self._ctx()))
        report = SanityReport(address=address)
        report.checks.append(
            self._run("ledger-verify", opts.skip_ledger_verify, lambda: self._ledger_verify(address, log_path))
        )
        report.checks.append(
            self._run("validator", opts.skip_validator_sanity, lambda: self._validator(address))
        )
        report.checks.append(
            self._run(
                "node-count",
                opts.skip_node_count,
                lambda: self._node_count(address, expected_nodes, opts.reject_extra_nodes),
            )
        )
        for c in report.checks:
            log.info("[sanity] %s %s: %s %s", address, c.name, c.status.value, c.detail)
        self.bus.emit(SanityFinished(address=address, ok=report.ok, checks=report.summary(), **self._ctx()))
        return report

    def check_or_raise(
        self,
        address: str,
        expected_nodes: int,
        opts: SanityOptions = SanityOptions(),
        **kw,
    ) -> SanityReport:
        report = self.check(address, expected_nodes, opts, **kw)
        if not report.ok:
            failed = ", ".join(f"{c.name} ({c.detail})" for c in report.failures())
            raise SanityError(f"sanity failed on {address}: {failed}", report)
        return report

    def _run(self, name: str, skip: bool, fn: Callable[[], str]) -> CheckResult:
        if skip:
            return CheckResult(name, CheckStatus.SKIPPED)
        try:
            detail = fn()
        except Exception as exc:
            return CheckResult(name, CheckStatus.FAILED, str(exc))
        return CheckResult(name, CheckStatus.PASSED, detail)

    # ------------------ checks ------------------

    def _ledger_verify(self, address: str, log_path: Optional[Path]) -> str:
        with self.connect(address, log_path) as runner:
            runner.check(
                f"cd {self.cfg.remote_root} && bin/solana-ledger-tool --ledger state/ledger verify",
                env=passthrough_env(),
            )
        return "ledger verified"

    def _validator(self, address: str) -> str:
        client = self.client_factory(self.cfg.rpc_url(address))
        health = client.get_health()
        if health != "ok":
            raise _CheckFailed(f"node reports health {health!r}")
        return f"healthy, transaction count {client.get_transaction_count()}"

    def _node_count(self, address: str, expected: int, reject_extra: bool) -> str:
        entry = ContactInfo.entry_point(address, self.cfg.gossip_port, self.cfg.rpc_port)
        result = self.discovery.discover(entry, expected)
        if result.timed_out:
            raise _CheckFailed(f"discovered {len(result)} of {expected} nodes")
        if reject_extra and result.overflow:
            raise _CheckFailed(f"{result.overflow} unexpected extra node(s)")
        return f"{len(result)} nodes"
