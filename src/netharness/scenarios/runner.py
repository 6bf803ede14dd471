# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netharness/scenarios/runner.py

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from ..config.models import FullnodeConfig
from ..gossip.models import ContactInfo
from .models import FundedCredential, ScenarioResult, ScenarioStatus

log = logging.getLogger("netharness")

ScenarioFn = Callable[[ContactInfo, FundedCredential, int], None]


@dataclass(frozen=True)
class Scenario:
    name: str
    fn: ScenarioFn
    # FullnodeConfig flags the scenario drives over RPC; they cannot be
    # switched on after boot.
    requires: FrozenSet[str] = frozenset()

    def __call__(self, entry_point: ContactInfo, credential: FundedCredential, node_count: int) -> None:
        self.fn(entry_point, credential, node_count)


REGISTRY: Dict[str, Scenario] = {}


def scenario(name: str, *, requires: Iterable[str] = ()) -> Callable[[ScenarioFn], ScenarioFn]:
    def deco(fn: ScenarioFn) -> ScenarioFn:
        unknown = set(requires) - set(FullnodeConfig.model_fields)
        if unknown:
            raise ValueError(f"scenario {name}: unknown fullnode settings {sorted(unknown)}")
        REGISTRY[name] = Scenario(name, fn, frozenset(requires))
        return fn

    return deco


def get_scenario(name: str) -> Scenario:
    from . import gossip_flood  # noqa: F401  registers the built-in scenarios

    try:
        return REGISTRY[name]
    except KeyError:
        raise KeyError(f"no scenario named {name!r} (known: {', '.join(sorted(REGISTRY))})") from None


# One lock per cluster, keyed by entry point gossip address.
_cluster_locks: Dict[Tuple[str, int], threading.Lock] = {}
_cluster_locks_guard = threading.Lock()


def cluster_lock(entry_point: ContactInfo) -> threading.Lock:
    with _cluster_locks_guard:
        return _cluster_locks.setdefault(entry_point.gossip, threading.Lock())


class ScenarioRunner:
    """
    Runs scenarios one after another against one cluster.

    An AssertionError is a FAILED scenario, any other exception is an ERROR;
    either way the next scenario still runs. Two runners pointed at the
    same entry point never overlap.
    """

    def __init__(
        self,
        entry_point: ContactInfo,
        credential: FundedCredential,
        node_count: int,
        *,
        fullnode: Optional[FullnodeConfig] = None,
    ):
        self.entry_point = entry_point
        self.credential = credential
        self.node_count = node_count
        self.fullnode = fullnode

    def _missing_surfaces(self, sc: Scenario) -> List[str]:
        if self.fullnode is None:
            return []
        return sorted(flag for flag in sc.requires if not getattr(self.fullnode, flag))

    def run_one(self, sc: Scenario) -> ScenarioResult:
        missing = self._missing_surfaces(sc)
        if missing:
            return ScenarioResult(sc.name, ScenarioStatus.ERROR, detail=f"cluster booted without {', '.join(missing)}")

        t0 = time.time()
        with cluster_lock(self.entry_point):
            log.info("[scenario] %s: starting against %s", sc.name, self.entry_point.address)
            try:
                sc(self.entry_point, self.credential, self.node_count)
                status, detail = ScenarioStatus.PASSED, ""
            except AssertionError as exc:
                status, detail = ScenarioStatus.FAILED, str(exc) or "assertion failed"
            except Exception as exc:
                status, detail = ScenarioStatus.ERROR, f"{type(exc).__name__}: {exc}"
        result = ScenarioResult(sc.name, status, time.time() - t0, detail)
        log.info("[scenario] %s: %s %s", sc.name, status.value, detail)
        return result

    def run(self, scenarios: Iterable[Scenario | str]) -> List[ScenarioResult]:
        results = []
        for sc in scenarios:
            if isinstance(sc, str):
                sc = get_scenario(sc)
            results.append(self.run_one(sc))
        return results
