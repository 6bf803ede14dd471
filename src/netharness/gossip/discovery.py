# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netharness/gossip/discovery.py

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Protocol

from ..errors import RpcError
from ..utils.retry import RetryPolicy
from .models import ContactInfo, DiscoveryResult, format_socket_addr

log = logging.getLogger("netharness")

# a poll issued right at the deadline still gets this long to answer
MIN_POLL_TIMEOUT_S = 0.1


class GossipSource(Protocol):
    def poll(self, entry_point: ContactInfo, *, timeout: Optional[float] = None) -> Iterable[Mapping[str, Any]]:
        """
        Return the raw contact records the entry point currently advertises,
        giving up after `timeout` seconds when one is given.
        """
        ...


class RpcGossipSource:
    """Reads the entry point's gossip table through its getClusterNodes RPC."""

    def __init__(self, client_factory: Optional[Callable[[str], Any]] = None, timeout: float = 2.0):
        if client_factory is None:
            from ..rpc.client import ControlPlaneClient

            client_factory = lambda url: ControlPlaneClient(url, timeout=timeout)  # noqa: E731
        self.client_factory = client_factory
        self.timeout = timeout
        self._clients: Dict[str, Any] = {}

    def poll(self, entry_point: ContactInfo, *, timeout: Optional[float] = None) -> Iterable[Mapping[str, Any]]:
        url = entry_point.rpc_url
        client = self._clients.get(url)
        if client is None:
            client = self._clients[url] = self.client_factory(url)
        if timeout is None:
            return client.cluster_nodes()
        return client.cluster_nodes(timeout=min(self.timeout, timeout))


class GossipDiscovery:
    """
    Best-effort membership snapshot through a single entry point.

    `discover` always runs for the whole window. It never returns early once
    `expected_count` is reached and never extends the window, however many
    entries arrive. Each poll is bounded by the time left in the window.
    Only `identity`, the discovering node itself, is excluded; the entry
    point is a member like any other.
    """

    def __init__(
        self,
        source: GossipSource,
        *,
        window_s: float = 3.0,
        poll_interval_s: float = 0.25,
        identity: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if window_s <= 0:
            raise ValueError("window_s must be > 0")
        self.source = source
        self.window_s = window_s
        self.poll_interval_s = poll_interval_s
        self.identity = identity
        self._clock = clock
        self._sleep = sleep

    def _accept(self, raw: Mapping[str, Any], entry_point: ContactInfo) -> Optional[ContactInfo]:
        try:
            contact = ContactInfo.from_dict(raw)
        except (ValueError, TypeError, AttributeError):
            return None
        if self.identity is not None and contact.id == self.identity:
            return None
        return contact

    def discover(
        self,
        entry_point: ContactInfo,
        expected_count: int,
        *,
        window_s: Optional[float] = None,
    ) -> DiscoveryResult:
        if expected_count < 0:
            raise ValueError("expected_count must be >= 0")
        window = self.window_s if window_s is None else window_s
        result = DiscoveryResult(entry_point=entry_point, expected_count=expected_count)
        seen: Dict[str, ContactInfo] = {}
        rejected = set()

        start = self._clock()
        deadline = start + window
        while True:
            result.polls += 1
            poll_timeout = max(deadline - self._clock(), MIN_POLL_TIMEOUT_S)
            try:
                records = list(self.source.poll(entry_point, timeout=poll_timeout))
            except (RpcError, OSError) as exc:
                result.poll_errors += 1
                result.errors.append(str(exc))
                log.debug("[discovery] poll of %s failed: %s", format_socket_addr(entry_point.gossip), exc)
                records = []

            for raw in records:
                contact = self._accept(raw, entry_point) if isinstance(raw, Mapping) else None
                if contact is None:
                    rejected.add(repr(raw))
                    continue
                seen.setdefault(contact.id, contact)

            now = self._clock()
            if now >= deadline:
                break
            self._sleep(min(self.poll_interval_s, deadline - now))

        contacts = sorted(seen.values(), key=lambda c: c.id)
        result.overflow = max(0, len(contacts) - expected_count)
        result.contacts = tuple(contacts[:expected_count])
        result.dropped = len(rejected)
        result.elapsed_s = self._clock() - start
        log.info(
            "[discovery] %d/%d nodes via %s in %.1fs (dropped=%d overflow=%d)",
            len(result.contacts), expected_count, format_socket_addr(entry_point.gossip),
            result.elapsed_s, result.dropped, result.overflow,
        )
        return result

    def discover_until(
        self,
        entry_point: ContactInfo,
        expected_count: int,
        policy: RetryPolicy,
        *,
        window_s: Optional[float] = None,
    ) -> DiscoveryResult:
        """
        Repeat `discover` under `policy` until `expected_count` members are
        seen. Returns the last result, complete or not.
        """
        result: Optional[DiscoveryResult] = None
        for attempt in policy.tries(self._sleep):
            result = self.discover(entry_point, expected_count, window_s=window_s)
            if not result.timed_out:
                break
            log.debug("[discovery] attempt %d/%d saw %d/%d", attempt, policy.attempts, len(result), expected_count)
        assert result is not None
        return result
