# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netharness/gossip/models.py

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

SocketAddr = Tuple[str, int]


def parse_socket_addr(value: Any) -> SocketAddr:
    """
    Parse "host:port" (or "[v6]:port") into (ip, port). Raises ValueError on
    anything that is not a concrete, routable-looking socket address.
    """
    if not isinstance(value, str) or ":" not in value:
        raise ValueError(f"not a socket address: {value!r}")
    host, _, port_s = value.rpartition(":")
    host = host.strip("[]")
    ip = ipaddress.ip_address(host)
    if ip.is_unspecified:
        raise ValueError(f"unspecified address: {value!r}")
    port = int(port_s)
    if not 0 < port < 65536:
        raise ValueError(f"port out of range: {value!r}")
    return str(ip), port


def format_socket_addr(addr: SocketAddr) -> str:
    host, port = addr
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


@dataclass(frozen=True)
class ContactInfo:
    """
    Where a node can be reached. `gossip` is mandatory; the other service
    endpoints are whatever the node advertised.
    """

    id: str
    gossip: SocketAddr
    rpc: Optional[SocketAddr] = None
    tpu: Optional[SocketAddr] = None
    tvu: Optional[SocketAddr] = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ContactInfo":
        """Build from a getClusterNodes-style record. Raises ValueError if malformed."""
        node_id = raw.get("pubkey") or raw.get("id")
        if not node_id or not isinstance(node_id, str):
            raise ValueError("contact has no identity")

        def optional(key: str) -> Optional[SocketAddr]:
            v = raw.get(key)
            return parse_socket_addr(v) if v else None

        return cls(
            id=node_id,
            gossip=parse_socket_addr(raw.get("gossip")),
            rpc=optional("rpc"),
            tpu=optional("tpu"),
            tvu=optional("tvu"),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"pubkey": self.id, "gossip": format_socket_addr(self.gossip)}
        for key in ("rpc", "tpu", "tvu"):
            addr = getattr(self, key)
            out[key] = format_socket_addr(addr) if addr else None
        return out

    @classmethod
    def entry_point(cls, address: str, gossip_port: int, rpc_port: int) -> "ContactInfo":
        """Contact for a node we deployed ourselves, before its identity is known."""
        return cls(id=f"entrypoint-{address}", gossip=(address, gossip_port), rpc=(address, rpc_port))

    @property
    def address(self) -> str:
        return self.gossip[0]

    @property
    def rpc_url(self) -> str:
        if self.rpc is None:
            raise ValueError(f"{self.id} advertises no rpc endpoint")
        return f"http://{format_socket_addr(self.rpc)}"


@dataclass
class DiscoveryResult:
    """
    Members seen through one entry point during one window. A lower bound on
    the membership; `timed_out` means the window closed before
    `expected_count` members were seen, which is a normal outcome.
    """

    entry_point: ContactInfo
    expected_count: int
    contacts: Tuple[ContactInfo, ...] = ()
    dropped: int = 0
    overflow: int = 0
    polls: int = 0
    poll_errors: int = 0
    elapsed_s: float = 0.0
    errors: list = field(default_factory=list)

    @property
    def timed_out(self) -> bool:
        return len(self.contacts) < self.expected_count

    def __len__(self) -> int:
        return len(self.contacts)

    def __iter__(self):
        return iter(self.contacts)
