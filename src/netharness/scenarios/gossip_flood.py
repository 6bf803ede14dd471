# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netharness/scenarios/gossip_flood.py

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

from ..gossip.discovery import GossipDiscovery, RpcGossipSource
from ..gossip.models import ContactInfo
from ..rpc.client import ControlPlaneClient
from .models import FundedCredential
from .runner import scenario

log = logging.getLogger("netharness")

ENTRIES_PER_NODE = 100
SETTLE_S = 1.0


def malformed_contact(i: int) -> Dict[str, Any]:
    """A gossip record no node can ever reach: unspecified address, port 0."""
    return {"pubkey": f"flood-{i:06d}", "gossip": "0.0.0.0:0", "rpc": None, "tpu": "0.0.0.0:0", "tvu": None}


def flood_and_transfer(
    entry_point: ContactInfo,
    credential: FundedCredential,
    node_count: int,
    *,
    recipient: Optional[str] = None,
    client_factory: Callable[[str], ControlPlaneClient] = ControlPlaneClient,
    discovery: Optional[GossipDiscovery] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    discovery = discovery or GossipDiscovery(RpcGossipSource(client_factory))
    found = discovery.discover(entry_point, node_count)
    assert len(found) > 0, f"no nodes discovered via {entry_point.address}"

    entry = client_factory(entry_point.rpc_url)
    for i in range(node_count * ENTRIES_PER_NODE):
        entry.push_gossip_entry(malformed_contact(i))
    log.info("[gossip-flood] pushed %d malformed entries to %s", node_count * ENTRIES_PER_NODE, entry_point.address)

    sleep(SETTLE_S)
    for contact in found:
        if contact.rpc is not None:
            client_factory(contact.rpc_url).refresh_active_set()

    signature = entry.transfer(credential, recipient or credential.pubkey, 1)
    assert entry.confirm_transaction(signature), f"transfer {signature} was not confirmed after the gossip flood"


@scenario(
    "gossip_flood_liveness",
    requires=("rpc_gossip_push_enabled", "rpc_gossip_refresh_active_set_enabled"),
)
def gossip_flood_liveness(entry_point: ContactInfo, credential: FundedCredential, node_count: int) -> None:
    """The cluster keeps confirming transfers after its gossip tables are flooded with junk."""
    flood_and_transfer(entry_point, credential, node_count)
