# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netharness/config/models.py

from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SshSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: str = "solana"
    port: int = 22
    pkey_path: Optional[Path] = None
    password: Optional[str] = None
    connect_timeout: float = 20.0
    cmd_timeout: float = 300.0


class FullnodeConfig(BaseModel):
    """
    Boot-time node configuration.

    Optional RPC surfaces are off unless the cluster file turns them on; a
    scenario that needs one must find it enabled here, since nothing can
    switch it on after boot.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    fullnode_exit_enabled: bool = False
    rpc_gossip_push_enabled: bool = False
    rpc_gossip_refresh_active_set_enabled: bool = False
    leader_rotation: bool = False
    public_network: bool = False

    def node_args(self) -> List[str]:
        args: List[str] = []
        if self.fullnode_exit_enabled:
            args.append("--enable-fullnode-exit")
        if self.rpc_gossip_push_enabled:
            args.append("--enable-rpc-gossip-push")
        if self.rpc_gossip_refresh_active_set_enabled:
            args.append("--enable-rpc-gossip-refresh-active-set")
        if not self.leader_rotation:
            args.append("--no-leader-rotation")
        return args


class ThrottleSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    stagger_every: int = Field(default=2, ge=1)
    stagger_pause_s: float = Field(default=2.0, ge=0)
    max_in_flight: Optional[int] = Field(default=None, ge=1)


class NetConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = "testnet"
    fullnodes: List[str]                      # first entry is the bootstrap leader
    blockstreamers: List[str] = Field(default_factory=list)
    clients: List[str] = Field(default_factory=list)
    ssh: SshSettings = SshSettings()
    fullnode: FullnodeConfig = FullnodeConfig()
    throttle: ThrottleSettings = ThrottleSettings()
    remote_root: str = "netharness"           # relative to the remote user's home
    log_dir: Optional[Path] = None
    rpc_port: int = 8899
    gossip_port: int = 8001

    @model_validator(mode="after")
    def _check_topology(self) -> "NetConfig":
        if not self.fullnodes:
            raise ValueError("at least one fullnode (the bootstrap leader) is required")
        seen = set()
        for addr in [*self.fullnodes, *self.blockstreamers, *self.clients]:
            if addr in seen:
                raise ValueError(f"address {addr} appears more than once in the topology")
            seen.add(addr)
        return self

    @property
    def bootstrap_leader(self) -> str:
        return self.fullnodes[0]

    def rpc_url(self, address: str) -> str:
        return f"http://{address}:{self.rpc_port}"
