# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netharness/scenarios/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

# (to, lamports, recent_blockhash) -> encoded signed transaction
Signer = Callable[[str, int, str], str]


@dataclass(frozen=True)
class FundedCredential:
    """
    A keypair with a known funded balance, owned by whoever runs the
    scenario. The harness only ever asks it to sign; it never reads key
    material itself.
    """

    pubkey: str
    lamports: int
    signer: Signer = field(repr=False, compare=False)
    keypair_path: Optional[Path] = None

    def sign_transfer(self, to: str, amount: int, blockhash: str) -> str:
        if amount > self.lamports:
            raise ValueError(f"{self.pubkey} is funded with {self.lamports}, cannot send {amount}")
        return self.signer(to, amount, blockhash)


class ScenarioStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"


@dataclass
class ScenarioResult:
    name: str
    status: ScenarioStatus
    duration_s: float = 0.0
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status is ScenarioStatus.PASSED
