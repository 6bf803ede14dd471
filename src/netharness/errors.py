# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netharness/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional


class HarnessError(RuntimeError):
    """Base class for every failure that should end a CLI run with exit code 1."""


class ConfigError(HarnessError):
    """Raised when the cluster definition cannot be loaded or validated."""


class ArtifactError(HarnessError):
    """Raised when deployable binaries cannot be built, fetched or unpacked."""


@dataclass
class LaunchFailure:
    address: str
    role: str
    error: str
    log_path: Optional[str] = None


class DeploymentError(HarnessError):
    """
    A node launch failed.

    Follower failures are collected across every attempted launch, so
    `failures` may hold more than one entry. `logs` carries the tail of
    each failed node's start log.
    """

    def __init__(self, message: str, failures: Optional[List[LaunchFailure]] = None, logs: str = ""):
        super().__init__(message)
        self.failures = list(failures or [])
        self.logs = logs


class LeaderRotationDisabled(DeploymentError):
    """Update-in-place requested while leader rotation is off."""


class SanityError(HarnessError):
    def __init__(self, message: str, report=None):
        super().__init__(message)
        self.report = report


class RpcError(HarnessError):
    """A single control-plane call failed (timeout, refusal or undecodable reply)."""

    def __init__(self, method: str, endpoint: str, message: str, code: Optional[int] = None):
        super().__init__(f"{method} @ {endpoint}: {message}")
        self.method = method
        self.endpoint = endpoint
        self.code = code
