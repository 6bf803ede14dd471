# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netharness/utils/shell.py

from __future__ import annotations

import logging
import subprocess
import time
from pathlib import Path
from typing import Mapping, Optional, Sequence

log = logging.getLogger("netharness")


def run_logged(
    cmd: Sequence[str],
    *,
    label: str,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[Path] = None,
    timeout: int = 3600,
) -> None:
    """
    Execute a local command, streaming its output into the run log.

    Raises RuntimeError on non-zero exit or timeout.
    """
    log.info("[%s] $ %s", label, " ".join(cmd))
    start = time.time()

    proc = subprocess.Popen(
        list(cmd),
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        env=dict(env) if env is not None else None,
        cwd=str(cwd) if cwd else None,
    )

    assert proc.stdout
    for line in proc.stdout:
        log.debug("[%s] %s", label, line.rstrip())

    try:
        rc = proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        proc.kill()
        raise RuntimeError(f"[{label}] command timed out after {timeout}s")

    elapsed = round(time.time() - start, 2)
    if rc != 0:
        raise RuntimeError(f"[{label}] failed (rc={rc}) after {elapsed}s")

    log.info("[%s] completed in %ss", label, elapsed)


def capture(cmd: Sequence[str], *, cwd: Optional[Path] = None) -> Optional[str]:
    """Return stripped stdout of a local command, or None if it fails."""
    try:
        cp = subprocess.run(
            list(cmd),
            capture_output=True,
            text=True,
            check=True,
            cwd=str(cwd) if cwd else None,
        )
    except (OSError, subprocess.CalledProcessError):
        return None
    return cp.stdout.strip() or None
