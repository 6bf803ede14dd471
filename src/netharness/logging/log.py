# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

#src/netharness/logging/log.py

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path


def default_log_root() -> Path:
    return Path.home() / ".netharness" / "logs"


def init_logging(
    *,
    base_dir: Path | None = None,
    name: str = "netharness",
    verbose: bool = False,
) -> tuple[logging.Logger, str, Path]:
    """
    Initializes:
      - a run-scoped directory holding the run log and every per-node log
      - returns run_id so observers can reuse it
    """
    run_id = str(uuid.uuid4())

    if base_dir is None:
        base_dir = default_log_root()

    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    run_dir = base_dir / f"{ts}-{run_id[:8]}"
    run_dir.mkdir(parents=True, exist_ok=True)
    log_path = run_dir / f"{name}.log"

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # File = FULL TRACE
    fh = logging.FileHandler(log_path)
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(formatter)

    # Console = INFO by default, DEBUG when --debug is passed
    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(formatter)

    logger.addHandler(fh)
    logger.addHandler(ch)

    logger.info("=== netharness run started ===")
    logger.info(f"run_id={run_id}")
    logger.info(f"log_file={log_path}")

    return logger, run_id, log_path
