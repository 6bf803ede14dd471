# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Iterator


@dataclass(frozen=True)
class RetryPolicy:
    """
    Caller-side retry policy. Nothing in the harness retries on its own;
    callers that want more attempts pass one of these explicitly.

    attempts: total number of tries (>= 1)
    backoff_s: seconds slept between tries
    """

    attempts: int = 1
    backoff_s: float = 0.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.backoff_s < 0:
            raise ValueError("backoff_s must be >= 0")

    def tries(self, sleep: Callable[[float], None] = time.sleep) -> Iterator[int]:
        """Yield attempt numbers 1..attempts, sleeping between them."""
        for attempt in range(1, self.attempts + 1):
            if attempt > 1 and self.backoff_s:
                sleep(self.backoff_s)
            yield attempt


NO_RETRY = RetryPolicy()
