# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import threading
import time
from contextlib import AbstractContextManager, nullcontext
from typing import Callable, Optional

from ..config.models import ThrottleSettings


class LaunchThrottle:
    """
    Limits how hard follower launches lean on the bootstrap leader.

    Two knobs, both optional:
      - a pause of `stagger_pause_s` after every `stagger_every` launches issued
      - a counting semaphore capping concurrent artifact pulls at `max_in_flight`
    """

    def __init__(
        self,
        stagger_every: int = 2,
        stagger_pause_s: float = 2.0,
        max_in_flight: Optional[int] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if stagger_every < 1:
            raise ValueError("stagger_every must be >= 1")
        self.stagger_every = stagger_every
        self.stagger_pause_s = stagger_pause_s
        self.max_in_flight = max_in_flight
        self._sleep = sleep
        self._sem = threading.BoundedSemaphore(max_in_flight) if max_in_flight else None

    @classmethod
    def from_settings(cls, settings: ThrottleSettings, **kw) -> "LaunchThrottle":
        return cls(settings.stagger_every, settings.stagger_pause_s, settings.max_in_flight, **kw)

    def gate(self) -> AbstractContextManager:
        return self._sem if self._sem is not None else nullcontext()

    def after_launch(self, issued: int, remaining: int) -> bool:
        """Called after each launch is issued. Returns True if it paused."""
        if remaining <= 0 or self.stagger_pause_s <= 0:
            return False
        if issued % self.stagger_every != 0:
            return False
        self._sleep(self.stagger_pause_s)
        return True
