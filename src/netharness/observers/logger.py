from __future__ import annotations
import logging
from .events import BaseEvent, NodeLaunchFailed, ArtifactsFailed, SanityFinished, DeploySummary


def _level(event: BaseEvent) -> int:
    if isinstance(event, (NodeLaunchFailed, ArtifactsFailed)):
        return logging.ERROR
    if isinstance(event, (SanityFinished, DeploySummary)) and not event.ok:
        return logging.ERROR
    return logging.INFO


class LoggerObserver:
    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        etype = event.__class__.__name__
        msg = ", ".join(f"{k}={v}" for k, v in d.items() if k not in ("ts", "run_id", "network"))

        self.logger.log(_level(event), "[EVENT] %s: %s", etype, msg)
