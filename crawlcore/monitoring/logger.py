"""Structured logging for crawl monitoring."""

import json
import logging
from typing import Optional


class StructuredLogger:
    """Structured logger with uniform schema."""

    def __init__(self, name: str = "crawlcore", level: str = "INFO"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter('%(message)s'))
            self.logger.addHandler(handler)

    def log(self, event: str, level: int = logging.INFO, **kwargs) -> None:
        """
        Log structured event.

        Standard keys: event, task_id, url, attempt, lane, host, reason,
                      delay, frontier, retry
        """
        if not self.logger.isEnabledFor(level):
            return
        log_data = {"event": event, **kwargs}
        self.logger.log(level, json.dumps(log_data, default=str))

    def debug(self, event: str, **kwargs) -> None:
        self.log(event, level=logging.DEBUG, **kwargs)

    def warning(self, event: str, **kwargs) -> None:
        self.log(event, level=logging.WARNING, **kwargs)

    def error(self, event: str, **kwargs) -> None:
        self.log(event, level=logging.ERROR, **kwargs)

    def task_dispatched(self, task_id: str, url: str, attempt: int) -> None:
        self.debug("task_dispatched", task_id=task_id, url=url, attempt=attempt)

    def task_deferred(self, task_id: str, url: str, delay: float, lane: str, host: str) -> None:
        self.debug("task_deferred", task_id=task_id, url=url, delay=delay, lane=lane, host=host)

    def task_done(self, task_id: str, url: str, route_id: Optional[str]) -> None:
        self.debug("task_done", task_id=task_id, url=url, route_id=route_id)

    def retry_scheduled(self, task_id: str, url: str, attempt: int, delay: float, reason: str) -> None:
        self.log("retry_scheduled", task_id=task_id, url=url, attempt=attempt, delay=delay, reason=reason)

    def dead_lettered(self, task_id: str, url: str, attempt: int, reason: str) -> None:
        self.warning("dead_lettered", task_id=task_id, url=url, attempt=attempt, reason=reason)

    def checkpoint(self, structure: str, entries: int) -> None:
        self.log("checkpoint", structure=structure, entries=entries)
