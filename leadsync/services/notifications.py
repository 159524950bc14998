from __future__ import annotations

import asyncio
import logging
from typing import Optional

from leadsync.core.config import NOTIFICATION_TTL_SECS
from leadsync.models.schemas import Notification

logger = logging.getLogger("leadsync.notifications")


class Notifier:
    """Single ephemeral notification slot; a newer message replaces the older one."""

    def __init__(self, ttl: float = NOTIFICATION_TTL_SECS):
        self.ttl = ttl
        self.current: Optional[Notification] = None
        self._timer: Optional[asyncio.TimerHandle] = None

    def success(self, message: str) -> Notification:
        return self.show("success", message)

    def error(self, message: str) -> Notification:
        return self.show("error", message)

    def show(self, kind: str, message: str) -> Notification:
        self._cancel_timer()
        self.current = Notification(type=kind, message=message)
        log = logger.info if kind == "success" else logger.warning
        log("notify %s: %s", kind, message)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            self._timer = loop.call_later(self.ttl, self.dismiss)
        return self.current

    def dismiss(self) -> None:
        self._cancel_timer()
        self.current = None

    def close(self) -> None:
        """View teardown: stop the auto-dismiss timer."""
        self._cancel_timer()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
