from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from leadsync.core.config import DISARM_DELAY_SECS, LOG_PAGE_SIZE, TRIGGER_FLAGS, TRIGGER_ID
from leadsync.core.errors import LeadSyncError, PersistenceError, ValidationError
from leadsync.models.schemas import AutomationLogRecord, TriggerRecord
from leadsync.services.change_feed import ChangeFeedSubscriber
from leadsync.services.notifications import Notifier
from leadsync.services.replica import ReplicaStore
from leadsync.services.store import Store

logger = logging.getLogger("leadsync.trigger")

FLAG_LABELS = {"start_calling": "Calling", "start_qualifying": "Qualifying"}
STOP_ACTIONS = {"start_calling": "stop_calling", "start_qualifying": "stop_qualifying"}


class FlagState(str, Enum):
    IDLE = "idle"
    ARMING = "arming"
    ARMED = "armed"
    DISARMING = "disarming"


class TriggerOrchestrator:
    """
    Edge-trigger approximation over the shared Trigger row.

    arm(flag): Idle -> Arming (write flag=true) -> Armed -> (after the disarm
    delay, measured from write success) Disarming (write flag=false) -> Idle.

    The two flags never share markers or timers. Disarm timers belong to the
    orchestrator, not the view: `close()` leaves them running so the remote
    flag is always cleared. There is no version check on the Trigger row;
    concurrent sessions are last-write-wins.
    """

    def __init__(
        self,
        store: Store,
        user_id: str,
        *,
        trigger_id: str = TRIGGER_ID,
        disarm_delay: float = DISARM_DELAY_SECS,
        notifier: Optional[Notifier] = None,
        log_limit: int = LOG_PAGE_SIZE,
    ):
        self.store = store
        self.user_id = user_id
        self.trigger_id = trigger_id
        self.disarm_delay = disarm_delay
        self.notifier = notifier or Notifier()
        self.log_limit = log_limit
        self.loading = True

        self.trigger = ReplicaStore("triggers", single=True)
        self.logs = ReplicaStore("automation_logs")
        self.state: Dict[str, FlagState] = {flag: FlagState.IDLE for flag in TRIGGER_FLAGS}

        # flag -> task performing the arm; a done task is a stale marker
        self._in_progress: Dict[str, asyncio.Task] = {}
        self._disarm_tasks: Dict[str, asyncio.Task] = {}

        self._trigger_feed = ChangeFeedSubscriber(
            self.trigger,
            user_id=user_id,
            bus=store.bus,
            channel="triggers",
            event_types={"update"},
            filters={"id": trigger_id},
        )
        self._logs_feed = ChangeFeedSubscriber(
            self.logs,
            user_id=user_id,
            bus=store.bus,
            channel="logs",
            event_types={"insert", "delete"},
        )

    # ------------------------------ lifecycle ---------------------------------

    async def mount(self) -> None:
        await self.load_trigger_state()
        await self.load_logs()
        await self._trigger_feed.start()
        await self._logs_feed.start()

    async def close(self) -> None:
        """View teardown. Pending disarms are deliberately left to fire."""
        await self._trigger_feed.stop()
        await self._logs_feed.stop()
        self.notifier.close()

    async def flush(self) -> None:
        await self._trigger_feed.flush()
        await self._logs_feed.flush()

    # ------------------------------ loading -----------------------------------

    async def load_trigger_state(self) -> Optional[TriggerRecord]:
        """Read the singleton, creating it on first access."""
        try:
            rec = await self.store.triggers.select_one(id=self.trigger_id)
            if rec is None:
                logger.info("trigger %s not found, creating", self.trigger_id)
                try:
                    rec = await self.store.triggers.insert(
                        {
                            "id": self.trigger_id,
                            "user_id": self.user_id,
                            "start_calling": False,
                            "start_qualifying": False,
                        }
                    )
                except PersistenceError:
                    # another session created it between our read and insert
                    rec = await self.store.triggers.select_one(id=self.trigger_id)
                    if rec is None:
                        raise
            self.trigger.upsert(rec)
            return rec
        except LeadSyncError as e:
            self.notifier.error(e.message)
            return None
        finally:
            self.loading = False

    async def load_logs(self) -> List[AutomationLogRecord]:
        try:
            rows = await self.store.logs.select(
                user_id=self.user_id, order_by="created_at", desc=True, limit=self.log_limit
            )
        except LeadSyncError:
            logger.exception("error loading logs user=%s", self.user_id)
            return []
        self.logs.replace_all(rows)
        return rows

    # ------------------------------ arming ------------------------------------

    def _in_flight(self, flag: str) -> bool:
        owner = self._in_progress.get(flag)
        return owner is not None and not owner.done()

    def is_armed(self, flag: str) -> bool:
        if self.state[flag] == FlagState.ARMED:
            return True
        rec = self.trigger.get(self.trigger_id)
        return bool(rec is not None and getattr(rec, flag))

    def _check_flag(self, flag: str) -> None:
        if flag not in TRIGGER_FLAGS:
            raise ValidationError(f"Unknown trigger flag '{flag}'", details=list(TRIGGER_FLAGS))

    async def arm(self, flag: str) -> bool:
        """Returns True if the flag was armed, False if rejected or failed."""
        self._check_flag(flag)
        if self._in_flight(flag):
            logger.info("arm %s ignored: already in flight", flag)
            return False
        if self.is_armed(flag):
            logger.info("arm %s ignored: already armed", flag)
            return False

        # a marker left by an aborted attempt must not block this one
        self._in_progress.pop(flag, None)
        me = asyncio.current_task()
        if me is not None:
            self._in_progress[flag] = me
        self.state[flag] = FlagState.ARMING

        try:
            if self.trigger.get(self.trigger_id) is None:
                await self.load_trigger_state()
            try:
                rows = await self.store.triggers.update(
                    {flag: True, "updated_by": self.user_id},
                    id=self.trigger_id,
                )
            except LeadSyncError as e:
                logger.error("arm %s failed: %s", flag, e.message)
                self.state[flag] = FlagState.IDLE
                self.notifier.error(e.message)
                await self._append_log(flag, "failed", {"error": e.message})
                return False

            self.state[flag] = FlagState.ARMED
            self._schedule_disarm(flag)

            if rows:
                self.trigger.upsert(rows[0])
            else:
                logger.warning("arm %s: no row returned, reloading trigger", flag)
                await self.load_trigger_state()

            await self._append_log(flag, "success", {"enabled": True})
            self.notifier.success(f"{FLAG_LABELS[flag]} automation triggered")
            return True
        finally:
            if self._in_progress.get(flag) is me:
                self._in_progress.pop(flag, None)

    # ------------------------------ disarming ---------------------------------

    def _schedule_disarm(self, flag: str) -> None:
        # only a fresh arm of the same flag replaces its pending disarm
        prev = self._disarm_tasks.pop(flag, None)
        if prev is not None and not prev.done():
            prev.cancel()
        self._disarm_tasks[flag] = asyncio.create_task(
            self._disarm_after(flag, self.disarm_delay), name=f"disarm:{flag}"
        )

    async def _disarm_after(self, flag: str, delay: float) -> None:
        await asyncio.sleep(delay)
        self.state[flag] = FlagState.DISARMING
        try:
            rows = await self.store.triggers.update(
                {flag: False, "updated_by": self.user_id},
                id=self.trigger_id,
            )
            if rows:
                self.trigger.upsert(rows[0])
            logger.info("%s auto-reset to false", flag)
            await self._append_log(STOP_ACTIONS[flag], "success", {"enabled": False, "auto": True})
        except LeadSyncError as e:
            # best effort: no retry, the original arm stays successful
            logger.error("reset error flag=%s: %s", flag, e.message)
            await self._append_log(STOP_ACTIONS[flag], "failed", {"error": e.message, "auto": True})
        finally:
            self.state[flag] = FlagState.IDLE
            if self._disarm_tasks.get(flag) is asyncio.current_task():
                self._disarm_tasks.pop(flag, None)

    def pending_disarm(self, flag: str) -> Optional[asyncio.Task]:
        return self._disarm_tasks.get(flag)

    async def wait_disarmed(self) -> None:
        tasks = [t for t in self._disarm_tasks.values() if not t.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------ audit log ---------------------------------

    async def _append_log(self, action: str, status: str, details: Dict[str, Any]) -> None:
        try:
            rec = await self.store.logs.insert(
                {"action_type": action, "status": status, "user_id": self.user_id, "details": details}
            )
        except LeadSyncError:
            logger.exception("error logging automation action=%s status=%s", action, status)
            return
        # optimistic local insert; the feed echo is deduplicated
        self.logs.upsert(rec)

    async def delete_log(self, log_id: str) -> bool:
        try:
            await self.store.logs.delete(id=log_id, user_id=self.user_id)
        except LeadSyncError:
            logger.exception("error deleting log id=%s", log_id)
            self.notifier.error("Failed to delete log")
            return False
        self.logs.remove(log_id)
        self.notifier.success("Log deleted successfully")
        return True

    async def delete_all_logs(self) -> int:
        """Remove every log owned by the current user, and none of anyone else's."""
        try:
            removed = await self.store.logs.delete(user_id=self.user_id)
        except LeadSyncError as e:
            logger.exception("error deleting all logs user=%s", self.user_id)
            self.notifier.error(f"Failed to delete all logs: {e.message}")
            return 0
        self.logs.clear()
        self.notifier.success("All logs deleted successfully")
        return len(removed)
