from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, Optional

from leadsync.core.config import SUBSCRIBE_BACKOFF_SECS, SUBSCRIBE_RETRIES
from leadsync.core.errors import SubscriptionError, TransientTransportError
from leadsync.models.schemas import RECORD_TYPES, ChangeEvent, RecordBase
from leadsync.services.event_bus import ChangeBus, bus as default_bus
from leadsync.services.replica import ReplicaStore

logger = logging.getLogger("leadsync.change_feed")

Accept = Callable[[RecordBase], bool]

IDLE = "idle"
SUBSCRIBED = "subscribed"
FAILED = "failed"
CLOSED = "closed"


class ChangeFeedSubscriber:
    """
    One logical subscription per (user, table), feeding a ReplicaStore.

    - `event_types` narrows the kinds applied (e.g. only "update").
    - `scope_to_user` drops insert/update images whose user_id is not ours;
      explicit `filters` replace that equality map (e.g. {"id": trigger_id}).
    - `accept` lets a view keep a subset; a held record that stops matching
      is removed.
    - Inserts for ids already held are no-ops (echo of an optimistic write,
      or duplicate delivery).
    """

    def __init__(
        self,
        replica: ReplicaStore,
        *,
        user_id: Optional[str] = None,
        bus: ChangeBus = default_bus,
        channel: Optional[str] = None,
        event_types: Optional[Iterable[str]] = None,
        scope_to_user: bool = True,
        filters: Optional[Dict[str, Any]] = None,
        accept: Optional[Accept] = None,
        retries: int = SUBSCRIBE_RETRIES,
        backoff: float = SUBSCRIBE_BACKOFF_SECS,
    ):
        self.replica = replica
        self.table = replica.table
        self.user_id = user_id
        self.bus = bus
        self.channel_prefix = channel or self.table
        self.event_types = set(event_types) if event_types else None
        self.scope_to_user = scope_to_user
        self.filters = filters
        self.accept = accept
        self.retries = retries
        self.backoff = backoff
        self.status = IDLE
        self.applied = 0
        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def channel(self) -> str:
        return f"{self.channel_prefix}_changes_{self.user_id}"

    @property
    def row_filter(self) -> Dict[str, Any]:
        if self.filters is not None:
            return dict(self.filters)
        if self.scope_to_user and self.user_id:
            return {"user_id": self.user_id}
        return {}

    # ------------------------------ lifecycle ---------------------------------

    async def start(self) -> bool:
        """Open the subscription. Returns False (and logs) on permanent failure."""
        if self._task is not None and not self._task.done():
            return True
        try:
            self._queue = await self._open()
        except SubscriptionError as e:
            self.status = FAILED
            logger.error("change_feed: %s subscription failed: %s", self.channel, e.message)
            return False
        self._task = asyncio.create_task(self._run(self._queue), name=self.channel)
        self.status = SUBSCRIBED
        logger.info("change_feed: subscribed channel=%s filter=%s", self.channel, self.row_filter)
        return True

    async def stop(self) -> None:
        task, q = self._task, self._queue
        self._task = None
        self._queue = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if q is not None:
            await self.bus.unsubscribe(self.table, q)
            logger.info("change_feed: unsubscribed channel=%s", self.channel)
        self.status = CLOSED

    async def set_user(self, user_id: Optional[str]) -> None:
        """Identity changed: drop the old subscription and rows, resubscribe."""
        if user_id == self.user_id and self.status == SUBSCRIBED:
            return
        was_running = self._task is not None
        await self.stop()
        self.user_id = user_id
        self.replica.clear()
        if was_running and user_id:
            await self.start()

    async def flush(self) -> None:
        """Wait until every event delivered so far has been applied."""
        if self._queue is not None:
            await self._queue.join()

    async def _open(self) -> asyncio.Queue:
        attempt = 0
        while True:
            try:
                return await self.bus.subscribe(self.table)
            except TransientTransportError as e:
                attempt += 1
                if attempt > self.retries:
                    raise SubscriptionError(f"gave up after {attempt} attempts", details=e.message) from e
                logger.debug("change_feed: transient error on %s, retry %d", self.channel, attempt)
                await asyncio.sleep(self.backoff * attempt)
            except SubscriptionError:
                raise
            except Exception as e:
                raise SubscriptionError(str(e)) from e

    async def _run(self, q: asyncio.Queue) -> None:
        while True:
            evt = await q.get()
            try:
                self.apply(evt)
            except Exception:
                logger.exception("change_feed: failed to apply %s on %s", evt.type, self.channel)
            finally:
                q.task_done()

    # ------------------------------ apply -------------------------------------

    def _matches(self, image: Dict[str, Any]) -> bool:
        return all(image.get(k) == v for k, v in self.row_filter.items())

    def apply(self, evt: ChangeEvent) -> bool:
        """Apply one event to the replica. Returns True if the replica changed."""
        if evt.table != self.table:
            return False
        if self.event_types is not None and evt.type not in self.event_types:
            return False

        if evt.type == "delete":
            # pre-image carries the id only; we never hold other users' rows
            rid = evt.record_id
            changed = bool(rid) and self.replica.remove(rid)
        else:
            image = evt.new or {}
            if not self._matches(image):
                return False
            record = RECORD_TYPES[self.table].model_validate(image)
            if self.accept is not None and not self.accept(record):
                changed = self.replica.remove(record.id)
            elif evt.type == "insert" and record.id in self.replica:
                changed = False
            else:
                changed = self.replica.upsert(record)

        if changed:
            self.applied += 1
        return changed
