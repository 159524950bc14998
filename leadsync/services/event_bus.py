from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Deque, Dict, List, Set, Tuple

from leadsync.core.config import HIST_MAX, QUEUE_MAX
from leadsync.models.schemas import ChangeEvent

logger = logging.getLogger("leadsync.event_bus")

BROADCAST = "*"


class ChangeBus:
    """
    Row-level change feed. Topic = table name (or "*" for every table).

    - Live subscribers get an asyncio.Queue of ChangeEvent.
    - Every topic keeps a ring buffer of recent events so out-of-process
      workers can long-poll with a sequence cursor.
    """

    def __init__(self, hist_max: int = HIST_MAX, queue_max: int = QUEUE_MAX):
        self.hist_max = hist_max
        self.queue_max = queue_max
        self._subscribers: Dict[str, Set[asyncio.Queue]] = {}
        # Per-topic ring buffer of recent events: (seq, event)
        self._hist: Dict[str, Deque[Tuple[int, ChangeEvent]]] = {}
        self._seq: Dict[str, int] = {}
        # Long-pollers waiting for the next publish
        self._waiters: Set[asyncio.Event] = set()

    def _next_seq(self, topic: str) -> int:
        self._seq[topic] = self._seq.get(topic, 0) + 1
        return self._seq[topic]

    def _push_history(self, topic: str, evt: ChangeEvent) -> int:
        seq = self._next_seq(topic)
        dq = self._hist.setdefault(topic, deque(maxlen=self.hist_max))
        dq.append((seq, evt))
        return seq

    # ----------------------------- Live subscribe API ----------------------------

    async def subscribe(self, topic: str) -> asyncio.Queue:
        """
        Subscribe to a topic (table or "*").
        Returns an asyncio.Queue where ChangeEvents will be delivered.
        """
        q: asyncio.Queue = asyncio.Queue(maxsize=self.queue_max)
        self._subscribers.setdefault(topic, set()).add(q)
        logger.info("event_bus: subscribe topic=%s subs=%d", topic, len(self._subscribers[topic]))
        return q

    async def unsubscribe(self, topic: str, q: asyncio.Queue) -> None:
        subs = self._subscribers.get(topic)
        if subs and q in subs:
            subs.remove(q)
            if not subs:
                self._subscribers.pop(topic, None)
        logger.info("event_bus: unsubscribe topic=%s subs=%d", topic, len(self._subscribers.get(topic, set())))

    # ------------------------------ Publish API ----------------------------------

    async def publish(self, evt: ChangeEvent) -> int:
        """
        Publish to the table topic and to "*".
        - Feeds live queues.
        - Stores in history for long-polling.
        """
        self._push_history(evt.table, evt)
        self._push_history(BROADCAST, evt)

        # Wake long-pollers
        for waiter in list(self._waiters):
            waiter.set()

        targets: Set[asyncio.Queue] = set()
        for topic in (evt.table, BROADCAST):
            targets.update(self._subscribers.get(topic, set()))

        sent = 0
        if targets:
            logger.debug(
                "event_bus: publish table=%s type=%s id=%s targets=%d",
                evt.table, evt.type, evt.record_id, len(targets),
            )
        for q in list(targets):
            try:
                q.put_nowait(evt)
                sent += 1
            except asyncio.QueueFull:
                logger.warning("event_bus: queue full table=%s type=%s (drop)", evt.table, evt.type)
        return sent

    # --------------------------- Long-poll helpers --------------------------------

    def collect_since(self, topic: str, since: int, limit: int = 200) -> List[dict]:
        """Immediate fetch of events on `topic` with seq > since, oldest first."""
        items = [
            {**evt.model_dump(mode="json"), "_seq": seq}
            for seq, evt in self._hist.get(topic, ())
            if seq > since
        ]
        if len(items) > limit:
            items = items[-limit:]
        return items

    async def long_poll(self, topic: str, since: int, timeout: float = 20.0, limit: int = 200) -> List[dict]:
        """
        Long-poll: waits up to `timeout` seconds for new events beyond `since`.
        Always returns (possibly empty) list of events.
        """
        items = self.collect_since(topic, since, limit=limit)
        if items:
            return items

        waiter = asyncio.Event()
        self._waiters.add(waiter)
        try:
            await asyncio.wait_for(waiter.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.debug("event_bus: long_poll timeout topic=%s since=%d", topic, since)
            return []
        finally:
            self._waiters.discard(waiter)

        # After being notified, collect again
        return self.collect_since(topic, since, limit=limit)

    # ------------------------------ Introspection --------------------------------

    def stats(self) -> Dict[str, int]:
        """Current subscriber counts per topic (live)."""
        per = {topic: len(qs) for topic, qs in self._subscribers.items()}
        per["__total__"] = sum(per.values())
        return per

    def reset(self) -> None:
        """Utility for tests."""
        self._subscribers.clear()
        self._hist.clear()
        self._seq.clear()
        self._waiters.clear()


# Process-wide default bus used by the HTTP app
bus = ChangeBus()
