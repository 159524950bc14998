from __future__ import annotations

import asyncio
import json
import logging
import time

from fastapi import APIRouter, Query, Request
from fastapi.responses import StreamingResponse

from leadsync.core.errors import ValidationError
from leadsync.services.event_bus import BROADCAST, ChangeBus
from leadsync.services.store import TABLES

logger = logging.getLogger("leadsync.api.change_events")
router = APIRouter()

HEARTBEAT_SECS = 15.0


def _topic(table: str) -> str:
    if table != BROADCAST and table not in TABLES:
        raise ValidationError(f"Unknown table '{table}'", details=sorted(TABLES))
    return table


def _bus(request: Request) -> ChangeBus:
    return request.app.state.store.bus


# ------------------------ SSE ------------------------------------------------

async def _sse_stream(bus: ChangeBus, topic: str):
    q = await bus.subscribe(topic)
    logger.info("SSE connect topic=%s", topic)
    try:
        yield ":ok\n\n"
        last_hb = time.time()
        while True:
            try:
                evt = await asyncio.wait_for(q.get(), timeout=HEARTBEAT_SECS)
                yield f"event: {evt.type}\n"
                yield f"data: {evt.model_dump_json()}\n\n"
            except asyncio.TimeoutError:
                now = time.time()
                if now - last_hb >= HEARTBEAT_SECS:
                    hb = {"ts": now, "topic": topic}
                    yield "event: heartbeat\n"
                    yield f"data: {json.dumps(hb)}\n\n"
                    last_hb = now
    finally:
        await bus.unsubscribe(topic, q)
        logger.info("SSE disconnect topic=%s", topic)


@router.get("/stream", name="change_events_stream")
async def change_events_stream(request: Request, table: str = Query(BROADCAST, min_length=1)):
    topic = _topic(table)
    logger.info("GET /change-events/stream table=%s (open)", topic)
    return StreamingResponse(
        _sse_stream(_bus(request), topic),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# ------------------------ LONG-POLL (external workers) -----------------------

@router.get("/since", name="change_events_since")
def change_events_since(
    request: Request,
    table: str = Query(..., min_length=1),
    since: int = Query(0, ge=0),
    limit: int = Query(200, ge=1, le=500),
):
    """Immediate fetch of events with seq > since."""
    topic = _topic(table)
    items = _bus(request).collect_since(topic, since, limit=limit)
    next_seq = max([e.get("_seq", since) for e in items], default=since)
    logger.info("GET /change-events/since table=%s since=%d -> %d ev, next=%d", topic, since, len(items), next_seq)
    return {"ok": True, "events": items, "next": next_seq}


@router.get("/poll", name="change_events_poll")
async def change_events_poll(
    request: Request,
    table: str = Query(..., min_length=1),
    since: int = Query(0, ge=0),
    timeout: float = Query(20.0, ge=0.0, le=60.0),
    limit: int = Query(200, ge=1, le=500),
):
    """
    Long-poll: waits up to `timeout` seconds for new events with seq > since.
    Lets an out-of-process worker watch the triggers table for armed flags.
    """
    topic = _topic(table)
    items = await _bus(request).long_poll(topic, since, timeout=timeout, limit=limit)
    next_seq = max([e.get("_seq", since) for e in items], default=since)
    logger.info("GET /change-events/poll table=%s since=%d timeout=%.1f -> %d ev, next=%d",
                topic, since, timeout, len(items), next_seq)
    return {"ok": True, "events": items, "next": next_seq}
