from __future__ import annotations

import logging
from typing import List, Dict, Any

from fastapi import APIRouter, Depends, Request

from leadsync.api.deps import get_store
from leadsync.core.config import TRIGGER_ID
from leadsync.services.store import TABLES, Store

logger = logging.getLogger("leadsync.api.health")
router = APIRouter()


@router.get("/ping")
def ping():
    logger.info("GET /health/ping")
    return {"ok": True}


@router.get("/store")
async def store_health(store: Store = Depends(get_store)):
    """Row counts per table, plus whether the trigger singleton exists yet."""
    rows = {name: await store.table(name).count() for name in TABLES}
    trigger = await store.triggers.select_one(id=TRIGGER_ID)
    logger.info("GET /health/store rows=%s", rows)
    return {"ok": True, "rows": rows, "trigger": trigger.model_dump(mode="json") if trigger else None}


@router.get("/routes")
def list_routes(request: Request):
    """Registered routes, to check the webhook and API prefixes do not collide."""
    # app-level routes (docs, openapi) plus each router we mounted under its prefix
    seen: Dict[tuple, Dict[str, Any]] = {}
    sources = [("", request.app.routes)] + [
        (prefix, router.routes) for router, prefix, _ in getattr(request.app.state, "routers", [])
    ]
    for prefix, routes in sources:
        for r in routes:
            methods = getattr(r, "methods", None)
            if not methods:
                continue
            path = prefix + r.path
            key = (path, ",".join(sorted(methods)))
            seen[key] = {"path": path, "methods": sorted(methods), "name": r.name}
    out: List[Dict[str, Any]] = [seen[k] for k in sorted(seen)]
    logger.info("GET /health/routes count=%d", len(out))
    return {"ok": True, "routes": out}


@router.get("/events")
def events_health(request: Request):
    """Live change-feed subscribers per topic, and the orchestrators holding them."""
    s = request.app.state.store.bus.stats()
    total = s.pop("__total__", 0)
    topics = [{"topic": k, "subscribers": v} for k, v in sorted(s.items())]
    users = sorted(request.app.state.orchestrators)
    logger.info("GET /health/events total=%d topics=%d orchestrators=%d", total, len(topics), len(users))
    return {"ok": True, "total": total, "topics": topics, "orchestrators": users}
