from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from leadsync.api.deps import current_user, get_orchestrator

logger = logging.getLogger("leadsync.api.automation")
router = APIRouter()


def _snapshot(orch) -> dict:
    trigger = orch.trigger.first()
    return {
        "trigger": trigger.model_dump(mode="json") if trigger else None,
        "state": {flag: st.value for flag, st in orch.state.items()},
        "notification": orch.notifier.current.model_dump() if orch.notifier.current else None,
    }


@router.get("/trigger")
async def get_trigger(request: Request, user_id: str = Depends(current_user)):
    orch = await get_orchestrator(request, user_id)
    await orch.load_trigger_state()
    logger.info("GET /automation/trigger user=%s", user_id)
    return {"ok": True, **_snapshot(orch)}


@router.post("/{flag}/arm")
async def arm_flag(flag: str, request: Request, user_id: str = Depends(current_user)):
    orch = await get_orchestrator(request, user_id)
    armed = await orch.arm(flag)
    logger.info("POST /automation/%s/arm user=%s -> armed=%s", flag, user_id, armed)
    return {"ok": armed, "flag": flag, **_snapshot(orch)}


@router.get("/logs")
async def list_logs(request: Request, user_id: str = Depends(current_user)):
    orch = await get_orchestrator(request, user_id)
    await orch.load_logs()
    logs = [log.model_dump(mode="json") for log in orch.logs.list()]
    logger.info("GET /automation/logs user=%s count=%d", user_id, len(logs))
    return {"ok": True, "logs": logs}


@router.delete("/logs")
async def delete_all_logs(request: Request, user_id: str = Depends(current_user)):
    orch = await get_orchestrator(request, user_id)
    removed = await orch.delete_all_logs()
    logger.info("DELETE /automation/logs user=%s removed=%d", user_id, removed)
    return {"ok": True, "removed": removed}


@router.delete("/logs/{log_id}")
async def delete_log(log_id: str, request: Request, user_id: str = Depends(current_user)):
    orch = await get_orchestrator(request, user_id)
    ok = await orch.delete_log(log_id)
    return {"ok": ok}
