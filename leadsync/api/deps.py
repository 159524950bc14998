# leadsync/api/deps.py
from typing import Optional

from fastapi import Header, Request

from leadsync.core.errors import ValidationError
from leadsync.services.store import Store
from leadsync.services.trigger_orchestrator import TriggerOrchestrator


def get_store(request: Request) -> Store:
    return request.app.state.store


def current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    # Identity comes from the auth layer in front of us; we only need the id
    if not x_user_id:
        raise ValidationError("X-User-Id header is required")
    return x_user_id


async def get_orchestrator(request: Request, user_id: str) -> TriggerOrchestrator:
    """
    One live orchestrator per user for the lifetime of the app.

    Entries are never evicted: each user seen keeps its trigger and logs
    subscriptions until shutdown, when the lifespan closes them all.
    """
    registry = request.app.state.orchestrators
    orch = registry.get(user_id)
    if orch is None:
        orch = TriggerOrchestrator(
            request.app.state.store, user_id, disarm_delay=request.app.state.disarm_delay
        )
        registry[user_id] = orch
        await orch.mount()
    return orch
