from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends

from leadsync.api.deps import current_user, get_store
from leadsync.core.errors import NotFoundError
from leadsync.models.schemas import LeadCreate, LeadRecord, LeadUpdate
from leadsync.services import lead_service, views
from leadsync.services.store import Store

router = APIRouter()
logger = logging.getLogger("leadsync.api.leads")


@router.get("/", response_model=List[LeadRecord])
async def get_leads(user_id: str = Depends(current_user), store: Store = Depends(get_store)):
    leads = await lead_service.list_leads(store, user_id)
    logger.info("Returning %d leads user=%s", len(leads), user_id)
    return leads


@router.post("/", response_model=LeadRecord, status_code=201)
async def create_lead(
    body: LeadCreate,
    user_id: str = Depends(current_user),
    store: Store = Depends(get_store),
):
    return await lead_service.create_lead(store, user_id, **body.model_dump(exclude_unset=True))


@router.patch("/{lead_id}", response_model=LeadRecord)
async def update_lead(
    lead_id: str,
    body: LeadUpdate,
    user_id: str = Depends(current_user),
    store: Store = Depends(get_store),
):
    return await lead_service.update_lead(store, lead_id, user_id=user_id, **body.model_dump(exclude_unset=True))


@router.delete("/{lead_id}")
async def delete_lead(lead_id: str, user_id: str = Depends(current_user), store: Store = Depends(get_store)):
    """Delete one of the caller's leads by ID."""
    if not await lead_service.delete_lead(store, lead_id, user_id=user_id):
        raise NotFoundError("Lead not found", details={"lead_id": lead_id})
    return {"success": True, "message": f"Lead {lead_id} deleted"}


@router.get("/stats")
async def lead_stats(user_id: str = Depends(current_user), store: Store = Depends(get_store)):
    leads = await lead_service.list_leads(store, user_id)
    return {
        "dashboard": views.dashboard_stats(leads),
        "analytics": views.quick_analytics(leads),
        "inbound": views.inbound_summary(leads),
    }
