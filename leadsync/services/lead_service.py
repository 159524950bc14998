# leadsync/services/lead_service.py
"""Dashboard-side lead writes. Reads go through replicas (see views.py)."""
from __future__ import annotations

import logging
from typing import Any, List, Optional

from pydantic import ValidationError as SchemaError

from leadsync.core.errors import NotFoundError, ValidationError
from leadsync.core.phone import format_phone_number
from leadsync.models.schemas import LeadCreate, LeadRecord, LeadUpdate
from leadsync.services.store import Store

logger = logging.getLogger("leadsync.lead_service")

DEFAULT_SOURCE_CHANNEL = {"inbound": "inbound_call", "outbound": "cold_call"}


def default_source_channel(lead_type: Optional[str]) -> str:
    return DEFAULT_SOURCE_CHANNEL.get(lead_type or "outbound", "cold_call")


def _parse(model, data: dict):
    try:
        return model(**data)
    except SchemaError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise ValidationError("Invalid lead fields", details=fields) from e


async def create_lead(store: Store, user_id: str, **fields: Any) -> LeadRecord:
    """
    Create a lead owned by `user_id`.
    source_channel defaults from lead_type (inbound -> inbound_call,
    outbound -> cold_call) but an explicit value is kept as given.
    """
    if not user_id:
        raise ValidationError("user_id is required")
    data = _parse(LeadCreate, fields)
    source_channel = data.source_channel
    if "source_channel" not in fields:
        source_channel = default_source_channel(data.lead_type)
    values = {
        "user_id": user_id,
        "name": data.name,
        "email": data.email or None,
        "phone": format_phone_number(data.phone) or None,
        "status": data.status,
        "lead_type": data.lead_type,
        "source_channel": source_channel,
        "call_result": None,
    }
    lead = await store.leads.insert(values)
    logger.info("lead_created id=%s user=%s type=%s", lead.id, user_id, lead.lead_type)
    return lead


async def update_lead(store: Store, lead_id: str, user_id: Optional[str] = None, **fields: Any) -> LeadRecord:
    """
    Edit a lead. Changing lead_type never rewrites source_channel.
    With `user_id`, a lead owned by someone else reads as not found.
    """
    data = _parse(LeadUpdate, fields)
    values = data.model_dump(exclude_unset=True)
    if "phone" in values:
        values["phone"] = format_phone_number(values["phone"]) or None
    if "email" in values:
        values["email"] = values["email"] or None
    if not values:
        raise ValidationError("No fields to update")
    eq = {"id": lead_id}
    if user_id:
        eq["user_id"] = user_id
    rows = await store.leads.update(values, **eq)
    if not rows:
        raise NotFoundError("Lead not found", details={"lead_id": lead_id})
    logger.info("lead_updated id=%s fields=%s", lead_id, sorted(values))
    return rows[0]


async def delete_lead(store: Store, lead_id: str, user_id: Optional[str] = None) -> bool:
    """Delete a lead by ID. Returns True if deleted, False if not found (or not ours)."""
    eq = {"id": lead_id}
    if user_id:
        eq["user_id"] = user_id
    removed = await store.leads.delete(**eq)
    if removed:
        logger.info("Deleted lead %s", lead_id)
    else:
        logger.warning("Lead %s not found for deletion", lead_id)
    return bool(removed)


async def list_leads(store: Store, user_id: str, lead_type: Optional[str] = None) -> List[LeadRecord]:
    """A user's leads, newest first."""
    eq = {"user_id": user_id}
    if lead_type:
        eq["lead_type"] = lead_type
    return await store.leads.select(order_by="created_at", desc=True, **eq)
