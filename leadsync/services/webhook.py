# leadsync/services/webhook.py
"""
Qualification webhook: external calling / qualifying workflows report results.

Two paths, picked from the payload shape:
  - create: name + phone, no lead_id  -> new inbound lead
  - update: lead_id + status          -> status/phone/transcript/metadata update
            plus an AutomationLog for the lead's owner

Stateless and deliberately not deduplicated: replaying an update rewrites the
same values and appends another log row.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Tuple

from pydantic import ValidationError as SchemaError

from leadsync.core.errors import LeadSyncError
from leadsync.core.phone import format_phone_number
from leadsync.models.orm import LEAD_STATUSES
from leadsync.models.schemas import WebhookPayload
from leadsync.services.store import Store

logger = logging.getLogger("leadsync.webhook")

WEBHOOK_STATUSES = ("hot", "warm", "cold", "uninterested")

Result = Tuple[int, Dict[str, Any]]

ENDPOINT_INFO = {
    "message": "Qualification Webhook Endpoint",
    "version": "1.0.0",
    "endpoints": {
        "POST": "Update lead status based on qualification results",
    },
    "payload_example": {
        "lead_id": "uuid-string",
        "status": "hot | warm | cold | uninterested",
        "action_type": "calling | qualifying",
        "transcript": "optional transcript text",
        "metadata": {"key": "optional metadata"},
    },
}


def _error(status: int, message: str, details: Any = None) -> Result:
    body: Dict[str, Any] = {"error": message}
    if details is not None:
        body["details"] = details
    return status, body


async def handle(store: Store, raw: Any) -> Result:
    """Process one POST body. Returns (http_status, json_body)."""
    if not isinstance(raw, dict):
        return _error(400, "Request body must be a JSON object")
    try:
        payload = WebhookPayload.model_validate(raw)
    except SchemaError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        return _error(400, "Invalid payload", fields)

    if payload.name and payload.phone and not payload.lead_id:
        return await create_lead(store, payload)
    return await update_lead(store, payload)


async def create_lead(store: Store, payload: WebhookPayload) -> Result:
    formatted_phone = format_phone_number(payload.phone)

    if not payload.user_id:
        return _error(400, "user_id is required for creating new leads")

    status = payload.status or "cold"
    if status not in LEAD_STATUSES:
        return _error(400, "Invalid status", list(LEAD_STATUSES))

    try:
        lead = await store.leads.insert(
            {
                "user_id": payload.user_id,
                "name": payload.name,
                "email": payload.email or None,
                "phone": formatted_phone or None,
                "status": status,
                # inbound call agent: always inbound, never a call result yet
                "lead_type": "inbound",
                "source_channel": "inbound_call",
                "call_result": None,
            }
        )
    except LeadSyncError as e:
        logger.error("Error creating lead: %s", e.details or e.message)
        return _error(500, "Failed to create lead", e.details or e.message)

    logger.info("webhook: lead created id=%s user=%s", lead.id, payload.user_id)
    return 200, {
        "success": True,
        "lead": lead.model_dump(mode="json"),
        "message": "Lead created successfully",
    }


async def update_lead(store: Store, payload: WebhookPayload) -> Result:
    if not payload.lead_id or not payload.status:
        return _error(400, "Missing required fields: lead_id and status")

    if payload.status not in WEBHOOK_STATUSES:
        return _error(400, "Invalid status. Must be: hot, warm, cold, or uninterested")

    update_data: Dict[str, Any] = {"status": payload.status}
    if payload.phone:
        update_data["phone"] = format_phone_number(payload.phone)
    if payload.transcript:
        update_data["transcript"] = payload.transcript

    try:
        if payload.metadata:
            current = await store.leads.select_one(id=payload.lead_id)
            if current is None:
                return _error(404, "Lead not found")
            # shallow merge, incoming keys win
            update_data["metadata"] = {**(current.metadata or {}), **payload.metadata}

        rows = await store.leads.update(update_data, id=payload.lead_id)
    except LeadSyncError as e:
        logger.error("Error updating lead %s: %s", payload.lead_id, e.details or e.message)
        return _error(500, "Failed to update lead", e.details or e.message)

    if not rows:
        return _error(404, "Lead not found")
    lead = rows[0]

    if lead.user_id:
        try:
            await store.logs.insert(
                {
                    "action_type": "start_calling" if payload.action_type == "calling" else "start_qualifying",
                    "status": "success",
                    "user_id": lead.user_id,
                    "details": {
                        "lead_id": payload.lead_id,
                        "new_status": payload.status,
                        "action": payload.action_type,
                    },
                }
            )
        except LeadSyncError:
            logger.exception("Error logging automation lead=%s", payload.lead_id)
    else:
        logger.info("webhook: lead %s has no owner, skipping automation log", lead.id)

    logger.info("webhook: lead %s status -> %s", lead.id, payload.status)
    return 200, {
        "success": True,
        "lead": lead.model_dump(mode="json"),
        "message": f"Lead status updated to {payload.status}",
    }
