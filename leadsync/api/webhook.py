from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from leadsync.api.deps import get_store
from leadsync.services import webhook
from leadsync.services.store import Store

logger = logging.getLogger("leadsync.api.webhook")
router = APIRouter()

# Sent on every response, errors included; this path is excluded from the app-wide CORS middleware
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Client-Info, Apikey",
}


def _json(status: int, body: dict) -> JSONResponse:
    return JSONResponse(body, status_code=status, headers=CORS_HEADERS)


@router.api_route(
    "/qualification",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    name="qualification_webhook",
)
async def qualification_webhook(request: Request, store: Store = Depends(get_store)):
    if request.method == "OPTIONS":
        return Response(status_code=200, headers=CORS_HEADERS)

    try:
        if request.method == "POST":
            try:
                raw = await request.json()
            except ValueError:
                logger.warning("POST /webhook/qualification invalid JSON")
                return _json(400, {"error": "Invalid JSON body"})
            status, body = await webhook.handle(store, raw)
            logger.info("POST /webhook/qualification -> %d", status)
            return _json(status, body)

        if request.method == "GET":
            return _json(200, webhook.ENDPOINT_INFO)

        return _json(405, {"error": "Method not allowed"})
    except Exception as e:
        logger.exception("Webhook error")
        return _json(500, {"error": "Internal server error", "details": str(e)})
