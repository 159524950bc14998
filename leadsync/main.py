from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from leadsync.api import automation, change_events, health, leads, webhook
from leadsync.core.config import CORS_ORIGINS, DISARM_DELAY_SECS, LOG_LEVEL
from leadsync.core.errors import LeadSyncError
from leadsync.middleware.cors import ScopedCORSMiddleware
from leadsync.middleware.request_logger import RequestLoggerMiddleware
from leadsync.services.store import Store

# ---- Logging config ---------------------------------------------------------
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s:%(lineno)d - %(message)s",
)
logger = logging.getLogger("leadsync.main")

WEBHOOK_PREFIX = "/webhook"

ROUTERS = [
    (webhook.router,       WEBHOOK_PREFIX,     "Webhook"),
    (automation.router,    "/automation",      "Automation"),
    (leads.router,         "/leads",           "Leads"),
    (change_events.router, "/change-events",   "ChangeEvents"),
    (health.router,        "/health",          "Health"),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Auto-create tables (safe to run repeatedly)
    app.state.store.create_tables()
    logger.info("Startup completed.")
    yield
    # Unmount orchestrators; their pending disarms still run to completion
    for orch in list(app.state.orchestrators.values()):
        await orch.wait_disarmed()
        await orch.close()
    app.state.orchestrators.clear()
    logger.info("Shutdown completed.")


def create_app(store: Optional[Store] = None, disarm_delay: float = DISARM_DELAY_SECS) -> FastAPI:
    logger.info("Starting LeadSync backend with LOG_LEVEL=%s", LOG_LEVEL)
    app = FastAPI(title="LeadSync Backend", lifespan=lifespan)
    app.state.store = store or Store()
    app.state.orchestrators = {}
    app.state.disarm_delay = disarm_delay

    app.add_middleware(RequestLoggerMiddleware)

    # ---- CORS ---------------------------------------------------------------
    app.add_middleware(
        ScopedCORSMiddleware,
        exclude_prefixes=[WEBHOOK_PREFIX],
        allow_origins=CORS_ORIGINS,
        allow_credentials="*" not in CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LeadSyncError)
    async def _leadsync_error(request: Request, exc: LeadSyncError):
        logger.warning("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.message)
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    # ---- Routers ------------------------------------------------------------
    for router, prefix, tag in ROUTERS:
        app.include_router(router, prefix=prefix, tags=[tag])
    app.state.routers = ROUTERS
    logger.info("Routers registered.")
    return app


app = create_app()
