# leadsync/middleware/request_logger.py
import logging
import time

from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("leadsync.http")


class RequestLoggerMiddleware:
    """
    Logs every HTTP request with:
      - method, path, status, duration
      - X-Req-Id (from client) and X-User-Id

    Bodies are not read here; the webhook handler logs its own outcome.
    """
    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = {k.decode("latin-1"): v.decode("latin-1") for k, v in scope.get("headers", [])}
        rid = headers.get("x-req-id", "-")
        uid = headers.get("x-user-id", "-")
        method = scope.get("method", "-")
        path = scope.get("path", "-")
        start = time.time()
        status = {"code": 0}

        async def send_wrapper(message: Message):
            if message["type"] == "http.response.start":
                status["code"] = message["status"]
            await send(message)

        logger.info("[HTTP ►] rid=%s user=%s %s %s", rid, uid, method, path)
        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            dur_ms = (time.time() - start) * 1000
            logger.info("[HTTP ◄] rid=%s user=%s %s %s -> %s in %.1fms", rid, uid, method, path, status["code"], dur_ms)
