# leadsync/middleware/cors.py
from typing import Sequence

from starlette.middleware.cors import CORSMiddleware
from starlette.types import ASGIApp, Receive, Scope, Send


class ScopedCORSMiddleware(CORSMiddleware):
    """
    App-wide CORS, except for path prefixes that answer CORS themselves
    (the webhook must reply to pre-flight with 200 and an empty body).
    """

    def __init__(self, app: ASGIApp, exclude_prefixes: Sequence[str] = (), **kwargs):
        super().__init__(app, **kwargs)
        self.exclude_prefixes = tuple(exclude_prefixes)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope.get("path", "").startswith(self.exclude_prefixes):
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)
