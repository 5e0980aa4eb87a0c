from typing import Sequence

from fastapi.middleware.cors import CORSMiddleware
from starlette.types import ASGIApp, Receive, Scope, Send

WIDGET_PATH_PREFIX = "/grad/"


class WidgetCORSMiddleware:
    """
    CORS with a separate policy for the embeddable widget routes.

    The widget runs on every city's own site, so `/grad/*` accepts any origin
    and its preflights reach the route handlers, which answer them with an
    empty 204. Every other path uses the configured `allowed_origins`.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        allow_origins: Sequence[str] = ("*",),
        allow_credentials: bool = False,
        widget_prefix: str = WIDGET_PATH_PREFIX,
    ):
        self.app = app
        self.widget_prefix = widget_prefix
        self.default = CORSMiddleware(
            app,
            allow_origins=list(allow_origins),
            allow_credentials=allow_credentials,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )
        self.widget = CORSMiddleware(
            app,
            allow_origins=["*"],
            allow_methods=["POST", "OPTIONS"],
            allow_headers=["*"],
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not scope["path"].startswith(self.widget_prefix):
            await self.default(scope, receive, send)
        elif scope["method"] == "OPTIONS":
            await self.app(scope, receive, send)
        else:
            await self.widget(scope, receive, send)
