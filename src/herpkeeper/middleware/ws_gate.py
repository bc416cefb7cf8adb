"""WebSocket path gate — routes upgrades to the session hub.

Learn: BaseHTTPMiddleware only sees HTTP requests, so this is a plain
ASGI middleware. For every websocket scope it asks the hub whether the
path is acceptable:
- yes → the hub runs the session (any suffix works: /ws, /ws/anything)
- no  → close before accept, so the handshake never completes and no
  connection is created (the server answers the upgrade with 403)

HTTP and lifespan scopes pass straight through.
"""

from starlette.types import ASGIApp, Receive, Scope, Send
from starlette.websockets import WebSocket, WebSocketClose


class WebSocketGateMiddleware:
    """Send /ws* upgrades to the hub, reject every other upgrade."""

    def __init__(self, app: ASGIApp, hub_getter):
        self.app = app
        self.hub_getter = hub_getter

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "websocket":
            await self.app(scope, receive, send)
            return

        hub = self.hub_getter(scope)
        if hub is None or not hub.accept_upgrade(scope.get("path", "")):
            await WebSocketClose(code=1008)(scope, receive, send)
            return

        await hub.handle(WebSocket(scope, receive=receive, send=send))
