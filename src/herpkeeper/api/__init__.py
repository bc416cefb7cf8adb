"""API route aggregation.

All routers registered here get mounted in main.py. WebSocket sessions
don't go through the router at all: WebSocketGateMiddleware hands them
to the session hub.
"""

from fastapi import APIRouter

from herpkeeper.api.health import router as health_router

api_router = APIRouter(prefix="/api/v1")

# Open routes — no auth required
api_router.include_router(health_router, tags=["health"])
