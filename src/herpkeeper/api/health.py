"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running,
dependencies (database, Redis) are reachable, and reports how many
sockets the session hub is holding.
"""

from fastapi import APIRouter, Request
from sqlalchemy import text

from herpkeeper import __version__
from herpkeeper.db.engine import engine

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    # Check database
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    # Check Redis
    try:
        from redis.asyncio import from_url
        from herpkeeper.config import settings

        r = from_url(settings.redis_url)
        await r.ping()
        await r.aclose()
        checks["redis"] = "ok"
    except Exception as e:
        checks["redis"] = f"error: {e}"

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k != "version"
    ) else "degraded"

    hub = getattr(request.app.state, "hub", None)
    realtime = hub.stats() if hub is not None else {}
    subscriber = getattr(request.app.state, "subscriber", None)
    if subscriber is not None:
        realtime["subscribed"] = subscriber.subscribed

    return {"status": status, **checks, "realtime": realtime}
