"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown of the realtime pieces:

    Publisher ─┐
               ├─ ProfileUpdateNotifier (used by ProfileService)
    SessionHub ┴─ Subscriber (Redis `messages` → hub.deliver)

They hang off app.state so request handlers and middleware can reach them.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

from herpkeeper import __version__
from herpkeeper.api import api_router
from herpkeeper.config import settings
from herpkeeper.logging_config import configure_logging
from herpkeeper.realtime.hub import SessionHub
from herpkeeper.realtime.notifier import ProfileUpdateNotifier
from herpkeeper.realtime.publisher import Publisher
from herpkeeper.realtime.subscriber import Subscriber

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. Redis is optional at startup: without it the API still
    serves and sockets still authenticate; the subscriber keeps retrying
    in the background and updates flow once Redis is reachable.
    """
    logger.info(
        "herpkeeper.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    publisher = Publisher()
    notifier = ProfileUpdateNotifier(publisher)
    hub = SessionHub()
    subscriber = Subscriber(hub)

    app.state.publisher = publisher
    app.state.notifier = notifier
    app.state.hub = hub
    app.state.subscriber = subscriber

    hub.start()
    try:
        await subscriber.start()
        logger.info("herpkeeper.redis_connected", url=settings.redis_url)
    except (RedisError, OSError) as e:
        logger.warning("herpkeeper.redis_unavailable", error=str(e))
        subscriber.start_in_background()

    yield

    # Shutdown
    logger.info("herpkeeper.shutdown")

    await hub.stop()
    await subscriber.stop()
    await notifier.drain()
    await publisher.disconnect()

    # Close database engine
    from herpkeeper.db.engine import engine
    await engine.dispose()


def _hub_from_scope(scope):
    app = scope.get("app")
    return getattr(app.state, "hub", None) if app is not None else None


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    configure_logging()

    app = FastAPI(
        title="Herp Keeper API",
        description="Reptile and amphibian collection tracking",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: WebSocketGate → RequestId → CORS → handler

    from herpkeeper.middleware.request_id import RequestIdMiddleware
    from herpkeeper.middleware.ws_gate import WebSocketGateMiddleware

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(WebSocketGateMiddleware, hub_getter=_hub_from_scope)

    # Mount API routes
    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: herpkeeper.main:app)
app = create_app()
